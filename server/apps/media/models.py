"""Database models for media app."""

from dataclasses import dataclass
from datetime import datetime
from typing import Final, final, override

from django.db import models
from django.utils import timezone

# Constants for field max lengths
_USER_ID_MAX_LENGTH: Final = 150
_OBJECT_ID_MAX_LENGTH: Final = 32  # secrets.token_hex(16)
_EXTENSION_MAX_LENGTH: Final = 10


class MediaKind(models.TextChoices):
    """Kind of media, derived from the upload's extension."""

    IMAGE = 'image', 'Image'
    VIDEO = 'video', 'Video'


class MediaState(models.TextChoices):
    """Persisted lifecycle states.

    Purged is terminal and never stored: a purged object has no record.
    """

    ACTIVE = 'active', 'Active'
    BINNED = 'binned', 'Binned'


@final
class MediaRecord(models.Model):
    """Lifecycle record of one stored media object.

    The table is the metadata index: a row exists for every Active and
    Binned object and for no purged one. Originals live on disk at
    ``{namespace}/originals/{user_id}/{object_id}.{extension}``, where the
    namespace follows ``state``.
    """

    user_id = models.CharField(
        max_length=_USER_ID_MAX_LENGTH,
        help_text='Opaque owner id supplied by the trusted caller',
    )

    object_id = models.CharField(
        max_length=_OBJECT_ID_MAX_LENGTH,
        help_text='Generated name, unique within the user namespace',
    )

    extension = models.CharField(
        max_length=_EXTENSION_MAX_LENGTH,
        help_text='Lowercase extension of the original upload, no dot',
    )

    kind = models.CharField(
        max_length=5,
        choices=MediaKind.choices,
    )

    state = models.CharField(
        max_length=6,
        choices=MediaState.choices,
        default=MediaState.ACTIVE,
    )

    # Timestamps
    created_at = models.DateTimeField(default=timezone.now)
    deleted_at = models.DateTimeField(null=True, blank=True)
    modified_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Media record'  # type: ignore[mutable-override]
        verbose_name_plural = 'Media records'  # type: ignore[mutable-override]
        ordering = ['-created_at']

        indexes = [
            # Optimize "all records for user X in state Y"
            models.Index(
                fields=['user_id', 'state'],
                name='media_user_state_idx',
            ),
            # Optimize the sweeper's expiry scan
            models.Index(
                fields=['state', 'deleted_at'],
                name='media_state_deleted_idx',
            ),
        ]

        constraints = [
            models.UniqueConstraint(
                fields=['user_id', 'object_id'],
                name='media_user_object_unique',
            ),
            # deleted_at is set iff the record is binned
            models.CheckConstraint(
                condition=(
                    models.Q(state='active', deleted_at__isnull=True) |
                    models.Q(state='binned', deleted_at__isnull=False)
                ),
                name='media_deleted_at_matches_state',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.user_id}:{self.object_id} ({self.state})'

    @property
    def storage_filename(self) -> str:
        """Filename of the original inside its namespace."""
        return f'{self.object_id}.{self.extension}'

    @property
    def is_image(self) -> bool:
        """Whether the object gets a thumbnail."""
        return self.kind == MediaKind.IMAGE

    def as_media_object(self) -> 'MediaObject':
        """Detach an immutable snapshot of this record.

        Returns:
            MediaObject with the record's current values.
        """
        return MediaObject(
            user_id=self.user_id,
            object_id=self.object_id,
            kind=MediaKind(self.kind),
            state=MediaState(self.state),
            extension=self.extension,
            created_at=self.created_at,
            deleted_at=self.deleted_at,
        )


@dataclass(frozen=True, slots=True)
class MediaObject:
    """Snapshot of a media object handed to callers of the lifecycle."""

    user_id: str
    object_id: str
    kind: MediaKind
    state: MediaState
    extension: str
    created_at: datetime
    deleted_at: datetime | None = None

    @property
    def created_at_ms(self) -> int:
        """Ingest time as epoch milliseconds."""
        return int(self.created_at.timestamp() * 1000)

    @property
    def deleted_at_ms(self) -> int | None:
        """Bin time as epoch milliseconds, None while active."""
        if self.deleted_at is None:
            return None
        return int(self.deleted_at.timestamp() * 1000)
