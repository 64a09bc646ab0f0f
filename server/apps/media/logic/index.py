"""Metadata index: the durable record of what exists and in which state."""

import logging
from datetime import datetime
from typing import Any

from django.db import transaction
from django.utils import timezone

from server.apps.media.exceptions import ConflictError, MediaNotFoundError
from server.apps.media.models import MediaObject, MediaRecord, MediaState

logger = logging.getLogger(__name__)


class MetadataIndex:
    """Reads and writes of MediaRecord rows.

    Every write runs in its own ``transaction.atomic()`` block and returns
    only after commit, so a caller never reports a transition a crash could
    roll back. State changes are compare-and-set: the update only matches
    when the row is still in the state the caller looked up.
    """

    def get(self, user_id: str, object_id: str) -> MediaRecord:
        """Get the record for an object.

        Args:
            user_id: Owner namespace.
            object_id: Object id.

        Returns:
            MediaRecord instance.

        Raises:
            MediaNotFoundError: If there is no record.
        """
        try:
            return MediaRecord.objects.get(user_id=user_id, object_id=object_id)
        except MediaRecord.DoesNotExist as error:
            raise MediaNotFoundError(user_id, object_id) from error

    def exists(self, user_id: str, object_id: str) -> bool:
        """Whether a record exists for the object."""
        return MediaRecord.objects.filter(
            user_id=user_id,
            object_id=object_id,
        ).exists()

    def list_by_user(self, user_id: str, state: str) -> list[MediaRecord]:
        """List a user's records in one state.

        Args:
            user_id: Owner namespace.
            state: MediaState to filter on.

        Returns:
            Active records newest first, binned records most recently
            deleted first.
        """
        ordering = '-deleted_at' if state == MediaState.BINNED else '-created_at'
        return list(
            MediaRecord.objects.filter(
                user_id=user_id,
                state=state,
            ).order_by(ordering, 'object_id'),
        )

    def list_expired(self, cutoff: datetime, limit: int) -> list[MediaRecord]:
        """List binned records deleted at or before the cutoff.

        Args:
            cutoff: Latest deletion time still eligible.
            limit: Maximum number of records.

        Returns:
            Oldest deletions first.
        """
        return list(
            MediaRecord.objects.filter(
                state=MediaState.BINNED,
                deleted_at__lte=cutoff,
            ).order_by('deleted_at', 'id')[:limit],
        )

    def all(self) -> list[MediaRecord]:
        """All records, for reconciliation scans."""
        return list(MediaRecord.objects.order_by('user_id', 'object_id'))

    def upsert(self, media: MediaObject) -> MediaRecord:
        """Insert or overwrite the record for an object.

        Args:
            media: Values to persist.

        Returns:
            Stored MediaRecord.
        """
        with transaction.atomic():
            record, created = MediaRecord.objects.update_or_create(
                user_id=media.user_id,
                object_id=media.object_id,
                defaults={
                    'extension': media.extension,
                    'kind': media.kind,
                    'state': media.state,
                    'created_at': media.created_at,
                    'deleted_at': media.deleted_at,
                },
            )
        logger.debug(
            '%s index record %s/%s (%s)',
            'Created' if created else 'Updated',
            media.user_id,
            media.object_id,
            media.state,
        )
        return record

    def transition(
        self,
        record: MediaRecord,
        expected_state: str,
        **changes: Any,
    ) -> MediaRecord:
        """Apply changes only if the record is still in the expected state.

        Args:
            record: Record as previously looked up.
            expected_state: State the caller's decision was based on.
            changes: Field values to write.

        Returns:
            The record with the changes applied.

        Raises:
            ConflictError: If the row changed state or disappeared.
        """
        with transaction.atomic():
            updated = MediaRecord.objects.filter(
                pk=record.pk,
                state=expected_state,
            ).update(modified_at=timezone.now(), **changes)
        if not updated:
            raise ConflictError(record.user_id, record.object_id)

        for field_name, field_value in changes.items():
            setattr(record, field_name, field_value)
        return record

    def remove(self, record: MediaRecord, expected_state: str) -> None:
        """Delete the record if it is still in the expected state.

        Args:
            record: Record as previously looked up.
            expected_state: State the caller's decision was based on.

        Raises:
            ConflictError: If the row changed state or disappeared.
        """
        with transaction.atomic():
            deleted, _ = MediaRecord.objects.filter(
                pk=record.pk,
                state=expected_state,
            ).delete()
        if not deleted:
            raise ConflictError(record.user_id, record.object_id)
