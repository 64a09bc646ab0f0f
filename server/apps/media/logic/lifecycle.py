"""Business logic for the media lifecycle: ingest, bin, restore, purge.

The lifecycle manager is the only writer of the metadata index and the only
caller that moves or deletes bytes in the object store. Every mutation of
an existing object runs under that object's lock, and every index write is
a compare-and-set against the state the decision was based on.
"""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.files import File as DjangoFile
from django.core.files.storage import storages
from django.db import DatabaseError
from django.utils import timezone

from server.apps.media.exceptions import (
    ConflictError,
    GeneratorFailureError,
    InvalidStateError,
    MediaError,
    MediaNotFoundError,
    ObjectMissingError,
    StoreFailureError,
    ThumbnailNotFoundError,
)
from server.apps.media.infrastructure.metadata import (
    detect_kind,
    generate_object_id,
    validate_object_id,
    validate_user_id,
)
from server.apps.media.infrastructure.object_store import (
    BIN_NAMESPACE,
    NAMESPACES,
    UPLOADS_NAMESPACE,
    ObjectStore,
    namespace_for,
)
from server.apps.media.infrastructure.thumbnails import ThumbnailGenerator
from server.apps.media.logic.index import MetadataIndex
from server.apps.media.logic.locks import KeyedLock
from server.apps.media.models import (
    MediaKind,
    MediaObject,
    MediaRecord,
    MediaState,
)

_OBJECT_ID_ATTEMPTS: Final = 5
_DEFAULT_READ_RETRY: Final = {'ATTEMPTS': 1, 'DELAY': 5.0}

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded retry: a fixed number of extra attempts after a fixed delay."""

    attempts: int
    delay: float

    @classmethod
    def from_settings(cls) -> 'RetryPolicy':
        """Build the thumbnail read policy from MEDIA_THUMBNAIL_READ_RETRY.

        Returns:
            RetryPolicy with settings values or one retry after 5 seconds.
        """
        configured = getattr(
            settings,
            'MEDIA_THUMBNAIL_READ_RETRY',
            _DEFAULT_READ_RETRY,
        )
        return cls(
            attempts=max(0, int(configured.get('ATTEMPTS', 1))),
            delay=max(0.0, float(configured.get('DELAY', 5.0))),
        )


@dataclass(frozen=True, slots=True)
class ThumbnailResult:
    """Thumbnail bytes, or the signal that the kind has no thumbnail."""

    content: bytes | None = None

    @property
    def skipped(self) -> bool:
        """True for videos, which render previews from the original."""
        return self.content is None


@dataclass(frozen=True, slots=True)
class Upload:
    """One uploaded file: a filename hint and its bytes."""

    filename: str
    content: bytes


@dataclass
class IngestReport:
    """Outcome of a batch ingest."""

    ingested: list[MediaObject] = field(default_factory=list)
    failed: list[tuple[str, Exception]] = field(default_factory=list)


class LifecycleManager:
    """Orchestrates transitions across object store, thumbnails and index."""

    def __init__(
        self,
        index: MetadataIndex,
        store: ObjectStore,
        thumbnails: ThumbnailGenerator,
        thumbnail_read_retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the manager with its collaborators.

        Args:
            index: Metadata index owned by this manager.
            store: Object store for originals and thumbnails.
            thumbnails: Thumbnail generator.
            thumbnail_read_retry: Policy of the thumbnail read path.
            sleep: Delay function used between thumbnail read attempts.
        """
        self.index = index
        self.store = store
        self.thumbnails = thumbnails
        self.thumbnail_read_retry = (
            thumbnail_read_retry or RetryPolicy.from_settings()
        )
        self._sleep = sleep
        self._locks = KeyedLock()

    @classmethod
    def from_settings(cls) -> 'LifecycleManager':
        """Build a manager from Django settings.

        Returns:
            LifecycleManager over a fresh storage backend and index.
        """
        storage = storages.create_storage(settings.STORAGES['default'])
        return cls(
            index=MetadataIndex(),
            store=ObjectStore(storage),
            thumbnails=ThumbnailGenerator(),
        )

    def close(self) -> None:
        """Release the thumbnail worker pool."""
        self.thumbnails.shutdown()

    # Ingest

    def ingest(self, user_id: str, filename: str, content: bytes) -> MediaObject:
        """Store a new upload as an Active object.

        Args:
            user_id: Owner namespace.
            filename: Original filename, used only for its extension.
            content: Uploaded bytes.

        Returns:
            The created MediaObject.

        Raises:
            UnsupportedTypeError: If the extension is not allowed.
            StoreFailureError: If the bytes or the record cannot be stored.
        """
        validate_user_id(user_id)
        kind, extension = detect_kind(filename)
        object_id = self._new_object_id(user_id, extension)
        storage_filename = f'{object_id}.{extension}'

        with self._locks.hold(user_id, object_id):
            # No record is written unless the bytes are stored
            original_name = self.store.put(user_id, storage_filename, content)
            self._write_thumbnail(
                UPLOADS_NAMESPACE,
                user_id,
                object_id,
                content,
                kind,
            )

            media = MediaObject(
                user_id=user_id,
                object_id=object_id,
                kind=kind,
                state=MediaState.ACTIVE,
                extension=extension,
                created_at=timezone.now(),
            )
            try:
                record = self.index.upsert(media)
            except DatabaseError as error:
                logger.exception(
                    'Index write failed, rolling back ingest: %s/%s',
                    user_id,
                    object_id,
                )
                self.store.storage.rollback_upload(original_name)
                self._discard_thumbnail(UPLOADS_NAMESPACE, user_id, object_id)
                raise StoreFailureError(
                    f'Failed to record {user_id}/{object_id}: {error}',
                ) from error

        logger.info(
            'Ingested %s %s/%s from %r (%d bytes)',
            kind,
            user_id,
            object_id,
            filename,
            len(content),
        )
        return record.as_media_object()

    def ingest_many(self, user_id: str, uploads: Iterable[Upload]) -> IngestReport:
        """Ingest several uploads independently.

        A failing file is reported and does not affect the others.

        Args:
            user_id: Owner namespace.
            uploads: Files to ingest.

        Returns:
            IngestReport with created objects and per-file errors.
        """
        report = IngestReport()
        for upload in uploads:
            try:
                media = self.ingest(user_id, upload.filename, upload.content)
            except (MediaError, ValidationError) as error:
                logger.warning(
                    'Upload %r for user %s rejected: %s',
                    upload.filename,
                    user_id,
                    error,
                )
                report.failed.append((upload.filename, error))
            else:
                report.ingested.append(media)
        return report

    # Transitions

    def soft_delete(self, user_id: str, object_id: str) -> MediaObject:
        """Move an Active object to the bin.

        Bytes move before the record changes, so a crash in between leaves
        the original findable in the bin.

        Args:
            user_id: Owner namespace.
            object_id: Object to bin.

        Returns:
            The Binned MediaObject.

        Raises:
            MediaNotFoundError: If there is no record, or it was purged
                concurrently.
            InvalidStateError: If the object is not Active.
            ConflictError: If a concurrent transition won.
        """
        self._validate_ids(user_id, object_id)
        with self._locks.hold(user_id, object_id):
            record = self.index.get(user_id, object_id)
            self._require_state(record, MediaState.ACTIVE)

            self._move_original(record, UPLOADS_NAMESPACE, BIN_NAMESPACE)
            self._move_thumbnail(record, UPLOADS_NAMESPACE, BIN_NAMESPACE)

            try:
                record = self.index.transition(
                    record,
                    MediaState.ACTIVE,
                    state=MediaState.BINNED,
                    deleted_at=timezone.now(),
                )
            except ConflictError:
                self._move_original(record, BIN_NAMESPACE, UPLOADS_NAMESPACE)
                self._move_thumbnail(record, BIN_NAMESPACE, UPLOADS_NAMESPACE)
                raise

        logger.info('Moved to bin: %s/%s', user_id, object_id)
        return record.as_media_object()

    def restore(self, user_id: str, object_id: str) -> MediaObject:
        """Move a Binned object back to Active.

        The thumbnail is regenerated from the restored original rather
        than carried over. ``created_at`` is preserved.

        Args:
            user_id: Owner namespace.
            object_id: Object to restore.

        Returns:
            The Active MediaObject.

        Raises:
            MediaNotFoundError: If there is no record, or it was purged
                concurrently.
            InvalidStateError: If the object is not Binned.
            ConflictError: If a concurrent transition won.
        """
        self._validate_ids(user_id, object_id)
        with self._locks.hold(user_id, object_id):
            record = self.index.get(user_id, object_id)
            self._require_state(record, MediaState.BINNED)

            self._move_original(record, BIN_NAMESPACE, UPLOADS_NAMESPACE)
            self._discard_thumbnail(BIN_NAMESPACE, user_id, object_id)
            if record.is_image:
                self._regenerate_thumbnail(record, UPLOADS_NAMESPACE)

            try:
                record = self.index.transition(
                    record,
                    MediaState.BINNED,
                    state=MediaState.ACTIVE,
                    deleted_at=None,
                )
            except ConflictError:
                self._move_original(record, UPLOADS_NAMESPACE, BIN_NAMESPACE)
                self._discard_thumbnail(UPLOADS_NAMESPACE, user_id, object_id)
                raise

        logger.info('Restored from bin: %s/%s', user_id, object_id)
        return record.as_media_object()

    def purge(self, user_id: str, object_id: str) -> None:
        """Permanently delete a Binned object.

        Args:
            user_id: Owner namespace.
            object_id: Object to purge.

        Raises:
            MediaNotFoundError: If there is no record.
            InvalidStateError: If the object is not Binned.
            ConflictError: If a concurrent transition won.
            StoreFailureError: If the original could not be deleted; the
                record is kept so a later purge can retry.
        """
        self._validate_ids(user_id, object_id)
        with self._locks.hold(user_id, object_id):
            record = self.index.get(user_id, object_id)
            self._require_state(record, MediaState.BINNED)

            try:
                self.store.purge(user_id, record.storage_filename)
            except ObjectMissingError:
                if self.store.exists(
                    UPLOADS_NAMESPACE,
                    user_id,
                    record.storage_filename,
                ):
                    # A restore in another process moved the bytes back
                    raise ConflictError(user_id, object_id) from None
                logger.warning(
                    'Original already gone while purging: %s/%s',
                    user_id,
                    object_id,
                )
            for namespace in NAMESPACES:
                self._discard_thumbnail(namespace, user_id, object_id)

            self.index.remove(record, MediaState.BINNED)

        logger.info('Purged: %s/%s', user_id, object_id)

    def purge_bin(self, user_id: str) -> int:
        """Permanently delete everything in a user's bin.

        Args:
            user_id: Owner namespace.

        Returns:
            Number of objects purged.
        """
        validate_user_id(user_id)
        count = 0
        for record in self.index.list_by_user(user_id, MediaState.BINNED):
            try:
                self.purge(user_id, record.object_id)
            except (ConflictError, MediaNotFoundError, InvalidStateError):
                logger.info(
                    'Skipped %s/%s while emptying bin: changed concurrently',
                    user_id,
                    record.object_id,
                )
                continue
            except Exception:
                logger.exception(
                    'Failed to purge %s/%s while emptying bin',
                    user_id,
                    record.object_id,
                )
                raise
            count += 1

        logger.info('Bin emptied for user %s: %d objects purged', user_id, count)
        return count

    # Queries

    def get(self, user_id: str, object_id: str) -> MediaObject:
        """Get one object.

        Raises:
            MediaNotFoundError: If there is no record.
        """
        self._validate_ids(user_id, object_id)
        return self.index.get(user_id, object_id).as_media_object()

    def list_active(self, user_id: str) -> list[MediaObject]:
        """List a user's Active objects, newest first."""
        validate_user_id(user_id)
        return [
            record.as_media_object()
            for record in self.index.list_by_user(user_id, MediaState.ACTIVE)
        ]

    def list_binned(self, user_id: str) -> list[MediaObject]:
        """List a user's Binned objects, most recently deleted first."""
        validate_user_id(user_id)
        return [
            record.as_media_object()
            for record in self.index.list_by_user(user_id, MediaState.BINNED)
        ]

    def get_original(self, user_id: str, object_id: str) -> DjangoFile:
        """Open the original of an Active or Binned object.

        The namespace comes from the record's state. If a transition moved
        the bytes after the lookup, the record is read once more.

        Args:
            user_id: Owner namespace.
            object_id: Object to read.

        Returns:
            Open binary file; the caller closes it.

        Raises:
            MediaNotFoundError: If there is no record or no bytes.
        """
        self._validate_ids(user_id, object_id)
        record = self.index.get(user_id, object_id)
        try:
            return self._read_original(record)
        except ObjectMissingError:
            current = self.index.get(user_id, object_id)
            if current.state == record.state:
                logger.error(
                    'Original missing for %s record %s/%s',
                    record.state,
                    user_id,
                    object_id,
                )
                raise MediaNotFoundError(user_id, object_id) from None

        try:
            return self._read_original(current)
        except ObjectMissingError as error:
            raise MediaNotFoundError(user_id, object_id) from error

    def get_thumbnail(self, user_id: str, object_id: str) -> ThumbnailResult:
        """Read the thumbnail of an object.

        Videos yield a skipped result. For images a missing thumbnail is
        retried per ``thumbnail_read_retry`` before giving up.

        Args:
            user_id: Owner namespace.
            object_id: Object whose thumbnail to read.

        Returns:
            ThumbnailResult with bytes, or skipped for videos.

        Raises:
            MediaNotFoundError: If there is no record.
            ThumbnailNotFoundError: If no thumbnail appeared in time.
        """
        self._validate_ids(user_id, object_id)
        record = self.index.get(user_id, object_id)
        if not record.is_image:
            return ThumbnailResult()

        policy = self.thumbnail_read_retry
        for attempt in range(policy.attempts + 1):
            if attempt:
                self._sleep(policy.delay)
                record = self.index.get(user_id, object_id)
            try:
                handle = self.store.read_thumbnail(
                    namespace_for(record.state),
                    user_id,
                    object_id,
                )
            except ObjectMissingError:
                logger.debug(
                    'Thumbnail not ready for %s/%s (attempt %d)',
                    user_id,
                    object_id,
                    attempt + 1,
                )
                continue
            with handle:
                return ThumbnailResult(content=handle.read())

        raise ThumbnailNotFoundError(user_id, object_id)

    # Reconciliation hooks

    def adopt(
        self,
        user_id: str,
        filename: str,
        created_at: datetime,
    ) -> MediaObject:
        """Record an uploads-namespace original that has no record.

        Args:
            user_id: Owner namespace.
            filename: Storage filename, ``{object_id}.{extension}``.
            created_at: Timestamp to record as ingest time.

        Returns:
            The adopted Active MediaObject.

        Raises:
            ConflictError: If a record already exists for the object id.
            ObjectMissingError: If the file is not in uploads.
            UnsupportedTypeError: If the extension is not allowed.
        """
        object_id, _, _ = filename.partition('.')
        self._validate_ids(user_id, object_id)
        kind, extension = detect_kind(filename)

        with self._locks.hold(user_id, object_id):
            if self.index.exists(user_id, object_id):
                raise ConflictError(user_id, object_id)
            if not self.store.exists(UPLOADS_NAMESPACE, user_id, filename):
                raise ObjectMissingError(
                    self.store.original_name(UPLOADS_NAMESPACE, user_id, filename),
                )

            media = MediaObject(
                user_id=user_id,
                object_id=object_id,
                kind=kind,
                state=MediaState.ACTIVE,
                extension=extension,
                created_at=created_at,
            )
            record = self.index.upsert(media)
            if record.is_image and not self.store.thumbnail_exists(
                UPLOADS_NAMESPACE,
                user_id,
                object_id,
            ):
                self._regenerate_thumbnail(record, UPLOADS_NAMESPACE)

        logger.info('Adopted orphaned original: %s/%s', user_id, object_id)
        return record.as_media_object()

    def relocate(self, user_id: str, object_id: str) -> MediaObject | None:
        """Repair a record whose original sits in the other namespace.

        The filesystem location is trusted over the record: an Active
        record whose bytes are only in the bin becomes Binned, and the
        reverse becomes Active.

        Args:
            user_id: Owner namespace.
            object_id: Object to check.

        Returns:
            The repaired MediaObject, or None if nothing was changed.

        Raises:
            MediaNotFoundError: If there is no record.
        """
        self._validate_ids(user_id, object_id)
        with self._locks.hold(user_id, object_id):
            record = self.index.get(user_id, object_id)
            filename = record.storage_filename
            expected = namespace_for(record.state)
            if self.store.exists(expected, user_id, filename):
                return None

            other = (
                BIN_NAMESPACE
                if expected == UPLOADS_NAMESPACE
                else UPLOADS_NAMESPACE
            )
            if not self.store.exists(other, user_id, filename):
                logger.error(
                    'Original missing in both namespaces: %s/%s',
                    user_id,
                    object_id,
                )
                return None

            if record.state == MediaState.ACTIVE:
                record = self.index.transition(
                    record,
                    MediaState.ACTIVE,
                    state=MediaState.BINNED,
                    deleted_at=timezone.now(),
                )
            else:
                record = self.index.transition(
                    record,
                    MediaState.BINNED,
                    state=MediaState.ACTIVE,
                    deleted_at=None,
                )
            self._move_thumbnail(record, expected, other)

        logger.warning(
            'Relocated record %s/%s to match its bytes (%s)',
            user_id,
            object_id,
            record.state,
        )
        return record.as_media_object()

    def discard_orphan(self, namespace: str, user_id: str, filename: str) -> bool:
        """Delete an original that has no record, with its thumbnails.

        The absence of a record is re-checked under the object's lock,
        which only covers ingests running in this process. Callers in a
        separate process must skip files younger than the reconciliation
        grace period (``MEDIA_RECONCILE_GRACE``).

        Args:
            namespace: Namespace holding the orphan.
            user_id: Owner namespace.
            filename: Storage filename, ``{object_id}.{extension}``.

        Returns:
            True if the orphan was deleted, False if a record now exists.
        """
        object_id = filename.partition('.')[0]
        with self._locks.hold(user_id, object_id):
            if self.index.exists(user_id, object_id):
                return False
            self.store.discard(namespace, user_id, filename)
            for thumbnail_namespace in NAMESPACES:
                self._discard_thumbnail(thumbnail_namespace, user_id, object_id)

        logger.warning(
            'Deleted orphaned original: %s/%s/%s',
            namespace,
            user_id,
            filename,
        )
        return True

    def discard_dangling_thumbnail(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
    ) -> bool:
        """Delete a thumbnail with no image original in its namespace.

        Args:
            namespace: Namespace holding the thumbnail.
            user_id: Owner namespace.
            object_id: Object id the thumbnail is named after.

        Returns:
            True if deleted, False if the thumbnail turned out to be valid.
        """
        with self._locks.hold(user_id, object_id):
            try:
                record = self.index.get(user_id, object_id)
            except MediaNotFoundError:
                record = None
            if (
                record is not None and
                record.is_image and
                namespace_for(record.state) == namespace and
                self.store.exists(namespace, user_id, record.storage_filename)
            ):
                return False
            self.store.delete_thumbnail(namespace, user_id, object_id)

        logger.warning(
            'Deleted dangling thumbnail: %s/%s/%s',
            namespace,
            user_id,
            object_id,
        )
        return True

    # Helpers

    def _new_object_id(self, user_id: str, extension: str) -> str:
        for _ in range(_OBJECT_ID_ATTEMPTS):
            object_id = generate_object_id()
            filename = f'{object_id}.{extension}'
            taken = self.index.exists(user_id, object_id) or any(
                self.store.exists(namespace, user_id, filename)
                for namespace in NAMESPACES
            )
            if not taken:
                return object_id
        raise StoreFailureError(
            f'Could not allocate an object id for user {user_id}',
        )

    def _validate_ids(self, user_id: str, object_id: str) -> None:
        validate_user_id(user_id)
        validate_object_id(object_id)

    def _require_state(self, record: MediaRecord, expected: str) -> None:
        if record.state != expected:
            raise InvalidStateError(
                record.user_id,
                record.object_id,
                record.state,
                expected,
            )

    def _read_original(self, record: MediaRecord) -> DjangoFile:
        return self.store.read(
            namespace_for(record.state),
            record.user_id,
            record.storage_filename,
        )

    def _move_original(
        self,
        record: MediaRecord,
        source: str,
        destination: str,
    ) -> None:
        """Move an original, completing a move a crash interrupted."""
        filename = record.storage_filename
        try:
            if destination == BIN_NAMESPACE:
                self.store.move_to_bin(record.user_id, filename)
            else:
                self.store.move_to_active(record.user_id, filename)
        except ObjectMissingError as error:
            if not self.store.exists(destination, record.user_id, filename):
                if not self.index.exists(record.user_id, record.object_id):
                    # Purged by another process since the lookup
                    raise MediaNotFoundError(
                        record.user_id,
                        record.object_id,
                    ) from error
                logger.error(
                    'Original missing for %s/%s in %s and %s',
                    record.user_id,
                    record.object_id,
                    source,
                    destination,
                )
                raise
            logger.warning(
                'Original of %s/%s already in %s, completing move',
                record.user_id,
                record.object_id,
                destination,
            )

    def _move_thumbnail(
        self,
        record: MediaRecord,
        source: str,
        destination: str,
    ) -> None:
        if not record.is_image:
            return
        try:
            moved = self.store.move_thumbnail(
                record.user_id,
                record.object_id,
                source,
                destination,
            )
        except StoreFailureError:
            logger.exception(
                'Failed to move thumbnail of %s/%s to %s',
                record.user_id,
                record.object_id,
                destination,
            )
            return
        if not moved:
            logger.debug(
                'No thumbnail to move for %s/%s',
                record.user_id,
                record.object_id,
            )

    def _discard_thumbnail(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
    ) -> None:
        try:
            self.store.delete_thumbnail(namespace, user_id, object_id)
        except StoreFailureError:
            logger.exception(
                'Failed to delete %s thumbnail of %s/%s',
                namespace,
                user_id,
                object_id,
            )

    def _regenerate_thumbnail(self, record: MediaRecord, namespace: str) -> None:
        try:
            with self.store.read(
                namespace,
                record.user_id,
                record.storage_filename,
            ) as handle:
                content = handle.read()
        except StoreFailureError:
            logger.exception(
                'Cannot read original of %s/%s to regenerate thumbnail',
                record.user_id,
                record.object_id,
            )
            return
        self._write_thumbnail(
            namespace,
            record.user_id,
            record.object_id,
            content,
            MediaKind(record.kind),
        )

    def _write_thumbnail(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
        content: bytes,
        kind: MediaKind,
    ) -> bool:
        """Generate and store a thumbnail; failures degrade to none."""
        try:
            thumbnail = self.thumbnails.generate(user_id, object_id, content, kind)
        except GeneratorFailureError as error:
            logger.warning(
                'No thumbnail for %s/%s: %s',
                user_id,
                object_id,
                error,
            )
            return False
        if thumbnail is None:
            return False

        try:
            self.store.put_thumbnail(namespace, user_id, object_id, thumbnail)
        except StoreFailureError:
            logger.exception(
                'Failed to store thumbnail of %s/%s',
                user_id,
                object_id,
            )
            return False
        return True
