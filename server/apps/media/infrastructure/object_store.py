"""Object store: per-user byte storage in the uploads and bin namespaces.

Layout under the storage root::

    uploads/originals/{user_id}/{object_id}.{ext}
    uploads/thumbs/{user_id}/{object_id}.jpg
    bin/originals/{user_id}/{object_id}.{ext}
    bin/thumbs/{user_id}/{object_id}.jpg

The store only moves bytes. Which namespace an object belongs in is
decided by the lifecycle manager from the metadata index.
"""

import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Final

from django.core.files import File as DjangoFile
from django.core.files.base import ContentFile

from server.apps.media.exceptions import ObjectMissingError, StoreFailureError
from server.apps.media.infrastructure.storage import MediaStorage
from server.apps.media.models import MediaState

UPLOADS_NAMESPACE: Final = 'uploads'
BIN_NAMESPACE: Final = 'bin'
NAMESPACES: Final = (UPLOADS_NAMESPACE, BIN_NAMESPACE)

_ORIGINALS_DIR: Final = 'originals'
_THUMBS_DIR: Final = 'thumbs'
THUMBNAIL_EXTENSION: Final = 'jpg'

logger = logging.getLogger(__name__)


def namespace_for(state: str) -> str:
    """Map a lifecycle state to the namespace holding its bytes.

    Args:
        state: MediaState value.

    Returns:
        'uploads' for active objects, 'bin' for binned ones.
    """
    if state == MediaState.BINNED:
        return BIN_NAMESPACE
    return UPLOADS_NAMESPACE


class ObjectStore:
    """Namespace-aware facade over MediaStorage."""

    def __init__(self, storage: MediaStorage) -> None:
        """Initialize the store.

        Args:
            storage: Filesystem backend rooted at MEDIA_ROOT.
        """
        self.storage = storage

    # Naming

    @staticmethod
    def original_name(namespace: str, user_id: str, filename: str) -> str:
        """Storage name of an original."""
        return f'{namespace}/{_ORIGINALS_DIR}/{user_id}/{filename}'

    @staticmethod
    def thumbnail_name(namespace: str, user_id: str, object_id: str) -> str:
        """Storage name of a thumbnail."""
        return (
            f'{namespace}/{_THUMBS_DIR}/{user_id}/'
            f'{object_id}.{THUMBNAIL_EXTENSION}'
        )

    # Originals

    def put(self, user_id: str, filename: str, content: bytes) -> str:
        """Store original bytes in the uploads namespace.

        The user directory is created on demand.

        Args:
            user_id: Owner namespace.
            filename: Generated storage filename.
            content: Original bytes.

        Returns:
            Storage name written.

        Raises:
            StoreFailureError: If the write fails or the name is taken.
        """
        name = self.original_name(UPLOADS_NAMESPACE, user_id, filename)
        saved_name = self._save(name, content)
        if saved_name != name:
            self.storage.rollback_upload(saved_name)
            raise StoreFailureError(f'Storage name already taken: {name}')
        logger.info('Stored original: %s (%d bytes)', name, len(content))
        return name

    def move_to_bin(self, user_id: str, filename: str) -> None:
        """Move an original from uploads to bin.

        Raises:
            ObjectMissingError: If the original is not in uploads.
            StoreFailureError: If the rename fails.
        """
        self._move(
            self.original_name(UPLOADS_NAMESPACE, user_id, filename),
            self.original_name(BIN_NAMESPACE, user_id, filename),
        )

    def move_to_active(self, user_id: str, filename: str) -> None:
        """Move an original from bin back to uploads.

        Raises:
            ObjectMissingError: If the original is not in the bin.
            StoreFailureError: If the rename fails.
        """
        self._move(
            self.original_name(BIN_NAMESPACE, user_id, filename),
            self.original_name(UPLOADS_NAMESPACE, user_id, filename),
        )

    def purge(self, user_id: str, filename: str) -> None:
        """Delete an original from the bin namespace.

        Raises:
            ObjectMissingError: If the original is not in the bin.
            StoreFailureError: If the delete fails.
        """
        name = self.original_name(BIN_NAMESPACE, user_id, filename)
        if not self._delete(name):
            raise ObjectMissingError(name)

    def discard(self, namespace: str, user_id: str, filename: str) -> bool:
        """Delete an original from any namespace, tolerating absence.

        Returns:
            True if a file was deleted.
        """
        return self._delete(self.original_name(namespace, user_id, filename))

    def read(self, namespace: str, user_id: str, filename: str) -> DjangoFile:
        """Open an original for reading.

        Returns:
            Open binary file; the caller closes it.

        Raises:
            ObjectMissingError: If the original is absent.
        """
        return self._open(self.original_name(namespace, user_id, filename))

    def exists(self, namespace: str, user_id: str, filename: str) -> bool:
        """Whether an original is present in a namespace."""
        return self.storage.exists(
            self.original_name(namespace, user_id, filename),
        )

    def modified_time(
        self,
        namespace: str,
        user_id: str,
        filename: str,
    ) -> datetime:
        """Last modification time of an original.

        Raises:
            ObjectMissingError: If the original is absent.
            StoreFailureError: If the file cannot be inspected.
        """
        return self._modified_time(
            self.original_name(namespace, user_id, filename),
        )

    def iter_originals(self, namespace: str) -> Iterator[tuple[str, str]]:
        """Yield ``(user_id, filename)`` for every original in a namespace."""
        prefix = f'{namespace}/{_ORIGINALS_DIR}'
        for name in self.storage.walk_files(prefix):
            parts = name.split('/')
            if len(parts) == 4:  # noqa: WPS432
                yield parts[2], parts[3]

    # Thumbnails

    def put_thumbnail(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
        content: bytes,
    ) -> str:
        """Write a thumbnail, replacing any previous one.

        Raises:
            StoreFailureError: If the write fails.
        """
        name = self.thumbnail_name(namespace, user_id, object_id)
        self._delete(name)
        saved_name = self._save(name, content)
        logger.info('Stored thumbnail: %s', saved_name)
        return saved_name

    def move_thumbnail(
        self,
        user_id: str,
        object_id: str,
        source_namespace: str,
        destination_namespace: str,
    ) -> bool:
        """Move a thumbnail between namespaces.

        Returns:
            True if moved, False if there was no thumbnail to move.

        Raises:
            StoreFailureError: If the rename fails.
        """
        try:
            self._move(
                self.thumbnail_name(source_namespace, user_id, object_id),
                self.thumbnail_name(destination_namespace, user_id, object_id),
            )
        except ObjectMissingError:
            return False
        return True

    def delete_thumbnail(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
    ) -> bool:
        """Delete a thumbnail, tolerating its absence.

        Returns:
            True if a thumbnail was deleted.
        """
        return self._delete(self.thumbnail_name(namespace, user_id, object_id))

    def read_thumbnail(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
    ) -> DjangoFile:
        """Open a thumbnail for reading.

        Raises:
            ObjectMissingError: If there is no thumbnail.
        """
        return self._open(self.thumbnail_name(namespace, user_id, object_id))

    def thumbnail_exists(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
    ) -> bool:
        """Whether a thumbnail is present in a namespace."""
        return self.storage.exists(
            self.thumbnail_name(namespace, user_id, object_id),
        )

    def thumbnail_modified_time(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
    ) -> datetime:
        """Last modification time of a thumbnail.

        Raises:
            ObjectMissingError: If there is no thumbnail.
        """
        return self._modified_time(
            self.thumbnail_name(namespace, user_id, object_id),
        )

    def iter_thumbnails(self, namespace: str) -> Iterator[tuple[str, str]]:
        """Yield ``(user_id, object_id)`` for every thumbnail in a namespace."""
        prefix = f'{namespace}/{_THUMBS_DIR}'
        suffix = f'.{THUMBNAIL_EXTENSION}'
        for name in self.storage.walk_files(prefix):
            parts = name.split('/')
            if len(parts) == 4 and parts[3].endswith(suffix):  # noqa: WPS432
                yield parts[2], parts[3].removesuffix(suffix)

    # Primitives

    def _save(self, name: str, content: bytes) -> str:
        try:
            return self.storage.save(name, ContentFile(content))
        except OSError as error:
            raise StoreFailureError(f'Failed to write {name}: {error}') from error

    def _move(self, source: str, destination: str) -> None:
        try:
            self.storage.move_object(source, destination)
        except ObjectMissingError:
            raise
        except OSError as error:
            raise StoreFailureError(
                f'Failed to move {source} -> {destination}: {error}',
            ) from error

    def _delete(self, name: str) -> bool:
        try:
            return self.storage.delete_if_exists(name)
        except OSError as error:
            raise StoreFailureError(f'Failed to delete {name}: {error}') from error

    def _modified_time(self, name: str) -> datetime:
        try:
            return self.storage.get_modified_time(name)
        except FileNotFoundError as error:
            raise ObjectMissingError(name) from error
        except OSError as error:
            raise StoreFailureError(f'Failed to stat {name}: {error}') from error

    def _open(self, name: str) -> DjangoFile:
        try:
            return self.storage.open(name, 'rb')
        except FileNotFoundError as error:
            raise ObjectMissingError(name) from error
        except OSError as error:
            raise StoreFailureError(f'Failed to read {name}: {error}') from error
