"""Custom storage backend for local or attached block storage."""

import logging
import os
from pathlib import Path
from typing import Any, final, override

from django.core.files.storage import FileSystemStorage

from server.apps.media.exceptions import ObjectMissingError

logger = logging.getLogger(__name__)


@final
class MediaStorage(FileSystemStorage):
    """Filesystem storage backend for user media.

    Extends Django's FileSystemStorage with:
    - Atomic same-volume moves between namespaces
    - Transaction rollback support for failed index writes
    - Enhanced error logging
    """

    @override
    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save file to disk with error handling and logging.

        Args:
            name: Storage path for the file.
            content: File content (file-like object).
            max_length: Optional maximum length for the filename.

        Returns:
            Actual storage path used (may differ from name if conflicts).

        Raises:
            OSError: If the write fails.
        """
        try:
            logger.debug('Writing file to storage: %s', name)
            saved_name = super().save(name, content, max_length)
            logger.debug('Successfully wrote file: %s', saved_name)
        except Exception:
            logger.exception('Failed to write file to storage: %s', name)
            raise
        else:
            return saved_name

    @override
    def delete(self, name: str) -> None:
        """Delete file from disk with error handling and logging.

        Args:
            name: Storage path of file to delete.

        Raises:
            OSError: If the delete fails.
        """
        try:
            logger.debug('Deleting file from storage: %s', name)
            super().delete(name)
            logger.debug('Successfully deleted file: %s', name)
        except Exception:
            logger.exception('Failed to delete file from storage: %s', name)
            raise

    def delete_if_exists(self, name: str) -> bool:
        """Delete a file, tolerating its absence.

        Args:
            name: Storage path of file to delete.

        Returns:
            True if a file was deleted, False if none was there.
        """
        if not self.exists(name):
            return False
        self.delete(name)
        return True

    def rollback_upload(self, name: str) -> None:
        """Delete written file for index transaction rollback.

        This method is called when the metadata write fails after a file
        has been successfully stored. It attempts to delete the file to
        maintain consistency.

        This is a best-effort operation - if deletion fails, the error
        is logged but not raised, as the index rollback has already
        occurred.

        Args:
            name: Storage path of file to delete.
        """
        try:
            logger.warning('Rolling back upload, deleting file: %s', name)
            self.delete(name)
            logger.info('Successfully rolled back file upload: %s', name)
        except Exception:
            # Log but don't raise - rollback is best-effort
            # The file will remain on disk but not in the index
            # Reconciliation reports orphaned files
            logger.exception(
                'Failed to rollback upload, orphaned file: %s',
                name,
            )

    def move_object(self, source: str, destination: str) -> None:
        """Move/rename an object within this storage.

        Both paths live under the same root on one volume, so the move is
        a single rename: the destination either appears complete or not
        at all, and the source disappears in the same step.

        Args:
            source: Source storage path.
            destination: Destination storage path.

        Raises:
            ObjectMissingError: If the source does not exist.
            OSError: If the rename fails.
        """
        source_path = Path(self.path(source))
        destination_path = Path(self.path(destination))
        if not source_path.is_file():
            raise ObjectMissingError(source)

        try:
            logger.debug('Moving file: %s -> %s', source, destination)
            destination_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source_path, destination_path)
        except FileNotFoundError as error:
            # Source vanished between the check and the rename
            raise ObjectMissingError(source) from error
        except Exception:
            logger.exception('Move failed: %s -> %s', source, destination)
            raise
        logger.debug('Moved file: %s -> %s', source, destination)

    def walk_files(self, prefix: str) -> list[str]:
        """List every file below a directory prefix.

        Args:
            prefix: Storage directory (e.g., 'uploads/originals').

        Returns:
            Storage names relative to the storage root.
        """
        root = Path(self.path(prefix))
        if not root.is_dir():
            return []
        location = Path(self.location)
        return sorted(
            path.relative_to(location).as_posix()
            for path in root.rglob('*')
            if path.is_file()
        )
