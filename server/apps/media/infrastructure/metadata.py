"""Metadata helpers for uploads: extension, kind and identifiers."""

import re
import secrets
from pathlib import Path
from typing import Final

from django.conf import settings
from django.core.exceptions import ValidationError

from server.apps.media.exceptions import UnsupportedTypeError
from server.apps.media.models import MediaKind

_OBJECT_ID_BYTES: Final = 16  # 32 hex chars, 128 bits of entropy
_OBJECT_ID_PATTERN: Final = re.compile(r'[0-9a-f]{32}')
_USER_ID_MAX_LENGTH: Final = 150

_DEFAULT_IMAGE_EXTENSIONS: Final = ('jpg', 'jpeg', 'png', 'webp', 'gif')
_DEFAULT_VIDEO_EXTENSIONS: Final = ('mp4', 'mov', 'webm', 'm4v', 'mkv', 'avi')


def get_image_extensions() -> frozenset[str]:
    """Get the image extension allow-list.

    Returns:
        Lowercase extensions without dot.
    """
    return frozenset(
        getattr(settings, 'MEDIA_IMAGE_EXTENSIONS', _DEFAULT_IMAGE_EXTENSIONS),
    )


def get_video_extensions() -> frozenset[str]:
    """Get the video extension allow-list.

    Returns:
        Lowercase extensions without dot.
    """
    return frozenset(
        getattr(settings, 'MEDIA_VIDEO_EXTENSIONS', _DEFAULT_VIDEO_EXTENSIONS),
    )


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'holiday.JPG').

    Returns:
        Extension without dot, lowercase (e.g., 'jpg').
        Returns empty string if no extension.
    """
    extension = Path(filename).suffix
    return extension.lstrip('.').lower()


def detect_kind(filename: str) -> tuple[MediaKind, str]:
    """Derive media kind from the filename hint.

    The filename is only used for its extension; it never becomes part of
    a storage path.

    Args:
        filename: Original filename supplied with the upload.

    Returns:
        Tuple of kind and normalized extension.

    Raises:
        UnsupportedTypeError: If the extension is on neither allow-list.
    """
    extension = get_file_extension(filename)
    if extension in get_image_extensions():
        return MediaKind.IMAGE, extension
    if extension in get_video_extensions():
        return MediaKind.VIDEO, extension
    raise UnsupportedTypeError(filename, extension)


def generate_object_id() -> str:
    """Generate a fresh object id.

    Returns:
        32 lowercase hex characters from the OS CSPRNG.
    """
    return secrets.token_hex(_OBJECT_ID_BYTES)


def validate_user_id(user_id: str) -> None:
    """Validate a user id before it becomes a directory name.

    Args:
        user_id: Opaque owner id.

    Raises:
        ValidationError: If the id is empty, too long or not a single
            safe path component.
    """
    if not user_id:
        raise ValidationError('User ID cannot be empty')

    if len(user_id) > _USER_ID_MAX_LENGTH:
        raise ValidationError(
            f'User ID longer than {_USER_ID_MAX_LENGTH} characters',
        )

    if user_id in {'.', '..'} or '/' in user_id or '\\' in user_id:
        raise ValidationError(f'User ID is not a valid namespace: {user_id!r}')

    if '\x00' in user_id:
        raise ValidationError('User ID contains a NUL byte')


def validate_object_id(object_id: str) -> None:
    """Validate an object id received from a caller.

    Args:
        object_id: Id previously returned by ingest.

    Raises:
        ValidationError: If the id is not a generated token.
    """
    if not _OBJECT_ID_PATTERN.fullmatch(object_id or ''):
        raise ValidationError(f'Malformed object ID: {object_id!r}')
