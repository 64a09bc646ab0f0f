"""Thumbnail rendering for image originals."""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from io import BytesIO
from typing import Final

from django.conf import settings
from PIL import Image, ImageOps, UnidentifiedImageError

from server.apps.media.exceptions import GeneratorFailureError
from server.apps.media.models import MediaKind

_DEFAULT_SIZE: Final = 412
_DEFAULT_TIMEOUT: Final = 10.0
_JPEG_QUALITY: Final = 85
_MAX_WORKERS: Final = 4

logger = logging.getLogger(__name__)


def get_thumbnail_size() -> int:
    """Get thumbnail side length in pixels.

    Returns:
        Side length from settings or default of 412.
    """
    return getattr(settings, 'MEDIA_THUMBNAIL_SIZE', _DEFAULT_SIZE)


def get_thumbnail_timeout() -> float:
    """Get the bound on one thumbnail generation.

    Returns:
        Timeout in seconds from settings or default of 10.
    """
    return getattr(settings, 'MEDIA_THUMBNAIL_TIMEOUT', _DEFAULT_TIMEOUT)


def render_thumbnail(content: bytes, size: int) -> bytes:
    """Render a square, center-cropped JPEG preview.

    The image is scaled to cover a ``size`` x ``size`` box and the
    overflow is cropped evenly from both sides (no letterboxing). EXIF
    orientation is applied first and no metadata is written, so the same
    input always encodes to the same bytes.

    Args:
        content: Original image bytes.
        size: Side length in pixels.

    Returns:
        JPEG bytes.

    Raises:
        GeneratorFailureError: If the bytes are not a decodable image.
    """
    try:
        with Image.open(BytesIO(content)) as image:
            oriented = ImageOps.exif_transpose(image)
            fitted = ImageOps.fit(
                oriented.convert('RGB'),
                (size, size),
                method=Image.Resampling.LANCZOS,
                centering=(0.5, 0.5),
            )
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        ValueError,
        SyntaxError,
    ) as error:
        raise GeneratorFailureError(f'Cannot decode image: {error}') from error

    output = BytesIO()
    fitted.save(output, format='JPEG', quality=_JPEG_QUALITY)
    return output.getvalue()


class ThumbnailGenerator:
    """Derives fixed-size previews, bounded by a timeout.

    Rendering runs on a small worker pool so a slow decode cannot hold the
    caller past the timeout. A timed-out render finishes in the background
    and its result is discarded.
    """

    def __init__(
        self,
        size: int | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            size: Side length; defaults to MEDIA_THUMBNAIL_SIZE.
            timeout: Seconds per render; defaults to MEDIA_THUMBNAIL_TIMEOUT.
        """
        self.size = size or get_thumbnail_size()
        self.timeout = timeout or get_thumbnail_timeout()
        self._executor = ThreadPoolExecutor(
            max_workers=_MAX_WORKERS,
            thread_name_prefix='thumbnail',
        )

    def generate(
        self,
        user_id: str,
        object_id: str,
        content: bytes,
        kind: str,
    ) -> bytes | None:
        """Generate a thumbnail for an original.

        Args:
            user_id: Owner namespace (for diagnostics).
            object_id: Object id (for diagnostics).
            content: Original bytes.
            kind: MediaKind of the original.

        Returns:
            Thumbnail bytes, or None when the kind gets no thumbnail.

        Raises:
            GeneratorFailureError: On a decode failure or timeout.
        """
        if kind != MediaKind.IMAGE:
            return None

        future = self._executor.submit(render_thumbnail, content, self.size)
        try:
            thumbnail = future.result(timeout=self.timeout)
        except FutureTimeoutError as error:
            raise GeneratorFailureError(
                f'Thumbnail for {user_id}/{object_id} timed out '
                f'after {self.timeout}s',
            ) from error

        logger.debug(
            'Rendered thumbnail for %s/%s (%d bytes)',
            user_id,
            object_id,
            len(thumbnail),
        )
        return thumbnail

    def shutdown(self) -> None:
        """Stop the worker pool without waiting for running renders."""
        self._executor.shutdown(wait=False, cancel_futures=True)
