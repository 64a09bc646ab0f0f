"""Shared fixtures for media app tests."""

from io import BytesIO

import pytest
from PIL import Image

from server.apps.media.logic.lifecycle import LifecycleManager


@pytest.fixture
def media_root(settings, tmp_path):
    """Point MEDIA_ROOT at a temporary directory.

    Returns:
        Path of the temporary media root.
    """
    root = tmp_path / 'media'
    settings.MEDIA_ROOT = str(root)
    settings.MEDIA_THUMBNAIL_READ_RETRY = {'ATTEMPTS': 1, 'DELAY': 0.0}
    return root


@pytest.fixture
def manager(db, media_root):
    """Lifecycle manager over the temporary media root.

    Yields:
        LifecycleManager built from settings.
    """
    lifecycle = LifecycleManager.from_settings()
    yield lifecycle
    lifecycle.close()


@pytest.fixture
def make_image():
    """Factory for in-memory test images.

    Returns:
        Callable building encoded image bytes.
    """
    def factory(
        width: int = 800,
        height: int = 600,
        color: tuple[int, int, int] = (200, 40, 40),
        image_format: str = 'JPEG',
    ) -> bytes:
        output = BytesIO()
        Image.new('RGB', (width, height), color).save(output, format=image_format)
        return output.getvalue()

    return factory


@pytest.fixture
def image_bytes(make_image):
    """Encoded 800x600 JPEG.

    Returns:
        JPEG bytes.
    """
    return make_image()


@pytest.fixture
def video_bytes():
    """Bytes standing in for an MP4 upload.

    Returns:
        Minimal ftyp box followed by filler.
    """
    return b'\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp42isom' + b'\x00' * 64


@pytest.fixture
def stored_files(media_root):
    """Lister of files currently under the media root.

    Returns:
        Callable returning sorted relative paths.
    """
    def lister() -> list[str]:
        if not media_root.exists():
            return []
        return sorted(
            path.relative_to(media_root).as_posix()
            for path in media_root.rglob('*')
            if path.is_file()
        )

    return lister
