"""Tests for thumbnail rendering."""

import time
from io import BytesIO

import pytest
from PIL import Image

from server.apps.media.exceptions import GeneratorFailureError
from server.apps.media.infrastructure import thumbnails
from server.apps.media.infrastructure.thumbnails import (
    ThumbnailGenerator,
    get_thumbnail_size,
    render_thumbnail,
)
from server.apps.media.models import MediaKind

_RED = (255, 0, 0)
_GREEN = (0, 255, 0)
_BLUE = (0, 0, 255)


@pytest.fixture
def generator():
    """Generator with explicit size and a short timeout.

    Yields:
        ThumbnailGenerator instance.
    """
    thumbnail_generator = ThumbnailGenerator(size=412, timeout=5)
    yield thumbnail_generator
    thumbnail_generator.shutdown()


def striped(width: int, height: int, horizontal: bool) -> bytes:
    """Encode an image split in three equal red/green/blue stripes."""
    image = Image.new('RGB', (width, height))
    colors = (_RED, _GREEN, _BLUE)
    if horizontal:
        stripe = width // 3
        for index, color in enumerate(colors):
            image.paste(color, (index * stripe, 0, (index + 1) * stripe, height))
    else:
        stripe = height // 3
        for index, color in enumerate(colors):
            image.paste(color, (0, index * stripe, width, (index + 1) * stripe))
    output = BytesIO()
    image.save(output, format='PNG')
    return output.getvalue()


def is_green(pixel: tuple[int, int, int]) -> bool:
    """Tolerant check for green after JPEG compression."""
    red, green, blue = pixel
    return green > 200 and red < 60 and blue < 60


def open_rgb(content: bytes) -> Image.Image:
    """Decode thumbnail bytes."""
    image = Image.open(BytesIO(content))
    image.load()
    return image.convert('RGB')


def test_landscape_is_center_cropped():
    """Test a 3:1 image keeps only its middle third."""
    thumbnail = open_rgb(render_thumbnail(striped(1200, 400, True), 412))

    assert thumbnail.size == (412, 412)
    for point in ((5, 5), (406, 5), (206, 206), (5, 406), (406, 406)):
        assert is_green(thumbnail.getpixel(point))


def test_portrait_is_center_cropped():
    """Test a 1:3 image keeps only its middle third."""
    thumbnail = open_rgb(render_thumbnail(striped(400, 1200, False), 412))

    assert thumbnail.size == (412, 412)
    for point in ((5, 5), (406, 5), (206, 206), (5, 406), (406, 406)):
        assert is_green(thumbnail.getpixel(point))


def test_small_image_is_scaled_up(make_image):
    """Test images smaller than the box still cover it."""
    thumbnail = open_rgb(render_thumbnail(make_image(width=50, height=80), 412))

    assert thumbnail.size == (412, 412)


def test_transparent_png_is_flattened():
    """Test RGBA input encodes as a JPEG."""
    output = BytesIO()
    Image.new('RGBA', (300, 300), (0, 255, 0, 128)).save(output, format='PNG')

    content = render_thumbnail(output.getvalue(), 412)

    with Image.open(BytesIO(content)) as thumbnail:
        assert thumbnail.format == 'JPEG'


def test_render_is_deterministic(image_bytes):
    """Test the same original always yields the same bytes."""
    assert render_thumbnail(image_bytes, 412) == render_thumbnail(
        image_bytes,
        412,
    )


def test_undecodable_bytes():
    """Test garbage input raises GeneratorFailureError."""
    with pytest.raises(GeneratorFailureError):
        render_thumbnail(b'definitely not an image', 412)


def test_size_from_settings(settings):
    """Test MEDIA_THUMBNAIL_SIZE is honoured."""
    settings.MEDIA_THUMBNAIL_SIZE = 128

    assert get_thumbnail_size() == 128


class TestThumbnailGenerator:
    """Tests for ThumbnailGenerator.generate."""

    def test_generate_image(self, generator, image_bytes):
        """Test images produce a square JPEG."""
        content = generator.generate('u1', 'obj', image_bytes, MediaKind.IMAGE)

        with Image.open(BytesIO(content)) as thumbnail:
            assert thumbnail.size == (412, 412)

    def test_generate_video_is_skipped(self, generator, video_bytes):
        """Test videos get no thumbnail."""
        assert generator.generate(
            'u1',
            'obj',
            video_bytes,
            MediaKind.VIDEO,
        ) is None

    def test_generate_timeout(self, image_bytes, monkeypatch):
        """Test a slow render is abandoned after the timeout."""
        def slow_render(content, size):
            time.sleep(1)
            return b''

        monkeypatch.setattr(thumbnails, 'render_thumbnail', slow_render)
        slow_generator = ThumbnailGenerator(size=412, timeout=0.05)

        try:
            with pytest.raises(GeneratorFailureError, match='timed out'):
                slow_generator.generate(
                    'u1',
                    'obj',
                    image_bytes,
                    MediaKind.IMAGE,
                )
        finally:
            slow_generator.shutdown()

    def test_generate_decode_failure(self, generator):
        """Test decode errors propagate as GeneratorFailureError."""
        with pytest.raises(GeneratorFailureError):
            generator.generate('u1', 'obj', b'garbage', MediaKind.IMAGE)
