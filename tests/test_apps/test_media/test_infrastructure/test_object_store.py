"""Tests for the namespaced object store."""

from datetime import timedelta

import pytest
from django.conf import settings
from django.core.files.storage import storages
from django.utils import timezone

from server.apps.media.exceptions import ObjectMissingError
from server.apps.media.infrastructure.object_store import (
    ObjectStore,
    namespace_for,
)
from server.apps.media.models import MediaState

_FILENAME = f'{"a" * 32}.jpg'
_OBJECT_ID = 'a' * 32


@pytest.fixture
def store(media_root):
    """Object store rooted at the temporary media root."""
    return ObjectStore(storages.create_storage(settings.STORAGES['default']))


def test_namespace_for():
    """Test states map to their namespaces."""
    assert namespace_for(MediaState.ACTIVE) == 'uploads'
    assert namespace_for(MediaState.BINNED) == 'bin'


class TestOriginals:
    """Tests for original byte operations."""

    def test_put_creates_user_directory(self, store, media_root):
        """Test the first write for a user creates its directory."""
        name = store.put('u1', _FILENAME, b'payload')

        assert name == f'uploads/originals/u1/{_FILENAME}'
        path = media_root / 'uploads' / 'originals' / 'u1' / _FILENAME
        assert path.read_bytes() == b'payload'

    def test_move_to_bin_and_back(self, store):
        """Test an original round-trips between namespaces."""
        store.put('u1', _FILENAME, b'payload')

        store.move_to_bin('u1', _FILENAME)

        assert not store.exists('uploads', 'u1', _FILENAME)
        assert store.exists('bin', 'u1', _FILENAME)

        store.move_to_active('u1', _FILENAME)

        assert store.exists('uploads', 'u1', _FILENAME)
        assert not store.exists('bin', 'u1', _FILENAME)

    def test_move_missing_source(self, store):
        """Test moving an absent original."""
        with pytest.raises(ObjectMissingError):
            store.move_to_bin('u1', _FILENAME)

    def test_purge_only_from_bin(self, store):
        """Test purge refuses originals outside the bin."""
        store.put('u1', _FILENAME, b'payload')

        with pytest.raises(ObjectMissingError):
            store.purge('u1', _FILENAME)

        store.move_to_bin('u1', _FILENAME)
        store.purge('u1', _FILENAME)

        assert not store.exists('bin', 'u1', _FILENAME)

    def test_read(self, store):
        """Test reading an original back."""
        store.put('u1', _FILENAME, b'payload')

        with store.read('uploads', 'u1', _FILENAME) as handle:
            assert handle.read() == b'payload'

    def test_read_missing(self, store):
        """Test reading an absent original."""
        with pytest.raises(ObjectMissingError):
            store.read('uploads', 'u1', _FILENAME)

    def test_discard_tolerates_absence(self, store):
        """Test discard reports whether something was deleted."""
        store.put('u1', _FILENAME, b'payload')

        assert store.discard('uploads', 'u1', _FILENAME)
        assert not store.discard('uploads', 'u1', _FILENAME)

    def test_iter_originals(self, store):
        """Test listing originals across users."""
        store.put('u1', _FILENAME, b'one')
        store.put('u2', f'{"b" * 32}.mp4', b'two')
        store.move_to_bin('u2', f'{"b" * 32}.mp4')

        assert list(store.iter_originals('uploads')) == [('u1', _FILENAME)]
        assert list(store.iter_originals('bin')) == [('u2', f'{"b" * 32}.mp4')]

    def test_modified_time(self, store):
        """Test the write time of an original is timezone aware."""
        store.put('u1', _FILENAME, b'payload')

        modified_at = store.modified_time('uploads', 'u1', _FILENAME)

        assert timezone.is_aware(modified_at)
        assert timezone.now() - modified_at < timedelta(minutes=1)

    def test_modified_time_missing(self, store):
        """Test stat of an absent original."""
        with pytest.raises(ObjectMissingError):
            store.modified_time('bin', 'u1', _FILENAME)


class TestThumbnails:
    """Tests for thumbnail byte operations."""

    def test_put_thumbnail_replaces(self, store):
        """Test a second write replaces the first."""
        store.put_thumbnail('uploads', 'u1', _OBJECT_ID, b'first')
        name = store.put_thumbnail('uploads', 'u1', _OBJECT_ID, b'second')

        assert name == f'uploads/thumbs/u1/{_OBJECT_ID}.jpg'
        with store.read_thumbnail('uploads', 'u1', _OBJECT_ID) as handle:
            assert handle.read() == b'second'

    def test_move_thumbnail(self, store):
        """Test moving reports whether a thumbnail existed."""
        assert not store.move_thumbnail('u1', _OBJECT_ID, 'uploads', 'bin')

        store.put_thumbnail('uploads', 'u1', _OBJECT_ID, b'thumb')

        assert store.move_thumbnail('u1', _OBJECT_ID, 'uploads', 'bin')
        assert store.thumbnail_exists('bin', 'u1', _OBJECT_ID)
        assert not store.thumbnail_exists('uploads', 'u1', _OBJECT_ID)

    def test_delete_thumbnail(self, store):
        """Test deletion tolerates absence."""
        store.put_thumbnail('bin', 'u1', _OBJECT_ID, b'thumb')

        assert store.delete_thumbnail('bin', 'u1', _OBJECT_ID)
        assert not store.delete_thumbnail('bin', 'u1', _OBJECT_ID)

    def test_read_missing_thumbnail(self, store):
        """Test reading an absent thumbnail."""
        with pytest.raises(ObjectMissingError):
            store.read_thumbnail('uploads', 'u1', _OBJECT_ID)

    def test_iter_thumbnails(self, store):
        """Test listing thumbnails yields object ids."""
        store.put_thumbnail('uploads', 'u1', _OBJECT_ID, b'thumb')

        assert list(store.iter_thumbnails('uploads')) == [('u1', _OBJECT_ID)]
        assert list(store.iter_thumbnails('bin')) == []

    def test_thumbnail_modified_time(self, store):
        """Test stat of present and absent thumbnails."""
        store.put_thumbnail('uploads', 'u1', _OBJECT_ID, b'thumb')

        modified_at = store.thumbnail_modified_time('uploads', 'u1', _OBJECT_ID)

        assert timezone.is_aware(modified_at)
        with pytest.raises(ObjectMissingError):
            store.thumbnail_modified_time('bin', 'u1', _OBJECT_ID)
