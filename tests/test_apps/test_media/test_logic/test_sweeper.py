"""Tests for the retention sweeper."""

from datetime import UTC, datetime, timedelta

import pytest
from django.db import DatabaseError

from server.apps.media.exceptions import ConflictError, StoreFailureError
from server.apps.media.logic.sweeper import RetentionSweeper, get_retention
from server.apps.media.models import MediaRecord, MediaState

_DELETED_AT = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
_RETENTION = timedelta(days=7)
_FAR_FUTURE = datetime(2100, 1, 1, tzinfo=UTC)


@pytest.fixture
def binned(manager, image_bytes):
    """Factory for objects binned at a fixed time.

    Returns:
        Callable binning a fresh upload and returning its object id.
    """
    def factory(user_id: str = 'u1', deleted_at: datetime = _DELETED_AT) -> str:
        media = manager.ingest(user_id, 'a.jpg', image_bytes)
        manager.soft_delete(user_id, media.object_id)
        MediaRecord.objects.filter(
            user_id=user_id,
            object_id=media.object_id,
        ).update(deleted_at=deleted_at)
        return media.object_id

    return factory


@pytest.fixture
def sweeper(manager):
    """Sweeper with a seven day retention."""
    return RetentionSweeper(manager, retention=_RETENTION)


def test_retention_from_settings(settings):
    """Test retention follows MEDIA_RETENTION_DAYS."""
    settings.MEDIA_RETENTION_DAYS = 3

    assert get_retention() == timedelta(days=3)


def test_explicit_zero_overrides_settings(manager, settings):
    """Test zero batch size and interval are kept rather than defaulted."""
    settings.MEDIA_SWEEP_BATCH_SIZE = 50
    settings.MEDIA_SWEEP_INTERVAL = 60

    configured = RetentionSweeper(manager, batch_size=0, interval=0)

    assert configured.batch_size == 0
    assert configured.interval == 0


@pytest.mark.django_db
class TestTick:
    """Tests for RetentionSweeper.tick."""

    def test_purges_after_retention(self, sweeper, binned, stored_files):
        """Test an object just past the retention is purged."""
        object_id = binned()

        result = sweeper.tick(
            now=_DELETED_AT + _RETENTION + timedelta(milliseconds=1),
        )

        assert [media.object_id for media in result.purged] == [object_id]
        assert MediaRecord.objects.count() == 0
        assert stored_files() == []

    def test_keeps_objects_within_retention(self, sweeper, binned):
        """Test an object binned six days ago is untouched."""
        object_id = binned()

        result = sweeper.tick(now=_DELETED_AT + timedelta(days=6))

        assert result.purged == []
        record = MediaRecord.objects.get(object_id=object_id)
        assert record.state == MediaState.BINNED

    def test_ignores_restored_objects(self, manager, sweeper, binned):
        """Test an object restored before expiry survives the sweep."""
        object_id = binned()
        manager.restore('u1', object_id)

        result = sweeper.tick(now=_DELETED_AT + timedelta(days=8))

        assert result.purged == []
        assert manager.get('u1', object_id).state == MediaState.ACTIVE

    def test_ignores_active_objects(self, manager, sweeper, image_bytes):
        """Test Active objects are never candidates."""
        manager.ingest('u1', 'a.jpg', image_bytes)

        result = sweeper.tick(now=_FAR_FUTURE)

        assert result.purged == []
        assert len(manager.list_active('u1')) == 1

    def test_failure_does_not_stop_sweep(
        self,
        manager,
        sweeper,
        binned,
        monkeypatch,
    ):
        """Test one failing purge is logged and the rest proceed."""
        broken_id = binned(deleted_at=_DELETED_AT)
        healthy_id = binned(deleted_at=_DELETED_AT + timedelta(minutes=1))
        real_purge = manager.purge

        def flaky_purge(user_id, object_id):
            if object_id == broken_id:
                raise StoreFailureError('permission denied')
            real_purge(user_id, object_id)

        monkeypatch.setattr(manager, 'purge', flaky_purge)

        result = sweeper.tick(now=_DELETED_AT + timedelta(days=30))

        assert [media.object_id for media in result.failed] == [broken_id]
        assert [media.object_id for media in result.purged] == [healthy_id]
        assert MediaRecord.objects.filter(object_id=broken_id).exists()

    def test_conflict_is_skipped(self, manager, sweeper, binned, monkeypatch):
        """Test a lost race with a restore is not counted as a failure."""
        object_id = binned()

        def racing_purge(user_id, object_id):
            raise ConflictError(user_id, object_id)

        monkeypatch.setattr(manager, 'purge', racing_purge)

        result = sweeper.tick(now=_DELETED_AT + timedelta(days=30))

        assert [media.object_id for media in result.skipped] == [object_id]
        assert result.failed == []

    def test_batch_size_limits_tick(self, manager, binned):
        """Test at most batch_size objects are purged per tick."""
        for offset in range(3):
            binned(deleted_at=_DELETED_AT + timedelta(minutes=offset))
        limited = RetentionSweeper(manager, retention=_RETENTION, batch_size=2)

        result = limited.tick(now=_DELETED_AT + timedelta(days=30))

        assert len(result.purged) == 2
        assert MediaRecord.objects.count() == 1

    def test_stop_interrupts_tick(self, sweeper, binned):
        """Test a stopped sweeper leaves remaining objects alone."""
        binned()
        sweeper.stop()

        result = sweeper.tick(now=_DELETED_AT + timedelta(days=30))

        assert result.interrupted
        assert result.purged == []
        assert MediaRecord.objects.count() == 1

    def test_listing_failure_does_not_raise(
        self,
        manager,
        sweeper,
        monkeypatch,
    ):
        """Test an unavailable index ends the tick quietly."""
        def failing_list(cutoff, limit):
            raise DatabaseError('database is locked')

        monkeypatch.setattr(manager.index, 'list_expired', failing_list)

        result = sweeper.tick()

        assert result.purged == []
        assert result.failed == []


@pytest.mark.django_db
class TestExpired:
    """Tests for RetentionSweeper.expired."""

    def test_expired_oldest_first(self, sweeper, binned):
        """Test candidates are ordered by deletion time."""
        newer = binned(deleted_at=_DELETED_AT + timedelta(hours=1))
        older = binned(deleted_at=_DELETED_AT)

        candidates = sweeper.expired(now=_DELETED_AT + timedelta(days=10))

        assert [media.object_id for media in candidates] == [older, newer]


@pytest.mark.django_db
def test_run_until_stopped(sweeper, monkeypatch):
    """Test run returns once stop is called."""
    ticks = []

    def stopping_tick(now=None):
        ticks.append(now)
        sweeper.stop()

    monkeypatch.setattr(sweeper, 'tick', stopping_tick)

    sweeper.run()

    assert ticks == [None]
