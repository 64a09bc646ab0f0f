"""Tests for reconcile_media management command."""

import os
import time
from io import StringIO

import pytest
from django.core.management import call_command

from server.apps.media.models import MediaRecord, MediaState

_ORPHAN_ID = 'ab' * 16


@pytest.fixture
def fresh_orphan(media_root, image_bytes):
    """Original in uploads with no record, written just now.

    Returns:
        Path of the file.
    """
    path = media_root / 'uploads' / 'originals' / 'u1' / f'{_ORPHAN_ID}.jpg'
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(image_bytes)
    return path


@pytest.fixture
def orphan(fresh_orphan):
    """Original in uploads with no record, older than the grace period.

    Returns:
        Path of the orphaned file.
    """
    past = time.time() - 3600
    os.utime(fresh_orphan, (past, past))
    return fresh_orphan


@pytest.mark.django_db
class TestReconcileMediaCommand:
    """Tests for reconcile_media management command."""

    def test_consistent_store(self, manager, image_bytes):
        """Test a healthy store is reported as consistent."""
        manager.ingest('u1', 'photo.jpg', image_bytes)

        out = StringIO()
        call_command('reconcile_media', stdout=out)

        assert 'Media store is consistent' in out.getvalue()

    def test_reports_orphan(self, db, orphan):
        """Test orphans are listed and left alone by default."""
        out = StringIO()
        call_command('reconcile_media', stdout=out)

        output = out.getvalue()
        assert f'Orphaned original: uploads/u1/{_ORPHAN_ID}.jpg' in output
        assert '1 orphans (0 adopted, 0 purged)' in output
        assert orphan.exists()

    def test_adopt_orphan(self, db, orphan):
        """Test --adopt records the orphan as Active."""
        out = StringIO()
        call_command('reconcile_media', '--adopt', stdout=out)

        record = MediaRecord.objects.get(object_id=_ORPHAN_ID)
        assert record.state == MediaState.ACTIVE
        assert '1 orphans (1 adopted, 0 purged)' in out.getvalue()

    def test_purge_orphan(self, db, orphan):
        """Test --purge-orphans deletes the orphaned bytes."""
        out = StringIO()
        call_command('reconcile_media', '--purge-orphans', stdout=out)

        assert not orphan.exists()
        assert '1 orphans (0 adopted, 1 purged)' in out.getvalue()

    def test_dry_run(self, db, orphan):
        """Test --dry-run never repairs."""
        out = StringIO()
        call_command(
            'reconcile_media',
            '--dry-run',
            '--adopt',
            '--purge-orphans',
            stdout=out,
        )

        assert orphan.exists()
        assert not MediaRecord.objects.exists()

    def test_fresh_file_survives_purge(self, db, fresh_orphan):
        """Test a file younger than the grace period is never deleted."""
        out = StringIO()
        call_command(
            'reconcile_media',
            '--adopt',
            '--purge-orphans',
            stdout=out,
        )

        assert fresh_orphan.exists()
        assert not MediaRecord.objects.exists()
        output = out.getvalue()
        assert f'Skipped recent file: uploads/u1/{_ORPHAN_ID}.jpg' in output
        assert 'Media store is consistent' in output
