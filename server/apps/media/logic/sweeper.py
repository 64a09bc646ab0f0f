"""Retention sweeper: purges bin contents past the retention window."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Final

from django.conf import settings
from django.utils import timezone

from server.apps.media.exceptions import (
    ConflictError,
    InvalidStateError,
    MediaNotFoundError,
)
from server.apps.media.logic.lifecycle import LifecycleManager
from server.apps.media.models import MediaObject

_DEFAULT_RETENTION_DAYS: Final = 7
_DEFAULT_INTERVAL: Final = 3600
_DEFAULT_BATCH_SIZE: Final = 1000

logger = logging.getLogger(__name__)


def get_retention() -> timedelta:
    """Get how long an object may stay in the bin.

    Returns:
        Retention from MEDIA_RETENTION_DAYS or default of 7 days.
    """
    days = getattr(settings, 'MEDIA_RETENTION_DAYS', _DEFAULT_RETENTION_DAYS)
    return timedelta(days=days)


def get_sweep_interval() -> int:
    """Get seconds between sweeper ticks.

    Returns:
        Interval from settings or default of 3600 (1 hour).
    """
    return getattr(settings, 'MEDIA_SWEEP_INTERVAL', _DEFAULT_INTERVAL)


def get_sweep_batch_size() -> int:
    """Get max objects purged per tick.

    Returns:
        Batch size from settings or default of 1000.
    """
    return getattr(settings, 'MEDIA_SWEEP_BATCH_SIZE', _DEFAULT_BATCH_SIZE)


@dataclass
class SweepResult:
    """Outcome of one sweeper tick."""

    cutoff: datetime
    purged: list[MediaObject] = field(default_factory=list)
    skipped: list[MediaObject] = field(default_factory=list)
    failed: list[MediaObject] = field(default_factory=list)
    interrupted: bool = False


class RetentionSweeper:
    """Purges Binned objects whose ``deleted_at`` is past the retention.

    Every purge goes through the lifecycle manager. A tick never raises:
    per-object failures are logged and the sweep moves on.
    """

    def __init__(
        self,
        manager: LifecycleManager,
        retention: timedelta | None = None,
        batch_size: int | None = None,
        interval: float | None = None,
    ) -> None:
        """Initialize the sweeper.

        Args:
            manager: Lifecycle manager performing the purges.
            retention: Bin retention; defaults to MEDIA_RETENTION_DAYS.
            batch_size: Max purges per tick; defaults to settings.
            interval: Seconds between ticks in ``run``; defaults to settings.
        """
        self.manager = manager
        self.retention = get_retention() if retention is None else retention
        self.batch_size = (
            get_sweep_batch_size() if batch_size is None else batch_size
        )
        self.interval = get_sweep_interval() if interval is None else interval
        self._stop = threading.Event()

    def expired(self, now: datetime | None = None) -> list[MediaObject]:
        """List Binned objects eligible for purge.

        Args:
            now: Reference time; defaults to the current time.

        Returns:
            Objects deleted at least ``retention`` ago, oldest first.
        """
        cutoff = (now or timezone.now()) - self.retention
        return [
            record.as_media_object()
            for record in self.manager.index.list_expired(cutoff, self.batch_size)
        ]

    def tick(self, now: datetime | None = None) -> SweepResult:
        """Run one sweep.

        Stops early, between objects, when ``stop`` has been called.

        Args:
            now: Reference time; defaults to the current time.

        Returns:
            SweepResult with purged, skipped and failed objects.
        """
        now = now or timezone.now()
        result = SweepResult(cutoff=now - self.retention)

        try:
            candidates = self.expired(now)
        except Exception:
            logger.exception('Sweeper could not list expired bin entries')
            return result

        for media in candidates:
            if self._stop.is_set():
                result.interrupted = True
                logger.info('Sweep interrupted by shutdown')
                break
            self._purge_one(media, result)

        logger.info(
            'Sweep finished: %d purged, %d skipped, %d failed (cutoff %s)',
            len(result.purged),
            len(result.skipped),
            len(result.failed),
            result.cutoff.isoformat(),
        )
        return result

    def run(self) -> None:
        """Tick every ``interval`` seconds until ``stop`` is called."""
        logger.info(
            'Sweeper started: retention %s, interval %ss',
            self.retention,
            self.interval,
        )
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.interval)
        logger.info('Sweeper stopped')

    def stop(self) -> None:
        """Ask a running sweep to stop before its next object."""
        self._stop.set()

    def _purge_one(self, media: MediaObject, result: SweepResult) -> None:
        try:
            self.manager.purge(media.user_id, media.object_id)
        except (ConflictError, InvalidStateError, MediaNotFoundError) as error:
            # Lost a race, typically to a restore
            logger.info(
                'Skipped purge of %s/%s: %s',
                media.user_id,
                media.object_id,
                error,
            )
            result.skipped.append(media)
        except Exception:
            logger.exception(
                'Failed to purge %s/%s from bin',
                media.user_id,
                media.object_id,
            )
            result.failed.append(media)
        else:
            result.purged.append(media)
