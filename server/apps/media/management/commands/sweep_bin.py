"""Management command to purge bin contents past the retention window."""

import logging
import signal
from datetime import timedelta
from types import FrameType
from typing import Any, final, override

from django.core.management.base import BaseCommand

from server.apps.media.logic.lifecycle import LifecycleManager
from server.apps.media.logic.sweeper import (
    RetentionSweeper,
    get_retention,
    get_sweep_batch_size,
    get_sweep_interval,
)

logger = logging.getLogger(__name__)


@final
class Command(BaseCommand):
    """Permanently delete media that has been in the bin past retention."""

    help = 'Purge media binned longer than MEDIA_RETENTION_DAYS'

    @override
    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be purged without purging',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=None,
            help=f'Max objects per sweep (default: {get_sweep_batch_size()})',
        )
        parser.add_argument(
            '--retention-days',
            type=int,
            default=None,
            help=f'Bin retention (default: {get_retention().days} days)',
        )
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Keep sweeping on a timer until interrupted',
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=None,
            help=(
                'Seconds between sweeps with --loop '
                f'(default: {get_sweep_interval()})'
            ),
        )

    @override
    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the sweep command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        retention = None
        if options['retention_days'] is not None:
            retention = timedelta(days=options['retention_days'])

        manager = LifecycleManager.from_settings()
        sweeper = RetentionSweeper(
            manager,
            retention=retention,
            batch_size=options['batch_size'],
            interval=options['interval'],
        )

        try:
            if options['dry_run']:
                self._dry_run(sweeper)
            elif options['loop']:
                self._loop(sweeper)
            else:
                self._sweep_once(sweeper)
        finally:
            manager.close()

    def _dry_run(self, sweeper: RetentionSweeper) -> None:
        expired = sweeper.expired()
        for media in expired:
            self.stdout.write(
                f'Would purge: {media.user_id}/{media.object_id} '
                f'({media.kind}, deleted: {media.deleted_at})',
            )
        self.stdout.write(
            self.style.SUCCESS(f'Would purge {len(expired)} objects from bin'),
        )

    def _sweep_once(self, sweeper: RetentionSweeper) -> None:
        result = sweeper.tick()
        for media in result.failed:
            self.stderr.write(
                f'Failed to purge {media.user_id}/{media.object_id}',
            )
        self.stdout.write(
            self.style.SUCCESS(
                f'Purged {len(result.purged)} objects from bin, '
                f'{len(result.skipped)} skipped, {len(result.failed)} failed',
            ),
        )

    def _loop(self, sweeper: RetentionSweeper) -> None:
        def _shutdown(signum: int, frame: FrameType | None) -> None:
            logger.info('Received signal %d, stopping sweeper', signum)
            sweeper.stop()

        signal.signal(signal.SIGTERM, _shutdown)
        self.stdout.write(
            self.style.SUCCESS(
                f'Sweeping every {sweeper.interval}s '
                f'(retention: {sweeper.retention})',
            ),
        )
        try:
            sweeper.run()
        except KeyboardInterrupt:
            sweeper.stop()
            self.stdout.write(self.style.WARNING('\nShutting down...'))
        self.stdout.write(self.style.SUCCESS('Sweeper stopped'))
