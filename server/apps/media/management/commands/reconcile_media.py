"""Management command to reconcile stored media against index records."""

from typing import Any, final, override

from django.core.management.base import BaseCommand

from server.apps.media.logic.lifecycle import LifecycleManager
from server.apps.media.logic.reconciliation import Reconciler


@final
class Command(BaseCommand):
    """Detect and repair divergence between media bytes and records."""

    help = 'Reconcile media files on disk with the metadata index'

    @override
    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report findings without repairing anything',
        )
        parser.add_argument(
            '--adopt',
            action='store_true',
            help='Record orphaned uploads as active media',
        )
        parser.add_argument(
            '--purge-orphans',
            action='store_true',
            help='Delete orphaned originals that were not adopted',
        )

    @override
    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the reconciliation.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        manager = LifecycleManager.from_settings()
        try:
            report = Reconciler(manager).run(
                adopt=options['adopt'],
                purge_orphans=options['purge_orphans'],
                dry_run=options['dry_run'],
            )
        finally:
            manager.close()

        for key in report.pending:
            self.stdout.write(f'Skipped recent file: {key}')
        for key in report.orphans:
            self.stdout.write(f'Orphaned original: {key}')
        for key in report.missing:
            self.stderr.write(f'Record without original: {key}')
        for key in report.relocated:
            self.stdout.write(f'Relocated record: {key}')
        for key in report.dangling_thumbnails:
            self.stdout.write(f'Dangling thumbnail: {key}')

        if report.clean:
            self.stdout.write(self.style.SUCCESS('Media store is consistent'))
        else:
            self.stdout.write(
                self.style.WARNING(
                    f'{len(report.orphans)} orphans '
                    f'({len(report.adopted)} adopted, '
                    f'{len(report.purged_orphans)} purged), '
                    f'{len(report.relocated)} relocated, '
                    f'{len(report.missing)} missing, '
                    f'{len(report.dangling_thumbnails)} dangling thumbnails',
                ),
            )
