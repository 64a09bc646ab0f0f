"""Reconciliation of stored bytes against index records.

Repairs the divergence left by a crash between a filesystem step and the
matching index write:

- originals with no record (orphans) are reported, and optionally
  adopted (uploads namespace only) or deleted; files younger than the
  grace period may belong to an ingest still running in another process
  and are left alone;
- records whose original sits in the other namespace are relocated,
  trusting the filesystem;
- records whose original is missing everywhere are reported;
- thumbnails without an original in the same namespace are deleted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Final

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from server.apps.media.exceptions import (
    MediaError,
    MediaNotFoundError,
    StoreFailureError,
)
from server.apps.media.infrastructure.object_store import (
    NAMESPACES,
    UPLOADS_NAMESPACE,
    namespace_for,
)
from server.apps.media.logic.lifecycle import LifecycleManager
from server.apps.media.models import MediaRecord

_DEFAULT_GRACE: Final = 600

logger = logging.getLogger(__name__)


def get_reconcile_grace() -> timedelta:
    """Get the minimum age of a file before it counts as an orphan.

    Must exceed the longest ingest: thumbnail timeout plus index write.

    Returns:
        Grace period from MEDIA_RECONCILE_GRACE or default of 600 seconds.
    """
    seconds = getattr(settings, 'MEDIA_RECONCILE_GRACE', _DEFAULT_GRACE)
    return timedelta(seconds=seconds)


@dataclass
class ReconciliationReport:
    """Findings and repairs of one reconciliation pass."""

    pending: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    adopted: list[str] = field(default_factory=list)
    purged_orphans: list[str] = field(default_factory=list)
    relocated: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    dangling_thumbnails: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        """True when nothing diverged."""
        return not any((
            self.orphans,
            self.relocated,
            self.missing,
            self.dangling_thumbnails,
        ))


class Reconciler:
    """Walks both namespaces and the index, repairing through the manager."""

    def __init__(
        self,
        manager: LifecycleManager,
        grace: timedelta | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            manager: Lifecycle manager that performs all writes.
            grace: Minimum file age for orphans; defaults to
                MEDIA_RECONCILE_GRACE.
        """
        self.manager = manager
        self.grace = get_reconcile_grace() if grace is None else grace

    def run(
        self,
        adopt: bool = False,
        purge_orphans: bool = False,
        dry_run: bool = False,
    ) -> ReconciliationReport:
        """Run one reconciliation pass.

        Args:
            adopt: Record uploads-namespace orphans as Active objects.
            purge_orphans: Delete orphans that were not adopted.
            dry_run: Only report; change nothing.

        Returns:
            ReconciliationReport of the pass.
        """
        report = ReconciliationReport()
        records = {
            (record.user_id, record.storage_filename): record
            for record in self.manager.index.all()
        }

        self._check_records(records, report, dry_run)
        self._check_orphans(records, report, adopt, purge_orphans, dry_run)
        self._check_thumbnails(report, dry_run)

        logger.info(
            'Reconciliation finished: %d orphans (%d adopted, %d purged), '
            '%d relocated, %d missing, %d dangling thumbnails, %d pending',
            len(report.orphans),
            len(report.adopted),
            len(report.purged_orphans),
            len(report.relocated),
            len(report.missing),
            len(report.dangling_thumbnails),
            len(report.pending),
        )
        return report

    def _check_records(
        self,
        records: dict[tuple[str, str], MediaRecord],
        report: ReconciliationReport,
        dry_run: bool,
    ) -> None:
        store = self.manager.store
        for (user_id, filename), record in records.items():
            key = f'{user_id}/{filename}'
            if store.exists(namespace_for(record.state), user_id, filename):
                continue

            if not any(
                store.exists(namespace, user_id, filename)
                for namespace in NAMESPACES
            ):
                logger.error(
                    'Record without original: %s (%s)',
                    key,
                    record.state,
                )
                report.missing.append(key)
                continue

            report.relocated.append(key)
            if dry_run:
                continue
            try:
                self.manager.relocate(user_id, record.object_id)
            except MediaError:
                logger.exception('Failed to relocate %s', key)

    def _check_orphans(  # noqa: WPS211
        self,
        records: dict[tuple[str, str], MediaRecord],
        report: ReconciliationReport,
        adopt: bool,
        purge_orphans: bool,
        dry_run: bool,
    ) -> None:
        store = self.manager.store
        now = timezone.now()
        for namespace in NAMESPACES:
            for user_id, filename in store.iter_originals(namespace):
                if (user_id, filename) in records:
                    continue
                key = f'{namespace}/{user_id}/{filename}'
                try:
                    modified_at = store.modified_time(
                        namespace,
                        user_id,
                        filename,
                    )
                except StoreFailureError as error:
                    logger.warning('Cannot inspect %s: %s', key, error)
                    continue
                if now - modified_at < self.grace:
                    logger.info('Unrecorded file within grace period: %s', key)
                    report.pending.append(key)
                    continue

                logger.warning('Orphaned original: %s', key)
                report.orphans.append(key)
                if dry_run:
                    continue

                if adopt and namespace == UPLOADS_NAMESPACE:
                    if self._adopt(user_id, filename, key, modified_at):
                        report.adopted.append(key)
                        continue

                if purge_orphans and self.manager.discard_orphan(
                    namespace,
                    user_id,
                    filename,
                ):
                    report.purged_orphans.append(key)

    def _check_thumbnails(
        self,
        report: ReconciliationReport,
        dry_run: bool,
    ) -> None:
        store = self.manager.store
        now = timezone.now()
        for namespace in NAMESPACES:
            for user_id, object_id in store.iter_thumbnails(namespace):
                if self._has_image_original(namespace, user_id, object_id):
                    continue
                key = f'{namespace}/{user_id}/{object_id}'
                try:
                    modified_at = store.thumbnail_modified_time(
                        namespace,
                        user_id,
                        object_id,
                    )
                except StoreFailureError as error:
                    logger.warning('Cannot inspect %s: %s', key, error)
                    continue
                if now - modified_at < self.grace:
                    # May belong to an ingest or restore still in progress
                    continue
                if dry_run:
                    logger.warning('Dangling thumbnail: %s', key)
                    report.dangling_thumbnails.append(key)
                elif self.manager.discard_dangling_thumbnail(
                    namespace,
                    user_id,
                    object_id,
                ):
                    report.dangling_thumbnails.append(key)

    def _has_image_original(
        self,
        namespace: str,
        user_id: str,
        object_id: str,
    ) -> bool:
        try:
            record = self.manager.index.get(user_id, object_id)
        except MediaNotFoundError:
            return False
        if not record.is_image:
            return False
        if namespace_for(record.state) != namespace:
            return False
        return self.manager.store.exists(
            namespace,
            user_id,
            record.storage_filename,
        )

    def _adopt(
        self,
        user_id: str,
        filename: str,
        key: str,
        created_at: datetime,
    ) -> bool:
        try:
            self.manager.adopt(user_id, filename, created_at)
        except (MediaError, ValidationError) as error:
            logger.warning('Cannot adopt %s: %s', key, error)
            return False
        return True
