"""Background reconciliation: retention purge, retries and orphans.

Every sweep takes the current time and the storage backend as
arguments, so they can be driven deterministically. ``Sweeper`` runs
them together, once or on a fixed cadence.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Final, final

from django.conf import settings
from django.core.files.storage import default_storage
from django.utils import timezone

from server.apps.drive.exceptions import NodeNotFoundError
from server.apps.drive.logic.trash_operations import (
    delete_queued_object,
    purge,
)
from server.apps.drive.logic.upload_operations import (
    expire_stale_tokens,
    get_token_ttl,
)
from server.apps.drive.models import (
    Node,
    PendingObjectDeletion,
    UploadToken,
    UploadTokenState,
)

if TYPE_CHECKING:
    from server.apps.drive.infrastructure.storage import FileStorage

# Keys looked up against the database per query in the orphan sweep
_ORPHAN_LOOKUP_CHUNK: Final = 500

Clock = Callable[[], datetime]

logger = logging.getLogger(__name__)


@final
@dataclass(slots=True)
class SweepReport:
    """Counters of a single sweep cycle."""

    purged_nodes: int = 0
    failed_nodes: int = 0
    deleted_objects: int = 0
    failed_objects: int = 0
    expired_tokens: int = 0
    orphans_deleted: int = 0
    errors: list[str] = field(default_factory=list)


def _get_storage() -> 'FileStorage':
    """Get the configured default storage backend.

    Returns:
        FileStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]


def get_retention() -> timedelta:
    """Get how long nodes stay in trash before the sweep purges them.

    Returns:
        Retention window from settings, 30 days by default.
    """
    return timedelta(days=settings.DRIVE_TRASH_RETENTION_DAYS)


def purge_expired_trash(  # noqa: WPS210
    now: datetime,
    storage: 'FileStorage',
    retention: timedelta | None = None,
    batch_size: int | None = None,
) -> SweepReport:
    """Purge nodes that have been in trash longer than the retention.

    Oldest first. A node that fails is logged and left for the next
    cycle; it never stops the sweep.

    Args:
        now: Current time.
        storage: Storage backend.
        retention: Retention window, settings value if omitted.
        batch_size: Max nodes per cycle, settings value if omitted.

    Returns:
        SweepReport with purge counters.
    """
    retention = retention or get_retention()
    batch_size = batch_size or settings.DRIVE_SWEEP_BATCH_SIZE
    cutoff = now - retention
    report = SweepReport()

    candidate_ids = list(
        Node.objects.filter(
            is_trashed=True,
            trashed_at__lte=cutoff,
        ).order_by('trashed_at').values_list('pk', flat=True)[:batch_size],
    )
    purged: set[object] = set()

    for node_id in candidate_ids:
        if node_id in purged:
            # Already removed together with a trashed ancestor
            continue
        try:
            purge_report = purge(
                node_id,
                storage=storage,
                trashed_before=cutoff,
            )
        except NodeNotFoundError:
            logger.debug('Trash node already purged: %s', node_id)
            continue
        except Exception as exc:
            logger.exception('Failed to purge node from trash: %s', node_id)
            report.failed_nodes += 1
            report.errors.append(f'{node_id}: {exc}')
            continue

        purged.update(purge_report.purged_ids)
        report.purged_nodes += len(purge_report.purged_ids)
        report.deleted_objects += len(purge_report.deleted_keys)
        report.failed_objects += len(purge_report.failed_keys)

    logger.info(
        'Retention sweep: %d nodes purged, %d failed (cutoff %s)',
        report.purged_nodes,
        report.failed_nodes,
        cutoff.isoformat(),
    )
    return report


def retry_pending_deletions(
    now: datetime,
    storage: 'FileStorage',
    batch_size: int | None = None,
) -> SweepReport:
    """Retry storage deletes left over by earlier purges.

    Args:
        now: Current time.
        storage: Storage backend.
        batch_size: Max queue entries per cycle, settings value if omitted.

    Returns:
        SweepReport with object counters.
    """
    batch_size = batch_size or settings.DRIVE_SWEEP_BATCH_SIZE
    report = SweepReport()

    pending_deletions = PendingObjectDeletion.objects.order_by(
        'last_attempt_at',
        'created_at',
    )[:batch_size]
    for pending in list(pending_deletions):
        if delete_queued_object(pending, storage, now=now):
            report.deleted_objects += 1
        else:
            report.failed_objects += 1

    if report.deleted_objects or report.failed_objects:
        logger.info(
            'Deletion retry sweep: %d deleted, %d still failing',
            report.deleted_objects,
            report.failed_objects,
        )
    return report


def _find_orphans(keys: list[str]) -> list[str]:
    """Return the keys that neither a node nor a live token references."""
    registered = set(
        Node.objects.filter(storage_key__in=keys).values_list(
            'storage_key',
            flat=True,
        ),
    )
    reserved = set(
        UploadToken.objects.filter(
            storage_key__in=keys,
            state__in=(UploadTokenState.ISSUED, UploadTokenState.CONSUMED),
        ).values_list('storage_key', flat=True),
    )
    return [key for key in keys if key not in registered | reserved]


def sweep_orphaned_objects(
    now: datetime,
    storage: 'FileStorage',
    grace: timedelta | None = None,
) -> SweepReport:
    """Delete stored objects that never got registered.

    Objects younger than the grace period (the token TTL by default)
    may still be waiting for registration and are left alone.

    Args:
        now: Current time.
        storage: Storage backend.
        grace: Minimum object age, upload token TTL if omitted.

    Returns:
        SweepReport with orphan counters.
    """
    grace = grace or get_token_ttl()
    cutoff = now - grace
    report = SweepReport()

    candidates = [
        stored.key
        for stored in storage.iter_objects()
        if stored.last_modified <= cutoff
    ]

    for start in range(0, len(candidates), _ORPHAN_LOOKUP_CHUNK):
        chunk = candidates[start:start + _ORPHAN_LOOKUP_CHUNK]
        for key in _find_orphans(chunk):
            try:
                storage.delete_object(key)
            except Exception as exc:
                # Orphans are retried on the next cycle
                logger.exception('Failed to delete orphaned object: %s', key)
                report.failed_objects += 1
                report.errors.append(f'{key}: {exc}')
                continue
            report.orphans_deleted += 1

    logger.info(
        'Orphan sweep: %d deleted, %d failed',
        report.orphans_deleted,
        report.failed_objects,
    )
    return report


@final
class Sweeper:
    """Periodic runner for every reconciliation sweep."""

    def __init__(
        self,
        storage: 'FileStorage | None' = None,
        clock: Clock = timezone.now,
    ) -> None:
        """Initialize the sweeper.

        Args:
            storage: Storage backend, the default storage if omitted.
            clock: Callable returning the current time.
        """
        self._storage = storage or _get_storage()
        self._clock = clock

    def run_once(self) -> SweepReport:
        """Run every sweep once.

        Returns:
            Combined SweepReport of the cycle.
        """
        now = self._clock()
        report = SweepReport()

        report.expired_tokens = expire_stale_tokens(now)

        trash_report = purge_expired_trash(now, self._storage)
        report.purged_nodes = trash_report.purged_nodes
        report.failed_nodes = trash_report.failed_nodes
        report.errors.extend(trash_report.errors)

        retry_report = retry_pending_deletions(now, self._storage)
        orphan_report = sweep_orphaned_objects(now, self._storage)

        report.deleted_objects = (
            trash_report.deleted_objects + retry_report.deleted_objects
        )
        report.failed_objects = (
            trash_report.failed_objects
            + retry_report.failed_objects
            + orphan_report.failed_objects
        )
        report.orphans_deleted = orphan_report.orphans_deleted
        report.errors.extend(orphan_report.errors)
        return report

    def run_forever(
        self,
        interval: float | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        """Run sweeps on a fixed cadence until the event is set.

        A failing cycle is logged and the loop carries on.

        Args:
            interval: Seconds between cycles, settings value if omitted.
            stop_event: Event that ends the loop when set.
        """
        interval = interval or settings.DRIVE_SWEEP_INTERVAL
        stop_event = stop_event or threading.Event()

        logger.info('Sweeper started, interval %s seconds', interval)
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception('Sweep cycle failed')
            stop_event.wait(interval)
        logger.info('Sweeper stopped')
