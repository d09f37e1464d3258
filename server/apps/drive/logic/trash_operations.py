"""Business logic for trash (soft delete), restore and purge."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Final, final
from uuid import UUID

from django.conf import settings
from django.core.files.storage import default_storage
from django.db import IntegrityError, transaction
from django.db.models import F, Q, QuerySet
from django.utils import timezone

from server.apps.drive.exceptions import (
    ConflictError,
    NodeNotFoundError,
    TreeIntegrityError,
)
from server.apps.drive.logic.quota_operations import decrement_usage
from server.apps.drive.logic.tree_operations import (
    NodeId,
    collect_subtree,
    ensure_name_available,
    get_locked_node,
)
from server.apps.drive.models import Node, PendingObjectDeletion

if TYPE_CHECKING:
    from server.apps.drive.infrastructure.storage import FileStorage

# User type for Django's dynamic user model
_User = Any

_LAST_ERROR_MAX_LENGTH: Final = 2000

logger = logging.getLogger(__name__)


@final
@dataclass(slots=True)
class PurgeReport:
    """Outcome of purging one or more subtrees.

    Metadata removal is all-or-nothing per subtree; storage deletes are
    reported per key and failed ones stay queued for the retry sweep.
    """

    purged_ids: list[UUID] = field(default_factory=list)
    deleted_keys: list[str] = field(default_factory=list)
    failed_keys: list[str] = field(default_factory=list)
    failed_node_ids: list[UUID] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether every node and every object was removed."""
        return not self.failed_keys and not self.failed_node_ids

    def merge(self, other: 'PurgeReport') -> None:
        """Fold another report into this one."""
        self.purged_ids.extend(other.purged_ids)
        self.deleted_keys.extend(other.deleted_keys)
        self.failed_keys.extend(other.failed_keys)
        self.failed_node_ids.extend(other.failed_node_ids)


def _get_storage() -> 'FileStorage':
    """Get the configured default storage backend.

    Returns:
        FileStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]


def trash(node_id: NodeId, now: datetime | None = None) -> Node:
    """Move a node and its whole subtree to trash.

    Every live descendant gets the same ``trashed_at`` as the node, which
    is how restore later finds what this call trashed. Quota is NOT
    decremented - trashed files count toward quota.

    Args:
        node_id: Node to trash.
        now: Current time, injectable for tests.

    Returns:
        Trashed node; unchanged if it already was in trash.

    Raises:
        NodeNotFoundError: If the node does not exist.
    """
    now = now or timezone.now()

    with transaction.atomic():
        node = get_locked_node(node_id)
        if node.is_trashed:
            logger.debug('Node already in trash: %s', node.pk)
            return node

        subtree_ids = [
            member.pk
            for member in collect_subtree(node)
            if not member.is_trashed
        ]
        Node.objects.filter(
            pk__in=subtree_ids,
            is_trashed=False,
        ).update(
            is_trashed=True,
            trashed_at=now,
            updated_at=now,
        )

    node.refresh_from_db()
    logger.info(
        'Node moved to trash: %s (ID: %s, %d nodes)',
        node.name,
        node.pk,
        len(subtree_ids),
    )
    return node


def _collect_trash_batch(node: Node) -> list[UUID]:
    """Collect the node and the descendants trashed together with it.

    Descendants that were trashed on their own before (a different
    ``trashed_at``) are skipped along with everything under them.
    """
    batch = [node.pk]
    frontier = [node.pk]
    max_depth = settings.DRIVE_MAX_TREE_DEPTH
    depth = 0

    while frontier:
        depth += 1
        if depth > max_depth:
            raise TreeIntegrityError(
                f'Subtree deeper than {max_depth} levels at node {node.pk}',
            )
        frontier = list(
            Node.objects.filter(
                parent__in=frontier,
                is_trashed=True,
                trashed_at=node.trashed_at,
            ).values_list('pk', flat=True),
        )
        batch.extend(frontier)

    return batch


def restore(node_id: NodeId, now: datetime | None = None) -> Node:
    """Restore a node and its subtree from trash.

    Only the top of a trashed subtree can be restored. If its parent
    folder no longer exists the node goes back to the owner root.

    Args:
        node_id: Trashed node to restore.
        now: Current time, injectable for tests.

    Returns:
        Restored node.

    Raises:
        NodeNotFoundError: If the node does not exist or is not in trash.
        ConflictError: If the parent is still in trash, or a live sibling
            took the node's name meanwhile.
    """
    now = now or timezone.now()

    with transaction.atomic():
        node = get_locked_node(node_id)
        if not node.is_trashed:
            raise NodeNotFoundError(node_id)

        parent: Node | None = None
        reparent_to_root = False
        if node.parent_id is not None:
            parent = Node.objects.filter(pk=node.parent_id).first()
            if parent is None:
                logger.warning(
                    'Parent of %s is gone, restoring to root',
                    node.pk,
                )
                reparent_to_root = True
            elif parent.is_trashed:
                raise ConflictError(
                    'Parent folder is in trash, restore it first',
                )

        ensure_name_available(
            node.owner,
            parent,
            node.name,
            exclude_id=node.pk,
        )

        batch_ids = _collect_trash_batch(node)
        try:
            with transaction.atomic():
                Node.objects.filter(pk__in=batch_ids).update(
                    is_trashed=False,
                    trashed_at=None,
                    updated_at=now,
                )
                if reparent_to_root:
                    Node.objects.filter(pk=node.pk).update(parent=None)
        except IntegrityError as error:
            raise ConflictError(
                f'Name already exists in folder: {node.name}',
            ) from error

    node.refresh_from_db()
    logger.info(
        'Node restored: %s (ID: %s, %d nodes)',
        node.name,
        node.pk,
        len(batch_ids),
    )
    return node


def delete_queued_object(
    pending: PendingObjectDeletion,
    storage: 'FileStorage',
    now: datetime | None = None,
) -> bool:
    """Delete a queued object from storage.

    On success the queue entry is removed; on failure the attempt is
    recorded and the entry stays for the retry sweep.

    Args:
        pending: Queue entry to process.
        storage: Storage backend.
        now: Current time, injectable for tests.

    Returns:
        True if the object was deleted.
    """
    now = now or timezone.now()
    try:
        storage.delete_object(pending.storage_key)
    except Exception as exc:
        # Log but don't raise - the metadata is already gone
        # The retry sweep picks the key up again
        logger.exception(
            'Failed to delete object, queued for retry: %s',
            pending.storage_key,
        )
        PendingObjectDeletion.objects.filter(pk=pending.pk).update(
            attempts=F('attempts') + 1,
            last_error=str(exc)[:_LAST_ERROR_MAX_LENGTH],
            last_attempt_at=now,
        )
        return False

    pending.delete()
    return True


def _passes_trash_guard(
    node: Node,
    only_trashed: bool,  # noqa: FBT001
    trashed_before: datetime | None,
) -> bool:
    if not only_trashed and trashed_before is None:
        return True
    if not node.is_trashed:
        return False
    return trashed_before is None or node.trashed_at <= trashed_before


def purge(
    node_id: NodeId,
    storage: 'FileStorage | None' = None,
    *,
    only_trashed: bool = False,
    trashed_before: datetime | None = None,
) -> PurgeReport:
    """Permanently delete a node and its whole subtree.

    Metadata rows go in one transaction that also queues every backing
    object for deletion and gives the bytes back to the quota. Objects
    are deleted from storage after commit; failures are reported and
    left in the queue.

    The trash guards are checked under the owner lock, so a node
    restored after the caller picked it is skipped, not purged.

    Args:
        node_id: Node to purge.
        storage: Storage backend, the default storage if omitted.
        only_trashed: Skip the node unless it is in trash.
        trashed_before: Skip the node unless it went to trash at or
            before this time. Implies ``only_trashed``.

    Returns:
        PurgeReport for the subtree, empty if a guard skipped it.

    Raises:
        NodeNotFoundError: If the node does not exist.
    """
    storage = storage or _get_storage()

    with transaction.atomic():
        node = get_locked_node(node_id)
        if not _passes_trash_guard(node, only_trashed, trashed_before):
            logger.info(
                'Skipping purge of node no longer in trash: %s',
                node.pk,
            )
            return PurgeReport()

        subtree = collect_subtree(node)
        file_nodes = [member for member in subtree if member.is_file]
        storage_keys = [member.storage_key for member in file_nodes]
        freed_bytes = sum(member.size_bytes for member in file_nodes)

        PendingObjectDeletion.objects.bulk_create(
            [PendingObjectDeletion(storage_key=key) for key in storage_keys],
            ignore_conflicts=True,
        )
        Node.objects.filter(pk__in=[member.pk for member in subtree]).delete()
        decrement_usage(node.owner, freed_bytes)

    report = PurgeReport(purged_ids=[member.pk for member in subtree])
    logger.info(
        'Node permanently deleted: %s (ID: %s, %d nodes, %d bytes)',
        node.name,
        node.pk,
        len(subtree),
        freed_bytes,
    )

    pending_deletions = PendingObjectDeletion.objects.filter(
        storage_key__in=storage_keys,
    )
    for pending in pending_deletions:
        if delete_queued_object(pending, storage):
            report.deleted_keys.append(pending.storage_key)
        else:
            report.failed_keys.append(pending.storage_key)

    return report


def list_trash(owner: _User) -> QuerySet[Node]:
    """List the tops of an owner's trashed subtrees.

    Args:
        owner: User whose trash to list.

    Returns:
        QuerySet of trashed nodes whose parent is live, newest first.
    """
    return Node.objects.filter(
        owner=owner,
        is_trashed=True,
    ).filter(
        Q(parent__isnull=True) | Q(parent__is_trashed=False),
    ).order_by('-trashed_at')


def empty_trash(
    owner: _User,
    storage: 'FileStorage | None' = None,
) -> PurgeReport:
    """Permanently delete everything in an owner's trash.

    A failure on one subtree is logged and reported; the remaining
    subtrees are still purged.

    Args:
        owner: User whose trash to empty.
        storage: Storage backend, the default storage if omitted.

    Returns:
        Combined PurgeReport.
    """
    storage = storage or _get_storage()
    report = PurgeReport()

    for node in list(list_trash(owner)):
        try:
            report.merge(
                purge(node.pk, storage=storage, only_trashed=True),
            )
        except NodeNotFoundError:
            logger.debug('Trash node already purged: %s', node.pk)
        except Exception:
            logger.exception('Failed to purge trash node: %s', node.pk)
            report.failed_node_ids.append(node.pk)

    logger.info(
        'Trash emptied for user %s: %d nodes deleted, %d failed',
        owner.username,
        len(report.purged_ids),
        len(report.failed_node_ids),
    )

    return report
