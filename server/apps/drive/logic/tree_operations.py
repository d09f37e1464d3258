"""Business logic for the drive tree: folders, files and structure.

All structural mutations follow the same pattern: open a transaction,
lock the owner's quota row, re-read and re-validate everything the
mutation depends on, then write. The partial unique constraints on
``Node`` back up the name checks; a writer that still loses a race
gets ``ConflictError``.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, final
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import QuerySet

from server.apps.drive.exceptions import (
    ConflictError,
    NodeNotFoundError,
    OwnerMismatchError,
    TreeIntegrityError,
)
from server.apps.drive.infrastructure.metadata import (
    normalize_mime_type,
    validate_node_name,
    validate_storage_key,
)
from server.apps.drive.logic.quota_operations import lock_quota
from server.apps.drive.models import Node, NodeKind

# User type for Django's dynamic user model
_User = Any

NodeId = UUID | str

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True, slots=True)
class ListFilter:
    """Options for listing a folder's children."""

    include_trashed: bool = False
    only_starred: bool = False


def _max_depth() -> int:
    return settings.DRIVE_MAX_TREE_DEPTH


def get_node(node_id: NodeId) -> Node:
    """Get a node by ID.

    Args:
        node_id: Node identifier (UUID or its string form).

    Returns:
        Node instance.

    Raises:
        NodeNotFoundError: If no node has this ID or the ID is malformed.
    """
    try:
        return Node.objects.get(pk=node_id)
    except (Node.DoesNotExist, ValidationError, ValueError):
        raise NodeNotFoundError(node_id) from None


def get_locked_node(node_id: NodeId) -> Node:
    """Lock the node owner's tree and return a fresh copy of the node.

    Must be called inside ``transaction.atomic()``.
    """
    node = get_node(node_id)
    lock_quota(node.owner)
    # Re-read under the lock, the node may have moved or gone meanwhile
    return get_node(node.pk)


def resolve_parent_folder(
    owner: _User,
    parent_id: NodeId | None,
) -> Node | None:
    """Resolve a destination folder for the given owner.

    Args:
        owner: Owner of the tree.
        parent_id: Folder ID, or None for the owner root.

    Returns:
        Folder node, or None for the root.

    Raises:
        OwnerMismatchError: If the folder belongs to someone else.
        NodeNotFoundError: If the folder is missing, trashed or a file.
    """
    if parent_id is None:
        return None

    parent = get_node(parent_id)
    if parent.owner_id != owner.pk:
        raise OwnerMismatchError(parent_id)
    if not parent.is_folder or parent.is_trashed:
        raise NodeNotFoundError(parent_id)
    return parent


def ensure_name_available(
    owner: _User,
    parent: Node | None,
    name: str,
    exclude_id: NodeId | None = None,
) -> None:
    """Raise ConflictError if a live sibling already uses the name."""
    siblings = Node.objects.filter(
        owner=owner,
        parent=parent,
        name=name,
        is_trashed=False,
    )
    if exclude_id is not None:
        siblings = siblings.exclude(pk=exclude_id)

    if siblings.exists():
        raise ConflictError(f'Name already exists in folder: {name}')


def _create_node(**fields: Any) -> Node:
    """Insert a node, turning constraint violations into ConflictError."""
    try:
        with transaction.atomic():
            return Node.objects.create(**fields)
    except IntegrityError as error:
        logger.warning(
            'Concurrent write won, rejecting node: %s',
            fields.get('name'),
        )
        raise ConflictError(
            f'Node conflicts with an existing one: {fields.get("name")}',
        ) from error


def _save_node(node: Node, update_fields: list[str]) -> None:
    """Update a node, turning constraint violations into ConflictError."""
    try:
        with transaction.atomic():
            node.save(update_fields=[*update_fields, 'updated_at'])
    except IntegrityError as error:
        logger.warning('Concurrent write won, rejecting update: %s', node.pk)
        raise ConflictError(
            f'Node conflicts with an existing one: {node.name}',
        ) from error


def iter_ancestors(node: Node) -> Iterator[Node]:
    """Walk from a node up to its root, nearest first.

    The walk reads every parent fresh from the database and stops at
    the owner root.

    Args:
        node: Starting node (yielded first).

    Yields:
        The node, then each ancestor up to the root.

    Raises:
        NodeNotFoundError: If a parent pointer dangles.
        TreeIntegrityError: If the walk revisits a node or gets deeper
            than ``DRIVE_MAX_TREE_DEPTH``.
    """
    seen: set[UUID] = set()
    max_depth = _max_depth()
    current: Node | None = node

    while current is not None:
        if current.pk in seen:
            logger.error('Cycle detected in tree at node %s', current.pk)
            raise TreeIntegrityError(f'Cycle detected at node {current.pk}')
        if len(seen) >= max_depth:
            logger.error('Tree deeper than %d at node %s', max_depth, node.pk)
            raise TreeIntegrityError(
                f'Tree deeper than {max_depth} levels at node {node.pk}',
            )
        seen.add(current.pk)
        yield current

        if current.parent_id is None:
            return
        try:
            current = Node.objects.get(pk=current.parent_id)
        except Node.DoesNotExist:
            logger.error(
                'Dangling parent %s of node %s',
                current.parent_id,
                current.pk,
            )
            raise NodeNotFoundError(current.parent_id) from None


def collect_subtree(root: Node) -> list[Node]:
    """Collect a node and all of its descendants, breadth first.

    Args:
        root: Top of the subtree.

    Returns:
        List starting with root, parents always before their children.

    Raises:
        TreeIntegrityError: If the subtree is deeper than allowed.
    """
    subtree = [root]
    frontier = [root.pk] if root.is_folder else []
    max_depth = _max_depth()
    depth = 0

    while frontier:
        depth += 1
        if depth > max_depth:
            raise TreeIntegrityError(
                f'Subtree deeper than {max_depth} levels at node {root.pk}',
            )
        children = list(Node.objects.filter(parent__in=frontier))
        subtree.extend(children)
        frontier = [child.pk for child in children if child.is_folder]

    return subtree


def node_depth(node: Node | None) -> int:
    """Count the nodes from the owner root down to a node, 0 for the root."""
    if node is None:
        return 0
    return sum(1 for _ in iter_ancestors(node))


def _subtree_height(root: Node) -> int:
    """Count the levels of a subtree, 1 for a single node.

    Stops counting once the height passes ``DRIVE_MAX_TREE_DEPTH``.
    """
    height = 1
    frontier = [root.pk] if root.is_folder else []
    max_depth = _max_depth()

    while frontier and height <= max_depth:
        children = list(
            Node.objects.filter(parent__in=frontier).values_list('pk', 'kind'),
        )
        if not children:
            break
        height += 1
        frontier = [pk for pk, kind in children if kind == NodeKind.FOLDER]

    return height


def ensure_depth_available(parent: Node | None, height: int = 1) -> None:
    """Raise ConflictError if ``height`` levels don't fit under the parent.

    Args:
        parent: Destination folder, None for the owner root.
        height: Levels added below the parent.

    Raises:
        ConflictError: If the tree would get deeper than
            ``DRIVE_MAX_TREE_DEPTH``.
    """
    max_depth = _max_depth()
    if node_depth(parent) + height > max_depth:
        raise ConflictError(
            f'Folders cannot nest deeper than {max_depth} levels',
        )


def create_folder(owner: _User, parent_id: NodeId | None, name: str) -> Node:
    """Create a folder.

    Args:
        owner: Owner of the new folder.
        parent_id: Containing folder ID, None for the owner root.
        name: Display name.

    Returns:
        Created folder node.

    Raises:
        ValidationError: If the name is invalid.
        NodeNotFoundError: If the parent is missing, trashed or a file.
        ConflictError: If a live sibling already uses the name, or the
            folder would nest deeper than allowed.
    """
    validate_node_name(name)

    with transaction.atomic():
        lock_quota(owner)
        parent = resolve_parent_folder(owner, parent_id)
        ensure_depth_available(parent)
        ensure_name_available(owner, parent, name)
        folder = _create_node(
            owner=owner,
            parent=parent,
            kind=NodeKind.FOLDER,
            name=name,
        )

    logger.info('Folder created: %s (ID: %s)', name, folder.pk)
    return folder


def register_file(  # noqa: WPS211
    owner: _User,
    parent_id: NodeId | None,
    name: str,
    storage_key: str,
    size_bytes: int,
    mime_type: str,
) -> Node:
    """Create the file node for an object already in storage.

    Args:
        owner: Owner of the file.
        parent_id: Containing folder ID, None for the owner root.
        name: Display name.
        storage_key: Key of the uploaded object.
        size_bytes: Object size in bytes.
        mime_type: Object MIME type.

    Returns:
        Created file node.

    Raises:
        ValidationError: If name, key or size is invalid.
        NodeNotFoundError: If the parent is missing, trashed or a file.
        ConflictError: If the key is already registered or a live
            sibling already uses the name, or the parent is
            already at the depth limit.
    """
    validate_node_name(name)
    validate_storage_key(owner.pk, storage_key)
    if size_bytes < 0:
        raise ValidationError('File size cannot be negative')

    with transaction.atomic():
        lock_quota(owner)
        if Node.objects.filter(storage_key=storage_key).exists():
            raise ConflictError(
                f'Storage key already registered: {storage_key}',
            )
        parent = resolve_parent_folder(owner, parent_id)
        ensure_depth_available(parent)
        ensure_name_available(owner, parent, name)
        file_node = _create_node(
            owner=owner,
            parent=parent,
            kind=NodeKind.FILE,
            name=name,
            storage_key=storage_key,
            size_bytes=size_bytes,
            mime_type=normalize_mime_type(mime_type),
        )

    logger.info(
        'File registered: %s -> %s (ID: %s)',
        storage_key,
        name,
        file_node.pk,
    )
    return file_node


def move(node_id: NodeId, new_parent_id: NodeId | None) -> Node:
    """Move a node under another folder of the same owner.

    Cycle prevention walks the ancestors of the destination up to the
    root and rejects the move if the node itself shows up.

    Args:
        node_id: Node to move.
        new_parent_id: Destination folder ID, None for the owner root.

    Returns:
        Moved node.

    Raises:
        NodeNotFoundError: If node or destination is missing or trashed,
            or the destination is a file.
        OwnerMismatchError: If the destination belongs to someone else.
        ConflictError: If the destination is the node or one of its
            descendants, or a live sibling there uses the same name,
            or the moved subtree would nest deeper than allowed.
    """
    with transaction.atomic():
        node = get_locked_node(node_id)
        if node.is_trashed:
            raise NodeNotFoundError(node_id)

        new_parent: Node | None = None
        if new_parent_id is not None:
            new_parent = get_node(new_parent_id)
            if new_parent.pk == node.pk:
                raise ConflictError('Cannot move a node into itself')
            if new_parent.owner_id != node.owner_id:
                raise OwnerMismatchError(new_parent_id)
            if not new_parent.is_folder or new_parent.is_trashed:
                raise NodeNotFoundError(new_parent_id)
            ancestor_ids = {
                ancestor.pk for ancestor in iter_ancestors(new_parent)
            }
            if node.pk in ancestor_ids:
                raise ConflictError(
                    'Cannot move a folder into its own descendant',
                )
            ensure_depth_available(new_parent, _subtree_height(node))

        destination_id = new_parent.pk if new_parent else None
        if node.parent_id == destination_id:
            return node

        ensure_name_available(
            node.owner,
            new_parent,
            node.name,
            exclude_id=node.pk,
        )
        node.parent = new_parent
        _save_node(node, ['parent'])

    logger.info('Node moved: %s -> %s', node.pk, destination_id)
    return node


def rename(node_id: NodeId, new_name: str) -> Node:
    """Rename a node in place.

    Args:
        node_id: Node to rename.
        new_name: New display name.

    Returns:
        Renamed node.

    Raises:
        ValidationError: If the name is invalid.
        NodeNotFoundError: If the node is missing or trashed.
        ConflictError: If a live sibling already uses the name.
    """
    validate_node_name(new_name)

    with transaction.atomic():
        node = get_locked_node(node_id)
        if node.is_trashed:
            raise NodeNotFoundError(node_id)
        if node.name == new_name:
            return node

        ensure_name_available(
            node.owner,
            node.parent,
            new_name,
            exclude_id=node.pk,
        )
        old_name = node.name
        node.name = new_name
        _save_node(node, ['name'])

    logger.info('Node renamed: %s -> %s (ID: %s)', old_name, new_name, node.pk)
    return node


def set_starred(node_id: NodeId, starred: bool) -> Node:  # noqa: FBT001
    """Star or unstar a node.

    Args:
        node_id: Node to update.
        starred: New flag value.

    Returns:
        Updated node.

    Raises:
        NodeNotFoundError: If the node is missing.
    """
    node = get_node(node_id)
    node.is_starred = starred
    node.save(update_fields=['is_starred', 'updated_at'])
    return node


def list_children(
    owner: _User,
    parent_id: NodeId | None,
    list_filter: ListFilter | None = None,
) -> QuerySet[Node]:
    """List the direct children of a folder.

    The result is a lazy QuerySet ordered by name, then creation time;
    nothing hits the database until it is iterated.

    Args:
        owner: Owner of the tree.
        parent_id: Folder ID, None for the owner root.
        list_filter: Trash and star filters, defaults to live nodes only.

    Returns:
        QuerySet of child nodes.

    Raises:
        OwnerMismatchError: If the folder belongs to someone else.
        NodeNotFoundError: If the folder is missing or a file, or is
            trashed while trashed nodes are excluded.
    """
    list_filter = list_filter or ListFilter()

    if parent_id is not None:
        parent = get_node(parent_id)
        if parent.owner_id != owner.pk:
            raise OwnerMismatchError(parent_id)
        if not parent.is_folder:
            raise NodeNotFoundError(parent_id)
        if parent.is_trashed and not list_filter.include_trashed:
            raise NodeNotFoundError(parent_id)
        parent_id = parent.pk

    children = Node.objects.filter(owner=owner, parent_id=parent_id)
    if not list_filter.include_trashed:
        children = children.filter(is_trashed=False)
    if list_filter.only_starred:
        children = children.filter(is_starred=True)

    logger.debug('Listing children of %s for user %s', parent_id, owner.pk)
    return children.order_by('name', 'created_at')


def list_starred(owner: _User) -> QuerySet[Node]:
    """List every live starred node of an owner, at any depth.

    Args:
        owner: Owner of the tree.

    Returns:
        QuerySet of starred nodes ordered by name.
    """
    return Node.objects.filter(
        owner=owner,
        is_starred=True,
        is_trashed=False,
    ).order_by('name', 'created_at')


def resolve_path(node_id: NodeId) -> list[Node]:
    """Resolve the chain of nodes from the owner root down to a node.

    Args:
        node_id: Node to resolve.

    Returns:
        Nodes ordered root first, ending with the node itself.

    Raises:
        NodeNotFoundError: If the node or any ancestor is missing.
        TreeIntegrityError: If the parent chain loops or is too deep.
    """
    node = get_node(node_id)
    path = list(iter_ancestors(node))
    path.reverse()
    return path
