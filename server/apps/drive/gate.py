"""Authorization gate: the owner-scoped entry point of the drive.

Every tree, upload and lifecycle operation is reached through a
``DriveGate`` built for one verified owner. The gate resolves each node
the caller references and rejects nodes of other owners exactly like
missing ones, then delegates to the logic layer.
"""

import logging
from typing import TYPE_CHECKING, final

from django.db.models import QuerySet
from django.http import HttpRequest

from server.apps.drive.exceptions import ExpiredTokenError, OwnerMismatchError
from server.apps.drive.identity import verify_credentials, verify_user
from server.apps.drive.logic import (
    quota_operations,
    trash_operations,
    tree_operations,
    upload_operations,
)
from server.apps.drive.logic.trash_operations import PurgeReport
from server.apps.drive.logic.tree_operations import ListFilter, NodeId
from server.apps.drive.logic.upload_operations import IssuedUpload
from server.apps.drive.models import Node, StorageQuota, UploadToken

if TYPE_CHECKING:
    from django.contrib.auth.models import User

    from server.apps.drive.infrastructure.storage import FileStorage

logger = logging.getLogger(__name__)


@final
class DriveGate:
    """Drive operations on behalf of a single owner."""

    def __init__(
        self,
        owner: 'User',
        storage: 'FileStorage | None' = None,
    ) -> None:
        """Initialize the gate.

        Args:
            owner: Verified owner every call is scoped to.
            storage: Storage backend, the default storage if omitted.

        Raises:
            UnauthorizedError: If the owner is anonymous or inactive.
        """
        self._owner = verify_user(owner)
        self._storage = storage

    @classmethod
    def from_credentials(
        cls,
        username: str,
        password: str,
        request: HttpRequest | None = None,
    ) -> 'DriveGate':
        """Build a gate for the user the credentials belong to.

        Raises:
            UnauthorizedError: If the credentials are not valid.
        """
        return cls(verify_credentials(username, password, request=request))

    @property
    def owner(self) -> 'User':
        """Owner this gate acts for."""
        return self._owner

    def _authorize(self, node_id: NodeId) -> Node:
        """Load a node and check it belongs to the owner.

        Raises:
            NodeNotFoundError: If the node does not exist.
            OwnerMismatchError: If the node belongs to someone else.
        """
        node = tree_operations.get_node(node_id)
        if node.owner_id != self._owner.pk:
            logger.warning(
                'User %s denied access to node %s',
                self._owner.pk,
                node_id,
            )
            raise OwnerMismatchError(node_id)
        return node

    def _authorize_parent(self, parent_id: NodeId | None) -> None:
        if parent_id is not None:
            self._authorize(parent_id)

    def _authorize_token(self, token: str) -> UploadToken:
        """Load an upload token and check it belongs to the owner.

        Tokens of other owners are reported as unknown.
        """
        upload_token = upload_operations.get_upload_token(token)
        if upload_token.owner_id != self._owner.pk:
            logger.warning(
                'User %s presented a foreign upload token',
                self._owner.pk,
            )
            raise ExpiredTokenError('Unknown upload token')
        return upload_token

    # Tree

    def create_folder(self, parent_id: NodeId | None, name: str) -> Node:
        """Create a folder under a folder of the owner or at the root."""
        self._authorize_parent(parent_id)
        return tree_operations.create_folder(self._owner, parent_id, name)

    def move(self, node_id: NodeId, new_parent_id: NodeId | None) -> Node:
        """Move an owned node under another owned folder or the root."""
        self._authorize(node_id)
        self._authorize_parent(new_parent_id)
        return tree_operations.move(node_id, new_parent_id)

    def rename(self, node_id: NodeId, new_name: str) -> Node:
        """Rename an owned node."""
        self._authorize(node_id)
        return tree_operations.rename(node_id, new_name)

    def set_starred(self, node_id: NodeId, starred: bool) -> Node:  # noqa: FBT001
        """Star or unstar an owned node."""
        self._authorize(node_id)
        return tree_operations.set_starred(node_id, starred)

    def list_children(
        self,
        parent_id: NodeId | None,
        list_filter: ListFilter | None = None,
    ) -> QuerySet[Node]:
        """List the children of an owned folder or of the root."""
        self._authorize_parent(parent_id)
        return tree_operations.list_children(
            self._owner,
            parent_id,
            list_filter,
        )

    def list_starred(self) -> QuerySet[Node]:
        """List the owner's starred nodes."""
        return tree_operations.list_starred(self._owner)

    def resolve_path(self, node_id: NodeId) -> list[Node]:
        """Resolve the root-to-node chain of an owned node."""
        self._authorize(node_id)
        return tree_operations.resolve_path(node_id)

    # Uploads

    def issue_upload_token(
        self,
        parent_id: NodeId | None,
        declared_name: str,
        declared_mime_type: str,
        declared_max_size: int,
    ) -> IssuedUpload:
        """Issue a signed upload into an owned folder or the root."""
        self._authorize_parent(parent_id)
        return upload_operations.issue_upload_token(
            self._owner,
            parent_id,
            declared_name,
            declared_mime_type,
            declared_max_size,
            storage=self._storage,
        )

    def register_upload(
        self,
        token: str,
        actual_storage_key: str,
        actual_size: int,
        actual_mime_type: str,
    ) -> Node:
        """Register an upload made with one of the owner's tokens."""
        self._authorize_token(token)
        return upload_operations.register_upload(
            token,
            actual_storage_key,
            actual_size,
            actual_mime_type,
            storage=self._storage,
        )

    def revoke_upload_token(self, token: str) -> UploadToken:
        """Cancel one of the owner's issued tokens."""
        self._authorize_token(token)
        return upload_operations.revoke_upload_token(token)

    # Lifecycle

    def trash(self, node_id: NodeId) -> Node:
        """Move an owned node and its subtree to trash."""
        self._authorize(node_id)
        return trash_operations.trash(node_id)

    def restore(self, node_id: NodeId) -> Node:
        """Restore an owned node and its subtree from trash."""
        self._authorize(node_id)
        return trash_operations.restore(node_id)

    def purge(self, node_id: NodeId) -> PurgeReport:
        """Permanently delete an owned node and its subtree."""
        self._authorize(node_id)
        return trash_operations.purge(node_id, storage=self._storage)

    def list_trash(self) -> QuerySet[Node]:
        """List the tops of the owner's trashed subtrees."""
        return trash_operations.list_trash(self._owner)

    def empty_trash(self) -> PurgeReport:
        """Permanently delete everything in the owner's trash."""
        return trash_operations.empty_trash(
            self._owner,
            storage=self._storage,
        )

    # Quota

    def get_quota(self) -> StorageQuota:
        """Get the owner's storage quota and usage."""
        return quota_operations.get_or_create_quota(self._owner)
