"""Exceptions for drive app.

Every error carries a stable ``code`` so callers can map it to a
response without inspecting the class hierarchy.
"""

from typing import ClassVar


class DriveError(Exception):
    """Base class for drive errors surfaced to callers."""

    code: ClassVar[str] = 'drive_error'


class NodeNotFoundError(DriveError):
    """Raised when a node is missing, or trashed where a live one is needed."""

    code: ClassVar[str] = 'not_found'

    def __init__(self, node_id: object = None) -> None:
        """Initialize NodeNotFoundError.

        Args:
            node_id: Identifier that could not be resolved.
        """
        self.node_id = node_id
        super().__init__(f'Node not found: {node_id}')


class UnauthorizedError(DriveError):
    """Raised when a caller cannot be identified or is not allowed."""

    code: ClassVar[str] = 'unauthorized'


class OwnerMismatchError(UnauthorizedError, NodeNotFoundError):
    """Raised when the caller does not own the referenced node.

    Shares the code and message of ``NodeNotFoundError`` so that a
    caller cannot learn which nodes other owners have.
    """

    code: ClassVar[str] = 'not_found'


class ConflictError(DriveError):
    """Raised on name collisions, cyclic moves and blocked restores."""

    code: ClassVar[str] = 'conflict'


class ExpiredTokenError(DriveError):
    """Raised when an upload token is past its TTL, used or revoked."""

    code: ClassVar[str] = 'expired_token'


class StorageMismatchError(DriveError):
    """Raised when an uploaded object violates its token's constraints."""

    code: ClassVar[str] = 'storage_mismatch'


class TreeIntegrityError(DriveError):
    """Raised when a parent walk loops or exceeds the maximum depth."""

    code: ClassVar[str] = 'tree_integrity'


class QuotaExceededError(DriveError):
    """Raised when upload would exceed owner's storage quota."""

    code: ClassVar[str] = 'quota_exceeded'

    def __init__(
        self,
        quota_bytes: int,
        used_bytes: int,
        required_bytes: int,
    ) -> None:
        """Initialize QuotaExceededError.

        Args:
            quota_bytes: Total quota limit in bytes.
            used_bytes: Currently used bytes.
            required_bytes: Bytes needed for the operation.
        """
        self.quota_bytes = quota_bytes
        self.used_bytes = used_bytes
        self.required_bytes = required_bytes

        available = quota_bytes - used_bytes
        super().__init__(
            f'Quota exceeded: need {required_bytes} bytes, '
            f'only {available} bytes available '
            f'(quota: {quota_bytes}, used: {used_bytes})',
        )
