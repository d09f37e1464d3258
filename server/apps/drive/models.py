"""Database models for drive app."""

import uuid
from datetime import datetime
from typing import Any, ClassVar, Final, Self, final, override

from django.conf import settings
from django.db import models

# Constants for field max lengths
_NAME_MAX_LENGTH: Final = 255
_MIME_TYPE_MAX_LENGTH: Final = 255
_STORAGE_KEY_MAX_LENGTH: Final = 1024
_TOKEN_MAX_LENGTH: Final = 64
_KIND_MAX_LENGTH: Final = 16


class NodeKind(models.TextChoices):
    """Closed set of node variants."""

    FOLDER = 'folder', 'Folder'
    FILE = 'file', 'File'


@final
class Node(models.Model):
    """Folder or file in an owner's drive tree.

    Nodes form a per-owner tree through ``parent`` pointers; a null
    parent means the node sits at the owner's root. Folder rows never
    carry storage attributes and file rows always do, which is enforced
    by a check constraint.

    Sibling names are unique among non-trashed nodes only, so a trashed
    node never blocks reuse of its name.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='drive_nodes',
        db_index=True,
    )

    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='children',
        help_text='Containing folder, empty for the owner root',
    )

    kind = models.CharField(
        max_length=_KIND_MAX_LENGTH,
        choices=NodeKind.choices,
    )

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    # File-only attributes
    storage_key = models.CharField(
        max_length=_STORAGE_KEY_MAX_LENGTH,
        null=True,
        blank=True,
        unique=True,
        editable=False,
        help_text='Object key in storage: {owner_id}/uploads/{uuid}.ext',
    )

    size_bytes = models.BigIntegerField(
        null=True,
        blank=True,
        help_text='File size in bytes',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        null=True,
        blank=True,
    )

    is_starred = models.BooleanField(default=False)

    # Soft delete
    is_trashed = models.BooleanField(default=False)
    trashed_at = models.DateTimeField(null=True, blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Node'  # type: ignore[mutable-override]
        verbose_name_plural = 'Nodes'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['name', 'created_at']

        indexes: ClassVar[list[models.Index]] = [
            # Sibling lookups and name uniqueness checks
            models.Index(
                fields=['owner', 'parent', 'name'],
                name='drive_node_sibling_idx',
            ),
            # Retention sweep
            models.Index(
                fields=['owner', 'is_trashed', 'trashed_at'],
                name='drive_node_trash_idx',
            ),
        ]

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(
                fields=['owner', 'parent', 'name'],
                condition=models.Q(
                    is_trashed=False,
                    parent__isnull=False,
                ),
                name='drive_node_sibling_name_unique',
            ),
            # NULL parents never collide in a plain unique index
            models.UniqueConstraint(
                fields=['owner', 'name'],
                condition=models.Q(
                    is_trashed=False,
                    parent__isnull=True,
                ),
                name='drive_node_root_name_unique',
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(
                        kind=NodeKind.FOLDER,
                        storage_key__isnull=True,
                        size_bytes__isnull=True,
                        mime_type__isnull=True,
                    ) | models.Q(
                        kind=NodeKind.FILE,
                        storage_key__isnull=False,
                        size_bytes__gte=0,
                        mime_type__isnull=False,
                    )
                ),
                name='drive_node_kind_shape',
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(is_trashed=False, trashed_at__isnull=True)
                    | models.Q(is_trashed=True, trashed_at__isnull=False)
                ),
                name='drive_node_trash_state',
            ),
            models.CheckConstraint(
                condition=~models.Q(parent=models.F('id')),
                name='drive_node_not_own_parent',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.name}'

    @classmethod
    @override
    def from_db(
        cls,
        db: str | None,
        field_names: Any,
        values: Any,
    ) -> Self:
        """Remember the loaded storage key to keep it immutable."""
        instance = super().from_db(db, field_names, values)
        instance._loaded_storage_key = instance.__dict__.get('storage_key')
        return instance

    @override
    def save(self, *args: Any, **kwargs: Any) -> None:
        """Save the node, refusing to rewrite an existing storage key.

        Raises:
            ValueError: If a registered storage key was changed.
        """
        loaded_key = getattr(self, '_loaded_storage_key', None)
        if loaded_key is not None and self.storage_key != loaded_key:
            raise ValueError(
                f'Storage key of node {self.pk} is immutable',
            )
        super().save(*args, **kwargs)
        self._loaded_storage_key = self.storage_key

    @property
    def is_folder(self) -> bool:
        """Whether this node is a folder."""
        return self.kind == NodeKind.FOLDER

    @property
    def is_file(self) -> bool:
        """Whether this node is a file."""
        return self.kind == NodeKind.FILE


class UploadTokenState(models.TextChoices):
    """Lifecycle states of a signed upload token."""

    ISSUED = 'issued', 'Issued'
    CONSUMED = 'consumed', 'Consumed'
    REGISTERED = 'registered', 'Registered'
    EXPIRED = 'expired', 'Expired'
    REVOKED = 'revoked', 'Revoked'


@final
class UploadToken(models.Model):
    """Short-lived, single-use credential for a direct-to-storage upload.

    The token is bound to an owner, a target folder, a display name,
    a size bound and a MIME allowlist. Registration consumes it exactly
    once; replays of a registered token resolve to the same node.
    """

    token = models.CharField(
        max_length=_TOKEN_MAX_LENGTH,
        unique=True,
        help_text='Opaque secret handed to the client',
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='upload_tokens',
        db_index=True,
    )

    parent = models.ForeignKey(
        Node,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='+',
        help_text='Target folder, empty for the owner root',
    )

    declared_name = models.CharField(max_length=_NAME_MAX_LENGTH)

    declared_mime_type = models.CharField(max_length=_MIME_TYPE_MAX_LENGTH)

    max_size_bytes = models.BigIntegerField()

    allowed_mime_types = models.JSONField(default=list)

    storage_key = models.CharField(
        max_length=_STORAGE_KEY_MAX_LENGTH,
        unique=True,
    )

    state = models.CharField(
        max_length=_KIND_MAX_LENGTH,
        choices=UploadTokenState.choices,
        default=UploadTokenState.ISSUED,
        db_index=True,
    )

    expires_at = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    consumed_at = models.DateTimeField(null=True, blank=True)

    node = models.OneToOneField(
        Node,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='upload_token',
    )

    class Meta:
        """Model metadata."""

        verbose_name = 'Upload Token'  # type: ignore[mutable-override]
        verbose_name_plural = 'Upload Tokens'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-created_at']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.CheckConstraint(
                condition=models.Q(max_size_bytes__gt=0),
                name='upload_token_max_size_positive',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.declared_name} ({self.state})'

    def is_expired(self, now: datetime) -> bool:
        """Check whether the token is past its TTL.

        Args:
            now: Current time.

        Returns:
            True if the token can no longer be used.
        """
        return now >= self.expires_at


def _default_quota_bytes() -> int:
    """Default quota from settings."""
    return settings.DRIVE_DEFAULT_QUOTA_BYTES


@final
class StorageQuota(models.Model):
    """Storage quota for an owner.

    Tracks owner's storage limit and current usage. Quota includes all
    files including trashed ones to prevent circumventing limits; only
    purge gives space back.

    The row also serves as the per-owner lock that serializes tree
    mutations.
    """

    owner = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='storage_quota',
        primary_key=True,
    )

    quota_bytes = models.BigIntegerField(
        default=_default_quota_bytes,
        help_text='Storage quota limit in bytes',
    )

    used_bytes = models.BigIntegerField(
        default=0,
        help_text='Currently used storage in bytes',
    )

    class Meta:
        """Model metadata."""

        verbose_name = 'Storage Quota'  # type: ignore[mutable-override]
        verbose_name_plural = 'Storage Quotas'  # type: ignore[mutable-override]

        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.CheckConstraint(
                condition=models.Q(quota_bytes__gte=0),
                name='quota_bytes_non_negative',
            ),
            models.CheckConstraint(
                condition=models.Q(used_bytes__gte=0),
                name='used_bytes_non_negative',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}: {self.used_bytes}/{self.quota_bytes}'

    def has_space_for(self, size_bytes: int) -> bool:
        """Check if there's enough space for the given size.

        Args:
            size_bytes: Size to check in bytes.

        Returns:
            True if there's enough space, False otherwise.
        """
        return self.used_bytes + size_bytes <= self.quota_bytes

    def available_bytes(self) -> int:
        """Get available storage space.

        Returns:
            Available bytes (never negative).
        """
        available = self.quota_bytes - self.used_bytes
        return max(0, available)


@final
class PendingObjectDeletion(models.Model):
    """Storage object scheduled for deletion.

    Rows are written in the same transaction that removes the metadata,
    then drained after commit. Whatever fails stays here for the retry
    sweep.
    """

    storage_key = models.CharField(
        max_length=_STORAGE_KEY_MAX_LENGTH,
        unique=True,
    )

    attempts = models.PositiveIntegerField(default=0)

    last_error = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    last_attempt_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Pending Object Deletion'  # type: ignore[mutable-override]
        verbose_name_plural = 'Pending Object Deletions'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['created_at']

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.storage_key} (attempts: {self.attempts})'
