"""Django admin configuration for drive app."""

from typing import override

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.html import format_html

from server.apps.drive.models import (
    Node,
    PendingObjectDeletion,
    StorageQuota,
    UploadToken,
)


def _format_bytes(size_bytes: int) -> str:
    """Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes.

    Returns:
        Formatted size string (e.g., '1.5 MB', '234 KB').
    """
    if size_bytes < 1024:
        return f'{size_bytes} B'
    if size_bytes < 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / 1024:.1f} KB'
    if size_bytes < 1024 * 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / (1024 * 1024):.1f} MB'
    return f'{size_bytes / (1024 * 1024 * 1024):.1f} GB'


@admin.register(Node)
class NodeAdmin(admin.ModelAdmin):
    """Admin interface for Node model."""

    list_display = [
        'name',
        'kind',
        'owner',
        'parent',
        'size_display',
        'is_starred',
        'is_trashed',
        'updated_at',
    ]

    list_filter = [
        'kind',
        'is_starred',
        'is_trashed',
        'mime_type',
    ]

    search_fields = [
        'name',
        'storage_key',
        'owner__username',
    ]

    # Structure changes go through the logic layer, not the admin
    readonly_fields = [
        'id',
        'owner',
        'kind',
        'name',
        'parent',
        'storage_key',
        'size_bytes',
        'mime_type',
        'is_trashed',
        'trashed_at',
        'created_at',
        'updated_at',
    ]

    fieldsets = (
        ('Node', {
            'fields': ('id', 'owner', 'kind', 'name', 'parent'),
        }),
        ('Content', {
            'fields': ('storage_key', 'size_bytes', 'mime_type'),
        }),
        ('Flags', {
            'fields': ('is_starred', 'is_trashed', 'trashed_at'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
        }),
    )

    @override
    def has_add_permission(self, request: HttpRequest) -> bool:
        """Disable adding nodes via admin.

        Nodes are only created by folder creation and upload registration.

        Args:
            request: HTTP request.

        Returns:
            False - nodes cannot be added manually.
        """
        return False

    def size_display(self, obj: Node) -> str:
        """Display file size in human-readable format.

        Args:
            obj: Node instance.

        Returns:
            Formatted size string, '-' for folders.
        """
        if obj.is_folder:
            return '-'
        return _format_bytes(obj.size_bytes or 0)
    size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[Node]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('owner', 'parent')


@admin.register(UploadToken)
class UploadTokenAdmin(admin.ModelAdmin):
    """Admin interface for UploadToken model."""

    list_display = [
        'declared_name',
        'owner',
        'state',
        'max_size_display',
        'expires_at',
        'created_at',
    ]

    list_filter = [
        'state',
    ]

    search_fields = [
        'declared_name',
        'storage_key',
        'owner__username',
    ]

    readonly_fields = [
        'token',
        'owner',
        'parent',
        'declared_name',
        'declared_mime_type',
        'max_size_bytes',
        'allowed_mime_types',
        'storage_key',
        'state',
        'expires_at',
        'created_at',
        'consumed_at',
        'node',
    ]

    def max_size_display(self, obj: UploadToken) -> str:
        """Display the size limit in human-readable format."""
        return _format_bytes(obj.max_size_bytes)
    max_size_display.short_description = 'Max size'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[UploadToken]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('owner')


@admin.register(StorageQuota)
class StorageQuotaAdmin(admin.ModelAdmin):
    """Admin interface for StorageQuota model."""

    list_display = [
        'owner',
        'quota_display',
        'used_display',
        'percentage_display',
        'status_display',
    ]

    search_fields = [
        'owner__username',
        'owner__email',
    ]

    readonly_fields = [
        'owner',
        'used_bytes',
    ]

    fieldsets = (
        ('Owner', {
            'fields': ('owner',),
        }),
        ('Quota Settings', {
            'fields': ('quota_bytes',),
        }),
        ('Current Usage', {
            'fields': ('used_bytes',),
        }),
    )

    def quota_display(self, obj: StorageQuota) -> str:
        """Display quota in human-readable format.

        Args:
            obj: StorageQuota instance.

        Returns:
            Formatted quota string.
        """
        return _format_bytes(obj.quota_bytes)
    quota_display.short_description = 'Quota'  # type: ignore[attr-defined]

    def used_display(self, obj: StorageQuota) -> str:
        """Display used bytes in human-readable format."""
        return _format_bytes(obj.used_bytes)
    used_display.short_description = 'Used'  # type: ignore[attr-defined]

    def percentage_display(self, obj: StorageQuota) -> str:
        """Display percentage of quota used.

        Args:
            obj: StorageQuota instance.

        Returns:
            Percentage string.
        """
        if obj.quota_bytes == 0:
            return '0%'
        percentage = (obj.used_bytes / obj.quota_bytes) * 100
        return f'{percentage:.1f}%'
    percentage_display.short_description = '%'  # type: ignore[attr-defined]

    def status_display(self, obj: StorageQuota) -> str:
        """Display status indicator based on usage.

        Args:
            obj: StorageQuota instance.

        Returns:
            HTML formatted status indicator.
        """
        if obj.available_bytes() <= 0:
            color = '#dc3545'
            status = 'Full'
        elif obj.used_bytes * 10 >= obj.quota_bytes * 9:
            color = '#ffc107'
            status = 'Warning'
        else:
            color = '#28a745'
            status = 'OK'

        return format_html(
            '<span style="color: {color}; font-weight: bold;">'
            '{status}</span>',
            color=color,
            status=status,
        )
    status_display.short_description = 'Status'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[StorageQuota]:
        """Optimize queryset with select_related."""
        return super().get_queryset(request).select_related('owner')


@admin.register(PendingObjectDeletion)
class PendingObjectDeletionAdmin(admin.ModelAdmin):
    """Admin interface for the storage deletion retry queue."""

    list_display = [
        'storage_key',
        'attempts',
        'last_attempt_at',
        'created_at',
    ]

    search_fields = [
        'storage_key',
    ]

    readonly_fields = [
        'storage_key',
        'attempts',
        'last_error',
        'created_at',
        'last_attempt_at',
    ]
