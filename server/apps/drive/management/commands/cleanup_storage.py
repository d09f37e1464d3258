"""Management command to reconcile storage with drive metadata."""

from typing import Any

from django.core.files.storage import default_storage
from django.core.management.base import BaseCommand
from django.utils import timezone

from server.apps.drive.logic.quota_operations import reconcile_usage
from server.apps.drive.logic.sweep_operations import (
    retry_pending_deletions,
    sweep_orphaned_objects,
)
from server.apps.drive.logic.upload_operations import expire_stale_tokens


class Command(BaseCommand):
    """Expire tokens, retry deletes, fix usage counters, drop orphans."""

    help = 'Reconcile storage objects with drive metadata'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--skip-orphans',
            action='store_true',
            help='Do not scan storage for unregistered objects',
        )
        parser.add_argument(
            '--recalculate-quota',
            action='store_true',
            help='Reset quota usage counters from the registered files',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the reconciliation.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        now = timezone.now()

        expired = expire_stale_tokens(now)
        self.stdout.write(f'Expired {expired} upload tokens')

        retry_report = retry_pending_deletions(now, default_storage)
        self.stdout.write(
            f'Deleted {retry_report.deleted_objects} queued objects, '
            f'{retry_report.failed_objects} still failing',
        )

        if options['recalculate_quota']:
            corrected = reconcile_usage()
            self.stdout.write(f'Corrected {corrected} usage counters')

        if options['skip_orphans']:
            self.stdout.write(self.style.SUCCESS('Storage cleanup finished'))
            return

        orphan_report = sweep_orphaned_objects(now, default_storage)
        for error in orphan_report.errors:
            self.stderr.write(f'Failed to delete orphan {error}')
        self.stdout.write(
            self.style.SUCCESS(
                f'Deleted {orphan_report.orphans_deleted} orphaned objects, '
                f'{orphan_report.failed_objects} failed',
            ),
        )
