"""Management command to purge old nodes from trash."""

import logging
from typing import Any, Final

from django.conf import settings
from django.core.files.storage import default_storage
from django.core.management.base import BaseCommand
from django.utils import timezone

from server.apps.drive.logic.sweep_operations import (
    get_retention,
    purge_expired_trash,
)
from server.apps.drive.models import Node

_DEFAULT_BATCH_SIZE: Final = 1000

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Permanently delete nodes that stayed in trash past retention."""

    help = 'Purge nodes trashed longer than the retention period'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be purged without purging',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=_DEFAULT_BATCH_SIZE,
            help=f'Max nodes to process (default: {_DEFAULT_BATCH_SIZE})',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the cleanup command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        batch_size = options['batch_size']

        now = timezone.now()
        cutoff = now - get_retention()

        self.stdout.write(
            f'Looking for nodes trashed before {cutoff} '
            f'(older than {settings.DRIVE_TRASH_RETENTION_DAYS} days)',
        )

        if dry_run:
            expired_nodes = Node.objects.filter(
                is_trashed=True,
                trashed_at__lte=cutoff,
            ).select_related('owner').order_by('trashed_at')[:batch_size]

            count = 0
            for node in expired_nodes:
                self.stdout.write(
                    f'Would purge: {node.name} '
                    f'(owner: {node.owner.username}, '
                    f'trashed: {node.trashed_at})',
                )
                count += 1
            self.stdout.write(
                self.style.SUCCESS(f'Would purge {count} nodes from trash'),
            )
            return

        report = purge_expired_trash(
            now,
            default_storage,
            batch_size=batch_size,
        )
        logger.info(
            'cleanup_trash finished: %d purged, %d failed',
            report.purged_nodes,
            report.failed_nodes,
        )
        for error in report.errors:
            self.stderr.write(f'Failed to purge {error}')

        self.stdout.write(
            self.style.SUCCESS(
                f'Purged {report.purged_nodes} nodes from trash, '
                f'{report.failed_nodes} failed',
            ),
        )
