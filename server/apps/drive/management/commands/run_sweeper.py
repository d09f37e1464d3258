"""Management command to run the background reconciliation loop."""

import logging
from typing import Any

from django.conf import settings
from django.core.management.base import BaseCommand

from server.apps.drive.logic.sweep_operations import Sweeper

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Run every drive sweep on a fixed cadence."""

    help = 'Run trash retention, deletion retries and orphan sweeps'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--interval',
            type=float,
            default=settings.DRIVE_SWEEP_INTERVAL,
            help='Seconds between sweep cycles',
        )
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run a single cycle and exit',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Start the sweeper.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        sweeper = Sweeper()

        if options['once']:
            report = sweeper.run_once()
            self.stdout.write(
                self.style.SUCCESS(
                    f'Sweep finished: {report.purged_nodes} nodes purged, '
                    f'{report.deleted_objects} objects deleted, '
                    f'{report.orphans_deleted} orphans deleted, '
                    f'{report.expired_tokens} tokens expired',
                ),
            )
            return

        self.stdout.write(
            f'Starting sweeper, interval {options["interval"]} seconds',
        )
        try:
            sweeper.run_forever(interval=options['interval'])
        except KeyboardInterrupt:
            logger.info('Sweeper interrupted')
            self.stdout.write(self.style.WARNING('Sweeper stopped'))
