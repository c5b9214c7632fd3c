"""
Management command to reclaim expired downloads.

Runs the same sweep the bot runs on its timer, once. Useful from cron when
the bot is stopped, or to preview what the next sweep will delete.
"""

from datetime import datetime

from django.conf import settings
from django.core.management.base import BaseCommand

from grabber.service.cleanup import CleanupSweeper
from grabber.service.config import get_downloads_dir


class Command(BaseCommand):
    help = 'Delete downloaded artifacts older than the retention window'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting',
        )
        parser.add_argument(
            '--force', action='store_true', help='Delete files without confirmation'
        )
        parser.add_argument(
            '--max-age',
            type=int,
            default=None,
            help=(
                'Maximum age in hours before a file is deleted '
                f'(default: MAX_FILE_AGE_HOURS, currently {settings.CLIPGRAB_MAX_FILE_AGE_HOURS})'
            ),
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        force = options['force']
        max_age_hours = options['max_age']
        if max_age_hours is None:
            max_age_hours = settings.CLIPGRAB_MAX_FILE_AGE_HOURS

        downloads_dir = get_downloads_dir()
        # The bot process owns the in-memory cache; entries pointing at files
        # deleted here are dropped on their next lookup.
        sweeper = CleanupSweeper(
            downloads_dir,
            cache=None,
            retention_seconds=max_age_hours * 3600,
            interval_seconds=0,
            logger=lambda message: self.stderr.write(message),
        )

        preview = sweeper.scan_expired(dry_run=True)
        if not preview.deleted:
            self.stdout.write(
                self.style.SUCCESS(f'No files older than {max_age_hours} hours in {downloads_dir}')
            )
            return

        count = len(preview.deleted)
        plural = 's' if count != 1 else ''
        self.stdout.write(f'\nFound {count} expired file{plural}:')
        self.stdout.write(f'{"=" * 80}')
        for path in preview.deleted:
            try:
                mtime = datetime.fromtimestamp(path.stat().st_mtime)
                size_mb = path.stat().st_size / (1024 * 1024)
            except OSError:
                continue
            self.stdout.write(
                f'{path.name:40} | Modified: {mtime:%Y-%m-%d %H:%M} | Size: {size_mb:6.1f} MB'
            )
        self.stdout.write(f'{"=" * 80}')
        self.stdout.write(f'Total size: {preview.freed_bytes / (1024 * 1024):.1f} MB\n')

        if dry_run:
            self.stdout.write(self.style.WARNING(f'\nDRY RUN: Would delete {count} file{plural}'))
            self.stdout.write('Run without --dry-run to actually delete')
            return

        if not force:
            response = input(f'\nDelete these {count} file{plural}? [y/N]: ')
            if response.lower() != 'y':
                self.stdout.write('Cancelled')
                return

        report = sweeper.scan_expired()
        for path, error in report.failed:
            self.stdout.write(self.style.ERROR(f'✗ Failed to delete {path.name}: {error}'))
        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Deleted {len(report.deleted)} file(s), '
                f'{report.freed_bytes / (1024 * 1024):.1f} MB freed'
            )
        )
