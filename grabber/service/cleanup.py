"""
Storage reclamation.

Deletes artifacts older than the retention window and drops the cache
entries that point at them. Filesystem work runs in a worker thread; the
cache is only touched back on the event loop.
"""

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple


@dataclass
class SweepReport:
    """Outcome of one sweep"""

    deleted: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)
    freed_bytes: int = 0
    cache_entries_removed: int = 0


class CleanupSweeper:
    """
    Periodically reclaims expired artifacts.

    Args:
        storage_dir: Artifact directory to scan
        cache: ArtifactCache to keep consistent, or None
        retention_seconds: Maximum artifact age (by modification time)
        interval_seconds: Delay between sweeps
        logger: Optional callable(str) for logging
        clock: Wall-clock source, compared against file mtimes
    """

    def __init__(
        self,
        storage_dir,
        cache,
        retention_seconds,
        interval_seconds,
        logger=None,
        clock=time.time,
    ):
        self.storage_dir = Path(storage_dir)
        self.cache = cache
        self.retention_seconds = retention_seconds
        self.interval_seconds = interval_seconds
        self._logger = logger
        self._clock = clock
        self._task = None

    def _log(self, message):
        if self._logger:
            self._logger(message)

    def scan_expired(self, dry_run=False) -> SweepReport:
        """
        Delete (or with dry_run, list) every expired file in storage.

        Per-file stat/unlink errors are recorded in the report and skipped.
        """
        report = SweepReport()
        if not self.storage_dir.is_dir():
            return report

        cutoff = self._clock() - self.retention_seconds
        for path in sorted(self.storage_dir.iterdir()):
            try:
                if not path.is_file():
                    continue
                stat = path.stat()
                if stat.st_mtime >= cutoff:
                    continue
                if not dry_run:
                    path.unlink()
                report.deleted.append(path)
                report.freed_bytes += stat.st_size
            except OSError as e:
                report.failed.append((path, str(e)))
                self._log(f'Cleanup skipped {path.name}: {e}')
        return report

    def forget(self, report) -> SweepReport:
        """Remove cache entries for every artifact the sweep deleted"""
        if self.cache is None:
            return report
        for path in report.deleted:
            report.cache_entries_removed += self.cache.remove_by_artifact_path(path)
        return report

    async def sweep(self) -> SweepReport:
        """Run one sweep without blocking the event loop"""
        report = await asyncio.to_thread(self.scan_expired)
        self.forget(report)
        if report.deleted or report.failed:
            self._log(
                f'Cleaned up {len(report.deleted)} old file(s), '
                f'{report.freed_bytes / (1024 * 1024):.1f} MB freed, '
                f'{len(report.failed)} failure(s)'
            )
        return report

    async def run_forever(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                self._log(f'Cleanup error: {e}')

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self.run_forever())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
