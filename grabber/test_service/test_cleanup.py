"""
Tests for service/cleanup.py
"""

import asyncio
import os
import tempfile
import time
from pathlib import Path
from unittest.mock import patch

from django.test import SimpleTestCase

from grabber.service.cache import ArtifactCache, CacheEntry
from grabber.service.cleanup import CleanupSweeper


class CleanupSweeperTest(SimpleTestCase):
    """Tests for expired artifact reclamation"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.storage = Path(self._tmp.name)
        self.cache = ArtifactCache(10)
        self.now = time.time()

    def tearDown(self):
        self._tmp.cleanup()

    def make_file(self, name, age_seconds, payload=b'data'):
        path = self.storage / name
        path.write_bytes(payload)
        mtime = self.now - age_seconds
        os.utime(path, (mtime, mtime))
        return path

    def make_sweeper(self, cache='default', **kwargs):
        return CleanupSweeper(
            self.storage,
            self.cache if cache == 'default' else cache,
            retention_seconds=kwargs.pop('retention_seconds', 3600),
            interval_seconds=kwargs.pop('interval_seconds', 60),
            clock=lambda: self.now,
            **kwargs,
        )

    def test_scan_deletes_only_expired_files(self):
        old = self.make_file('old.mp4', 7200, payload=b'123456')
        fresh = self.make_file('fresh.mp4', 60)

        report = self.make_sweeper().scan_expired()

        self.assertEqual(report.deleted, [old])
        self.assertEqual(report.freed_bytes, 6)
        self.assertFalse(old.exists())
        self.assertTrue(fresh.exists())

    def test_dry_run_keeps_files(self):
        old = self.make_file('old.mp4', 7200)

        report = self.make_sweeper().scan_expired(dry_run=True)

        self.assertEqual(report.deleted, [old])
        self.assertTrue(old.exists())

    def test_missing_directory(self):
        sweeper = CleanupSweeper(
            self.storage / 'nope', None, retention_seconds=1, interval_seconds=1
        )
        report = sweeper.scan_expired()
        self.assertEqual(report.deleted, [])
        self.assertEqual(report.failed, [])

    def test_subdirectories_ignored(self):
        (self.storage / 'nested').mkdir()
        report = self.make_sweeper(retention_seconds=0).scan_expired()
        self.assertEqual(report.deleted, [])
        self.assertTrue((self.storage / 'nested').is_dir())

    def test_unlink_failure_recorded_and_skipped(self):
        """Test one undeletable file does not stop the sweep"""
        first = self.make_file('a.mp4', 7200)
        second = self.make_file('b.mp4', 7200)
        real_unlink = Path.unlink

        def flaky_unlink(path, *args, **kwargs):
            if path.name == 'a.mp4':
                raise PermissionError('read-only')
            return real_unlink(path, *args, **kwargs)

        messages = []
        with patch.object(Path, 'unlink', flaky_unlink):
            report = self.make_sweeper(logger=messages.append).scan_expired()

        self.assertEqual(report.deleted, [second])
        self.assertEqual(len(report.failed), 1)
        self.assertEqual(report.failed[0][0], first)
        self.assertTrue(first.exists())
        self.assertTrue(any('a.mp4' in message for message in messages))

    async def test_sweep_removes_cache_entries(self):
        """Test a swept artifact no longer resolves from the cache"""
        old = self.make_file('old.mp4', 7200)
        fresh = self.make_file('fresh.mp4', 60)
        self.cache.insert('old', CacheEntry(fingerprint='old', artifact_path=old, size_bytes=4))
        self.cache.insert(
            'fresh', CacheEntry(fingerprint='fresh', artifact_path=fresh, size_bytes=4)
        )

        report = await self.make_sweeper().sweep()

        self.assertEqual(report.cache_entries_removed, 1)
        self.assertNotIn('old', self.cache)
        self.assertIsNone(self.cache.lookup('old'))
        self.assertIsNotNone(self.cache.lookup('fresh'))

    def test_forget_without_cache(self):
        old = self.make_file('old.mp4', 7200)
        sweeper = self.make_sweeper(cache=None)
        report = sweeper.forget(sweeper.scan_expired())
        self.assertEqual(report.deleted, [old])
        self.assertEqual(report.cache_entries_removed, 0)

    async def test_start_and_stop(self):
        sweeper = self.make_sweeper(interval_seconds=3600)
        task = sweeper.start()
        self.assertIs(sweeper.start(), task)

        await sweeper.stop()

        self.assertTrue(task.cancelled())
        # Stopping twice is harmless
        await sweeper.stop()

    async def test_run_forever_sweeps_on_interval(self):
        old = self.make_file('old.mp4', 7200)
        sweeper = self.make_sweeper(interval_seconds=0)
        sweeper.start()
        for _ in range(50):
            if not old.exists():
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

        self.assertFalse(old.exists())

