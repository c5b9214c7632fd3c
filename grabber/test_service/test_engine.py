"""
Tests for service/engine.py

End-to-end runs of the engine with the fetch tool and chat channel replaced
by the doubles in helpers.py.
"""

import asyncio
import os
import tempfile
import time
from pathlib import Path
from unittest.mock import patch

from django.test import SimpleTestCase

from grabber.channel.base import IncomingMessage
from grabber.service.engine import (
    HELP_TEXT,
    SHUTDOWN_TEXT,
    STATUS_TEXT,
    WELCOME_TEXT,
    Engine,
)
from grabber.service.errors import USER_MESSAGES, FailureReason
from grabber.test_service.helpers import (
    FakeChannel,
    FakeFetchTool,
    FakeRun,
    RecordingSleep,
    make_config,
)

SPAWN = 'grabber.service.fetch.spawn_fetch_tool'


class RecordingAnalytics:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    async def record(self, event):
        if self.fail:
            raise RuntimeError('database is locked')
        self.events.append(event)


def message(text, requester='u1', chat='c1', message_id='m1'):
    return IncomingMessage(text=text, requester_id=requester, chat_id=chat, message_id=message_id)


class EngineTest(SimpleTestCase):
    """Tests for the retrieval engine"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.downloads = Path(self._tmp.name) / 'downloads'
        self.channel = FakeChannel()
        self.analytics = RecordingAnalytics()
        self.sleep = RecordingSleep()
        self.logs = []

    def tearDown(self):
        self._tmp.cleanup()

    def make_engine(self, **overrides):
        return Engine(
            make_config(self.downloads, **overrides),
            self.channel,
            analytics=self.analytics,
            logger=self.logs.append,
            sleep=self.sleep,
        )

    async def test_new_link_delivered_inband(self):
        """Test a fresh link is fetched, uploaded, and its status reply removed"""
        engine = self.make_engine()
        tool = FakeFetchTool(FakeRun(payload=b'x' * 100))

        with patch(SPAWN, tool):
            task = await engine.handle(message('check this out https://example.com/v/123'))
            event = await task

        self.assertEqual(len(tool.calls), 1)
        self.assertEqual(self.channel.sent[0], ('c1', STATUS_TEXT))
        self.assertEqual(len(self.channel.media), 1)
        self.assertEqual(self.channel.deleted, [('c1', '101')])
        self.assertTrue(event.success)
        self.assertEqual(event.delivery, 'inband')
        self.assertEqual(event.origin, 'unknown')
        self.assertEqual(event.url, 'https://example.com/v/123')
        self.assertFalse(event.cache_hit)
        self.assertEqual(event.size_bytes, 100)
        self.assertEqual(self.analytics.events, [event])
        # Delivered in-band, so the artifact is gone from disk and cache
        self.assertEqual(list(self.downloads.iterdir()), [])
        self.assertEqual(len(engine.cache), 0)

    async def test_second_request_served_from_cache(self):
        """Test the same source from another user reuses the linked artifact"""
        engine = self.make_engine()
        tool = FakeFetchTool(FakeRun(payload=b'x' * 4096))

        with patch(SPAWN, tool):
            first = await (await engine.handle(message('https://example.com/v/1', requester='u1')))
            second = await (
                await engine.handle(message('https://EXAMPLE.com/v/1/', requester='u2'))
            )

        self.assertEqual(len(tool.calls), 1)
        self.assertEqual(first.delivery, 'link')
        self.assertFalse(first.cache_hit)
        self.assertTrue(second.cache_hit)
        self.assertEqual(second.delivery, 'link')
        self.assertEqual(first.fingerprint, second.fingerprint)
        links = [text for text in self.channel.texts() if '/downloads/' in text]
        self.assertEqual(len(links), 2)
        self.assertTrue(all('https://files.example.com/downloads/' in text for text in links))

    async def test_failing_source_reports_forbidden(self):
        """Test three failed attempts end in one forbidden failure reply"""
        engine = self.make_engine()
        tool = FakeFetchTool(FakeRun(returncode=1, stderr='ERROR: HTTP Error 403: Forbidden'))

        with patch(SPAWN, tool):
            event = await (await engine.handle(message('https://www.tiktok.com/@a/video/9')))

        self.assertEqual(len(tool.calls), 3)
        self.assertEqual(self.sleep.delays, [2, 4])
        self.assertFalse(event.success)
        self.assertEqual(event.error, 'forbidden')
        self.assertEqual(event.origin, 'tiktok')
        failures = [text for text in self.channel.texts() if text.startswith('❌')]
        self.assertEqual(len(failures), 1)
        self.assertIn(USER_MESSAGES[FailureReason.FORBIDDEN], failures[0])
        self.assertEqual(self.channel.media, [])

    async def test_rate_limited_second_link(self):
        """Test a quick second link from the same user is refused with a wait"""
        engine = self.make_engine()
        tool = FakeFetchTool()

        with patch(SPAWN, tool):
            task = await engine.handle(message('https://example.com/v/1'))
            refused = await engine.handle(message('https://example.com/v/2'))
            await task

        self.assertIsNone(refused)
        self.assertEqual(len(tool.calls), 1)
        waits = [text for text in self.channel.texts() if 'Please wait' in text]
        self.assertEqual(len(waits), 1)
        self.assertIn('10 seconds', waits[0])

    async def test_other_user_not_rate_limited(self):
        engine = self.make_engine()
        tool = FakeFetchTool()

        with patch(SPAWN, tool):
            first = await engine.handle(message('https://example.com/v/1', requester='u1'))
            second = await engine.handle(message('https://example.com/v/2', requester='u2'))
            await asyncio.gather(first, second)

        self.assertEqual(len(tool.calls), 2)

    async def test_concurrency_bound_across_jobs(self):
        """Test only fetch_concurrency tool runs happen at once"""
        engine = self.make_engine(fetch_concurrency=2)
        gate = asyncio.Event()
        tool = FakeFetchTool(gate=gate)

        with patch(SPAWN, tool):
            tasks = []
            for index in range(3):
                tasks.append(
                    await engine.handle(
                        message(f'https://example.com/v/{index}', requester=f'u{index}')
                    )
                )
            for _ in range(10):
                await asyncio.sleep(0)

            self.assertEqual(len(tool.calls), 2)
            self.assertEqual(engine.queue.active, 2)
            self.assertEqual(engine.queue.pending, 1)

            gate.set()
            events = await asyncio.gather(*tasks)

        self.assertEqual(len(tool.calls), 3)
        self.assertTrue(all(event.success for event in events))
        self.assertEqual(engine.queue.active, 0)

    async def test_linked_artifact_reclaimed_by_sweep(self):
        """Test a linked artifact stays until retention passes, then the sweep drops it"""
        engine = self.make_engine()
        tool = FakeFetchTool(FakeRun(payload=b'x' * 4096))

        with patch(SPAWN, tool):
            event = await (await engine.handle(message('https://example.com/v/big')))

        self.assertEqual(event.delivery, 'link')
        stored = list(self.downloads.iterdir())
        self.assertEqual(len(stored), 1)

        report = await engine.sweeper.sweep()
        self.assertEqual(report.deleted, [])
        self.assertIsNotNone(engine.cache.lookup(event.fingerprint))

        expired = time.time() - 3600 - 10
        os.utime(stored[0], (expired, expired))
        report = await engine.sweeper.sweep()

        self.assertEqual(report.deleted, stored)
        self.assertEqual(report.cache_entries_removed, 1)
        self.assertFalse(stored[0].exists())
        self.assertIsNone(engine.cache.lookup(event.fingerprint))

    async def test_cache_hit_not_held_behind_busy_slots(self):
        """Test a cached link is delivered while every fetch slot is taken"""
        engine = self.make_engine(fetch_concurrency=1)
        with patch(SPAWN, FakeFetchTool(FakeRun(payload=b'x' * 4096))):
            first = await (
                await engine.handle(message('https://example.com/v/big', requester='u1'))
            )
        self.assertEqual(first.delivery, 'link')

        gate = asyncio.Event()
        tool = FakeFetchTool(gate=gate)
        with patch(SPAWN, tool):
            blocked = await engine.handle(message('https://example.com/v/other', requester='u2'))
            for _ in range(10):
                await asyncio.sleep(0)
            self.assertEqual(engine.queue.active, 1)

            hit = await (await engine.handle(message('https://example.com/v/big', requester='u3')))

            self.assertTrue(hit.success)
            self.assertTrue(hit.cache_hit)
            self.assertEqual(hit.delivery, 'link')
            self.assertEqual(len(tool.calls), 1)
            self.assertFalse(blocked.done())

            gate.set()
            other = await blocked

        self.assertTrue(other.success)
        self.assertEqual(engine.queue.active, 0)

    async def test_text_without_link_ignored(self):
        engine = self.make_engine()
        self.assertIsNone(await engine.handle(message('hello there')))
        self.assertEqual(self.channel.sent, [])

    async def test_commands(self):
        engine = self.make_engine()

        await engine.handle(message('/start'))
        await engine.handle(message('/help'))
        await engine.handle(message('/stats@clipgrab_bot'))
        await engine.handle(message('/unknown'))

        texts = [text for _, text in self.channel.sent]
        self.assertEqual(len(texts), 3)
        self.assertEqual(texts[0], WELCOME_TEXT)
        self.assertEqual(texts[1], HELP_TEXT)
        self.assertIn('Bot Statistics', texts[2])
        self.assertIn('Max file age: 1 hours', texts[2])

    async def test_rejects_links_after_shutdown(self):
        engine = self.make_engine()
        engine.start()
        self.assertEqual(await engine.shutdown(), 0)

        result = await engine.handle(message('https://example.com/v/1'))

        self.assertIsNone(result)
        self.assertEqual(self.channel.texts(), [SHUTDOWN_TEXT])

    async def test_shutdown_waits_for_running_job(self):
        engine = self.make_engine()
        gate = asyncio.Event()
        tool = FakeFetchTool(gate=gate)

        with patch(SPAWN, tool):
            task = await engine.handle(message('https://example.com/v/1'))
            await asyncio.sleep(0)
            shutdown = asyncio.ensure_future(engine.shutdown())
            await asyncio.sleep(0)
            gate.set()
            abandoned = await shutdown

        self.assertEqual(abandoned, 0)
        self.assertTrue(task.done())
        self.assertTrue(task.result().success)

    async def test_clean_exit_without_file(self):
        engine = self.make_engine()
        tool = FakeFetchTool(FakeRun(write_file=False))

        with patch(SPAWN, tool):
            event = await (await engine.handle(message('https://example.com/v/1')))

        self.assertEqual(len(tool.calls), 1)
        self.assertEqual(event.error, 'artifact_missing')
        self.assertEqual(len([t for t in self.channel.texts() if t.startswith('❌')]), 1)

    async def test_oversize_without_public_url(self):
        """Test an artifact that can neither be uploaded nor linked fails cleanly"""
        engine = self.make_engine(public_url='')
        tool = FakeFetchTool(FakeRun(payload=b'x' * 4096))

        with patch(SPAWN, tool):
            event = await (await engine.handle(message('https://example.com/v/1')))

        self.assertFalse(event.success)
        self.assertEqual(event.error, 'delivery_failed')
        failures = [t for t in self.channel.texts() if t.startswith('❌')]
        self.assertEqual(len(failures), 1)

    async def test_unexpected_error_still_notifies(self):
        engine = self.make_engine()
        tool = FakeFetchTool()

        async def broken(*args, **kwargs):
            raise RuntimeError('disk on fire')

        engine.delivery.deliver = broken
        with patch(SPAWN, tool):
            event = await (await engine.handle(message('https://example.com/v/1')))

        self.assertEqual(event.error, 'unknown')
        self.assertEqual(len([t for t in self.channel.texts() if t.startswith('❌')]), 1)
        self.assertTrue(any('disk on fire' in line for line in self.logs))

    async def test_status_reply_failure_does_not_block_delivery(self):
        """Test the job still delivers when the chat refuses text messages"""
        self.channel.fail.add('send_text')
        engine = self.make_engine()
        tool = FakeFetchTool()

        with patch(SPAWN, tool):
            event = await (await engine.handle(message('https://example.com/v/1')))

        self.assertTrue(event.success)
        self.assertEqual(len(self.channel.media), 1)
        self.assertEqual(self.channel.deleted, [])

    async def test_failure_reply_falls_back_to_new_message(self):
        self.channel.fail.add('edit_text')
        engine = self.make_engine()
        tool = FakeFetchTool(FakeRun(returncode=1, stderr='ERROR: Video unavailable'))

        with patch(SPAWN, tool):
            event = await (await engine.handle(message('https://example.com/v/1')))

        self.assertEqual(event.error, 'not_found')
        self.assertEqual(self.channel.sent[-1][1].split('\n')[0], '❌ Failed to download video')

    async def test_progress_updates_status_reply(self):
        engine = self.make_engine()
        tool = FakeFetchTool(FakeRun(stdout=['[download]  45.0% of 1.00MiB']))

        with patch(SPAWN, tool):
            await (await engine.handle(message('https://example.com/v/1')))

        self.assertEqual(self.channel.edits, [('c1', '101', '⏳ Downloading your video... 40%')])

    async def test_analytics_failure_ignored(self):
        self.analytics = RecordingAnalytics(fail=True)
        engine = self.make_engine()
        tool = FakeFetchTool()

        with patch(SPAWN, tool):
            event = await (await engine.handle(message('https://example.com/v/1')))

        self.assertTrue(event.success)
        self.assertTrue(any('database is locked' in line for line in self.logs))

    def test_stats(self):
        engine = self.make_engine()
        stats = engine.stats()
        self.assertEqual(stats['cached_entries'], 0)
        self.assertEqual(stats['stored_files'], 0)
        self.assertEqual(stats['queue_pending'], 0)
        self.assertEqual(stats['retention_seconds'], 3600)
