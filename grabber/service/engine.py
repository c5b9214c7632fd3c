"""
Retrieval orchestration engine.

Wires the classifier, rate limiter, cache, queue, retry executor, delivery
policy and cleanup sweeper together and owns their in-memory state. All
methods run on one asyncio event loop; the cache and rate-limit tables are
not safe to share with other threads.

Every admitted job ends with exactly one terminal notification to the
requester: the media itself, a download link, or an error message.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from grabber.channel.base import ChannelError
from grabber.service.cache import ArtifactCache
from grabber.service.classify import classify
from grabber.service.cleanup import CleanupSweeper
from grabber.service.delivery import METHOD_INBAND, DeliveryPolicy, link_message
from grabber.service.errors import (
    ArtifactMissingError,
    DeliveryError,
    FailureReason,
    FetchFailedError,
    QueueClosedError,
)
from grabber.service.fetch import FetchRequest, RetryExecutor
from grabber.service.queue import FetchQueue
from grabber.service.ratelimit import RateLimiter

WELCOME_TEXT = """🎬 Welcome to the Video Downloader Bot!

📱 How to use:
1. Send me a video link (TikTok, Instagram, YouTube, X, Reddit, ...)
2. I'll download it for you
3. You get the video here, or a download link if it is too large

Just paste the link and I'll handle the rest! 🚀"""

HELP_TEXT = """📖 Help & Commands

/start - Show welcome message
/help - Show this help message
/stats - Show bot statistics

Simply send me a video URL and I'll download it for you!

If something doesn't work, make sure:
• The link is valid
• The video is publicly accessible
• The link is not expired"""

STATUS_TEXT = '⏳ Downloading your video... Please wait!'
SHUTDOWN_TEXT = '🛑 The bot is restarting and not accepting new links. Please try again shortly.'


@dataclass
class OutcomeEvent:
    """One analytics record per completed job"""

    requester_id: str
    url: str
    fingerprint: str
    origin: str
    success: bool
    error: Optional[str] = None
    size_bytes: Optional[int] = None
    duration_ms: int = 0
    cache_hit: bool = False
    delivery: Optional[str] = None


def rate_limit_text(wait_seconds):
    unit = 'second' if wait_seconds == 1 else 'seconds'
    return f'⏳ Please wait {wait_seconds} {unit} before sending another link.'


def failure_text(user_message):
    return (
        f'❌ Failed to download video\n\n{user_message}\n\n'
        'Please make sure the link is valid and try again.'
    )


class Engine:
    """
    Args:
        config: EngineConfig
        channel: Channel used for replies and uploads
        analytics: Object with an async record(OutcomeEvent), or None
        logger: Optional callable(str) for logging
        sleep: Coroutine function used for retry backoff
    """

    def __init__(self, config, channel, analytics=None, logger=None, sleep=asyncio.sleep):
        self.config = config
        self.channel = channel
        self.analytics = analytics
        self._logger = logger
        self.started_at = time.time()

        self.cache = ArtifactCache(config.cache_capacity, logger=logger)
        self.rate_limiter = RateLimiter(config.rate_limit_seconds)
        self.queue = FetchQueue(config.fetch_concurrency, logger=logger)
        self.executor = RetryExecutor(
            self.cache,
            config.downloads_dir,
            config.ytdlp_command,
            max_attempts=config.max_fetch_attempts,
            format_spec=config.ytdlp_format,
            sleep=sleep,
            logger=logger,
        )
        self.delivery = DeliveryPolicy(
            channel,
            self.cache,
            config.public_url,
            config.max_inband_bytes,
            config.retention_seconds,
            logger=logger,
        )
        self.sweeper = CleanupSweeper(
            config.downloads_dir,
            self.cache,
            config.retention_seconds,
            config.cleanup_interval_seconds,
            logger=logger,
        )

    def _log(self, message):
        if self._logger:
            self._logger(message)

    # Lifecycle

    def start(self):
        self.config.downloads_dir.mkdir(parents=True, exist_ok=True)
        self.sweeper.start()
        self._log('Engine started')

    async def shutdown(self):
        """Stop the sweeper and drain the queue. Returns abandoned job count."""
        await self.sweeper.stop()
        abandoned = await self.queue.shutdown(self.config.shutdown_timeout)
        self._log(f'Engine stopped ({abandoned} job(s) abandoned)')
        return abandoned

    # Inbound

    async def handle(self, message):
        if message.text and message.text.startswith('/'):
            return await self.handle_command(message)
        return await self.handle_message(message)

    async def handle_command(self, message):
        command = message.text.split()[0].split('@')[0].lower()
        if command == '/start':
            text = WELCOME_TEXT
        elif command == '/help':
            text = HELP_TEXT
        elif command == '/stats':
            text = self.stats_text()
        else:
            return None
        await self._notify(self.channel.send_text, message.chat_id, text)
        return None

    async def handle_message(self, message) -> Optional[asyncio.Task]:
        """
        Classify, throttle and enqueue a message.

        Returns:
            The job task, or None when nothing was queued
        """
        source = classify(message.text)
        if source is None:
            return None

        admission = self.rate_limiter.admit(message.requester_id)
        if not admission.allowed:
            self._log(f'Rate limited {message.requester_id} for {admission.wait_seconds}s')
            await self._reply(
                message.chat_id, rate_limit_text(admission.wait_seconds), message.message_id
            )
            return None

        if not self.queue.accepting:
            await self._reply(message.chat_id, SHUTDOWN_TEXT, message.message_id)
            return None

        request = FetchRequest(
            source_url=source.url,
            requester_id=message.requester_id,
            origin=source.origin,
            chat_id=message.chat_id,
            message_id=message.message_id,
        )
        self._log(f'Accepted {source.origin} link from {message.requester_id}: {source.url}')

        status_id = await self._notify(
            self.channel.send_text, message.chat_id, STATUS_TEXT, reply_to=message.message_id
        )

        try:
            return self.queue.submit(lambda: self.process(request, status_id))
        except QueueClosedError:
            await self._finish(request, status_id, SHUTDOWN_TEXT)
            return None

    # Job

    async def process(self, request, status_id=None):
        """Run one job to its terminal notification and record the outcome"""
        event = OutcomeEvent(
            requester_id=request.requester_id,
            url=request.source_url,
            fingerprint=request.fingerprint,
            origin=request.origin,
            success=False,
        )

        async def on_progress(percent):
            if status_id is not None:
                await self._notify(
                    self.channel.edit_text,
                    request.chat_id,
                    status_id,
                    f'⏳ Downloading your video... {percent}%',
                )

        try:
            outcome = self.executor.check_cache(request)
            if outcome is None:
                async with self.queue.slot():
                    outcome = await self.executor.run(request, on_progress=on_progress)

            event.cache_hit = outcome.cache_hit
            event.size_bytes = outcome.entry.size_bytes
            event.duration_ms = outcome.duration_ms

            result = await self.delivery.deliver(
                request.chat_id, outcome.entry, reply_to=request.message_id
            )
        except FetchFailedError as e:
            event.error = e.reason.value
            await self._finish(request, status_id, failure_text(e.user_message))
        except (ArtifactMissingError, DeliveryError) as e:
            self._log(f'{e.classification}: {e}')
            event.error = e.classification
            await self._finish(request, status_id, failure_text(e.user_message))
        except Exception as e:
            self._log(f'Unexpected error processing {request.source_url}: {e!r}')
            event.error = FailureReason.UNKNOWN.value
            await self._finish(
                request, status_id, failure_text('Something went wrong on our side.')
            )
        else:
            event.success = True
            event.delivery = result.method
            if result.method == METHOD_INBAND:
                if status_id is not None:
                    await self._notify(self.channel.delete_message, request.chat_id, status_id)
            else:
                await self._finish(request, status_id, link_message(result))
            self._log(f'Delivered {request.source_url} via {result.method}')

        await self._record(event)
        return event

    # Replies

    async def _notify(self, operation, *args, **kwargs):
        """Non-critical channel call; failures are logged and return None"""
        try:
            return await operation(*args, **kwargs)
        except ChannelError as e:
            self._log(f'Channel call {getattr(operation, "__name__", operation)} failed: {e}')
            return None

    async def _reply(self, chat_id, text, reply_to=None):
        return await self._notify(self.channel.send_text, chat_id, text, reply_to=reply_to)

    async def _finish(self, request, status_id, text):
        """Terminal text notification: edit the status reply, else send anew"""
        if status_id is not None:
            try:
                await self.channel.edit_text(request.chat_id, status_id, text)
                return
            except ChannelError as e:
                self._log(f'Could not edit status reply: {e}')
        try:
            await self.channel.send_text(request.chat_id, text, reply_to=request.message_id)
        except ChannelError as e:
            self._log(f'Could not notify {request.requester_id}: {e}')

    async def _record(self, event):
        if self.analytics is None:
            return
        try:
            await self.analytics.record(event)
        except Exception as e:
            self._log(f'Analytics write failed (ignored): {e}')

    # Observability

    def stats(self):
        downloads_dir = self.config.downloads_dir
        files = []
        if downloads_dir.is_dir():
            files = [p for p in downloads_dir.iterdir() if p.is_file()]
        return {
            'cached_entries': len(self.cache),
            'stored_files': len(files),
            'queue_pending': self.queue.pending,
            'queue_active': self.queue.active,
            'jobs_in_flight': self.queue.in_flight,
            'uptime_seconds': int(time.time() - self.started_at),
            'cleanup_interval_seconds': self.config.cleanup_interval_seconds,
            'retention_seconds': self.config.retention_seconds,
        }

    def stats_text(self):
        stats = self.stats()
        return (
            '📊 Bot Statistics\n\n'
            f'🎥 Videos cached: {stats["cached_entries"]} '
            f'({stats["stored_files"]} files on disk)\n'
            f'📥 Queue: {stats["queue_active"]} active, {stats["queue_pending"]} waiting\n'
            f'⏱️ Uptime: {stats["uptime_seconds"] // 3600} hours\n'
            f'🧹 Auto-cleanup: Every {stats["cleanup_interval_seconds"] // 60} minutes\n'
            f'📁 Max file age: {stats["retention_seconds"] // 3600} hours'
        )
