"""
Django management command that runs the bot.

Long-polls Telegram for messages, hands them to the retrieval engine and
keeps the cleanup sweeper running. SIGINT/SIGTERM stop polling, then the
queue is drained for up to CLIPGRAB_SHUTDOWN_TIMEOUT seconds.
"""

import asyncio
import signal
from datetime import datetime

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from grabber.analytics import DatabaseAnalytics
from grabber.channel.base import ChannelError
from grabber.channel.telegram import TelegramChannel
from grabber.service.config import get_engine_config
from grabber.service.engine import Engine
from grabber.service.fetch import get_ytdlp_version

# Pause after a failed getUpdates call before polling again
POLL_ERROR_BACKOFF = 5


class Command(BaseCommand):
    help = 'Run the chat bot: receive links, fetch them with yt-dlp and deliver the media'

    def add_arguments(self, parser):
        parser.add_argument(
            '--quiet', action='store_true', help='Only print startup and shutdown messages'
        )

    def handle(self, *args, **options):
        quiet = options['quiet']

        token = settings.CLIPGRAB_TELEGRAM_BOT_TOKEN
        if not token:
            raise CommandError('TELEGRAM_BOT_TOKEN is not set (environment or .env file)')

        config = get_engine_config()
        if not config.public_url:
            self.stdout.write(
                self.style.WARNING(
                    '⚠ PUBLIC_URL is not set: videos too large to upload cannot be delivered'
                )
            )
        else:
            self.stdout.write(self.style.SUCCESS(f'✓ Public URL: {config.public_url}'))

        version = get_ytdlp_version(config.ytdlp_command)
        if version is None:
            self.stdout.write(
                self.style.WARNING(
                    '⚠ yt-dlp not found. Install it: '
                    'https://github.com/yt-dlp/yt-dlp#installation'
                )
            )
        else:
            self.stdout.write(self.style.SUCCESS(f'✓ yt-dlp {version} is available'))

        config.downloads_dir.mkdir(parents=True, exist_ok=True)
        self.stdout.write(
            self.style.SUCCESS(f'✓ Downloads directory ready: {config.downloads_dir}')
        )

        logger = None if quiet else self._make_logger()
        channel = TelegramChannel(
            token,
            api_url=settings.CLIPGRAB_TELEGRAM_API_URL,
            poll_timeout=settings.CLIPGRAB_POLL_TIMEOUT,
            logger=logger,
        )
        engine = Engine(config, channel, analytics=DatabaseAnalytics(logger=logger), logger=logger)

        abandoned = asyncio.run(self._serve(channel, engine, logger))

        if abandoned:
            self.stdout.write(
                self.style.WARNING(
                    f'Stopped with {abandoned} unfinished job(s); their yt-dlp processes may '
                    'still be running'
                )
            )
        else:
            self.stdout.write(self.style.SUCCESS('✓ Shut down cleanly'))

    def _make_logger(self):
        def log(message):
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            self.stdout.write(f'[{timestamp}] {message}')

        return log

    async def _serve(self, channel, engine, logger):
        def log(message):
            if logger:
                logger(message)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass

        engine.start()
        self.stdout.write(self.style.SUCCESS('🤖 Bot is running, waiting for messages...'))

        handlers = set()
        stopper = asyncio.ensure_future(stop.wait())
        while not stop.is_set():
            poll = asyncio.ensure_future(channel.get_updates())
            done, _ = await asyncio.wait({poll, stopper}, return_when=asyncio.FIRST_COMPLETED)
            if poll not in done:
                poll.cancel()
                break

            try:
                messages = poll.result()
            except ChannelError as e:
                log(f'Polling error: {e}')
                await asyncio.sleep(POLL_ERROR_BACKOFF)
                continue

            for message in messages:
                handler = asyncio.ensure_future(engine.handle(message))
                handlers.add(handler)
                handler.add_done_callback(handlers.discard)

        channel.stop_polling()
        self.stdout.write('\n👋 Shutting down gracefully...')
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)
        return await engine.shutdown()
