"""
Test doubles for the service tests: a scripted yt-dlp stand-in and an
in-memory chat channel.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from grabber.channel.base import Channel, ChannelError
from grabber.service.config import EngineConfig


@dataclass
class FakeRun:
    """What one fake yt-dlp invocation does"""

    returncode: int = 0
    ext: str = 'mp4'
    payload: bytes = b'fake video data'
    stdout: List[str] = field(default_factory=list)
    stderr: str = ''
    write_file: bool = True


class FakeProcess:
    def __init__(self, returncode, stdout_lines, stderr):
        self.returncode = returncode
        self.stdout = asyncio.StreamReader()
        for line in stdout_lines:
            self.stdout.feed_data(f'{line}\n'.encode())
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr.encode())
        self.stderr.feed_eof()

    async def wait(self):
        return self.returncode


class FakeFetchTool:
    """
    Replacement for spawn_fetch_tool.

    Plays the scripted runs in order (the last one repeats) and writes the
    artifact yt-dlp would have produced for successful runs.
    """

    def __init__(self, *runs, gate=None):
        self.runs = list(runs) or [FakeRun()]
        self.calls = []
        self.gate = gate

    async def __call__(self, argv):
        self.calls.append(argv)
        run = self.runs[min(len(self.calls), len(self.runs)) - 1]
        if self.gate is not None:
            await self.gate.wait()
        if run.returncode == 0 and run.write_file:
            template = argv[argv.index('-o') + 1]
            Path(template.replace('%(ext)s', run.ext)).write_bytes(run.payload)
        return FakeProcess(run.returncode, run.stdout, run.stderr)


class FakeChannel(Channel):
    """Records every call; individual operations can be made to fail"""

    def __init__(self, max_upload_bytes=50 * 1024 * 1024, fail=()):
        self.max_upload_bytes = max_upload_bytes
        self.fail = set(fail)
        self.sent = []
        self.media = []
        self.edits = []
        self.deleted = []
        self._next_id = 100

    def _new_id(self):
        self._next_id += 1
        return str(self._next_id)

    async def send_text(self, chat_id, text, reply_to=None):
        if 'send_text' in self.fail:
            raise ChannelError('send_text failed')
        self.sent.append((chat_id, text))
        return self._new_id()

    async def send_media(self, chat_id, path, caption=None, reply_to=None):
        if 'send_media' in self.fail:
            raise ChannelError('send_media failed')
        self.media.append((chat_id, Path(path).name))
        return self._new_id()

    async def edit_text(self, chat_id, message_id, text):
        if 'edit_text' in self.fail:
            raise ChannelError('edit_text failed')
        self.edits.append((chat_id, message_id, text))

    async def delete_message(self, chat_id, message_id):
        if 'delete_message' in self.fail:
            raise ChannelError('delete_message failed')
        self.deleted.append((chat_id, message_id))

    def texts(self):
        """All text shown to the user, sends and edits, in order"""
        return [text for _, text in self.sent] + [text for _, _, text in self.edits]


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays without waiting"""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_config(downloads_dir, **overrides):
    values = {
        'downloads_dir': Path(downloads_dir),
        'public_url': 'https://files.example.com',
        'fetch_concurrency': 2,
        'rate_limit_seconds': 10,
        'max_fetch_attempts': 3,
        'retention_seconds': 3600,
        'cleanup_interval_seconds': 60,
        'cache_capacity': 10,
        'max_inband_bytes': 1024,
        'shutdown_timeout': 5,
        'ytdlp_command': ['yt-dlp'],
    }
    values.update(overrides)
    return EngineConfig(**values)
