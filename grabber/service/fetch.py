"""
Fetch service: drives yt-dlp as a subprocess with retries.

One RetryExecutor.run() call is one job:

    CheckCache -> Fetching -> Succeeded
    CheckCache -> Fetching -> Retrying -> Fetching -> ... -> Failed

A cache hit short-circuits before any subprocess is spawned. Every attempt
writes to a fresh artifact identifier; failed attempts back off for
2 ** attempt seconds until max_attempts runs have been made.
"""

import asyncio
import re
import subprocess
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from nanoid import generate

from grabber.service.cache import CacheEntry
from grabber.service.classify import fingerprint
from grabber.service.constants import (
    NANOID_ALPHABET,
    NANOID_SIZE,
    PARTIAL_SUFFIXES,
    PROGRESS_STEP,
    UNKNOWN_ORIGIN,
)
from grabber.service.errors import ArtifactMissingError, FetchFailedError, classify_failure

PROGRESS_RE = re.compile(r'\[download\]\s+(\d{1,3}(?:\.\d+)?)%')

# stdout lines kept per attempt; only ERROR lines among them feed failure
# classification, progress lines are ignored
STDOUT_TAIL_LINES = 20


@dataclass
class FetchRequest:
    """A link accepted for fetching"""

    source_url: str
    requester_id: str
    origin: str = UNKNOWN_ORIGIN
    chat_id: Optional[str] = None
    message_id: Optional[str] = None
    submitted_at: float = field(default_factory=time.time)

    @property
    def fingerprint(self):
        return fingerprint(self.source_url)


@dataclass
class FetchOutcome:
    """Result of a successful job"""

    entry: CacheEntry
    cache_hit: bool
    attempts: int
    duration_ms: int


def generate_artifact_id():
    """Generate an opaque artifact identifier (NanoID, A-Z a-z 0-9)"""
    return generate(NANOID_ALPHABET, size=NANOID_SIZE)


def build_ytdlp_argv(command, url, output_template, format_spec='best[ext=mp4]/best'):
    """
    Build the yt-dlp argv for one attempt.

    Single best file, no playlist expansion, one progress line per update.
    The file keeps its write time as mtime, which retention is measured from.
    """
    return list(command) + [
        '-f',
        format_spec,
        '--no-playlist',
        '--no-warnings',
        '--newline',
        '--progress',
        '--no-mtime',
        '-o',
        str(output_template),
        url,
    ]


def parse_progress(line) -> Optional[float]:
    """Extract the download percentage from a yt-dlp progress line"""
    match = PROGRESS_RE.search(line)
    if not match:
        return None
    return min(float(match.group(1)), 100.0)


def find_artifact(storage_dir, artifact_id) -> Optional[Path]:
    """
    Locate the file yt-dlp produced for artifact_id.

    Partial/working files are ignored.
    """
    storage_dir = Path(storage_dir)
    if not storage_dir.is_dir():
        return None
    for candidate in sorted(storage_dir.glob(f'{artifact_id}.*')):
        if not candidate.is_file():
            continue
        if any(candidate.name.endswith(suffix) for suffix in PARTIAL_SUFFIXES):
            continue
        return candidate
    return None


async def spawn_fetch_tool(argv):
    """Start yt-dlp with piped output"""
    return await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


class RetryExecutor:
    """
    Runs fetch jobs against an ArtifactCache and a storage directory.

    Args:
        cache: ArtifactCache consulted before and populated after fetching
        storage_dir: Directory artifacts are written to
        command: argv prefix that invokes yt-dlp
        max_attempts: Total subprocess runs allowed per job
        format_spec: yt-dlp format selector
        sleep: Coroutine function used for backoff waits
        logger: Optional callable(str) for logging
    """

    def __init__(
        self,
        cache,
        storage_dir,
        command,
        max_attempts=3,
        format_spec='best[ext=mp4]/best',
        sleep=asyncio.sleep,
        logger=None,
    ):
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')
        self.cache = cache
        self.storage_dir = Path(storage_dir)
        self.command = list(command)
        self.max_attempts = max_attempts
        self.format_spec = format_spec
        self._sleep = sleep
        self._logger = logger

    def _log(self, message):
        if self._logger:
            self._logger(message)

    def check_cache(self, request) -> Optional[FetchOutcome]:
        """Return a cache-hit outcome for request, or None"""
        entry = self.cache.lookup(request.fingerprint)
        if entry is None:
            return None
        return FetchOutcome(entry=entry, cache_hit=True, attempts=0, duration_ms=0)

    async def run(self, request, on_progress=None) -> FetchOutcome:
        """
        Fetch request.source_url, retrying on tool failure.

        Args:
            request: FetchRequest
            on_progress: Optional coroutine function(percent) called at every
                PROGRESS_STEP boundary; its failures are ignored

        Returns:
            FetchOutcome

        Raises:
            FetchFailedError: every attempt exited nonzero
            ArtifactMissingError: yt-dlp succeeded but wrote no file
        """
        cached = self.check_cache(request)
        if cached is not None:
            self._log(f'Cache hit for {request.source_url}')
            return cached

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        started = time.monotonic()
        reason = None
        diagnostics = ''

        for attempt in range(1, self.max_attempts + 1):
            artifact_id = generate_artifact_id()
            self._log(f'Fetching {request.source_url} (attempt {attempt}/{self.max_attempts})')

            returncode, diagnostics = await self._attempt(
                request.source_url, artifact_id, on_progress
            )

            if returncode == 0:
                artifact_path = find_artifact(self.storage_dir, artifact_id)
                if artifact_path is None:
                    self._log(f'yt-dlp exited cleanly but no file for {artifact_id}')
                    raise ArtifactMissingError(
                        f'No artifact {artifact_id}.* in {self.storage_dir} after fetch'
                    )

                entry = CacheEntry(
                    fingerprint=request.fingerprint,
                    artifact_path=artifact_path,
                    size_bytes=artifact_path.stat().st_size,
                )
                self.cache.insert(entry.fingerprint, entry)
                duration_ms = int((time.monotonic() - started) * 1000)
                self._log(
                    f'Fetched {artifact_path.name} ({entry.size_bytes} bytes) in {duration_ms} ms'
                )
                return FetchOutcome(
                    entry=entry, cache_hit=False, attempts=attempt, duration_ms=duration_ms
                )

            reason = classify_failure(diagnostics)
            self._discard_partials(artifact_id)
            self._log(f'yt-dlp exited with {returncode} ({reason.value})')

            if attempt < self.max_attempts:
                delay = 2**attempt
                self._log(f'Retrying in {delay}s')
                await self._sleep(delay)

        raise FetchFailedError(reason, self.max_attempts, detail=diagnostics[-2000:])

    async def _attempt(self, url, artifact_id, on_progress):
        """Run yt-dlp once. Returns (returncode, diagnostics text)."""
        output_template = self.storage_dir / f'{artifact_id}.%(ext)s'
        argv = build_ytdlp_argv(self.command, url, output_template, self.format_spec)

        try:
            proc = await spawn_fetch_tool(argv)
        except OSError as e:
            return -1, f'Could not start yt-dlp: {e}'

        stderr_task = asyncio.ensure_future(proc.stderr.read())
        tail = deque(maxlen=STDOUT_TAIL_LINES)
        last_bucket = 0

        try:
            async for raw in proc.stdout:
                line = raw.decode('utf-8', errors='replace').strip()
                if not line:
                    continue
                tail.append(line)
                percent = parse_progress(line)
                if percent is None or on_progress is None:
                    continue
                bucket = int(percent // PROGRESS_STEP)
                if bucket > last_bucket:
                    last_bucket = bucket
                    await self._report_progress(on_progress, bucket * PROGRESS_STEP)

            stderr = (await stderr_task).decode('utf-8', errors='replace')
            returncode = await proc.wait()
        finally:
            if proc.returncode is None:
                self._log('Reading yt-dlp output failed, killing the process')
                stderr_task.cancel()
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        errors = [line for line in tail if line.startswith('ERROR')]
        diagnostics = '\n'.join([stderr.strip()] + errors).strip()
        return returncode, diagnostics

    async def _report_progress(self, on_progress, percent):
        try:
            await on_progress(percent)
        except Exception as e:
            self._log(f'Progress update failed (ignored): {e}')

    def _discard_partials(self, artifact_id):
        for leftover in self.storage_dir.glob(f'{artifact_id}.*'):
            try:
                leftover.unlink()
            except OSError as e:
                self._log(f'Could not remove {leftover.name}: {e}')


def get_ytdlp_version(command):
    """
    Ask the fetch tool for its version.

    Returns:
        Version string, or None when the command cannot be run
    """
    try:
        result = subprocess.run(
            list(command) + ['--version'], capture_output=True, text=True, timeout=30
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None
