"""
Configuration adapter for the retrieval engine.

Centralizes access to Django settings so the service layer itself can be
built from a plain EngineConfig (tests, scripts) without touching settings.
"""

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from django.conf import settings


@dataclass
class EngineConfig:
    """Values the engine components are built from"""

    downloads_dir: Path
    public_url: str = ''
    fetch_concurrency: int = 3
    rate_limit_seconds: int = 10
    max_fetch_attempts: int = 3
    retention_seconds: int = 24 * 3600
    cleanup_interval_seconds: int = 3600
    cache_capacity: int = 500
    max_inband_bytes: int = 50 * 1024 * 1024
    shutdown_timeout: int = 30
    ytdlp_command: List[str] = field(default_factory=lambda: ['yt-dlp'])
    ytdlp_format: str = 'best[ext=mp4]/best'

    def __post_init__(self):
        self.downloads_dir = Path(self.downloads_dir)
        self.public_url = (self.public_url or '').rstrip('/')


def parse_command(command_string):
    """
    Split a configured command line into an argv list.

    Example:
        >>> parse_command('"/usr/bin/python3" -m yt_dlp')
        ['/usr/bin/python3', '-m', 'yt_dlp']
    """
    if not command_string:
        return ['yt-dlp']
    return shlex.split(command_string)


def get_engine_config():
    """Build an EngineConfig from Django settings"""
    return EngineConfig(
        downloads_dir=settings.CLIPGRAB_DOWNLOADS_DIR,
        public_url=settings.CLIPGRAB_PUBLIC_URL,
        fetch_concurrency=settings.CLIPGRAB_FETCH_CONCURRENCY,
        rate_limit_seconds=settings.CLIPGRAB_RATE_LIMIT_SECONDS,
        max_fetch_attempts=settings.CLIPGRAB_MAX_FETCH_ATTEMPTS,
        retention_seconds=settings.CLIPGRAB_MAX_FILE_AGE_HOURS * 3600,
        cleanup_interval_seconds=settings.CLIPGRAB_CLEANUP_INTERVAL_MINUTES * 60,
        cache_capacity=settings.CLIPGRAB_CACHE_CAPACITY,
        max_inband_bytes=settings.CLIPGRAB_MAX_INBAND_BYTES,
        shutdown_timeout=settings.CLIPGRAB_SHUTDOWN_TIMEOUT,
        ytdlp_command=parse_command(settings.CLIPGRAB_YTDLP_COMMAND),
        ytdlp_format=settings.CLIPGRAB_YTDLP_FORMAT,
    )


def get_downloads_dir():
    """Get the artifact storage directory"""
    return Path(settings.CLIPGRAB_DOWNLOADS_DIR)
