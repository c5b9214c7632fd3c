"""
Django settings for the clipgrab project.

All runtime knobs come from environment variables (optionally loaded from a
.env file in the project root). Engine-specific values are prefixed with
CLIPGRAB_ and read through grabber.service.config.
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / '.env')


def _env_bool(name, default=False):
    return os.environ.get(name, str(default)).lower() in ('1', 'true', 'yes')


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-clipgrab-development-key')

DEBUG = _env_bool('DJANGO_DEBUG', False)

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'grabber',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'clipgrab.urls'

WSGI_APPLICATION = 'clipgrab.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('CLIPGRAB_DATABASE_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = False
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Chat channel
CLIPGRAB_TELEGRAM_BOT_TOKEN = os.environ.get('TELEGRAM_BOT_TOKEN', '')
CLIPGRAB_TELEGRAM_API_URL = os.environ.get('TELEGRAM_API_URL', 'https://api.telegram.org')
CLIPGRAB_POLL_TIMEOUT = int(os.environ.get('CLIPGRAB_POLL_TIMEOUT', '30'))

# Public address the downloads/ endpoint is reachable at (link fallback).
# Empty disables link delivery.
CLIPGRAB_PUBLIC_URL = os.environ.get('PUBLIC_URL', '').rstrip('/')

# Artifact storage
CLIPGRAB_DOWNLOADS_DIR = Path(os.environ.get('CLIPGRAB_DOWNLOADS_DIR', str(BASE_DIR / 'downloads')))

# Engine limits
CLIPGRAB_FETCH_CONCURRENCY = int(os.environ.get('CLIPGRAB_FETCH_CONCURRENCY', '3'))
CLIPGRAB_RATE_LIMIT_SECONDS = int(os.environ.get('CLIPGRAB_RATE_LIMIT_SECONDS', '10'))
CLIPGRAB_MAX_FETCH_ATTEMPTS = int(os.environ.get('CLIPGRAB_MAX_FETCH_ATTEMPTS', '3'))
CLIPGRAB_MAX_FILE_AGE_HOURS = int(os.environ.get('MAX_FILE_AGE_HOURS', '24'))
CLIPGRAB_CLEANUP_INTERVAL_MINUTES = int(os.environ.get('CLEANUP_INTERVAL_MINUTES', '60'))
CLIPGRAB_CACHE_CAPACITY = int(os.environ.get('CLIPGRAB_CACHE_CAPACITY', '500'))
CLIPGRAB_MAX_INBAND_BYTES = int(
    os.environ.get('CLIPGRAB_MAX_INBAND_BYTES', str(50 * 1024 * 1024))
)
CLIPGRAB_SHUTDOWN_TIMEOUT = int(os.environ.get('CLIPGRAB_SHUTDOWN_TIMEOUT', '30'))

# Command used to invoke yt-dlp. Defaults to the yt_dlp module of the running
# interpreter so the installed package version is the one used.
CLIPGRAB_YTDLP_COMMAND = os.environ.get(
    'CLIPGRAB_YTDLP_COMMAND', f'"{sys.executable}" -m yt_dlp'
)
CLIPGRAB_YTDLP_FORMAT = os.environ.get('CLIPGRAB_YTDLP_FORMAT', 'best[ext=mp4]/best')
