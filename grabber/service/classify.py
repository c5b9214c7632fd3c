"""
Source classification.

Finds the link in a chat message and tags it with the site it belongs to.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from grabber.service.constants import ORIGIN_PATTERNS, UNKNOWN_ORIGIN

# A link must not start in the middle of another token (e.g. a path segment)
_BOUNDARY = r'(?<![\w.@/-])'

GENERIC_LINK_RE = re.compile(_BOUNDARY + r'(?:https?://|www\.)\S+', re.IGNORECASE)

ORIGIN_RES = [
    (origin, re.compile(_BOUNDARY + pattern, re.IGNORECASE)) for origin, pattern in ORIGIN_PATTERNS
]

_TRAILING_PUNCTUATION = '.,!?;:)]}>\'"'


@dataclass(frozen=True)
class ClassifiedSource:
    """A link extracted from message text"""

    url: str
    origin: str


def _clean(link):
    link = link.rstrip(_TRAILING_PUNCTUATION)
    if not re.match(r'https?://', link, re.IGNORECASE):
        link = f'https://{link}'
    return link


def classify(text) -> Optional[ClassifiedSource]:
    """
    Extract the link to fetch from a message.

    Known origins are tried in priority order, each taking the first match
    in the text. When no known origin matches, the first generic link is
    returned tagged 'unknown'.

    Args:
        text: Raw message text

    Returns:
        ClassifiedSource, or None when the text holds no link
    """
    if not text:
        return None

    for origin, pattern in ORIGIN_RES:
        match = pattern.search(text)
        if match:
            return ClassifiedSource(url=_clean(match.group(0)), origin=origin)

    match = GENERIC_LINK_RE.search(text)
    if match:
        return ClassifiedSource(url=_clean(match.group(0)), origin=UNKNOWN_ORIGIN)

    return None


def normalize_url(url):
    """
    Normalize a URL so trivially different spellings share a cache key.

    Adds a missing scheme, lowercases scheme and host, drops the fragment
    and a trailing slash on the path.
    """
    url = url.strip()
    if not re.match(r'[a-z][a-z0-9+.-]*://', url, re.IGNORECASE):
        url = f'https://{url}'
    parts = urlsplit(url)
    path = parts.path
    if len(path) > 1:
        path = path.rstrip('/')
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ''))


def fingerprint(url) -> str:
    """Stable cache key for a source URL (SHA-256 of the normalized URL)."""
    return hashlib.sha256(normalize_url(url).encode()).hexdigest()
