"""
Failure taxonomy for the retrieval engine.

classify_failure() maps the diagnostic text yt-dlp writes on a failed run
to a FailureReason. The patterns below are the contract: they are checked
in order, case-insensitively, and the first group with a matching marker
wins. Markers are substrings, except HTTP status codes, which must stand
alone so digits inside a video ID do not count.
"""

import re
from enum import Enum


class FailureReason(str, Enum):
    FORBIDDEN = 'forbidden'
    NOT_FOUND = 'not_found'
    TIMEOUT = 'timeout'
    NETWORK = 'network'
    EXTRACTION = 'extraction'
    UNKNOWN = 'unknown'


FAILURE_PATTERNS = [
    (
        FailureReason.FORBIDDEN,
        [
            re.compile(r'\b403\b'),
            'forbidden',
            'geo',
            'not available in your country',
            'private video',
            'login required',
            'sign in',
        ],
    ),
    (
        FailureReason.NOT_FOUND,
        [
            re.compile(r'\b404\b'),
            'not found',
            'does not exist',
            'video unavailable',
            'has been removed',
        ],
    ),
    (FailureReason.TIMEOUT, ['timed out', 'timeout']),
    (
        FailureReason.NETWORK,
        [
            'network',
            'connection',
            'unable to download webpage',
            'name or service not known',
            'temporary failure in name resolution',
        ],
    ),
    (
        FailureReason.EXTRACTION,
        ['unsupported url', 'unable to extract', 'no video formats', 'extractor'],
    ),
]

USER_MESSAGES = {
    FailureReason.FORBIDDEN: (
        'The video is private, age-restricted or not available in the server region.'
    ),
    FailureReason.NOT_FOUND: 'The video could not be found. It may have been deleted.',
    FailureReason.TIMEOUT: 'The source site took too long to respond.',
    FailureReason.NETWORK: 'The source site could not be reached.',
    FailureReason.EXTRACTION: 'This link is not supported or the page holds no video.',
    FailureReason.UNKNOWN: 'Failed to download the video.',
}


def _matches(marker, text):
    if isinstance(marker, str):
        return marker in text
    return marker.search(text) is not None


def classify_failure(text) -> FailureReason:
    """
    Classify fetch tool diagnostics into a FailureReason.

    Args:
        text: Captured stderr (and stdout tail) of the failed run

    Returns:
        FailureReason, UNKNOWN when nothing matches
    """
    if not text:
        return FailureReason.UNKNOWN
    lowered = text.lower()
    for reason, markers in FAILURE_PATTERNS:
        if any(_matches(marker, lowered) for marker in markers):
            return reason
    return FailureReason.UNKNOWN


class ClipGrabError(Exception):
    """Base class for engine errors"""


class QueueClosedError(ClipGrabError):
    """The fetch queue no longer accepts jobs (shutdown in progress)"""


class FetchFailedError(ClipGrabError):
    """The fetch tool failed on every attempt"""

    def __init__(self, reason, attempts, detail=''):
        self.reason = reason
        self.attempts = attempts
        self.detail = detail
        super().__init__(f'Fetch failed after {attempts} attempt(s): {reason.value}')

    @property
    def user_message(self):
        return USER_MESSAGES[self.reason]


class ArtifactMissingError(ClipGrabError):
    """The fetch tool exited cleanly but no artifact was written"""

    classification = 'artifact_missing'
    user_message = 'The download finished but the file was not saved. Please try again.'


class DeliveryError(ClipGrabError):
    """The artifact can neither be sent in-band nor linked"""

    classification = 'delivery_failed'
    user_message = (
        'The video is too large to send here and no download link is available. '
        'Try a shorter video.'
    )
