"""
Source and artifact constants.

Centralized definitions of known origins, the NanoID alphabet and the
file suffixes yt-dlp leaves behind while a download is in progress.
"""

# Known origins, checked in this order. Each pattern matches the host part
# of a link (with optional scheme and www.).
ORIGIN_PATTERNS = [
    ('tiktok', r'(?:https?://)?(?:www\.|m\.)?(?:vm\.|vt\.)?tiktok\.com/\S+'),
    ('instagram', r'(?:https?://)?(?:www\.)?instagram\.com/\S+'),
    ('youtube', r'(?:https?://)?(?:www\.|m\.|music\.)?(?:youtube\.com|youtu\.be)/\S+'),
    ('twitter', r'(?:https?://)?(?:www\.|mobile\.)?(?:twitter\.com|x\.com)/\S+'),
    ('facebook', r'(?:https?://)?(?:www\.|m\.|web\.)?(?:facebook\.com|fb\.watch)/\S+'),
    ('reddit', r'(?:https?://)?(?:www\.|old\.)?(?:reddit\.com|redd\.it)/\S+'),
    ('vimeo', r'(?:https?://)?(?:www\.|player\.)?vimeo\.com/\S+'),
]

UNKNOWN_ORIGIN = 'unknown'

# Alphabet for artifact identifiers
NANOID_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789'
NANOID_SIZE = 21

# yt-dlp working files that never count as a finished artifact
PARTIAL_SUFFIXES = ['.part', '.ytdl', '.temp']

# Progress callbacks fire each time the percentage enters a new bucket
PROGRESS_STEP = 20
