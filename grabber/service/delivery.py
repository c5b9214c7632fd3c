"""
Delivery policy.

Chooses between uploading an artifact through the chat channel and
replying with a download link, and decides what happens to the artifact
afterwards:

- in-band upload succeeded: the file and its cache entry are removed,
  unless a link to the same file was handed out earlier
- link fallback: the file stays until the cleanup sweeper reclaims it,
  so the link keeps working for the rest of the retention window
"""

import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from grabber.channel.base import ChannelError
from grabber.service.errors import ArtifactMissingError, DeliveryError

METHOD_INBAND = 'inband'
METHOD_LINK = 'link'


@dataclass
class DeliveryResult:
    method: str
    message_id: Optional[str] = None
    link: Optional[str] = None
    expires_in: Optional[int] = None


def format_duration(seconds):
    """Human readable remaining time, e.g. '23 hours' or '45 minutes'"""
    seconds = max(0, int(seconds))
    if seconds >= 2 * 3600:
        return f'{seconds // 3600} hours'
    if seconds >= 3600:
        return '1 hour'
    minutes = max(1, seconds // 60)
    return f'{minutes} minute{"s" if minutes != 1 else ""}'


def link_message(result):
    """Reply text for a link delivery"""
    return (
        '✅ Video downloaded successfully!\n\n'
        f'📥 Download: {result.link}\n\n'
        f'⏳ The link stays valid for about {format_duration(result.expires_in)}.'
    )


class DeliveryPolicy:
    """
    Args:
        channel: Channel used for in-band uploads
        cache: ArtifactCache kept consistent with deletions
        public_url: Base address the downloads/ endpoint is served at;
            empty disables link delivery
        max_inband_bytes: Largest artifact sent in-band
        retention_seconds: Artifact lifetime enforced by the cleanup sweeper
        logger: Optional callable(str) for logging
    """

    def __init__(
        self,
        channel,
        cache,
        public_url,
        max_inband_bytes,
        retention_seconds,
        logger=None,
        clock=time.time,
    ):
        self.channel = channel
        self.cache = cache
        self.public_url = (public_url or '').rstrip('/')
        self.max_inband_bytes = max_inband_bytes
        self.retention_seconds = retention_seconds
        self._logger = logger
        self._clock = clock

    def _log(self, message):
        if self._logger:
            self._logger(message)

    @property
    def inband_ceiling(self):
        channel_limit = getattr(self.channel, 'max_upload_bytes', None)
        if channel_limit is None:
            return self.max_inband_bytes
        return min(self.max_inband_bytes, channel_limit)

    def build_link(self, entry):
        return f'{self.public_url}/downloads/{quote(entry.artifact_path.name)}'

    def expires_in(self, entry):
        """Seconds until the sweeper may reclaim entry's artifact"""
        try:
            mtime = entry.artifact_path.stat().st_mtime
        except OSError:
            mtime = entry.created_at
        return int(mtime + self.retention_seconds - self._clock())

    async def deliver(self, chat_id, entry, reply_to=None, caption=None) -> DeliveryResult:
        """
        Deliver entry's artifact to chat_id.

        Raises:
            ArtifactMissingError: the artifact vanished before or during delivery
            DeliveryError: too large (or upload failed) and no public URL
        """
        if not entry.artifact_path.is_file():
            self.cache.remove_by_artifact_path(entry.artifact_path)
            raise ArtifactMissingError(f'{entry.artifact_path.name} vanished before delivery')

        if entry.size_bytes <= self.inband_ceiling:
            try:
                message_id = await self.channel.send_media(
                    chat_id, entry.artifact_path, caption=caption, reply_to=reply_to
                )
            except ChannelError as e:
                self._log(f'In-band upload of {entry.artifact_path.name} failed: {e}')
            else:
                self._discard(entry)
                return DeliveryResult(method=METHOD_INBAND, message_id=message_id)
        else:
            self._log(
                f'{entry.artifact_path.name} is {entry.size_bytes} bytes, '
                f'over the in-band limit of {self.inband_ceiling}'
            )

        if not self.public_url:
            raise DeliveryError(
                f'Cannot deliver {entry.artifact_path.name}: in-band failed and no PUBLIC_URL'
            )

        # a concurrent in-band delivery of the same entry may have removed the file
        if not entry.artifact_path.is_file():
            self.cache.remove_by_artifact_path(entry.artifact_path)
            raise ArtifactMissingError(f'{entry.artifact_path.name} vanished during delivery')

        entry.linked = True
        return DeliveryResult(
            method=METHOD_LINK,
            link=self.build_link(entry),
            expires_in=self.expires_in(entry),
        )

    def _discard(self, entry):
        if entry.linked:
            self._log(f'Keeping {entry.artifact_path.name}, a download link is still live')
            return
        self.cache.remove_by_artifact_path(entry.artifact_path)
        try:
            entry.artifact_path.unlink(missing_ok=True)
        except OSError as e:
            self._log(f'Could not delete delivered artifact {entry.artifact_path.name}: {e}')
