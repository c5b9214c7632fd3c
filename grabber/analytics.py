"""
Analytics sink backed by the FetchEvent table.

Writes are best effort: a failed insert is logged and never reaches the
requester.
"""

from dataclasses import asdict

from asgiref.sync import sync_to_async

from grabber.models import FetchEvent


class DatabaseAnalytics:
    def __init__(self, logger=None):
        self._logger = logger

    def _log(self, message):
        if self._logger:
            self._logger(message)

    def record_sync(self, event):
        """Insert one OutcomeEvent. Returns the FetchEvent, or None on failure."""
        try:
            return FetchEvent.objects.create(**asdict(event))
        except Exception as e:
            self._log(f'Could not record analytics event for {event.url}: {e}')
            return None

    async def record(self, event):
        return await sync_to_async(self.record_sync)(event)
