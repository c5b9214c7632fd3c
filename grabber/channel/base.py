"""
Chat channel boundary.

The engine only needs four operations from a transport: send text, send
media, edit a previous reply and delete a previous reply. Any of them may
fail with ChannelError independently of the others.
"""

from dataclasses import dataclass
from typing import Optional


class ChannelError(Exception):
    """A transport call failed"""


@dataclass
class IncomingMessage:
    """A text message received from a requester"""

    text: str
    requester_id: str
    chat_id: str
    message_id: Optional[str] = None


class Channel:
    """Interface implemented by chat transports"""

    # Largest file send_media accepts
    max_upload_bytes = 50 * 1024 * 1024

    async def send_text(self, chat_id, text, reply_to=None):
        """Send text; returns the new message id"""
        raise NotImplementedError

    async def send_media(self, chat_id, path, caption=None, reply_to=None):
        """Upload a file; returns the new message id"""
        raise NotImplementedError

    async def edit_text(self, chat_id, message_id, text):
        raise NotImplementedError

    async def delete_message(self, chat_id, message_id):
        raise NotImplementedError
