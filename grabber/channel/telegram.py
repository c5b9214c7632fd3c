"""
Telegram Bot API channel.

Blocking requests calls are pushed to a worker thread with
asyncio.to_thread so the event loop keeps serving other jobs. Long polls run
on a thread of their own, so stop_polling() can abandon one in flight
without the event loop waiting for it on exit.
"""

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import requests

from grabber.channel.base import Channel, ChannelError, IncomingMessage

# Bot API limit for files uploaded by bots
TELEGRAM_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


class TelegramChannel(Channel):
    """
    Args:
        token: Bot token from @BotFather
        api_url: Bot API base address
        poll_timeout: Long-poll timeout for getUpdates, in seconds
        session: Optional requests.Session (tests)
        logger: Optional callable(str) for logging
    """

    max_upload_bytes = TELEGRAM_MAX_UPLOAD_BYTES

    def __init__(
        self,
        token,
        api_url='https://api.telegram.org',
        poll_timeout=30,
        session=None,
        logger=None,
    ):
        if not token:
            raise ValueError('Telegram bot token is required')
        self.base_url = f'{api_url.rstrip("/")}/bot{token}'
        self.poll_timeout = poll_timeout
        self.session = session or requests.Session()
        self._logger = logger
        self._offset = None
        self._poll_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='getUpdates')

    def _log(self, message):
        if self._logger:
            self._logger(message)

    def call(self, method, request_timeout=30, files=None, **params):
        """
        Call a Bot API method synchronously.

        Returns:
            The 'result' field of the response

        Raises:
            ChannelError: transport failure or API error
        """
        try:
            if files:
                response = self.session.post(
                    f'{self.base_url}/{method}', data=params, files=files, timeout=request_timeout
                )
            else:
                response = self.session.post(
                    f'{self.base_url}/{method}', json=params, timeout=request_timeout
                )
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ChannelError(f'{method}: {e}') from e

        if not payload.get('ok'):
            raise ChannelError(f'{method}: {payload.get("description", "unknown error")}')
        return payload.get('result')

    async def _call(self, method, **kwargs):
        return await asyncio.to_thread(self.call, method, **kwargs)

    async def send_text(self, chat_id, text, reply_to=None):
        params = {'chat_id': chat_id, 'text': text, 'disable_web_page_preview': False}
        if reply_to is not None:
            params['reply_to_message_id'] = reply_to
            params['allow_sending_without_reply'] = True
        result = await self._call('sendMessage', **params)
        return str(result['message_id'])

    async def send_media(self, chat_id, path, caption=None, reply_to=None):
        path = Path(path)
        params = {'chat_id': chat_id, 'supports_streaming': 'true'}
        if caption:
            params['caption'] = caption
        if reply_to is not None:
            params['reply_to_message_id'] = reply_to
            params['allow_sending_without_reply'] = 'true'

        def upload():
            try:
                with open(path, 'rb') as f:
                    files = {'video': (path.name, f)}
                    return self.call('sendVideo', request_timeout=300, files=files, **params)
            except OSError as e:
                raise ChannelError(f'sendVideo: cannot read {path.name}: {e}') from e

        result = await asyncio.to_thread(upload)
        return str(result['message_id'])

    async def edit_text(self, chat_id, message_id, text):
        await self._call('editMessageText', chat_id=chat_id, message_id=message_id, text=text)

    async def delete_message(self, chat_id, message_id):
        await self._call('deleteMessage', chat_id=chat_id, message_id=message_id)

    async def get_updates(self):
        """Long-poll for new text messages"""
        params = {'timeout': self.poll_timeout, 'allowed_updates': ['message']}
        if self._offset is not None:
            params['offset'] = self._offset
        poll = functools.partial(
            self.call, 'getUpdates', request_timeout=self.poll_timeout + 10, **params
        )
        updates = await asyncio.get_running_loop().run_in_executor(self._poll_executor, poll)

        messages = []
        for update in updates or []:
            self._offset = update['update_id'] + 1
            message = parse_update(update)
            if message is not None:
                messages.append(message)
        return messages

    def stop_polling(self):
        """
        Refuse further get_updates calls.

        A getUpdates request already in flight is left to time out on its
        worker thread; the event loop does not wait for it.
        """
        self._poll_executor.shutdown(wait=False, cancel_futures=True)


def parse_update(update):
    """Convert a Bot API update into an IncomingMessage, or None"""
    message = update.get('message')
    if not message or not message.get('text'):
        return None
    sender = message.get('from') or {}
    chat = message.get('chat') or {}
    return IncomingMessage(
        text=message['text'],
        requester_id=str(sender.get('id', chat.get('id'))),
        chat_id=str(chat.get('id')),
        message_id=str(message.get('message_id')),
    )
