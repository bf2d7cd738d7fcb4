"""
Telegram Bot API channel.

Telegram sends the secret registered with ``setWebhook`` back in the
``X-Telegram-Bot-Api-Secret-Token`` header of every update.
"""

import hmac
from typing import Dict, Any, Tuple

from logging_config import get_logger
from services.common.errors import AuthenticityError, DataIntegrityWarning, ProviderRejectedError
from services.common.http_client import ProviderHttpClient
from services.enums import Platform, MessageStatus
from services.providers.base import (
    ChannelProvider, ChannelIntegration, WebhookRequest, ParsedMessage, Attachment,
    OutboundMessage, IgnoredEvent
)
from services.providers.channel_config import TelegramConfig
from utils.datetime_utils import parse_provider_timestamp, utc_now

logger = get_logger(__name__)

TELEGRAM_API_URL = 'https://api.telegram.org'


def telegram_message_id(chat_id, message_id) -> str:
    # message_id is only unique within a chat
    return f"tg_{chat_id}_{message_id}"


class TelegramProvider(ChannelProvider):
    platform = Platform.TELEGRAM.value
    config_type = TelegramConfig

    def _call(self, config: TelegramConfig, method: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        client = ProviderHttpClient('telegram', f"{TELEGRAM_API_URL}/bot{config.bot_token}",
                                    timeout=self.http_timeout)
        body = client.post(method, json_data=payload or {})
        if not body.get('ok'):
            raise ProviderRejectedError(f"Telegram {method} failed: {body.get('description', 'unknown error')}")
        return body.get('result') or {}

    # Inbound

    def verify_request(self, request: WebhookRequest, config: TelegramConfig) -> None:
        supplied = request.header('X-Telegram-Bot-Api-Secret-Token')
        if not supplied:
            raise AuthenticityError("Missing Telegram secret token header")
        if not hmac.compare_digest(supplied.encode('utf-8'), config.secret_token.encode('utf-8')):
            raise AuthenticityError("Invalid Telegram secret token")

    def parse_event(self, request: WebhookRequest, integration: ChannelIntegration):
        update = request.json()
        if 'edited_message' in update or 'edited_channel_post' in update:
            return IgnoredEvent(reason="edited message")

        message = update.get('message')
        if not isinstance(message, dict):
            return IgnoredEvent(reason="update without a message")

        chat = message.get('chat') or {}
        sender = message.get('from') or {}
        if sender.get('is_bot'):
            return IgnoredEvent(reason="bot message")
        if chat.get('id') is None or message.get('message_id') is None or sender.get('id') is None:
            raise DataIntegrityWarning("Telegram message is missing chat, sender or message id")

        name = ' '.join(part for part in (sender.get('first_name'), sender.get('last_name')) if part)
        return ParsedMessage(
            external_id=str(sender['id']),
            to=integration.config.bot_username,
            body=message.get('text') or message.get('caption') or '',
            thread_key=str(chat['id']),
            platform_message_id=telegram_message_id(chat['id'], message['message_id']),
            timestamp=parse_provider_timestamp(message.get('date')) or utc_now(),
            display_name=name or sender.get('username'),
            attachments=self._attachments(message),
            metadata={
                'update_id': update.get('update_id'),
                'chat_type': chat.get('type'),
                'username': sender.get('username'),
                'reply_to_message_id': (message.get('reply_to_message') or {}).get('message_id'),
            },
        )

    @staticmethod
    def _attachments(message: Dict[str, Any]):
        attachments = []
        photos = message.get('photo') or []
        if photos:
            # Telegram lists every resolution; keep the largest
            largest = max(photos, key=lambda p: p.get('file_size') or 0)
            attachments.append(Attachment(filename=None, content_type='image/jpeg',
                                          size=largest.get('file_size'), location=largest.get('file_id')))
        document = message.get('document')
        if isinstance(document, dict):
            attachments.append(Attachment(filename=document.get('file_name'),
                                          content_type=document.get('mime_type'),
                                          size=document.get('file_size'),
                                          location=document.get('file_id')))
        return attachments

    # Outbound

    def deliver(self, config: TelegramConfig, message: OutboundMessage) -> Tuple[str, str, Dict[str, Any]]:
        chat_id = message.thread_key or message.to
        payload = {'chat_id': chat_id, 'text': message.content}
        if message.reply_to:
            payload['reply_to_message_id'] = message.reply_to

        result = self._call(config, 'sendMessage', payload)
        sent_id = telegram_message_id(chat_id, result.get('message_id'))
        logger.info("Telegram message sent", chat_id=chat_id, message_id=result.get('message_id'))
        return sent_id, MessageStatus.SENT.value, {'chat_id': chat_id}

    def check_connection(self, config: TelegramConfig) -> Dict[str, Any]:
        bot = self._call(config, 'getMe')
        return {'bot_id': bot.get('id'), 'username': bot.get('username'), 'name': bot.get('first_name')}
