"""
WhatsApp channel over the Meta Cloud API.

Meta subscribes a webhook with a GET handshake (``hub.mode=subscribe``,
``hub.verify_token``, ``hub.challenge``) and then POSTs change notifications
signed with the app secret:
``X-Hub-Signature-256 = sha256=hex(HMAC-SHA256(app_secret, raw body))``.
One notification may batch several messages and delivery statuses.
"""

import hashlib
import hmac
import mimetypes
from typing import Dict, Any, List, Tuple

from logging_config import get_logger
from services.common.errors import AuthenticityError, DataIntegrityWarning, ProviderRejectedError
from services.common.http_client import ProviderHttpClient
from services.contact_conversation_resolver import normalize_external_id
from services.enums import Platform
from services.providers.base import (
    ChannelProvider, ChannelIntegration, WebhookRequest, ParsedMessage, Attachment,
    OutboundMessage, StatusUpdate, HandshakeChallenge, IgnoredEvent
)
from services.providers.channel_config import WhatsAppConfig
from utils.datetime_utils import parse_provider_timestamp, utc_now

logger = get_logger(__name__)

GRAPH_API_URL = 'https://graph.facebook.com/v19.0'

_MEDIA_TYPES = ('image', 'audio', 'video', 'document', 'sticker')


def whatsapp_signature(app_secret: str, body: bytes) -> str:
    digest = hmac.new(app_secret.encode('utf-8'), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WhatsAppProvider(ChannelProvider):
    platform = Platform.WHATSAPP.value
    config_type = WhatsAppConfig

    def _client(self) -> ProviderHttpClient:
        return ProviderHttpClient('whatsapp', GRAPH_API_URL, timeout=self.http_timeout)

    @staticmethod
    def _auth(config: WhatsAppConfig) -> Dict[str, str]:
        return {'Authorization': f"Bearer {config.access_token}"}

    # Inbound

    def verify_request(self, request: WebhookRequest, config: WhatsAppConfig) -> None:
        if request.method == 'GET':
            if request.args.get('hub.mode') != 'subscribe':
                raise AuthenticityError("Unexpected hub.mode in WhatsApp verification request")
            supplied = request.args.get('hub.verify_token') or ''
            if not hmac.compare_digest(supplied.encode('utf-8'), config.verify_token.encode('utf-8')):
                raise AuthenticityError("WhatsApp verify token mismatch")
            return

        signature = request.header('X-Hub-Signature-256')
        if not signature:
            raise AuthenticityError("Missing X-Hub-Signature-256 header")
        expected = whatsapp_signature(config.app_secret, request.body or b'')
        if not hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8', 'ignore')):
            raise AuthenticityError("WhatsApp signature mismatch")

    def parse_event(self, request: WebhookRequest, integration: ChannelIntegration):
        if request.method == 'GET':
            challenge = request.args.get('hub.challenge')
            if not challenge:
                raise DataIntegrityWarning("Verification request without hub.challenge")
            return HandshakeChallenge(challenge=challenge)

        payload = request.json()
        if payload.get('object') != 'whatsapp_business_account':
            return IgnoredEvent(reason=f"Unhandled webhook object: {payload.get('object')}")

        events = []
        for entry in payload.get('entry') or []:
            for change in (entry or {}).get('changes') or []:
                if not isinstance(change, dict) or change.get('field') != 'messages':
                    continue
                events.extend(self._events_for(change.get('value') or {}, integration))
        if not events:
            return IgnoredEvent(reason="notification without messages or statuses")
        return events

    def _events_for(self, value: Dict[str, Any], integration: ChannelIntegration) -> List:
        config = integration.config
        phone_number_id = (value.get('metadata') or {}).get('phone_number_id')
        if phone_number_id and phone_number_id != config.phone_number_id:
            # One Meta app can serve several numbers; only ours belong here
            return [IgnoredEvent(reason=f"notification for phone number {phone_number_id}")]

        names = {
            contact.get('wa_id'): (contact.get('profile') or {}).get('name')
            for contact in value.get('contacts') or [] if isinstance(contact, dict)
        }
        events = [self._parse_message(message, names, value)
                  for message in value.get('messages') or [] if isinstance(message, dict)]
        events.extend(self._parse_status(status)
                      for status in value.get('statuses') or [] if isinstance(status, dict))
        return events

    def _parse_message(self, message: Dict[str, Any], names: Dict[str, str], value: Dict[str, Any]):
        sender = message.get('from')
        message_id = message.get('id')
        if not sender or not message_id:
            raise DataIntegrityWarning("WhatsApp message is missing sender or id")

        message_type = message.get('type')
        if message_type in ('reaction', 'system', 'unsupported'):
            return IgnoredEvent(reason=f"message type {message_type}")

        wa_id = normalize_external_id(self.platform, sender)
        return ParsedMessage(
            external_id=wa_id,
            to=(value.get('metadata') or {}).get('display_phone_number'),
            body=self._text(message),
            thread_key=wa_id,
            platform_message_id=message_id,
            timestamp=parse_provider_timestamp(message.get('timestamp')) or utc_now(),
            display_name=names.get(sender),
            attachments=self._attachments(message),
            metadata={
                'message_type': message_type,
                'context_message_id': (message.get('context') or {}).get('id'),
            },
            contact_hints={'phone': f"+{wa_id}"},
        )

    @staticmethod
    def _text(message: Dict[str, Any]) -> str:
        message_type = message.get('type')
        if message_type == 'text':
            return (message.get('text') or {}).get('body') or ''
        if message_type == 'button':
            return (message.get('button') or {}).get('text') or ''
        if message_type == 'interactive':
            interactive = message.get('interactive') or {}
            reply = interactive.get('button_reply') or interactive.get('list_reply') or {}
            return reply.get('title') or ''
        if message_type == 'location':
            location = message.get('location') or {}
            return location.get('name') or f"{location.get('latitude')},{location.get('longitude')}"
        if message_type in _MEDIA_TYPES:
            return (message.get(message_type) or {}).get('caption') or ''
        return ''

    @staticmethod
    def _attachments(message: Dict[str, Any]) -> List[Attachment]:
        media = message.get(message.get('type')) if message.get('type') in _MEDIA_TYPES else None
        if not isinstance(media, dict):
            return []
        return [Attachment(
            filename=media.get('filename'),
            content_type=media.get('mime_type'),
            size=None,
            location=media.get('id'),
        )]

    @staticmethod
    def _parse_status(status: Dict[str, Any]):
        if not status.get('id') or not status.get('status'):
            raise DataIntegrityWarning("WhatsApp status is missing id or status")
        error_info = None
        errors = status.get('errors') or []
        if errors:
            first = errors[0] or {}
            error_info = {'code': first.get('code'), 'message': first.get('title') or first.get('message')}
        return StatusUpdate(platform_message_id=status['id'], status=status['status'], error_info=error_info)

    # Outbound

    def outbound_thread_key(self, config: WhatsAppConfig, message: OutboundMessage) -> str:
        return message.thread_key or normalize_external_id(self.platform, message.to)

    def recipient_hints(self, message: OutboundMessage) -> Dict[str, Any]:
        return {'phone': f"+{normalize_external_id(self.platform, message.to)}"}

    def deliver(self, config: WhatsAppConfig, message: OutboundMessage) -> Tuple[str, str, Dict[str, Any]]:
        payload = {
            'messaging_product': 'whatsapp',
            'recipient_type': 'individual',
            'to': normalize_external_id(self.platform, message.to),
        }
        if message.media_url:
            content_type, _ = mimetypes.guess_type(message.media_url)
            media_type = 'image' if (content_type or '').startswith('image/') else 'document'
            payload['type'] = media_type
            payload[media_type] = {'link': message.media_url, 'caption': message.content}
        else:
            payload['type'] = 'text'
            payload['text'] = {'body': message.content, 'preview_url': False}
        if message.reply_to:
            payload['context'] = {'message_id': message.reply_to}

        body = self._client().post(f"{config.phone_number_id}/messages", json_data=payload,
                                   headers=self._auth(config))
        sent = (body.get('messages') or [{}])[0]
        message_id = sent.get('id')
        if not message_id:
            raise ProviderRejectedError("WhatsApp did not return a message id")
        logger.info("WhatsApp message accepted", message_id=message_id, status=sent.get('message_status'))
        return message_id, sent.get('message_status') or 'accepted', {
            'wa_id': ((body.get('contacts') or [{}])[0]).get('wa_id'),
        }

    def check_connection(self, config: WhatsAppConfig) -> Dict[str, Any]:
        number = self._client().get(
            config.phone_number_id,
            params={'fields': 'display_phone_number,verified_name,quality_rating'},
            headers=self._auth(config),
        )
        return {
            'phone_number_id': config.phone_number_id,
            'display_phone_number': number.get('display_phone_number'),
            'verified_name': number.get('verified_name'),
            'quality_rating': number.get('quality_rating'),
        }
