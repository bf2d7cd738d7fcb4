"""
Twilio SMS channel.

Inbound messages and delivery receipts both arrive as form-encoded POSTs
signed with ``X-Twilio-Signature``: base64(HMAC-SHA1(auth_token, url +
concatenated sorted key/value pairs)).
"""

import base64
import hashlib
import hmac
from typing import Dict, Any, Mapping, Tuple

from logging_config import get_logger
from services.common.errors import AuthenticityError, DataIntegrityWarning, ProviderRejectedError
from services.common.http_client import ProviderHttpClient
from services.contact_conversation_resolver import normalize_phone
from services.enums import Platform
from services.providers.base import (
    ChannelProvider, ChannelIntegration, WebhookRequest, ParsedMessage, Attachment,
    OutboundMessage, StatusUpdate, IgnoredEvent
)
from services.providers.channel_config import SmsConfig
from utils.datetime_utils import parse_provider_timestamp, utc_now

logger = get_logger(__name__)

TWILIO_API_URL = 'https://api.twilio.com/2010-04-01'


def twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    signed = url + ''.join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode('utf-8'), signed.encode('utf-8'), hashlib.sha1).digest()
    return base64.b64encode(digest).decode('ascii')


class TwilioSmsProvider(ChannelProvider):
    platform = Platform.TWILIO_SMS.value
    config_type = SmsConfig

    def _client(self) -> ProviderHttpClient:
        return ProviderHttpClient('twilio', TWILIO_API_URL, timeout=self.http_timeout)

    # Inbound

    def verify_request(self, request: WebhookRequest, config: SmsConfig) -> None:
        signature = request.header('X-Twilio-Signature')
        if not signature:
            raise AuthenticityError("Missing X-Twilio-Signature header")
        expected = twilio_signature(config.auth_token, config.webhook_url or request.url, request.form)
        if not hmac.compare_digest(expected.encode('ascii'), signature.encode('ascii', 'ignore')):
            raise AuthenticityError("Twilio signature mismatch")

    def parse_event(self, request: WebhookRequest, integration: ChannelIntegration):
        form = request.form
        message_sid = form.get('MessageSid') or form.get('SmsSid')
        if not message_sid:
            raise DataIntegrityWarning("Twilio payload has no MessageSid")

        direction = form.get('Direction')
        status = form.get('MessageStatus') or form.get('SmsStatus')
        body = form.get('Body')

        if (direction and direction != 'inbound') or (form.get('MessageStatus') and body is None):
            error_info = None
            if form.get('ErrorCode'):
                error_info = {'code': form.get('ErrorCode'), 'message': form.get('ErrorMessage')}
            return StatusUpdate(platform_message_id=message_sid, status=status, error_info=error_info)

        sender = form.get('From')
        if not sender:
            raise DataIntegrityWarning("Inbound SMS has no sender")
        sender_phone = normalize_phone(sender)
        if sender_phone == normalize_phone(integration.config.phone_number):
            return IgnoredEvent(reason="message from the integration's own number")

        return ParsedMessage(
            external_id=sender,
            to=form.get('To'),
            body=body or '',
            thread_key=sender_phone,
            platform_message_id=message_sid,
            timestamp=parse_provider_timestamp(form.get('DateSent')) or utc_now(),
            display_name=form.get('ProfileName'),
            attachments=self._media(form),
            metadata={
                'num_segments': form.get('NumSegments'),
                'from_city': form.get('FromCity'),
                'from_state': form.get('FromState'),
                'from_country': form.get('FromCountry'),
            },
            contact_hints={'phone': sender},
        )

    @staticmethod
    def _media(form: Mapping[str, str]):
        try:
            count = int(form.get('NumMedia') or 0)
        except ValueError:
            count = 0
        return [
            Attachment(
                filename=None,
                content_type=form.get(f'MediaContentType{index}'),
                size=None,
                location=form.get(f'MediaUrl{index}'),
            )
            for index in range(count) if form.get(f'MediaUrl{index}')
        ]

    # Outbound

    def outbound_thread_key(self, config: SmsConfig, message: OutboundMessage) -> str:
        return message.thread_key or normalize_phone(message.to)

    def recipient_hints(self, message: OutboundMessage) -> Dict[str, Any]:
        return {'phone': message.to}

    def deliver(self, config: SmsConfig, message: OutboundMessage) -> Tuple[str, str, Dict[str, Any]]:
        data = {'To': message.to, 'Body': message.content}
        if config.messaging_service_sid:
            data['MessagingServiceSid'] = config.messaging_service_sid
        else:
            data['From'] = config.phone_number
        if message.media_url:
            data['MediaUrl'] = message.media_url

        body = self._client().post(
            f"Accounts/{config.account_sid}/Messages.json",
            data=data,
            auth=(config.account_sid, config.auth_token)
        )
        sid = body.get('sid')
        if not sid:
            raise ProviderRejectedError("Twilio did not return a message sid")
        logger.info("SMS queued with Twilio", sid=sid, status=body.get('status'))
        return sid, body.get('status') or 'queued', {'num_segments': body.get('num_segments')}

    def check_connection(self, config: SmsConfig) -> Dict[str, Any]:
        account = self._client().get(
            f"Accounts/{config.account_sid}.json",
            auth=(config.account_sid, config.auth_token)
        )
        return {
            'account_sid': config.account_sid,
            'phone_number': config.phone_number,
            'friendly_name': account.get('friendly_name'),
            'status': account.get('status'),
        }
