"""
Slack channel: Events API for inbound messages, Web API for sending.

Requests are signed with the app's signing secret:
``X-Slack-Signature = v0=hex(HMAC-SHA256(secret, "v0:{ts}:{raw body}"))``
and rejected when ``X-Slack-Request-Timestamp`` is outside the replay window.
"""

import hashlib
import hmac
import time
from typing import Dict, Any, Tuple

from logging_config import get_logger
from services.common.errors import AuthenticityError, DataIntegrityWarning, ProviderRejectedError
from services.common.http_client import ProviderHttpClient
from services.enums import Platform, MessageStatus
from services.providers.base import (
    ChannelProvider, ChannelIntegration, WebhookRequest, ParsedMessage, Attachment,
    OutboundMessage, HandshakeChallenge, IgnoredEvent
)
from services.providers.channel_config import ChatConfig
from utils.datetime_utils import parse_provider_timestamp, utc_now

logger = get_logger(__name__)

SLACK_API_URL = 'https://slack.com/api'
DEFAULT_SIGNATURE_TOLERANCE = 300

# Message subtypes that still carry a human message
_ACCEPTED_SUBTYPES = {'file_share'}


def slack_signature(signing_secret: str, timestamp: str, body: bytes) -> str:
    basestring = b'v0:' + timestamp.encode('utf-8') + b':' + body
    digest = hmac.new(signing_secret.encode('utf-8'), basestring, hashlib.sha256).hexdigest()
    return f"v0={digest}"


class SlackProvider(ChannelProvider):
    platform = Platform.SLACK.value
    config_type = ChatConfig

    def __init__(self, *args, signature_tolerance: int = DEFAULT_SIGNATURE_TOLERANCE, **kwargs):
        super().__init__(*args, **kwargs)
        self.signature_tolerance = signature_tolerance

    def _client(self) -> ProviderHttpClient:
        return ProviderHttpClient('slack', SLACK_API_URL, timeout=self.http_timeout)

    def _call(self, config: ChatConfig, method: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        """Slack answers 200 with ok=false for most errors"""
        body = self._client().post(
            method,
            json_data=payload or {},
            headers={'Authorization': f"Bearer {config.bot_token}"}
        )
        if not body.get('ok'):
            raise ProviderRejectedError(f"Slack {method} failed: {body.get('error', 'unknown_error')}")
        return body

    # Inbound

    def verify_request(self, request: WebhookRequest, config: ChatConfig) -> None:
        timestamp = request.header('X-Slack-Request-Timestamp')
        signature = request.header('X-Slack-Signature')
        if not timestamp or not signature:
            raise AuthenticityError("Missing Slack signature headers")

        try:
            age = abs(time.time() - int(timestamp))
        except ValueError:
            raise AuthenticityError("Malformed Slack request timestamp")
        if age > self.signature_tolerance:
            raise AuthenticityError("Slack request timestamp outside the replay window")

        expected = slack_signature(config.signing_secret, timestamp, request.body or b'')
        if not hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8')):
            raise AuthenticityError("Slack signature mismatch")

    def parse_event(self, request: WebhookRequest, integration: ChannelIntegration):
        payload = request.json()

        if payload.get('type') == 'url_verification':
            challenge = payload.get('challenge')
            if not challenge:
                raise DataIntegrityWarning("url_verification without a challenge")
            return HandshakeChallenge(challenge=challenge)

        if payload.get('type') != 'event_callback':
            return IgnoredEvent(reason=f"Unhandled Slack payload type: {payload.get('type')}")

        event = payload.get('event')
        if not isinstance(event, dict):
            raise DataIntegrityWarning("event_callback without an event")
        if event.get('type') not in ('message', 'app_mention'):
            return IgnoredEvent(reason=f"Unhandled Slack event type: {event.get('type')}")

        user = event.get('user') or ''
        subtype = event.get('subtype')
        if event.get('bot_id') or subtype == 'bot_message' or user.startswith('B'):
            return IgnoredEvent(reason="bot message")
        if subtype and subtype not in _ACCEPTED_SUBTYPES:
            return IgnoredEvent(reason=f"message subtype {subtype}")

        channel = event.get('channel')
        ts = event.get('ts')
        if not user or not channel or not ts:
            raise DataIntegrityWarning("Slack message event is missing user, channel or ts")

        thread_ts = event.get('thread_ts')
        attachments = [
            Attachment(
                filename=item.get('name'),
                content_type=item.get('mimetype'),
                size=item.get('size'),
                location=item.get('url_private') or item.get('id'),
            )
            for item in event.get('files') or [] if isinstance(item, dict)
        ]

        return ParsedMessage(
            external_id=user,
            to=channel,
            body=event.get('text') or '',
            thread_key=f"{channel}:{thread_ts}" if thread_ts else channel,
            platform_message_id=f"slack_{ts}",
            timestamp=parse_provider_timestamp(ts) or utc_now(),
            display_name=(event.get('user_profile') or {}).get('real_name'),
            attachments=attachments,
            metadata={
                'slack_ts': ts,
                'slack_channel': channel,
                'slack_team': payload.get('team_id') or event.get('team'),
                'thread_ts': thread_ts,
                'event_id': payload.get('event_id'),
            },
        )

    # Outbound

    def addresses_contact(self, message: OutboundMessage) -> bool:
        # chat.postMessage opens the DM itself when given a user id
        return message.to[:1] in ('U', 'W')

    def existing_thread(self, integration: ChannelIntegration, message: OutboundMessage):
        return self.resolver.find_thread(integration.user_id, self.platform,
                                         self.outbound_thread_key(integration.config, message))

    def deliver(self, config: ChatConfig, message: OutboundMessage) -> Tuple[str, str, Dict[str, Any]]:
        channel, _, thread_ts = (message.thread_key or message.to).partition(':')
        payload = {'channel': channel or message.to, 'text': message.content}
        if thread_ts:
            payload['thread_ts'] = thread_ts

        body = self._call(config, 'chat.postMessage', payload)
        ts = body.get('ts')
        logger.info("Slack message posted", channel=body.get('channel'), ts=ts)
        return f"slack_{ts}", MessageStatus.SENT.value, {'slack_ts': ts, 'slack_channel': body.get('channel')}

    def check_connection(self, config: ChatConfig) -> Dict[str, Any]:
        body = self._call(config, 'auth.test')
        return {
            'team': body.get('team'),
            'team_id': body.get('team_id'),
            'bot_user_id': body.get('user_id'),
            'bot_id': body.get('bot_id'),
        }
