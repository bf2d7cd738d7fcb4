"""
ChannelProvider base class and the canonical message types.

A provider translates one channel's wire format to and from the canonical
model. ``process_webhook`` is a template method: verify authenticity, parse
the event, then either answer a handshake, apply a delivery receipt, or
ingest an inbound message (dedup → resolve contact → resolve conversation →
store → classify). Subclasses implement only the channel-specific steps.
Nothing in here raises across the provider boundary except store faults.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional, Mapping, Tuple, Union

from logging_config import get_logger, security_logger
from services.common.errors import (
    InboxError, AuthenticityError, DataIntegrityWarning, ProviderConfigurationError
)
from services.common.http_client import DEFAULT_TIMEOUT
from inbox_database import Conversation
from services.contact_conversation_resolver import ContactConversationResolver
from services.message_classifier import MessageClassifier
from services.message_store import MessageStore, normalize_status
from services.enums import MessageDirection, MessageStatus
from services.providers.channel_config import ChannelConfig, webhook_secret_for
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


@dataclass
class Attachment:
    """Metadata for inbound media; content is never decoded or copied"""
    filename: Optional[str]
    content_type: Optional[str]
    size: Optional[int]
    location: Optional[str]  # URL or provider file id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filename': self.filename,
            'content_type': self.content_type,
            'size': self.size,
            'location': self.location,
        }


@dataclass
class ParsedMessage:
    """Provider-agnostic inbound message"""
    external_id: str
    to: Optional[str]
    body: str
    thread_key: str
    platform_message_id: str
    timestamp: datetime
    display_name: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    contact_hints: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusUpdate:
    """Delivery receipt for a previously sent outbound message"""
    platform_message_id: str
    status: str
    error_info: Optional[Dict[str, Any]] = None


@dataclass
class HandshakeChallenge:
    challenge: str


@dataclass
class IgnoredEvent:
    reason: str


WebhookEvent = Union[ParsedMessage, StatusUpdate, HandshakeChallenge, IgnoredEvent]


@dataclass
class OutboundMessage:
    to: str
    content: str
    subject: Optional[str] = None
    thread_key: Optional[str] = None
    conversation_id: Optional[int] = None
    reply_to: Optional[str] = None  # provider id of the message being answered
    media_url: Optional[str] = None


@dataclass
class ChannelIntegration:
    """A connected messaging channel: vault row id, tenant and typed config"""
    id: int
    user_id: str
    platform: str
    config: ChannelConfig


@dataclass
class WebhookRequest:
    """The parts of an HTTP request the providers need, framework-free"""
    body: bytes
    headers: Mapping[str, str]
    url: str = ''
    form: Dict[str, str] = field(default_factory=dict)
    method: str = 'POST'
    args: Dict[str, str] = field(default_factory=dict)  # query string

    def header(self, name: str) -> Optional[str]:
        value = self.headers.get(name)
        if value is None:
            lowered = name.lower()
            for key, candidate in self.headers.items():
                if key.lower() == lowered:
                    return candidate
        return value

    def json(self) -> Dict[str, Any]:
        """Decode the body as a JSON object or raise DataIntegrityWarning"""
        try:
            payload = json.loads(self.body or b'')
        except (ValueError, UnicodeDecodeError) as e:
            raise DataIntegrityWarning(f"Webhook body is not valid JSON: {e}")
        if not isinstance(payload, dict):
            raise DataIntegrityWarning("Webhook body is not a JSON object")
        return payload


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    stored_message_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {'success': self.success}
        if self.message_id:
            payload['message_id'] = self.message_id
        if self.error:
            payload['error'] = self.error
            payload['error_code'] = self.error_code
        return payload


@dataclass
class ConnectionTestResult:
    success: bool
    error: Optional[str] = None
    info: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {'success': self.success}
        if self.error:
            payload['error'] = self.error
        if self.info:
            payload['info'] = self.info
        return payload


@dataclass
class WebhookOutcome:
    """
    Result of one webhook delivery.

    status: processed | duplicate | status_updated | ignored | challenge |
            rejected | invalid | error
    """
    status: str
    challenge: Optional[str] = None
    message_id: Optional[int] = None
    conversation_id: Optional[int] = None
    contact_id: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def http_status(self) -> int:
        if self.status == 'rejected':
            return 403
        if self.status == 'error':
            return 500
        # Malformed payloads are acknowledged so the provider does not retry them
        return 200

    def to_dict(self) -> Dict[str, Any]:
        payload = {'status': self.status}
        for key in ('challenge', 'message_id', 'conversation_id', 'contact_id', 'error', 'error_code'):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


class ChannelProvider(ABC):
    """Adapter between one messaging channel and the canonical model"""

    platform: str = ''
    config_type = None

    def __init__(self, resolver: ContactConversationResolver, message_store: MessageStore,
                 classifier: Optional[MessageClassifier] = None,
                 http_timeout: Tuple[float, float] = DEFAULT_TIMEOUT):
        self.resolver = resolver
        self.message_store = message_store
        self.classifier = classifier
        self.http_timeout = tuple(http_timeout)

    # Channel-specific hooks

    @abstractmethod
    def verify_request(self, request: WebhookRequest, config: ChannelConfig) -> None:
        """Raise AuthenticityError unless the request came from the provider"""

    @abstractmethod
    def parse_event(self, request: WebhookRequest, integration: ChannelIntegration) -> WebhookEvent:
        """
        Translate the wire payload; raise DataIntegrityWarning when unparseable.

        Channels that batch several messages or receipts into one delivery
        return a list of events.
        """

    @abstractmethod
    def deliver(self, config: ChannelConfig, message: OutboundMessage) -> Tuple[str, str, Dict[str, Any]]:
        """
        Hand the message to the provider.

        Returns:
            (platform_message_id, provider status, metadata)

        Raises:
            InboxError subclasses on configuration or provider failure
        """

    @abstractmethod
    def check_connection(self, config: ChannelConfig) -> Dict[str, Any]:
        """Cheap authenticated no-op; returns account info or raises InboxError"""

    def outbound_thread_key(self, config: ChannelConfig, message: OutboundMessage) -> str:
        return message.thread_key or message.to

    def addresses_contact(self, message: OutboundMessage) -> bool:
        """False when ``message.to`` names a shared space rather than a person"""
        return True

    def existing_thread(self, integration: ChannelIntegration, message: OutboundMessage) -> Optional[Conversation]:
        return None

    # Public contract

    def send_message(self, integration: ChannelIntegration, message: OutboundMessage) -> SendResult:
        """
        Send ``message`` and record it as an outbound Message before returning.

        Provider failures and timeouts come back as ``success=False``.
        """
        config = integration.config
        try:
            self._require_config(config)
            if not message.to or not message.content:
                raise ProviderConfigurationError("Recipient and message content are required")
            conversation = self._outbound_conversation(integration, message)
            if conversation is None and not self.addresses_contact(message):
                raise ProviderConfigurationError(
                    f"{message.to} is not a contact; pass the conversation_id of an existing conversation"
                )
            platform_message_id, provider_status, metadata = self.deliver(config, message)
        except InboxError as e:
            logger.warning("Message send failed", platform=self.platform, integration_id=integration.id,
                           error=e.message, code=e.code)
            return SendResult(success=False, error=e.message, error_code=e.code)

        stored_id = self._record_outbound(integration, message, conversation,
                                          platform_message_id, provider_status, metadata)
        return SendResult(success=True, message_id=platform_message_id, stored_message_id=stored_id)

    def process_webhook(self, request: WebhookRequest, integration: ChannelIntegration) -> WebhookOutcome:
        try:
            self._require_config(integration.config)
            if not webhook_secret_for(integration.config):
                raise AuthenticityError(f"{self.platform} integration has no webhook secret configured")
            self.verify_request(request, integration.config)
        except (AuthenticityError, ProviderConfigurationError) as e:
            security_logger.log_webhook_rejected(self.platform, integration.id, e.message)
            return WebhookOutcome(status='rejected', error=e.message, error_code=AuthenticityError.code)

        try:
            event = self.parse_event(request, integration)
        except DataIntegrityWarning as e:
            logger.warning("Dropping malformed webhook", platform=self.platform,
                           integration_id=integration.id, error=e.message)
            return WebhookOutcome(status='invalid', error=e.message, error_code=e.code)

        if isinstance(event, list):
            return self._dispatch_batch(event, integration)
        return self._dispatch(event, integration)

    def test_connection(self, config: ChannelConfig) -> ConnectionTestResult:
        """Validate credentials without sending anything"""
        try:
            self._require_config(config)
            info = self.check_connection(config)
        except InboxError as e:
            logger.info("Connection test failed", platform=self.platform, error=e.message)
            return ConnectionTestResult(success=False, error=e.message)
        return ConnectionTestResult(success=True, info=info)

    # Shared steps

    def _require_config(self, config: ChannelConfig) -> None:
        if self.config_type is not None and not isinstance(config, self.config_type):
            raise ProviderConfigurationError(
                f"{self.platform} provider cannot use {type(config).__name__}"
            )

    def _dispatch(self, event: WebhookEvent, integration: ChannelIntegration) -> WebhookOutcome:
        if isinstance(event, HandshakeChallenge):
            return WebhookOutcome(status='challenge', challenge=event.challenge)
        if isinstance(event, IgnoredEvent):
            logger.debug("Webhook ignored", platform=self.platform, reason=event.reason)
            return WebhookOutcome(status='ignored', error=event.reason)
        if isinstance(event, StatusUpdate):
            return self._apply_status(event, integration)
        return self._ingest(event, integration)

    def _dispatch_batch(self, events: List[WebhookEvent], integration: ChannelIntegration) -> WebhookOutcome:
        """
        Process every event of a batched delivery.

        Reports the first error, otherwise the first event that was not
        ignored. Redelivery after an error is safe because ingestion dedups.
        """
        outcomes = [self._dispatch(event, integration) for event in events]
        if not outcomes:
            return WebhookOutcome(status='ignored', error="delivery carried no events")
        for outcome in outcomes:
            if outcome.status == 'error':
                return outcome
        return next((outcome for outcome in outcomes if outcome.status != 'ignored'), outcomes[0])

    def _apply_status(self, update: StatusUpdate, integration: ChannelIntegration) -> WebhookOutcome:
        result = self.message_store.update_status(
            integration.user_id, self.platform, update.platform_message_id, update.status, update.error_info
        )
        if result.is_failure:
            if result.error_code == 'INVALID_STATUS':
                return WebhookOutcome(status='invalid', error=result.error, error_code=result.error_code)
            return WebhookOutcome(status='error', error=result.error, error_code=result.error_code)
        message = result.data
        return WebhookOutcome(status='status_updated', message_id=message.id if message else None)

    def _ingest(self, parsed: ParsedMessage, integration: ChannelIntegration) -> WebhookOutcome:
        existing = self.message_store.find(integration.user_id, self.platform, parsed.platform_message_id)
        if existing:
            logger.info("Duplicate webhook delivery", platform=self.platform,
                        platform_message_id=parsed.platform_message_id)
            return WebhookOutcome(status='duplicate', message_id=existing.id,
                                  conversation_id=existing.conversation_id, contact_id=existing.contact_id)

        hints = {'display_name': parsed.display_name, **parsed.contact_hints}
        contact_result = self.resolver.resolve_contact(integration.user_id, self.platform, parsed.external_id, hints)
        if contact_result.is_failure:
            return self._failed(contact_result)
        contact = contact_result.data

        conversation_result = self.resolver.resolve_conversation(contact, self.platform, parsed.thread_key)
        if conversation_result.is_failure:
            return self._failed(conversation_result)
        conversation = conversation_result.data

        metadata = dict(parsed.metadata)
        if parsed.attachments:
            metadata['attachments'] = [attachment.to_dict() for attachment in parsed.attachments]
        if parsed.to:
            metadata.setdefault('to', parsed.to)

        append_result = self.message_store.append({
            'conversation_id': conversation.id,
            'contact_id': contact.id,
            'user_id': integration.user_id,
            'platform': self.platform,
            'direction': MessageDirection.INBOUND.value,
            'content': parsed.body,
            'platform_message_id': parsed.platform_message_id,
            'status': MessageStatus.RECEIVED.value,
            'message_metadata': metadata,
            'timestamp': parsed.timestamp,
        })
        if append_result.is_failure:
            return self._failed(append_result)
        message = append_result.data

        if append_result.metadata and append_result.metadata.get('duplicate'):
            return WebhookOutcome(status='duplicate', message_id=message.id,
                                  conversation_id=conversation.id, contact_id=contact.id)

        self.resolver.touch_conversation(conversation, parsed.body, parsed.timestamp)
        if self.classifier:
            self.classifier.classify_and_route(conversation, parsed.body)

        logger.info("Inbound message stored", platform=self.platform, message_id=message.id,
                    conversation_id=conversation.id, contact_id=contact.id)
        return WebhookOutcome(status='processed', message_id=message.id,
                              conversation_id=conversation.id, contact_id=contact.id)

    def _failed(self, result) -> WebhookOutcome:
        logger.error("Webhook processing failed", platform=self.platform, error=result.error, code=result.error_code)
        status = 'invalid' if result.error_code == 'INVALID_DATA' else 'error'
        return WebhookOutcome(status=status, error=result.error, error_code=result.error_code)

    def _outbound_conversation(self, integration: ChannelIntegration,
                               message: OutboundMessage) -> Optional[Conversation]:
        """The existing conversation a send belongs to, if any"""
        if message.conversation_id:
            conversation = self.resolver.get_conversation(message.conversation_id)
            if conversation is not None and conversation.user_id == integration.user_id \
                    and conversation.platform == self.platform:
                return conversation
            logger.warning("Ignoring conversation_id outside this tenant and channel", platform=self.platform,
                           integration_id=integration.id, conversation_id=message.conversation_id)
        return self.existing_thread(integration, message)

    def _record_outbound(self, integration: ChannelIntegration, message: OutboundMessage,
                         conversation: Optional[Conversation], platform_message_id: str,
                         provider_status: str, metadata: Dict[str, Any]) -> Optional[int]:
        """Persist a sent message; failures are logged since the send already happened"""
        if conversation is None:
            contact_result = self.resolver.resolve_contact(
                integration.user_id, self.platform, message.to,
                self.recipient_hints(message)
            )
            if contact_result.is_failure:
                logger.error("Sent message not recorded", platform=self.platform, error=contact_result.error)
                return None
            conversation_result = self.resolver.resolve_conversation(
                contact_result.data, self.platform, self.outbound_thread_key(integration.config, message)
            )
            if conversation_result.is_failure:
                logger.error("Sent message not recorded", platform=self.platform, error=conversation_result.error)
                return None
            conversation = conversation_result.data

        sent_at = utc_now()
        outbound_metadata = dict(metadata or {})
        outbound_metadata['to'] = message.to
        if message.subject:
            outbound_metadata['subject'] = message.subject

        append_result = self.message_store.append({
            'conversation_id': conversation.id,
            'contact_id': conversation.contact_id,
            'user_id': integration.user_id,
            'platform': self.platform,
            'direction': MessageDirection.OUTBOUND.value,
            'content': message.content,
            'platform_message_id': platform_message_id,
            'status': normalize_status(provider_status) or MessageStatus.SENT.value,
            'message_metadata': outbound_metadata,
            'timestamp': sent_at,
        })
        if append_result.is_failure:
            logger.error("Sent message not recorded", platform=self.platform, error=append_result.error)
            return None

        self.resolver.touch_conversation(conversation, message.content, sent_at)
        return append_result.data.id

    def recipient_hints(self, message: OutboundMessage) -> Dict[str, Any]:
        return {}
