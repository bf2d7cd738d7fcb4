"""
Gmail channel: SMTP for sending, Pub/Sub push for forwarded inbound mail.

The push endpoint receives ``{"message": {"data": <base64 JSON>, "messageId": ...}}``
where the decoded JSON describes one forwarded email (messageId, threadId,
from, to, subject, body, headers, attachments). Pushes are authenticated with
the integration's verification token, sent either as the ``token`` query
parameter of the push URL or in the ``X-Goog-Channel-Token`` header.
"""

import base64
import binascii
import hashlib
import hmac
import json
import smtplib
from email.message import EmailMessage
from email.utils import parseaddr, make_msgid, formataddr
from typing import Dict, Any, Tuple
from urllib.parse import urlparse, parse_qs

from logging_config import get_logger
from services.common.errors import (
    AuthenticityError, DataIntegrityWarning, ProviderConfigurationError,
    ProviderRejectedError, TransientProviderError
)
from services.contact_conversation_resolver import normalize_external_id
from services.enums import Platform, MessageStatus
from services.providers.base import (
    ChannelProvider, ChannelIntegration, WebhookRequest, ParsedMessage, Attachment, OutboundMessage
)
from services.providers.channel_config import EmailConfig
from utils.datetime_utils import parse_provider_timestamp, utc_now

logger = get_logger(__name__)

DEFAULT_SMTP_HOST = 'smtp.gmail.com'
DEFAULT_SMTP_PORT = 587
DEFAULT_FORWARDING_DOMAIN = 'inbox.example.com'


def forwarding_address(user_id: str, domain: str = DEFAULT_FORWARDING_DOMAIN) -> str:
    """Stable per-tenant address users forward their Gmail to"""
    digest = hashlib.md5(str(user_id).encode('utf-8')).hexdigest()[:8]
    return f"user-{digest}@{domain}"


class GmailProvider(ChannelProvider):
    platform = Platform.GMAIL.value
    config_type = EmailConfig

    def __init__(self, *args, smtp_host: str = DEFAULT_SMTP_HOST, smtp_port: int = DEFAULT_SMTP_PORT,
                 forwarding_domain: str = DEFAULT_FORWARDING_DOMAIN, **kwargs):
        super().__init__(*args, **kwargs)
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.forwarding_domain = forwarding_domain

    def forwarding_address_for(self, user_id: str) -> str:
        return forwarding_address(user_id, self.forwarding_domain)

    # Inbound

    def verify_request(self, request: WebhookRequest, config: EmailConfig) -> None:
        query = parse_qs(urlparse(request.url or '').query)
        supplied = (query.get('token') or [None])[0] or request.header('X-Goog-Channel-Token')
        if not supplied:
            raise AuthenticityError("Missing Pub/Sub verification token")
        if not hmac.compare_digest(supplied.encode('utf-8'), config.webhook_secret.encode('utf-8')):
            raise AuthenticityError("Invalid Pub/Sub verification token")

    def parse_event(self, request: WebhookRequest, integration: ChannelIntegration):
        envelope = request.json()
        pubsub = envelope.get('message')
        if not isinstance(pubsub, dict) or not pubsub.get('data'):
            raise DataIntegrityWarning("Pub/Sub envelope has no message data")

        try:
            email = json.loads(base64.b64decode(pubsub['data']).decode('utf-8'))
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise DataIntegrityWarning(f"Could not decode Pub/Sub message data: {e}")
        if not isinstance(email, dict):
            raise DataIntegrityWarning("Pub/Sub message data is not an object")

        sender_name, sender_address = parseaddr(email.get('from') or '')
        sender = normalize_external_id(self.platform, sender_address)
        if not sender or '@' not in sender:
            raise DataIntegrityWarning("Forwarded email has no sender address")

        message_id = email.get('messageId') or pubsub.get('messageId') or pubsub.get('message_id')
        if not message_id:
            raise DataIntegrityWarning("Forwarded email has no message id")

        display_name = email.get('from_name') or sender_name or sender.split('@')[0]
        headers = email.get('headers') or {}
        timestamp = (parse_provider_timestamp(email.get('date'))
                     or parse_provider_timestamp(pubsub.get('publishTime'))
                     or utc_now())

        return ParsedMessage(
            external_id=sender,
            to=email.get('to'),
            body=email.get('body') or email.get('text') or '',
            thread_key=email.get('threadId') or f"gmail_{sender}",
            platform_message_id=str(message_id),
            timestamp=timestamp,
            display_name=display_name,
            attachments=[self._attachment(item) for item in email.get('attachments') or []
                         if isinstance(item, dict)],
            metadata={
                'subject': email.get('subject'),
                'headers': headers,
                'thread_id': email.get('threadId'),
                'has_html': bool(email.get('htmlBody')),
            },
            contact_hints={'email': sender},
        )

    @staticmethod
    def _attachment(item: Dict[str, Any]) -> Attachment:
        size = item.get('size')
        return Attachment(
            filename=item.get('filename'),
            content_type=item.get('contentType') or item.get('mimeType'),
            size=int(size) if isinstance(size, (int, float)) or str(size or '').isdigit() else None,
            location=item.get('url') or item.get('attachmentId'),
        )

    # Outbound

    def outbound_thread_key(self, config: EmailConfig, message: OutboundMessage) -> str:
        if message.thread_key:
            return message.thread_key
        return f"gmail_{normalize_external_id(self.platform, message.to)}"

    def recipient_hints(self, message: OutboundMessage) -> Dict[str, Any]:
        return {'email': normalize_external_id(self.platform, message.to)}

    def deliver(self, config: EmailConfig, message: OutboundMessage) -> Tuple[str, str, Dict[str, Any]]:
        domain = config.email.split('@')[-1]
        email = EmailMessage()
        email['From'] = formataddr((config.display_name, config.email)) if config.display_name else config.email
        email['To'] = message.to
        email['Subject'] = message.subject or f"Message from {config.display_name or config.email}"
        email['Message-ID'] = make_msgid(domain=domain)
        if message.reply_to:
            email['In-Reply-To'] = message.reply_to
            email['References'] = message.reply_to
        email.set_content(message.content)

        with self._smtp(config) as server:
            try:
                server.send_message(email)
            except smtplib.SMTPRecipientsRefused as e:
                raise ProviderRejectedError(f"Recipient refused: {', '.join(e.recipients)}")
            except smtplib.SMTPDataError as e:
                raise ProviderRejectedError(f"Gmail rejected the message: {e.smtp_error!r}")

        logger.info("Email sent", to_domain=message.to.split('@')[-1])
        return email['Message-ID'], MessageStatus.SENT.value, {'subject': email['Subject']}

    def check_connection(self, config: EmailConfig) -> Dict[str, Any]:
        with self._smtp(config) as server:
            server.noop()
        return {'email': config.email, 'smtp_host': self.smtp_host}

    def _smtp(self, config: EmailConfig):
        """Open an authenticated SMTP session; raises InboxError subclasses"""
        try:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.http_timeout[-1])
        except (smtplib.SMTPException, OSError) as e:
            raise TransientProviderError(f"Could not reach {self.smtp_host}: {e}")
        try:
            server.starttls()
            server.login(config.email, config.app_password)
        except smtplib.SMTPAuthenticationError:
            server.close()
            raise ProviderConfigurationError("Gmail rejected the email or app password")
        except (smtplib.SMTPException, OSError) as e:
            server.close()
            raise TransientProviderError(f"SMTP session failed: {e}")
        return _SmtpSession(server)


class _SmtpSession:
    """Context manager that maps SMTP transport faults onto provider errors"""

    def __init__(self, server: smtplib.SMTP):
        self.server = server

    def __enter__(self) -> smtplib.SMTP:
        return self.server

    def __exit__(self, exc_type, exc, tb):
        try:
            self.server.quit()
        except (smtplib.SMTPException, OSError):
            self.server.close()
        if exc_type is not None and issubclass(exc_type, (smtplib.SMTPException, OSError)):
            raise TransientProviderError(f"SMTP session failed: {exc}") from exc
        return False
