"""
Tests for GmailProvider
"""

import base64
import json
import smtplib
from unittest.mock import Mock

import pytest

from services.common.errors import AuthenticityError, DataIntegrityWarning
from services.common.result import Result
from services.providers.base import ChannelIntegration, WebhookRequest, OutboundMessage
from services.providers.channel_config import EmailConfig
from services.providers.gmail_provider import GmailProvider, forwarding_address

TOKEN = 'pubsub-verification-token'


def push_request(email=None, token=TOKEN, in_header=False, envelope=None):
    if envelope is None:
        data = base64.b64encode(json.dumps(email).encode()).decode()
        envelope = {'message': {'data': data, 'messageId': 'pubsub-1', 'publishTime': '2025-01-01T12:00:00Z'},
                    'subscription': 'projects/p/subscriptions/inbox'}
    url = 'https://inbox.example.com/webhooks/gmail/2'
    headers = {}
    if in_header:
        headers['X-Goog-Channel-Token'] = token
    elif token:
        url = f"{url}?token={token}"
    return WebhookRequest(body=json.dumps(envelope).encode(), headers=headers, url=url)


def forwarded_email(**overrides):
    email = {
        'messageId': '<abc@mail.example.com>',
        'threadId': 'thread-1',
        'from': 'Jane Doe <Jane@Example.com>',
        'to': 'user-1234@inbox.example.com',
        'subject': 'Quote request',
        'body': 'Can you send a quote?',
        'headers': {'X-Mailer': 'test'},
    }
    email.update(overrides)
    return email


@pytest.fixture
def config():
    return EmailConfig(email='owner@acme.com', app_password='app-pass', webhook_secret=TOKEN,
                       display_name='Acme Support')


@pytest.fixture
def integration(config):
    return ChannelIntegration(id=2, user_id='user-1', platform='gmail', config=config)


@pytest.fixture
def provider():
    return GmailProvider(Mock(), Mock())


@pytest.fixture
def smtp(mocker):
    smtp_class = mocker.patch('services.providers.gmail_provider.smtplib.SMTP')
    return smtp_class


class TestGmailVerification:

    def test_token_in_query_string(self, provider, config):
        provider.verify_request(push_request(forwarded_email()), config)

    def test_token_in_header(self, provider, config):
        provider.verify_request(push_request(forwarded_email(), in_header=True), config)

    def test_wrong_token_is_rejected(self, provider, config):
        with pytest.raises(AuthenticityError):
            provider.verify_request(push_request(forwarded_email(), token='nope'), config)

    def test_missing_token_is_rejected(self, provider, config):
        with pytest.raises(AuthenticityError):
            provider.verify_request(push_request(forwarded_email(), token=None), config)

    def test_integration_without_token_rejects_everything(self, provider):
        integration = ChannelIntegration(id=2, user_id='user-1', platform='gmail',
                                         config=EmailConfig(email='a@b.co', app_password='x'))

        outcome = provider.process_webhook(push_request(forwarded_email()), integration)

        assert outcome.status == 'rejected'


class TestGmailParsing:

    def test_forwarded_email(self, provider, integration):
        event = provider.parse_event(push_request(forwarded_email()), integration)

        assert event.external_id == 'jane@example.com'
        assert event.display_name == 'Jane Doe'
        assert event.thread_key == 'thread-1'
        assert event.platform_message_id == '<abc@mail.example.com>'
        assert event.metadata['subject'] == 'Quote request'
        assert event.contact_hints == {'email': 'jane@example.com'}
        assert event.timestamp.year == 2025

    def test_missing_thread_falls_back_to_sender(self, provider, integration):
        event = provider.parse_event(push_request(forwarded_email(threadId=None)), integration)

        assert event.thread_key == 'gmail_jane@example.com'

    def test_missing_message_id_falls_back_to_pubsub_id(self, provider, integration):
        event = provider.parse_event(push_request(forwarded_email(messageId=None)), integration)

        assert event.platform_message_id == 'pubsub-1'

    def test_attachments_keep_metadata_only(self, provider, integration):
        email = forwarded_email(attachments=[
            {'filename': 'plan.pdf', 'contentType': 'application/pdf', 'size': '2048', 'attachmentId': 'att-1'}
        ])

        event = provider.parse_event(push_request(email), integration)

        attachment = event.attachments[0]
        assert (attachment.filename, attachment.content_type, attachment.size, attachment.location) == \
            ('plan.pdf', 'application/pdf', 2048, 'att-1')

    def test_invalid_base64_is_data_integrity_warning(self, provider, integration):
        request = push_request(envelope={'message': {'data': '%%% not base64 %%%'}})

        with pytest.raises(DataIntegrityWarning):
            provider.parse_event(request, integration)

    def test_envelope_without_data_is_invalid_outcome(self, provider, integration):
        outcome = provider.process_webhook(push_request(envelope={'message': {}}), integration)

        assert outcome.status == 'invalid'
        assert outcome.error_code == 'INVALID_PAYLOAD'

    def test_sender_without_address_is_invalid(self, provider, integration):
        with pytest.raises(DataIntegrityWarning):
            provider.parse_event(push_request(forwarded_email(**{'from': 'Jane Doe'})), integration)


class TestGmailSending:

    def test_send_over_smtp(self, provider, integration, smtp):
        server = smtp.return_value
        provider.resolver.resolve_contact.return_value = Result.success(Mock(id=1))
        provider.resolver.resolve_conversation.return_value = Result.success(Mock(id=2, contact_id=1))
        provider.message_store.append.return_value = Result.success(Mock(id=5))

        result = provider.send_message(integration, OutboundMessage(
            to='jane@example.com', content='Quote attached', subject='Your quote', reply_to='<abc@mail.example.com>'
        ))

        assert result.success
        assert result.message_id.endswith('@acme.com>')
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('owner@acme.com', 'app-pass')
        sent = server.send_message.call_args.args[0]
        assert sent['To'] == 'jane@example.com'
        assert sent['Subject'] == 'Your quote'
        assert sent['In-Reply-To'] == '<abc@mail.example.com>'
        assert 'Acme Support' in sent['From']
        server.quit.assert_called_once()

        stored = provider.message_store.append.call_args[0][0]
        assert stored['platform_message_id'] == result.message_id
        assert stored['message_metadata']['subject'] == 'Your quote'
        assert provider.resolver.resolve_conversation.call_args.args[2] == 'gmail_jane@example.com'

    def test_bad_app_password_is_configuration_error(self, provider, integration, smtp):
        smtp.return_value.login.side_effect = smtplib.SMTPAuthenticationError(535, b'bad credentials')

        result = provider.send_message(integration, OutboundMessage(to='jane@example.com', content='hi'))

        assert result.success is False
        assert result.error_code == 'CONFIGURATION_ERROR'
        smtp.return_value.close.assert_called_once()

    def test_unreachable_server_is_transient(self, provider, integration, smtp):
        smtp.side_effect = OSError('connection refused')

        result = provider.send_message(integration, OutboundMessage(to='jane@example.com', content='hi'))

        assert result.error_code == 'PROVIDER_UNAVAILABLE'

    def test_refused_recipient_is_rejected(self, provider, integration, smtp):
        smtp.return_value.send_message.side_effect = smtplib.SMTPRecipientsRefused(
            {'jane@example.com': (550, b'no such user')}
        )

        result = provider.send_message(integration, OutboundMessage(to='jane@example.com', content='hi'))

        assert result.error_code == 'PROVIDER_ERROR'

    def test_connection_test_logs_in_and_noops(self, provider, config, smtp):
        result = provider.test_connection(config)

        assert result.success
        smtp.return_value.noop.assert_called_once()

    def test_connection_test_reports_auth_failure(self, provider, config, smtp):
        smtp.return_value.login.side_effect = smtplib.SMTPAuthenticationError(535, b'bad credentials')

        result = provider.test_connection(config)

        assert result.success is False
        assert 'app password' in result.error


def test_forwarding_address_is_stable_per_tenant():
    assert forwarding_address('user-1') == forwarding_address('user-1')
    assert forwarding_address('user-1') != forwarding_address('user-2')
    assert forwarding_address('user-1', 'mail.acme.com').endswith('@mail.acme.com')
