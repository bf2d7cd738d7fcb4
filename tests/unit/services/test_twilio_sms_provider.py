"""
Tests for TwilioSmsProvider
"""

from unittest.mock import Mock

import pytest

from services.common.errors import AuthenticityError, ProviderRejectedError
from services.common.http_client import ProviderHttpClient
from services.common.result import Result
from services.providers.base import (
    ChannelIntegration, WebhookRequest, ParsedMessage, StatusUpdate, IgnoredEvent, OutboundMessage
)
from services.providers.channel_config import SmsConfig
from services.providers.twilio_sms_provider import TwilioSmsProvider, twilio_signature

AUTH_TOKEN = 'twilio-auth-token'
WEBHOOK_URL = 'https://inbox.example.com/webhooks/twilio_sms/1'


def signed_request(form, token=AUTH_TOKEN, url=WEBHOOK_URL):
    return WebhookRequest(
        body=b'',
        headers={'X-Twilio-Signature': twilio_signature(token, url, form)},
        url=url,
        form=dict(form),
    )


def inbound_form(**overrides):
    form = {
        'MessageSid': 'SM-in-1',
        'From': '+15551234567',
        'To': '+15559876543',
        'Body': 'Is my order ready?',
        'NumMedia': '0',
        'SmsStatus': 'received',
    }
    form.update(overrides)
    return form


@pytest.fixture
def integration():
    return ChannelIntegration(id=3, user_id='user-1', platform='twilio_sms', config=SmsConfig(
        account_sid='AC123', auth_token=AUTH_TOKEN, phone_number='+15559876543'
    ))


@pytest.fixture
def provider():
    return TwilioSmsProvider(Mock(), Mock())


class TestTwilioVerification:

    def test_signature_over_request_url(self, provider, integration):
        provider.verify_request(signed_request(inbound_form()), integration.config)

    def test_configured_webhook_url_is_signed_instead_of_request_url(self, provider, integration):
        config = SmsConfig(account_sid='AC123', auth_token=AUTH_TOKEN, phone_number='+15559876543',
                           webhook_url='https://public.example.com/hook')
        request = signed_request(inbound_form(), url='https://public.example.com/hook')
        request.url = 'http://internal:5000/webhooks/twilio_sms/3'

        provider.verify_request(request, config)

    def test_modified_form_is_rejected(self, provider, integration):
        request = signed_request(inbound_form())
        request.form['Body'] = 'tampered'

        with pytest.raises(AuthenticityError):
            provider.verify_request(request, integration.config)

    def test_missing_signature_is_rejected(self, provider, integration):
        request = WebhookRequest(body=b'', headers={}, url=WEBHOOK_URL, form=inbound_form())

        with pytest.raises(AuthenticityError):
            provider.verify_request(request, integration.config)

    def test_signature_is_order_independent(self):
        params = {'b': '2', 'a': '1'}

        assert twilio_signature('t', 'https://x', params) == twilio_signature('t', 'https://x', {'a': '1', 'b': '2'})


class TestTwilioParsing:

    def test_inbound_sms(self, provider, integration):
        event = provider.parse_event(signed_request(inbound_form()), integration)

        assert isinstance(event, ParsedMessage)
        assert event.platform_message_id == 'SM-in-1'
        assert event.thread_key == '5551234567'
        assert event.body == 'Is my order ready?'
        assert event.contact_hints == {'phone': '+15551234567'}

    def test_media_urls_become_attachments(self, provider, integration):
        form = inbound_form(NumMedia='2',
                            MediaUrl0='https://api.twilio.com/m0', MediaContentType0='image/jpeg',
                            MediaUrl1='https://api.twilio.com/m1', MediaContentType1='image/png')

        event = provider.parse_event(signed_request(form), integration)

        assert [a.location for a in event.attachments] == ['https://api.twilio.com/m0', 'https://api.twilio.com/m1']
        assert event.attachments[1].content_type == 'image/png'

    def test_delivery_receipt_is_status_update(self, provider, integration):
        form = {'MessageSid': 'SM123', 'MessageStatus': 'delivered', 'To': '+15551234567'}

        event = provider.parse_event(signed_request(form), integration)

        assert event == StatusUpdate(platform_message_id='SM123', status='delivered', error_info=None)

    def test_failed_receipt_carries_error(self, provider, integration):
        form = {'MessageSid': 'SM123', 'MessageStatus': 'undelivered',
                'ErrorCode': '30003', 'ErrorMessage': 'Unreachable handset'}

        event = provider.parse_event(signed_request(form), integration)

        assert event.error_info == {'code': '30003', 'message': 'Unreachable handset'}

    def test_outbound_direction_is_status_update(self, provider, integration):
        form = inbound_form(Direction='outbound-api', MessageStatus='sent')

        assert isinstance(provider.parse_event(signed_request(form), integration), StatusUpdate)

    def test_own_number_echo_is_ignored(self, provider, integration):
        form = inbound_form(From='+1 (555) 987-6543')

        assert isinstance(provider.parse_event(signed_request(form), integration), IgnoredEvent)

    def test_missing_sid_is_invalid(self, provider, integration):
        outcome = provider.process_webhook(signed_request({'From': '+15551234567', 'Body': 'hi'}), integration)

        assert outcome.status == 'invalid'


class TestTwilioStatusReceipts:

    def test_receipt_updates_store(self, provider, integration):
        provider.message_store.update_status.return_value = Result.success(
            Mock(id=42), metadata={'applied': True}
        )

        outcome = provider.process_webhook(
            signed_request({'MessageSid': 'SM123', 'MessageStatus': 'delivered'}), integration
        )

        assert outcome.status == 'status_updated'
        assert outcome.message_id == 42
        provider.message_store.update_status.assert_called_once_with('user-1', 'twilio_sms', 'SM123', 'delivered', None)
        provider.message_store.append.assert_not_called()

    def test_receipt_for_unknown_message_is_acknowledged(self, provider, integration):
        provider.message_store.update_status.return_value = Result.success(
            None, metadata={'applied': False, 'reason': 'not_found'}
        )

        outcome = provider.process_webhook(
            signed_request({'MessageSid': 'SM404', 'MessageStatus': 'delivered'}), integration
        )

        assert outcome.status == 'status_updated'
        assert outcome.message_id is None


class TestTwilioSending:

    def test_send_posts_form_with_basic_auth(self, provider, integration, mocker):
        post = mocker.patch.object(ProviderHttpClient, 'post', return_value={'sid': 'SM123', 'status': 'queued'})
        provider.resolver.resolve_contact.return_value = Result.success(Mock(id=1))
        provider.resolver.resolve_conversation.return_value = Result.success(Mock(id=2, contact_id=1))
        provider.message_store.append.return_value = Result.success(Mock(id=9))

        result = provider.send_message(integration, OutboundMessage(to='+15551234567', content='On its way'))

        assert result.success
        assert result.message_id == 'SM123'
        assert result.stored_message_id == 9
        endpoint = post.call_args.args[0]
        assert endpoint == 'Accounts/AC123/Messages.json'
        assert post.call_args.kwargs['data'] == {'To': '+15551234567', 'Body': 'On its way', 'From': '+15559876543'}
        assert post.call_args.kwargs['auth'] == ('AC123', AUTH_TOKEN)

        stored = provider.message_store.append.call_args[0][0]
        assert stored['status'] == 'queued'
        assert stored['direction'] == 'outbound'
        provider.resolver.resolve_conversation.assert_called_once()
        assert provider.resolver.resolve_conversation.call_args.args[2] == '5551234567'

    def test_messaging_service_replaces_from(self, provider, mocker):
        post = mocker.patch.object(ProviderHttpClient, 'post', return_value={'sid': 'SM1', 'status': 'accepted'})
        config = SmsConfig(account_sid='AC123', auth_token=AUTH_TOKEN, phone_number='+15559876543',
                           messaging_service_sid='MG1')

        provider.deliver(config, OutboundMessage(to='+15551234567', content='hi', media_url='https://x/y.png'))

        data = post.call_args.kwargs['data']
        assert data['MessagingServiceSid'] == 'MG1'
        assert 'From' not in data
        assert data['MediaUrl'] == 'https://x/y.png'

    def test_rejected_send_is_failure(self, provider, integration, mocker):
        mocker.patch.object(ProviderHttpClient, 'post',
                            side_effect=ProviderRejectedError("The 'To' number is not a valid phone number."))

        result = provider.send_message(integration, OutboundMessage(to='+1', content='hi'))

        assert result.success is False
        assert result.error_code == 'PROVIDER_ERROR'
        provider.message_store.append.assert_not_called()

    def test_connection_check_reads_account(self, provider, integration, mocker):
        get = mocker.patch.object(ProviderHttpClient, 'get',
                                  return_value={'friendly_name': 'Acme', 'status': 'active'})

        result = provider.test_connection(integration.config)

        assert result.success
        assert result.info['friendly_name'] == 'Acme'
        assert get.call_args.args[0] == 'Accounts/AC123.json'
