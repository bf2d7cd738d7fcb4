"""
Unit tests for the webhook endpoint's HTTP mapping
"""

from unittest.mock import Mock

import pytest

from services.common.result import Result
from services.providers.base import WebhookOutcome


@pytest.fixture
def webhook_service(app, mocker):
    service = Mock()
    mocker.patch.object(app.services, 'get', return_value=service)
    return service


class TestReceiveWebhook:

    def test_request_is_handed_to_the_service(self, client, webhook_service):
        webhook_service.process.return_value = Result.success(WebhookOutcome(status='processed', message_id=3))

        response = client.post('/webhooks/slack/7', data=b'{"type": "event_callback"}',
                               headers={'Content-Type': 'application/json', 'X-Slack-Signature': 'v0=abc'})

        assert response.status_code == 200
        assert response.get_json() == {'status': 'processed', 'message_id': 3}
        channel, integration_id, webhook_request = webhook_service.process.call_args.args
        assert (channel, integration_id) == ('slack', 7)
        assert webhook_request.body == b'{"type": "event_callback"}'
        assert webhook_request.headers['X-Slack-Signature'] == 'v0=abc'
        assert webhook_request.form == {}

    def test_form_posts_are_parsed(self, client, webhook_service):
        webhook_service.process.return_value = Result.success(WebhookOutcome(status='status_updated'))

        client.post('/webhooks/twilio_sms/2', data={'MessageSid': 'SM1', 'MessageStatus': 'delivered'})

        webhook_request = webhook_service.process.call_args.args[2]
        assert webhook_request.form == {'MessageSid': 'SM1', 'MessageStatus': 'delivered'}
        assert webhook_request.url == 'http://localhost/webhooks/twilio_sms/2'

    def test_challenge_is_echoed(self, client, webhook_service):
        webhook_service.process.return_value = Result.success(WebhookOutcome(status='challenge', challenge='xyz'))

        response = client.post('/webhooks/slack/7', json={'type': 'url_verification'})

        assert response.get_json() == {'challenge': 'xyz'}

    def test_get_handshake_echoes_challenge_as_text(self, client, webhook_service):
        webhook_service.process.return_value = Result.success(WebhookOutcome(status='challenge', challenge='1158201444'))

        response = client.get('/webhooks/whatsapp/4?hub.mode=subscribe&hub.verify_token=t&hub.challenge=1158201444')

        assert response.status_code == 200
        assert response.get_data(as_text=True) == '1158201444'
        assert response.mimetype == 'text/plain'
        webhook_request = webhook_service.process.call_args.args[2]
        assert webhook_request.method == 'GET'
        assert webhook_request.args['hub.verify_token'] == 't'

    def test_rejected_is_forbidden_without_detail(self, client, webhook_service):
        webhook_service.process.return_value = Result.success(
            WebhookOutcome(status='rejected', error='Signature mismatch', error_code='INVALID_SIGNATURE')
        )

        response = client.post('/webhooks/slack/7', json={})

        assert response.status_code == 403
        assert response.get_json() == {'error': 'Forbidden'}

    def test_invalid_payload_is_acknowledged(self, client, webhook_service):
        webhook_service.process.return_value = Result.success(
            WebhookOutcome(status='invalid', error='Malformed body', error_code='INVALID_PAYLOAD')
        )

        response = client.post('/webhooks/telegram/1', data=b'not json')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'invalid'

    def test_processing_error_is_500(self, client, webhook_service):
        webhook_service.process.return_value = Result.success(WebhookOutcome(status='error', error='db down'))

        response = client.post('/webhooks/gmail/1', json={})

        assert response.status_code == 500
        assert 'db down' not in response.get_data(as_text=True)

    def test_unknown_integration_is_404(self, client, webhook_service):
        webhook_service.process.return_value = Result.failure('Integration not found', code='NOT_FOUND')

        response = client.post('/webhooks/slack/999', json={})

        assert response.status_code == 404
