"""
Tests for MessagingIntegrationService
"""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from services.common.result import Result
from services.messaging_integration_service import MessagingIntegrationService
from services.providers.base import ConnectionTestResult, SendResult
from services.providers.channel_config import ChatConfig, EmailConfig
from services.providers.registry import ProviderRegistry

SLACK_CONFIG = {'bot_token': 'xoxb-1', 'signing_secret': 'secret'}


def mock_provider(platform):
    provider = Mock()
    provider.platform = platform
    return provider


@pytest.fixture
def slack():
    return mock_provider('slack')


@pytest.fixture
def gmail():
    provider = mock_provider('gmail')
    provider.forwarding_address_for.return_value = 'user-abcd1234@inbox.example.com'
    return provider


@pytest.fixture
def vault():
    return Mock()


@pytest.fixture
def service(vault, slack, gmail):
    return MessagingIntegrationService(vault, ProviderRegistry([slack, gmail]))


def stored_credential(id=1, provider='slack', user_id='user-1'):
    return SimpleNamespace(id=id, provider=provider, user_id=user_id)


class TestLoadIntegration:

    def test_builds_typed_integration(self, service, vault):
        vault.get_by_id.return_value = (stored_credential(), dict(SLACK_CONFIG, account_id='T1'))

        result = service.load_integration(1)

        assert result.is_success
        assert result.data.config == ChatConfig(bot_token='xoxb-1', signing_secret='secret')
        assert result.data.user_id == 'user-1'

    def test_missing_credential_is_not_found(self, service, vault):
        vault.get_by_id.return_value = None

        assert service.load_integration(1).error_code == 'NOT_FOUND'

    def test_analytics_credential_is_not_a_messaging_integration(self, service, vault):
        vault.get_by_id.return_value = (stored_credential(provider='google_ads'), {'access_token': 'x'})

        assert service.load_integration(1).error_code == 'NOT_FOUND'

    def test_platform_mismatch_is_not_found(self, service, vault):
        vault.get_by_id.return_value = (stored_credential(), SLACK_CONFIG)

        assert service.load_integration(1, platform='gmail').error_code == 'NOT_FOUND'

    def test_corrupt_stored_config_is_configuration_error(self, service, vault):
        vault.get_by_id.return_value = (stored_credential(), {'bot_token': 'xoxb-1'})

        assert service.load_integration(1).error_code == 'CONFIGURATION_ERROR'


class TestConnect:

    def test_stores_working_config(self, service, vault, slack):
        slack.test_connection.return_value = ConnectionTestResult(
            success=True, info={'team': 'Acme', 'team_id': 'T1'}
        )
        vault.store.return_value = Result.success(SimpleNamespace(id=7))

        result = service.connect('user-1', 'slack', {'botToken': 'xoxb-1', 'signingSecret': 'secret'})

        assert result.is_success
        assert result.data['integration_id'] == 7
        vault.store.assert_called_once_with(
            'user-1', 'slack', SLACK_CONFIG, provider_type='api_key', account_info={'id': 'T1', 'name': 'Acme'}
        )

    def test_failed_connection_is_not_stored(self, service, vault, slack):
        slack.test_connection.return_value = ConnectionTestResult(success=False, error='invalid_auth')

        result = service.connect('user-1', 'slack', SLACK_CONFIG)

        assert result.error_code == 'CONNECTION_FAILED'
        assert result.error == 'invalid_auth'
        vault.store.assert_not_called()

    def test_incomplete_config_is_not_tested(self, service, slack):
        result = service.connect('user-1', 'slack', {'bot_token': 'xoxb-1'})

        assert result.error_code == 'CONFIGURATION_ERROR'
        slack.test_connection.assert_not_called()

    def test_unsupported_platform(self, service):
        assert service.connect('user-1', 'fax', {}).error_code == 'UNSUPPORTED_PLATFORM'

    def test_email_gets_forwarding_address(self, service, vault, gmail):
        gmail.test_connection.return_value = ConnectionTestResult(success=True, info={'email': 'a@acme.com'})
        vault.store.return_value = Result.success(SimpleNamespace(id=8))

        result = service.connect('user-1', 'gmail', {'email': 'a@acme.com', 'app_password': 'p'})

        assert result.data['forwarding_address'] == 'user-abcd1234@inbox.example.com'
        payload = vault.store.call_args.args[2]
        assert payload['forwarding_address'] == 'user-abcd1234@inbox.example.com'
        assert isinstance(gmail.test_connection.call_args.args[0], EmailConfig)


class TestSendMessage:

    @pytest.fixture(autouse=True)
    def slack_integration(self, vault):
        vault.get_by_id.return_value = (stored_credential(), SLACK_CONFIG)

    def test_dispatches_to_provider(self, service, slack):
        slack.send_message.return_value = SendResult(success=True, message_id='slack_1.2', stored_message_id=3)

        result = service.send_message(1, {'to': 'C1', 'content': 'hi', 'conversation_id': '12'})

        assert result.is_success
        assert result.data.message_id == 'slack_1.2'
        integration, message = slack.send_message.call_args.args
        assert integration.id == 1
        assert message.conversation_id == 12
        assert message.content == 'hi'

    def test_provider_failure_is_a_successful_result(self, service, slack):
        slack.send_message.return_value = SendResult(success=False, error='channel_not_found',
                                                     error_code='PROVIDER_ERROR')

        result = service.send_message(1, {'to': 'C1', 'content': 'hi'})

        assert result.is_success
        assert result.data.success is False

    @pytest.mark.parametrize('data', [
        {'content': 'hi'},
        {'to': 'C1'},
        {'to': 'C1', 'content': ''},
    ])
    def test_to_and_content_are_required(self, service, slack, data):
        result = service.send_message(1, data)

        assert result.error_code == 'INVALID_DATA'
        slack.send_message.assert_not_called()

    def test_conversation_id_must_be_integer(self, service):
        result = service.send_message(1, {'to': 'C1', 'content': 'hi', 'conversation_id': 'abc'})

        assert result.error_code == 'INVALID_DATA'
