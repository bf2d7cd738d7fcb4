"""
Tests for ProviderHttpClient error mapping
"""

from unittest.mock import Mock

import pytest
import requests

from services.common.errors import TransientProviderError, ProviderRejectedError
from services.common.http_client import ProviderHttpClient


def response(status_code=200, body=None, invalid_json=False):
    mock = Mock(status_code=status_code)
    if invalid_json:
        mock.json.side_effect = ValueError('no json')
    else:
        mock.json.return_value = body if body is not None else {}
    return mock


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return ProviderHttpClient('slack', 'https://slack.com/api/', timeout=(2, 5), session=session)


class TestProviderHttpClient:

    def test_relative_endpoint_joins_base_url(self, client, session):
        session.request.return_value = response(body={'ok': True})

        assert client.post('/chat.postMessage', json_data={'text': 'hi'}) == {'ok': True}

        kwargs = session.request.call_args.kwargs
        assert kwargs['url'] == 'https://slack.com/api/chat.postMessage'
        assert kwargs['timeout'] == (2, 5)
        assert kwargs['json'] == {'text': 'hi'}

    def test_absolute_endpoint_is_used_as_is(self, client, session):
        session.request.return_value = response()

        client.get('https://files.slack.com/x')

        assert session.request.call_args.kwargs['url'] == 'https://files.slack.com/x'

    def test_timeout_is_transient(self, client, session):
        session.request.side_effect = requests.exceptions.ReadTimeout('read timed out')

        with pytest.raises(TransientProviderError, match='timed out'):
            client.get('auth.test')

    def test_connection_error_is_transient(self, client, session):
        session.request.side_effect = requests.exceptions.ConnectionError('refused')

        with pytest.raises(TransientProviderError):
            client.get('auth.test')

    @pytest.mark.parametrize('status_code', [429, 500, 503])
    def test_throttling_and_server_errors_are_transient(self, client, session, status_code):
        session.request.return_value = response(status_code)

        with pytest.raises(TransientProviderError) as excinfo:
            client.get('auth.test')

        assert excinfo.value.details == {'status_code': status_code}

    def test_client_error_uses_provider_message(self, client, session):
        session.request.return_value = response(400, {'message': 'The To number is invalid'})

        with pytest.raises(ProviderRejectedError, match='The To number is invalid'):
            client.post('Messages.json')

    def test_client_error_without_body(self, client, session):
        session.request.return_value = response(404, invalid_json=True)

        with pytest.raises(ProviderRejectedError, match='HTTP 404'):
            client.get('missing')

    def test_non_object_body_is_wrapped(self, client, session):
        session.request.return_value = response(body=[1, 2])

        assert client.get('list') == {'data': [1, 2]}
