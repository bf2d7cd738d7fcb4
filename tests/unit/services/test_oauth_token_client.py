"""
Tests for OAuthTokenClient
"""

import base64
from urllib.parse import urlparse, parse_qs

import pytest

from services.common.errors import ProviderRejectedError, TransientProviderError
from services.common.http_client import ProviderHttpClient
from services.oauth_token_client import OAuthTokenClient


@pytest.fixture
def endpoints():
    return {
        'google_ads': {
            'authorize_url': 'https://accounts.google.com/o/oauth2/v2/auth',
            'token_url': 'https://oauth2.googleapis.com/token',
            'client_id': 'client-1',
            'client_secret': 'shh',
            'scope': 'ads',
            'auth_style': 'body',
            'extra_params': {'access_type': 'offline'},
        },
        'hubspot_crm': {
            'authorize_url': 'https://app.hubspot.com/oauth/authorize',
            'token_url': 'https://api.hubapi.com/oauth/v1/token',
            'client_id': 'hub-client',
            'client_secret': 'hub-secret',
            'auth_style': 'basic',
        },
        'linkedin_ads': {'token_url': 'https://linkedin/token'},
    }


@pytest.fixture
def client(endpoints):
    return OAuthTokenClient(endpoints)


class TestAuthorizationUrl:

    def test_includes_state_scope_and_extras(self, client):
        result = client.authorization_url('google_ads', 'https://app/callback', 'state-123')

        query = parse_qs(urlparse(result.data).query)
        assert query['state'] == ['state-123']
        assert query['scope'] == ['ads']
        assert query['access_type'] == ['offline']
        assert query['redirect_uri'] == ['https://app/callback']
        assert query['response_type'] == ['code']

    def test_unconfigured_provider(self, client):
        assert client.authorization_url('linkedin_ads', 'https://app/cb', 's').error_code == 'CONFIGURATION_ERROR'


class TestGrants:

    def test_exchange_code_posts_client_credentials_in_body(self, client, mocker):
        post = mocker.patch.object(ProviderHttpClient, 'post', return_value={
            'access_token': 'at', 'refresh_token': 'rt', 'expires_in': 3600, 'token_type': 'Bearer'
        })

        result = client.exchange_code('google_ads', 'code-1', 'https://app/callback')

        assert result.is_success
        assert result.data['access_token'] == 'at'
        assert result.data['refresh_token'] == 'rt'
        assert 'expires_at' in result.data
        assert post.call_args.args[0] == 'https://oauth2.googleapis.com/token'
        data = post.call_args.kwargs['data']
        assert data['grant_type'] == 'authorization_code'
        assert data['client_id'] == 'client-1'
        assert data['client_secret'] == 'shh'

    def test_basic_auth_style_uses_header(self, client, mocker):
        post = mocker.patch.object(ProviderHttpClient, 'post', return_value={'access_token': 'at'})

        client.refresh('hubspot_crm', 'rt-1')

        headers = post.call_args.kwargs['headers']
        assert headers['Authorization'] == 'Basic ' + base64.b64encode(b'hub-client:hub-secret').decode()
        assert 'client_secret' not in post.call_args.kwargs['data']
        assert post.call_args.kwargs['data']['refresh_token'] == 'rt-1'

    def test_refresh_without_rotation_has_no_refresh_token(self, client, mocker):
        mocker.patch.object(ProviderHttpClient, 'post', return_value={'access_token': 'new', 'expires_in': '60'})

        result = client.refresh('google_ads', 'rt-1')

        assert 'refresh_token' not in result.data

    def test_response_without_access_token_is_provider_error(self, client, mocker):
        mocker.patch.object(ProviderHttpClient, 'post', return_value={'error': 'weird'})

        assert client.refresh('google_ads', 'rt-1').error_code == 'PROVIDER_ERROR'

    def test_invalid_grant_is_provider_error(self, client, mocker):
        mocker.patch.object(ProviderHttpClient, 'post', side_effect=ProviderRejectedError('invalid_grant'))

        result = client.refresh('google_ads', 'revoked')

        assert result.is_failure
        assert result.error == 'invalid_grant'
        assert result.error_code == 'PROVIDER_ERROR'

    def test_timeout_is_unavailable(self, client, mocker):
        mocker.patch.object(ProviderHttpClient, 'post', side_effect=TransientProviderError('timed out'))

        assert client.refresh('google_ads', 'rt').error_code == 'PROVIDER_UNAVAILABLE'

    @pytest.mark.parametrize('call', [
        lambda c: c.exchange_code('google_ads', '', 'https://app/cb'),
        lambda c: c.refresh('google_ads', None),
    ])
    def test_blank_inputs_are_invalid(self, client, call, mocker):
        post = mocker.patch.object(ProviderHttpClient, 'post')

        assert call(client).error_code == 'INVALID_DATA'
        post.assert_not_called()

    def test_unknown_provider_is_configuration_error(self, client):
        assert client.refresh('mixpanel', 'rt').error_code == 'CONFIGURATION_ERROR'
