"""
OAuth 2.0 token endpoint client

Exchanges authorization codes and refresh tokens for access tokens against
each analytics provider's token endpoint. Responses are normalized to
``{access_token, refresh_token?, expires_at?, scope?}`` so the vault stores
the same shape regardless of provider.
"""

import base64
import logging
from typing import Dict, Any, Optional, Tuple
from urllib.parse import urlencode

from services.common.errors import InboxError
from services.common.http_client import ProviderHttpClient, DEFAULT_TIMEOUT
from services.common.result import Result
from utils.datetime_utils import utc_seconds_from_now, format_utc_iso

logger = logging.getLogger(__name__)


class OAuthTokenClient:
    """Authorization-code and refresh-token grants"""

    def __init__(self, endpoints: Dict[str, Dict[str, Any]],
                 timeout: Tuple[float, float] = DEFAULT_TIMEOUT):
        """
        Args:
            endpoints: provider → {'authorize_url', 'token_url', 'client_id',
                       'client_secret', 'scope', 'auth_style': 'body' | 'basic'}
            timeout: (connect, read) timeout in seconds
        """
        self.endpoints = endpoints or {}
        self.timeout = timeout

    def authorization_url(self, provider: str, redirect_uri: str, state: str) -> Result[str]:
        """Consent-screen URL the user is sent to; ``state`` comes back on the callback"""
        endpoint = self.endpoints.get(provider)
        if not endpoint or not endpoint.get('authorize_url') or not endpoint.get('client_id'):
            return Result.failure(f"OAuth is not configured for {provider}", code="CONFIGURATION_ERROR")

        params = {
            'response_type': 'code',
            'client_id': endpoint['client_id'],
            'redirect_uri': redirect_uri,
            'state': state,
        }
        if endpoint.get('scope'):
            params['scope'] = endpoint['scope']
        if endpoint.get('extra_params'):
            params.update(endpoint['extra_params'])
        return Result.success(f"{endpoint['authorize_url']}?{urlencode(params)}")

    def exchange_code(self, provider: str, code: str, redirect_uri: str) -> Result[Dict[str, Any]]:
        """Exchange an authorization code for tokens"""
        if not code:
            return Result.failure("Authorization code is required", code="INVALID_DATA")
        return self._grant(provider, {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': redirect_uri,
        })

    def refresh(self, provider: str, refresh_token: str) -> Result[Dict[str, Any]]:
        """Obtain a new access token; the provider may or may not rotate the refresh token"""
        if not refresh_token:
            return Result.failure("Refresh token is required", code="INVALID_DATA")
        return self._grant(provider, {
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
        })

    def _grant(self, provider: str, data: Dict[str, Any]) -> Result[Dict[str, Any]]:
        endpoint = self.endpoints.get(provider)
        if not endpoint or not endpoint.get('token_url') or not endpoint.get('client_id'):
            return Result.failure(f"OAuth is not configured for {provider}", code="CONFIGURATION_ERROR")

        headers = {'Accept': 'application/json'}
        if endpoint.get('auth_style') == 'basic':
            headers['Authorization'] = 'Basic ' + base64.b64encode(
                f"{endpoint['client_id']}:{endpoint.get('client_secret', '')}".encode()
            ).decode()
        else:
            data = {**data, 'client_id': endpoint['client_id'], 'client_secret': endpoint.get('client_secret')}

        client = ProviderHttpClient(f"{provider}-oauth", timeout=self.timeout)
        try:
            body = client.post(endpoint['token_url'], data=data, headers=headers)
        except InboxError as e:
            logger.warning(f"{data['grant_type']} grant failed for {provider}: {e.message}")
            return e.to_result()

        tokens = self._normalize(body)
        if tokens is None:
            return Result.failure(f"{provider} token response has no access_token", code="PROVIDER_ERROR")
        return Result.success(tokens)

    @staticmethod
    def _normalize(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        access_token = body.get('access_token')
        if not access_token:
            return None
        tokens = {'access_token': access_token}
        if body.get('refresh_token'):
            tokens['refresh_token'] = body['refresh_token']
        if body.get('expires_in'):
            try:
                tokens['expires_at'] = format_utc_iso(utc_seconds_from_now(int(body['expires_in'])))
            except (TypeError, ValueError):
                pass
        if body.get('scope'):
            tokens['scope'] = body['scope']
        if body.get('token_type'):
            tokens['token_type'] = body['token_type']
        return tokens
