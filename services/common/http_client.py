"""
Provider HTTP Client

Thin wrapper around requests shared by the channel providers, the OAuth
token client and the analytics clients:
- Bounded (connect, read) timeouts on every call
- Error mapping onto the provider error taxonomy
- Call timing through the performance logger

No automatic retry: retry policy belongs to the caller (Celery tasks).
"""

import logging
import time
from typing import Dict, Any, Optional, Tuple

import requests

from logging_config import performance_logger
from services.common.errors import TransientProviderError, ProviderRejectedError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = (5, 30)  # Connection timeout, read timeout


class ProviderHttpClient:
    """HTTP client for a single third-party service"""

    def __init__(self, service: str, base_url: str = '',
                 timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        """
        Args:
            service: Name used in logs and error messages (e.g. 'slack')
            base_url: Prefix for relative endpoints
            timeout: (connect, read) timeout in seconds
            session: Optional requests session (injected in tests)
        """
        self.service = service
        self.base_url = base_url.rstrip('/')
        self.timeout = tuple(timeout)
        self.http = session or requests.Session()

    def request(self, method: str, endpoint: str, *, params: Optional[Dict] = None,
                json_data: Optional[Dict] = None, data: Optional[Dict] = None,
                headers: Optional[Dict] = None, auth: Optional[Tuple[str, str]] = None) -> Dict[str, Any]:
        """
        Make an HTTP request and return the decoded JSON body.

        Raises:
            TransientProviderError: timeout, connection failure, 429 or 5xx
            ProviderRejectedError: any other non-2xx response
        """
        url = endpoint if endpoint.startswith('http') else f"{self.base_url}/{endpoint.lstrip('/')}"
        started = time.monotonic()
        status_code = None

        try:
            response = self.http.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                data=data,
                headers=headers,
                auth=auth,
                timeout=self.timeout
            )
            status_code = response.status_code
        except requests.exceptions.Timeout as e:
            logger.warning(f"{self.service} request timed out", extra={"endpoint": endpoint, "error": str(e)})
            raise TransientProviderError(f"{self.service} request timed out")
        except requests.exceptions.RequestException as e:
            logger.warning(f"{self.service} request failed", extra={"endpoint": endpoint, "error": str(e)})
            raise TransientProviderError(f"Could not reach {self.service}: {e}")
        finally:
            performance_logger.log_api_call(
                self.service, endpoint, round((time.monotonic() - started) * 1000, 1), status_code
            )

        body = self._decode(response)

        if status_code == 429 or status_code >= 500:
            raise TransientProviderError(
                f"{self.service} unavailable (HTTP {status_code})",
                details={'status_code': status_code}
            )
        if status_code >= 400:
            raise ProviderRejectedError(
                self._error_message(body) or f"{self.service} rejected the request (HTTP {status_code})",
                details={'status_code': status_code}
            )
        return body

    def get(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        return self.request('GET', endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        return self.request('POST', endpoint, **kwargs)

    @staticmethod
    def _decode(response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {'data': body}

    @staticmethod
    def _error_message(body: Dict[str, Any]) -> Optional[str]:
        """Pull a readable message out of the common error envelopes"""
        error = body.get('error') or body.get('message') or body.get('description')
        if isinstance(error, dict):
            return error.get('message')
        return error
