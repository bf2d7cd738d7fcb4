"""
Error taxonomy for the messaging layer.

Provider adapters raise these internally and convert them to Result failures
at their boundary via ``to_result``; only unexpected faults (store
unavailable) escape to the route layer.
"""

from typing import Optional

from services.common.result import Result


class InboxError(Exception):
    """Base class; ``code`` is the Result error code the error maps to"""
    code = 'INTERNAL_ERROR'

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_result(self) -> Result:
        return Result.failure(self.message, code=self.code, metadata=self.details or None)


class ProviderConfigurationError(InboxError):
    """Missing or invalid channel configuration / credentials"""
    code = 'CONFIGURATION_ERROR'


class TransientProviderError(InboxError):
    """Network failure, timeout or 5xx from a third-party API; caller may retry"""
    code = 'PROVIDER_UNAVAILABLE'


class ProviderRejectedError(InboxError):
    """The provider answered but refused the request (4xx, ok=false)"""
    code = 'PROVIDER_ERROR'


class AuthenticityError(InboxError):
    """Webhook signature or token verification failed"""
    code = 'INVALID_SIGNATURE'


class DataIntegrityWarning(InboxError):
    """Unparseable webhook payload; logged and dropped"""
    code = 'INVALID_PAYLOAD'
