"""
CredentialVault - encrypted storage of third-party OAuth tokens and API keys

Payloads are serialized to JSON and sealed with Fernet (AES-CBC + HMAC), so
a tampered or foreign-key row fails authentication instead of decrypting to
garbage. The key is supplied by configuration and never changes after
construction.
"""

import json
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config import ConfigurationError
from logging_config import get_logger, security_logger
from repositories.credential_repository import CredentialRepository
from inbox_database import IntegrationCredential
from services.common.result import Result
from services.enums import ProviderType
from utils.datetime_utils import utc_now, ensure_utc, format_utc_iso, parse_provider_timestamp, utc_seconds_from_now

logger = get_logger(__name__)

# Refresh locks are process-wide so every vault instance shares them. An
# entry lives only while some caller holds or waits on it.
_refresh_locks: Dict[Tuple[str, str], '_RefreshLock'] = {}
_refresh_locks_guard = threading.Lock()


class _RefreshLock:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


@contextmanager
def _refresh_lock(user_id: str, provider: str):
    key = (user_id, provider)
    with _refresh_locks_guard:
        entry = _refresh_locks.get(key)
        if entry is None:
            entry = _refresh_locks[key] = _RefreshLock()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _refresh_locks_guard:
            entry.users -= 1
            if not entry.users:
                del _refresh_locks[key]


class CredentialVault:
    """Encrypts, persists and refreshes per-tenant provider credentials"""

    def __init__(self, credential_repository: CredentialRepository, encryption_key):
        """
        Args:
            credential_repository: Repository for IntegrationCredential rows
            encryption_key: urlsafe base64 Fernet key (str or bytes)

        Raises:
            ConfigurationError: If the key is missing or malformed
        """
        if not encryption_key:
            raise ConfigurationError("CREDENTIAL_ENCRYPTION_KEY is not set")
        try:
            self._cipher = Fernet(encryption_key.encode() if isinstance(encryption_key, str) else encryption_key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"CREDENTIAL_ENCRYPTION_KEY is not a valid Fernet key: {e}")
        self.repository = credential_repository

    # Encryption

    def _encrypt(self, payload: Dict[str, Any]) -> str:
        return self._cipher.encrypt(json.dumps(payload, default=str).encode()).decode()

    def _decrypt(self, credential: IntegrationCredential) -> Optional[Dict[str, Any]]:
        """Decrypt a row; failures are logged as security events and return None"""
        try:
            return json.loads(self._cipher.decrypt(credential.encrypted_data.encode()))
        except (InvalidToken, ValueError, TypeError, AttributeError):
            security_logger.log_decryption_failure(credential.user_id, credential.provider)
            return None

    # Public API

    def store(self, user_id: str, provider: str, payload: Dict[str, Any],
              provider_type: str = ProviderType.OAUTH.value,
              account_info: Optional[Dict[str, Any]] = None) -> Result[IntegrationCredential]:
        """
        Encrypt ``payload`` and upsert it as the active credential for (user, provider).

        Args:
            user_id: Tenant id
            provider: Provider identifier
            payload: Token or key bundle, e.g. {'access_token', 'refresh_token', 'expires_in'}
            provider_type: 'oauth' or 'api_key'
            account_info: Optional {'id', 'name'} of the external account

        Returns:
            Result with the persisted row
        """
        account_info = account_info or {}
        fields = {
            'provider_type': provider_type,
            'encrypted_data': self._encrypt(payload),
            'account_id': account_info.get('id'),
            'account_name': account_info.get('name'),
            'expires_at': self._expiry_from(payload),
            'is_active': True,
        }

        try:
            credential = self._upsert(user_id, provider, fields)
        except IntegrityError:
            # Lost an insert race against a concurrent store; the row exists now
            self.repository.rollback()
            try:
                credential = self._upsert(user_id, provider, fields)
            except SQLAlchemyError as e:
                logger.error("Failed to store credentials", user_id=user_id, provider=provider, error=str(e))
                security_logger.log_credential_event('stored', user_id, provider, success=False)
                return Result.failure("Failed to store credentials", code="STORE_ERROR")
        except SQLAlchemyError as e:
            logger.error("Failed to store credentials", user_id=user_id, provider=provider, error=str(e))
            security_logger.log_credential_event('stored', user_id, provider, success=False)
            return Result.failure("Failed to store credentials", code="STORE_ERROR")

        security_logger.log_credential_event('stored', user_id, provider)
        return Result.success(credential)

    def _upsert(self, user_id: str, provider: str, fields: Dict[str, Any]) -> IntegrationCredential:
        existing = self.repository.find_for_user(user_id, provider)
        if existing:
            credential = self.repository.update(existing, **fields)
        else:
            credential = self.repository.create(user_id=user_id, provider=provider, **fields)
        self.repository.commit()
        return credential

    def get(self, user_id: str, provider: str) -> Optional[Dict[str, Any]]:
        """
        Return the decrypted payload merged with account metadata.

        Missing rows, inactive rows and undecryptable rows all return None.
        """
        credential = self.repository.find_active(user_id, provider)
        if not credential:
            return None
        return self._decrypted_view(credential)

    def get_by_id(self, credential_id: int) -> Optional[Tuple[IntegrationCredential, Dict[str, Any]]]:
        """Row plus decrypted payload for an active credential id (webhook routing)"""
        credential = self.repository.get_by_id(credential_id)
        if not credential or not credential.is_active:
            return None
        data = self._decrypted_view(credential)
        if data is None:
            return None
        return credential, data

    def _decrypted_view(self, credential: IntegrationCredential) -> Optional[Dict[str, Any]]:
        data = self._decrypt(credential)
        if data is None:
            return None
        metadata = {
            'account_id': credential.account_id,
            'account_name': credential.account_name,
            'expires_at': format_utc_iso(credential.expires_at) if credential.expires_at else None,
            'last_synced_at': format_utc_iso(credential.last_synced_at) if credential.last_synced_at else None,
        }
        return {**metadata, **data}

    def list_integrations(self, user_id: str) -> List[Dict[str, Any]]:
        """Metadata for every credential of a user; secrets are never included"""
        return [
            {
                'id': credential.id,
                'provider': credential.provider,
                'provider_type': credential.provider_type,
                'account_id': credential.account_id,
                'account_name': credential.account_name,
                'is_active': credential.is_active,
                'is_expired': self.is_expired(credential),
                'expires_at': format_utc_iso(credential.expires_at) if credential.expires_at else None,
                'last_synced_at': format_utc_iso(credential.last_synced_at) if credential.last_synced_at else None,
                'created_at': format_utc_iso(credential.created_at) if credential.created_at else None,
                'updated_at': format_utc_iso(credential.updated_at) if credential.updated_at else None,
            }
            for credential in self.repository.find_all_for_user(user_id)
        ]

    @staticmethod
    def is_expired(credential, now: Optional[datetime] = None) -> bool:
        """True when ``expires_at <= now``; credentials without expiry never expire"""
        expires_at = getattr(credential, 'expires_at', None)
        if expires_at is None:
            return False
        return ensure_utc(expires_at) <= ensure_utc(now or utc_now())

    def refresh(self, user_id: str, provider: str, new_token_data: Dict[str, Any]) -> Result[IntegrationCredential]:
        """
        Merge refreshed tokens over the stored payload and re-encrypt.

        The existing refresh_token is kept when the provider did not issue a new one.
        """
        credential = self.repository.find_active(user_id, provider)
        if not credential:
            return Result.failure(f"No active {provider} credentials", code="NOT_FOUND")

        current = self._decrypt(credential)
        if current is None:
            return Result.failure(f"Stored {provider} credentials are unreadable", code="DECRYPTION_ERROR")

        merged = {**current, **new_token_data}
        if not new_token_data.get('refresh_token') and current.get('refresh_token'):
            merged['refresh_token'] = current['refresh_token']
        expires_at = self._expiry_from(new_token_data) or credential.expires_at

        try:
            self.repository.update(
                credential,
                encrypted_data=self._encrypt(merged),
                expires_at=expires_at,
            )
            self.repository.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to refresh credentials", user_id=user_id, provider=provider, error=str(e))
            security_logger.log_credential_event('refreshed', user_id, provider, success=False)
            return Result.failure("Failed to refresh credentials", code="STORE_ERROR")

        security_logger.log_credential_event('refreshed', user_id, provider)
        return Result.success(credential)

    def remove(self, user_id: str, provider: str) -> Result[IntegrationCredential]:
        """Soft delete: the row stays for audit, is_active becomes False"""
        credential = self.repository.find_for_user(user_id, provider)
        if not credential:
            return Result.failure(f"No {provider} credentials to remove", code="NOT_FOUND")

        try:
            self.repository.update(credential, is_active=False)
            self.repository.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to remove credentials", user_id=user_id, provider=provider, error=str(e))
            return Result.failure("Failed to remove credentials", code="STORE_ERROR")

        security_logger.log_credential_event('removed', user_id, provider)
        return Result.success(credential)

    def get_expired_credentials(self, within: timedelta = timedelta(0)) -> List[IntegrationCredential]:
        """Active OAuth credentials expiring at or before now + ``within``"""
        return self.repository.find_expired(utc_now() + within)

    def update_last_sync(self, user_id: str, provider: str) -> Result[IntegrationCredential]:
        credential = self.repository.find_active(user_id, provider)
        if not credential:
            return Result.failure(f"No active {provider} credentials", code="NOT_FOUND")
        try:
            self.repository.update(credential, last_synced_at=utc_now())
            self.repository.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to update last sync", user_id=user_id, provider=provider, error=str(e))
            return Result.failure("Failed to update last sync", code="STORE_ERROR")
        return Result.success(credential)

    def ensure_fresh(self, user_id: str, provider: str, token_client,
                     skew: timedelta = timedelta(seconds=60)) -> Optional[Dict[str, Any]]:
        """
        Return usable credentials, refreshing an expiring OAuth token first.

        Only one caller per (user, provider) talks to the token endpoint; the
        others block on the lock and then re-read the refreshed row.

        Args:
            token_client: OAuthTokenClient used for the refresh grant
            skew: Treat tokens expiring within this window as expired
        """
        credential = self.repository.find_active(user_id, provider)
        if not credential:
            return None
        if not self.is_expired(credential, now=utc_now() + skew):
            return self._decrypted_view(credential)

        with _refresh_lock(user_id, provider):
            self.repository.reload(credential)
            if not credential.is_active:
                return None
            if not self.is_expired(credential, now=utc_now() + skew):
                # Another caller refreshed while we waited
                return self._decrypted_view(credential)

            current = self._decrypt(credential)
            refresh_token = (current or {}).get('refresh_token')
            if not refresh_token:
                logger.warning("Expired credentials have no refresh token", user_id=user_id, provider=provider)
                return None

            token_result = token_client.refresh(provider, refresh_token)
            if token_result.is_failure:
                logger.warning("Token refresh failed", user_id=user_id, provider=provider,
                               error=token_result.error, code=token_result.error_code)
                return None

            refresh_result = self.refresh(user_id, provider, token_result.data)
            if refresh_result.is_failure:
                return None
            return self._decrypted_view(refresh_result.data)

    @staticmethod
    def _expiry_from(payload: Dict[str, Any]) -> Optional[datetime]:
        """Absolute expiry from 'expires_at' (epoch or ISO) or relative 'expires_in'"""
        if payload.get('expires_at'):
            return parse_provider_timestamp(payload['expires_at'])
        if payload.get('expires_in'):
            try:
                return utc_seconds_from_now(payload['expires_in'])
            except (TypeError, ValueError):
                return None
        return None
