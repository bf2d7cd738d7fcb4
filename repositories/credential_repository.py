"""
CredentialRepository - Data access layer for IntegrationCredential
Rows hold ciphertext only; encryption lives in CredentialVault
"""

from datetime import datetime
from typing import List, Optional
from repositories.base_repository import BaseRepository
from inbox_database import IntegrationCredential
import logging

logger = logging.getLogger(__name__)


class CredentialRepository(BaseRepository[IntegrationCredential]):
    """Repository for IntegrationCredential data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, IntegrationCredential)

    def find_for_user(self, user_id: str, provider: str) -> Optional[IntegrationCredential]:
        """
        Find the credential row for (user, provider) regardless of is_active.

        Args:
            user_id: Tenant id
            provider: Provider identifier (e.g. 'google_ads', 'slack')

        Returns:
            IntegrationCredential or None
        """
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, provider=provider)\
            .first()

    def find_active(self, user_id: str, provider: str) -> Optional[IntegrationCredential]:
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, provider=provider, is_active=True)\
            .first()

    def find_all_for_user(self, user_id: str, active_only: bool = False) -> List[IntegrationCredential]:
        query = self.session.query(self.model_class).filter_by(user_id=user_id)
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(self.model_class.provider).all()

    def find_expired(self, now: datetime, provider_type: str = 'oauth') -> List[IntegrationCredential]:
        """
        Find active credentials whose expiry is at or before ``now``.

        Args:
            now: Cut-off time (pass a future time to find soon-to-expire rows)
            provider_type: Only this credential type has a refreshable expiry
        """
        return self.session.query(self.model_class)\
            .filter(
                self.model_class.is_active.is_(True),
                self.model_class.provider_type == provider_type,
                self.model_class.expires_at.isnot(None),
                self.model_class.expires_at <= now
            )\
            .all()

    def reload(self, credential: IntegrationCredential) -> IntegrationCredential:
        """Re-read a row so changes committed by other sessions become visible"""
        self.session.refresh(credential)
        return credential
