"""
ContactRepository - Data access layer for Contact entities
Isolates all database queries related to contacts
"""

from typing import List, Optional, Dict
from sqlalchemy import func
from repositories.base_repository import BaseRepository
from inbox_database import Contact
import logging

logger = logging.getLogger(__name__)


class ContactRepository(BaseRepository[Contact]):
    """Repository for Contact data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, Contact)

    def find_by_external_id(self, user_id: str, platform: str, external_id: str) -> Optional[Contact]:
        """
        Find a contact by its natural key.

        Args:
            user_id: Tenant id
            platform: Channel the contact was seen on
            external_id: Already-normalized external identifier

        Returns:
            Contact or None
        """
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, platform=platform, external_id=external_id)\
            .first()

    def find_duplicate_groups(self) -> List[Dict]:
        """
        Find natural keys that map to more than one contact row.

        The unique constraint normally prevents this; rows created before the
        constraint existed, or on stores without it, are merged by the
        reconciliation job.
        """
        rows = self.session.query(
            self.model_class.user_id,
            self.model_class.platform,
            self.model_class.external_id,
            func.count(self.model_class.id)
        )\
            .group_by(self.model_class.user_id, self.model_class.platform, self.model_class.external_id)\
            .having(func.count(self.model_class.id) > 1)\
            .all()
        return [
            {'user_id': user_id, 'platform': platform, 'external_id': external_id, 'count': count}
            for user_id, platform, external_id, count in rows
        ]

    def find_all_by_external_id(self, user_id: str, platform: str, external_id: str) -> List[Contact]:
        """All rows for a natural key, oldest first"""
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, platform=platform, external_id=external_id)\
            .order_by(self.model_class.id)\
            .all()
