"""
ConversationRepository - Data access layer for Conversation model
"""

from datetime import datetime
from typing import List, Optional, Dict
from sqlalchemy import desc, func
from repositories.base_repository import BaseRepository
from inbox_database import Conversation


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, Conversation)

    def find_active_thread(self, contact_id: int, platform: str, thread_key: str) -> Optional[Conversation]:
        """
        Find the active conversation for (contact, platform, thread_key).

        Returns:
            Conversation or None
        """
        return self.session.query(self.model_class)\
            .filter_by(contact_id=contact_id, platform=platform, thread_key=thread_key, status='active')\
            .order_by(self.model_class.id)\
            .first()

    def find_latest_by_thread_key(self, user_id: str, platform: str, thread_key: str) -> Optional[Conversation]:
        """Most recent active conversation of any contact on a shared thread (a Slack channel)"""
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, platform=platform, thread_key=thread_key, status='active')\
            .order_by(desc(self.model_class.id))\
            .first()

    def find_by_contact_id(self, contact_id: int) -> List[Conversation]:
        """
        Find all conversations for a contact.

        Returns:
            List of Conversation objects ordered by last_message_at desc
        """
        return self.session.query(self.model_class)\
            .filter_by(contact_id=contact_id)\
            .order_by(desc(self.model_class.last_message_at))\
            .all()

    def update_last_message(self, conversation: Conversation, text: Optional[str],
                            at: datetime) -> Conversation:
        """
        Bump the preview fields; the preview is truncated to 100 characters.

        Args:
            conversation: Conversation to update
            text: Message text (None keeps an empty preview)
            at: Message timestamp
        """
        conversation.last_message_at = at
        conversation.last_message_text = (text or '')[:100]
        self.session.flush()
        return conversation

    def find_duplicate_threads(self) -> List[Dict]:
        """Natural keys with more than one active conversation"""
        rows = self.session.query(
            self.model_class.contact_id,
            self.model_class.platform,
            self.model_class.thread_key,
            func.count(self.model_class.id)
        )\
            .filter(self.model_class.status == 'active')\
            .group_by(self.model_class.contact_id, self.model_class.platform, self.model_class.thread_key)\
            .having(func.count(self.model_class.id) > 1)\
            .all()
        return [
            {'contact_id': contact_id, 'platform': platform, 'thread_key': thread_key, 'count': count}
            for contact_id, platform, thread_key, count in rows
        ]

    def find_active_threads(self, contact_id: int, platform: str, thread_key: str) -> List[Conversation]:
        """All active rows for a natural key, oldest first"""
        return self.session.query(self.model_class)\
            .filter_by(contact_id=contact_id, platform=platform, thread_key=thread_key, status='active')\
            .order_by(self.model_class.id)\
            .all()

    def reassign_contact(self, from_contact_id: int, to_contact_id: int) -> int:
        """Move conversations between contacts during duplicate reconciliation"""
        count = self.session.query(self.model_class)\
            .filter_by(contact_id=from_contact_id)\
            .update({'contact_id': to_contact_id}, synchronize_session=False)
        self.session.flush()
        return count
