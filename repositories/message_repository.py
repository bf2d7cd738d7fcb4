"""
MessageRepository - Data access layer for Message model
Messages are append-only; only status and metadata are ever updated
"""

from typing import List, Optional
from repositories.base_repository import BaseRepository
from inbox_database import Message


class MessageRepository(BaseRepository[Message]):
    """Repository for Message data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, Message)

    def find_by_platform_message_id(self, user_id: str, platform: str,
                                    platform_message_id: str) -> Optional[Message]:
        """
        Find one tenant's message by the provider's id.

        Args:
            user_id: Owning tenant
            platform: Channel name
            platform_message_id: Provider-assigned id (Twilio SID, slack_<ts>, ...)

        Returns:
            Message or None
        """
        return self.session.query(self.model_class)\
            .filter_by(user_id=user_id, platform=platform, platform_message_id=platform_message_id)\
            .first()

    def find_by_conversation(self, conversation_id: int, limit: Optional[int] = None) -> List[Message]:
        """Messages of a conversation in arrival order"""
        query = self.session.query(self.model_class)\
            .filter_by(conversation_id=conversation_id)\
            .order_by(self.model_class.timestamp, self.model_class.id)
        if limit:
            query = query.limit(limit)
        return query.all()

    def reassign_conversation(self, from_conversation_id: int, to_conversation_id: int,
                              contact_id: Optional[int] = None) -> int:
        """Move messages to the surviving conversation during reconciliation"""
        updates = {'conversation_id': to_conversation_id}
        if contact_id is not None:
            updates['contact_id'] = contact_id
        count = self.session.query(self.model_class)\
            .filter_by(conversation_id=from_conversation_id)\
            .update(updates, synchronize_session=False)
        self.session.flush()
        return count

    def reassign_contact(self, from_contact_id: int, to_contact_id: int) -> int:
        count = self.session.query(self.model_class)\
            .filter_by(contact_id=from_contact_id)\
            .update({'contact_id': to_contact_id}, synchronize_session=False)
        self.session.flush()
        return count
