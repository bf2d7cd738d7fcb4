"""
WebhookEventRepository - Data access layer for WebhookEvent model
"""

from typing import Optional
from repositories.base_repository import BaseRepository
from inbox_database import WebhookEvent
from utils.datetime_utils import utc_now


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for WebhookEvent data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, WebhookEvent)

    def mark_as_processed(self, event: WebhookEvent, error_message: Optional[str] = None) -> WebhookEvent:
        """
        Mark a webhook event as processed, optionally recording why it was dropped.
        """
        event.processed = True
        event.processed_at = utc_now()
        event.error_message = error_message
        self.session.flush()
        return event

    def delete_processed_before(self, cutoff) -> int:
        """Delete processed events created before ``cutoff``; returns the count"""
        count = self.session.query(self.model_class)\
            .filter(self.model_class.processed.is_(True))\
            .filter(self.model_class.created_at < cutoff)\
            .delete(synchronize_session=False)
        self.session.flush()
        return count
