"""
MessageStore - durable, append-only store of normalized messages

Content is never updated after insert. The only mutation is the outbound
delivery status, which climbs a monotonic ladder:

    queued < sent < delivered        failed is terminal

so receipts that arrive late or twice can never move a message backwards.
"""

from typing import Dict, Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from logging_config import get_logger
from repositories.message_repository import MessageRepository
from inbox_database import Message
from services.common.result import Result
from services.enums import MessageStatus
from utils.datetime_utils import utc_now, format_utc_iso

logger = get_logger(__name__)

STATUS_RANK = {
    MessageStatus.QUEUED.value: 0,
    MessageStatus.SENT.value: 1,
    MessageStatus.DELIVERED.value: 2,
}

# Provider vocabularies (Twilio, Slack, SMTP, Telegram) onto the ladder
PROVIDER_STATUS_MAP = {
    'accepted': MessageStatus.QUEUED.value,
    'scheduled': MessageStatus.QUEUED.value,
    'queued': MessageStatus.QUEUED.value,
    'sending': MessageStatus.SENT.value,
    'sent': MessageStatus.SENT.value,
    'delivered': MessageStatus.DELIVERED.value,
    'read': MessageStatus.DELIVERED.value,
    'failed': MessageStatus.FAILED.value,
    'undelivered': MessageStatus.FAILED.value,
    'canceled': MessageStatus.FAILED.value,
    'receiving': MessageStatus.RECEIVED.value,
    'received': MessageStatus.RECEIVED.value,
}

_REQUIRED_FIELDS = ('conversation_id', 'user_id', 'platform', 'direction')


def normalize_status(raw_status: Optional[str]) -> Optional[str]:
    if not raw_status:
        return None
    return PROVIDER_STATUS_MAP.get(str(raw_status).strip().lower())


def can_transition(current: Optional[str], new: str) -> bool:
    """
    True when moving from ``current`` to ``new`` climbs the ladder.

    ``failed`` may replace queued or sent, nothing replaces failed or
    delivered except a higher rung, and inbound (received) rows never move.
    """
    if current == MessageStatus.FAILED.value:
        return False
    if new == MessageStatus.FAILED.value:
        return current in (MessageStatus.QUEUED.value, MessageStatus.SENT.value, None)
    if new not in STATUS_RANK:
        return False
    if current is None:
        return True
    if current not in STATUS_RANK:
        return False
    return STATUS_RANK[new] > STATUS_RANK[current]


class MessageStore:
    """Append-only message persistence with idempotent inbound ingestion"""

    def __init__(self, message_repository: MessageRepository):
        self.message_repository = message_repository

    def find(self, user_id: str, platform: str, platform_message_id: Optional[str]) -> Optional[Message]:
        """Provider ids are only unique per tenant, so lookups are always scoped by user"""
        if not platform_message_id:
            return None
        return self.message_repository.find_by_platform_message_id(user_id, platform, platform_message_id)

    def append(self, message_data: Dict[str, Any]) -> Result[Message]:
        """
        Insert a message.

        A message whose (user_id, platform, platform_message_id) already
        exists is not inserted again; the existing row is returned with
        ``metadata['duplicate'] = True``.

        Args:
            message_data: conversation_id, user_id, platform, direction,
                          content, platform_message_id, status,
                          message_metadata, timestamp, contact_id
        """
        missing = [field for field in _REQUIRED_FIELDS if not message_data.get(field)]
        if missing:
            return Result.failure(f"Missing message fields: {', '.join(missing)}", code="INVALID_DATA")

        user_id = message_data['user_id']
        platform = message_data['platform']
        platform_message_id = message_data.get('platform_message_id')

        try:
            existing = self.find(user_id, platform, platform_message_id)
            if existing:
                logger.info("Duplicate message ignored", platform=platform,
                            platform_message_id=platform_message_id, message_id=existing.id)
                return Result.success(existing, metadata={'duplicate': True})

            try:
                message = self.message_repository.create(**message_data)
                self.message_repository.commit()
            except IntegrityError:
                # Concurrent delivery of the same webhook won the insert
                self.message_repository.rollback()
                existing = self.find(user_id, platform, platform_message_id)
                if existing is None:
                    raise
                return Result.success(existing, metadata={'duplicate': True})

            logger.debug("Stored message", message_id=message.id, platform=platform,
                         direction=message.direction)
            return Result.success(message, metadata={'duplicate': False})

        except SQLAlchemyError as e:
            logger.error("Error storing message", platform=platform, error=str(e))
            return Result.failure(f"Failed to store message: {e}", code="REPOSITORY_ERROR")

    def update_status(self, user_id: str, platform: str, platform_message_id: str, new_status: str,
                      error_info: Optional[Dict[str, Any]] = None) -> Result[Optional[Message]]:
        """
        Apply a delivery receipt to one tenant's message.

        Unknown ids are a successful no-op (the receipt may beat the outbound
        insert). ``metadata['applied']`` reports whether the status changed.
        """
        status = normalize_status(new_status)
        if status is None:
            return Result.failure(f"Unknown message status: {new_status}", code="INVALID_STATUS")

        try:
            message = self.find(user_id, platform, platform_message_id)
            if message is None:
                logger.info("Status update for unknown message", platform=platform,
                            platform_message_id=platform_message_id, status=status)
                return Result.success(None, metadata={'applied': False, 'reason': 'not_found'})

            if not can_transition(message.status, status):
                logger.debug("Status update ignored", message_id=message.id,
                             current=message.status, received=status)
                return Result.success(message, metadata={'applied': False, 'reason': 'stale'})

            metadata = dict(message.message_metadata or {})
            history = list(metadata.get('status_history', []))
            history.append({'status': status, 'at': format_utc_iso(utc_now())})
            metadata['status_history'] = history
            if error_info:
                metadata['delivery_error'] = error_info

            self.message_repository.update(message, status=status, message_metadata=metadata)
            self.message_repository.commit()
            logger.info("Message status updated", message_id=message.id, status=status)
            return Result.success(message, metadata={'applied': True})

        except SQLAlchemyError as e:
            logger.error("Error updating message status", platform=platform, error=str(e))
            return Result.failure(f"Failed to update message status: {e}", code="REPOSITORY_ERROR")
