"""
Duplicate Reconciliation Service

Merges contacts and conversations that share a natural key. The resolver's
unique constraints and insert-conflict handling make duplicates rare, but a
store without the constraints (or rows written before them) can still hold
them. Runs periodically from Celery.

Merge rules:
- contacts: the oldest row survives; conversations and messages move to it
- conversations: the oldest active row survives; messages move to it and the
  others are closed
"""

import logging
from typing import Dict, Any

from sqlalchemy.exc import SQLAlchemyError

from services.common.result import Result
from repositories.contact_repository import ContactRepository
from repositories.conversation_repository import ConversationRepository
from repositories.message_repository import MessageRepository
from services.enums import ConversationStatus
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class DuplicateReconciliationService:
    """Finds and merges duplicate contacts and conversations"""

    def __init__(self,
                 contact_repository: ContactRepository,
                 conversation_repository: ConversationRepository,
                 message_repository: MessageRepository):
        self.contact_repository = contact_repository
        self.conversation_repository = conversation_repository
        self.message_repository = message_repository

    def find_duplicates(self) -> Result[Dict[str, Any]]:
        try:
            return Result.success({
                'contacts': self.contact_repository.find_duplicate_groups(),
                'conversations': self.conversation_repository.find_duplicate_threads(),
            })
        except SQLAlchemyError as e:
            logger.error(f"Error finding duplicates: {e}")
            return Result.failure(f"Failed to find duplicates: {e}", code="REPOSITORY_ERROR")

    def reconcile_duplicates(self) -> Result[Dict[str, Any]]:
        """
        Merge every duplicate group.

        Returns:
            Result with counts of merged contacts, merged conversations and
            moved messages
        """
        stats = {
            'started_at': utc_now().isoformat(),
            'contacts_merged': 0,
            'conversations_merged': 0,
            'messages_moved': 0,
        }

        try:
            # Contacts first: merging them can surface new duplicate threads
            for group in self.contact_repository.find_duplicate_groups():
                rows = self.contact_repository.find_all_by_external_id(
                    group['user_id'], group['platform'], group['external_id']
                )
                survivor, duplicates = rows[0], rows[1:]
                for duplicate in duplicates:
                    self.conversation_repository.reassign_contact(duplicate.id, survivor.id)
                    stats['messages_moved'] += self.message_repository.reassign_contact(duplicate.id, survivor.id)
                    self.contact_repository.delete(duplicate)
                    stats['contacts_merged'] += 1
                self.contact_repository.commit()

            for group in self.conversation_repository.find_duplicate_threads():
                rows = self.conversation_repository.find_active_threads(
                    group['contact_id'], group['platform'], group['thread_key']
                )
                survivor, duplicates = rows[0], rows[1:]
                for duplicate in duplicates:
                    stats['messages_moved'] += self.message_repository.reassign_conversation(
                        duplicate.id, survivor.id, contact_id=survivor.contact_id
                    )
                    if duplicate.last_message_at and (
                            not survivor.last_message_at or duplicate.last_message_at > survivor.last_message_at):
                        self.conversation_repository.update_last_message(
                            survivor, duplicate.last_message_text, duplicate.last_message_at
                        )
                    self.conversation_repository.update(duplicate, status=ConversationStatus.CLOSED.value)
                    stats['conversations_merged'] += 1
                self.conversation_repository.commit()

        except SQLAlchemyError as e:
            self.contact_repository.rollback()
            logger.error(f"Duplicate reconciliation failed: {e}", exc_info=True)
            return Result.failure(f"Duplicate reconciliation failed: {e}", code="REPOSITORY_ERROR",
                                  metadata=stats)

        logger.info(
            f"Reconciled duplicates: {stats['contacts_merged']} contacts, "
            f"{stats['conversations_merged']} conversations, {stats['messages_moved']} messages moved"
        )
        return Result.success(stats)
