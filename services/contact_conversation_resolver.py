"""
ContactConversationResolver - maps (channel, external id, thread) onto
canonical Contact and Conversation rows.

Resolution is idempotent: the natural keys are (user, platform, external_id)
for contacts and (contact, platform, thread_key) for active conversations. An
insert that loses a race against a concurrent webhook hits the unique
constraint, and the resolver re-reads the winner instead of failing.
"""

import re
from datetime import datetime
from email.utils import parseaddr
from typing import Dict, Any, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from logging_config import get_logger
from repositories.contact_repository import ContactRepository
from repositories.conversation_repository import ConversationRepository
from inbox_database import Contact, Conversation
from services.common.result import Result
from services.enums import Platform, ConversationStatus
from utils.datetime_utils import utc_now

logger = get_logger(__name__)

_NON_DIGITS = re.compile(r'\D')

# Fields a caller may seed a new contact with
_HINT_FIELDS = ('display_name', 'email', 'phone')


def normalize_phone(raw: str) -> str:
    """
    Reduce a phone number to its digits, dropping the North American
    country code so '+1 (555) 123-4567' and '5551234567' match.
    """
    digits = _NON_DIGITS.sub('', raw or '')
    if len(digits) == 11 and digits.startswith('1'):
        digits = digits[1:]
    return digits


def normalize_external_id(platform: str, raw) -> str:
    """Normalize a channel-specific identifier before lookup or insert"""
    value = str(raw or '').strip()
    if platform == Platform.TWILIO_SMS.value:
        return normalize_phone(value)
    if platform == Platform.WHATSAPP.value:
        # wa_id: full international number, digits only
        return _NON_DIGITS.sub('', value)
    if platform == Platform.GMAIL.value:
        _, address = parseaddr(value)
        return (address or value).lower()
    return value


class ContactConversationResolver:
    """Resolves or creates the canonical Contact and Conversation for a message"""

    def __init__(self, contact_repository: ContactRepository,
                 conversation_repository: ConversationRepository):
        self.contact_repository = contact_repository
        self.conversation_repository = conversation_repository

    def resolve_contact(self, user_id: str, platform: str, external_id,
                        hints: Optional[Dict[str, Any]] = None) -> Result[Contact]:
        """
        Find or create the contact for (user, platform, external_id).

        Args:
            user_id: Tenant id
            platform: Channel name
            external_id: Raw phone / email / platform user id (normalized here)
            hints: Initial display data for a new contact
                   (display_name, email, phone, metadata)

        Returns:
            Result with the Contact; ``metadata['created']`` tells whether it is new
        """
        hints = hints or {}
        normalized = normalize_external_id(platform, external_id)
        if not normalized:
            return Result.failure("Contact identifier is empty", code="INVALID_DATA")

        try:
            contact = self.contact_repository.find_by_external_id(user_id, platform, normalized)
            if contact:
                self._touch_contact(contact, hints)
                return Result.success(contact, metadata={'created': False})

            try:
                contact = self.contact_repository.create(
                    user_id=user_id,
                    platform=platform,
                    external_id=normalized,
                    last_seen=utc_now(),
                    contact_metadata=hints.get('metadata') or {},
                    **{field: hints[field] for field in _HINT_FIELDS if hints.get(field)}
                )
                self.contact_repository.commit()
                logger.info("Created contact", contact_id=contact.id, platform=platform)
                return Result.success(contact, metadata={'created': True})
            except IntegrityError:
                # A concurrent webhook created the same contact first
                self.contact_repository.rollback()
                contact = self.contact_repository.find_by_external_id(user_id, platform, normalized)
                if contact is None:
                    raise
                logger.info("Contact insert conflict resolved to existing row", contact_id=contact.id)
                self._touch_contact(contact, hints)
                return Result.success(contact, metadata={'created': False})

        except SQLAlchemyError as e:
            logger.error("Error resolving contact", platform=platform, error=str(e))
            return Result.failure(f"Failed to resolve contact: {e}", code="REPOSITORY_ERROR")

    def _touch_contact(self, contact: Contact, hints: Dict[str, Any]) -> None:
        updates = {'last_seen': utc_now()}
        for field in _HINT_FIELDS:
            if hints.get(field) and not getattr(contact, field):
                updates[field] = hints[field]
        self.contact_repository.update(contact, **updates)
        self.contact_repository.commit()

    def resolve_conversation(self, contact: Union[Contact, int], platform: str,
                             thread_key: str) -> Result[Conversation]:
        """
        Return the active conversation for (contact, platform, thread_key),
        creating it when absent.
        """
        if isinstance(contact, int):
            contact = self.contact_repository.get_by_id(contact)
            if contact is None:
                return Result.failure("Contact not found", code="CONTACT_NOT_FOUND")
        if not thread_key:
            return Result.failure("Thread key is empty", code="INVALID_DATA")

        try:
            conversation = self.conversation_repository.find_active_thread(contact.id, platform, thread_key)
            if conversation:
                return Result.success(conversation, metadata={'created': False})

            conversation = self.conversation_repository.create(
                contact_id=contact.id,
                user_id=contact.user_id,
                platform=platform,
                thread_key=thread_key,
                status=ConversationStatus.ACTIVE.value,
            )
            self.conversation_repository.commit()
            logger.info("Created conversation", conversation_id=conversation.id, platform=platform)
            return Result.success(conversation, metadata={'created': True})

        except SQLAlchemyError as e:
            logger.error("Error resolving conversation", contact_id=contact.id, error=str(e))
            return Result.failure(f"Failed to resolve conversation: {e}", code="REPOSITORY_ERROR")

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        return self.conversation_repository.get_by_id(conversation_id)

    def find_thread(self, user_id: str, platform: str, thread_key: str) -> Optional[Conversation]:
        if not thread_key:
            return None
        return self.conversation_repository.find_latest_by_thread_key(user_id, platform, thread_key)

    def touch_conversation(self, conversation: Conversation, text: Optional[str],
                           at: Optional[datetime] = None) -> None:
        """Bump last_message_at / last_message_text for every routed message"""
        self.conversation_repository.update_last_message(conversation, text, at or utc_now())
        self.conversation_repository.commit()
