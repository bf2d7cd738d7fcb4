"""
Keyword classification of inbound messages.

Urgent messages raise their conversation to high priority; everything else
leaves the conversation untouched.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from logging_config import get_logger
from repositories.conversation_repository import ConversationRepository
from inbox_database import Conversation
from services.enums import Priority

logger = get_logger(__name__)

URGENT_KEYWORDS = ('urgent', 'emergency', 'asap', 'help', 'problem', 'issue', 'error')

_URGENT_PATTERN = re.compile(r'\b(' + '|'.join(URGENT_KEYWORDS) + r')\b', re.IGNORECASE)


@dataclass
class Classification:
    priority: str = Priority.MEDIUM.value
    matched_keywords: List[str] = field(default_factory=list)

    @property
    def is_urgent(self) -> bool:
        return self.priority == Priority.HIGH.value


class MessageClassifier:
    """Classifies message text and routes the conversation accordingly"""

    def __init__(self, conversation_repository: ConversationRepository):
        self.conversation_repository = conversation_repository

    @staticmethod
    def classify(text: Optional[str]) -> Classification:
        matches = sorted({m.lower() for m in _URGENT_PATTERN.findall(text or '')})
        if matches:
            return Classification(priority=Priority.HIGH.value, matched_keywords=matches)
        return Classification()

    def classify_and_route(self, conversation: Conversation, text: Optional[str]) -> Classification:
        """
        Classify ``text`` and escalate the conversation when it is urgent.

        Routing failures are logged, never raised: the message is already stored.
        """
        classification = self.classify(text)
        if classification.is_urgent and conversation.priority != Priority.HIGH.value:
            try:
                self.conversation_repository.update(conversation, priority=Priority.HIGH.value)
                self.conversation_repository.commit()
                logger.info("Conversation escalated", conversation_id=conversation.id,
                            keywords=classification.matched_keywords)
            except SQLAlchemyError as e:
                logger.error("Failed to escalate conversation", conversation_id=conversation.id, error=str(e))
        return classification
