"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository
from .credential_repository import CredentialRepository
from .contact_repository import ContactRepository
from .conversation_repository import ConversationRepository
from .message_repository import MessageRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    'BaseRepository',
    'CredentialRepository',
    'ContactRepository',
    'ConversationRepository',
    'MessageRepository',
    'WebhookEventRepository',
]
