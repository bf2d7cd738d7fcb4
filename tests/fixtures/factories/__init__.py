"""
Test data factories built on factory_boy and Faker.

Usage:
    from tests.fixtures.factories import ContactFactory, MessageFactory

    contact = ContactFactory.create()
    sms_contact = ContactFactory.create(sms=True)
    message = MessageFactory.create(conversation__contact=contact)
"""

from .base import BaseFactory, PhoneProvider
from .contact_factory import ContactFactory, ConversationFactory
from .message_factory import MessageFactory
from .credential_factory import CredentialFactory, WebhookEventFactory

__all__ = [
    'BaseFactory',
    'PhoneProvider',
    'ContactFactory',
    'ConversationFactory',
    'MessageFactory',
    'CredentialFactory',
    'WebhookEventFactory',
]
