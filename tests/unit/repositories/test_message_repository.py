"""
Tests for MessageRepository
"""

from datetime import datetime, timezone

import pytest

from repositories.message_repository import MessageRepository
from tests.fixtures.factories import ConversationFactory, MessageFactory


class TestMessageRepository:

    @pytest.fixture
    def repository(self, db_session):
        return MessageRepository(db_session)

    def test_find_by_platform_message_id_is_tenant_and_platform_scoped(self, repository):
        message = MessageFactory.create(platform='twilio_sms', platform_message_id='SM1')

        assert repository.find_by_platform_message_id('user-1', 'twilio_sms', 'SM1').id == message.id
        assert repository.find_by_platform_message_id('user-1', 'slack', 'SM1') is None
        assert repository.find_by_platform_message_id('user-2', 'twilio_sms', 'SM1') is None

    def test_find_by_conversation_in_arrival_order(self, repository):
        conversation = ConversationFactory.create()
        later = MessageFactory.create(conversation=conversation, timestamp=datetime(2025, 1, 2, tzinfo=timezone.utc))
        earlier = MessageFactory.create(conversation=conversation, timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc))

        assert [m.id for m in repository.find_by_conversation(conversation.id)] == [earlier.id, later.id]
        assert len(repository.find_by_conversation(conversation.id, limit=1)) == 1

    def test_reassign_conversation_moves_contact_too(self, repository, db_session):
        source = ConversationFactory.create()
        target = ConversationFactory.create()
        message = MessageFactory.create(conversation=source)

        moved = repository.reassign_conversation(source.id, target.id, contact_id=target.contact_id)
        db_session.expire_all()

        assert moved == 1
        assert message.conversation_id == target.id
        assert message.contact_id == target.contact_id
