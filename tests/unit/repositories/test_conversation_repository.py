"""
Tests for ConversationRepository
"""

from datetime import datetime, timezone

import pytest

from repositories.conversation_repository import ConversationRepository
from tests.fixtures.factories import ContactFactory, ConversationFactory


class TestConversationRepository:

    @pytest.fixture
    def repository(self, db_session):
        return ConversationRepository(db_session)

    def test_find_active_thread_skips_closed(self, repository):
        contact = ContactFactory.create()
        ConversationFactory.create(contact=contact, thread_key='C1', status='closed')
        active = ConversationFactory.create(contact=contact, thread_key='C1')

        assert repository.find_active_thread(contact.id, 'slack', 'C1').id == active.id
        assert repository.find_active_thread(contact.id, 'slack', 'C2') is None

    def test_find_by_contact_id_newest_first(self, repository):
        contact = ContactFactory.create()
        older = ConversationFactory.create(contact=contact, last_message_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        newer = ConversationFactory.create(contact=contact, last_message_at=datetime(2025, 2, 1, tzinfo=timezone.utc))

        assert [c.id for c in repository.find_by_contact_id(contact.id)] == [newer.id, older.id]

    def test_update_last_message_truncates(self, repository):
        conversation = ConversationFactory.create()
        at = datetime(2025, 3, 1, tzinfo=timezone.utc)

        repository.update_last_message(conversation, 'y' * 250, at)

        assert conversation.last_message_text == 'y' * 100
        assert conversation.last_message_at == at

    def test_duplicate_threads_are_grouped(self, repository):
        contact = ContactFactory.create()
        first = ConversationFactory.create(contact=contact, thread_key='C1')
        second = ConversationFactory.create(contact=contact, thread_key='C1')
        ConversationFactory.create(contact=contact, thread_key='C1', status='closed')
        ConversationFactory.create(contact=contact, thread_key='C2')

        groups = repository.find_duplicate_threads()

        assert groups == [{'contact_id': contact.id, 'platform': 'slack', 'thread_key': 'C1', 'count': 2}]
        assert [c.id for c in repository.find_active_threads(contact.id, 'slack', 'C1')] == [first.id, second.id]

    def test_reassign_contact(self, repository):
        source = ContactFactory.create()
        target = ContactFactory.create()
        ConversationFactory.create(contact=source)
        ConversationFactory.create(contact=source)

        assert repository.reassign_contact(source.id, target.id) == 2

    def test_find_latest_by_thread_key_spans_contacts(self, repository):
        ConversationFactory.create(thread_key='C1')
        latest = ConversationFactory.create(thread_key='C1')
        ConversationFactory.create(thread_key='C1', contact__user_id='user-2')

        assert repository.find_latest_by_thread_key('user-1', 'slack', 'C1').id == latest.id
        assert repository.find_latest_by_thread_key('user-1', 'twilio_sms', 'C1') is None
