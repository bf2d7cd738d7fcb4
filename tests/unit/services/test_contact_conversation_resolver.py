"""
Tests for ContactConversationResolver
"""

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError

from inbox_database import Contact, Conversation
from services.contact_conversation_resolver import (
    ContactConversationResolver, normalize_phone, normalize_external_id
)
from tests.fixtures.factories import ContactFactory, ConversationFactory


class TestNormalization:

    @pytest.mark.parametrize('raw,expected', [
        ('+1 (555) 123-4567', '5551234567'),
        ('555.123.4567', '5551234567'),
        ('15551234567', '5551234567'),
        ('+44 20 7946 0958', '442079460958'),
        ('', ''),
    ])
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_gmail_ids_are_lowercased_addresses(self):
        assert normalize_external_id('gmail', 'Jane Doe <Jane.Doe@Example.com>') == 'jane.doe@example.com'

    def test_slack_ids_are_only_trimmed(self):
        assert normalize_external_id('slack', ' U123ABC ') == 'U123ABC'


class TestResolveContact:
    """Runs against the real repositories"""

    @pytest.fixture
    def resolver(self, services):
        return services.get('resolver')

    def test_creates_contact_on_first_sight(self, resolver, db_session):
        result = resolver.resolve_contact('user-1', 'slack', 'U1', {'display_name': 'Ada'})

        assert result.is_success
        assert result.metadata == {'created': True}
        assert result.data.external_id == 'U1'
        assert result.data.display_name == 'Ada'

    def test_same_identifier_resolves_to_same_contact(self, resolver, db_session):
        first = resolver.resolve_contact('user-1', 'slack', 'U1')
        second = resolver.resolve_contact('user-1', 'slack', 'U1')

        assert first.data.id == second.data.id
        assert second.metadata == {'created': False}
        assert db_session.query(Contact).count() == 1

    def test_phone_formats_resolve_to_one_contact(self, resolver, db_session):
        first = resolver.resolve_contact('user-1', 'twilio_sms', '+1 (555) 123-4567')
        second = resolver.resolve_contact('user-1', 'twilio_sms', '5551234567')

        assert first.data.id == second.data.id
        assert first.data.external_id == '5551234567'

    def test_tenants_are_isolated(self, resolver, db_session):
        first = resolver.resolve_contact('user-1', 'slack', 'U1')
        second = resolver.resolve_contact('user-2', 'slack', 'U1')

        assert first.data.id != second.data.id

    def test_existing_contact_gains_missing_hints_only(self, resolver, db_session):
        ContactFactory.create(user_id='user-1', platform='slack', external_id='U1', display_name='Original')

        result = resolver.resolve_contact('user-1', 'slack', 'U1', {'display_name': 'Other', 'email': 'a@b.co'})

        assert result.data.display_name == 'Original'
        assert result.data.email == 'a@b.co'

    def test_empty_identifier_is_invalid(self, resolver):
        result = resolver.resolve_contact('user-1', 'twilio_sms', '()-')

        assert result.is_failure
        assert result.error_code == 'INVALID_DATA'


class TestResolveContactRace:

    def test_insert_conflict_rereads_winner(self):
        winner = Mock(id=7, display_name='Ada', email=None, phone=None)
        contact_repository = Mock()
        contact_repository.find_by_external_id.side_effect = [None, winner]
        contact_repository.create.side_effect = IntegrityError('INSERT', {}, Exception('unique'))
        resolver = ContactConversationResolver(contact_repository, Mock())

        result = resolver.resolve_contact('user-1', 'slack', 'U1')

        assert result.is_success
        assert result.data is winner
        assert result.metadata == {'created': False}
        contact_repository.rollback.assert_called_once()


class TestResolveConversation:

    @pytest.fixture
    def resolver(self, services):
        return services.get('resolver')

    def test_creates_then_reuses_thread(self, resolver, db_session):
        contact = ContactFactory.create()

        first = resolver.resolve_conversation(contact, 'slack', 'C1')
        second = resolver.resolve_conversation(contact, 'slack', 'C1')

        assert first.metadata == {'created': True}
        assert second.metadata == {'created': False}
        assert first.data.id == second.data.id
        assert first.data.user_id == contact.user_id

    def test_distinct_threads_are_distinct_conversations(self, resolver, db_session):
        contact = ContactFactory.create()

        channel = resolver.resolve_conversation(contact, 'slack', 'C1')
        thread = resolver.resolve_conversation(contact, 'slack', 'C1:1000.001')

        assert channel.data.id != thread.data.id

    def test_closed_conversation_is_not_reused(self, resolver, db_session):
        closed = ConversationFactory.create(thread_key='C1', status='closed')

        result = resolver.resolve_conversation(closed.contact, 'slack', 'C1')

        assert result.data.id != closed.id
        assert db_session.query(Conversation).count() == 2

    def test_accepts_contact_id(self, resolver, db_session):
        contact = ContactFactory.create()

        result = resolver.resolve_conversation(contact.id, 'slack', 'C1')

        assert result.data.contact_id == contact.id

    def test_unknown_contact_id_fails(self, resolver, db_session):
        result = resolver.resolve_conversation(999, 'slack', 'C1')

        assert result.error_code == 'CONTACT_NOT_FOUND'

    def test_touch_conversation_truncates_preview(self, resolver, db_session):
        conversation = ConversationFactory.create()

        resolver.touch_conversation(conversation, 'x' * 150)

        assert len(conversation.last_message_text) == 100
        assert conversation.last_message_at is not None
