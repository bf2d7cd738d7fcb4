"""
Tests for WebhookEventRepository
"""

from datetime import timedelta

import pytest

from inbox_database import WebhookEvent
from repositories.webhook_event_repository import WebhookEventRepository
from tests.fixtures.factories import WebhookEventFactory
from utils.datetime_utils import utc_now


class TestWebhookEventRepository:
    """Runs against the test database"""

    @pytest.fixture
    def repository(self, db_session):
        return WebhookEventRepository(db_session)

    def test_mark_as_processed_records_error(self, repository):
        event = repository.create(platform='slack', event_type='invalid', payload={'raw': 'x'}, processed=False)

        repository.mark_as_processed(event, error_message='Webhook body is not valid JSON')

        assert event.processed is True
        assert event.processed_at is not None
        assert event.error_message == 'Webhook body is not valid JSON'

    def test_delete_processed_before_keeps_recent_and_unprocessed(self, repository, db_session):
        old = utc_now() - timedelta(days=45)
        WebhookEventFactory.create(created_at=old)
        WebhookEventFactory.create(created_at=old, processed=False, processed_at=None)
        recent = WebhookEventFactory.create()

        deleted = repository.delete_processed_before(utc_now() - timedelta(days=30))
        repository.commit()

        assert deleted == 1
        remaining = db_session.query(WebhookEvent).all()
        assert len(remaining) == 2
        assert recent.id in {event.id for event in remaining}
