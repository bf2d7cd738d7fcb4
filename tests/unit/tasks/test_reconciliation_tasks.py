"""
Tests for the store hygiene tasks and their beat schedule
"""

from unittest.mock import Mock

import pytest
from celery.schedules import crontab
from sqlalchemy.exc import OperationalError

from services.common.result import Result
from tasks.reconciliation_tasks import reconcile_duplicates, cleanup_webhook_events


class TestReconcileDuplicates:

    def test_success_returns_merge_counts(self, app, mocker):
        service = Mock()
        service.reconcile_duplicates.return_value = Result.success({'contacts_merged': 2, 'conversations_merged': 1})
        mocker.patch.object(app.services, 'get', return_value=service)

        summary = reconcile_duplicates.run()

        assert summary['success'] is True
        assert summary['contacts_merged'] == 2
        assert summary['conversations_merged'] == 1
        assert 'executed_at' in summary

    def test_failure_is_retried(self, app, mocker):
        service = Mock()
        service.reconcile_duplicates.return_value = Result.failure('database locked', code='REPOSITORY_ERROR')
        mocker.patch.object(app.services, 'get', return_value=service)

        # Called directly, Celery's retry re-raises the exception it was given
        with pytest.raises(RuntimeError, match='database locked'):
            reconcile_duplicates.run()


class TestCleanupWebhookEvents:

    def test_deletes_and_commits(self, app, mocker):
        repository = Mock()
        repository.delete_processed_before.return_value = 7
        mocker.patch.object(app.services, 'get', return_value=repository)

        summary = cleanup_webhook_events.run(days_old=30)

        assert summary['success'] is True
        assert summary['deleted'] == 7
        repository.commit.assert_called_once()

    def test_database_error_rolls_back_and_retries(self, app, mocker):
        repository = Mock()
        repository.delete_processed_before.side_effect = OperationalError('DELETE', {}, Exception('locked'))
        mocker.patch.object(app.services, 'get', return_value=repository)

        with pytest.raises(OperationalError):
            cleanup_webhook_events.run()

        repository.rollback.assert_called_once()
        repository.commit.assert_not_called()


class TestBeatSchedule:

    def test_periodic_tasks_are_scheduled(self):
        from celery_worker import celery

        schedule = celery.conf.beat_schedule

        assert schedule['refresh-expiring-credentials']['task'] == 'tasks.credential_tasks.refresh_expiring_credentials'
        assert schedule['refresh-expiring-credentials']['schedule'] == 600.0
        assert schedule['reconcile-duplicates']['schedule'] == crontab(hour=2, minute=0)
        assert schedule['cleanup-webhook-events']['kwargs'] == {'days_old': 30}
        assert celery.conf.timezone == 'UTC'

    def test_scheduled_tasks_are_registered(self):
        from celery_worker import celery

        for entry in celery.conf.beat_schedule.values():
            assert entry['task'] in celery.tasks
