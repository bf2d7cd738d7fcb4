"""
Celery tasks for store hygiene

- reconcile_duplicates: merge contacts and conversations duplicated by races
- cleanup_webhook_events: prune the processed webhook log
"""

import logging
from datetime import timedelta
from typing import Dict, Any

from celery import shared_task
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3)
def reconcile_duplicates(self) -> Dict[str, Any]:
    """
    Merge duplicate contacts and active conversations.

    Returns:
        Dictionary with merge counts
    """
    logger.info("Starting duplicate reconciliation")
    reconciliation_service = current_app.services.get('reconciliation')

    result = reconciliation_service.reconcile_duplicates()
    if result.is_failure:
        logger.error(f"Duplicate reconciliation failed: {result.error}")
        if self.request.retries < self.max_retries:
            raise self.retry(
                exc=RuntimeError(result.error),
                countdown=60 * (self.request.retries + 1)
            )
        return {
            'task_id': self.request.id,
            'success': False,
            'error': result.error,
            'retries': self.request.retries,
        }

    summary = {
        'task_id': self.request.id,
        'executed_at': utc_now().isoformat(),
        'success': True,
        **result.data,
    }
    logger.info(f"Duplicate reconciliation completed: {summary}")
    return summary


@shared_task(bind=True, max_retries=3)
def cleanup_webhook_events(self, days_old: int = 30) -> Dict[str, Any]:
    """Delete processed webhook events older than ``days_old`` days"""
    repository = current_app.services.get('webhook_event_repository')
    cutoff = utc_now() - timedelta(days=days_old)
    try:
        deleted = repository.delete_processed_before(cutoff)
        repository.commit()
    except SQLAlchemyError as e:
        repository.rollback()
        logger.error(f"Webhook event cleanup failed: {e}")
        raise self.retry(exc=e, countdown=300)

    logger.info(f"Deleted {deleted} webhook events older than {days_old} days")
    return {'success': True, 'deleted': deleted, 'cutoff': cutoff.isoformat()}
