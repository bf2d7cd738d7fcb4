"""
Celery tasks for audience aggregation
"""

from typing import Dict, Any

from celery import shared_task
from flask import current_app

from logging_config import get_logger

logger = get_logger(__name__)


@shared_task(bind=True, max_retries=3)
def sync_audience_context(self, user_id: str) -> Dict[str, Any]:
    """
    Rebuild a user's AudienceContext outside a request.

    Successful platform fetches stamp the credentials' last_synced_at, so
    this keeps sync times current for users who are not looking at the
    dashboard.
    """
    aggregator = current_app.services.get('audience_aggregator')
    context = aggregator.build(user_id, use_cache=False)

    failed = [source.platform for source in context.data_sources if source.error]
    logger.info("Audience context synced", user_id=user_id,
                platforms=len(context.data_sources), failed=failed)
    return {
        'user_id': user_id,
        'timestamp': context.timestamp,
        'total_reach': context.audience_summary.total_reach,
        'platforms': len(context.data_sources),
        'failed_platforms': failed,
        'recommendations': len(context.recommendations),
    }
