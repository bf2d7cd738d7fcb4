"""
Celery tasks for credential upkeep
"""

from datetime import timedelta
from typing import Dict, Any

from celery import shared_task
from flask import current_app

from logging_config import get_logger

logger = get_logger(__name__)


@shared_task(bind=True, max_retries=3)
def refresh_expiring_credentials(self, within_minutes: int = 15) -> Dict[str, Any]:
    """
    Refresh every active OAuth credential expiring within ``within_minutes``.

    Uses the vault's single-flight refresh so a request refreshing the same
    credential at the same time does not double-spend the refresh token.

    Returns:
        {'checked', 'refreshed', 'failed': [{'user_id', 'provider'}]}
    """
    vault = current_app.services.get('credential_vault')
    token_client = current_app.services.get('oauth_token_client')
    window = timedelta(minutes=within_minutes)

    expiring = vault.get_expired_credentials(within=window)
    summary = {'checked': len(expiring), 'refreshed': 0, 'failed': []}

    for credential in expiring:
        refreshed = vault.ensure_fresh(credential.user_id, credential.provider, token_client, skew=window)
        if refreshed is None:
            summary['failed'].append({'user_id': credential.user_id, 'provider': credential.provider})
        else:
            summary['refreshed'] += 1

    if summary['failed']:
        logger.warning("Some credentials could not be refreshed",
                       failed=len(summary['failed']), checked=summary['checked'])
    logger.info("Credential refresh completed", checked=summary['checked'], refreshed=summary['refreshed'])
    return summary
