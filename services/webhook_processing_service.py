"""
Webhook Processing Service - routes inbound provider webhooks

Flow for ``POST /webhooks/<channel>/<integration_id>``:
- resolve the integration (unknown, inactive or wrong channel → NOT_FOUND)
- hand the raw request to the channel's provider, which verifies, parses,
  deduplicates and stores
- record every authenticated delivery in the webhook event log

Rejected (unauthenticated) requests leave no trace in the database; they are
reported through the security logger only.
"""

import logging
from typing import Dict, Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from repositories.webhook_event_repository import WebhookEventRepository
from services.common.errors import DataIntegrityWarning
from services.common.result import Result
from services.messaging_integration_service import MessagingIntegrationService
from services.providers.base import ChannelIntegration, WebhookRequest, WebhookOutcome
from services.providers.registry import ProviderRegistry
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

# Outcome status → event_type stored in the webhook log
_EVENT_TYPES = {
    'processed': 'message',
    'duplicate': 'message',
    'status_updated': 'status',
    'challenge': 'url_verification',
    'ignored': 'ignored',
    'invalid': 'invalid',
    'error': 'message',
}


class WebhookProcessingService:
    """Dispatches raw webhook requests to the matching ChannelProvider"""

    def __init__(self, integration_service: MessagingIntegrationService,
                 provider_registry: ProviderRegistry,
                 webhook_event_repository: WebhookEventRepository):
        """
        Initialize with injected dependencies.

        Args:
            integration_service: Resolves integration ids to typed configs
            provider_registry: Platform → ChannelProvider lookup
            webhook_event_repository: Repository for the webhook event log
        """
        self.integration_service = integration_service
        self.provider_registry = provider_registry
        self.webhook_event_repository = webhook_event_repository

    def process(self, channel: str, integration_id: int, request: WebhookRequest) -> Result[WebhookOutcome]:
        """
        Process one webhook delivery.

        Returns:
            Failure with NOT_FOUND when the integration cannot receive this
            channel's webhooks; otherwise success carrying the WebhookOutcome
            (which may itself be rejected/invalid/error).
        """
        provider = self.provider_registry.get(channel)
        if provider is None:
            return Result.failure(f"Unknown channel: {channel}", code="NOT_FOUND")

        integration_result = self.integration_service.load_integration(integration_id, platform=channel)
        if integration_result.is_failure:
            logger.warning(f"Webhook for unusable {channel} integration {integration_id}: {integration_result.error}")
            return Result.failure("Integration not found", code="NOT_FOUND")
        integration = integration_result.data

        try:
            outcome = provider.process_webhook(request, integration)
        except SQLAlchemyError as e:
            logger.error(f"Store failure while processing {channel} webhook: {e}", exc_info=True)
            self.webhook_event_repository.rollback()
            self._log_webhook_event(integration, request, WebhookOutcome(status='error', error=str(e)))
            raise

        if outcome.status != 'rejected':
            log_result = self._log_webhook_event(integration, request, outcome)
            if log_result.is_failure:
                logger.warning(f"Failed to log webhook event: {log_result.error}")

        logger.info(f"{channel} webhook for integration {integration_id}: {outcome.status}")
        return Result.success(outcome)

    def _log_webhook_event(self, integration: ChannelIntegration, request: WebhookRequest,
                           outcome: WebhookOutcome) -> Result:
        """Append the delivery to the webhook log; never raises"""
        try:
            event = self.webhook_event_repository.create(
                integration_id=integration.id,
                platform=integration.platform,
                event_type=_EVENT_TYPES.get(outcome.status, outcome.status),
                payload=self._payload_for_log(request),
                processed=False,
                created_at=utc_now(),
            )
            error_message = outcome.error if outcome.status in ('invalid', 'error') else None
            self.webhook_event_repository.mark_as_processed(event, error_message=error_message)
            self.webhook_event_repository.commit()
            return Result.success(event)
        except SQLAlchemyError as e:
            self.webhook_event_repository.rollback()
            return Result.failure(f"Failed to log webhook event: {e}", code="WEBHOOK_LOG_ERROR")

    @staticmethod
    def _payload_for_log(request: WebhookRequest) -> Optional[Dict[str, Any]]:
        if request.form:
            return dict(request.form)
        if request.method == 'GET':
            return dict(request.args)
        try:
            return request.json()
        except DataIntegrityWarning:
            return {'raw': (request.body or b'').decode('utf-8', 'replace')[:2000]}
