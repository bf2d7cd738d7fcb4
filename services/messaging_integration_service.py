"""
MessagingIntegrationService - connects, tests and sends through messaging channels

A messaging integration is a vault credential whose provider is a messaging
platform; its decrypted payload is the channel config and its row id is the
integration id used in webhook URLs.
"""

import logging
from typing import Dict, Any, Optional

from services.common.result import Result
from services.credential_vault import CredentialVault
from services.enums import ProviderType, MESSAGING_PLATFORMS
from services.providers.base import (
    ChannelIntegration, OutboundMessage, SendResult, ConnectionTestResult
)
from services.providers.channel_config import parse_channel_config, config_to_payload, EmailConfig
from services.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


class MessagingIntegrationService:
    """Loads channel integrations from the vault and dispatches to providers"""

    def __init__(self, credential_vault: CredentialVault, provider_registry: ProviderRegistry):
        self.credential_vault = credential_vault
        self.provider_registry = provider_registry

    def load_integration(self, integration_id: int, platform: Optional[str] = None) -> Result[ChannelIntegration]:
        """
        Resolve an integration id to its typed config.

        Unknown, inactive or undecryptable integrations and platform
        mismatches are all NOT_FOUND so webhook callers learn nothing more.
        """
        found = self.credential_vault.get_by_id(integration_id)
        if found is None:
            return Result.failure("Integration not found", code="NOT_FOUND")

        credential, payload = found
        if credential.provider not in MESSAGING_PLATFORMS or (platform and credential.provider != platform):
            return Result.failure("Integration not found", code="NOT_FOUND")

        config_result = parse_channel_config(credential.provider, payload)
        if config_result.is_failure:
            logger.error(f"Stored config for integration {integration_id} is invalid: {config_result.error}")
            return config_result

        return Result.success(ChannelIntegration(
            id=credential.id,
            user_id=credential.user_id,
            platform=credential.provider,
            config=config_result.data
        ))

    def test_connection(self, platform: str, raw_config: Dict[str, Any]) -> Result[ConnectionTestResult]:
        """Validate a channel config against the provider without persisting it"""
        provider = self.provider_registry.get(platform)
        if provider is None:
            return Result.failure(f"Unsupported messaging platform: {platform}", code="UNSUPPORTED_PLATFORM")

        config_result = parse_channel_config(platform, raw_config)
        if config_result.is_failure:
            return config_result

        return Result.success(provider.test_connection(config_result.data))

    def connect(self, user_id: str, platform: str, raw_config: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """
        Test a channel config and store it in the vault when it works.

        Returns:
            Result with {'integration_id', 'platform', 'info'}
        """
        test_result = self.test_connection(platform, raw_config)
        if test_result.is_failure:
            return test_result
        connection = test_result.data
        if not connection.success:
            return Result.failure(connection.error or "Connection test failed", code="CONNECTION_FAILED")

        config = parse_channel_config(platform, raw_config).data
        payload = config_to_payload(config)
        if isinstance(config, EmailConfig) and not config.forwarding_address:
            payload['forwarding_address'] = self.provider_registry.get(platform).forwarding_address_for(user_id)

        info = connection.info or {}
        account_info = {
            'id': (info.get('team_id') or info.get('account_sid') or info.get('bot_id')
                   or info.get('phone_number_id') or info.get('email')),
            'name': (info.get('team') or info.get('friendly_name') or info.get('username')
                     or info.get('verified_name') or info.get('email')),
        }
        store_result = self.credential_vault.store(
            user_id, platform, payload, provider_type=ProviderType.API_KEY.value, account_info=account_info
        )
        if store_result.is_failure:
            return store_result

        logger.info(f"Connected {platform} integration {store_result.data.id} for user {user_id}")
        return Result.success({
            'integration_id': store_result.data.id,
            'platform': platform,
            'info': info,
            'forwarding_address': payload.get('forwarding_address'),
        })

    def send_message(self, integration_id: int, message_data: Dict[str, Any]) -> Result[SendResult]:
        """
        Send through the integration's provider.

        Returns a failure Result only when the integration cannot be used; a
        provider-side failure is a success Result carrying ``SendResult(success=False)``.
        """
        integration_result = self.load_integration(integration_id)
        if integration_result.is_failure:
            return integration_result
        integration = integration_result.data

        if not message_data.get('to') or not message_data.get('content'):
            return Result.failure("Both 'to' and 'content' are required", code="INVALID_DATA")

        provider = self.provider_registry.get(integration.platform)
        if provider is None:
            return Result.failure(f"Unsupported messaging platform: {integration.platform}",
                                  code="UNSUPPORTED_PLATFORM")

        try:
            conversation_id = int(message_data['conversation_id']) if message_data.get('conversation_id') else None
        except (TypeError, ValueError):
            return Result.failure("conversation_id must be an integer", code="INVALID_DATA")

        message = OutboundMessage(
            to=str(message_data['to']),
            content=message_data['content'],
            subject=message_data.get('subject'),
            thread_key=message_data.get('thread_key'),
            conversation_id=conversation_id,
            reply_to=message_data.get('reply_to'),
            media_url=message_data.get('media_url'),
        )
        return Result.success(provider.send_message(integration, message))
