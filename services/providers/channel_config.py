"""
Typed channel configuration.

Each messaging platform has one config dataclass; ``ChannelConfig`` is the
union the providers accept. Raw dicts (decrypted vault payloads or API
request bodies) go through ``parse_channel_config`` once, at the boundary,
so providers never dig through loosely-typed dicts for fields.
"""

from dataclasses import dataclass, asdict, fields, MISSING
from typing import Dict, Any, Optional, Union

from services.common.result import Result
from services.enums import Platform


@dataclass(frozen=True)
class EmailConfig:
    """Gmail account sending over SMTP with an app password"""
    email: str
    app_password: str
    webhook_secret: Optional[str] = None  # Pub/Sub push verification token
    display_name: Optional[str] = None
    forwarding_address: Optional[str] = None


@dataclass(frozen=True)
class ChatConfig:
    """Slack app installed in one workspace"""
    bot_token: str
    signing_secret: str
    team_id: Optional[str] = None
    bot_user_id: Optional[str] = None


@dataclass(frozen=True)
class SmsConfig:
    """Twilio account and sending number"""
    account_sid: str
    auth_token: str
    phone_number: str
    messaging_service_sid: Optional[str] = None
    webhook_url: Optional[str] = None  # Public URL Twilio signs; defaults to the request URL


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    secret_token: Optional[str] = None  # X-Telegram-Bot-Api-Secret-Token value
    bot_username: Optional[str] = None


@dataclass(frozen=True)
class WhatsAppConfig:
    """WhatsApp Cloud API number owned by a Meta app"""
    access_token: str
    phone_number_id: str
    app_secret: str  # signs X-Hub-Signature-256
    verify_token: str  # echoed back during the hub.challenge handshake
    business_account_id: Optional[str] = None
    display_phone_number: Optional[str] = None


ChannelConfig = Union[EmailConfig, ChatConfig, SmsConfig, TelegramConfig, WhatsAppConfig]

CONFIG_TYPES = {
    Platform.GMAIL.value: EmailConfig,
    Platform.SLACK.value: ChatConfig,
    Platform.TWILIO_SMS.value: SmsConfig,
    Platform.TELEGRAM.value: TelegramConfig,
    Platform.WHATSAPP.value: WhatsAppConfig,
}

# camelCase keys accepted from the dashboard's API payloads
_ALIASES = {
    'appPassword': 'app_password',
    'webhookSecret': 'webhook_secret',
    'displayName': 'display_name',
    'forwardingAddress': 'forwarding_address',
    'botToken': 'bot_token',
    'signingSecret': 'signing_secret',
    'teamId': 'team_id',
    'botUserId': 'bot_user_id',
    'accountSid': 'account_sid',
    'authToken': 'auth_token',
    'phoneNumber': 'phone_number',
    'messagingServiceSid': 'messaging_service_sid',
    'webhookUrl': 'webhook_url',
    'secretToken': 'secret_token',
    'botUsername': 'bot_username',
    'accessToken': 'access_token',
    'phoneNumberId': 'phone_number_id',
    'appSecret': 'app_secret',
    'verifyToken': 'verify_token',
    'businessAccountId': 'business_account_id',
    'displayPhoneNumber': 'display_phone_number',
}


def required_fields(config_type) -> list:
    return [
        f.name for f in fields(config_type)
        if f.default is MISSING and f.default_factory is MISSING
    ]


def parse_channel_config(platform: str, raw: Optional[Dict[str, Any]]) -> Result[ChannelConfig]:
    """
    Build the config variant for ``platform`` from a raw dict.

    Unknown keys (vault metadata such as account_id) are ignored; missing
    or blank required fields produce a CONFIGURATION_ERROR failure.
    """
    config_type = CONFIG_TYPES.get(platform)
    if config_type is None:
        return Result.failure(f"Unsupported messaging platform: {platform}", code="UNSUPPORTED_PLATFORM")

    raw = {_ALIASES.get(key, key): value for key, value in (raw or {}).items()}
    known = {f.name for f in fields(config_type)}
    values = {key: value for key, value in raw.items() if key in known}

    missing = [name for name in required_fields(config_type) if not str(values.get(name) or '').strip()]
    if missing:
        return Result.failure(
            f"{platform} configuration incomplete: missing {', '.join(missing)}",
            code="CONFIGURATION_ERROR",
            metadata={'missing_fields': missing}
        )

    return Result.success(config_type(**values))


def config_to_payload(config: ChannelConfig) -> Dict[str, Any]:
    """Plain dict for CredentialVault.store; drops unset optional fields"""
    return {key: value for key, value in asdict(config).items() if value is not None}


def webhook_secret_for(config: ChannelConfig) -> Optional[str]:
    """The per-integration secret used to authenticate inbound webhooks"""
    if isinstance(config, EmailConfig):
        return config.webhook_secret
    if isinstance(config, ChatConfig):
        return config.signing_secret
    if isinstance(config, SmsConfig):
        return config.auth_token
    if isinstance(config, TelegramConfig):
        return config.secret_token
    if isinstance(config, WhatsAppConfig):
        return config.app_secret
    raise TypeError(f"Unknown channel config type: {type(config).__name__}")
