"""
Service layer enums
These enums mirror the string values stored in the database
but allow services to work without importing database models
"""

from enum import Enum


class Platform(str, Enum):
    """Messaging channels with a ChannelProvider"""
    GMAIL = 'gmail'
    SLACK = 'slack'
    TWILIO_SMS = 'twilio_sms'
    TELEGRAM = 'telegram'
    WHATSAPP = 'whatsapp'


class ProviderType(str, Enum):
    OAUTH = 'oauth'
    API_KEY = 'api_key'


class MessageDirection(str, Enum):
    INBOUND = 'inbound'
    OUTBOUND = 'outbound'


class MessageStatus(str, Enum):
    """Delivery status; outbound messages climb the ladder, inbound are RECEIVED"""
    QUEUED = 'queued'
    SENT = 'sent'
    DELIVERED = 'delivered'
    FAILED = 'failed'
    RECEIVED = 'received'


class ConversationStatus(str, Enum):
    ACTIVE = 'active'
    CLOSED = 'closed'


class Priority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class DataQuality(str, Enum):
    """Connection health of one analytics source in an AudienceContext"""
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


class AnalyticsProvider(str, Enum):
    """Analytics platforms the audience aggregator can query"""
    GOOGLE_ADS = 'google_ads'
    META_INSIGHTS = 'meta_insights'
    YOUTUBE_ANALYTICS = 'youtube_analytics'
    LINKEDIN_ADS = 'linkedin_ads'
    HUBSPOT_CRM = 'hubspot_crm'
    BRANCH = 'branch'
    MIXPANEL = 'mixpanel'
    SEGMENT = 'segment'


MESSAGING_PLATFORMS = {p.value for p in Platform}
ANALYTICS_PROVIDERS = {p.value for p in AnalyticsProvider}
