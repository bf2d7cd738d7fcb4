import os
import json
import secrets
from dotenv import load_dotenv
from typing import Optional, Dict, Any

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))

class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.environ.get(key) or default)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number")


def _oauth_endpoints() -> Dict[str, Dict[str, Any]]:
    """
    OAuth client settings per analytics provider.

    OAUTH_TOKEN_ENDPOINTS (JSON) overrides or extends the defaults; client
    ids and secrets come from <PROVIDER>_CLIENT_ID / <PROVIDER>_CLIENT_SECRET.
    """
    endpoints = {
        'google_ads': {
            'authorize_url': 'https://accounts.google.com/o/oauth2/v2/auth',
            'token_url': 'https://oauth2.googleapis.com/token',
            'scope': 'https://www.googleapis.com/auth/adwords',
            'extra_params': {'access_type': 'offline', 'prompt': 'consent'},
        },
        'youtube_analytics': {
            'authorize_url': 'https://accounts.google.com/o/oauth2/v2/auth',
            'token_url': 'https://oauth2.googleapis.com/token',
            'scope': 'https://www.googleapis.com/auth/yt-analytics.readonly',
            'extra_params': {'access_type': 'offline', 'prompt': 'consent'},
        },
        'meta_insights': {
            'authorize_url': 'https://www.facebook.com/v18.0/dialog/oauth',
            'token_url': 'https://graph.facebook.com/v18.0/oauth/access_token',
            'scope': 'ads_read,read_insights',
        },
        'linkedin_ads': {
            'authorize_url': 'https://www.linkedin.com/oauth/v2/authorization',
            'token_url': 'https://www.linkedin.com/oauth/v2/accessToken',
            'scope': 'r_ads r_ads_reporting',
        },
        'hubspot_crm': {
            'authorize_url': 'https://app.hubspot.com/oauth/authorize',
            'token_url': 'https://api.hubapi.com/oauth/v1/token',
            'scope': 'crm.objects.contacts.read',
        },
    }
    for provider, endpoint in endpoints.items():
        prefix = provider.upper()
        endpoint['client_id'] = os.environ.get(f'{prefix}_CLIENT_ID')
        endpoint['client_secret'] = os.environ.get(f'{prefix}_CLIENT_SECRET')
        endpoint['auth_style'] = 'body'

    overrides = os.environ.get('OAUTH_TOKEN_ENDPOINTS')
    if overrides:
        try:
            for provider, endpoint in json.loads(overrides).items():
                endpoints.setdefault(provider, {}).update(endpoint)
        except (ValueError, AttributeError) as e:
            raise ConfigurationError(f"OAUTH_TOKEN_ENDPOINTS is not valid JSON: {e}")
    return endpoints


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    # Flask settings - generate a random key if not provided
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        # Skip validation in testing environment or during migrations
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        required_vars = ['CREDENTIAL_ENCRYPTION_KEY']
        if not (os.environ.get('DATABASE_URL') or os.environ.get('POSTGRES_URI')):
            required_vars.append('POSTGRES_URI')

        missing_vars = []
        for var in required_vars:
            if not os.environ.get(var):
                missing_vars.append(var)

        if missing_vars:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('POSTGRES_URI') or \
        'sqlite:///' + os.path.join(basedir, 'inbox.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Credential vault - Fernet key, read once when the vault is built
    CREDENTIAL_ENCRYPTION_KEY = os.environ.get('CREDENTIAL_ENCRYPTION_KEY')

    # Outbound HTTP (connect, read) timeouts in seconds
    PROVIDER_HTTP_TIMEOUT = (
        _env_float('PROVIDER_CONNECT_TIMEOUT', 5),
        _env_float('PROVIDER_READ_TIMEOUT', 30),
    )

    # Audience aggregation
    AUDIENCE_FETCH_TIMEOUT = _env_float('AUDIENCE_FETCH_TIMEOUT', 15)
    AUDIENCE_MAX_WORKERS = int(os.environ.get('AUDIENCE_MAX_WORKERS', '8'))
    AUDIENCE_CONTEXT_CACHE_TTL = int(os.environ.get('AUDIENCE_CONTEXT_CACHE_TTL', '300'))

    # Channel providers
    SLACK_SIGNATURE_TOLERANCE = int(os.environ.get('SLACK_SIGNATURE_TOLERANCE', '300'))
    GMAIL_SMTP_HOST = os.environ.get('GMAIL_SMTP_HOST', 'smtp.gmail.com')
    GMAIL_SMTP_PORT = int(os.environ.get('GMAIL_SMTP_PORT') or 587)  # Handle empty string
    GMAIL_FORWARDING_DOMAIN = os.environ.get('GMAIL_FORWARDING_DOMAIN', 'inbox.example.com')

    # Analytics OAuth clients
    OAUTH_TOKEN_ENDPOINTS = _oauth_endpoints()

    # Celery - Flask loads these and Celery maps them to its lowercase settings.
    # 'redis' is the service name in docker-compose.
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    # Application settings
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max webhook body
    JSON_SORT_KEYS = False

    # Session configuration - Redis-backed so OAuth state survives across workers
    SESSION_TYPE = 'redis'
    SESSION_PERMANENT = False
    SESSION_KEY_PREFIX = 'inbox:'
    SESSION_COOKIE_NAME = 'inbox_session'
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        import logging
        import redis
        from flask_session import Session

        logger = logging.getLogger(__name__)

        redis_url = (
            os.environ.get('REDIS_URL') or
            app.config.get('CELERY_BROKER_URL') or
            'redis://localhost:6379/0'
        )

        # Log the Redis host only, never the password
        logger.info(f"Using Redis URL: {redis_url.split('@')[1] if '@' in redis_url else redis_url}")

        try:
            if redis_url.startswith('rediss://'):
                # SSL connection for managed Redis/Valkey
                app.config['SESSION_REDIS'] = redis.from_url(
                    redis_url,
                    ssl_cert_reqs=None,
                    decode_responses=False
                )
            else:
                app.config['SESSION_REDIS'] = redis.from_url(redis_url, decode_responses=False)

            app.config['SESSION_REDIS'].ping()
            logger.info("Redis connection successful for Flask-Session")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis for sessions: {e}")
            app.config['SESSION_TYPE'] = 'filesystem'
            logger.warning("Falling back to filesystem sessions")

        Session(app)


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI

    # Allow non-secure cookies in development
    SESSION_COOKIE_SECURE = False

    @classmethod
    def init_app(cls, app):
        """Development-specific initialization"""
        Config.init_app(app)

        import logging
        from logging import StreamHandler
        stream_handler = StreamHandler()
        stream_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(stream_handler)


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Ephemeral vault key per test run
    CREDENTIAL_ENCRYPTION_KEY = None

    # No cache so every test sees a fresh build
    AUDIENCE_CONTEXT_CACHE_TTL = 0
    AUDIENCE_FETCH_TIMEOUT = 5

    SESSION_COOKIE_SECURE = False

    # Use test Redis database
    CELERY_BROKER_URL = 'redis://localhost:6379/1'
    CELERY_RESULT_BACKEND = 'redis://localhost:6379/1'

    @classmethod
    def init_app(cls, app):
        """Testing-specific initialization"""
        # Do NOT call Config.init_app for testing - it tries to connect to Redis
        import logging
        import tempfile
        from cryptography.fernet import Fernet
        from flask_session import Session
        from cachelib import FileSystemCache

        logger = logging.getLogger(__name__)

        if not app.config.get('CREDENTIAL_ENCRYPTION_KEY'):
            app.config['CREDENTIAL_ENCRYPTION_KEY'] = Fernet.generate_key().decode()

        # Use cachelib sessions for testing to avoid the Redis dependency
        app.config['SESSION_TYPE'] = 'cachelib'
        app.config['SESSION_PERMANENT'] = False
        app.config['SESSION_KEY_PREFIX'] = 'test_session:'

        temp_dir = os.path.join(tempfile.gettempdir(), 'inbox_test_sessions')
        os.makedirs(temp_dir, exist_ok=True)
        app.config['SESSION_CACHELIB'] = FileSystemCache(temp_dir, threshold=500, default_timeout=300)

        Session(app)
        logger.info("Testing mode: Using cachelib filesystem sessions")


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    SESSION_COOKIE_SECURE = True

    # Production Redis
    REDIS_URL = os.environ.get('REDIS_URL', '')
    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    # If using rediss:// (SSL), append required parameters
    if CELERY_BROKER_URL.startswith('rediss://'):
        if 'ssl_cert_reqs' not in CELERY_BROKER_URL:
            # Use CERT_NONE for managed Redis/Valkey services
            separator = '&' if '?' in CELERY_BROKER_URL else '?'
            ssl_params = f"{separator}ssl_cert_reqs=CERT_NONE"
            CELERY_BROKER_URL += ssl_params
            CELERY_RESULT_BACKEND += ssl_params

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        cls.validate_required_config()

        if not app.config.get('SQLALCHEMY_DATABASE_URI'):
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.get_required_env('POSTGRES_URI')

        Config.init_app(app)

        # Log to syslog in production
        import logging
        from logging.handlers import SysLogHandler
        syslog_handler = SysLogHandler()
        syslog_handler.setLevel(logging.WARNING)
        app.logger.addHandler(syslog_handler)


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
