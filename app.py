# app.py

from flask import Flask, g, request, jsonify
from flask_migrate import Migrate
from config import get_config
from extensions import db
import os
import uuid
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="unified-inbox", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(transaction_style='endpoint'),
                SqlalchemyIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=0.1,
            # Webhook bodies and tokens must never leave the process
            send_default_pii=False,
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown')
        )
        logger.info("Sentry error tracking initialized")

init_sentry()


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    if test_config:
        app.config.update(test_config)

    # Initialize app with config
    config_class.init_app(app)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    Migrate(app, db)

    app.services = _build_registry(app)

    @app.before_request
    def before_request():
        g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        logger.info("Request started",
                    request_id=g.request_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Not found",
                       request_id=getattr(g, 'request_id', None),
                       path=request.path)
        return jsonify({'error': 'Not found'}), 404

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        from sqlalchemy.exc import SQLAlchemyError
        health_status = {
            'status': 'healthy',
            'service': 'unified-inbox'
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except SQLAlchemyError as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error(f"Health check database error: {e}")

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    from routes.webhook_routes import webhook_bp
    from routes.messaging_routes import messaging_bp
    from routes.integration_routes import integration_bp
    from routes.audience_routes import audience_bp

    app.register_blueprint(webhook_bp, url_prefix='/webhooks')
    app.register_blueprint(messaging_bp, url_prefix='/api/messaging')
    app.register_blueprint(integration_bp, url_prefix='/api/integrations')
    app.register_blueprint(audience_bp, url_prefix='/api/audience')

    return app


def _build_registry(app):
    """Register every service factory; nothing is built until first use"""
    from services.service_registry import create_service_registry, ServiceLifecycle
    registry = create_service_registry()
    config = app.config

    registry.register_factory(
        'db_session',
        lambda: db.session,
        lifecycle=ServiceLifecycle.SCOPED
    )

    # Repositories
    registry.register_factory(
        'credential_repository',
        lambda db_session: _create_repository('credential_repository', 'CredentialRepository', db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'contact_repository',
        lambda db_session: _create_repository('contact_repository', 'ContactRepository', db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'conversation_repository',
        lambda db_session: _create_repository('conversation_repository', 'ConversationRepository', db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'message_repository',
        lambda db_session: _create_repository('message_repository', 'MessageRepository', db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'webhook_event_repository',
        lambda db_session: _create_repository('webhook_event_repository', 'WebhookEventRepository', db_session),
        dependencies=['db_session']
    )

    # Core services
    registry.register_factory(
        'credential_vault',
        lambda credential_repository: _create_credential_vault(
            credential_repository, config.get('CREDENTIAL_ENCRYPTION_KEY')
        ),
        dependencies=['credential_repository']
    )
    registry.register_factory(
        'oauth_token_client',
        lambda: _create_oauth_token_client(config.get('OAUTH_TOKEN_ENDPOINTS'), config.get('PROVIDER_HTTP_TIMEOUT')),
    )
    registry.register_factory(
        'resolver',
        lambda contact_repository, conversation_repository: _create_resolver(
            contact_repository, conversation_repository
        ),
        dependencies=['contact_repository', 'conversation_repository']
    )
    registry.register_factory(
        'message_store',
        lambda message_repository: _create_message_store(message_repository),
        dependencies=['message_repository']
    )
    registry.register_factory(
        'message_classifier',
        lambda conversation_repository: _create_message_classifier(conversation_repository),
        dependencies=['conversation_repository']
    )
    registry.register_factory(
        'provider_registry',
        lambda resolver, message_store, message_classifier: _create_provider_registry(
            resolver, message_store, message_classifier, config
        ),
        dependencies=['resolver', 'message_store', 'message_classifier']
    )
    registry.register_factory(
        'messaging_integration',
        lambda credential_vault, provider_registry: _create_messaging_integration_service(
            credential_vault, provider_registry
        ),
        dependencies=['credential_vault', 'provider_registry']
    )
    registry.register_factory(
        'webhook_processing',
        lambda messaging_integration, provider_registry, webhook_event_repository: _create_webhook_processing_service(
            messaging_integration, provider_registry, webhook_event_repository
        ),
        dependencies=['messaging_integration', 'provider_registry', 'webhook_event_repository']
    )
    registry.register_factory(
        'reconciliation',
        lambda contact_repository, conversation_repository, message_repository: _create_reconciliation_service(
            contact_repository, conversation_repository, message_repository
        ),
        dependencies=['contact_repository', 'conversation_repository', 'message_repository']
    )
    registry.register_factory(
        'audience_aggregator',
        lambda credential_vault, oauth_token_client: _create_audience_aggregator(
            credential_vault, oauth_token_client, config
        ),
        dependencies=['credential_vault', 'oauth_token_client']
    )

    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error(f"Service dependency error: {error}")
        raise RuntimeError(f"Service dependency errors: {errors}")

    if app.debug:
        logger.debug(f"Service initialization order: {registry.get_initialization_order()}")

    # Fail fast on a bad vault key in production
    if config.get('FLASK_ENV') == 'production':
        with app.app_context():
            registry.warmup(['credential_vault'])

    return registry


# Service Factory Functions
# These are only called when the service is first requested

def _create_repository(module_name, class_name, db_session):
    import importlib
    module = importlib.import_module(f'repositories.{module_name}')
    return getattr(module, class_name)(db_session)


def _create_credential_vault(credential_repository, encryption_key):
    from services.credential_vault import CredentialVault
    return CredentialVault(credential_repository, encryption_key)


def _create_oauth_token_client(endpoints, timeout):
    from services.oauth_token_client import OAuthTokenClient
    return OAuthTokenClient(endpoints, timeout=timeout)


def _create_resolver(contact_repository, conversation_repository):
    from services.contact_conversation_resolver import ContactConversationResolver
    return ContactConversationResolver(contact_repository, conversation_repository)


def _create_message_store(message_repository):
    from services.message_store import MessageStore
    return MessageStore(message_repository)


def _create_message_classifier(conversation_repository):
    from services.message_classifier import MessageClassifier
    return MessageClassifier(conversation_repository)


def _create_provider_registry(resolver, message_store, classifier, config):
    from services.providers.registry import ProviderRegistry
    from services.providers.gmail_provider import GmailProvider
    from services.providers.slack_provider import SlackProvider
    from services.providers.twilio_sms_provider import TwilioSmsProvider
    from services.providers.telegram_provider import TelegramProvider
    from services.providers.whatsapp_provider import WhatsAppProvider

    common = {
        'resolver': resolver,
        'message_store': message_store,
        'classifier': classifier,
        'http_timeout': config.get('PROVIDER_HTTP_TIMEOUT'),
    }
    return ProviderRegistry([
        GmailProvider(
            smtp_host=config.get('GMAIL_SMTP_HOST'),
            smtp_port=config.get('GMAIL_SMTP_PORT'),
            forwarding_domain=config.get('GMAIL_FORWARDING_DOMAIN'),
            **common
        ),
        SlackProvider(signature_tolerance=config.get('SLACK_SIGNATURE_TOLERANCE'), **common),
        TwilioSmsProvider(**common),
        TelegramProvider(**common),
        WhatsAppProvider(**common),
    ])


def _create_messaging_integration_service(credential_vault, provider_registry):
    from services.messaging_integration_service import MessagingIntegrationService
    return MessagingIntegrationService(credential_vault, provider_registry)


def _create_webhook_processing_service(messaging_integration, provider_registry, webhook_event_repository):
    from services.webhook_processing_service import WebhookProcessingService
    return WebhookProcessingService(messaging_integration, provider_registry, webhook_event_repository)


def _create_reconciliation_service(contact_repository, conversation_repository, message_repository):
    from services.reconciliation_service import DuplicateReconciliationService
    return DuplicateReconciliationService(contact_repository, conversation_repository, message_repository)


def _create_audience_aggregator(credential_vault, oauth_token_client, config):
    from services.audience.audience_context_aggregator import AudienceContextAggregator
    from services.audience.platform_clients import build_platform_clients
    return AudienceContextAggregator(
        credential_vault,
        build_platform_clients(timeout=config.get('PROVIDER_HTTP_TIMEOUT')),
        token_client=oauth_token_client,
        fetch_timeout=config.get('AUDIENCE_FETCH_TIMEOUT'),
        max_workers=config.get('AUDIENCE_MAX_WORKERS'),
        cache_ttl=config.get('AUDIENCE_CONTEXT_CACHE_TTL'),
    )


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
