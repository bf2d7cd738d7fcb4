# logging_config.py

import logging
import structlog
import sys
from typing import Any, Dict, Optional
from flask import has_request_context, request, g


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add Flask request context to log entries"""
    if has_request_context():
        event_dict["request_id"] = getattr(g, 'request_id', None)
        event_dict["remote_addr"] = request.remote_addr
        event_dict["method"] = request.method
        event_dict["path"] = request.path
        event_dict["user_agent"] = request.headers.get('User-Agent', '')[:100]  # Truncate
    return event_dict


def setup_logging(app_name: str = "unified-inbox", log_level: str = "INFO") -> None:
    """
    Configure structured logging for production use

    Args:
        app_name: Application name for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_request_context,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    logging.getLogger(app_name).setLevel(getattr(logging, log_level.upper()))

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name or __name__)


class SecurityLogger:
    """Security event logger; never receives secret material"""

    def __init__(self):
        self.logger = get_logger("security")

    def log_webhook_rejected(self, platform: str, integration_id: Optional[int], reason: str,
                             ip_address: Optional[str] = None):
        """Log a webhook that failed signature or token verification"""
        self.logger.warning(
            "Webhook rejected",
            platform=platform,
            integration_id=integration_id,
            reason=reason,
            ip_address=ip_address,
            event_type="webhook_rejected"
        )

    def log_credential_event(self, action: str, user_id: str, provider: str, success: bool = True):
        """Log credential lifecycle: stored, refreshed, removed"""
        self.logger.info(
            "Credential event",
            action=action,
            user_id=user_id,
            provider=provider,
            success=success,
            event_type="credential_" + action
        )

    def log_decryption_failure(self, user_id: str, provider: str):
        self.logger.error(
            "Credential decryption failed",
            user_id=user_id,
            provider=provider,
            event_type="credential_decryption_failure"
        )


class PerformanceLogger:
    """Performance and monitoring logger"""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_api_call(self, service: str, endpoint: str, duration_ms: float, status_code: Optional[int]):
        """Log external API call performance"""
        self.logger.info(
            "External API call",
            service=service,
            endpoint=endpoint,
            duration_ms=duration_ms,
            status_code=status_code,
            event_type="api_call"
        )


# Global logger instances
security_logger = SecurityLogger()
performance_logger = PerformanceLogger()
