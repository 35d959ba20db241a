# logging_config.py

import logging
import structlog
import sys
from typing import Any, Dict, Optional
from flask import has_request_context, request, g
import json

DEFAULT_BODY_LOG_LIMIT = 500


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add Flask request context to log entries"""
    if has_request_context():
        event_dict["request_id"] = getattr(g, 'request_id', None)
        event_dict["remote_addr"] = request.remote_addr
        event_dict["method"] = request.method
        event_dict["path"] = request.path
        event_dict["user_agent"] = request.headers.get('User-Agent', '')[:100]  # Truncate
    return event_dict


def setup_logging(app_name: str = "campaign-broker", log_level: str = "INFO") -> None:
    """
    Configure structured logging

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


def truncate_for_log(value: Any, limit: Optional[int] = None) -> str:
    """
    Render a request/response body for a log line, bounded to `limit` characters.

    Dicts and lists are JSON encoded first; Korean text is kept readable.
    """
    limit = limit or DEFAULT_BODY_LOG_LIMIT
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        text = json.dumps(value, ensure_ascii=False, default=str)
    else:
        text = str(value)
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...(+{len(text) - limit} chars)"


class SecurityLogger:
    """Dedicated security event logger"""

    def __init__(self):
        self.logger = get_logger("security")

    def log_callback_authentication(self, success: bool, header_name: Optional[str],
                                    ip_address: Optional[str] = None):
        """Log the outcome of authenticating an inbound Gateway callback"""
        self.logger.info(
            "Callback authentication",
            success=success,
            header_name=header_name,
            ip_address=ip_address,
            event_type="callback_auth"
        )

    def log_callback_auth_bypass(self, ip_address: Optional[str] = None):
        """Log a callback accepted without a configured shared secret"""
        self.logger.warning(
            "Callback accepted without authentication: no shared secret configured",
            ip_address=ip_address,
            event_type="callback_auth_bypass"
        )


class PerformanceLogger:
    """Performance and monitoring logger"""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_api_call(self, service: str, endpoint: str, duration_ms: float, status_code: Optional[int],
                     correlation_id: Optional[str] = None, environment: Optional[str] = None):
        """Log external API call performance"""
        self.logger.info(
            "External API call",
            service=service,
            endpoint=endpoint,
            duration_ms=duration_ms,
            status_code=status_code,
            correlation_id=correlation_id,
            environment=environment,
            event_type="api_call"
        )


# Global logger instances
security_logger = SecurityLogger()
performance_logger = PerformanceLogger()
