"""
Structured JSON Logging with Correlation ID
Provides JSON formatter that automatically injects correlation IDs into all log entries
"""

import logging
import sys
import os
from pythonjsonlogger import jsonlogger
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = 'qr-checkin'


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    Every stdlib log record (uvicorn, SQLAlchemy, redis-py) gets the
    correlation_id of the request that produced it, so a rejected check-in
    can be traced from the access log to the cache and database calls.
    """

    def add_fields(self, log_record, record, message_dict):
        """
        Add correlation_id, service and environment to the log record.

        Args:
            log_record: Dictionary to be serialized to JSON
            record: Standard logging.LogRecord object
            message_dict: Additional fields from logger call
        """
        super().add_fields(log_record, record, message_dict)

        log_record['correlation_id'] = correlation_id.get() or 'none'
        log_record['service'] = SERVICE_NAME
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def setup_logging(level: int = logging.INFO):
    """
    Configure structured JSON logging to stdout.

    Safe to call more than once: an existing handler installed by a previous
    call is replaced rather than duplicated.

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name('qr_checkin_json')

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == handler.get_name():
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    return handler


def get_correlation_id() -> str:
    """
    Correlation ID of the current request, or 'none' outside one.

    structlog events bypass the stdlib formatter above, so callers that want
    the ID on a structlog event bind it explicitly.
    """
    return correlation_id.get() or 'none'
