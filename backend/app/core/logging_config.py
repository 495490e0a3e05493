"""
Logging configuration.

WHAT: Installs the application's log format and stamps every record with
the current request ID.

WHY: Modules log through the standard library (logging.getLogger(__name__))
with structured context in extra={...}. The request ID filter lets a
webhook delivery or checkout redirect be followed across modules.
"""

import logging
import sys

from app.core.config import settings
from app.middleware.request_context import get_request_id


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [request_id=%(request_id)s] %(message)s"


class RequestIdLogFilter(logging.Filter):
    """Adds request_id to every log record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


def configure_logging(level: str = None) -> None:
    """
    Configure root logging for the application.

    Safe to call more than once; the handler is installed only once.

    Args:
        level: Log level name (defaults to settings.LOG_LEVEL)
    """
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())

    for handler in root.handlers:
        if getattr(handler, "_app_handler", False):
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdLogFilter())
    handler._app_handler = True
    root.addHandler(handler)

    # SQL echo is controlled by DEBUG on the engine, not the log level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
