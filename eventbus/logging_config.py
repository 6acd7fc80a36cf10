"""Process-wide logging setup for the API and Celery workers."""

import logging
from contextvars import ContextVar

from eventbus.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [req=%(request_id)s]: %(message)s"


class RequestIdFilter(logging.Filter):
    """Stamp every record with the current request ID (``-`` outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def configure_logging(level_name: str | None = None) -> None:
    """Configure the root logger once; safe to call from both app and worker startup."""
    level = getattr(logging, (level_name or settings.log_level).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    # SQL echo is controlled by the engine, keep the logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
