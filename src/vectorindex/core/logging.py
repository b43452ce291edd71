import sys
import logging
from contextlib import contextmanager
from typing import Optional

import structlog
from vectorindex.config import settings

AUDIT_LOGGER_NAME = "vectorindex.audit"


def setup_logging():
    """
    Configures structured logging.
    - JSON for Production (Docker friendly)
    - Colorful text for Local Dev
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=settings.LOG_LEVEL.upper(),
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.APP_ENV == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    """Return a logger bound with the module name"""
    return structlog.get_logger(name)


@contextmanager
def tenant_context(tenant_id: Optional[str], organization_id: Optional[str] = None, **extra):
    """
    Bind tenant/org (plus any extra keys) to every log line emitted inside
    the block, including from nested coroutines.
    """
    bound = {"tenant_id": tenant_id, "organization_id": organization_id, **extra}
    with structlog.contextvars.bound_contextvars(**bound):
        yield
