import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

LOG_LEVEL_ENV_VAR = "BATCHLOAD_LOG_LEVEL"


def setup_logging(level: int | str | None = None) -> None:
    """
    Configure structlog and the ``batchload`` stdlib logger.

    Parameters
    ----------
    level : int | str | None, optional
        Level for the ``batchload`` logger. Falls back to ``BATCHLOAD_LOG_LEVEL``
        and then to ``WARNING``.
    """
    if level is None:
        level = os.getenv(LOG_LEVEL_ENV_VAR, "WARNING")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    logging.getLogger("batchload").setLevel(level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def logging_context(**required_context) -> Iterator[None]:
    current = structlog.contextvars.get_contextvars()
    to_bind = {k: v for k, v in required_context.items() if k not in current}

    if to_bind:
        with structlog.contextvars.bound_contextvars(**to_bind):
            yield
    else:
        yield
