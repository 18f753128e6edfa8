"""JSON logging for CA workflow commands.

Every record carries the emitting module plus any CA context passed through
``extra`` (``ca``, ``serial``, ``request``), so one log stream can hold
several CAs.
"""

import logging
import os

from pythonjsonlogger.json import JsonFormatter

LOG_LEVEL_ENV = "CA_WORKFLOWS_LOG_LEVEL"

BASE_FIELDS = frozenset(
    {"timestamp", "level", "logger", "message", "exc_info", "funcName", "lineno"}
)
CONTEXT_FIELDS = frozenset({"ca", "serial", "request"})


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter emitting base fields plus CA context fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")
        if "name" in log_record:
            log_record["logger"] = log_record.pop("name")

        allowed_fields = BASE_FIELDS | CONTEXT_FIELDS
        for key in [key for key in log_record if key not in allowed_fields]:
            log_record.pop(key)


def set_level(level: str | int) -> None:
    """Change the package log level, e.g. from a ``--log-level`` flag.

    Raises:
        ValueError: If level is not a known logging level name
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"unknown log level: {level}")
        level = resolved
    logging.getLogger("ca_workflows").setLevel(level)


def _setup_logger() -> logging.Logger:
    """Configure the ``ca_workflows`` logger once.

    Module loggers (``logging.getLogger(__name__)``) are its children and
    share the handler.
    """
    logger = logging.getLogger("ca_workflows")

    # Prevent duplicate handlers if module reloaded
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        CustomJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(name)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(handler)
    logger.propagate = False
    try:
        set_level(os.environ.get(LOG_LEVEL_ENV, "INFO"))
    except ValueError:
        logger.setLevel(logging.INFO)
        logger.warning("Ignoring invalid %s=%r", LOG_LEVEL_ENV, os.environ[LOG_LEVEL_ENV])

    return logger


LOGGER = _setup_logger()
