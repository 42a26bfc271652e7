"""
Structured Logging Configuration Module

Every ledger component logs under the ``pin_ledger`` namespace. Records are
rendered as one JSON object per line (or plain text), and ``log_action``
attaches the owner, action and resource of an operation as structured fields.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional


ROOT_LOGGER = "pin_ledger"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Attributes log_action may attach to a record, in output order
STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """Render a record as JSON; unset structured fields are left out"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.module,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(level: str = "INFO", logger_name: str = ROOT_LOGGER,
                  log_format: str = "json") -> logging.Logger:
    """
    Point a logger at a single stderr handler.

    Handlers attached by an earlier call are replaced, so calling this again
    reconfigures instead of duplicating output.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Logger to configure; children inherit its handler
        log_format: "json" for structured output, "text" for plain lines

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter(log_format))
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False

    return logger


def configure_logging(config) -> logging.Logger:
    """Apply the log_level and log_format settings of a LedgerConfig"""
    return setup_logging(config.log_level, log_format=config.log_format)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log one ledger action with structured fields.

    The record is attributed to the calling module, not to this one.

    Args:
        logger: Component logger
        level: Level name (info, warning, error, ...)
        message: Human-readable message
        user_id: Owner on whose behalf the action runs
        action: Action name, e.g. "deposit"
        resource: Affected resource, e.g. "account:9010000001"
        correlation_id: Request correlation ID
        extra: Additional structured data
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(
        logging.getLevelName(level.upper()), message,
        extra={name: value for name, value in fields.items() if value},
        stacklevel=2
    )
