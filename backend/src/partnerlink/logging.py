"""Structured logging configuration for partnerlink.

Provides JSON-formatted logs for production and human-readable
logs for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import get_settings

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.funcName:
            log_data["function"] = record.funcName
        if record.lineno:
            log_data["line"] = record.lineno

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure logging based on settings."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "log_format": settings.log_format,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to all log messages."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Process the logging message and add extra context."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger with additional context.

    Args:
        name: Logger name
        **context: Context fields to add to all log messages

    Returns:
        Logger adapter with context

    Usage:
        logger = get_context_logger(__name__, partner_id="acme")
        logger.info("Linking client")  # Includes partner_id
    """
    return LoggerAdapter(get_logger(name), context)


# =========================
# Convenience functions
# =========================


def log_api_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    partner_id: str | None = None,
    request_id: str | None = None,
) -> None:
    """Log an API request.

    Args:
        method: HTTP method
        path: Request path
        status_code: Response status code
        duration_ms: Request duration in milliseconds
        partner_id: Authenticated partner, when known
        request_id: Request correlation ID
    """
    logger = get_logger("partnerlink.api")
    logger.info(
        f"{method} {path} - {status_code}",
        extra={
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "partner_id": partner_id,
            "request_id": request_id,
            "event": "api_request",
        },
    )


def log_link_event(
    kind: str,
    partner_id: str,
    partner_ref: str,
    outcome: str,
    account_id: str | None = None,
    confidence: float | None = None,
) -> None:
    """Log the outcome of a linking operation.

    Args:
        kind: "agent" or "client"
        partner_id: Partner the identifier belongs to
        partner_ref: Partner-scoped agent or client identifier
        outcome: created, existing, disambiguation_required, replayed
        account_id: Linked internal account (if any)
        confidence: Match confidence used for the decision
    """
    logger = get_logger("partnerlink.linking")
    logger.info(
        f"Link {kind} {partner_id}/{partner_ref}: {outcome}",
        extra={
            "kind": kind,
            "partner_id": partner_id,
            "partner_ref": partner_ref,
            "outcome": outcome,
            "account_id": account_id,
            "confidence": confidence,
            "event": "link_outcome",
        },
    )


def log_scoring_event(
    partner_ref: str,
    candidates_scored: int,
    candidates_kept: int,
    top_confidence: float | None,
) -> None:
    """Log a scoring pass over directory candidates.

    Args:
        partner_ref: Partner-scoped client identifier being scored
        candidates_scored: Accounts compared
        candidates_kept: Accounts at or above the disambiguation threshold
        top_confidence: Best score observed
    """
    logger = get_logger("partnerlink.scoring")
    logger.debug(
        f"Scored {candidates_scored} accounts for {partner_ref}",
        extra={
            "partner_ref": partner_ref,
            "candidates_scored": candidates_scored,
            "candidates_kept": candidates_kept,
            "top_confidence": top_confidence,
            "event": "candidate_scoring",
        },
    )
