"""
Structured JSON logging utilities.

Sync passes usually run in the background, so their logs are most
useful as single-line JSON objects that carry the queue entry context.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .sync.queue import QueueEntry

# Attributes every LogRecord has; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class StructuredJsonFormatter(logging.Formatter):
    """
    Render each record as one JSON object.

    Fields: ``timestamp`` (record creation time, ISO 8601 UTC), ``level``,
    ``logger``, ``message``, ``exception`` when present, plus every
    field passed through ``extra`` (for example the queue entry context
    added by SyncLoggerAdapter).
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for name, value in vars(record).items():
            if name in _RECORD_ATTRS or name.startswith("_"):
                continue
            payload[name] = value

        # Context values that are not JSON-native are logged by their str()
        return json.dumps(payload, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = None,
) -> logging.Logger:
    """
    Send a logger's records to stderr as JSON lines.

    Any handlers already on the logger are replaced, so calling this
    twice does not duplicate output. stdout stays free for command output.

    Args:
        level: Minimum level to emit
        logger_name: Logger to configure; the root logger when omitted

    Returns:
        The configured logger
    """
    target = logging.getLogger(logger_name)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())

    target.handlers = [handler]
    target.setLevel(level)
    return target


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps queue entry context onto every record."""

    @classmethod
    def for_entry(cls, logger: logging.Logger, entry: QueueEntry) -> SyncLoggerAdapter:
        """Build an adapter carrying the id, type and operation of a queue entry."""
        return cls(
            logger,
            {
                "entry_id": entry.id,
                "entity_type": entry.entity_type.value,
                "operation": entry.operation.value if entry.operation else None,
            },
        )

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs
