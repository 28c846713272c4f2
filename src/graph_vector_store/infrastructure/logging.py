"""
Logging utilities.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class EmbeddingRedactionFilter(logging.Filter):
    """Shorten long numeric lists in log arguments so embeddings do not flood the logs."""

    def __init__(self, max_items: int = 8) -> None:
        super().__init__()
        self._max_items = max_items

    def _redact(self, value: object) -> object:
        if (
            isinstance(value, (list, tuple))
            and len(value) > self._max_items
            and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value)
        ):
            head = ", ".join(f"{v:.4g}" for v in value[:3])
            return f"[{head}, ... <{len(value)} floats>]"
        if isinstance(value, dict):
            return {k: self._redact(v) for k, v in value.items()}
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, tuple):
            record.args = tuple(self._redact(arg) for arg in record.args)
        elif isinstance(record.args, dict):
            record.args = self._redact(record.args)  # type: ignore[assignment]
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the package format and redaction filter."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )
    redaction = EmbeddingRedactionFilter()
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, EmbeddingRedactionFilter) for f in handler.filters):
            handler.addFilter(redaction)

    # The driver logs every Bolt message at DEBUG
    if level.upper() != "DEBUG":
        logging.getLogger("neo4j").setLevel(logging.WARNING)
