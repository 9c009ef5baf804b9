from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

# LogRecord attributes copied into JSON output when a caller passes them via `extra=`
CONTEXT_FIELDS = ("flow_id", "execution_id", "conversation_id", "node_id")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value:
                payload[field] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True)


def configure_logging(level: str = "INFO", log_format: str = "text") -> None:
    """Configure root logging; `log_format="json"` emits one JSON object per line."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=TEXT_FORMAT,
    )
    if log_format.lower() != "json":
        return

    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.setFormatter(JsonLogFormatter())
