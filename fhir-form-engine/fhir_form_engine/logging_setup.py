import hashlib
import json
import logging
import sys
import time
from typing import Any, Dict

from .config import get_settings

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """JSON formatter that redacts collected patient data."""

    # Keys whose values carry demographics entered into a form
    SENSITIVE_KEYS = frozenset(
        {"family", "given", "birthdate", "line", "postalcode", "values", "resource", "telecom"}
    )

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            payload[key] = self._redact(key, value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)

    def _redact(self, key: str, value: Any) -> Any:
        if key.lower() in self.SENSITIVE_KEYS:
            if value in (None, "", [], {}):
                return value
            digest = hashlib.md5(json.dumps(value, sort_keys=True, default=str).encode()).hexdigest()[:8]
            return f"[REDACTED_{digest}]"
        if isinstance(value, dict):
            return {k: self._redact(str(k), v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._redact("", item) for item in value]
        return value


def setup_logging() -> None:
    settings = get_settings()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
