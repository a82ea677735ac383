"""Structured logging: one JSON object per line on stdout.

Services attach their fields under ``extra={"context": {...}}``. Tenant and
bot ids found there are lifted to the top level so log queries can filter by
tenant without parsing the context.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

ROUTING_KEYS = ("tenant_id", "bot_id")
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            for key in ROUTING_KEYS:
                if context.get(key) is not None:
                    log_data[key] = context[key]
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send everything through one JSON stdout handler. Safe to call twice."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"funnelbot.{name}")


class TenantLoggerAdapter(logging.LoggerAdapter):
    """Merges the bound tenant/bot into the context of every record.

    Accepts the context either as ``context=`` or as ``extra={"context": ...}``.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.pop("extra", None) or {})
        context = {**self.extra, **(extra.pop("context", None) or {}), **(kwargs.pop("context", None) or {})}
        kwargs["extra"] = {**extra, "context": context}
        return msg, kwargs


def tenant_logger(name: str, tenant_id: str, bot_id: str | None = None) -> TenantLoggerAdapter:
    extra = {"tenant_id": tenant_id}
    if bot_id is not None:
        extra["bot_id"] = bot_id
    return TenantLoggerAdapter(get_logger(name), extra)
