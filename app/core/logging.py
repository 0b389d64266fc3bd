import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from app.core.context import get_request_id, get_worker
from app.core.settings import settings

AUDIT_LOGGER = "app.audit"

# Logger name prefix -> stream label; first match wins.
STREAMS = (
    (AUDIT_LOGGER, "audit"),
    ("app.services.watchers", "settlement"),
    ("app.services.settlement", "settlement"),
    ("app.services.active_invoices", "settlement"),
)


def stream_for(logger_name: str) -> str:
    for prefix, label in STREAMS:
        if logger_name.startswith(prefix):
            return label
    return "transactional"


class RequestContextFilter(logging.Filter):
    """Inject worker/request ids and the stream label into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.worker = get_worker()
        record.request_id = get_request_id()
        record.stream = getattr(record, "stream", None) or stream_for(record.name)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - concise
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stream": getattr(record, "stream", None) or stream_for(record.name),
            "worker": getattr(record, "worker", "-"),
            "request_id": getattr(record, "request_id", "-"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _logger(level: str) -> dict:
    return {"handlers": ["default"], "level": level, "propagate": False}


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {"json": {"()": JsonFormatter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "json",
                    "filters": ["request_context"],
                    "stream": "ext://sys.stdout",
                },
            },
            "loggers": {
                "": _logger(log_level),
                AUDIT_LOGGER: _logger(log_level),
                "web3": _logger("WARNING"),
                "httpx": _logger("WARNING"),
                "uvicorn": _logger(log_level),
                "uvicorn.access": _logger(log_level),
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s background_workers=%s",
        settings.environment,
        settings.background_workers_enabled,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)
