import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.context import get_actor_id, get_request_id
from app.core.settings import settings

AUDIT_LOGGER_NAME = "app.audit"

# Structured fields callers may pass through ``extra=``.
DOMAIN_FIELDS = ("application_id", "installment_number", "document_id", "event_type", "from_status", "to_status")


class RequestContextFilter(logging.Filter):
    """Stamp every record with the acting profile and request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.actor_id = get_actor_id()
        record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``stream`` separates audit from service logs."""

    def __init__(self, stream_label: str = "service") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": self.stream_label,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "actor_id": getattr(record, "actor_id", "-"),
        }
        for name in DOMAIN_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _stdout_handler(formatter: str, level: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    server_logger = {"handlers": ["service"], "level": log_level, "propagate": False}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "service_json": {"()": JsonFormatter, "stream_label": "service"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "service": _stdout_handler("service_json", log_level),
                "audit": _stdout_handler("audit_json", log_level),
            },
            "loggers": {
                "": {"handlers": ["service"], "level": log_level, "propagate": False},
                AUDIT_LOGGER_NAME: {"handlers": ["audit"], "level": log_level, "propagate": False},
                "uvicorn": server_logger,
                "uvicorn.error": server_logger,
                "uvicorn.access": server_logger,
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging ready environment=%s level=%s threshold=%s",
        settings.environment,
        log_level,
        settings.approval_threshold_amount,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)
