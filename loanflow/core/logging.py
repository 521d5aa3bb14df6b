import json
import logging
import logging.config
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Optional

from loanflow.core import context
from loanflow.core.settings import settings

AUDIT_LOGGER = "loanflow.audit"
CONTEXT_FIELDS = ("request_id", "user_id", "role", "view_role")
# Optional ``extra=`` keys that services attach to records about a loan or task.
RECORD_FIELDS = ("loan_id", "task_id", "action")


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in asdict(context.current()).items():
            setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the stream it was written to."""

    def __init__(self, stream_label: str = "app") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stream": self.stream_label,
        }
        for name in CONTEXT_FIELDS:
            payload[name] = getattr(record, name, context.UNSET)
        # Impersonation is only worth a field when it is happening.
        if payload["view_role"] == payload["role"]:
            payload.pop("view_role")
        for name in RECORD_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _stdout_handler(level: str, formatter: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def build_logging_config(level: str) -> dict[str, Any]:
    app_logger = {"handlers": ["app"], "level": level, "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": {
            "app_json": {"()": JsonFormatter, "stream_label": "app"},
            "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
        },
        "handlers": {
            "app": _stdout_handler(level, "app_json"),
            "audit": _stdout_handler(level, "audit_json"),
        },
        "loggers": {
            "": app_logger,
            AUDIT_LOGGER: {"handlers": ["audit"], "level": level, "propagate": False},
            **{name: app_logger for name in ("uvicorn", "uvicorn.error", "uvicorn.access")},
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    logging.config.dictConfig(build_logging_config((level or settings.log_level).upper()))
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s storage_provider=%s",
        settings.environment,
        settings.storage_provider,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)
