"""Logging configuration for the API process and the ingestion CLI."""

from __future__ import annotations

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

AUDIT_LOGGER_NAME = "studydesk.ingest.audit"


class MinimalJSONFormatter(logging.Formatter):
    """Serialize log records to one compact JSON object per line."""

    _RESERVED_KEYS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
    }

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z")
        )

        log_record: dict[str, Any] = {
            "ts": timestamp,
            "level": record.levelname,
            "logger": record.name,
        }

        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            message = record.getMessage()
            if message:
                log_record["message"] = message

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in self._RESERVED_KEYS or key.startswith("_"):
                continue
            log_record[key] = value

        return json.dumps(log_record, ensure_ascii=False, default=str)


def configure_logging(level: str | None = None, *, log_dir: str | Path | None = None) -> None:
    """Install JSON logging on the root logger and the ingest audit file."""

    resolved_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    audit_dir = Path(log_dir or os.getenv("LOG_DIR", "logs"))
    audit_dir.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": MinimalJSONFormatter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
                "ingest_audit": {
                    "class": "logging.FileHandler",
                    "filename": str(audit_dir / "ingest_audit.log"),
                    "mode": "a",
                    "encoding": "utf-8",
                    "formatter": "json",
                },
            },
            "root": {
                "level": resolved_level,
                "handlers": ["default"],
            },
            "loggers": {
                AUDIT_LOGGER_NAME: {
                    "level": "INFO",
                    "handlers": ["ingest_audit"],
                    "propagate": False,
                },
                "httpx": {"level": "WARNING"},
            },
        }
    )


__all__ = ["AUDIT_LOGGER_NAME", "MinimalJSONFormatter", "configure_logging"]
