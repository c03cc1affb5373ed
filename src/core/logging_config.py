"""Structured logging configuration for pipeline operations.

Supports two modes:
- Production: JSON format for log aggregation
- Development: Human-readable format
"""

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

# Standard LogRecord attributes that are not copied into the "extra" block
_STANDARD_ATTRS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments.

    Outputs single-line JSON that log aggregators handle correctly.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str)


def setup_structured_logging() -> None:
    """Setup structured JSON logging for production environments.

    In production, configures the root logger to output single-line JSON so
    multiline messages are not split into separate entries.
    """
    is_production = bool(os.environ.get("PRODUCTION") or os.environ.get("ENVIRONMENT", "").lower() == "production")

    if is_production:
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.INFO)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)

        # urllib3 logs every retry at DEBUG/WARNING with its own format
        for logger_name in ["urllib3", "sqlalchemy.engine"]:
            lib_logger = logging.getLogger(logger_name)
            lib_logger.handlers = []
            lib_logger.addHandler(handler)
            lib_logger.propagate = False

        logging.info("JSON structured logging enabled for production")
    else:
        # force=True ensures configuration is applied even if logging was already configured
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            force=True,
        )


class PipelineLogger:
    """Structured logger for pipeline stage outcomes."""

    def __init__(self, logger_name: str = "insights.pipeline"):
        self.logger = logging.getLogger(logger_name)

    def log_stage(
        self,
        stage: str,
        success: bool,
        client_id: str | None = None,
        details: dict[str, Any] | None = None,
        error: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Log a pipeline stage with structured data."""

        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "stage": stage,
            "success": success,
            "type": "pipeline_stage",
        }

        if client_id:
            log_data["client_id"] = client_id

        if details:
            log_data["details"] = details

        if error:
            log_data["error"] = error

        if duration_ms is not None:
            log_data["duration_ms"] = round(duration_ms, 2)

        if success:
            self.logger.info(json.dumps(log_data, default=str))
        else:
            self.logger.error(json.dumps(log_data, default=str))

    def log_collection(self, account_id: str, success: bool, summary: dict[str, Any] | None = None, error: str = ""):
        self.log_stage(
            "collection",
            success,
            details={"account_id": account_id, **(summary or {})},
            error=error or None,
        )

    def log_storage(
        self, client_id: str, period: str, success: bool, records: int = 0, errors: list[str] | None = None
    ) -> None:
        self.log_stage(
            "storage",
            success,
            client_id=client_id,
            details={"month_year": period, "records": records},
            error="; ".join(errors) if errors else None,
        )

    def log_cache(self, client_id: str, source: str, success: bool, error: str = "") -> None:
        self.log_stage("analytics_cache", success, client_id=client_id, details={"source": source}, error=error or None)


# Global structured logger instance
pipeline_logger = PipelineLogger()
