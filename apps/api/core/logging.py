"""
Structured logging configuration.

JSON lines in production (or LOG_FORMAT=json), plain text otherwise.
Call sites attach structured context via ``extra={"extra_fields": {...}}``.

Records describe patients, so structured context never carries their
identifying fields: ``PatientDataFilter`` masks them on every handler.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings

# Keys in extra_fields that identify a patient or carry free-text clinical notes.
PATIENT_FIELDS = frozenset({
    "mrn",
    "age",
    "complication_notes",
    "operation_notes",
    "complicationNotes",
    "operationNotes",
})
REDACTED = "[redacted]"


def redact_patient_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``fields`` with patient fields masked, nested dicts and lists included."""
    clean: Dict[str, Any] = {}
    for key, value in fields.items():
        if key in PATIENT_FIELDS:
            clean[key] = REDACTED
        elif isinstance(value, dict):
            clean[key] = redact_patient_fields(value)
        elif isinstance(value, list):
            clean[key] = [redact_patient_fields(v) if isinstance(v, dict) else v for v in value]
        else:
            clean[key] = value
    return clean


class PatientDataFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            record.extra_fields = redact_patient_fields(extra_fields)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with extra_fields merged in at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            "environment": settings.ENVIRONMENT,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update(extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging():
    """
    Configure application-wide logging.

    Safe to call more than once; the root handler list is replaced each time.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(PatientDataFilter())
    root_logger.addHandler(console_handler)

    # Stripe and upload parsing log request bodies at INFO.
    for name in ("sqlalchemy.engine", "urllib3", "stripe", "multipart"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
