"""
Logging configuration for transcript_bridge.

Provides structured JSON logging and a typed event logger for the
notification pipeline.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

# Context variable for notification correlation
notification_id_var: ContextVar[str] = ContextVar('notification_id', default='')

SENSITIVE_FIELDS = [
    "password", "cert_password", "token", "access_token", "client_secret",
    "dataKey", "data", "private_key",
]


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        notification_id = notification_id_var.get()
        if notification_id:
            log_data["notification_id"] = notification_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            if isinstance(value, str) and len(value) > 8:
                result[key] = value[:4] + "..." + value[-4:]
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result


class PipelineEventLogger:
    """
    Logger for notification pipeline events.

    Each method emits one record with a fixed event_type and structured
    fields. Nothing credential-bearing is ever passed in.
    """

    def __init__(self, name: str = "transcript_bridge.events"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "notification_id": notification_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def key_resolution(self, outcome: str, source: str, attempt: Optional[int] = None) -> None:
        """Log one key-resolution outcome. `attempt` is the candidate index, never its value."""
        level = logging.INFO if outcome == "success" else logging.WARNING
        self._log(
            level,
            "KEY_RESOLUTION",
            outcome=outcome,
            source=source,
            attempt=attempt,
            message=f"Key resolution {outcome} via {source}"
        )

    def decryption_failed(
        self,
        reason: str,
        certificate_id: Optional[str] = None,
        envelope_thumbprint: Optional[str] = None,
        local_thumbprint: Optional[str] = None
    ) -> None:
        self._log(
            logging.ERROR,
            "DECRYPTION_FAILED",
            reason=reason,
            certificate_id=certificate_id,
            envelope_thumbprint=envelope_thumbprint,
            local_thumbprint=local_thumbprint,
            message=f"Envelope dropped: {reason}"
        )

    def reconstructed(self, strategy: str, field_count: int) -> None:
        self._log(
            logging.INFO,
            "RECONSTRUCTED",
            strategy=strategy,
            field_count=field_count,
            message=f"Record recovered by {strategy} ({field_count} fields)"
        )

    def payload_unparseable(self, length: int) -> None:
        self._log(
            logging.WARNING,
            "PAYLOAD_UNPARSEABLE",
            length=length,
            message="No recognizable record in decrypted content"
        )

    def enrichment(self, path: str, outcome: str, detail: Optional[str] = None) -> None:
        level = logging.INFO if outcome in ("success", "unavailable", "skipped") else logging.WARNING
        self._log(
            level,
            "ENRICHMENT",
            path=path,
            outcome=outcome,
            detail=detail,
            message=f"Enrichment via {path}: {outcome}"
        )

    def issue_filed(self, issue_url: str, issue_number: Optional[int]) -> None:
        self._log(
            logging.INFO,
            "ISSUE_FILED",
            issue_url=issue_url,
            issue_number=issue_number,
            message=f"Issue filed: {issue_url}"
        )

    def issue_filing_failed(self, reason: str) -> None:
        self._log(
            logging.ERROR,
            "ISSUE_FILING_FAILED",
            reason=reason,
            message=f"Issue filing failed: {reason}"
        )

    def background_task_error(self, task: str, error: BaseException) -> None:
        self._log(
            logging.ERROR,
            "BACKGROUND_TASK_ERROR",
            task=task,
            error_type=type(error).__name__,
            error=str(error),
            message=f"Background task {task} raised {type(error).__name__}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_notification_id(notification_id: Optional[str] = None) -> str:
    """
    Set the notification ID for the current context.

    Args:
        notification_id: ID to set, or None to generate one

    Returns:
        The ID that was set
    """
    if notification_id is None:
        notification_id = str(uuid.uuid4())
    notification_id_var.set(notification_id)
    return notification_id


def get_notification_id() -> str:
    """Get the current notification ID."""
    return notification_id_var.get()


# Global event logger instance
event_log = PipelineEventLogger()
