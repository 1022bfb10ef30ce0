"""
Logging configuration for TFA Guard.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
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

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for guard audit events.

    Every request decision, state-machine transition and lifecycle change
    of a guard goes through here.
    """

    def __init__(self, name: str = "tfaguard.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra: Dict[str, Any] = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
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

    def request_received(self, guard: str, op: str, replay_counter: int, origin: str) -> None:
        self._log(
            logging.DEBUG,
            "REQUEST_RECEIVED",
            guard=guard,
            op=op,
            replay_counter=replay_counter,
            origin=origin,
            message=f"{op} received with counter {replay_counter}"
        )

    def request_accepted(self, guard: str, op: str, new_counter: int) -> None:
        self._log(
            logging.INFO,
            "REQUEST_ACCEPTED",
            guard=guard,
            op=op,
            new_counter=new_counter,
            message=f"{op} accepted, counter now {new_counter}"
        )

    def request_rejected(self, guard: str, op: Optional[str], reason: str, details: Optional[str] = None) -> None:
        self._log(
            logging.WARNING,
            "REQUEST_REJECTED",
            guard=guard,
            op=op,
            reason=reason,
            details=details,
            message=f"{op or 'request'} rejected: {reason}"
        )

    def recovery_event(self, guard: str, event: str, device_id: Optional[int] = None,
                       unblock_at: Optional[int] = None) -> None:
        self._log(
            logging.WARNING,
            "RECOVERY_EVENT",
            guard=guard,
            recovery_event=event,
            device_id=device_id,
            unblock_at=unblock_at,
            message=f"Recovery {event}"
        )

    def delegation_event(self, guard: str, event: str, forward_value: Optional[int] = None,
                         unblock_at: Optional[int] = None) -> None:
        self._log(
            logging.WARNING,
            "DELEGATION_EVENT",
            guard=guard,
            delegation_event=event,
            forward_value=forward_value,
            unblock_at=unblock_at,
            message=f"Delegation {event}"
        )

    def guard_lifecycle(self, guard: str, event: str, owner_account: Optional[str] = None) -> None:
        self._log(
            logging.INFO,
            "GUARD_LIFECYCLE",
            guard=guard,
            lifecycle_event=event,
            owner_account=owner_account,
            message=f"Guard {event}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
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
    root_logger.setLevel(getattr(logging, level.upper()))

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


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
