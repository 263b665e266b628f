"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from mfi_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_gateway_call(
    operation: str,
    reference: Optional[str],
    outcome: str,
    duration_ms: float,
    status_code: Optional[int] = None,
) -> None:
    """Log outbound gateway request outcome"""
    level = logging.INFO if outcome == "success" else logging.WARNING
    logging.log(
        level,
        "Gateway call completed",
        extra={
            "step": "gateway_call",
            "operation": operation,
            "reference": reference,
            "outcome": outcome,
            "status_code": status_code,
            "duration_ms": duration_ms,
        },
    )


def log_webhook_rejection(reason: str, raw_body: bytes, signature: Optional[str], detail: str = "") -> None:
    """Log a rejected webhook with enough context to debug secret/config mismatches"""
    logging.warning(
        "Webhook rejected",
        extra={
            "step": "webhook_rejected",
            "reason": reason,
            "detail": detail,
            "body_size": len(raw_body),
            "body_preview": raw_body[:256].decode("utf-8", errors="replace"),
            "signature_present": bool(signature),
        },
    )


def log_notification_outcome(
    notification_id: Optional[str],
    installment_id: str,
    kind: str,
    channel: str,
    status: str,
    error: Optional[str] = None,
) -> None:
    """Log structured notification delivery outcome"""
    logging.info(
        "Notification dispatched",
        extra={
            "step": "notification_dispatch",
            "notification_id": notification_id,
            "installment_id": installment_id,
            "kind": kind,
            "channel": channel,
            "status": status,
            "error": error,
        },
    )


def log_task_run(task_id: str, outcome: str, retry_count: int, duration_ms: float, error: Optional[str] = None) -> None:
    """Log scheduler task execution outcome"""
    level = logging.INFO if outcome == "success" else logging.ERROR
    logging.log(
        level,
        "Scheduled task finished",
        extra={
            "step": "task_run",
            "task_id": task_id,
            "outcome": outcome,
            "retry_count": retry_count,
            "duration_ms": duration_ms,
            "error": error,
        },
    )
