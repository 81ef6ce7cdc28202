"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "veritas-gateway"


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


def log_analysis(
    request_id: str,
    fingerprint: str,
    score: int,
    risk_level: str,
    alert_count: int,
    decision_state: str,
    confidence: str,
    duration_ms: float,
) -> None:
    """Log structured statement analysis outcome"""
    logging.info(
        "Analysis completed",
        extra={
            "request_id": request_id,
            "fingerprint": fingerprint,
            "step": "analysis_complete",
            "veritas_score": score,
            "risk_level": risk_level,
            "alert_count": alert_count,
            "decision_state": decision_state,
            "confidence": confidence,
            "duration_ms": duration_ms,
        },
    )
