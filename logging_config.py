# logging_config.py

import logging
import structlog
import sys
from typing import Any, Dict, Optional
from flask import has_app_context, current_app


def add_app_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Tag log entries with the active Flask configuration, when there is one"""
    if has_app_context():
        event_dict.setdefault("env", current_app.config.get('ENV_NAME'))
    return event_dict


def setup_logging(app_name: str = "engagement-engine", log_level: str = "INFO") -> None:
    """
    Configure structured logging for production use

    Args:
        app_name: Application name for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_app_context,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure standard logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    logging.getLogger(app_name).setLevel(level)

    # Reduce noise from third-party libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog instance
    """
    return structlog.get_logger(name or __name__)


class EngineMetricsLogger:
    """Timing and retry telemetry for engine evaluations"""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_evaluation(self, operation: str, duration_ms: float, deal_id: Optional[int] = None,
                       attempts: int = 1, success: bool = True):
        """Log one orchestrator operation end to end"""
        self.logger.info(
            "Engine evaluation",
            operation=operation,
            deal_id=deal_id,
            duration_ms=round(duration_ms, 2),
            attempts=attempts,
            success=success,
            event_type="evaluation"
        )

    def log_conflict_retry(self, operation: str, deal_id: Optional[int], attempt: int, limit: int):
        """Log an optimistic-concurrency retry"""
        self.logger.warning(
            "Concurrency conflict, retrying evaluation",
            operation=operation,
            deal_id=deal_id,
            attempt=attempt,
            limit=limit,
            event_type="conflict_retry"
        )

    def log_batch(self, job: str, processed: int, failed: int, duration_ms: float):
        """Log a periodic maintenance batch"""
        self.logger.info(
            "Maintenance batch",
            job=job,
            processed=processed,
            failed=failed,
            duration_ms=round(duration_ms, 2),
            event_type="batch"
        )


# Global logger instance
performance_logger = EngineMetricsLogger()
