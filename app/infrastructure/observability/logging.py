"""
Structured logging setup for the booking scheduling service.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_request_context,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _add_request_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Merge values bound with structlog.contextvars (tenant_id, listing_id) into the entry."""
    return structlog.contextvars.merge_contextvars(logger, method_name, event_dict)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str = None):
    """Log health check results with consistent fields."""
    logger = get_logger("health")

    log_data = {
        "service": service,
        "healthy": healthy,
        "latency_ms": latency_ms,
        "kind": "health_check",
    }

    if error:
        log_data["error"] = error

    if healthy:
        logger.info("Health check passed", **log_data)
    else:
        logger.error("Health check failed", **log_data)


def log_assignment_decision(
    listing_id: str,
    event_type_id: str,
    member_id: str | None,
    candidates: int,
    available: int,
    reason: str,
    score: float | None = None,
):
    """Log a round robin assignment outcome with consistent fields."""
    logger = get_logger("assignment")

    log_data = {
        "listing_id": listing_id,
        "event_type_id": event_type_id,
        "member_id": member_id,
        "candidates": candidates,
        "available": available,
        "reason": reason,
        "kind": "round_robin_assignment",
    }

    if score is not None:
        log_data["score"] = round(score, 4)

    if member_id:
        logger.info("Booking assigned to team member", **log_data)
    else:
        logger.warning("No team member assigned", **log_data)
