"""
Structured logging setup for the confidential content recommender.
Provides JSON-formatted logs with consistent fields for client diagnostics.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _drop_ciphertext_payloads,
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


def _drop_ciphertext_payloads(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Never let raw ciphertexts or proofs end up in log output."""
    for key in ("ciphertext", "proof", "decryption_proof", "clear_values"):
        if key in event_dict:
            event_dict[key] = "[redacted]"
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_status_transition(phase: str, message: str, replaced: str | None = None):
    """Log a user-visible status change with consistent fields."""
    logger = get_logger("status")

    log_data = {
        "phase": phase,
        "status_message": message,
    }

    if replaced:
        log_data["replaced_phase"] = replaced

    if phase == "error":
        logger.warning("Status published", **log_data)
    else:
        logger.info("Status published", **log_data)


def log_relayer_call(path: str, status_code: int, duration_ms: float, attempt: int = 1):
    """Log relayer HTTP calls with consistent fields."""
    logger = get_logger("relayer")

    log_data = {
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "attempt": attempt,
    }

    if status_code >= 400:
        logger.warning("Relayer request failed", **log_data)
    else:
        logger.debug("Relayer request completed", **log_data)
