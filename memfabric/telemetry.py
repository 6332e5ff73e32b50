"""
Structured logging for the orchestration layer.
"""

import logging
import sys
import uuid
from typing import Any, Optional

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging and render events as JSON lines."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stderr,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> Any:
    return structlog.get_logger(name)


def new_run_id() -> str:
    """Generate a new unique run ID."""
    return str(uuid.uuid4())


logger = get_logger(__name__)


def log_step(run_id: str, step_name: str, ms: float, **extra: Any) -> None:
    """
    Log a fan-out step with timing.

    Args:
        run_id: Unique run identifier
        step_name: Name of the step (e.g., "store", "search", "reconcile")
        ms: Duration in milliseconds
        **extra: Extra fields to log
    """
    logger.info("step_executed", run_id=run_id, step=step_name, duration_ms=round(ms, 3), **extra)
