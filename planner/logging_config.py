"""
Planner Structured Logging - Correlation ID tracking and stage logging.

Every turn gets one correlation ID. Components the turn passes through
(lifecycle, materializer) log under their own `planner.<area>` logger but
keep the turn's ID, so one grep follows a turn end to end.
"""

import logging
import uuid
from typing import Optional

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "nats")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure structured logging for the planner."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logging.getLogger("planner")


class CorrelatedLogger:
    """Logger that stamps every line with the turn's correlation ID and stage."""

    def __init__(self, correlation_id: Optional[str] = None, component: str = "Engine"):
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.component = component
        self._logger = logging.getLogger(f"planner.{component.lower()}")

    def child(self, component: str) -> "CorrelatedLogger":
        """Same turn, another component's logger."""
        return CorrelatedLogger(correlation_id=self.correlation_id, component=component)

    def _prefix(self, stage: Optional[str] = None) -> str:
        parts = [f"[{self.correlation_id}]"]
        if stage:
            parts.append(f"[{stage}]")
        return " ".join(parts)

    def info(self, msg: str, stage: Optional[str] = None):
        self._logger.info(f"{self._prefix(stage)} {msg}")

    def warning(self, msg: str, stage: Optional[str] = None):
        self._logger.warning(f"{self._prefix(stage)} {msg}")

    def error(self, msg: str, stage: Optional[str] = None, exc_info: bool = False):
        self._logger.error(f"{self._prefix(stage)} {msg}", exc_info=exc_info)

    def critical(self, msg: str, stage: Optional[str] = None, exc_info: bool = False):
        # Rollback failures: the store may hold a half-applied plan
        self._logger.critical(f"{self._prefix(stage)} {msg}", exc_info=exc_info)

    def debug(self, msg: str, stage: Optional[str] = None):
        self._logger.debug(f"{self._prefix(stage)} {msg}")
