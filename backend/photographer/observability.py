"""
Observability utilities for photoshoot batches: correlation IDs, timing, error codes.

Usage:
    from .observability import BatchContext, ErrorCode, log_batch_start, log_batch_done

This module provides:
- BatchContext: dataclass for correlation IDs and timing of one generate run
- ErrorCode: enum of normalized error codes
- Structured logging helpers
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

RELEASE_VERSION = os.getenv("RELEASE_VERSION", "dev")


def configure_logging(level: Optional[str] = None) -> None:
    """Set up root logging for the console entry point (LOG_LEVEL, default INFO)."""
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# -----------------------------------------------------------------------------
# Error codes (normalized)
# -----------------------------------------------------------------------------
class ErrorCode(str, Enum):
    """Normalized error codes for SSE error events and logging."""

    # Input validation
    EMPTY_MENU = "EMPTY_MENU"
    EMPTY_PROMPT = "EMPTY_PROMPT"
    EMPTY_INSTRUCTION = "EMPTY_INSTRUCTION"
    MISSING_IMAGE = "MISSING_IMAGE"

    # Generation
    BATCH_FAILED = "BATCH_FAILED"
    IMAGE_GEN_FAILED = "IMAGE_GEN_FAILED"
    EDIT_FAILED = "EDIT_FAILED"

    # Generic
    INTERNAL_ERROR = "INTERNAL_ERROR"


# -----------------------------------------------------------------------------
# Batch context (correlation + timing)
# -----------------------------------------------------------------------------
@dataclass
class BatchContext:
    """
    Holds correlation IDs and timing for a single generate run.
    Create at the start of a batch, pass through the pipeline.
    """

    session_id: str
    batch_id: Optional[str] = None
    style: Optional[str] = None

    started_at: float = field(default_factory=time.monotonic)
    done_at: Optional[float] = None

    # Step timings (ms)
    parse_ms: Optional[int] = None
    image_gen_ms: Optional[int] = None

    # Outcome
    final_status: str = "unknown"
    error_code: Optional[str] = None
    items_count: int = 0
    failed_items_count: int = 0

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def mark_done(self, status: str) -> None:
        self.done_at = time.monotonic()
        self.final_status = status

    def correlation_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "session_id": self.session_id,
            "release": RELEASE_VERSION,
        }
        if self.batch_id:
            fields["batch_id"] = self.batch_id
        return fields

    def timing_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"elapsed_ms": self.elapsed_ms()}
        if self.parse_ms is not None:
            fields["parse_ms"] = self.parse_ms
        if self.image_gen_ms is not None:
            fields["image_gen_ms"] = self.image_gen_ms
        return fields

    def outcome_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "final_status": self.final_status,
            "items_count": self.items_count,
            "failed_items_count": self.failed_items_count,
        }
        if self.style:
            fields["style"] = self.style
        if self.error_code:
            fields["error_code"] = self.error_code
        return fields

    def summary(self) -> Dict[str, Any]:
        """Client-facing summary attached to the done event."""
        return {
            "elapsed_ms": self.elapsed_ms(),
            "items_count": self.items_count,
            "failed_items_count": self.failed_items_count,
        }

    def all_fields(self) -> Dict[str, Any]:
        return {
            **self.correlation_fields(),
            **self.timing_fields(),
            **self.outcome_fields(),
        }


# -----------------------------------------------------------------------------
# Structured logging helpers
# -----------------------------------------------------------------------------
def log_batch_start(ctx: BatchContext, extra: Optional[Dict[str, Any]] = None) -> None:
    fields = ctx.correlation_fields()
    if extra:
        fields.update(extra)
    logger.info("batch_start %s", fields)


def log_batch_done(ctx: BatchContext, extra: Optional[Dict[str, Any]] = None) -> None:
    fields = ctx.all_fields()
    if extra:
        fields.update(extra)
    logger.info("batch_done %s", fields)


def log_batch_error(
    ctx: BatchContext,
    error_code: ErrorCode,
    message: str,
    exc: Optional[BaseException] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """Log a batch error with correlation fields and error code."""
    ctx.error_code = error_code.value
    fields = ctx.correlation_fields()
    fields["error_code"] = error_code.value
    fields["error_message"] = message
    if extra:
        fields.update(extra)
    if exc is not None:
        logger.error("batch_error %s", fields, exc_info=exc)
    else:
        logger.warning("batch_error %s", fields)


def log_step_timing(
    ctx: BatchContext,
    step: str,
    duration_ms: int,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    fields = ctx.correlation_fields()
    fields["step"] = step
    fields["duration_ms"] = duration_ms
    if extra:
        fields.update(extra)
    logger.info("batch_step %s", fields)
