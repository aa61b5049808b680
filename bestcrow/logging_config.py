"""Logging setup and structured log helpers for bestcrow."""

import logging
import sys
from typing import Any, Optional

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO", stream=None) -> None:
    """Configure the root ``bestcrow`` logger once.

    Safe to call repeatedly: an existing handler is reused and only the
    level is updated.
    """
    root = logging.getLogger("bestcrow")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger, namespaced under ``bestcrow``."""
    if not name.startswith("bestcrow"):
        name = f"bestcrow.{name}"
    return logging.getLogger(name)


_events_logger = get_logger("bestcrow.events")
_pipeline_logger = get_logger("bestcrow.pipeline")


def log_event_applied(scope: Any, event: Any, outcome: Any, detail: Optional[str] = None) -> None:
    """Log the result of handing one raw event to the store."""
    outcome_value = getattr(outcome, "value", outcome)
    extra = {
        "scope": str(scope),
        "event_kind": event.kind.value,
        "escrow_id": event.escrow_id,
        "tx_hash": event.tx_hash,
        "block_number": event.block_number,
        "log_index": event.log_index,
        "outcome": outcome_value,
    }
    message = (
        f"{scope} {event.kind.value} escrow={event.escrow_id} "
        f"at {event.block_number}:{event.log_index} -> {outcome_value}"
    )
    if detail:
        message = f"{message} ({detail})"

    if outcome_value == "duplicate":
        _events_logger.debug(message, extra=extra)
    elif outcome_value in ("orphaned", "ignored"):
        _events_logger.warning(message, extra=extra)
    else:
        _events_logger.info(message, extra=extra)


def log_pipeline_state(scope: Any, state: str, **details: Any) -> None:
    """Log a pipeline lifecycle transition (started, caught_up, retrying, stopped)."""
    parts = " ".join(f"{k}={v}" for k, v in details.items())
    extra = {"scope": str(scope), "state": state}
    extra.update({f"pipeline_{k}": v for k, v in details.items()})
    level = logging.WARNING if state == "retrying" else logging.INFO
    _pipeline_logger.log(level, f"{scope} {state} {parts}".rstrip(), extra=extra)
