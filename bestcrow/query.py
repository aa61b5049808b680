"""Read API over the escrow projection.

Status and timeline are recomputed on every call from the stored flags and
the current time; nothing derived from "now" is ever cached. Detail and
history reads are restricted to the escrow's depositor and receiver.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .errors import AccessDeniedError, EscrowNotFoundError
from .fees import FeeEngine, FeeQuote
from .projection import EscrowFlags, project_record, project_timeline
from .storage import ChangeHandler, EscrowStore
from .types import (
    EscrowKey,
    EscrowRecord,
    EscrowStatus,
    EventKind,
    RawEvent,
    TimelineStep,
    normalize_address,
    utc_timestamp,
)

logger = logging.getLogger(__name__)

STATUS_FILTER_ALL = "all"


@dataclass
class EscrowSummary:
    """List/search row: the record and its status at query time."""

    record: EscrowRecord
    status: EscrowStatus


@dataclass
class EscrowView:
    """Detail view of one escrow."""

    record: EscrowRecord
    status: EscrowStatus
    timeline: List[TimelineStep]
    quote: FeeQuote
    evaluated_at: int
    events: List[RawEvent] = field(default_factory=list)


def parse_status_filter(value: Optional[str]) -> Optional[EscrowStatus]:
    """``all``/empty -> None (no filter), otherwise a canonical status.

    Raises:
        ValueError: If the value names no status.
    """
    if value is None or value.strip().lower() in ("", STATUS_FILTER_ALL):
        return None
    try:
        return EscrowStatus(value.strip().lower())
    except ValueError:
        allowed = ", ".join([STATUS_FILTER_ALL] + [s.value for s in EscrowStatus])
        raise ValueError(f"Unknown status filter {value!r}; expected one of: {allowed}")


def _matches_text(record: EscrowRecord, text: str) -> bool:
    if not text:
        return True
    needle = text.lower()
    return needle in str(record.escrow_id) or needle in (record.title or "").lower()


class QueryService:
    """Composes the store, the status projector and the fee engine for readers."""

    def __init__(
        self,
        store: EscrowStore,
        fee_engine: Optional[FeeEngine] = None,
        clock: Callable[[], int] = utc_timestamp,
    ):
        self.store = store
        self.fee_engine = fee_engine or FeeEngine()
        self.clock = clock

    def _now(self, now: Optional[int]) -> int:
        return self.clock() if now is None else now

    def _authorized_record(self, key: EscrowKey, viewer: str) -> EscrowRecord:
        viewer = normalize_address(viewer)
        record = self.store.get_escrow(key)
        if record is None:
            raise EscrowNotFoundError(f"Escrow {key} not found")
        if not record.involves(viewer):
            logger.info(f"Denied {viewer} access to escrow {key}")
            raise AccessDeniedError(f"{viewer} is not a participant of escrow {key}")
        return record

    def get_escrow(self, key: EscrowKey, viewer: str, now: Optional[int] = None) -> EscrowView:
        """Record, fresh status, timeline and fee quote for one escrow.

        Raises:
            ValueError: If ``viewer`` is not an address
            EscrowNotFoundError: If no projection exists for ``key``
            AccessDeniedError: If ``viewer`` is neither depositor nor receiver
        """
        record = self._authorized_record(key, viewer)
        now = self._now(now)
        events = self.store.get_events(key.scope, escrow_id=key.escrow_id)

        tx_hashes: Dict[EventKind, str] = {}
        for event in events:
            tx_hashes.setdefault(event.kind, event.tx_hash)
        if record.created_tx_hash:
            tx_hashes.setdefault(EventKind.CREATED, record.created_tx_hash)

        return EscrowView(
            record=record,
            status=project_record(record, now),
            timeline=project_timeline(EscrowFlags.of(record), record.expiry_date, now, tx_hashes),
            quote=self.fee_engine.quote(record.amount),
            evaluated_at=now,
            events=events,
        )

    def history(self, key: EscrowKey, viewer: str) -> List[RawEvent]:
        """Raw events of one escrow in chain order, participants only."""
        self._authorized_record(key, viewer)
        return self.store.get_events(key.scope, escrow_id=key.escrow_id)

    def list_by_participant(self, address: str, now: Optional[int] = None) -> List[EscrowSummary]:
        """Every escrow where ``address`` is depositor or receiver."""
        now = self._now(now)
        records = self.store.list_escrows(participant=normalize_address(address))
        return [EscrowSummary(record=r, status=project_record(r, now)) for r in records]

    def search(
        self,
        viewer: str,
        text: str = "",
        status: Optional[str] = STATUS_FILTER_ALL,
        now: Optional[int] = None,
    ) -> List[EscrowSummary]:
        """Viewer's escrows whose id or title contains ``text`` (case-insensitive)."""
        wanted = parse_status_filter(status)
        return [
            summary
            for summary in self.list_by_participant(viewer, now)
            if _matches_text(summary.record, text.strip())
            and (wanted is None or summary.status is wanted)
        ]

    def quote(self, amount: int) -> FeeQuote:
        return self.fee_engine.quote(amount)

    # Change notification

    def subscribe(self, handler: ChangeHandler) -> None:
        """Call ``handler(key)`` after each committed projection change."""
        self.store.add_listener(handler)

    def unsubscribe(self, handler: ChangeHandler) -> bool:
        return self.store.remove_listener(handler)
