"""How each event kind changes an escrow projection.

Pure functions shared by live ingestion and by projection rebuilds, so a
replay of the raw event log yields exactly what live application produced.
"""

from typing import Optional, Tuple

from ..types import ApplyOutcome, EscrowRecord, EventKind, RawEvent


def record_from_created(event: RawEvent) -> EscrowRecord:
    """Build the initial projection for a Created event."""
    p = event.payload
    return EscrowRecord(
        chain_id=event.chain_id,
        contract_address=event.contract_address,
        escrow_id=event.escrow_id,
        depositor=p["depositor"],
        receiver=p["receiver"],
        token=p["token"],
        amount=int(p["amount"]),
        expiry_date=int(p["expiry_date"]),
        created_at=int(p["created_at"]),
        title=p.get("title") or None,
        description=p.get("description") or None,
        created_tx_hash=event.tx_hash,
        updated_block=event.block_number,
        updated_log_index=event.log_index,
    )


def apply_event(
    record: Optional[EscrowRecord], event: RawEvent
) -> Tuple[Optional[EscrowRecord], ApplyOutcome]:
    """Apply ``event`` to the current projection (None if absent).

    Returns the new projection and the outcome. ``record`` is mutated in
    place when the event applies. Never fabricates a record: a non-Created
    event with no existing record is ORPHANED, and a second Created for an
    existing escrow is IGNORED.
    """
    if not event.kind.has_projection:
        return record, ApplyOutcome.RECORDED

    if event.kind is EventKind.CREATED:
        if record is not None:
            return record, ApplyOutcome.IGNORED
        return record_from_created(event), ApplyOutcome.APPLIED

    if record is None:
        return None, ApplyOutcome.ORPHANED
    if record.is_frozen:
        return record, ApplyOutcome.IGNORED

    kind = event.kind
    if kind is EventKind.ACCEPTED:
        record.is_active = True
        if event.payload.get("receiver"):
            record.receiver = event.payload["receiver"]
    elif kind is EventKind.RELEASE_REQUESTED:
        record.release_requested = True
    elif kind is EventKind.COMPLETED:
        record.is_active = False
        record.is_completed = True
        record.release_requested = True
    elif kind in (EventKind.REFUNDED, EventKind.REJECTED):
        record.is_active = False
        record.is_completed = True
        record.release_requested = False

    if kind.is_terminal:
        record.closed_by = kind
    record.updated_block = event.block_number
    record.updated_log_index = event.log_index
    return record, ApplyOutcome.APPLIED
