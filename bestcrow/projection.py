"""Status projection: (flags, expiry, now) -> canonical status and timeline.

Every call site derives status through ``project_status``; there is no other
status logic in the package. The decision table is evaluated top to bottom,
first match wins. Combinations the contract should never produce map to
``EscrowStatus.UNKNOWN`` so callers can alert instead of mis-rendering.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .types import EscrowRecord, EscrowStatus, EventKind, TimelineStep


@dataclass(frozen=True)
class EscrowFlags:
    """The three contract flags the projector reads."""

    is_active: bool
    is_completed: bool
    release_requested: bool

    @classmethod
    def of(cls, record: EscrowRecord) -> "EscrowFlags":
        return cls(record.is_active, record.is_completed, record.release_requested)


def is_expired(expiry_date: int, now: int) -> bool:
    """Strictly past expiry; ``now == expiry_date`` is not expired."""
    return now > expiry_date


def project_status(flags: EscrowFlags, expiry_date: int, now: int) -> EscrowStatus:
    active, completed, requested = flags.is_active, flags.is_completed, flags.release_requested

    if not active and not completed and not requested:
        return EscrowStatus.EXPIRED if is_expired(expiry_date, now) else EscrowStatus.PENDING
    if active and not completed and not requested:
        return EscrowStatus.ACTIVE
    if active and not completed and requested:
        return EscrowStatus.RELEASE_REQUESTED
    if completed and requested:
        return EscrowStatus.COMPLETED
    if not active and completed and not requested:
        return EscrowStatus.REFUNDED
    return EscrowStatus.UNKNOWN


# (milestone id, title, description, event kind whose tx marks it)
_MILESTONES = (
    ("created", "Escrow Created", "Depositor created the escrow", EventKind.CREATED),
    ("accepted", "Escrow Accepted", "Receiver accepted the escrow", EventKind.ACCEPTED),
    (
        "release_requested",
        "Release Requested",
        "Receiver requested release of the funds",
        EventKind.RELEASE_REQUESTED,
    ),
    ("released", "Funds Released", "Receiver obtained the payment", EventKind.COMPLETED),
)


def _milestone_reached(milestone: str, flags: EscrowFlags) -> bool:
    if milestone == "created":
        return True
    if milestone == "accepted":
        return flags.is_active or flags.release_requested
    if milestone == "release_requested":
        return flags.release_requested
    return flags.is_completed and flags.release_requested


def project_timeline(
    flags: EscrowFlags,
    expiry_date: int,
    now: int,
    tx_hashes: Optional[Dict[EventKind, str]] = None,
) -> List[TimelineStep]:
    """Render the ordered milestone list for an escrow.

    A never-accepted escrow past its expiry short-circuits to a two-step
    created/expired timeline. ``tx_hashes`` optionally attaches the hash of
    the event that reached each milestone.
    """
    tx_hashes = tx_hashes or {}

    if project_status(flags, expiry_date, now) is EscrowStatus.EXPIRED:
        return [
            TimelineStep(
                title="Escrow Created",
                description="Depositor created the escrow",
                completed=True,
                tx_hash=tx_hashes.get(EventKind.CREATED),
            ),
            TimelineStep(
                title="Escrow Expired",
                description="Receiver did not accept before the expiry date",
                completed=True,
            ),
        ]

    steps = []
    for milestone, title, description, kind in _MILESTONES:
        reached = _milestone_reached(milestone, flags)
        steps.append(
            TimelineStep(
                title=title,
                description=description,
                completed=reached,
                tx_hash=tx_hashes.get(kind) if reached else None,
            )
        )
    return steps


def project_record(record: EscrowRecord, now: int) -> EscrowStatus:
    """Shorthand for ``project_status`` on a stored record."""
    return project_status(EscrowFlags.of(record), record.expiry_date, now)
