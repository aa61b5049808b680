"""
Shared types for bestcrow.

The escrow record, the raw event and the enums describing them are the
contract between the decoder, the ingestion pipeline, the store and the
query layer. Amounts and timestamps are plain Python ints everywhere.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

# Reserved "zero address" sentinel; as a token it denotes the native asset.
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def utc_timestamp() -> int:
    """Current time as whole seconds since the epoch."""
    return int(time.time())


def normalize_address(address: str) -> str:
    """Lowercase hex form used for storage and comparisons."""
    if not isinstance(address, str):
        raise ValueError(f"Address must be a string, got {type(address).__name__}")
    value = address.strip().lower()
    if not value.startswith("0x") or len(value) != 42:
        raise ValueError(f"Invalid address: {address!r}")
    try:
        int(value[2:], 16)
    except ValueError:
        raise ValueError(f"Invalid address: {address!r}")
    return value


# === Enums ===


class EventKind(Enum):
    """Contract events consumed by the ingestion pipeline."""

    CREATED = "Created"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    RELEASE_REQUESTED = "ReleaseRequested"
    COMPLETED = "Completed"
    REFUNDED = "Refunded"
    FEES_WITHDRAWN = "FeesWithdrawn"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_KINDS

    @property
    def has_projection(self) -> bool:
        """Whether the event mutates an escrow record at all."""
        return self is not EventKind.FEES_WITHDRAWN


TERMINAL_KINDS = frozenset({EventKind.COMPLETED, EventKind.REFUNDED, EventKind.REJECTED})


class EscrowStatus(Enum):
    """Canonical lifecycle status derived by the status projector."""

    PENDING = "pending"
    EXPIRED = "expired"  # never accepted, past expiry
    ACTIVE = "active"
    RELEASE_REQUESTED = "release_requested"
    COMPLETED = "completed"
    REFUNDED = "refunded"  # closed without release
    UNKNOWN = "unknown"


class ApplyOutcome(Enum):
    """What happened when a raw event reached the store."""

    APPLIED = "applied"  # appended and projected
    RECORDED = "recorded"  # appended, kind has no projection
    DUPLICATE = "duplicate"  # dedup key already present, no-op
    ORPHANED = "orphaned"  # appended, escrow does not exist in projection
    IGNORED = "ignored"  # appended, record already frozen by a terminal event


# === Keys and positions ===


@dataclass(frozen=True)
class EscrowKey:
    """Composite identity of an escrow: ids are only unique per deployment."""

    chain_id: int
    contract_address: str
    escrow_id: int

    @property
    def scope(self) -> "DeploymentScope":
        return DeploymentScope(self.chain_id, self.contract_address)

    def __str__(self) -> str:
        return f"{self.chain_id}:{self.contract_address}:{self.escrow_id}"


@dataclass(frozen=True)
class DeploymentScope:
    """One (chain, contract) pair: the unit of ordering, dedup and checkpointing."""

    chain_id: int
    contract_address: str

    def key(self, escrow_id: int) -> EscrowKey:
        return EscrowKey(self.chain_id, self.contract_address, escrow_id)

    def __str__(self) -> str:
        return f"{self.chain_id}:{self.contract_address}"


@dataclass(frozen=True)
class Checkpoint:
    """Last durably processed position of a pipeline.

    ``log_index`` is None once the whole block has been scanned.
    """

    block_number: int
    log_index: Optional[int] = None

    @property
    def block_complete(self) -> bool:
        return self.log_index is None

    def next_block(self) -> int:
        """First block a resumed pipeline must fetch."""
        return self.block_number + 1 if self.block_complete else self.block_number


# === Records ===


@dataclass
class RawEvent:
    """One on-chain occurrence; immutable once stored.

    The dedup key is (chain_id, contract_address, tx_hash, kind).
    """

    kind: EventKind
    chain_id: int
    contract_address: str
    tx_hash: str
    block_number: int
    log_index: int
    escrow_id: Optional[int] = None  # None for FeesWithdrawn
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple:
        return (self.chain_id, self.contract_address, self.tx_hash, self.kind.value)

    @property
    def scope(self) -> DeploymentScope:
        return DeploymentScope(self.chain_id, self.contract_address)

    @property
    def escrow_key(self) -> Optional[EscrowKey]:
        if self.escrow_id is None:
            return None
        return EscrowKey(self.chain_id, self.contract_address, self.escrow_id)


@dataclass
class EscrowRecord:
    """Current projection of one escrow, mirroring contract storage."""

    chain_id: int
    contract_address: str
    escrow_id: int
    depositor: str
    receiver: str
    token: str
    amount: int
    expiry_date: int
    created_at: int
    title: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = False
    is_completed: bool = False
    release_requested: bool = False
    # Audit metadata
    closed_by: Optional[EventKind] = None
    created_tx_hash: Optional[str] = None
    updated_block: Optional[int] = None
    updated_log_index: Optional[int] = None

    @property
    def key(self) -> EscrowKey:
        return EscrowKey(self.chain_id, self.contract_address, self.escrow_id)

    @property
    def is_native(self) -> bool:
        return self.token == ZERO_ADDRESS

    @property
    def is_frozen(self) -> bool:
        return self.closed_by is not None

    def involves(self, address: str) -> bool:
        """Whether ``address`` is the depositor or the receiver."""
        try:
            addr = normalize_address(address)
        except ValueError:
            return False
        return addr in (self.depositor, self.receiver)


@dataclass
class TimelineStep:
    """One milestone of the rendered escrow timeline."""

    title: str
    description: str
    completed: bool
    tx_hash: Optional[str] = None
