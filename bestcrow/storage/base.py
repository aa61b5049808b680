"""Storage protocol for bestcrow backends.

This defines the interface the ingestion pipeline and the query service
rely on. Currently supported:
- SQLiteEscrowStore: file-backed store with one table per event kind
"""

from typing import Callable, Iterable, List, Optional, Protocol, runtime_checkable

from ..types import (
    ApplyOutcome,
    Checkpoint,
    DeploymentScope,
    EscrowKey,
    EscrowRecord,
    EventKind,
    RawEvent,
)

ChangeHandler = Callable[[EscrowKey], None]


@runtime_checkable
class EscrowStore(Protocol):
    """Durable keyed storage for raw events and escrow projections."""

    # Events
    def append_and_apply(self, event: RawEvent) -> ApplyOutcome:
        """Append a raw event, project it and advance the checkpoint atomically.

        Returns DUPLICATE (and changes nothing but the checkpoint) when the
        dedup key is already stored.
        """
        ...

    def has_event(self, event: RawEvent) -> bool:
        """Whether an event with the same dedup key is stored."""
        ...

    def get_events(
        self,
        scope: DeploymentScope,
        escrow_id: Optional[int] = None,
        kinds: Optional[Iterable[EventKind]] = None,
    ) -> List[RawEvent]:
        """Raw events of a scope in chain order, optionally for one escrow."""
        ...

    # Projection
    def get_escrow(self, key: EscrowKey) -> Optional[EscrowRecord]:
        """Current projection for one escrow."""
        ...

    def list_escrows(
        self,
        scope: Optional[DeploymentScope] = None,
        participant: Optional[str] = None,
    ) -> List[EscrowRecord]:
        """Projections, optionally restricted to a scope and/or participant."""
        ...

    def upsert_escrow(self, record: EscrowRecord) -> None:
        """Overwrite a projection directly (reconciliation backfill)."""
        ...

    def rebuild_projection(self, scope: DeploymentScope) -> int:
        """Re-derive a scope's projection from its raw events. Returns events replayed."""
        ...

    # Checkpoints
    def get_checkpoint(self, scope: DeploymentScope) -> Optional[Checkpoint]:
        """Last processed position of the scope's pipeline."""
        ...

    def advance_checkpoint(self, scope: DeploymentScope, checkpoint: Checkpoint) -> bool:
        """Move the checkpoint forward; never regresses. Returns True if moved."""
        ...

    # Change notification
    def add_listener(self, handler: ChangeHandler) -> None:
        """Register a handler called with the key of each committed change."""
        ...

    def remove_listener(self, handler: ChangeHandler) -> bool:
        """Unregister a handler. Returns False if it was not registered."""
        ...
