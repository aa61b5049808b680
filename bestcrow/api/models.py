"""Pydantic models for API responses.

uint256 amounts are serialized as decimal strings; JSON numbers cannot
carry them without loss in most clients.
"""

from typing import Any

from pydantic import BaseModel

from ..fees import FeeEngine, FeeQuote
from ..query import EscrowSummary, EscrowView
from ..types import EscrowRecord, RawEvent, TimelineStep

# =============================================================================
# Fees
# =============================================================================


class FeeQuoteResponse(BaseModel):
    """Fee and collateral for one escrow amount."""
    amount: str
    fee: str
    collateral: str
    creation_total: str  # amount + fee, sent by the depositor
    acceptance_total: str  # collateral, locked by the receiver
    fee_bps: int
    collateral_bps: int

    @classmethod
    def from_quote(cls, quote: FeeQuote, engine: FeeEngine) -> "FeeQuoteResponse":
        return cls(
            amount=str(quote.amount),
            fee=str(quote.fee),
            collateral=str(quote.collateral),
            creation_total=str(quote.creation_total),
            acceptance_total=str(quote.acceptance_total),
            fee_bps=engine.fee_bps,
            collateral_bps=engine.collateral_bps,
        )


# =============================================================================
# Escrows
# =============================================================================


class TimelineStepResponse(BaseModel):
    title: str
    description: str
    completed: bool
    tx_hash: str | None = None

    @classmethod
    def from_step(cls, step: TimelineStep) -> "TimelineStepResponse":
        return cls(
            title=step.title,
            description=step.description,
            completed=step.completed,
            tx_hash=step.tx_hash,
        )


class EscrowSummaryResponse(BaseModel):
    """One row of a list or search result."""
    chain_id: int
    contract_address: str
    escrow_id: int
    depositor: str
    receiver: str
    token: str
    is_native: bool
    amount: str
    expiry_date: int
    created_at: int
    title: str | None = None
    status: str

    @staticmethod
    def _record_fields(record: EscrowRecord) -> dict[str, Any]:
        return {
            "chain_id": record.chain_id,
            "contract_address": record.contract_address,
            "escrow_id": record.escrow_id,
            "depositor": record.depositor,
            "receiver": record.receiver,
            "token": record.token,
            "is_native": record.is_native,
            "amount": str(record.amount),
            "expiry_date": record.expiry_date,
            "created_at": record.created_at,
            "title": record.title,
        }

    @classmethod
    def from_summary(cls, summary: EscrowSummary) -> "EscrowSummaryResponse":
        return cls(**cls._record_fields(summary.record), status=summary.status.value)


class EscrowDetailResponse(EscrowSummaryResponse):
    """Full escrow view with timeline and fee quote."""
    description: str | None = None
    is_active: bool
    is_completed: bool
    release_requested: bool
    closed_by: str | None = None
    timeline: list[TimelineStepResponse]
    fees: FeeQuoteResponse
    evaluated_at: int

    @classmethod
    def from_view(cls, view: EscrowView, engine: FeeEngine) -> "EscrowDetailResponse":
        record = view.record
        return cls(
            **cls._record_fields(record),
            status=view.status.value,
            description=record.description,
            is_active=record.is_active,
            is_completed=record.is_completed,
            release_requested=record.release_requested,
            closed_by=record.closed_by.value if record.closed_by else None,
            timeline=[TimelineStepResponse.from_step(s) for s in view.timeline],
            fees=FeeQuoteResponse.from_quote(view.quote, engine),
            evaluated_at=view.evaluated_at,
        )


class EscrowListResponse(BaseModel):
    escrows: list[EscrowSummaryResponse]
    total: int


class EventResponse(BaseModel):
    """One raw contract event."""
    kind: str
    tx_hash: str
    block_number: int
    log_index: int
    payload: dict[str, Any]

    @classmethod
    def from_event(cls, event: RawEvent) -> "EventResponse":
        payload = {
            k: str(v) if isinstance(v, int) and not isinstance(v, bool) else v
            for k, v in event.payload.items()
        }
        return cls(
            kind=event.kind.value,
            tx_hash=event.tx_hash,
            block_number=event.block_number,
            log_index=event.log_index,
            payload=payload,
        )


class EscrowHistoryResponse(BaseModel):
    chain_id: int
    contract_address: str
    escrow_id: int
    events: list[EventResponse]


# =============================================================================
# Health
# =============================================================================


class DeploymentHealth(BaseModel):
    chain_id: int
    contract_address: str
    checkpoint_block: int | None = None
    checkpoint_log_index: int | None = None


class HealthResponse(BaseModel):
    status: str
    database: str
    deployments: list[DeploymentHealth] = []
