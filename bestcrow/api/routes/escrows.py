"""Escrow read routes.

Every endpoint identifies the caller by the ``X-Wallet-Address`` header and
only returns escrows where that wallet is depositor or receiver.
"""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request, status

from ...errors import AccessDeniedError, EscrowNotFoundError
from ...logging_config import get_logger
from ...query import STATUS_FILTER_ALL
from ...types import EscrowKey, normalize_address
from ..auth import Viewer
from ..database import Queries
from ..models import (
    EscrowDetailResponse,
    EscrowHistoryResponse,
    EscrowListResponse,
    EscrowSummaryResponse,
    EventResponse,
)
from ..rate_limit import default_rate_limit, limiter

logger = get_logger("bestcrow.api.escrows")
router = APIRouter(prefix="/escrows", tags=["escrows"])


def _escrow_key(chain_id: int, contract: str, escrow_id: int) -> EscrowKey:
    try:
        return EscrowKey(chain_id, normalize_address(contract), escrow_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _raise_for_lookup(e: Exception) -> None:
    if isinstance(e, EscrowNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Escrow not found")
    if isinstance(e, AccessDeniedError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the depositor or receiver can view this escrow",
        )
    raise e


@router.get("", response_model=EscrowListResponse)
@limiter.limit(default_rate_limit)
def list_escrows(request: Request, viewer: Viewer, queries: Queries):
    """List every escrow where the caller is depositor or receiver."""
    summaries = queries.list_by_participant(viewer)
    return EscrowListResponse(
        escrows=[EscrowSummaryResponse.from_summary(s) for s in summaries],
        total=len(summaries),
    )


@router.get("/search", response_model=EscrowListResponse)
@limiter.limit(default_rate_limit)
def search_escrows(
    request: Request,
    viewer: Viewer,
    queries: Queries,
    q: str = "",
    status_filter: Annotated[str, Query(alias="status")] = STATUS_FILTER_ALL,
):
    """
    Search the caller's escrows by id or title (case-insensitive).

    ``status`` is ``all`` or one of the canonical statuses.
    """
    try:
        summaries = queries.search(viewer, q, status_filter)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return EscrowListResponse(
        escrows=[EscrowSummaryResponse.from_summary(s) for s in summaries],
        total=len(summaries),
    )


@router.get("/{chain_id}/{contract}/{escrow_id}", response_model=EscrowDetailResponse)
@limiter.limit(default_rate_limit)
def get_escrow(
    request: Request,
    chain_id: int,
    contract: str,
    escrow_id: int,
    viewer: Viewer,
    queries: Queries,
):
    """
    Get one escrow with its current status, timeline and fee quote.

    Status is computed at request time from the stored flags.
    """
    key = _escrow_key(chain_id, contract, escrow_id)
    logger.info(f"GET /escrows/{key}")
    try:
        view = queries.get_escrow(key, viewer)
    except (EscrowNotFoundError, AccessDeniedError) as e:
        _raise_for_lookup(e)
    return EscrowDetailResponse.from_view(view, queries.fee_engine)


@router.get(
    "/{chain_id}/{contract}/{escrow_id}/history", response_model=EscrowHistoryResponse
)
@limiter.limit(default_rate_limit)
def get_escrow_history(
    request: Request,
    chain_id: int,
    contract: str,
    escrow_id: int,
    viewer: Viewer,
    queries: Queries,
):
    """Raw contract events of one escrow in chain order."""
    key = _escrow_key(chain_id, contract, escrow_id)
    try:
        events = queries.history(key, viewer)
    except (EscrowNotFoundError, AccessDeniedError) as e:
        _raise_for_lookup(e)
    return EscrowHistoryResponse(
        chain_id=key.chain_id,
        contract_address=key.contract_address,
        escrow_id=key.escrow_id,
        events=[EventResponse.from_event(e) for e in events],
    )
