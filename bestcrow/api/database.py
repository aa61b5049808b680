"""Store and query-service dependencies for the API."""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends

from ..config import Settings, get_settings
from ..fees import FeeEngine
from ..query import QueryService
from ..storage import EscrowStore, SQLiteEscrowStore


@lru_cache
def _open_store(db_path: Path) -> SQLiteEscrowStore:
    return SQLiteEscrowStore(db_path)


def get_store(settings: Annotated[Settings, Depends(get_settings)]) -> EscrowStore:
    """FastAPI dependency for the escrow store (one per database path)."""
    return _open_store(Path(settings.db_path))


def get_query_service(
    store: Annotated[EscrowStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> QueryService:
    """FastAPI dependency for the read API."""
    return QueryService(
        store,
        FeeEngine(fee_bps=settings.fee_bps, collateral_bps=settings.collateral_bps),
    )


# Type aliases for dependency injection
Store = Annotated[EscrowStore, Depends(get_store)]
Queries = Annotated[QueryService, Depends(get_query_service)]
