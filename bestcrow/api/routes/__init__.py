"""API routes."""

from .escrows import router as escrows_router
from .fees import router as fees_router

__all__ = [
    "escrows_router",
    "fees_router",
]
