"""Bestcrow storage backends.

This module provides the storage abstraction layer for bestcrow:
an append-only raw event log plus the escrow projection derived from it.
"""

from .apply import apply_event, record_from_created
from .base import ChangeHandler, EscrowStore
from .schema import ALLOWED_TABLES, EVENT_TABLES, SCHEMA_VERSION, validate_table_name
from .sqlite import SQLiteEscrowStore

__all__ = [
    # Protocol
    "EscrowStore",
    "ChangeHandler",
    # Implementations
    "SQLiteEscrowStore",
    # Projection rules
    "apply_event",
    "record_from_created",
    # Schema
    "ALLOWED_TABLES",
    "EVENT_TABLES",
    "SCHEMA_VERSION",
    "validate_table_name",
]
