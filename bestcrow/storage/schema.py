"""Database schema for bestcrow SQLite storage.

Contains:
- Schema DDL (SCHEMA) and version tracking (SCHEMA_VERSION)
- Per-kind event table layout (EVENT_TABLES)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
"""

import logging
import sqlite3
from typing import Dict, Tuple

from ..types import EventKind

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Event kind -> (table, payload columns). Every event table also carries the
# common columns in EVENT_COMMON_COLUMNS and is keyed by the dedup tuple.
EVENT_TABLES: Dict[EventKind, Tuple[str, Tuple[str, ...]]] = {
    EventKind.CREATED: (
        "escrow_created_events",
        (
            "depositor",
            "receiver",
            "token",
            "amount",
            "expiry_date",
            "created_at",
            "title",
            "description",
        ),
    ),
    EventKind.ACCEPTED: ("escrow_accepted_events", ("receiver",)),
    EventKind.REJECTED: ("escrow_rejected_events", ("receiver",)),
    EventKind.RELEASE_REQUESTED: ("release_requested_events", ()),
    EventKind.COMPLETED: ("escrow_completed_events", ("receiver", "amount")),
    EventKind.REFUNDED: ("escrow_refunded_events", ("depositor",)),
    EventKind.FEES_WITHDRAWN: ("fees_withdrawn_events", ("token", "amount")),
}

EVENT_COMMON_COLUMNS = (
    "chain_id",
    "contract_address",
    "tx_hash",
    "kind",
    "block_number",
    "log_index",
    "escrow_id",
)

# uint256 payload values are stored as decimal TEXT; SQLite integers are 64-bit
UINT_TEXT_COLUMNS = frozenset({"amount", "expiry_date", "created_at"})

ALLOWED_TABLES = frozenset(
    {table for table, _ in EVENT_TABLES.values()}
    | {"escrows", "checkpoints", "schema_version"}
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


def _event_table_ddl(table: str, columns: Tuple[str, ...]) -> str:
    payload = "".join(f"    {c} TEXT,\n" for c in columns)
    return f"""
CREATE TABLE IF NOT EXISTS {table} (
    chain_id INTEGER NOT NULL,
    contract_address TEXT NOT NULL,
    tx_hash TEXT NOT NULL,
    kind TEXT NOT NULL,
    block_number INTEGER NOT NULL,
    log_index INTEGER NOT NULL,
    escrow_id INTEGER,
{payload}    recorded_at TEXT NOT NULL,
    PRIMARY KEY (chain_id, contract_address, tx_hash, kind)
);
CREATE INDEX IF NOT EXISTS idx_{table}_escrow ON {table}(chain_id, contract_address, escrow_id);
CREATE INDEX IF NOT EXISTS idx_{table}_position ON {table}(chain_id, contract_address, block_number, log_index);
"""


SCHEMA = (
    """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Current projection, one row per escrow
CREATE TABLE IF NOT EXISTS escrows (
    chain_id INTEGER NOT NULL,
    contract_address TEXT NOT NULL,
    escrow_id INTEGER NOT NULL,
    depositor TEXT NOT NULL,
    receiver TEXT NOT NULL,
    token TEXT NOT NULL,
    amount TEXT NOT NULL,       -- uint256 as decimal string
    expiry_date TEXT NOT NULL,  -- uint256 seconds as decimal string
    created_at TEXT NOT NULL,
    title TEXT,
    description TEXT,
    is_active INTEGER NOT NULL DEFAULT 0,
    is_completed INTEGER NOT NULL DEFAULT 0,
    release_requested INTEGER NOT NULL DEFAULT 0,
    closed_by TEXT,             -- terminal event kind, NULL while open
    created_tx_hash TEXT,
    updated_block INTEGER,
    updated_log_index INTEGER,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (chain_id, contract_address, escrow_id)
);
CREATE INDEX IF NOT EXISTS idx_escrows_depositor ON escrows(depositor);
CREATE INDEX IF NOT EXISTS idx_escrows_receiver ON escrows(receiver);

-- Ingestion checkpoints, one per (chain, contract) pipeline
CREATE TABLE IF NOT EXISTS checkpoints (
    chain_id INTEGER NOT NULL,
    contract_address TEXT NOT NULL,
    block_number INTEGER NOT NULL,
    log_index INTEGER,          -- NULL once the block is fully scanned
    updated_at TEXT NOT NULL,
    PRIMARY KEY (chain_id, contract_address)
);
"""
    + "".join(_event_table_ddl(table, cols) for table, cols in EVENT_TABLES.values())
)


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables and record the schema version."""
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Updating schema version {row[0]} -> {SCHEMA_VERSION}")
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
