"""SQLite storage backend for bestcrow.

Layout:
- one append-only table per event kind, keyed by the dedup tuple
  (chain_id, contract_address, tx_hash, kind)
- one projection table (``escrows``) keyed by (chain_id, contract_address, escrow_id)
- one checkpoint row per (chain_id, contract_address) pipeline

Writes run inside ``BEGIN IMMEDIATE`` transactions so appending an event,
updating its escrow and advancing the checkpoint commit together.
"""

import contextlib
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..types import (
    ApplyOutcome,
    Checkpoint,
    DeploymentScope,
    EscrowKey,
    EscrowRecord,
    EventKind,
    RawEvent,
    normalize_address,
)
from .apply import apply_event
from .base import ChangeHandler
from .schema import (
    EVENT_COMMON_COLUMNS,
    EVENT_TABLES,
    UINT_TEXT_COLUMNS,
    init_db,
    validate_table_name,
)

logger = logging.getLogger(__name__)

_ESCROW_COLUMNS = (
    "chain_id",
    "contract_address",
    "escrow_id",
    "depositor",
    "receiver",
    "token",
    "amount",
    "expiry_date",
    "created_at",
    "title",
    "description",
    "is_active",
    "is_completed",
    "release_requested",
    "closed_by",
    "created_tx_hash",
    "updated_block",
    "updated_log_index",
    "updated_at",
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _checkpoint_rank(block_number: int, log_index: Optional[int]) -> tuple:
    # A fully scanned block ranks after every log index inside it
    return (block_number, float("inf") if log_index is None else log_index)


class SQLiteEscrowStore:
    """SQLite-based store for escrow events and projections.

    Connections are opened per operation; a process-wide lock serializes
    writers so two events for the same escrow never interleave.
    """

    # Milliseconds a writer waits on a locked database before failing
    BUSY_TIMEOUT_MS = 5000

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.RLock()
        self._listeners: List[ChangeHandler] = []
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={self.BUSY_TIMEOUT_MS}")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Read connection; closed on exit."""
        conn = self._get_conn()
        try:
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def _transaction(self):
        """Write transaction: BEGIN IMMEDIATE, commit on success, rollback on error."""
        with self._write_lock:
            conn = self._get_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except Exception as e:
                logger.debug(f"Transaction failed, rolling back: {e}")
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            init_db(conn)

    def close(self) -> None:
        """No persistent connections are held; kept for API symmetry."""

    # === Row conversion ===

    def _row_to_record(self, row: sqlite3.Row) -> EscrowRecord:
        return EscrowRecord(
            chain_id=row["chain_id"],
            contract_address=row["contract_address"],
            escrow_id=row["escrow_id"],
            depositor=row["depositor"],
            receiver=row["receiver"],
            token=row["token"],
            amount=int(row["amount"]),
            expiry_date=int(row["expiry_date"]),
            created_at=int(row["created_at"]),
            title=row["title"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            is_completed=bool(row["is_completed"]),
            release_requested=bool(row["release_requested"]),
            closed_by=EventKind(row["closed_by"]) if row["closed_by"] else None,
            created_tx_hash=row["created_tx_hash"],
            updated_block=row["updated_block"],
            updated_log_index=row["updated_log_index"],
        )

    def _record_values(self, record: EscrowRecord) -> tuple:
        return (
            record.chain_id,
            record.contract_address,
            record.escrow_id,
            record.depositor,
            record.receiver,
            record.token,
            str(record.amount),
            str(record.expiry_date),
            str(record.created_at),
            record.title,
            record.description,
            int(record.is_active),
            int(record.is_completed),
            int(record.release_requested),
            record.closed_by.value if record.closed_by else None,
            record.created_tx_hash,
            record.updated_block,
            record.updated_log_index,
            _utc_now(),
        )

    def _row_to_event(self, row: sqlite3.Row, payload_columns: Iterable[str]) -> RawEvent:
        payload: Dict[str, Any] = {}
        for column in payload_columns:
            value = row[column]
            if column in UINT_TEXT_COLUMNS and value is not None:
                value = int(value)
            payload[column] = value
        return RawEvent(
            kind=EventKind(row["kind"]),
            chain_id=row["chain_id"],
            contract_address=row["contract_address"],
            tx_hash=row["tx_hash"],
            block_number=row["block_number"],
            log_index=row["log_index"],
            escrow_id=row["escrow_id"],
            payload=payload,
        )

    # === Internal helpers (run inside an open connection) ===

    def _has_event(self, conn: sqlite3.Connection, event: RawEvent) -> bool:
        table = validate_table_name(EVENT_TABLES[event.kind][0])
        row = conn.execute(
            f"SELECT 1 FROM {table} WHERE chain_id = ? AND contract_address = ? "
            "AND tx_hash = ? AND kind = ?",
            event.dedup_key,
        ).fetchone()
        return row is not None

    def _insert_event(self, conn: sqlite3.Connection, event: RawEvent) -> None:
        table, payload_columns = EVENT_TABLES[event.kind]
        validate_table_name(table)
        columns = EVENT_COMMON_COLUMNS + payload_columns + ("recorded_at",)
        values: List[Any] = [
            event.chain_id,
            event.contract_address,
            event.tx_hash,
            event.kind.value,
            event.block_number,
            event.log_index,
            event.escrow_id,
        ]
        for column in payload_columns:
            value = event.payload.get(column)
            if column in UINT_TEXT_COLUMNS and value is not None:
                value = str(value)
            values.append(value)
        values.append(_utc_now())
        placeholders = ", ".join("?" for _ in columns)
        conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )

    def _load_escrow(self, conn: sqlite3.Connection, key: EscrowKey) -> Optional[EscrowRecord]:
        row = conn.execute(
            "SELECT * FROM escrows WHERE chain_id = ? AND contract_address = ? AND escrow_id = ?",
            (key.chain_id, key.contract_address, key.escrow_id),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def _save_escrow(self, conn: sqlite3.Connection, record: EscrowRecord) -> None:
        placeholders = ", ".join("?" for _ in _ESCROW_COLUMNS)
        conn.execute(
            f"INSERT OR REPLACE INTO escrows ({', '.join(_ESCROW_COLUMNS)}) VALUES ({placeholders})",
            self._record_values(record),
        )

    def _read_checkpoint(
        self, conn: sqlite3.Connection, scope: DeploymentScope
    ) -> Optional[Checkpoint]:
        row = conn.execute(
            "SELECT block_number, log_index FROM checkpoints "
            "WHERE chain_id = ? AND contract_address = ?",
            (scope.chain_id, scope.contract_address),
        ).fetchone()
        if row is None:
            return None
        return Checkpoint(block_number=row["block_number"], log_index=row["log_index"])

    def _write_checkpoint(
        self, conn: sqlite3.Connection, scope: DeploymentScope, checkpoint: Checkpoint
    ) -> bool:
        current = self._read_checkpoint(conn, scope)
        if current is not None and _checkpoint_rank(
            checkpoint.block_number, checkpoint.log_index
        ) <= _checkpoint_rank(current.block_number, current.log_index):
            return False
        conn.execute(
            """
            INSERT INTO checkpoints (chain_id, contract_address, block_number, log_index, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(chain_id, contract_address) DO UPDATE SET
                block_number = excluded.block_number,
                log_index = excluded.log_index,
                updated_at = excluded.updated_at
            """,
            (
                scope.chain_id,
                scope.contract_address,
                checkpoint.block_number,
                checkpoint.log_index,
                _utc_now(),
            ),
        )
        return True

    def _notify(self, key: EscrowKey) -> None:
        for handler in list(self._listeners):
            try:
                handler(key)
            except Exception as e:
                logger.error(f"Change handler {handler!r} failed for {key}: {e}")

    # === Events ===

    def append_and_apply(self, event: RawEvent) -> ApplyOutcome:
        """Append, project and checkpoint one event in a single transaction."""
        position = Checkpoint(event.block_number, event.log_index)
        with self._transaction() as conn:
            if self._has_event(conn, event):
                self._write_checkpoint(conn, event.scope, position)
                return ApplyOutcome.DUPLICATE

            self._insert_event(conn, event)

            outcome = ApplyOutcome.RECORDED
            key = event.escrow_key
            if key is not None:
                current = self._load_escrow(conn, key)
                updated, outcome = apply_event(current, event)
                if outcome is ApplyOutcome.APPLIED:
                    self._save_escrow(conn, updated)

            self._write_checkpoint(conn, event.scope, position)

        if outcome is ApplyOutcome.APPLIED:
            self._notify(key)
        return outcome

    def has_event(self, event: RawEvent) -> bool:
        with self._connect() as conn:
            return self._has_event(conn, event)

    def _select_events(
        self,
        conn: sqlite3.Connection,
        scope: DeploymentScope,
        escrow_id: Optional[int] = None,
        kinds: Optional[Iterable[EventKind]] = None,
    ) -> List[RawEvent]:
        wanted = list(kinds) if kinds is not None else list(EVENT_TABLES)
        events: List[RawEvent] = []
        for kind in wanted:
            table, payload_columns = EVENT_TABLES[kind]
            validate_table_name(table)
            sql = f"SELECT * FROM {table} WHERE chain_id = ? AND contract_address = ?"
            params: List[Any] = [scope.chain_id, scope.contract_address]
            if escrow_id is not None:
                sql += " AND escrow_id = ?"
                params.append(escrow_id)
            for row in conn.execute(sql, params).fetchall():
                events.append(self._row_to_event(row, payload_columns))
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    def get_events(
        self,
        scope: DeploymentScope,
        escrow_id: Optional[int] = None,
        kinds: Optional[Iterable[EventKind]] = None,
    ) -> List[RawEvent]:
        """Raw events of a scope ordered by (block_number, log_index)."""
        with self._connect() as conn:
            return self._select_events(conn, scope, escrow_id, kinds)

    # === Projection ===

    def get_escrow(self, key: EscrowKey) -> Optional[EscrowRecord]:
        with self._connect() as conn:
            return self._load_escrow(conn, key)

    def list_escrows(
        self,
        scope: Optional[DeploymentScope] = None,
        participant: Optional[str] = None,
    ) -> List[EscrowRecord]:
        sql = "SELECT * FROM escrows WHERE 1 = 1"
        params: List[Any] = []
        if scope is not None:
            sql += " AND chain_id = ? AND contract_address = ?"
            params.extend([scope.chain_id, scope.contract_address])
        if participant is not None:
            address = normalize_address(participant)
            sql += " AND (depositor = ? OR receiver = ?)"
            params.extend([address, address])
        sql += " ORDER BY chain_id, contract_address, escrow_id"
        with self._connect() as conn:
            return [self._row_to_record(row) for row in conn.execute(sql, params).fetchall()]

    def upsert_escrow(self, record: EscrowRecord) -> None:
        with self._transaction() as conn:
            self._save_escrow(conn, record)
        self._notify(record.key)

    def rebuild_projection(self, scope: DeploymentScope) -> int:
        """Drop the scope's projection and replay its raw event log in chain order.

        The read, the replay and the rewrite share one write transaction, so
        no event can be committed between reading the log and replacing the
        projection.
        """
        records: Dict[int, EscrowRecord] = {}
        orphaned = 0
        with self._transaction() as conn:
            events = self._select_events(conn, scope)
            for event in events:
                if event.escrow_id is None:
                    continue
                updated, outcome = apply_event(records.get(event.escrow_id), event)
                if outcome is ApplyOutcome.APPLIED:
                    records[event.escrow_id] = updated
                elif outcome is ApplyOutcome.ORPHANED:
                    orphaned += 1

            conn.execute(
                "DELETE FROM escrows WHERE chain_id = ? AND contract_address = ?",
                (scope.chain_id, scope.contract_address),
            )
            for record in records.values():
                self._save_escrow(conn, record)

        if orphaned:
            logger.warning(f"{scope}: {orphaned} events reference escrows with no Created event")
        logger.info(f"{scope}: rebuilt {len(records)} escrows from {len(events)} events")
        for escrow_id in records:
            self._notify(scope.key(escrow_id))
        return len(events)

    # === Checkpoints ===

    def get_checkpoint(self, scope: DeploymentScope) -> Optional[Checkpoint]:
        with self._connect() as conn:
            return self._read_checkpoint(conn, scope)

    def advance_checkpoint(self, scope: DeploymentScope, checkpoint: Checkpoint) -> bool:
        with self._transaction() as conn:
            return self._write_checkpoint(conn, scope, checkpoint)

    # === Change notification ===

    def add_listener(self, handler: ChangeHandler) -> None:
        if handler not in self._listeners:
            self._listeners.append(handler)

    def remove_listener(self, handler: ChangeHandler) -> bool:
        if handler in self._listeners:
            self._listeners.remove(handler)
            return True
        return False
