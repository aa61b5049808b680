"""Chain access: log fetching for ingestion and contract reads for reconciliation.

The ingestion pipeline and reconciler only depend on the ``LogSource`` and
``EscrowReader`` protocols; the web3-backed classes here are the production
implementations. Every RPC failure is surfaced as ``TransportError`` so the
caller's retry policy applies uniformly.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from web3 import Web3

from .abi import BESTCROW_VIEW_ABI
from .errors import TransportError
from .storage import EscrowStore
from .types import (
    ZERO_ADDRESS,
    DeploymentScope,
    EscrowKey,
    EscrowRecord,
    EventKind,
    normalize_address,
)

logger = logging.getLogger(__name__)


def make_web3(rpc_url: str, timeout: float = 30.0) -> Web3:
    """HTTP web3 client whose requests give up after ``timeout`` seconds."""
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


class LogSource(Protocol):
    """Ordered log delivery for one (chain, contract) deployment."""

    def latest_block(self) -> int:
        ...

    def fetch_logs(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        ...


class Web3LogSource:
    """``eth_getLogs`` polling for one contract address."""

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        topics: Optional[Sequence[str]] = None,
    ):
        self.w3 = w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.topics = list(topics) if topics else None

    def latest_block(self) -> int:
        try:
            return int(self.w3.eth.block_number)
        except Exception as e:
            raise TransportError(f"Failed to read chain head: {e}") from e

    def fetch_logs(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        """Logs in [from_block, to_block], halving the range if the node refuses it."""
        logs: List[Dict[str, Any]] = []
        current = from_block
        span = to_block - from_block + 1

        while current <= to_block:
            batch_to = min(current + span - 1, to_block)
            params: Dict[str, Any] = {
                "fromBlock": current,
                "toBlock": batch_to,
                "address": self.contract_address,
            }
            if self.topics:
                # topic0 must be any of our event signatures
                params["topics"] = [self.topics]
            try:
                batch = self.w3.eth.get_logs(params)
            except ValueError as e:
                msg = str(e).lower()
                if span > 1 and ("query returned more than" in msg or "too many" in msg):
                    span = max(span // 2, 1)
                    logger.warning(
                        f"get_logs too large ({current}-{batch_to}), reducing range to {span}"
                    )
                    continue
                raise TransportError(f"get_logs {current}-{batch_to} failed: {e}") from e
            except Exception as e:
                raise TransportError(f"get_logs {current}-{batch_to} failed: {e}") from e
            logs.extend(dict(log) for log in batch)
            current = batch_to + 1

        return logs


# === Contract reads ===


@dataclass
class ChainEscrowDetails:
    """Named view of the ``escrowDetails`` tuple."""

    escrow_id: int
    depositor: str
    receiver: str
    token: str
    amount: int
    expiry_date: int
    created_at: int
    is_active: bool
    is_completed: bool
    is_eth: bool
    release_requested: bool
    title: str
    description: str

    @property
    def exists(self) -> bool:
        # Unset mapping slots come back zeroed
        return self.depositor != ZERO_ADDRESS

    @classmethod
    def from_tuple(cls, escrow_id: int, values: Sequence[Any]) -> "ChainEscrowDetails":
        (
            depositor,
            receiver,
            token,
            amount,
            expiry_date,
            created_at,
            is_active,
            is_completed,
            is_eth,
            release_requested,
            title,
            description,
        ) = values
        return cls(
            escrow_id=escrow_id,
            depositor=normalize_address(depositor),
            receiver=normalize_address(receiver),
            token=normalize_address(token),
            amount=int(amount),
            expiry_date=int(expiry_date),
            created_at=int(created_at),
            is_active=bool(is_active),
            is_completed=bool(is_completed),
            is_eth=bool(is_eth),
            release_requested=bool(release_requested),
            title=title,
            description=description,
        )


class EscrowReader(Protocol):
    def next_escrow_id(self) -> int:
        ...

    def escrow_details(self, escrow_id: int) -> ChainEscrowDetails:
        ...


class ChainReader:
    """Read-only contract calls used to reconcile the projection."""

    def __init__(self, w3: Web3, contract_address: str):
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=BESTCROW_VIEW_ABI
        )

    def next_escrow_id(self) -> int:
        try:
            return int(self.contract.functions.nextEscrowId().call())
        except Exception as e:
            raise TransportError(f"nextEscrowId call failed: {e}") from e

    def escrow_details(self, escrow_id: int) -> ChainEscrowDetails:
        try:
            values = self.contract.functions.escrowDetails(escrow_id).call()
        except Exception as e:
            raise TransportError(f"escrowDetails({escrow_id}) call failed: {e}") from e
        return ChainEscrowDetails.from_tuple(escrow_id, values)


# === Reconciliation ===


@dataclass
class ReconcileReport:
    """Outcome of comparing the projection with contract storage."""

    scope: DeploymentScope
    checked: int = 0
    ok: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)
    mismatched: List[int] = field(default_factory=list)
    backfilled: List[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.missing and not self.mismatched

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.scope.chain_id,
            "contract_address": self.scope.contract_address,
            "checked": self.checked,
            "ok": self.ok,
            "missing": self.missing,
            "mismatched": self.mismatched,
            "backfilled": self.backfilled,
        }


def _differs(record: EscrowRecord, details: ChainEscrowDetails) -> bool:
    return (
        record.is_active != details.is_active
        or record.is_completed != details.is_completed
        or record.release_requested != details.release_requested
        or record.depositor != details.depositor
        or record.receiver != details.receiver
        or record.amount != details.amount
        or record.expiry_date != details.expiry_date
        or record.is_native != details.is_eth
    )


def record_from_chain(
    key: EscrowKey, details: ChainEscrowDetails, existing: Optional[EscrowRecord] = None
) -> EscrowRecord:
    """Projection rebuilt from contract storage, keeping known audit metadata."""
    closed_by = None
    if details.is_completed:
        # Rejected and Refunded leave identical flags; Refunded is the default
        closed_by = EventKind.COMPLETED if details.release_requested else EventKind.REFUNDED
        if existing is not None and existing.closed_by is not None:
            closed_by = existing.closed_by
    return EscrowRecord(
        chain_id=key.chain_id,
        contract_address=key.contract_address,
        escrow_id=key.escrow_id,
        depositor=details.depositor,
        receiver=details.receiver,
        # isEth is authoritative; the live projection derives it from the token
        token=ZERO_ADDRESS if details.is_eth else details.token,
        amount=details.amount,
        expiry_date=details.expiry_date,
        created_at=details.created_at,
        title=details.title or None,
        description=details.description or None,
        is_active=details.is_active,
        is_completed=details.is_completed,
        release_requested=details.release_requested,
        closed_by=closed_by,
        created_tx_hash=existing.created_tx_hash if existing else None,
        updated_block=existing.updated_block if existing else None,
        updated_log_index=existing.updated_log_index if existing else None,
    )


def reconcile(
    store: EscrowStore,
    reader: EscrowReader,
    chain_id: int,
    contract_address: str,
    backfill: bool = False,
) -> ReconcileReport:
    """Compare every on-chain escrow with its projection.

    Escrow ids are enumerated from 1 to ``nextEscrowId - 1``. With
    ``backfill`` set, missing or mismatched projections are overwritten from
    contract storage; the raw event log is never touched.
    """
    scope = DeploymentScope(chain_id, normalize_address(contract_address))
    report = ReconcileReport(scope=scope)

    upper = reader.next_escrow_id()
    for escrow_id in range(1, upper):
        details = reader.escrow_details(escrow_id)
        if not details.exists:
            continue
        report.checked += 1
        key = scope.key(escrow_id)
        record = store.get_escrow(key)

        if record is None:
            report.missing.append(escrow_id)
        elif _differs(record, details):
            report.mismatched.append(escrow_id)
        else:
            report.ok.append(escrow_id)
            continue

        if backfill:
            store.upsert_escrow(record_from_chain(key, details, record))
            report.backfilled.append(escrow_id)

    if report.consistent:
        logger.info(f"{scope}: {report.checked} escrows match chain state")
    else:
        logger.warning(
            f"{scope}: {len(report.missing)} missing, {len(report.mismatched)} mismatched "
            f"of {report.checked} escrows"
        )
    return report
