"""Event decoding: raw chain log entries -> typed ``RawEvent`` objects.

The decoder is pure. It accepts either web3 log objects (HexBytes values)
or JSON-RPC dicts (hex strings) and never touches storage.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from eth_abi import decode as abi_decode
from hexbytes import HexBytes

from .abi import BESTCROW_EVENTS_ABI, EVENT_NAME_TO_KIND, event_topic
from .errors import DecodeError
from .types import EventKind, RawEvent, normalize_address

logger = logging.getLogger(__name__)

# Payload fields each kind must carry after decoding
REQUIRED_FIELDS: Dict[EventKind, tuple] = {
    EventKind.CREATED: (
        "escrow_id",
        "depositor",
        "receiver",
        "token",
        "amount",
        "expiry_date",
        "created_at",
    ),
    EventKind.ACCEPTED: ("escrow_id", "receiver"),
    EventKind.REJECTED: ("escrow_id", "receiver"),
    EventKind.RELEASE_REQUESTED: ("escrow_id",),
    EventKind.COMPLETED: ("escrow_id", "receiver", "amount"),
    EventKind.REFUNDED: ("escrow_id", "depositor"),
    EventKind.FEES_WITHDRAWN: ("token", "amount"),
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not a chain integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"Cannot interpret {value!r} as an integer")


def _to_hex(value: Any) -> str:
    h = HexBytes(value).hex()
    return (h if h.startswith("0x") else "0x" + h).lower()


def _normalize_value(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return normalize_address(value)
    if isinstance(value, (bytes, bytearray)):
        return _to_hex(value)
    return value


class EventDecoder:
    """Maps raw log entries to ``RawEvent`` objects.

    Args:
        abi: Event ABI entries; defaults to the built-in Bestcrow events.
        contract_address: If set, logs emitted by any other address are rejected.
    """

    def __init__(
        self,
        abi: Optional[List[Dict[str, Any]]] = None,
        contract_address: Optional[str] = None,
    ):
        self.contract_address = normalize_address(contract_address) if contract_address else None
        self._by_topic: Dict[str, Dict[str, Any]] = {}
        for entry in abi if abi is not None else BESTCROW_EVENTS_ABI:
            if entry.get("type") != "event" or entry.get("name") not in EVENT_NAME_TO_KIND:
                continue
            self._by_topic[event_topic(entry)] = entry

    @property
    def topics(self) -> List[str]:
        """Topic0 values this decoder recognises (usable as a log filter)."""
        return list(self._by_topic)

    def decode(self, log: Dict[str, Any], chain_id: int) -> RawEvent:
        """Decode one log entry.

        Raises:
            DecodeError: Unknown topic, malformed payload, removed log or
                foreign contract address.
        """
        tx_hash = block_number = log_index = None
        try:
            tx_hash = _to_hex(log["transactionHash"])
            block_number = _to_int(log["blockNumber"])
            log_index = _to_int(log["logIndex"])
            address = normalize_address(str(log["address"]))
            topics = [_to_hex(t) for t in log.get("topics") or []]
            data = bytes(HexBytes(log.get("data") or b""))
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Malformed log entry: {e}", tx_hash, block_number, log_index)

        if log.get("removed"):
            raise DecodeError("Log was removed by a reorg", tx_hash, block_number, log_index)
        if self.contract_address and address != self.contract_address:
            raise DecodeError(
                f"Log emitted by {address}, expected {self.contract_address}",
                tx_hash,
                block_number,
                log_index,
            )
        if not topics:
            raise DecodeError("Log has no topics", tx_hash, block_number, log_index)

        entry = self._by_topic.get(topics[0])
        if entry is None:
            raise DecodeError(f"Unknown event topic {topics[0]}", tx_hash, block_number, log_index)
        kind = EVENT_NAME_TO_KIND[entry["name"]]

        try:
            payload = self._decode_args(entry, topics[1:], data)
        except Exception as e:
            # eth_abi raises a variety of decoding errors for malformed payloads
            raise DecodeError(
                f"Malformed {entry['name']} payload: {e}", tx_hash, block_number, log_index
            ) from e

        missing = [f for f in REQUIRED_FIELDS[kind] if f not in payload]
        if missing:
            raise DecodeError(
                f"{entry['name']} missing fields: {', '.join(missing)}",
                tx_hash,
                block_number,
                log_index,
            )

        escrow_id = payload.pop("escrow_id", None)
        if escrow_id is not None and not 0 < escrow_id < 2**63:
            raise DecodeError(
                f"Invalid escrow id {escrow_id}", tx_hash, block_number, log_index
            )

        return RawEvent(
            kind=kind,
            chain_id=chain_id,
            contract_address=address,
            tx_hash=tx_hash,
            block_number=block_number,
            log_index=log_index,
            escrow_id=escrow_id,
            payload=payload,
        )

    def _decode_args(self, entry: Dict[str, Any], topics: List[str], data: bytes) -> Dict[str, Any]:
        inputs = entry.get("inputs", [])
        indexed = [i for i in inputs if i.get("indexed")]
        plain = [i for i in inputs if not i.get("indexed")]

        if len(topics) != len(indexed):
            raise ValueError(f"expected {len(indexed)} indexed topics, got {len(topics)}")

        args: Dict[str, Any] = {}
        for param, topic in zip(indexed, topics):
            if param["type"] in ("string", "bytes") or param["type"].endswith("]"):
                # Dynamic indexed values are only available as their hash
                args[_snake(param["name"])] = topic
                continue
            (value,) = abi_decode([param["type"]], bytes(HexBytes(topic)))
            args[_snake(param["name"])] = _normalize_value(param["type"], value)

        if plain:
            values = abi_decode([i["type"] for i in plain], data)
            for param, value in zip(plain, values):
                args[_snake(param["name"])] = _normalize_value(param["type"], value)
        return args

    def parse_log(self, log: Dict[str, Any], chain_id: int) -> Optional[RawEvent]:
        """Decode a log, returning None (and logging) when it cannot be decoded."""
        try:
            return self.decode(log, chain_id)
        except DecodeError as e:
            logger.warning(
                f"Skipping undecodable log: {e}",
                extra={
                    "tx_hash": e.tx_hash,
                    "block_number": e.block_number,
                    "log_index": e.log_index,
                },
            )
            return None

    def parse_logs(self, logs: Iterable[Dict[str, Any]], chain_id: int) -> List[RawEvent]:
        """Decode many logs, dropping the ones that fail."""
        results = []
        for log in logs:
            event = self.parse_log(log, chain_id)
            if event is not None:
                results.append(event)
        return results
