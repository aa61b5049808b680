"""Bestcrow contract ABI fragments and helpers.

Only the pieces the indexer needs: the seven escrow events and the two
read-only calls used for reconciliation. A full ABI (Hardhat artifact or raw
JSON array) can be loaded with ``load_abi`` to override the built-in one.
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from web3 import Web3

from .types import EventKind


def _input(name: str, type_: str, indexed: bool = False) -> Dict[str, Any]:
    return {"name": name, "type": type_, "indexed": indexed}


def _event(name: str, *inputs: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "event", "name": name, "anonymous": False, "inputs": list(inputs)}


BESTCROW_EVENTS_ABI: List[Dict[str, Any]] = [
    _event(
        "EscrowCreated",
        _input("escrowId", "uint256", indexed=True),
        _input("depositor", "address", indexed=True),
        _input("receiver", "address", indexed=True),
        _input("token", "address"),
        _input("amount", "uint256"),
        _input("expiryDate", "uint256"),
        _input("createdAt", "uint256"),
        _input("title", "string"),
        _input("description", "string"),
    ),
    _event(
        "EscrowAccepted",
        _input("escrowId", "uint256", indexed=True),
        _input("receiver", "address", indexed=True),
    ),
    _event(
        "EscrowRejected",
        _input("escrowId", "uint256", indexed=True),
        _input("receiver", "address", indexed=True),
    ),
    _event(
        "ReleaseRequested",
        _input("escrowId", "uint256", indexed=True),
    ),
    _event(
        "EscrowCompleted",
        _input("escrowId", "uint256", indexed=True),
        _input("receiver", "address", indexed=True),
        _input("amount", "uint256"),
    ),
    _event(
        "EscrowRefunded",
        _input("escrowId", "uint256", indexed=True),
        _input("depositor", "address", indexed=True),
    ),
    _event(
        "FeesWithdrawn",
        _input("token", "address", indexed=True),
        _input("amount", "uint256"),
    ),
]

BESTCROW_VIEW_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "nextEscrowId",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "escrowDetails",
        "stateMutability": "view",
        "inputs": [{"name": "escrowId", "type": "uint256"}],
        "outputs": [
            {"name": "depositor", "type": "address"},
            {"name": "receiver", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "expiryDate", "type": "uint256"},
            {"name": "createdAt", "type": "uint256"},
            {"name": "isActive", "type": "bool"},
            {"name": "isCompleted", "type": "bool"},
            {"name": "isEth", "type": "bool"},
            {"name": "releaseRequested", "type": "bool"},
            {"name": "title", "type": "string"},
            {"name": "description", "type": "string"},
        ],
    },
]

BESTCROW_ABI: List[Dict[str, Any]] = BESTCROW_EVENTS_ABI + BESTCROW_VIEW_ABI

# Solidity event name -> domain event kind
EVENT_NAME_TO_KIND: Dict[str, EventKind] = {
    "EscrowCreated": EventKind.CREATED,
    "EscrowAccepted": EventKind.ACCEPTED,
    "EscrowRejected": EventKind.REJECTED,
    "ReleaseRequested": EventKind.RELEASE_REQUESTED,
    "EscrowCompleted": EventKind.COMPLETED,
    "EscrowRefunded": EventKind.REFUNDED,
    "FeesWithdrawn": EventKind.FEES_WITHDRAWN,
}


def event_signature(entry: Dict[str, Any]) -> str:
    """Canonical signature, e.g. ``ReleaseRequested(uint256)``."""
    types = ",".join(i["type"] for i in entry.get("inputs", []))
    return f"{entry['name']}({types})"


def event_topic(entry: Dict[str, Any]) -> str:
    """Keccak topic0 of an event ABI entry as 0x-prefixed lowercase hex."""
    digest = Web3.keccak(text=event_signature(entry)).hex()
    return digest if digest.startswith("0x") else "0x" + digest


def load_abi(path: Path) -> List[Dict[str, Any]]:
    """Load an ABI from a raw JSON array or a Hardhat artifact (``abi`` field).

    Raises:
        ValueError: If the file holds neither shape.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get("abi"), list):
        return data["abi"]
    if isinstance(data, list):
        return data
    raise ValueError(f"No ABI found in {path}")
