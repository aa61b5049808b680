"""Tests for the read API."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from bestcrow.api.database import get_query_service, get_store
from bestcrow.api.main import app
from bestcrow.api.rate_limit import get_rate_limit_key, limiter
from bestcrow.fees import FeeEngine
from bestcrow.query import QueryService
from bestcrow.testing.fakes import ALICE, BOB, CAROL, CHAIN_ID, CONTRACT, ONE_ETHER, T0
from bestcrow.types import EventKind

DETAIL = f"/escrows/{CHAIN_ID}/{CONTRACT}/1"


def wallet(address):
    return {"X-Wallet-Address": address}


@pytest.fixture
def client(store):
    """Test client bound to a temporary store and a fixed clock."""
    limiter.reset()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_query_service] = lambda: QueryService(
        store, FeeEngine(fee_bps=50, collateral_bps=5000), clock=lambda: T0
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def escrows(store, make_event):
    """Escrow 1 active (Alice->Bob), escrow 2 pending (Bob->Carol)."""
    store.append_and_apply(make_event(EventKind.CREATED, title="Logo design"))
    store.append_and_apply(make_event(EventKind.ACCEPTED, block=101, receiver=BOB))
    store.append_and_apply(
        make_event(
            EventKind.CREATED,
            escrow_id=2,
            block=102,
            depositor=BOB,
            receiver=CAROL,
            title="Website copy",
        )
    )
    return store


class TestRoot:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "bestcrow"

    def test_health_reports_checkpoints(self, client, escrows):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["deployments"][0]["contract_address"] == CONTRACT

    def test_health_degraded_when_store_fails(self, client):
        broken = MagicMock()
        broken.get_checkpoint.side_effect = RuntimeError("disk I/O error")
        app.dependency_overrides[get_store] = lambda: broken
        data = client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["database"].startswith("error:")


class TestListEscrows:
    def test_requires_wallet_header(self, client):
        assert client.get("/escrows").status_code == 401

    def test_rejects_malformed_wallet(self, client):
        assert client.get("/escrows", headers=wallet("alice")).status_code == 400

    def test_lists_participant_escrows(self, client, escrows):
        data = client.get("/escrows", headers=wallet(BOB)).json()
        assert data["total"] == 2
        assert [(e["escrow_id"], e["status"]) for e in data["escrows"]] == [
            (1, "active"),
            (2, "pending"),
        ]

    def test_amount_is_decimal_string(self, client, escrows):
        data = client.get("/escrows", headers=wallet(ALICE)).json()
        assert data["escrows"][0]["amount"] == str(ONE_ETHER)


class TestSearchEscrows:
    def test_text_search(self, client, escrows):
        data = client.get("/escrows/search", params={"q": "WEBSITE"}, headers=wallet(CAROL)).json()
        assert [e["escrow_id"] for e in data["escrows"]] == [2]

    def test_status_filter(self, client, escrows):
        response = client.get(
            "/escrows/search", params={"status": "active"}, headers=wallet(BOB)
        )
        assert [e["escrow_id"] for e in response.json()["escrows"]] == [1]

    def test_unknown_status_is_bad_request(self, client, escrows):
        response = client.get(
            "/escrows/search", params={"status": "lost"}, headers=wallet(BOB)
        )
        assert response.status_code == 400


class TestEscrowDetail:
    def test_detail(self, client, escrows):
        response = client.get(DETAIL, headers=wallet(ALICE))
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "active"
        assert data["title"] == "Logo design"
        assert data["evaluated_at"] == T0
        assert [s["completed"] for s in data["timeline"]] == [True, True, False, False]
        assert data["fees"]["fee"] == str(ONE_ETHER * 50 // 10_000)
        assert data["fees"]["collateral"] == str(ONE_ETHER // 2)

    def test_checksummed_contract_in_path(self, client, escrows):
        path = f"/escrows/{CHAIN_ID}/0x77C385fD50164Fde71A6c29732F9F7763AAC6753/1"
        assert client.get(path, headers=wallet(BOB)).status_code == 200

    def test_non_participant_forbidden(self, client, escrows):
        assert client.get(DETAIL, headers=wallet(CAROL)).status_code == 403

    def test_unknown_escrow(self, client, escrows):
        path = f"/escrows/{CHAIN_ID}/{CONTRACT}/42"
        assert client.get(path, headers=wallet(ALICE)).status_code == 404

    def test_bad_contract(self, client, escrows):
        path = f"/escrows/{CHAIN_ID}/0xnope/1"
        assert client.get(path, headers=wallet(ALICE)).status_code == 400

    def test_missing_wallet(self, client, escrows):
        assert client.get(DETAIL).status_code == 401

    def test_history(self, client, escrows):
        response = client.get(f"{DETAIL}/history", headers=wallet(BOB))
        assert response.status_code == 200
        events = response.json()["events"]
        assert [e["kind"] for e in events] == ["Created", "Accepted"]
        assert events[0]["payload"]["amount"] == str(ONE_ETHER)

    def test_history_forbidden(self, client, escrows):
        assert client.get(f"{DETAIL}/history", headers=wallet(CAROL)).status_code == 403


class TestFees:
    def test_quote(self, client):
        data = client.get("/fees", params={"amount": "10000"}).json()
        assert data == {
            "amount": "10000",
            "fee": "50",
            "collateral": "5000",
            "creation_total": "10050",
            "acceptance_total": "5000",
            "fee_bps": 50,
            "collateral_bps": 5000,
        }

    def test_large_amount_is_exact(self, client):
        amount = 2**256 - 1
        data = client.get("/fees", params={"amount": str(amount)}).json()
        assert data["fee"] == str(amount * 50 // 10_000)

    @pytest.mark.parametrize(
        "amount", ["-1", "1.5", "abc", "", "\u00b2", "\u0663", "1" * 5000, str(2**256)]
    )
    def test_invalid_amount(self, client, amount):
        assert client.get("/fees", params={"amount": amount}).status_code == 400


class TestRateLimitKey:
    def test_wallet_header_wins(self):
        request = MagicMock()
        request.headers = {"x-wallet-address": " 0xABC "}
        assert get_rate_limit_key(request) == "wallet:0xabc"

    def test_falls_back_to_client_ip(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "10.0.0.7"
        assert get_rate_limit_key(request) == "10.0.0.7"
