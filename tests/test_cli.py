"""Tests for the bestcrow CLI."""

import json
from unittest.mock import MagicMock

import pytest

from bestcrow.cli import __main__ as cli
from bestcrow.cli.__main__ import build_parser, main
from bestcrow.config import get_settings
from bestcrow.storage import SQLiteEscrowStore
from bestcrow.testing.fakes import (
    ALICE,
    BOB,
    CAROL,
    CHAIN_ID,
    CONTRACT,
    ONE_ETHER,
    EventFactory,
    FakeReader,
    details_tuple,
)
from bestcrow.types import DeploymentScope, EventKind


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    monkeypatch.delenv("BESTCROW_DEPLOYMENTS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_path(tmp_path):
    """Database with escrow 1 (Alice->Bob, active) and escrow 2 (Bob->Carol, pending)."""
    path = tmp_path / "cli.db"
    store = SQLiteEscrowStore(path)
    make_event = EventFactory()
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
    store.close()
    return path


def run(db_path, *argv):
    main(["--db", str(db_path), *argv])


class TestParser:
    def test_show_requires_viewer(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["show", "17000", CONTRACT, "1"])

    def test_search_defaults_to_all(self):
        args = build_parser().parse_args(["search", ALICE, "logo"])
        assert args.status == "all"


class TestFees:
    def test_fees_json(self, capsys):
        main(["fees", "10000", "--json"])
        assert json.loads(capsys.readouterr().out) == {
            "amount": "10000",
            "fee": "50",
            "collateral": "5000",
            "creation_total": "10050",
            "acceptance_total": "5000",
        }

    def test_fees_text(self, capsys):
        main(["fees", str(ONE_ETHER)])
        out = capsys.readouterr().out
        assert "Creation total:" in out
        assert str(ONE_ETHER // 2) in out

    def test_negative_amount_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["fees", "-5"])
        assert exc_info.value.code == 1


class TestQueries:
    def test_list(self, db_path, capsys):
        run(db_path, "list", BOB, "--json")
        data = json.loads(capsys.readouterr().out)
        assert [(e["escrow_id"], e["status"]) for e in data] == [(1, "active"), (2, "pending")]

    def test_list_empty(self, db_path, capsys):
        run(db_path, "list", "0x" + "9" * 40)
        assert "No escrows" in capsys.readouterr().out

    def test_search(self, db_path, capsys):
        run(db_path, "search", CAROL, "website", "--json")
        assert [e["escrow_id"] for e in json.loads(capsys.readouterr().out)] == [2]

    def test_search_status_filter(self, db_path, capsys):
        run(db_path, "search", BOB, "", "--status", "pending", "--json")
        assert [e["escrow_id"] for e in json.loads(capsys.readouterr().out)] == [2]

    def test_show_json(self, db_path, capsys):
        run(db_path, "show", str(CHAIN_ID), CONTRACT, "1", "--as", ALICE, "--json")
        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "active"
        assert data["collateral"] == str(ONE_ETHER // 2)
        assert [s["completed"] for s in data["timeline"]] == [True, True, False, False]

    def test_show_text(self, db_path, capsys):
        run(db_path, "show", str(CHAIN_ID), CONTRACT, "1", "--as", BOB)
        out = capsys.readouterr().out
        assert "Escrow #1: Logo design" in out
        assert "[x] Escrow Created" in out

    def test_show_unknown_escrow_exits(self, db_path):
        with pytest.raises(SystemExit) as exc_info:
            run(db_path, "show", str(CHAIN_ID), CONTRACT, "9", "--as", ALICE)
        assert exc_info.value.code == 1

    def test_show_non_participant_exits(self, db_path):
        with pytest.raises(SystemExit):
            run(db_path, "show", str(CHAIN_ID), CONTRACT, "1", "--as", CAROL)


class TestMaintenance:
    def test_rebuild(self, db_path, capsys):
        run(db_path, "rebuild")
        assert "replayed 3 event(s)" in capsys.readouterr().out
        store = SQLiteEscrowStore(db_path)
        assert store.get_escrow(DeploymentScope(CHAIN_ID, CONTRACT).key(1)).is_active
        store.close()

    def test_reconcile_reports_missing(self, db_path, capsys, monkeypatch):
        reader = FakeReader({1: details_tuple(active=True), 2: details_tuple(), 3: details_tuple()})
        monkeypatch.setattr(cli, "make_web3", MagicMock())
        monkeypatch.setattr(cli, "ChainReader", MagicMock(return_value=reader))

        run(db_path, "reconcile", "--json")

        report = json.loads(capsys.readouterr().out)[0]
        assert report["missing"] == [3]
        assert report["mismatched"] == [2]
        assert report["ok"] == [1]


class TestServe:
    def test_db_flag_reaches_the_app(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BESTCROW_DB_PATH", "unused.db")
        run_server = MagicMock()
        monkeypatch.setattr("uvicorn.run", run_server)
        db = tmp_path / "served.db"

        main(["--db", str(db), "serve", "--port", "9000"])

        assert run_server.call_args[0][0] == "bestcrow.api.main:app"
        assert run_server.call_args[1]["port"] == 9000
        assert get_settings().db_path == db
