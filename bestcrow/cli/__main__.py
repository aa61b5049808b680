"""
Bestcrow CLI - index Bestcrow escrow contracts and query the projection.

Usage:
    bestcrow ingest [--once]
    bestcrow rebuild
    bestcrow reconcile [--backfill] [--json]
    bestcrow show CHAIN CONTRACT ID --as ADDRESS [--json]
    bestcrow list ADDRESS [--json]
    bestcrow search ADDRESS TEXT [--status S] [--json]
    bestcrow fees AMOUNT [--json]
    bestcrow serve [--host H] [--port P]
"""

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from bestcrow.chain import ChainReader, make_web3, reconcile
from bestcrow.config import Settings, get_settings
from bestcrow.errors import BestcrowError
from bestcrow.fees import FeeEngine
from bestcrow.ingest import PipelineRunner
from bestcrow.logging_config import configure_logging
from bestcrow.query import EscrowSummary, QueryService
from bestcrow.storage import SQLiteEscrowStore
from bestcrow.types import EscrowKey, normalize_address

logger = logging.getLogger(__name__)


def _query_service(settings: Settings, store: SQLiteEscrowStore) -> QueryService:
    return QueryService(
        store, FeeEngine(fee_bps=settings.fee_bps, collateral_bps=settings.collateral_bps)
    )


def _summary_dict(summary: EscrowSummary) -> Dict[str, Any]:
    r = summary.record
    return {
        "chain_id": r.chain_id,
        "contract_address": r.contract_address,
        "escrow_id": r.escrow_id,
        "title": r.title,
        "depositor": r.depositor,
        "receiver": r.receiver,
        "token": r.token,
        "amount": str(r.amount),
        "expiry_date": r.expiry_date,
        "status": summary.status.value,
    }


def _print_summaries(summaries: List[EscrowSummary], as_json: bool, empty: str) -> None:
    if as_json:
        print(json.dumps([_summary_dict(s) for s in summaries], indent=2))
        return
    if not summaries:
        print(empty)
        return
    print(f"Found {len(summaries)} escrow(s):\n")
    for s in summaries:
        r = s.record
        print(f"#{r.escrow_id} [{s.status.value}] {r.title or '(no title)'}")
        print(f"     {r.chain_id}:{r.contract_address}")
        print(f"     amount: {r.amount}  token: {'native' if r.is_native else r.token}")
        print()


# === Ingestion ===


def cmd_ingest(args, settings: Settings, store: SQLiteEscrowStore):
    """Run ingestion pipelines for every configured deployment."""
    runner = PipelineRunner.from_settings(store, settings)

    if args.once:
        for scope, result in runner.run_once().items():
            if result is None:
                print(f"{scope}: up to date")
            else:
                print(
                    f"{scope}: blocks {result.from_block}-{result.to_block} "
                    f"(head {result.head}), {result.processed} log(s), "
                    f"{result.applied} applied, {result.skipped} skipped"
                )
        return

    runner.start()
    print(f"Ingesting {len(runner.pipelines)} deployment(s). Ctrl-C to stop.")
    try:
        while runner.running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        runner.stop(timeout=30)


def cmd_rebuild(args, settings: Settings, store: SQLiteEscrowStore):
    """Re-derive every projection from the raw event log."""
    for config in settings.pipeline_configs():
        replayed = store.rebuild_projection(config.scope)
        print(f"{config.scope}: replayed {replayed} event(s)")


def cmd_reconcile(args, settings: Settings, store: SQLiteEscrowStore):
    """Compare projections against contract storage."""
    reports = []
    for config in settings.pipeline_configs():
        reader = ChainReader(
            make_web3(config.rpc_url, timeout=settings.rpc_timeout), config.contract_address
        )
        reports.append(
            reconcile(store, reader, config.chain_id, config.contract_address, args.backfill)
        )

    if args.json:
        print(json.dumps([r.to_dict() for r in reports], indent=2))
        return
    for report in reports:
        state = "consistent" if report.consistent else "INCONSISTENT"
        print(f"{report.scope}: {state} ({report.checked} checked)")
        if report.missing:
            print(f"  missing: {', '.join(map(str, report.missing))}")
        if report.mismatched:
            print(f"  mismatched: {', '.join(map(str, report.mismatched))}")
        if report.backfilled:
            print(f"  backfilled: {', '.join(map(str, report.backfilled))}")


# === Queries ===


def cmd_show(args, settings: Settings, store: SQLiteEscrowStore):
    """Show one escrow as seen by a participant."""
    key = EscrowKey(args.chain_id, normalize_address(args.contract), args.escrow_id)
    view = _query_service(settings, store).get_escrow(key, args.viewer)
    r = view.record

    if args.json:
        data = _summary_dict(EscrowSummary(record=r, status=view.status))
        data.update(
            {
                "description": r.description,
                "is_active": r.is_active,
                "is_completed": r.is_completed,
                "release_requested": r.release_requested,
                "timeline": [
                    {
                        "title": s.title,
                        "description": s.description,
                        "completed": s.completed,
                        "tx_hash": s.tx_hash,
                    }
                    for s in view.timeline
                ],
                "fee": str(view.quote.fee),
                "collateral": str(view.quote.collateral),
            }
        )
        print(json.dumps(data, indent=2))
        return

    print(f"Escrow #{r.escrow_id}: {r.title or '(no title)'}")
    print(f"Status: {view.status.value}")
    if r.description:
        print(f"Description: {r.description}")
    print(f"Depositor: {r.depositor}")
    print(f"Receiver:  {r.receiver}")
    print(f"Amount: {r.amount} ({'native' if r.is_native else r.token})")
    print(f"Fee: {view.quote.fee}  Collateral: {view.quote.collateral}")
    print()
    for step in view.timeline:
        mark = "x" if step.completed else " "
        suffix = f"  {step.tx_hash}" if step.tx_hash else ""
        print(f"  [{mark}] {step.title}{suffix}")


def cmd_list(args, settings: Settings, store: SQLiteEscrowStore):
    """List escrows where ADDRESS is depositor or receiver."""
    summaries = _query_service(settings, store).list_by_participant(args.address)
    _print_summaries(summaries, args.json, f"No escrows for {args.address}")


def cmd_search(args, settings: Settings, store: SQLiteEscrowStore):
    """Search a participant's escrows by id or title."""
    summaries = _query_service(settings, store).search(args.address, args.text, args.status)
    _print_summaries(summaries, args.json, f"No results for '{args.text}'")


def cmd_fees(args, settings: Settings, store: Optional[SQLiteEscrowStore] = None):
    """Quote fee and collateral for an amount."""
    engine = FeeEngine(fee_bps=settings.fee_bps, collateral_bps=settings.collateral_bps)
    quote = engine.quote(args.amount)
    result = {
        "amount": str(quote.amount),
        "fee": str(quote.fee),
        "collateral": str(quote.collateral),
        "creation_total": str(quote.creation_total),
        "acceptance_total": str(quote.acceptance_total),
    }
    if args.json:
        print(json.dumps(result, indent=2))
        return
    print(f"Amount:             {quote.amount}")
    print(f"Fee ({engine.fee_bps} bps):      {quote.fee}")
    print(f"Creation total:     {quote.creation_total}")
    print(f"Collateral ({engine.collateral_bps} bps): {quote.collateral}")


def cmd_serve(args, settings: Settings, store: Optional[SQLiteEscrowStore] = None):
    """Run the HTTP API."""
    import uvicorn

    # The app reads its own settings from the environment on import
    if args.db is not None:
        os.environ["BESTCROW_DB_PATH"] = str(args.db)
        get_settings.cache_clear()

    uvicorn.run(
        "bestcrow.api.main:app",
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bestcrow",
        description="Event-sourced indexer for Bestcrow escrow contracts",
    )
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # ingest
    p_ingest = subparsers.add_parser("ingest", help="Index contract events")
    p_ingest.add_argument("--once", action="store_true", help="Poll one batch and exit")

    # rebuild
    subparsers.add_parser("rebuild", help="Rebuild projections from the raw event log")

    # reconcile
    p_reconcile = subparsers.add_parser("reconcile", help="Compare projections with chain state")
    p_reconcile.add_argument(
        "--backfill", action="store_true", help="Overwrite divergent projections from chain"
    )
    p_reconcile.add_argument("--json", "-j", action="store_true")

    # show
    p_show = subparsers.add_parser("show", help="Show one escrow")
    p_show.add_argument("chain_id", type=int)
    p_show.add_argument("contract")
    p_show.add_argument("escrow_id", type=int)
    p_show.add_argument("--as", dest="viewer", required=True, help="Viewer wallet address")
    p_show.add_argument("--json", "-j", action="store_true")

    # list
    p_list = subparsers.add_parser("list", help="List a participant's escrows")
    p_list.add_argument("address")
    p_list.add_argument("--json", "-j", action="store_true")

    # search
    p_search = subparsers.add_parser("search", help="Search a participant's escrows")
    p_search.add_argument("address")
    p_search.add_argument("text")
    p_search.add_argument("--status", default="all", help="all or a status value")
    p_search.add_argument("--json", "-j", action="store_true")

    # fees
    p_fees = subparsers.add_parser("fees", help="Quote fee and collateral")
    p_fees.add_argument("amount", type=int, help="Amount in the token's smallest unit")
    p_fees.add_argument("--json", "-j", action="store_true")

    # serve
    p_serve = subparsers.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)

    return parser


COMMANDS = {
    "ingest": cmd_ingest,
    "rebuild": cmd_rebuild,
    "reconcile": cmd_reconcile,
    "show": cmd_show,
    "list": cmd_list,
    "search": cmd_search,
    "fees": cmd_fees,
    "serve": cmd_serve,
}

# Commands that never open the database
_STORELESS = {"fees", "serve"}


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
        if args.db is not None:
            settings = settings.model_copy(update={"db_path": args.db})
        configure_logging(args.log_level or settings.log_level)
        store = None if args.command in _STORELESS else SQLiteEscrowStore(settings.db_path)
    except (ValueError, BestcrowError) as e:
        logger.error(f"Failed to initialize bestcrow: {e}")
        sys.exit(1)

    try:
        COMMANDS[args.command](args, settings, store)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except BestcrowError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    main()
