"""Tests for chain access and reconciliation."""

from unittest.mock import MagicMock, PropertyMock

import pytest

from bestcrow.chain import ChainEscrowDetails, ChainReader, Web3LogSource, reconcile
from bestcrow.errors import TransportError
from bestcrow.testing.fakes import ALICE, CHAIN_ID, CONTRACT, TOKEN, FakeReader, details_tuple
from bestcrow.types import ZERO_ADDRESS, DeploymentScope, EventKind

SCOPE = DeploymentScope(CHAIN_ID, CONTRACT)


class TestChainEscrowDetails:
    def test_from_tuple(self):
        details = ChainEscrowDetails.from_tuple(
            4, details_tuple(depositor="0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", active=True)
        )
        assert details.escrow_id == 4
        assert details.depositor == ALICE
        assert details.is_active
        assert details.is_eth
        assert details.exists

    def test_zero_depositor_means_missing(self):
        assert not ChainEscrowDetails.from_tuple(1, details_tuple(depositor=ZERO_ADDRESS)).exists


class TestReconcile:
    def test_consistent(self, store, make_event):
        store.append_and_apply(make_event(EventKind.CREATED))
        report = reconcile(store, FakeReader({1: details_tuple()}), CHAIN_ID, CONTRACT)
        assert report.consistent
        assert report.ok == [1]
        assert report.checked == 1

    def test_missing_and_mismatched(self, store, make_event):
        store.append_and_apply(make_event(EventKind.CREATED))
        reader = FakeReader({1: details_tuple(active=True), 2: details_tuple()})

        report = reconcile(store, reader, CHAIN_ID, CONTRACT)

        assert report.mismatched == [1]
        assert report.missing == [2]
        assert report.backfilled == []
        assert not report.consistent
        # Report only: projection untouched
        assert store.get_escrow(SCOPE.key(2)) is None

    def test_backfill_overwrites_projection(self, store, make_event):
        event = make_event(EventKind.CREATED)
        store.append_and_apply(event)
        reader = FakeReader(
            {1: details_tuple(active=True, completed=True, requested=True), 2: details_tuple()}
        )

        report = reconcile(store, reader, CHAIN_ID, CONTRACT, backfill=True)

        assert report.backfilled == [1, 2]
        record = store.get_escrow(SCOPE.key(1))
        assert record.is_completed and record.release_requested
        assert record.closed_by is EventKind.COMPLETED
        assert record.created_tx_hash == event.tx_hash
        assert store.get_escrow(SCOPE.key(2)).title == "Logo design"
        # The raw log is never touched by reconciliation
        assert len(store.get_events(SCOPE)) == 1

    def test_native_flag_mismatch_is_reported(self, store, make_event):
        store.append_and_apply(make_event(EventKind.CREATED, token=TOKEN))
        reader = FakeReader({1: details_tuple(token=TOKEN, is_eth=True)})
        assert reconcile(store, reader, CHAIN_ID, CONTRACT).mismatched == [1]

    def test_backfill_follows_is_eth_flag(self, store):
        reader = FakeReader(
            {1: details_tuple(token=TOKEN, is_eth=True), 2: details_tuple(token=TOKEN, is_eth=False)}
        )
        reconcile(store, reader, CHAIN_ID, CONTRACT, backfill=True)
        assert store.get_escrow(SCOPE.key(1)).is_native
        erc20 = store.get_escrow(SCOPE.key(2))
        assert not erc20.is_native
        assert erc20.token == TOKEN

    def test_skips_unset_ids(self, store):
        reader = FakeReader({1: details_tuple(depositor=ZERO_ADDRESS)})
        report = reconcile(store, reader, CHAIN_ID, CONTRACT)
        assert report.checked == 0
        assert report.consistent

    def test_report_to_dict(self, store):
        report = reconcile(store, FakeReader({}), CHAIN_ID, CONTRACT)
        assert report.to_dict()["contract_address"] == CONTRACT


class TestWeb3LogSource:
    def test_fetch_logs_filters_by_contract_and_topics(self):
        w3 = MagicMock()
        w3.eth.get_logs.return_value = [{"blockNumber": 5}]
        source = Web3LogSource(w3, CONTRACT, topics=["0x01", "0x02"])

        assert source.fetch_logs(1, 10) == [{"blockNumber": 5}]
        params = w3.eth.get_logs.call_args[0][0]
        assert params["fromBlock"] == 1
        assert params["toBlock"] == 10
        assert params["address"].lower() == CONTRACT
        assert params["topics"] == [["0x01", "0x02"]]

    def test_halves_range_when_node_refuses(self):
        w3 = MagicMock()
        w3.eth.get_logs.side_effect = [
            ValueError("query returned more than 10000 results"),
            [{"blockNumber": 1}],
            [{"blockNumber": 6}],
        ]
        source = Web3LogSource(w3, CONTRACT)

        logs = source.fetch_logs(1, 10)

        assert [log["blockNumber"] for log in logs] == [1, 6]
        ranges = [(c[0][0]["fromBlock"], c[0][0]["toBlock"]) for c in w3.eth.get_logs.call_args_list]
        assert ranges == [(1, 10), (1, 5), (6, 10)]

    def test_rpc_failure_is_transport_error(self):
        w3 = MagicMock()
        w3.eth.get_logs.side_effect = ConnectionError("reset")
        with pytest.raises(TransportError):
            Web3LogSource(w3, CONTRACT).fetch_logs(1, 2)

    def test_latest_block_failure_is_transport_error(self):
        w3 = MagicMock()
        type(w3.eth).block_number = PropertyMock(side_effect=TimeoutError("stalled"))
        with pytest.raises(TransportError):
            Web3LogSource(w3, CONTRACT).latest_block()


class TestChainReader:
    def test_calls_contract(self):
        w3 = MagicMock()
        contract = w3.eth.contract.return_value
        contract.functions.nextEscrowId.return_value.call.return_value = 3
        contract.functions.escrowDetails.return_value.call.return_value = details_tuple(active=True)

        reader = ChainReader(w3, CONTRACT)

        assert reader.next_escrow_id() == 3
        details = reader.escrow_details(2)
        assert details.is_active
        contract.functions.escrowDetails.assert_called_with(2)

    def test_call_failure_is_transport_error(self):
        w3 = MagicMock()
        w3.eth.contract.return_value.functions.nextEscrowId.return_value.call.side_effect = (
            OSError("down")
        )
        with pytest.raises(TransportError):
            ChainReader(w3, CONTRACT).next_escrow_id()
