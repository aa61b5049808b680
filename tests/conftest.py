"""
Pytest fixtures and test configuration for bestcrow tests.
"""

import pytest

from bestcrow.config import DeploymentConfig
from bestcrow.decoder import EventDecoder
from bestcrow.ingest import IngestionPipeline
from bestcrow.retry import RetryConfig
from bestcrow.storage import SQLiteEscrowStore
from bestcrow.testing.fakes import CHAIN_ID, CONTRACT, EventFactory, FakeLogSource, LogBuilder


@pytest.fixture
def logs():
    """Log builder for the default deployment."""
    return LogBuilder()


@pytest.fixture
def make_event():
    return EventFactory()


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite store in a temp directory."""
    return SQLiteEscrowStore(tmp_path / "bestcrow.db")


@pytest.fixture
def decoder():
    return EventDecoder(contract_address=CONTRACT)


@pytest.fixture
def deployment():
    return DeploymentConfig(
        chain_id=CHAIN_ID,
        contract_address=CONTRACT,
        start_block=100,
        rpc_url="http://127.0.0.1:8545",
    )


@pytest.fixture
def source():
    return FakeLogSource()


@pytest.fixture
def pipeline(store, source, deployment, decoder):
    """Pipeline over the fake source with instant, jitter-free retries."""
    return IngestionPipeline(
        store=store,
        source=source,
        config=deployment,
        decoder=decoder,
        batch_size=10,
        poll_interval=0.01,
        retry_config=RetryConfig(max_attempts=3, initial_delay=0.0, jitter=False),
    )
