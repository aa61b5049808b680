"""Ingestion: ordered, idempotent consumption of contract logs.

One ``IngestionPipeline`` per (chain, contract) deployment. Each pipeline
owns its checkpoint and is the only writer for its scope, so events of one
escrow are never applied concurrently. ``PipelineRunner`` drives several
pipelines in parallel threads; they share nothing but the store.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .abi import BESTCROW_EVENTS_ABI, load_abi
from .chain import LogSource, Web3LogSource, make_web3
from .config import DeploymentConfig, Settings
from .decoder import EventDecoder
from .logging_config import log_event_applied, log_pipeline_state
from .retry import Retry, RetryConfig, RetryError
from .storage import EscrowStore
from .types import ApplyOutcome, Checkpoint, DeploymentScope

logger = logging.getLogger(__name__)


def _log_position(log: Dict[str, Any]) -> tuple:
    block = log.get("blockNumber", 0)
    index = log.get("logIndex", 0)
    if isinstance(block, str):
        block = int(block, 16) if block.startswith("0x") else int(block)
    if isinstance(index, str):
        index = int(index, 16) if index.startswith("0x") else int(index)
    return (block, index)


@dataclass
class PollResult:
    """What one ``poll_once`` call covered."""

    from_block: int
    to_block: int
    head: int
    processed: int = 0
    applied: int = 0
    skipped: int = 0

    @property
    def caught_up(self) -> bool:
        return self.to_block >= self.head


class IngestionPipeline:
    """Per-deployment consumer: decode, dedup, persist, checkpoint."""

    def __init__(
        self,
        store: EscrowStore,
        source: LogSource,
        config: DeploymentConfig,
        decoder: Optional[EventDecoder] = None,
        batch_size: int = 1000,
        poll_interval: float = 4.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.store = store
        self.source = source
        self.config = config
        self.decoder = decoder or EventDecoder(contract_address=config.contract_address)
        self.batch_size = batch_size
        self.poll_interval = poll_interval

        self._stop = threading.Event()
        self._write_lock = threading.Lock()
        self.retry = Retry(retry_config or RetryConfig(), sleep=self._stop.wait)

    @property
    def scope(self) -> DeploymentScope:
        return self.config.scope

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Stop pulling new entries; the entry in progress completes."""
        self._stop.set()

    # === Entry processing ===

    def process_log(self, log: Dict[str, Any]) -> Optional[ApplyOutcome]:
        """Decode and store one log entry. Returns None if it was skipped."""
        event = self.decoder.parse_log(log, self.config.chain_id)
        if event is None:
            return None
        outcome = self.store.append_and_apply(event)
        detail = None
        if outcome is ApplyOutcome.ORPHANED:
            detail = "no Created event for this escrow; not projected"
        elif outcome is ApplyOutcome.IGNORED:
            detail = "escrow already closed or created"
        log_event_applied(self.scope, event, outcome, detail)
        return outcome

    def process_logs(self, logs: Iterable[Dict[str, Any]]) -> List[Optional[ApplyOutcome]]:
        """Process entries in (block, log index) order until stopped."""
        outcomes: List[Optional[ApplyOutcome]] = []
        with self._write_lock:
            for log in sorted(logs, key=_log_position):
                if self.stopped:
                    break
                outcomes.append(self.process_log(log))
        return outcomes

    # === Polling ===

    def resume_block(self) -> int:
        """First block to fetch: after the checkpoint, or the configured start."""
        checkpoint = self.store.get_checkpoint(self.scope)
        if checkpoint is None:
            return self.config.start_block
        return max(checkpoint.next_block(), self.config.start_block)

    def poll_once(self) -> Optional[PollResult]:
        """Fetch and process at most ``batch_size`` blocks up to the chain head.

        Returns None when there is nothing new to fetch.

        Raises:
            RetryError: If the log source keeps failing.
        """
        from_block = self.resume_block()
        head = self.retry.execute(self.source.latest_block)
        if from_block > head:
            return None

        to_block = min(head, from_block + self.batch_size - 1)
        logs = self.retry.execute(self.source.fetch_logs, from_block, to_block)

        result = PollResult(from_block=from_block, to_block=to_block, head=head)
        outcomes = self.process_logs(logs)
        result.processed = len(outcomes)
        result.applied = sum(1 for o in outcomes if o is ApplyOutcome.APPLIED)
        result.skipped = sum(1 for o in outcomes if o is None)

        if self.stopped and result.processed < len(logs):
            # Partially processed range; resume from the last stored entry
            return result

        self.store.advance_checkpoint(self.scope, Checkpoint(to_block))
        return result

    def run(self) -> None:
        """Poll until stopped. Transport failures back off and never end the loop."""
        log_pipeline_state(self.scope, "started", from_block=self.resume_block())
        failures = 0
        while not self.stopped:
            try:
                result = self.poll_once()
            except RetryError as e:
                failures += 1
                delay = self.retry.calculate_delay(failures)
                log_pipeline_state(
                    self.scope, "retrying", attempts=e.attempts, delay=round(delay, 2), error=e
                )
                self._stop.wait(delay)
                continue

            failures = 0
            if result is None or result.caught_up:
                if result is not None:
                    log_pipeline_state(self.scope, "caught_up", block=result.to_block)
                self._stop.wait(self.poll_interval)
        log_pipeline_state(self.scope, "stopped")


def build_pipeline(
    store: EscrowStore, config: DeploymentConfig, settings: Settings
) -> IngestionPipeline:
    """Wire a web3-backed pipeline for one deployment."""
    abi = load_abi(Path(settings.abi_path)) if settings.abi_path else BESTCROW_EVENTS_ABI
    decoder = EventDecoder(abi=abi, contract_address=config.contract_address)
    w3 = make_web3(config.rpc_url, timeout=settings.rpc_timeout)
    source = Web3LogSource(w3, config.contract_address, topics=decoder.topics)
    return IngestionPipeline(
        store=store,
        source=source,
        config=config,
        decoder=decoder,
        batch_size=settings.batch_size,
        poll_interval=settings.poll_interval,
        retry_config=RetryConfig.from_settings(settings),
    )


class PipelineRunner:
    """Runs independent pipelines, one thread each."""

    def __init__(self, pipelines: Iterable[IngestionPipeline]):
        self.pipelines = list(pipelines)
        scopes = [p.scope for p in self.pipelines]
        if len(set(scopes)) != len(scopes):
            raise ValueError("Each deployment may only have one pipeline")
        self._threads: List[threading.Thread] = []

    @classmethod
    def from_settings(cls, store: EscrowStore, settings: Settings) -> "PipelineRunner":
        return cls(build_pipeline(store, c, settings) for c in settings.pipeline_configs())

    def run_once(self) -> Dict[DeploymentScope, Optional[PollResult]]:
        """Poll every pipeline once, sequentially."""
        return {p.scope: p.poll_once() for p in self.pipelines}

    def start(self) -> None:
        for pipeline in self.pipelines:
            thread = threading.Thread(
                target=pipeline.run, name=f"ingest-{pipeline.scope}", daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: Optional[float] = None) -> None:
        for pipeline in self.pipelines:
            pipeline.stop()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)
