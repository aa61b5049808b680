"""Tests for bestcrow.logging_config module."""

import io
import logging

import pytest

from bestcrow.logging_config import (
    configure_logging,
    get_logger,
    log_event_applied,
    log_pipeline_state,
)
from bestcrow.testing.fakes import CHAIN_ID, CONTRACT
from bestcrow.types import ApplyOutcome, DeploymentScope, EventKind

SCOPE = DeploymentScope(CHAIN_ID, CONTRACT)


@pytest.fixture(autouse=True)
def clean_bestcrow_logger():
    """Remove all handlers from the bestcrow logger before/after each test."""
    logger = logging.getLogger("bestcrow")
    handlers = list(logger.handlers)
    level = logger.level
    logger.handlers.clear()
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


class TestConfigureLogging:
    def test_sets_level_and_handler(self):
        stream = io.StringIO()
        configure_logging("debug", stream=stream)
        logger = logging.getLogger("bestcrow")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

        get_logger("ingest").debug("hello")
        assert "[bestcrow.ingest] hello" in stream.getvalue()

    def test_repeated_calls_reuse_handler(self):
        configure_logging("INFO", stream=io.StringIO())
        configure_logging("WARNING", stream=io.StringIO())
        logger = logging.getLogger("bestcrow")
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        configure_logging("chatty", stream=io.StringIO())
        assert logging.getLogger("bestcrow").level == logging.INFO


class TestGetLogger:
    def test_namespaces_under_bestcrow(self):
        assert get_logger("api").name == "bestcrow.api"
        assert get_logger("bestcrow.store").name == "bestcrow.store"


class TestStructuredHelpers:
    def test_applied_event_logs_info_with_context(self, caplog, make_event):
        event = make_event(EventKind.ACCEPTED, block=101, log_index=2)
        with caplog.at_level(logging.DEBUG, logger="bestcrow"):
            log_event_applied(SCOPE, event, ApplyOutcome.APPLIED)

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.event_kind == "Accepted"
        assert record.block_number == 101
        assert record.outcome == "applied"

    def test_orphan_logs_warning(self, caplog, make_event):
        with caplog.at_level(logging.DEBUG, logger="bestcrow"):
            log_event_applied(SCOPE, make_event(EventKind.ACCEPTED), ApplyOutcome.ORPHANED)
        assert caplog.records[-1].levelno == logging.WARNING

    def test_duplicate_logs_debug(self, caplog, make_event):
        with caplog.at_level(logging.DEBUG, logger="bestcrow"):
            log_event_applied(
                SCOPE, make_event(EventKind.CREATED), ApplyOutcome.DUPLICATE, detail="redelivered"
            )
        record = caplog.records[-1]
        assert record.levelno == logging.DEBUG
        assert "(redelivered)" in record.getMessage()

    def test_pipeline_state(self, caplog):
        with caplog.at_level(logging.INFO, logger="bestcrow"):
            log_pipeline_state(SCOPE, "retrying", delay=2.0)
            log_pipeline_state(SCOPE, "caught_up", head=150)

        retrying, caught_up = caplog.records[-2:]
        assert retrying.levelno == logging.WARNING
        assert retrying.pipeline_delay == 2.0
        assert caught_up.state == "caught_up"
        assert caught_up.getMessage().endswith("caught_up head=150")
