"""
Tests for wizard logging configuration.

Verifies that filing correlation ids reach structured log output and
that wizard events are logged with their extra data.
"""

import json
import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config.settings import WizardSettings
from services.logging_config import (
    JsonFormatter,
    ReadableFormatter,
    WizardEventLogger,
    configure_from_settings,
    configure_logging,
    filing_id_var,
    get_logger,
    log_performance,
    personal_filing_id_var,
)


def make_record(message="hello", **extra_data):
    record = logging.LogRecord(
        name="wizard.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    if extra_data:
        record.extra_data = extra_data
    return record


@pytest.fixture
def preserve_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_formatter_includes_context_ids():
    filing_token = filing_id_var.set("filing-1")
    person_token = personal_filing_id_var.set("pf-9")
    try:
        output = json.loads(JsonFormatter().format(make_record(section="about")))
    finally:
        filing_id_var.reset(filing_token)
        personal_filing_id_var.reset(person_token)

    assert output["message"] == "hello"
    assert output["level"] == "INFO"
    assert output["filing_id"] == "filing-1"
    assert output["personal_filing_id"] == "pf-9"
    assert output["section"] == "about"


def test_json_formatter_without_context():
    output = json.loads(JsonFormatter().format(make_record()))
    assert "filing_id" not in output


def test_readable_formatter_appends_extras():
    text = ReadableFormatter().format(make_record("saved", record_id="pf-1"))
    assert "[wizard.test] saved" in text
    assert "record_id=pf-1" in text


def test_context_logger_merges_bound_fields(caplog):
    logger = get_logger("wizard.test", filing_id="filing-7", unused=None)
    with caplog.at_level(logging.INFO, logger="wizard.test"):
        logger.info("bound", extra={"extra_data": {"step": "about"}})

    record = caplog.records[-1]
    assert record.extra_data == {"step": "about", "filing_id": "filing-7"}


def test_event_logger_skips_unchanged_phase(caplog):
    events = WizardEventLogger("filing-1")
    with caplog.at_level(logging.INFO, logger="wizard.session"):
        events.log_transition("NextSection", "PRIMARY_ACTIVE", "PRIMARY_ACTIVE")
        events.log_transition("CompletePrimary", "PRIMARY_ACTIVE", "SPOUSE_CHECKPOINT")

    assert len(caplog.records) == 1
    record = caplog.records[0]
    assert "PRIMARY_ACTIVE -> SPOUSE_CHECKPOINT" in record.getMessage()
    assert record.extra_data["action"] == "CompletePrimary"
    assert record.extra_data["filing_id"] == "filing-1"


def test_event_logger_ignores_empty_clears(caplog):
    events = WizardEventLogger()
    with caplog.at_level(logging.INFO, logger="wizard.session"):
        events.log_fields_cleared("income.sources", [])
        events.log_fields_cleared("income.sources", ["income.t4Slips"])

    assert len(caplog.records) == 1
    assert caplog.records[0].extra_data["cleared_fields"] == ["income.t4Slips"]


@pytest.mark.asyncio
async def test_log_performance_wraps_coroutines(caplog):
    @log_performance("quote")
    async def quote():
        return 42

    with caplog.at_level(logging.INFO, logger="performance"):
        assert await quote() == 42

    assert caplog.records[-1].getMessage() == "quote completed"
    assert "duration_ms" in caplog.records[-1].extra_data


def test_log_performance_reraises(caplog):
    @log_performance()
    def explode():
        raise ValueError("boom")

    with caplog.at_level(logging.ERROR, logger="performance"):
        with pytest.raises(ValueError):
            explode()

    assert caplog.records[-1].getMessage() == "explode failed"
    assert caplog.records[-1].extra_data["error"] == "boom"


def test_configure_logging_writes_json_file(tmp_path, preserve_root_logger):
    log_file = tmp_path / "logs" / "wizard.log"
    configure_logging(level="DEBUG", log_file=log_file)

    logging.getLogger("wizard.test").debug("to file")
    for handler in preserve_root_logger.handlers:
        handler.flush()

    line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
    assert json.loads(line)["message"] == "to file"
    assert preserve_root_logger.level == logging.DEBUG


def test_configure_from_settings(preserve_root_logger):
    configure_from_settings(WizardSettings(_env_file=None, log_level="WARNING", log_json=True))
    assert preserve_root_logger.level == logging.WARNING
    assert isinstance(preserve_root_logger.handlers[0].formatter, JsonFormatter)
