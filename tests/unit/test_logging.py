"""Unit tests for the logging module."""

import json
import logging

import pytest

import repo_migrator.utils.logging as log_module
from repo_migrator.utils.logging import (
    EnhancedFormatter,
    JsonFormatter,
    RunIdFilter,
    get_run_id,
    is_debug_api_enabled,
    log_api_request,
    log_api_response,
    log_with_context,
    new_run_id,
    redact,
    set_run_id,
    setup_logger,
)


@pytest.fixture(autouse=True)
def _clean_logger():
    """Remove all handlers from the repo_migrator logger before and after each test."""
    logger = logging.getLogger("repo_migrator")
    saved = logger.handlers[:]
    for handler in saved:
        logger.removeHandler(handler)
    yield
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    for handler in saved:
        logger.addHandler(handler)
    log_module._DEBUG_API_ENABLED = False
    set_run_id("-")


def _make_record(msg="test message", level=logging.INFO):
    return logging.LogRecord(
        name="repo_migrator",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_keys(self):
        result = json.loads(JsonFormatter().format(_make_record()))
        assert result["level"] == "INFO"
        assert result["message"] == "test message"
        assert result["module"] == "test"
        assert "time" in result

    def test_excludes_standard_attributes(self):
        result = json.loads(JsonFormatter().format(_make_record()))
        for key in ("args", "exc_info", "lineno", "pathname", "funcName"):
            assert key not in result

    def test_includes_extra_attributes(self):
        record = _make_record()
        record.item = "repo-01"
        record.run_id = "abc123"
        result = json.loads(JsonFormatter().format(record))
        assert result["item"] == "repo-01"
        assert result["run_id"] == "abc123"


class TestEnhancedFormatter:
    """Tests for EnhancedFormatter."""

    def test_default_format_has_run_id(self):
        set_run_id("run42")
        result = EnhancedFormatter().format(_make_record())
        assert "[run42]" in result
        assert "test message" in result

    def test_verbose_includes_location(self):
        result = EnhancedFormatter(verbose=True).format(_make_record())
        assert "[test:1]" in result

    def test_api_details_only_when_enabled(self):
        record = _make_record()
        record.api_data = '{"a": 1}'
        record.response = '{"ok": true}'

        plain = EnhancedFormatter().format(record)
        detailed = EnhancedFormatter(include_api_details=True).format(record)

        assert "API Data" not in plain
        assert "API Data: {\"a\": 1}" in detailed
        assert "Response: {\"ok\": true}" in detailed


class TestRunId:
    def test_new_run_id_becomes_current(self):
        run_id = new_run_id()
        assert len(run_id) == 12
        assert get_run_id() == run_id

    def test_filter_stamps_records(self):
        set_run_id("stamp")
        record = _make_record()
        assert RunIdFilter().filter(record) is True
        assert record.run_id == "stamp"

    def test_filter_keeps_explicit_run_id(self):
        set_run_id("current")
        record = _make_record()
        record.run_id = "explicit"
        RunIdFilter().filter(record)
        assert record.run_id == "explicit"


class TestSetupLogger:
    def test_console_level(self):
        logger = setup_logger(verbose=False)
        assert len(logger.handlers) == 1
        assert logger.handlers[0].level == logging.INFO

        logger = setup_logger(verbose=True)
        assert len(logger.handlers) == 1
        assert logger.handlers[0].level == logging.DEBUG

    def test_log_files(self, tmp_path):
        logger = setup_logger(output_dir=str(tmp_path), json_logs=True)
        log_with_context(logging.INFO, "hello from test", item="repo-01")
        for handler in logger.handlers:
            handler.flush()

        assert "hello from test" in (tmp_path / "migration.log").read_text()
        lines = (tmp_path / "migration.jsonl").read_text().splitlines()
        records = [json.loads(line) for line in lines]
        assert any(r["message"] == "hello from test" and r["item"] == "repo-01" for r in records)

    def test_debug_api_flag(self):
        setup_logger(debug_api=True)
        assert is_debug_api_enabled() is True


class TestLogWithContext:
    def test_none_values_dropped(self, caplog):
        with caplog.at_level(logging.INFO, logger="repo_migrator"):
            log_with_context(logging.INFO, "msg", item="repo-01", endpoint=None)
        record = caplog.records[-1]
        assert record.item == "repo-01"
        assert not hasattr(record, "endpoint")

    def test_exc_info_is_passed_through(self, caplog):
        with caplog.at_level(logging.ERROR, logger="repo_migrator"):
            try:
                raise ValueError("boom")
            except ValueError:
                log_with_context(logging.ERROR, "failed", exc_info=True)
        assert caplog.records[-1].exc_info is not None


class TestApiLogging:
    def test_disabled_by_default(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="repo_migrator"):
            log_api_request("GET", "https://api.github.com/user")
            log_api_response(200, "https://api.github.com/user", {"login": "x"})
        assert caplog.records == []

    def test_request_payload_is_redacted(self, caplog):
        log_module._DEBUG_API_ENABLED = True
        with caplog.at_level(logging.DEBUG, logger="repo_migrator"):
            log_api_request("POST", "https://x", {"token": "secret", "name": "api"})
        record = caplog.records[-1]
        assert "secret" not in record.api_data
        assert "[REDACTED]" in record.api_data
        assert "api" in record.api_data

    def test_long_response_truncated(self, caplog):
        log_module._DEBUG_API_ENABLED = True
        with caplog.at_level(logging.DEBUG, logger="repo_migrator"):
            log_api_response(200, "https://x", "y" * 5000)
        assert caplog.records[-1].response.endswith("... [truncated]")

    def test_redact(self):
        assert redact({"Authorization": "Bearer x", "page": 2}) == {
            "Authorization": "[REDACTED]",
            "page": 2,
        }
