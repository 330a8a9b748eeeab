"""Tests for shared helpers and logging utilities."""

import io
import json
import logging
from datetime import UTC, datetime, timedelta, timezone

import pytest
import structlog

from curator.logging import (
    PerformanceLogger,
    get_logger,
    log_error,
    log_processing_stage,
    setup_logging,
    site_context,
)
from curator.utils import ensure_utc, extract_domain, format_datetime_iso, parse_date_string


@pytest.mark.parametrize("url,expected", [
    ("https://Blog.Example.com/post", "blog.example.com"),
    ("http://user:pw@example.com:8080/", "example.com"),
    ("https://example.com./x", "example.com"),
    ("not a url", ""),
    ("", ""),
])
def test_extract_domain(url, expected):
    assert extract_domain(url) == expected


@pytest.mark.parametrize("value", [
    "2024-01-03T10:00:00Z",
    "2024-01-03T11:00:00+01:00",
    "Wed, 03 Jan 2024 10:00:00 GMT",
    "2024-01-03 10:00:00",
])
def test_parse_date_string(value):
    assert parse_date_string(value) == datetime(2024, 1, 3, 10, 0, tzinfo=UTC)


def test_parse_date_string_failures():
    assert parse_date_string("") is None
    assert parse_date_string("next tuesday") is None


def test_ensure_utc_and_format():
    naive = datetime(2024, 1, 1, 12, 0)
    assert ensure_utc(naive).tzinfo is UTC
    shifted = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert ensure_utc(shifted) == datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    assert format_datetime_iso(shifted) == "2024-01-01T12:00:00+00:00"
    assert format_datetime_iso(None) is None


def test_log_processing_stage():
    data = log_processing_stage("ingest", input_count=5, output_count=3, duration=0.5, created=3)
    assert data == {
        "stage": "ingest",
        "input_count": 5,
        "output_count": 3,
        "dropped": 2,
        "created": 3,
        "duration_ms": 500.0,
    }


def test_log_processing_stage_without_duration():
    data = log_processing_stage("rank", input_count=2, output_count=4)
    assert data["dropped"] == 0
    assert "duration_ms" not in data


def test_log_error():
    data = log_error(ValueError("boom"), context="feed", site_id=2)
    assert data == {"error_type": "ValueError", "error_message": "boom", "site_id": 2, "context": "feed"}


def test_log_error_includes_cause():
    try:
        try:
            raise KeyError("missing")
        except KeyError as inner:
            raise RuntimeError("lookup failed") from inner
    except RuntimeError as e:
        data = log_error(e)
    assert data["cause_type"] == "KeyError"
    assert data["cause_message"] == "'missing'"


def test_site_context_binds_and_unbinds():
    with site_context(3, tenant_id=7, source_id=9):
        assert structlog.contextvars.get_contextvars() == {"site_id": 3, "tenant_id": 7, "source_id": 9}
    assert "site_id" not in structlog.contextvars.get_contextvars()


def test_setup_logging_writes_to_given_stream():
    stream = io.StringIO()
    try:
        setup_logging(log_level="INFO", json_logging=True, stream=stream)
        assert logging.getLogger().level == logging.INFO
        logger = get_logger("curator.tests")
        with site_context(4):
            logger.info("stage_done", items=2)
        logger.debug("hidden")
        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [line["event"] for line in lines] == ["stage_done"]
        assert lines[0]["site_id"] == 4
        assert lines[0]["items"] == 2
    finally:
        setup_logging()


def test_setup_logging_rejects_unknown_level():
    with pytest.raises(ValueError, match="Unknown log level"):
        setup_logging(log_level="CHATTY")


def test_performance_logger_records_duration():
    with PerformanceLogger("unit", get_logger(__name__), site_id=1) as perf:
        pass
    assert perf.duration is not None
    assert perf.duration >= 0


def test_performance_logger_propagates_errors():
    perf = PerformanceLogger("unit", get_logger(__name__))
    with pytest.raises(RuntimeError):
        with perf:
            raise RuntimeError("fail")
    assert perf.duration is not None
