"""Tests for the structured logging system (nc_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from nc_kernel.domain.values import Severity, Stage
from nc_kernel.exceptions import StaleStageError
from nc_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "nc_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        nc_id = uuid4()
        get_logger("test").info("stage_advanced", extra={"nc_id": nc_id, "to_stage": 3})

        record = _parse_log(stream)
        assert record["nc_id"] == str(nc_id)
        assert record["to_stage"] == 3

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise StaleStageError("nc-1", 2, 3)
        except StaleStageError:
            get_logger("test").warning("advance_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "STALE_STAGE"
        assert record["exc_kind"] == "stale_stage"
        assert record["exc_expected_stage"] == 2
        assert record["exc_actual_stage"] == 3


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="req-123", operation="advance_stage")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "req-123"
        assert record["operation"] == "advance_stage"

    def test_bind_restores_previous_values(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(operation="outer")

        with LogContext.bind(operation="inner", nc_id=uuid4()):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["operation"] == "inner"
        assert "nc_id" in inside
        assert outside["operation"] == "outer"
        assert "nc_id" not in outside

    def test_bind_skips_none(self):
        LogContext.set(actor_id="actor-1")

        with LogContext.bind(actor_id=None, task_id="task-9"):
            fields = LogContext.get_all()

        assert fields == {"actor_id": "actor-1", "task_id": "task-9"}

    def test_clear(self):
        LogContext.set(correlation_id="abc")
        LogContext.clear()

        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=_make_handler()[0])

        assert logging.getLogger("nc_kernel").handlers == [handler]

    def test_level_respected(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        get_logger("test").info("dropped")
        get_logger("test").warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]


# ---------------------------------------------------------------------------
# Caller binding and payload encoding
# ---------------------------------------------------------------------------


class TestCallerBinding:
    def test_bind_caller_sets_request_fields(self, ctx):
        nc_id = uuid4()

        with LogContext.bind_caller(ctx, "advance_stage", nc_id=nc_id):
            fields = LogContext.get_all()

        assert fields == {
            "actor_id": str(ctx.actor_id),
            "organization_id": str(ctx.organization_id),
            "operation": "advance_stage",
            "nc_id": str(nc_id),
        }
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="stage"):
            LogContext.set(stage="3")


class TestPayloadEncoding:
    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "task_created",
            extra={"stage": Stage.CAUSE_ANALYSIS, "severity": Severity.CRITICAL, "rate": Decimal("66.7")},
        )

        record = _parse_log(stream)
        assert record["stage"] == 3
        assert record["severity"] == "Crítica"
        assert record["rate"] == "66.7"
