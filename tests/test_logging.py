"""Tests for the structured logging system (cogs_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from cogs_kernel.exceptions import InsufficientInventoryError
from cogs_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


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
        assert record["logger"] == "cogs_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("layer_consumed", extra={"layer_count": 2, "status": "depleted"})

        record = _parse_log(stream)
        assert record["layer_count"] == 2
        assert record["status"] == "depleted"

    def test_decimal_and_uuid_serialized_as_strings(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("cogs", extra={"total_cogs": Decimal("380.000000000"), "record_id": uid})

        record = _parse_log(stream)
        assert record["total_cogs"] == "380.000000000"
        assert record["record_id"] == str(uid)

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(product_id="SKU-1", sale_ref="ORD-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["product_id"] == "SKU-1"
        assert record["sale_ref"] == "ORD-1"

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientInventoryError("SKU-1", Decimal("5"), Decimal("2"))
        except InsufficientInventoryError:
            get_logger("test").error("sale_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_INVENTORY"
        assert record["exc_type"] == "InsufficientInventoryError"
        assert record["exc_product_id"] == "SKU-1"
        assert record["exc_requested_quantity"] == "5"
        assert "traceback" in record

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "product_id" not in record
        assert "sale_ref" not in record

    def test_level_filters_debug(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(sale_ref="x", product_id="y")
        assert LogContext.get_all() == {"product_id": "y", "sale_ref": "x"}

    def test_clear(self):
        LogContext.set(sale_ref="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(product_id="outer")
        with LogContext.bind(product_id="inner", sale_ref="ORD-1"):
            assert LogContext.get_all() == {"product_id": "inner", "sale_ref": "ORD-1"}
        assert LogContext.get_all() == {"product_id": "outer"}

    def test_bind_skips_none(self):
        with LogContext.bind(product_id="SKU-1", actor_id=None):
            assert "actor_id" not in LogContext.get_all()

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="correlation_id"):
            LogContext.set(correlation_id="x")

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(product_id="SKU-1"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        reset_logging()
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        handlers = logging.getLogger("cogs_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_get_logger_returns_child(self):
        assert get_logger("services.cogs_recorder").name == "cogs_kernel.services.cogs_recorder"

    def test_does_not_propagate_to_root(self):
        configure_logging()
        assert logging.getLogger("cogs_kernel").propagate is False
