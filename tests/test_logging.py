"""Tests for school_ledger.logging_config: JSON records, context binding, setup."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from school_ledger.exceptions import DuplicateAccountCodeError, UnbalancedEntryError
from school_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def stream():
    """A fresh JSON handler writing into a StringIO; restores suite logging after."""
    reset_logging()
    LogContext.clear()
    buffer = StringIO()
    configure_logging(handler=logging.StreamHandler(buffer))
    yield buffer
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def records(buffer: StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


class TestRecordShape:
    def test_base_fields(self, stream):
        get_logger("services.ledger_poster").info("journal_entry_posted")

        (record,) = records(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "journal_entry_posted"
        assert record["logger"] == "school_ledger.services.ledger_poster"
        assert record["ts"].endswith("+00:00")

    def test_extra_fields(self, stream):
        get_logger("test").info(
            "journal_entry_created", extra={"reference": "JE-2024-000001", "line_count": 2}
        )

        (record,) = records(stream)
        assert record["reference"] == "JE-2024-000001"
        assert record["line_count"] == 2

    def test_values_serialized(self, stream):
        entry_id = uuid4()
        get_logger("test").info(
            "depreciation_asset_posted",
            extra={"entry_id_value": entry_id, "amount": Decimal("2250.00"), "period": date(2024, 6, 1)},
        )

        (record,) = records(stream)
        assert record["entry_id_value"] == str(entry_id)
        assert record["amount"] == "2250.00"
        assert record["period"] == "2024-06-01"

    def test_debug_dropped_at_default_level(self, stream):
        logger = get_logger("test")
        logger.debug("sequence_allocated")
        logger.warning("trial_balance_imbalanced")

        assert [r["message"] for r in records(stream)] == ["trial_balance_imbalanced"]

    def test_every_line_is_json(self, stream):
        logger = get_logger("test")
        for i in range(3):
            logger.info("tick", extra={"i": i})

        lines = stream.getvalue().splitlines()
        assert len(lines) == 3
        assert [json.loads(line)["i"] for line in lines] == [0, 1, 2]


class TestExceptionFields:
    def test_plain_exception(self, stream):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").exception("unexpected")

        (record,) = records(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_ledger_error_flattened(self, stream):
        try:
            raise DuplicateAccountCodeError("1110")
        except DuplicateAccountCodeError:
            get_logger("test").error("account_create_failed", exc_info=True)

        (record,) = records(stream)
        assert record["exc_code"] == "DUPLICATE_ACCOUNT_CODE"
        assert record["exc_account_code"] == "1110"

    def test_decimal_attributes_serialized(self, stream):
        exc = UnbalancedEntryError(Decimal("100.00"), Decimal("99.99"))
        get_logger("test").warning("entry_rejected", exc_info=exc)

        (record,) = records(stream)
        assert record["exc_code"] == exc.code
        assert "100.00" in json.dumps(record)


class TestLogContext:
    def test_fields_appear_on_records(self, stream):
        LogContext.set(correlation_id="req-7", batch_id="DEP-2024-03")
        get_logger("test").info("depreciation_run_started")

        (record,) = records(stream)
        assert record["correlation_id"] == "req-7"
        assert record["batch_id"] == "DEP-2024-03"
        assert "asset_id" not in record

    def test_set_ignores_none(self, stream):
        LogContext.set(actor_id="bursar")
        LogContext.set(actor_id=None, entry_id="e-1")
        assert LogContext.get_all() == {"actor_id": "bursar", "entry_id": "e-1"}

    def test_clear(self, stream):
        LogContext.set(correlation_id="x", asset_id="a")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_nests_and_restores(self, stream):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", asset_id="FA-001"):
            assert LogContext.get_all() == {"actor_id": "inner", "asset_id": "FA-001"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_restores_after_exception(self, stream):
        with pytest.raises(RuntimeError):
            with LogContext.bind(batch_id="DEP-2024-06"):
                raise RuntimeError("asset failed")
        assert "batch_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self, stream):
        with LogContext.bind(school_id="x", batch_id="b"):
            assert LogContext.get_all() == {"batch_id": "b"}

    def test_context_and_extra_combined(self, stream):
        with LogContext.bind(entry_id="from-context"):
            get_logger("test").info("msg", extra={"reference": "JE-1"})

        (record,) = records(stream)
        assert record["entry_id"] == "from-context"
        assert record["reference"] == "JE-1"


class TestConfigureLogging:
    def test_second_call_is_noop(self, stream):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("school_ledger").handlers) == 1

    def test_namespace_does_not_propagate(self, stream):
        assert logging.getLogger("school_ledger").propagate is False

    def test_level_applies_to_children(self):
        reset_logging()
        buffer = StringIO()
        configure_logging(handler=logging.StreamHandler(buffer), level=logging.DEBUG)
        try:
            get_logger("deep.nested.module").debug("hierarchy_test")
            (record,) = records(buffer)
            assert record["logger"] == "school_ledger.deep.nested.module"
        finally:
            reset_logging()
            configure_logging(level=logging.DEBUG)

    def test_formatter_usable_standalone(self):
        record = logging.LogRecord("school_ledger.x", logging.INFO, __file__, 1, "hello %s", ("you",), None)
        assert json.loads(StructuredFormatter().format(record))["message"] == "hello you"
