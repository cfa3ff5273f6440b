"""Tests for the structured logging system (approval_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import DocumentKind
from approval_kernel.exceptions import InvalidStateTransitionError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
    resolve_level,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite default."""
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
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "approval_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("approved", extra={"version": 3, "to_status": "approved_ceo"})

        record = _parse_log(stream)
        assert record["version"] == 3
        assert record["to_status"] == "approved_ceo"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(session_id="s-1", actor="bob")
        get_logger("test").info("tick")

        record = _parse_log(stream)
        assert record["session_id"] == "s-1"
        assert record["actor"] == "bob"

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InvalidStateTransitionError("doc-9", "voided", "approve")
        except InvalidStateTransitionError:
            get_logger("test").error("transition_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_STATE_TRANSITION"
        assert record["exc_type"] == "InvalidStateTransitionError"
        assert record["exc_current_status"] == "voided"
        assert record["exc_document_id"] == "doc-9"
        assert "traceback" in record

    def test_uuid_enum_and_set_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "mixed",
            extra={"doc_uuid": uid, "kind": DocumentKind.EXIT_PERMIT, "roles": {"ceo", "admin"}},
        )

        record = _parse_log(stream)
        assert record["doc_uuid"] == str(uid)
        assert record["kind"] == "exit_permit"
        assert record["roles"] == ["admin", "ceo"]

    def test_unknown_objects_fall_back_to_str(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("amount", extra={"amount": Decimal("12.50")})

        assert _parse_log(stream)["amount"] == "12.50"

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", document_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "document_id": "y"}

    def test_clear(self):
        LogContext.set(actor="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(actor="outer")
        with LogContext.bind(actor="inner", document_id="d"):
            assert LogContext.get_all() == {"actor": "inner", "document_id": "d"}
        assert LogContext.get_all() == {"actor": "outer"}

    def test_bind_renders_enum_values(self):
        with LogContext.bind(document_kind=DocumentKind.WAREHOUSE_DISPATCH):
            assert LogContext.get_all() == {"document_kind": "warehouse_dispatch"}
        assert LogContext.get_all() == {}

    def test_nested_bind_restores_in_order(self):
        with LogContext.bind(session_id="s-1", actor="alice"):
            with LogContext.bind(actor="bob", document_id="d-1"):
                assert LogContext.get_all()["actor"] == "bob"
            assert LogContext.get_all() == {"session_id": "s-1", "actor": "alice"}

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(tenant="acme"):
            assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        installed = [
            h for h in logging.getLogger("approval_kernel").handlers
            if isinstance(h.formatter, StructuredFormatter)
        ]
        assert installed == [h1]

    def test_level_name_accepted(self):
        handler, stream = _make_handler()
        configure_logging(level="warning", handler=handler)
        logger = get_logger("test")
        logger.info("dropped")
        logger.warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_unknown_level_rejected_before_install(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging(level="VERBOSE")
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("installed")
        assert _parse_log(stream)["message"] == "installed"

    def test_get_logger_returns_child(self):
        assert get_logger("services.document").name == "approval_kernel.services.document"


class TestResolveLevel:
    @pytest.mark.parametrize(
        "value, expected",
        [("debug", logging.DEBUG), ("WARNING", logging.WARNING), (" info ", logging.INFO), (25, 25)],
    )
    def test_accepts_names_and_numbers(self, value, expected):
        assert resolve_level(value) == expected

    @pytest.mark.parametrize("value", ["verbose", "", True])
    def test_rejects_unknown(self, value):
        with pytest.raises(ValueError):
            resolve_level(value)
