"""Tests for the structured logging system (signflow_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from signflow_kernel.domain.statuses import EnvelopeStatus
from signflow_kernel.exceptions import AlreadyActedError
from signflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite-wide setup."""
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
        assert record["logger"] == "signflow.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("audit_entry_created", extra={"seq": 7, "action": "SIGNER_SIGNED"})

        record = _parse_log(stream)
        assert record["seq"] == 7
        assert record["action"] == "SIGNER_SIGNED"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", envelope_id="env-1", sweep_run_id="run-9")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["envelope_id"] == "env-1"
        assert record["sweep_run_id"] == "run-9"

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
        assert "exc_code" not in record
        assert "traceback" in record

    def test_signflow_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise AlreadyActedError("s-1", "SIGNED")
        except AlreadyActedError:
            get_logger("test").warning("signer_action_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "ALREADY_ACTED"
        assert record["exc_type"] == "AlreadyActedError"
        assert record["exc_signer_id"] == "s-1"
        assert record["exc_status"] == "SIGNED"

    def test_foreign_exception_attributes_not_extracted(self):
        class UpstreamError(Exception):
            def __init__(self):
                super().__init__("gateway timeout")
                self.code = 504
                self.endpoint = "/render"

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise UpstreamError()
        except UpstreamError:
            get_logger("test").error("render_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "UpstreamError"
        assert "exc_code" not in record
        assert "exc_endpoint" not in record

    def test_envelope_context_on_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        envelope_id, document_id = uuid4(), uuid4()
        logger = get_logger("services.envelope")

        with LogContext.for_envelope(envelope_id, document_id, actor="user:a"):
            logger.info("envelope_sent")
            logger.info("notification_queued")
        logger.info("unrelated")

        sent, queued, unrelated = _parse_all_logs(stream)
        assert sent["envelope_id"] == queued["envelope_id"] == str(envelope_id)
        assert queued["document_id"] == str(document_id)
        assert queued["actor"] == "user:a"
        assert "envelope_id" not in unrelated

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "signer_id" not in record

    def test_uuid_and_enum_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("typed", extra={"envelope": uid, "status": EnvelopeStatus.COMPLETED})

        record = _parse_log(stream)
        assert record["envelope"] == str(uid)
        assert record["status"] == "COMPLETED"

    def test_level_filtering(self):
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
        LogContext.set(correlation_id="x", actor="user:a")
        assert LogContext.get_all() == {"correlation_id": "x", "actor": "user:a"}

    def test_set_ignores_none(self):
        LogContext.set(document_id="d-1")
        LogContext.set(document_id=None, signer_id="s-1")
        assert LogContext.get_all() == {"document_id": "d-1", "signer_id": "s-1"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(actor="outer")
        with LogContext.bind(actor="inner"):
            assert LogContext.get_all()["actor"] == "inner"
        assert LogContext.get_all()["actor"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(envelope_id=uuid4()):
            assert "envelope_id" in LogContext.get_all()
        assert "envelope_id" not in LogContext.get_all()

    def test_bind_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(sweep_run_id="run-1"):
                raise RuntimeError("sweep died")
        assert LogContext.get_all() == {}

    def test_values_stored_as_strings(self):
        signer_id = uuid4()
        with LogContext.for_signer(signer_id):
            assert LogContext.get_all() == {"signer_id": str(signer_id)}

    def test_nested_envelope_and_signer(self):
        with LogContext.for_envelope("env-1", actor="sweep"):
            with LogContext.for_signer("s-1"):
                assert LogContext.get_all() == {
                    "actor": "sweep", "envelope_id": "env-1", "signer_id": "s-1",
                }
            assert "signer_id" not in LogContext.get_all()

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="tenant"):
            LogContext.set(tenant="acme")
        with pytest.raises(ValueError):
            with LogContext.bind(tenant="acme"):
                pass


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert logging.getLogger("signflow").handlers == [h1]

    def test_does_not_propagate_to_root(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        assert logging.getLogger("signflow").propagate is False

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("batch.sweep").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "signflow.batch.sweep"
