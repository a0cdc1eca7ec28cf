"""Tests for the observability module.

Tests for metrics collection, logging configuration and operation tracing.
"""
import json
import logging

import pytest

from quillnote_mcp.observability import (
    ROOT_LOGGER_NAME,
    MetricsCollector,
    configure_logging,
    metrics,
    timed_operation,
    traced,
)


@pytest.fixture
def metrics_collector(tmp_path):
    return MetricsCollector(metrics_file=tmp_path / "metrics.json")


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_record_successful_operation(self, metrics_collector):
        metrics_collector.record_operation("note.get", 12.5, success=True)
        m = metrics_collector.get_metrics()["note.get"]
        assert m["count"] == 1
        assert m["success_count"] == 1
        assert m["error_count"] == 0
        assert m["avg_duration_ms"] == 12.5

    def test_record_failed_operation(self, metrics_collector):
        metrics_collector.record_operation("note.get", 3.0, success=False, error="boom")
        m = metrics_collector.get_metrics()["note.get"]
        assert m["error_count"] == 1
        assert m["last_error"] == "boom"
        assert m["last_error_time"] is not None

    def test_aggregates_durations(self, metrics_collector):
        for duration in (10.0, 20.0, 30.0):
            metrics_collector.record_operation("note.list", duration, success=True)
        m = metrics_collector.get_metrics()["note.list"]
        assert m["min_duration_ms"] == 10.0
        assert m["max_duration_ms"] == 30.0
        assert m["avg_duration_ms"] == 20.0

    def test_summary_and_reset(self, metrics_collector):
        metrics_collector.record_operation("a", 1.0, success=True)
        metrics_collector.record_operation("b", 1.0, success=False, error="x")
        summary = metrics_collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["overall_success_rate"] == 0.5

        metrics_collector.reset()
        assert metrics_collector.get_metrics() == {}
        assert metrics_collector.get_summary()["overall_success_rate"] == 1.0

    def test_save_metrics(self, metrics_collector, tmp_path):
        metrics_collector.record_operation("note.create", 5.0, success=True)
        assert metrics_collector.save_metrics()

        data = json.loads((tmp_path / "metrics.json").read_text(encoding="utf-8"))
        assert data["operations"]["note.create"]["count"] == 1


class TestTimedOperation:
    """Tests for timed_operation context manager."""

    def test_records_success(self):
        with timed_operation("unit.op", key="value") as op:
            op["result_count"] = 3
        assert metrics.get_metrics()["unit.op"]["success_count"] == 1

    def test_records_failure_and_reraises(self):
        with pytest.raises(RuntimeError):
            with timed_operation("unit.fail"):
                raise RuntimeError("kaput")
        m = metrics.get_metrics()["unit.fail"]
        assert m["error_count"] == 1
        assert m["last_error"] == "kaput"


class TestTraced:
    """Tests for the traced decorator on plain and coroutine functions."""

    def test_sync_function(self):
        @traced("unit.sync")
        def double(x):
            return x * 2

        assert double(4) == 8
        assert metrics.get_metrics()["unit.sync"]["count"] == 1

    @pytest.mark.anyio
    async def test_coroutine_function(self):
        @traced()
        async def fetch_items(note_id=None):
            return [1, 2, 3]

        assert await fetch_items(note_id="abc") == [1, 2, 3]
        assert metrics.get_metrics()["fetch_items"]["success_count"] == 1

    @pytest.mark.anyio
    async def test_coroutine_failure_recorded(self):
        @traced("unit.async_fail")
        async def explode():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await explode()
        assert metrics.get_metrics()["unit.async_fail"]["error_count"] == 1

    @pytest.mark.anyio
    async def test_trace_logs_principal_and_note(self, caplog, owner):
        @traced("unit.lookup")
        async def lookup(principal, note_id):
            return [note_id]

        with caplog.at_level(logging.DEBUG, logger="quillnote_mcp.observability"):
            await lookup(owner, "abc123")

        start = next(r.getMessage() for r in caplog.records if "START unit.lookup" in r.getMessage())
        assert "principal=owner-1" in start
        assert "note_id=abc123" in start
        assert any("result_count=1" in r.getMessage() for r in caplog.records)

    @pytest.mark.anyio
    async def test_repository_operations_are_traced(self, note_repository, owner):
        note = await note_repository.create(owner, {"title": "Traced"})
        await note_repository.get_by_id(owner, note.id)
        recorded = metrics.get_metrics()
        assert recorded["note.create"]["count"] == 1
        assert recorded["note.get"]["count"] == 1


class TestConfigureLogging:
    def test_creates_rotating_log_file(self, tmp_path):
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        before = list(root_logger.handlers)
        try:
            log_dir = configure_logging(log_dir=tmp_path / "logs", console=False)
            logging.getLogger("quillnote_mcp.tests").info("hello from the test")
            for handler in root_logger.handlers:
                handler.flush()

            assert log_dir == tmp_path / "logs"
            content = (log_dir / "quillnote.log").read_text(encoding="utf-8")
            assert "hello from the test" in content
        finally:
            for handler in list(root_logger.handlers):
                if handler not in before:
                    root_logger.removeHandler(handler)
                    handler.close()
