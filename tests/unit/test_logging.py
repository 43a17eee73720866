"""Tests for log formatting and sync context binding."""

import json
import logging

from report_sync.utils.logging import (
    JSONFormatter,
    SyncContextFilter,
    TextFormatter,
    bind_sync_context,
    log_with_context,
)


def make_record(message="Sync progress: 50", **extra):
    record = logging.LogRecord("report_sync.main", logging.INFO, __file__, 10, message, None, None)
    record.__dict__.update(extra)
    return record


class TestFormatters:
    """Test JSON and text output."""

    def test_json_nests_context(self):
        record = make_record(ctx_progress=50)
        SyncContextFilter("report-sync").filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Sync progress: 50"
        assert data["level"] == "INFO"
        assert data["service"] == "report-sync"
        assert data["context"] == {"progress": 50}

    def test_json_without_context(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert "context" not in data

    def test_text_appends_context(self):
        line = TextFormatter(use_colors=False).format(make_record(ctx_run_id="abc", ctx_account="acc-1"))

        assert line.endswith("[INFO] report_sync.main: Sync progress: 50 account=acc-1 run_id=abc")


class TestSyncContext:
    """Test run-scoped context fields."""

    def test_bound_fields_are_stamped_and_released(self):
        context_filter = SyncContextFilter("report-sync")

        with bind_sync_context(run_id="run-1"):
            with bind_sync_context(account="acc-1"):
                inner = make_record()
                context_filter.filter(inner)
            outer = make_record()
            context_filter.filter(outer)

        after = make_record()
        context_filter.filter(after)

        assert (inner.ctx_run_id, inner.ctx_account) == ("run-1", "acc-1")
        assert outer.ctx_run_id == "run-1"
        assert not hasattr(outer, "ctx_account")
        assert not hasattr(after, "ctx_run_id")

    def test_explicit_context_wins(self):
        record = make_record(ctx_account="explicit")

        with bind_sync_context(account="bound"):
            SyncContextFilter("report-sync").filter(record)

        assert record.ctx_account == "explicit"

    def test_log_with_context_prefixes_fields(self):
        records = []

        class Collector(logging.Handler):
            def emit(self, record):
                records.append(record)

        logger = logging.getLogger("report_sync.test_context")
        logger.setLevel(logging.INFO)
        handler = Collector()
        logger.addHandler(handler)
        try:
            log_with_context(logger, logging.INFO, "done", progress=100)
        finally:
            logger.removeHandler(handler)

        assert records[0].ctx_progress == 100
