"""Tests for logging formatters and metrics export."""

import json
import logging

from docsync.observability import ColoredFormatter, JSONFormatter, get_metrics_text
from docsync.observability import metrics


def _record(message="Indexed document 1", level=logging.INFO, **extra):
    record = logging.LogRecord("docsync.pipelines.indexer", level, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    """Structured and console log output"""

    def test_json_formatter_includes_extra_fields(self):
        output = json.loads(JSONFormatter().format(_record(document_id=1)))

        assert output["message"] == "Indexed document 1"
        assert output["level"] == "INFO"
        assert output["service"] == "docsync"
        assert output["document_id"] == 1
        assert output["timestamp"].endswith("+00:00")

    def test_colored_formatter_without_colors(self):
        output = ColoredFormatter(use_colors=False).format(_record(level=logging.WARNING))

        assert "| WARNING  |" in output
        assert "\033[" not in output

    def test_worker_thread_is_reported(self):
        record = _record()
        record.threadName = "docsync-index_0"

        text = ColoredFormatter(use_colors=False).format(record)
        output = json.loads(JSONFormatter().format(record))

        assert "docsync.pipelines.indexer [docsync-index_0] |" in text
        assert output["thread"] == "docsync-index_0"

    def test_main_thread_is_omitted(self):
        record = _record()
        record.threadName = "MainThread"

        assert "thread" not in json.loads(JSONFormatter().format(record))


class TestMetrics:
    """Prometheus exposition"""

    def test_recorded_metrics_are_exported(self):
        metrics.record_fetch("success", 0.2)
        metrics.record_job_run("eol_cleanup", "success", 1.5)

        text = get_metrics_text().decode("utf-8")

        assert 'docsync_fetch_requests_total{outcome="success"}' in text
        assert 'docsync_job_runs_total{job="eol_cleanup",state="success"}' in text
