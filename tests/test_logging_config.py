"""Tests for upgrade_pipeline.middleware.logging_config."""

import json
import logging

from upgrade_pipeline.middleware.logging_config import JSONFormatter, ReadableFormatter, log_context


def _record(**extra):
    record = logging.LogRecord("upgrade_pipeline.pipeline.executor", logging.INFO, __file__, 10,
                               "Step %s ok", ("test",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_includes_pipeline_context(self):
        entry = json.loads(JSONFormatter().format(
            _record(proposal_id="p1", step="test", backend="devin")
        ))
        assert entry["message"] == "Step test ok"
        assert entry["proposal_id"] == "p1"
        assert entry["step"] == "test"
        assert entry["backend"] == "devin"
        assert "audit_run_id" not in entry

    def test_readable_appends_tags(self):
        line = ReadableFormatter().format(_record(audit_run_id="audit_1"))
        assert "Step test ok" in line
        assert "[audit_run_id=audit_1]" in line

    def test_testing_app_uses_readable_format(self, app):
        formatters = [h.formatter for h in logging.getLogger().handlers]
        assert any(isinstance(f, ReadableFormatter) for f in formatters)

    def test_readable_appends_duration(self):
        line = ReadableFormatter().format(_record(job_name="audit_scan", duration_ms=42))
        assert line.endswith("[job_name=audit_scan] (42ms)")


class TestLogContext:

    def test_drops_none_and_unknown_fields(self):
        extra = log_context(proposal_id="p1", step=None, colour="red")
        assert extra == {"proposal_id": "p1"}
