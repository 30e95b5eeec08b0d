"""Tests for the logging audit sink."""

import logging

import pytest

from kestrel_delegation.core.audit import AuditSink, LoggingAuditSink


class TestLoggingAuditSink:
    def test_is_audit_sink(self):
        assert isinstance(LoggingAuditSink(), AuditSink)

    @pytest.mark.asyncio
    async def test_records_and_logs(self, caplog):
        sink = LoggingAuditSink(logger_name="test.audit")

        with caplog.at_level(logging.INFO, logger="test.audit"):
            await sink.record("delegation_failed", "warning", "Delegation failed", {"depth": 1})

        assert sink.entries[0].event == "delegation_failed"
        assert sink.entries[0].metadata == {"depth": 1}
        assert caplog.records[0].levelno == logging.WARNING
        assert "Delegation failed" in caplog.records[0].getMessage()

    @pytest.mark.asyncio
    async def test_keeps_only_recent_entries(self):
        sink = LoggingAuditSink(keep=3)

        for idx in range(5):
            await sink.record("delegation_completed", "info", f"m{idx}", {})

        assert [e.message for e in sink.entries] == ["m2", "m3", "m4"]
