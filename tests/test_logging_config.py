"""Tests for logging helpers."""
import logging

import pytest

from vnf_framework.utils.logging_config import get_log_level, timed_section


class TestTimedSection:
    """Tests for the timed_section context manager."""

    @pytest.mark.asyncio
    async def test_success_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="vnf_framework.perf"):
            async with timed_section("broker.send", "vnf-1", op="Firewall.list"):
                pass

        message = caplog.records[-1].getMessage()
        assert "broker.send" in message
        assert "vnf-1" in message
        assert "OK" in message
        assert "op=Firewall.list" in message

    @pytest.mark.asyncio
    async def test_failure_logged_and_reraised(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="vnf_framework.perf"):
            with pytest.raises(RuntimeError):
                async with timed_section("broker.send", "vnf-1"):
                    raise RuntimeError("boom")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "FAIL: boom" in record.getMessage()


class TestLogLevel:
    """Tests for environment driven log level."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("VNF_LOG_LEVEL", "debug")
        assert get_log_level() == logging.DEBUG

    def test_unknown_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("VNF_LOG_LEVEL", "chatty")
        assert get_log_level() == logging.INFO
