"""Unit tests for logging setup."""

import json

import pytest
import structlog

from livewatch.utils.logging import setup_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


class TestSetupLogging:
    """Test structlog configuration."""

    def test_json_output(self, capsys):
        """Test that JSON format emits one JSON object per event."""
        logger = setup_logging("INFO", "json")

        logger.info("Poll cycle finished", monitor="live", streamers=3)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "Poll cycle finished"
        assert record["monitor"] == "live"
        assert record["streamers"] == 3
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filtering(self, capsys):
        """Test that events below the configured level are dropped."""
        logger = setup_logging("WARNING", "plain")

        logger.info("hidden")
        logger.warning("shown")

        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out
