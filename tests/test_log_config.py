"""Tests for logging helpers."""

import pytest

from temporal_bridge.log_config import get_logger, log_timing, logger


@pytest.fixture
def captured():
    """Collect formatted messages from a temporary sink."""
    messages: list[str] = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{extra[name]}|{level}|{message}")
    yield messages
    logger.remove(handler_id)


class TestLogTiming:
    def test_records_elapsed_time(self, captured):
        """elapsed_ms is filled in and the duration is logged."""
        with log_timing("graph upsert", get_logger("reconciler")) as timing:
            pass

        assert timing["elapsed_ms"] >= 0
        assert any(m.startswith("reconciler|DEBUG|graph upsert took") for m in captured)

    def test_failure_logged_and_reraised(self, captured):
        with pytest.raises(RuntimeError):
            with log_timing("detection", get_logger("reconciler")) as timing:
                raise RuntimeError("scan failed")

        assert timing["elapsed_ms"] >= 0
        assert any(m.startswith("reconciler|WARNING|detection failed after") for m in captured)

    def test_unbound_logger_has_default_name(self, captured):
        with log_timing("startup", level="info"):
            pass

        assert any(m.startswith("temporal_bridge|INFO|startup took") for m in captured)
