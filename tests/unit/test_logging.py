"""Tests für das Logging-Setup."""

import json
import logging

import pytest

from hecate.core.logging import LogContext, get_logger, setup_logging


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / "logs" / "hecate.log"
    setup_logging(level="INFO", format_type="human", log_file=path)
    yield path
    setup_logging()


def _records(path):
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestLogging:
    """Tests für setup_logging() und LogContext."""

    def test_file_is_json(self, log_file):
        """Testet JSON-Zeilen in der Log-Datei."""
        get_logger("hecate.test", gpu_index=1).info("Sample recorded", temperature=71)

        (record,) = _records(log_file)

        assert record["event"] == "Sample recorded"
        assert record["level"] == "info"
        assert record["logger"] == "hecate.test"
        assert record["gpu_index"] == 1
        assert record["service"] == "hecate"
        assert "timestamp" in record

    def test_level_filter(self, log_file):
        """Testet Filterung unterhalb des Levels."""
        logger = get_logger("hecate.test")
        logger.debug("hidden")
        logger.warning("shown")

        assert [r["event"] for r in _records(log_file)] == ["shown"]

    def test_log_context(self, log_file):
        """Testet gebundenen Kontext innerhalb des Blocks."""
        logger = get_logger("hecate.test")
        with LogContext(plan_hash="ab12"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _records(log_file)
        assert inside["plan_hash"] == "ab12"
        assert "plan_hash" not in outside

    def test_stdlib_records(self, log_file):
        """Testet Standard-Logger im selben Format."""
        logging.getLogger("uvicorn.error").info("Started server process")

        (record,) = _records(log_file)
        assert record["event"] == "Started server process"
        assert record["logger"] == "uvicorn.error"

    def test_repeated_setup_replaces_handlers(self, log_file):
        """Testet keine doppelten Handler."""
        setup_logging(level="INFO", log_file=log_file)
        setup_logging(level="INFO", log_file=log_file)

        marked = [h for h in logging.getLogger().handlers if getattr(h, "_hecate_handler", False)]
        assert len(marked) == 2
