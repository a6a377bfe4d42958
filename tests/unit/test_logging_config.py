"""
FLEETWATCH Unit Tests - Logging Configuration

Unit tests for fleetwatch/logging_config.py.
Tests setup_logging, get_logger and set_service_level.

Run:
    pytest tests/unit/test_logging_config.py -v
"""

import logging
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path


# =============================================================================
# Test setup_logging Function
# =============================================================================

class TestSetupLogging:
    """Unit tests for setup_logging function."""

    def test_setup_logging_default(self):
        """Test setup_logging with default parameters."""
        from fleetwatch.logging_config import setup_logging, get_logger

        setup_logging()

        logger = get_logger("test_default")
        assert logger.name == "fleetwatch.test_default"
        assert logging.getLogger("fleetwatch").level == logging.INFO

    def test_setup_logging_custom_level(self):
        """Test setup_logging applies the level to both namespaces."""
        from fleetwatch.logging_config import setup_logging

        setup_logging(log_level="DEBUG")

        assert logging.getLogger("fleetwatch").level == logging.DEBUG
        assert logging.getLogger("FLEETWATCH").level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        from fleetwatch.logging_config import setup_logging

        setup_logging(log_level="chatty")

        assert logging.getLogger("fleetwatch").level == logging.INFO

    def test_repeated_setup_replaces_handlers(self):
        """Test calling setup_logging twice does not duplicate output."""
        from fleetwatch.logging_config import setup_logging

        setup_logging()
        setup_logging(log_level="WARNING")

        assert len(logging.getLogger("fleetwatch").handlers) == 1
        assert len(logging.getLogger("FLEETWATCH").handlers) == 1

    def test_setup_logging_with_file(self):
        """Test setup_logging adds a rotating file handler."""
        from fleetwatch.logging_config import setup_logging, DEFAULT_MAX_BYTES

        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "logs" / "fleetwatch.log"
            setup_logging(log_file=log_path)

            root_logger = logging.getLogger("FLEETWATCH")
            file_handlers = [
                h for h in root_logger.handlers if isinstance(h, RotatingFileHandler)
            ]
            assert len(file_handlers) == 1
            assert Path(file_handlers[0].baseFilename) == log_path
            assert file_handlers[0].maxBytes == DEFAULT_MAX_BYTES
            assert log_path.parent.exists()

            logging.getLogger("FLEETWATCH.Test").warning("modem unreachable")
            file_handlers[0].flush()
            assert "modem unreachable" in log_path.read_text()

            # Release the file before the temp dir goes away
            setup_logging()


# =============================================================================
# Test get_logger / set_service_level
# =============================================================================

class TestLoggerHelpers:
    """Unit tests for logger helpers."""

    def test_get_logger_keeps_prefixed_name(self):
        from fleetwatch.logging_config import get_logger

        assert get_logger("fleetwatch.engine").name == "fleetwatch.engine"

    def test_get_logger_module_name(self):
        from fleetwatch.logging_config import get_logger

        assert get_logger("services.notify.sms_modem").name == "fleetwatch.services.notify.sms_modem"

    def test_set_service_level(self):
        from fleetwatch.logging_config import set_service_level

        set_service_level("sms", "DEBUG")

        assert logging.getLogger("fleetwatch.services.sms").level == logging.DEBUG
