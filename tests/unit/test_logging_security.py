"""
Unit tests for logging setup and the sanitizing formatter.
"""
import logging
from unittest.mock import patch

import pytest
from rich.logging import RichHandler

from reportgrid.utils.config import SETTINGS
from reportgrid.utils.logging import (
    SanitizingFormatter,
    get_log_level,
    get_log_scope,
    is_production,
    set_log_scope,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestSanitizingFormatter:
    """Tests for SanitizingFormatter."""

    def test_formatter_escapes_message(self):
        formatter = SanitizingFormatter("%(message)s")
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "saved\nFAKE line", None, None)
        assert formatter.format(record) == "saved\\nFAKE line"

    def test_formatter_masks_args(self):
        formatter = SanitizingFormatter("%(message)s")
        record = logging.LogRecord(
            "t", logging.INFO, __file__, 1, "header %s", ("Bearer topsecret",), None
        )
        assert "topsecret" not in formatter.format(record)


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_installs_rich_console_handler(self):
        setup_logging(logging.DEBUG, log_file=False)
        assert any(isinstance(h, RichHandler) for h in logging.getLogger().handlers)

    def test_writes_log_file(self, temp_dir):
        setup_logging(logging.INFO, log_file=True, log_dir=temp_dir)
        logging.getLogger("reportgrid.test").warning("persist failed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_files = list(temp_dir.glob("reportgrid_*.log"))
        assert len(log_files) == 1
        assert "persist failed" in log_files[0].read_text(encoding="utf-8")

    def test_production_console_is_quiet(self):
        with patch.object(SETTINGS, "environment", "production"):
            assert is_production()
            setup_logging(logging.DEBUG, log_file=False)
        console = next(h for h in logging.getLogger().handlers if isinstance(h, RichHandler))
        assert console.level == logging.WARNING

    def test_log_level_from_environment(self):
        with patch.object(SETTINGS, "log_level", "ERROR"):
            assert get_log_level() == logging.ERROR

    def test_default_log_dir_is_under_data_dir(self, temp_dir):
        with patch.object(SETTINGS, "data_dir", temp_dir / "data"):
            log_path = setup_logging(logging.INFO, log_file=True)

        assert log_path.parent == temp_dir / "data" / "logs"
        assert log_path.exists()

    def test_no_log_file_returns_none(self):
        assert setup_logging(logging.INFO, log_file=False) is None


class TestLogScope:
    """Tests for report scope tagging in the log file."""

    @pytest.fixture(autouse=True)
    def reset_scope(self):
        yield
        set_log_scope()

    def test_scope_defaults_to_dash(self):
        set_log_scope()
        assert get_log_scope() == "-"

    def test_scope_formats_client_and_year(self):
        set_log_scope("acme", "2024")
        assert get_log_scope() == "acme/2024"

    def test_file_records_carry_scope(self, temp_dir):
        log_path = setup_logging(logging.INFO, log_file=True, log_dir=temp_dir)
        set_log_scope("acme", "2024")
        logging.getLogger("reportgrid.test").info("Removed widget 'trend'")
        set_log_scope()
        logging.getLogger("reportgrid.test").info("outside any view")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = log_path.read_text(encoding="utf-8").splitlines()
        assert "[acme/2024] reportgrid.test - INFO - Removed widget 'trend'" in lines[0]
        assert "[-] reportgrid.test" in lines[1]
