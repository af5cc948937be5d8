"""Tests for logging configuration."""

import logging

import pytest

from codeforge.utils.logging_config import ColoredSmartFormatter, LoggingConfig, get_logger


def make_record(name, level=logging.INFO, msg="hello"):
    return logging.LogRecord(name, level, __file__, 10, msg, None, None, func="fn")


@pytest.mark.unit
class TestColoredSmartFormatter:
    """Test log line formatting."""

    def test_shortens_package_names(self):
        """Known package prefixes are abbreviated."""
        formatter = ColoredSmartFormatter(use_colors=False)

        assert formatter._clean_logger_name("codeforge.services.gateway.model_gateway") == "gateway.model_gat..."
        assert formatter._clean_logger_name("codeforge.engines.production") == "engine.production"
        assert formatter._clean_logger_name("codeforge.services.web_search") == "svc.web_search"

    def test_plain_output(self):
        """Without colors the line has no escape codes."""
        formatter = ColoredSmartFormatter(use_colors=False)
        line = formatter.format(make_record("codeforge.engines.orchestrator"))

        assert "\x1b[" not in line
        assert "INFO" in line
        assert line.endswith("hello")

    def test_function_location_for_warnings(self):
        """include_function adds the location for warnings only."""
        formatter = ColoredSmartFormatter(include_function=True, use_colors=False)

        assert "[fn:10]" in formatter.format(make_record("x", logging.WARNING))
        assert "[fn:10]" not in formatter.format(make_record("x", logging.INFO))


@pytest.mark.unit
class TestLoggingConfig:
    """Test handler installation."""

    def test_setup_is_idempotent(self, monkeypatch, tmp_path):
        """Repeated setup replaces its own handlers and writes the file log."""
        monkeypatch.setenv('LOG_LEVEL', 'DEBUG')
        root = logging.getLogger()
        before = list(root.handlers)
        previous_level = root.level
        config = LoggingConfig(log_dir=tmp_path)

        try:
            config.setup_logging()
            config.setup_logging()
            ours = [h for h in root.handlers if getattr(h, "_codeforge", False)]

            assert config.log_level == logging.DEBUG
            assert len(ours) == 2
            assert (tmp_path / "codeforge.log").exists()
            assert all(h in root.handlers for h in before)
        finally:
            for handler in list(root.handlers):
                if getattr(handler, "_codeforge", False):
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(previous_level)

    def test_get_logger_namespace(self):
        """get_logger nests under the application logger."""
        assert get_logger("engines").name == "codeforge.engines"
