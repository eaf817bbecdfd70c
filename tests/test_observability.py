"""
Tests for logging configuration.
"""

import logging

import pytest

from homelab.core.observability.logging_config import resolve_level, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestResolveLevel:
    def test_default(self):
        assert resolve_level(env={}) == "WARNING"

    def test_env(self):
        assert resolve_level(env={"HOMELAB_LOG_LEVEL": "INFO"}) == "INFO"

    def test_flags_beat_env(self):
        env = {"HOMELAB_LOG_LEVEL": "ERROR"}
        assert resolve_level(verbose=True, env=env) == "INFO"
        assert resolve_level(debug=True, quiet=True, env=env) == "DEBUG"
        assert resolve_level(quiet=True, env={"HOMELAB_LOG_LEVEL": "DEBUG"}) == "ERROR"


class TestSetupLogging:
    def test_console_only(self):
        setup_logging("INFO")
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.INFO

    def test_unknown_level_falls_back(self):
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.WARNING

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "homelab.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()
        assert len(root.handlers) == 2
        assert root.level == logging.DEBUG

        logging.getLogger("homelab.test").debug("probe detail")
        for handler in root.handlers:
            handler.flush()
        assert "probe detail" in log_file.read_text()
