"""
Tests for log routing and the crash log.
"""

import logging
import os

from mint.services.logging_setup import APP_LOGGER, configure_logging, enable_crash_logging


def _read(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


class TestConfigureLogging:
    def test_mint_tree_goes_to_file_at_debug(self, tmp_path):
        log_path = configure_logging(str(tmp_path / "logs"))

        logging.getLogger("mint.recording").debug("Recording start: meeting=m1")
        logging.getLogger("mint.transcription.deepgram.mic").info("Connected")

        content = _read(log_path)
        assert "[mint.recording] Recording start: meeting=m1" in content
        assert "[mint.transcription.deepgram.mic] Connected" in content
        assert "Logging initialized" in content

    def test_third_party_debug_is_held_back(self, tmp_path):
        log_path = configure_logging(str(tmp_path / "logs"))

        logging.getLogger("aiohttp.client").debug("frame sent")
        logging.getLogger("urllib3.connectionpool").warning("retrying")

        content = _read(log_path)
        assert "frame sent" not in content
        assert "retrying" in content

    def test_reconfiguring_does_not_stack_handlers(self, tmp_path):
        configure_logging(str(tmp_path / "first"))
        configure_logging(str(tmp_path / "second"))

        app_logger = logging.getLogger(APP_LOGGER)
        assert sorted(handler.name for handler in app_logger.handlers) == ["mint_file", "mint_stream"]
        assert app_logger.propagate is False


class TestCrashLogging:
    def test_crash_log_path(self, tmp_path):
        path = enable_crash_logging(str(tmp_path / "logs"))
        assert path == os.path.join(str(tmp_path / "logs"), "crash.log")
        assert os.path.isdir(tmp_path / "logs")
