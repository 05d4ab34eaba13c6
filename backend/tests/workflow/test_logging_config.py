"""Unit tests for the named engine / sse / api loggers."""

import logging

from workflow_designer import logging_config


class TestSetupLogger:

    def test_writes_to_file_in_log_dir(self, tmp_path):
        logger = logging_config.setup_logger("test-file-logger", "runs.log", log_dir=tmp_path / "logs")
        logger.info("run finished")
        for handler in logger.handlers:
            handler.flush()

        content = (tmp_path / "logs" / "runs.log").read_text(encoding="utf-8")
        assert "[test-file-logger] [INFO] run finished" in content
        assert logger.propagate is False

    def test_handlers_attached_once(self, tmp_path):
        first = logging_config.setup_logger("test-once-logger", "once.log", log_dir=tmp_path)
        second = logging_config.setup_logger("test-once-logger", "once.log", log_dir=tmp_path)

        assert first is second
        assert len(second.handlers) == 2
        assert {type(h) for h in second.handlers} == {logging.FileHandler, logging.StreamHandler}
