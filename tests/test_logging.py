"""Tests for structured logging behavior."""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
import unittest

import structlog

from august_chat.logging_utils import NOISY_LIBRARIES, configure_logging


def _record(name: str, msg: str = "ok") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )


class ConfigureLoggingTests(unittest.TestCase):
    """Validate configure_logging() handler setup behavior."""

    def setUp(self) -> None:
        # Preserve root logger state so tests do not pollute each other.
        root = logging.getLogger()
        self._original_level = root.level
        self._original_handlers = list(root.handlers)

    def tearDown(self) -> None:
        root = logging.getLogger()
        root.setLevel(self._original_level)
        root.handlers.clear()
        root.handlers.extend(self._original_handlers)

    def _stream_handlers(self) -> list[logging.Handler]:
        return [
            h
            for h in logging.getLogger().handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]

    def test_structured_output_carries_extra_fields(self) -> None:
        configure_logging({"level": "DEBUG", "structured": True, "log_to_file": False})
        formatter = self._stream_handlers()[0].formatter
        self.assertIsInstance(formatter, structlog.stdlib.ProcessorFormatter)

        record = _record("august_chat.state", "state.transition")
        record.event = "state.transition"
        record.from_state = "IDLE"
        record.to_state = "SENDING"
        data = json.loads(formatter.format(record))
        self.assertEqual(data["event"], "state.transition")
        self.assertEqual(data["from_state"], "IDLE")
        self.assertEqual(data["to_state"], "SENDING")
        self.assertEqual(data["level"], "info")

    def test_plain_formatter_when_not_structured(self) -> None:
        configure_logging({"level": "DEBUG", "structured": False, "log_to_file": False})
        formatters = [h.formatter for h in logging.getLogger().handlers]
        self.assertFalse(
            any(isinstance(f, structlog.stdlib.ProcessorFormatter) for f in formatters)
        )

    def test_sets_root_level(self) -> None:
        configure_logging({"level": "DEBUG", "structured": False, "log_to_file": False})
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_console_stays_quiet_for_the_terminal_ui(self) -> None:
        configure_logging({"level": "DEBUG", "structured": False, "log_to_file": False})
        self.assertEqual(self._stream_handlers()[0].level, logging.WARNING)

    def test_console_floor_can_be_lowered_for_the_server(self) -> None:
        configure_logging(
            {"level": "INFO", "structured": False, "log_to_file": False},
            console_floor=logging.DEBUG,
        )
        self.assertEqual(self._stream_handlers()[0].level, logging.INFO)

    def test_noisy_loggers_set_to_warning(self) -> None:
        configure_logging({"level": "DEBUG", "structured": False, "log_to_file": False})
        for name in NOISY_LIBRARIES:
            self.assertEqual(logging.getLogger(name).level, logging.WARNING)

    def test_file_handler_created(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_path = str(Path(tmp) / "logs" / "test.log")
            configure_logging(
                {
                    "level": "DEBUG",
                    "structured": False,
                    "log_to_file": True,
                    "log_file_path": log_path,
                }
            )
            root = logging.getLogger()
            file_handlers = [h for h in root.handlers if isinstance(h, logging.FileHandler)]
            self.assertTrue(len(file_handlers) >= 1)
            self.assertTrue(Path(log_path).exists())
            for handler in file_handlers:
                handler.close()
                root.removeHandler(handler)

    def test_stderr_handler_filters_to_app_loggers(self) -> None:
        configure_logging({"level": "DEBUG", "structured": False, "log_to_file": False})
        handler = self._stream_handlers()[0]
        self.assertTrue(handler.filter(_record("august_chat.orchestrator")))
        self.assertFalse(handler.filter(_record("httpx", "noise")))


if __name__ == "__main__":
    unittest.main()
