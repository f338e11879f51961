import logging
import unittest
import sys
import os

import structlog

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from epoch_sniper.utils.logger import QUIET_LOGGERS, _add_process_name, configure_logging


class TestConfigureLogging(unittest.TestCase):
    def tearDown(self):
        structlog.reset_defaults()

    def test_library_loggers_quieted(self):
        configure_logging(level="DEBUG")

        self.assertEqual(logging.getLogger().level, logging.DEBUG)
        for name in QUIET_LOGGERS:
            self.assertEqual(logging.getLogger(name).level, logging.WARNING)

    def test_quiet_loggers_follow_stricter_level(self):
        configure_logging(level="ERROR", json_output=True)
        self.assertEqual(logging.getLogger("websockets").level, logging.ERROR)

    def test_process_name_added(self):
        processor = _add_process_name("claim")
        self.assertEqual(processor(None, "info", {"event": "x"})["process"], "claim")
        self.assertEqual(
            processor(None, "info", {"event": "x", "process": "other"})["process"],
            "other"
        )


if __name__ == "__main__":
    unittest.main()
