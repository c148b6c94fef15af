"""
Unit tests for logging utilities.
"""

import logging
import os
import tempfile
import unittest

from log_utils import setup_logging


class TestLogUtils(unittest.TestCase):
    """Test logging utilities."""

    def test_setup_logging_stdout_only(self):
        """Test logging setup without a log file."""
        logger = setup_logging(log_file="")
        self.assertIsInstance(logger, logging.Logger)

    def test_setup_logging_verbose_with_file(self):
        """Test verbose logging setup writing to a file."""
        with tempfile.TemporaryDirectory() as tmp:
            log_file = os.path.join(tmp, "vm-power.log")
            logger = setup_logging(verbose=True, log_file=log_file)
            self.assertIsInstance(logger, logging.Logger)
            root = logging.getLogger()
            for handler in list(root.handlers):
                if isinstance(handler, logging.FileHandler):
                    root.removeHandler(handler)
                    handler.close()


if __name__ == "__main__":
    unittest.main()
