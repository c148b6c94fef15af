"""
Logging utilities for the VM power operation tracker.
"""

import logging
import sys


def setup_logging(verbose: bool = False, log_file: str = "vm-power.log") -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Path to log file, or empty to log to stdout only

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    return logging.getLogger(__name__)
