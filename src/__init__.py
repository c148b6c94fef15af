"""
VM power operation tracker.
"""

from clients import CloudDirectorRestClient
from config import TrackerConfig
from log_utils import setup_logging
from models import (
    OperationSnapshot,
    OperationTask,
    PowerOperation,
    PowerResult,
    TrackedOperation,
)
from runner import PowerOperationRunner
from scheduler import Scheduler
from tracker import PowerOperationTracker

__all__ = [
    "CloudDirectorRestClient",
    "TrackerConfig",
    "setup_logging",
    "OperationSnapshot",
    "OperationTask",
    "PowerOperation",
    "PowerResult",
    "TrackedOperation",
    "PowerOperationRunner",
    "Scheduler",
    "PowerOperationTracker",
]
