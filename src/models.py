"""
Data models for the VM power operation tracker.
"""

from dataclasses import dataclass
from typing import Dict, Optional

TERMINAL_TASK_STATUSES = frozenset({"completed", "failed"})

UNRESOLVED_STATUS = "UNRESOLVED"
TRACKING_FAILED_MESSAGE = "Failed to track operation status"


@dataclass
class OperationTask:
    """Backend task descriptor attached to a power operation."""

    id: str
    status: str  # "pending", "running", "completed", "failed", ...
    type: str = "power_operation"

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional["OperationTask"]:
        if not data:
            return None
        return cls(
            id=str(data.get("id", "")),
            status=str(data.get("status", "")),
            type=str(data.get("type", "power_operation")),
        )

    def to_dict(self) -> Dict:
        return {"id": self.id, "status": self.status, "type": self.type}


@dataclass
class PowerOperation:
    """Power operation descriptor as returned by the backend."""

    vm_id: str
    action: str
    status: str  # POWERED_ON, POWERED_OFF, SUSPENDED, UNRESOLVED
    message: str = ""
    timestamp: str = ""
    task: Optional[OperationTask] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "PowerOperation":
        """
        Build a PowerOperation from the backend JSON shape.

        Responses wrapped in an ``{"data": {...}}`` envelope are unwrapped.

        Args:
            data: Decoded JSON body

        Returns:
            PowerOperation instance

        Raises:
            ValueError: If the payload is not a JSON object
        """
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected power operation payload: {data!r}")
        if isinstance(data.get("data"), dict):
            data = data["data"]
        return cls(
            vm_id=str(data.get("vm_id", "")),
            action=str(data.get("action", "")),
            status=str(data.get("status", "")),
            message=str(data.get("message") or ""),
            timestamp=str(data.get("timestamp") or ""),
            task=OperationTask.from_dict(data.get("task")),
        )

    @property
    def task_status(self) -> Optional[str]:
        return self.task.status if self.task else None


@dataclass
class TrackedOperation:
    """In-flight power operation registration."""

    vm_id: str
    operation_id: str
    action: str
    start_time: float  # scheduler clock, seconds

    @property
    def key(self):
        return (self.vm_id, self.operation_id)


@dataclass
class OperationSnapshot:
    """Latest known status of one tracked power operation."""

    vm_id: str
    action: str
    status: str
    message: str
    timestamp: str
    task: Optional[OperationTask]
    is_tracking: bool
    elapsed_ms: int
    operation_id: str = ""  # task id the registration was made with

    @classmethod
    def from_operation(
        cls, operation: PowerOperation, tracked: "TrackedOperation", elapsed_ms: int
    ) -> "OperationSnapshot":
        return cls(
            vm_id=operation.vm_id or tracked.vm_id,
            action=operation.action,
            status=operation.status,
            message=operation.message,
            timestamp=operation.timestamp,
            task=operation.task,
            is_tracking=True,
            elapsed_ms=elapsed_ms,
            operation_id=tracked.operation_id,
        )

    @property
    def task_status(self) -> Optional[str]:
        return self.task.status if self.task else None

    @property
    def is_terminal(self) -> bool:
        return self.task_status in TERMINAL_TASK_STATUSES

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging/reporting."""
        return {
            "vm_id": self.vm_id,
            "action": self.action,
            "status": self.status,
            "message": self.message,
            "timestamp": self.timestamp,
            "task": self.task.to_dict() if self.task else None,
            "is_tracking": self.is_tracking,
            "elapsed_ms": self.elapsed_ms,
            "operation_id": self.operation_id,
        }


@dataclass
class PowerResult:
    """Outcome of one power action issued from the CLI."""

    vm_id: str
    action: str
    status: str  # "completed", "failed", "unresolved", "timeout", "dry_run", "not_started", "skipped"
    operation_id: Optional[str] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_seconds: Optional[float] = None
    message: Optional[str] = None
    error_message: Optional[str] = None
