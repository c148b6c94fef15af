"""
Presentation helpers for power operation snapshots.
"""

from typing import Optional

from models import OperationSnapshot

UNKNOWN_ERROR_MESSAGE = "An unexpected error occurred"

_PROGRESS = {"pending": 0, "running": 50}


def operation_state(task_status: Optional[str]) -> str:
    """Map a backend task status onto pending/running/completed/failed."""
    if task_status in ("pending", "running", "failed"):
        return task_status
    return "completed"


def progress_percent(task_status: Optional[str]) -> int:
    """Rough progress estimate for a task status."""
    return _PROGRESS.get(operation_state(task_status), 100)


def blocked_reason(vm_status: Optional[str], action: str) -> Optional[str]:
    """
    Check whether a power action makes sense for the VM's current state.

    Args:
        vm_status: VM status as reported by the API (POWERED_ON, ...)
        action: Requested power action

    Returns:
        Why the action cannot run, or None if it can
    """
    if action == "power_on":
        if vm_status == "POWERED_ON":
            return "VM is already powered on"
        return None
    if vm_status != "POWERED_ON":
        return f"{action} requires a powered on VM (current state: {vm_status or 'unknown'})"
    return None


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.0f}s"
    else:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {mins}m {secs:.0f}s"


def format_snapshot(snapshot: OperationSnapshot) -> str:
    """One-line description of a snapshot for progress logging."""
    state = operation_state(snapshot.task_status)
    line = (
        f"{snapshot.vm_id}: {snapshot.action} {state} "
        f"({progress_percent(snapshot.task_status)}%, "
        f"{format_duration(snapshot.elapsed_ms / 1000)})"
    )
    if snapshot.message:
        line += f" - {snapshot.message}"
    return line


def extract_error_message(error) -> str:
    """
    Extract a readable message from an exception or error payload.

    Args:
        error: Exception, dict payload or string

    Returns:
        Error message
    """
    if isinstance(error, dict):
        nested = error.get("error")
        if isinstance(nested, dict) and nested.get("message"):
            return str(nested["message"])
        if error.get("message"):
            return str(error["message"])
        return UNKNOWN_ERROR_MESSAGE
    if isinstance(error, str):
        return error or UNKNOWN_ERROR_MESSAGE
    if isinstance(error, BaseException) and str(error):
        return str(error)
    return UNKNOWN_ERROR_MESSAGE
