"""
Power operation tracker.

Keeps the set of in-flight VM power operations, polls their status on a fixed
interval and publishes a fresh snapshot list after every poll cycle. Finished
operations stay visible for a short grace period and are then retired.

Two independent timers can retire a finished operation: the removal timer
armed by each poll that sees a terminal status, and a safety-net eviction armed
the first time a terminal snapshot is published. Whichever fires first removes
the registration and cancels the other.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from models import (
    TRACKING_FAILED_MESSAGE,
    UNRESOLVED_STATUS,
    OperationSnapshot,
    OperationTask,
    PowerOperation,
    TrackedOperation,
)
from scheduler import PRIORITY_RETIRE, Scheduler

logger = logging.getLogger(__name__)

OperationKey = Tuple[str, str]
StatusFetcher = Callable[[str, str], Union[PowerOperation, Dict]]
Listener = Callable[[List[OperationSnapshot]], None]


class PowerOperationTracker:
    """Tracks VM power operations until they finish."""

    def __init__(
        self,
        fetch_status: StatusFetcher,
        scheduler: Optional[Scheduler] = None,
        poll_interval: float = 2.0,
        removal_delay: float = 2.0,
        eviction_delay: float = 5.0,
    ):
        """
        Initialize the tracker.

        Args:
            fetch_status: Callable returning the status of ``(vm_id, operation_id)``
            scheduler: Timer scheduler driving the polls
            poll_interval: Seconds between poll cycles
            removal_delay: Seconds a terminal operation stays visible
            eviction_delay: Seconds before a terminal operation is force-evicted
        """
        self._fetch_status = fetch_status
        self.scheduler = scheduler or Scheduler()
        self.poll_interval = poll_interval
        self.removal_delay = removal_delay
        self.eviction_delay = eviction_delay

        self._registrations: Dict[OperationKey, TrackedOperation] = {}
        self._operations: List[OperationSnapshot] = []
        self._listeners: List[Listener] = []

        self._poll_event = None
        self._generation = 0
        self._removal_timers: Dict[OperationKey, list] = {}
        self._eviction_timers: Dict[OperationKey, object] = {}
        self._closed = False

    def __enter__(self) -> "PowerOperationTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def operations(self) -> List[OperationSnapshot]:
        """Snapshot list published by the latest poll cycle."""
        return list(self._operations)

    @property
    def registrations(self) -> List[TrackedOperation]:
        return list(self._registrations.values())

    @property
    def is_tracking(self) -> bool:
        return bool(self._registrations)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Listener) -> None:
        """Register a callable invoked with the snapshot list after each publish."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start_tracking(self, vm_id: str, operation_id: str, action: str) -> None:
        """
        Start tracking a power operation.

        Tracking the same ``(vm_id, operation_id)`` twice replaces the earlier
        registration in place.

        Args:
            vm_id: Target VM identifier
            operation_id: Backend task identifier
            action: Requested action (power_on, power_off, ...)

        Raises:
            RuntimeError: If the tracker has been closed
        """
        if self._closed:
            raise RuntimeError("Cannot start tracking on a closed tracker")

        key = (vm_id, operation_id)
        if key in self._registrations:
            logger.debug(f"Replacing registration for {vm_id} (op={operation_id})")
            self._cancel_timers(key)

        self._registrations[key] = TrackedOperation(
            vm_id=vm_id,
            operation_id=operation_id,
            action=action,
            start_time=self.scheduler.now(),
        )
        logger.info(f"Tracking {action} on {vm_id} (op={operation_id})")
        self._registrations_changed()

    def stop_tracking(self, vm_id: str, operation_id: Optional[str] = None) -> None:
        """
        Stop tracking operations of a VM.

        Args:
            vm_id: Target VM identifier
            operation_id: Only remove this operation; all of the VM's when empty
        """
        keys = [
            key
            for key in self._registrations
            if key[0] == vm_id and (not operation_id or key[1] == operation_id)
        ]
        if not keys:
            return

        for key in keys:
            del self._registrations[key]
            self._cancel_timers(key)
            logger.debug(f"Stopped tracking {key[0]} (op={key[1]})")
        self._registrations_changed()

    def clear_all_tracking(self) -> None:
        """Drop every registration and snapshot immediately."""
        for key in list(self._removal_timers) + list(self._eviction_timers):
            self._cancel_timers(key)
        self._registrations.clear()
        self._generation += 1
        self.scheduler.cancel(self._poll_event)
        self._poll_event = None
        self._publish([])

    def close(self) -> None:
        """Cancel all polling and timers; results still in flight are discarded."""
        if self._closed:
            return
        self.clear_all_tracking()
        self._closed = True
        self._listeners.clear()

    def _registrations_changed(self) -> None:
        # Restart the poll task: immediate poll, then every poll_interval.
        self._generation += 1
        self.scheduler.cancel(self._poll_event)
        self._poll_event = None

        if not self._registrations:
            if self._operations:
                self._publish([])
            return

        self._poll_event = self.scheduler.call_later(0, self._poll, self._generation)

    def _poll(self, generation: int) -> None:
        if self._closed or generation != self._generation:
            return

        self._poll_event = self.scheduler.call_later(
            self.poll_interval, self._poll, generation
        )

        now = self.scheduler.now()
        entries: List[Tuple[OperationKey, OperationSnapshot]] = []

        for tracked in list(self._registrations.values()):
            elapsed_ms = int((now - tracked.start_time) * 1000)
            try:
                result = self._fetch_status(tracked.vm_id, tracked.operation_id)
                if not isinstance(result, PowerOperation):
                    result = PowerOperation.from_dict(result)
            except Exception as e:
                logger.error(f"Failed to poll operation {tracked.operation_id}: {e}")
                snapshot = self._failure_snapshot(tracked, elapsed_ms)
            else:
                snapshot = OperationSnapshot.from_operation(result, tracked, elapsed_ms)

            if self._closed or generation != self._generation:
                logger.debug("Registrations changed during poll; discarding cycle")
                return

            # Synthesized failures are terminal too
            if snapshot.is_terminal:
                self._schedule_removal(tracked.key)
            entries.append((tracked.key, snapshot))

        self._publish(entries)

    def _failure_snapshot(
        self, tracked: TrackedOperation, elapsed_ms: int
    ) -> OperationSnapshot:
        return OperationSnapshot(
            vm_id=tracked.vm_id,
            action=tracked.action,
            status=UNRESOLVED_STATUS,
            message=TRACKING_FAILED_MESSAGE,
            timestamp=datetime.now(timezone.utc).isoformat(),
            task=OperationTask(
                id=tracked.operation_id, status="failed", type="power_operation"
            ),
            is_tracking=False,
            elapsed_ms=elapsed_ms,
            operation_id=tracked.operation_id,
        )

    def _schedule_removal(self, key: OperationKey) -> None:
        event = self.scheduler.call_later(
            self.removal_delay, self._retire, key, priority=PRIORITY_RETIRE
        )
        self._removal_timers.setdefault(key, []).append(event)

    def _retire(self, key: OperationKey) -> None:
        if key in self._registrations:
            self.stop_tracking(*key)

    def _evict(self, key: OperationKey) -> None:
        self._eviction_timers.pop(key, None)
        if key in self._registrations:
            logger.warning(
                f"Evicting finished operation {key[1]} on {key[0]} "
                f"after {self.eviction_delay}s"
            )
            self.stop_tracking(*key)

    def _cancel_timers(self, key: OperationKey) -> None:
        for event in self._removal_timers.pop(key, []):
            self.scheduler.cancel(event)
        self.scheduler.cancel(self._eviction_timers.pop(key, None))

    def _publish(self, entries: List[Tuple[OperationKey, OperationSnapshot]]) -> None:
        self._operations = [snapshot for _, snapshot in entries]

        for key, snapshot in entries:
            if snapshot.is_terminal and key not in self._eviction_timers:
                self._eviction_timers[key] = self.scheduler.call_later(
                    self.eviction_delay, self._evict, key, priority=PRIORITY_RETIRE
                )

        snapshots = self.operations
        for listener in list(self._listeners):
            try:
                listener(snapshots)
            except Exception:
                logger.exception("Operation listener raised; continuing")
