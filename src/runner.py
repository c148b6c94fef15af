"""
Power operation runner: issues VM power actions and watches them finish.
"""

import json
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from clients import DEFAULT_API_BASE, CloudDirectorRestClient
from models import OperationSnapshot, PowerResult
from scheduler import Scheduler
from status import (
    blocked_reason,
    extract_error_message,
    format_duration,
    format_snapshot,
)
from tracker import PowerOperationTracker

logger = logging.getLogger(__name__)


class PowerOperationRunner:
    """Runs one power action across a set of VMs."""

    def __init__(
        self,
        vm_ids: List[str],
        action: str,
        api_url: str = DEFAULT_API_BASE,
        username: Optional[str] = None,
        password: Optional[str] = None,
        dry_run: bool = False,
        poll_interval: float = 2.0,
        removal_delay: float = 2.0,
        eviction_delay: float = 5.0,
        timeout: float = 600,
        request_timeout: float = 10,
        max_retries: int = 3,
        export_json: bool = False,
        api: Optional[CloudDirectorRestClient] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        """
        Initialize the runner.

        Args:
            vm_ids: VMs to act on
            action: Power action (power_on, power_off, reboot, suspend, reset)
            api_url: Base URL of the API
            username: Login name; no login is attempted when None
            password: Login password
            dry_run: If True, only report what would be done
            poll_interval: Seconds between status polls
            removal_delay: Seconds a finished operation stays visible
            eviction_delay: Seconds before a finished operation is force-evicted
            timeout: Overall time to wait for all operations (seconds)
            request_timeout: HTTP request timeout (seconds)
            max_retries: HTTP retries for transient errors
            export_json: Write a JSON report at the end
            api: Optional pre-built REST client
            scheduler: Optional scheduler (tests pass one with a fake clock)
        """
        self.vm_ids = vm_ids
        self.action = action
        self.username = username
        self.password = password
        self.dry_run = dry_run
        self.timeout = timeout
        self.export_json = export_json

        self.api = api or CloudDirectorRestClient(
            api_base=api_url, timeout_s=request_timeout, max_retries=max_retries
        )
        self.scheduler = scheduler or Scheduler()
        self.tracker = PowerOperationTracker(
            self.api.get_power_operation,
            scheduler=self.scheduler,
            poll_interval=poll_interval,
            removal_delay=removal_delay,
            eviction_delay=eviction_delay,
        )
        self.tracker.subscribe(self._on_update)

        self.stats = {
            "total": 0,
            "started": 0,
            "completed": 0,
            "failed": 0,
            "unresolved": 0,
            "timeout": 0,
            "not_started": 0,
            "skipped": 0,
            "dry_run": 0,
        }

        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None
        self.results: List[PowerResult] = []

        # (vm_id, operation_id) -> result awaiting a terminal snapshot
        self._pending: Dict[Tuple[str, str], PowerResult] = {}
        self._last_seen: Dict[Tuple[str, str], OperationSnapshot] = {}

    def _on_update(self, snapshots: List[OperationSnapshot]) -> None:
        for snapshot in snapshots:
            key = (snapshot.vm_id, snapshot.operation_id)
            previous = self._last_seen.get(key)
            self._last_seen[key] = snapshot
            if previous is None or previous.task_status != snapshot.task_status:
                logger.info(format_snapshot(snapshot))
            else:
                logger.debug(format_snapshot(snapshot))

    def run(self) -> Dict:
        """
        Issue the action on every VM and wait for the operations to finish.

        Returns:
            Statistics dictionary
        """
        self.run_start_time = time.time()

        logger.info("=" * 70)
        logger.info(f"VM Power Operation: {self.action}")
        logger.info("=" * 70)
        logger.info(f"VMs: {', '.join(self.vm_ids)}")
        logger.info(f"Dry run: {self.dry_run}")
        logger.info(f"Poll interval: {self.tracker.poll_interval}s")
        logger.info(f"Timeout: {self.timeout}s")
        logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 70)

        if self.username and not self.dry_run:
            self.api.login(self.username, self.password or "")

        for vm_id in self.vm_ids:
            self.stats["total"] += 1

            if self.dry_run:
                logger.info(f"DRY RUN: Would {self.action} {vm_id}")
                self.stats["dry_run"] += 1
                self.results.append(
                    PowerResult(vm_id=vm_id, action=self.action, status="dry_run")
                )
                continue

            try:
                vm = self.api.get_vm(vm_id)
                reason = blocked_reason(vm.get("status"), self.action)
                if reason:
                    logger.warning(f"Skipping {vm_id}: {reason}")
                    self.stats["skipped"] += 1
                    self.results.append(
                        PowerResult(
                            vm_id=vm_id,
                            action=self.action,
                            status="skipped",
                            error_message=reason,
                        )
                    )
                    continue

                operation = self.api.power_action(vm_id, self.action)
            except Exception as e:
                message = extract_error_message(e)
                logger.error(f"Failed to {self.action} {vm_id}: {message}")
                self.stats["not_started"] += 1
                self.results.append(
                    PowerResult(
                        vm_id=vm_id,
                        action=self.action,
                        status="not_started",
                        error_message=message,
                    )
                )
                continue

            operation_id = operation.task.id
            self._pending[(vm_id, operation_id)] = PowerResult(
                vm_id=vm_id,
                action=self.action,
                status="timeout",
                operation_id=operation_id,
                start_time=time.time(),
            )
            self.tracker.start_tracking(vm_id, operation_id, self.action)
            self.stats["started"] += 1
            logger.info(f"Started {self.action}: {vm_id} (op={operation_id})")

        if self.tracker.is_tracking:
            if not self.scheduler.run_until_idle(timeout=self.timeout):
                logger.error(
                    f"Timeout after {self.timeout}s with "
                    f"{len(self.tracker.registrations)} operation(s) still running"
                )
        self.tracker.close()

        self._record_results()
        self.run_end_time = time.time()
        self._print_report()
        if self.export_json:
            self._export_results_json()

        return self.stats

    def _record_results(self) -> None:
        for key, result in self._pending.items():
            snapshot = self._last_seen.get(key)

            if snapshot is None or not snapshot.is_terminal:
                result.status = "timeout"
                result.error_message = f"No final status after {self.timeout}s"
            elif not snapshot.is_tracking:
                result.status = "unresolved"
                result.error_message = snapshot.message
            elif snapshot.task_status == "failed":
                result.status = "failed"
                result.error_message = snapshot.message or "Operation failed"
            else:
                result.status = "completed"

            if snapshot is not None:
                result.message = snapshot.message
                result.duration_seconds = snapshot.elapsed_ms / 1000
                result.end_time = result.start_time + result.duration_seconds

            self.stats[result.status] += 1
            self.results.append(result)
        self._pending.clear()

    def _print_report(self):
        """Print timing and status report."""
        total_duration = self.run_end_time - self.run_start_time

        logger.info("")
        logger.info("=" * 70)
        logger.info("POWER OPERATION REPORT")
        logger.info("=" * 70)
        logger.info(f"Total duration:  {format_duration(total_duration)}")

        logger.info("")
        logger.info("STATISTICS")
        logger.info("-" * 40)
        for k, v in self.stats.items():
            logger.info(f"{k:20s}: {v}")

        completed = [r for r in self.results if r.status == "completed"]
        unsuccessful = [
            r
            for r in self.results
            if r.status
            in ("failed", "unresolved", "timeout", "not_started", "skipped")
        ]

        if completed:
            logger.info("")
            logger.info("COMPLETED")
            logger.info("-" * 40)
            logger.info(f"{'VM':<30} {'Operation':<24} {'Duration':<12} {'Message'}")
            logger.info("-" * 70)
            for r in completed:
                duration_str = (
                    format_duration(r.duration_seconds)
                    if r.duration_seconds is not None
                    else "N/A"
                )
                logger.info(
                    f"{r.vm_id:<30} {r.operation_id or '-':<24} "
                    f"{duration_str:<12} {r.message or ''}"
                )

        if unsuccessful:
            logger.info("")
            logger.info("NOT COMPLETED")
            logger.info("-" * 40)
            logger.info(f"{'VM':<30} {'Operation':<24} {'Status':<12} {'Error'}")
            logger.info("-" * 70)
            for r in unsuccessful:
                error = (
                    (r.error_message[:40] + "...")
                    if r.error_message and len(r.error_message) > 40
                    else (r.error_message or "Unknown")
                )
                logger.info(
                    f"{r.vm_id:<30} {r.operation_id or '-':<24} {r.status:<12} {error}"
                )

        logger.info("")
        logger.info("=" * 70)

    def _export_results_json(self) -> str:
        """Export results to a JSON file and return its name."""
        report = {
            "action": self.action,
            "dry_run": self.dry_run,
            "start_time": datetime.fromtimestamp(self.run_start_time).isoformat(),
            "end_time": datetime.fromtimestamp(self.run_end_time).isoformat(),
            "total_duration_seconds": self.run_end_time - self.run_start_time,
            "statistics": self.stats,
            "results": [
                {
                    "vm_id": r.vm_id,
                    "action": r.action,
                    "operation_id": r.operation_id,
                    "status": r.status,
                    "start_time": (
                        datetime.fromtimestamp(r.start_time).isoformat()
                        if r.start_time
                        else None
                    ),
                    "end_time": (
                        datetime.fromtimestamp(r.end_time).isoformat()
                        if r.end_time
                        else None
                    ),
                    "duration_seconds": r.duration_seconds,
                    "message": r.message,
                    "error_message": r.error_message,
                }
                for r in self.results
            ],
        }

        filename = f"power-report-{datetime.now().strftime('%Y%m%d-%H%M%S')}.json"
        with open(filename, "w") as f:
            json.dump(report, f, indent=2)
        logger.info(f"Detailed report exported to: {filename}")
        return filename
