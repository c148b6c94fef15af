"""
Unit tests for PowerOperationRunner.
"""

import unittest
from unittest.mock import MagicMock, mock_open, patch

from models import OperationTask, PowerOperation
from runner import PowerOperationRunner
from scheduler import Scheduler


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def _operation(vm_id, task_status, message="", task_id=None):
    return PowerOperation(
        vm_id=vm_id,
        action="power_on",
        status="POWERED_ON" if task_status == "completed" else "POWERED_OFF",
        message=message,
        timestamp="2024-05-01T10:00:00Z",
        task=OperationTask(id=task_id or f"task-{vm_id}", status=task_status),
    )


class TestPowerOperationRunner(unittest.TestCase):
    """Test the end-to-end run against a mocked API."""

    def setUp(self):
        self.clock = FakeClock()
        self.scheduler = Scheduler(timefunc=self.clock.time, delayfunc=self.clock.sleep)
        self.api = MagicMock()
        self.api.get_vm.return_value = {"id": "vm", "status": "POWERED_OFF"}
        self.api.power_action.side_effect = lambda vm_id, action: _operation(
            vm_id, "pending"
        )

    def _runner(self, vm_ids, action="power_on", **kwargs):
        return PowerOperationRunner(
            vm_ids=vm_ids,
            action=action,
            api=self.api,
            scheduler=self.scheduler,
            **kwargs,
        )

    def test_completed_operation(self):
        """Test an operation that finishes on the second poll."""
        self.api.get_power_operation.side_effect = [
            _operation("vm-1", "running"),
            _operation("vm-1", "completed", "VM powered on"),
        ]
        runner = self._runner(["vm-1"])

        stats = runner.run()

        self.assertEqual(stats["total"], 1)
        self.assertEqual(stats["started"], 1)
        self.assertEqual(stats["completed"], 1)
        self.assertEqual(stats["failed"], 0)
        result = runner.results[0]
        self.assertEqual(result.status, "completed")
        self.assertEqual(result.operation_id, "task-vm-1")
        self.assertEqual(result.duration_seconds, 2.0)
        self.assertEqual(result.message, "VM powered on")
        self.api.power_action.assert_called_once_with("vm-1", "power_on")
        self.assertTrue(runner.tracker.closed)

    def test_backend_failure(self):
        """Test a task reported failed by the backend."""
        self.api.get_power_operation.return_value = _operation(
            "vm-1", "failed", "Insufficient resources"
        )
        runner = self._runner(["vm-1"])

        stats = runner.run()

        self.assertEqual(stats["failed"], 1)
        self.assertEqual(runner.results[0].error_message, "Insufficient resources")

    def test_tracking_failure_is_unresolved(self):
        """Test a status lookup failure is reported apart from backend failures."""
        self.api.get_power_operation.side_effect = RuntimeError("connection reset")
        runner = self._runner(["vm-1"])

        with self.assertLogs("tracker", level="ERROR"):
            stats = runner.run()

        self.assertEqual(stats["unresolved"], 1)
        self.assertEqual(stats["failed"], 0)
        self.assertEqual(runner.results[0].status, "unresolved")

    def test_start_failure_is_recorded(self):
        """Test a VM whose action cannot be started."""
        self.api.power_action.side_effect = RuntimeError("power-on failed (409): busy")
        runner = self._runner(["vm-1"])

        stats = runner.run()

        self.assertEqual(stats["not_started"], 1)
        self.assertEqual(stats["started"], 0)
        self.assertIn("busy", runner.results[0].error_message)
        self.api.get_power_operation.assert_not_called()

    def test_mixed_fleet(self):
        """Test several VMs with different outcomes."""

        def status(vm_id, op_id):
            return _operation(vm_id, "completed" if vm_id == "vm-1" else "failed")

        self.api.get_power_operation.side_effect = status
        runner = self._runner(["vm-1", "vm-2"])

        stats = runner.run()

        self.assertEqual(stats["completed"], 1)
        self.assertEqual(stats["failed"], 1)
        self.assertEqual(
            {r.vm_id: r.status for r in runner.results},
            {"vm-1": "completed", "vm-2": "failed"},
        )

    def test_shared_task_id_keeps_both_results(self):
        """Test two VMs whose actions report the same task id."""
        self.api.power_action.side_effect = lambda vm_id, action: _operation(
            vm_id, "pending", task_id="task-1"
        )

        def status(vm_id, op_id):
            return _operation(
                vm_id, "completed" if vm_id == "vm-1" else "failed", task_id=op_id
            )

        self.api.get_power_operation.side_effect = status
        runner = self._runner(["vm-1", "vm-2"])

        stats = runner.run()

        self.assertEqual(stats["started"], 2)
        self.assertEqual(stats["completed"], 1)
        self.assertEqual(stats["failed"], 1)
        self.assertEqual(
            [(r.vm_id, r.operation_id, r.status) for r in runner.results],
            [("vm-1", "task-1", "completed"), ("vm-2", "task-1", "failed")],
        )

    def test_power_on_skipped_when_already_on(self):
        """Test a VM already in the requested state is skipped."""
        self.api.get_vm.return_value = {"id": "vm-1", "status": "POWERED_ON"}
        runner = self._runner(["vm-1"])

        stats = runner.run()

        self.assertEqual(stats["skipped"], 1)
        self.assertEqual(stats["started"], 0)
        self.assertEqual(runner.results[0].status, "skipped")
        self.assertEqual(runner.results[0].error_message, "VM is already powered on")
        self.api.get_vm.assert_called_once_with("vm-1")
        self.api.power_action.assert_not_called()

    def test_power_off_requires_powered_on_vm(self):
        """Test actions other than power_on only run on a powered on VM."""
        states = {"vm-1": "POWERED_ON", "vm-2": "SUSPENDED"}
        self.api.get_vm.side_effect = lambda vm_id: {
            "id": vm_id,
            "status": states[vm_id],
        }
        self.api.get_power_operation.side_effect = lambda vm_id, op_id: _operation(
            vm_id, "completed"
        )
        runner = self._runner(["vm-1", "vm-2"], action="power_off")

        stats = runner.run()

        self.assertEqual(stats["completed"], 1)
        self.assertEqual(stats["skipped"], 1)
        self.api.power_action.assert_called_once_with("vm-1", "power_off")
        skipped = [r for r in runner.results if r.status == "skipped"][0]
        self.assertEqual(skipped.vm_id, "vm-2")
        self.assertIn("SUSPENDED", skipped.error_message)

    def test_state_lookup_failure_is_not_started(self):
        """Test a VM whose state cannot be read is not acted on."""
        self.api.get_vm.side_effect = RuntimeError("Get VM failed (404): not found")
        runner = self._runner(["vm-1"])

        stats = runner.run()

        self.assertEqual(stats["not_started"], 1)
        self.assertIn("not found", runner.results[0].error_message)
        self.api.power_action.assert_not_called()

    def test_report_lists_operation_ids(self):
        """Test the report shows which operation each row belongs to."""
        self.api.get_power_operation.return_value = _operation("vm-1", "completed")
        runner = self._runner(["vm-1"])

        with self.assertLogs("runner", level="INFO") as logs:
            runner.run()

        rows = [
            line
            for line in logs.output
            if "task-vm-1" in line and "op=" not in line
        ]
        self.assertTrue(rows)

    def test_timeout(self):
        """Test operations that never finish hit the overall timeout."""
        self.api.get_power_operation.return_value = _operation("vm-1", "running")
        runner = self._runner(["vm-1"], timeout=5)

        stats = runner.run()

        self.assertEqual(stats["timeout"], 1)
        self.assertEqual(runner.results[0].status, "timeout")
        self.assertEqual(self.scheduler.pending, 0)

    def test_dry_run_makes_no_calls(self):
        """Test dry-run reports without touching the API."""
        runner = self._runner(["vm-1", "vm-2"], dry_run=True, username="admin")

        stats = runner.run()

        self.assertEqual(stats["dry_run"], 2)
        self.api.login.assert_not_called()
        self.api.get_vm.assert_not_called()
        self.api.power_action.assert_not_called()
        self.api.get_power_operation.assert_not_called()

    def test_login_when_username_given(self):
        self.api.get_power_operation.return_value = _operation("vm-1", "completed")
        runner = self._runner(["vm-1"], username="admin@system", password="secret")

        runner.run()

        self.api.login.assert_called_once_with("admin@system", "secret")

    @patch("runner.json.dump")
    @patch("builtins.open", new_callable=mock_open)
    def test_export_json(self, mock_file, mock_dump):
        """Test the JSON report contains every result."""
        self.api.get_power_operation.return_value = _operation("vm-1", "completed")
        runner = self._runner(["vm-1"], export_json=True)

        runner.run()

        mock_file.assert_called_once()
        report = mock_dump.call_args[0][0]
        self.assertEqual(report["action"], "power_on")
        self.assertEqual(report["statistics"]["completed"], 1)
        self.assertEqual(report["results"][0]["vm_id"], "vm-1")
        self.assertEqual(report["results"][0]["status"], "completed")


if __name__ == "__main__":
    unittest.main()
