"""Console entry point for the VM power operation CLI."""

from __future__ import annotations

import argparse
import os
from typing import List

from clients import DEFAULT_API_BASE, POWER_ACTION_PATHS
from config import TrackerConfig
from log_utils import setup_logging
from runner import PowerOperationRunner

FAILURE_STATS = ("failed", "unresolved", "timeout", "not_started")


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Issue VM power actions and track them until they finish",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Power on two VMs and wait for both\n"
            "  vm-power --vms urn:vcloud:vm:1 urn:vcloud:vm:2\n\n"
            "  # Preview a power-off\n"
            "  vm-power --vms urn:vcloud:vm:1 --action power_off --dry-run\n"
        ),
    )

    required = parser.add_argument_group("required arguments")
    required.add_argument(
        "--vms",
        required=True,
        nargs="+",
        metavar="VM_ID",
        help="One or more VM identifiers",
    )

    connection = parser.add_argument_group("connection")
    connection.add_argument(
        "--api-url",
        default=os.environ.get("VCD_API_URL", DEFAULT_API_BASE),
        help=f"API base URL (env VCD_API_URL, default: {DEFAULT_API_BASE})",
    )
    connection.add_argument(
        "--username",
        default=os.environ.get("VCD_USERNAME"),
        help="Login as user@org (env VCD_USERNAME)",
    )
    connection.add_argument(
        "--password",
        default=os.environ.get("VCD_PASSWORD"),
        help="Login password (env VCD_PASSWORD)",
    )
    connection.add_argument("--request-timeout", type=float, default=10)
    connection.add_argument("--max-retries", type=int, default=3)

    mode = parser.add_argument_group("operation mode")
    mode.add_argument(
        "--action",
        choices=sorted(POWER_ACTION_PATHS),
        default="power_on",
        help="Power action to perform (default: power_on)",
    )
    mode.add_argument("--dry-run", action="store_true", help="Simulate only")

    tracking = parser.add_argument_group("tracking")
    tracking.add_argument(
        "--poll-interval",
        type=float,
        default=2.0,
        metavar="SECONDS",
        help="Time between operation status checks (default: 2.0)",
    )
    tracking.add_argument(
        "--removal-delay",
        type=float,
        default=2.0,
        metavar="SECONDS",
        help="How long a finished operation stays listed (default: 2.0)",
    )
    tracking.add_argument(
        "--eviction-delay",
        type=float,
        default=5.0,
        metavar="SECONDS",
        help="Forced removal of finished operations (default: 5.0)",
    )
    tracking.add_argument(
        "--timeout",
        type=float,
        default=600,
        metavar="SECONDS",
        help="Maximum time to wait for all operations (default: 600)",
    )

    output = parser.add_argument_group("logging and output")
    output.add_argument("--export-json", action="store_true")
    output.add_argument("--verbose", action="store_true")
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file="vm-power.log")

    config = TrackerConfig.from_args(args)

    runner = PowerOperationRunner(
        vm_ids=config.vm_ids,
        action=config.action,
        api_url=config.api_url,
        username=config.username,
        password=config.password,
        dry_run=config.dry_run,
        poll_interval=config.poll_interval,
        removal_delay=config.removal_delay,
        eviction_delay=config.eviction_delay,
        timeout=config.timeout,
        request_timeout=config.request_timeout,
        max_retries=config.max_retries,
        export_json=config.export_json,
    )

    stats = runner.run()
    return 1 if any(stats.get(key, 0) > 0 for key in FAILURE_STATS) else 0
