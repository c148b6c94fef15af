"""
Configuration management for the VM power operation tracker.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from clients import DEFAULT_API_BASE


@dataclass
class TrackerConfig:
    """Configuration for power operation runs."""

    vm_ids: List[str] = field(default_factory=list)
    action: str = "power_on"
    api_url: str = DEFAULT_API_BASE
    username: Optional[str] = None
    password: Optional[str] = None
    dry_run: bool = False
    poll_interval: float = 2.0
    removal_delay: float = 2.0
    eviction_delay: float = 5.0
    timeout: float = 600
    request_timeout: float = 10
    max_retries: int = 3
    export_json: bool = False
    verbose: bool = False

    @classmethod
    def from_args(cls, args) -> "TrackerConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            TrackerConfig instance
        """
        return cls(
            vm_ids=args.vms,
            action=args.action,
            api_url=args.api_url,
            username=args.username,
            password=args.password,
            dry_run=args.dry_run,
            poll_interval=args.poll_interval,
            removal_delay=args.removal_delay,
            eviction_delay=args.eviction_delay,
            timeout=args.timeout,
            request_timeout=args.request_timeout,
            max_retries=args.max_retries,
            export_json=args.export_json,
            verbose=args.verbose,
        )
