"""
REST API client for the Cloud Director VM endpoints.
"""

import logging
import time
from typing import Dict, Optional

import requests

from models import PowerOperation

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "http://localhost:8080"
SESSION_HEADER = "X-VCD-Session"

POWER_ACTION_PATHS = {
    "power_on": "power-on",
    "power_off": "power-off",
    "reboot": "reboot",
    "suspend": "suspend",
    "reset": "reset",
}


class CloudDirectorRestClient:
    """REST client for VM power operations."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        timeout_s: float = 10,
        max_retries: int = 3,
        base_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the REST client.

        Args:
            api_base: Base URL of the API
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
            session: Optional pre-configured requests session
        """
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        self.session = session or requests.Session()
        self.session.headers.update(
            {"Content-Type": "application/json", "Accept": "application/json"}
        )

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{self.api_base}/{path.lstrip('/')}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            The final response

        Raises:
            RuntimeError: If max retries exceeded or the session has expired
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )
            except requests.RequestException as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)
                continue

            if resp.status_code == 401:
                self.session.headers.pop(SESSION_HEADER, None)
                raise RuntimeError("Session expired or invalid (401)")

            if resp.status_code in self.RETRYABLE_STATUS_CODES:
                delay = self._calculate_delay(attempt, resp)
                error_info = _error_message(resp)
                logger.warning(
                    f"Retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = f"HTTP {resp.status_code}: {error_info or resp.text[:200]}"
                time.sleep(delay)
                continue

            return resp

        raise RuntimeError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 60.0)

    def login(self, username: str, password: str) -> Dict:
        """
        Open an API session with basic credentials.

        Args:
            username: Login name (``user@org``)
            password: Password

        Returns:
            Session details as dictionary

        Raises:
            RuntimeError: If the login is rejected
        """
        url = self._url("/cloudapi/1.0.0/sessions")
        try:
            resp = self.session.post(
                url, json={}, auth=(username, password), timeout=self.timeout_s
            )
        except requests.RequestException as e:
            raise RuntimeError(f"Login failed: {e}") from e

        if resp.status_code not in (200, 201):
            raise RuntimeError(f"Login failed ({resp.status_code}): {resp.text}")

        data = resp.json()
        session_id = data.get("id")
        if not session_id:
            raise RuntimeError(f"Login returned unexpected response: {data}")
        self.session.headers[SESSION_HEADER] = session_id
        logger.info(f"Logged in as {username}")
        return data

    def get_vm(self, vm_id: str) -> Dict:
        """
        Get details of a VM.

        Args:
            vm_id: VM identifier

        Returns:
            VM details as dictionary

        Raises:
            RuntimeError: If API call fails
        """
        resp = self._request_with_retry("GET", self._url(f"/api/v1/vms/{vm_id}"))
        if resp.status_code != 200:
            raise RuntimeError(f"Get VM failed ({resp.status_code}): {resp.text}")
        data = resp.json()
        return data.get("data", data) if isinstance(data, dict) else data

    def power_action(self, vm_id: str, action: str) -> PowerOperation:
        """
        Request a power action on a VM.

        Args:
            vm_id: VM identifier
            action: One of power_on, power_off, reboot, suspend, reset

        Returns:
            PowerOperation describing the started task

        Raises:
            ValueError: If the action is unknown
            RuntimeError: If API call fails
        """
        path = POWER_ACTION_PATHS.get(action)
        if path is None:
            raise ValueError(f"Unsupported power action: {action}")

        resp = self._request_with_retry(
            "POST", self._url(f"/api/v1/vms/{vm_id}/{path}"), json={}
        )
        if resp.status_code not in (200, 201, 202):
            raise RuntimeError(f"{action} failed ({resp.status_code}): {resp.text}")
        operation = PowerOperation.from_dict(resp.json())
        if operation.task is None or not operation.task.id:
            raise RuntimeError(f"{action} returned no task for VM {vm_id}")
        return operation

    def power_on(self, vm_id: str) -> PowerOperation:
        return self.power_action(vm_id, "power_on")

    def power_off(self, vm_id: str) -> PowerOperation:
        return self.power_action(vm_id, "power_off")

    def reboot(self, vm_id: str) -> PowerOperation:
        return self.power_action(vm_id, "reboot")

    def suspend(self, vm_id: str) -> PowerOperation:
        return self.power_action(vm_id, "suspend")

    def reset(self, vm_id: str) -> PowerOperation:
        return self.power_action(vm_id, "reset")

    def get_power_operation(self, vm_id: str, operation_id: str) -> PowerOperation:
        """
        Get status of a power operation.

        Args:
            vm_id: VM identifier
            operation_id: Task identifier

        Returns:
            PowerOperation with the current task status

        Raises:
            RuntimeError: If API call fails
        """
        url = self._url(f"/api/v1/vms/{vm_id}/operations/{operation_id}")
        resp = self._request_with_retry("GET", url)
        if resp.status_code != 200:
            raise RuntimeError(
                f"Get operation failed ({resp.status_code}): {resp.text}"
            )
        return PowerOperation.from_dict(resp.json())


def _error_message(resp) -> str:
    try:
        data = resp.json()
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    error = data.get("error")
    if isinstance(error, dict):
        return str(error.get("message", ""))
    return str(data.get("message", ""))
