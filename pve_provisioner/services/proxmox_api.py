"""
Proxmox API Client

HTTP client for the Proxmox VE REST API used by the provisioning engine.
Every call carries the API-token header and a bounded timeout, unwraps the
``data`` envelope, and turns failures into the typed errors of
``pve_provisioner.utils.errors`` so callers never inspect error text.
"""

import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, Optional

import aiohttp

from pve_provisioner.models.provisioning_models import ProxmoxAPICredentials
from pve_provisioner.utils.errors import (
    AlreadyExistsError,
    InstanceNotFoundError,
    ProvisioningError,
    RemoteNotImplementedError,
    RemoteRejectedError,
    RemoteUnavailableError,
)
from pve_provisioner.utils.secure_logging import redact_payload

logger = logging.getLogger(__name__)

ALREADY_EXISTS_RE = re.compile(r"already exists", re.IGNORECASE)
INSTANCE_MISSING_RE = re.compile(
    r"configuration file .*does not exist|\b(?:VM|CT)\s+\d+\s+does not exist",
    re.IGNORECASE,
)
VMID_RE = re.compile(r"\b(?:VM|CT)\s+(\d+)\b|/(\d+)\.conf\b")
UNAVAILABLE_STATUSES = frozenset({502, 503, 504})


def extract_error_message(body_text: str, reason: str = "") -> str:
    """Pull a readable message out of a Proxmox error body.

    Proxmox reports parameter errors in an ``errors`` mapping and other
    failures either in ``data.msg``, a top-level ``message`` or only in the
    HTTP reason phrase.
    """
    details = []
    try:
        body = json.loads(body_text) if body_text else None
    except ValueError:
        body = None

    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, dict):
            details.extend(f"{key}: {str(value).strip()}" for key, value in errors.items())
        elif isinstance(errors, list):
            details.extend(str(e).strip() for e in errors)
        elif errors:
            details.append(str(errors).strip())

        data = body.get("data")
        if isinstance(data, dict) and data.get("msg"):
            details.append(str(data["msg"]).strip())
        if body.get("message"):
            details.append(str(body["message"]).strip())
    elif body_text and body is None:
        details.append(body_text.strip())

    parts = [reason.strip()] if reason and reason.strip() else []
    parts.extend(d for d in details if d and d not in parts)
    return " - ".join(parts) or "unknown error"


def _extract_vmid(message: str) -> Optional[int]:
    match = VMID_RE.search(message)
    if not match:
        return None
    return int(match.group(1) or match.group(2))


def classify_message(message: str, status: Optional[int] = None) -> ProvisioningError:
    """Map a remote failure onto the closed set of engine errors."""
    if status == 501:
        return RemoteNotImplementedError(message)
    if ALREADY_EXISTS_RE.search(message):
        return AlreadyExistsError(
            vmid=_extract_vmid(message), source="remote", detail=message
        )
    if INSTANCE_MISSING_RE.search(message):
        return InstanceNotFoundError(vmid=_extract_vmid(message), detail=message)
    if status in UNAVAILABLE_STATUSES:
        return RemoteUnavailableError(f"API error {status}: {message}")
    if status is None:
        return RemoteRejectedError(message)
    return RemoteRejectedError(f"API error {status}: {message}", status=status)


def task_succeeded(exit_status: Optional[str]) -> bool:
    """A stopped task succeeded when it exited OK or with only warnings."""
    return isinstance(exit_status, str) and (
        exit_status == "OK" or exit_status.startswith("WARNINGS")
    )


def classify_error(status: int, body_text: str, reason: str = "") -> ProvisioningError:
    """Classify an HTTP error response (status >= 400)."""
    return classify_message(extract_error_message(body_text, reason), status)


class ProxmoxAPI:
    """Proxmox API client used by the provisioning services."""

    def __init__(
        self,
        credentials: ProxmoxAPICredentials,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize Proxmox API client.

        Args:
            credentials: Proxmox API token credentials
            session: Optional pre-built HTTP session (owned by the caller)
        """
        errors = credentials.validate()
        if errors:
            raise ValueError(f"Invalid credentials: {errors}")

        self.credentials = credentials
        self.base_url = credentials.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if not self._session:
            connector = aiohttp.TCPConnector(
                ssl=self.credentials.verify_ssl, limit=10, limit_per_host=5
            )
            timeout = aiohttp.ClientTimeout(total=self.credentials.timeout)

            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={
                    "Authorization": self.credentials.authorization_header,
                    "Accept": "application/json",
                    "User-Agent": "pve-provisioner/1.0",
                },
            )
            self._owns_session = True

        return self._session

    async def close(self):
        """Close the HTTP session if this client created it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make HTTP request to Proxmox API.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint path, relative to the API base URL
            data: JSON body for POST/PUT requests
            params: Query parameters

        Returns:
            The unwrapped ``data`` field of the response

        Raises:
            RemoteUnavailableError: transport failure or timeout
            RemoteRejectedError: the API refused the request
            AlreadyExistsError: the API reports the identifier is taken
        """
        url = f"{self.base_url}{endpoint}"
        if data:
            logger.debug(f"Request {method} {url} with payload: {redact_payload(data)}")
        else:
            logger.debug(f"Request {method} {url}")

        try:
            async with self.session.request(
                method=method, url=url, json=data, params=params
            ) as response:
                body_text = await response.text()
                logger.debug(f"Response {method} {url}: status {response.status}")

                if response.status >= 400:
                    raise classify_error(
                        response.status, body_text, response.reason or ""
                    )

        except aiohttp.ClientError as e:
            raise RemoteUnavailableError(f"HTTP client error for {method} {endpoint}: {e}")
        except asyncio.TimeoutError:
            raise RemoteUnavailableError(
                f"Request {method} {endpoint} timed out after {self.credentials.timeout}s"
            )

        if not body_text:
            return None
        try:
            body = json.loads(body_text)
        except ValueError:
            raise RemoteRejectedError(
                f"Unparsable response from {method} {endpoint}", status=response.status
            )

        if isinstance(body, dict):
            return body.get("data")
        return body

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", endpoint, params=params)

    async def post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", endpoint, data=data)

    async def put(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("PUT", endpoint, data=data)

    async def delete(self, endpoint: str) -> Any:
        return await self.request("DELETE", endpoint)

    async def wait_for_task(
        self, node: str, task_id: str, timeout: float = 300, interval: float = 2.0
    ) -> Dict[str, Any]:
        """Poll a task until it stops.

        Args:
            node: Node where task is running
            task_id: Task UPID
            timeout: Upper bound on the wait, in seconds
            interval: Delay between status polls, in seconds

        Returns:
            The final task status data

        Raises:
            RemoteUnavailableError: the task did not stop within ``timeout``
            RemoteRejectedError: the task stopped with a failing exit status
        """
        deadline = time.monotonic() + timeout

        while True:
            status_data = await self.request("GET", f"/nodes/{node}/tasks/{task_id}/status")

            if isinstance(status_data, dict) and status_data.get("status") == "stopped":
                exit_status = status_data.get("exitstatus")
                if task_succeeded(exit_status):
                    if exit_status != "OK":
                        logger.warning(f"Task {task_id} on {node} finished with {exit_status}")
                    return status_data
                logger.warning(f"Task {task_id} on {node} failed: {exit_status}")
                raise classify_message(f"Task {task_id} failed: {exit_status}")

            if time.monotonic() >= deadline:
                raise RemoteUnavailableError(
                    f"Timed out after {timeout}s waiting for task {task_id} on {node}"
                )

            await asyncio.sleep(interval)
