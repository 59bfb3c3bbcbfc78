"""Server configuration loaded from the environment."""
import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from fastmcp import FastMCP

from pve_provisioner.models.provisioning_models import (
    AllocationPolicy,
    AllocationRange,
    ProxmoxAPICredentials,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://localhost:8006/api2/json"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_id_pool(value: str) -> Tuple[int, int]:
    """Parse an inclusive ``start-end`` identifier window."""
    try:
        start, end = (int(part) for part in value.split("-", 1))
    except ValueError:
        raise ValueError(f"Identifier pool must look like 2000-3000, got '{value}'")
    if end < start:
        raise ValueError(f"Identifier pool end {end} is below start {start}")
    return start, end


@dataclass
class ProvisionerSettings:
    """Runtime settings for the provisioning engine."""

    api_url: str = DEFAULT_API_URL
    node: Optional[str] = None
    token_id: Optional[str] = None
    token_secret: Optional[str] = None
    verify_ssl: bool = False
    timeout: int = 30
    allocation: AllocationRange = field(default_factory=AllocationRange)
    templates_config: Optional[str] = None
    clone_timeout: float = 300
    task_poll_interval: float = 2.0
    media_bypass_prefixes: List[str] = field(default_factory=lambda: ["local:iso/"])

    @classmethod
    def from_env(cls) -> "ProvisionerSettings":
        allocation = AllocationRange(
            policy=AllocationPolicy(
                os.getenv("PROVISIONER_ALLOCATION_POLICY", AllocationPolicy.MAX_PLUS_ONE.value).lower()
            )
        )
        pool = os.getenv("PROVISIONER_ID_POOL")
        if pool:
            allocation.pool_start, allocation.pool_end = parse_id_pool(pool)

        prefixes = os.getenv("PROVISIONER_MEDIA_BYPASS_PREFIXES")
        settings = cls(
            api_url=os.getenv("PROXMOX_API_URL", DEFAULT_API_URL),
            node=os.getenv("PROXMOX_NODE"),
            token_id=os.getenv("PROXMOX_TOKEN_ID"),
            token_secret=os.getenv("PROXMOX_TOKEN_SECRET"),
            verify_ssl=_env_bool("PROXMOX_VERIFY_SSL", False),
            timeout=int(os.getenv("PROXMOX_TIMEOUT", "30")),
            allocation=allocation,
            templates_config=os.getenv("PROVISIONER_TEMPLATES_CONFIG"),
            clone_timeout=float(os.getenv("PROVISIONER_CLONE_TIMEOUT", "300")),
            task_poll_interval=float(os.getenv("PROVISIONER_TASK_POLL_INTERVAL", "2")),
        )
        if prefixes is not None:
            settings.media_bypass_prefixes = [p.strip() for p in prefixes.split(",") if p.strip()]
        return settings

    @property
    def credentials(self) -> ProxmoxAPICredentials:
        return ProxmoxAPICredentials(
            base_url=self.api_url,
            token_id=self.token_id,
            token_secret=self.token_secret,
            verify_ssl=self.verify_ssl,
            timeout=self.timeout,
        )

    def validate(self) -> List[str]:
        errors = self.credentials.validate()
        errors.extend(self.allocation.validate())
        if self.clone_timeout <= 0:
            errors.append("Clone timeout must be positive")
        if self.task_poll_interval <= 0:
            errors.append("Task poll interval must be positive")
        return errors


def create_mcp_instance() -> FastMCP:
    """Create the FastMCP instance.

    Returns:
        Configured FastMCP instance
    """
    mcp = FastMCP("pve-provisioner")
    logger.info("FastMCP instance created")
    return mcp
