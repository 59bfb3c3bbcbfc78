"""
Provisioning data models for the Proxmox VE control plane.

Covers the inbound specifications (VMs, containers, cloud-init), the
point-in-time resource catalog built from API responses, the identifier
allocation range, and the provisioning result returned to callers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union


class InstanceKind(str, Enum):
    """Proxmox instance types, named after their API path segment."""

    QEMU = "qemu"
    LXC = "lxc"


class AllocationPolicy(str, Enum):
    """Identifier allocation policies."""

    MAX_PLUS_ONE = "max_plus_one"
    POOL_SCAN = "pool_scan"


class MediaContent(str, Enum):
    """Storage content classes that hold boot media."""

    ISO = "iso"
    CONTAINER_TEMPLATE = "vztmpl"


BOOT_MEDIA_CONTENT = frozenset(c.value for c in MediaContent)


@dataclass
class ProxmoxAPICredentials:
    """Proxmox API token credentials."""

    base_url: str
    token_id: Optional[str] = None
    token_secret: Optional[str] = None
    verify_ssl: bool = False
    timeout: int = 30

    def validate(self) -> List[str]:
        """Validate credentials configuration."""
        errors = []

        if not self.base_url:
            errors.append("API URL is required")
        elif not self.base_url.startswith(("http://", "https://")):
            errors.append("API URL must start with http:// or https://")
        if not self.token_id or not self.token_secret:
            errors.append("Both API token ID and token secret must be provided")
        if self.timeout <= 0:
            errors.append("Timeout must be positive")

        return errors

    @property
    def authorization_header(self) -> str:
        return f"PVEAPIToken={self.token_id}={self.token_secret}"


@dataclass
class CloudInitConfig:
    """Cloud-init settings applied through the configuration drive."""

    user: Optional[str] = None
    password: Optional[str] = None
    ssh_keys: Optional[Union[str, List[str]]] = None
    nameserver: Optional[str] = None
    searchdomain: Optional[str] = None
    ipconfig: Optional[str] = None  # e.g. "ip=10.0.0.5/24,gw=10.0.0.1"


@dataclass
class VMSpec:
    """QEMU VM provisioning request.

    ``None`` means "not supplied by the caller". The direct-creation path
    fills defaults; the template path only sends what was supplied.
    """

    node: Optional[str] = None
    vmid: Optional[int] = None
    name: Optional[str] = None
    cores: Optional[int] = None
    memory: Optional[int] = None  # MB
    disk: Optional[str] = None  # storage[:sizeGiB]
    bridge: Optional[str] = None
    iso: Optional[str] = None
    os_family: Optional[str] = None
    cpu: Optional[str] = None
    sockets: Optional[int] = None
    template: Optional[str] = None
    cloud_init: bool = False
    cloud_init_config: CloudInitConfig = field(default_factory=CloudInitConfig)

    def overridden_fields(self) -> Set[str]:
        """Names of the hardware fields the caller actually supplied."""
        names = ("name", "cores", "memory", "disk", "bridge", "cpu", "sockets")
        return {n for n in names if getattr(self, n) not in (None, "")}


@dataclass
class ContainerSpec:
    """LXC container provisioning request."""

    node: Optional[str] = None
    vmid: Optional[int] = None
    hostname: Optional[str] = None
    memory: Optional[int] = None  # MB
    swap: Optional[int] = None  # MB
    cores: Optional[int] = None
    disk_size: Optional[int] = None  # GiB
    storage: Optional[str] = None
    bridge: Optional[str] = None
    ip: Optional[str] = None
    password: Optional[str] = None
    ostemplate: Optional[str] = None
    ssh_public_keys: Optional[List[str]] = None
    unprivileged: bool = True


@dataclass
class StoragePool:
    """Storage pool visible from the target node."""

    name: str
    type: Optional[str] = None
    content: List[str] = field(default_factory=list)
    node: Optional[str] = None
    shared: bool = False
    enabled: bool = True

    @property
    def can_hold_boot_media(self) -> bool:
        # Unknown content types are queried rather than skipped
        if not self.content:
            return True
        return bool(BOOT_MEDIA_CONTENT.intersection(self.content))

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> Optional[StoragePool]:
        """Create from a cluster-resources or node-storage entry.

        Returns None for entries without a storage name.
        """
        name = data.get("storage")
        if not isinstance(name, str) or not name:
            return None

        content = data.get("content")
        return cls(
            name=name,
            # /cluster/resources reports type=storage and the backend in plugintype
            type=data.get("plugintype") or data.get("type"),
            content=[c.strip() for c in content.split(",") if c.strip()]
            if isinstance(content, str)
            else [],
            node=data.get("node"),
            shared=bool(data.get("shared", False)),
            enabled=bool(data.get("enabled", data.get("active", True))),
        )


@dataclass
class NetworkBridge:
    """Network interface reported by a node."""

    name: str
    type: Optional[str] = None
    active: bool = False

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> Optional[NetworkBridge]:
        name = data.get("iface")
        if not isinstance(name, str) or not name:
            return None
        return cls(name=name, type=data.get("type"), active=bool(data.get("active")))


@dataclass
class BootMedia:
    """ISO image or container template stored on a pool."""

    volid: str
    storage: str
    content: str = MediaContent.ISO.value
    format: Optional[str] = None
    size: Optional[int] = None

    @property
    def filename(self) -> str:
        return self.volid.split("/", 1)[-1]

    @classmethod
    def from_api_response(
        cls, storage: str, data: Dict[str, Any]
    ) -> Optional[BootMedia]:
        volid = data.get("volid")
        content = data.get("content")
        if not isinstance(volid, str) or content not in BOOT_MEDIA_CONTENT:
            return None
        size = data.get("size")
        return cls(
            volid=volid,
            storage=storage,
            content=content,
            format=data.get("format"),
            size=int(size) if isinstance(size, (int, float)) else None,
        )


@dataclass
class ResourceCatalog:
    """Point-in-time view of the resources a node can provision against.

    An empty list means the category is unknown, not that nothing exists;
    ``degraded`` names the categories whose fetch failed and ``failures``
    keeps the error behind each.
    """

    node: str
    storages: List[StoragePool] = field(default_factory=list)
    bridges: List[NetworkBridge] = field(default_factory=list)
    media: List[BootMedia] = field(default_factory=list)
    templates: Dict[str, int] = field(default_factory=dict)
    degraded: Set[str] = field(default_factory=set)
    failures: Dict[str, Exception] = field(default_factory=dict, repr=False)
    fetched_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def storage_names(self) -> List[str]:
        return [s.name for s in self.storages]

    @property
    def bridge_names(self) -> List[str]:
        return [b.name for b in self.bridges]

    @property
    def iso_refs(self) -> List[str]:
        return [m.volid for m in self.media if m.content == MediaContent.ISO.value]

    @property
    def container_template_refs(self) -> List[str]:
        return [
            m.volid
            for m in self.media
            if m.content == MediaContent.CONTAINER_TEMPLATE.value
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Resources summary for callers choosing valid alternatives."""
        return {
            "node": self.node,
            "storages": [asdict(s) for s in self.storages],
            "storage_names": self.storage_names,
            "networks": [asdict(b) for b in self.bridges],
            "network_names": self.bridge_names,
            "isos": self.iso_refs,
            "iso_details": [
                asdict(m) for m in self.media if m.content == MediaContent.ISO.value
            ],
            "container_templates": self.container_template_refs,
            "templates": dict(self.templates),
            "degraded": sorted(self.degraded),
            "fetched_at": self.fetched_at,
        }


@dataclass
class AllocationRange:
    """Identifier allocation policy and its bounds."""

    policy: AllocationPolicy = AllocationPolicy.MAX_PLUS_ONE
    baseline: int = 100
    pool_start: int = 2000
    pool_end: int = 3000

    def validate(self) -> List[str]:
        errors = []
        if self.baseline < 100:
            errors.append("Baseline must be at least 100")
        if self.pool_start < 100:
            errors.append("Pool start must be at least 100")
        if self.pool_end < self.pool_start:
            errors.append("Pool end must not be below pool start")
        return errors


@dataclass
class TemplateRef:
    """Registry entry for a named VM template."""

    name: str
    vmid: int
    node: Optional[str] = None


@dataclass
class ProvisioningResult:
    """Outcome of a provisioning call.

    Either ``task_id`` (the remote replied with a task handle) or
    ``instance`` (the remote replied with a finished object) may be set;
    both are successful outcomes.
    """

    node: str
    vmid: int
    status: str = "created"
    task_id: Optional[str] = None
    instance: Optional[Dict[str, Any]] = None
    steps: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def is_task(self) -> bool:
        return self.task_id is not None

    @classmethod
    def from_create_response(
        cls, node: str, vmid: int, data: Any, status: str = "created"
    ) -> ProvisioningResult:
        if isinstance(data, str) and data.startswith("UPID:"):
            return cls(node=node, vmid=vmid, status=status, task_id=data)
        if isinstance(data, dict):
            return cls(node=node, vmid=vmid, status=status, instance=data)
        return cls(node=node, vmid=vmid, status=status)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
