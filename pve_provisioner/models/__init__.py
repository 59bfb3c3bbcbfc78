"""Models package for pve-provisioner."""
from .provisioning_models import (
    AllocationPolicy,
    AllocationRange,
    BootMedia,
    CloudInitConfig,
    ContainerSpec,
    InstanceKind,
    NetworkBridge,
    ProvisioningResult,
    ProxmoxAPICredentials,
    ResourceCatalog,
    StoragePool,
    TemplateRef,
    VMSpec,
)

__all__ = [
    "AllocationPolicy",
    "AllocationRange",
    "BootMedia",
    "CloudInitConfig",
    "ContainerSpec",
    "InstanceKind",
    "NetworkBridge",
    "ProvisioningResult",
    "ProxmoxAPICredentials",
    "ResourceCatalog",
    "StoragePool",
    "TemplateRef",
    "VMSpec",
]
