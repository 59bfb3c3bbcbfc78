"""Default-filling and normalization of inbound provisioning specs."""

import logging
from typing import Dict, Iterable, Optional

from pve_provisioner.models.provisioning_models import (
    ContainerSpec,
    ResourceCatalog,
    VMSpec,
)

logger = logging.getLogger(__name__)

VM_DEFAULTS = {
    "cores": 2,
    "memory": 4096,
    "disk": "local-lvm:32",
    "bridge": "vmbr0",
    "cpu": "host",
    "sockets": 1,
}

CONTAINER_DEFAULTS = {
    "memory": 2000,
    "swap": 2000,
    "cores": 2,
    "disk_size": 8,
    "storage": "local",
    "bridge": "vmbr0",
    "ip": "dhcp",
    "ostemplate": "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst",
}

DEFAULT_OS_TYPE = "l26"

OS_TYPE_ALIASES = {
    "debian": "l26",
    "ubuntu": "l26",
    "linux": "l26",
    "windows": "win10",
}

# Fallback boot media per family when the catalog holds no matching image
DEFAULT_BOOT_MEDIA: Dict[str, str] = {
    "debian": "local:iso/debian-12.9.0-amd64-netinst.iso",
    "ubuntu": "local:iso/ubuntu-22.04.3-live-server-amd64.iso",
    "windows": "local:iso/windows-server-2022.iso",
}


def os_type_for(os_family: Optional[str]) -> str:
    """Map an OS family tag onto a Proxmox ``ostype`` value.

    Unknown tags are passed through, so native values such as ``l24`` or
    ``win11`` keep working.
    """
    if not os_family:
        return DEFAULT_OS_TYPE
    tag = os_family.strip().lower()
    return OS_TYPE_ALIASES.get(tag, tag)


def media_family_for(os_family: Optional[str]) -> str:
    tag = (os_family or "").strip().lower()
    if tag in DEFAULT_BOOT_MEDIA:
        return tag
    if os_type_for(tag).startswith("w"):
        return "windows"
    return "debian"


def default_boot_media(os_family: Optional[str], iso_refs: Iterable[str]) -> str:
    """Pick boot media for an OS family, preferring images on the node."""
    family = media_family_for(os_family)
    chosen = None
    for ref in iso_refs:
        if family in ref.lower():
            chosen = ref
    return chosen or DEFAULT_BOOT_MEDIA[family]


def default_vm_name(vmid: int) -> str:
    return f"vm-{vmid}"


def fill_vm_defaults(spec: VMSpec, catalog: Optional[ResourceCatalog] = None) -> VMSpec:
    """Fill unset hardware fields of a direct-creation spec in place.

    Boot media is only defaulted when cloud-init is not requested, since
    the cloud-init drive takes the same controller slot.
    """
    for field_name, value in VM_DEFAULTS.items():
        if getattr(spec, field_name) in (None, ""):
            setattr(spec, field_name, value)

    if not spec.name and spec.vmid is not None:
        spec.name = default_vm_name(spec.vmid)
        logger.info(f"Generated VM name: {spec.name}")

    if not spec.iso and not spec.cloud_init:
        iso_refs = catalog.iso_refs if catalog else []
        spec.iso = default_boot_media(spec.os_family, iso_refs)
        logger.info(f"Defaulted boot media to {spec.iso}")

    return spec


def fill_container_defaults(spec: ContainerSpec) -> ContainerSpec:
    for field_name, value in CONTAINER_DEFAULTS.items():
        if getattr(spec, field_name) in (None, ""):
            setattr(spec, field_name, value)
    return spec
