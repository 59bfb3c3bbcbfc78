"""
Payload Encoder

Turns validated specs into the flat key-value configuration grammar of the
Proxmox API: disk and network descriptors, boot media and the cloud-init
drive, cloud-init fields and container rootfs/net0 strings.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from pve_provisioner.models.provisioning_models import (
    CloudInitConfig,
    ContainerSpec,
    VMSpec,
)
from pve_provisioner.services.spec_defaults import os_type_for
from pve_provisioner.utils.errors import InvalidDescriptorError

logger = logging.getLogger(__name__)

DEFAULT_DISK_SIZE = 50  # GiB
DISK_FORMAT = "raw"
DISK_SLOT = "virtio0"
NET_MODEL = "virtio"
CLOUD_INIT_SLOT = "ide2"
DEFAULT_IPCONFIG = "ip=dhcp"
FALLBACK_CLOUD_INIT_STORAGE = "local-lvm"

SSH_KEY_SPLIT_RE = re.compile(r"\s+(?=(?:ssh-|ecdsa-|sk-)[\w@.-]+\s)")
BOOT_DISK_KEYS = ("virtio0", "scsi0", "sata0", "ide0")


def storage_of(descriptor: str) -> str:
    """Pool name of a disk descriptor: the text before the first ``:``."""
    return descriptor.split(":", 1)[0].strip()


def parse_disk_descriptor(descriptor: str) -> Tuple[str, int]:
    """Parse ``storage[:size[G|M]][,options]`` into ``(storage, size)``.

    Accepts its own encoded output, so re-encoding is a no-op. Unit
    suffixes are dropped without conversion and the size is read as GiB.
    """
    if not descriptor or not descriptor.strip():
        raise InvalidDescriptorError("disk", descriptor or "", "descriptor is empty")

    storage, _, rest = descriptor.strip().partition(":")
    storage = storage.strip()
    if not storage:
        raise InvalidDescriptorError("disk", descriptor, "storage name is empty")

    size_text = rest.split(",", 1)[0].strip()
    if not size_text:
        return storage, DEFAULT_DISK_SIZE

    if size_text[-1] in "GgMm":
        size_text = size_text[:-1]
    if not size_text.isdigit() or int(size_text) <= 0:
        raise InvalidDescriptorError(
            "disk", descriptor, "size must be a positive whole number of GiB"
        )
    return storage, int(size_text)


def encode_disk(descriptor: str) -> str:
    storage, size = parse_disk_descriptor(descriptor)
    return f"{storage}:{size},format={DISK_FORMAT}"


def encode_network(bridge: str) -> str:
    return f"{NET_MODEL},bridge={bridge}"


def encode_boot_media(reference: str) -> str:
    return f"{reference},media=cdrom"


def cloud_init_drive(storage: str) -> str:
    return f"{storage}:cloudinit"


def normalize_ssh_keys(keys: Union[str, List[str], None]) -> str:
    """Newline-separate public keys.

    Input commonly arrives space-separated on a single line; a new key is
    recognized by its key-type token (``ssh-``, ``ecdsa-``, ``sk-``).
    """
    if not keys:
        return ""
    if isinstance(keys, str):
        entries = []
        for line in keys.splitlines():
            entries.extend(SSH_KEY_SPLIT_RE.split(line.strip()))
    else:
        entries = list(keys)
    return "\n".join(k.strip() for k in entries if k and k.strip())


def encode_ssh_keys(keys: Union[str, List[str], None]) -> str:
    # qemu sshkeys must be URL-encoded, newlines included
    return quote(normalize_ssh_keys(keys), safe="")


def encode_cloud_init(config: CloudInitConfig) -> Dict[str, Any]:
    """Cloud-init fields for a qemu config; IP configuration defaults to DHCP."""
    payload: Dict[str, Any] = {"ipconfig0": config.ipconfig or DEFAULT_IPCONFIG}
    if config.user:
        payload["ciuser"] = config.user
    if config.password:
        payload["cipassword"] = config.password
    if config.nameserver:
        payload["nameserver"] = config.nameserver
    if config.searchdomain:
        payload["searchdomain"] = config.searchdomain
    if config.ssh_keys:
        payload["sshkeys"] = encode_ssh_keys(config.ssh_keys)
    return payload


def current_disk_storage(current_config: Mapping[str, Any]) -> Optional[str]:
    """Storage holding the boot disk of an existing instance, if known."""
    keys = [current_config.get("bootdisk")] + list(BOOT_DISK_KEYS)
    for key in keys:
        value = current_config.get(key) if key else None
        if isinstance(value, str) and ":" in value:
            return storage_of(value)
    return None


def build_payload(spec: VMSpec) -> Dict[str, Any]:
    """Create payload for ``POST /nodes/{node}/qemu``.

    Expects a default-filled spec. Values are passed through as given.
    """
    payload: Dict[str, Any] = {
        "vmid": spec.vmid,
        "name": spec.name,
        "cores": spec.cores,
        "memory": spec.memory,
        "sockets": spec.sockets,
        "cpu": spec.cpu,
        "ostype": os_type_for(spec.os_family),
        DISK_SLOT: encode_disk(spec.disk),
        "net0": encode_network(spec.bridge),
        "scsihw": "virtio-scsi-pci",
        "bootdisk": DISK_SLOT,
        "acpi": 1,
    }

    if spec.cloud_init:
        payload[CLOUD_INIT_SLOT] = cloud_init_drive(storage_of(spec.disk))
        payload.update(encode_cloud_init(spec.cloud_init_config))
    elif spec.iso:
        payload[CLOUD_INIT_SLOT] = encode_boot_media(spec.iso)

    return {k: v for k, v in payload.items() if v is not None}


def build_reconfigure_payload(
    spec: VMSpec, current_config: Mapping[str, Any]
) -> Dict[str, Any]:
    """Incremental config for a cloned instance.

    Only caller-supplied fields are emitted. Disk overrides are applied at
    clone time and never appear here. The cloud-init drive is attached only
    when the slot is free in ``current_config``.
    """
    payload: Dict[str, Any] = {}
    overridden = spec.overridden_fields()

    for field_name in ("name", "cores", "memory", "sockets", "cpu"):
        if field_name in overridden:
            payload[field_name] = getattr(spec, field_name)
    if "bridge" in overridden:
        payload["net0"] = encode_network(spec.bridge)

    if spec.cloud_init:
        occupant = current_config.get(CLOUD_INIT_SLOT)
        if occupant is None:
            storage = (
                storage_of(spec.disk)
                if spec.disk
                else current_disk_storage(current_config) or FALLBACK_CLOUD_INIT_STORAGE
            )
            payload[CLOUD_INIT_SLOT] = cloud_init_drive(storage)
        elif "cloudinit" in str(occupant):
            logger.info(f"Cloud-init drive already attached at {CLOUD_INIT_SLOT}")
        else:
            logger.warning(
                f"{CLOUD_INIT_SLOT} is occupied by '{occupant}', not attaching cloud-init drive"
            )
        payload.update(encode_cloud_init(spec.cloud_init_config))

    return payload


def encode_container_network(bridge: str, ip: Optional[str]) -> str:
    address = ip or "dhcp"
    if not address.startswith(("ip=", "ip6=")):
        address = f"ip={address}"
    return f"name=eth0,bridge={bridge},{address}"


def build_container_payload(spec: ContainerSpec) -> Dict[str, Any]:
    """Create payload for ``POST /nodes/{node}/lxc``; expects a filled spec."""
    payload: Dict[str, Any] = {
        "vmid": spec.vmid,
        "hostname": spec.hostname,
        "cores": spec.cores,
        "memory": spec.memory,
        "swap": spec.swap,
        "storage": spec.storage,
        "rootfs": f"{spec.storage}:{spec.disk_size}",
        "net0": encode_container_network(spec.bridge, spec.ip),
        "ostemplate": spec.ostemplate,
        "unprivileged": 1 if spec.unprivileged else 0,
        "password": spec.password,
    }
    if spec.ssh_public_keys:
        payload["ssh-public-keys"] = normalize_ssh_keys(spec.ssh_public_keys)

    return {k: v for k, v in payload.items() if v is not None}
