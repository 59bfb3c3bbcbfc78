"""
Spec Validator

Admissibility checks for VM and container specs against a freshly fetched
ResourceCatalog. Checks run in a fixed order and stop at the first
violation. Not-found errors always carry the admissible alternatives.
"""

import logging
from typing import Iterable, Sequence, Tuple

from pve_provisioner.models.provisioning_models import (
    ContainerSpec,
    ResourceCatalog,
    VMSpec,
)
from pve_provisioner.services.id_allocator import IdentifierAllocator
from pve_provisioner.services.payload_encoder import parse_disk_descriptor
from pve_provisioner.utils.errors import (
    AlreadyExistsError,
    MediaNotFoundError,
    MissingFieldError,
    NetworkNotFoundError,
    StorageNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_BRIDGES = ("vmbr0", "vmbr1")
DEFAULT_MEDIA_BYPASS_PREFIXES = ("local:iso/",)
DEFAULT_TEMPLATE_BYPASS_PREFIXES = ("local:vztmpl/",)


def _missing(**fields) -> list:
    return [name for name, value in fields.items() if value in (None, "")]


class SpecValidator:
    """Validates provisioning specs; see ``validate`` for the check order."""

    def __init__(
        self,
        allocator: IdentifierAllocator,
        media_bypass_prefixes: Sequence[str] = DEFAULT_MEDIA_BYPASS_PREFIXES,
        template_bypass_prefixes: Sequence[str] = DEFAULT_TEMPLATE_BYPASS_PREFIXES,
    ):
        self.allocator = allocator
        self.media_bypass_prefixes: Tuple[str, ...] = tuple(media_bypass_prefixes)
        self.template_bypass_prefixes: Tuple[str, ...] = tuple(template_bypass_prefixes)

    async def validate(
        self, spec: VMSpec, catalog: ResourceCatalog, template_path: bool = False
    ) -> None:
        """Validate a VM spec.

        Order: required fields, identifier uniqueness, storage, network,
        boot media. On the template path only node is required and only
        the fields the caller supplied are checked; boot media does not
        apply to clones.

        Raises:
            MissingFieldError, InvalidDescriptorError, AlreadyExistsError,
            StorageNotFoundError, NetworkNotFoundError, MediaNotFoundError
        """
        if template_path:
            missing = _missing(node=spec.node)
        else:
            missing = _missing(node=spec.node, disk=spec.disk, bridge=spec.bridge)
        if missing:
            raise MissingFieldError(missing)

        if spec.vmid is not None:
            await self.check_identifier(spec.node, spec.vmid)

        if spec.disk:
            storage, _ = parse_disk_descriptor(spec.disk)
            self.check_storage(storage, catalog)

        if spec.bridge:
            self.check_network(spec.bridge, catalog)

        if not template_path and spec.iso and not spec.cloud_init:
            self.check_boot_media(spec.iso, catalog)

    async def validate_container(self, spec: ContainerSpec, catalog: ResourceCatalog) -> None:
        missing = _missing(vmid=spec.vmid, hostname=spec.hostname, node=spec.node)
        if missing:
            raise MissingFieldError(missing)
        if not spec.password:
            raise MissingFieldError(["password"], "Root password is required")

        await self.check_identifier(spec.node, spec.vmid)
        self.check_storage(spec.storage or "", catalog)

        if not spec.disk_size:
            raise MissingFieldError(["disk_size"], "Disk size is required")

        self.check_container_template(spec.ostemplate or "", catalog)
        if spec.bridge:
            self.check_network(spec.bridge, catalog)

    async def check_identifier(self, node: str, vmid: int) -> None:
        if await self.allocator.exists(node, vmid):
            raise AlreadyExistsError(vmid=vmid, node=node, source="local")

    def check_storage(self, storage: str, catalog: ResourceCatalog) -> None:
        available = catalog.storage_names
        if not available:
            logger.warning(f"No storage known on {catalog.node}, admitting '{storage}' unchecked")
            return
        if storage not in available:
            raise StorageNotFoundError(storage, available)

    def check_network(self, bridge: str, catalog: ResourceCatalog) -> None:
        if bridge in DEFAULT_BRIDGES:
            return
        available = catalog.bridge_names
        if not available:
            logger.warning(f"No bridges known on {catalog.node}, admitting '{bridge}' unchecked")
            return
        if bridge not in available:
            raise NetworkNotFoundError(bridge, _with_defaults(available))

    def check_boot_media(self, reference: str, catalog: ResourceCatalog) -> None:
        available = catalog.iso_refs
        if reference in available:
            return
        if reference.startswith(self.media_bypass_prefixes):
            logger.warning(f"Boot media '{reference}' not in catalog, admitted by naming convention")
            return
        if "media" in catalog.degraded:
            logger.warning(f"Boot media unknown on {catalog.node}, admitting '{reference}' unchecked")
            return
        raise MediaNotFoundError(reference, available)

    def check_container_template(self, reference: str, catalog: ResourceCatalog) -> None:
        available = catalog.container_template_refs
        if not reference:
            raise MissingFieldError(["ostemplate"])

        filename = reference.split("/", 1)[-1]
        for volid in available:
            if volid == reference or filename in volid:
                return
        if reference.startswith(self.template_bypass_prefixes):
            logger.warning(f"Template '{reference}' not in catalog, admitted by naming convention")
            return
        if "media" in catalog.degraded:
            logger.warning(f"Templates unknown on {catalog.node}, admitting '{reference}' unchecked")
            return
        raise MediaNotFoundError(reference, available)


def _with_defaults(available: Iterable[str]) -> list:
    names = list(available)
    names.extend(b for b in DEFAULT_BRIDGES if b not in names)
    return names
