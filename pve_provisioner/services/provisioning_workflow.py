"""
Provisioning Workflow

Entry point of the engine. Direct creation runs catalog -> allocate ->
defaults -> validate -> encode -> create. Template-based creation clones a
registered template, waits for the clone task, reads the clone's config,
applies the caller's overrides and optionally powers the instance on.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from pve_provisioner.models.provisioning_models import (
    ContainerSpec,
    ProvisioningResult,
    ResourceCatalog,
    TemplateRef,
    VMSpec,
)
from pve_provisioner.services.id_allocator import IdentifierAllocator
from pve_provisioner.services.payload_encoder import (
    build_container_payload,
    build_payload,
    build_reconfigure_payload,
    parse_disk_descriptor,
)
from pve_provisioner.services.resource_catalog import ResourceCatalogService
from pve_provisioner.services.spec_defaults import (
    default_vm_name,
    fill_container_defaults,
    fill_vm_defaults,
)
from pve_provisioner.services.spec_validator import SpecValidator
from pve_provisioner.services.template_registry import TemplateRegistry
from pve_provisioner.utils.errors import (
    AlreadyExistsError,
    InstanceNotFoundError,
    MissingFieldError,
    PartialProvisioningError,
    ProvisioningError,
    RemoteRejectedError,
    RemoteUnavailableError,
    TemplateNotFoundError,
)
from pve_provisioner.utils.secure_logging import redact_payload

logger = logging.getLogger(__name__)


class ProvisioningWorkflow:
    """Orchestrates VM and container provisioning against one cluster."""

    def __init__(
        self,
        api,
        catalog_service: ResourceCatalogService,
        allocator: IdentifierAllocator,
        validator: SpecValidator,
        template_registry: Optional[TemplateRegistry] = None,
        default_node: Optional[str] = None,
        clone_timeout: float = 300,
        poll_interval: float = 2.0,
    ):
        self.api = api
        self.catalog_service = catalog_service
        self.allocator = allocator
        self.validator = validator
        self.template_registry = template_registry
        self.default_node = default_node
        self.clone_timeout = clone_timeout
        self.poll_interval = poll_interval

    def _resolve_node(self, spec) -> str:
        if not spec.node:
            spec.node = self.default_node
        if not spec.node:
            raise MissingFieldError(["node"])
        return spec.node

    async def provision_vm(self, spec: VMSpec) -> ProvisioningResult:
        """Create a VM directly from a spec.

        Returns:
            Result carrying the create task handle or the created instance

        Raises:
            ProvisioningError subclasses from validation or the remote call
        """
        node = self._resolve_node(spec)
        catalog = await self.catalog_service.fetch_catalog(node)

        if spec.vmid is None:
            spec.vmid = await self.allocator.allocate_id(node)
        fill_vm_defaults(spec, catalog)
        await self.validator.validate(spec, catalog)

        payload = build_payload(spec)
        logger.info(f"Creating VM {spec.vmid} ({spec.name}) on {node}")
        logger.debug(f"Create payload for VM {spec.vmid}: {redact_payload(payload)}")

        try:
            data = await self.api.post(f"/nodes/{node}/qemu", payload)
        except AlreadyExistsError as e:
            raise _conflict(e, node, spec.vmid) from e

        result = ProvisioningResult.from_create_response(node, spec.vmid, data)
        result.steps.append("create")
        return result

    async def provision_container(self, spec: ContainerSpec) -> ProvisioningResult:
        """Create an LXC container directly from a spec."""
        node = self._resolve_node(spec)
        catalog = await self.catalog_service.fetch_catalog(node)

        if spec.vmid is None:
            spec.vmid = await self.allocator.allocate_id(node)
        fill_container_defaults(spec)
        await self.validator.validate_container(spec, catalog)

        payload = build_container_payload(spec)
        logger.info(f"Creating container {spec.vmid} ({spec.hostname}) on {node}")
        logger.debug(f"Create payload for container {spec.vmid}: {redact_payload(payload)}")

        try:
            data = await self.api.post(f"/nodes/{node}/lxc", payload)
        except AlreadyExistsError as e:
            raise _conflict(e, node, spec.vmid) from e

        result = ProvisioningResult.from_create_response(node, spec.vmid, data)
        result.steps.append("create")
        return result

    def resolve_template(self, name: Optional[str], catalog: ResourceCatalog) -> TemplateRef:
        """Look a template name up in the registry, then in the catalog."""
        if not name:
            raise MissingFieldError(["template"])

        if self.template_registry:
            ref = self.template_registry.get(name)
            if ref:
                return ref

        if name in catalog.templates:
            return TemplateRef(name=name, vmid=catalog.templates[name])

        known = set(catalog.templates)
        if self.template_registry:
            known.update(self.template_registry.names())
        raise TemplateNotFoundError(name, sorted(known))

    async def provision_from_template(self, spec: VMSpec) -> ProvisioningResult:
        """Clone a template and apply the caller's overrides.

        Steps: clone, settle, read_config, reconfigure (only when something
        was overridden), start (only with cloud-init). Once the clone call
        has been accepted any failure is a PartialProvisioningError.
        """
        node = self._resolve_node(spec)
        catalog = await self.catalog_service.fetch_catalog(node)
        template = self.resolve_template(spec.template, catalog)

        if spec.vmid is None:
            spec.vmid = await self.allocator.allocate_id(node)
        await self.validator.validate(spec, catalog, template_path=True)

        vmid = spec.vmid
        source_node = template.node or node
        clone_payload: Dict[str, Any] = {
            "newid": vmid,
            "name": spec.name or default_vm_name(vmid),
            "full": 1,
            "target": node,
        }
        if spec.disk:
            # Disk overrides choose the target storage of the full clone
            clone_payload["storage"], _ = parse_disk_descriptor(spec.disk)

        logger.info(
            f"Cloning template {template.name} ({source_node}/{template.vmid}) to {node}/{vmid}"
        )
        try:
            data = await self.api.post(
                f"/nodes/{source_node}/qemu/{template.vmid}/clone", clone_payload
            )
        except AlreadyExistsError as e:
            raise _conflict(e, node, vmid) from e

        steps: List[str] = ["clone"]
        clone_task = data if isinstance(data, str) and data.startswith("UPID:") else None

        try:
            if clone_task:
                await self.api.wait_for_task(
                    source_node, clone_task, self.clone_timeout, self.poll_interval
                )
            else:
                await self._wait_for_config(node, vmid)
        except AlreadyExistsError as e:
            # Another request owns the identifier; the instance is not ours
            raise _conflict(e, node, vmid) from e
        except ProvisioningError as e:
            if await self._instance_exists(node, vmid):
                raise PartialProvisioningError(node, vmid, "settle", e, steps) from e
            raise
        steps.append("settle")

        result = ProvisioningResult(node=node, vmid=vmid, status="cloned", task_id=clone_task)
        step = "read_config"
        try:
            current = await self.api.get(f"/nodes/{node}/qemu/{vmid}/config") or {}
            steps.append(step)

            step = "reconfigure"
            payload = build_reconfigure_payload(spec, current)
            if payload:
                logger.debug(f"Reconfigure payload for VM {vmid}: {redact_payload(payload)}")
                await self.api.put(f"/nodes/{node}/qemu/{vmid}/config", payload)
                steps.append(step)
            else:
                logger.info(f"No overrides for VM {vmid}, skipping reconfigure")

            if spec.cloud_init:
                step = "start"
                start_task = await self.api.post(f"/nodes/{node}/qemu/{vmid}/status/start")
                steps.append(step)
                result.status = "started"
                if isinstance(start_task, str):
                    result.task_id = start_task
        except ProvisioningError as e:
            logger.error(f"VM {vmid} on {node} left partially provisioned at '{step}': {e}")
            raise PartialProvisioningError(node, vmid, step, e, steps) from e

        result.steps = steps
        logger.info(f"Provisioned VM {vmid} on {node} from template {template.name}: {steps}")
        return result

    async def _wait_for_config(self, node: str, vmid: int):
        """Poll the new instance's config until it exists and is unlocked."""
        deadline = time.monotonic() + self.clone_timeout
        while True:
            try:
                config = await self.api.get(f"/nodes/{node}/qemu/{vmid}/config")
                if isinstance(config, dict) and not config.get("lock"):
                    return config
            except (InstanceNotFoundError, RemoteRejectedError) as e:
                logger.debug(f"VM {vmid} not ready on {node}: {e}")

            if time.monotonic() >= deadline:
                raise RemoteUnavailableError(
                    f"Timed out after {self.clone_timeout}s waiting for VM {vmid} on {node}"
                )
            await asyncio.sleep(self.poll_interval)

    async def _instance_exists(self, node: str, vmid: int) -> bool:
        try:
            return await self.allocator.exists(node, vmid)
        except ProvisioningError as e:
            # Unknown: report as partial so the caller checks for an orphan
            logger.warning(f"Could not confirm whether VM {vmid} exists on {node}: {e}")
            return True


def _conflict(error: AlreadyExistsError, node: str, vmid: int) -> AlreadyExistsError:
    return AlreadyExistsError(vmid=vmid, node=node, source="remote", detail=error.detail)
