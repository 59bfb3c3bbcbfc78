"""Provisioning tools for the pve-provisioner MCP server."""

import logging
from typing import Any, Dict, List, Literal, Optional, Union

from fastmcp import FastMCP
from pydantic import ValidationError

from pve_provisioner.models.provisioning_models import ResourceCatalog
from pve_provisioner.models.requests import (
    ContainerCreateRequest,
    TemplateCloneRequest,
    VMCreateRequest,
)
from pve_provisioner.server.dependencies import Dependencies
from pve_provisioner.server.utils import format_error, format_response
from pve_provisioner.services.payload_encoder import build_payload
from pve_provisioner.services.spec_defaults import fill_vm_defaults
from pve_provisioner.utils.errors import (
    MissingFieldError,
    ProvisioningError,
    RemoteUnavailableError,
)
from pve_provisioner.utils.retry import retry_with_backoff
from pve_provisioner.utils.secure_logging import redact_payload

logger = logging.getLogger(__name__)

TOOL_ERRORS = (ProvisioningError, ValidationError, ValueError)
CORE_CATEGORIES = {"storage", "network", "templates"}


class ProvisioningTools:
    """Tool implementations; every method returns a response dict."""

    def __init__(self, deps: Dependencies):
        self.deps = deps

    def _node(self, node: Optional[str]) -> str:
        node = node or self.deps.settings.node
        if not node:
            raise MissingFieldError(["node"])
        return node

    @retry_with_backoff(max_retries=3, base_delay=0.5, exceptions=(RemoteUnavailableError,))
    async def _fetch_resources(self, node: str) -> ResourceCatalog:
        catalog = await self.deps.catalog_service.fetch_catalog(node)
        if CORE_CATEGORIES <= catalog.degraded:
            causes = [catalog.failures.get(c) for c in sorted(CORE_CATEGORIES)]
            for cause in causes:
                # Rejections such as a bad token are not outages
                if isinstance(cause, ProvisioningError) and not isinstance(cause, RemoteUnavailableError):
                    raise cause
            raise RemoteUnavailableError(f"Proxmox API unreachable for node {node}")
        return catalog

    async def get_resources(self, node: Optional[str] = None) -> Dict[str, Any]:
        try:
            catalog = await self._fetch_resources(self._node(node))
            return format_response({"resources": catalog.to_dict()})
        except TOOL_ERRORS as e:
            return format_error(e, "get_resources")

    async def allocate_vm_id(self, node: Optional[str] = None) -> Dict[str, Any]:
        try:
            node = self._node(node)
            vmid = await self.deps.allocator.allocate_id(node)
            return format_response({"node": node, "vmid": vmid})
        except TOOL_ERRORS as e:
            return format_error(e, "allocate_vm_id")

    async def validate_vm(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Fill defaults and validate without creating; returns the payload."""
        try:
            spec = VMCreateRequest(**request).to_spec()
            spec.node = self._node(spec.node)
            catalog = await self.deps.catalog_service.fetch_catalog(spec.node)
            if spec.vmid is None:
                spec.vmid = await self.deps.allocator.allocate_id(spec.node)
            fill_vm_defaults(spec, catalog)
            await self.deps.validator.validate(spec, catalog)
            return format_response(
                {
                    "valid": True,
                    "node": spec.node,
                    "vmid": spec.vmid,
                    "payload": redact_payload(build_payload(spec)),
                    "degraded": sorted(catalog.degraded),
                }
            )
        except TOOL_ERRORS as e:
            return format_error(e, "validate_vm")

    async def create_vm(self, request: Dict[str, Any]) -> Dict[str, Any]:
        try:
            spec = VMCreateRequest(**request).to_spec()
            result = await self.deps.workflow.provision_vm(spec)
            return format_response(result.to_dict())
        except TOOL_ERRORS as e:
            return format_error(e, "create_vm")

    async def clone_vm(self, request: Dict[str, Any]) -> Dict[str, Any]:
        try:
            spec = TemplateCloneRequest(**request).to_spec()
            result = await self.deps.workflow.provision_from_template(spec)
            return format_response(result.to_dict())
        except TOOL_ERRORS as e:
            return format_error(e, "clone_vm")

    async def create_container(self, request: Dict[str, Any]) -> Dict[str, Any]:
        try:
            spec = ContainerCreateRequest(**request).to_spec()
            result = await self.deps.workflow.provision_container(spec)
            return format_response(result.to_dict())
        except TOOL_ERRORS as e:
            return format_error(e, "create_container")

    async def instance_action(
        self, action: str, vmid: int, node: Optional[str] = None, kind: str = "qemu"
    ) -> Dict[str, Any]:
        tool_name = f"{action}_instance"
        try:
            operation = getattr(self.deps.lifecycle, action)
            result = await operation(self._node(node), int(vmid), kind)
            return format_response(result.to_dict())
        except TOOL_ERRORS as e:
            return format_error(e, tool_name)


def register_tools(mcp: FastMCP, deps: Dependencies):
    """Register provisioning tools with the MCP instance."""
    tools = ProvisioningTools(deps)

    @mcp.tool()
    async def get_resources(node: Optional[str] = None) -> dict:
        """List storages, networks, ISO images, container templates and VM templates of a node.

        Args:
            node: Proxmox node (default: PROXMOX_NODE)
        """
        return await tools.get_resources(node)

    @mcp.tool()
    async def allocate_vm_id(node: Optional[str] = None) -> dict:
        """Suggest the next free VM/container identifier. Nothing is reserved.

        Args:
            node: Proxmox node (default: PROXMOX_NODE)
        """
        return await tools.allocate_vm_id(node)

    @mcp.tool()
    async def validate_vm(
        node: Optional[str] = None,
        vmid: Optional[int] = None,
        name: Optional[str] = None,
        cores: Optional[Union[int, str]] = None,
        memory: Optional[Union[int, str]] = None,
        disk: Optional[str] = None,
        bridge: Optional[str] = None,
        iso: Optional[str] = None,
        os: Optional[str] = None,
        cloud_init: bool = False,
    ) -> dict:
        """Check a VM specification against the live cluster and show the resulting payload.

        Args:
            disk: Disk descriptor, storage[:sizeGiB] (e.g. "local-lvm:32")
            bridge: Network bridge (e.g. "vmbr0")
            iso: Boot media volume id (e.g. "local:iso/debian-12.9.0-amd64-netinst.iso")
            os: OS family (debian, ubuntu, windows) or a Proxmox ostype
        """
        return await tools.validate_vm(
            _supplied(
                node=node, vmid=vmid, name=name, cores=cores, memory=memory, disk=disk,
                bridge=bridge, iso=iso, os=os, cloud_init=cloud_init,
            )
        )

    @mcp.tool()
    async def create_vm(
        node: Optional[str] = None,
        vmid: Optional[int] = None,
        name: Optional[str] = None,
        cores: Optional[Union[int, str]] = None,
        memory: Optional[Union[int, str]] = None,
        disk: Optional[str] = None,
        bridge: Optional[str] = None,
        iso: Optional[str] = None,
        os: Optional[str] = None,
        cpu: Optional[str] = None,
        sockets: Optional[Union[int, str]] = None,
        cloud_init: bool = False,
        cloud_init_config: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """Create a QEMU VM. Unset fields get defaults; vmid is allocated when omitted.

        Args:
            memory: Memory in MB
            disk: Disk descriptor, storage[:sizeGiB]
            cloud_init_config: user, password, ssh_keys, nameserver, searchdomain, ipconfig
        """
        return await tools.create_vm(
            _supplied(
                node=node, vmid=vmid, name=name, cores=cores, memory=memory, disk=disk,
                bridge=bridge, iso=iso, os=os, cpu=cpu, sockets=sockets,
                cloud_init=cloud_init, cloud_init_config=cloud_init_config,
            )
        )

    @mcp.tool()
    async def clone_vm(
        template: str,
        node: Optional[str] = None,
        vmid: Optional[int] = None,
        name: Optional[str] = None,
        cores: Optional[Union[int, str]] = None,
        memory: Optional[Union[int, str]] = None,
        disk: Optional[str] = None,
        bridge: Optional[str] = None,
        cpu: Optional[str] = None,
        sockets: Optional[Union[int, str]] = None,
        cloud_init: bool = False,
        cloud_init_config: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """Full-clone a registered template and apply only the supplied overrides.

        Args:
            template: Template name from the registry or a template VM name on the node
            disk: Target storage for the clone's disks (storage[:size])
            cloud_init: Attach a cloud-init drive if missing, then start the VM
        """
        return await tools.clone_vm(
            _supplied(
                template=template, node=node, vmid=vmid, name=name, cores=cores,
                memory=memory, disk=disk, bridge=bridge, cpu=cpu, sockets=sockets,
                cloud_init=cloud_init, cloud_init_config=cloud_init_config,
            )
        )

    @mcp.tool()
    async def create_container(
        hostname: str,
        password: str,
        node: Optional[str] = None,
        vmid: Optional[int] = None,
        memory: Optional[Union[int, str]] = None,
        swap: Optional[Union[int, str]] = None,
        cores: Optional[Union[int, str]] = None,
        disk_size: Optional[Union[int, str]] = None,
        storage: Optional[str] = None,
        bridge: Optional[str] = None,
        ip: Optional[str] = None,
        template: Optional[str] = None,
        ssh_public_keys: Optional[List[str]] = None,
        unprivileged: bool = True,
    ) -> dict:
        """Create an LXC container.

        Args:
            disk_size: Root filesystem size in GiB
            ip: CIDR address or "dhcp" (default)
            template: Container template volume id (e.g. "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst")
        """
        return await tools.create_container(
            _supplied(
                hostname=hostname, password=password, node=node, vmid=vmid,
                memory=memory, swap=swap, cores=cores, disk_size=disk_size,
                storage=storage, bridge=bridge, ip=ip, template=template,
                ssh_public_keys=ssh_public_keys, unprivileged=unprivileged,
            )
        )

    @mcp.tool()
    async def manage_instance(
        action: Literal["start", "stop", "delete"],
        vmid: int,
        node: Optional[str] = None,
        kind: Literal["qemu", "lxc"] = "qemu",
    ) -> dict:
        """Start, stop or delete an existing VM (qemu) or container (lxc)."""
        return await tools.instance_action(action, vmid, node, kind)

    logger.info("Registered provisioning tools")


def _supplied(**arguments) -> Dict[str, Any]:
    return {k: v for k, v in arguments.items() if v is not None}
