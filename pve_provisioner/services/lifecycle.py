"""Start, stop and delete of existing VMs and containers."""

import logging
from typing import Union

from pve_provisioner.models.provisioning_models import InstanceKind, ProvisioningResult
from pve_provisioner.services.id_allocator import parse_instance_ids
from pve_provisioner.utils.errors import InstanceNotFoundError

logger = logging.getLogger(__name__)


class LifecycleService:
    """Power and removal operations, each checked against the live instance list."""

    def __init__(self, api):
        self.api = api

    async def _ensure_exists(self, node: str, vmid: int, kind: InstanceKind):
        data = await self.api.get(f"/nodes/{node}/{kind.value}")
        if vmid not in parse_instance_ids(data):
            raise InstanceNotFoundError(vmid=vmid, node=node)

    async def _run(
        self, action: str, method: str, node: str, vmid: int, kind: Union[InstanceKind, str], path: str = ""
    ) -> ProvisioningResult:
        kind = InstanceKind(kind)
        await self._ensure_exists(node, vmid, kind)

        logger.info(f"{action.capitalize()} {kind.value} {vmid} on {node}")
        data = await self.api.request(method, f"/nodes/{node}/{kind.value}/{vmid}{path}")
        return ProvisioningResult.from_create_response(node, vmid, data, status=action)

    async def start(self, node: str, vmid: int, kind: Union[InstanceKind, str] = InstanceKind.QEMU) -> ProvisioningResult:
        return await self._run("start", "POST", node, vmid, kind, "/status/start")

    async def stop(self, node: str, vmid: int, kind: Union[InstanceKind, str] = InstanceKind.QEMU) -> ProvisioningResult:
        return await self._run("stop", "POST", node, vmid, kind, "/status/stop")

    async def delete(self, node: str, vmid: int, kind: Union[InstanceKind, str] = InstanceKind.QEMU) -> ProvisioningResult:
        return await self._run("delete", "DELETE", node, vmid, kind)
