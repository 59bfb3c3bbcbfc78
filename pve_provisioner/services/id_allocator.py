"""Identifier allocation for new instances.

VMs and containers share one identifier space on a cluster, so both
listings are consulted. Allocation is advisory: nothing is reserved, and
the create call remains the arbiter of uniqueness.
"""

import logging
from typing import Any, Iterable, Optional, Set

from pve_provisioner.models.provisioning_models import (
    AllocationPolicy,
    AllocationRange,
    InstanceKind,
)
from pve_provisioner.utils.errors import IdentifierPoolExhaustedError

logger = logging.getLogger(__name__)


def next_free_id(used: Iterable[int], allocation: AllocationRange) -> int:
    """Pick the next identifier under the configured policy."""
    used_ids = set(used)

    if allocation.policy == AllocationPolicy.POOL_SCAN:
        for candidate in range(allocation.pool_start, allocation.pool_end + 1):
            if candidate not in used_ids:
                return candidate
        raise IdentifierPoolExhaustedError(allocation.pool_start, allocation.pool_end)

    return max(used_ids | {allocation.baseline}) + 1


def parse_instance_ids(data: Any) -> Set[int]:
    """Extract identifiers from an instance listing, ignoring malformed entries."""
    ids: Set[int] = set()
    if not isinstance(data, list):
        return ids

    for entry in data:
        if not isinstance(entry, dict):
            continue
        vmid = entry.get("vmid")
        try:
            ids.add(int(vmid))
        except (TypeError, ValueError):
            continue
    return ids


class IdentifierAllocator:
    """Allocates identifiers against the live instance list of a node."""

    def __init__(self, api, allocation: Optional[AllocationRange] = None):
        self.api = api
        self.allocation = allocation or AllocationRange()

    async def current_ids(self, node: str) -> Set[int]:
        """Identifiers in use on ``node`` across VMs and containers.

        Transport failures propagate; a malformed listing counts as empty.
        """
        ids: Set[int] = set()
        for kind in InstanceKind:
            data = await self.api.get(f"/nodes/{node}/{kind.value}")
            if not isinstance(data, list):
                logger.warning(f"Unexpected {kind.value} listing on {node}: {type(data).__name__}")
            ids |= parse_instance_ids(data)
        return ids

    async def exists(self, node: str, vmid: int) -> bool:
        return vmid in await self.current_ids(node)

    async def allocate_id(self, node: str) -> int:
        used = await self.current_ids(node)
        vmid = next_free_id(used, self.allocation)
        logger.info(
            f"Allocated identifier {vmid} on {node} "
            f"({self.allocation.policy.value}, {len(used)} in use)"
        )
        return vmid
