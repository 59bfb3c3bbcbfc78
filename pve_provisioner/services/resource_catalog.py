"""
Cluster Resource Catalog

Builds a point-in-time ResourceCatalog for a node from the Proxmox API:
storage pools, network bridges, boot media (ISO images and container
templates) and VM templates. Every category is fetched best-effort; a
failing category is left empty and recorded as degraded.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pve_provisioner.models.provisioning_models import (
    BootMedia,
    NetworkBridge,
    ResourceCatalog,
    StoragePool,
)
from pve_provisioner.services.template_registry import TemplateRegistry
from pve_provisioner.utils.errors import ProvisioningError

logger = logging.getLogger(__name__)


def _entries(data: Any) -> List[Dict[str, Any]]:
    if not isinstance(data, list):
        return []
    return [entry for entry in data if isinstance(entry, dict)]


def select_storages(node: str, data: Any) -> List[StoragePool]:
    """Deduplicate cluster-wide storage entries by name.

    ``/cluster/resources`` lists a storage once per node; the entry for the
    target node wins, then a shared entry, then the first one seen.
    """
    selected: Dict[str, StoragePool] = {}
    for entry in _entries(data):
        pool = StoragePool.from_api_response(entry)
        if pool is None:
            continue
        existing = selected.get(pool.name)
        if existing is None:
            selected[pool.name] = pool
        elif existing.node != node and (pool.node == node or (pool.shared and not existing.shared)):
            selected[pool.name] = pool
    return list(selected.values())


class ResourceCatalogService:
    """Fetches resource catalogs; holds no state between calls."""

    def __init__(self, api, template_registry: Optional[TemplateRegistry] = None):
        self.api = api
        self.template_registry = template_registry

    async def fetch_catalog(self, node: str) -> ResourceCatalog:
        """Fetch a fresh catalog for ``node``. Never raises on remote errors."""
        catalog = ResourceCatalog(node=node)

        catalog.storages = await self._best_effort(
            catalog, "storage", lambda: self.fetch_storages(node), []
        )
        catalog.bridges = await self._best_effort(
            catalog, "network", lambda: self.fetch_bridges(node), []
        )
        catalog.media = await self.fetch_media(catalog)
        catalog.templates = await self.fetch_templates(catalog)

        logger.debug(
            f"Catalog for {node}: {len(catalog.storages)} storages, "
            f"{len(catalog.bridges)} bridges, {len(catalog.media)} media, "
            f"{len(catalog.templates)} templates, degraded={sorted(catalog.degraded)}"
        )
        return catalog

    async def _best_effort(
        self,
        catalog: ResourceCatalog,
        category: str,
        fetch: Callable[[], Awaitable[Any]],
        default: Any,
    ) -> Any:
        try:
            return await fetch()
        except ProvisioningError as e:
            logger.warning(f"Catalog category '{category}' degraded on {catalog.node}: {e}")
            catalog.degraded.add(category)
            catalog.failures[category] = e
            return default

    async def fetch_storages(self, node: str) -> List[StoragePool]:
        """Cluster-wide storage query, falling back to the node-scoped one."""
        try:
            data = await self.api.get("/cluster/resources", params={"type": "storage"})
            pools = select_storages(node, data)
        except ProvisioningError as e:
            logger.warning(f"Cluster storage query failed, falling back to node {node}: {e}")
            pools = []

        if pools:
            return pools

        data = await self.api.get(f"/nodes/{node}/storage")
        pools = []
        for entry in _entries(data):
            pool = StoragePool.from_api_response(entry)
            if pool:
                pool.node = pool.node or node
                pools.append(pool)
        return pools

    async def fetch_bridges(self, node: str) -> List[NetworkBridge]:
        data = await self.api.get(f"/nodes/{node}/network")
        bridges = (NetworkBridge.from_api_response(entry) for entry in _entries(data))
        return [b for b in bridges if b]

    async def fetch_media(self, catalog: ResourceCatalog) -> List[BootMedia]:
        """List ISO images and container templates across capable pools.

        A failing pool is skipped. The category is degraded when nothing
        could be read at all.
        """
        media: List[BootMedia] = []
        pools = [p for p in catalog.storages if p.can_hold_boot_media]
        failures = 0

        for pool in pools:
            try:
                data = await self.api.get(f"/nodes/{catalog.node}/storage/{pool.name}/content")
            except ProvisioningError as e:
                failures += 1
                logger.warning(f"Skipping content of storage {pool.name} on {catalog.node}: {e}")
                continue
            for entry in _entries(data):
                item = BootMedia.from_api_response(pool.name, entry)
                if item:
                    media.append(item)

        if not catalog.storages or (pools and failures == len(pools)):
            catalog.degraded.add("media")
        return media

    async def fetch_templates(self, catalog: ResourceCatalog) -> Dict[str, int]:
        """VM templates on the node merged with the registry; the registry wins."""
        templates: Dict[str, int] = {}

        async def discover():
            data = await self.api.get(f"/nodes/{catalog.node}/qemu")
            for entry in _entries(data):
                if str(entry.get("template", 0)) != "1" or not entry.get("name"):
                    continue
                try:
                    templates[entry["name"]] = int(entry["vmid"])
                except (KeyError, TypeError, ValueError):
                    continue

        await self._best_effort(catalog, "templates", discover, None)

        if self.template_registry:
            templates.update(self.template_registry.as_mapping())
        return templates
