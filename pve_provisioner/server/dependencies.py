"""Shared dependencies for MCP tools."""

import logging
from typing import Optional

from pve_provisioner.server.config import ProvisionerSettings

logger = logging.getLogger(__name__)


class Dependencies:
    """Container wiring the engine components to one API client.

    Every service receives its collaborators here; none constructs its own
    client.
    """

    def __init__(self, settings: Optional[ProvisionerSettings] = None, api=None):
        self.settings = settings or ProvisionerSettings()

        # Services (lazy initialization)
        self._api = api
        self._template_registry = None
        self._catalog_service = None
        self._allocator = None
        self._validator = None
        self._workflow = None
        self._lifecycle = None

    @property
    def api(self):
        """Get ProxmoxAPI instance."""
        if self._api is None:
            from pve_provisioner.services.proxmox_api import ProxmoxAPI

            self._api = ProxmoxAPI(self.settings.credentials)
        return self._api

    @property
    def template_registry(self):
        """Get TemplateRegistry instance."""
        if self._template_registry is None:
            from pve_provisioner.services.template_registry import TemplateRegistry

            self._template_registry = TemplateRegistry(self.settings.templates_config)
            for error in self._template_registry.get_errors():
                logger.warning(f"Template registry: {error}")
        return self._template_registry

    @property
    def catalog_service(self):
        """Get ResourceCatalogService instance."""
        if self._catalog_service is None:
            from pve_provisioner.services.resource_catalog import ResourceCatalogService

            self._catalog_service = ResourceCatalogService(self.api, self.template_registry)
        return self._catalog_service

    @property
    def allocator(self):
        """Get IdentifierAllocator instance."""
        if self._allocator is None:
            from pve_provisioner.services.id_allocator import IdentifierAllocator

            self._allocator = IdentifierAllocator(self.api, self.settings.allocation)
        return self._allocator

    @property
    def validator(self):
        """Get SpecValidator instance."""
        if self._validator is None:
            from pve_provisioner.services.spec_validator import SpecValidator

            self._validator = SpecValidator(
                self.allocator, media_bypass_prefixes=self.settings.media_bypass_prefixes
            )
        return self._validator

    @property
    def workflow(self):
        """Get ProvisioningWorkflow instance."""
        if self._workflow is None:
            from pve_provisioner.services.provisioning_workflow import ProvisioningWorkflow

            self._workflow = ProvisioningWorkflow(
                self.api,
                self.catalog_service,
                self.allocator,
                self.validator,
                template_registry=self.template_registry,
                default_node=self.settings.node,
                clone_timeout=self.settings.clone_timeout,
                poll_interval=self.settings.task_poll_interval,
            )
        return self._workflow

    @property
    def lifecycle(self):
        """Get LifecycleService instance."""
        if self._lifecycle is None:
            from pve_provisioner.services.lifecycle import LifecycleService

            self._lifecycle = LifecycleService(self.api)
        return self._lifecycle

    async def close(self):
        if self._api is not None and hasattr(self._api, "close"):
            await self._api.close()
