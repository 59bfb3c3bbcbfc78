"""Shared pytest fixtures for pve-provisioner tests."""

import sys
from pathlib import Path

# Add the project root to Python path to enable package imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from pve_provisioner.models.provisioning_models import AllocationRange, ResourceCatalog
from pve_provisioner.services.id_allocator import IdentifierAllocator
from pve_provisioner.services.provisioning_workflow import ProvisioningWorkflow
from pve_provisioner.services.resource_catalog import ResourceCatalogService
from pve_provisioner.services.spec_validator import SpecValidator
from pve_provisioner.services.template_registry import TemplateRegistry
from tests.mock_proxmox import FakeProxmoxCluster


@pytest.fixture
def cluster():
    """Fake cluster with one node, two storages and the default ISO."""
    return FakeProxmoxCluster()


@pytest.fixture
def registry():
    return TemplateRegistry.from_mapping({"ubuntu-22.04": 100})


@pytest.fixture
def allocator(cluster):
    return IdentifierAllocator(cluster, AllocationRange())


@pytest.fixture
def validator(allocator):
    return SpecValidator(allocator)


@pytest.fixture
def catalog_service(cluster, registry):
    return ResourceCatalogService(cluster, registry)


@pytest.fixture
def workflow(cluster, catalog_service, allocator, validator, registry):
    return ProvisioningWorkflow(
        cluster,
        catalog_service,
        allocator,
        validator,
        template_registry=registry,
        default_node="pve",
        clone_timeout=1,
        poll_interval=0.01,
    )


@pytest.fixture
def populated_catalog():
    """Catalog as fetched from a healthy node."""
    from pve_provisioner.models.provisioning_models import (
        BootMedia,
        NetworkBridge,
        StoragePool,
    )

    return ResourceCatalog(
        node="pve",
        storages=[
            StoragePool(name="local", type="dir", content=["iso", "vztmpl"]),
            StoragePool(name="local-lvm", type="lvmthin", content=["images"]),
        ],
        bridges=[NetworkBridge(name="vmbr0", type="bridge", active=True),
                 NetworkBridge(name="vmbr2", type="bridge", active=True)],
        media=[
            BootMedia(volid="local:iso/debian-12.9.0-amd64-netinst.iso", storage="local"),
            BootMedia(
                volid="local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst",
                storage="local",
                content="vztmpl",
            ),
        ],
        templates={"ubuntu-22.04": 9000},
    )
