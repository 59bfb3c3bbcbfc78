"""Tests for spec admissibility checks (spec_validator.py)."""

import pytest

from pve_provisioner.models.provisioning_models import (
    ContainerSpec,
    ResourceCatalog,
    VMSpec,
)
from pve_provisioner.utils.errors import (
    AlreadyExistsError,
    InvalidDescriptorError,
    MediaNotFoundError,
    MissingFieldError,
    NetworkNotFoundError,
    StorageNotFoundError,
)


def vm_spec(**overrides) -> VMSpec:
    values = dict(node="pve", vmid=201, disk="local-lvm:32", bridge="vmbr0",
                  iso="local:iso/debian-12.9.0-amd64-netinst.iso")
    values.update(overrides)
    return VMSpec(**values)


def container_spec(**overrides) -> ContainerSpec:
    values = dict(node="pve", vmid=300, hostname="ct-web", password="pw", storage="local",
                  disk_size=8, bridge="vmbr0",
                  ostemplate="local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst")
    values.update(overrides)
    return ContainerSpec(**values)


class TestRequiredFields:
    @pytest.mark.asyncio
    async def test_missing_fields_are_listed(self, validator, populated_catalog):
        with pytest.raises(MissingFieldError) as exc_info:
            await validator.validate(VMSpec(vmid=201), populated_catalog)
        assert exc_info.value.fields == ["node", "disk", "bridge"]

    @pytest.mark.asyncio
    async def test_identifier_and_name_may_be_deferred(self, validator, populated_catalog):
        await validator.validate(vm_spec(vmid=None, name=None), populated_catalog)

    @pytest.mark.asyncio
    async def test_template_path_only_requires_node(self, validator, populated_catalog):
        await validator.validate(VMSpec(node="pve", vmid=201), populated_catalog, template_path=True)


class TestIdentifier:
    @pytest.mark.asyncio
    async def test_existing_vm_rejected(self, cluster, validator, populated_catalog):
        cluster.add_vm("pve", 201)
        with pytest.raises(AlreadyExistsError) as exc_info:
            await validator.validate(vm_spec(), populated_catalog)
        assert exc_info.value.source == "local"
        assert exc_info.value.vmid == 201

    @pytest.mark.asyncio
    async def test_containers_share_identifier_space(self, cluster, validator, populated_catalog):
        cluster.add_container("pve", 201)
        with pytest.raises(AlreadyExistsError):
            await validator.validate(vm_spec(), populated_catalog)


class TestStorage:
    @pytest.mark.asyncio
    async def test_unknown_storage_lists_alternatives(self, validator, populated_catalog):
        with pytest.raises(StorageNotFoundError) as exc_info:
            await validator.validate(vm_spec(disk="nvme:32"), populated_catalog)

        message = str(exc_info.value)
        for name in populated_catalog.storage_names:
            assert name in message
        assert exc_info.value.available == ["local", "local-lvm"]

    @pytest.mark.asyncio
    async def test_empty_storage_list_is_bypassed(self, validator):
        catalog = ResourceCatalog(node="pve")
        await validator.validate(vm_spec(disk="nvme:32", iso="local:iso/x.iso"), catalog)

    @pytest.mark.asyncio
    async def test_bad_descriptor(self, validator, populated_catalog):
        with pytest.raises(InvalidDescriptorError):
            await validator.validate(vm_spec(disk="local-lvm:lots"), populated_catalog)


class TestNetwork:
    @pytest.mark.parametrize("bridge", ["vmbr0", "vmbr1"])
    def test_default_bridges_always_admitted(self, validator, populated_catalog, bridge):
        validator.check_network(bridge, ResourceCatalog(node="pve"))
        validator.check_network(bridge, populated_catalog)

    def test_unknown_bridge_rejected(self, validator, populated_catalog):
        with pytest.raises(NetworkNotFoundError) as exc_info:
            validator.check_network("vmbr9", populated_catalog)
        assert "vmbr2" in str(exc_info.value)
        assert "vmbr1" in exc_info.value.available

    def test_empty_bridge_list_is_bypassed(self, validator):
        validator.check_network("vmbr9", ResourceCatalog(node="pve"))


class TestBootMedia:
    def test_listed_media_admitted(self, validator, populated_catalog):
        validator.check_boot_media("local:iso/debian-12.9.0-amd64-netinst.iso", populated_catalog)

    def test_convention_prefix_admitted_when_absent(self, validator):
        validator.check_boot_media("local:iso/alpine.iso", ResourceCatalog(node="pve"))

    def test_unknown_media_rejected_with_full_list(self, validator, populated_catalog):
        with pytest.raises(MediaNotFoundError) as exc_info:
            validator.check_boot_media("nfs:iso/alpine.iso", populated_catalog)
        assert "local:iso/debian-12.9.0-amd64-netinst.iso" in str(exc_info.value)
        assert exc_info.value.available == populated_catalog.iso_refs

    def test_degraded_media_is_bypassed(self, validator):
        catalog = ResourceCatalog(node="pve", degraded={"media"})
        validator.check_boot_media("nfs:iso/alpine.iso", catalog)

    @pytest.mark.asyncio
    async def test_media_not_checked_with_cloud_init(self, validator, populated_catalog):
        await validator.validate(vm_spec(iso="nfs:iso/alpine.iso", cloud_init=True), populated_catalog)

    @pytest.mark.asyncio
    async def test_configurable_prefixes(self, allocator, populated_catalog):
        from pve_provisioner.services.spec_validator import SpecValidator

        strict = SpecValidator(allocator, media_bypass_prefixes=())
        with pytest.raises(MediaNotFoundError):
            strict.check_boot_media("local:iso/alpine.iso", populated_catalog)


class TestContainer:
    @pytest.mark.asyncio
    async def test_valid_container(self, validator, populated_catalog):
        await validator.validate_container(container_spec(), populated_catalog)

    @pytest.mark.asyncio
    async def test_password_required(self, validator, populated_catalog):
        with pytest.raises(MissingFieldError) as exc_info:
            await validator.validate_container(container_spec(password=None), populated_catalog)
        assert exc_info.value.fields == ["password"]

    @pytest.mark.asyncio
    async def test_hostname_required(self, validator, populated_catalog):
        with pytest.raises(MissingFieldError):
            await validator.validate_container(container_spec(hostname=""), populated_catalog)

    @pytest.mark.asyncio
    async def test_template_matched_by_filename(self, validator, populated_catalog):
        spec = container_spec(ostemplate="nfs:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst")
        await validator.validate_container(spec, populated_catalog)

    @pytest.mark.asyncio
    async def test_unknown_template_rejected(self, validator, populated_catalog):
        spec = container_spec(ostemplate="nfs:vztmpl/alpine-3.19.tar.xz")
        with pytest.raises(MediaNotFoundError) as exc_info:
            await validator.validate_container(spec, populated_catalog)
        assert "debian-12-standard" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_existing_identifier(self, cluster, validator, populated_catalog):
        cluster.add_vm("pve", 300)
        with pytest.raises(AlreadyExistsError):
            await validator.validate_container(container_spec(), populated_catalog)
