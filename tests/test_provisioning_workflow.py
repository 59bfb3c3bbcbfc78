"""
Tests for the provisioning workflow (provisioning_workflow.py).

Runs the engine end to end against the in-memory control plane.
"""

import asyncio

import pytest

from pve_provisioner.models.provisioning_models import (
    CloudInitConfig,
    ContainerSpec,
    VMSpec,
)
from pve_provisioner.utils.errors import (
    AlreadyExistsError,
    InstanceNotFoundError,
    MissingFieldError,
    NetworkNotFoundError,
    PartialProvisioningError,
    RemoteRejectedError,
    RemoteUnavailableError,
    StorageNotFoundError,
    TemplateNotFoundError,
)


class TestDirectCreation:
    @pytest.mark.asyncio
    async def test_defaults_and_allocation(self, cluster, workflow):
        cluster.add_vm("pve", 150)

        result = await workflow.provision_vm(VMSpec())

        assert result.vmid == 151
        assert result.node == "pve"
        assert result.is_task
        assert result.steps == ["create"]

        config = cluster.vm_config("pve", 151)
        assert config["name"] == "vm-151"
        assert config["cores"] == 2
        assert config["memory"] == 4096
        assert config["virtio0"] == "local-lvm:32,format=raw"
        assert config["net0"] == "virtio,bridge=vmbr0"
        assert config["ide2"] == "local:iso/debian-12.9.0-amd64-netinst.iso,media=cdrom"

    @pytest.mark.asyncio
    async def test_materialized_response_is_success(self, cluster, workflow):
        async def post(endpoint, data=None):
            return {"vmid": data["vmid"], "status": "stopped"}

        cluster.post = post

        result = await workflow.provision_vm(VMSpec(vmid=210))

        assert not result.is_task
        assert result.instance == {"vmid": 210, "status": "stopped"}

    @pytest.mark.asyncio
    async def test_validation_failure_sends_nothing(self, cluster, workflow):
        with pytest.raises(StorageNotFoundError):
            await workflow.provision_vm(VMSpec(vmid=210, disk="nvme:32"))

        assert not cluster.calls_to("POST", r"/nodes/pve/qemu")

    @pytest.mark.asyncio
    async def test_unknown_bridge(self, workflow):
        with pytest.raises(NetworkNotFoundError):
            await workflow.provision_vm(VMSpec(vmid=210, bridge="vmbr7"))

    @pytest.mark.asyncio
    async def test_node_required_without_default(self, workflow):
        workflow.default_node = None
        with pytest.raises(MissingFieldError):
            await workflow.provision_vm(VMSpec())

    @pytest.mark.asyncio
    async def test_remote_rejection_is_verbatim(self, cluster, workflow):
        cluster.fail(
            "POST",
            "/nodes/pve/qemu",
            RemoteRejectedError("API error 400: Parameter verification failed. - memory: value too low", status=400),
        )

        with pytest.raises(RemoteRejectedError) as exc_info:
            await workflow.provision_vm(VMSpec(vmid=210, memory=1))

        assert "memory: value too low" in str(exc_info.value)


class TestConcurrentCreation:
    @pytest.mark.asyncio
    async def test_same_identifier_one_wins(self, cluster, workflow):
        results = await asyncio.gather(
            workflow.provision_vm(VMSpec(vmid=220, name="a")),
            workflow.provision_vm(VMSpec(vmid=220, name="b")),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], AlreadyExistsError)
        assert failures[0].vmid == 220
        assert failures[0].node == "pve"

    @pytest.mark.asyncio
    async def test_remote_conflict_classified(self, cluster, workflow):
        cluster.add_vm("pve", 230)

        async def exists(node, vmid):
            return False

        # Inventory misses the instance; the control plane still refuses
        workflow.validator.allocator.exists = exists

        with pytest.raises(AlreadyExistsError) as exc_info:
            await workflow.provision_vm(VMSpec(vmid=230))

        assert exc_info.value.source == "remote"
        assert exc_info.value.vmid == 230


class TestTemplateCreation:
    @pytest.mark.asyncio
    async def test_overrides_applied_with_occupied_cloud_init_slot(self, cluster, workflow):
        cluster.add_template(
            "pve", 100, "ubuntu-22.04",
            ide2="local-lvm:vm-100-cloudinit,media=cdrom",
        )
        spec = VMSpec(vmid=201, template="ubuntu-22.04", cores=4, memory=8192, cloud_init=True)

        result = await workflow.provision_from_template(spec)

        config = cluster.vm_config("pve", 201)
        assert config["cores"] == 4
        assert config["memory"] == 8192
        assert config["ide2"] == "local-lvm:vm-100-cloudinit,media=cdrom"
        assert result.steps == ["clone", "settle", "read_config", "reconfigure", "start"]
        assert result.status == "started"

        put_calls = cluster.calls_to("PUT", r"/nodes/pve/qemu/201/config")
        assert len(put_calls) == 1
        assert "ide2" not in put_calls[0][2]

    @pytest.mark.asyncio
    async def test_clone_call_shape(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")

        await workflow.provision_from_template(VMSpec(vmid=202, template="ubuntu-22.04", disk="local-lvm"))

        (_, _, payload), = cluster.calls_to("POST", r"/nodes/pve/qemu/100/clone")
        assert payload == {"newid": 202, "name": "vm-202", "full": 1, "target": "pve", "storage": "local-lvm"}

    @pytest.mark.asyncio
    async def test_cloud_init_drive_attached_when_missing(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        spec = VMSpec(
            vmid=203, template="ubuntu-22.04", cloud_init=True,
            cloud_init_config=CloudInitConfig(user="ops", ssh_keys="ssh-ed25519 AAAA a@b"),
        )

        await workflow.provision_from_template(spec)

        config = cluster.vm_config("pve", 203)
        assert config["ide2"] == "local-lvm:cloudinit"
        assert config["ciuser"] == "ops"
        assert config["status"] == "running"

    @pytest.mark.asyncio
    async def test_no_overrides_skips_reconfigure(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")

        result = await workflow.provision_from_template(VMSpec(vmid=204, template="ubuntu-22.04"))

        assert result.steps == ["clone", "settle", "read_config"]
        assert result.status == "cloned"
        assert not cluster.calls_to("PUT", r"/nodes/pve/qemu/204/config")

    @pytest.mark.asyncio
    async def test_allocates_identifier(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")

        result = await workflow.provision_from_template(VMSpec(template="ubuntu-22.04"))

        assert result.vmid == 101
        assert 101 in cluster.nodes["pve"]["qemu"]

    @pytest.mark.asyncio
    async def test_discovered_template(self, cluster, workflow):
        cluster.add_template("pve", 9005, "rocky-9")

        result = await workflow.provision_from_template(VMSpec(vmid=205, template="rocky-9"))

        assert result.vmid == 205

    @pytest.mark.asyncio
    async def test_unknown_template_lists_known_names(self, cluster, workflow):
        cluster.add_template("pve", 9005, "rocky-9")

        with pytest.raises(TemplateNotFoundError) as exc_info:
            await workflow.provision_from_template(VMSpec(vmid=205, template="arch"))

        assert exc_info.value.available == ["rocky-9", "ubuntu-22.04"]
        assert "ubuntu-22.04" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_settle_without_task_handle(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        cluster.return_task_handles = False

        result = await workflow.provision_from_template(
            VMSpec(vmid=206, template="ubuntu-22.04", cores=2)
        )

        assert result.task_id is None
        assert cluster.vm_config("pve", 206)["cores"] == 2

    @pytest.mark.asyncio
    async def test_clone_finished_with_warnings_is_reconfigured(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        cluster.clone_task_error = "WARNINGS: 1"

        result = await workflow.provision_from_template(
            VMSpec(vmid=214, template="ubuntu-22.04", cores=4, cloud_init=True)
        )

        assert result.steps == ["clone", "settle", "read_config", "reconfigure", "start"]
        assert cluster.vm_config("pve", 214)["cores"] == 4
        assert cluster.vm_config("pve", 214)["status"] == "running"

    @pytest.mark.asyncio
    async def test_failed_clone_with_instance_is_partial(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        cluster.clone_task_error = "clone failed: out of space"

        with pytest.raises(PartialProvisioningError) as exc_info:
            await workflow.provision_from_template(VMSpec(vmid=207, template="ubuntu-22.04"))

        error = exc_info.value
        assert (error.node, error.vmid, error.failed_step) == ("pve", 207, "settle")
        assert error.completed_steps == ["clone"]
        assert isinstance(error.cause, RemoteRejectedError)

    @pytest.mark.asyncio
    async def test_failed_clone_without_instance_is_rejected(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        cluster.clone_task_error = "clone failed: out of space"
        cluster.clone_leaves_instance = False

        with pytest.raises(RemoteRejectedError) as exc_info:
            await workflow.provision_from_template(VMSpec(vmid=208, template="ubuntu-22.04"))

        assert "out of space" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_settle_timeout_is_partial(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        cluster.tasks_never_finish = True
        workflow.clone_timeout = 0.05

        with pytest.raises(PartialProvisioningError) as exc_info:
            await workflow.provision_from_template(VMSpec(vmid=209, template="ubuntu-22.04"))

        assert isinstance(exc_info.value.cause, RemoteUnavailableError)

    @pytest.mark.asyncio
    async def test_reconfigure_failure_is_partial(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        cluster.fail("PUT", "/nodes/pve/qemu/211/config", RemoteRejectedError("locked", status=500))

        with pytest.raises(PartialProvisioningError) as exc_info:
            await workflow.provision_from_template(VMSpec(vmid=211, template="ubuntu-22.04", cores=8))

        error = exc_info.value
        assert error.failed_step == "reconfigure"
        assert error.completed_steps == ["clone", "settle", "read_config"]
        assert error.to_dict()["cause"]["error"] == "locked"

    @pytest.mark.asyncio
    async def test_start_failure_is_partial(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        cluster.fail(
            "POST", "/nodes/pve/qemu/212/status/start",
            InstanceNotFoundError(vmid=212, node="pve"),
        )

        with pytest.raises(PartialProvisioningError) as exc_info:
            await workflow.provision_from_template(
                VMSpec(vmid=212, template="ubuntu-22.04", cloud_init=True)
            )

        assert exc_info.value.failed_step == "start"

    @pytest.mark.asyncio
    async def test_existing_target_rejected_locally(self, cluster, workflow):
        cluster.add_template("pve", 100, "ubuntu-22.04")
        cluster.add_vm("pve", 213)

        with pytest.raises(AlreadyExistsError):
            await workflow.provision_from_template(VMSpec(vmid=213, template="ubuntu-22.04"))

        assert not cluster.calls_to("POST", r"/nodes/pve/qemu/100/clone")


class TestContainerCreation:
    @pytest.mark.asyncio
    async def test_create_container(self, cluster, workflow):
        spec = ContainerSpec(hostname="ct-web", password="pw", ssh_public_keys=["ssh-ed25519 AAAA a@b"])

        result = await workflow.provision_container(spec)

        assert result.vmid == 101
        config = cluster.nodes["pve"]["lxc"][101]
        assert config["rootfs"] == "local:8"
        assert config["net0"] == "name=eth0,bridge=vmbr0,ip=dhcp"
        assert config["ostemplate"] == "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst"
        assert config["swap"] == 2000

    @pytest.mark.asyncio
    async def test_container_requires_password(self, cluster, workflow):
        with pytest.raises(MissingFieldError):
            await workflow.provision_container(ContainerSpec(hostname="ct-web"))

        assert not cluster.calls_to("POST", r"/nodes/pve/lxc")
