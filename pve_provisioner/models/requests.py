"""Inbound request models for the tool boundary.

Numeric fields accept strings ("2" for cores), and blank strings mean
"not supplied".
"""

from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from pve_provisioner.models.provisioning_models import (
    CloudInitConfig,
    ContainerSpec,
    VMSpec,
)


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class CloudInitRequest(BaseModel):
    user: Optional[str] = Field(None, description="Default user name")
    password: Optional[str] = Field(None, description="Default user password")
    ssh_keys: Optional[Union[str, List[str]]] = Field(
        None, description="Public keys, space- or newline-separated, or a list"
    )
    nameserver: Optional[str] = Field(None)
    searchdomain: Optional[str] = Field(None)
    ipconfig: Optional[str] = Field(None, description="e.g. ip=10.0.0.5/24,gw=10.0.0.1")

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)

    def to_config(self) -> CloudInitConfig:
        return CloudInitConfig(**self.model_dump())


class VMCreateRequest(BaseModel):
    node: Optional[str] = Field(None, description="Target node")
    vmid: Optional[int] = Field(None, ge=100, description="Identifier, allocated when omitted")
    name: Optional[str] = Field(None)
    cores: Optional[int] = Field(None, ge=1)
    memory: Optional[int] = Field(None, ge=16, description="Memory in MB")
    disk: Optional[str] = Field(None, description="storage[:sizeGiB]")
    bridge: Optional[str] = Field(None, alias="net", description="Network bridge")
    iso: Optional[str] = Field(None, description="Boot media volume id")
    os_family: Optional[str] = Field(None, alias="os")
    cpu: Optional[str] = Field(None)
    sockets: Optional[int] = Field(None, ge=1)
    cloud_init: bool = Field(False)
    cloud_init_config: CloudInitRequest = Field(default_factory=CloudInitRequest)

    model_config = {"populate_by_name": True}

    @field_validator(
        "node", "vmid", "name", "cores", "memory", "disk", "bridge", "iso",
        "os_family", "cpu", "sockets", mode="before",
    )
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)

    def to_spec(self) -> VMSpec:
        data = self.model_dump(exclude={"cloud_init_config"})
        return VMSpec(**data, cloud_init_config=self.cloud_init_config.to_config())


class TemplateCloneRequest(VMCreateRequest):
    template: str = Field(..., description="Registered template name")


class ContainerCreateRequest(BaseModel):
    node: Optional[str] = Field(None)
    vmid: Optional[int] = Field(None, ge=100)
    hostname: Optional[str] = Field(None)
    memory: Optional[int] = Field(None, ge=16)
    swap: Optional[int] = Field(None, ge=0)
    cores: Optional[int] = Field(None, ge=1)
    disk_size: Optional[int] = Field(None, ge=1, description="Root disk in GiB")
    storage: Optional[str] = Field(None)
    bridge: Optional[str] = Field(None, alias="net")
    ip: Optional[str] = Field(None, description="CIDR address or 'dhcp'")
    password: Optional[str] = Field(None)
    ostemplate: Optional[str] = Field(None, alias="template")
    ssh_public_keys: Optional[List[str]] = Field(None)
    unprivileged: bool = Field(True)

    model_config = {"populate_by_name": True}

    @field_validator(
        "node", "vmid", "hostname", "memory", "swap", "cores", "disk_size",
        "storage", "bridge", "ip", "password", "ostemplate", mode="before",
    )
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)

    def to_spec(self) -> ContainerSpec:
        return ContainerSpec(**self.model_dump())
