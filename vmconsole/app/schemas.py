from __future__ import annotations

import re
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

SSH_PUBLIC_KEY = re.compile(r"^[A-Za-z0-9@._+-]+ [A-Za-z0-9+/]+={0,3}( [^\r\n]*)?$")


class ObjectMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    namespace: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    creationTimestamp: str | None = None


class KubeObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    apiVersion: str | None = None
    kind: str | None = None
    metadata: ObjectMeta
    spec: dict[str, Any] | None = None


class Namespace(KubeObject):
    pass


class PersistentVolumeClaim(KubeObject):
    pass


class ClusterInstancetype(KubeObject):
    @property
    def cpu(self) -> int:
        try:
            return int(self.metadata.labels.get("instancetype.kubevirt.io/cpu", "0"))
        except ValueError:
            return 0

    @property
    def memory_gi(self) -> float:
        raw = self.metadata.labels.get("instancetype.kubevirt.io/memory", "0").replace("Gi", "")
        try:
            return float(raw)
        except ValueError:
            return 0.0


class VirtualMachineStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    printableStatus: str | None = None


class VirtualMachine(KubeObject):
    status: VirtualMachineStatus | None = None

    @property
    def printable_status(self) -> str:
        if self.status and self.status.printableStatus:
            return self.status.printableStatus
        return "Pending"

    def ipv4_address(self, annotation_key: str) -> str:
        return self.metadata.annotations.get(annotation_key, "")


class InvolvedObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: str = ""
    name: str = ""


class KubeEvent(KubeObject):
    lastTimestamp: str | None = None
    type: str = ""
    reason: str = ""
    message: str = ""
    involvedObject: InvolvedObject = Field(default_factory=InvolvedObject)

    @property
    def seen_at(self) -> str:
        return self.lastTimestamp or self.metadata.creationTimestamp or ""


T = TypeVar("T", bound=KubeObject)


class KubeList(BaseModel, Generic[T]):
    model_config = ConfigDict(extra="allow")

    items: list[T] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def _null_items(cls, value: Any) -> Any:
        return value if value is not None else []


class IPAddress(BaseModel):
    model_config = ConfigDict(extra="allow")

    address: str
    description: str = ""

    @property
    def bare_address(self) -> str:
        return self.address.split("/")[0]


class Prefix(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    prefix: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("custom_fields", mode="before")
    @classmethod
    def _null_custom_fields(cls, value: Any) -> Any:
        return value if value is not None else {}

    def pool_tag(self, field: str) -> Any:
        return self.custom_fields.get(field)

    @property
    def gateway(self) -> IPAddress | None:
        raw = self.custom_fields.get("gateway")
        if isinstance(raw, dict) and raw.get("address"):
            return IPAddress.model_validate(raw)
        return None


class MachineCreateForm(BaseModel):
    name: str = Field(..., min_length=1, max_length=63, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    sourcePVCName: str = Field(..., min_length=1)
    rootDiskSize: int = Field(..., gt=0)
    size: str = Field(..., min_length=1)
    sshKey: str = Field(..., min_length=1)

    @field_validator("name", "sourcePVCName", "size", "sshKey", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("sshKey")
    @classmethod
    def _single_public_key(cls, value: str) -> str:
        if "\n" in value or "\r" in value or not SSH_PUBLIC_KEY.match(value):
            raise ValueError("must be a single OpenSSH public key line: <type> <base64> [comment]")
        return value
