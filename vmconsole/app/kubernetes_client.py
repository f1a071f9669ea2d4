from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import quote

import requests

from .errors import KubernetesAPIError
from .schemas import (
    ClusterInstancetype,
    KubeEvent,
    KubeList,
    KubeObject,
    Namespace,
    PersistentVolumeClaim,
    VirtualMachine,
)

logger = logging.getLogger(__name__)

KUBEVIRT_API = "/apis/kubevirt.io/v1"
INSTANCETYPE_API = "/apis/instancetype.kubevirt.io/v1beta1"

T = TypeVar("T", bound=KubeObject)


def _segment(value: str) -> str:
    return quote(value, safe="")


def build_list_params(label_selector: str | None = None, limit: int | None = None) -> dict[str, str]:
    params: dict[str, str] = {}
    if limit:
        params["limit"] = str(limit)
    if label_selector:
        params["labelSelector"] = label_selector
    return params


class KubernetesClient:
    """Namespace-aware REST access to the core and KubeVirt APIs, acting as one user."""

    def __init__(self, base_url: str, token: str, *, verify_ssl: bool = True, timeout_s: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.verify_ssl = verify_ssl
        self.timeout_s = timeout_s

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def _check(self, response: requests.Response) -> Any:
        if response.status_code < 200 or response.status_code >= 300:
            raise KubernetesAPIError(response.status_code, response.text, url=response.url)
        return response.json()

    def get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        response = requests.get(
            f"{self.base_url}{path}",
            params=params or None,
            headers=self._headers(),
            verify=self.verify_ssl,
            timeout=self.timeout_s,
        )
        return self._check(response)

    def create_json(self, path: str, item: dict[str, Any]) -> Any:
        response = requests.post(
            f"{self.base_url}{path}",
            json=item,
            headers=self._headers(),
            verify=self.verify_ssl,
            timeout=self.timeout_s,
        )
        return self._check(response)

    def _list(self, model: type[T], path: str, label_selector: str | None, limit: int | None) -> KubeList[T]:
        payload = self.get_json(path, build_list_params(label_selector, limit))
        return KubeList[model].model_validate(payload)

    def list_namespaces(self, label_selector: str | None = None, limit: int | None = None) -> KubeList[Namespace]:
        return self._list(Namespace, "/api/v1/namespaces", label_selector, limit)

    def list_events(self, namespace: str, label_selector: str | None = None, limit: int | None = None) -> KubeList[KubeEvent]:
        return self._list(KubeEvent, f"/api/v1/namespaces/{_segment(namespace)}/events", label_selector, limit)

    def list_persistent_volume_claims(
        self, namespace: str, label_selector: str | None = None, limit: int | None = None
    ) -> KubeList[PersistentVolumeClaim]:
        return self._list(PersistentVolumeClaim, f"/api/v1/namespaces/{_segment(namespace)}/persistentvolumeclaims", label_selector, limit)

    def list_cluster_instancetypes(self, label_selector: str | None = None, limit: int | None = None) -> KubeList[ClusterInstancetype]:
        return self._list(ClusterInstancetype, f"{INSTANCETYPE_API}/virtualmachineclusterinstancetypes", label_selector, limit)

    def list_virtual_machines(self, namespace: str, label_selector: str | None = None, limit: int | None = None) -> KubeList[VirtualMachine]:
        return self._list(VirtualMachine, f"{KUBEVIRT_API}/namespaces/{_segment(namespace)}/virtualmachines", label_selector, limit)

    def get_virtual_machine(self, namespace: str, name: str) -> VirtualMachine:
        payload = self.get_json(f"{KUBEVIRT_API}/namespaces/{_segment(namespace)}/virtualmachines/{_segment(name)}")
        return VirtualMachine.model_validate(payload)

    def create_virtual_machine(self, namespace: str, manifest: dict[str, Any]) -> VirtualMachine:
        payload = self.create_json(f"{KUBEVIRT_API}/namespaces/{_segment(namespace)}/virtualmachines", manifest)
        vm = VirtualMachine.model_validate(payload)
        logger.info("created virtual machine %s/%s", namespace, vm.metadata.name)
        return vm
