from __future__ import annotations

import logging

import requests

from .config import ConsoleConfig
from .errors import UpstreamHTTPError
from .kubernetes_client import KubernetesClient
from .machines import build_machine
from .netbox_client import NetboxClient, gateway_address
from .schemas import MachineCreateForm, VirtualMachine

logger = logging.getLogger(__name__)


def provision_machine(
    kube: KubernetesClient,
    netbox: NetboxClient,
    namespace: str,
    form: MachineCreateForm,
    config: ConsoleConfig,
) -> VirtualMachine:
    prefix = netbox.find_prefix(config.netbox_pool_field, config.netbox_pool_value)
    ipv4_gateway = gateway_address(prefix)

    reservation = netbox.reserve_ip_address(
        prefix.id,
        f"{namespace}/{form.name}",
        attempts=config.ip_reserve_attempts,
    )

    manifest = build_machine(
        name=form.name,
        size=form.size,
        root_disk_size=form.rootDiskSize,
        source_pvc_name=form.sourcePVCName,
        ipv4_address=reservation.address,
        ipv4_gateway=ipv4_gateway,
        ssh_key=form.sshKey,
        image_namespace=config.image_namespace,
        network_name=config.machine_network_name,
        preference=config.machine_preference,
        annotation_key=config.ipv4_annotation_key,
    )

    try:
        return kube.create_virtual_machine(namespace, manifest)
    except (UpstreamHTTPError, requests.RequestException) as exc:
        status = exc.status if isinstance(exc, UpstreamHTTPError) else "transport"
        logger.error(
            "orphaned ip reservation: %s was reserved for %s/%s but machine creation failed (%s); release it in netbox manually",
            reservation.address,
            namespace,
            form.name,
            status,
        )
        raise
