from __future__ import annotations

from typing import Any

DEFAULT_ANNOTATION_KEY = "vmconsole.io/ipv4Address"
NAMESERVERS = ("1.1.1.1", "1.0.0.1")


def render_network_data(ipv4_address: str, ipv4_gateway: str) -> str:
    nameservers = "\n".join(f"        - {server}" for server in NAMESERVERS)
    return (
        "version: 2\n"
        "ethernets:\n"
        "  enp1s0:\n"
        "    addresses:\n"
        f"      - {ipv4_address}\n"
        "    routes:\n"
        "      - to: default\n"
        f"        via: {ipv4_gateway}\n"
        "    nameservers:\n"
        "      addresses:\n"
        f"{nameservers}"
    )


def render_user_data(ssh_key: str) -> str:
    return f"#cloud-config\nssh_authorized_keys:\n  - {ssh_key}"


def build_machine(
    *,
    name: str,
    size: str,
    root_disk_size: int,
    source_pvc_name: str,
    ipv4_address: str,
    ipv4_gateway: str,
    ssh_key: str,
    image_namespace: str = "vm-images",
    network_name: str = "bridge-external",
    preference: str = "ubuntu",
    annotation_key: str = DEFAULT_ANNOTATION_KEY,
) -> dict[str, Any]:
    """Build a KubeVirt VirtualMachine manifest booting from a clone of an image PVC.

    ``ipv4_address`` is the CIDR form handed out by IPAM. The annotation holds
    the bare address and the cloud-init network data holds the CIDR form.
    """
    labels = {"kubevirt.io/vm": name}
    annotations = {annotation_key: ipv4_address.split("/")[0]}

    return {
        "apiVersion": "kubevirt.io/v1",
        "kind": "VirtualMachine",
        "metadata": {
            "name": name,
            "annotations": annotations,
        },
        "spec": {
            "running": True,
            "instancetype": {
                "name": size,
                "kind": "VirtualMachineClusterInstancetype",
            },
            "preference": {
                "name": preference,
                "kind": "VirtualMachineClusterPreference",
            },
            "template": {
                "metadata": {"labels": dict(labels)},
                "spec": {
                    "domain": {
                        "devices": {
                            "interfaces": [{"name": "default", "bridge": {}}],
                        },
                    },
                    "networks": [
                        {"name": "default", "multus": {"networkName": network_name}},
                    ],
                    "volumes": [
                        {"name": "root", "dataVolume": {"name": name}},
                        {
                            "name": "cloudinit",
                            "cloudInitNoCloud": {
                                "networkData": render_network_data(ipv4_address, ipv4_gateway),
                                "userData": render_user_data(ssh_key),
                            },
                        },
                    ],
                },
            },
            "dataVolumeTemplates": [
                {
                    "metadata": {"name": name, "labels": dict(labels)},
                    "spec": {
                        "pvc": {
                            "accessModes": ["ReadWriteOnce"],
                            "resources": {"requests": {"storage": f"{root_disk_size}Gi"}},
                            "volumeMode": "Block",
                        },
                        "source": {
                            "pvc": {"name": source_pvc_name, "namespace": image_namespace},
                        },
                    },
                },
            ],
        },
    }
