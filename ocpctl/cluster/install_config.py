from __future__ import annotations

import copy
import os
import time
from typing import Any, Dict, Optional

from ocpctl.config import REDACTED, ClusterConfig
from ocpctl.utils import to_yaml

INSTALL_CONFIG_FILE = "install-config.yaml"

CLUSTER_NETWORK_CIDR = "10.128.0.0/14"
CLUSTER_NETWORK_HOST_PREFIX = 23
MACHINE_NETWORK_CIDR = "10.0.0.0/16"
SERVICE_NETWORK_CIDR = "172.30.0.0/16"
CONTROL_PLANE_REPLICAS = 3


def generate_install_config(
    config: ClusterConfig, creation_time: Optional[int] = None
) -> Dict[str, Any]:
    """
    Builds the install-config document consumed by openshift-install.

    The AWS user tags drive billing and the automated cleanup of expired
    clusters.

    Args:
        config (ClusterConfig): The cluster configuration.
        creation_time (Optional[int]): Unix timestamp for the creation-time tag.
            Defaults to now.

    Returns:
        Dict[str, Any]: The install-config document.
    """
    if creation_time is None:
        creation_time = int(time.time())

    return {
        "apiVersion": "v1",
        "baseDomain": config.baseDomain,
        "compute": [
            {
                "architecture": "amd64",
                "hyperthreading": "Enabled",
                "name": "worker",
                "platform": {"aws": {"type": config.workerType}},
                "replicas": config.workerCount,
            }
        ],
        "controlPlane": {
            "architecture": "amd64",
            "hyperthreading": "Enabled",
            "name": "master",
            "platform": {"aws": {"type": config.masterType}},
            "replicas": CONTROL_PLANE_REPLICAS,
        },
        "metadata": {"name": config.clusterName},
        "networking": {
            "clusterNetwork": [
                {
                    "cidr": CLUSTER_NETWORK_CIDR,
                    "hostPrefix": CLUSTER_NETWORK_HOST_PREFIX,
                }
            ],
            "machineNetwork": [{"cidr": MACHINE_NETWORK_CIDR}],
            "networkType": "OVNKubernetes",
            "serviceNetwork": [SERVICE_NETWORK_CIDR],
        },
        "platform": {
            "aws": {
                "region": config.awsRegion,
                "userTags": {
                    "iit-billing-tag": "openshift",
                    "delete-cluster-after-hours": config.deleteAfterHours,
                    "team": config.teamName,
                    "product": config.productTag,
                    "owner": config.buildUser,
                    "creation-time": str(creation_time),
                },
            }
        },
        "pullSecret": config.pullSecret,
        "sshKey": config.sshPublicKey,
    }


def redact_install_config(install_config: Dict[str, Any]) -> Dict[str, Any]:
    redacted = copy.deepcopy(install_config)
    if "pullSecret" in redacted:
        redacted["pullSecret"] = REDACTED
    return redacted


def write_install_config(cluster_dir: str, install_config: Dict[str, Any]) -> str:
    """
    Writes install-config.yaml and a backup copy into the cluster directory.

    openshift-install consumes install-config.yaml, so the backup is the only
    copy left after the installer runs.

    Returns:
        str: The path of install-config.yaml.
    """
    os.makedirs(cluster_dir, exist_ok=True)
    content = to_yaml(install_config)

    path = os.path.join(cluster_dir, INSTALL_CONFIG_FILE)
    for target in (path, f"{path}.backup"):
        with open(target, "w") as f:
            f.write(content)

    return path
