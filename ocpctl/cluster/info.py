from __future__ import annotations

import os
from typing import Any, List, Optional

from kubernetes import client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException

from ocpctl.config import ClusterInfo
from ocpctl.logger import logger
from ocpctl.utils import read_yaml_file

CRITICAL_FILES = ["auth/kubeconfig", "auth/kubeadmin-password"]

ROUTE_GROUP = "route.openshift.io"
ROUTE_VERSION = "v1"
ROUTE_PLURAL = "routes"


def kubeconfig_path(cluster_dir: str) -> str:
    return os.path.join(cluster_dir, "auth", "kubeconfig")


def missing_critical_files(cluster_dir: str) -> List[str]:
    return [
        os.path.join(cluster_dir, f)
        for f in CRITICAL_FILES
        if not os.path.exists(os.path.join(cluster_dir, f))
    ]


def get_api_url(kubeconfig_file: str) -> str:
    """
    Returns the API server URL of the first cluster in a kubeconfig file.
    """
    kubeconfig = read_yaml_file(kubeconfig_file)
    for entry in kubeconfig.get("clusters") or []:
        server = (entry.get("cluster") or {}).get("server")
        if server:
            return server
    return ""


def new_api_client(kubeconfig_file: str) -> Any:
    return k8s_config.new_client_from_config(config_file=kubeconfig_file)


def get_route_host(api_client: Any, namespace: str, name: str) -> Optional[str]:
    """
    Reads the host of an OpenShift route.

    Returns:
        Optional[str]: The host, or None if the route does not exist.
    """
    api = client.CustomObjectsApi(api_client)
    try:
        route = api.get_namespaced_custom_object(
            group=ROUTE_GROUP,
            version=ROUTE_VERSION,
            namespace=namespace,
            plural=ROUTE_PLURAL,
            name=name,
        )
    except ApiException as e:
        if e.status == 404:
            return None
        raise
    return (route.get("spec") or {}).get("host")


def get_cluster_info(cluster_name: str, cluster_dir: str) -> ClusterInfo:
    """
    Collects the access details of a cluster from its installation directory.

    The console URL is looked up on the live cluster. Failing to reach it is
    not fatal, since the installer has already reported success.
    """
    kubeconfig_file = kubeconfig_path(cluster_dir)

    console_url = None
    try:
        host = get_route_host(
            new_api_client(kubeconfig_file), "openshift-console", "console"
        )
        if host:
            console_url = f"https://{host}"
    except Exception as e:
        logger.warning(f"Failed to read the console route: {e}")

    kubeadmin_password = None
    password_file = os.path.join(cluster_dir, "auth", "kubeadmin-password")
    if os.path.exists(password_file):
        with open(password_file, "r") as f:
            kubeadmin_password = f.read().strip()

    return ClusterInfo(
        cluster_name=cluster_name,
        api_url=get_api_url(kubeconfig_file),
        console_url=console_url,
        kubeadmin_password=kubeadmin_password,
        kubeconfig=kubeconfig_file,
        cluster_dir=cluster_dir,
    )
