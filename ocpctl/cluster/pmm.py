from __future__ import annotations

import base64
from typing import Any, List, Optional

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from ocpctl.cluster.helm import ensure_helm
from ocpctl.cluster.info import (
    ROUTE_GROUP,
    ROUTE_PLURAL,
    ROUTE_VERSION,
    get_route_host,
    new_api_client,
)
from ocpctl.cluster.utils import run_command
from ocpctl.config import ClusterConfig, PmmInfo
from ocpctl.constants import (
    PMM_ADMIN_USER,
    PMM_HELM_REPO_NAME,
    PMM_HELM_REPO_URL,
    PMM_ROUTE_NAME,
    PMM_SECRET_NAME,
)
from ocpctl.errors import ClusterOperationError
from ocpctl.logger import logger

PMM_RELEASE_NAME = "pmm"
PMM_SERVICE_ACCOUNTS = ["default", "pmm"]


def pmm_chart_version(pmm_version: str) -> str:
    """
    Maps a PMM server version to the Helm chart version that ships it.
    """
    return "1.4.6" if pmm_version.startswith("3.") else "1.3.12"


def create_namespace(api_client: Any, namespace: str) -> None:
    api = client.CoreV1Api(api_client)
    body = client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))
    try:
        api.create_namespace(body)
    except ApiException as e:
        if e.status != 409:
            raise
        logger.debug(f"Namespace {namespace} already exists")


def create_pmm_route(api_client: Any, namespace: str) -> None:
    """
    Exposes the PMM service through an edge terminated HTTPS route.
    """
    api = client.CustomObjectsApi(api_client)
    route = {
        "apiVersion": f"{ROUTE_GROUP}/{ROUTE_VERSION}",
        "kind": "Route",
        "metadata": {"name": PMM_ROUTE_NAME, "namespace": namespace},
        "spec": {
            "to": {"kind": "Service", "name": PMM_RELEASE_NAME},
            "port": {"targetPort": "https"},
            "tls": {
                "termination": "edge",
                "insecureEdgeTerminationPolicy": "Redirect",
            },
        },
    }
    try:
        api.create_namespaced_custom_object(
            group=ROUTE_GROUP,
            version=ROUTE_VERSION,
            namespace=namespace,
            plural=ROUTE_PLURAL,
            body=route,
        )
    except ApiException as e:
        if e.status != 409:
            raise
        logger.debug(f"Route {PMM_ROUTE_NAME} already exists")


def read_admin_password(api_client: Any, namespace: str) -> str:
    api = client.CoreV1Api(api_client)
    secret = api.read_namespaced_secret(PMM_SECRET_NAME, namespace)
    encoded = (secret.data or {}).get("PMM_ADMIN_PASSWORD")
    if not encoded:
        raise ClusterOperationError(
            f"Secret {PMM_SECRET_NAME} has no PMM_ADMIN_PASSWORD key"
        )
    return base64.b64decode(encoded).decode("utf-8")


def helm_install_command(
    pmm_version: str, namespace: str, admin_password: Optional[str]
) -> List[str]:
    command = [
        "helm",
        "upgrade",
        "--install",
        PMM_RELEASE_NAME,
        f"{PMM_HELM_REPO_NAME}/pmm",
        "--namespace",
        namespace,
        "--version",
        pmm_chart_version(pmm_version),
        "--set",
        f"image.tag={pmm_version}",
        "--set",
        "platform=openshift",
        "--set",
        "service.type=ClusterIP",
    ]
    if admin_password:
        command += ["--set", f"secret.pmm_password={admin_password}"]
    command += ["--wait", "--timeout", "10m"]
    return command


def deploy_pmm(config: ClusterConfig, kubeconfig: str) -> PmmInfo:
    """
    Deploys PMM server on a freshly installed cluster with Helm.

    The namespace is prepared for the chart's pods, which run as root, and
    the service is published through an OpenShift route.

    Args:
        config (ClusterConfig): The cluster configuration with the PMM settings.
        kubeconfig (str): Path to the cluster's kubeconfig.

    Returns:
        PmmInfo: How to reach and log into PMM.

    Raises:
        ClusterOperationError: If a deployment step fails.
    """
    namespace = config.pmmNamespace
    env = {"KUBECONFIG": kubeconfig}

    logger.info(f"Deploying PMM {config.pmmVersion} to namespace {namespace}...")

    ensure_helm()
    api_client = new_api_client(kubeconfig)

    try:
        create_namespace(api_client, namespace)

        for service_account in PMM_SERVICE_ACCOUNTS:
            run_command(
                [
                    "oc",
                    "adm",
                    "policy",
                    "add-scc-to-user",
                    "anyuid",
                    "-z",
                    service_account,
                    "-n",
                    namespace,
                ],
                env=env,
            )

        result = run_command(
            ["helm", "repo", "add", PMM_HELM_REPO_NAME, PMM_HELM_REPO_URL],
            env=env,
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            # Adding an existing repo fails, the update below still applies
            logger.debug(f"helm repo add: {result.stderr.strip()}")
        run_command(["helm", "repo", "update"], env=env)

        run_command(
            helm_install_command(config.pmmVersion, namespace, config.pmmAdminPassword),
            env=env,
        )

        create_pmm_route(api_client, namespace)

        host = get_route_host(api_client, namespace, PMM_ROUTE_NAME)
        if not host:
            raise ClusterOperationError(f"Route {PMM_ROUTE_NAME} has no host")

        if config.pmmAdminPassword:
            password = config.pmmAdminPassword
            password_generated = False
        else:
            password = read_admin_password(api_client, namespace)
            password_generated = True
    except ClusterOperationError:
        raise
    except Exception as e:
        raise ClusterOperationError(f"Failed to deploy PMM: {e}") from e

    logger.info("PMM deployed successfully.")
    return PmmInfo(
        url=f"https://{host}",
        username=PMM_ADMIN_USER,
        password=password,
        namespace=namespace,
        password_generated=password_generated,
    )
