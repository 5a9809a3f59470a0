from __future__ import annotations

import os
from typing import Any, Dict, Optional

import typer

from ocpctl.cluster.manager.aws import AWSClusterManager
from ocpctl.cluster.manager.base import ClusterManager
from ocpctl.config import ClusterConfig, ClusterInfo, parse_yaml
from ocpctl.logger import logger
from ocpctl.utils import get_project_data_dir


def default_work_dir() -> str:
    return os.environ.get("OPENSHIFT_WORK_DIR") or os.path.join(
        get_project_data_dir(), "clusters"
    )


def load_cluster_manager() -> ClusterManager:
    """
    Returns the cluster manager for the supported platform. Only AWS is supported.
    """
    return AWSClusterManager()


def read_text_file(path: Optional[str], description: str) -> Optional[str]:
    """
    Reads a file given on the command line, stripping surrounding whitespace.

    Returns:
        Optional[str]: The content, or None if no path was given.
    """
    if not path:
        return None
    path = os.path.abspath(os.path.expanduser(path))
    if not os.path.exists(path):
        logger.error(f"The {description} file {path} does not exist.")
        raise typer.Exit(1)
    with open(path, "r") as f:
        return f.read().strip()


def load_cluster_config(
    cluster_config_file: Optional[str],
    overrides: Dict[str, Any],
    defaults: Optional[Dict[str, Any]] = None,
) -> ClusterConfig:
    """
    Builds the cluster configuration from an optional YAML file and CLI options.

    Options given on the command line take precedence over the file, and the
    file takes precedence over the defaults.
    """
    yaml_str = ""
    if cluster_config_file:
        cluster_config_file = os.path.abspath(os.path.expanduser(cluster_config_file))
        if not os.path.exists(cluster_config_file):
            logger.error(f"The cluster config file {cluster_config_file} does not exist.")
            raise typer.Exit(1)
        with open(cluster_config_file, "r") as file:
            yaml_str = file.read()

    return parse_yaml(yaml_str, overrides, defaults)


def print_cluster_info(info: ClusterInfo) -> None:
    lines = [
        f"Cluster {info.cluster_name} is ready.",
        f"  API URL:            {info.api_url}",
        f"  Console URL:        {info.console_url or 'N/A'}",
        f"  Kubeconfig:         {info.kubeconfig}",
        f"  Kubeadmin password: {info.kubeadmin_password or 'N/A'}",
    ]
    if info.pmm:
        lines += [
            f"  PMM URL:            {info.pmm.url}",
            f"  PMM username:       {info.pmm.username}",
            f"  PMM password:       {info.pmm.password}"
            + (" (generated)" if info.pmm.password_generated else ""),
        ]
    logger.info("\n".join(lines))
