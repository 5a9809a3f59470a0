import os
import subprocess
from typing import Optional

from ocpctl.cluster.info import kubeconfig_path
from ocpctl.cluster.manager.base import ClusterManager
from ocpctl.cluster.utils import run_command
from ocpctl.config import ClusterConfig
from ocpctl.errors import ClusterOperationError
from ocpctl.logger import logger


class AWSClusterManager(ClusterManager):
    """
    AWS-specific implementation of the ClusterManager abstract base class.

    Clusters are installed on AWS with installer-provisioned infrastructure,
    by running openshift-install against the cluster directory.
    """

    def install_cluster(self, config: ClusterConfig) -> None:
        log_level = "debug" if config.debug else "info"
        logger.info("Running openshift-install, this usually takes 30-45 minutes...")
        try:
            run_command(
                [
                    "openshift-install",
                    "create",
                    "cluster",
                    "--dir",
                    config.cluster_dir,
                    f"--log-level={log_level}",
                ]
            )
        except (subprocess.CalledProcessError, OSError) as e:
            raise ClusterOperationError(f"openshift-install create cluster failed: {e}") from e

    def uninstall_cluster(self, cluster_dir: str, timeout: Optional[int] = None) -> bool:
        env = {}
        kubeconfig = kubeconfig_path(cluster_dir)
        if os.path.exists(kubeconfig):
            env["KUBECONFIG"] = kubeconfig

        try:
            run_command(
                [
                    "openshift-install",
                    "destroy",
                    "cluster",
                    "--dir",
                    cluster_dir,
                    "--log-level=info",
                ],
                env=env,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"openshift-install destroy cluster timed out after {timeout}s")
            return False
        except (subprocess.CalledProcessError, OSError) as e:
            logger.error(f"openshift-install destroy cluster failed: {e}")
            return False

        return True
