from __future__ import annotations

import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from ocpctl.cluster.aws.state_store import S3StateStore
from ocpctl.cluster.helm import ensure_helm
from ocpctl.cluster.info import get_cluster_info, missing_critical_files
from ocpctl.cluster.install_config import (
    generate_install_config,
    redact_install_config,
    write_install_config,
)
from ocpctl.cluster.openshift_tools import ensure_openshift_tools
from ocpctl.cluster.pmm import deploy_pmm
from ocpctl.config import (
    ClusterConfig,
    ClusterInfo,
    ClusterMetadata,
    ClusterSummary,
    DestroyConfig,
    DestroyResult,
    ListConfig,
    StateStoreConfig,
    generate_yaml,
)
from ocpctl.constants import METADATA_FILE_NAME, STATE_ARCHIVE_NAME
from ocpctl.errors import ClusterNotFoundError, ClusterOperationError, StateStoreError
from ocpctl.logger import logger
from ocpctl.utils import remove_file_quietly, to_yaml

# Installer timeouts used when a create run is cleaned up
FAILED_CLEANUP_TIMEOUT = 600
ABORTED_CLEANUP_TIMEOUT = 120

UPLOAD_MAX_WAIT = 60

TRUTHY_VALUES = {"true", "yes", "1"}


def is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY_VALUES


def create_metadata(config: ClusterConfig, openshift_version: str) -> Dict[str, Any]:
    """
    Builds the metadata document recorded for a new cluster.

    Args:
        config (ClusterConfig): The cluster configuration.
        openshift_version (str): The resolved OpenShift version.

    Returns:
        Dict[str, Any]: The metadata with snake_case keys.
    """
    return ClusterMetadata(
        cluster_name=config.clusterName,
        openshift_version=openshift_version,
        aws_region=config.awsRegion,
        created_date=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        created_by=config.buildUser,
        jenkins_build=config.buildNumber,
        master_type=config.masterType,
        worker_type=config.workerType,
        worker_count=config.workerCount,
        pmm_deployed=False,
    ).to_dict()


def write_metadata_file(cluster_dir: str, metadata: Dict[str, Any]) -> str:
    path = os.path.join(cluster_dir, METADATA_FILE_NAME)
    with open(path, "w") as f:
        json.dump(metadata, f, indent=4)
    return path


def summarize(name: str, metadata: Dict[str, Any], region: str) -> ClusterSummary:
    return ClusterSummary(
        name=name,
        version=str(metadata.get("openshift_version") or "Unknown"),
        region=str(metadata.get("aws_region") or region),
        created_by=str(metadata.get("created_by") or "Unknown"),
        created_at=str(metadata.get("created_date") or "Unknown"),
        pmm_deployed="Yes" if is_truthy(metadata.get("pmm_deployed")) else "No",
        pmm_version=str(metadata.get("pmm_version") or "N/A"),
    )


class ClusterManager(ABC):
    """
    Abstract base class for a cluster manager.

    A ClusterManager drives the lifecycle of OpenShift clusters whose state is
    kept in an object store: it creates a cluster and persists its state,
    restores the state to destroy it, and lists the known clusters.

    Subclasses implement the installer-specific steps.
    """

    @abstractmethod
    def install_cluster(self, config: ClusterConfig) -> None:
        """
        Runs the installer to create the cluster in `config.cluster_dir`.
        """

    @abstractmethod
    def uninstall_cluster(self, cluster_dir: str, timeout: Optional[int] = None) -> bool:
        """
        Runs the installer to destroy the cluster described by `cluster_dir`.

        Returns:
            bool: True if the installer succeeded.
        """

    def state_store(self, config: StateStoreConfig) -> S3StateStore:
        return S3StateStore(config)

    def _upload_state(
        self, store: S3StateStore, config: ClusterConfig, metadata: Dict[str, Any]
    ) -> str:
        retrying = Retrying(
            stop=stop_after_attempt(config.uploadAttempts),
            wait=wait_random_exponential(
                multiplier=config.uploadBackoff, max=UPLOAD_MAX_WAIT
            ),
            retry=retry_if_exception_type(StateStoreError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(
            store.upload_state, config.clusterName, config.workDir, metadata
        )

    def create(self, config: ClusterConfig) -> ClusterInfo:
        """
        Creates an OpenShift cluster and backs its state up to S3.

        Args:
            config (ClusterConfig): The cluster configuration.

        Returns:
            ClusterInfo: How to reach the new cluster, and PMM if it was deployed.
        """
        store = self.state_store(config.store_config())
        cluster_dir = config.cluster_dir

        logger.info(f"Creating OpenShift cluster: {config.clusterName}")
        logger.debug(f"Cluster configuration:\n{generate_yaml(config, redact_secrets=True)}")

        try:
            store.ensure_bucket_exists()

            resolved_version = ensure_openshift_tools(config.openshiftVersion)
            ensure_helm()

            os.makedirs(cluster_dir, exist_ok=True)

            install_config = generate_install_config(config)
            write_install_config(cluster_dir, install_config)
            if config.debug:
                logger.debug(
                    f"Generated install-config.yaml:\n{to_yaml(redact_install_config(install_config))}"
                )

            metadata = create_metadata(config, resolved_version)
            write_metadata_file(cluster_dir, metadata)

            self.install_cluster(config)

            self._upload_state(store, config, metadata)

            missing = missing_critical_files(cluster_dir)
            if missing:
                raise ClusterOperationError(
                    f"Critical files missing after installation: {', '.join(missing)}"
                )
            store.upload_auth_backup(config.clusterName, cluster_dir)

            cluster_info = get_cluster_info(config.clusterName, cluster_dir)

            if config.deployPmm:
                pmm = deploy_pmm(config, cluster_info.kubeconfig)
                metadata.update(
                    {
                        "pmm_deployed": True,
                        "pmm_version": config.pmmVersion,
                        "pmm_url": pmm.url,
                        "pmm_namespace": pmm.namespace,
                    }
                )
                store.save_metadata(config.clusterName, metadata)
                cluster_info.pmm = pmm

            logger.info(f"OpenShift cluster {config.clusterName} created successfully.")
            return cluster_info
        except Exception as e:
            logger.error(f"Failed to create OpenShift cluster: {e}")
            raise
        finally:
            remove_file_quietly(os.path.join(config.workDir, STATE_ARCHIVE_NAME))

    def attempt_cluster_cleanup(self, config: ClusterConfig, reason: str) -> None:
        """
        Tears down what a failed or aborted create left behind.

        In debug mode the resources are kept for inspection. An aborted run
        that never reached the installer has nothing to destroy. Errors are
        logged and never raised, so the original failure stays visible.

        Args:
            config (ClusterConfig): The configuration of the create run.
            reason (str): "failed" or "aborted".
        """
        cluster_dir = config.cluster_dir

        if config.debug:
            logger.warning(
                f"Debug mode is on, skipping cleanup of cluster {config.clusterName}. "
                f"Destroy it manually with: ocpctl cluster destroy --name {config.clusterName}"
            )
            return

        if reason == "aborted":
            has_state = any(
                os.path.exists(os.path.join(cluster_dir, f))
                for f in (METADATA_FILE_NAME, "terraform.tfstate")
            )
            if not has_state:
                logger.info("No cluster resources were created, skipping cleanup.")
                return
            timeout = ABORTED_CLEANUP_TIMEOUT
        else:
            timeout = FAILED_CLEANUP_TIMEOUT

        logger.info(f"Cleaning up cluster {config.clusterName} (reason: {reason})...")

        try:
            self.destroy(
                DestroyConfig(
                    clusterName=config.clusterName,
                    s3Bucket=config.s3Bucket,
                    awsRegion=config.awsRegion,
                    workDir=config.workDir,
                    forceCleanup=True,
                    timeout=timeout,
                    reason=reason,
                    destroyedBy=config.buildUser,
                    credentials=config.credentials,
                )
            )
        except Exception as e:
            logger.error(f"Failed to clean up cluster {config.clusterName}: {e}")

    def destroy(self, config: DestroyConfig) -> DestroyResult:
        """
        Destroys a cluster from the state saved in S3 and removes that state.

        The state is only removed once the installer succeeded, or when
        `forceCleanup` is set. Otherwise it stays in S3 for a retry.

        Args:
            config (DestroyConfig): The destroy request.

        Returns:
            DestroyResult: What was destroyed and cleaned up.

        Raises:
            ClusterNotFoundError: If the cluster has no metadata or no state.
        """
        store = self.state_store(config.store_config())
        cluster_dir = config.cluster_dir

        logger.info(
            f"Destroying OpenShift cluster: {config.clusterName} "
            f"(reason: {config.reason}, requested by: {config.destroyedBy})"
        )

        try:
            metadata = store.get_metadata(config.clusterName)
            if not metadata:
                raise ClusterNotFoundError(
                    f"No metadata found for cluster {config.clusterName}."
                )

            if not store.download_state(config.clusterName, config.workDir):
                raise ClusterNotFoundError(
                    f"No state found for cluster {config.clusterName}."
                )

            openshift_version = metadata.get("openshift_version")
            if openshift_version:
                ensure_openshift_tools(str(openshift_version))

            logger.info("Destroying OpenShift cluster...")
            destroyed = self.uninstall_cluster(cluster_dir, timeout=config.timeout)

            s3_cleaned = False
            deleted_objects = 0
            if destroyed or config.forceCleanup:
                if not destroyed:
                    logger.warning(
                        "Installer failed to destroy the cluster, removing S3 state anyway."
                    )
                deleted_objects = store.cleanup(config.clusterName)
                s3_cleaned = True
            else:
                logger.error(
                    f"Installer failed to destroy cluster {config.clusterName}. "
                    "S3 state is kept, retry or use --force-cleanup."
                )

            return DestroyResult(
                cluster_name=config.clusterName,
                destroyed=destroyed,
                s3_cleaned=s3_cleaned,
                deleted_objects=deleted_objects,
            )
        except Exception as e:
            logger.error(f"Failed to destroy OpenShift cluster: {e}")
            raise
        finally:
            shutil.rmtree(cluster_dir, ignore_errors=True)

    def list(self, config: ListConfig) -> List[ClusterSummary]:
        """
        Lists the clusters in the state bucket with their metadata.

        Clusters without metadata are skipped.
        """
        store = self.state_store(config.store_config())

        summaries = []
        for name in store.list_clusters():
            metadata = store.get_metadata(name)
            if metadata:
                summaries.append(summarize(name, metadata, config.region))
        return summaries
