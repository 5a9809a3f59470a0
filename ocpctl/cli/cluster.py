from __future__ import annotations

import json
import os
from typing import Optional

import typer
from tabulate import tabulate

from ocpctl.cli.utils import (
    default_work_dir,
    load_cluster_config,
    load_cluster_manager,
    print_cluster_info,
    read_text_file,
)
from ocpctl.cluster.aws.state_store import S3StateStore
from ocpctl.config import DestroyConfig, ListConfig
from ocpctl.constants import DEFAULT_BUCKET, DEFAULT_REGION
from ocpctl.errors import OcpctlError
from ocpctl.logger import logger

cluster_app = typer.Typer()


def default_bucket() -> str:
    return os.getenv("OPENSHIFT_S3_BUCKET") or DEFAULT_BUCKET


def default_region() -> str:
    return os.getenv("OPENSHIFT_AWS_REGION") or DEFAULT_REGION


@cluster_app.command()
def create(
    cluster_config: str = typer.Option(
        "",
        "--file",
        "-f",
        help="Path to a YAML file with the cluster configuration. "
        "Options given on the command line override the values in the file.",
    ),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="The name of the cluster."),
    openshift_version: Optional[str] = typer.Option(
        None,
        "--openshift-version",
        help="The OpenShift version: 4.16.20, 4.16, latest, stable, stable-4.16 or eus-4.16.",
    ),
    region: Optional[str] = typer.Option(None, "--region", help="The AWS region."),
    pull_secret_file: Optional[str] = typer.Option(
        None, "--pull-secret-file", help="Path to the Red Hat pull secret."
    ),
    ssh_key_file: Optional[str] = typer.Option(
        None, "--ssh-key-file", help="Path to the SSH public key for node access."
    ),
    bucket: Optional[str] = typer.Option(
        None, "--bucket", help="The S3 bucket for cluster state."
    ),
    work_dir: Optional[str] = typer.Option(
        None, "--work-dir", help="The local working directory."
    ),
    base_domain: Optional[str] = typer.Option(None, "--base-domain", help="The base DNS domain."),
    master_type: Optional[str] = typer.Option(
        None, "--master-type", help="The control plane instance type."
    ),
    worker_type: Optional[str] = typer.Option(
        None, "--worker-type", help="The worker instance type."
    ),
    worker_count: Optional[int] = typer.Option(
        None, "--worker-count", help="The number of worker nodes."
    ),
    delete_after_hours: Optional[str] = typer.Option(
        None,
        "--delete-after-hours",
        help="Hours after which the cleanup automation deletes the cluster.",
    ),
    team_name: Optional[str] = typer.Option(None, "--team", help="Value of the team tag."),
    product_tag: Optional[str] = typer.Option(
        None, "--product", help="Value of the product tag."
    ),
    deploy_pmm: Optional[bool] = typer.Option(
        None, "--deploy-pmm/--no-deploy-pmm", help="Deploy PMM on the cluster."
    ),
    pmm_version: Optional[str] = typer.Option(None, "--pmm-version", help="The PMM version."),
    pmm_namespace: Optional[str] = typer.Option(
        None, "--pmm-namespace", help="The namespace for PMM."
    ),
    pmm_admin_password: Optional[str] = typer.Option(
        None,
        "--pmm-admin-password",
        envvar="PMM_ADMIN_PASSWORD",
        help="The PMM admin password. Generated if not given.",
    ),
    build_user: Optional[str] = typer.Option(
        None, "--build-user", help="Who requested the cluster."
    ),
    debug: Optional[bool] = typer.Option(
        None,
        "--debug/--no-debug",
        help="Run the installer with debug logs and keep resources if creation fails.",
    ),
) -> None:
    """
    Creates an OpenShift cluster on AWS and saves its state to S3.

    If the creation fails or is interrupted, the partially created cluster
    is destroyed unless --debug is set.
    """
    overrides = {
        "clusterName": name,
        "openshiftVersion": openshift_version,
        "awsRegion": region,
        "pullSecret": read_text_file(pull_secret_file, "pull secret"),
        "sshPublicKey": read_text_file(ssh_key_file, "SSH key"),
        "s3Bucket": bucket,
        "workDir": work_dir,
        "baseDomain": base_domain,
        "masterType": master_type,
        "workerType": worker_type,
        "workerCount": worker_count,
        "deleteAfterHours": delete_after_hours,
        "teamName": team_name,
        "productTag": product_tag,
        "deployPmm": deploy_pmm,
        "pmmVersion": pmm_version,
        "pmmNamespace": pmm_namespace,
        "pmmAdminPassword": pmm_admin_password,
        "buildUser": build_user,
        "debug": debug,
    }

    defaults = {
        "awsRegion": default_region(),
        "s3Bucket": default_bucket(),
        "workDir": default_work_dir(),
    }

    try:
        config = load_cluster_config(cluster_config, overrides, defaults)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    cluster_manager = load_cluster_manager()
    try:
        info = cluster_manager.create(config)
    except KeyboardInterrupt:
        logger.warning("Cluster creation interrupted.")
        cluster_manager.attempt_cluster_cleanup(config, "aborted")
        raise typer.Exit(130)
    except Exception:
        cluster_manager.attempt_cluster_cleanup(config, "failed")
        raise typer.Exit(1)

    print_cluster_info(info)


@cluster_app.command()
def destroy(
    name: str = typer.Option(..., "--name", "-n", help="The name of the cluster."),
    bucket: str = typer.Option(
        DEFAULT_BUCKET,
        "--bucket",
        envvar="OPENSHIFT_S3_BUCKET",
        help="The S3 bucket holding cluster state.",
    ),
    region: str = typer.Option(
        DEFAULT_REGION, "--region", envvar="OPENSHIFT_AWS_REGION", help="The AWS region."
    ),
    work_dir: Optional[str] = typer.Option(
        None, "--work-dir", help="The local working directory."
    ),
    force_cleanup: bool = typer.Option(
        False,
        "--force-cleanup",
        help="Delete the S3 state even if the installer fails to destroy the cluster.",
    ),
    timeout: Optional[int] = typer.Option(
        None, "--timeout", help="Seconds the installer may spend destroying the cluster."
    ),
    reason: str = typer.Option("manual", "--reason", help="Why the cluster is destroyed."),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show what would be destroyed without destroying it."
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Automatic yes to prompts. Use this option to bypass the confirmation "
        "prompt and directly proceed with the operation.",
    ),
) -> None:
    """
    Destroys an OpenShift cluster and removes its state from S3.
    """
    try:
        config = DestroyConfig(
            clusterName=name,
            s3Bucket=bucket,
            awsRegion=region,
            workDir=work_dir or default_work_dir(),
            forceCleanup=force_cleanup,
            timeout=timeout,
            reason=reason,
        )
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    if dry_run:
        try:
            metadata = S3StateStore(config.store_config()).get_metadata(name)
        except OcpctlError as e:
            logger.error(str(e))
            raise typer.Exit(1)
        if not metadata:
            logger.error(f"No metadata found for cluster {name}.")
            raise typer.Exit(1)
        logger.info(
            f"[DRY RUN] Would destroy cluster {name} and delete "
            f"s3://{bucket}/{name}/\n{json.dumps(metadata, indent=4)}"
        )
        return

    if not (
        yes
        or typer.confirm(
            f"Are you sure you want to destroy cluster {name}? Please note that "
            "all resources and data will be permanently deleted.",
            default=False,
        )
    ):
        return

    try:
        result = load_cluster_manager().destroy(config)
    except (OcpctlError, ValueError):
        raise typer.Exit(1)

    if not result.s3_cleaned:
        raise typer.Exit(1)

    logger.info(
        f"Cluster {name} destroyed. Deleted {result.deleted_objects} objects from S3."
    )


@cluster_app.command("list")
def list_clusters(
    region: str = typer.Option(
        DEFAULT_REGION, "--region", envvar="OPENSHIFT_AWS_REGION", help="The AWS region."
    ),
    bucket: str = typer.Option(
        DEFAULT_BUCKET,
        "--bucket",
        envvar="OPENSHIFT_S3_BUCKET",
        help="The S3 bucket holding cluster state.",
    ),
    output: str = typer.Option(
        "table", "--output", "-o", help="Output format: table or json."
    ),
) -> None:
    """
    Lists the OpenShift clusters recorded in S3.
    """
    try:
        clusters = load_cluster_manager().list(ListConfig(region=region, bucket=bucket))
    except (OcpctlError, ValueError) as e:
        logger.error(f"Failed to list clusters: {e}")
        raise typer.Exit(1)

    if output == "json":
        typer.echo(json.dumps([c.model_dump() for c in clusters], indent=4))
        return

    if not clusters:
        logger.info("No clusters found.")
        return

    table = [
        (
            c.name,
            c.version,
            c.region,
            c.created_by,
            c.created_at,
            c.pmm_deployed,
            c.pmm_version,
        )
        for c in clusters
    ]
    logger.info(
        tabulate(
            table,
            headers=[
                "Name",
                "Version",
                "Region",
                "Created By",
                "Created At",
                "PMM",
                "PMM Version",
            ],
        )
    )
