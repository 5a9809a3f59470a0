from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from ruamel.yaml import YAML

from ocpctl.constants import (
    DEFAULT_BUCKET,
    DEFAULT_REGION,
    MAX_CLUSTER_NAME_LENGTH,
    SUPPORTED_REGIONS,
)
from ocpctl.utils import to_yaml

CLUSTER_NAME_PATTERN = r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$"

OPENSHIFT_VERSION_PATTERN = (
    r"^(latest|stable|fast|candidate"
    r"|eus-[0-9]+\.[0-9]+"
    r"|(latest|stable|fast|candidate)-[0-9]+\.[0-9]+"
    r"|[0-9]+\.[0-9]+(\.[0-9]+)?)$"
)


class OcpctlBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


def check_required(values: Any, required: List[str]) -> Any:
    """
    Fails on the first required key that is absent or falsy.

    Args:
        values (Any): The raw input of a model validator.
        required (List[str]): The keys that must be present.

    Returns:
        Any: The input values if validation is successful.

    Raises:
        ValueError: If a required key is missing or empty.
    """
    if not isinstance(values, dict):
        return values
    for param in required:
        if not values.get(param):
            raise ValueError(f"Missing required parameter: {param}")
    return values


def validate_cluster_name(name: str) -> str:
    """
    Validates a cluster name.

    The name must start with a lowercase letter, contain only lowercase
    letters, digits and single hyphens between them, and be at most 20
    characters long.

    Raises:
        ValueError: If the name breaks one of the rules.
    """
    if not re.match(CLUSTER_NAME_PATTERN, name):
        raise ValueError(
            f"Invalid cluster name: '{name}'. Must start with lowercase letter, "
            "contain only lowercase letters, numbers, and non-consecutive hyphens."
        )
    if len(name) > MAX_CLUSTER_NAME_LENGTH:
        raise ValueError(
            f"Cluster name too long. Maximum {MAX_CLUSTER_NAME_LENGTH} characters."
        )
    return name


def validate_openshift_version(version: str) -> str:
    if not re.match(OPENSHIFT_VERSION_PATTERN, version):
        raise ValueError(
            f"Invalid OpenShift version: '{version}'. Use specific version (4.16.20), "
            "channel (latest), or channel-version (stable-4.16)."
        )
    return version


def validate_region(region: str) -> str:
    if region not in SUPPORTED_REGIONS:
        supported = ", ".join(f"'{r}'" for r in SUPPORTED_REGIONS)
        raise ValueError(
            f"Unsupported AWS region: '{region}'. Currently only {supported} is supported."
        )
    return region


class AwsCredentials(OcpctlBaseModel):
    """
    An explicit AWS key pair.
    """

    accessKey: str = Field(..., description="The AWS access key id.")
    secretKey: str = Field(..., description="The AWS secret access key.")
    sessionToken: Optional[str] = Field(
        None, description="The session token for temporary credentials."
    )


def resolve_credentials(
    explicit: Optional[AwsCredentials] = None,
) -> Optional[AwsCredentials]:
    """
    Resolves the credentials an AWS client should use.

    Explicit credentials win. Otherwise the key pair is taken from the
    AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables. If
    neither is available, None is returned and boto3 falls back to the
    ambient credentials of the host, such as an instance role.

    Args:
        explicit (Optional[AwsCredentials]): Credentials supplied by the caller.

    Returns:
        Optional[AwsCredentials]: The credentials to use, or None for the ambient chain.
    """
    if explicit is not None and explicit.accessKey and explicit.secretKey:
        return explicit

    access_key = os.environ.get("AWS_ACCESS_KEY_ID")
    secret_key = os.environ.get("AWS_SECRET_ACCESS_KEY")
    if access_key and secret_key:
        return AwsCredentials(
            accessKey=access_key,
            secretKey=secret_key,
            sessionToken=os.environ.get("AWS_SESSION_TOKEN") or None,
        )

    return None


class StateStoreConfig(OcpctlBaseModel):
    """
    Where cluster state is persisted and how to authenticate against it.
    """

    bucket: str = Field(..., description="The S3 bucket holding cluster state.")
    region: str = Field(..., description="The AWS region of the bucket.")
    credentials: Optional[AwsCredentials] = Field(
        None, description="Explicit credentials. Resolved from the environment if absent."
    )

    @model_validator(mode="before")
    def check_required_fields(cls, values: Any) -> Any:
        return check_required(values, ["bucket", "region"])


class ClusterConfig(OcpctlBaseModel):
    """
    Represents the configuration of a cluster to create.
    """

    clusterName: str = Field(..., description="The name of the cluster.")
    openshiftVersion: str = Field(
        ...,
        description="The OpenShift version: 4.16.20, 4.16, a channel such as stable, "
        "a channel with a minor version such as stable-4.16, or eus-4.16.",
    )
    awsRegion: str = Field(..., description="The AWS region of the cluster.")
    pullSecret: str = Field(..., description="The Red Hat pull secret.")
    sshPublicKey: str = Field(..., description="The SSH public key for node access.")
    s3Bucket: str = Field(..., description="The S3 bucket for cluster state.")
    workDir: str = Field(..., description="The local working directory.")

    baseDomain: str = Field("cd.percona.com", description="The base DNS domain.")
    masterType: str = Field("m5.xlarge", description="The control plane instance type.")
    workerType: str = Field("m5.large", description="The worker instance type.")
    workerCount: int = Field(3, description="The number of worker nodes.")
    deleteAfterHours: str = Field(
        "8", description="Value of the delete-cluster-after-hours tag."
    )
    teamName: str = Field("cloud", description="Value of the team tag.")
    productTag: str = Field("openshift", description="Value of the product tag.")

    deployPmm: bool = Field(True, description="Whether to deploy PMM on the cluster.")
    pmmVersion: str = Field("3.3.0", description="The PMM version to deploy.")
    pmmNamespace: str = Field(
        "pmm-monitoring", description="The namespace for the PMM deployment."
    )
    pmmAdminPassword: Optional[str] = Field(
        None, description="The PMM admin password. Generated by the chart if absent."
    )

    buildUser: str = Field(
        default_factory=lambda: os.environ.get("BUILD_USER_ID") or "jenkins",
        description="Who requested the cluster.",
    )
    buildNumber: str = Field(
        default_factory=lambda: os.environ.get("BUILD_NUMBER") or "1",
        description="The CI build that created the cluster.",
    )
    debug: bool = Field(
        False,
        description="Run the installer with debug logs and keep resources when creation fails.",
    )
    uploadAttempts: int = Field(
        3, description="How many times the state upload is attempted."
    )
    uploadBackoff: float = Field(
        2.0, description="Base delay in seconds between state upload attempts."
    )
    credentials: Optional[AwsCredentials] = Field(
        None, description="Explicit AWS credentials."
    )

    @model_validator(mode="before")
    def check_required_fields(cls, values: Any) -> Any:
        return check_required(
            values,
            [
                "clusterName",
                "openshiftVersion",
                "awsRegion",
                "pullSecret",
                "sshPublicKey",
                "s3Bucket",
                "workDir",
            ],
        )

    @field_validator("clusterName")
    def validate_cluster_name(cls, v: str) -> str:
        return validate_cluster_name(v)

    @field_validator("openshiftVersion")
    def validate_openshift_version(cls, v: str) -> str:
        return validate_openshift_version(v)

    @field_validator("awsRegion")
    def validate_region(cls, v: str) -> str:
        return validate_region(v)

    @field_validator("workerCount")
    def validate_worker_count(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Worker count cannot be less than 0")
        return v

    @field_validator("uploadAttempts")
    def validate_upload_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Upload attempts must be at least 1")
        return v

    @property
    def cluster_dir(self) -> str:
        return os.path.join(self.workDir, self.clusterName)

    def store_config(self) -> StateStoreConfig:
        return StateStoreConfig(
            bucket=self.s3Bucket, region=self.awsRegion, credentials=self.credentials
        )


class DestroyConfig(OcpctlBaseModel):
    """
    Represents a request to destroy a cluster.
    """

    clusterName: str = Field(..., description="The name of the cluster.")
    s3Bucket: str = Field(..., description="The S3 bucket holding cluster state.")
    awsRegion: str = Field(..., description="The AWS region of the cluster.")
    workDir: str = Field(..., description="The local working directory.")
    forceCleanup: bool = Field(
        False,
        description="Delete the S3 state even if the installer fails to destroy the cluster.",
    )
    timeout: Optional[int] = Field(
        None, description="Seconds the installer may spend destroying the cluster."
    )
    reason: str = Field("manual", description="Why the cluster is destroyed.")
    destroyedBy: str = Field(
        default_factory=lambda: os.environ.get("BUILD_USER_ID") or "jenkins",
        description="Who requested the destruction.",
    )
    credentials: Optional[AwsCredentials] = Field(
        None, description="Explicit AWS credentials."
    )

    @model_validator(mode="before")
    def check_required_fields(cls, values: Any) -> Any:
        return check_required(values, ["clusterName", "s3Bucket", "awsRegion", "workDir"])

    @property
    def cluster_dir(self) -> str:
        return os.path.join(self.workDir, self.clusterName)

    def store_config(self) -> StateStoreConfig:
        return StateStoreConfig(
            bucket=self.s3Bucket, region=self.awsRegion, credentials=self.credentials
        )


class ListConfig(OcpctlBaseModel):
    """
    Represents a request to list clusters.
    """

    region: str = Field(
        default_factory=lambda: os.environ.get("OPENSHIFT_AWS_REGION") or DEFAULT_REGION,
        description="The AWS region of the bucket.",
    )
    bucket: str = Field(
        default_factory=lambda: os.environ.get("OPENSHIFT_S3_BUCKET") or DEFAULT_BUCKET,
        description="The S3 bucket holding cluster state.",
    )
    credentials: Optional[AwsCredentials] = Field(
        None, description="Explicit AWS credentials."
    )

    def store_config(self) -> StateStoreConfig:
        return StateStoreConfig(
            bucket=self.bucket, region=self.region, credentials=self.credentials
        )


class ClusterMetadata(BaseModel):
    """
    Provenance and configuration of a cluster, stored as metadata.json.

    Every field is optional and unknown keys are preserved, since documents
    written by older tooling may lack or add fields.
    """

    model_config = ConfigDict(extra="allow")

    cluster_name: Optional[str] = None
    openshift_version: Optional[str] = None
    aws_region: Optional[str] = None
    created_date: Optional[str] = None
    created_by: Optional[str] = None
    jenkins_build: Optional[str] = None
    master_type: Optional[str] = None
    worker_type: Optional[str] = None
    worker_count: Optional[Any] = None
    pmm_deployed: Optional[Any] = None
    pmm_version: Optional[str] = None
    pmm_url: Optional[str] = None
    pmm_namespace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class PmmInfo(BaseModel):
    url: str
    username: str
    password: str
    namespace: str
    password_generated: bool = False


class ClusterInfo(BaseModel):
    """
    Connection details of a newly created cluster.
    """

    cluster_name: str
    api_url: str
    console_url: Optional[str] = None
    kubeadmin_password: Optional[str] = None
    kubeconfig: str
    cluster_dir: str
    pmm: Optional[PmmInfo] = None


class DestroyResult(BaseModel):
    cluster_name: str
    destroyed: bool
    s3_cleaned: bool
    deleted_objects: int = 0


class ClusterSummary(BaseModel):
    name: str
    version: str
    region: str
    created_by: str
    created_at: str
    pmm_deployed: str
    pmm_version: str


REDACTED = "<redacted>"


def generate_yaml(config: ClusterConfig, redact_secrets: bool = False) -> str:
    """
    Generate a YAML string representation of the given cluster config.

    Credentials are never written out.

    Args:
        config (ClusterConfig): The config object to generate YAML from.
        redact_secrets (bool): Mask the pull secret and the PMM password.

    Returns:
        str: The YAML string representation of the config object.
    """
    data = config.model_dump(exclude_none=True, exclude={"credentials"})
    if redact_secrets:
        for key in ("pullSecret", "pmmAdminPassword"):
            if key in data:
                data[key] = REDACTED
    return to_yaml(data)


def parse_yaml(
    yaml_str: str,
    overrides: Optional[Dict[str, Any]] = None,
    defaults: Optional[Dict[str, Any]] = None,
) -> ClusterConfig:
    """
    Parse a YAML string and return a ClusterConfig object.

    Args:
        yaml_str (str): The YAML string to parse.
        overrides (Optional[Dict[str, Any]]): Values that take precedence over the file.
        defaults (Optional[Dict[str, Any]]): Values used where the file has none.

    Returns:
        ClusterConfig: The parsed ClusterConfig object.
    """
    yaml = YAML(typ="safe")
    data = yaml.load(yaml_str) or {}
    if not isinstance(data, dict):
        raise ValueError("Invalid configuration: expected a mapping at the top level.")

    values = {k: v for k, v in (defaults or {}).items() if v is not None}
    values.update(data)
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return ClusterConfig(**values)
