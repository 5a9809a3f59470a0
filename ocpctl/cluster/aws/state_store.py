from __future__ import annotations

import json
import os
import tarfile
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ocpctl.cluster.aws.s3 import (
    error_code,
    is_access_denied,
    is_not_found,
    s3_client,
    status_code,
)
from ocpctl.config import StateStoreConfig
from ocpctl.constants import (
    AUTH_BACKUP_NAME,
    METADATA_FILE_NAME,
    S3_DEFAULT_REGION,
    S3_DELETE_BATCH_SIZE,
    STATE_ARCHIVE_NAME,
)
from ocpctl.errors import BucketOwnershipError, StateStoreError
from ocpctl.logger import logger
from ocpctl.utils import create_tarball, extract_tarball, remove_file_quietly


def require(**params: Any) -> None:
    for name, value in params.items():
        if not value:
            raise ValueError(f"Missing required parameter: {name}")


def to_user_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    """
    Converts a metadata mapping to S3 user metadata.

    S3 sends user metadata as HTTP headers, so keys are lowercased with
    hyphens in place of underscores and every value becomes a string.
    """
    user_metadata = {}
    for key, value in metadata.items():
        if value is None:
            continue
        header_key = str(key).replace("_", "-").lower()
        user_metadata[header_key] = value if isinstance(value, str) else json.dumps(value)
    return user_metadata


def from_user_metadata(user_metadata: Dict[str, str]) -> Dict[str, Any]:
    return {key.replace("-", "_"): value for key, value in user_metadata.items()}


class S3StateStore:
    """
    Persists OpenShift cluster state in S3.

    Objects are keyed by cluster name:

        <cluster>/cluster-state.tar.gz   tarball of the cluster working directory
        <cluster>/metadata.json          metadata document
        <cluster>/auth-backup.tar.gz     tarball of the auth directory

    Every operation opens its own client and closes it before returning.
    """

    def __init__(self, config: StateStoreConfig) -> None:
        self.config = config

    @property
    def bucket(self) -> str:
        return self.config.bucket

    @property
    def region(self) -> str:
        return self.config.region

    def _client(self) -> Any:
        return s3_client(self.region, self.config.credentials)

    def state_key(self, cluster_name: str) -> str:
        return f"{cluster_name}/{STATE_ARCHIVE_NAME}"

    def metadata_key(self, cluster_name: str) -> str:
        return f"{cluster_name}/{METADATA_FILE_NAME}"

    def auth_backup_key(self, cluster_name: str) -> str:
        return f"{cluster_name}/{AUTH_BACKUP_NAME}"

    def _put_file(
        self, key: str, local_path: str, metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        extra_args: Dict[str, Any] = {}
        if metadata:
            extra_args["Metadata"] = to_user_metadata(metadata)

        with self._client() as s3, open(local_path, "rb") as body:
            s3.put_object(Bucket=self.bucket, Key=key, Body=body, **extra_args)

        return f"s3://{self.bucket}/{key}"

    def upload_state(
        self,
        cluster_name: str,
        work_dir: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Backs up the cluster directory to S3.

        The directory `work_dir/cluster_name` is packed into a tarball and
        uploaded with the metadata attached as S3 user metadata. If metadata
        is given, it is also saved as the metadata document.

        Args:
            cluster_name (str): The name of the cluster.
            work_dir (str): The directory containing the cluster directory.
            metadata (Optional[Dict[str, Any]]): Metadata to store alongside the state.

        Returns:
            str: The S3 URI of the uploaded state.

        Raises:
            ValueError: If a required parameter is missing.
            StateStoreError: If the upload fails.
        """
        require(
            bucket=self.bucket,
            clusterName=cluster_name,
            region=self.region,
            workDir=work_dir,
        )

        logger.info("Backing up cluster state to S3...")

        local_path = os.path.join(work_dir, STATE_ARCHIVE_NAME)
        try:
            create_tarball(
                os.path.join(work_dir, cluster_name), local_path, arcname=cluster_name
            )
            s3_uri = self._put_file(self.state_key(cluster_name), local_path, metadata)
        except (ClientError, BotoCoreError) as e:
            raise StateStoreError(f"Failed to upload state to S3: {e}") from e
        finally:
            remove_file_quietly(local_path)

        if metadata:
            self.save_metadata(cluster_name, metadata)

        logger.info(f"Cluster state uploaded to {s3_uri}")
        return s3_uri

    def upload_auth_backup(self, cluster_name: str, cluster_dir: str) -> str:
        """
        Uploads a separate backup of the cluster's auth directory.

        Returns:
            str: The S3 URI of the uploaded backup.
        """
        require(clusterName=cluster_name, clusterDir=cluster_dir)

        local_path = os.path.join(cluster_dir, AUTH_BACKUP_NAME)
        try:
            create_tarball(os.path.join(cluster_dir, "auth"), local_path, arcname="auth")
            s3_uri = self._put_file(self.auth_backup_key(cluster_name), local_path)
        except (ClientError, BotoCoreError) as e:
            raise StateStoreError(f"Failed to upload auth backup to S3: {e}") from e
        finally:
            remove_file_quietly(local_path)

        logger.debug(f"Auth backup uploaded to {s3_uri}")
        return s3_uri

    def download_state(self, cluster_name: str, work_dir: str) -> bool:
        """
        Downloads the cluster state from S3 and extracts it into `work_dir`.

        Args:
            cluster_name (str): The name of the cluster.
            work_dir (str): Where the state is extracted.

        Returns:
            bool: True if the state was found and extracted, False if there is no state.

        Raises:
            StateStoreError: If S3 reports anything other than "not found", or
                the archive cannot be extracted.
        """
        require(
            bucket=self.bucket,
            clusterName=cluster_name,
            region=self.region,
            workDir=work_dir,
        )

        logger.info("Downloading cluster state from S3...")

        key = self.state_key(cluster_name)
        local_path = os.path.join(work_dir, STATE_ARCHIVE_NAME)

        with self._client() as s3:
            try:
                s3.head_object(Bucket=self.bucket, Key=key)
            except ClientError as e:
                if is_not_found(e):
                    logger.warning(f"No state found in S3 for cluster: {cluster_name}")
                    return False
                raise StateStoreError(f"Failed to download state from S3: {e}") from e
            except BotoCoreError as e:
                raise StateStoreError(f"Failed to download state from S3: {e}") from e

            os.makedirs(work_dir, exist_ok=True)
            try:
                s3.download_file(self.bucket, key, local_path)
            except (ClientError, BotoCoreError) as e:
                remove_file_quietly(local_path)
                raise StateStoreError(f"Failed to download state from S3: {e}") from e

        try:
            extract_tarball(local_path, work_dir)
        except (tarfile.TarError, EOFError, OSError) as e:
            raise StateStoreError(
                f"Failed to download state from S3: cannot extract {key}: {e}"
            ) from e
        finally:
            remove_file_quietly(local_path)

        return True

    def save_metadata(self, cluster_name: str, metadata: Dict[str, Any]) -> None:
        """
        Saves the metadata document as pretty printed JSON.

        The document is stored apart from the state so that it can be read
        without downloading the whole archive.

        Raises:
            StateStoreError: If the upload fails.
        """
        require(bucket=self.bucket, clusterName=cluster_name, region=self.region)

        body = json.dumps(metadata, indent=4).encode("utf-8")
        try:
            with self._client() as s3:
                s3.put_object(
                    Bucket=self.bucket,
                    Key=self.metadata_key(cluster_name),
                    Body=body,
                    ContentType="application/json",
                )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to save metadata: {e}")
            raise StateStoreError(f"Failed to save metadata to S3: {e}") from e

    def get_metadata(self, cluster_name: str) -> Optional[Dict[str, Any]]:
        """
        Retrieves the metadata of a cluster.

        The metadata document is read first. If it does not exist, the user
        metadata of the state archive is used instead, with hyphenated keys
        converted back to underscores.

        Returns:
            Optional[Dict[str, Any]]: The metadata, or None if the cluster has neither.

        Raises:
            StateStoreError: If S3 fails for a reason other than "not found",
                or the document is not a JSON object.
        """
        require(bucket=self.bucket, clusterName=cluster_name, region=self.region)

        with self._client() as s3:
            try:
                response = s3.get_object(
                    Bucket=self.bucket, Key=self.metadata_key(cluster_name)
                )
                body = response["Body"]
                try:
                    content = body.read().decode("utf-8")
                finally:
                    body.close()
            except ClientError as e:
                if not is_not_found(e):
                    raise StateStoreError(f"Failed to get metadata: {e}") from e
                content = None
            except BotoCoreError as e:
                raise StateStoreError(f"Failed to get metadata: {e}") from e

            if content:
                try:
                    metadata = json.loads(content)
                except json.JSONDecodeError as e:
                    raise StateStoreError(
                        f"Failed to get metadata: malformed metadata document for {cluster_name}: {e}"
                    ) from e
                if not isinstance(metadata, dict):
                    raise StateStoreError(
                        f"Failed to get metadata: metadata document for {cluster_name} is not an object"
                    )
                return metadata

            try:
                head = s3.head_object(
                    Bucket=self.bucket, Key=self.state_key(cluster_name)
                )
            except ClientError as e:
                if is_not_found(e):
                    logger.warning(f"No metadata found for cluster: {cluster_name}")
                    return None
                raise StateStoreError(f"Failed to get metadata: {e}") from e
            except BotoCoreError as e:
                raise StateStoreError(f"Failed to get metadata: {e}") from e

        user_metadata = head.get("Metadata") or {}
        if not user_metadata:
            logger.warning(f"No metadata found for cluster: {cluster_name}")
            return None

        logger.info(f"Found metadata in S3 object metadata for cluster: {cluster_name}")
        return from_user_metadata(user_metadata)

    def cleanup(self, cluster_name: str) -> int:
        """
        Deletes every object under the cluster's prefix.

        Listing is paginated and deletes are batched, at most 1000 keys per
        request. A prefix without objects is not an error.

        Returns:
            int: The number of deleted objects.

        Raises:
            StateStoreError: If listing or deleting fails.
        """
        require(bucket=self.bucket, clusterName=cluster_name, region=self.region)

        logger.info(f"Cleaning up S3 state for cluster: {cluster_name}")

        prefix = f"{cluster_name}/"
        deleted_count = 0
        try:
            with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                    keys = [obj["Key"] for obj in page.get("Contents", [])]
                    for i in range(0, len(keys), S3_DELETE_BATCH_SIZE):
                        batch = keys[i : i + S3_DELETE_BATCH_SIZE]
                        response = s3.delete_objects(
                            Bucket=self.bucket,
                            Delete={"Objects": [{"Key": key} for key in batch]},
                        )
                        errors = response.get("Errors", [])
                        if errors:
                            failed = ", ".join(
                                f"{err.get('Key')} ({err.get('Code')})" for err in errors
                            )
                            raise StateStoreError(
                                f"Failed to cleanup S3 state: could not delete {failed}"
                            )
                        deleted_count += len(response.get("Deleted", []))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to cleanup S3 state: {e}")
            raise StateStoreError(f"Failed to cleanup S3 state: {e}") from e

        logger.info(
            f"Successfully deleted {deleted_count} objects for cluster: {cluster_name}"
        )
        return deleted_count

    def list_clusters(self) -> List[str]:
        """
        Lists cluster names by scanning the whole bucket.

        A cluster is any first path segment whose key ends in metadata.json
        or cluster-state.tar.gz. Names keep the order of the listing.

        Raises:
            StateStoreError: If the listing fails.
        """
        require(bucket=self.bucket, region=self.region)

        clusters: List[str] = []
        seen = set()
        try:
            with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                for page in paginator.paginate(Bucket=self.bucket, Prefix=""):
                    for obj in page.get("Contents", []):
                        key = obj["Key"]
                        if not (
                            key.endswith(METADATA_FILE_NAME)
                            or key.endswith(STATE_ARCHIVE_NAME)
                        ):
                            continue
                        parts = key.split("/")
                        if len(parts) >= 2 and parts[0] and parts[0] not in seen:
                            seen.add(parts[0])
                            clusters.append(parts[0])
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list clusters: {e}")
            raise StateStoreError(f"Failed to list clusters from S3: {e}") from e

        return clusters

    def ensure_bucket_exists(self) -> bool:
        """
        Creates the bucket with versioning enabled if it does not exist yet.

        Returns:
            bool: True if the bucket was created, False if it already existed.

        Raises:
            BucketOwnershipError: If the name is taken by another AWS account.
            StateStoreError: If the bucket cannot be checked or created.
        """
        require(bucket=self.bucket, region=self.region)

        logger.debug(
            f"Checking if S3 bucket {self.bucket} exists in region {self.region}..."
        )

        with self._client() as s3:
            try:
                s3.head_bucket(Bucket=self.bucket)
                logger.debug(f"S3 bucket {self.bucket} already exists")
                return False
            except ClientError as e:
                if is_access_denied(e):
                    # The bucket exists, these credentials just cannot list it
                    logger.warning(
                        f"Access denied checking S3 bucket {self.bucket}, assuming it exists"
                    )
                    return False
                if not is_not_found(e):
                    raise StateStoreError(
                        f"Failed to check S3 bucket {self.bucket}: {e}"
                    ) from e
            except BotoCoreError as e:
                raise StateStoreError(
                    f"Failed to check S3 bucket {self.bucket}: {e}"
                ) from e

            try:
                if self.region == S3_DEFAULT_REGION:
                    s3.create_bucket(Bucket=self.bucket)
                else:
                    s3.create_bucket(
                        Bucket=self.bucket,
                        CreateBucketConfiguration={"LocationConstraint": self.region},
                    )
            except ClientError as e:
                code = error_code(e)
                if code == "BucketAlreadyOwnedByYou":
                    logger.debug(f"S3 bucket {self.bucket} already exists")
                    return False
                if code == "BucketAlreadyExists" or status_code(e) == 409:
                    raise BucketOwnershipError(
                        f"S3 bucket {self.bucket} already exists but is owned by another AWS account"
                    ) from e
                raise StateStoreError(
                    f"Failed to create S3 bucket {self.bucket}: {e}"
                ) from e
            except BotoCoreError as e:
                raise StateStoreError(
                    f"Failed to create S3 bucket {self.bucket}: {e}"
                ) from e

            try:
                s3.put_bucket_versioning(
                    Bucket=self.bucket,
                    VersioningConfiguration={"Status": "Enabled"},
                )
            except (ClientError, BotoCoreError) as e:
                raise StateStoreError(
                    f"Failed to enable versioning on S3 bucket {self.bucket}: {e}"
                ) from e

        logger.info(
            f"S3 bucket {self.bucket} created successfully with versioning enabled"
        )
        return True
