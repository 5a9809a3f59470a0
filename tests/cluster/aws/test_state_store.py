import json
import os
from contextlib import nullcontext
from pathlib import Path
from unittest.mock import MagicMock, patch

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from ocpctl.cluster.aws.state_store import (
    S3StateStore,
    from_user_metadata,
    to_user_metadata,
)
from ocpctl.config import StateStoreConfig
from ocpctl.errors import BucketOwnershipError, StateStoreError

REGION = "us-east-2"
BUCKET = "test-bucket"


def make_store(bucket: str = BUCKET, region: str = REGION) -> S3StateStore:
    return S3StateStore(StateStoreConfig(bucket=bucket, region=region))


def create_bucket() -> None:
    boto3.client("s3", region_name=REGION).create_bucket(
        Bucket=BUCKET, CreateBucketConfiguration={"LocationConstraint": REGION}
    )


def make_cluster_dir(work_dir: Path, name: str = "test-cluster") -> Path:
    cluster_dir = work_dir / name
    (cluster_dir / "auth").mkdir(parents=True)
    (cluster_dir / "auth" / "kubeconfig").write_text("apiVersion: v1\n")
    (cluster_dir / "auth" / "kubeadmin-password").write_text("secret\n")
    (cluster_dir / "metadata.json").write_text("{}")
    return cluster_dir


def client_error(code: str, status: int) -> ClientError:
    return ClientError(
        {"Error": {"Code": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "Operation",
    )


def test_user_metadata_conversion() -> None:
    user_metadata = to_user_metadata(
        {"cluster_name": "test", "worker_count": 3, "pmm_deployed": False, "x": None}
    )
    assert user_metadata == {
        "cluster-name": "test",
        "worker-count": "3",
        "pmm-deployed": "false",
    }
    assert from_user_metadata(user_metadata) == {
        "cluster_name": "test",
        "worker_count": "3",
        "pmm_deployed": "false",
    }


@mock_aws
def test_ensure_bucket_exists() -> None:
    store = make_store()

    assert store.ensure_bucket_exists() is True

    s3 = boto3.client("s3", region_name=REGION)
    versioning = s3.get_bucket_versioning(Bucket=BUCKET)
    assert versioning["Status"] == "Enabled"
    location = s3.get_bucket_location(Bucket=BUCKET)
    assert location["LocationConstraint"] == REGION

    # Second call finds the bucket
    assert store.ensure_bucket_exists() is False


@mock_aws
def test_ensure_bucket_exists_us_east_1() -> None:
    store = make_store(bucket="east-bucket", region="us-east-1")
    assert store.ensure_bucket_exists() is True
    boto3.client("s3", region_name="us-east-1").head_bucket(Bucket="east-bucket")


def test_ensure_bucket_owned_by_another_account() -> None:
    s3 = MagicMock()
    s3.head_bucket.side_effect = client_error("404", 404)
    s3.create_bucket.side_effect = client_error("BucketAlreadyExists", 409)

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        with pytest.raises(
            BucketOwnershipError,
            match=f"S3 bucket {BUCKET} already exists but is owned by another AWS account",
        ):
            make_store().ensure_bucket_exists()


def test_ensure_bucket_already_owned_by_you() -> None:
    s3 = MagicMock()
    s3.head_bucket.side_effect = client_error("404", 404)
    s3.create_bucket.side_effect = client_error("BucketAlreadyOwnedByYou", 409)

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        assert make_store().ensure_bucket_exists() is False
    s3.put_bucket_versioning.assert_not_called()


def test_ensure_bucket_access_denied() -> None:
    s3 = MagicMock()
    s3.head_bucket.side_effect = client_error("403", 403)

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        # Credentials without s3:ListBucket still see an existing bucket
        assert make_store().ensure_bucket_exists() is False
    s3.create_bucket.assert_not_called()
    s3.put_bucket_versioning.assert_not_called()


def test_ensure_bucket_head_failure() -> None:
    s3 = MagicMock()
    s3.head_bucket.side_effect = client_error("InternalError", 500)

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        with pytest.raises(StateStoreError, match="Failed to check S3 bucket"):
            make_store().ensure_bucket_exists()
    s3.create_bucket.assert_not_called()


def test_ensure_bucket_existing_makes_no_changes() -> None:
    s3 = MagicMock()

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        assert make_store().ensure_bucket_exists() is False
        assert make_store().ensure_bucket_exists() is False

    assert s3.head_bucket.call_count == 2
    s3.create_bucket.assert_not_called()
    s3.put_bucket_versioning.assert_not_called()


def test_download_state_access_denied(tmp_path: Path) -> None:
    s3 = MagicMock()
    s3.head_object.side_effect = client_error("403", 403)

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        with pytest.raises(StateStoreError, match="Failed to download state from S3"):
            make_store().download_state("test-cluster", str(tmp_path))
    s3.download_file.assert_not_called()


@mock_aws
def test_download_state_corrupt_archive(tmp_path: Path) -> None:
    create_bucket()
    boto3.client("s3", region_name=REGION).put_object(
        Bucket=BUCKET, Key="broken/cluster-state.tar.gz", Body=b"not a tarball"
    )

    with pytest.raises(StateStoreError, match="cannot extract broken/cluster-state.tar.gz"):
        make_store().download_state("broken", str(tmp_path))
    assert not (tmp_path / "cluster-state.tar.gz").exists()


def test_get_metadata_access_denied() -> None:
    s3 = MagicMock()
    s3.get_object.side_effect = client_error("AccessDenied", 403)

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        with pytest.raises(StateStoreError, match="Failed to get metadata"):
            make_store().get_metadata("test-cluster")
    s3.head_object.assert_not_called()


def test_get_metadata_fallback_access_denied() -> None:
    s3 = MagicMock()
    s3.get_object.side_effect = client_error("NoSuchKey", 404)
    s3.head_object.side_effect = client_error("403", 403)

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        with pytest.raises(StateStoreError, match="Failed to get metadata"):
            make_store().get_metadata("test-cluster")


@mock_aws
def test_upload_and_download_state(tmp_path: Path) -> None:
    create_bucket()
    store = make_store()
    work_dir = tmp_path / "work"
    make_cluster_dir(work_dir)
    metadata = {"cluster_name": "test-cluster", "openshift_version": "4.16.20"}

    uri = store.upload_state("test-cluster", str(work_dir), metadata)

    assert uri == f"s3://{BUCKET}/test-cluster/cluster-state.tar.gz"
    # The local tarball is removed after the upload
    assert not (work_dir / "cluster-state.tar.gz").exists()

    s3 = boto3.client("s3", region_name=REGION)
    head = s3.head_object(Bucket=BUCKET, Key="test-cluster/cluster-state.tar.gz")
    assert head["Metadata"]["openshift-version"] == "4.16.20"

    body = s3.get_object(Bucket=BUCKET, Key="test-cluster/metadata.json")["Body"].read()
    assert json.loads(body) == metadata

    restore_dir = tmp_path / "restore"
    assert store.download_state("test-cluster", str(restore_dir)) is True
    assert (restore_dir / "test-cluster" / "auth" / "kubeconfig").read_text() == "apiVersion: v1\n"
    assert not (restore_dir / "cluster-state.tar.gz").exists()


@mock_aws
def test_upload_state_without_metadata(tmp_path: Path) -> None:
    create_bucket()
    make_cluster_dir(tmp_path)

    make_store().upload_state("test-cluster", str(tmp_path))

    s3 = boto3.client("s3", region_name=REGION)
    keys = [o["Key"] for o in s3.list_objects_v2(Bucket=BUCKET)["Contents"]]
    assert keys == ["test-cluster/cluster-state.tar.gz"]


@mock_aws
def test_upload_state_missing_bucket(tmp_path: Path) -> None:
    make_cluster_dir(tmp_path)

    with pytest.raises(StateStoreError, match="Failed to upload state to S3"):
        make_store().upload_state("test-cluster", str(tmp_path))
    assert not (tmp_path / "cluster-state.tar.gz").exists()


def test_upload_state_missing_parameter() -> None:
    with pytest.raises(ValueError, match="Missing required parameter: workDir"):
        make_store().upload_state("test-cluster", "")


@mock_aws
def test_download_state_not_found(tmp_path: Path) -> None:
    create_bucket()
    assert make_store().download_state("missing", str(tmp_path)) is False
    assert os.listdir(tmp_path) == []


@mock_aws
def test_upload_auth_backup(tmp_path: Path) -> None:
    create_bucket()
    cluster_dir = make_cluster_dir(tmp_path)

    uri = make_store().upload_auth_backup("test-cluster", str(cluster_dir))

    assert uri == f"s3://{BUCKET}/test-cluster/auth-backup.tar.gz"
    assert not (cluster_dir / "auth-backup.tar.gz").exists()


@mock_aws
def test_save_and_get_metadata() -> None:
    create_bucket()
    store = make_store()
    metadata = {"cluster_name": "test-cluster", "worker_count": 3, "pmm_deployed": True}

    store.save_metadata("test-cluster", metadata)

    s3 = boto3.client("s3", region_name=REGION)
    obj = s3.get_object(Bucket=BUCKET, Key="test-cluster/metadata.json")
    assert obj["ContentType"] == "application/json"
    assert obj["Body"].read().decode() == json.dumps(metadata, indent=4)

    assert store.get_metadata("test-cluster") == metadata


@mock_aws
def test_get_metadata_falls_back_to_object_metadata() -> None:
    create_bucket()
    s3 = boto3.client("s3", region_name=REGION)
    s3.put_object(
        Bucket=BUCKET,
        Key="legacy/cluster-state.tar.gz",
        Body=b"state",
        Metadata={"cluster-name": "legacy", "openshift-version": "4.15.3"},
    )

    assert make_store().get_metadata("legacy") == {
        "cluster_name": "legacy",
        "openshift_version": "4.15.3",
    }


@mock_aws
def test_get_metadata_not_found() -> None:
    create_bucket()
    assert make_store().get_metadata("missing") is None


@mock_aws
def test_get_metadata_malformed() -> None:
    create_bucket()
    boto3.client("s3", region_name=REGION).put_object(
        Bucket=BUCKET, Key="broken/metadata.json", Body=b"{not json"
    )

    with pytest.raises(StateStoreError, match="malformed metadata document"):
        make_store().get_metadata("broken")


@mock_aws
def test_cleanup() -> None:
    create_bucket()
    s3 = boto3.client("s3", region_name=REGION)
    for i in range(1001):
        s3.put_object(Bucket=BUCKET, Key=f"big/file-{i}", Body=b"x")
    s3.put_object(Bucket=BUCKET, Key="other/metadata.json", Body=b"{}")
    s3.put_object(Bucket=BUCKET, Key="big-sibling/metadata.json", Body=b"{}")

    store = make_store()
    assert store.cleanup("big") == 1001

    remaining = [o["Key"] for o in s3.list_objects_v2(Bucket=BUCKET)["Contents"]]
    assert sorted(remaining) == ["big-sibling/metadata.json", "other/metadata.json"]

    # Nothing left to delete
    assert store.cleanup("big") == 0


def test_cleanup_reports_delete_errors() -> None:
    s3 = MagicMock()
    s3.get_paginator.return_value.paginate.return_value = [
        {"Contents": [{"Key": "test/a"}, {"Key": "test/b"}]}
    ]
    s3.delete_objects.return_value = {
        "Deleted": [{"Key": "test/a"}],
        "Errors": [{"Key": "test/b", "Code": "AccessDenied"}],
    }

    with patch(
        "ocpctl.cluster.aws.state_store.s3_client", return_value=nullcontext(s3)
    ):
        with pytest.raises(StateStoreError, match="test/b \\(AccessDenied\\)"):
            make_store().cleanup("test")


@mock_aws
def test_list_clusters() -> None:
    create_bucket()
    s3 = boto3.client("s3", region_name=REGION)
    for key in [
        "alpha/cluster-state.tar.gz",
        "alpha/metadata.json",
        "beta/metadata.json",
        "gamma/auth-backup.tar.gz",
        "metadata.json",
        "delta/cluster-state.tar.gz",
    ]:
        s3.put_object(Bucket=BUCKET, Key=key, Body=b"x")

    assert make_store().list_clusters() == ["alpha", "beta", "delta"]


@mock_aws
def test_list_clusters_empty_bucket() -> None:
    create_bucket()
    assert make_store().list_clusters() == []
