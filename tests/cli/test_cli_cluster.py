import json
from pathlib import Path
from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from ocpctl import __version__
from ocpctl.cli.__main__ import cli
from ocpctl.config import ClusterInfo, ClusterSummary, DestroyResult
from ocpctl.errors import ClusterNotFoundError, ClusterOperationError, StateStoreError

runner = CliRunner()


@pytest.fixture
def manager() -> Iterator[MagicMock]:
    with patch("ocpctl.cli.cluster.load_cluster_manager") as mock_load:
        yield mock_load.return_value


@pytest.fixture
def secrets(tmp_path: Path) -> Path:
    (tmp_path / "pull-secret.json").write_text('{"auths": {}}\n')
    (tmp_path / "id_rsa.pub").write_text("ssh-rsa AAAA test\n")
    return tmp_path


def create_args(secrets: Path, *extra: str) -> list:
    return [
        "cluster",
        "create",
        "--name",
        "test-cluster",
        "--openshift-version",
        "4.16",
        "--pull-secret-file",
        str(secrets / "pull-secret.json"),
        "--ssh-key-file",
        str(secrets / "id_rsa.pub"),
        "--work-dir",
        str(secrets / "work"),
        *extra,
    ]


def test_version() -> None:
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_create(manager: MagicMock, secrets: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENSHIFT_S3_BUCKET", raising=False)
    monkeypatch.delenv("OPENSHIFT_AWS_REGION", raising=False)
    manager.create.return_value = ClusterInfo(
        cluster_name="test-cluster",
        api_url="https://api.test-cluster.cd.percona.com:6443",
        kubeconfig=str(secrets / "work" / "test-cluster" / "auth" / "kubeconfig"),
        cluster_dir=str(secrets / "work" / "test-cluster"),
    )

    result = runner.invoke(
        cli, create_args(secrets, "--worker-count", "2", "--no-deploy-pmm")
    )

    assert result.exit_code == 0
    config = manager.create.call_args.args[0]
    assert config.clusterName == "test-cluster"
    assert config.pullSecret == '{"auths": {}}'
    assert config.sshPublicKey == "ssh-rsa AAAA test"
    assert config.awsRegion == "us-east-2"
    assert config.s3Bucket == "openshift-clusters-119175775298-us-east-2"
    assert config.workerCount == 2
    assert config.deployPmm is False
    manager.attempt_cluster_cleanup.assert_not_called()


def test_create_from_file(manager: MagicMock, secrets: Path) -> None:
    cluster_file = secrets / "cluster.yaml"
    cluster_file.write_text(
        "clusterName: from-file\n"
        "openshiftVersion: stable-4.16\n"
        "workerCount: 5\n"
        "s3Bucket: file-bucket\n"
    )

    result = runner.invoke(
        cli, create_args(secrets, "-f", str(cluster_file), "--worker-count", "1")
    )

    assert result.exit_code == 0
    config = manager.create.call_args.args[0]
    # Command line options win over the file
    assert config.clusterName == "test-cluster"
    assert config.openshiftVersion == "4.16"
    assert config.workerCount == 1
    assert config.s3Bucket == "file-bucket"


def test_create_invalid_config(manager: MagicMock, secrets: Path) -> None:
    result = runner.invoke(
        cli,
        [
            "cluster",
            "create",
            "--name",
            "Bad_Name",
            "--openshift-version",
            "4.16",
            "--pull-secret-file",
            str(secrets / "pull-secret.json"),
            "--ssh-key-file",
            str(secrets / "id_rsa.pub"),
        ],
    )

    assert result.exit_code == 1
    manager.create.assert_not_called()


def test_create_missing_pull_secret(manager: MagicMock, secrets: Path) -> None:
    result = runner.invoke(
        cli,
        [
            "cluster",
            "create",
            "--name",
            "test-cluster",
            "--openshift-version",
            "4.16",
            "--pull-secret-file",
            str(secrets / "missing.json"),
        ],
    )

    assert result.exit_code == 1
    manager.create.assert_not_called()


def test_create_failure_cleans_up(manager: MagicMock, secrets: Path) -> None:
    manager.create.side_effect = ClusterOperationError("installer failed")

    result = runner.invoke(cli, create_args(secrets))

    assert result.exit_code == 1
    config, reason = manager.attempt_cluster_cleanup.call_args.args
    assert config.clusterName == "test-cluster"
    assert reason == "failed"


def test_create_interrupted_cleans_up(manager: MagicMock, secrets: Path) -> None:
    manager.create.side_effect = KeyboardInterrupt()

    result = runner.invoke(cli, create_args(secrets))

    assert result.exit_code == 130
    assert manager.attempt_cluster_cleanup.call_args.args[1] == "aborted"


def test_destroy(manager: MagicMock, tmp_path: Path) -> None:
    manager.destroy.return_value = DestroyResult(
        cluster_name="test-cluster", destroyed=True, s3_cleaned=True, deleted_objects=4
    )

    result = runner.invoke(
        cli,
        [
            "cluster",
            "destroy",
            "--name",
            "test-cluster",
            "--bucket",
            "test-bucket",
            "--work-dir",
            str(tmp_path),
            "--timeout",
            "300",
            "--force-cleanup",
            "--yes",
        ],
    )

    assert result.exit_code == 0
    config = manager.destroy.call_args.args[0]
    assert config.clusterName == "test-cluster"
    assert config.s3Bucket == "test-bucket"
    assert config.workDir == str(tmp_path)
    assert config.timeout == 300
    assert config.forceCleanup is True
    assert config.reason == "manual"


def test_destroy_requires_confirmation(manager: MagicMock) -> None:
    result = runner.invoke(
        cli, ["cluster", "destroy", "--name", "test-cluster"], input="n\n"
    )

    assert result.exit_code == 0
    manager.destroy.assert_not_called()


def test_destroy_failure_keeps_state(manager: MagicMock) -> None:
    manager.destroy.return_value = DestroyResult(
        cluster_name="test-cluster", destroyed=False, s3_cleaned=False
    )

    result = runner.invoke(cli, ["cluster", "destroy", "--name", "test-cluster", "-y"])

    assert result.exit_code == 1


def test_destroy_not_found(manager: MagicMock) -> None:
    manager.destroy.side_effect = ClusterNotFoundError(
        "No metadata found for cluster test-cluster."
    )

    result = runner.invoke(cli, ["cluster", "destroy", "--name", "test-cluster", "-y"])

    assert result.exit_code == 1


def test_destroy_unreadable_state(manager: MagicMock) -> None:
    manager.destroy.side_effect = StateStoreError(
        "Failed to download state from S3: cannot extract "
        "test-cluster/cluster-state.tar.gz: not a gzip file"
    )

    result = runner.invoke(cli, ["cluster", "destroy", "--name", "test-cluster", "-y"])

    assert result.exit_code == 1
    assert not isinstance(result.exception, StateStoreError)


def test_destroy_dry_run(manager: MagicMock) -> None:
    with patch("ocpctl.cli.cluster.S3StateStore") as mock_store:
        mock_store.return_value.get_metadata.return_value = {
            "openshift_version": "4.16.20"
        }
        result = runner.invoke(
            cli, ["cluster", "destroy", "--name", "test-cluster", "--dry-run"]
        )

        assert result.exit_code == 0
        mock_store.return_value.get_metadata.assert_called_once_with("test-cluster")
        manager.destroy.assert_not_called()

        mock_store.return_value.get_metadata.return_value = None
        result = runner.invoke(
            cli, ["cluster", "destroy", "--name", "test-cluster", "--dry-run"]
        )
        assert result.exit_code == 1


def test_list_json(manager: MagicMock) -> None:
    manager.list.return_value = [
        ClusterSummary(
            name="alpha",
            version="4.16.20",
            region="us-east-2",
            created_by="alice",
            created_at="2024-05-01T10:00:00Z",
            pmm_deployed="Yes",
            pmm_version="3.3.0",
        )
    ]

    result = runner.invoke(
        cli, ["cluster", "list", "--bucket", "test-bucket", "--output", "json"]
    )

    assert result.exit_code == 0
    clusters = json.loads(result.stdout)
    assert clusters[0]["name"] == "alpha"
    assert clusters[0]["pmm_deployed"] == "Yes"
    list_config = manager.list.call_args.args[0]
    assert list_config.bucket == "test-bucket"


def test_list_table(manager: MagicMock) -> None:
    manager.list.return_value = []
    result = runner.invoke(cli, ["cluster", "list"])
    assert result.exit_code == 0


def test_list_failure(manager: MagicMock) -> None:
    manager.list.side_effect = ClusterOperationError("access denied")
    result = runner.invoke(cli, ["cluster", "list"])
    assert result.exit_code == 1
