import hashlib
import os
import tarfile
from pathlib import Path

import pytest

from ocpctl.constants import HOME_ENV_VAR
from ocpctl.utils import (
    calculate_sha256,
    create_tarball,
    extract_tarball,
    get_bin_dir,
    get_project_data_dir,
    parse_checksum_file,
    prepend_path,
    read_yaml_file,
    remove_file_quietly,
    to_yaml,
)


def test_get_project_data_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(HOME_ENV_VAR, "/tmp/ocpctl-home")
    assert get_project_data_dir() == "/tmp/ocpctl-home"
    assert get_bin_dir() == Path("/tmp/ocpctl-home/bin")

    monkeypatch.delenv(HOME_ENV_VAR)
    assert get_project_data_dir() == str(Path.home() / ".ocpctl")


def test_prepend_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PATH", "/usr/bin")

    prepend_path(tmp_path)
    assert os.environ["PATH"] == f"{tmp_path}{os.pathsep}/usr/bin"

    # Already in front, PATH is left alone
    prepend_path(tmp_path)
    assert os.environ["PATH"] == f"{tmp_path}{os.pathsep}/usr/bin"


def test_to_yaml() -> None:
    assert to_yaml({"key": "value"}) == "key: value\n"
    assert to_yaml({"key": {"nested": 1}}) == "key:\n  nested: 1\n"
    assert to_yaml({"key": ["a", "b"]}) == "key:\n  - a\n  - b\n"


def test_read_yaml_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("clusters:\n  - name: test\n")
    assert read_yaml_file(str(path)) == {"clusters": [{"name": "test"}]}
    assert read_yaml_file(str(tmp_path / "missing.yaml")) == {}


def test_calculate_sha256(tmp_path: Path) -> None:
    path = tmp_path / "data.bin"
    path.write_bytes(b"Test data")
    assert calculate_sha256(str(path)) == hashlib.sha256(b"Test data").hexdigest()


def test_parse_checksum_file() -> None:
    content = (
        "abc123  openshift-install-linux-4.16.20.tar.gz\n"
        "def456 *openshift-client-linux-4.16.20.tar.gz\n"
        "\n"
        "malformed\n"
    )
    assert parse_checksum_file(content) == {
        "openshift-install-linux-4.16.20.tar.gz": "abc123",
        "openshift-client-linux-4.16.20.tar.gz": "def456",
    }


def test_tarball_roundtrip(tmp_path: Path) -> None:
    source = tmp_path / "source" / "my-cluster"
    (source / "auth").mkdir(parents=True)
    (source / "auth" / "kubeconfig").write_text("apiVersion: v1\n")

    archive = create_tarball(str(source), str(tmp_path / "state.tar.gz"))
    with tarfile.open(archive, "r:gz") as tar:
        assert "my-cluster/auth/kubeconfig" in tar.getnames()

    target = tmp_path / "target"
    extract_tarball(archive, str(target))
    assert (target / "my-cluster" / "auth" / "kubeconfig").read_text() == "apiVersion: v1\n"


def test_create_tarball_missing_dir(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        create_tarball(str(tmp_path / "missing"), str(tmp_path / "state.tar.gz"))


def test_remove_file_quietly(tmp_path: Path) -> None:
    path = tmp_path / "file"
    path.write_text("x")
    remove_file_quietly(str(path))
    assert not path.exists()

    # Missing files are ignored
    remove_file_quietly(str(path))
