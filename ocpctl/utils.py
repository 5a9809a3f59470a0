from __future__ import annotations

import hashlib
import os
import tarfile
import tempfile
from contextlib import contextmanager
from io import StringIO
from pathlib import Path
from typing import Any, Dict, Generator, Optional

import requests
from ruamel.yaml import YAML

from ocpctl.constants import HOME_ENV_VAR, PROJECT_NAME
from ocpctl.logger import logger

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
DOWNLOAD_TIMEOUT = 60


def get_project_data_dir() -> str:
    """
    The directory holding downloaded tools and cluster work directories.

    Returns:
        str: $OCPCTL_HOME, or ~/.ocpctl when it is not set.
    """
    return os.environ.get(HOME_ENV_VAR) or str(Path.home() / f".{PROJECT_NAME}")


def get_bin_dir() -> Path:
    return Path(get_project_data_dir()) / "bin"


def prepend_path(directory: Path) -> None:
    """
    Put a directory in front of PATH so that subprocesses pick up its binaries.
    """
    current_path = os.environ.get("PATH", "")
    entry = str(directory.absolute())
    if current_path.split(os.pathsep)[0] == entry:
        return
    os.environ["PATH"] = f"{entry}{os.pathsep}{current_path}"


def to_yaml(obj: Dict[Any, Any]) -> str:
    yaml = YAML()
    yaml.indent(mapping=2, sequence=4, offset=2)
    buf = StringIO()
    yaml.dump(obj, buf)
    return buf.getvalue()


def read_yaml_file(path: str) -> Dict[str, Any]:
    """
    Loads a YAML mapping from disk. A missing or empty file yields {}.
    """
    if not os.path.exists(path):
        return {}
    with open(path, "r") as f:
        return YAML(typ="safe").load(f) or {}


def calculate_sha256(file_path: str) -> str:
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for block in iter(lambda: f.read(DOWNLOAD_CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def parse_checksum_file(content: str) -> Dict[str, str]:
    """
    Parse a sha256sum-style manifest into a mapping of file name to digest.

    Each non-empty line has the form "<sha256>  <filename>". Lines that do not
    have both fields are ignored.

    Args:
        content (str): The text of the manifest.

    Returns:
        Dict[str, str]: The expected digests keyed by file name.
    """
    checksums = {}
    for line in content.splitlines():
        parts = line.strip().split()
        if len(parts) >= 2:
            # sha256sum marks binary mode with a leading "*"
            checksums[parts[1].lstrip("*")] = parts[0]
    return checksums


@contextmanager
def download_url(url: str) -> Generator[str, None, None]:
    """
    Streams a URL into a temporary file.

    Yields:
        str: The path of the downloaded file, deleted when the context exits.

    Raises:
        requests.HTTPError: If the server answers with an error status.
    """
    fd, tmp_file = tempfile.mkstemp()
    try:
        with os.fdopen(fd, "wb") as tf:
            with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as r:
                r.raise_for_status()
                for chunk in r.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    tf.write(chunk)
        yield tmp_file
    finally:
        os.remove(tmp_file)


def create_tarball(source_dir: str, archive_path: str, arcname: Optional[str] = None) -> str:
    """
    Create a gzip compressed tarball of a directory.

    Args:
        source_dir (str): The directory to archive.
        archive_path (str): Where to write the tarball.
        arcname (str, optional): The name of the directory inside the archive.
            Defaults to the base name of source_dir.

    Returns:
        str: The path of the created tarball.
    """
    if not os.path.isdir(source_dir):
        raise FileNotFoundError(f"Directory {source_dir} does not exist")

    with tarfile.open(archive_path, "w:gz") as tar:
        tar.add(source_dir, arcname=arcname or os.path.basename(source_dir))
    return archive_path


def extract_tarball(archive_path: str, target_dir: str) -> None:
    """
    Extract a gzip compressed tarball into a directory.

    Args:
        archive_path (str): The tarball to extract.
        target_dir (str): The directory to extract into.
    """
    os.makedirs(target_dir, exist_ok=True)
    with tarfile.open(archive_path, "r:gz") as tar:
        tar.extractall(target_dir)


def remove_file_quietly(path: str) -> None:
    """
    Remove a file, logging instead of raising if that fails.
    """
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")
