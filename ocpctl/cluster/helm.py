import os
import platform
import re
import shutil
import tarfile
import tempfile

import requests

from ocpctl.constants import HELM_VERSION
from ocpctl.errors import ToolInstallError
from ocpctl.logger import logger
from ocpctl.utils import calculate_sha256, download_url, get_bin_dir, prepend_path

SHA256_RE = re.compile(r"^[a-f0-9]{64}$")


def get_helm_version() -> str:
    return os.getenv("HELM_VERSION", HELM_VERSION).lstrip("v")


def ensure_helm() -> str:
    """
    Installs Helm 3 unless a helm binary is already on PATH.

    The archive is verified against the published .sha256sum file.

    Returns:
        str: The path of the helm binary.
    """
    existing = shutil.which("helm")
    if existing:
        return existing

    helm_version = get_helm_version()
    install_dir = get_bin_dir() / f"helm-v{helm_version}"
    helm_path = install_dir / "helm"

    if helm_path.exists():
        prepend_path(install_dir)
        return str(helm_path)

    system = platform.system().lower()
    arch = platform.machine().lower()

    if arch in ["amd64", "x86_64"]:
        arch = "amd64"
    elif arch in ["arm64", "aarch64"]:
        arch = "arm64"
    else:
        raise ToolInstallError(f"Unsupported architecture: {arch}")

    if system not in ["linux", "darwin"]:
        raise ToolInstallError(f"Unsupported operating system: {system}")

    helm_file = f"helm-v{helm_version}-{system}-{arch}.tar.gz"
    url = f"https://get.helm.sh/{helm_file}"

    logger.info("Installing Helm...")
    logger.debug(f"Fetching checksum for Helm v{helm_version}...")

    try:
        response = requests.get(f"{url}.sha256sum", timeout=30)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ToolInstallError(
            f"Failed to fetch checksum for Helm version {helm_version}. Error: {e}"
        ) from e

    fields = response.text.split()
    expected_sha256 = fields[0].strip() if fields else ""
    if not SHA256_RE.match(expected_sha256):
        raise ToolInstallError(
            f"Invalid checksum format received for Helm version {helm_version}"
        )

    try:
        with download_url(url) as archive_file:
            archive_file_sha256 = calculate_sha256(archive_file)
            if archive_file_sha256 != expected_sha256:
                raise ToolInstallError(
                    f"SHA256 mismatch: {archive_file_sha256} != {expected_sha256}"
                )

            # The archive holds <os>-<arch>/helm
            with tempfile.TemporaryDirectory() as tmp_dir:
                with tarfile.open(archive_file, "r:gz") as tar:
                    tar.extractall(tmp_dir)
                install_dir.mkdir(parents=True, exist_ok=True)
                shutil.move(os.path.join(tmp_dir, f"{system}-{arch}", "helm"), helm_path)
    except requests.RequestException as e:
        raise ToolInstallError(f"Failed to download {url}: {e}") from e

    helm_path.chmod(0o755)
    prepend_path(install_dir)

    logger.info("Helm installed successfully.")
    return str(helm_path)
