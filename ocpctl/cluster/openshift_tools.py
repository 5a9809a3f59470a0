import platform
import tarfile
from pathlib import Path
from typing import Dict

import requests

from ocpctl.cluster.utils import run_command
from ocpctl.cluster.version import resolve_version
from ocpctl.constants import OPENSHIFT_MIRROR_URL
from ocpctl.errors import ToolInstallError
from ocpctl.logger import logger
from ocpctl.utils import (
    calculate_sha256,
    download_url,
    get_bin_dir,
    parse_checksum_file,
    prepend_path,
)

BINARIES = ["openshift-install", "oc"]


def get_platform_suffix() -> str:
    """
    Returns the platform part of the mirror's archive names, e.g. "linux" or "mac-arm64".
    """
    system = platform.system().lower()
    arch = platform.machine().lower()

    if system == "linux":
        os_name = "linux"
    elif system == "darwin":
        os_name = "mac"
    else:
        raise ToolInstallError(f"Unsupported operating system: {system}")

    if arch in ["amd64", "x86_64"]:
        return os_name
    elif arch in ["arm64", "aarch64"]:
        return f"{os_name}-arm64"
    else:
        raise ToolInstallError(f"Unsupported architecture: {arch}")


def fetch_checksums(download_url_base: str) -> Dict[str, str]:
    checksum_url = f"{download_url_base}/sha256sum.txt"
    logger.debug("Fetching OpenShift checksums...")
    try:
        response = requests.get(checksum_url, timeout=30)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ToolInstallError(f"Failed to fetch OpenShift checksums: {e}") from e

    return parse_checksum_file(response.text)


def install_archive(url: str, expected_sha256: str, install_dir: Path) -> None:
    """
    Downloads a tarball, verifies its SHA-256 digest and extracts it.

    Raises:
        ToolInstallError: If the download fails or the digest does not match.
    """
    try:
        with download_url(url) as archive_file:
            archive_file_sha256 = calculate_sha256(archive_file)

            if archive_file_sha256 != expected_sha256:
                raise ToolInstallError(
                    f"SHA256 mismatch for {url}: {archive_file_sha256} != {expected_sha256}"
                )

            with tarfile.open(archive_file, "r:gz") as tar:
                tar.extractall(install_dir)
    except requests.RequestException as e:
        raise ToolInstallError(f"Failed to download {url}: {e}") from e


def ensure_openshift_tools(
    openshift_version: str, base_url: str = OPENSHIFT_MIRROR_URL
) -> str:
    """
    Installs openshift-install and oc for the requested version.

    The version is resolved first, so channels and minor versions always map
    to one concrete release. Each archive is verified against the mirror's
    sha256sum.txt before it is extracted. The install directory is put on
    PATH.

    Args:
        openshift_version (str): The requested version, e.g. "4.16.20", "4.16" or "stable".
        base_url (str): The root of the OpenShift client mirror.

    Returns:
        str: The resolved version.
    """
    if not openshift_version:
        raise ValueError("Missing required parameter: openshiftVersion")

    logger.info(f"Installing OpenShift tools version: {openshift_version}")

    resolved_version = resolve_version(openshift_version, base_url)
    logger.debug(f"Resolved OpenShift version: {resolved_version}")

    install_dir = get_bin_dir() / f"openshift-{resolved_version}"

    if all((install_dir / binary).exists() for binary in BINARIES):
        prepend_path(install_dir)
        return resolved_version

    install_dir.mkdir(parents=True, exist_ok=True)

    download_url_base = f"{base_url}/{resolved_version}"
    checksums = fetch_checksums(download_url_base)

    suffix = get_platform_suffix()
    installer_file = f"openshift-install-{suffix}-{resolved_version}.tar.gz"
    client_file = f"openshift-client-{suffix}-{resolved_version}.tar.gz"

    installer_checksum = checksums.get(installer_file)
    client_checksum = checksums.get(client_file)
    if not installer_checksum or not client_checksum:
        raise ToolInstallError(
            "Failed to find checksums for OpenShift files: "
            f"installer={'found' if installer_checksum else 'missing'}, "
            f"client={'found' if client_checksum else 'missing'}"
        )

    logger.info("Downloading OpenShift installer...")
    install_archive(f"{download_url_base}/{installer_file}", installer_checksum, install_dir)

    logger.info("Downloading OpenShift CLI...")
    install_archive(f"{download_url_base}/{client_file}", client_checksum, install_dir)

    for binary in BINARIES:
        path = install_dir / binary
        if not path.exists():
            raise ToolInstallError(f"{binary} not found in the downloaded archive")
        path.chmod(0o755)

    prepend_path(install_dir)

    run_command([str(install_dir / "openshift-install"), "version"])
    run_command([str(install_dir / "oc"), "version", "--client"])

    logger.info(f"OpenShift tools {resolved_version} installed successfully.")
    return resolved_version
