from __future__ import annotations

import os
import re
from typing import Iterable, List, Optional, Tuple

import requests

from ocpctl.constants import (
    OPENSHIFT_FALLBACK_VERSION,
    OPENSHIFT_GRAPH_URL,
    OPENSHIFT_MIRROR_URL,
)
from ocpctl.errors import ToolInstallError
from ocpctl.logger import logger

CHANNELS = ["latest", "stable", "fast", "candidate"]

# "latest" is not a real channel, it maps to the newest stable channel with content
LATEST_SEARCH_MINORS = ["4.19", "4.18", "4.17", "4.16", "4.15", "4.14"]
CHANNEL_SEARCH_MINORS = ["4.19", "4.18", "4.17", "4.16"]

EXACT_VERSION_RE = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+$")
MINOR_VERSION_RE = re.compile(r"^[0-9]+\.[0-9]+$")
CHANNEL_WITH_MINOR_RE = re.compile(
    r"^(?P<channel>stable|fast|candidate|latest|eus)-(?P<minor>[0-9]+\.[0-9]+)$"
)
RELEASE_VERSION_RE = re.compile(r"^[0-9]+(\.[0-9]+)*(-[0-9A-Za-z.]+)?$")

REQUEST_TIMEOUT = 30


def version_key(version: str) -> Tuple[Tuple[int, ...], int, str]:
    """
    Sort key for release versions.

    Numeric parts compare numerically and a prerelease such as 4.19.0-rc.1
    sorts below 4.19.0.
    """
    release, _, prerelease = version.partition("-")
    numbers = tuple(int(part) for part in release.split("."))
    return numbers, 0 if prerelease else 1, prerelease


def pick_latest(versions: Iterable[str]) -> Optional[str]:
    """
    Returns the greatest version, or None if there is no valid version.
    """
    candidates = [v for v in versions if v and RELEASE_VERSION_RE.match(v)]
    if not candidates:
        return None
    return max(candidates, key=version_key)


def latest_patch_version(index_html: str, minor_version: str) -> Optional[str]:
    """
    Finds the newest patch release of a minor version in a mirror directory listing.

    Args:
        index_html (str): The HTML of the mirror's directory index.
        minor_version (str): The minor version, e.g. "4.16".

    Returns:
        Optional[str]: The newest "X.Y.Z" entry, or None if there is none.

    Example:
        >>> latest_patch_version('<a href="4.16.9/">', "4.16")
        '4.16.9'
    """
    pattern = re.compile(rf'href="({re.escape(minor_version)}\.[0-9]+)/"')
    return pick_latest(pattern.findall(index_html))


def get_latest_patch_version(minor_version: str, base_url: str = OPENSHIFT_MIRROR_URL) -> str:
    try:
        response = requests.get(f"{base_url}/", timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ToolInstallError(
            f"Failed to get latest patch version for {minor_version}: {e}"
        ) from e

    version = latest_patch_version(response.text, minor_version)
    if version is None:
        raise ToolInstallError(f"No patch versions found for {minor_version}")
    return version


def fetch_channel_versions(channel: str) -> List[str]:
    """
    Returns the versions published in a release channel.

    An unreachable API or an unexpected response yields an empty list.
    """
    try:
        response = requests.get(
            OPENSHIFT_GRAPH_URL,
            params={"channel": channel},
            headers={"Accept": "application/json"},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        nodes = response.json().get("nodes") or []
    except (requests.RequestException, ValueError, AttributeError) as e:
        logger.debug(f"Failed to query channel {channel}: {e}")
        return []

    return [node["version"] for node in nodes if isinstance(node, dict) and node.get("version")]


def fallback_version() -> str:
    return os.environ.get("OPENSHIFT_FALLBACK_VERSION") or OPENSHIFT_FALLBACK_VERSION


def get_channel_version(channel: str) -> Optional[str]:
    """
    Resolves a release channel to the newest version it offers.

    Args:
        channel (str): "latest", "stable", "fast", "candidate", a channel with a
            minor version such as "stable-4.16", or "eus-4.16".

    Returns:
        Optional[str]: The resolved version, the fallback version if the
            release API yields nothing, or None if `channel` is not a channel.
    """
    match = CHANNEL_WITH_MINOR_RE.match(channel)
    if match:
        name = "stable" if match.group("channel") == "latest" else match.group("channel")
        version = pick_latest(fetch_channel_versions(f"{name}-{match.group('minor')}"))
    elif channel == "latest":
        version = None
        for minor in LATEST_SEARCH_MINORS:
            version = pick_latest(fetch_channel_versions(f"stable-{minor}"))
            if version:
                break
    elif channel in CHANNELS:
        all_versions: List[str] = []
        for minor in CHANNEL_SEARCH_MINORS:
            all_versions.extend(fetch_channel_versions(f"{channel}-{minor}"))
        version = pick_latest(all_versions)
    else:
        return None

    if version:
        return version

    fallback = fallback_version()
    logger.warning(
        f"Failed to resolve channel {channel} from the release API, using {fallback}"
    )
    return fallback


def resolve_version(version: str, base_url: str = OPENSHIFT_MIRROR_URL) -> str:
    """
    Resolves a requested OpenShift version to a concrete release.

    An exact version is returned as is. A minor version resolves to its newest
    patch release on the mirror, and a channel resolves through the release API.

    Raises:
        ToolInstallError: If the version cannot be resolved.
    """
    if EXACT_VERSION_RE.match(version):
        return version

    if MINOR_VERSION_RE.match(version):
        return get_latest_patch_version(version, base_url)

    channel_version = get_channel_version(version)
    if channel_version:
        return channel_version

    raise ToolInstallError(f"Unable to resolve OpenShift version: {version}")
