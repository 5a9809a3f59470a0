from __future__ import annotations

import os
from typing import Any, Dict, Iterator, NamedTuple, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import Field, field_validator, model_validator

from ocpctl.cluster.aws.s3 import s3_client
from ocpctl.config import OcpctlBaseModel, check_required
from ocpctl.constants import S3_DELETE_BATCH_SIZE
from ocpctl.logger import logger

CACHE_BUCKET = "ps-build-cache"
CACHE_PREFIX = "ccache"
FORCE_MISS_PREFIX = "force-cache-miss"
DEFAULT_RETENTION_DAYS = 60
DEFAULT_CACHE_DIR = "/tmp/ccache"

# Region and endpoint per provider. AWS uses the default endpoint.
PROVIDERS: Dict[str, Tuple[str, Optional[str]]] = {
    "aws": ("us-east-1", None),
    "hetzner": ("fsn1", "https://fsn1.your-objectstorage.com"),
}


def default_cache_dir() -> str:
    return os.environ.get("CCACHE_DIR") or DEFAULT_CACHE_DIR


class CacheLocation(OcpctlBaseModel):
    """
    Identifies one compiler cache in the build cache bucket.
    """

    project: str = Field(..., description="The project being built, e.g. ps.")
    mysql_version: str = Field(..., description="The MySQL version being built.")
    cache_key: str = Field(..., description="The key of the cache, e.g. a platform name.")
    cloud_provider: str = Field(
        default_factory=lambda: os.environ.get("S3_CLOUD_PROVIDER") or "aws",
        description="Where the bucket lives: aws or hetzner.",
    )
    force_cache_miss: bool = Field(
        False, description="Download from an empty prefix so the build starts cold."
    )

    @model_validator(mode="before")
    def check_required_fields(cls, values: Any) -> Any:
        return check_required(values, ["project", "mysql_version", "cache_key"])

    @field_validator("cloud_provider")
    def validate_cloud_provider(cls, v: str) -> str:
        if v not in PROVIDERS:
            raise ValueError(
                f"Unsupported cloud provider: '{v}'. Use one of: {', '.join(PROVIDERS)}"
            )
        return v

    @property
    def region(self) -> str:
        return PROVIDERS[self.cloud_provider][0]

    @property
    def endpoint_url(self) -> Optional[str]:
        return PROVIDERS[self.cloud_provider][1]

    def prefix(self, download: bool = False) -> str:
        root = FORCE_MISS_PREFIX if download and self.force_cache_miss else CACHE_PREFIX
        return f"{root}/{self.project}/{self.mysql_version}/{self.cache_key}/"

    def uri(self, download: bool = False) -> str:
        return f"s3://{CACHE_BUCKET}/{self.prefix(download)}"


def _client(location: CacheLocation) -> Any:
    return s3_client(location.region, endpoint_url=location.endpoint_url)


class RemoteObject(NamedTuple):
    size: int
    mtime: float


def _list_remote(s3: Any, prefix: str) -> Dict[str, RemoteObject]:
    objects = {}
    paginator = s3.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=CACHE_BUCKET, Prefix=prefix):
        for obj in page.get("Contents", []):
            relative = obj["Key"][len(prefix) :]
            if relative and not relative.endswith("/"):
                objects[relative] = RemoteObject(
                    obj["Size"], obj["LastModified"].timestamp()
                )
    return objects


def _in_sync(path: str, remote: Optional[RemoteObject], newer_side: str) -> bool:
    """
    Whether a local file and a remote object match, the way `aws s3 sync` decides.

    Sizes must be equal, and the side being copied from must not be newer
    than the side being copied to. Timestamps are compared in whole seconds,
    the resolution of S3 LastModified.
    """
    if remote is None or not os.path.exists(path):
        return False
    if os.path.getsize(path) != remote.size:
        return False
    local_mtime = int(os.path.getmtime(path))
    remote_mtime = int(remote.mtime)
    if newer_side == "remote":
        return remote_mtime <= local_mtime
    return local_mtime <= remote_mtime


def _walk_local(cache_dir: str) -> Iterator[Tuple[str, str]]:
    for root, _, files in os.walk(cache_dir):
        for name in files:
            path = os.path.join(root, name)
            yield os.path.relpath(path, cache_dir).replace(os.sep, "/"), path


def download_cache(location: CacheLocation, cache_dir: Optional[str] = None) -> int:
    """
    Syncs a compiler cache from the bucket into a local directory.

    Only objects that are missing locally, differ in size, or are newer than
    the local copy are fetched. A
    missing cache, or any failure, leaves the build to run cold.

    Args:
        location (CacheLocation): The cache to fetch.
        cache_dir (Optional[str]): The local cache directory. Defaults to
            $CCACHE_DIR, or /tmp/ccache.

    Returns:
        int: The number of downloaded files, 0 on failure.
    """
    cache_dir = cache_dir or default_cache_dir()
    prefix = location.prefix(download=True)

    logger.info(f"Downloading ccache from: {location.uri(download=True)}")
    logger.debug(
        f"Cache key components: project={location.project}, "
        f"mysql_version={location.mysql_version}, cache_key={location.cache_key}, "
        f"cloud_provider={location.cloud_provider}"
    )

    os.makedirs(cache_dir, exist_ok=True)

    downloaded = 0
    try:
        with _client(location) as s3:
            for relative, remote in _list_remote(s3, prefix).items():
                path = os.path.join(cache_dir, relative)
                if _in_sync(path, remote, newer_side="remote"):
                    continue
                os.makedirs(os.path.dirname(path), exist_ok=True)
                s3.download_file(CACHE_BUCKET, prefix + relative, path)
                # Keep the object's timestamp so the next sync sees it as unchanged
                os.utime(path, (remote.mtime, remote.mtime))
                downloaded += 1
    except (ClientError, BotoCoreError, OSError) as e:
        logger.warning(f"No cache found or download failed: {e}")
        return 0

    if downloaded == 0:
        logger.info("No cache files downloaded.")
    else:
        logger.info(f"Downloaded {downloaded} cache files.")
    return downloaded


def upload_cache(
    location: CacheLocation,
    cache_dir: Optional[str] = None,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> int:
    """
    Syncs a local compiler cache to the bucket.

    New and changed files are uploaded with a retention-days user metadata
    entry for the bucket's lifecycle rules. Remote files that no longer
    exist locally are deleted. Failures are logged, never raised.

    Returns:
        int: The number of uploaded files, 0 on failure.
    """
    cache_dir = cache_dir or default_cache_dir()
    prefix = location.prefix()

    logger.info(f"Uploading ccache to: {location.uri()}")

    if not os.path.isdir(cache_dir):
        logger.warning(f"Cache directory {cache_dir} does not exist, nothing to upload.")
        return 0

    uploaded = 0
    try:
        with _client(location) as s3:
            remote = _list_remote(s3, prefix)
            local = set()
            for relative, path in _walk_local(cache_dir):
                local.add(relative)
                if _in_sync(path, remote.get(relative), newer_side="local"):
                    continue
                s3.upload_file(
                    path,
                    CACHE_BUCKET,
                    prefix + relative,
                    ExtraArgs={"Metadata": {"retention-days": str(retention_days)}},
                )
                uploaded += 1

            stale = [prefix + relative for relative in remote if relative not in local]
            for i in range(0, len(stale), S3_DELETE_BATCH_SIZE):
                batch = stale[i : i + S3_DELETE_BATCH_SIZE]
                s3.delete_objects(
                    Bucket=CACHE_BUCKET,
                    Delete={"Objects": [{"Key": key} for key in batch]},
                )
    except (ClientError, BotoCoreError, OSError) as e:
        logger.warning(f"Cache upload failed: {e}")
        return 0

    logger.info(f"Uploaded {uploaded} cache files.")
    return uploaded


def describe_cache(location: CacheLocation) -> Tuple[int, int]:
    """
    Returns the object count and total size in bytes of a cache.
    """
    with _client(location) as s3:
        remote = _list_remote(s3, location.prefix())
    return len(remote), sum(obj.size for obj in remote.values())
