from typing import Optional

import typer

from ocpctl.cache.ccache import (
    DEFAULT_RETENTION_DAYS,
    CacheLocation,
    describe_cache,
    download_cache,
    upload_cache,
)
from ocpctl.logger import logger

cache_app = typer.Typer()


def load_cache_location(
    project: str,
    mysql_version: str,
    cache_key: str,
    cloud_provider: Optional[str],
    force_cache_miss: bool = False,
) -> CacheLocation:
    values = {
        "project": project,
        "mysql_version": mysql_version,
        "cache_key": cache_key,
        "force_cache_miss": force_cache_miss,
    }
    if cloud_provider:
        values["cloud_provider"] = cloud_provider

    try:
        return CacheLocation(**values)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1)


def log_cache_size(location: CacheLocation) -> None:
    try:
        count, size = describe_cache(location)
    except Exception as e:
        logger.warning(f"Failed to list cache: {e}")
        return
    logger.info(f"Cache {location.uri()} holds {count} files, {size} bytes")


@cache_app.command()
def download(
    project: str = typer.Option(..., "--project", help="The project being built."),
    mysql_version: str = typer.Option(
        ..., "--mysql-version", help="The MySQL version being built."
    ),
    cache_key: str = typer.Option(..., "--cache-key", help="The key of the cache."),
    cloud_provider: Optional[str] = typer.Option(
        None,
        "--cloud-provider",
        envvar="S3_CLOUD_PROVIDER",
        help="Where the cache bucket lives: aws or hetzner.",
    ),
    cache_dir: Optional[str] = typer.Option(
        None,
        "--cache-dir",
        envvar="CCACHE_DIR",
        help="The local ccache directory. Defaults to /tmp/ccache.",
    ),
    force_cache_miss: bool = typer.Option(
        False, "--force-cache-miss", help="Skip the cache and start the build cold."
    ),
    debug_s3: bool = typer.Option(
        False, "--debug-s3", envvar="CCACHE_DEBUG_S3", help="Log the size of the remote cache."
    ),
) -> None:
    """
    Downloads a ccache directory from S3. A missing cache is not an error.
    """
    location = load_cache_location(
        project, mysql_version, cache_key, cloud_provider, force_cache_miss
    )
    download_cache(location, cache_dir)
    if debug_s3:
        log_cache_size(location)


@cache_app.command()
def upload(
    project: str = typer.Option(..., "--project", help="The project being built."),
    mysql_version: str = typer.Option(
        ..., "--mysql-version", help="The MySQL version being built."
    ),
    cache_key: str = typer.Option(..., "--cache-key", help="The key of the cache."),
    cloud_provider: Optional[str] = typer.Option(
        None,
        "--cloud-provider",
        envvar="S3_CLOUD_PROVIDER",
        help="Where the cache bucket lives: aws or hetzner.",
    ),
    cache_dir: Optional[str] = typer.Option(
        None,
        "--cache-dir",
        envvar="CCACHE_DIR",
        help="The local ccache directory. Defaults to /tmp/ccache.",
    ),
    retention_days: int = typer.Option(
        DEFAULT_RETENTION_DAYS,
        "--retention-days",
        help="Days the bucket lifecycle rules keep the cache.",
    ),
    debug_s3: bool = typer.Option(
        False, "--debug-s3", envvar="CCACHE_DEBUG_S3", help="Log the size of the remote cache."
    ),
) -> None:
    """
    Uploads a ccache directory to S3. Upload failures do not fail the build.
    """
    location = load_cache_location(project, mysql_version, cache_key, cloud_provider)
    upload_cache(location, cache_dir, retention_days)
    if debug_s3:
        log_cache_size(location)
