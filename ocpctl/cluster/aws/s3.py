from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from ocpctl.config import AwsCredentials, resolve_credentials

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
ACCESS_DENIED_CODES = {"403", "AccessDenied", "Forbidden"}


def build_s3_client(
    region: str,
    credentials: Optional[AwsCredentials] = None,
    endpoint_url: Optional[str] = None,
) -> Any:
    """
    Builds an S3 client for the given region.

    Credentials are resolved with `resolve_credentials`: explicit credentials,
    then the environment, then whatever boto3 finds on the host.

    Args:
        region (str): The AWS region for the client.
        credentials (Optional[AwsCredentials]): Explicit credentials.
        endpoint_url (Optional[str]): A custom endpoint for S3 compatible stores.

    Returns:
        Any: A boto3 S3 client.
    """
    resolved = resolve_credentials(credentials)
    kwargs: dict = {
        "region_name": region,
        "config": Config(signature_version="s3v4"),
    }
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    if resolved is not None:
        kwargs["aws_access_key_id"] = resolved.accessKey
        kwargs["aws_secret_access_key"] = resolved.secretKey
        if resolved.sessionToken:
            kwargs["aws_session_token"] = resolved.sessionToken

    return boto3.client("s3", **kwargs)


@contextmanager
def s3_client(
    region: str,
    credentials: Optional[AwsCredentials] = None,
    endpoint_url: Optional[str] = None,
) -> Generator[Any, None, None]:
    """
    Yields an S3 client that is closed when the context exits.
    """
    client = build_s3_client(region, credentials, endpoint_url)
    try:
        yield client
    finally:
        client.close()


def error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def status_code(e: ClientError) -> Optional[int]:
    return e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def is_not_found(e: ClientError) -> bool:
    return error_code(e) in NOT_FOUND_CODES or status_code(e) == 404


def is_access_denied(e: ClientError) -> bool:
    return error_code(e) in ACCESS_DENIED_CODES or status_code(e) == 403
