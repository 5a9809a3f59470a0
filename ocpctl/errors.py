class OcpctlError(Exception):
    """Base class for errors raised by ocpctl."""


class StateStoreError(OcpctlError):
    """
    A failure reported by the object store, other than an expected "not found".
    """


class BucketOwnershipError(StateStoreError):
    """
    The bucket name is already taken by another AWS account. S3 bucket names
    are global, so this cannot be fixed by retrying.
    """


class ClusterNotFoundError(OcpctlError):
    """No state exists in the object store for the requested cluster."""


class ToolInstallError(OcpctlError):
    """A CLI tool could not be resolved, downloaded or verified."""


class ClusterOperationError(OcpctlError):
    """The installer, the monitoring deployment or a post-install check failed."""
