"""
Error taxonomy for artifact resolution and download.

Every failure carries a stable ``kind`` so callers can branch on the type of
problem instead of parsing messages.
"""
from typing import Optional


class ModelPullError(Exception):
    """Base exception for all resolver and download failures."""

    kind = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MalformedReferenceError(ModelPullError, ValueError):
    """A repo identifier or OCI digest does not have the required shape."""

    kind = "malformed_input"


class TransientNetworkError(ModelPullError):
    """A probe or transfer failed at the transport level."""

    kind = "network"

    def __init__(self, message: str, url: str = ""):
        self.url = url
        super().__init__(message)


class DownloadFailedError(ModelPullError):
    """A download could not be completed."""

    kind = "download_failed"

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class AuthorizationError(ModelPullError):
    """The registry answered 401."""

    kind = "unauthorized"


class ArtifactNotFoundError(ModelPullError):
    """A manifest exists but does not reference a downloadable model."""

    kind = "not_found"


class RegistryProtocolError(ModelPullError):
    """The registry answered with an unexpected status or payload."""

    kind = "protocol"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class OfflineUnavailableError(ModelPullError):
    """Offline mode was requested but nothing usable is cached."""

    kind = "offline_unavailable"


class LocalFilesystemError(ModelPullError):
    """A delete, write or rename inside the cache directory failed."""

    kind = "filesystem"

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message)


class SplitLayoutError(ModelPullError):
    """A split model's name does not match its declared shard count."""

    kind = "split_layout"
