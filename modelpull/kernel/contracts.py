"""
Data contracts shared by the resolvers, the download engine and the service
layer. These are plain data holders; behaviour lives in the runtime and
registry packages.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from modelpull.internal.constants import ETAG_SUFFIX, IN_PROGRESS_SUFFIX
from modelpull.kernel.errors import ModelPullError


@dataclass(frozen=True)
class DownloadTask:
    """
    One file to fetch. Created by a resolver or by the caller and consumed
    exactly once by the download engine.
    """
    url: str
    destination: Path
    bearer_token: Optional[str] = None
    headers: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.url:
            raise ValueError("url cannot be empty")
        if not str(self.destination):
            raise ValueError("destination cannot be empty")
        if not all(isinstance(k, str) and isinstance(v, str) for k, v in self.headers.items()):
            raise TypeError("All header names and values must be strings")


@dataclass
class CacheEntry:
    """A cached artifact and the freshness token it was downloaded with."""
    local_path: Path
    etag: str = ""

    @property
    def etag_path(self) -> Path:
        return self.local_path.with_name(self.local_path.name + ETAG_SUFFIX)

    @property
    def temp_path(self) -> Path:
        return self.local_path.with_name(self.local_path.name + IN_PROGRESS_SUFFIX)


@dataclass
class FetchResult:
    """Outcome of a single-file fetch."""
    destination: Path
    ok: bool
    cache_hit: bool = False
    bytes_transferred: int = 0
    attempts: int = 0
    error: Optional[ModelPullError] = None


@dataclass
class BatchResult:
    """Outcome of a parallel fetch; ``ok`` only when every member succeeded."""
    results: list[FetchResult]

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failures(self) -> list[FetchResult]:
        return [r for r in self.results if not r.ok]


@dataclass(frozen=True)
class HubFile:
    """A hub reference resolved to concrete filenames."""
    repo: str
    gguf_file: str
    mmproj_file: str = ""
    from_cache: bool = False


@dataclass(frozen=True)
class CachedModelInfo:
    """A hub model whose manifest is present in the cache directory."""
    user: str
    model: str
    tag: str
    manifest_path: Path
    size: int = 0

    @property
    def ref(self) -> str:
        return f"{self.user}/{self.model}:{self.tag}"


@dataclass
class PullResult:
    """
    Outcome of a caller-facing pull. ``path`` is set on success, ``error``
    carries the typed failure otherwise.
    """
    ref: str
    ok: bool
    path: Optional[Path] = None
    companion_path: Optional[Path] = None
    error: Optional[ModelPullError] = None

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error else None


class Fetcher(Protocol):
    """
    The interface of the single-file download engine. The coordinator, the
    split assembler and the resolvers depend only on this.
    """

    def fetch(
        self,
        url: str,
        destination: Path,
        bearer_token: Optional[str] = None,
        headers: Optional[dict] = None,
        offline: bool = False,
    ) -> FetchResult:
        ...
