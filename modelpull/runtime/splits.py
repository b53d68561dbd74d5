"""
Split (multi-shard) GGUF models.

A split model is published as ``<prefix>-00001-of-0000N.gguf`` ...
``<prefix>-0000N-of-0000N.gguf``. Only the first shard is named by the user;
its GGUF header declares the shard count, and the rest are derived from the
naming convention.
"""
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlsplit

from gguf import GGUFReader

from modelpull.internal.constants import GGUF_EXTENSION, GGUF_SPLIT_COUNT_KEY
from modelpull.internal.logging import get_logger
from modelpull.kernel.contracts import BatchResult, DownloadTask
from modelpull.kernel.errors import SplitLayoutError
from modelpull.runtime.coordinator import DownloadCoordinator

logger = get_logger(__name__)


def split_path(prefix: str, split_no: int, split_count: int) -> str:
    """Name of shard ``split_no`` (0-based) out of ``split_count``."""
    return f"{prefix}-{split_no + 1:05d}-of-{split_count:05d}{GGUF_EXTENSION}"


def split_prefix(path: str, split_no: int, split_count: int) -> Optional[str]:
    """
    Inverse of ``split_path``: the prefix of ``path`` if it is shard
    ``split_no`` of ``split_count``, else None.
    """
    postfix = f"-{split_no + 1:05d}-of-{split_count:05d}{GGUF_EXTENSION}"
    if len(path) > len(postfix) and path.endswith(postfix):
        return path[: -len(postfix)]
    return None


def _split_url_suffix(url: str) -> tuple[str, str]:
    # Shard names are matched on the path; a query or fragment is carried over.
    parts = urlsplit(url)
    cut = len(url)
    if parts.fragment:
        cut = url.index("#")
    if parts.query:
        cut = min(cut, url.index("?"))
    return url[:cut], url[cut:]


def read_split_count(path: Path) -> int:
    """
    Shard count declared in a GGUF header; 0 when the key is absent.
    """
    reader = GGUFReader(str(path))
    field = reader.get_field(GGUF_SPLIT_COUNT_KEY)
    if field is None or not field.data:
        return 0
    return int(field.parts[field.data[0]][0])


class SplitAssembler:
    """
    Downloads the remaining shards of a split model once the first one is on
    disk.
    """

    def __init__(
        self,
        coordinator: DownloadCoordinator,
        split_count_reader: Callable[[Path], int] = read_split_count,
    ):
        self.coordinator = coordinator
        self.split_count_reader = split_count_reader

    def shard_tasks(self, primary: DownloadTask, split_count: int) -> list[DownloadTask]:
        primary_path = str(primary.destination)
        path_prefix = split_prefix(primary_path, 0, split_count)
        if path_prefix is None:
            raise SplitLayoutError(f"unexpected model file name: {primary_path} n_split={split_count}")

        url_base, url_suffix = _split_url_suffix(primary.url)
        url_prefix = split_prefix(url_base, 0, split_count)
        if url_prefix is None:
            raise SplitLayoutError(f"unexpected model url: {primary.url} n_split={split_count}")

        tasks = []
        for idx in range(1, split_count):
            shard_path = split_path(path_prefix, idx, split_count)
            if shard_path == primary_path:
                continue
            tasks.append(
                DownloadTask(
                    url=split_path(url_prefix, idx, split_count) + url_suffix,
                    destination=Path(shard_path),
                    bearer_token=primary.bearer_token,
                    headers=dict(primary.headers),
                )
            )
        return tasks

    def assemble(self, primary: DownloadTask, offline: bool = False) -> BatchResult:
        """
        Fetch every shard after the first. Returns an empty, successful batch
        for models that are not split.
        """
        try:
            split_count = self.split_count_reader(primary.destination)
        except (OSError, ValueError) as e:
            raise SplitLayoutError(f"failed to load input GGUF from {primary.destination}: {e}") from e

        if split_count <= 1:
            return BatchResult(results=[])

        tasks = self.shard_tasks(primary, split_count)
        logger.info("Downloading remaining shards", model=str(primary.destination), shards=len(tasks))
        return self.coordinator.fetch_many(tasks, offline=offline)
