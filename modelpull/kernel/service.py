"""
This module defines the caller-facing pull service of modelpull.
It turns a user-supplied identifier into a local file, delegating resolution
to the registry resolvers and transfer to the download engine, and reports
the outcome as a PullResult instead of raising.
"""
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from modelpull.internal.config import PullConfig
from modelpull.internal.logging import get_logger
from modelpull.kernel.contracts import BatchResult, CachedModelInfo, DownloadTask, Fetcher, PullResult
from modelpull.kernel.errors import DownloadFailedError, MalformedReferenceError, ModelPullError
from modelpull.registry import cache_index
from modelpull.registry.hub import HubResolver
from modelpull.registry.oci import OciResolver
from modelpull.runtime.coordinator import DownloadCoordinator
from modelpull.runtime.downloader import DownloadEngine, mask_url
from modelpull.runtime.splits import SplitAssembler

logger = get_logger(__name__)


def default_filename(url: str) -> str:
    """
    Last path segment of ``url``, without query or fragment.
    """
    name = urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1]
    if not name:
        raise MalformedReferenceError(f"cannot derive a file name from URL: {mask_url(url)}")
    return name


def _first_error(batch: BatchResult, fallback: str) -> ModelPullError:
    for result in batch.failures:
        if result.error is not None:
            return result.error
    return DownloadFailedError(fallback)


class ModelPullService:
    """
    Orchestrates a pull from identifier to verified local file.
    """

    def __init__(
        self,
        config: Optional[PullConfig] = None,
        engine: Optional[Fetcher] = None,
        hub: Optional[HubResolver] = None,
        oci: Optional[OciResolver] = None,
        coordinator: Optional[DownloadCoordinator] = None,
        assembler: Optional[SplitAssembler] = None,
    ):
        self.config = config or PullConfig()
        self.engine = engine or DownloadEngine(self.config)
        self.hub = hub or HubResolver(self.config)
        self.oci = oci or OciResolver(self.engine, self.config)
        self.coordinator = coordinator or DownloadCoordinator(self.engine)
        self.assembler = assembler or SplitAssembler(self.coordinator)

    def _token(self, token: Optional[str]) -> Optional[str]:
        return token or self.config.token

    def _offline(self, offline: Optional[bool]) -> bool:
        return self.config.offline if offline is None else offline

    def _fetch_with_shards(self, task: DownloadTask, offline: bool) -> None:
        result = self.engine.fetch(
            task.url,
            task.destination,
            bearer_token=task.bearer_token,
            headers=dict(task.headers),
            offline=offline,
        )
        if not result.ok:
            raise result.error or DownloadFailedError(f"failed to download {mask_url(task.url)}")

        shards = self.assembler.assemble(task, offline=offline)
        if not shards.ok:
            raise _first_error(shards, f"failed to download shards of {task.destination.name}")

    # ------------------------------------------------------------------
    # Pull operations
    # ------------------------------------------------------------------

    def pull_url(
        self,
        url: str,
        path: Optional[Path] = None,
        token: Optional[str] = None,
        headers: Optional[dict] = None,
        offline: Optional[bool] = None,
    ) -> PullResult:
        """
        Download ``url`` to ``path`` (default: its file name in the cache
        directory), followed by any remaining shards of a split model.
        """
        try:
            destination = Path(path) if path else self.config.cache_dir / default_filename(url)
            task = DownloadTask(
                url=url,
                destination=destination,
                bearer_token=self._token(token),
                headers=dict(headers or {}),
            )
            self._fetch_with_shards(task, self._offline(offline))
        except ModelPullError as e:
            logger.error("Pull failed", url=mask_url(url), error=str(e), kind=e.kind)
            return PullResult(ref=mask_url(url), ok=False, error=e)

        logger.info("Pull complete", url=mask_url(url), path=str(destination))
        return PullResult(ref=mask_url(url), ok=True, path=destination)

    def pull_hub(self, ref: str, token: Optional[str] = None, offline: Optional[bool] = None) -> PullResult:
        """
        Resolve ``owner/name[:tag]`` on the hub and download the model, its
        mmproj companion when the manifest names one, and remaining shards.
        """
        bearer_token = self._token(token)
        offline = self._offline(offline)

        try:
            hub_file = self.hub.resolve(ref, bearer_token=bearer_token, offline=offline)

            model_task = DownloadTask(
                url=self.hub.file_url(hub_file.repo, hub_file.gguf_file),
                destination=self.hub.local_path(hub_file.repo, hub_file.gguf_file),
                bearer_token=bearer_token,
            )
            tasks = [model_task]

            companion_path = None
            if hub_file.mmproj_file:
                companion_path = self.hub.local_path(hub_file.repo, hub_file.mmproj_file)
                tasks.append(
                    DownloadTask(
                        url=self.hub.file_url(hub_file.repo, hub_file.mmproj_file),
                        destination=companion_path,
                        bearer_token=bearer_token,
                    )
                )

            batch = self.coordinator.fetch_many(tasks, offline=offline)
            if not batch.ok:
                raise _first_error(batch, f"failed to download model {ref}")

            shards = self.assembler.assemble(model_task, offline=offline)
            if not shards.ok:
                raise _first_error(shards, f"failed to download shards of {ref}")
        except ModelPullError as e:
            logger.error("Pull failed", ref=ref, error=str(e), kind=e.kind)
            return PullResult(ref=ref, ok=False, error=e)

        logger.info("Pull complete", ref=ref, path=str(model_task.destination))
        return PullResult(ref=ref, ok=True, path=model_task.destination, companion_path=companion_path)

    def pull_oci(self, ref: str) -> PullResult:
        """
        Download a GGUF model published as an OCI artifact.
        """
        try:
            path = self.oci.resolve_oci(ref)
        except ModelPullError as e:
            return PullResult(ref=ref, ok=False, error=e)
        return PullResult(ref=ref, ok=True, path=path)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def list_cached(self) -> list[CachedModelInfo]:
        return cache_index.list_cached(self.config.cache_dir)
