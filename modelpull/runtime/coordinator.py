from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from modelpull.internal.logging import get_logger
from modelpull.kernel.contracts import BatchResult, DownloadTask, Fetcher, FetchResult

logger = get_logger(__name__)


class DownloadCoordinator:
    """
    Runs independent downloads concurrently, one thread per task.

    Every task runs to completion even when a sibling has already failed;
    files that were installed stay on disk and are skipped by the next fetch
    through the ETag check.
    """

    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher

    def _run(self, task: DownloadTask, offline: bool) -> FetchResult:
        return self.fetcher.fetch(
            task.url,
            task.destination,
            bearer_token=task.bearer_token,
            headers=dict(task.headers),
            offline=offline,
        )

    def fetch_many(self, tasks: Iterable[DownloadTask], offline: bool = False) -> BatchResult:
        tasks = list(tasks)
        if not tasks:
            return BatchResult(results=[])

        logger.info("Starting parallel download", files=len(tasks), offline=offline)

        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="modelpull-download") as pool:
            futures = [pool.submit(self._run, task, offline) for task in tasks]
            results = [f.result() for f in futures]

        batch = BatchResult(results=results)
        if batch.ok:
            logger.info("Parallel download complete", files=len(tasks))
        else:
            logger.error(
                "Parallel download failed",
                failed=[str(r.destination) for r in batch.failures],
                total=len(tasks),
            )
        return batch
