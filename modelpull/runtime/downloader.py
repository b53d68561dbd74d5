"""
Single-file download engine.

Every artifact transfer in modelpull goes through ``DownloadEngine.fetch``:
a HEAD probe decides between a cache hit, a resumed transfer and a full
download; bytes are appended to ``<artifact>.downloadInProgress`` and only an
atomic rename publishes them under the artifact's own name.
"""
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import requests

from modelpull.adapters.etag_store import clear_etag, read_etag, write_etag
from modelpull.internal.config import PullConfig
from modelpull.internal.constants import DOWNLOAD_CHUNK_SIZE, USER_AGENT
from modelpull.internal.logging import get_logger
from modelpull.kernel.contracts import CacheEntry, FetchResult
from modelpull.kernel.errors import (
    DownloadFailedError,
    LocalFilesystemError,
    ModelPullError,
    OfflineUnavailableError,
    TransientNetworkError,
)

logger = get_logger(__name__)


def mask_url(url: str) -> str:
    """
    Hide ``user:password@`` credentials embedded in a URL.
    """
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, f"********@{host}", parts.path, parts.query, parts.fragment))


@dataclass
class ProbeInfo:
    """What a HEAD request told us about the remote artifact."""
    ok: bool
    status_code: int = 0
    etag: str = ""
    accept_ranges: bool = False
    total_size: int = 0


def _remove(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        raise LocalFilesystemError(f"unable to delete file '{path}': {e}", path=str(path)) from e


class DownloadEngine:
    """
    Fetches one URL to one local path with ETag freshness checks, byte-range
    resume and bounded retries.
    """

    def __init__(self, config: Optional[PullConfig] = None):
        self.config = config or PullConfig()

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def fetch(
        self,
        url: str,
        destination: Path,
        bearer_token: Optional[str] = None,
        headers: Optional[dict] = None,
        offline: bool = False,
    ) -> FetchResult:
        destination = Path(destination)

        if offline:
            if destination.exists():
                logger.info("Using cached file (offline mode)", path=str(destination))
                return FetchResult(destination=destination, ok=True, cache_hit=True)
            error = OfflineUnavailableError(
                f"required file is not available in cache (offline mode): {destination}"
            )
            logger.error("File not cached", path=str(destination), offline=True)
            return FetchResult(destination=destination, ok=False, error=error)

        try:
            return self._fetch_online(url, destination, bearer_token, headers or {})
        except ModelPullError as e:
            logger.error("Download failed", url=mask_url(url), path=str(destination), error=str(e), kind=e.kind)
            return FetchResult(destination=destination, ok=False, error=e)

    # ---------------------------------------------------------------------
    # Online path
    # ---------------------------------------------------------------------

    def _request_headers(self, bearer_token: Optional[str], custom_headers: dict) -> dict:
        request_headers = {
            "User-Agent": USER_AGENT,
            "Accept-Encoding": "identity",
        }
        if bearer_token:
            request_headers["Authorization"] = f"Bearer {bearer_token}"
        request_headers.update(custom_headers)
        return request_headers

    def _fetch_online(self, url: str, destination: Path, bearer_token: Optional[str], custom_headers: dict) -> FetchResult:
        entry = CacheEntry(local_path=destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        if destination.exists():
            entry.etag = read_etag(destination)
        else:
            logger.info("No previous model file found", path=str(destination))

        max_attempts = self.config.max_attempts
        transferred = 0
        last_error: Optional[ModelPullError] = None

        with requests.Session() as session:
            session.headers.update(self._request_headers(bearer_token, custom_headers))

            for attempt in range(1, max_attempts + 1):
                file_exists = destination.exists()

                try:
                    probe = self._probe(session, url)
                except TransientNetworkError as e:
                    if file_exists:
                        logger.info("Using cached file (probe failed)", path=str(destination))
                        return FetchResult(destination=destination, ok=True, cache_hit=True, attempts=attempt)
                    last_error = e
                    self._backoff(attempt, max_attempts)
                    continue

                if not probe.ok and file_exists:
                    logger.info("Using cached file (probe failed)", path=str(destination), status=probe.status_code)
                    return FetchResult(destination=destination, ok=True, cache_hit=True, attempts=attempt)

                from_scratch = False
                if file_exists:
                    if entry.etag and entry.etag == probe.etag:
                        logger.info("Using cached file", path=str(destination), etag=probe.etag)
                        return FetchResult(destination=destination, ok=True, cache_hit=True, attempts=attempt)

                    if entry.etag:
                        logger.warning(
                            "ETag is different, triggering a new download",
                            cached_etag=entry.etag,
                            server_etag=probe.etag,
                        )
                        from_scratch = True
                    else:
                        logger.info("No stored ETag, refreshing cached file", path=str(destination))

                    logger.warning("Deleting previous downloaded file", path=str(destination))
                    _remove(destination)
                    clear_etag(destination)
                    entry.etag = ""

                existing_size = 0
                temp_path = entry.temp_path
                if temp_path.exists():
                    if probe.accept_ranges and not from_scratch:
                        existing_size = temp_path.stat().st_size
                        if probe.total_size and existing_size > probe.total_size:
                            logger.warning(
                                "Partial file larger than remote file, discarding",
                                path=str(temp_path),
                                size=existing_size,
                                remote_size=probe.total_size,
                            )
                            _remove(temp_path)
                            existing_size = 0
                    else:
                        _remove(temp_path)

                logger.info(
                    "Trying to download model",
                    url=mask_url(url),
                    path=str(temp_path),
                    etag=probe.etag,
                    resume_from=existing_size,
                    attempt=attempt,
                )

                try:
                    transferred += self._pull(session, url, temp_path, existing_size, probe.total_size)
                except TransientNetworkError as e:
                    last_error = e
                    self._backoff(attempt, max_attempts)
                    continue

                try:
                    os.replace(temp_path, destination)
                except OSError as e:
                    raise LocalFilesystemError(
                        f"unable to rename file '{temp_path}' to '{destination}': {e}", path=str(destination)
                    ) from e

                if probe.etag:
                    write_etag(destination, probe.etag)

                logger.info("Download complete", path=str(destination), bytes=transferred)
                return FetchResult(
                    destination=destination,
                    ok=True,
                    bytes_transferred=transferred,
                    attempts=attempt,
                )

        logger.error("Download failed after all attempts", url=mask_url(url), attempts=max_attempts)
        error = DownloadFailedError(
            f"download of {mask_url(url)} failed after {max_attempts} attempts: {last_error}",
            url=mask_url(url),
        )
        return FetchResult(
            destination=destination,
            ok=False,
            bytes_transferred=transferred,
            attempts=max_attempts,
            error=error,
        )

    def _backoff(self, attempt: int, max_attempts: int) -> None:
        if attempt >= max_attempts:
            return
        delay = self.config.retry_base_seconds ** attempt
        logger.warning("Retrying download", delay_ms=int(delay * 1000), attempt=attempt)
        time.sleep(delay)

    # ---------------------------------------------------------------------
    # HTTP
    # ---------------------------------------------------------------------

    def _probe(self, session: requests.Session, url: str) -> ProbeInfo:
        try:
            response = session.head(url, allow_redirects=True, timeout=self.config.transfer_timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("HEAD request failed", url=mask_url(url), error=str(e))
            raise TransientNetworkError(f"HEAD request failed: {e}", url=mask_url(url)) from e

        if not 200 <= response.status_code < 300:
            logger.warning("HEAD invalid http status code received", status=response.status_code)
            return ProbeInfo(ok=False, status_code=response.status_code)

        accept_ranges = response.headers.get("Accept-Ranges", "")
        try:
            total_size = int(response.headers.get("Content-Length", 0))
        except ValueError:
            logger.warning("Invalid Content-Length in HEAD response")
            total_size = 0

        return ProbeInfo(
            ok=True,
            status_code=response.status_code,
            etag=response.headers.get("ETag", ""),
            accept_ranges=bool(accept_ranges) and accept_ranges.lower() != "none",
            total_size=total_size,
        )

    def _pull(self, session: requests.Session, url: str, temp_path: Path, existing_size: int, total_size: int) -> int:
        """
        Stream ``url`` onto ``temp_path`` and return the number of bytes
        received. The temp file is complete when this returns.
        """
        if existing_size and existing_size == total_size:
            logger.info("Partial file already complete", path=str(temp_path), size=existing_size)
            return 0

        range_headers = {"Range": f"bytes={existing_size}-"} if existing_size else {}
        if existing_size:
            logger.info("Server supports range requests, resuming download", from_byte=existing_size)

        received = 0
        try:
            with session.get(url, headers=range_headers, stream=True, timeout=self.config.transfer_timeout) as response:
                status = response.status_code
                if status == 429 or status >= 500:
                    raise TransientNetworkError(f"server returned HTTP {status}", url=mask_url(url))
                if not 200 <= status < 300:
                    raise DownloadFailedError(
                        f"invalid http status code received: {status}", url=mask_url(url), status_code=status
                    )

                mode = "ab"
                if existing_size and status != 206:
                    logger.warning("Server ignored range request, restarting download", status=status)
                    mode = "wb"
                    existing_size = 0

                expected = total_size
                content_length = response.headers.get("Content-Length")
                if content_length and content_length.isdigit():
                    expected = existing_size + int(content_length)

                try:
                    with open(temp_path, mode) as f:
                        for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                            if chunk:
                                f.write(chunk)
                                received += len(chunk)
                except requests.exceptions.RequestException:
                    raise
                except OSError as e:
                    raise LocalFilesystemError(f"error writing to file '{temp_path}': {e}", path=str(temp_path)) from e

        except requests.exceptions.RequestException as e:
            logger.warning("Transfer interrupted", url=mask_url(url), received=received, error=str(e))
            raise TransientNetworkError(f"transfer interrupted: {e}", url=mask_url(url)) from e

        if expected and temp_path.stat().st_size != expected:
            raise TransientNetworkError(
                f"incomplete transfer: expected {expected} bytes, have {temp_path.stat().st_size}",
                url=mask_url(url),
            )
        return received
