import httpx
from typing import Optional

from modelpull.internal.constants import API_TIMEOUT_SECONDS, USER_AGENT
from modelpull.internal.logging import get_logger
from modelpull.kernel.errors import RegistryProtocolError, TransientNetworkError

logger = get_logger(__name__)


class RemoteClient:
    """
    Thin client for small registry API responses (manifests, tokens).

    Large artifact bodies never pass through here; they are streamed to disk
    by the download engine.
    """

    def __init__(self, timeout: float = API_TIMEOUT_SECONDS, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    def _client(self, timeout: Optional[float]) -> httpx.Client:
        return httpx.Client(
            timeout=timeout if timeout is not None else self.timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        )

    def get_content(
        self,
        url: str,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
        max_size: int = 0,
    ) -> tuple[int, bytes]:
        """
        GET ``url`` and return ``(status_code, body)``.

        Any status code is returned as-is; only transport failures raise.
        A positive ``max_size`` aborts bodies larger than that many bytes.
        """
        try:
            with self._client(timeout) as client:
                with client.stream("GET", url, headers=headers or {}) as response:
                    body = bytearray()
                    for chunk in response.iter_bytes():
                        body.extend(chunk)
                        if max_size > 0 and len(body) > max_size:
                            raise RegistryProtocolError(
                                f"response from {url} exceeds {max_size} bytes", status_code=response.status_code
                            )
                    return response.status_code, bytes(body)
        except httpx.HTTPError as exc:
            logger.warning("GET request failed", url=url, error=str(exc))
            raise TransientNetworkError(f"cannot make GET request: {exc}", url=url) from exc

    def __repr__(self) -> str:
        return f"<RemoteClient timeout={self.timeout}>"
