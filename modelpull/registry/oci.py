"""
Pull GGUF models published as OCI artifacts on Docker Hub.

Flow: anonymous pull token -> manifest -> first GGUF layer -> digest check ->
blob download through the regular download engine.
"""
import re
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, ValidationError

from modelpull.adapters.remote import RemoteClient
from modelpull.internal.config import PullConfig
from modelpull.internal.constants import (
    DOCKER_AUTH_SERVICE,
    DOCKER_AUTH_URL,
    DOCKER_DEFAULT_NAMESPACE,
    DOCKER_DEFAULT_TAG,
    DOCKER_GGUF_MEDIA_TYPE,
    DOCKER_MANIFEST_MEDIA_TYPES,
    DOCKER_REGISTRY_URL,
    GGUF_EXTENSION,
    GGUF_MEDIA_MARKER,
    MAX_API_RESPONSE_BYTES,
)
from modelpull.internal.logging import get_logger
from modelpull.kernel.contracts import Fetcher
from modelpull.kernel.errors import (
    ArtifactNotFoundError,
    DownloadFailedError,
    MalformedReferenceError,
    RegistryProtocolError,
)

logger = get_logger(__name__)

DIGEST_PATTERN = re.compile(r"^sha256:([0-9a-fA-F]{64})$")


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str


class OciLayer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mediaType: Optional[str] = None
    digest: Optional[str] = None


class OciManifest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    layers: list[OciLayer] = []


def parse_oci_reference(reference: str) -> tuple[str, str]:
    """
    Split ``[namespace/]name[:tag]`` into ``(repo, tag)``; the namespace
    defaults to ``ai/`` and the tag to ``latest``.
    """
    repo, sep, tag = reference.partition(":")
    if not sep or not tag:
        tag = DOCKER_DEFAULT_TAG
    if not repo:
        raise MalformedReferenceError(f"invalid OCI reference '{reference}'")
    if "/" not in repo:
        repo = DOCKER_DEFAULT_NAMESPACE + repo
    return repo, tag


def validate_oci_digest(digest: str) -> str:
    """
    Accept only ``sha256:<64 hex>``; returns the digest with lowercase hex.
    """
    match = DIGEST_PATTERN.match(digest or "")
    if not match:
        raise MalformedReferenceError(f"Invalid OCI digest format received in manifest: {digest}")
    return "sha256:" + match.group(1).lower()


def select_gguf_layer(manifest: OciManifest) -> OciLayer:
    for layer in manifest.layers:
        media_type = layer.mediaType or ""
        if media_type == DOCKER_GGUF_MEDIA_TYPE or GGUF_MEDIA_MARKER in media_type:
            return layer
    raise ArtifactNotFoundError("No GGUF layer found in Docker manifest")


def local_filename(repo: str, tag: str) -> str:
    return f"{repo.replace('/', '_')}_{tag}{GGUF_EXTENSION}"


class OciResolver:
    """
    Resolves and downloads a model stored in an OCI registry.
    """

    def __init__(self, fetcher: Fetcher, config: Optional[PullConfig] = None, client: Optional[RemoteClient] = None):
        self.fetcher = fetcher
        self.config = config or PullConfig()
        self.client = client or RemoteClient(timeout=self.config.api_timeout)

    def _get_token(self, repo: str) -> str:
        query = urlencode({"service": DOCKER_AUTH_SERVICE, "scope": f"repository:{repo}:pull"}, safe=":/")
        status_code, body = self.client.get_content(f"{DOCKER_AUTH_URL}?{query}", max_size=MAX_API_RESPONSE_BYTES)
        if status_code != 200:
            raise RegistryProtocolError(
                f"Failed to get Docker registry token, HTTP code: {status_code}", status_code=status_code
            )
        try:
            return TokenResponse.model_validate_json(body).token
        except ValidationError as e:
            raise RegistryProtocolError(f"Docker registry token response missing 'token' field: {e}") from e

    def _get_manifest(self, repo: str, tag: str, token: str) -> OciManifest:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": ",".join(DOCKER_MANIFEST_MEDIA_TYPES),
        }
        status_code, body = self.client.get_content(
            f"{DOCKER_REGISTRY_URL}/v2/{repo}/manifests/{tag}", headers=headers, max_size=MAX_API_RESPONSE_BYTES
        )
        if status_code != 200:
            raise RegistryProtocolError(
                f"Failed to get Docker manifest, HTTP code: {status_code}", status_code=status_code
            )
        try:
            return OciManifest.model_validate_json(body)
        except ValidationError as e:
            raise RegistryProtocolError(f"error parsing Docker manifest: {e}") from e

    def resolve_oci(self, reference: str) -> Path:
        try:
            repo, tag = parse_oci_reference(reference)
            logger.info("Downloading Docker model", repo=repo, tag=tag)

            token = self._get_token(repo)
            manifest = self._get_manifest(repo, tag, token)
            layer = select_gguf_layer(manifest)
            digest = validate_oci_digest(layer.digest)
            logger.debug("Using validated digest", digest=digest)

            local_path = self.config.cache_dir / local_filename(repo, tag)
            blob_url = f"{DOCKER_REGISTRY_URL}/v2/{repo}/blobs/{digest}"

            result = self.fetcher.fetch(blob_url, local_path, bearer_token=token, offline=False)
            if not result.ok:
                raise result.error or DownloadFailedError("Failed to download Docker model", url=blob_url)

            logger.info("Downloaded Docker model", path=str(local_path))
            return local_path
        except Exception as e:
            logger.error("Docker model download failed", reference=reference, error=str(e))
            raise
