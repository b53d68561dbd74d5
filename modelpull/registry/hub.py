"""
Resolve ``owner/name[:tag]`` references against the model hub's manifest API.

Manifests are cached as ``manifest=<owner>=<name>=<tag>.json`` in the cache
directory so a model that resolved once can be resolved again while the hub
is unreachable or when running offline.
"""
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from modelpull.adapters.etag_store import write_file_atomic
from modelpull.adapters.remote import RemoteClient
from modelpull.internal.config import PullConfig
from modelpull.internal.constants import (
    DEFAULT_HUB_TAG,
    MANIFEST_EXTENSION,
    MANIFEST_PREFIX,
    MANIFEST_SEPARATOR,
    MAX_API_RESPONSE_BYTES,
)
from modelpull.internal.logging import get_logger
from modelpull.kernel.contracts import HubFile
from modelpull.kernel.errors import (
    ArtifactNotFoundError,
    AuthorizationError,
    MalformedReferenceError,
    OfflineUnavailableError,
    RegistryProtocolError,
    TransientNetworkError,
)

logger = get_logger(__name__)

REPO_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+/[A-Za-z0-9_.\-]+$")


class ManifestFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rfilename: Optional[str] = None


class HubManifest(BaseModel):
    """The subset of the hub manifest response that modelpull reads."""
    model_config = ConfigDict(extra="ignore")

    ggufFile: Optional[ManifestFile] = None
    mmprojFile: Optional[ManifestFile] = None


def parse_hub_reference(ref: str) -> tuple[str, str]:
    """
    Split ``owner/name[:tag]`` into ``(repo, tag)``.
    """
    parts = ref.split(":")
    tag = parts[-1] if len(parts) > 1 and parts[-1] else DEFAULT_HUB_TAG
    repo = parts[0]
    if not REPO_PATTERN.match(repo):
        raise MalformedReferenceError(
            f"invalid hub repo format '{ref}', expected <user>/<model>[:quant]"
        )
    return repo, tag


def manifest_filename(repo: str, tag: str) -> str:
    if not REPO_PATTERN.match(repo):
        raise MalformedReferenceError("repo name must be in the format 'owner/repo'")
    fname = f"{MANIFEST_PREFIX}{repo}{MANIFEST_SEPARATOR}{tag}{MANIFEST_EXTENSION}"
    return fname.replace("/", MANIFEST_SEPARATOR)


def local_filename(repo: str, filename: str) -> str:
    # Prefix with the repo so equal filenames from different repos don't clash.
    owner, name = repo.split("/")
    return f"{owner}_{name}_{filename}".replace("/", "_")


class HubResolver:
    """
    Turns a hub reference into the GGUF (and optional mmproj) filename it
    points at.
    """

    def __init__(self, config: Optional[PullConfig] = None, client: Optional[RemoteClient] = None):
        self.config = config or PullConfig()
        self.client = client or RemoteClient(timeout=self.config.api_timeout)

    # ------------------------------------------------------------------
    # Paths / URLs
    # ------------------------------------------------------------------

    def manifest_path(self, repo: str, tag: str) -> Path:
        return self.config.cache_dir / manifest_filename(repo, tag)

    def manifest_url(self, repo: str, tag: str) -> str:
        return f"{self.config.model_endpoint}v2/{repo}/manifests/{tag}"

    def file_url(self, repo: str, filename: str) -> str:
        return f"{self.config.model_endpoint}{repo}/resolve/main/{filename}"

    def local_path(self, repo: str, filename: str) -> Path:
        return self.config.cache_dir / local_filename(repo, filename)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, ref: str, bearer_token: Optional[str] = None, offline: bool = False) -> HubFile:
        repo, tag = parse_hub_reference(ref)
        cached_path = self.manifest_path(repo, tag)
        url = self.manifest_url(repo, tag)

        headers = {"Accept": "application/json"}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"

        status_code = 0
        body = b""
        from_cache = False

        if not offline:
            try:
                status_code, body = self.client.get_content(url, headers=headers, max_size=MAX_API_RESPONSE_BYTES)
            except TransientNetworkError as e:
                logger.warning("Failed to get manifest", url=url, error=str(e))

        if status_code == 0:
            if cached_path.exists():
                logger.warning("Reading manifest from cache", path=str(cached_path))
                body = cached_path.read_bytes()
                status_code = 200
                from_cache = True
            elif offline:
                raise OfflineUnavailableError(f"failed to get manifest for {repo}:{tag} (offline mode)")
            else:
                raise TransientNetworkError(
                    f"failed to get manifest for {repo}:{tag} (check your internet connection)", url=url
                )

        if status_code == 401:
            raise AuthorizationError(
                "model is private or does not exist; if you are accessing a gated model, "
                "please provide a valid token"
            )
        if status_code not in (200, 304):
            raise RegistryProtocolError(
                f"error from hub API, response code: {status_code}, data: {body.decode(errors='replace')}",
                status_code=status_code,
            )

        try:
            manifest = HubManifest.model_validate_json(body)
        except ValidationError as e:
            raise RegistryProtocolError(f"error parsing manifest JSON: {e}", status_code=status_code) from e

        if not from_cache:
            write_file_atomic(cached_path, body.decode("utf-8"))
            logger.debug("Manifest cached", path=str(cached_path))

        gguf_file = manifest.ggufFile.rfilename if manifest.ggufFile else None
        mmproj_file = manifest.mmprojFile.rfilename if manifest.mmprojFile else None

        if not gguf_file:
            raise ArtifactNotFoundError(f"model {repo}:{tag} does not have ggufFile")

        logger.info("Resolved hub model", repo=repo, tag=tag, gguf=gguf_file, from_cache=from_cache)
        return HubFile(repo=repo, gguf_file=gguf_file, mmproj_file=mmproj_file or "", from_cache=from_cache)
