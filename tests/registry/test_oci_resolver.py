import json
from pathlib import Path

import httpx
import pytest

from modelpull.adapters.remote import RemoteClient
from modelpull.kernel.contracts import FetchResult
from modelpull.kernel.errors import (
    ArtifactNotFoundError,
    DownloadFailedError,
    MalformedReferenceError,
    RegistryProtocolError,
)
from modelpull.registry.oci import (
    OciLayer,
    OciManifest,
    OciResolver,
    parse_oci_reference,
    select_gguf_layer,
    validate_oci_digest,
)

HEX = "AB" * 32
GGUF_LAYER = {"mediaType": "application/vnd.docker.ai.gguf.v3", "digest": f"sha256:{HEX}"}
CONFIG_LAYER = {"mediaType": "application/vnd.docker.ai.model.config.v0.1+json", "digest": "sha256:" + "0" * 64}


class FakeRegistry:
    """Serves the Docker auth and manifest endpoints."""

    def __init__(self, layers=None, token_status=200, token_body=None):
        self.layers = [CONFIG_LAYER, GGUF_LAYER] if layers is None else layers
        self.token_status = token_status
        self.token_body = token_body if token_body is not None else json.dumps({"token": "registry-token"}).encode()
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "auth.docker.io":
            return httpx.Response(self.token_status, content=self.token_body)
        if "/manifests/" in request.url.path:
            return httpx.Response(200, json={"schemaVersion": 2, "layers": self.layers})
        return httpx.Response(404)


@pytest.fixture
def fetcher(mocker):
    mock = mocker.Mock()
    mock.fetch.side_effect = lambda url, destination, **kwargs: FetchResult(destination=destination, ok=True)
    return mock


@pytest.fixture
def make_resolver(pull_config, fetcher):
    def _make(registry: FakeRegistry) -> OciResolver:
        return OciResolver(fetcher, pull_config, client=RemoteClient(transport=httpx.MockTransport(registry)))
    return _make


# --- Helpers ---

@pytest.mark.parametrize("ref, expected", [
    ("smollm2", ("ai/smollm2", "latest")),
    ("smollm2:135M-Q4_K_M", ("ai/smollm2", "135M-Q4_K_M")),
    ("acme/custom:v1", ("acme/custom", "v1")),
])
def test_parse_oci_reference(ref, expected):
    assert parse_oci_reference(ref) == expected


def test_validate_oci_digest_normalises_case():
    assert validate_oci_digest(f"sha256:{HEX}") == "sha256:" + HEX.lower()


@pytest.mark.parametrize("digest", [
    "sha256:abc",
    "sha512:" + "a" * 64,
    "sha256:" + "g" * 64,
    "sha256:" + "a" * 64 + "/../../etc",
    "",
])
def test_validate_oci_digest_rejects_bad_digests(digest):
    with pytest.raises(MalformedReferenceError):
        validate_oci_digest(digest)


def test_select_gguf_layer():
    manifest = OciManifest(layers=[OciLayer(**CONFIG_LAYER), OciLayer(mediaType="application/x-gguf", digest="d")])
    assert select_gguf_layer(manifest).digest == "d"

    with pytest.raises(ArtifactNotFoundError):
        select_gguf_layer(OciManifest(layers=[OciLayer(**CONFIG_LAYER)]))


# --- Resolution ---

def test_resolve_downloads_blob_with_token(make_resolver, fetcher, cache_dir):
    registry = FakeRegistry()

    path = make_resolver(registry).resolve_oci("smollm2:135M")

    assert path == cache_dir / "ai_smollm2_135M.gguf"
    token_request, manifest_request = registry.requests
    assert token_request.url.params["scope"] == "repository:ai/smollm2:pull"
    assert token_request.url.params["service"] == "registry.docker.io"
    assert str(manifest_request.url) == "https://registry-1.docker.io/v2/ai/smollm2/manifests/135M"
    assert manifest_request.headers["Authorization"] == "Bearer registry-token"
    fetcher.fetch.assert_called_once_with(
        f"https://registry-1.docker.io/v2/ai/smollm2/blobs/sha256:{HEX.lower()}",
        Path(cache_dir / "ai_smollm2_135M.gguf"),
        bearer_token="registry-token",
        offline=False,
    )


def test_bad_digest_is_rejected_before_blob_request(make_resolver, fetcher):
    registry = FakeRegistry(layers=[{"mediaType": "application/vnd.docker.ai.gguf.v3", "digest": "sha256:../evil"}])

    with pytest.raises(MalformedReferenceError):
        make_resolver(registry).resolve_oci("smollm2")

    fetcher.fetch.assert_not_called()
    assert not any("/blobs/" in r.url.path for r in registry.requests)


def test_missing_gguf_layer(make_resolver, fetcher):
    with pytest.raises(ArtifactNotFoundError):
        make_resolver(FakeRegistry(layers=[CONFIG_LAYER])).resolve_oci("smollm2")
    fetcher.fetch.assert_not_called()


@pytest.mark.parametrize("status, body", [
    (500, b"{}"),
    (200, b'{"access_token": "x"}'),
])
def test_token_failure(make_resolver, status, body):
    with pytest.raises(RegistryProtocolError):
        make_resolver(FakeRegistry(token_status=status, token_body=body)).resolve_oci("smollm2")


def test_blob_download_failure_is_raised(make_resolver, fetcher):
    error = DownloadFailedError("failed after 3 attempts")
    fetcher.fetch.side_effect = lambda url, destination, **kwargs: FetchResult(destination=destination, ok=False, error=error)

    with pytest.raises(DownloadFailedError) as exc_info:
        make_resolver(FakeRegistry()).resolve_oci("smollm2")
    assert exc_info.value is error


def test_oversized_registry_response_is_rejected(make_resolver, fetcher, monkeypatch):
    monkeypatch.setattr("modelpull.registry.oci.MAX_API_RESPONSE_BYTES", 8)

    with pytest.raises(RegistryProtocolError):
        make_resolver(FakeRegistry()).resolve_oci("smollm2")
    fetcher.fetch.assert_not_called()
