import pytest
import requests

from modelpull.runtime.downloader import DownloadEngine, mask_url

URL = "https://files.test/models/model.gguf"
CONTENT = b"0123456789"


@pytest.fixture
def engine(pull_config):
    return DownloadEngine(pull_config)


@pytest.fixture
def destination(cache_dir):
    return cache_dir / "model.gguf"


def mock_remote(requests_mock, etag='"v1"', content=CONTENT, accept_ranges="bytes"):
    head_headers = {"ETag": etag, "Content-Length": str(len(content))}
    if accept_ranges:
        head_headers["Accept-Ranges"] = accept_ranges
    requests_mock.head(URL, headers=head_headers)
    requests_mock.get(URL, content=content, headers={"Content-Length": str(len(content))})


def get_requests(requests_mock):
    return [r for r in requests_mock.request_history if r.method == "GET"]


# --- Fresh download ---

def test_fresh_download_installs_file_and_etag(engine, destination, requests_mock):
    mock_remote(requests_mock)

    result = engine.fetch(URL, destination)

    assert result.ok is True
    assert result.cache_hit is False
    assert result.bytes_transferred == len(CONTENT)
    assert result.attempts == 1
    assert destination.read_bytes() == CONTENT
    assert (destination.parent / "model.gguf.etag").read_text() == '"v1"'
    assert not (destination.parent / "model.gguf.downloadInProgress").exists()


def test_request_headers(engine, destination, requests_mock):
    mock_remote(requests_mock)

    engine.fetch(URL, destination, bearer_token="secret", headers={"X-Extra": "1"})

    request = get_requests(requests_mock)[0]
    assert request.headers["User-Agent"] == "llama-cpp"
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["X-Extra"] == "1"
    assert request.headers["Accept-Encoding"] == "identity"
    assert "Range" not in request.headers


def test_missing_parent_directory_is_created(engine, cache_dir, requests_mock):
    mock_remote(requests_mock)
    nested = cache_dir / "a" / "b" / "model.gguf"

    assert engine.fetch(URL, nested).ok
    assert nested.read_bytes() == CONTENT


# --- Freshness ---

def test_second_fetch_with_same_etag_transfers_nothing(engine, destination, requests_mock):
    mock_remote(requests_mock)
    engine.fetch(URL, destination)

    result = engine.fetch(URL, destination)

    assert result.ok and result.cache_hit
    assert result.bytes_transferred == 0
    assert len(get_requests(requests_mock)) == 1
    assert destination.read_bytes() == CONTENT


def test_changed_etag_triggers_fresh_download(engine, destination, requests_mock):
    destination.write_bytes(b"old weights")
    (destination.parent / "model.gguf.etag").write_text('"v0"')
    (destination.parent / "model.gguf.downloadInProgress").write_bytes(b"stale")
    mock_remote(requests_mock, etag='"v1"')

    result = engine.fetch(URL, destination)

    assert result.ok and not result.cache_hit
    assert destination.read_bytes() == CONTENT
    assert (destination.parent / "model.gguf.etag").read_text() == '"v1"'
    assert "Range" not in get_requests(requests_mock)[0].headers


def test_existing_file_without_etag_is_refreshed(engine, destination, requests_mock):
    destination.write_bytes(b"unknown provenance")
    mock_remote(requests_mock)

    result = engine.fetch(URL, destination)

    assert result.ok and not result.cache_hit
    assert destination.read_bytes() == CONTENT
    assert len(get_requests(requests_mock)) == 1


def test_no_etag_from_server_leaves_no_sidecar(engine, destination, requests_mock):
    requests_mock.head(URL, headers={"Content-Length": "10"})
    requests_mock.get(URL, content=CONTENT)

    assert engine.fetch(URL, destination).ok
    assert not (destination.parent / "model.gguf.etag").exists()


# --- Resume ---

def test_partial_download_is_resumed(engine, destination, requests_mock):
    temp = destination.parent / "model.gguf.downloadInProgress"
    temp.write_bytes(CONTENT[:5])
    requests_mock.head(URL, headers={"ETag": '"v1"', "Accept-Ranges": "bytes", "Content-Length": "10"})
    requests_mock.get(URL, status_code=206, content=CONTENT[5:], headers={"Content-Length": "5"})

    result = engine.fetch(URL, destination)

    assert result.ok
    assert result.bytes_transferred == 5
    assert get_requests(requests_mock)[0].headers["Range"] == "bytes=5-"
    assert destination.read_bytes() == CONTENT
    assert not temp.exists()


def test_partial_download_restarts_without_range_support(engine, destination, requests_mock):
    temp = destination.parent / "model.gguf.downloadInProgress"
    temp.write_bytes(b"junk!")
    mock_remote(requests_mock, accept_ranges=None)

    result = engine.fetch(URL, destination)

    assert result.ok
    assert "Range" not in get_requests(requests_mock)[0].headers
    assert destination.read_bytes() == CONTENT


def test_server_ignoring_range_restarts_file(engine, destination, requests_mock):
    temp = destination.parent / "model.gguf.downloadInProgress"
    temp.write_bytes(CONTENT[:5])
    mock_remote(requests_mock)

    result = engine.fetch(URL, destination)

    assert result.ok
    assert get_requests(requests_mock)[0].headers["Range"] == "bytes=5-"
    assert destination.read_bytes() == CONTENT


def test_interrupted_transfer_resumes_from_received_bytes(engine, destination, requests_mock, no_sleep, monkeypatch):
    requests_mock.head(URL, headers={"ETag": '"v1"', "Accept-Ranges": "bytes", "Content-Length": "10"})
    requests_mock.get(URL, [
        {"content": CONTENT, "headers": {"Content-Length": "10"}},
        {"status_code": 206, "content": CONTENT[5:], "headers": {"Content-Length": "5"}},
    ])
    original_iter_content = requests.models.Response.iter_content
    state = {"dropped": False}

    def dropping_iter_content(self, chunk_size=1, decode_unicode=False):
        if self.request.method != "GET" or state["dropped"]:
            return original_iter_content(self, chunk_size=chunk_size, decode_unicode=decode_unicode)
        state["dropped"] = True

        def first_half_then_reset():
            yield CONTENT[:5]
            raise requests.exceptions.ChunkedEncodingError("connection reset mid-body")
        return first_half_then_reset()

    monkeypatch.setattr(requests.models.Response, "iter_content", dropping_iter_content)

    result = engine.fetch(URL, destination)

    assert result.ok is True
    assert result.attempts == 2
    first_get, second_get = get_requests(requests_mock)
    assert "Range" not in first_get.headers
    assert second_get.headers["Range"] == "bytes=5-"
    assert destination.read_bytes() == CONTENT
    assert not (destination.parent / "model.gguf.downloadInProgress").exists()
    assert [call.args[0] for call in no_sleep.call_args_list] == [2]


def test_oversized_partial_download_is_discarded(engine, destination, requests_mock):
    temp = destination.parent / "model.gguf.downloadInProgress"
    temp.write_bytes(b"x" * 15)
    mock_remote(requests_mock)

    result = engine.fetch(URL, destination)

    assert result.ok is True
    assert "Range" not in get_requests(requests_mock)[0].headers
    assert destination.read_bytes() == CONTENT


# --- Offline ---

def test_offline_uses_cached_file_without_network(engine, destination, requests_mock):
    destination.write_bytes(CONTENT)

    result = engine.fetch(URL, destination, offline=True)

    assert result.ok and result.cache_hit
    assert requests_mock.called is False


def test_offline_without_cached_file_fails(engine, destination, requests_mock):
    result = engine.fetch(URL, destination, offline=True)

    assert result.ok is False
    assert result.error.kind == "offline_unavailable"
    assert requests_mock.called is False


# --- Failures and retries ---

def test_probe_failure_falls_back_to_cached_file(engine, destination, requests_mock, no_sleep):
    destination.write_bytes(CONTENT)
    requests_mock.head(URL, exc=requests.exceptions.ConnectionError("offline"))

    result = engine.fetch(URL, destination)

    assert result.ok and result.cache_hit
    assert get_requests(requests_mock) == []
    no_sleep.assert_not_called()


def test_probe_error_status_falls_back_to_cached_file(engine, destination, requests_mock):
    destination.write_bytes(CONTENT)
    requests_mock.head(URL, status_code=503)

    result = engine.fetch(URL, destination)

    assert result.ok and result.cache_hit
    assert destination.read_bytes() == CONTENT


def test_retry_is_bounded_with_exponential_backoff(engine, destination, requests_mock, no_sleep):
    requests_mock.head(URL, exc=requests.exceptions.ConnectionError("unreachable"))

    result = engine.fetch(URL, destination)

    assert result.ok is False
    assert result.attempts == 3
    assert result.error.kind == "download_failed"
    assert len(requests_mock.request_history) == 3
    assert [call.args[0] for call in no_sleep.call_args_list] == [2, 4]
    assert not destination.exists()


def test_server_error_is_retried(engine, destination, requests_mock, no_sleep):
    requests_mock.head(URL, headers={"ETag": '"v1"', "Content-Length": "10"})
    requests_mock.get(URL, [{"status_code": 500}, {"content": CONTENT, "status_code": 200}])

    result = engine.fetch(URL, destination)

    assert result.ok
    assert result.attempts == 2
    assert no_sleep.call_count == 1
    assert destination.read_bytes() == CONTENT


def test_client_error_is_not_retried(engine, destination, requests_mock, no_sleep):
    requests_mock.head(URL, headers={"ETag": '"v1"'})
    requests_mock.get(URL, status_code=404)

    result = engine.fetch(URL, destination)

    assert result.ok is False
    assert result.error.kind == "download_failed"
    assert result.error.status_code == 404
    assert len(get_requests(requests_mock)) == 1
    no_sleep.assert_not_called()
    assert not destination.exists()


def test_incomplete_transfer_never_publishes_partial_file(engine, destination, requests_mock, no_sleep):
    requests_mock.head(URL, headers={"ETag": '"v1"', "Content-Length": "10"})
    requests_mock.get(URL, content=CONTENT[:4], headers={"Content-Length": "10"})

    result = engine.fetch(URL, destination)

    assert result.ok is False
    assert len(get_requests(requests_mock)) == 3
    assert not destination.exists()
    assert not (destination.parent / "model.gguf.etag").exists()


def test_rename_failure_is_reported(engine, destination, requests_mock, mocker):
    mock_remote(requests_mock)
    mocker.patch("modelpull.runtime.downloader.os.replace", side_effect=OSError("permission denied"))

    result = engine.fetch(URL, destination)

    assert result.ok is False
    assert result.error.kind == "filesystem"
    assert not destination.exists()


# --- Helpers ---

@pytest.mark.parametrize("url, expected", [
    ("https://user:pw@files.test/model.gguf", "https://********@files.test/model.gguf"),
    ("https://files.test/model.gguf?x=1", "https://files.test/model.gguf?x=1"),
])
def test_mask_url(url, expected):
    assert mask_url(url) == expected
