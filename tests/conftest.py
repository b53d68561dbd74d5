import pytest

from modelpull.internal.config import PullConfig

HUB_ENDPOINT = "https://hub.test/"


# --- Shared Fixtures ---

@pytest.fixture
def cache_dir(tmp_path):
    """A fresh, empty cache directory."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def pull_config(cache_dir):
    """Configuration pointing at the temporary cache and a fake hub."""
    return PullConfig(cache_dir=cache_dir, model_endpoint=HUB_ENDPOINT)


@pytest.fixture
def no_sleep(mocker):
    """Patch the retry backoff so tests run instantly; yields the mock."""
    return mocker.patch("modelpull.runtime.downloader.time.sleep")
