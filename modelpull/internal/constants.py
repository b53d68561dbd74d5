APP_NAME = "modelpull"

# The hub only includes "ggufFile" in manifest responses for this agent.
USER_AGENT = "llama-cpp"

# ---------------------------------------------------------------------
# Cache file naming
# ---------------------------------------------------------------------

ETAG_SUFFIX = ".etag"
LEGACY_METADATA_SUFFIX = ".json"
IN_PROGRESS_SUFFIX = ".downloadInProgress"
STAGING_SUFFIX = ".tmp"

MANIFEST_PREFIX = "manifest="
MANIFEST_SEPARATOR = "="
MANIFEST_EXTENSION = ".json"

# ---------------------------------------------------------------------
# Download engine
# ---------------------------------------------------------------------

MAX_DOWNLOAD_ATTEMPTS = 3
RETRY_BASE_SECONDS = 2
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

CONNECT_TIMEOUT_SECONDS = 30.0
READ_TIMEOUT_SECONDS = 300.0
API_TIMEOUT_SECONDS = 30.0

# Manifests and tokens are small JSON documents.
MAX_API_RESPONSE_BYTES = 10 * 1024 * 1024

# ---------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------

DEFAULT_MODEL_ENDPOINT = "https://huggingface.co/"
DEFAULT_HUB_TAG = "latest"

# ---------------------------------------------------------------------
# OCI / Docker registry
# ---------------------------------------------------------------------

DOCKER_AUTH_URL = "https://auth.docker.io/token"
DOCKER_AUTH_SERVICE = "registry.docker.io"
DOCKER_REGISTRY_URL = "https://registry-1.docker.io"
DOCKER_DEFAULT_NAMESPACE = "ai/"
DOCKER_DEFAULT_TAG = "latest"
DOCKER_MANIFEST_MEDIA_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
)
DOCKER_GGUF_MEDIA_TYPE = "application/vnd.docker.ai.gguf.v3"
GGUF_MEDIA_MARKER = "gguf"

# ---------------------------------------------------------------------
# GGUF splits
# ---------------------------------------------------------------------

GGUF_SPLIT_COUNT_KEY = "split.count"
GGUF_EXTENSION = ".gguf"
