import os
from pathlib import Path

from modelpull.internal.constants import APP_NAME


# ---------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------

def get_app_data_dir() -> Path:
    """
    Returns the application data directory.

    - Windows: %APPDATA%\\modelpull
    - Linux/macOS: ~/.modelpull
    """
    if os.name == "nt":  # Windows
        base = os.environ.get("APPDATA", str(Path.home()))
        path = Path(base) / APP_NAME
    else:  # Linux / macOS
        path = Path.home() / f".{APP_NAME}"

    path.mkdir(parents=True, exist_ok=True)
    return path


def get_log_dir() -> Path:
    path = get_app_data_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_log_file() -> Path:
    return get_log_dir() / f"{APP_NAME}.log.json"


# ---------------------------------------------------------------------
# Model cache
# ---------------------------------------------------------------------

def get_cache_dir() -> Path:
    """
    Directory holding downloaded artifacts and cached manifests.

    MODELPULL_CACHE wins; otherwise the platform cache location is used.
    """
    override = os.environ.get("MODELPULL_CACHE")
    if override:
        path = Path(override).expanduser()
    elif os.name == "nt":
        base = os.environ.get("LOCALAPPDATA", str(Path.home()))
        path = Path(base) / APP_NAME
    else:
        base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
        path = Path(base) / APP_NAME

    path.mkdir(parents=True, exist_ok=True)
    return path


# ---------------------------------------------------------------------
# Debug
# ---------------------------------------------------------------------

if __name__ == "__main__":
    print("App Data Dir:", get_app_data_dir())
    print("Log File:", get_log_file())
    print("Cache Dir:", get_cache_dir())
