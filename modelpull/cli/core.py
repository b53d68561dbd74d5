"""
Core, reusable logic for CLI commands, decoupled from Typer.
"""
from typing import Optional

from rich.console import Console

from modelpull.internal import paths
from modelpull.internal.config import PullConfig
from modelpull.internal.logging import get_logger, setup_logging
from modelpull.kernel.contracts import PullResult
from modelpull.kernel.service import ModelPullService

console = Console()
logger = get_logger(__name__)

# ---------------------------------------------------------------------
# Failure hints, keyed by error kind
# ---------------------------------------------------------------------

HINTS = {
    "unauthorized": "Provide a valid token with --token or the HF_TOKEN environment variable.",
    "offline_unavailable": "Run again without --offline (and unset MODELPULL_OFFLINE) to download it.",
    "network": "Check your internet connection and try again.",
    "malformed_input": "Check the reference format, e.g. owner/model[:tag].",
    "not_found": "The manifest does not reference a GGUF file; try another tag.",
    "filesystem": "Check that the cache directory is writable (MODELPULL_CACHE).",
}

# ---------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------

def build_service(offline: bool = False, token: Optional[str] = None) -> ModelPullService:
    """
    Configure logging and build a service from the environment, with the
    command's flags taking precedence.
    """
    setup_logging(log_file_path=paths.get_log_file(), console_output=False)

    config = PullConfig.from_env()
    config.offline = config.offline or offline
    config.token = token or config.token
    logger.debug("CLI configuration loaded", cache_dir=str(config.cache_dir), offline=config.offline)
    return ModelPullService(config)


def parse_headers(values: Optional[list[str]]) -> dict:
    """
    ``["Name: value", ...]`` -> ``{"Name": "value", ...}``.
    """
    headers = {}
    for value in values or []:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"invalid header '{value}', expected NAME:VALUE")
        headers[name.strip()] = content.strip()
    return headers

# ---------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------

def report(result: PullResult) -> bool:
    """
    Print the outcome of a pull. Returns True on success.
    """
    if result.ok:
        console.print(f"[green]Model '{result.ref}' is ready.[/green]")
        console.print(f"[dim]Model path:[/dim] {result.path}")
        if result.companion_path:
            console.print(f"[dim]Projector path:[/dim] {result.companion_path}")
        return True

    console.print(f"[red]Pull failed ({result.error_kind}):[/red] {result.error}")
    hint = HINTS.get(result.error_kind or "")
    if hint:
        console.print(f"[yellow]Hint:[/yellow] {hint}")
    return False


def format_size(size: int) -> str:
    if size <= 0:
        return "-"
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024:
            break
    return f"{value:.2f} {unit}"
