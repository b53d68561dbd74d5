from pathlib import Path
from typing import Optional

import typer

from modelpull.cli import core
from modelpull.internal.logging import get_logger

logger = get_logger(__name__)


def pull_url(
    url: str = typer.Argument(..., help="Direct URL of the model file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Local path (default: file name in the cache)."),
    offline: bool = typer.Option(False, "--offline", help="Only use files already in the cache."),
    token: Optional[str] = typer.Option(None, "--token", help="Bearer token for the download."),
    header: Optional[list[str]] = typer.Option(None, "--header", "-H", help="Extra request header, NAME:VALUE."),
):
    """
    Download a model file from a direct URL.
    """
    try:
        headers = core.parse_headers(header)
    except ValueError as exc:
        core.console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    service = core.build_service(offline=offline, token=token)
    result = service.pull_url(url, path=output, headers=headers)
    if not core.report(result):
        raise typer.Exit(1)


def pull(
    ref: str = typer.Argument(..., help="Hub reference, owner/model[:tag]."),
    offline: bool = typer.Option(False, "--offline", help="Resolve from the cached manifest only."),
    token: Optional[str] = typer.Option(None, "--token", help="Hub access token (default: HF_TOKEN)."),
):
    """
    Download a model from the model hub.
    """
    service = core.build_service(offline=offline, token=token)
    result = service.pull_hub(ref)
    if not core.report(result):
        raise typer.Exit(1)


def pull_docker(
    ref: str = typer.Argument(..., help="Docker Hub model, [namespace/]name[:tag]."),
):
    """
    Download a GGUF model published on Docker Hub.
    """
    service = core.build_service()
    result = service.pull_oci(ref)
    if not core.report(result):
        raise typer.Exit(1)
