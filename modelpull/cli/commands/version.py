import importlib.metadata

import typer

from modelpull.internal.logging import get_logger

logger = get_logger(__name__)


def version():
    """
    Show the modelpull version.
    """
    try:
        # Only available once the package is installed
        package_version = importlib.metadata.version("modelpull")
    except importlib.metadata.PackageNotFoundError:
        typer.echo("modelpull is not installed or version metadata not found.")
        typer.echo("Please install the package first (e.g., pip install . or pip install -e .)")
        logger.warning("modelpull package version not found.")
        raise typer.Exit(1)
    typer.echo(f"modelpull version: {package_version}")


if __name__ == "__main__":
    typer.run(version)
