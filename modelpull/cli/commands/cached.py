import typer
from rich.table import Table

from modelpull.cli import core


def list_cached():
    """
    List hub models with a cached manifest.
    """
    service = core.build_service()
    models = service.list_cached()

    if not models:
        core.console.print("[yellow]No cached models found.[/yellow]")
        core.console.print(f"[dim]Cache directory:[/dim] {service.config.cache_dir}")
        return

    table = Table(title="Cached Models")
    table.add_column("Model", style="cyan", no_wrap=True)
    table.add_column("Tag")
    table.add_column("Size", justify="right", style="green")

    for model in models:
        table.add_row(f"{model.user}/{model.model}", model.tag, core.format_size(model.size))
    core.console.print(table)


if __name__ == "__main__":
    typer.run(list_cached)
