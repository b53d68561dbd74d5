import typer

from modelpull.cli.commands import (
    cached,
    pull,
    version,
)

app = typer.Typer(
    name="modelpull",
    help="Fetch and cache GGUF models from URLs, the model hub and Docker Hub.",
    no_args_is_help=True,
)

app.command("pull-url")(pull.pull_url)
app.command("pull")(pull.pull)
app.command("pull-docker")(pull.pull_docker)
app.command("list")(cached.list_cached)
app.command("version")(version.version)

if __name__ == "__main__":
    app()
