import typer

from ocpctl import __version__
from ocpctl.cli.cache import cache_app
from ocpctl.cli.cluster import cluster_app
from ocpctl.logger import setup_logger


def version_callback(version: bool) -> None:
    if version:
        typer.echo(f"ocpctl CLI Version: {__version__}")
        raise typer.Exit()


cli = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})


@cli.callback()
def main_options(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
    log_level: str = typer.Option(
        "",
        "--log-level",
        envvar="OPENSHIFT_LOG_LEVEL",
        help="Log level: DEBUG, INFO, WARN or ERROR.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    setup_logger("DEBUG" if verbose else log_level)


cli.add_typer(cluster_app, name="cluster", help="Manage OpenShift clusters.")

cli.add_typer(cache_app, name="cache", help="Manage ccache build caches.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
