"""
Command Line Interface for GeoDetect using Typer.
"""

import typer
from rich.console import Console

from .. import __version__
from .commands import core_commands

# Create Typer app
app = typer.Typer(
    name="geodetect",
    help="GeoDetect - Sliding window detection on georeferenced rasters",
    add_completion=True,
)

console = Console()


def raise_exit():
    """Raise typer exit."""
    raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        callback=lambda value: (
            print(f"geodetect version: {__version__}") or raise_exit()
        )
        if value
        else None,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    """GeoDetect - Sliding window detection on georeferenced rasters"""
    pass


app.command()(core_commands.detect)
app.command()(core_commands.landcover)
app.command()(core_commands.info)

if __name__ == "__main__":
    app()
