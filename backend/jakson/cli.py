"""
Jakson — Command-Line Interface
=================================

Usage:
    jakson new --name my-service --author "Jane Doe"
    jakson version
"""

from pathlib import Path
from typing import Optional

import typer

from jakson import __version__
from jakson.scaffold import ProjectOptions, ScaffoldError, create_project

app = typer.Typer(
    name="jakson",
    help="Jakson - HTTP application framework",
    add_completion=False,
    no_args_is_help=True,
)


@app.command()
def new(
    name: str = typer.Option(..., "--name", "-n", help="Name of the project"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Author of the project"),
    directory: Path = typer.Option(
        Path("."), "--directory", "-d", help="Directory to create the project in"
    ),
):
    """Create a new project from the built-in templates."""
    options = ProjectOptions(name=name, author=author, directory=directory)

    typer.echo("creating files")
    try:
        written = create_project(options)
    except ScaffoldError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(1)

    for path in written:
        typer.echo(f"  {path}")

    typer.echo("")
    typer.echo("next steps:")
    typer.echo('  pip install -e ".[test]"')
    typer.echo("  pytest")
    typer.echo(f"  python -m {options.package}.main development")


@app.command()
def version():
    """Print the installed Jakson version."""
    typer.echo(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
