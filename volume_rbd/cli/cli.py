#!/usr/bin/env python3
"""
Main CLI entry point using Typer.
"""

import sys
from typing import Optional

import typer

from volume_rbd.cli.commands import volume

app = typer.Typer(
    name="volume-rbd",
    help="Docker RBD volume plugin control tool",
    add_completion=False,
)

app.add_typer(volume.app, name="volume", help="Volume management commands")


@app.command()
def serve(
    socket: Optional[str] = typer.Option(None, "--socket", help="Plugin unix socket (default: from config)"),
    log_level: str = typer.Option("info", "--log-level", help="Log level"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write logs to this file"),
):
    """
    Run the plugin server for the Docker engine.
    """
    from volume_rbd.api.server import serve as run_server

    raise typer.Exit(run_server(socket, log_level, log_file))


def main() -> int:
    """Main entry point."""
    try:
        app()
        return 0
    except KeyboardInterrupt:
        typer.echo("\nOperation cancelled by user", err=True)
        return 130
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
