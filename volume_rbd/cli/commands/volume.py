"""
Volume management commands.

These drive the same lifecycle driver as the plugin server, for operators
working on a host directly. Do not run them while the server is handling
requests for the same volumes; the two processes do not share a lock.
"""

from typing import Optional

import typer

from volume_rbd.driver import RbdVolumeDriver
from volume_rbd.exceptions import VolumeRbdException

app = typer.Typer(help="Volume management commands")


def _driver() -> RbdVolumeDriver:
    return RbdVolumeDriver()


@app.command()
def create(
    name: str = typer.Argument(..., help="Volume name"),
    pool: str = typer.Option(..., "--pool", help="Ceph pool"),
    size: Optional[int] = typer.Option(None, "--size", help="Size in MB (default: 512)"),
    order: Optional[int] = typer.Option(None, "--order", help="Object size exponent (default: 22)"),
    fstype: Optional[str] = typer.Option(None, "--fstype", help="Filesystem type (default: ext4)"),
):
    """
    Create a volume and its rbd image.
    """
    options = {"pool": pool}
    if size is not None:
        options["size"] = str(size)
    if order is not None:
        options["order"] = str(order)
    if fstype is not None:
        options["fstype"] = fstype

    try:
        typer.echo(f"Creating volume: {name} in pool: {pool}")
        _driver().create(name, options)
        typer.echo(f"Volume {name} created successfully")
    except VolumeRbdException as e:
        typer.echo(f"Error creating volume: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def mount(name: str = typer.Argument(..., help="Volume name")):
    """
    Map and mount a volume.
    """
    try:
        volume = _driver().mount(name)
        typer.echo(f"Volume {name} mounted at {volume.mountpoint} ({volume.device})")
    except VolumeRbdException as e:
        typer.echo(f"Error mounting volume: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def unmount(name: str = typer.Argument(..., help="Volume name")):
    """
    Unmount and unmap a volume.
    """
    try:
        _driver().unmount(name)
        typer.echo(f"Volume {name} unmounted")
    except VolumeRbdException as e:
        typer.echo(f"Error unmounting volume: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def remove(name: str = typer.Argument(..., help="Volume name")):
    """
    Remove a volume and delete its rbd image.
    """
    try:
        _driver().remove(name)
        typer.echo(f"Volume {name} removed successfully")
    except VolumeRbdException as e:
        typer.echo(f"Error removing volume: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def inspect(name: str = typer.Argument(..., help="Volume name")):
    """
    Show the recorded state of a volume.
    """
    try:
        volume = _driver().get(name)
    except VolumeRbdException as e:
        typer.echo(f"Error inspecting volume: {e}", err=True)
        raise typer.Exit(1)

    for key, value in volume.to_dict().items():
        typer.echo(f"{key}: {value}")


@app.command("list")
def list_volumes():
    """
    List volumes.
    """
    try:
        volumes = _driver().list()
    except VolumeRbdException as e:
        typer.echo(f"Error listing volumes: {e}", err=True)
        raise typer.Exit(1)

    if not volumes:
        typer.echo("No volumes found")
        return
    for vol in volumes:
        typer.echo(f"{vol.pool}/{vol.name} size={vol.size}MB fstype={vol.fstype} mount={vol.mountpoint or '-'}")
