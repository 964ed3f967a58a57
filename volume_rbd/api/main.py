"""
FastAPI application implementing the Docker volume plugin protocol.

Docker posts JSON to `/Plugin.Activate` and `/VolumeDriver.*` over a unix
socket. Bodies arrive with a vendor content type and are sometimes empty, so
they are decoded from the raw request instead of through FastAPI's body
parsing.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from volume_rbd.api.models import (
    ActivateResponse,
    CapabilitiesResponse,
    CreateRequest,
    ErrResponse,
    GetResponse,
    ListResponse,
    MountpointResponse,
    MountRequest,
    NameRequest,
    VolumeInfo,
)
from volume_rbd.driver import RbdVolumeDriver, Volume
from volume_rbd.exceptions import ConfigurationError, VolumeRbdException

PLUGIN_MEDIA_TYPE = "application/vnd.docker.plugins.v1+json"

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class PluginResponse(JSONResponse):
    media_type = PLUGIN_MEDIA_TYPE


app = FastAPI(
    title="docker-volume-rbd",
    description="Docker volume plugin backed by Ceph RBD images",
    version="0.1.0",
    default_response_class=PluginResponse,
)


@lru_cache(maxsize=1)
def get_driver() -> RbdVolumeDriver:
    """Process-wide driver; its lock is what serializes the requests."""
    return RbdVolumeDriver()


@app.exception_handler(VolumeRbdException)
async def volume_exception_handler(request: Request, exc: VolumeRbdException) -> PluginResponse:
    return PluginResponse(status_code=500, content={"Err": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> PluginResponse:
    """Global exception handler."""
    logger.exception("Unhandled error (path=%s)", request.url.path)
    return PluginResponse(status_code=500, content={"Err": f"internal error: {exc}"})


async def _parse(request: Request, model: Type[M]) -> M:
    raw = await request.body()
    try:
        data = json.loads(raw) if raw.strip() else {}
        return model.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise ConfigurationError(f"invalid {request.url.path} request: {e}")


def _volume_info(volume: Volume, with_status: bool = False) -> VolumeInfo:
    status: Optional[Dict[str, Any]] = None
    if with_status:
        status = {
            "pool": volume.pool,
            "fstype": volume.fstype,
            "size": volume.size,
            "order": volume.order,
            "device": volume.device,
        }
    return VolumeInfo(Name=volume.name, Mountpoint=volume.mountpoint, Status=status)


@app.post("/Plugin.Activate", response_model=ActivateResponse)
def activate() -> Dict[str, Any]:
    return {"Implements": ["VolumeDriver"]}


@app.post("/VolumeDriver.Create", response_model=ErrResponse)
async def create_volume(request: Request, driver: RbdVolumeDriver = Depends(get_driver)) -> Dict[str, Any]:
    body = await _parse(request, CreateRequest)
    await run_in_threadpool(driver.create, body.Name, body.Opts or {})
    return {"Err": ""}


@app.post("/VolumeDriver.Remove", response_model=ErrResponse)
async def remove_volume(request: Request, driver: RbdVolumeDriver = Depends(get_driver)) -> Dict[str, Any]:
    body = await _parse(request, NameRequest)
    await run_in_threadpool(driver.remove, body.Name)
    return {"Err": ""}


@app.post("/VolumeDriver.Mount", response_model=MountpointResponse)
async def mount_volume(request: Request, driver: RbdVolumeDriver = Depends(get_driver)) -> Dict[str, Any]:
    body = await _parse(request, MountRequest)
    volume = await run_in_threadpool(driver.mount, body.Name)
    return {"Mountpoint": volume.mountpoint, "Err": ""}


@app.post("/VolumeDriver.Unmount", response_model=ErrResponse)
async def unmount_volume(request: Request, driver: RbdVolumeDriver = Depends(get_driver)) -> Dict[str, Any]:
    body = await _parse(request, MountRequest)
    await run_in_threadpool(driver.unmount, body.Name)
    return {"Err": ""}


@app.post("/VolumeDriver.Path", response_model=MountpointResponse)
async def volume_path(request: Request, driver: RbdVolumeDriver = Depends(get_driver)) -> Dict[str, Any]:
    body = await _parse(request, NameRequest)
    mountpoint = await run_in_threadpool(driver.path, body.Name)
    return {"Mountpoint": mountpoint, "Err": ""}


@app.post("/VolumeDriver.Get", response_model=GetResponse)
async def get_volume(request: Request, driver: RbdVolumeDriver = Depends(get_driver)) -> Dict[str, Any]:
    body = await _parse(request, NameRequest)
    volume = await run_in_threadpool(driver.get, body.Name)
    return {"Volume": _volume_info(volume, with_status=True), "Err": ""}


@app.post("/VolumeDriver.List", response_model=ListResponse)
async def list_volumes(driver: RbdVolumeDriver = Depends(get_driver)) -> Dict[str, Any]:
    volumes = await run_in_threadpool(driver.list)
    return {"Volumes": [_volume_info(v) for v in volumes], "Err": ""}


@app.post("/VolumeDriver.Capabilities", response_model=CapabilitiesResponse)
def capabilities(driver: RbdVolumeDriver = Depends(get_driver)) -> Dict[str, Any]:
    return {"Capabilities": driver.capabilities()}
