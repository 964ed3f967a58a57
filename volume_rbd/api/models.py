"""
Pydantic models for the Docker volume plugin protocol.

Field names follow the protocol's capitalized JSON keys.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# Requests


class NameRequest(BaseModel):
    """Request carrying only a volume name (Remove, Path, Get)."""

    Name: str = Field(..., min_length=1, description="Volume name")


class CreateRequest(NameRequest):
    """Request model for VolumeDriver.Create."""

    Opts: Optional[Dict[str, Any]] = Field(None, description="Options given with `docker volume create -o`")


class MountRequest(NameRequest):
    """Request model for VolumeDriver.Mount and VolumeDriver.Unmount."""

    ID: str = Field("", description="Caller ID, unique per mount")


# Responses


class ActivateResponse(BaseModel):
    Implements: List[str]


class ErrResponse(BaseModel):
    """Response for calls that return nothing but an error string."""

    Err: str = ""


class MountpointResponse(ErrResponse):
    Mountpoint: str = ""


class VolumeInfo(BaseModel):
    Name: str
    Mountpoint: str = ""
    Status: Optional[Dict[str, Any]] = None


class GetResponse(ErrResponse):
    Volume: VolumeInfo


class ListResponse(ErrResponse):
    Volumes: List[VolumeInfo]


class Capability(BaseModel):
    Scope: str = "global"


class CapabilitiesResponse(BaseModel):
    Capabilities: Capability
