"""
Input validation functions.
"""

import re
from typing import Any, Dict, Mapping, Optional

from volume_rbd.cli.lib.config import VolumeRbdConfig
from volume_rbd.exceptions import ConfigurationError

CREATE_OPTIONS = ("pool", "size", "order", "fstype")

_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")
_UINT_RE = re.compile(r"^[0-9]+$")
_INT_RE = re.compile(r"^[+-]?[0-9]+$")


def validate_name(name: str, kind: str = "Name") -> None:
    """
    Validate a volume or pool name.

    The name ends up as an rbd image spec component and as a directory under
    the mount root, so separators and whitespace are rejected.

    Args:
        name: Name to validate
        kind: Label used in error messages

    Raises:
        ConfigurationError: If name is invalid
    """
    if not name:
        raise ConfigurationError(f"{kind} cannot be empty")

    if len(name) > 128:
        raise ConfigurationError(f"{kind} must be between 1 and 128 characters")

    if not _NAME_RE.match(name):
        raise ConfigurationError(
            f"{kind} must start with alphanumeric and contain only alphanumeric, dots, underscores, or hyphens"
        )


def _parse_uint(key: str, raw: Any) -> int:
    value = str(raw).strip()
    if not _UINT_RE.match(value):
        raise ConfigurationError(f"unable to parse {key} int: {raw!r}")
    return int(value)


def _parse_int(key: str, raw: Any) -> int:
    value = str(raw).strip()
    if not _INT_RE.match(value):
        raise ConfigurationError(f"unable to parse {key} int: {raw!r}")
    return int(value)


def parse_create_options(
    options: Optional[Mapping[str, Any]], cfg: Optional[VolumeRbdConfig] = None
) -> Dict[str, Any]:
    """
    Turn Docker `--opt` values into volume attributes.

    Recognized keys are `pool` (required), `size` (MB), `order` and `fstype`.
    Range checks on size and order are left to the cluster, which reports them
    when the image is created.

    Returns:
        Dictionary with pool, size, order and fstype

    Raises:
        ConfigurationError: On an unknown key, an unparseable integer or a
            missing pool
    """
    cfg = cfg or VolumeRbdConfig()
    parsed: Dict[str, Any] = {
        "pool": "",
        "size": cfg.default_size,
        "order": cfg.default_order,
        "fstype": cfg.default_fstype,
    }

    for key, val in (options or {}).items():
        if key == "pool":
            parsed["pool"] = str(val).strip()
        elif key == "size":
            parsed["size"] = _parse_uint("size", val)
        elif key == "order":
            parsed["order"] = _parse_int("order", val)
        elif key == "fstype":
            fstype = str(val).strip()
            if not fstype:
                raise ConfigurationError("fstype cannot be empty")
            parsed["fstype"] = fstype
        else:
            raise ConfigurationError(f"unknown option {key!r}")

    if not parsed["pool"]:
        raise ConfigurationError("pool option required")
    validate_name(parsed["pool"], kind="Pool")

    return parsed
