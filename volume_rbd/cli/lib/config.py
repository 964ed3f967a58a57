"""
Configuration loader for the RBD volume plugin.

Ceph credentials, the mount root and the retry bounds differ per host, so they
are read from an INI file instead of being hardcoded.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_PATH = Path("/etc/docker-volume-rbd/plugin.conf")
DEFAULT_SOCKET_PATH = "/run/docker/plugins/rbd.sock"


@dataclass(frozen=True)
class VolumeRbdConfig:
    state_dir: Optional[Path] = None
    mount_root: str = "/mnt/volumes"
    socket_path: str = DEFAULT_SOCKET_PATH
    ceph_user: str = "admin"
    ceph_cluster: str = "ceph"
    ceph_conf: Optional[str] = None
    command_timeout: int = 60
    remove_retries: int = 5
    remove_retry_delay: float = 1.0
    default_fstype: str = "ext4"
    default_size: int = 512  # MB
    default_order: int = 22  # 4MB objects


def _config_path() -> Path:
    env = os.environ.get("VOLUME_RBD_CONFIG_PATH")
    if env:
        return Path(env)
    return DEFAULT_CONFIG_PATH


def _read_ini(path: Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path, encoding="utf-8")
    return parser


def load_config() -> VolumeRbdConfig:
    """
    Load config from `VOLUME_RBD_CONFIG_PATH` or
    `/etc/docker-volume-rbd/plugin.conf`, section `[rbd]`.

    Missing files are not an error; defaults are returned.
    """
    parser = _read_ini(_config_path())
    section = parser["rbd"] if parser.has_section("rbd") else {}

    def _get(key: str, default: str) -> str:
        if isinstance(section, dict):
            return str(section.get(key, default)).strip()
        return str(section.get(key, fallback=default)).strip()

    def _get_int(key: str, default: int) -> int:
        raw = _get(key, str(default))
        try:
            return int(raw)
        except ValueError:
            return default

    def _get_float(key: str, default: float) -> float:
        raw = _get(key, str(default))
        try:
            return float(raw)
        except ValueError:
            return default

    state_dir_raw = _get("state_dir", "")
    ceph_conf_raw = _get("ceph_conf", "")

    return VolumeRbdConfig(
        state_dir=Path(state_dir_raw) if state_dir_raw else None,
        mount_root=_get("mount_root", "/mnt/volumes").rstrip("/") or "/",
        socket_path=_get("socket_path", DEFAULT_SOCKET_PATH),
        ceph_user=_get("ceph_user", "admin"),
        ceph_cluster=_get("ceph_cluster", "ceph"),
        ceph_conf=ceph_conf_raw or None,
        command_timeout=max(1, _get_int("command_timeout", 60)),
        remove_retries=max(1, _get_int("remove_retries", 5)),
        remove_retry_delay=max(0.0, _get_float("remove_retry_delay", 1.0)),
        default_fstype=_get("default_fstype", "ext4"),
        default_size=_get_int("default_size", 512),
        default_order=_get_int("default_order", 22),
    )
