"""
Ceph RBD management functions.

All cluster access goes through the `rbd` command line tool. `RbdSession`
scopes the image operations to one pool; the map/unmap helpers are used by the
device binder on the local host.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, Dict, List, Optional, Type

from volume_rbd.cli.lib.config import VolumeRbdConfig, load_config
from volume_rbd.cli.lib.filesystem import make_filesystem
from volume_rbd.cli.lib.retry import RetryPolicy
from volume_rbd.exceptions import (
    ClusterConnectionError,
    ClusterOperationError,
    DeviceError,
    VolumeRbdException,
)

logger = logging.getLogger(__name__)

NOT_FOUND_MARKERS = ("No such file or directory", "(2)")
BUSY_MARKERS = ("Device or resource busy", "(16)", "image still has watchers", "EBUSY")


def is_not_found(stderr: str) -> bool:
    return any(marker in stderr for marker in NOT_FOUND_MARKERS)


def is_busy_error(exc: Exception) -> bool:
    """True for rbd errors that clear up once the kernel releases the image."""
    if not isinstance(exc, ClusterOperationError):
        return False
    return any(marker in exc.stderr for marker in BUSY_MARKERS)


def _base_args(cfg: VolumeRbdConfig) -> List[str]:
    args = ["rbd", "--id", cfg.ceph_user, "--cluster", cfg.ceph_cluster]
    if cfg.ceph_conf:
        args.extend(["--conf", cfg.ceph_conf])
    return args


def _run_rbd(
    cfg: VolumeRbdConfig, args: List[str], error_cls: Type[VolumeRbdException]
) -> subprocess.CompletedProcess:
    cmd = _base_args(cfg) + args
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
            timeout=cfg.command_timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise error_cls(f"rbd {args[0]} timed out after {cfg.command_timeout}s") from e
    except OSError as e:
        raise error_cls(f"unable to run rbd: {e}") from e


def map_image(pool: str, name: str, cfg: Optional[VolumeRbdConfig] = None) -> str:
    """
    Map an image to a kernel block device.

    Returns:
        Device path printed by rbd (e.g., "/dev/rbd0")

    Raises:
        DeviceError: If mapping fails
    """
    cfg = cfg or load_config()
    result = _run_rbd(cfg, ["map", "--pool", pool, name], DeviceError)

    if result.returncode != 0:
        raise DeviceError(f"Failed to map rbd image {pool}/{name}: {result.stderr.strip()}")

    device = result.stdout.strip()
    if not device:
        raise DeviceError(f"rbd map {pool}/{name} returned no device")
    return device


def unmap_device(device: str, cfg: Optional[VolumeRbdConfig] = None) -> None:
    """
    Unmap a kernel rbd device.

    Raises:
        DeviceError: If unmapping fails
    """
    cfg = cfg or load_config()
    result = _run_rbd(cfg, ["unmap", device], DeviceError)

    if result.returncode != 0:
        raise DeviceError(f"Failed to unmap {device}: {result.stderr.strip()}")


def showmapped(cfg: Optional[VolumeRbdConfig] = None) -> List[Dict[str, Any]]:
    """
    List images mapped on this host.

    Newer Ceph releases print a JSON list, older ones an object keyed by
    device id; both are returned as a list of dicts.
    """
    cfg = cfg or load_config()
    result = _run_rbd(cfg, ["showmapped", "--format", "json"], DeviceError)

    if result.returncode != 0:
        raise DeviceError(f"Failed to list mapped rbd devices: {result.stderr.strip()}")

    output = result.stdout.strip()
    if not output:
        return []
    try:
        data = json.loads(output)
    except ValueError as e:
        raise DeviceError(f"Unable to parse rbd showmapped output: {e}") from e

    if isinstance(data, dict):
        return list(data.values())
    return data


def find_mapped_devices(pool: str, name: str, cfg: Optional[VolumeRbdConfig] = None) -> List[str]:
    """Return the devices currently mapped from `pool/name`."""
    return [
        m["device"]
        for m in showmapped(cfg)
        if m.get("pool") == pool and m.get("name") == name and m.get("device")
    ]


class RbdSession:
    """
    Connection scope for one Ceph pool.

    Use as a context manager so that `shutdown()` runs on every exit path:

        with RbdSession("rbd") as session:
            if not session.image_exists("data1"):
                session.create_image("data1", 512, 22, "ext4")
    """

    def __init__(
        self,
        pool: str,
        cfg: Optional[VolumeRbdConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.pool = pool
        self.cfg = cfg or load_config()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.cfg.remove_retries,
            delay=self.cfg.remove_retry_delay,
            retryable=is_busy_error,
        )
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def __enter__(self) -> "RbdSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def connect(self) -> None:
        """
        Check that the cluster answers and the pool exists.

        Raises:
            ClusterConnectionError: If the pool cannot be reached
        """
        result = _run_rbd(self.cfg, ["ls", "--pool", self.pool], ClusterConnectionError)
        if result.returncode != 0:
            raise ClusterConnectionError(
                f"unable to connect to ceph pool {self.pool}: {result.stderr.strip()}"
            )
        self._connected = True
        logger.debug("volume-rbd Pool=%s Message=connected", self.pool)

    def shutdown(self) -> None:
        if self._connected:
            logger.debug("volume-rbd Pool=%s Message=session closed", self.pool)
        self._connected = False

    def _require_connection(self) -> None:
        if not self._connected:
            raise ClusterConnectionError(f"no open session on ceph pool {self.pool}")

    def image_exists(self, name: str) -> bool:
        """
        Check whether an image exists in the pool.

        Raises:
            ClusterOperationError: If existence could not be determined
        """
        self._require_connection()
        result = _run_rbd(self.cfg, ["info", "--pool", self.pool, name], ClusterOperationError)

        if result.returncode == 0:
            return True
        if is_not_found(result.stderr):
            return False
        raise ClusterOperationError(
            f"unable to check rbd image {self.pool}/{name}: {result.stderr.strip()}", result.stderr
        )

    def create_image(self, name: str, size: int, order: int, fstype: Optional[str] = None) -> None:
        """
        Create an image and, when `fstype` is given, an initial filesystem.

        Args:
            name: Image name
            size: Size in MB
            order: Object size exponent
            fstype: Filesystem to create on the new image

        Raises:
            ClusterOperationError: If creation or formatting fails
        """
        self._require_connection()
        result = _run_rbd(
            self.cfg,
            [
                "create",
                "--pool", self.pool,
                "--size", str(size),
                "--order", str(order),
                "--image-feature", "layering",
                name,
            ],
            ClusterOperationError,
        )

        if result.returncode != 0:
            raise ClusterOperationError(
                f"unable to create rbd image {self.pool}/{name}: {result.stderr.strip()}", result.stderr
            )

        if fstype:
            self._format_image(name, fstype)

    def _format_image(self, name: str, fstype: str) -> None:
        try:
            device = map_image(self.pool, name, self.cfg)
        except DeviceError as e:
            raise ClusterOperationError(f"unable to map new rbd image {self.pool}/{name}: {e}") from e

        error: Optional[ClusterOperationError] = None
        try:
            make_filesystem(device, fstype)
        except DeviceError as e:
            error = ClusterOperationError(f"unable to format new rbd image {self.pool}/{name}: {e}")

        try:
            unmap_device(device, self.cfg)
        except DeviceError as e:
            if error is None:
                error = ClusterOperationError(f"unable to unmap new rbd image {self.pool}/{name}: {e}")
            else:
                logger.error("volume-rbd Name=%s Message=unmap after failed format also failed: %s", name, e)

        if error is not None:
            raise error

    def remove_image(self, name: str) -> None:
        """
        Remove an image once. A missing image counts as removed.

        Raises:
            ClusterOperationError: If removal fails
        """
        self._require_connection()
        result = _run_rbd(self.cfg, ["rm", "--no-progress", "--pool", self.pool, name], ClusterOperationError)

        if result.returncode == 0:
            return
        if is_not_found(result.stderr):
            logger.info("volume-rbd Name=%s Message=rbd image already removed", name)
            return
        raise ClusterOperationError(
            f"unable to remove rbd image {self.pool}/{name}: {result.stderr.strip()}", result.stderr
        )

    def remove_image_with_retries(self, name: str) -> None:
        """
        Remove an image, retrying while the cluster reports it busy.

        Raises:
            ClusterOperationError: On a non-busy error, or once the retry
                bound is exhausted
        """
        self.retry_policy.call(lambda: self.remove_image(name), description=f"rbd rm {self.pool}/{name}")
