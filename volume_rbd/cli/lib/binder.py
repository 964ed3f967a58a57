"""
Host-side attach and detach of rbd images.

Attach is a sequence of steps (map, mkdir, mkfs, mount). Each completed step
that changed the host pushes a compensating action; when a later step fails
the actions run newest first, so the host is left as it was found.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, List, Optional, Tuple

from volume_rbd.cli.lib import filesystem, rbd
from volume_rbd.cli.lib.config import VolumeRbdConfig, load_config
from volume_rbd.exceptions import DeviceError, VolumeRbdException

logger = logging.getLogger(__name__)


class CompensationStack:
    """Ordered list of undo actions for a partially completed sequence."""

    def __init__(self) -> None:
        self._actions: List[Tuple[str, Callable[[], None]]] = []

    def push(self, description: str, action: Callable[[], None]) -> None:
        self._actions.append((description, action))

    @property
    def descriptions(self) -> List[str]:
        return [description for description, _ in self._actions]

    def unwind(self) -> List[str]:
        """
        Run the actions newest first.

        A failing action is logged and the remaining ones still run.

        Returns:
            Descriptions of the actions that failed
        """
        failed = []
        while self._actions:
            description, action = self._actions.pop()
            try:
                action()
            except VolumeRbdException as e:
                logger.error("volume-rbd Message=rollback step %r failed: %s", description, e)
                failed.append(description)
        return failed


class DeviceBinder:
    """Maps, formats and mounts rbd images under a fixed mount root."""

    def __init__(self, cfg: Optional[VolumeRbdConfig] = None):
        self.cfg = cfg or load_config()

    def mountpoint_for(self, name: str) -> str:
        return os.path.join(self.cfg.mount_root, name)

    def attach(self, pool: str, name: str, fstype: str) -> Tuple[str, str]:
        """
        Map an image and mount it at its mountpoint.

        An existing mapping is reused and only an unformatted device gets a
        filesystem.

        Returns:
            Tuple of (device, mountpoint)

        Raises:
            DeviceError: If any step fails; completed steps are undone first
        """
        mountpoint = self.mountpoint_for(name)
        undo = CompensationStack()

        try:
            existing = rbd.find_mapped_devices(pool, name, self.cfg)
            if existing:
                device = existing[0]
                logger.info("volume-rbd Name=%s Message=reusing mapped device %s", name, device)
            else:
                device = rbd.map_image(pool, name, self.cfg)
                undo.push(f"unmap {device}", lambda: rbd.unmap_device(device, self.cfg))

            if filesystem.ensure_filesystem(device, fstype):
                logger.info("volume-rbd Name=%s Message=created %s filesystem on %s", name, fstype, device)

            filesystem.mount_device(device, mountpoint, fstype)
        except DeviceError as e:
            failed = undo.unwind()
            if failed:
                raise DeviceError(f"{e} (rollback incomplete: {', '.join(failed)})") from e
            raise

        return device, mountpoint

    def detach(self, pool: str, name: str, mountpoint: str = "") -> None:
        """
        Unmount and unmap an image. Nothing mounted or mapped is a no-op.

        Raises:
            DeviceError: If unmounting or unmapping fails
        """
        paths = [p for p in (mountpoint, self.mountpoint_for(name)) if p]
        for path in dict.fromkeys(paths):
            filesystem.umount(path)

        for device in rbd.find_mapped_devices(pool, name, self.cfg):
            rbd.unmap_device(device, self.cfg)
            logger.info("volume-rbd Name=%s Message=unmapped %s", name, device)
