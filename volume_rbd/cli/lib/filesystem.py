"""
Filesystem management functions (blkid, mkfs, mount, umount).
"""

import os
import subprocess
from typing import Optional

from volume_rbd.exceptions import DeviceError

# blkid exit status when the device carries no recognizable signature
BLKID_NOT_FOUND = 2


def detect_fstype(device: str) -> Optional[str]:
    """
    Return the filesystem type on a device, or None if it is unformatted.

    Args:
        device: Device path (e.g., "/dev/rbd0")

    Raises:
        DeviceError: If the device cannot be probed
    """
    result = subprocess.run(
        ["blkid", "-o", "value", "-s", "TYPE", device],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode == BLKID_NOT_FOUND:
        return None

    if result.returncode != 0:
        raise DeviceError(f"Failed to probe {device}: {result.stderr.strip()}")

    return result.stdout.strip() or None


def make_filesystem(device: str, fstype: str) -> None:
    """
    Create a filesystem on a device.

    Args:
        device: Device path
        fstype: Filesystem type passed to mkfs (e.g., "ext4", "xfs")

    Raises:
        DeviceError: If mkfs fails
    """
    result = subprocess.run(
        ["mkfs", "-t", fstype, device],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise DeviceError(f"Failed to create {fstype} filesystem on {device}: {result.stderr.strip()}")


def ensure_filesystem(device: str, fstype: str) -> bool:
    """
    Create a filesystem only if the device has none.

    An existing filesystem is never reformatted, even if its type differs
    from `fstype`.

    Returns:
        True if a filesystem was created
    """
    if detect_fstype(device):
        return False
    make_filesystem(device, fstype)
    return True


def is_mounted(mount_point: str) -> bool:
    result = subprocess.run(
        ["mountpoint", "-q", mount_point],
        capture_output=True,
        text=True,
        check=False
    )
    return result.returncode == 0


def mount_device(device: str, mount_point: str, fstype: Optional[str] = None) -> None:
    """
    Mount a block device.

    Args:
        device: Device path
        mount_point: Mount point directory, created if missing
        fstype: Filesystem type, autodetected by mount when None

    Raises:
        DeviceError: If mounting fails
    """
    try:
        os.makedirs(mount_point, exist_ok=True)
    except OSError as e:
        raise DeviceError(f"Failed to create mount point {mount_point}: {e}") from e

    if is_mounted(mount_point):
        # Already mounted, skip
        return

    cmd = ["mount"]
    if fstype:
        cmd.extend(["-t", fstype])
    cmd.extend([device, mount_point])

    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise DeviceError(f"Failed to mount {device} at {mount_point}: {result.stderr.strip()}")


def umount(mount_point: str) -> None:
    """
    Unmount a filesystem. Not being mounted is not an error.

    Raises:
        DeviceError: If unmounting fails
    """
    if not is_mounted(mount_point):
        return

    result = subprocess.run(
        ["umount", mount_point],
        capture_output=True,
        text=True,
        check=False
    )

    if result.returncode != 0:
        raise DeviceError(f"Failed to unmount {mount_point}: {result.stderr.strip()}")
