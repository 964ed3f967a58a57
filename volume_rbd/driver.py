"""
Volume lifecycle driver for Docker volumes backed by Ceph RBD images.

Every lifecycle call runs under one reader/writer lock: Get, Path and List
share it, everything that touches the cluster or the host takes it
exclusively. Within a call the order is fixed: read state, act on the
cluster/host, write state.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from oslo_concurrency import lockutils

from volume_rbd.cli.lib import state
from volume_rbd.cli.lib.binder import DeviceBinder
from volume_rbd.cli.lib.config import VolumeRbdConfig, load_config
from volume_rbd.cli.lib.rbd import RbdSession
from volume_rbd.cli.lib.validators import parse_create_options, validate_name
from volume_rbd.exceptions import StateStoreError, VolumeNotFound, VolumeRbdException

logger = logging.getLogger(__name__)


@dataclass
class Volume:
    """A Docker volume and the rbd image behind it."""

    name: str
    pool: str
    fstype: str = "ext4"
    size: int = 512  # MB
    order: int = 22
    mountpoint: str = ""
    device: str = ""

    @property
    def mounted(self) -> bool:
        return bool(self.mountpoint)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Volume":
        return cls(
            name=data["name"],
            pool=data["pool"],
            fstype=data.get("fstype", "ext4"),
            size=int(data.get("size", 512)),
            order=int(data.get("order", 22)),
            mountpoint=data.get("mountpoint", "") or "",
            device=data.get("device", "") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RbdVolumeDriver:
    """Serializes Docker volume requests against the state store, Ceph and the host."""

    def __init__(
        self,
        cfg: Optional[VolumeRbdConfig] = None,
        binder: Optional[DeviceBinder] = None,
        session_factory: Optional[Callable[[str], RbdSession]] = None,
    ):
        self.cfg = cfg or load_config()
        self.binder = binder or DeviceBinder(self.cfg)
        self.session_factory = session_factory or (lambda pool: RbdSession(pool, self.cfg))
        self._lock = lockutils.ReaderWriterLock()

    # Helpers

    @staticmethod
    def _error(cause: VolumeRbdException, name: str, request: str, message: str) -> VolumeRbdException:
        """Log a failure and return an error of the same kind with request context."""
        text = f"volume-rbd Name={name} Request={request} Message={message}: {cause}"
        logger.error("%s", text)
        return type(cause)(text)

    def _load(self, name: str, request: str) -> Volume:
        try:
            record = state.get_volume(name)
        except StateStoreError as e:
            raise self._error(e, name, request, "unable to get volume state")

        if record is None:
            text = f"volume-rbd Name={name} Request={request} Message=volume state not found"
            logger.error("%s", text)
            raise VolumeNotFound(text)
        return Volume.from_dict(record)

    def _save(self, volume: Volume, request: str) -> None:
        try:
            state.upsert_volume(volume.to_dict())
        except StateStoreError as e:
            raise self._error(e, volume.name, request, "unable to save volume state")

    @contextlib.contextmanager
    def _session(self, pool: str, name: str, request: str) -> Iterator[RbdSession]:
        session = self.session_factory(pool)
        try:
            session.connect()
        except VolumeRbdException as e:
            raise self._error(e, name, request, f"unable to connect to ceph pool {pool}")
        try:
            yield session
        finally:
            session.shutdown()

    # Lifecycle operations

    def create(self, name: str, options: Optional[Mapping[str, Any]] = None) -> Volume:
        """
        Create a volume, creating its rbd image if the pool does not have it.

        The record is written last, so a failure before that leaves at most an
        unused image in the cluster and never a record without an image. An
        existing record is kept as is (options included) and its image is
        recreated if it went missing.
        """
        logger.info("volume-rbd Name=%s Request=Create", name)

        with self._lock.write_lock():
            try:
                validate_name(name)
                opts = parse_create_options(options, self.cfg)
            except VolumeRbdException as e:
                raise self._error(e, name, "Create", "invalid volume options")

            try:
                existing = state.get_volume(name)
            except StateStoreError as e:
                raise self._error(e, name, "Create", "unable to get volume state")
            if existing is not None:
                volume = Volume.from_dict(existing)
                logger.info("volume-rbd Name=%s Request=Create Message=volume state exists, keeping it", name)
                if opts["pool"] != volume.pool:
                    logger.warning(
                        "volume-rbd Name=%s Request=Create Message=ignoring pool %s, volume is recorded in pool %s",
                        name,
                        opts["pool"],
                        volume.pool,
                    )
            else:
                volume = Volume(name=name, **opts)

            with self._session(volume.pool, name, "Create") as session:
                try:
                    exists = session.image_exists(name)
                except VolumeRbdException as e:
                    raise self._error(e, name, "Create", "unable to check if rbd image exists")

                if exists:
                    logger.warning(
                        "volume-rbd Name=%s Request=Create Message=skipping image create: ceph rbd image exists.",
                        name,
                    )
                else:
                    try:
                        session.create_image(name, volume.size, volume.order, volume.fstype)
                    except VolumeRbdException as e:
                        raise self._error(e, name, "Create", "unable to create ceph rbd image")

            if existing is None:
                self._save(volume, "Create")
            return volume

    def get(self, name: str) -> Volume:
        logger.info("volume-rbd Name=%s Request=Get", name)

        with self._lock.read_lock():
            return self._load(name, "Get")

    def path(self, name: str) -> str:
        """Return the mountpoint of a volume, empty while it is not mounted."""
        logger.info("volume-rbd Name=%s Request=Path", name)

        with self._lock.read_lock():
            return self._load(name, "Path").mountpoint

    def list(self) -> List[Volume]:
        logger.info("volume-rbd Request=List")

        with self._lock.read_lock():
            try:
                records = state.list_volumes()
            except StateStoreError as e:
                raise self._error(e, "", "List", "getting volumes state failed")
            return [Volume.from_dict(r) for r in records]

    def mount(self, name: str) -> Volume:
        """
        Map and mount a volume.

        A volume that already has a mountpoint is attached again rather than
        short-circuited; attach reuses an existing mapping and mount. A failed
        state save only undoes the attach when the volume was not mounted
        before.
        """
        logger.info("volume-rbd Name=%s Request=Mount", name)

        with self._lock.write_lock():
            volume = self._load(name, "Mount")
            was_mounted = volume.mounted

            if was_mounted:
                logger.warning(
                    "volume-rbd Name=%s Request=Mount Message=this volume has a previous registered mountpoint(%s)",
                    name,
                    volume.mountpoint,
                )

            try:
                device, mountpoint = self.binder.attach(volume.pool, name, volume.fstype)
            except VolumeRbdException as e:
                raise self._error(e, name, "Mount", "unable to mount rbd image")

            volume.device = device
            volume.mountpoint = mountpoint
            try:
                self._save(volume, "Mount")
            except StateStoreError:
                if was_mounted:
                    # The stored record already describes this mount; keep it in use.
                    raise
                logger.warning("volume-rbd Name=%s Request=Mount Message=detaching after state save failure", name)
                try:
                    self.binder.detach(volume.pool, name, mountpoint)
                except VolumeRbdException as e:
                    logger.error("volume-rbd Name=%s Request=Mount Message=detach failed, host left mounted: %s", name, e)
                raise
            return volume

    def unmount(self, name: str) -> None:
        logger.info("volume-rbd Name=%s Request=Unmount", name)

        with self._lock.write_lock():
            volume = self._load(name, "Unmount")

            try:
                self.binder.detach(volume.pool, name, volume.mountpoint)
            except VolumeRbdException as e:
                raise self._error(e, name, "Unmount", "unable to free up rbd image")

            volume.device = ""
            volume.mountpoint = ""
            self._save(volume, "Unmount")

    def remove(self, name: str) -> None:
        """
        Remove a volume: detach, delete the rbd image, then drop the record.

        The record outlives the image so that a failure at any step can be
        retried with the same request.
        """
        logger.info("volume-rbd Name=%s Request=Remove", name)

        with self._lock.write_lock():
            volume = self._load(name, "Remove")

            with self._session(volume.pool, name, "Remove") as session:
                try:
                    exists = session.image_exists(name)
                except VolumeRbdException as e:
                    raise self._error(e, name, "Remove", "unable to check if rbd image exists")

                if not exists:
                    logger.info(
                        "volume-rbd Name=%s Request=Remove Message=skipping image remove: unexisting ceph rbd image.",
                        name,
                    )
                else:
                    try:
                        self.binder.detach(volume.pool, name, volume.mountpoint)
                    except VolumeRbdException as e:
                        raise self._error(e, name, "Remove", "unable to free up rbd image")

                    if volume.mounted or volume.device:
                        volume.device = ""
                        volume.mountpoint = ""
                        self._save(volume, "Remove")

                    try:
                        session.remove_image_with_retries(name)
                    except VolumeRbdException as e:
                        raise self._error(e, name, "Remove", "unable to remove rbd image")

            try:
                state.delete_volume(name)
            except StateStoreError as e:
                raise self._error(e, name, "Remove", "unable to delete volume state")

    def capabilities(self) -> Dict[str, str]:
        logger.info("volume-rbd Request=Capabilities")
        return {"Scope": "global"}
