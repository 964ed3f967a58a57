"""
Pytest configuration and fixtures.
"""

import shutil
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from volume_rbd.cli.lib.binder import DeviceBinder
from volume_rbd.cli.lib.config import VolumeRbdConfig
from volume_rbd.driver import RbdVolumeDriver


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for testing."""
    with patch("subprocess.run") as mock:
        yield mock


@pytest.fixture
def state_dir(temp_dir, monkeypatch):
    """Point the state store at a temp directory and ignore /etc config."""
    path = temp_dir / "state"
    monkeypatch.setenv("VOLUME_RBD_STATE_DIR", str(path))
    monkeypatch.setenv("VOLUME_RBD_CONFIG_PATH", str(temp_dir / "missing.conf"))
    return path


@pytest.fixture
def cfg(temp_dir):
    return VolumeRbdConfig(mount_root=str(temp_dir / "mnt"), remove_retry_delay=0.0)


class FakeCluster:
    """In-memory stand-in for the Ceph cluster, handing out sessions per pool."""

    def __init__(self):
        self.images = {}
        self.sessions = []
        self.events = []
        self.connect_error = None
        self.exists_error = None
        self.create_error = None
        self.remove_error = None

    def session(self, pool):
        session = FakeSession(self, pool)
        self.sessions.append(session)
        return session


class FakeSession:
    def __init__(self, cluster, pool):
        self.cluster = cluster
        self.pool = pool
        self.connect_calls = 0
        self.shutdown_calls = 0

    def connect(self):
        self.connect_calls += 1
        if self.cluster.connect_error:
            raise self.cluster.connect_error

    def shutdown(self):
        self.shutdown_calls += 1

    def image_exists(self, name):
        if self.cluster.exists_error:
            raise self.cluster.exists_error
        return (self.pool, name) in self.cluster.images

    def create_image(self, name, size, order, fstype=None):
        self.cluster.events.append(("create_image", name))
        if self.cluster.create_error:
            raise self.cluster.create_error
        self.cluster.images[(self.pool, name)] = {"size": size, "order": order, "fstype": fstype}

    def remove_image_with_retries(self, name):
        self.cluster.events.append(("remove_image", name))
        if self.cluster.remove_error:
            raise self.cluster.remove_error
        self.cluster.images.pop((self.pool, name), None)


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def binder(cfg, cluster):
    """DeviceBinder mock that reports into the cluster event log."""
    mock = MagicMock(spec=DeviceBinder)

    def attach(pool, name, fstype):
        cluster.events.append(("attach", name))
        return f"/dev/rbd{len(cluster.events)}", f"{cfg.mount_root}/{name}"

    def detach(pool, name, mountpoint=""):
        cluster.events.append(("detach", name))

    mock.attach.side_effect = attach
    mock.detach.side_effect = detach
    return mock


@pytest.fixture
def driver(state_dir, cfg, binder, cluster):
    return RbdVolumeDriver(cfg=cfg, binder=binder, session_factory=cluster.session)

