"""
Scenario tests for end-to-end workflows.
"""

import pytest
from fastapi.testclient import TestClient

from volume_rbd.api.main import app, get_driver
from volume_rbd.cli.lib.binder import DeviceBinder
from volume_rbd.driver import RbdVolumeDriver


@pytest.fixture
def client(state_dir, cfg, cluster):
    """Plugin client with a fake cluster and a binder that stubs host commands."""
    binder = DeviceBinder(cfg)
    driver = RbdVolumeDriver(cfg=cfg, binder=binder, session_factory=cluster.session)
    app.dependency_overrides[get_driver] = lambda: driver
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestVolumeWorkflow:
    """Create -> Get -> Mount -> Unmount -> Remove -> Get."""

    @pytest.mark.integration
    def test_full_volume_lifecycle(self, client, cluster, cfg, monkeypatch):
        mapped = {}
        mounted = set()

        def find_mapped_devices(pool, name, cfg=None):
            return [mapped[(pool, name)]] if (pool, name) in mapped else []

        def map_image(pool, name, cfg=None):
            mapped[(pool, name)] = "/dev/rbd0"
            return "/dev/rbd0"

        def unmap_device(device, cfg=None):
            for key, dev in list(mapped.items()):
                if dev == device:
                    del mapped[key]

        monkeypatch.setattr("volume_rbd.cli.lib.rbd.find_mapped_devices", find_mapped_devices)
        monkeypatch.setattr("volume_rbd.cli.lib.rbd.map_image", map_image)
        monkeypatch.setattr("volume_rbd.cli.lib.rbd.unmap_device", unmap_device)
        monkeypatch.setattr("volume_rbd.cli.lib.filesystem.ensure_filesystem", lambda device, fstype: False)
        monkeypatch.setattr("volume_rbd.cli.lib.filesystem.mount_device", lambda device, path, fstype: mounted.add(path))
        monkeypatch.setattr("volume_rbd.cli.lib.filesystem.umount", lambda path: mounted.discard(path))

        # 1. Create
        response = client.post(
            "/VolumeDriver.Create",
            json={"Name": "data1", "Opts": {"pool": "rbd", "size": "1024", "fstype": "xfs"}},
        )
        assert response.json() == {"Err": ""}
        assert cluster.images[("rbd", "data1")] == {"size": 1024, "order": 22, "fstype": "xfs"}

        # 2. Get
        response = client.post("/VolumeDriver.Get", json={"Name": "data1"})
        assert response.json()["Volume"]["Name"] == "data1"
        assert response.json()["Volume"]["Mountpoint"] == ""

        # 3. Mount
        response = client.post("/VolumeDriver.Mount", json={"Name": "data1", "ID": "c1"})
        assert response.json() == {"Mountpoint": f"{cfg.mount_root}/data1", "Err": ""}
        assert mapped == {("rbd", "data1"): "/dev/rbd0"}
        assert mounted == {f"{cfg.mount_root}/data1"}

        # 4. Unmount
        response = client.post("/VolumeDriver.Unmount", json={"Name": "data1", "ID": "c1"})
        assert response.json() == {"Err": ""}
        assert mapped == {}
        assert mounted == set()
        response = client.post("/VolumeDriver.Get", json={"Name": "data1"})
        assert response.json()["Volume"]["Status"]["device"] == ""

        # 5. Remove
        response = client.post("/VolumeDriver.Remove", json={"Name": "data1"})
        assert response.json() == {"Err": ""}
        assert cluster.images == {}

        # 6. Get
        response = client.post("/VolumeDriver.Get", json={"Name": "data1"})
        assert response.status_code == 500
        assert "volume state not found" in response.json()["Err"]

    @pytest.mark.integration
    def test_bad_size_creates_nothing(self, client, cluster):
        response = client.post("/VolumeDriver.Create", json={"Name": "data1", "Opts": {"pool": "rbd", "size": "abc"}})

        assert response.status_code == 500
        assert "unable to parse size" in response.json()["Err"]
        assert cluster.sessions == []

        response = client.post("/VolumeDriver.List", content=b"")
        assert response.json()["Volumes"] == []
