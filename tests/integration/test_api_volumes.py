"""
Integration tests for the Docker plugin endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from volume_rbd.api.main import PLUGIN_MEDIA_TYPE, app, get_driver
from volume_rbd.exceptions import DeviceError


@pytest.fixture
def client(driver):
    """Create test client wired to a driver with a fake cluster."""
    app.dependency_overrides[get_driver] = lambda: driver
    yield TestClient(app)
    app.dependency_overrides.clear()


def _post(client, path, body=None):
    return client.post(path, json=body if body is not None else {})


class TestActivate:
    """Tests for POST /Plugin.Activate."""

    @pytest.mark.integration
    def test_activate(self, client):
        response = client.post("/Plugin.Activate", content=b"")

        assert response.status_code == 200
        assert response.json() == {"Implements": ["VolumeDriver"]}
        assert response.headers["content-type"].startswith(PLUGIN_MEDIA_TYPE)


class TestCreateVolume:
    """Tests for POST /VolumeDriver.Create."""

    @pytest.mark.integration
    def test_create_volume_success(self, client, cluster):
        response = _post(client, "/VolumeDriver.Create", {"Name": "vol1", "Opts": {"pool": "rbd", "size": "1024"}})

        assert response.status_code == 200
        assert response.json() == {"Err": ""}
        assert cluster.images[("rbd", "vol1")]["size"] == 1024

    @pytest.mark.integration
    def test_create_volume_unknown_option(self, client, cluster):
        response = _post(client, "/VolumeDriver.Create", {"Name": "vol1", "Opts": {"pool": "rbd", "foo": "bar"}})

        assert response.status_code == 500
        assert "unknown option 'foo'" in response.json()["Err"]
        assert cluster.sessions == []

    @pytest.mark.integration
    def test_create_volume_without_opts(self, client):
        response = _post(client, "/VolumeDriver.Create", {"Name": "vol1"})

        assert response.status_code == 500
        assert "pool option required" in response.json()["Err"]

    @pytest.mark.integration
    def test_create_vendor_content_type(self, client):
        response = client.post(
            "/VolumeDriver.Create",
            content=b'{"Name": "vol1", "Opts": {"pool": "rbd"}}',
            headers={"Content-Type": "application/vnd.docker.plugins.v1.2+json"},
        )

        assert response.status_code == 200
        assert response.json() == {"Err": ""}

    @pytest.mark.integration
    def test_malformed_body(self, client):
        response = client.post("/VolumeDriver.Create", content=b"{not json")

        assert response.status_code == 500
        assert "invalid /VolumeDriver.Create request" in response.json()["Err"]

    @pytest.mark.integration
    def test_missing_name(self, client):
        response = _post(client, "/VolumeDriver.Create", {"Opts": {"pool": "rbd"}})

        assert response.status_code == 500
        assert "Name" in response.json()["Err"]


class TestQueryVolumes:
    """Tests for Get, Path, List and Capabilities."""

    @pytest.mark.integration
    def test_get_volume(self, client):
        _post(client, "/VolumeDriver.Create", {"Name": "vol1", "Opts": {"pool": "rbd"}})

        response = _post(client, "/VolumeDriver.Get", {"Name": "vol1"})

        assert response.status_code == 200
        data = response.json()
        assert data["Err"] == ""
        assert data["Volume"]["Name"] == "vol1"
        assert data["Volume"]["Mountpoint"] == ""
        assert data["Volume"]["Status"]["pool"] == "rbd"

    @pytest.mark.integration
    def test_get_missing_volume(self, client):
        response = _post(client, "/VolumeDriver.Get", {"Name": "nope"})

        assert response.status_code == 500
        assert "volume state not found" in response.json()["Err"]

    @pytest.mark.integration
    def test_list_volumes_empty_body(self, client):
        _post(client, "/VolumeDriver.Create", {"Name": "vol1", "Opts": {"pool": "rbd"}})
        _post(client, "/VolumeDriver.Create", {"Name": "vol2", "Opts": {"pool": "rbd"}})

        response = client.post("/VolumeDriver.List", content=b"")

        assert response.status_code == 200
        volumes = response.json()["Volumes"]
        assert [v["Name"] for v in volumes] == ["vol1", "vol2"]
        assert all(v["Mountpoint"] == "" for v in volumes)

    @pytest.mark.integration
    def test_path_missing_volume(self, client):
        response = _post(client, "/VolumeDriver.Path", {"Name": "nope"})

        assert response.status_code == 500
        assert "Request=Path" in response.json()["Err"]

    @pytest.mark.integration
    def test_capabilities(self, client):
        response = client.post("/VolumeDriver.Capabilities")

        assert response.status_code == 200
        assert response.json() == {"Capabilities": {"Scope": "global"}}


class TestMountVolume:
    """Tests for Mount and Unmount."""

    @pytest.mark.integration
    def test_mount_and_unmount(self, client, cfg):
        _post(client, "/VolumeDriver.Create", {"Name": "vol1", "Opts": {"pool": "rbd"}})

        response = _post(client, "/VolumeDriver.Mount", {"Name": "vol1", "ID": "abc123"})
        assert response.status_code == 200
        assert response.json() == {"Mountpoint": f"{cfg.mount_root}/vol1", "Err": ""}

        response = _post(client, "/VolumeDriver.Path", {"Name": "vol1"})
        assert response.json()["Mountpoint"] == f"{cfg.mount_root}/vol1"

        response = _post(client, "/VolumeDriver.Unmount", {"Name": "vol1", "ID": "abc123"})
        assert response.status_code == 200
        assert response.json() == {"Err": ""}

        response = _post(client, "/VolumeDriver.Path", {"Name": "vol1"})
        assert response.json() == {"Mountpoint": "", "Err": ""}

    @pytest.mark.integration
    def test_mount_failure(self, client, binder):
        _post(client, "/VolumeDriver.Create", {"Name": "vol1", "Opts": {"pool": "rbd"}})
        binder.attach.side_effect = DeviceError("Failed to map rbd image rbd/vol1: (110) Connection timed out")

        response = _post(client, "/VolumeDriver.Mount", {"Name": "vol1", "ID": "abc123"})

        assert response.status_code == 500
        assert "Connection timed out" in response.json()["Err"]


class TestRemoveVolume:
    """Tests for POST /VolumeDriver.Remove."""

    @pytest.mark.integration
    def test_remove_volume(self, client, cluster):
        _post(client, "/VolumeDriver.Create", {"Name": "vol1", "Opts": {"pool": "rbd"}})

        response = _post(client, "/VolumeDriver.Remove", {"Name": "vol1"})

        assert response.status_code == 200
        assert response.json() == {"Err": ""}
        assert cluster.images == {}

    @pytest.mark.integration
    def test_remove_missing_volume(self, client):
        response = _post(client, "/VolumeDriver.Remove", {"Name": "nope"})

        assert response.status_code == 500
        assert "volume state not found" in response.json()["Err"]
