"""
Control API Tests
=================

Runs the FastAPI app (with its lifespan) through TestClient, backed by the
synthetic frame source and loopback stream servers on ephemeral ports.
"""

import socket

import pytest
from fastapi.testclient import TestClient

from coolstream.config import settings
from coolstream.main import app
from coolstream.stream.protocol import RESPONSE_HEADER

from conftest import open_viewer, read_chunk, recv_exact, wait_until


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings.control, "autostart_server", False)
    monkeypatch.setattr(settings.stream, "host", "127.0.0.1")
    monkeypatch.setattr(settings.stream, "port", 0)
    monkeypatch.setattr(settings.stream, "frame_interval_ms", 10)
    monkeypatch.setattr(settings.source, "backend", "synthetic")
    monkeypatch.setattr(settings.source, "width", 64)
    monkeypatch.setattr(settings.source, "height", 48)

    with TestClient(app) as test_client:
        yield test_client


def start(client, port: int = 0) -> dict:
    response = client.post("/server/start", params={"port": port})
    assert response.status_code == 200
    return response.json()


class TestInfoEndpoints:

    def test_root(self, client):
        data = client.get("/").json()

        assert data["service"] == settings.service.name
        assert data["source_backend"] == "synthetic"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_status_before_start(self, client):
        data = client.get("/status").json()

        assert data["server"] == "Stopped"
        assert data["port"] is None
        assert data["lifecycle"] == "Idle"
        assert data["client_count"] == 0
        assert data["device"] == "back"

    def test_metrics_shape(self, client):
        data = client.get("/metrics").json()

        assert set(data) >= {"uptime_seconds", "lifecycle", "server", "cache"}
        assert data["server"] is None
        assert data["lifecycle"]["producer_starts"] == 0

    def test_metrics_include_live_viewers(self, client):
        start(client)
        data = client.get("/metrics").json()

        assert data["server"]["active"] == 0
        assert data["server"]["accepted"] == 0


class TestServerControl:

    def test_start_listens(self, client):
        data = start(client)

        assert data["server"] == "Listening"
        assert data["port"] > 0
        # No viewers yet, so no producer
        assert data["lifecycle"] == "Idle"
        assert data["producer_active"] is False

    def test_start_is_idempotent(self, client):
        first = start(client)
        second = start(client)

        assert second["port"] == first["port"]

    def test_start_on_taken_port(self, client):
        blocker = socket.create_server(("127.0.0.1", 0))
        port = blocker.getsockname()[1]
        try:
            response = client.post("/server/start", params={"port": port})
        finally:
            blocker.close()

        assert response.status_code == 409
        assert response.json()["port"] == port
        assert client.get("/status").json()["server"] == "Stopped"

    def test_start_on_out_of_range_port(self, client):
        response = client.post("/server/start", params={"port": 70000})

        assert response.status_code == 409
        assert response.json()["port"] == 70000
        assert client.get("/status").json()["server"] == "Stopped"

    def test_stop(self, client):
        start(client)

        response = client.post("/server/stop")

        assert response.status_code == 200
        assert response.json()["server"] == "Stopped"
        assert response.json()["lifecycle"] == "Idle"

    def test_stop_when_stopped(self, client):
        assert client.post("/server/stop").status_code == 200


class TestDevice:

    def test_change_device(self, client):
        response = client.put("/device", json={"device": "front"})

        assert response.status_code == 200
        assert response.json()["changed"] is True
        assert response.json()["device"] == "front"

    def test_same_device(self, client):
        response = client.put("/device", json={"device": "back"})

        assert response.json()["changed"] is False

    def test_invalid_device(self, client):
        response = client.put("/device", json={"device": "side"})

        assert response.status_code == 422


class TestEndToEnd:

    def test_viewer_receives_jpeg(self, client):
        port = start(client)["port"]

        viewer = open_viewer(port)
        try:
            assert recv_exact(viewer, len(RESPONSE_HEADER)) == RESPONSE_HEADER
            headers, payload = read_chunk(viewer)

            assert headers["Content-Type"] == "image/jpeg"
            assert payload.startswith(b"\xff\xd8")

            assert wait_until(lambda: client.get("/status").json()["producer_active"])
            status = client.get("/status").json()
            assert status["client_count"] == 1
            assert status["lifecycle"] == "Active"
        finally:
            viewer.close()

        assert wait_until(lambda: client.get("/status").json()["client_count"] == 0)
        assert client.get("/status").json()["idle_shutdown_pending"] is True

    def test_stop_drops_viewer_and_producer(self, client):
        port = start(client)["port"]
        viewer = open_viewer(port)
        try:
            recv_exact(viewer, len(RESPONSE_HEADER))
            read_chunk(viewer)

            data = client.post("/server/stop").json()

            assert data["client_count"] == 0
            assert data["producer_active"] is False
            assert data["idle_shutdown_pending"] is False
        finally:
            viewer.close()
