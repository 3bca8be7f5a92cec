"""Unit tests for the health check server."""

from unittest.mock import MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from livewatch.utils.health import HealthCheckServer


@pytest.fixture
async def health_client():
    """Provide a test client for a HealthCheckServer app."""
    server = HealthCheckServer(port=9999)
    client = TestClient(TestServer(server.app))
    await client.start_server()
    client.health_server = server
    yield client
    await client.close()


def make_controller(live_running=True):
    controller = MagicMock()
    controller.live_monitor.running = live_running
    controller.feed_monitor.running = live_running
    controller.get_stats.return_value = {"store": {"streamers": 1}}
    return controller


class TestHealthCheckServer:
    """Test health endpoints."""

    async def test_healthz(self, health_client):
        response = await health_client.get("/healthz")

        assert response.status == 200
        body = await response.json()
        assert body["status"] == "healthy"
        assert body["version"] == "0.1.0"

    async def test_not_ready_without_controller(self, health_client):
        response = await health_client.get("/readyz")

        assert response.status == 503
        assert (await response.json())["checks"]["monitoring_controller"] == "not_available"

    async def test_not_ready_when_polling_stopped(self, health_client):
        health_client.health_server.set_monitoring_controller(make_controller(live_running=False))

        response = await health_client.get("/readyz")

        assert response.status == 503
        assert (await response.json())["checks"]["live_monitor"] == "stopped"

    async def test_ready(self, health_client):
        health_client.health_server.set_monitoring_controller(make_controller())

        response = await health_client.get("/readyz")

        assert response.status == 200
        assert (await response.json())["status"] == "ready"

    async def test_stats(self, health_client):
        health_client.health_server.set_monitoring_controller(make_controller())

        body = await (await health_client.get("/stats")).json()

        assert body["monitoring"] == {"store": {"streamers": 1}}
        assert "uptime_seconds" in body["service"]

    async def test_stats_error_is_reported(self, health_client):
        controller = make_controller()
        controller.get_stats.side_effect = RuntimeError("boom")
        health_client.health_server.set_monitoring_controller(controller)

        body = await (await health_client.get("/stats")).json()

        assert body["monitoring"] == {"error": "boom"}

    async def test_metrics(self, health_client):
        # Importing registers the delivery counters on the default registry
        import livewatch.notifications.dispatcher  # noqa: F401

        response = await health_client.get("/metrics")

        assert response.status == 200
        assert "livewatch_deliveries_total" in await response.text()
