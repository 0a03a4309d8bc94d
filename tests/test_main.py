"""Tests for the registry HTTP service."""

import asyncio
import base64
import json
import os
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

# Run the service on the in-memory store
os.environ.setdefault("STORE_ENDPOINTS", '["memory://"]')

from src.coordination import ChangeEvent, InMemoryStore, Registry
from src.server.main import app, encode_event, watch_config


@pytest.fixture
def client():
    with TestClient(app) as client:
        yield client


def write_config(client: TestClient, key: str, value: bytes) -> None:
    """Out-of-band config write straight to the store."""
    asyncio.run(client.app.state.registry.store.put(f"/config/{key}", value))


class TestHealth:
    """Test health endpoint."""

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestRegistrations:
    """Test registration endpoints."""

    def test_register_conflict_list_unregister(self, client):
        resp = client.put("/registrations/svc-a", json={"file_path": "/bin/svc-a"})
        assert resp.status_code == 201

        resp = client.put("/registrations/svc-a", json={"file_path": "/bin/other"})
        assert resp.status_code == 409

        assert client.get("/registrations").json() == {"keys": ["svc-a"]}
        assert client.get("/registrations/svc-a").json()["file_path"] == "/bin/svc-a"

        assert client.delete("/registrations/svc-a").status_code == 200
        assert client.delete("/registrations/svc-a").status_code == 200
        assert client.get("/registrations").json() == {"keys": []}

    def test_missing_registration(self, client):
        assert client.get("/registrations/ghost").status_code == 404

    def test_keys_with_slashes(self, client):
        resp = client.put("/registrations/team/svc", json={"file_path": "/bin/svc"})
        assert resp.status_code == 201
        assert client.get("/registrations").json() == {"keys": ["team/svc"]}
        client.delete("/registrations/team/svc")


class TestConfig:
    """Test configuration endpoints."""

    def test_missing_config(self, client):
        assert client.get("/config/db.url").status_code == 404

    def test_config_bytes(self, client):
        write_config(client, "db.url", b"postgres://db:5432/app")

        resp = client.get("/config/db.url")

        assert resp.status_code == 200
        assert resp.content == b"postgres://db:5432/app"
        assert resp.headers["content-type"] == "application/octet-stream"

    def test_store_unavailable(self, client):
        asyncio.run(client.app.state.registry.store.close())

        assert client.get("/config/db.url").status_code == 503


class TestEncodeEvent:
    """Test watch stream encoding."""

    def test_set_event(self):
        line = encode_event(ChangeEvent.set(b"\x00value"))
        body = json.loads(line)
        assert line.endswith("\n")
        assert body["type"] == "set"
        assert base64.b64decode(body["value"]) == b"\x00value"

    def test_removed_event(self):
        assert json.loads(encode_event(ChangeEvent.removed())) == {"type": "removed"}


class TestWatchEndpoint:
    """Test watch endpoint failures."""

    def test_watch_store_unavailable(self, client):
        asyncio.run(client.app.state.registry.store.close())

        assert client.get("/watch/db.url").status_code == 503


def request_for(registry: Registry) -> SimpleNamespace:
    """Minimal request carrying app.state.registry."""
    return SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(registry=registry)))


class TestWatchStreaming:
    """Test the NDJSON watch stream."""

    @pytest.mark.asyncio
    async def test_streams_set_and_removed(self):
        store = InMemoryStore()
        response = await watch_config("db.url", request_for(Registry(store)))
        body = response.body_iterator

        await store.put("/config/db.url", b"v1")
        await store.delete("/config/db.url")

        lines = [json.loads(await anext(body)) for _ in range(2)]

        assert response.media_type == "application/x-ndjson"
        assert lines == [{"type": "set", "value": "djE="}, {"type": "removed"}]

        await body.aclose()
        assert store.watcher_count == 0

    @pytest.mark.asyncio
    async def test_error_line_on_store_failure(self):
        """A lost connection ends the stream with an error line."""
        store = InMemoryStore()
        response = await watch_config("db.url", request_for(Registry(store)))
        body = response.body_iterator

        store.disconnect()

        assert json.loads(await anext(body))["type"] == "error"
        with pytest.raises(StopAsyncIteration):
            await anext(body)
        assert store.watcher_count == 0

    @pytest.mark.asyncio
    async def test_client_disconnect_releases_watch(self):
        """Cancelling the response task tears the subscription down."""
        store = InMemoryStore()
        response = await watch_config("db.url", request_for(Registry(store)))
        async def read():
            return await anext(response.body_iterator)

        reader = asyncio.create_task(read())

        await asyncio.sleep(0.01)
        assert store.watcher_count == 1

        reader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await reader

        assert store.watcher_count == 0
