"""Integration tests for the REST and WebSocket API."""

from __future__ import annotations

import time
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient

from conftest import FakeEngineRegistry, FakePortProbe
from db_orchestrator import __version__
from db_orchestrator.adapters.inbound import create_app
from db_orchestrator.application import DatabaseOrchestrator
from db_orchestrator.domain.entities import EngineType

pytestmark = pytest.mark.integration

PG_BODY: dict[str, Any] = {"type": "postgresql", "name": "app", "version": "16", "port": 5432}


@pytest.fixture
def client(orchestrator: DatabaseOrchestrator) -> Generator[TestClient, None, None]:
    """Client whose lifespan reconciles on entry and stops instances on exit."""
    with TestClient(create_app(orchestrator)) as client:
        yield client


def install(client: TestClient, **overrides: Any) -> dict[str, Any]:
    response = client.post("/instances", json={**PG_BODY, **overrides})
    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True, payload["message"]
    return payload["instance"]


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "version": __version__,
            "instances": 0,
            "running": 0,
        }


class TestInstances:
    """Instance CRUD endpoints."""

    def test_install_and_list(self, client: TestClient) -> None:
        instance = install(client, autoStart=False, password="s3cret")

        assert instance["type"] == "postgresql"
        assert instance["status"] == "stopped"
        assert instance["username"] == "admin"

        listed = client.get("/instances").json()
        assert [i["id"] for i in listed] == [instance["id"]]
        assert client.get(f"/instances/{instance['id']}").json()["name"] == "app"

    def test_duplicate_install(self, client: TestClient) -> None:
        first = install(client)

        payload = client.post("/instances", json=PG_BODY).json()

        assert payload["success"] is False
        assert payload["duplicate"] is True
        assert payload["existingInstance"]["id"] == first["id"]

    def test_unsupported_engine_install_fails(self, client: TestClient) -> None:
        payload = client.post("/instances", json={**PG_BODY, "type": "mssql"}).json()

        assert payload["success"] is False
        assert "mssql" in payload["message"]

    def test_invalid_body_rejected(self, client: TestClient) -> None:
        response = client.post("/instances", json={"type": "postgresql", "name": "app"})
        assert response.status_code == 422

    def test_unknown_instance_is_404(self, client: TestClient) -> None:
        assert client.get("/instances/postgresql-nope").status_code == 404
        assert client.post("/instances/postgresql-nope/start").status_code == 404
        assert client.get("/instances/postgresql-nope/status").status_code == 404

    def test_rename_and_auto_start(self, client: TestClient) -> None:
        instance = install(client)

        response = client.patch(
            f"/instances/{instance['id']}", json={"name": "billing", "autoStart": True}
        )

        assert response.json()["success"] is True
        updated = client.get(f"/instances/{instance['id']}").json()
        assert updated["name"] == "billing"
        assert updated["autoStart"] is True

    def test_delete(self, client: TestClient) -> None:
        instance = install(client)

        assert client.delete(f"/instances/{instance['id']}").json()["success"] is True
        assert client.get("/instances").json() == []

    def test_delete_all(self, client: TestClient) -> None:
        install(client)
        install(client, name="other", port=5440)

        payload = client.delete("/instances").json()

        assert payload == {"success": True, "message": "Deleted 2 instances"}
        assert client.get("/instances").json() == []

    def test_database_name_is_recorded(self, client: TestClient) -> None:
        instance = install(client, databaseName="orders")

        assert instance["databaseName"] == "orders"
        assert client.get(f"/instances/{instance['id']}").json()["databaseName"] == "orders"

    def test_invalid_database_name_fails(self, client: TestClient) -> None:
        payload = client.post("/instances", json={**PG_BODY, "databaseName": "orders; drop"}).json()

        assert payload["success"] is False
        assert "Database name" in payload["message"]


class TestLifecycleEndpoints:
    """Start, stop and port endpoints."""

    def test_start_status_stop(self, client: TestClient, engines: FakeEngineRegistry) -> None:
        instance = install(client)
        instance_id = instance["id"]

        started = client.post(f"/instances/{instance_id}/start").json()
        assert started["success"] is True
        assert client.get(f"/instances/{instance_id}/status").json() == {
            "id": instance_id,
            "status": "running",
        }
        assert client.get("/health").json()["running"] == 1

        stopped = client.post(f"/instances/{instance_id}/stop").json()
        assert stopped["success"] is True
        assert engines.adapters[EngineType.POSTGRESQL].stop_count == 1

    def test_start_conflict_payload(self, client: TestClient) -> None:
        first = install(client)
        second = install(client, name="other")
        client.post(f"/instances/{first['id']}/start")

        payload = client.post(f"/instances/{second['id']}/start").json()

        assert payload["success"] is False
        assert payload["conflict"] is True
        assert payload["conflictingInstance"] == "app"
        assert payload["suggestedPort"] == 5433

    def test_port_conflict_query(self, client: TestClient, port_probe: FakePortProbe) -> None:
        port_probe.bound.add(8080)

        payload = client.get("/ports/8080/conflict").json()

        assert payload["hasConflict"] is True
        assert payload["suggestedPort"] == 8081

    def test_update_port(self, client: TestClient) -> None:
        instance = install(client)

        payload = client.patch(f"/instances/{instance['id']}/port", json={"port": 5500}).json()

        assert payload["success"] is True
        assert client.get(f"/instances/{instance['id']}").json()["port"] == 5500

    def test_banned_ports_round_trip(self, client: TestClient) -> None:
        assert client.get("/ports/banned").json() == {"ports": []}

        response = client.put("/ports/banned", json={"ports": [6000, 5433, 6000]})

        assert response.json() == {"ports": [5433, 6000]}
        assert client.get("/ports/banned").json() == {"ports": [5433, 6000]}

    def test_auto_start_endpoint(self, client: TestClient) -> None:
        install(client, autoStart=True)
        install(client, name="manual", port=5440)

        summary = client.post("/auto-start").json()

        assert summary["total"] == 1
        assert summary["successful"] == 1
        assert summary["portConflicts"] == 0

    def test_update_credentials(self, client: TestClient, engines: FakeEngineRegistry) -> None:
        instance = install(client)
        client.post(f"/instances/{instance['id']}/start")
        url = f"/instances/{instance['id']}/credentials"

        renamed = client.put(url, json={"username": "root", "password": "rotated"}).json()
        updated = client.put(url, json={"username": "admin", "password": "rotated"}).json()

        assert renamed["success"] is False
        assert updated["success"] is True
        assert engines.adapters[EngineType.POSTGRESQL].password_changes == [("", "rotated")]

    def test_update_credentials_unknown_instance(self, client: TestClient) -> None:
        response = client.put("/instances/postgresql-nope/credentials", json={"password": "x"})

        assert response.status_code == 404


class TestEventStream:
    def test_install_progress_streamed(
        self, client: TestClient, orchestrator: DatabaseOrchestrator
    ) -> None:
        with client.websocket_connect("/events") as websocket:
            deadline = time.monotonic() + 5.0
            while orchestrator.events.subscriber_count == 0 and time.monotonic() < deadline:
                time.sleep(0.01)

            install(client)
            message = websocket.receive_json()

        assert message["event"] == "install-progress"
        assert message["data"]["stage"] == "validating"

    def test_disconnected_client_is_unsubscribed(
        self, client: TestClient, orchestrator: DatabaseOrchestrator
    ) -> None:
        baseline = orchestrator.events.subscriber_count
        deadline = time.monotonic() + 5.0

        with client.websocket_connect("/events"):
            while orchestrator.events.subscriber_count == baseline and time.monotonic() < deadline:
                time.sleep(0.01)
            assert orchestrator.events.subscriber_count == baseline + 1

        # No event is published, so only the receive loop can notice the close
        while orchestrator.events.subscriber_count > baseline and time.monotonic() < deadline:
            time.sleep(0.01)
        assert orchestrator.events.subscriber_count == baseline
