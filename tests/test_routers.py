"""Tests for the HTTP control surface."""

from datetime import UTC, datetime
from uuid import uuid4

from fastapi.testclient import TestClient

from attendance_api.config import Settings
from attendance_api.main import create_app
from attendance_api.models.domain.identity import IdentityMapping, LocalIdentity, MappingStatus
from attendance_api.services.sync_orchestrator import SyncOrchestrator
from fakes import InMemoryGateway, ScriptedProvider

ALICE = LocalIdentity(id=uuid4(), name="Alice Smith", email="alice@example.com")


async def no_sleep(delay: float) -> None:
    return None


def make_client() -> tuple[TestClient, InMemoryGateway]:
    gateway = InMemoryGateway([ALICE])
    gateway.mappings[("0001", ALICE.id)] = IdentityMapping(
        provider_code="0001",
        local_identity_id=ALICE.id,
        match_score=0.6,
        status=MappingStatus.NEEDS_REVIEW,
    )
    orchestrator = SyncOrchestrator(
        ScriptedProvider(),
        gateway,
        Settings(),
        sleeper=no_sleep,
        clock=lambda: datetime(2025, 10, 20, 6, 0, tzinfo=UTC),
        enable_scheduler=False,
    )
    return TestClient(create_app(orchestrator=orchestrator)), gateway


class TestSyncRoutes:
    """Test sync control endpoints."""

    def test_health(self) -> None:
        client, _ = make_client()
        with client:
            response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_incremental_attendance_trigger(self) -> None:
        client, gateway = make_client()
        with client:
            response = client.post("/api/sync/attendance", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["accepted"] is True
        assert body["run"]["mode"] == "incremental"
        assert body["run"]["status"] == "succeeded"
        assert len(gateway.runs) == 1

    def test_full_attendance_trigger(self) -> None:
        client, _ = make_client()
        with client:
            response = client.post(
                "/api/sync/attendance",
                json={"mode": "full", "start_date": "2025-10-06", "end_date": "2025-10-07"},
            )

        body = response.json()
        assert body["run"]["mode"] == "full"
        assert body["run"]["window_start"] == "2025-10-06"

    def test_full_attendance_requires_dates(self) -> None:
        client, gateway = make_client()
        with client:
            response = client.post("/api/sync/attendance", json={"mode": "full"})

        assert response.status_code == 422
        assert gateway.runs == {}

    def test_roster_trigger(self) -> None:
        client, _ = make_client()
        with client:
            response = client.post("/api/sync/roster")

        assert response.status_code == 200
        assert response.json()["sync_type"] == "roster"

    def test_cancel_without_running_sync(self) -> None:
        client, _ = make_client()
        with client:
            response = client.post("/api/sync/attendance/cancel")

        assert response.status_code == 202
        assert response.json() == {"sync_type": "attendance", "cancelled": False}

    def test_status(self) -> None:
        client, _ = make_client()
        with client:
            client.post("/api/sync/roster")
            response = client.get("/api/sync/status")

        body = response.json()
        assert body["accepting"] is True
        assert body["last_runs"]["roster"]["status"] == "succeeded"
        assert body["totals"]["needs_review"] == 1

    def test_orchestrator_not_started(self) -> None:
        client, _ = make_client()

        response = client.get("/api/sync/status")

        assert response.status_code == 503


class TestMappingRoutes:
    """Test mapping review endpoints."""

    def test_review_queue(self) -> None:
        client, _ = make_client()
        with client:
            response = client.get("/api/mappings/review")

        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["identity_email"] == "alice@example.com"

    def test_confirm(self) -> None:
        client, gateway = make_client()
        with client:
            response = client.post(
                "/api/mappings/confirm",
                json={"provider_code": "0001", "local_identity_id": str(ALICE.id)},
            )

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert gateway.mappings[("0001", ALICE.id)].status == MappingStatus.CONFIRMED

    def test_confirm_unknown_identity(self) -> None:
        client, _ = make_client()
        with client:
            response = client.post(
                "/api/mappings/confirm",
                json={"provider_code": "0001", "local_identity_id": str(uuid4())},
            )

        assert response.status_code == 400

    def test_reject_unknown_pair(self) -> None:
        client, _ = make_client()
        with client:
            response = client.post(
                "/api/mappings/reject",
                json={"provider_code": "0404", "local_identity_id": str(ALICE.id)},
            )

        assert response.status_code == 404
        assert response.json()["detail"] == "Mapping not found"
