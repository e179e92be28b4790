"""
API contract tests.

The app is built with create_app() and get_store overridden by the
in-memory store. TestClient is used without the context manager so the
lifespan (database pool) never runs.
"""

from __future__ import annotations

import io
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi import FastAPI, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from agentx.config import reset_settings
from agentx.core.errors import PayloadTooLargeError
from agentx.core.models import UserRecord, UserRole
from agentx.core.security import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    AuthContext,
    create_token_pair,
)
from agentx.ingest import load_tasks
from agentx.services.store import get_store
from tests.helpers import InMemoryStore

CSV = "text/csv"
SEVEN_ROWS = b"FirstName,Phone,Notes\n" + b"".join(
    f"Contact {i},555000{i},note {i}\n".encode() for i in range(1, 8)
)


@pytest.fixture
def app(store: InMemoryStore) -> FastAPI:
    from agentx.main import create_app

    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    return app


def client_for(app: FastAPI, user: UserRecord | None = None) -> TestClient:
    """Client carrying the user's access cookie (anonymous when user is None)."""
    client = TestClient(app, raise_server_exceptions=False)
    if user is not None:
        client.cookies.set(ACCESS_COOKIE, create_token_pair(user.id, user.role).access_token)
    return client


@pytest.fixture
def admin(store: InMemoryStore) -> UserRecord:
    return store.seed_user(name="Admin", email="admin@example.com", role=UserRole.ADMIN)


def upload(client: TestClient, content: bytes, content_type: str = CSV, name: str = "c.csv"):
    return client.post("/api/tasks/upload", files={"file": (name, content, content_type)})


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    def test_liveness(self, app):
        response = client_for(app).get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["environment"] == "dev"
        assert "x-request-id" in response.headers

    def test_readiness_without_pool(self, app):
        response = client_for(app).get("/api/health/ready")

        assert response.status_code == 503
        assert response.json()["ready"] is False

    def test_request_id_echoed(self, app):
        response = client_for(app).get("/api/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["x-request-id"] == "abc-123"


# =============================================================================
# Auth
# =============================================================================


class TestAuth:
    def test_login_sets_cookies_and_returns_role(self, app, admin):
        client = client_for(app)

        response = client.post(
            "/api/auth/login", json={"email": "admin@example.com", "password": "secret123"}
        )

        assert response.status_code == 200
        assert response.json() == {"message": "Logged in successfully", "role": "admin"}
        assert ACCESS_COOKIE in response.cookies
        assert REFRESH_COOKIE in response.cookies

        verify = client.get("/api/auth/verify")
        assert verify.status_code == 200
        assert verify.json() == {"user": {"id": str(admin.id), "role": "admin"}}

    def test_login_bad_password(self, app, admin):
        response = client_for(app).post(
            "/api/auth/login", json={"email": "admin@example.com", "password": "nope"}
        )

        assert response.status_code == 401
        body = response.json()
        assert body["error"] == "unauthorized"
        assert body["message"] == "Invalid credentials"
        assert "request_id" in body

    def test_verify_without_cookie(self, app):
        response = client_for(app).get("/api/auth/verify")
        assert response.status_code == 401
        assert response.json()["message"] == "Not authorized, no token"

    def test_refresh_from_cookie(self, app, store):
        user = store.seed_user()
        client = client_for(app)
        client.cookies.set(REFRESH_COOKIE, create_token_pair(user.id, user.role).refresh_token)

        response = client.post("/api/auth/refresh")

        assert response.status_code == 200
        assert response.json()["role"] == "agent"
        assert ACCESS_COOKIE in response.cookies

    def test_refresh_from_body(self, app, store):
        user = store.seed_user()
        token = create_token_pair(user.id, user.role).refresh_token

        response = client_for(app).post("/api/auth/refresh", json={"token": token})

        assert response.status_code == 200

    def test_refresh_without_token(self, app):
        response = client_for(app).post("/api/auth/refresh")
        assert response.status_code == 401

    def test_logout_clears_cookies(self, app):
        response = client_for(app).post("/api/auth/logout")

        assert response.status_code == 200
        set_cookies = response.headers.get_list("set-cookie")
        assert any(c.startswith(f"{ACCESS_COOKIE}=") for c in set_cookies)
        assert any(c.startswith(f"{REFRESH_COOKIE}=") for c in set_cookies)

    def test_register_creates_inactive_agent(self, app, store):
        payload = {
            "name": "New Agent",
            "email": "new@example.com",
            "password": "pass1234",
            "mobileNumber": "5550199",
            "countryCode": "+44",
        }
        client = client_for(app)

        first = client.post("/api/auth/register", json=payload)
        second = client.post("/api/auth/register", json=payload)

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["error"] == "conflict"
        (user,) = store.state.users.values()
        assert user.active is False
        assert user.country_code == "+44"

    def test_register_validation_error(self, app):
        response = client_for(app).post("/api/auth/register", json={"email": "x@y.z"})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"
        assert response.json()["details"]

    def test_add_agent_requires_admin(self, app, store, admin):
        payload = {
            "name": "Provisioned",
            "email": "prov@example.com",
            "password": "pass1234",
            "mobileNumber": "5550123",
            "countryCode": "+1",
        }
        agent = store.seed_user()

        denied = client_for(app, agent).post("/api/auth/add-agent", json=payload)
        created = client_for(app, admin).post("/api/auth/add-agent", json=payload)

        assert denied.status_code == 403
        assert created.status_code == 201
        assert created.json()["agent"]["active"] is True
        assert "password_hash" not in created.json()["agent"]


# =============================================================================
# Tasks
# =============================================================================


class TestUploadAndDistribute:
    def test_seven_rows_three_agents(self, app, store, admin):
        agents = store.seed_agents(3)

        response = upload(client_for(app, admin), SEVEN_ROWS)

        assert response.status_code == 200
        body = response.json()
        assert body["task_count"] == 7
        assert body["agent_count"] == 3
        sizes = {b["agent_id"]: len(b["task_ids"]) for b in body["batches"]}
        assert [sizes[str(a.id)] for a in agents] == [3, 2, 2]

    def test_workbook_upload(self, app, store, admin):
        from tests.test_spreadsheet import XLSX, make_xlsx

        store.seed_agents(2)
        content = make_xlsx([["FirstName", "Phone", "Notes"], ["Ada", "1", ""], ["Bob", "2", ""]])

        response = upload(client_for(app, admin), content, XLSX, "c.xlsx")

        assert response.status_code == 200
        assert response.json()["task_count"] == 2

    def test_agent_cannot_upload(self, app, store):
        agent = store.seed_user()
        response = upload(client_for(app, agent), SEVEN_ROWS)

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"
        assert store.state.tasks == {}

    def test_anonymous_cannot_upload(self, app):
        assert upload(client_for(app), SEVEN_ROWS).status_code == 401

    def test_unsupported_type(self, app, store, admin):
        store.seed_agents(1)
        response = upload(client_for(app, admin), b"%PDF-1.4", "application/pdf", "c.pdf")

        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_file_type"
        assert store.state.tasks == {}

    def test_missing_notes_column_persists_nothing(self, app, store, admin):
        store.seed_agents(2)
        response = upload(client_for(app, admin), b"FirstName,Phone\nAda,1\n")

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_schema"
        assert body["message"] == "Invalid format. Required columns: FirstName, Phone, Notes"
        assert store.state.tasks == {}

    def test_empty_file(self, app, store, admin):
        store.seed_agents(1)
        response = upload(client_for(app, admin), b"")

        assert response.status_code == 400
        assert response.json()["message"] == "File is empty or invalid"

    def test_no_active_agents(self, app, store, admin):
        store.seed_agents(2, active=False)
        response = upload(client_for(app, admin), SEVEN_ROWS)

        assert response.status_code == 400
        assert response.json()["error"] == "no_active_agents"
        assert response.json()["message"] == "No agents available to distribute tasks"
        assert store.state.tasks == {}

    def test_upload_too_large(self, app, store, admin, monkeypatch):
        monkeypatch.setenv("MAX_UPLOAD_BYTES", "16")
        reset_settings()
        store.seed_agents(1)

        response = upload(client_for(app, admin), SEVEN_ROWS)

        assert response.status_code == 413
        assert response.json()["error"] == "payload_too_large"

    def test_database_failure_is_503(self, app, store, admin):
        store.seed_agents(1)
        store.fail_batch_insert = True

        response = upload(client_for(app, admin), SEVEN_ROWS)

        assert response.status_code == 503
        assert response.json()["error"] == "database_error"
        assert store.state.tasks == {}


class TestUploadHandling:
    @pytest.mark.asyncio
    async def test_declared_size_rejected_before_reading(self, store, admin):
        from agentx.routers.tasks import upload_tasks

        sheet = UploadFile(
            file=io.BytesIO(SEVEN_ROWS),
            filename="c.csv",
            size=10 * 1024 * 1024 * 1024,
            headers=Headers({"content-type": CSV}),
        )
        sheet.read = AsyncMock()
        auth = AuthContext(user_id=admin.id, role=admin.role)

        with pytest.raises(PayloadTooLargeError):
            await upload_tasks(sheet, auth=auth, store=store)

        sheet.read.assert_not_called()
        assert store.state.tasks == {}

    def test_parse_runs_in_threadpool(self, app, store, admin):
        store.seed_agents(1)

        with patch(
            "agentx.routers.tasks.run_in_threadpool", wraps=run_in_threadpool
        ) as offload:
            response = upload(client_for(app, admin), SEVEN_ROWS)

        assert response.status_code == 200
        offload.assert_called_once()
        assert offload.call_args[0][0] is load_tasks


class TestAgentTasks:
    def test_agent_sees_and_completes_own_tasks(self, app, store, admin):
        first, second = store.seed_agents(2)
        upload(client_for(app, admin), SEVEN_ROWS)
        client = client_for(app, first)

        batches = client.get("/api/tasks/agent-tasks").json()

        assert len(batches) == 1
        tasks = batches[0]["tasks"]
        assert [t["first_name"] for t in tasks] == [
            "Contact 1",
            "Contact 2",
            "Contact 3",
            "Contact 7",
        ]
        assert all(t["completed"] is False for t in tasks)

        task_id = tasks[0]["id"]
        response = client.put(
            f"/api/tasks/agent-tasks/{task_id}/status", json={"completed": True}
        )
        assert response.status_code == 200
        assert response.json()["task"]["completed"] is True

        denied = client_for(app, second).put(
            f"/api/tasks/agent-tasks/{task_id}/status", json={"completed": False}
        )
        assert denied.status_code == 403
        assert denied.json()["error"] == "not_assigned"

    def test_assigned_but_missing_task_is_404(self, app, store):
        agent = store.seed_user()
        missing_id = uuid4()
        store.seed_batch(agent.id, [missing_id])

        response = client_for(app, agent).put(
            f"/api/tasks/agent-tasks/{missing_id}/status", json={"completed": True}
        )

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["message"] == "Task not found"
        assert "request_id" in body

    def test_status_body_required(self, app, store):
        agent = store.seed_user()
        response = client_for(app, agent).put(
            "/api/tasks/agent-tasks/00000000-0000-0000-0000-000000000000/status", json={}
        )
        assert response.status_code == 422

    def test_agent_without_batches(self, app, store):
        agent = store.seed_user()
        response = client_for(app, agent).get("/api/tasks/agent-tasks")
        assert response.status_code == 200
        assert response.json() == []


class TestReconcileEndpoint:
    def test_reconcile_orphans(self, app, store, admin):
        store.seed_agents(2)
        store.seed_tasks(3)

        response = client_for(app, admin).post("/api/tasks/reconcile")

        assert response.status_code == 200
        assert response.json()["task_count"] == 3
        assert len(response.json()["batches"]) == 2

    def test_reconcile_nothing(self, app, admin):
        response = client_for(app, admin).post("/api/tasks/reconcile")
        assert response.json() == {"message": "No orphaned tasks", "task_count": 0, "batches": []}


# =============================================================================
# Agents & Dashboard
# =============================================================================


class TestAgentsEndpoints:
    def test_list_and_toggle(self, app, store, admin):
        agent = store.seed_user(active=False)
        client = client_for(app, admin)

        listed = client.get("/api/agents").json()
        assert [a["id"] for a in listed] == [str(agent.id)]

        response = client.patch(f"/api/agents/{agent.id}", json={"active": True})
        assert response.status_code == 200
        assert response.json()["active"] is True
        assert store.state.users[agent.id].active is True

    def test_agents_forbidden_for_agent(self, app, store):
        agent = store.seed_user()
        assert client_for(app, agent).get("/api/agents").status_code == 403


class TestDashboard:
    def test_dashboard_profile(self, app, store):
        agent = store.seed_user(name="Grace")
        response = client_for(app, agent).get("/api/dashboard")

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "agent"
        assert body["user"]["name"] == "Grace"
