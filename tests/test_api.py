"""
API tests
"""
import jwt
import pytest
from fastapi.testclient import TestClient

from lead_automation.api import create_app, install_runtime
from lead_automation.api.state import app_state
from lead_automation.config import EngineSettings
from lead_automation.runtime import build_in_memory_runtime


SECRET = "test-secret-with-at-least-32-bytes!!"


@pytest.fixture
def client(runtime):
    install_runtime(runtime)
    yield TestClient(create_app())
    app_state.pop("runtime", None)


@pytest.fixture
def published_workflow(client, welcome_definition):
    response = client.post("/api/v1/workflows", json=welcome_definition)
    workflow_id = response.json()["id"]
    client.post(f"/api/v1/workflows/{workflow_id}/publish")
    return workflow_id


class TestRootAPI:

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "Lead Automation API"

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"] is True
        assert data["checks"]["messaging"] == "InMemoryMessagingChannel"

    def test_request_id_is_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"
        assert "X-Process-Time" in response.headers

    def test_runtime_missing(self):
        app_state.pop("runtime", None)
        client = TestClient(create_app())

        response = client.get("/api/v1/workflows")

        assert response.status_code == 503


class TestWorkflowAPI:

    def test_create_workflow(self, client, welcome_definition):
        response = client.post("/api/v1/workflows", json=welcome_definition)

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Welcome and follow-up"
        assert data["trigger"] == {"type": "stage_change", "stage_id": "new-lead", "product_id": None}
        assert data["node_count"] == 6
        assert data["is_published"] is False

    def test_create_invalid_workflow(self, client):
        response = client.post("/api/v1/workflows", json={"nodes": [{"id": "m", "type": "message"}]})

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert "Workflow has no trigger node" in data["errors"]

    def test_validate_workflow(self, client, welcome_definition):
        valid = client.post("/api/v1/workflows/validate", json=welcome_definition)
        invalid = client.post("/api/v1/workflows/validate", json={"nodes": []})

        assert valid.json() == {"valid": True, "errors": [], "unreachable_nodes": []}
        assert invalid.json()["valid"] is False
        assert "Workflow has no trigger node" in invalid.json()["errors"]

    def test_get_workflow(self, client, published_workflow):
        response = client.get(f"/api/v1/workflows/{published_workflow}")

        assert response.status_code == 200
        data = response.json()
        assert data["is_published"] is True
        assert {n["id"] for n in data["definition"]["nodes"]} == {
            "trigger", "welcome", "wait-1d", "replied", "continue", "stop"
        }

    def test_get_unknown_workflow(self, client):
        response = client.get("/api/v1/workflows/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "workflow_not_found"

    def test_list_workflows(self, client, published_workflow, welcome_definition):
        client.post("/api/v1/workflows", json=welcome_definition)

        everything = client.get("/api/v1/workflows").json()
        published = client.get("/api/v1/workflows", params={"published": True}).json()

        assert everything["total"] == 2
        assert [w["id"] for w in published["items"]] == [published_workflow]

    def test_unpublish(self, client, published_workflow):
        response = client.post(f"/api/v1/workflows/{published_workflow}/publish", json={"is_published": False})

        assert response.status_code == 200
        assert response.json()["is_published"] is False


class TestExecutionAPI:

    def test_start_execution(self, client, published_workflow, messaging):
        response = client.post("/api/v1/executions", json={
            "workflow_id": published_workflow,
            "subject_id": "lead-1",
            "channel_id": "psid-1"
        })

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["current_node_id"] == "replied"
        assert data["scheduled_for"] is not None
        assert messaging.messages_for("psid-1") == ["Welcome"]

    def test_start_unpublished_workflow(self, client, welcome_definition):
        workflow_id = client.post("/api/v1/workflows", json=welcome_definition).json()["id"]

        response = client.post("/api/v1/executions", json={"workflow_id": workflow_id, "subject_id": "lead-1"})

        assert response.status_code == 409

    def test_test_run_unpublished_workflow(self, client, welcome_definition):
        workflow_id = client.post("/api/v1/workflows", json=welcome_definition).json()["id"]

        response = client.post("/api/v1/executions/test-run", json={
            "workflow_id": workflow_id,
            "subject_id": "lead-1",
            "channel_id": "psid-1"
        })

        assert response.status_code == 201
        assert response.json()["context_data"]["test_run"] is True

    def test_execution_events(self, client, published_workflow):
        execution_id = client.post("/api/v1/executions", json={
            "workflow_id": published_workflow,
            "subject_id": "lead-1",
            "channel_id": "psid-1"
        }).json()["id"]

        response = client.get(f"/api/v1/executions/{execution_id}/events")

        assert response.status_code == 200
        event_types = [e["event_type"] for e in response.json()]
        assert event_types[0] == "execution_started"
        assert event_types[-1] == "execution_suspended"

    def test_list_executions_requires_filter(self, client):
        response = client.get("/api/v1/executions")

        assert response.status_code == 400

    def test_list_executions_by_status(self, client, published_workflow):
        client.post("/api/v1/executions", json={"workflow_id": published_workflow, "subject_id": "lead-1"})

        response = client.get("/api/v1/executions", params={"status": "pending"})

        assert response.status_code == 200
        assert [e["subject_id"] for e in response.json()] == ["lead-1"]

    def test_get_unknown_execution(self, client):
        response = client.get("/api/v1/executions/missing")

        assert response.status_code == 404


class TestTriggerAndSchedulerAPI:

    def test_reply_then_tick(self, client, published_workflow, clock, messaging):
        started = client.post("/api/v1/triggers/stage-changed", json={
            "stage_id": "new-lead",
            "subject_id": "lead-1",
            "channel_id": "psid-1"
        }).json()
        assert started["started"] == 1
        execution_id = started["executions"][0]["id"]

        clock.advance(hours=1)
        recorded = client.post("/api/v1/subjects/lead-1/messages", json={
            "channel_id": "psid-1",
            "content": "Tell me more",
            "received_at": clock().isoformat()
        })
        assert recorded.status_code == 202

        clock.advance(hours=23)
        tick = client.post("/api/v1/scheduler/tick").json()

        assert tick["resumed"] == [execution_id]
        assert tick["statuses"] == {execution_id: "completed"}
        assert messaging.messages_for("psid-1") == ["Welcome", "Great, let's continue"]

    def test_product_purchased_without_match(self, client):
        response = client.post("/api/v1/triggers/product-purchased", json={
            "product_id": "course-101",
            "subject_id": "lead-1"
        })

        assert response.status_code == 200
        assert response.json() == {"started": 0, "executions": []}


class TestAuthentication:

    @pytest.fixture
    def secured_client(self):
        runtime = build_in_memory_runtime(EngineSettings(jwt_secret_key=SECRET))
        install_runtime(runtime)
        yield TestClient(create_app())
        app_state.pop("runtime", None)

    def test_missing_token(self, secured_client):
        response = secured_client.get("/api/v1/workflows")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_invalid_token(self, secured_client):
        token = jwt.encode({"sub": "user-1"}, "a-different-secret-of-the-same-length!", algorithm="HS256")

        response = secured_client.get("/api/v1/workflows", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    def test_valid_token(self, secured_client):
        token = jwt.encode({"sub": "user-1"}, SECRET, algorithm="HS256")

        response = secured_client.get("/api/v1/workflows", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200

    def test_health_stays_open(self, secured_client):
        assert secured_client.get("/api/v1/health").status_code == 200
