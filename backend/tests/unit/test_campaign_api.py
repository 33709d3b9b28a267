"""
Tests for the Campaigns and Segments API
Runs the FastAPI app against in-memory SQLite and the fake automation engine
"""
import pytest
from datetime import datetime, timedelta

from fastapi.testclient import TestClient

from app.api.v1.dependencies import get_services
from app.main import app


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def segment_id(client):
    response = client.post("/api/v1/segments/", json={
        "name": "Early adopters",
        "members": [
            {"email": "ada@example.com", "name": "Ada"},
            {"email": "grace@example.com", "name": "Grace"},
            {"email": "linus@example.com"},
        ],
    })
    assert response.status_code == 201
    return response.json()["segment"]["id"]


@pytest.fixture
def campaign_id(client, segment_id):
    response = client.post("/api/v1/campaigns/", json={"name": "Spring Launch", "segmentId": segment_id})
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def deployed_id(client, campaign_id, simple_flow):
    response = client.post(
        f"/api/v1/campaigns/{campaign_id}/deploy-flow",
        json={"flowData": simple_flow.to_storage()},
    )
    assert response.status_code == 200
    return campaign_id


class TestCampaignCrud:
    """Tests for campaign create/list/get"""

    def test_create_campaign(self, client):
        response = client.post("/api/v1/campaigns/", json={"name": "Spring Launch"})

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "draft"
        assert data["n8nWorkflowId"] is None
        assert data["totalSent"] == 0

    def test_create_requires_name(self, client):
        response = client.post("/api/v1/campaigns/", json={"description": "no name"})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"
        assert "name" in response.json()["message"]

    def test_list_and_filter(self, client, campaign_id):
        client.post("/api/v1/campaigns/", json={"name": "Other"})

        everything = client.get("/api/v1/campaigns/").json()
        drafts = client.get("/api/v1/campaigns/", params={"status": "draft"}).json()
        running = client.get("/api/v1/campaigns/", params={"status": "running"}).json()

        assert len(everything) == 2
        assert len(drafts) == 2
        assert running == []

    def test_list_unknown_status(self, client):
        response = client.get("/api/v1/campaigns/", params={"status": "archived"})

        assert response.status_code == 400

    def test_get_missing_campaign(self, client):
        response = client.get("/api/v1/campaigns/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {
            "message": "Campaign does-not-exist not found",
            "error": "not_found",
        }


class TestFlowEndpoints:
    """Tests for flow load/save/deploy"""

    def test_empty_flow(self, client, campaign_id):
        response = client.get(f"/api/v1/campaigns/{campaign_id}/flow")

        assert response.status_code == 200
        assert response.json() == {"flowData": {"nodes": [], "edges": []}}

    def test_save_flow_keeps_status(self, client, campaign_id, branching_flow):
        response = client.patch(
            f"/api/v1/campaigns/{campaign_id}/flow",
            json={"flowData": branching_flow.to_storage()},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "draft"

        flow = client.get(f"/api/v1/campaigns/{campaign_id}/flow").json()["flowData"]
        assert [node["id"] for node in flow["nodes"]] == ["n1", "n2", "n3", "n4", "n5"]

    def test_save_invalid_node_type(self, client, campaign_id):
        response = client.patch(
            f"/api/v1/campaigns/{campaign_id}/flow",
            json={"flowData": {"nodes": [{"id": "x", "type": "sendFax"}], "edges": []}},
        )

        assert response.status_code == 422

    def test_deploy_empty_flow(self, client, campaign_id):
        response = client.post(f"/api/v1/campaigns/{campaign_id}/deploy-flow")

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_deploy_flow(self, client, campaign_id, simple_flow):
        response = client.post(
            f"/api/v1/campaigns/{campaign_id}/deploy-flow",
            json={"flowData": simple_flow.to_storage()},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["n8nWorkflowId"] == "wf-1"
        assert data["webhookUrl"].endswith(f"/webhook/campaign-{campaign_id}")

        campaign = client.get(f"/api/v1/campaigns/{campaign_id}").json()
        assert campaign["n8nWorkflowId"] == "wf-1"

    def test_deploy_with_engine_down(self, client, campaign_id, simple_flow, fake_engine):
        fake_engine.unreachable = True

        response = client.post(
            f"/api/v1/campaigns/{campaign_id}/deploy-flow",
            json={"flowData": simple_flow.to_storage()},
        )

        assert response.status_code == 502
        assert response.json()["error"] == "engine_unreachable"

    def test_workflow_status(self, client, deployed_id):
        client.post(f"/api/v1/campaigns/{deployed_id}/trigger-workflow")

        data = client.get(f"/api/v1/campaigns/{deployed_id}/workflow-status").json()

        assert data["isDeployed"] is True
        assert data["isActive"] is True
        assert data["n8nWorkflowId"] == "wf-1"
        assert len(data["executions"]) == 1

    def test_trigger_undeployed(self, client, campaign_id):
        response = client.post(f"/api/v1/campaigns/{campaign_id}/trigger-workflow")

        assert response.status_code == 409
        assert response.json()["error"] == "workflow_not_deployed"

    def test_trigger_returns_execution_id(self, client, deployed_id):
        response = client.post(f"/api/v1/campaigns/{deployed_id}/trigger-workflow")

        assert response.status_code == 200
        assert response.json()["executionId"].startswith("exec-")

    def test_n8n_connection(self, client, fake_engine):
        assert client.get("/api/v1/campaigns/n8n/test-connection").json() == {"connected": True}

        fake_engine.unreachable = True
        assert client.get("/api/v1/campaigns/n8n/test-connection").json() == {"connected": False}


class TestLifecycleEndpoints:
    """Tests for status / schedule / run-now / pause / resume / retry"""

    def test_invalid_status_change(self, client, campaign_id):
        response = client.patch(f"/api/v1/campaigns/{campaign_id}/status", json={"status": "completed"})

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    def test_schedule_requires_deployment(self, client, campaign_id):
        when = (datetime.utcnow() + timedelta(days=1)).isoformat()

        response = client.post(f"/api/v1/campaigns/{campaign_id}/schedule", json={"scheduledAt": when})

        assert response.status_code == 409
        assert response.json()["error"] == "workflow_not_deployed"

    def test_schedule_in_past(self, client, deployed_id):
        when = (datetime.utcnow() - timedelta(hours=1)).isoformat()

        response = client.post(f"/api/v1/campaigns/{deployed_id}/schedule", json={"scheduledAt": when})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_schedule_time"

    def test_schedule(self, client, deployed_id):
        when = (datetime.utcnow() + timedelta(days=1)).isoformat() + "Z"

        response = client.post(f"/api/v1/campaigns/{deployed_id}/schedule", json={"scheduledAt": when})

        assert response.status_code == 200
        assert response.json()["status"] == "scheduled"
        assert response.json()["scheduledAt"] is not None

    def test_run_now_before_deploy(self, client, campaign_id):
        response = client.post(f"/api/v1/campaigns/{campaign_id}/run-now")

        assert response.status_code == 409

    def test_run_now_pause_resume(self, client, deployed_id):
        run = client.post(f"/api/v1/campaigns/{deployed_id}/run-now")

        assert run.status_code == 200
        data = run.json()
        assert data["queued"] == 3
        assert data["executionId"]
        assert data["campaign"]["status"] == "running"

        assert client.post(f"/api/v1/campaigns/{deployed_id}/pause").json()["status"] == "paused"

        again = client.post(f"/api/v1/campaigns/{deployed_id}/pause")
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_transition"

        assert client.post(f"/api/v1/campaigns/{deployed_id}/resume").json()["status"] == "running"

    def test_retry_failed_with_nothing_failed(self, client, deployed_id):
        client.post(f"/api/v1/campaigns/{deployed_id}/run-now")

        response = client.post(f"/api/v1/campaigns/{deployed_id}/retry-failed")

        assert response.json() == {"message": "No failed recipients to retry", "requeuedCount": 0}


class TestExecutionEndpoints:
    """Tests for progress, execution listing and the attempt callback"""

    def test_progress_and_executions(self, client, deployed_id):
        client.post(f"/api/v1/campaigns/{deployed_id}/run-now")

        progress = client.get(f"/api/v1/campaigns/{deployed_id}/progress").json()
        assert progress["totalRecipients"] == 3
        assert progress["pendingCount"] == 3
        assert progress["progressPercent"] == 0.0

        page = client.get(f"/api/v1/campaigns/{deployed_id}/executions", params={"page": 2, "limit": 2}).json()
        assert page["total"] == 3
        assert page["totalPages"] == 2
        assert len(page["data"]) == 1
        assert page["data"][0]["email"] == "linus@example.com"

    def test_invalid_page(self, client, deployed_id):
        response = client.get(f"/api/v1/campaigns/{deployed_id}/executions", params={"page": 0})

        assert response.status_code == 422

    def test_attempt_callback_completes_campaign(self, client, deployed_id):
        client.post(f"/api/v1/campaigns/{deployed_id}/run-now")
        records = client.get(f"/api/v1/campaigns/{deployed_id}/executions").json()["data"]

        for record, status in zip(records, ["success", "success", "failed"]):
            response = client.post(
                f"/api/v1/campaigns/{deployed_id}/executions/{record['id']}/attempt",
                json={"status": status, "error": "bounced" if status == "failed" else None},
            )
            assert response.status_code == 200

        assert response.json()["campaignCompleted"] is True
        campaign = client.get(f"/api/v1/campaigns/{deployed_id}").json()
        assert campaign["status"] == "completed"
        assert campaign["totalSent"] == 2
        assert campaign["totalFailed"] == 1

        retry = client.post(f"/api/v1/campaigns/{deployed_id}/retry-failed").json()
        assert retry["requeuedCount"] == 1

    def test_attempt_callback_invalid_transition(self, client, deployed_id):
        client.post(f"/api/v1/campaigns/{deployed_id}/run-now")
        record = client.get(f"/api/v1/campaigns/{deployed_id}/executions").json()["data"][0]
        url = f"/api/v1/campaigns/{deployed_id}/executions/{record['id']}/attempt"

        assert client.post(url, json={"status": "success"}).status_code == 200
        assert client.post(url, json={"status": "success"}).status_code == 200
        assert client.post(url, json={"status": "failed"}).status_code == 409


class TestSegmentEndpoints:
    """Tests for the segments API"""

    def test_get_segment(self, client, segment_id):
        data = client.get(f"/api/v1/segments/{segment_id}").json()

        assert data["name"] == "Early adopters"
        assert data["memberCount"] == 3

    def test_add_members_skips_duplicates(self, client, segment_id):
        response = client.post(f"/api/v1/segments/{segment_id}/members", json={"members": [
            {"email": "ADA@example.com"},
            {"email": "barbara@example.com"},
        ]})

        assert response.status_code == 200
        data = response.json()
        assert data["added"] == 1
        assert data["skipped"] == 1
        assert data["memberCount"] == 4

    def test_invalid_member_email(self, client, segment_id):
        response = client.post(f"/api/v1/segments/{segment_id}/members", json={"members": [{"email": "nope"}]})

        assert response.status_code == 422

    def test_list_members_paginated(self, client, segment_id):
        data = client.get(f"/api/v1/segments/{segment_id}/members", params={"page": 2, "page_size": 2}).json()

        assert data["total"] == 3
        assert data["items"] == [{"email": "linus@example.com", "name": None}]

    def test_missing_segment(self, client):
        response = client.get("/api/v1/segments/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
