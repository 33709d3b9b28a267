"""
Shared test fixtures
In-memory SQLite session factory, a recording fake automation engine and
the full service graph wired to both.
"""
import os
import uuid
from typing import Any, Dict, List, Optional

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from app.domain.errors import EngineUnreachableError, NotFoundError
from app.domain.interfaces.automation_engine import AutomationEngine
from app.domain.models.campaign import CampaignCreate
from app.domain.models.flow import FlowData
from app.domain.models.segment import Recipient
from app.domain.models.workflow import (
    DeployedWorkflow,
    EngineExecution,
    TriggerResult,
    WorkflowDefinition,
)
from app.domain.services.container import build_services
from app.infrastructure.storage.database import create_db_engine, create_session_factory, session_scope


class FakeAutomationEngine(AutomationEngine):
    """
    In-memory stand-in for n8n.

    Records every call; set `unreachable = True` to make every call fail
    like a timed-out engine, or `fail_emails` to fail triggers for some
    recipients only.
    """

    def __init__(self):
        self.workflows: Dict[str, Dict[str, Any]] = {}
        self.triggers: List[Dict[str, Any]] = []
        self.created = 0
        self.updated = 0
        self.unreachable = False
        self.fail_emails: set = set()

    @property
    def name(self) -> str:
        return "fake"

    def _check(self) -> None:
        if self.unreachable:
            raise EngineUnreachableError("n8n did not respond within 10.0s")

    def webhook_url(self, webhook_path: str) -> str:
        return f"http://n8n.test/webhook/{webhook_path}"

    async def create_workflow(self, definition: WorkflowDefinition) -> DeployedWorkflow:
        self._check()
        workflow_id = f"wf-{len(self.workflows) + 1}"
        self.workflows[workflow_id] = {"definition": definition, "active": False}
        self.created += 1
        return DeployedWorkflow(workflow_id=workflow_id, active=False, name=definition.name)

    async def update_workflow(self, workflow_id: str, definition: WorkflowDefinition) -> DeployedWorkflow:
        self._check()
        if workflow_id not in self.workflows:
            raise NotFoundError(f"n8n workflow {workflow_id} not found")
        self.workflows[workflow_id]["definition"] = definition
        self.updated += 1
        return DeployedWorkflow(
            workflow_id=workflow_id,
            active=self.workflows[workflow_id]["active"],
            name=definition.name,
        )

    async def activate_workflow(self, workflow_id: str) -> DeployedWorkflow:
        self._check()
        self.workflows[workflow_id]["active"] = True
        return DeployedWorkflow(workflow_id=workflow_id, active=True)

    async def get_workflow(self, workflow_id: str) -> Optional[DeployedWorkflow]:
        self._check()
        workflow = self.workflows.get(workflow_id)
        if workflow is None:
            return None
        return DeployedWorkflow(workflow_id=workflow_id, active=workflow["active"])

    async def list_executions(self, workflow_id: str, limit: int = 20) -> List[EngineExecution]:
        self._check()
        return [
            EngineExecution(id=f"exec-{i}", status="success", finished=True)
            for i in range(min(len(self.triggers), limit))
        ]

    async def trigger_webhook(self, webhook_path: str, payload: Dict[str, Any]) -> TriggerResult:
        self._check()
        if payload.get("email") in self.fail_emails:
            raise EngineUnreachableError("n8n returned 503")
        self.triggers.append({"path": webhook_path, "payload": payload})
        return TriggerResult(execution_id=f"exec-{uuid.uuid4().hex[:8]}")

    async def ping(self) -> bool:
        return not self.unreachable


def make_flow(with_condition: bool = False) -> FlowData:
    """Trigger -> send email (-> condition with both branches)"""
    nodes = [
        {"id": "n1", "type": "trigger", "position": {"x": 0, "y": 0}, "data": {"label": "Start"}},
        {
            "id": "n2",
            "type": "sendEmail",
            "position": {"x": 200, "y": 0},
            "data": {
                "label": "Welcome",
                "properties": {"subject": "Hi {{name}}", "body": "Welcome aboard"},
            },
        },
    ]
    edges = [{"id": "e1", "source": "n1", "target": "n2"}]

    if with_condition:
        nodes += [
            {
                "id": "n3",
                "type": "condition",
                "data": {"label": "Opened?", "properties": {"field": "{{opened}}", "operator": "equals", "value": "yes"}},
            },
            {"id": "n4", "type": "sendEmail", "data": {"label": "Thanks"}},
            {"id": "n5", "type": "wait", "data": {"label": "Wait", "properties": {"amount": 2, "unit": "days"}}},
        ]
        edges += [
            {"id": "e2", "source": "n2", "target": "n3"},
            {"id": "e3", "source": "n3", "target": "n4", "sourceHandle": "true"},
            {"id": "e4", "source": "n3", "target": "n5", "sourceHandle": "false"},
        ]

    return FlowData.model_validate({"nodes": nodes, "edges": edges})


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    factory = create_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def fake_engine():
    return FakeAutomationEngine()


@pytest.fixture
def services(session_factory, fake_engine):
    return build_services(session_factory=session_factory, engine=fake_engine)


@pytest.fixture
def file_services(tmp_path, fake_engine):
    """Services on a file-backed SQLite database, where writers really lock each other out"""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'campaigns.db'}")
    yield build_services(session_factory=create_session_factory(engine), engine=fake_engine)
    engine.dispose()


@pytest.fixture
def create_campaign(services):
    """Factory: create a campaign, optionally with a segment of `recipients` members and a flow"""

    def _create(name: str = "Spring Launch", recipients: int = 0, flow: Optional[FlowData] = None) -> str:
        with session_scope(services.session_factory) as db:
            segment_id = None
            if recipients:
                segment = services.segments.create(db, f"{name} audience")
                services.segments.add_members(db, segment.id, [
                    Recipient(email=f"user{i}@example.com", name=f"User {i}")
                    for i in range(1, recipients + 1)
                ])
                segment_id = segment.id

            campaign = services.campaigns.create(db, CampaignCreate(name=name, segment_id=segment_id))
            if flow is not None:
                services.campaigns.save_flow(db, campaign.id, flow)
            return campaign.id

    return _create


@pytest.fixture
def deployed_campaign(services, create_campaign):
    """Factory: create a campaign with a flow and deploy it"""

    async def _create(recipients: int = 3, name: str = "Spring Launch") -> str:
        campaign_id = create_campaign(name=name, recipients=recipients, flow=make_flow())
        await services.deployment.deploy(campaign_id)
        return campaign_id

    return _create


@pytest.fixture
def simple_flow() -> FlowData:
    return make_flow()


@pytest.fixture
def branching_flow() -> FlowData:
    return make_flow(with_condition=True)
