"""
Workflow Deployment Service
Bridges campaigns and their flows to the external automation engine.

Deployment only persists the workflow id after the engine accepted and
activated the workflow, so a rejected deploy leaves the campaign as it was.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy.orm import sessionmaker

from app.domain.errors import (
    DeploymentRejectedError,
    FlowValidationError,
    NotFoundError,
    WorkflowNotDeployedError,
)
from app.domain.interfaces.automation_engine import AutomationEngine
from app.domain.models.campaign import Campaign
from app.domain.models.flow import FlowData, find_graph_problems
from app.domain.models.workflow import (
    DeploymentResult,
    DeployedWorkflow,
    TriggerResult,
    WorkflowDefinition,
    WorkflowStatus,
)
from app.infrastructure.automation.flow_translator import FlowTranslator
from app.infrastructure.storage.campaign_store import CampaignStore, default_webhook_path
from app.infrastructure.storage.database import session_scope

logger = logging.getLogger(__name__)


class WorkflowDeploymentService:
    """
    Deploys campaign flows to n8n and starts their executions.

    Responsibilities:
    - Validate flow graphs before they reach the engine
    - Translate flows to engine workflows and (re)deploy them
    - Trigger executions through the workflow's webhook
    - Report deployment state and execution history
    """

    EXECUTION_HISTORY_LIMIT = 20

    def __init__(
        self,
        session_factory: sessionmaker,
        engine: AutomationEngine,
        store: Optional[CampaignStore] = None,
        translator: Optional[FlowTranslator] = None,
    ):
        self._session_factory = session_factory
        self.engine = engine
        self.store = store or CampaignStore()
        self.translator = translator or FlowTranslator()

    @staticmethod
    def validate_flow(flow: FlowData) -> None:
        """
        Raises:
            FlowValidationError: Flow has no nodes
            DeploymentRejectedError: Graph breaks a structural invariant
        """
        if flow.is_empty:
            raise FlowValidationError("Flow has no nodes. Add at least one node before deploying.")

        problems = find_graph_problems(flow)
        if problems:
            raise DeploymentRejectedError("Flow cannot be deployed: " + "; ".join(problems))

    async def deploy(self, campaign_id: str, flow: Optional[FlowData] = None) -> DeploymentResult:
        """
        Deploy the campaign's flow (or `flow`, which is saved on success).

        Returns:
            Workflow id and, when the flow has a trigger node, its webhook URL
        """
        save_flow = flow is not None
        with session_scope(self._session_factory) as db:
            campaign = self.store.get(db, campaign_id)
            if flow is None:
                flow = self.store.get_flow(db, campaign_id)

        self.validate_flow(flow)

        webhook_path = campaign.webhook_path or default_webhook_path(campaign.id)
        definition = self.translator.translate(
            flow,
            workflow_name=f"{campaign.name} [{campaign.id[:8]}]",
            webhook_path=webhook_path,
        )

        deployed = await self._push(campaign, definition)
        if definition.webhook_path:
            deployed = await self.engine.activate_workflow(deployed.workflow_id)

        now = datetime.utcnow()
        values: Dict[str, Any] = {
            "n8n_workflow_id": deployed.workflow_id,
            "deployed_at": now,
            "webhook_path": definition.webhook_path or webhook_path,
        }
        if save_flow:
            values["flow_data"] = flow.to_storage()
            values["flow_updated_at"] = now

        with session_scope(self._session_factory) as db:
            self.store.update_fields(db, campaign_id, **values)

        webhook_url = self.engine.webhook_url(definition.webhook_path) if definition.webhook_path else None
        logger.info(
            f"Campaign {campaign_id} deployed as workflow {deployed.workflow_id}"
            + (f" (webhook: {webhook_url})" if webhook_url else "")
        )
        return DeploymentResult(n8n_workflow_id=deployed.workflow_id, webhook_url=webhook_url)

    async def _push(self, campaign: Campaign, definition: WorkflowDefinition) -> DeployedWorkflow:
        """Update the existing workflow, or create one if there is none (any more)."""
        if campaign.n8n_workflow_id:
            try:
                return await self.engine.update_workflow(campaign.n8n_workflow_id, definition)
            except NotFoundError:
                logger.warning(
                    f"Workflow {campaign.n8n_workflow_id} vanished from {self.engine.name}, creating a new one"
                )
        return await self.engine.create_workflow(definition)

    async def trigger(self, campaign_id: str, payload: Optional[Dict[str, Any]] = None) -> TriggerResult:
        """Start one execution of the campaign's deployed workflow"""
        with session_scope(self._session_factory) as db:
            campaign = self.store.get(db, campaign_id)

        return await self.trigger_campaign(campaign, payload or {
            "event": "manual_trigger",
            "campaignId": campaign.id,
            "triggeredAt": datetime.utcnow().isoformat(),
        })

    async def trigger_campaign(self, campaign: Campaign, payload: Dict[str, Any]) -> TriggerResult:
        """
        Trigger an already-loaded campaign. Does not touch the database;
        callers must not hold a transaction open across this await.

        Raises:
            WorkflowNotDeployedError: No workflow id
            FlowValidationError: Flow has no trigger node to call
            EngineUnreachableError: Engine timed out or is down
        """
        if not campaign.is_deployed:
            raise WorkflowNotDeployedError("Campaign flow must be deployed to n8n before it can be triggered")

        flow = campaign.flow_data or FlowData.empty()
        if flow.trigger_node() is None:
            raise FlowValidationError("Campaign flow has no trigger node to start it with")

        webhook_path = campaign.webhook_path or default_webhook_path(campaign.id)
        return await self.engine.trigger_webhook(webhook_path, payload)

    async def poll_status(self, campaign_id: str) -> WorkflowStatus:
        """Deployment state plus recent engine executions (read-only)"""
        with session_scope(self._session_factory) as db:
            campaign = self.store.get(db, campaign_id)

        if not campaign.is_deployed:
            return WorkflowStatus(is_deployed=False)

        workflow = await self.engine.get_workflow(campaign.n8n_workflow_id)
        executions = []
        if workflow is not None:
            executions = await self.engine.list_executions(
                campaign.n8n_workflow_id,
                limit=self.EXECUTION_HISTORY_LIMIT,
            )

        return WorkflowStatus(
            is_deployed=True,
            n8n_workflow_id=campaign.n8n_workflow_id,
            is_active=bool(workflow and workflow.active),
            is_stale=campaign.is_stale,
            deployed_at=campaign.deployed_at,
            executions=executions,
        )

    async def test_connection(self) -> bool:
        try:
            return await self.engine.ping()
        except Exception as e:
            logger.warning(f"Automation engine connection test failed: {e}")
            return False
