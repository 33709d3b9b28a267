"""
Campaigns API
Campaign CRUD, flow editing, n8n deployment and run control

Lifecycle routes (status / schedule / run-now / pause / resume /
retry-failed) go through the lifecycle controller; CampaignError
subclasses raised below are rendered by the app-level exception handler
as {"message", "error"} with the error's HTTP status.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from app.api.v1.dependencies import (
    get_campaign_store,
    get_db,
    get_deployment_service,
    get_ledger,
    get_lifecycle_controller,
)
from app.domain.errors import CampaignError, FlowValidationError
from app.domain.models.campaign import Campaign, CampaignCreate, CampaignStatus
from app.domain.models.execution_record import AttemptUpdate, ExecutionRecord
from app.domain.models.flow import FlowData
from app.domain.models.progress import ProgressSnapshot
from app.domain.models.workflow import DeploymentResult, WorkflowStatus
from app.domain.services.deployment_service import WorkflowDeploymentService
from app.domain.services.execution_ledger import ExecutionLedger
from app.domain.services.lifecycle_controller import CampaignLifecycleController, to_naive_utc
from app.infrastructure.storage.campaign_store import CampaignStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StatusChangeRequest(CamelModel):
    """Request body for PATCH /campaigns/{id}/status"""
    status: str


class FlowSaveRequest(CamelModel):
    """Request body carrying a full flow graph"""
    flow_data: FlowData


class ScheduleRequest(CamelModel):
    """Request body for scheduling a campaign"""
    scheduled_at: datetime


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


@router.get("/", response_model=List[Campaign])
async def list_campaigns(
    status: Optional[str] = Query(None, description="Filter by campaign status"),
    db: Session = Depends(get_db),
    store: CampaignStore = Depends(get_campaign_store),
):
    """List all campaigns, newest first"""
    if status is not None:
        try:
            status = CampaignStatus(status).value
        except ValueError:
            raise FlowValidationError(f"Unknown campaign status '{status}'")
    return store.list(db, status)


@router.post("/", response_model=Campaign, status_code=201)
async def create_campaign(
    body: CampaignCreate,
    db: Session = Depends(get_db),
    store: CampaignStore = Depends(get_campaign_store),
):
    """Create a campaign in draft status"""
    return store.create(db, body)


# Declared before /{campaign_id} routes so "n8n" is not taken for an id
@router.get("/n8n/test-connection")
async def test_n8n_connection(
    deployment: WorkflowDeploymentService = Depends(get_deployment_service),
):
    """Check that the automation engine answers"""
    connected = await deployment.test_connection()
    return {"connected": connected}


@router.get("/{campaign_id}", response_model=Campaign)
async def get_campaign(
    campaign_id: str,
    db: Session = Depends(get_db),
    store: CampaignStore = Depends(get_campaign_store),
):
    """Get campaign details"""
    return store.get(db, campaign_id)


# =============================================================================
# Flow Builder
# =============================================================================

@router.get("/{campaign_id}/flow")
async def get_campaign_flow(
    campaign_id: str,
    db: Session = Depends(get_db),
    store: CampaignStore = Depends(get_campaign_store),
):
    """Get the campaign's flow graph (empty graph when none was saved)"""
    flow = store.get_flow(db, campaign_id)
    return {"flowData": flow.to_storage()}


@router.patch("/{campaign_id}/flow", response_model=Campaign)
async def save_campaign_flow(
    campaign_id: str,
    body: FlowSaveRequest,
    db: Session = Depends(get_db),
    store: CampaignStore = Depends(get_campaign_store),
):
    """
    Replace the campaign's flow graph.

    Status is not changed. An already deployed workflow keeps running the
    previous graph until the flow is deployed again.
    """
    campaign = store.save_flow(db, campaign_id, body.flow_data)
    logger.info(
        f"Flow saved for campaign {campaign_id} "
        f"({len(body.flow_data.nodes)} nodes, {len(body.flow_data.edges)} edges)"
    )
    return campaign


@router.post("/{campaign_id}/deploy-flow")
async def deploy_campaign_flow(
    campaign_id: str,
    body: Optional[FlowSaveRequest] = None,
    deployment: WorkflowDeploymentService = Depends(get_deployment_service),
):
    """
    Deploy the campaign flow to n8n.

    When a flowData body is sent it is deployed and, on success, saved;
    otherwise the stored flow is deployed.
    """
    try:
        result: DeploymentResult = await deployment.deploy(
            campaign_id,
            flow=body.flow_data if body else None,
        )
        payload = _dump(result)
        payload["message"] = "Flow deployed to n8n"
        return payload
    except CampaignError:
        raise
    except Exception as e:
        logger.error(f"Deploy failed for campaign {campaign_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{campaign_id}/workflow-status", response_model=WorkflowStatus)
async def get_workflow_status(
    campaign_id: str,
    deployment: WorkflowDeploymentService = Depends(get_deployment_service),
):
    """Deployment state and recent n8n executions"""
    return await deployment.poll_status(campaign_id)


@router.post("/{campaign_id}/trigger-workflow")
async def trigger_workflow(
    campaign_id: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    deployment: WorkflowDeploymentService = Depends(get_deployment_service),
):
    """Start one execution of the deployed workflow"""
    result = await deployment.trigger(campaign_id, payload)
    return {"message": "Workflow triggered", "executionId": result.execution_id}


# =============================================================================
# Lifecycle
# =============================================================================

@router.patch("/{campaign_id}/status", response_model=Campaign)
async def change_campaign_status(
    campaign_id: str,
    body: StatusChangeRequest,
    controller: CampaignLifecycleController = Depends(get_lifecycle_controller),
):
    """Change status manually, following the transition table"""
    return await controller.change_status(campaign_id, body.status)


@router.post("/{campaign_id}/schedule", response_model=Campaign)
async def schedule_campaign(
    campaign_id: str,
    body: ScheduleRequest,
    controller: CampaignLifecycleController = Depends(get_lifecycle_controller),
):
    """Schedule a deployed campaign to start at scheduledAt"""
    return controller.schedule(campaign_id, body.scheduled_at)


@router.post("/{campaign_id}/run-now")
async def run_campaign_now(
    campaign_id: str,
    controller: CampaignLifecycleController = Depends(get_lifecycle_controller),
):
    """
    Start the campaign immediately.

    Seeds one pending execution record per segment member and triggers the
    workflow; the background worker then dispatches the recipients.
    """
    result = await controller.run_now(campaign_id)
    return {
        "message": f"Campaign started with {result['queued']} recipients",
        "executionId": result["execution_id"],
        "queued": result["queued"],
        "campaign": _dump(result["campaign"]),
    }


@router.post("/{campaign_id}/pause", response_model=Campaign)
async def pause_campaign(
    campaign_id: str,
    controller: CampaignLifecycleController = Depends(get_lifecycle_controller),
):
    """Pause a running campaign; recipients already claimed still finish"""
    return controller.pause(campaign_id)


@router.post("/{campaign_id}/resume", response_model=Campaign)
async def resume_campaign(
    campaign_id: str,
    controller: CampaignLifecycleController = Depends(get_lifecycle_controller),
):
    """Resume a paused campaign"""
    return controller.resume(campaign_id)


@router.post("/{campaign_id}/retry-failed")
async def retry_failed_recipients(
    campaign_id: str,
    controller: CampaignLifecycleController = Depends(get_lifecycle_controller),
):
    """Requeue failed recipients as pending"""
    count = controller.retry_failed(campaign_id)
    if count == 0:
        message = "No failed recipients to retry"
    else:
        message = f"Requeued {count} failed recipients"
    return {"message": message, "requeuedCount": count}


# =============================================================================
# Progress & Executions
# =============================================================================

@router.get("/{campaign_id}/progress", response_model=ProgressSnapshot)
async def get_campaign_progress(
    campaign_id: str,
    ledger: ExecutionLedger = Depends(get_ledger),
):
    """Aggregate progress over all execution records"""
    return ledger.snapshot(campaign_id)


@router.get("/{campaign_id}/executions")
async def list_campaign_executions(
    campaign_id: str,
    status: Optional[str] = Query(None, description="Filter by execution status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ledger: ExecutionLedger = Depends(get_ledger),
):
    """Paginated execution records in insertion order"""
    result = ledger.query(campaign_id, status=status, page=page, page_size=limit)
    result["data"] = [_dump(record) for record in result["data"]]
    return result


@router.post("/{campaign_id}/executions/{execution_id}/attempt")
async def record_execution_attempt(
    campaign_id: str,
    execution_id: str,
    body: AttemptUpdate,
    ledger: ExecutionLedger = Depends(get_ledger),
    controller: CampaignLifecycleController = Depends(get_lifecycle_controller),
):
    """
    Attempt callback for a single recipient.

    Used by n8n (or a worker) to report the outcome of a send. Re-posting
    the record's current status is a no-op.
    """
    record: ExecutionRecord = ledger.record_attempt(
        execution_id,
        body.status,
        processed_at=to_naive_utc(body.processed_at) if body.processed_at else None,
        worker_id=body.worker_id,
        error=body.error,
        campaign_id=campaign_id,
    )
    completed = controller.complete_if_finished(campaign_id)
    return {"execution": _dump(record), "campaignCompleted": completed}
