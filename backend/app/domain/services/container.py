"""
Service Container
Wires the campaign services to one database and one automation engine
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.core.config import ConfigManager, get_settings
from app.domain.interfaces.automation_engine import AutomationEngine
from app.domain.services.deployment_service import WorkflowDeploymentService
from app.domain.services.execution_ledger import ExecutionLedger
from app.domain.services.execution_scheduler import ExecutionScheduler
from app.domain.services.lifecycle_controller import CampaignLifecycleController
from app.infrastructure.automation.factory import AutomationEngineFactory
from app.infrastructure.automation.flow_translator import FlowTranslator
from app.infrastructure.storage.campaign_store import CampaignStore
from app.infrastructure.storage.database import get_session_factory
from app.infrastructure.storage.segment_store import SegmentStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    session_factory: sessionmaker
    engine: AutomationEngine
    campaigns: CampaignStore
    segments: SegmentStore
    ledger: ExecutionLedger
    deployment: WorkflowDeploymentService
    controller: CampaignLifecycleController
    scheduler: ExecutionScheduler


def build_services(
    session_factory: Optional[sessionmaker] = None,
    engine: Optional[AutomationEngine] = None,
) -> ServiceContainer:
    """
    Build the full service graph.

    Args:
        session_factory: Defaults to the process-wide factory from DATABASE_URL
        engine: Defaults to the n8n engine configured from settings
    """
    settings = get_settings()
    config = ConfigManager(env=settings.environment)

    session_factory = session_factory or get_session_factory()
    engine = engine or AutomationEngineFactory.create("n8n", settings)

    campaigns = CampaignStore()
    segments = SegmentStore()
    ledger = ExecutionLedger(session_factory)
    deployment = WorkflowDeploymentService(
        session_factory,
        engine,
        store=campaigns,
        translator=FlowTranslator(config.get_node_type_overrides()),
    )
    controller = CampaignLifecycleController(
        session_factory,
        ledger,
        deployment,
        store=campaigns,
        segments=segments,
    )
    scheduler = ExecutionScheduler(
        session_factory,
        controller,
        ledger,
        deployment,
        store=campaigns,
        claim_timeout=float(config.get("worker.claim_timeout", ExecutionScheduler.DEFAULT_CLAIM_TIMEOUT)),
    )

    logger.info(f"Campaign services ready (engine: {engine.name})")
    return ServiceContainer(
        session_factory=session_factory,
        engine=engine,
        campaigns=campaigns,
        segments=segments,
        ledger=ledger,
        deployment=deployment,
        controller=controller,
        scheduler=scheduler,
    )
