"""
API Dependencies
Shared dependencies for database sessions and campaign services
"""
import logging
from typing import Iterator, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.domain.services.container import ServiceContainer, build_services
from app.domain.services.deployment_service import WorkflowDeploymentService
from app.domain.services.execution_ledger import ExecutionLedger
from app.domain.services.lifecycle_controller import CampaignLifecycleController
from app.infrastructure.storage.campaign_store import CampaignStore
from app.infrastructure.storage.database import session_scope
from app.infrastructure.storage.segment_store import SegmentStore

logger = logging.getLogger(__name__)

_services: Optional[ServiceContainer] = None


def get_services() -> ServiceContainer:
    """
    Process-wide service container, built on first use.

    Tests replace this with `app.dependency_overrides[get_services]`.
    """
    global _services
    if _services is None:
        _services = build_services()
    return _services


def get_db(services: ServiceContainer = Depends(get_services)) -> Iterator[Session]:
    """Request-scoped transactional session (commit on success, rollback on error)"""
    with session_scope(services.session_factory) as db:
        yield db


def get_campaign_store(services: ServiceContainer = Depends(get_services)) -> CampaignStore:
    return services.campaigns


def get_segment_store(services: ServiceContainer = Depends(get_services)) -> SegmentStore:
    return services.segments


def get_ledger(services: ServiceContainer = Depends(get_services)) -> ExecutionLedger:
    return services.ledger


def get_deployment_service(services: ServiceContainer = Depends(get_services)) -> WorkflowDeploymentService:
    return services.deployment


def get_lifecycle_controller(services: ServiceContainer = Depends(get_services)) -> CampaignLifecycleController:
    return services.controller
