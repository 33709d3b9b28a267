"""
Domain Errors
Business-rule violations raised by the campaign controller services.

Every error carries a human-readable message (shown verbatim by the
dashboard), a machine-readable code and the HTTP status used by the API.
"""
from typing import Optional


class CampaignError(Exception):
    """Base class for all campaign controller errors."""

    code: str = "campaign_error"
    status_code: int = 400
    default_message: str = "Campaign operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message, "error": self.code}


class InvalidTransitionError(CampaignError):
    """Raised when a status change is not allowed from the current status."""
    code = "invalid_transition"
    status_code = 409
    default_message = "Status transition is not allowed"


class WorkflowNotDeployedError(CampaignError):
    """Raised when a campaign needs a deployed workflow (or a startable status) and lacks it."""
    code = "workflow_not_deployed"
    status_code = 409
    default_message = "Campaign flow must be deployed to n8n first"


class InvalidScheduleTimeError(CampaignError):
    code = "invalid_schedule_time"
    status_code = 400
    default_message = "Scheduled time must be in the future"


class DeploymentRejectedError(CampaignError):
    """Raised when the flow graph cannot be turned into a runnable workflow."""
    code = "deployment_rejected"
    status_code = 422
    default_message = "Flow was rejected by the automation engine"


class EngineUnreachableError(CampaignError):
    """Raised when the automation engine times out, refuses or answers with 5xx."""
    code = "engine_unreachable"
    status_code = 502
    default_message = "Automation engine is unreachable"


class NotFoundError(CampaignError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class FlowValidationError(CampaignError):
    """Raised for malformed input (flow data, pagination, unknown statuses)."""
    code = "validation_error"
    status_code = 400
    default_message = "Invalid request"
