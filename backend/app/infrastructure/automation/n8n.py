"""
n8n Automation Engine
REST client for the n8n public API and production webhooks.

Setup Required:
- Enable the n8n public API and create an API key
- Set N8N_BASE_URL and N8N_API_KEY env vars
"""
import logging
import uuid
from typing import Optional, List, Dict, Any

import httpx

from app.domain.errors import (
    DeploymentRejectedError,
    EngineUnreachableError,
    NotFoundError,
    WorkflowNotDeployedError,
)
from app.domain.interfaces.automation_engine import AutomationEngine
from app.domain.models.workflow import (
    WorkflowDefinition,
    DeployedWorkflow,
    EngineExecution,
    TriggerResult,
)

logger = logging.getLogger(__name__)


class N8nEngine(AutomationEngine):
    """
    n8n integration over its public REST API (v1).

    Every request is bounded by `timeout` seconds; timeouts, connection
    errors and 5xx answers raise EngineUnreachableError. Nothing is
    retried here: retrying is the caller's decision.
    """

    API_PREFIX = "/api/v1"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        webhook_base_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.webhook_base_url = (webhook_base_url or base_url).rstrip("/")
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport

    @property
    def name(self) -> str:
        return "n8n"

    def webhook_url(self, webhook_path: str) -> str:
        return f"{self.webhook_base_url}/webhook/{webhook_path.strip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-N8N-API-KEY"] = self._api_key
        return headers

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request, mapping transport failures to EngineUnreachableError."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"n8n request timed out: {method} {url}")
            raise EngineUnreachableError(f"n8n did not respond within {self._timeout.read}s") from e
        except httpx.HTTPError as e:
            logger.error(f"n8n request failed: {method} {url}: {e}")
            raise EngineUnreachableError(f"Cannot reach n8n at {self.base_url}: {e}") from e

        if response.status_code >= 500:
            logger.error(f"n8n server error {response.status_code}: {response.text}")
            raise EngineUnreachableError(f"n8n returned {response.status_code}")

        if response.status_code in (401, 403):
            raise EngineUnreachableError("n8n rejected the API key. Check N8N_API_KEY.")

        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return body.get("message") or body.get("error") or str(body)
        return str(body)

    @staticmethod
    def _to_deployed(data: Dict[str, Any]) -> DeployedWorkflow:
        return DeployedWorkflow(
            workflow_id=str(data["id"]),
            active=bool(data.get("active", False)),
            name=data.get("name"),
        )

    async def create_workflow(self, definition: WorkflowDefinition) -> DeployedWorkflow:
        response = await self._request(
            "POST",
            f"{self.base_url}{self.API_PREFIX}/workflows",
            json=definition.to_payload(),
        )
        if response.status_code not in (200, 201):
            message = self._error_message(response)
            logger.warning(f"n8n rejected workflow '{definition.name}': {message}")
            raise DeploymentRejectedError(f"n8n rejected the workflow: {message}")

        deployed = self._to_deployed(response.json())
        logger.info(f"n8n workflow created: {deployed.workflow_id}")
        return deployed

    async def update_workflow(self, workflow_id: str, definition: WorkflowDefinition) -> DeployedWorkflow:
        response = await self._request(
            "PUT",
            f"{self.base_url}{self.API_PREFIX}/workflows/{workflow_id}",
            json=definition.to_payload(),
        )
        if response.status_code == 404:
            raise NotFoundError(f"n8n workflow {workflow_id} not found")
        if response.status_code != 200:
            message = self._error_message(response)
            raise DeploymentRejectedError(f"n8n rejected the workflow update: {message}")

        logger.info(f"n8n workflow updated: {workflow_id}")
        return self._to_deployed(response.json())

    async def activate_workflow(self, workflow_id: str) -> DeployedWorkflow:
        response = await self._request(
            "POST",
            f"{self.base_url}{self.API_PREFIX}/workflows/{workflow_id}/activate",
        )
        if response.status_code != 200:
            message = self._error_message(response)
            raise DeploymentRejectedError(f"n8n could not activate the workflow: {message}")
        return self._to_deployed(response.json())

    async def get_workflow(self, workflow_id: str) -> Optional[DeployedWorkflow]:
        response = await self._request("GET", f"{self.base_url}{self.API_PREFIX}/workflows/{workflow_id}")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise EngineUnreachableError(f"n8n returned {response.status_code} for workflow {workflow_id}")
        return self._to_deployed(response.json())

    async def list_executions(self, workflow_id: str, limit: int = 20) -> List[EngineExecution]:
        response = await self._request(
            "GET",
            f"{self.base_url}{self.API_PREFIX}/executions",
            params={"workflowId": workflow_id, "limit": limit},
        )
        if response.status_code != 200:
            raise EngineUnreachableError(f"n8n returned {response.status_code} listing executions")

        body = response.json()
        items = body.get("data", []) if isinstance(body, dict) else body
        return [EngineExecution.from_engine(item) for item in items or []]

    async def trigger_webhook(self, webhook_path: str, payload: Dict[str, Any]) -> TriggerResult:
        url = self.webhook_url(webhook_path)
        response = await self._request("POST", url, json=payload)

        if response.status_code == 404:
            raise WorkflowNotDeployedError(
                "n8n has no active webhook for this campaign. Deploy the flow again."
            )
        if response.status_code >= 400:
            raise DeploymentRejectedError(f"n8n refused the trigger: {self._error_message(response)}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"response": body}

        # Webhooks in "onReceived" mode do not report an execution id
        execution_id = body.get("executionId") or body.get("id") or str(uuid.uuid4())
        logger.info(f"n8n webhook triggered: {webhook_path} (execution={execution_id})")
        return TriggerResult(execution_id=str(execution_id), started=True, raw=body)

    async def ping(self) -> bool:
        try:
            response = await self._request("GET", f"{self.base_url}/healthz")
            return response.status_code == 200
        except Exception as e:
            logger.warning(f"n8n connection test failed: {e}")
            return False
