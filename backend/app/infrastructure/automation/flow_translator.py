"""
Flow Translator
Turns a flow-builder graph into an n8n workflow definition.

Node names are the n8n connection keys, so they are derived from the node
labels and de-duplicated. Condition nodes map to n8n's IF node: output 0
is the "true" branch, output 1 the "false" branch.
"""
import logging
import re
import uuid
from typing import Any, Dict, List, Optional

from app.domain.errors import DeploymentRejectedError
from app.domain.models.flow import FlowData, FlowNode, NodeType
from app.domain.models.workflow import WorkflowDefinition

logger = logging.getLogger(__name__)


# flow node type -> (n8n node type, typeVersion)
N8N_NODE_TYPES: Dict[str, tuple] = {
    NodeType.TRIGGER.value: ("n8n-nodes-base.webhook", 2),
    NodeType.SEND_EMAIL.value: ("n8n-nodes-base.emailSend", 2.1),
    NodeType.WAIT.value: ("n8n-nodes-base.wait", 1.1),
    NodeType.CONDITION.value: ("n8n-nodes-base.if", 1),
    NodeType.GET_SEGMENT_DATA.value: ("n8n-nodes-base.awsS3", 2),
    NodeType.PARSE_CSV.value: ("n8n-nodes-base.extractFromFile", 1),
    NodeType.HTTP_REQUEST.value: ("n8n-nodes-base.httpRequest", 4.2),
    NodeType.CODE.value: ("n8n-nodes-base.code", 2),
}

DEFAULT_LABELS: Dict[str, str] = {
    NodeType.TRIGGER.value: "Webhook Trigger",
    NodeType.SEND_EMAIL.value: "Send Email",
    NodeType.WAIT.value: "Wait",
    NodeType.CONDITION.value: "Condition",
    NodeType.GET_SEGMENT_DATA.value: "Get Segment Data",
    NodeType.PARSE_CSV.value: "Parse CSV",
    NodeType.HTTP_REQUEST.value: "HTTP Request",
    NodeType.CODE.value: "Code",
}

# flow builder operator -> n8n IF (v1) operation
CONDITION_OPERATORS: Dict[str, str] = {
    "equals": "equal",
    "notEquals": "notEqual",
    "contains": "contains",
    "greaterThan": "larger",
    "lessThan": "smaller",
}
NUMERIC_OPERATORS = {"greaterThan", "lessThan"}

WAIT_UNITS = {"seconds", "minutes", "hours", "days"}

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}\}")


def to_expression(value: Any) -> Any:
    """
    Convert flow-builder placeholders into n8n expressions.

    "Hi {{name}}" -> "=Hi {{ $json.name }}". Values without placeholders
    and values that already are n8n expressions are returned unchanged.
    """
    if not isinstance(value, str) or value.startswith("="):
        return value
    if not PLACEHOLDER.search(value):
        return value
    return "=" + PLACEHOLDER.sub(lambda m: "{{ $json." + m.group(1) + " }}", value)


class FlowTranslator:
    """Translates FlowData into n8n's workflow JSON"""

    def __init__(self, node_type_overrides: Optional[Dict[str, Dict[str, Any]]] = None):
        self._node_types = dict(N8N_NODE_TYPES)
        for flow_type, override in (node_type_overrides or {}).items():
            current_type, current_version = self._node_types.get(flow_type, (None, 1))
            self._node_types[flow_type] = (
                override.get("type", current_type),
                override.get("typeVersion", current_version),
            )

    def translate(
        self,
        flow: FlowData,
        workflow_name: str,
        webhook_path: str,
    ) -> WorkflowDefinition:
        """
        Build the n8n workflow body.

        Args:
            flow: Validated flow graph
            workflow_name: Name shown in n8n
            webhook_path: Path used by the trigger node when it has none

        Returns:
            WorkflowDefinition; its webhook_path is None when the flow
            has no trigger node.
        """
        names = self._assign_names(flow.nodes)
        nodes: List[Dict[str, Any]] = []
        trigger_path: Optional[str] = None

        for node in flow.nodes:
            n8n_type, type_version = self._node_types[node.type]
            parameters = self._parameters(node, webhook_path)

            n8n_node = {
                "id": node.id,
                "name": names[node.id],
                "type": n8n_type,
                "typeVersion": type_version,
                "position": [int(node.position.x), int(node.position.y)],
                "parameters": parameters,
            }
            if node.is_trigger:
                n8n_node["webhookId"] = str(uuid.uuid5(uuid.NAMESPACE_URL, parameters["path"]))
                if trigger_path is None:
                    trigger_path = parameters["path"]
            nodes.append(n8n_node)

        connections = self._connections(flow, names)

        logger.debug(f"Translated flow '{workflow_name}': {len(nodes)} nodes, {len(flow.edges)} edges")

        return WorkflowDefinition(
            name=workflow_name,
            nodes=nodes,
            connections=connections,
            webhook_path=trigger_path,
        )

    def _assign_names(self, nodes: List[FlowNode]) -> Dict[str, str]:
        names: Dict[str, str] = {}
        used: Dict[str, int] = {}
        for node in nodes:
            base = (node.data.label or "").strip() or DEFAULT_LABELS.get(node.type, node.type)
            count = used.get(base, 0) + 1
            used[base] = count
            names[node.id] = base if count == 1 else f"{base} {count}"
        return names

    def _connections(self, flow: FlowData, names: Dict[str, str]) -> Dict[str, Any]:
        connections: Dict[str, Any] = {}

        for edge in flow.edges:
            source = flow.get_node(edge.source)
            output_index = 0
            if source.is_condition:
                output_index = 0 if edge.source_handle == "true" else 1

            outputs = connections.setdefault(names[edge.source], {"main": []})["main"]
            outputs_needed = 2 if source.is_condition else 1
            while len(outputs) < outputs_needed:
                outputs.append([])

            outputs[output_index].append({
                "node": names[edge.target],
                "type": "main",
                "index": 0,
            })

        return connections

    def _parameters(self, node: FlowNode, webhook_path: str) -> Dict[str, Any]:
        props = node.data.properties or {}
        node_type = node.type

        if node_type == NodeType.TRIGGER.value:
            return {
                "path": (props.get("webhookPath") or webhook_path).strip("/"),
                "httpMethod": props.get("httpMethod") or "POST",
                "responseMode": "onReceived",
                "options": {},
            }

        if node_type == NodeType.SEND_EMAIL.value:
            return {
                "toEmail": to_expression(props.get("to") or "{{email}}"),
                "subject": to_expression(props.get("subject", "")),
                "emailFormat": "text",
                "text": to_expression(props.get("body", "")),
                "options": {},
            }

        if node_type == NodeType.WAIT.value:
            raw_amount = props.get("amount") or 1
            try:
                amount = float(raw_amount)
            except (TypeError, ValueError):
                raise DeploymentRejectedError(
                    f"Wait node '{node.id}' has a non-numeric duration: {raw_amount!r}"
                )
            unit = props.get("unit") or "hours"
            if unit not in WAIT_UNITS:
                raise DeploymentRejectedError(f"Wait node '{node.id}' has an unknown unit: {unit!r}")
            return {"resume": "timeInterval", "amount": amount, "unit": unit}

        if node_type == NodeType.CONDITION.value:
            return self._condition_parameters(node, props)

        if node_type == NodeType.GET_SEGMENT_DATA.value:
            return {
                "operation": "download",
                "bucketName": props.get("bucket", ""),
                "fileKey": props.get("key", ""),
            }

        if node_type == NodeType.PARSE_CSV.value:
            return {
                "operation": "csv",
                "options": {
                    "delimiter": props.get("delimiter") or ",",
                    "headerRow": bool(props.get("hasHeader", True)),
                },
            }

        if node_type == NodeType.HTTP_REQUEST.value:
            parameters = {
                "url": to_expression(props.get("url", "")),
                "method": props.get("method") or "GET",
                "options": {},
            }
            if props.get("headers"):
                parameters.update({
                    "sendHeaders": True,
                    "specifyHeaders": "json",
                    "jsonHeaders": props["headers"],
                })
            if props.get("body"):
                parameters.update({
                    "sendBody": True,
                    "specifyBody": "json",
                    "jsonBody": props["body"],
                })
            return parameters

        if node_type == NodeType.CODE.value:
            return {"jsCode": props.get("jsCode", "return $input.all();")}

        return dict(props)

    def _condition_parameters(self, node: FlowNode, props: Dict[str, Any]) -> Dict[str, Any]:
        operator = props.get("operator") or "equals"
        operation = CONDITION_OPERATORS.get(operator)
        if operation is None:
            raise DeploymentRejectedError(f"Condition node '{node.id}' has an unknown operator: {operator!r}")

        field = to_expression(props.get("field", ""))
        value = props.get("value", "")

        if operator in NUMERIC_OPERATORS:
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise DeploymentRejectedError(
                    f"Condition node '{node.id}' compares with a non-numeric value: {value!r}"
                )
            return {"conditions": {"number": [{"value1": field, "operation": operation, "value2": number}]}}

        return {"conditions": {"string": [{"value1": field, "operation": operation, "value2": to_expression(value)}]}}
