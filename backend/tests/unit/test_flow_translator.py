"""
Unit Tests for Flow Graphs
Tests for graph validation and flow -> n8n workflow translation
"""
import pytest

from pydantic import ValidationError

from app.domain.errors import DeploymentRejectedError, FlowValidationError
from app.domain.models.flow import FlowData, find_graph_problems
from app.domain.services.deployment_service import WorkflowDeploymentService
from app.infrastructure.automation.flow_translator import FlowTranslator, to_expression


def flow_of(nodes, edges=None) -> FlowData:
    return FlowData.model_validate({"nodes": nodes, "edges": edges or []})


class TestFlowData:
    """Tests for FlowData parsing"""

    def test_unknown_node_type_rejected(self):
        with pytest.raises(ValidationError):
            flow_of([{"id": "n1", "type": "sendFax"}])

    def test_editor_keys_are_kept(self):
        """Extra keys from the editor survive a save/load round trip"""
        flow = flow_of(
            [{"id": "n1", "type": "trigger", "selected": True, "data": {"label": "Start", "color": "blue"}}],
        )
        stored = flow.to_storage()

        assert stored["nodes"][0]["selected"] is True
        assert stored["nodes"][0]["data"]["color"] == "blue"

    def test_edge_handles_use_camel_case(self, branching_flow):
        stored = branching_flow.to_storage()
        handles = [edge.get("sourceHandle") for edge in stored["edges"]]

        assert "true" in handles
        assert "false" in handles

    def test_trigger_node(self, simple_flow):
        assert simple_flow.trigger_node().id == "n1"
        assert FlowData.empty().trigger_node() is None


class TestGraphValidation:
    """Tests for structural flow checks"""

    def test_valid_flows_have_no_problems(self, simple_flow, branching_flow):
        assert find_graph_problems(simple_flow) == []
        assert find_graph_problems(branching_flow) == []

    def test_duplicate_node_ids(self):
        flow = flow_of([
            {"id": "n1", "type": "trigger"},
            {"id": "n1", "type": "sendEmail"},
        ])
        assert any("Duplicate node id" in p for p in find_graph_problems(flow))

    def test_edge_to_unknown_node(self):
        flow = flow_of([{"id": "n1", "type": "trigger"}], [{"source": "n1", "target": "ghost"}])
        assert any("unknown node 'ghost'" in p for p in find_graph_problems(flow))

    def test_trigger_cannot_have_incoming_edges(self):
        flow = flow_of(
            [{"id": "n1", "type": "trigger"}, {"id": "n2", "type": "sendEmail"}],
            [{"source": "n1", "target": "n2"}, {"source": "n2", "target": "n1"}],
        )
        assert any("cannot have incoming edges" in p for p in find_graph_problems(flow))

    def test_condition_edge_needs_handle(self):
        flow = flow_of(
            [{"id": "c", "type": "condition"}, {"id": "n2", "type": "sendEmail"}],
            [{"source": "c", "target": "n2"}],
        )
        problems = find_graph_problems(flow)

        assert any("'true' or 'false' handle" in p for p in problems)
        assert any("no true/false branch" in p for p in problems)

    def test_empty_flow_is_a_validation_error(self):
        with pytest.raises(FlowValidationError):
            WorkflowDeploymentService.validate_flow(FlowData.empty())

    def test_broken_graph_is_rejected(self):
        flow = flow_of([{"id": "n1", "type": "trigger"}], [{"source": "n1", "target": "ghost"}])
        with pytest.raises(DeploymentRejectedError) as exc_info:
            WorkflowDeploymentService.validate_flow(flow)
        assert "ghost" in exc_info.value.message


class TestToExpression:
    """Tests for placeholder -> n8n expression conversion"""

    def test_placeholder_converted(self):
        assert to_expression("Hi {{name}}") == "=Hi {{ $json.name }}"

    def test_plain_text_unchanged(self):
        assert to_expression("Welcome aboard") == "Welcome aboard"

    def test_existing_expression_unchanged(self):
        assert to_expression("={{ $json.email }}") == "={{ $json.email }}"

    def test_non_strings_unchanged(self):
        assert to_expression(42) == 42


class TestFlowTranslator:
    """Tests for FlowTranslator.translate"""

    def test_simple_flow(self, simple_flow):
        definition = FlowTranslator().translate(simple_flow, "Spring Launch", "campaign-c1")

        names = [node["name"] for node in definition.nodes]
        assert names == ["Start", "Welcome"]

        trigger = definition.nodes[0]
        assert trigger["type"] == "n8n-nodes-base.webhook"
        assert trigger["parameters"]["path"] == "campaign-c1"
        assert trigger["parameters"]["httpMethod"] == "POST"
        assert "webhookId" in trigger

        email = definition.nodes[1]
        assert email["type"] == "n8n-nodes-base.emailSend"
        assert email["parameters"]["subject"] == "=Hi {{ $json.name }}"
        assert email["parameters"]["toEmail"] == "={{ $json.email }}"

        assert definition.connections == {
            "Start": {"main": [[{"node": "Welcome", "type": "main", "index": 0}]]},
        }
        assert definition.webhook_path == "campaign-c1"

    def test_condition_branches_map_to_outputs(self, branching_flow):
        definition = FlowTranslator().translate(branching_flow, "Branching", "campaign-c2")

        outputs = definition.connections["Opened?"]["main"]
        assert outputs[0] == [{"node": "Thanks", "type": "main", "index": 0}]
        assert outputs[1] == [{"node": "Wait", "type": "main", "index": 0}]

        condition = next(node for node in definition.nodes if node["name"] == "Opened?")
        rule = condition["parameters"]["conditions"]["string"][0]
        assert rule == {"value1": "={{ $json.opened }}", "operation": "equal", "value2": "yes"}

        wait = next(node for node in definition.nodes if node["name"] == "Wait")
        assert wait["parameters"] == {"resume": "timeInterval", "amount": 2.0, "unit": "days"}

    def test_duplicate_labels_get_suffixes(self):
        flow = flow_of([
            {"id": "a", "type": "sendEmail", "data": {"label": "Email"}},
            {"id": "b", "type": "sendEmail", "data": {"label": "Email"}},
            {"id": "c", "type": "code"},
        ])
        definition = FlowTranslator().translate(flow, "Names", "campaign-x")

        assert [node["name"] for node in definition.nodes] == ["Email", "Email 2", "Code"]

    def test_flow_without_trigger_has_no_webhook(self):
        flow = flow_of([{"id": "a", "type": "sendEmail"}])
        definition = FlowTranslator().translate(flow, "No trigger", "campaign-x")

        assert definition.webhook_path is None

    def test_custom_webhook_path(self):
        flow = flow_of([{"id": "t", "type": "trigger", "data": {"properties": {"webhookPath": "/spring/"}}}])
        definition = FlowTranslator().translate(flow, "Custom", "campaign-x")

        assert definition.webhook_path == "spring"

    def test_numeric_condition(self):
        flow = flow_of([{
            "id": "c",
            "type": "condition",
            "data": {"properties": {"field": "{{score}}", "operator": "greaterThan", "value": "7"}},
        }])
        definition = FlowTranslator().translate(flow, "Numeric", "campaign-x")

        rule = definition.nodes[0]["parameters"]["conditions"]["number"][0]
        assert rule["operation"] == "larger"
        assert rule["value2"] == 7.0

    def test_non_numeric_comparison_rejected(self):
        flow = flow_of([{
            "id": "c",
            "type": "condition",
            "data": {"properties": {"field": "{{score}}", "operator": "lessThan", "value": "lots"}},
        }])
        with pytest.raises(DeploymentRejectedError):
            FlowTranslator().translate(flow, "Bad", "campaign-x")

    def test_unknown_operator_rejected(self):
        flow = flow_of([{"id": "c", "type": "condition", "data": {"properties": {"operator": "matches"}}}])
        with pytest.raises(DeploymentRejectedError):
            FlowTranslator().translate(flow, "Bad", "campaign-x")

    def test_invalid_wait_rejected(self):
        flow = flow_of([{"id": "w", "type": "wait", "data": {"properties": {"amount": 1, "unit": "weeks"}}}])
        with pytest.raises(DeploymentRejectedError):
            FlowTranslator().translate(flow, "Bad", "campaign-x")

    def test_node_type_overrides(self, simple_flow):
        translator = FlowTranslator({"sendEmail": {"type": "n8n-nodes-base.gmail", "typeVersion": 2}})
        definition = translator.translate(simple_flow, "Gmail", "campaign-x")

        assert definition.nodes[1]["type"] == "n8n-nodes-base.gmail"
        assert definition.nodes[1]["typeVersion"] == 2

    def test_payload_excludes_webhook_path(self, simple_flow):
        payload = FlowTranslator().translate(simple_flow, "Payload", "campaign-x").to_payload()

        assert set(payload) == {"name", "nodes", "connections", "settings"}
