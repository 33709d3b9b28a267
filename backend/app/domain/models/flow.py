"""
Flow Definition Models
Node/edge graph authored in the visual flow builder.

The controller treats node properties as opaque, except for what the
deployment step needs: trigger nodes (webhook entry points), condition
nodes (true/false branches) and the graph structure itself.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any, Set
from enum import Enum


class NodeType(str, Enum):
    """Node types offered by the flow builder palette"""
    TRIGGER = "trigger"
    SEND_EMAIL = "sendEmail"
    WAIT = "wait"
    CONDITION = "condition"
    GET_SEGMENT_DATA = "getSegmentData"
    PARSE_CSV = "parseCSV"
    HTTP_REQUEST = "httpRequest"
    CODE = "code"


# Output handles exposed by a condition node
CONDITION_HANDLES = ("true", "false")


class NodePosition(BaseModel):
    x: float = 0
    y: float = 0


class NodeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    label: str = ""
    description: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class FlowNode(BaseModel):
    """A single node; extra editor keys (selected, measured...) are kept as-is"""
    model_config = ConfigDict(extra="allow", use_enum_values=True)

    id: str = Field(..., min_length=1)
    type: NodeType
    position: NodePosition = Field(default_factory=NodePosition)
    data: NodeData = Field(default_factory=NodeData)

    @property
    def is_trigger(self) -> bool:
        return self.type == NodeType.TRIGGER.value

    @property
    def is_condition(self) -> bool:
        return self.type == NodeType.CONDITION.value


class FlowEdge(BaseModel):
    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class FlowData(BaseModel):
    """Ordered nodes and edges of a campaign flow"""
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "FlowData":
        return cls(nodes=[], edges=[])

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def node_ids(self) -> Set[str]:
        return {node.id for node in self.nodes}

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_node(self) -> Optional[FlowNode]:
        """First trigger node, if the flow has one."""
        for node in self.nodes:
            if node.is_trigger:
                return node
        return None

    def outgoing(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def to_storage(self) -> Dict[str, Any]:
        """Plain dict in the editor's own (camelCase) shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def find_graph_problems(flow: FlowData) -> List[str]:
    """
    Check the structural invariants of a flow graph.

    Returns:
        Human-readable problems, empty when the graph is deployable.
    """
    problems: List[str] = []
    seen: Set[str] = set()

    for node in flow.nodes:
        if node.id in seen:
            problems.append(f"Duplicate node id '{node.id}'")
        seen.add(node.id)

    for edge in flow.edges:
        source = flow.get_node(edge.source)
        target = flow.get_node(edge.target)

        if source is None or target is None:
            missing = edge.source if source is None else edge.target
            problems.append(f"Edge {edge.source} -> {edge.target} references unknown node '{missing}'")
            continue

        if target.is_trigger:
            problems.append(f"Trigger node '{target.id}' cannot have incoming edges")

        if source.is_condition and edge.source_handle not in CONDITION_HANDLES:
            problems.append(
                f"Condition node '{source.id}' edge must use the 'true' or 'false' handle "
                f"(got {edge.source_handle!r})"
            )

    for node in flow.nodes:
        if node.is_condition:
            handles = {edge.source_handle for edge in flow.outgoing(node.id)}
            if not handles & set(CONDITION_HANDLES):
                problems.append(f"Condition node '{node.id}' has no true/false branch connected")

    return problems
