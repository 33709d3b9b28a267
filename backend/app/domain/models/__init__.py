"""Domain models"""

# Campaign lifecycle
from .campaign import (
    CampaignStatus,
    ALLOWED_TRANSITIONS,
    Campaign,
    CampaignCreate,
    allowed_transitions,
    can_transition,
)

# Flow builder graph
from .flow import (
    NodeType,
    FlowNode,
    FlowEdge,
    FlowData,
    find_graph_problems,
)

# Execution tracking
from .execution_record import (
    ExecutionStatus,
    ExecutionRecord,
    AttemptUpdate,
)

from .progress import (
    ProgressSnapshot,
)

# Automation engine
from .workflow import (
    WorkflowDefinition,
    DeployedWorkflow,
    EngineExecution,
    WorkflowStatus,
    DeploymentResult,
    TriggerResult,
)

# Segments
from .segment import (
    Recipient,
    Segment,
    SegmentCreate,
    MembersAdd,
)

__all__ = [
    # Campaign lifecycle
    "CampaignStatus",
    "ALLOWED_TRANSITIONS",
    "Campaign",
    "CampaignCreate",
    "allowed_transitions",
    "can_transition",
    # Flow builder graph
    "NodeType",
    "FlowNode",
    "FlowEdge",
    "FlowData",
    "find_graph_problems",
    # Execution tracking
    "ExecutionStatus",
    "ExecutionRecord",
    "AttemptUpdate",
    "ProgressSnapshot",
    # Automation engine
    "WorkflowDefinition",
    "DeployedWorkflow",
    "EngineExecution",
    "WorkflowStatus",
    "DeploymentResult",
    "TriggerResult",
    # Segments
    "Recipient",
    "Segment",
    "SegmentCreate",
    "MembersAdd",
]
