"""Pydantic models for workflow graphs with discriminated unions.

Node payloads are decoded once, when a workflow is loaded, into a closed set
of typed models so the engine can match on node and action types instead of
probing dictionaries on every visit.

Wire shape (camelCase aliases are accepted and emitted):

    {
        "id": "wf-1", "name": "Welcome", "isActive": true,
        "nodes": [
            {"id": "t1", "type": "TRIGGER", "data": {"type": "LEAD_CREATED"}},
            {"id": "a1", "type": "ACTION",
             "data": {"type": "SEND_EMAIL", "config": {"subject": "Hi"}}}
        ],
        "edges": [{"id": "e1", "source": "t1", "target": "a1"}]
    }
"""

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from constants import (
    DEFAULT_AI_LENGTH,
    DEFAULT_AI_TONE,
    DEFAULT_APPOINTMENT_STATUS,
    DEFAULT_TASK_PRIORITY,
    DEFAULT_TASK_STATUS,
    GENERATED_CONTENT_VARIABLE,
)
from core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# ENUMERATIONS
# =============================================================================

class NodeType(str, Enum):
    TRIGGER = "TRIGGER"
    CONDITION = "CONDITION"
    ACTION = "ACTION"
    DELAY = "DELAY"
    SPLIT = "SPLIT"
    END = "END"


class TriggerType(str, Enum):
    LEAD_CREATED = "LEAD_CREATED"
    LEAD_UPDATED = "LEAD_UPDATED"
    EMAIL_RECEIVED = "EMAIL_RECEIVED"
    EMAIL_OPENED = "EMAIL_OPENED"
    EMAIL_CLICKED = "EMAIL_CLICKED"
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"


class ActionType(str, Enum):
    SEND_EMAIL = "SEND_EMAIL"
    UPDATE_LEAD = "UPDATE_LEAD"
    CREATE_TASK = "CREATE_TASK"
    CREATE_APPOINTMENT = "CREATE_APPOINTMENT"
    NOTIFY_USER = "NOTIFY_USER"
    GENERATE_AI_CONTENT = "GENERATE_AI_CONTENT"
    ANALYZE_EMAIL = "ANALYZE_EMAIL"
    CATEGORIZE_LEAD = "CATEGORIZE_LEAD"


class ConditionType(str, Enum):
    LEAD_PROPERTY = "LEAD_PROPERTY"
    EMAIL_PROPERTY = "EMAIL_PROPERTY"
    DATE_COMPARISON = "DATE_COMPARISON"
    CUSTOM_FIELD = "CUSTOM_FIELD"
    LEAD_CATEGORY = "LEAD_CATEGORY"


class DelayType(str, Enum):
    FIXED = "FIXED"
    RELATIVE_TO_EVENT = "RELATIVE_TO_EVENT"


# =============================================================================
# BASE MODELS
# =============================================================================

class GraphModel(BaseModel):
    """Base class for graph payloads."""
    model_config = {"extra": "allow", "populate_by_name": True}


class NodeData(GraphModel):
    label: str = ""


class Position(BaseModel):
    """Editor coordinates; irrelevant to execution."""
    x: float = 0.0
    y: float = 0.0


# =============================================================================
# TRIGGER PAYLOADS
# =============================================================================

class TriggerConfig(GraphModel):
    """Optional event filters for a trigger node."""
    fields: List[str] = Field(default_factory=list)
    link_contains: Optional[str] = Field(default=None, alias="linkContains")


class TriggerNodeData(NodeData):
    type: TriggerType
    config: TriggerConfig = Field(default_factory=TriggerConfig)

    def matches(self, trigger_type: TriggerType, payload: Dict[str, Any]) -> bool:
        """Check the trigger type and any configured event filters."""
        if self.type != trigger_type:
            return False

        if self.config.fields:
            changed = set(payload.get("changedFields") or [])
            if not changed.intersection(self.config.fields):
                return False

        if self.config.link_contains:
            link_url = payload.get("linkUrl") or ""
            if self.config.link_contains not in link_url:
                return False

        return True


# =============================================================================
# ACTION PAYLOADS
# =============================================================================

class SendEmailConfig(GraphModel):
    email_account_id: Optional[str] = Field(default=None, alias="emailAccountId")
    subject: str = ""
    body: Optional[str] = None
    template: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)


class UpdateLeadConfig(GraphModel):
    status: Optional[str] = None
    score: Optional[float] = None
    company: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict, alias="customFields")


class CreateTaskConfig(GraphModel):
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    assigned_to_id: Optional[str] = Field(default=None, alias="assignedToId")
    priority: str = DEFAULT_TASK_PRIORITY
    status: str = DEFAULT_TASK_STATUS


class CreateAppointmentConfig(GraphModel):
    title: str
    description: Optional[str] = None
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    location: Optional[str] = None
    status: str = DEFAULT_APPOINTMENT_STATUS


class NotifyUserConfig(GraphModel):
    user_id: str = Field(alias="userId")
    title: str
    message: str = ""


class GenerateAIContentConfig(GraphModel):
    prompt: str
    model_id: Optional[str] = Field(default=None, alias="modelId")
    tone: str = DEFAULT_AI_TONE
    length: str = DEFAULT_AI_LENGTH
    output_action: Optional[str] = Field(default=None, alias="outputAction")
    email_account_id: Optional[str] = Field(default=None, alias="emailAccountId")
    subject: Optional[str] = None
    output_variable: str = Field(default=GENERATED_CONTENT_VARIABLE, alias="outputVariable")


class AnalyzeEmailConfig(GraphModel):
    email_id: Optional[str] = Field(default=None, alias="emailId")
    model_id: Optional[str] = Field(default=None, alias="modelId")


class CategorizeLeadConfig(GraphModel):
    category: Optional[str] = None
    email_id: Optional[str] = Field(default=None, alias="emailId")
    auto_detect: bool = Field(default=False, alias="autoDetect")
    reason: Optional[str] = None
    model_id: Optional[str] = Field(default=None, alias="modelId")


class ActionNodeBase(NodeData):
    """Action payloads carry their settings under ``config``.

    Graphs saved by older editors put the settings directly on the node data;
    those keys are lifted into ``config`` before validation.
    """

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_config(cls, data: Any) -> Any:
        if isinstance(data, dict) and "config" not in data:
            flat = {k: v for k, v in data.items() if k not in ("type", "label")}
            return {"type": data.get("type"), "label": data.get("label", ""), "config": flat}
        return data


class SendEmailAction(ActionNodeBase):
    type: Literal["SEND_EMAIL"]
    config: SendEmailConfig = Field(default_factory=SendEmailConfig)


class UpdateLeadAction(ActionNodeBase):
    type: Literal["UPDATE_LEAD"]
    config: UpdateLeadConfig = Field(default_factory=UpdateLeadConfig)


class CreateTaskAction(ActionNodeBase):
    type: Literal["CREATE_TASK"]
    config: CreateTaskConfig


class CreateAppointmentAction(ActionNodeBase):
    type: Literal["CREATE_APPOINTMENT"]
    config: CreateAppointmentConfig


class NotifyUserAction(ActionNodeBase):
    type: Literal["NOTIFY_USER"]
    config: NotifyUserConfig


class GenerateAIContentAction(ActionNodeBase):
    type: Literal["GENERATE_AI_CONTENT"]
    config: GenerateAIContentConfig


class AnalyzeEmailAction(ActionNodeBase):
    type: Literal["ANALYZE_EMAIL"]
    config: AnalyzeEmailConfig = Field(default_factory=AnalyzeEmailConfig)


class CategorizeLeadAction(ActionNodeBase):
    type: Literal["CATEGORIZE_LEAD"]
    config: CategorizeLeadConfig = Field(default_factory=CategorizeLeadConfig)


ActionNodeData = Annotated[
    Union[
        SendEmailAction, UpdateLeadAction, CreateTaskAction, CreateAppointmentAction,
        NotifyUserAction, GenerateAIContentAction, AnalyzeEmailAction, CategorizeLeadAction,
    ],
    Field(discriminator="type")
]


# =============================================================================
# CONDITION PAYLOADS
# =============================================================================

# Required fields are optional here: a missing property or operator is a
# configuration error reported at evaluation time (condition -> False).

class LeadPropertyCondition(NodeData):
    type: Literal["LEAD_PROPERTY"]
    property: Optional[str] = None
    operator: Optional[str] = None
    value: Any = None


class EmailPropertyCondition(NodeData):
    type: Literal["EMAIL_PROPERTY"]
    property: Optional[str] = None
    operator: Optional[str] = None
    value: Any = None


class DateComparisonCondition(NodeData):
    type: Literal["DATE_COMPARISON"]
    date_field: Optional[str] = Field(default=None, alias="dateField")
    operator: Optional[str] = None
    value: float = 0
    unit: Optional[str] = None


class CustomFieldCondition(NodeData):
    type: Literal["CUSTOM_FIELD"]
    field_name: Optional[str] = Field(default=None, alias="fieldName")
    operator: Optional[str] = None
    value: Any = None


class LeadCategoryCondition(NodeData):
    type: Literal["LEAD_CATEGORY"]
    operator: Optional[str] = "equals"
    value: Any = None


ConditionNodeData = Annotated[
    Union[
        LeadPropertyCondition, EmailPropertyCondition, DateComparisonCondition,
        CustomFieldCondition, LeadCategoryCondition,
    ],
    Field(discriminator="type")
]


# =============================================================================
# DELAY PAYLOAD
# =============================================================================

class DelayNodeData(NodeData):
    duration: float = Field(default=0.0, ge=0)  # seconds
    delay_type: DelayType = Field(default=DelayType.FIXED, alias="delayType")
    event_field: str = Field(default="eventTime", alias="eventField")

    @model_validator(mode="before")
    @classmethod
    def _accept_delay_ms(cls, data: Any) -> Any:
        if isinstance(data, dict) and "duration" not in data and "delayMs" in data:
            data = {**data, "duration": (data.get("delayMs") or 0) / 1000.0}
        return data

    @field_validator("delay_type", mode="before")
    @classmethod
    def _legacy_relative(cls, value: Any) -> Any:
        if value == "RELATIVE":
            return DelayType.RELATIVE_TO_EVENT
        return value


# =============================================================================
# NODES - discriminated on node type
# =============================================================================

class NodeBase(BaseModel):
    model_config = {"populate_by_name": True}

    id: str = Field(min_length=1)
    position: Position = Field(default_factory=Position)


class TriggerNode(NodeBase):
    type: Literal["TRIGGER"]
    data: TriggerNodeData


class ActionNode(NodeBase):
    type: Literal["ACTION"]
    data: ActionNodeData


class ConditionNode(NodeBase):
    type: Literal["CONDITION"]
    data: ConditionNodeData


class DelayNode(NodeBase):
    type: Literal["DELAY"]
    data: DelayNodeData = Field(default_factory=DelayNodeData)


class SplitNode(NodeBase):
    type: Literal["SPLIT"]
    data: NodeData = Field(default_factory=NodeData)


class EndNode(NodeBase):
    type: Literal["END"]
    data: NodeData = Field(default_factory=NodeData)


WorkflowNode = Annotated[
    Union[TriggerNode, ActionNode, ConditionNode, DelayNode, SplitNode, EndNode],
    Field(discriminator="type")
]

_node_adapter = TypeAdapter(WorkflowNode)


class WorkflowEdge(BaseModel):
    """Directed edge; ``condition`` selects the true/false branch of a Condition node."""
    model_config = {"populate_by_name": True}

    id: str
    source: str
    target: str
    label: Optional[str] = None
    condition: Optional[bool] = None


# =============================================================================
# WORKFLOW
# =============================================================================

class Workflow(BaseModel):
    model_config = {"populate_by_name": True}

    id: str
    name: str = ""
    description: Optional[str] = None
    is_active: bool = Field(default=False, alias="isActive")
    created_by: Optional[str] = Field(default=None, alias="createdById")
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    # node id -> validation error for node payloads that could not be decoded
    invalid_nodes: Dict[str, str] = Field(default_factory=dict, alias="invalidNodes")
    # node id -> declared node type of each invalid node, when it had one
    invalid_node_types: Dict[str, str] = Field(default_factory=dict, alias="invalidNodeTypes")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        """Decode a stored workflow, isolating malformed nodes.

        ``nodes``/``edges`` may be JSON strings (legacy storage). A node whose
        payload fails validation is kept out of ``nodes`` and recorded in
        ``invalid_nodes`` so the rest of the graph stays usable.
        """
        raw_nodes = data.get("nodes") or []
        raw_edges = data.get("edges") or []
        if isinstance(raw_nodes, str):
            raw_nodes = json.loads(raw_nodes)
        if isinstance(raw_edges, str):
            raw_edges = json.loads(raw_edges)

        nodes = []
        invalid: Dict[str, str] = dict(data.get("invalidNodes") or data.get("invalid_nodes") or {})
        invalid_types: Dict[str, str] = dict(
            data.get("invalidNodeTypes") or data.get("invalid_node_types") or {}
        )
        for raw in raw_nodes:
            try:
                nodes.append(_node_adapter.validate_python(raw))
            except ValidationError as e:
                node_id = raw.get("id", "unknown") if isinstance(raw, dict) else "unknown"
                invalid[node_id] = _summarize_validation_error(e)
                if isinstance(raw, dict) and isinstance(raw.get("type"), str):
                    invalid_types[node_id] = raw["type"]
                logger.warning("Invalid node payload", workflow_id=data.get("id"),
                               node_id=node_id, error=invalid[node_id])

        skipped = ("nodes", "edges", "invalidNodes", "invalid_nodes", "invalidNodeTypes", "invalid_node_types")
        fields = {k: v for k, v in data.items() if k not in skipped}
        workflow = cls.model_validate({
            **fields, "edges": raw_edges, "invalid_nodes": invalid, "invalid_node_types": invalid_types,
        })
        workflow.nodes = nodes
        return workflow

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[WorkflowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def next_node_ids(self, node_id: str) -> List[str]:
        """Targets of every outgoing edge, ignoring edge conditions."""
        return [edge.target for edge in self.outgoing_edges(node_id)]

    def trigger_nodes(self, trigger_type: TriggerType,
                      payload: Optional[Dict[str, Any]] = None) -> List[TriggerNode]:
        """Trigger nodes of the given type whose filters accept the payload."""
        return [
            node for node in self.nodes
            if isinstance(node, TriggerNode) and node.data.matches(trigger_type, payload or {})
        ]

    def has_trigger(self, trigger_type: TriggerType) -> bool:
        return any(
            isinstance(node, TriggerNode) and node.data.type == trigger_type
            for node in self.nodes
        )


def _summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg')}" if loc else item.get("msg", ""))
    return "; ".join(parts) or str(error)
