"""Execution engine state models.

All models are JSON-serializable for Redis persistence and for durable
scheduler job payloads.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from models.crm import parse_datetime, utcnow


class VisitStatus(str, Enum):
    """Outcome of a single node visit recorded in execution history."""
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    WAITING = "WAITING"    # Delay node scheduled a continuation


class LogStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class HistoryEntry:
    """One node visit within an execution."""
    node_id: str
    node_type: str
    status: VisitStatus = VisitStatus.COMPLETED
    timestamp: datetime = field(default_factory=utcnow)
    run_id: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "runId": self.run_id,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            node_id=data["nodeId"],
            node_type=data.get("nodeType", ""),
            status=VisitStatus(data.get("status", VisitStatus.COMPLETED.value)),
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
            run_id=data.get("runId"),
            detail=data.get("detail") or {},
        )


@dataclass
class ExecutionState:
    """Per (workflow, lead) progress record.

    At most one exists for each pair; a re-trigger updates it in place and
    history keeps growing across runs.
    """
    workflow_id: str
    lead_id: str
    current_node: str
    history: List[HistoryEntry] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    run_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "leadId": self.lead_id,
            "currentNode": self.current_node,
            "history": [entry.to_dict() for entry in self.history],
            "variables": self.variables,
            "runId": self.run_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionState":
        return cls(
            workflow_id=data["workflowId"],
            lead_id=data["leadId"],
            current_node=data.get("currentNode", ""),
            history=[HistoryEntry.from_dict(h) for h in data.get("history", [])],
            variables=data.get("variables") or {},
            run_id=data.get("runId"),
            created_at=parse_datetime(data.get("createdAt")) or utcnow(),
            updated_at=parse_datetime(data.get("updatedAt")) or utcnow(),
        )

    def apply(self, current_node: str, history_append: Optional[HistoryEntry] = None,
              variables: Optional[Dict[str, Any]] = None, replace_variables: bool = False,
              run_id: Optional[str] = None) -> None:
        """Apply one upsert to this state in place."""
        self.current_node = current_node
        if history_append is not None:
            self.history.append(history_append)
        if replace_variables:
            self.variables = dict(variables or {})
        elif variables:
            self.variables = {**self.variables, **variables}
        if run_id is not None:
            self.run_id = run_id
        self.updated_at = utcnow()


@dataclass
class ActionLogEntry:
    """Append-only audit record of an action attempt or a failed visit."""
    workflow_id: str
    node_id: str
    lead_id: str
    action_type: str
    status: LogStatus
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "nodeId": self.node_id,
            "leadId": self.lead_id,
            "actionType": self.action_type,
            "status": self.status.value,
            "data": self.data,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionLogEntry":
        return cls(
            id=data.get("id") or new_id(),
            workflow_id=data["workflowId"],
            node_id=data["nodeId"],
            lead_id=data["leadId"],
            action_type=data.get("actionType", "UNKNOWN"),
            status=LogStatus(data["status"]),
            data=data.get("data") or {},
            error=data.get("error"),
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
        )


@dataclass
class ActionResult:
    """Outcome of one action handler.

    ``variables`` are merged into the execution state's variables when the
    action succeeds.
    """
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None,
           variables: Optional[Dict[str, Any]] = None) -> "ActionResult":
        return cls(success=True, data=data or {}, variables=variables or {})

    @classmethod
    def fail(cls, error: str, data: Optional[Dict[str, Any]] = None) -> "ActionResult":
        return cls(success=False, data=data or {}, error=error)


@dataclass
class ActionContext:
    """What an action handler knows about the visit it runs in."""
    workflow_id: str
    node_id: str
    lead: Any  # models.crm.Lead
    variables: Dict[str, Any] = field(default_factory=dict)

    @property
    def lead_id(self) -> str:
        return self.lead.id


@dataclass
class ScheduledJob:
    """Deferred work handed to a delay scheduler.

    ``resume`` continues a run after a Delay node; ``dispatch`` fires a
    trigger event at a future time.
    """
    kind: str  # "resume" | "dispatch"
    workflow_id: Optional[str] = None
    lead_id: Optional[str] = None
    node_id: Optional[str] = None
    run_id: Optional[str] = None
    trigger_type: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    job_id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "kind": self.kind,
            "workflowId": self.workflow_id,
            "leadId": self.lead_id,
            "nodeId": self.node_id,
            "runId": self.run_id,
            "triggerType": self.trigger_type,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledJob":
        return cls(
            job_id=data.get("jobId") or new_id(),
            kind=data["kind"],
            workflow_id=data.get("workflowId"),
            lead_id=data.get("leadId"),
            node_id=data.get("nodeId"),
            run_id=data.get("runId"),
            trigger_type=data.get("triggerType"),
            payload=data.get("payload") or {},
        )

    @classmethod
    def resume(cls, workflow_id: str, lead_id: str, node_id: str,
               run_id: Optional[str] = None) -> "ScheduledJob":
        return cls(kind="resume", workflow_id=workflow_id, lead_id=lead_id,
                   node_id=node_id, run_id=run_id)

    @classmethod
    def dispatch(cls, trigger_type: str, payload: Dict[str, Any]) -> "ScheduledJob":
        return cls(kind="dispatch", trigger_type=trigger_type, payload=dict(payload))


def as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
