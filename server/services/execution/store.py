"""Storage contracts used by the engine, with in-memory implementations.

The engine only depends on the Protocols below. In-memory stores back tests
and single-process deployments; ``redis_store`` provides shared state for
multi-process deployments.

Usage:
    from services.execution.store import InMemoryGraphStore, InMemoryExecutionStateStore

    graphs = InMemoryGraphStore()
    await graphs.save(Workflow.from_dict(data))
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from core.logging import get_logger
from models.crm import Appointment, EmailMessage, Lead, Notification, Task
from models.graph import TriggerType, Workflow
from .errors import LeadNotFoundError, WorkflowNotFoundError
from .models import ActionLogEntry, ExecutionState, HistoryEntry

logger = get_logger(__name__)

Record = Union[Task, Appointment, Notification]


# =============================================================================
# PROTOCOLS
# =============================================================================

class GraphStore(Protocol):
    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        ...

    async def list_active_workflows_with_trigger(self, trigger_type: TriggerType) -> List[Workflow]:
        ...


class ExecutionStateStore(Protocol):
    async def get(self, workflow_id: str, lead_id: str) -> Optional[ExecutionState]:
        ...

    async def upsert(self, workflow_id: str, lead_id: str, current_node: str,
                     history_append: Optional[HistoryEntry] = None,
                     variables: Optional[Dict[str, Any]] = None,
                     replace_variables: bool = False,
                     run_id: Optional[str] = None) -> ExecutionState:
        """Create or update state atomically per (workflow, lead).

        History appends from concurrent branches must never be lost.
        """
        ...

    async def list_for_workflow(self, workflow_id: str) -> List[ExecutionState]:
        ...


class ActionLog(Protocol):
    async def append(self, entry: ActionLogEntry) -> None:
        ...

    async def list(self, workflow_id: Optional[str] = None,
                   lead_id: Optional[str] = None) -> List[ActionLogEntry]:
        ...


class LeadStore(Protocol):
    async def get(self, lead_id: str) -> Optional[Lead]:
        ...

    async def update(self, lead_id: str, partial: Dict[str, Any]) -> Lead:
        ...


class EmailStore(Protocol):
    async def get(self, email_id: str) -> Optional[EmailMessage]:
        ...

    async def latest_for_lead(self, lead_id: str) -> Optional[EmailMessage]:
        ...

    async def save_analysis(self, email_id: str, analysis: Dict[str, Any]) -> None:
        ...


class RecordStore(Protocol):
    async def create(self, record: Record) -> Record:
        ...


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryGraphStore:
    """Workflow definitions keyed by id."""

    def __init__(self):
        self._workflows: Dict[str, Workflow] = {}

    async def save(self, workflow: Workflow) -> Workflow:
        self._workflows[workflow.id] = workflow
        return workflow

    async def delete(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    async def set_active(self, workflow_id: str, is_active: bool) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        workflow.is_active = is_active
        logger.info("Workflow activation changed", workflow_id=workflow_id, is_active=is_active)
        return workflow

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)

    async def list_active_workflows_with_trigger(self, trigger_type: TriggerType) -> List[Workflow]:
        return [
            wf for wf in self._workflows.values()
            if wf.is_active and wf.has_trigger(trigger_type)
        ]


class InMemoryExecutionStateStore:
    """Execution states serialized per (workflow, lead) with an asyncio lock."""

    def __init__(self):
        self._states: Dict[Tuple[str, str], ExecutionState] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, workflow_id: str, lead_id: str) -> Optional[ExecutionState]:
        state = self._states.get((workflow_id, lead_id))
        return copy.deepcopy(state) if state else None

    async def upsert(self, workflow_id: str, lead_id: str, current_node: str,
                     history_append: Optional[HistoryEntry] = None,
                     variables: Optional[Dict[str, Any]] = None,
                     replace_variables: bool = False,
                     run_id: Optional[str] = None) -> ExecutionState:
        key = (workflow_id, lead_id)
        async with self._locks[key]:
            state = self._states.get(key)
            if state is None:
                state = ExecutionState(workflow_id=workflow_id, lead_id=lead_id,
                                       current_node=current_node)
                self._states[key] = state
            state.apply(current_node, history_append, variables, replace_variables, run_id)
            return copy.deepcopy(state)

    async def list_for_workflow(self, workflow_id: str) -> List[ExecutionState]:
        states = [copy.deepcopy(s) for (wf, _), s in self._states.items() if wf == workflow_id]
        return sorted(states, key=lambda s: s.updated_at, reverse=True)


class InMemoryActionLog:
    def __init__(self):
        self._entries: List[ActionLogEntry] = []

    async def append(self, entry: ActionLogEntry) -> None:
        self._entries.append(entry)

    async def list(self, workflow_id: Optional[str] = None,
                   lead_id: Optional[str] = None) -> List[ActionLogEntry]:
        return [
            e for e in self._entries
            if (workflow_id is None or e.workflow_id == workflow_id)
            and (lead_id is None or e.lead_id == lead_id)
        ]


class InMemoryLeadStore:
    def __init__(self, leads: Optional[List[Lead]] = None):
        self._leads: Dict[str, Lead] = {lead.id: lead for lead in leads or []}

    async def add(self, lead: Lead) -> Lead:
        self._leads[lead.id] = lead
        return lead

    async def get(self, lead_id: str) -> Optional[Lead]:
        return self._leads.get(lead_id)

    async def update(self, lead_id: str, partial: Dict[str, Any]) -> Lead:
        lead = self._leads.get(lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)
        lead.apply(partial)
        return lead


class InMemoryEmailStore:
    def __init__(self, emails: Optional[List[EmailMessage]] = None):
        self._emails: Dict[str, EmailMessage] = {e.id: e for e in emails or []}

    async def add(self, email: EmailMessage) -> EmailMessage:
        self._emails[email.id] = email
        return email

    async def get(self, email_id: str) -> Optional[EmailMessage]:
        return self._emails.get(email_id)

    async def latest_for_lead(self, lead_id: str) -> Optional[EmailMessage]:
        candidates = [e for e in self._emails.values() if e.lead_id == lead_id]
        if not candidates:
            return None
        # Emails without a send time sort first
        return max(candidates, key=lambda e: (e.sent_at is not None, e.sent_at or 0))

    async def save_analysis(self, email_id: str, analysis: Dict[str, Any]) -> None:
        email = self._emails.get(email_id)
        if email is not None:
            email.analysis_results = analysis
            email.analyzed = True


class InMemoryRecordStore:
    """Tasks, appointments and notifications created by actions."""

    def __init__(self):
        self.tasks: List[Task] = []
        self.appointments: List[Appointment] = []
        self.notifications: List[Notification] = []

    async def create(self, record: Record) -> Record:
        if isinstance(record, Task):
            self.tasks.append(record)
        elif isinstance(record, Appointment):
            self.appointments.append(record)
        elif isinstance(record, Notification):
            self.notifications.append(record)
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")
        return record
