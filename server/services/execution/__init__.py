"""Execution engine package.

Workflow execution for CRM leads with:
- Per (workflow, lead) execution state with atomic history appends
- Typed condition evaluation and action dispatch
- Split fan-out with asyncio.gather
- Swappable delay scheduling (in-process timers or APScheduler)
- Redis persistence for multi-process deployments

The executor, action dispatch and trigger modules depend on the action
handlers, which in turn import from this package; import them from their
modules (``services.execution.executor`` and so on).
"""

from .models import (
    VisitStatus,
    LogStatus,
    HistoryEntry,
    ExecutionState,
    ActionLogEntry,
    ActionResult,
    ActionContext,
    ScheduledJob,
)
from .errors import (
    WorkflowEngineError,
    WorkflowNotFoundError,
    NodeNotFoundError,
    LeadNotFoundError,
    EmailNotFoundError,
    ActionConfigError,
    CollaboratorError,
    StateConflictError,
)
from .store import (
    GraphStore,
    ExecutionStateStore,
    ActionLog,
    LeadStore,
    EmailStore,
    RecordStore,
    InMemoryGraphStore,
    InMemoryExecutionStateStore,
    InMemoryActionLog,
    InMemoryLeadStore,
    InMemoryEmailStore,
    InMemoryRecordStore,
)
from .conditions import (
    evaluate_condition,
    get_nested_value,
    get_available_operators,
    OPERATORS,
)
from .delay import (
    DelayScheduler,
    InProcessDelayScheduler,
    APSchedulerDelayScheduler,
    create_delay_scheduler,
)

__all__ = [
    # Models
    "VisitStatus",
    "LogStatus",
    "HistoryEntry",
    "ExecutionState",
    "ActionLogEntry",
    "ActionResult",
    "ActionContext",
    "ScheduledJob",
    # Errors
    "WorkflowEngineError",
    "WorkflowNotFoundError",
    "NodeNotFoundError",
    "LeadNotFoundError",
    "EmailNotFoundError",
    "ActionConfigError",
    "CollaboratorError",
    "StateConflictError",
    # Stores
    "GraphStore",
    "ExecutionStateStore",
    "ActionLog",
    "LeadStore",
    "EmailStore",
    "RecordStore",
    "InMemoryGraphStore",
    "InMemoryExecutionStateStore",
    "InMemoryActionLog",
    "InMemoryLeadStore",
    "InMemoryEmailStore",
    "InMemoryRecordStore",
    # Conditions
    "evaluate_condition",
    "get_nested_value",
    "get_available_operators",
    "OPERATORS",
    # Delay scheduling
    "DelayScheduler",
    "InProcessDelayScheduler",
    "APSchedulerDelayScheduler",
    "create_delay_scheduler",
]
