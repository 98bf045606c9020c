"""Workflow Service - Facade for the lead workflow engine.

This is a thin facade that delegates to specialized modules:
- ActionExecutor: Typed action dispatch to handlers
- NodeExecutor: Graph walking, branching and delay suspension
- TriggerDispatcher: CRM events to workflow runs
- DelayScheduler: Timers for Delay nodes and scheduled triggers
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from core.logging import get_logger
from models.crm import EmailMessage, Lead
from models.graph import TriggerType, Workflow
from services.execution.actions import ActionExecutor
from services.execution.errors import WorkflowNotFoundError
from services.execution.executor import NodeExecutor
from services.execution.models import ActionLogEntry, ExecutionState
from services.execution.triggers import TriggerDispatcher

if TYPE_CHECKING:
    from core.config import Settings
    from services.clients import ContentGenerator, EmailAnalyzer, EmailSender
    from services.execution.delay import DelayScheduler
    from services.execution.store import (
        ActionLog,
        EmailStore,
        ExecutionStateStore,
        GraphStore,
        LeadStore,
        RecordStore,
    )

logger = get_logger(__name__)


class WorkflowService:
    """Workflow engine entry point.

    Thin facade delegating to specialized modules for:
    - Trigger dispatch (TriggerDispatcher)
    - Node execution (NodeExecutor)
    - Action side effects (ActionExecutor)
    """

    def __init__(
        self,
        graph_store: "GraphStore",
        state_store: "ExecutionStateStore",
        action_log: "ActionLog",
        lead_store: "LeadStore",
        email_store: "EmailStore",
        record_store: "RecordStore",
        email_sender: "EmailSender",
        content_generator: "ContentGenerator",
        email_analyzer: "EmailAnalyzer",
        delay_scheduler: "DelayScheduler",
        settings: "Settings",
    ):
        self.graph_store = graph_store
        self.state_store = state_store
        self.action_log = action_log
        self.delay_scheduler = delay_scheduler
        self.settings = settings

        self._action_executor = ActionExecutor(
            lead_store=lead_store,
            email_store=email_store,
            record_store=record_store,
            email_sender=email_sender,
            content_generator=content_generator,
            email_analyzer=email_analyzer,
        )
        self._node_executor = NodeExecutor(
            graph_store=graph_store,
            state_store=state_store,
            action_log=action_log,
            lead_store=lead_store,
            email_store=email_store,
            action_executor=self._action_executor,
            delay_scheduler=delay_scheduler,
            reentry_policy=settings.reentry_policy,
        )
        self._dispatcher = TriggerDispatcher(
            graph_store=graph_store,
            node_executor=self._node_executor,
            delay_scheduler=delay_scheduler,
        )
        delay_scheduler.set_handler(self._dispatcher.handle_scheduled_job)

    @property
    def dispatcher(self) -> TriggerDispatcher:
        return self._dispatcher

    @property
    def node_executor(self) -> NodeExecutor:
        return self._node_executor

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        await self.delay_scheduler.start()
        logger.info("Workflow service started", reentry_policy=self.settings.reentry_policy,
                    delay_scheduler=self.settings.delay_scheduler)

    async def stop(self) -> None:
        await self.delay_scheduler.shutdown()
        logger.info("Workflow service stopped")

    # =========================================================================
    # WORKFLOW DEFINITIONS
    # =========================================================================

    async def save_workflow(self, data: Dict[str, Any]) -> Workflow:
        """Decode and store a workflow definition."""
        workflow = Workflow.from_dict(data)
        await self.graph_store.save(workflow)
        if workflow.invalid_nodes:
            logger.warning("Workflow saved with invalid nodes", workflow_id=workflow.id,
                           invalid_nodes=sorted(workflow.invalid_nodes))
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.graph_store.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def activate(self, workflow_id: str) -> Workflow:
        return await self.graph_store.set_active(workflow_id, True)

    async def deactivate(self, workflow_id: str) -> Workflow:
        """Stop a workflow; pending delays still fire but end at the active check."""
        return await self.graph_store.set_active(workflow_id, False)

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    async def dispatch(self, trigger_type: TriggerType, payload: Dict[str, Any]) -> int:
        return await self._dispatcher.dispatch(trigger_type, payload)

    async def trigger_manual(self, workflow_id: str, lead_id: str) -> bool:
        return await self._dispatcher.trigger_manual(workflow_id, lead_id)

    async def schedule_trigger(self, trigger_type: TriggerType, payload: Dict[str, Any],
                               run_at: datetime) -> Optional[str]:
        return await self._dispatcher.schedule_trigger(trigger_type, payload, run_at)

    async def lead_created(self, lead: Lead) -> int:
        return await self._dispatcher.on_lead_created(lead)

    async def lead_updated(self, lead: Lead, changed_fields: Iterable[str]) -> int:
        return await self._dispatcher.on_lead_updated(lead, changed_fields)

    async def email_received(self, email: EmailMessage) -> int:
        return await self._dispatcher.on_email_received(email)

    async def email_opened(self, email: EmailMessage) -> int:
        return await self._dispatcher.on_email_opened(email)

    async def email_clicked(self, email: EmailMessage, link_url: str) -> int:
        return await self._dispatcher.on_email_clicked(email, link_url)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_execution(self, workflow_id: str, lead_id: str) -> Optional[ExecutionState]:
        return await self.state_store.get(workflow_id, lead_id)

    async def list_executions(self, workflow_id: str) -> List[ExecutionState]:
        """Executions of a workflow, most recently updated first."""
        return await self.state_store.list_for_workflow(workflow_id)

    async def get_logs(self, workflow_id: str, lead_id: Optional[str] = None) -> List[ActionLogEntry]:
        return await self.action_log.list(workflow_id=workflow_id, lead_id=lead_id)
