"""Trigger dispatch - turns CRM events into workflow runs.

For each event the dispatcher finds active workflows with a matching trigger
node and starts one run per matching trigger node. Failures are isolated per
trigger node: one broken workflow never stops the others.

Usage:
    dispatcher = TriggerDispatcher(graph_store, node_executor, delay_scheduler)
    await dispatcher.on_lead_created(lead)
    await dispatcher.trigger_manual("wf-1", "lead-1")
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, TYPE_CHECKING, Union

from core.logging import get_logger
from models.crm import EmailMessage, Lead
from models.graph import TriggerType, Workflow
from .models import ScheduledJob, as_utc

if TYPE_CHECKING:
    from .delay import DelayScheduler
    from .executor import NodeExecutor
    from .store import GraphStore

logger = get_logger(__name__)


class TriggerDispatcher:
    """Routes trigger events and scheduled jobs to the node executor."""

    def __init__(self, graph_store: "GraphStore", node_executor: "NodeExecutor",
                 delay_scheduler: "DelayScheduler",
                 clock: Optional[Callable[[], datetime]] = None):
        self.graph_store = graph_store
        self.node_executor = node_executor
        self.delay_scheduler = delay_scheduler
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # =========================================================================
    # DISPATCH
    # =========================================================================

    async def dispatch(self, trigger_type: Union[TriggerType, str], payload: Dict[str, Any]) -> int:
        """Start runs for every active workflow whose trigger accepts the event.

        When ``payload`` carries ``workflowId`` only that workflow is considered.

        Returns:
            Number of runs started
        """
        try:
            trigger_type = TriggerType(trigger_type)
        except ValueError:
            logger.error("Unknown trigger type", trigger_type=trigger_type)
            return 0

        try:
            workflows = await self._candidate_workflows(trigger_type, payload)
        except Exception as e:
            logger.error("Could not load workflows for trigger", trigger_type=trigger_type.value,
                         error=str(e))
            return 0

        logger.info("Processing trigger", trigger_type=trigger_type.value,
                    workflows=len(workflows), lead_id=payload.get("leadId"))

        started = 0
        for workflow in workflows:
            for trigger_node in workflow.trigger_nodes(trigger_type, payload):
                try:
                    if await self.node_executor.start_workflow(workflow.id, trigger_node.id, payload):
                        started += 1
                except Exception as e:
                    logger.error("Workflow start failed",
                                 workflow_id=workflow.id,
                                 trigger_node_id=trigger_node.id,
                                 lead_id=payload.get("leadId"),
                                 error=str(e))
        return started

    async def _candidate_workflows(self, trigger_type: TriggerType,
                                   payload: Dict[str, Any]) -> List[Workflow]:
        workflow_id = payload.get("workflowId")
        if not workflow_id:
            return await self.graph_store.list_active_workflows_with_trigger(trigger_type)

        workflow = await self.graph_store.get_workflow(workflow_id)
        if workflow is None:
            logger.warning("Workflow not found for trigger", workflow_id=workflow_id)
            return []
        if not workflow.is_active:
            logger.info("Workflow is not active", workflow_id=workflow_id)
            return []
        return [workflow]

    async def trigger_manual(self, workflow_id: str, lead_id: str) -> bool:
        """Run one workflow for one lead now; True if a run started."""
        started = await self.dispatch(TriggerType.MANUAL, {"workflowId": workflow_id, "leadId": lead_id})
        return started > 0

    async def schedule_trigger(self, trigger_type: Union[TriggerType, str], payload: Dict[str, Any],
                               run_at: datetime) -> Optional[str]:
        """Dispatch an event at ``run_at``; past times dispatch immediately.

        Returns:
            Scheduler job id, or None when dispatched immediately
        """
        trigger_type = TriggerType(trigger_type)
        delay_seconds = (as_utc(run_at) - self._clock()).total_seconds()
        if delay_seconds <= 0:
            await self.dispatch(trigger_type, payload)
            return None

        job = ScheduledJob.dispatch(trigger_type.value, payload)
        logger.info("Trigger scheduled", trigger_type=trigger_type.value,
                    run_at=as_utc(run_at).isoformat(), job_id=job.job_id)
        return self.delay_scheduler.schedule(delay_seconds, job)

    async def handle_scheduled_job(self, job: ScheduledJob) -> None:
        """Delay scheduler callback for resumes and deferred dispatches."""
        if job.kind == "resume":
            await self.node_executor.resume(job)
        elif job.kind == "dispatch":
            await self.dispatch(job.trigger_type, job.payload)
        else:
            logger.error("Unknown scheduled job kind", kind=job.kind, job_id=job.job_id)

    # =========================================================================
    # EVENT HELPERS
    # =========================================================================

    async def on_lead_created(self, lead: Lead) -> int:
        return await self.dispatch(TriggerType.LEAD_CREATED, {
            "leadId": lead.id,
            "leadData": lead.to_dict(),
        })

    async def on_lead_updated(self, lead: Lead, changed_fields: Iterable[str]) -> int:
        return await self.dispatch(TriggerType.LEAD_UPDATED, {
            "leadId": lead.id,
            "leadData": lead.to_dict(),
            "changedFields": list(changed_fields),
        })

    async def on_email_received(self, email: EmailMessage) -> int:
        return await self._dispatch_email(TriggerType.EMAIL_RECEIVED, email)

    async def on_email_opened(self, email: EmailMessage) -> int:
        return await self._dispatch_email(TriggerType.EMAIL_OPENED, email)

    async def on_email_clicked(self, email: EmailMessage, link_url: str) -> int:
        return await self._dispatch_email(TriggerType.EMAIL_CLICKED, email, linkUrl=link_url)

    async def _dispatch_email(self, trigger_type: TriggerType, email: EmailMessage, **extra) -> int:
        # Workflows run per lead; emails without one have nothing to run for
        if not email.lead_id:
            logger.debug("Email has no lead, skipping trigger", email_id=email.id,
                         trigger_type=trigger_type.value)
            return 0
        return await self.dispatch(trigger_type, {
            "leadId": email.lead_id,
            "emailId": email.id,
            "emailData": email.to_dict(),
            **extra,
        })
