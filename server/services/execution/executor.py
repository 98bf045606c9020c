"""Node executor - walks a workflow graph for one lead.

Implements:
- Per-visit history in ExecutionState (one entry per node visit)
- Typed node dispatch through a visitor registry keyed by node type
- Condition branching on edge ``condition`` flags
- Split fan-out with asyncio.gather (no join)
- Delay suspension through an injected DelayScheduler

A branch never raises out of ``execute_node``: unexpected errors are logged
as FAILED action log entries and only that branch stops.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from core.logging import get_logger, log_node_visit, run_context
from models.crm import parse_datetime
from models.graph import (
    ActionNode,
    ConditionNode,
    DelayNode,
    DelayType,
    EndNode,
    NodeType,
    SplitNode,
    TriggerNode,
    Workflow,
)
from .actions import ActionExecutor
from .conditions import evaluate_condition
from .errors import LeadNotFoundError, NodeNotFoundError
from .models import (
    ActionContext,
    ActionLogEntry,
    ActionResult,
    HistoryEntry,
    LogStatus,
    ScheduledJob,
    VisitStatus,
    new_id,
)

if TYPE_CHECKING:
    from .delay import DelayScheduler
    from .store import ActionLog, EmailStore, ExecutionStateStore, GraphStore, LeadStore

logger = get_logger(__name__)

# Action type recorded when a failure is not tied to an action payload
UNKNOWN_ACTION = "UNKNOWN"
INVALID_NODE_TYPE = "INVALID"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeExecutor:
    """Executes workflow nodes for a lead and follows the outgoing edges."""

    def __init__(
        self,
        graph_store: "GraphStore",
        state_store: "ExecutionStateStore",
        action_log: "ActionLog",
        lead_store: "LeadStore",
        email_store: "EmailStore",
        action_executor: ActionExecutor,
        delay_scheduler: "DelayScheduler",
        reentry_policy: str = "restart",
        clock: Optional[Clock] = None,
    ):
        self.graph_store = graph_store
        self.state_store = state_store
        self.action_log = action_log
        self.lead_store = lead_store
        self.email_store = email_store
        self.action_executor = action_executor
        self.delay_scheduler = delay_scheduler
        self.reentry_policy = reentry_policy
        self._clock = clock or _utcnow
        self._visitors = self._build_visitor_registry()

    def _build_visitor_registry(self) -> Dict[str, Callable[..., Awaitable[List[str]]]]:
        return {
            NodeType.TRIGGER.value: self._visit_trigger,
            NodeType.ACTION.value: self._visit_action,
            NodeType.CONDITION.value: self._visit_condition,
            NodeType.DELAY.value: self._visit_delay,
            NodeType.SPLIT.value: self._visit_split,
            NodeType.END.value: self._visit_end,
        }

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def start_workflow(self, workflow_id: str, trigger_node_id: str,
                             payload: Dict[str, Any]) -> bool:
        """Begin a run at a trigger node for the lead named in ``payload``.

        Returns:
            True when the run started, False when it was skipped
        """
        lead_id = payload.get("leadId")
        if not lead_id:
            logger.error("No lead id in trigger payload", workflow_id=workflow_id,
                         trigger_node_id=trigger_node_id)
            return False

        workflow = await self.graph_store.get_workflow(workflow_id)
        if workflow is None or not workflow.is_active:
            logger.info("Workflow is not active or does not exist", workflow_id=workflow_id)
            return False

        if self.reentry_policy == "skip_existing":
            existing = await self.state_store.get(workflow_id, lead_id)
            if existing is not None:
                logger.info("Lead already has an execution, skipping re-entry",
                            workflow_id=workflow_id, lead_id=lead_id,
                            current_node=existing.current_node)
                return False

        run_id = new_id()
        with run_context(workflow_id, lead_id, run_id):
            await self.state_store.upsert(
                workflow_id, lead_id, trigger_node_id,
                variables=dict(payload), replace_variables=True, run_id=run_id,
            )
            logger.info("Workflow run started", trigger_node_id=trigger_node_id)

            await self.execute_node(trigger_node_id, workflow_id, lead_id, run_id)
        return True

    async def execute_node(self, node_id: str, workflow_id: str, lead_id: str,
                           run_id: Optional[str] = None) -> None:
        """Visit a node and keep walking the branch until it ends or suspends.

        Sequential chains are walked in a loop; fan-out runs each branch
        concurrently.
        """
        next_ids = [node_id]
        while len(next_ids) == 1:
            next_ids = await self._visit_safely(next_ids[0], workflow_id, lead_id, run_id)

        if next_ids:
            await self._fan_out(next_ids, workflow_id, lead_id, run_id)

    async def resume(self, job: ScheduledJob) -> None:
        """Continue a run after its Delay node's timer fired."""
        workflow = await self.graph_store.get_workflow(job.workflow_id)
        if workflow is None or not workflow.is_active:
            logger.info("Delayed continuation skipped, workflow is not active",
                        workflow_id=job.workflow_id, lead_id=job.lead_id, node_id=job.node_id)
            return

        if workflow.get_node(job.node_id) is None:
            await self._log_failure(job.workflow_id, job.node_id, job.lead_id, UNKNOWN_ACTION,
                                    str(NodeNotFoundError(job.node_id, job.workflow_id)))
            return

        next_ids = workflow.next_node_ids(job.node_id)
        with run_context(job.workflow_id, job.lead_id, job.run_id):
            logger.info("Resuming after delay", node_id=job.node_id, next_nodes=next_ids)
            if len(next_ids) == 1:
                await self.execute_node(next_ids[0], job.workflow_id, job.lead_id, job.run_id)
            elif next_ids:
                await self._fan_out(next_ids, job.workflow_id, job.lead_id, job.run_id)

    # =========================================================================
    # BRANCH CONTROL
    # =========================================================================

    async def _fan_out(self, node_ids: List[str], workflow_id: str, lead_id: str,
                       run_id: Optional[str]) -> None:
        await asyncio.gather(*(
            self.execute_node(next_id, workflow_id, lead_id, run_id) for next_id in node_ids
        ))

    async def _visit_safely(self, node_id: str, workflow_id: str, lead_id: str,
                            run_id: Optional[str]) -> List[str]:
        try:
            return await self._visit(node_id, workflow_id, lead_id, run_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Node execution error", workflow_id=workflow_id, node_id=node_id,
                         lead_id=lead_id, error=str(e))
            await self._log_failure(workflow_id, node_id, lead_id, UNKNOWN_ACTION, str(e))
            return []

    async def _visit(self, node_id: str, workflow_id: str, lead_id: str,
                     run_id: Optional[str]) -> List[str]:
        workflow = await self.graph_store.get_workflow(workflow_id)
        if workflow is None or not workflow.is_active:
            logger.info("Workflow is no longer active, stopping branch",
                        workflow_id=workflow_id, node_id=node_id, lead_id=lead_id)
            return []

        node = workflow.get_node(node_id)
        if node is None:
            if node_id in workflow.invalid_nodes:
                return await self._visit_invalid(workflow, node_id, lead_id, run_id)
            raise NodeNotFoundError(node_id, workflow_id)

        visitor = self._visitors[node.type]
        return await visitor(workflow, node, lead_id, run_id)

    # =========================================================================
    # VISITORS
    # =========================================================================

    async def _visit_trigger(self, workflow: Workflow, node: TriggerNode, lead_id: str,
                             run_id: Optional[str]) -> List[str]:
        await self._record_visit(workflow.id, lead_id, node.id, node.type, VisitStatus.COMPLETED, run_id)
        return workflow.next_node_ids(node.id)

    async def _visit_action(self, workflow: Workflow, node: ActionNode, lead_id: str,
                            run_id: Optional[str]) -> List[str]:
        action = node.data
        lead = await self.lead_store.get(lead_id)
        if lead is None:
            result = ActionResult.fail(str(LeadNotFoundError(lead_id)))
        else:
            state = await self.state_store.get(workflow.id, lead_id)
            ctx = ActionContext(
                workflow_id=workflow.id,
                node_id=node.id,
                lead=lead,
                variables=dict(state.variables) if state else {},
            )
            result = await self.action_executor.execute(action, ctx)

        status = VisitStatus.COMPLETED if result.success else VisitStatus.FAILED
        await self._record_visit(
            workflow.id, lead_id, node.id, node.type, status, run_id,
            detail={"actionType": action.type},
            variables=result.variables if result.success else None,
            error=result.error,
        )
        await self.action_log.append(ActionLogEntry(
            workflow_id=workflow.id,
            node_id=node.id,
            lead_id=lead_id,
            action_type=action.type,
            status=LogStatus.SUCCESS if result.success else LogStatus.FAILED,
            data={
                "config": action.config.model_dump(mode="json", by_alias=True),
                "result": result.data,
            },
            error=result.error,
        ))

        if not result.success:
            return []
        return workflow.next_node_ids(node.id)

    async def _visit_condition(self, workflow: Workflow, node: ConditionNode, lead_id: str,
                               run_id: Optional[str]) -> List[str]:
        condition = node.data
        lead = await self.lead_store.get(lead_id)
        if lead is None:
            logger.error("Lead not found for condition", workflow_id=workflow.id,
                         node_id=node.id, lead_id=lead_id)
            result = False
        else:
            email = None
            if condition.type == "EMAIL_PROPERTY":
                email = await self.email_store.latest_for_lead(lead_id)
            result = evaluate_condition(condition, lead, email, now=self._clock())

        await self._record_visit(workflow.id, lead_id, node.id, node.type, VisitStatus.COMPLETED,
                                 run_id, detail={"conditionType": condition.type, "result": result})

        return [
            edge.target for edge in workflow.outgoing_edges(node.id)
            if edge.condition is None or edge.condition == result
        ]

    async def _visit_delay(self, workflow: Workflow, node: DelayNode, lead_id: str,
                           run_id: Optional[str]) -> List[str]:
        delay_seconds = await self._delay_seconds(workflow.id, node, lead_id)

        if delay_seconds <= 0:
            await self._record_visit(workflow.id, lead_id, node.id, node.type, VisitStatus.COMPLETED,
                                     run_id, detail={"delaySeconds": 0})
            return workflow.next_node_ids(node.id)

        job_id = self.delay_scheduler.schedule(
            delay_seconds, ScheduledJob.resume(workflow.id, lead_id, node.id, run_id)
        )
        await self._record_visit(workflow.id, lead_id, node.id, node.type, VisitStatus.WAITING,
                                 run_id, detail={"delaySeconds": delay_seconds, "jobId": job_id})
        return []

    async def _visit_split(self, workflow: Workflow, node: SplitNode, lead_id: str,
                           run_id: Optional[str]) -> List[str]:
        next_ids = workflow.next_node_ids(node.id)
        await self._record_visit(workflow.id, lead_id, node.id, node.type, VisitStatus.COMPLETED,
                                 run_id, detail={"branches": len(next_ids)})
        return next_ids

    async def _visit_end(self, workflow: Workflow, node: EndNode, lead_id: str,
                         run_id: Optional[str]) -> List[str]:
        await self._record_visit(workflow.id, lead_id, node.id, node.type, VisitStatus.COMPLETED, run_id)
        return []

    async def _visit_invalid(self, workflow: Workflow, node_id: str, lead_id: str,
                             run_id: Optional[str]) -> List[str]:
        error = f"Invalid node configuration: {workflow.invalid_nodes[node_id]}"
        if workflow.invalid_node_types.get(node_id) == NodeType.CONDITION.value:
            # A misconfigured condition evaluates to False
            await self._record_visit(workflow.id, lead_id, node_id, NodeType.CONDITION.value,
                                     VisitStatus.COMPLETED, run_id, detail={"result": False}, error=error)
            return [
                edge.target for edge in workflow.outgoing_edges(node_id)
                if edge.condition is None or edge.condition is False
            ]

        await self._record_visit(workflow.id, lead_id, node_id, INVALID_NODE_TYPE, VisitStatus.FAILED,
                                 run_id, error=error)
        await self._log_failure(workflow.id, node_id, lead_id, UNKNOWN_ACTION, error)
        return []

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _delay_seconds(self, workflow_id: str, node: DelayNode, lead_id: str) -> float:
        delay = node.data
        if delay.delay_type != DelayType.RELATIVE_TO_EVENT:
            return delay.duration

        state = await self.state_store.get(workflow_id, lead_id)
        raw = state.variables.get(delay.event_field) if state else None
        try:
            reference = parse_datetime(raw)
        except (TypeError, ValueError):
            reference = None

        if reference is None:
            logger.warning("Delay reference time missing, using fixed duration",
                           workflow_id=workflow_id, node_id=node.id, event_field=delay.event_field)
            return delay.duration

        remaining = reference + timedelta(seconds=delay.duration) - self._clock()
        return max(remaining.total_seconds(), 0.0)

    async def _record_visit(self, workflow_id: str, lead_id: str, node_id: str, node_type: str,
                            status: VisitStatus, run_id: Optional[str],
                            detail: Optional[Dict[str, Any]] = None,
                            variables: Optional[Dict[str, Any]] = None,
                            error: Optional[str] = None) -> None:
        detail = dict(detail or {})
        if error:
            detail["error"] = error
        entry = HistoryEntry(node_id=node_id, node_type=node_type, status=status,
                             timestamp=self._clock(), run_id=run_id, detail=detail)
        await self.state_store.upsert(workflow_id, lead_id, node_id,
                                      history_append=entry, variables=variables)
        log_node_visit(logger, node_id, node_type, status.value, error=error)

    async def _log_failure(self, workflow_id: str, node_id: str, lead_id: str,
                           action_type: str, error: str) -> None:
        try:
            await self.action_log.append(ActionLogEntry(
                workflow_id=workflow_id,
                node_id=node_id,
                lead_id=lead_id,
                action_type=action_type,
                status=LogStatus.FAILED,
                error=error,
            ))
        except Exception as e:
            logger.error("Could not write action log entry", workflow_id=workflow_id,
                         node_id=node_id, error=str(e))
