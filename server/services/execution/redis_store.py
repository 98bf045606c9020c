"""Redis persistence for workflows, execution state and the action log.

Key layout:
    workflow:{workflow_id}                 JSON workflow definition
    workflows:all                          set of workflow ids
    workflow_state:{workflow_id}:{lead_id} JSON execution state
    workflow_states:{workflow_id}          set of lead ids with state
    action_logs:{workflow_id}              list of JSON action log entries
    action_logs                            global list of JSON action log entries

State updates use WATCH/MULTI optimistic transactions so concurrent branches
of the same (workflow, lead) never lose history appends.
"""

import json
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import WatchError

from core.logging import get_logger
from models.graph import TriggerType, Workflow
from .errors import StateConflictError, WorkflowNotFoundError
from .models import ActionLogEntry, ExecutionState, HistoryEntry

logger = get_logger(__name__)


def _state_key(workflow_id: str, lead_id: str) -> str:
    return f"workflow_state:{workflow_id}:{lead_id}"


def _state_index_key(workflow_id: str) -> str:
    return f"workflow_states:{workflow_id}"


class RedisGraphStore:
    def __init__(self, redis: Redis):
        self.redis = redis

    async def save(self, workflow: Workflow) -> Workflow:
        await self.redis.set(f"workflow:{workflow.id}", json.dumps(workflow.to_dict(), default=str))
        await self.redis.sadd("workflows:all", workflow.id)
        return workflow

    async def delete(self, workflow_id: str) -> bool:
        removed = await self.redis.delete(f"workflow:{workflow_id}")
        await self.redis.srem("workflows:all", workflow_id)
        return bool(removed)

    async def set_active(self, workflow_id: str, is_active: bool) -> Workflow:
        workflow = await self.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        workflow.is_active = is_active
        await self.save(workflow)
        logger.info("Workflow activation changed", workflow_id=workflow_id, is_active=is_active)
        return workflow

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        raw = await self.redis.get(f"workflow:{workflow_id}")
        if raw is None:
            return None
        return Workflow.from_dict(json.loads(raw))

    async def list_active_workflows_with_trigger(self, trigger_type: TriggerType) -> List[Workflow]:
        workflows = []
        for workflow_id in await self.redis.smembers("workflows:all"):
            if isinstance(workflow_id, bytes):
                workflow_id = workflow_id.decode()
            workflow = await self.get_workflow(workflow_id)
            if workflow and workflow.is_active and workflow.has_trigger(trigger_type):
                workflows.append(workflow)
        return workflows


class RedisExecutionStateStore:
    """Execution state with optimistic per-key transactions."""

    def __init__(self, redis: Redis, max_retries: int = 10):
        self.redis = redis
        self.max_retries = max_retries

    async def get(self, workflow_id: str, lead_id: str) -> Optional[ExecutionState]:
        raw = await self.redis.get(_state_key(workflow_id, lead_id))
        if raw is None:
            return None
        return ExecutionState.from_dict(json.loads(raw))

    async def upsert(self, workflow_id: str, lead_id: str, current_node: str,
                     history_append: Optional[HistoryEntry] = None,
                     variables: Optional[Dict[str, Any]] = None,
                     replace_variables: bool = False,
                     run_id: Optional[str] = None) -> ExecutionState:
        key = _state_key(workflow_id, lead_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            for attempt in range(self.max_retries):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        state = ExecutionState(workflow_id=workflow_id, lead_id=lead_id,
                                               current_node=current_node)
                    else:
                        state = ExecutionState.from_dict(json.loads(raw))
                    state.apply(current_node, history_append, variables, replace_variables, run_id)

                    pipe.multi()
                    pipe.set(key, json.dumps(state.to_dict(), default=str))
                    pipe.sadd(_state_index_key(workflow_id), lead_id)
                    await pipe.execute()
                    return state
                except WatchError:
                    logger.debug("Execution state conflict, retrying",
                                 workflow_id=workflow_id, lead_id=lead_id, attempt=attempt + 1)
                    continue

        raise StateConflictError(
            f"Could not update state for workflow {workflow_id} lead {lead_id} "
            f"after {self.max_retries} attempts"
        )

    async def list_for_workflow(self, workflow_id: str) -> List[ExecutionState]:
        states = []
        for lead_id in await self.redis.smembers(_state_index_key(workflow_id)):
            if isinstance(lead_id, bytes):
                lead_id = lead_id.decode()
            state = await self.get(workflow_id, lead_id)
            if state is not None:
                states.append(state)
        return sorted(states, key=lambda s: s.updated_at, reverse=True)


class RedisActionLog:
    def __init__(self, redis: Redis):
        self.redis = redis

    async def append(self, entry: ActionLogEntry) -> None:
        payload = json.dumps(entry.to_dict(), default=str)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.rpush(f"action_logs:{entry.workflow_id}", payload)
            pipe.rpush("action_logs", payload)
            await pipe.execute()

    async def list(self, workflow_id: Optional[str] = None,
                   lead_id: Optional[str] = None) -> List[ActionLogEntry]:
        key = f"action_logs:{workflow_id}" if workflow_id else "action_logs"
        raw_list = await self.redis.lrange(key, 0, -1)
        entries = [ActionLogEntry.from_dict(json.loads(raw)) for raw in raw_list]
        if lead_id is not None:
            entries = [e for e in entries if e.lead_id == lead_id]
        return entries
