"""Tests for engine stores.

Redis tests run only when LEADFLOW_TEST_REDIS_URL points at a server.
"""

import asyncio
import os
import uuid

import pytest
from redis.asyncio import Redis

from conftest import NOW
from factories import welcome_workflow
from models.crm import EmailMessage, Lead, Task
from models.graph import TriggerType, Workflow
from services.execution.errors import LeadNotFoundError, WorkflowNotFoundError
from services.execution.models import ActionLogEntry, ExecutionState, HistoryEntry, LogStatus
from services.execution.redis_store import RedisActionLog, RedisExecutionStateStore, RedisGraphStore
from services.execution.store import (
    InMemoryEmailStore,
    InMemoryExecutionStateStore,
    InMemoryGraphStore,
    InMemoryLeadStore,
    InMemoryRecordStore,
)

REDIS_URL = os.environ.get("LEADFLOW_TEST_REDIS_URL")


# ---------------------------------------------------------------------------
# Execution state
# ---------------------------------------------------------------------------


class TestInMemoryExecutionStateStore:
    async def test_concurrent_appends_are_not_lost(self):
        store = InMemoryExecutionStateStore()

        await asyncio.gather(*(
            store.upsert("wf-1", "lead-1", f"n{i}", history_append=HistoryEntry(f"n{i}", "ACTION"))
            for i in range(50)
        ))

        state = await store.get("wf-1", "lead-1")
        assert len(state.history) == 50
        assert {h.node_id for h in state.history} == {f"n{i}" for i in range(50)}

    async def test_get_returns_a_copy(self):
        store = InMemoryExecutionStateStore()
        await store.upsert("wf-1", "lead-1", "t1", variables={"a": 1})

        state = await store.get("wf-1", "lead-1")
        state.variables["a"] = 2

        assert (await store.get("wf-1", "lead-1")).variables == {"a": 1}

    async def test_variables_merge_or_replace(self):
        store = InMemoryExecutionStateStore()
        await store.upsert("wf-1", "lead-1", "t1", variables={"a": 1, "b": 2})
        await store.upsert("wf-1", "lead-1", "a1", variables={"b": 3})
        assert (await store.get("wf-1", "lead-1")).variables == {"a": 1, "b": 3}

        await store.upsert("wf-1", "lead-1", "t1", variables={"c": 4}, replace_variables=True, run_id="r2")
        state = await store.get("wf-1", "lead-1")
        assert state.variables == {"c": 4}
        assert state.run_id == "r2"

    async def test_list_for_workflow(self):
        store = InMemoryExecutionStateStore()
        await store.upsert("wf-1", "lead-1", "t1")
        await store.upsert("wf-1", "lead-2", "t1")
        await store.upsert("wf-2", "lead-1", "t1")

        states = await store.list_for_workflow("wf-1")

        assert {s.lead_id for s in states} == {"lead-1", "lead-2"}


def test_execution_state_serialization():
    state = ExecutionState(workflow_id="wf-1", lead_id="lead-1", current_node="a1",
                           history=[HistoryEntry("a1", "ACTION", detail={"actionType": "SEND_EMAIL"})],
                           variables={"x": 1}, run_id="r1")

    restored = ExecutionState.from_dict(state.to_dict())

    assert restored == state


# ---------------------------------------------------------------------------
# Graphs and CRM stores
# ---------------------------------------------------------------------------


class TestInMemoryGraphStore:
    async def test_lists_only_active_workflows_with_trigger(self):
        store = InMemoryGraphStore()
        await store.save(Workflow.from_dict(welcome_workflow("wf-on")))
        off = Workflow.from_dict(welcome_workflow("wf-off"))
        off.is_active = False
        await store.save(off)

        active = await store.list_active_workflows_with_trigger(TriggerType.LEAD_CREATED)

        assert [wf.id for wf in active] == ["wf-on"]
        assert await store.list_active_workflows_with_trigger(TriggerType.MANUAL) == []

    async def test_set_active_unknown_workflow(self):
        with pytest.raises(WorkflowNotFoundError):
            await InMemoryGraphStore().set_active("missing", True)


class TestInMemoryLeadStore:
    async def test_update_merges_custom_fields(self):
        store = InMemoryLeadStore([Lead(id="lead-1", custom_fields={"a": 1})])

        lead = await store.update("lead-1", {"customFields": {"b": 2}, "status": "HOT",
                                             "lastContactedAt": "2026-01-15T12:00:00Z", "ignored": 1})

        assert lead.custom_fields == {"a": 1, "b": 2}
        assert lead.status == "HOT"
        assert lead.last_contacted_at.year == 2026

    async def test_update_unknown_lead(self):
        with pytest.raises(LeadNotFoundError):
            await InMemoryLeadStore().update("missing", {"status": "HOT"})


class TestInMemoryEmailStore:
    async def test_latest_for_lead(self):
        store = InMemoryEmailStore([
            EmailMessage(id="m1", lead_id="lead-1", sent_at=None),
            EmailMessage(id="m2", lead_id="lead-1", sent_at=NOW),
            EmailMessage(id="m3", lead_id="lead-2", sent_at=NOW),
        ])

        assert (await store.latest_for_lead("lead-1")).id == "m2"
        assert await store.latest_for_lead("lead-3") is None

    async def test_save_analysis_marks_analyzed(self):
        store = InMemoryEmailStore([EmailMessage(id="m1", lead_id="lead-1")])

        await store.save_analysis("m1", {"sentiment": "positive"})

        email = await store.get("m1")
        assert email.analyzed is True
        assert email.analysis_results == {"sentiment": "positive"}


async def test_record_store_rejects_unknown_records():
    store = InMemoryRecordStore()
    await store.create(Task(title="Call", lead_id="lead-1"))

    with pytest.raises(TypeError):
        await store.create(object())
    assert len(store.tasks) == 1


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@pytest.mark.skipif(not REDIS_URL, reason="LEADFLOW_TEST_REDIS_URL not set")
class TestRedisStores:
    @pytest.fixture
    async def redis(self):
        client = Redis.from_url(REDIS_URL, decode_responses=True)
        yield client
        await client.aclose()

    async def test_concurrent_appends_are_not_lost(self, redis):
        store = RedisExecutionStateStore(redis, max_retries=100)
        workflow_id = f"wf-{uuid.uuid4()}"

        await asyncio.gather(*(
            store.upsert(workflow_id, "lead-1", f"n{i}", history_append=HistoryEntry(f"n{i}", "ACTION"))
            for i in range(20)
        ))

        state = await store.get(workflow_id, "lead-1")
        assert len(state.history) == 20
        assert [s.lead_id for s in await store.list_for_workflow(workflow_id)] == ["lead-1"]

    async def test_graph_store_and_action_log(self, redis):
        graphs = RedisGraphStore(redis)
        workflow_id = f"wf-{uuid.uuid4()}"
        await graphs.save(Workflow.from_dict(welcome_workflow(workflow_id)))
        assert (await graphs.get_workflow(workflow_id)).get_node("a1") is not None
        await graphs.set_active(workflow_id, False)
        assert (await graphs.get_workflow(workflow_id)).is_active is False
        await graphs.delete(workflow_id)

        log = RedisActionLog(redis)
        await log.append(ActionLogEntry(workflow_id=workflow_id, node_id="a1", lead_id="lead-1",
                                        action_type="SEND_EMAIL", status=LogStatus.SUCCESS))
        entries = await log.list(workflow_id=workflow_id)
        assert [e.node_id for e in entries] == ["a1"]
