"""Tests for trigger dispatch, event filters and scheduled triggers."""

from datetime import timedelta

import pytest

from conftest import NOW
from factories import edge, end, trigger, welcome_workflow, workflow
from models.crm import EmailMessage
from models.graph import TriggerType


def single_trigger_workflow(workflow_id: str, trigger_type: str, is_active: bool = True, **config):
    return workflow(
        workflow_id,
        nodes=[trigger("t1", trigger_type, **config), end("e1")],
        edges=[edge("t1", "e1")],
        is_active=is_active,
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    async def test_runs_every_active_matching_workflow(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "LEAD_CREATED"))
        await engine.add_workflow(single_trigger_workflow("wf-b", "LEAD_CREATED"))
        await engine.add_workflow(single_trigger_workflow("wf-off", "LEAD_CREATED", is_active=False))
        await engine.add_workflow(single_trigger_workflow("wf-other", "EMAIL_OPENED"))

        started = await engine.dispatcher.dispatch(TriggerType.LEAD_CREATED, {"leadId": "lead-1"})

        assert started == 2
        assert await engine.states.get("wf-off", "lead-1") is None
        assert await engine.states.get("wf-other", "lead-1") is None

    async def test_each_matching_trigger_node_starts_a_run(self, engine):
        await engine.add_workflow(workflow(
            "wf-two",
            nodes=[trigger("t1"), trigger("t2"), end("e1")],
            edges=[edge("t1", "e1"), edge("t2", "e1")],
        ))

        started = await engine.dispatcher.dispatch("LEAD_CREATED", {"leadId": "lead-1"})

        assert started == 2

    async def test_unknown_trigger_type_starts_nothing(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "LEAD_CREATED"))

        assert await engine.dispatcher.dispatch("NOT_A_TRIGGER", {"leadId": "lead-1"}) == 0

    async def test_start_failure_is_isolated_per_workflow(self, engine, monkeypatch):
        await engine.add_workflow(single_trigger_workflow("wf-a", "LEAD_CREATED"))
        await engine.add_workflow(single_trigger_workflow("wf-b", "LEAD_CREATED"))
        original = engine.executor.start_workflow

        async def flaky_start(workflow_id, trigger_node_id, payload):
            if workflow_id == "wf-a":
                raise RuntimeError("store unavailable")
            return await original(workflow_id, trigger_node_id, payload)

        monkeypatch.setattr(engine.executor, "start_workflow", flaky_start)

        started = await engine.dispatcher.dispatch(TriggerType.LEAD_CREATED, {"leadId": "lead-1"})

        assert started == 1
        assert await engine.states.get("wf-b", "lead-1") is not None

    async def test_workflow_id_in_payload_scopes_dispatch(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "LEAD_CREATED"))
        await engine.add_workflow(single_trigger_workflow("wf-b", "LEAD_CREATED"))

        started = await engine.dispatcher.dispatch(
            TriggerType.LEAD_CREATED, {"leadId": "lead-1", "workflowId": "wf-b"}
        )

        assert started == 1
        assert await engine.states.get("wf-a", "lead-1") is None


# ---------------------------------------------------------------------------
# Manual triggers
# ---------------------------------------------------------------------------


class TestManualTrigger:
    async def test_runs_only_the_named_workflow(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "MANUAL"))
        await engine.add_workflow(single_trigger_workflow("wf-b", "MANUAL"))

        assert await engine.dispatcher.trigger_manual("wf-a", "lead-1") is True

        assert await engine.history_ids("wf-a") == ["t1", "e1"]
        assert await engine.states.get("wf-b", "lead-1") is None

    async def test_inactive_workflow_is_not_run(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "MANUAL", is_active=False))

        assert await engine.dispatcher.trigger_manual("wf-a", "lead-1") is False

    async def test_unknown_workflow_is_not_run(self, engine):
        assert await engine.dispatcher.trigger_manual("missing", "lead-1") is False

    async def test_workflow_without_manual_trigger_is_not_run(self, engine):
        await engine.add_workflow(welcome_workflow())

        assert await engine.dispatcher.trigger_manual("wf-welcome", "lead-1") is False


# ---------------------------------------------------------------------------
# Event filters and helpers
# ---------------------------------------------------------------------------


class TestEventHelpers:
    async def test_lead_created_payload_becomes_variables(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "LEAD_CREATED"))
        lead = await engine.add_lead(company="Acme")

        assert await engine.dispatcher.on_lead_created(lead) == 1

        state = await engine.states.get("wf-a", "lead-1")
        assert state.variables["leadId"] == "lead-1"
        assert state.variables["leadData"]["company"] == "Acme"

    @pytest.mark.parametrize("changed, expected", [
        (["score"], 0),
        (["status"], 1),
        (["score", "status"], 1),
    ])
    async def test_lead_updated_field_filter(self, engine, changed, expected):
        await engine.add_workflow(single_trigger_workflow("wf-a", "LEAD_UPDATED", fields=["status"]))
        lead = await engine.add_lead()

        assert await engine.dispatcher.on_lead_updated(lead, changed) == expected

    async def test_lead_updated_without_filter_matches_any_change(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "LEAD_UPDATED"))
        lead = await engine.add_lead()

        assert await engine.dispatcher.on_lead_updated(lead, ["notes"]) == 1

    async def test_email_clicked_link_filter(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "EMAIL_CLICKED", linkContains="/pricing"))
        email = await engine.add_email("m1")

        assert await engine.dispatcher.on_email_clicked(email, "https://acme.test/blog") == 0
        assert await engine.dispatcher.on_email_clicked(email, "https://acme.test/pricing?x=1") == 1

        state = await engine.states.get("wf-a", "lead-1")
        assert state.variables["linkUrl"] == "https://acme.test/pricing?x=1"
        assert state.variables["emailId"] == "m1"

    async def test_email_received_and_opened(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-in", "EMAIL_RECEIVED"))
        await engine.add_workflow(single_trigger_workflow("wf-open", "EMAIL_OPENED"))
        email = await engine.add_email("m1")

        assert await engine.dispatcher.on_email_received(email) == 1
        assert await engine.dispatcher.on_email_opened(email) == 1

    async def test_email_without_lead_is_skipped(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-in", "EMAIL_RECEIVED"))

        orphan = EmailMessage(id="m2", lead_id=None, subject="Hi")

        assert await engine.dispatcher.on_email_received(orphan) == 0
        assert await engine.states.list_for_workflow("wf-in") == []


# ---------------------------------------------------------------------------
# Scheduled triggers
# ---------------------------------------------------------------------------


class TestScheduledTrigger:
    async def test_future_dispatch_waits_for_scheduler(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "SCHEDULED"))

        job_id = await engine.dispatcher.schedule_trigger(
            TriggerType.SCHEDULED, {"leadId": "lead-1"}, NOW + timedelta(minutes=5)
        )

        assert job_id is not None
        assert engine.scheduler.delays == [300.0]
        assert await engine.states.get("wf-a", "lead-1") is None

        await engine.scheduler.advance(300)

        assert await engine.history_ids("wf-a") == ["t1", "e1"]

    async def test_past_time_dispatches_immediately(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "SCHEDULED"))

        job_id = await engine.dispatcher.schedule_trigger(
            "SCHEDULED", {"leadId": "lead-1"}, NOW - timedelta(minutes=1)
        )

        assert job_id is None
        assert engine.scheduler.pending == 0
        assert await engine.history_ids("wf-a") == ["t1", "e1"]

    async def test_naive_run_at_is_treated_as_utc(self, engine):
        await engine.add_workflow(single_trigger_workflow("wf-a", "SCHEDULED"))
        run_at = (NOW + timedelta(seconds=30)).replace(tzinfo=None)

        await engine.dispatcher.schedule_trigger(TriggerType.SCHEDULED, {"leadId": "lead-1"}, run_at)

        assert engine.scheduler.delays == [30.0]
