"""Tests for workflow graph decoding."""

import json

from factories import action, edge, end, trigger, welcome_workflow, workflow
from models.graph import (
    CreateTaskAction,
    DelayNode,
    DelayType,
    SendEmailAction,
    TriggerType,
    Workflow,
)


class TestDecoding:
    def test_typed_nodes_and_edges(self):
        wf = Workflow.from_dict(welcome_workflow())

        assert wf.is_active is True
        assert [n.type for n in wf.nodes] == ["TRIGGER", "CONDITION", "ACTION", "END", "END"]
        send = wf.get_node("a1").data
        assert isinstance(send, SendEmailAction)
        assert send.config.email_account_id == "acct-1"
        assert [e.condition for e in wf.outgoing_edges("c1")] == [True, False]
        assert wf.invalid_nodes == {}

    def test_nodes_and_edges_stored_as_json_strings(self):
        data = welcome_workflow()
        data["nodes"] = json.dumps(data["nodes"])
        data["edges"] = json.dumps(data["edges"])

        wf = Workflow.from_dict(data)

        assert len(wf.nodes) == 5
        assert wf.next_node_ids("t1") == ["c1"]

    def test_flat_action_settings_are_lifted_into_config(self):
        wf = Workflow.from_dict(workflow("wf", nodes=[{
            "id": "a1", "type": "ACTION",
            "data": {"type": "CREATE_TASK", "label": "Follow up", "title": "Call back", "priority": "HIGH"},
        }], edges=[]))

        task = wf.get_node("a1").data
        assert isinstance(task, CreateTaskAction)
        assert task.label == "Follow up"
        assert task.config.title == "Call back"
        assert task.config.priority == "HIGH"

    def test_delay_accepts_milliseconds_and_legacy_relative(self):
        wf = Workflow.from_dict(workflow("wf", nodes=[
            {"id": "d1", "type": "DELAY", "data": {"delayMs": 1500, "delayType": "RELATIVE"}},
        ], edges=[]))

        node = wf.get_node("d1")
        assert isinstance(node, DelayNode)
        assert node.data.duration == 1.5
        assert node.data.delay_type == DelayType.RELATIVE_TO_EVENT

    def test_workflows_default_to_inactive(self):
        wf = Workflow.from_dict({"id": "wf", "nodes": [], "edges": []})

        assert wf.is_active is False


class TestInvalidNodes:
    def test_bad_node_is_isolated(self):
        wf = Workflow.from_dict(workflow(
            "wf",
            nodes=[trigger("t1"), action("a1", "CREATE_TASK"), end("e1"),
                   {"id": "x1", "type": "TELEPORT", "data": {}}],
            edges=[edge("t1", "a1"), edge("a1", "e1")],
        ))

        assert {n.id for n in wf.nodes} == {"t1", "e1"}
        assert set(wf.invalid_nodes) == {"a1", "x1"}
        assert "title" in wf.invalid_nodes["a1"]
        assert wf.next_node_ids("t1") == ["a1"]

    def test_invalid_nodes_survive_serialization(self):
        wf = Workflow.from_dict(workflow("wf", nodes=[action("a1", "NOTIFY_USER")], edges=[]))

        again = Workflow.from_dict(wf.to_dict())

        assert again.invalid_nodes == wf.invalid_nodes
        assert again.invalid_node_types == {"a1": "ACTION"}

    def test_invalid_nodes_keep_their_declared_type(self):
        wf = Workflow.from_dict(workflow(
            "wf",
            nodes=[{"id": "c1", "type": "CONDITION", "data": {"type": "NOT_A_TYPE"}}, "garbage"],
            edges=[],
        ))

        assert set(wf.invalid_nodes) == {"c1", "unknown"}
        assert wf.invalid_node_types == {"c1": "CONDITION"}


class TestTriggers:
    def test_trigger_nodes_filter_by_type(self):
        wf = Workflow.from_dict(workflow(
            "wf",
            nodes=[trigger("t1", "LEAD_CREATED"), trigger("t2", "MANUAL")],
            edges=[],
        ))

        assert [n.id for n in wf.trigger_nodes(TriggerType.MANUAL)] == ["t2"]
        assert wf.has_trigger(TriggerType.LEAD_CREATED)
        assert not wf.has_trigger(TriggerType.EMAIL_OPENED)

    def test_field_filter(self):
        node = Workflow.from_dict(workflow(
            "wf", nodes=[trigger("t1", "LEAD_UPDATED", fields=["status", "score"])], edges=[],
        )).get_node("t1")

        assert node.data.matches(TriggerType.LEAD_UPDATED, {"changedFields": ["score"]})
        assert not node.data.matches(TriggerType.LEAD_UPDATED, {"changedFields": ["notes"]})
        assert not node.data.matches(TriggerType.LEAD_UPDATED, {})

    def test_link_filter(self):
        node = Workflow.from_dict(workflow(
            "wf", nodes=[trigger("t1", "EMAIL_CLICKED", linkContains="demo")], edges=[],
        )).get_node("t1")

        assert node.data.matches(TriggerType.EMAIL_CLICKED, {"linkUrl": "https://x.test/demo"})
        assert not node.data.matches(TriggerType.EMAIL_CLICKED, {"linkUrl": "https://x.test/blog"})
        assert not node.data.matches(TriggerType.EMAIL_OPENED, {"linkUrl": "https://x.test/demo"})
