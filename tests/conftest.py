"""Shared fixtures for engine tests.

Provides:
- A manual clock and a FakeDelayScheduler driven by ``advance(seconds)``
- Recording fakes for the email sender, content generator and analyzer
- An ``engine`` bundle wiring in-memory stores to the real executor and dispatcher
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from models.crm import EmailMessage, Lead
from models.graph import Workflow
from services.execution.actions import ActionExecutor
from services.execution.executor import NodeExecutor
from services.execution.models import ScheduledJob
from services.execution.store import (
    InMemoryActionLog,
    InMemoryEmailStore,
    InMemoryExecutionStateStore,
    InMemoryGraphStore,
    InMemoryLeadStore,
    InMemoryRecordStore,
)
from services.execution.triggers import TriggerDispatcher

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeDelayScheduler:
    """Delay scheduler whose jobs fire only when the test advances time."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.jobs: List[Tuple[datetime, ScheduledJob]] = []
        self.delays: List[float] = []
        self._handler = None

    def set_handler(self, handler) -> None:
        self._handler = handler

    async def start(self) -> None:
        pass

    async def shutdown(self) -> None:
        self.jobs.clear()

    @property
    def pending(self) -> int:
        return len(self.jobs)

    def schedule(self, delay_seconds: float, job: ScheduledJob) -> str:
        self.delays.append(delay_seconds)
        self.jobs.append((self.clock() + timedelta(seconds=delay_seconds), job))
        return job.job_id

    async def advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        while True:
            due = [item for item in self.jobs if item[0] <= self.clock()]
            if not due:
                return
            self.jobs = [item for item in self.jobs if item[0] > self.clock()]
            for _, job in sorted(due, key=lambda item: item[0]):
                await self._handler(job)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

class RecordingEmailSender:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def send(self, account_id: str, to: str, subject: str, body: str,
                   lead_id: Optional[str] = None) -> str:
        if self.error is not None:
            raise self.error
        self.sent.append({"account_id": account_id, "to": to, "subject": subject,
                          "body": body, "lead_id": lead_id})
        return f"msg-{len(self.sent)}"


class FakeContentGenerator:
    def __init__(self, content: str = "Generated pitch for you"):
        self.content = content
        self.prompts: List[Dict[str, Any]] = []

    async def generate(self, prompt: str, model_id: Optional[str], tone: str, length: str) -> str:
        self.prompts.append({"prompt": prompt, "model_id": model_id, "tone": tone, "length": length})
        return self.content


class FakeEmailAnalyzer:
    def __init__(self, analysis: Optional[Dict[str, Any]] = None):
        self.analysis = analysis or {
            "sentiment": "neutral",
            "summary": "Lead replied",
            "keyPoints": [],
            "actionItems": [],
        }
        self.calls: List[str] = []

    async def analyze(self, email_id: str) -> Dict[str, Any]:
        self.calls.append(email_id)
        return dict(self.analysis)


# ---------------------------------------------------------------------------
# Engine bundle
# ---------------------------------------------------------------------------

@dataclass
class Engine:
    clock: FakeClock
    scheduler: FakeDelayScheduler
    graphs: InMemoryGraphStore
    states: InMemoryExecutionStateStore
    action_log: InMemoryActionLog
    leads: InMemoryLeadStore
    emails: InMemoryEmailStore
    records: InMemoryRecordStore
    sender: RecordingEmailSender
    generator: FakeContentGenerator
    analyzer: FakeEmailAnalyzer
    executor: NodeExecutor = field(init=False)
    dispatcher: TriggerDispatcher = field(init=False)
    reentry_policy: str = "restart"

    def __post_init__(self):
        actions = ActionExecutor(
            lead_store=self.leads,
            email_store=self.emails,
            record_store=self.records,
            email_sender=self.sender,
            content_generator=self.generator,
            email_analyzer=self.analyzer,
        )
        self.executor = NodeExecutor(
            graph_store=self.graphs,
            state_store=self.states,
            action_log=self.action_log,
            lead_store=self.leads,
            email_store=self.emails,
            action_executor=actions,
            delay_scheduler=self.scheduler,
            reentry_policy=self.reentry_policy,
            clock=self.clock,
        )
        self.dispatcher = TriggerDispatcher(self.graphs, self.executor, self.scheduler, clock=self.clock)
        self.scheduler.set_handler(self.dispatcher.handle_scheduled_job)

    async def add_workflow(self, data: Dict[str, Any]) -> Workflow:
        return await self.graphs.save(Workflow.from_dict(data))

    async def add_lead(self, lead_id: str = "lead-1", **fields) -> Lead:
        fields.setdefault("email", f"{lead_id}@example.com")
        fields.setdefault("name", "Ada")
        return await self.leads.add(Lead(id=lead_id, **fields))

    async def add_email(self, email_id: str, lead_id: Optional[str] = "lead-1", **fields) -> EmailMessage:
        fields.setdefault("sent_at", self.clock())
        return await self.emails.add(EmailMessage(id=email_id, lead_id=lead_id, **fields))

    async def history_ids(self, workflow_id: str, lead_id: str = "lead-1") -> List[str]:
        state = await self.states.get(workflow_id, lead_id)
        return [entry.node_id for entry in state.history] if state else []


def build_engine(reentry_policy: str = "restart") -> Engine:
    clock = FakeClock()
    return Engine(
        clock=clock,
        scheduler=FakeDelayScheduler(clock),
        graphs=InMemoryGraphStore(),
        states=InMemoryExecutionStateStore(),
        action_log=InMemoryActionLog(),
        leads=InMemoryLeadStore(),
        emails=InMemoryEmailStore(),
        records=InMemoryRecordStore(),
        sender=RecordingEmailSender(),
        generator=FakeContentGenerator(),
        analyzer=FakeEmailAnalyzer(),
        reentry_policy=reentry_policy,
    )


@pytest.fixture
def engine() -> Engine:
    return build_engine()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
