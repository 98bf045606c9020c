"""Action Executor - typed action dispatch.

Uses a registry keyed by action type with collaborators bound via partial,
so adding an action means adding one handler and one registry line.
"""

from functools import partial
from typing import TYPE_CHECKING, Awaitable, Callable, Dict

from core.logging import get_logger
from models.graph import ActionType
from services.handlers import (
    handle_analyze_email,
    handle_categorize_lead,
    handle_create_appointment,
    handle_create_task,
    handle_generate_ai_content,
    handle_notify_user,
    handle_send_email,
    handle_update_lead,
)
from .models import ActionContext, ActionResult

if TYPE_CHECKING:
    from services.clients import ContentGenerator, EmailAnalyzer, EmailSender
    from .store import EmailStore, LeadStore, RecordStore

logger = get_logger(__name__)

ActionHandler = Callable[..., Awaitable[ActionResult]]


class ActionExecutor:
    """Runs one action payload and reports success or failure; never raises."""

    def __init__(
        self,
        lead_store: "LeadStore",
        email_store: "EmailStore",
        record_store: "RecordStore",
        email_sender: "EmailSender",
        content_generator: "ContentGenerator",
        email_analyzer: "EmailAnalyzer",
    ):
        self.lead_store = lead_store
        self.email_store = email_store
        self.record_store = record_store
        self.email_sender = email_sender
        self.content_generator = content_generator
        self.email_analyzer = email_analyzer
        self._handlers = self._build_handler_registry()

    def _build_handler_registry(self) -> Dict[str, ActionHandler]:
        """Build handler registry with collaborators bound via partial."""
        return {
            ActionType.SEND_EMAIL.value: partial(handle_send_email, email_sender=self.email_sender),
            ActionType.UPDATE_LEAD.value: partial(handle_update_lead, lead_store=self.lead_store),
            ActionType.CREATE_TASK.value: partial(handle_create_task, record_store=self.record_store),
            ActionType.CREATE_APPOINTMENT.value: partial(handle_create_appointment,
                                                         record_store=self.record_store),
            ActionType.NOTIFY_USER.value: partial(handle_notify_user, record_store=self.record_store),
            ActionType.GENERATE_AI_CONTENT.value: partial(handle_generate_ai_content,
                                                          content_generator=self.content_generator,
                                                          email_sender=self.email_sender),
            ActionType.ANALYZE_EMAIL.value: partial(handle_analyze_email,
                                                    email_store=self.email_store,
                                                    email_analyzer=self.email_analyzer),
            ActionType.CATEGORIZE_LEAD.value: partial(handle_categorize_lead,
                                                      lead_store=self.lead_store,
                                                      email_store=self.email_store,
                                                      email_analyzer=self.email_analyzer),
        }

    async def execute(self, action, ctx: ActionContext) -> ActionResult:
        """Dispatch an action payload to its handler.

        Args:
            action: Typed action payload from an Action node
            ctx: Workflow, node, lead and variables of the current visit

        Returns:
            ActionResult; handler exceptions become failed results
        """
        handler = self._handlers.get(action.type)
        if handler is None:
            logger.error("Unknown action type", action_type=action.type, node_id=ctx.node_id)
            return ActionResult.fail(f"Unknown action type: {action.type}")

        try:
            return await handler(action, ctx)
        except Exception as e:
            logger.error("Action failed",
                         action_type=action.type,
                         workflow_id=ctx.workflow_id,
                         node_id=ctx.node_id,
                         lead_id=ctx.lead_id,
                         error=str(e))
            return ActionResult.fail(str(e))
