"""Record action handlers - Create Task, Create Appointment, Notify User."""

from typing import TYPE_CHECKING

from core.logging import get_logger
from models.crm import Appointment, Notification, Task
from models.graph import CreateAppointmentAction, CreateTaskAction, NotifyUserAction
from services.execution.errors import ActionConfigError
from services.execution.models import ActionContext, ActionResult
from services.handlers.templating import render_template

if TYPE_CHECKING:
    from services.execution.store import RecordStore

logger = get_logger(__name__)


async def handle_create_task(
    action: CreateTaskAction,
    ctx: ActionContext,
    record_store: "RecordStore",
) -> ActionResult:
    config = action.config
    lead_data = ctx.lead.to_dict()

    task = await record_store.create(Task(
        title=render_template(config.title, ctx.variables, lead_data),
        description=render_template(config.description, ctx.variables, lead_data) or None,
        due_date=config.due_date,
        assigned_to_id=config.assigned_to_id,
        priority=config.priority,
        status=config.status,
        lead_id=ctx.lead_id,
    ))
    logger.info("Task created", task_id=task.id, lead_id=ctx.lead_id)
    return ActionResult.ok(data=task.to_dict())


async def handle_create_appointment(
    action: CreateAppointmentAction,
    ctx: ActionContext,
    record_store: "RecordStore",
) -> ActionResult:
    config = action.config
    if config.end_time < config.start_time:
        raise ActionConfigError("Appointment endTime is before startTime")

    appointment = await record_store.create(Appointment(
        title=render_template(config.title, ctx.variables, ctx.lead.to_dict()),
        description=config.description,
        start_time=config.start_time,
        end_time=config.end_time,
        location=config.location,
        status=config.status,
        lead_id=ctx.lead_id,
    ))
    logger.info("Appointment created", appointment_id=appointment.id, lead_id=ctx.lead_id)
    return ActionResult.ok(data=appointment.to_dict())


async def handle_notify_user(
    action: NotifyUserAction,
    ctx: ActionContext,
    record_store: "RecordStore",
) -> ActionResult:
    config = action.config
    lead_data = ctx.lead.to_dict()

    notification = await record_store.create(Notification(
        user_id=config.user_id,
        title=render_template(config.title, ctx.variables, lead_data),
        message=render_template(config.message, ctx.variables, lead_data),
    ))
    logger.info("User notified", user_id=config.user_id, notification_id=notification.id)
    return ActionResult.ok(data=notification.to_dict())
