"""Email action handlers - Send Email, Generate AI Content, Analyze Email."""

from typing import TYPE_CHECKING, Optional

from constants import EMAIL_ANALYSIS_VARIABLE, LATEST_EMAIL
from core.logging import get_logger
from models.crm import EmailMessage
from models.graph import AnalyzeEmailAction, GenerateAIContentAction, SendEmailAction
from services.execution.errors import ActionConfigError, EmailNotFoundError
from services.execution.models import ActionContext, ActionResult
from services.handlers.templating import merge_variables, render_template

if TYPE_CHECKING:
    from services.clients import ContentGenerator, EmailAnalyzer, EmailSender
    from services.execution.store import EmailStore

logger = get_logger(__name__)


async def resolve_email(email_store: "EmailStore", lead_id: str,
                        email_id: Optional[str]) -> EmailMessage:
    """Load an email by id, or the lead's most recent one for ``latest``/empty."""
    if not email_id or email_id == LATEST_EMAIL:
        email = await email_store.latest_for_lead(lead_id)
        if email is None:
            raise EmailNotFoundError(f"latest for lead {lead_id}")
        return email

    email = await email_store.get(email_id)
    if email is None:
        raise EmailNotFoundError(email_id)
    return email


async def _deliver(email_sender: "EmailSender", account_id: Optional[str], ctx: ActionContext,
                   subject: str, body: str) -> str:
    if not account_id:
        raise ActionConfigError("emailAccountId is required to send email")
    if not ctx.lead.email:
        raise ActionConfigError(f"Lead {ctx.lead_id} has no email address")
    return await email_sender.send(account_id, ctx.lead.email, subject, body, lead_id=ctx.lead_id)


async def handle_send_email(
    action: SendEmailAction,
    ctx: ActionContext,
    email_sender: "EmailSender",
) -> ActionResult:
    """Render subject and body placeholders, then hand off to the email sender.

    The body comes from ``body`` or, when absent, ``template``.
    """
    config = action.config
    lead_data = ctx.lead.to_dict()
    variables = merge_variables(ctx.variables, config.variables)

    subject = render_template(config.subject, variables, lead_data)
    body = render_template(config.body or config.template, variables, lead_data)

    message_id = await _deliver(email_sender, config.email_account_id, ctx, subject, body)
    logger.info("Workflow email sent", node_id=ctx.node_id, lead_id=ctx.lead_id, message_id=message_id)

    return ActionResult.ok(data={
        "messageId": message_id,
        "to": ctx.lead.email,
        "subject": subject,
    })


async def handle_generate_ai_content(
    action: GenerateAIContentAction,
    ctx: ActionContext,
    content_generator: "ContentGenerator",
    email_sender: "EmailSender",
) -> ActionResult:
    """Generate content from a prompt and optionally email it to the lead.

    Generated text is exposed to later nodes as a variable named by
    ``outputVariable``. It is emailed only when ``outputAction`` is
    ``SEND_EMAIL``, content came back and an email account is configured.
    """
    config = action.config
    lead_data = ctx.lead.to_dict()
    prompt = render_template(config.prompt, ctx.variables, lead_data)

    content = await content_generator.generate(prompt, config.model_id, config.tone, config.length)
    data = {"content": content, "prompt": prompt}

    if config.output_action == "SEND_EMAIL" and content and config.email_account_id:
        subject = (
            render_template(config.subject, ctx.variables, lead_data) if config.subject
            else f"Generated email for {ctx.lead.name or ctx.lead.email}"
        )
        data["messageId"] = await _deliver(email_sender, config.email_account_id, ctx, subject, content)
        data["subject"] = subject

    logger.info("AI content generated", node_id=ctx.node_id, lead_id=ctx.lead_id,
                content_length=len(content), emailed="messageId" in data)
    return ActionResult.ok(data=data, variables={config.output_variable: content})


async def handle_analyze_email(
    action: AnalyzeEmailAction,
    ctx: ActionContext,
    email_store: "EmailStore",
    email_analyzer: "EmailAnalyzer",
) -> ActionResult:
    config = action.config
    if not config.email_id:
        raise ActionConfigError("Email ID is required for analysis")

    email = await resolve_email(email_store, ctx.lead_id, config.email_id)
    analysis = await email_analyzer.analyze(email.id)
    await email_store.save_analysis(email.id, analysis)

    return ActionResult.ok(
        data={"emailId": email.id, "analysis": analysis},
        variables={EMAIL_ANALYSIS_VARIABLE: analysis},
    )
