"""Lead action handlers - Update Lead, Categorize Lead."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from constants import (
    INTEREST_KEYWORDS,
    LEAD_CATEGORY_VARIABLE,
    NEGATIVE_KEYWORDS,
    QUESTION_KEYWORDS,
    URGENCY_KEYWORDS,
)
from core.logging import get_logger
from models.crm import LeadCategory
from models.graph import CategorizeLeadAction, UpdateLeadAction
from services.execution.models import ActionContext, ActionResult
from services.handlers.email import resolve_email

if TYPE_CHECKING:
    from services.clients import EmailAnalyzer
    from services.execution.store import EmailStore, LeadStore

logger = get_logger(__name__)

MANUAL_CATEGORY_REASON = "Manual categorization through workflow"


async def handle_update_lead(
    action: UpdateLeadAction,
    ctx: ActionContext,
    lead_store: "LeadStore",
) -> ActionResult:
    """Apply a partial update; custom fields are merged into the existing ones."""
    config = action.config
    partial: Dict[str, Any] = {}

    if config.status:
        partial["status"] = config.status
    if config.score is not None:
        partial["score"] = config.score
    if config.company:
        partial["company"] = config.company
    if config.notes:
        partial["notes"] = config.notes
    if config.tags is not None:
        partial["tags"] = config.tags
    if config.custom_fields:
        partial["customFields"] = config.custom_fields

    if partial:
        await lead_store.update(ctx.lead_id, partial)
    return ActionResult.ok(data={"updated": sorted(partial)})


def _matched(content: str, keywords: Tuple[str, ...]) -> List[str]:
    return [keyword for keyword in keywords if keyword in content]


def detect_category(analysis: Optional[Dict[str, Any]], subject: Optional[str],
                    body: Optional[str]) -> Tuple[LeadCategory, str]:
    """Derive a lead category from sentiment plus keyword heuristics.

    Negative signals are checked first so "not interested" never counts as
    interest.
    """
    sentiment = ""
    if isinstance(analysis, dict) and analysis.get("sentiment"):
        sentiment = str(analysis["sentiment"]).lower()
    content = f"{subject or ''} {body or ''}".lower()

    # Negative keywords outrank interest keywords and sentiment: "not interested"
    # with neutral or positive sentiment is COLD, not WARM or HOT.
    negative = _matched(content, NEGATIVE_KEYWORDS)
    if "negative" in sentiment or negative:
        reason = "Detected low interest or negative sentiment in email"
        if negative:
            reason += f" (matched: {', '.join(negative)})"
        return LeadCategory.COLD, reason

    interest = _matched(content, INTEREST_KEYWORDS)
    urgency = _matched(content, URGENCY_KEYWORDS)
    if "positive" in sentiment or interest or urgency:
        reason = "Detected high interest or positive sentiment in email"
        if interest:
            reason += f" (interest keywords: {', '.join(interest)})"
        if urgency:
            reason += f" (urgency keywords: {', '.join(urgency)})"
        return LeadCategory.HOT, reason

    if "neutral" in sentiment or _matched(content, QUESTION_KEYWORDS):
        return LeadCategory.WARM, "Detected moderate interest or questions in email"

    return LeadCategory.NEW, "Unable to categorize from email content"


async def handle_categorize_lead(
    action: CategorizeLeadAction,
    ctx: ActionContext,
    lead_store: "LeadStore",
    email_store: "EmailStore",
    email_analyzer: "EmailAnalyzer",
) -> ActionResult:
    """Set the lead category explicitly or detect it from the lead's email.

    An explicit ``category`` wins unless ``autoDetect`` is set. Detection
    reuses a stored analysis when the email was already analyzed.
    """
    config = action.config
    now = datetime.now(timezone.utc)
    data: Dict[str, Any] = {}

    if config.category and not config.auto_detect:
        category = config.category
        reason = config.reason or MANUAL_CATEGORY_REASON
        categorized_by = "workflow"
    else:
        email = await resolve_email(email_store, ctx.lead_id, config.email_id)
        analysis = email.analysis_results
        if not email.analyzed or not analysis:
            analysis = await email_analyzer.analyze(email.id)
            await email_store.save_analysis(email.id, analysis)

        detected, reason = detect_category(analysis, email.subject, email.body)
        category = detected.value
        categorized_by = "ai"
        data.update({"emailId": email.id, "analysis": analysis})

    await lead_store.update(ctx.lead_id, {
        "status": category,
        "lastContactedAt": now,
        "customFields": {
            "categorizedAt": now.isoformat(),
            "categorizedBy": categorized_by,
            "categoryReason": reason,
        },
    })

    logger.info("Lead categorized", lead_id=ctx.lead_id, category=category,
                categorized_by=categorized_by)
    data.update({"category": category, "reason": reason})
    return ActionResult.ok(data=data, variables={LEAD_CATEGORY_VARIABLE: category})
