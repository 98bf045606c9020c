"""Action handlers package.

Each handler takes the typed action payload and an ActionContext, performs one
side effect through an injected store or collaborator, and returns an
ActionResult. Handlers may raise; ActionExecutor converts exceptions into
failed results.

- email.py: Send Email, Generate AI Content, Analyze Email
- leads.py: Update Lead, Categorize Lead
- records.py: Create Task, Create Appointment, Notify User
- templating.py: {{key}} / {{lead.field}} placeholder rendering
"""

from .email import (
    handle_send_email,
    handle_generate_ai_content,
    handle_analyze_email,
    resolve_email,
)
from .leads import (
    handle_update_lead,
    handle_categorize_lead,
    detect_category,
)
from .records import (
    handle_create_task,
    handle_create_appointment,
    handle_notify_user,
)
from .templating import render_template

__all__ = [
    "handle_send_email",
    "handle_generate_ai_content",
    "handle_analyze_email",
    "resolve_email",
    "handle_update_lead",
    "handle_categorize_lead",
    "detect_category",
    "handle_create_task",
    "handle_create_appointment",
    "handle_notify_user",
    "render_template",
]
