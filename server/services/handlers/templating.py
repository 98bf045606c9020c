"""Placeholder rendering for email subjects, bodies and AI prompts.

Two placeholder forms are supported:
- ``{{key}}``: replaced from the variables map (action config variables
  layered over execution state variables)
- ``{{lead.field}}``: replaced from the lead record; dotted paths reach into
  nested values such as ``{{lead.customFields.plan}}``

A lead placeholder whose value is missing or empty is left untouched so the
gap is visible in the rendered text.
"""

import re
from typing import Any, Dict, Optional

from services.execution.conditions import get_nested_value

# Compiled regex for template matching
TEMPLATE_PATTERN = re.compile(r'\{\{\s*([^}]+?)\s*\}\}')
LEAD_PREFIX = 'lead.'


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_template(text: Optional[str], variables: Optional[Dict[str, Any]] = None,
                    lead: Optional[Dict[str, Any]] = None) -> str:
    """Resolve ``{{key}}`` and ``{{lead.field}}`` placeholders in text."""
    if not text:
        return text or ""

    variables = variables or {}
    lead = lead or {}

    def replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key.startswith(LEAD_PREFIX):
            value = get_nested_value(lead, key[len(LEAD_PREFIX):])
            return _stringify(value) if value not in (None, "") else match.group(0)
        if key in variables:
            return _stringify(variables[key])
        return match.group(0)

    return TEMPLATE_PATTERN.sub(replace, text)


def merge_variables(state_variables: Optional[Dict[str, Any]],
                    config_variables: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Config variables win over state variables of the same name."""
    return {**(state_variables or {}), **(config_variables or {})}
