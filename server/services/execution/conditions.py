"""Condition evaluation for Condition nodes.

Evaluates a typed condition payload against a lead snapshot and the lead's
most recent email to pick the true/false branch of a Condition node.

Supported operators:
- equals / notEquals: strict equality
- contains / notContains: substring test, string values only
- greaterThan / lessThan: numeric comparison (non-numeric values never match)
- isSet / isNotSet: value present / absent
- hasSubject / hasBody: email subject or body contains the value
- isOpened / isNotOpened: email open state
- before / after: date ordering against now (DATE_COMPARISON only)

Evaluation never raises. Unknown operators, missing configuration and
unexpected errors are logged and evaluate to False.
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from constants import DATE_OPERATORS, EMAIL_OPERATORS, UNIT_MILLISECONDS, VALUE_OPERATORS
from core.logging import get_logger
from models.crm import EmailMessage, Lead, parse_datetime
from models.graph import (
    ConditionNodeData,
    CustomFieldCondition,
    DateComparisonCondition,
    EmailPropertyCondition,
    LeadCategoryCondition,
    LeadPropertyCondition,
)

logger = get_logger(__name__)


def get_nested_value(data: Dict[str, Any], field_path: str) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Examples:
        >>> get_nested_value({"customFields": {"plan": "pro"}}, "customFields.plan")
        'pro'
        >>> get_nested_value({"tags": ["a", "b"]}, "tags.1")
        'b'
    """
    if not data or not field_path:
        return None

    current: Any = data
    for part in field_path.split('.'):
        if current is None:
            return None
        if part.isdigit():
            index = int(part)
            if isinstance(current, (list, tuple)) and 0 <= index < len(current):
                current = current[index]
            else:
                return None
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None

    return current


def to_number(value: Any) -> float:
    """Numeric coercion; anything non-numeric becomes NaN."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


# =============================================================================
# OPERATORS
# =============================================================================

def _contains(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and str(expected) in actual


def _not_contains(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and str(expected) not in actual


# NaN comparisons are always False
OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    'equals': lambda a, e: a == e,
    'notEquals': lambda a, e: a != e,
    'contains': _contains,
    'notContains': _not_contains,
    'greaterThan': lambda a, e: to_number(a) > to_number(e),
    'lessThan': lambda a, e: to_number(a) < to_number(e),
    'isSet': lambda a, e: a is not None,
    'isNotSet': lambda a, e: a is None,
}


def _apply_value_operator(operator: Optional[str], actual: Any, expected: Any) -> bool:
    if operator not in VALUE_OPERATORS:
        logger.error("Unknown condition operator", operator=operator)
        return False
    return OPERATORS[operator](actual, expected)


# =============================================================================
# EVALUATORS PER CONDITION TYPE
# =============================================================================

def _evaluate_lead_property(condition: LeadPropertyCondition, lead: Lead, **_) -> bool:
    if not condition.property or not condition.operator:
        logger.error("Missing property or operator in condition", condition_type=condition.type)
        return False
    actual = get_nested_value(lead.to_dict(), condition.property)
    return _apply_value_operator(condition.operator, actual, condition.value)


def _evaluate_custom_field(condition: CustomFieldCondition, lead: Lead, **_) -> bool:
    if not condition.field_name or not condition.operator:
        logger.error("Missing fieldName or operator in condition", condition_type=condition.type)
        return False
    actual = get_nested_value(lead.custom_fields, condition.field_name)
    return _apply_value_operator(condition.operator, actual, condition.value)


def _evaluate_lead_category(condition: LeadCategoryCondition, lead: Lead, **_) -> bool:
    return _apply_value_operator(condition.operator, lead.status, condition.value)


def _evaluate_email_property(condition: EmailPropertyCondition, lead: Lead,
                             email: Optional[EmailMessage] = None, **_) -> bool:
    if email is None:
        return False
    operator = condition.operator
    if not operator or operator not in EMAIL_OPERATORS:
        logger.error("Unknown or missing email condition operator", operator=operator)
        return False

    if operator in ('hasSubject', 'hasBody'):
        if condition.value is None or condition.value == "":
            logger.error("Missing value in email condition", operator=operator)
            return False
        text = email.subject if operator == 'hasSubject' else email.body
        return _contains(text, condition.value)
    if operator == 'isOpened':
        return email.opened is True
    if operator == 'isNotOpened':
        return email.opened is not True

    if not condition.property:
        logger.error("Missing property in email condition", operator=operator)
        return False
    return OPERATORS[operator](email.get_field(condition.property), condition.value)


def _evaluate_date_comparison(condition: DateComparisonCondition, lead: Lead,
                              now: Optional[datetime] = None, **_) -> bool:
    if not condition.date_field or not condition.operator:
        logger.error("Missing dateField or operator in condition", condition_type=condition.type)
        return False
    if condition.operator not in DATE_OPERATORS:
        logger.error("Unknown condition operator", operator=condition.operator)
        return False

    lead_date = parse_datetime(lead.get_field(condition.date_field))
    if lead_date is None:
        return False

    now = now or datetime.now(timezone.utc)
    diff_ms = abs((now - lead_date).total_seconds()) * 1000
    # Without a known unit the value is already in milliseconds
    value_ms = condition.value * UNIT_MILLISECONDS.get(condition.unit or "", 1)

    if condition.operator == 'lessThan':
        return diff_ms < value_ms
    if condition.operator == 'greaterThan':
        return diff_ms > value_ms
    if condition.operator == 'before':
        return lead_date < now
    return lead_date > now


_EVALUATORS: Dict[str, Callable[..., bool]] = {
    'LEAD_PROPERTY': _evaluate_lead_property,
    'EMAIL_PROPERTY': _evaluate_email_property,
    'DATE_COMPARISON': _evaluate_date_comparison,
    'CUSTOM_FIELD': _evaluate_custom_field,
    'LEAD_CATEGORY': _evaluate_lead_category,
}


def evaluate_condition(condition: ConditionNodeData, lead: Lead,
                       email: Optional[EmailMessage] = None,
                       now: Optional[datetime] = None) -> bool:
    """Evaluate a condition payload against a lead and its latest email.

    Args:
        condition: Typed condition payload from a Condition node
        lead: Lead snapshot
        email: The lead's most recent email, if any
        now: Reference time for date comparisons (defaults to current UTC time)

    Returns:
        True if the condition holds, False otherwise (including on any error)
    """
    evaluator = _EVALUATORS.get(condition.type)
    if evaluator is None:
        logger.error("Unknown condition type", condition_type=condition.type)
        return False

    try:
        result = evaluator(condition, lead, email=email, now=now)
    except Exception as e:
        logger.warning("Condition evaluation error",
                       condition_type=condition.type,
                       lead_id=lead.id,
                       error=str(e))
        return False

    logger.debug("Condition result", condition_type=condition.type, lead_id=lead.id, result=result)
    return bool(result)


def get_available_operators(condition_type: str) -> Dict[str, str]:
    """Operators accepted by a condition type, with display labels."""
    labels = {
        'equals': "Equals",
        'notEquals': "Does not equal",
        'contains': "Contains",
        'notContains': "Does not contain",
        'greaterThan': "Greater than",
        'lessThan': "Less than",
        'isSet': "Is set",
        'isNotSet': "Is not set",
        'hasSubject': "Subject contains",
        'hasBody': "Body contains",
        'isOpened': "Was opened",
        'isNotOpened': "Was not opened",
        'before': "Is before now",
        'after': "Is after now",
    }
    if condition_type == 'EMAIL_PROPERTY':
        names = EMAIL_OPERATORS
    elif condition_type == 'DATE_COMPARISON':
        names = DATE_OPERATORS
    else:
        names = VALUE_OPERATORS
    return {name: labels[name] for name in sorted(names)}
