"""Centralized constants for the workflow engine.

This module provides a single source of truth for operator names, time units
and the keyword tables used by lead categorization, eliminating duplicate
string arrays across the codebase.
"""

from typing import Dict, FrozenSet, Tuple

# =============================================================================
# CONDITION OPERATORS
# =============================================================================

# Operators shared by LEAD_PROPERTY, CUSTOM_FIELD and LEAD_CATEGORY conditions
VALUE_OPERATORS: FrozenSet[str] = frozenset([
    'equals',
    'notEquals',
    'contains',
    'notContains',
    'greaterThan',
    'lessThan',
    'isSet',
    'isNotSet',
])

# EMAIL_PROPERTY conditions accept the value operators plus email-specific checks
EMAIL_OPERATORS: FrozenSet[str] = frozenset([
    'equals',
    'notEquals',
    'contains',
    'notContains',
    'greaterThan',
    'lessThan',
    'isSet',
    'isNotSet',
    'hasSubject',
    'hasBody',
    'isOpened',
    'isNotOpened',
])

# DATE_COMPARISON operators: elapsed-time checks and absolute ordering against now
DATE_OPERATORS: FrozenSet[str] = frozenset([
    'lessThan',
    'greaterThan',
    'before',
    'after',
])

# =============================================================================
# TIME UNITS
# =============================================================================

UNIT_MILLISECONDS: Dict[str, int] = {
    'minutes': 60 * 1000,
    'hours': 60 * 60 * 1000,
    'days': 24 * 60 * 60 * 1000,
    'weeks': 7 * 24 * 60 * 60 * 1000,
}

# =============================================================================
# LEAD CATEGORIZATION KEYWORDS
# =============================================================================

INTEREST_KEYWORDS: Tuple[str, ...] = (
    'interested',
    'buy',
    'purchase',
    'when can',
    'pricing',
    'quote',
    'demo',
)

URGENCY_KEYWORDS: Tuple[str, ...] = (
    'asap',
    'urgent',
    'immediately',
    'right away',
    'soon',
)

# Checked before interest keywords: "not interested" contains "interested"
NEGATIVE_KEYWORDS: Tuple[str, ...] = (
    'not interested',
    'unsubscribe',
    'remove me',
    'stop emailing',
)

QUESTION_KEYWORDS: Tuple[str, ...] = (
    'question',
    'more information',
    'more info',
)

# =============================================================================
# RECORD DEFAULTS
# =============================================================================

DEFAULT_TASK_PRIORITY = 'MEDIUM'
DEFAULT_TASK_STATUS = 'PENDING'
DEFAULT_APPOINTMENT_STATUS = 'SCHEDULED'
DEFAULT_AI_TONE = 'professional'
DEFAULT_AI_LENGTH = 'medium'

# Variable names written back into the execution state by actions
GENERATED_CONTENT_VARIABLE = 'generatedContent'
LEAD_CATEGORY_VARIABLE = 'leadCategory'
EMAIL_ANALYSIS_VARIABLE = 'emailAnalysis'

# Sentinel accepted wherever an email id is expected
LATEST_EMAIL = 'latest'
