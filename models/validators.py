"""
Per-field constraint checking for submitted form data.

validate_field is pure: it returns an error message or None. Rules run in a
fixed order and the first failure wins:

1. email fields must look like local@domain.tld
2. phone fields may only contain digits, spaces and + - ( )
3. number fields must parse as a finite number within min/max
4. string values are checked against minLength, maxLength and pattern
5. choice fields with an option list only accept listed options

Patterns are written by form authors, so they are length-capped when the form
is saved, matched only against inputs up to PATTERN_MAX_INPUT_LENGTH, and run
with a PATTERN_MATCH_TIMEOUT_SECONDS budget; a match that runs out of time
counts as a failed match.
"""
import logging
import math
import re
from functools import lru_cache
from typing import Any, Dict, List, Optional

import regex

from models.base import CHOICE_FIELD_TYPES, ConditionalLogic, ConditionRule, FormField
from utils.config import PATTERN_MATCH_TIMEOUT_SECONDS, PATTERN_MAX_INPUT_LENGTH
from utils.errors import FieldValidationError

logger = logging.getLogger("formpulse.validation")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[\d\s\-+()]+$")


@lru_cache(maxsize=512)
def _compile(pattern: str):
    return regex.compile(pattern)


def _fmt(n: float) -> str:
    return str(int(n)) if float(n).is_integer() else str(n)


def _parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _matches_pattern(pattern: str, value: str) -> bool:
    if len(value) > PATTERN_MAX_INPUT_LENGTH:
        return False
    try:
        return _compile(pattern).search(value, timeout=PATTERN_MATCH_TIMEOUT_SECONDS) is not None
    except TimeoutError:
        logger.warning("Field pattern %r timed out on a %s-char value", pattern, len(value))
        return False
    except regex.error as e:
        logger.warning("Unusable field pattern %r: %s", pattern, e)
        return False


def validate_field(field: FormField, value: Any) -> Optional[str]:
    """Return an error message for value, or None when it satisfies field"""
    validation = field.validation
    custom = validation.customMessage if validation else None
    label = field.label

    if field.type == "email" and not EMAIL_RE.match(str(value)):
        return custom or f"{label} must be a valid email"

    if field.type == "phone" and not PHONE_RE.match(str(value)):
        return custom or f"{label} must be a valid phone number"

    if field.type == "number":
        num = _parse_number(value)
        if num is None:
            return custom or f"{label} must be a number"
        if validation and validation.min is not None and num < validation.min:
            return custom or f"{label} must be at least {_fmt(validation.min)}"
        if validation and validation.max is not None and num > validation.max:
            return custom or f"{label} must be at most {_fmt(validation.max)}"

    if isinstance(value, str) and validation:
        if validation.minLength is not None and len(value) < validation.minLength:
            return custom or f"{label} must be at least {validation.minLength} characters"
        if validation.maxLength is not None and len(value) > validation.maxLength:
            return custom or f"{label} must be at most {validation.maxLength} characters"
        if validation.pattern and not _matches_pattern(validation.pattern, value):
            return custom or f"{label} format is invalid"

    if field.type in CHOICE_FIELD_TYPES and field.options:
        chosen = value if isinstance(value, list) else [value]
        if any(str(v) not in field.options for v in chosen):
            return custom or f"{label} must be one of the available options"

    return None


def is_missing(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _rule_matches(rule: ConditionRule, data: Dict[str, Any]) -> bool:
    actual = data.get(rule.field)
    if isinstance(actual, list):
        actual_text = ",".join(str(v) for v in actual)
    else:
        actual_text = "" if actual is None else str(actual)

    if rule.operator == "equals":
        return actual_text == rule.value
    if rule.operator == "not_equals":
        return actual_text != rule.value
    if rule.operator == "contains":
        if isinstance(actual, list):
            return rule.value in [str(v) for v in actual]
        return rule.value in actual_text
    left, right = _parse_number(actual), _parse_number(rule.value)
    if left is None or right is None:
        return False
    if rule.operator == "greater_than":
        return left > right
    return left < right


def conditions_match(logic: ConditionalLogic, data: Dict[str, Any]) -> bool:
    if not logic.rules:
        return False
    results = [_rule_matches(r, data) for r in logic.rules]
    return all(results) if logic.logic == "and" else any(results)


def is_field_visible(field: FormField, data: Dict[str, Any]) -> bool:
    logic = field.conditionalLogic
    if not logic:
        return True
    if logic.action == "show":
        return conditions_match(logic, data)
    if logic.action == "hide":
        return not conditions_match(logic, data)
    return True


def is_field_required(field: FormField, data: Dict[str, Any]) -> bool:
    logic = field.conditionalLogic
    if logic and logic.action == "require" and conditions_match(logic, data):
        return True
    return field.required


def check_submission(fields: List[FormField], data: Dict[str, Any]) -> None:
    """Required-field and constraint checks over fields in order; raises on the first failure"""
    for field in fields:
        if not is_field_visible(field, data):
            continue
        value = data.get(field.id)
        if is_missing(value):
            if is_field_required(field, data):
                raise FieldValidationError(f'Field "{field.label}" is required', field=field.id)
            continue
        error = validate_field(field, value)
        if error:
            raise FieldValidationError(error, field=field.id)
