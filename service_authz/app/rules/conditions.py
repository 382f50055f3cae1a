"""
Condition operators and context lookup.
"""

import math
import re
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from shared.logging import get_logger
from .models import AuthorizationContext, Condition, ContextRef, Operand

logger = get_logger("authz.conditions")

OperatorFn = Callable[[Any, Any], bool]

_OPERATORS: Dict[str, OperatorFn] = {}

# Top-level context names reachable from condition paths
_CONTEXT_FIELDS = {
    "userId": "user_id",
    "user_id": "user_id",
    "tenantId": "tenant_id",
    "tenant_id": "tenant_id",
    "resource": "resource",
    "action": "action",
    "resourceId": "resource_id",
    "resource_id": "resource_id",
    "resourceAttributes": "resource_attributes",
    "resource_attributes": "resource_attributes",
    "userAttributes": "user_attributes",
    "user_attributes": "user_attributes",
    "requestContext": "request_context",
    "request_context": "request_context",
    "environment": "environment",
}

_CONTAINERS = (list, tuple, set, frozenset)


def register_operator(name: str, fn: Optional[OperatorFn] = None):
    """Register a condition operator, usable as a decorator."""
    def decorator(func: OperatorFn) -> OperatorFn:
        _OPERATORS[name] = func
        return func

    if fn is not None:
        return decorator(fn)
    return decorator


def get_operator(name: str) -> Optional[OperatorFn]:
    return _OPERATORS.get(name)


def is_known_operator(name: Any) -> bool:
    return isinstance(name, str) and name in _OPERATORS


def resolve_path(context: AuthorizationContext, path: str) -> Any:
    """Resolve a dot-path such as ``resourceAttributes.ownerId`` against the context.

    Returns None when any part of the path is missing.
    """
    head, _, rest = path.partition(".")
    attribute = _CONTEXT_FIELDS.get(head)
    if attribute is None:
        return None

    value: Any = getattr(context, attribute)
    if not rest:
        return value

    for part in rest.split("."):
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            return None
        if value is None:
            return None

    return value


def resolve_operand(operand: Operand, context: AuthorizationContext) -> Any:
    if isinstance(operand, ContextRef):
        return resolve_path(context, operand.path)
    return operand.value


def evaluate_condition(condition: Condition, context: AuthorizationContext) -> bool:
    """Evaluate a single condition. Failures evaluate to False."""
    operator = get_operator(condition.operator)
    if operator is None:
        logger.warning("Unknown condition operator", operator=condition.operator)
        return False

    try:
        field_value = resolve_path(context, condition.field)
        compare_value = resolve_operand(condition.operand, context)
        return bool(operator(field_value, compare_value))
    except Exception as e:
        logger.error(
            "Error evaluating condition",
            field=condition.field,
            operator=condition.operator,
            error=str(e)
        )
        return False


def evaluate_conditions(conditions: Iterable[Condition], context: AuthorizationContext) -> bool:
    """All conditions must hold."""
    return all(evaluate_condition(condition, context) for condition in conditions)


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, (list, tuple, dict, set)):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _compare(field_value: Any, compare_value: Any, op: Callable[[float, float], bool]) -> bool:
    left = _to_number(field_value)
    right = _to_number(compare_value)
    if left is None or right is None:
        return False
    return op(left, right)


@lru_cache(maxsize=256)
def _compile_regex(expression: str) -> "re.Pattern[str]":
    return re.compile(expression)


@register_operator("equals")
def _equals(field_value: Any, compare_value: Any) -> bool:
    # A missing attribute never equals anything
    return field_value is not None and field_value == compare_value


@register_operator("notEquals")
def _not_equals(field_value: Any, compare_value: Any) -> bool:
    return field_value != compare_value


@register_operator("contains")
def _contains(field_value: Any, compare_value: Any) -> bool:
    if isinstance(field_value, str) and isinstance(compare_value, str):
        return compare_value in field_value
    if isinstance(field_value, _CONTAINERS):
        return compare_value in field_value
    return False


@register_operator("notContains")
def _not_contains(field_value: Any, compare_value: Any) -> bool:
    if isinstance(field_value, str) and isinstance(compare_value, str):
        return compare_value not in field_value
    if isinstance(field_value, _CONTAINERS):
        return compare_value not in field_value
    return True


@register_operator("startsWith")
def _starts_with(field_value: Any, compare_value: Any) -> bool:
    if isinstance(field_value, str) and isinstance(compare_value, str):
        return field_value.startswith(compare_value)
    return False


@register_operator("endsWith")
def _ends_with(field_value: Any, compare_value: Any) -> bool:
    if isinstance(field_value, str) and isinstance(compare_value, str):
        return field_value.endswith(compare_value)
    return False


@register_operator("greaterThan")
def _greater_than(field_value: Any, compare_value: Any) -> bool:
    return _compare(field_value, compare_value, lambda a, b: a > b)


@register_operator("lessThan")
def _less_than(field_value: Any, compare_value: Any) -> bool:
    return _compare(field_value, compare_value, lambda a, b: a < b)


@register_operator("greaterThanOrEqual")
def _greater_than_or_equal(field_value: Any, compare_value: Any) -> bool:
    return _compare(field_value, compare_value, lambda a, b: a >= b)


@register_operator("lessThanOrEqual")
def _less_than_or_equal(field_value: Any, compare_value: Any) -> bool:
    return _compare(field_value, compare_value, lambda a, b: a <= b)


@register_operator("in")
def _in(field_value: Any, compare_value: Any) -> bool:
    if isinstance(compare_value, _CONTAINERS):
        return field_value in compare_value
    return False


@register_operator("notIn")
def _not_in(field_value: Any, compare_value: Any) -> bool:
    if isinstance(compare_value, _CONTAINERS):
        return field_value not in compare_value
    return True


@register_operator("exists")
def _exists(field_value: Any, compare_value: Any) -> bool:
    return field_value is not None


@register_operator("notExists")
def _not_exists(field_value: Any, compare_value: Any) -> bool:
    return field_value is None


@register_operator("between")
def _between(field_value: Any, compare_value: Any) -> bool:
    if not isinstance(compare_value, (list, tuple)) or len(compare_value) != 2:
        return False
    value = _to_number(field_value)
    low = _to_number(compare_value[0])
    high = _to_number(compare_value[1])
    if value is None or low is None or high is None:
        return False
    return low <= value <= high


@register_operator("regex")
def _regex(field_value: Any, compare_value: Any) -> bool:
    if not isinstance(field_value, str) or not isinstance(compare_value, str):
        return False
    try:
        expression = _compile_regex(compare_value)
    except re.error:
        return False
    return expression.search(field_value) is not None
