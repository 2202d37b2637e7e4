"""
Payload-filter DSL used by signal routes.

A filter is a list of conditions, all of which must hold. Each condition
names a dotted path into the signal payload, an operator and a value:

    eq / neq    strict equality (booleans never equal numbers)
    contains    payload value is a string containing str(value)
    gt / lt     payload value is a number; condition value is a number or a
                numeric string (coerced with float)
    exists      (path resolves) == bool(value)

A path that does not resolve yields MISSING, which only satisfies
`exists: false`. Malformed paths, unknown operators and gt/lt values that
are not numeric raise PayloadFilterError.
"""

from numbers import Number
from typing import Any, Iterable, List, Mapping

from intelligence.core.exceptions import PayloadFilterError
from intelligence.models import FilterOperator, PayloadFilterCondition


class _Missing:
    """Sentinel for a path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def parse_path(path: Any) -> List[str]:
    if not isinstance(path, str) or not path.strip():
        raise PayloadFilterError(f"Payload filter path must be a non-empty string, got {path!r}")
    segments = path.split(".")
    if any(not segment for segment in segments):
        raise PayloadFilterError(f"Payload filter path has an empty segment: {path!r}")
    return segments


def resolve_path(payload: Mapping[str, Any], path: str) -> Any:
    """Walk a dotted path through nested mappings; MISSING if any step fails."""
    current: Any = payload
    for segment in parse_path(path):
        if not isinstance(current, Mapping) or segment not in current:
            return MISSING
        current = current[segment]
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def numeric_operand(condition: PayloadFilterCondition) -> float:
    """The gt/lt comparison value, coercing numeric strings."""
    value = condition.value
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    raise PayloadFilterError(
        f"Payload filter on {condition.path!r} needs a numeric value, got {value!r}"
    )


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def evaluate_condition(payload: Mapping[str, Any], condition: PayloadFilterCondition) -> bool:
    try:
        operator = FilterOperator(condition.operator)
    except ValueError:
        raise PayloadFilterError(f"Unknown payload filter operator: {condition.operator!r}") from None

    value = resolve_path(payload, condition.path)

    if value is MISSING:
        return operator == FilterOperator.EXISTS and not bool(condition.value)

    if operator == FilterOperator.EXISTS:
        return bool(condition.value)
    if operator == FilterOperator.EQ:
        return _strict_equals(value, condition.value)
    if operator == FilterOperator.NEQ:
        return not _strict_equals(value, condition.value)
    if operator == FilterOperator.CONTAINS:
        return isinstance(value, str) and str(condition.value) in value
    if operator == FilterOperator.GT:
        return _is_number(value) and value > numeric_operand(condition)
    if operator == FilterOperator.LT:
        return _is_number(value) and value < numeric_operand(condition)

    raise PayloadFilterError(f"Unhandled payload filter operator: {operator.value}")


def matches_filter(payload: Mapping[str, Any], conditions: Iterable[PayloadFilterCondition]) -> bool:
    """True when every condition holds; an empty filter matches everything."""
    return all(evaluate_condition(payload, condition) for condition in conditions)


def validate_filter(conditions: Iterable[PayloadFilterCondition]) -> None:
    """Reject a malformed filter before it is stored."""
    for condition in conditions:
        parse_path(condition.path)
        try:
            FilterOperator(condition.operator)
        except ValueError:
            raise PayloadFilterError(f"Unknown payload filter operator: {condition.operator!r}") from None
        if condition.operator in (FilterOperator.GT, FilterOperator.LT):
            numeric_operand(condition)
