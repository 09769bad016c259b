"""Conditional Evaluator.

Pure predicates deciding whether a question, step or pricing rule applies
to a flat FormData map. Shared by the question engine and the pricing engine.

Operator semantics:
- equals / notEquals: strict equality on the raw stored value
- notEqualsStrict: like notEquals, but an unanswered parent never satisfies it
- in / notIn: membership of the parent value in ``values``
- contains / notContains: parent must be a list; a non-list never contains
- hasAny: parent list and ``values`` share at least one element
- greaterThan: numeric comparison after coercion

An operator outside this set makes the clause visible (fail-open) so an
unrecognised schema entry never hides required content. Pricing passes
``unknown_operator_result=False`` so it never charges for one.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from wizard.models import Conditional, ConditionalClause, ConditionOperator

logger = logging.getLogger(__name__)

FormData = Mapping[str, Any]


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality that never treats booleans as the numbers 0/1."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def _includes(container: List[Any], item: Any) -> bool:
    return any(_strict_equals(entry, item) for entry in container)


def _to_number(value: Any) -> Optional[float]:
    """Coerce a stored value to a float, or None when it is not numeric."""
    if value is None or isinstance(value, (list, dict)):
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else float(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _equals(parent: Any, clause: ConditionalClause) -> bool:
    return _strict_equals(parent, clause.value)


def _not_equals(parent: Any, clause: ConditionalClause) -> bool:
    return not _strict_equals(parent, clause.value)


def _not_equals_strict(parent: Any, clause: ConditionalClause) -> bool:
    if parent is None:
        return False
    return not _strict_equals(parent, clause.value)


def _greater_than(parent: Any, clause: ConditionalClause) -> bool:
    left = _to_number(parent)
    right = _to_number(clause.value)
    if left is None or right is None:
        return False
    return left > right


def _in(parent: Any, clause: ConditionalClause) -> bool:
    return isinstance(clause.values, list) and _includes(clause.values, parent)


def _not_in(parent: Any, clause: ConditionalClause) -> bool:
    return not isinstance(clause.values, list) or not _includes(clause.values, parent)


def _contains(parent: Any, clause: ConditionalClause) -> bool:
    return isinstance(parent, list) and _includes(parent, clause.value)


def _not_contains(parent: Any, clause: ConditionalClause) -> bool:
    if not isinstance(parent, list):
        return True
    return not _includes(parent, clause.value)


def _has_any(parent: Any, clause: ConditionalClause) -> bool:
    if not isinstance(parent, list) or not isinstance(clause.values, list):
        return False
    return any(_includes(parent, v) for v in clause.values)


_OPERATORS: Dict[ConditionOperator, Callable[[Any, ConditionalClause], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: _not_equals,
    ConditionOperator.NOT_EQUALS_STRICT: _not_equals_strict,
    ConditionOperator.GREATER_THAN: _greater_than,
    ConditionOperator.IN: _in,
    ConditionOperator.NOT_IN: _not_in,
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.NOT_CONTAINS: _not_contains,
    ConditionOperator.HAS_ANY: _has_any,
}


def evaluate(
    clause: Optional[ConditionalClause],
    form_data: FormData,
    unknown_operator_result: bool = True,
) -> bool:
    """
    Evaluate a single clause against form data.

    Args:
        clause: The clause to evaluate; None is always satisfied.
        form_data: Flat key->value map (or a repeater item for ``field`` clauses).
        unknown_operator_result: Result for operators outside the known set.

    Returns:
        Whether the clause is satisfied.
    """
    if clause is None:
        return True

    operator = clause.operator
    if not isinstance(operator, ConditionOperator):
        logger.debug(f"Unknown conditional operator {operator!r}; returning {unknown_operator_result}")
        return unknown_operator_result

    data = form_data if isinstance(form_data, Mapping) else {}
    key = clause.source_key
    parent_value = data.get(key) if key else None
    return _OPERATORS[operator](parent_value, clause)


def is_satisfied(
    conditional: Optional[Conditional],
    form_data: FormData,
    unknown_operator_result: bool = True,
) -> bool:
    """Evaluate a conditional, honouring ``and``/``or`` compound wrappers."""
    if conditional is None:
        return True
    if conditional.all_of is not None:
        return all(
            evaluate(c, form_data, unknown_operator_result) for c in conditional.all_of
        )
    if conditional.any_of is not None:
        return any(
            evaluate(c, form_data, unknown_operator_result) for c in conditional.any_of
        )
    if conditional.source_key is None:
        # Nothing to test, e.g. a step carrying only anyQuestionVisible
        return True
    return evaluate(conditional, form_data, unknown_operator_result)


def is_visible(item: Union[Any, Conditional, None], form_data: FormData) -> bool:
    """
    Whether a question or step is visible for the given form data.

    Accepts anything with a ``conditional`` attribute, or a bare Conditional.
    Items without a conditional are always visible.
    """
    if item is None:
        return True
    if isinstance(item, ConditionalClause):
        conditional = item
    else:
        conditional = getattr(item, "conditional", None)
    if conditional is None:
        return True
    if not isinstance(conditional, Conditional):
        return evaluate(conditional, form_data)
    return is_satisfied(conditional, form_data)


def references(conditional: Optional[ConditionalClause], field_name: str) -> bool:
    """Whether a conditional reads ``field_name`` directly or through and/or."""
    if conditional is None:
        return False
    if isinstance(conditional, Conditional):
        return any(c.parent_question_id == field_name for c in conditional.clauses)
    return conditional.parent_question_id == field_name
