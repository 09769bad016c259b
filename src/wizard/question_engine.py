"""Question Engine.

Turns a TaxFilingSchema into the ordered sections a filer role sees,
validates answers section by section, and works out which answers become
stale when a conditional trigger field changes.

All functions are pure: they read the schema and a FormData snapshot and
return new values. Validation problems are returned as structured results,
never raised.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from wizard.conditional_evaluator import evaluate, is_satisfied, is_visible, references
from wizard.models import (
    ConditionOperator,
    FilingRole,
    Question,
    QuestionType,
    Step,
    TaxFilingSchema,
)

logger = logging.getLogger(__name__)

# Steps handled outside the per-person wizard flow (filing dialog, final review)
EXCLUDED_STEP_IDS = frozenset({"filing_setup", "review", "payment"})

# File field local name -> YES/NO trigger questions in the same namespace.
# An empty list means the upload is required whenever it is visible.
FILE_UPLOAD_TRIGGERS: Dict[str, List[str]] = {
    "assetReceipts": ["hasCapitalAssets"],
    "expenseDocuments": [],
    "businessDocuments": [],
    "t2200Document": [],
    "receiptDocuments": [],
    "documents": [],
}

# Answers that do not count as a real selection
NON_ANSWERS = frozenset({"NA", "N/A", "NONE", ""})

PHONE_PATTERN = re.compile(r"^[\d\s\-+()]+$")

RoleLike = Union[FilingRole, str]


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class Section:
    """A wizard step with its role-filtered, ordered questions attached."""
    step: Step
    questions: List[Question] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.step.id

    @property
    def title(self) -> str:
        return self.step.title

    @property
    def order(self) -> int:
        return self.step.order


@dataclass
class SectionValidationResult:
    """Result of validating one section."""
    is_valid: bool
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class MissingSection:
    """Failing fields of one section, labelled for display."""
    section_id: str
    section_title: str
    missing_fields: List[str] = field(default_factory=list)


@dataclass
class RoleValidationResult:
    """Result of validating every section a role sees."""
    is_valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    missing_sections: List[MissingSection] = field(default_factory=list)
    total_missing_fields: int = 0


# =============================================================================
# ROLE FILTERING AND SECTIONS
# =============================================================================

def _role_name(role: RoleLike) -> str:
    return role.value if isinstance(role, FilingRole) else str(role)


def matches_role(role: RoleLike, visible_for_roles: Optional[Sequence[str]]) -> bool:
    """Case-insensitive role check; no restriction means every role."""
    if not visible_for_roles:
        return True
    wanted = _role_name(role).upper()
    return any(str(r).upper() == wanted for r in visible_for_roles)


def filter_questions_for_role(questions: Iterable[Question], role: RoleLike) -> List[Question]:
    return [q for q in questions if matches_role(role, q.visible_for_roles)]


def _step_gate_open(step: Optional[Step], form_data: Mapping[str, Any]) -> bool:
    """Whether a step's gating clause (if any) is satisfied."""
    if step is None or step.conditional is None:
        return True
    if not step.conditional.parent_question_id:
        return True
    return is_satisfied(step.conditional, form_data)


def get_sections_for_role(
    schema: Optional[TaxFilingSchema],
    role: Optional[RoleLike],
    form_data: Optional[Mapping[str, Any]] = None,
) -> List[Section]:
    """
    Build the ordered sections a role sees for the current answers.

    Steps are filtered by role and the excluded ids, sorted by order, given
    their role-filtered sorted questions, then dropped when their gating
    clause fails or, with ``anyQuestionVisible``, when no question would show.
    """
    if schema is None or not schema.steps or not schema.questions or not role:
        return []

    form_data = form_data or {}

    steps = sorted(
        (
            s for s in schema.steps
            if s.id not in EXCLUDED_STEP_IDS and matches_role(role, s.visible_for_roles)
        ),
        key=lambda s: s.order or 0,
    )

    sections: List[Section] = []
    for step in steps:
        questions = sorted(
            (
                q for q in schema.questions
                if q.step == step.id and matches_role(role, q.visible_for_roles)
            ),
            key=lambda q: q.order or 0,
        )

        if not _step_gate_open(step, form_data):
            continue

        if step.conditional is not None and step.conditional.any_question_visible:
            if not any(is_visible(q, form_data) for q in questions):
                continue

        sections.append(Section(step=step, questions=questions))

    return sections


# =============================================================================
# VALIDATION
# =============================================================================

def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, list) and len(value) == 0)


def _has_meaningful_answer(value: Any) -> bool:
    """Whether a sibling answer should make a same-namespace upload required."""
    if value is None or value == "":
        return False
    if isinstance(value, list):
        return any(not (isinstance(v, str) and v in NON_ANSWERS) for v in value)
    if isinstance(value, str):
        return value not in NON_ANSWERS
    return True


def _find_related_yes_no_question(
    local_name: str,
    namespace: str,
    questions_by_name: Mapping[str, Question],
) -> Optional[str]:
    """Find the YES/NO question that triggers an upload, e.g.
    ``selfEmployment.assetReceipts`` -> ``selfEmployment.hasCapitalAssets``."""
    for trigger in FILE_UPLOAD_TRIGGERS.get(local_name, []):
        full_name = f"{namespace}.{trigger}"
        candidate = questions_by_name.get(full_name)
        if candidate is not None and candidate.is_yes_no:
            return full_name
    return None


def _file_upload_required(
    question: Question,
    form_data: Mapping[str, Any],
    questions_by_name: Mapping[str, Question],
) -> bool:
    """Derive requiredness of a file question that is not explicitly required."""
    conditional = question.conditional

    if conditional is not None:
        clauses = conditional.clauses
        clause = clauses[0] if clauses else None
        parent_id = clause.parent_question_id if clause is not None else None
        parent_value = form_data.get(parent_id) if parent_id else None
        parent_question = questions_by_name.get(parent_id) if parent_id else None

        if parent_question is not None and parent_question.is_yes_no:
            return parent_value == "YES"

        operator = clause.operator if clause is not None else None
        if operator in (ConditionOperator.CONTAINS, ConditionOperator.HAS_ANY):
            related = _find_related_yes_no_question(
                question.local_name, question.namespace, questions_by_name
            )
            if related is not None:
                return form_data.get(related) == "YES"
            return True

        expected = clause.value if clause is not None else None
        if expected == "YES":
            return parent_value == "YES"
        return expected != "NO"

    for name, sibling in questions_by_name.items():
        if name == question.name or sibling.type == QuestionType.FILE:
            continue
        if sibling.namespace != question.namespace:
            continue
        if _has_meaningful_answer(form_data.get(name)):
            return True
    return False


def _is_required(
    question: Question,
    form_data: Mapping[str, Any],
    questions_by_name: Mapping[str, Question],
) -> bool:
    rules = question.validation
    required = bool(rules and rules.required)
    if not required and rules is not None and rules.conditional_required is not None:
        required = is_satisfied(rules.conditional_required.when, form_data)

    if question.type == QuestionType.FILE and not required and not question.render_inline:
        required = _file_upload_required(question, form_data, questions_by_name)

    return required


def _pattern_matches(pattern: str, value: Any) -> bool:
    try:
        return re.search(pattern, str(value)) is not None
    except re.error:
        logger.warning(f"Ignoring invalid validation pattern {pattern!r}")
        return True


def _format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


def _value_error(question: Question, value: Any) -> Optional[str]:
    """Format and range checks for a present value; the last failure wins."""
    rules = question.validation
    error = None

    if rules is not None and rules.pattern and not _pattern_matches(rules.pattern, value):
        error = "invalid format"

    if question.type == QuestionType.EMAIL and "@" not in str(value):
        error = "invalid email"

    if question.type == QuestionType.PHONE and not PHONE_PATTERN.match(str(value)):
        error = "invalid phone"

    if question.type == QuestionType.NUMBER and rules is not None:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return "invalid number"
        if rules.min is not None and number < rules.min:
            error = f"minimum {_format_bound(rules.min)}"
        if rules.max is not None and number > rules.max:
            error = f"maximum {_format_bound(rules.max)}"

    return error


def _validate_repeater(question: Question, value: Any, errors: Dict[str, str]) -> None:
    """Validate each repeater item independently against the item fields."""
    items = value if isinstance(value, list) else []

    for index, item in enumerate(items):
        item_data = item if isinstance(item, Mapping) else {}

        for item_field in question.fields:
            if item_field.conditional is not None and not evaluate(item_field.conditional, item_data):
                continue

            key = f"{question.id}_{index}_{item_field.name}"
            field_value = item_data.get(item_field.name)
            rules = item_field.validation

            if rules is not None and rules.required and _is_empty(field_value):
                errors[key] = "is required"

            if field_value and rules is not None and rules.pattern:
                if not _pattern_matches(rules.pattern, field_value):
                    errors[key] = "invalid format"


def validate_section(
    section: Optional[Section],
    form_data: Mapping[str, Any],
    all_questions: Optional[Iterable[Question]] = None,
) -> SectionValidationResult:
    """
    Validate the visible questions of one section.

    Args:
        section: Section to validate.
        form_data: Answers of the person being validated.
        all_questions: Every schema question, so derived file requiredness can
            look up parent questions that live in other sections.

    Returns:
        SectionValidationResult keyed by question id, or
        ``questionId_itemIndex_fieldName`` for repeater item fields.
    """
    errors: Dict[str, str] = {}
    if section is None or not section.questions:
        return SectionValidationResult(is_valid=True)

    questions_by_name: Dict[str, Question] = {q.name: q for q in section.questions}
    for q in all_questions or ():
        questions_by_name.setdefault(q.name, q)

    for question in section.questions:
        if not is_visible(question, form_data):
            continue

        value = form_data.get(question.name)

        if question.type == QuestionType.REPEATER and question.fields:
            _validate_repeater(question, value, errors)
            continue

        if _is_required(question, form_data, questions_by_name) and _is_empty(value):
            errors[question.id] = "is required"
            continue

        if _is_empty(value) or value is False:
            continue

        message = _value_error(question, value)
        if message:
            errors[question.id] = message

    return SectionValidationResult(is_valid=not errors, errors=errors)


def _label_for_error(section: Section, error_key: str) -> str:
    """Human label for an error key, including repeater item position."""
    for question in section.questions:
        if question.id == error_key:
            return question.label or question.name

    # Repeater keys: <questionId>_<itemIndex>_<fieldName>; ids may contain "_"
    for question in sorted(section.questions, key=lambda q: len(q.id), reverse=True):
        prefix = f"{question.id}_"
        if not error_key.startswith(prefix):
            continue
        index, _, field_name = error_key[len(prefix):].partition("_")
        item_field = next((f for f in question.fields if f.name == field_name), None)
        field_label = (item_field.label if item_field else "") or field_name
        base = question.label or question.name
        if index.isdigit():
            return f"{base} #{int(index) + 1}: {field_label}"
        return f"{base}: {field_label}"

    return error_key


def validate_all_sections_for_role(
    schema: TaxFilingSchema,
    role: RoleLike,
    form_data: Mapping[str, Any],
) -> RoleValidationResult:
    """
    Validate every section a role sees; used before completing a phase.

    Failures are also bucketed per section with labels and a flat count so
    the caller can jump to the first incomplete section.
    """
    all_errors: Dict[str, str] = {}
    missing_sections: List[MissingSection] = []
    total_missing = 0

    for section in get_sections_for_role(schema, role, form_data):
        result = validate_section(section, form_data, schema.questions)
        if result.is_valid:
            continue

        all_errors.update(result.errors)
        labels = [_label_for_error(section, key) for key in result.errors]
        total_missing += len(labels)
        missing_sections.append(
            MissingSection(
                section_id=section.id,
                section_title=section.title,
                missing_fields=labels,
            )
        )

    return RoleValidationResult(
        is_valid=total_missing == 0,
        errors=all_errors,
        missing_sections=missing_sections,
        total_missing_fields=total_missing,
    )


# =============================================================================
# DEPENDENT FIELD CLEARING
# =============================================================================

def get_fields_to_clear_for_conditional(
    schema: Optional[TaxFilingSchema],
    changed_field: str,
    old_value: Any,
    new_value: Any,
    role: RoleLike,
    full_form_data: Optional[Mapping[str, Any]] = None,
) -> List[str]:
    """
    Names of questions hidden by a change to ``changed_field``.

    Visibility is compared between two snapshots of the form data (before and
    after the change). A question is returned when it depends on the changed
    field, through its own conditional (single clause or and/or) or through
    its step's gating clause, and was visible before but is hidden after.
    Callers erase the returned keys so hidden answers are never submitted.
    """
    if schema is None or not schema.steps or not schema.questions:
        return []

    base = dict(full_form_data or {})
    before = {**base, changed_field: old_value}
    after = {**base, changed_field: new_value}

    steps_by_id = {s.id: s for s in schema.steps}
    to_clear: List[str] = []

    for question in schema.questions:
        if not question.name or not matches_role(role, question.visible_for_roles):
            continue

        step = steps_by_id.get(question.step) if question.step else None
        gated_by_step = (
            step is not None
            and step.conditional is not None
            and step.conditional.parent_question_id == changed_field
        )
        if not gated_by_step and not references(question.conditional, changed_field):
            continue

        was_visible = _step_gate_open(step, before) and is_visible(question, before)
        now_visible = _step_gate_open(step, after) and is_visible(question, after)

        if was_visible and not now_visible and question.name not in to_clear:
            to_clear.append(question.name)

    return to_clear
