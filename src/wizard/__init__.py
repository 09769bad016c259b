"""Filing Wizard Engine.

Schema-driven core of the tax filing wizard:
- Conditional evaluation of visibility and requiredness rules
- Role-filtered sections, section validation and stale-answer clearing
- Phase state machine for primary, spouse, dependent, corporate and trust flows
- Per-person pricing from schema rules
"""

from wizard.models import (
    ConditionOperator,
    Conditional,
    ConditionalClause,
    EntityFiling,
    Filing,
    FilingRole,
    FilingStatus,
    FilingType,
    PersonalFiling,
    Question,
    QuestionType,
    Step,
    TaxFilingSchema,
    WizardPhase,
    WizardProgress,
)
from wizard.conditional_evaluator import evaluate, is_satisfied, is_visible
from wizard.question_engine import (
    Section,
    SectionValidationResult,
    RoleValidationResult,
    MissingSection,
    filter_questions_for_role,
    get_sections_for_role,
    validate_section,
    validate_all_sections_for_role,
    get_fields_to_clear_for_conditional,
)
from wizard.state_machine import (
    INITIAL_STATE,
    WizardState,
    filing_reducer,
    from_progress,
    get_phase_info,
    role_for_phase,
)
from wizard.pricing_engine import (
    PricingBreakdown,
    PricingConfig,
    PricingItem,
    calculate_from_schema,
    calculate_legacy,
    format_filing_ref,
    format_price,
)

__all__ = [
    "ConditionOperator",
    "Conditional",
    "ConditionalClause",
    "EntityFiling",
    "Filing",
    "FilingRole",
    "FilingStatus",
    "FilingType",
    "PersonalFiling",
    "Question",
    "QuestionType",
    "Step",
    "TaxFilingSchema",
    "WizardPhase",
    "WizardProgress",
    "evaluate",
    "is_satisfied",
    "is_visible",
    "Section",
    "SectionValidationResult",
    "RoleValidationResult",
    "MissingSection",
    "filter_questions_for_role",
    "get_sections_for_role",
    "validate_section",
    "validate_all_sections_for_role",
    "get_fields_to_clear_for_conditional",
    "INITIAL_STATE",
    "WizardState",
    "filing_reducer",
    "from_progress",
    "get_phase_info",
    "role_for_phase",
    "PricingBreakdown",
    "PricingConfig",
    "PricingItem",
    "calculate_from_schema",
    "calculate_legacy",
    "format_filing_ref",
    "format_price",
]
