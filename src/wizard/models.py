"""Filing wizard data models.

Defines the declarative tax filing schema (steps, questions, conditionals,
validation and pricing rules) and the filing records exchanged with the
persistence layer.

Schema files and CMS payloads use camelCase keys (``parentQuestionId``,
``visibleForRoles``); every model also accepts the snake_case field names.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from wizard._decimal_utils import to_decimal


# =============================================================================
# ENUMERATIONS
# =============================================================================

class FilingRole(str, Enum):
    """Filer role of a PersonalFiling."""
    PRIMARY = "primary"
    SPOUSE = "spouse"
    DEPENDENT = "dependent"


class FilingType(str, Enum):
    """Kind of filing; decides which schema and wizard path apply."""
    INDIVIDUAL = "INDIVIDUAL"
    CORPORATE = "CORPORATE"
    TRUST = "TRUST"


class FilingStatus(str, Enum):
    """Lifecycle status of a Filing as stored by the CMS."""
    NOT_STARTED = "NOT_STARTED"
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    UNDER_REVIEW = "UNDER_REVIEW"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class WizardPhase(str, Enum):
    """Phases of the filing wizard state machine."""
    IDLE = "IDLE"
    PRIMARY_ACTIVE = "PRIMARY_ACTIVE"
    PRIMARY_COMPLETE = "PRIMARY_COMPLETE"
    SPOUSE_CHECKPOINT = "SPOUSE_CHECKPOINT"
    SPOUSE_ACTIVE = "SPOUSE_ACTIVE"
    SPOUSE_COMPLETE = "SPOUSE_COMPLETE"
    DEPENDENT_CHECKPOINT = "DEPENDENT_CHECKPOINT"
    DEPENDENT_ACTIVE = "DEPENDENT_ACTIVE"
    DEPENDENT_COMPLETE = "DEPENDENT_COMPLETE"
    CORPORATE_ACTIVE = "CORPORATE_ACTIVE"
    CORPORATE_COMPLETE = "CORPORATE_COMPLETE"
    TRUST_ACTIVE = "TRUST_ACTIVE"
    TRUST_COMPLETE = "TRUST_COMPLETE"
    REVIEW = "REVIEW"


class ConditionOperator(str, Enum):
    """Operators a conditional clause may use."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    NOT_EQUALS_STRICT = "notEqualsStrict"
    GREATER_THAN = "greaterThan"
    IN = "in"
    NOT_IN = "notIn"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    HAS_ANY = "hasAny"


class QuestionType(str, Enum):
    """Input types a question can render as."""
    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    FILE = "file"
    REPEATER = "repeater"
    TEXTAREA = "textarea"


# =============================================================================
# SCHEMA MODELS
# =============================================================================

class SchemaModel(BaseModel):
    """Base for immutable schema entries."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class ConditionalClause(SchemaModel):
    """
    A single predicate over one form field.

    ``parent_question_id`` names the FormData key the clause reads. Repeater
    item fields use ``field`` instead, naming a key inside the item.
    Unrecognised operator names are kept as plain strings.
    """
    parent_question_id: Optional[str] = None
    field: Optional[str] = None
    operator: Optional[Union[ConditionOperator, str]] = Field(
        default=None, union_mode="left_to_right"
    )
    value: Any = None
    values: Optional[List[Any]] = None

    @property
    def source_key(self) -> Optional[str]:
        """The key this clause reads from its data map."""
        return self.parent_question_id or self.field


class Conditional(ConditionalClause):
    """
    Visibility rule: a single clause, or an ``and``/``or`` list of clauses.

    Steps may also set ``anyQuestionVisible``; such a step is hidden when
    none of its questions would render.
    """
    all_of: Optional[List[ConditionalClause]] = Field(default=None, alias="and")
    any_of: Optional[List[ConditionalClause]] = Field(default=None, alias="or")
    any_question_visible: bool = False

    @property
    def is_compound(self) -> bool:
        return self.all_of is not None or self.any_of is not None

    @property
    def clauses(self) -> List[ConditionalClause]:
        """All clauses, flattening compound wrappers."""
        if self.all_of is not None:
            return list(self.all_of)
        if self.any_of is not None:
            return list(self.any_of)
        if self.parent_question_id or self.field:
            return [self]
        return []


class ConditionalRequired(SchemaModel):
    when: Conditional


class ValidationRules(SchemaModel):
    """Validation settings attached to a question or repeater field."""
    required: bool = False
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    conditional_required: Optional[ConditionalRequired] = None


class QuestionOption(SchemaModel):
    value: Any
    label: str = ""


class RepeaterField(SchemaModel):
    """A field inside each item of a repeater question."""
    id: Optional[str] = None
    name: str
    label: str = ""
    type: QuestionType = QuestionType.TEXT
    options: List[QuestionOption] = Field(default_factory=list)
    validation: Optional[ValidationRules] = None
    conditional: Optional[ConditionalClause] = None


class Question(SchemaModel):
    """A single question; ``name`` is its dot-namespaced FormData key."""
    id: str
    name: str
    type: QuestionType = QuestionType.TEXT
    label: str = ""
    step: Optional[str] = None
    order: int = 0
    visible_for_roles: Optional[List[str]] = None
    conditional: Optional[Conditional] = None
    validation: Optional[ValidationRules] = None
    options: List[QuestionOption] = Field(default_factory=list)
    fields: List[RepeaterField] = Field(default_factory=list)
    render_inline: bool = False
    help_text: Optional[str] = None
    placeholder: Optional[str] = None

    @property
    def namespace(self) -> str:
        """Leading segment of the name, e.g. ``selfEmployment``."""
        return self.name.split(".")[0]

    @property
    def local_name(self) -> str:
        """Name without its namespace, e.g. ``assetReceipts``."""
        return ".".join(self.name.split(".")[1:])

    @property
    def is_yes_no(self) -> bool:
        return any(opt.value in ("YES", "NO") for opt in self.options)


class Step(SchemaModel):
    """An ordered group of questions shown together."""
    id: str
    title: str = ""
    description: Optional[str] = None
    order: int = 0
    visible_for_roles: Optional[List[str]] = None
    conditional: Optional[Conditional] = None


class PricingRule(SchemaModel):
    """A fee added for each person whose answers satisfy ``condition``."""
    condition: Optional[Conditional] = None
    amount: Decimal
    description: str = ""

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_to_decimal(cls, v):
        return to_decimal(v) if isinstance(v, (int, float)) else v


class PricingSchema(SchemaModel):
    base_fee: Decimal = Decimal("0")
    currency: Optional[str] = None
    tax_rate: Optional[Decimal] = None
    rules: List[PricingRule] = Field(default_factory=list)

    @field_validator("base_fee", "tax_rate", mode="before")
    @classmethod
    def _to_decimal(cls, v):
        return to_decimal(v) if isinstance(v, (int, float)) else v


class SchemaHeader(SchemaModel):
    title: str = ""
    description: str = ""
    show_progress: bool = True


class TaxFilingSchema(SchemaModel):
    """Declarative schema for one tax year and filing type."""
    header: Optional[SchemaHeader] = None
    steps: List[Step] = Field(default_factory=list)
    questions: List[Question] = Field(default_factory=list)
    pricing: Optional[PricingSchema] = None
    review: Optional[Dict[str, Any]] = None

    def questions_by_name(self) -> Dict[str, Question]:
        return {q.name: q for q in self.questions}


# =============================================================================
# FILING RECORDS
# =============================================================================

class RecordModel(BaseModel):
    """Base for records read from and written to the persistence layer."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class WizardProgress(RecordModel):
    """Persisted subset of the wizard state used to resume a session."""
    last_phase: WizardPhase
    last_section_index: int = 0
    last_personal_filing_id: str
    last_dependent_index: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PersonalFiling(RecordModel):
    """One filer's answer set within a Filing."""
    id: str
    type: FilingRole
    form_data: Dict[str, Any] = Field(default_factory=dict)
    is_complete: bool = False
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class EntityFiling(RecordModel):
    """Child record holding the answers of a corporate or trust filing."""
    id: str
    form_data: Dict[str, Any] = Field(default_factory=dict)
    is_complete: bool = False


class Filing(RecordModel):
    """Top-level tax submission for one year and filing type."""
    id: str
    year: int
    type: FilingType = FilingType.INDIVIDUAL
    status: FilingStatus = FilingStatus.DRAFT
    total_price: Decimal = Decimal("0")
    paid_amount: Optional[Decimal] = None
    reference_number: Optional[str] = None
    personal_filings: List[PersonalFiling] = Field(default_factory=list)
    entity_filing: Optional[EntityFiling] = None
    wizard_progress: Optional[WizardProgress] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_business(self) -> bool:
        return self.type in (FilingType.CORPORATE, FilingType.TRUST)

    @property
    def primary(self) -> Optional[PersonalFiling]:
        return next(
            (pf for pf in self.personal_filings if pf.type == FilingRole.PRIMARY), None
        )

    @property
    def spouse(self) -> Optional[PersonalFiling]:
        return next(
            (pf for pf in self.personal_filings if pf.type == FilingRole.SPOUSE), None
        )

    @property
    def dependents(self) -> List[PersonalFiling]:
        return [pf for pf in self.personal_filings if pf.type == FilingRole.DEPENDENT]

    def find_record(self, record_id: str) -> Optional[Union[PersonalFiling, EntityFiling]]:
        """Look up a personal or entity child record by id."""
        if self.entity_filing is not None and self.entity_filing.id == record_id:
            return self.entity_filing
        return next((pf for pf in self.personal_filings if pf.id == record_id), None)
