"""
Wizard State Machine

Pure reducer sequencing the data-collection phases of a filing:

    INDIVIDUAL: PRIMARY_ACTIVE -> SPOUSE_CHECKPOINT -> [SPOUSE_ACTIVE] ->
                DEPENDENT_CHECKPOINT -> [DEPENDENT_ACTIVE -> DEPENDENT_CHECKPOINT]* -> REVIEW
    CORPORATE:  CORPORATE_ACTIVE -> REVIEW
    TRUST:      TRUST_ACTIVE -> REVIEW

Actions are small frozen dataclasses; ``filing_reducer`` maps each action type
to a handler and returns a new WizardState. Actions that are not defined for
the current phase leave the state unchanged.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, NamedTuple, Optional, Tuple, Type, Union
import logging

from wizard.models import FilingRole, FilingType, WizardPhase, WizardProgress

logger = logging.getLogger(__name__)


ACTIVE_PHASES = frozenset({
    WizardPhase.PRIMARY_ACTIVE,
    WizardPhase.SPOUSE_ACTIVE,
    WizardPhase.DEPENDENT_ACTIVE,
    WizardPhase.CORPORATE_ACTIVE,
    WizardPhase.TRUST_ACTIVE,
})

CHECKPOINT_PHASES = frozenset({
    WizardPhase.SPOUSE_CHECKPOINT,
    WizardPhase.DEPENDENT_CHECKPOINT,
})

# Phases from which jumping straight to REVIEW cannot bypass a checkpoint
REVIEW_ENTRY_PHASES = frozenset({
    WizardPhase.DEPENDENT_CHECKPOINT,
    WizardPhase.PRIMARY_COMPLETE,
    WizardPhase.SPOUSE_COMPLETE,
    WizardPhase.DEPENDENT_COMPLETE,
    WizardPhase.CORPORATE_COMPLETE,
    WizardPhase.TRUST_COMPLETE,
    WizardPhase.REVIEW,
})

# Phases that are never persisted as resumable progress
NON_RESUMABLE_PHASES = frozenset({WizardPhase.IDLE, WizardPhase.REVIEW})

_NEXT_PHASE_ON_COMPLETE: Dict[WizardPhase, WizardPhase] = {
    WizardPhase.PRIMARY_ACTIVE: WizardPhase.SPOUSE_CHECKPOINT,
    WizardPhase.SPOUSE_ACTIVE: WizardPhase.DEPENDENT_CHECKPOINT,
    WizardPhase.DEPENDENT_ACTIVE: WizardPhase.DEPENDENT_CHECKPOINT,
    WizardPhase.CORPORATE_ACTIVE: WizardPhase.REVIEW,
    WizardPhase.TRUST_ACTIVE: WizardPhase.REVIEW,
}


def filing_type_for_phase(phase: WizardPhase) -> FilingType:
    if phase.value.startswith("CORPORATE"):
        return FilingType.CORPORATE
    if phase.value.startswith("TRUST"):
        return FilingType.TRUST
    return FilingType.INDIVIDUAL


def role_for_phase(phase: WizardPhase) -> FilingRole:
    """Filer role whose questions are shown in a phase."""
    if phase.value.startswith("SPOUSE"):
        return FilingRole.SPOUSE
    if phase.value.startswith("DEPENDENT"):
        return FilingRole.DEPENDENT
    return FilingRole.PRIMARY


# =============================================================================
# STATE
# =============================================================================

@dataclass(frozen=True)
class WizardState:
    """In-memory wizard state; replaced, never mutated."""
    phase: WizardPhase = WizardPhase.IDLE
    filing_type: FilingType = FilingType.INDIVIDUAL
    filing_id: Optional[str] = None
    current_personal_filing_id: Optional[str] = None
    current_section_index: int = 0
    current_dependent_index: int = -1
    total_dependents: int = 0
    completed_steps: Tuple[str, ...] = ()
    is_loading: bool = False
    is_syncing: bool = False
    error: Optional[str] = None

    @property
    def role(self) -> FilingRole:
        return role_for_phase(self.phase)

    @property
    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES

    @property
    def is_checkpoint(self) -> bool:
        return self.phase in CHECKPOINT_PHASES

    def to_progress(self) -> Optional[WizardProgress]:
        """Resumable subset of this state, or None when there is nothing to resume."""
        if self.phase in NON_RESUMABLE_PHASES:
            return None
        if not self.filing_id or not self.current_personal_filing_id:
            return None
        return WizardProgress(
            last_phase=self.phase,
            last_section_index=self.current_section_index,
            last_personal_filing_id=self.current_personal_filing_id,
            last_dependent_index=(
                self.current_dependent_index if self.current_dependent_index >= 0 else None
            ),
        )


INITIAL_STATE = WizardState()


# =============================================================================
# ACTIONS
# =============================================================================

@dataclass(frozen=True)
class SetLoading:
    value: bool


@dataclass(frozen=True)
class SetSyncing:
    value: bool


@dataclass(frozen=True)
class SetError:
    message: Optional[str]


@dataclass(frozen=True)
class InitFiling:
    filing_id: str
    personal_filing_id: str


@dataclass(frozen=True)
class InitCorporateFiling:
    filing_id: str
    corporate_filing_id: str


@dataclass(frozen=True)
class InitTrustFiling:
    filing_id: str
    trust_filing_id: str


@dataclass(frozen=True)
class StartSpouse:
    personal_filing_id: str


@dataclass(frozen=True)
class AddDependent:
    pass


@dataclass(frozen=True)
class SetDependentCount:
    """Sync the dependent count with the records loaded from the store."""
    count: int


@dataclass(frozen=True)
class StartDependent:
    personal_filing_id: str
    index: int


@dataclass(frozen=True)
class NextSection:
    """Advance one section; clamps to the last one when the count is known."""
    total_sections: Optional[int] = None
    completed_step: Optional[str] = None


@dataclass(frozen=True)
class PrevSection:
    pass


@dataclass(frozen=True)
class GoToSection:
    index: int


@dataclass(frozen=True)
class CompletePhase:
    pass


@dataclass(frozen=True)
class CompletePrimary:
    pass


@dataclass(frozen=True)
class CompleteSpouse:
    pass


@dataclass(frozen=True)
class CompleteDependent:
    pass


@dataclass(frozen=True)
class CompleteCorporate:
    pass


@dataclass(frozen=True)
class CompleteTrust:
    pass


@dataclass(frozen=True)
class SkipSpouse:
    pass


@dataclass(frozen=True)
class SkipDependents:
    pass


@dataclass(frozen=True)
class GoToReview:
    pass


@dataclass(frozen=True)
class GoToDependentCheckpoint:
    pass


@dataclass(frozen=True)
class RestoreProgress:
    """Rebuild the state of a resumed session."""
    filing_id: str
    phase: WizardPhase
    section_index: int
    personal_filing_id: str
    dependent_index: Optional[int] = None
    filing_type: Optional[FilingType] = None


@dataclass(frozen=True)
class Reset:
    pass


FilingAction = Union[
    SetLoading, SetSyncing, SetError,
    InitFiling, InitCorporateFiling, InitTrustFiling,
    StartSpouse, AddDependent, SetDependentCount, StartDependent,
    NextSection, PrevSection, GoToSection,
    CompletePhase, CompletePrimary, CompleteSpouse, CompleteDependent,
    CompleteCorporate, CompleteTrust,
    SkipSpouse, SkipDependents, GoToReview, GoToDependentCheckpoint,
    RestoreProgress, Reset,
]


# =============================================================================
# HANDLERS
# =============================================================================

def _enter(state: WizardState, phase: WizardPhase, **changes) -> WizardState:
    return replace(state, phase=phase, current_section_index=0, **changes)


def _complete_from(expected: WizardPhase) -> Callable[[WizardState, FilingAction], WizardState]:
    def handler(state: WizardState, action: FilingAction) -> WizardState:
        if state.phase != expected:
            return state
        return _enter(state, _NEXT_PHASE_ON_COMPLETE[expected])
    return handler


def _complete_phase(state: WizardState, action: CompletePhase) -> WizardState:
    next_phase = _NEXT_PHASE_ON_COMPLETE.get(state.phase)
    if next_phase is None:
        return state
    return _enter(state, next_phase)


def _init(phase: WizardPhase, filing_type: FilingType, child_attr: str):
    def handler(state: WizardState, action: FilingAction) -> WizardState:
        return _enter(
            state,
            phase,
            filing_type=filing_type,
            filing_id=action.filing_id,
            current_personal_filing_id=getattr(action, child_attr),
            error=None,
        )
    return handler


def _start_spouse(state: WizardState, action: StartSpouse) -> WizardState:
    if state.filing_type != FilingType.INDIVIDUAL:
        return state
    return _enter(
        state,
        WizardPhase.SPOUSE_ACTIVE,
        current_personal_filing_id=action.personal_filing_id,
    )


def _start_dependent(state: WizardState, action: StartDependent) -> WizardState:
    if state.filing_type != FilingType.INDIVIDUAL:
        return state
    return _enter(
        state,
        WizardPhase.DEPENDENT_ACTIVE,
        current_personal_filing_id=action.personal_filing_id,
        current_dependent_index=action.index,
    )


def _add_dependent(state: WizardState, action: AddDependent) -> WizardState:
    return replace(state, total_dependents=state.total_dependents + 1)


def _set_dependent_count(state: WizardState, action: SetDependentCount) -> WizardState:
    return replace(state, total_dependents=max(0, action.count))


def _next_section(state: WizardState, action: NextSection) -> WizardState:
    if not state.is_active:
        return state
    index = state.current_section_index + 1
    if action.total_sections is not None:
        index = min(index, max(action.total_sections - 1, 0))
    completed = state.completed_steps
    if action.completed_step and action.completed_step not in completed:
        completed = completed + (action.completed_step,)
    return replace(state, current_section_index=index, completed_steps=completed)


def _prev_section(state: WizardState, action: PrevSection) -> WizardState:
    if not state.is_active:
        return state
    return replace(state, current_section_index=max(0, state.current_section_index - 1))


def _go_to_section(state: WizardState, action: GoToSection) -> WizardState:
    if not state.is_active:
        return state
    return replace(state, current_section_index=max(0, action.index))


def _skip_spouse(state: WizardState, action: SkipSpouse) -> WizardState:
    if state.phase != WizardPhase.SPOUSE_CHECKPOINT:
        return state
    return _enter(state, WizardPhase.DEPENDENT_CHECKPOINT)


def _skip_dependents(state: WizardState, action: SkipDependents) -> WizardState:
    if state.phase != WizardPhase.DEPENDENT_CHECKPOINT:
        return state
    return _enter(state, WizardPhase.REVIEW)


def _go_to_review(state: WizardState, action: GoToReview) -> WizardState:
    if state.phase not in REVIEW_ENTRY_PHASES:
        return state
    return _enter(state, WizardPhase.REVIEW)


def _go_to_dependent_checkpoint(state: WizardState, action: GoToDependentCheckpoint) -> WizardState:
    if state.phase != WizardPhase.REVIEW or state.filing_type != FilingType.INDIVIDUAL:
        return state
    return _enter(state, WizardPhase.DEPENDENT_CHECKPOINT)


def _restore_progress(state: WizardState, action: RestoreProgress) -> WizardState:
    dependent_index = state.current_dependent_index
    if action.dependent_index is not None:
        dependent_index = action.dependent_index
    return replace(
        state,
        phase=action.phase,
        filing_type=action.filing_type or filing_type_for_phase(action.phase),
        filing_id=action.filing_id,
        current_personal_filing_id=action.personal_filing_id,
        current_section_index=max(0, action.section_index),
        current_dependent_index=dependent_index,
        error=None,
    )


_HANDLERS: Dict[Type, Callable[[WizardState, FilingAction], WizardState]] = {
    SetLoading: lambda s, a: replace(s, is_loading=a.value),
    SetSyncing: lambda s, a: replace(s, is_syncing=a.value),
    SetError: lambda s, a: replace(s, error=a.message, is_loading=False),
    InitFiling: _init(WizardPhase.PRIMARY_ACTIVE, FilingType.INDIVIDUAL, "personal_filing_id"),
    InitCorporateFiling: _init(WizardPhase.CORPORATE_ACTIVE, FilingType.CORPORATE, "corporate_filing_id"),
    InitTrustFiling: _init(WizardPhase.TRUST_ACTIVE, FilingType.TRUST, "trust_filing_id"),
    StartSpouse: _start_spouse,
    AddDependent: _add_dependent,
    SetDependentCount: _set_dependent_count,
    StartDependent: _start_dependent,
    NextSection: _next_section,
    PrevSection: _prev_section,
    GoToSection: _go_to_section,
    CompletePhase: _complete_phase,
    CompletePrimary: _complete_from(WizardPhase.PRIMARY_ACTIVE),
    CompleteSpouse: _complete_from(WizardPhase.SPOUSE_ACTIVE),
    CompleteDependent: _complete_from(WizardPhase.DEPENDENT_ACTIVE),
    CompleteCorporate: _complete_from(WizardPhase.CORPORATE_ACTIVE),
    CompleteTrust: _complete_from(WizardPhase.TRUST_ACTIVE),
    SkipSpouse: _skip_spouse,
    SkipDependents: _skip_dependents,
    GoToReview: _go_to_review,
    GoToDependentCheckpoint: _go_to_dependent_checkpoint,
    RestoreProgress: _restore_progress,
    Reset: lambda s, a: INITIAL_STATE,
}


def filing_reducer(state: WizardState, action: FilingAction) -> WizardState:
    """
    Apply one action and return the next state.

    Never raises: unknown actions, and actions that are not defined for the
    current phase, return ``state`` unchanged.
    """
    handler = _HANDLERS.get(type(action))
    if handler is None:
        logger.debug(f"Ignoring unknown wizard action {action!r}")
        return state

    next_state = handler(state, action)
    if next_state is state:
        logger.debug(f"Action {type(action).__name__} ignored in phase {state.phase.value}")
    return next_state


def from_progress(
    filing_id: str,
    progress: WizardProgress,
    filing_type: Optional[FilingType] = None,
) -> WizardState:
    """Rebuild a WizardState from persisted progress."""
    return filing_reducer(
        INITIAL_STATE,
        RestoreProgress(
            filing_id=filing_id,
            phase=progress.last_phase,
            section_index=progress.last_section_index,
            personal_filing_id=progress.last_personal_filing_id,
            dependent_index=progress.last_dependent_index,
            filing_type=filing_type,
        ),
    )


# =============================================================================
# PROGRESS DISPLAY
# =============================================================================

class PhaseInfo(NamedTuple):
    step: int
    total: int
    label: str


_BUSINESS_PHASE_INFO: Dict[WizardPhase, Tuple[int, str]] = {
    WizardPhase.IDLE: (0, "Getting Started"),
    WizardPhase.CORPORATE_ACTIVE: (1, "Corporation Details"),
    WizardPhase.TRUST_ACTIVE: (1, "Trust Details"),
    WizardPhase.REVIEW: (2, "Review & Submit"),
    WizardPhase.CORPORATE_COMPLETE: (2, "Complete"),
    WizardPhase.TRUST_COMPLETE: (2, "Complete"),
}

_INDIVIDUAL_PHASE_INFO: Dict[WizardPhase, Tuple[int, str]] = {
    WizardPhase.IDLE: (0, "Getting Started"),
    WizardPhase.PRIMARY_ACTIVE: (1, "Your Information"),
    WizardPhase.SPOUSE_CHECKPOINT: (2, "Spouse Decision"),
    WizardPhase.SPOUSE_ACTIVE: (2, "Spouse Information"),
    WizardPhase.DEPENDENT_CHECKPOINT: (3, "Dependents Decision"),
    WizardPhase.DEPENDENT_ACTIVE: (3, "Dependent Information"),
    WizardPhase.REVIEW: (4, "Review & Submit"),
    WizardPhase.PRIMARY_COMPLETE: (5, "Complete"),
    WizardPhase.SPOUSE_COMPLETE: (5, "Complete"),
    WizardPhase.DEPENDENT_COMPLETE: (5, "Complete"),
}


def get_phase_info(
    phase: WizardPhase,
    filing_type: Optional[Union[FilingType, str]] = None,
) -> PhaseInfo:
    """Step number, step count and label for the progress indicator."""
    if filing_type in (FilingType.CORPORATE, FilingType.TRUST, "CORPORATE", "TRUST"):
        step, label = _BUSINESS_PHASE_INFO.get(phase, (0, "Unknown"))
        return PhaseInfo(step, 2, label)
    step, label = _INDIVIDUAL_PHASE_INFO.get(phase, (0, "Unknown"))
    return PhaseInfo(step, 5, label)
