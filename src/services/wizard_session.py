"""
Wizard Session - Application service driving one filing through the wizard.

Wires the question engine, the phase reducer and the pricing engine to a
FilingStore:
- Resolving where a session starts (reopened, resumed, corporate, trust, new)
- Applying answer changes and erasing answers hidden by them
- Debounced autosave with an explicit flush before navigation
- Section navigation with validation and resumable progress
- Guarded creation of primary / spouse / dependent records
- Pricing and submission from the REVIEW phase
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from config.schema_loader import TaxSchemaLoader, get_schema_loader
from config.settings import WizardSettings, get_settings
from database.filing_persistence import FilingStore
from wizard.models import (
    Filing,
    FilingRole,
    FilingStatus,
    FilingType,
    PersonalFiling,
    TaxFilingSchema,
    WizardPhase,
)
from wizard.pricing_engine import PricingBreakdown, PricingConfig, calculate_from_schema
from wizard.question_engine import (
    MissingSection,
    Section,
    get_fields_to_clear_for_conditional,
    get_sections_for_role,
    validate_all_sections_for_role,
    validate_section,
)
from wizard.state_machine import (
    INITIAL_STATE,
    AddDependent,
    CompletePhase,
    FilingAction,
    GoToDependentCheckpoint,
    GoToReview,
    GoToSection,
    InitCorporateFiling,
    InitFiling,
    InitTrustFiling,
    NextSection,
    PrevSection,
    Reset,
    RestoreProgress,
    SetDependentCount,
    SetError,
    SetLoading,
    SetSyncing,
    SkipDependents,
    SkipSpouse,
    StartDependent,
    StartSpouse,
    WizardState,
    filing_reducer,
)
from .logging_config import (
    WizardEventLogger,
    filing_id_var,
    get_logger,
    log_performance,
    personal_filing_id_var,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Marital statuses that lead to a spouse return
SPOUSE_ELIGIBLE_STATUSES = ("MARRIED", "COMMON_LAW")

MARITAL_STATUS_FIELD = "maritalStatus.status"
DEPENDANTS_LIST_FIELD = "dependants.list"

# Filing statuses whose saved progress may be resumed
RESUMABLE_STATUSES = (FilingStatus.DRAFT, FilingStatus.IN_PROGRESS)


class WizardSessionError(Exception):
    """Raised when the session is used in a way its phase does not allow."""
    pass


class AutosaveError(WizardSessionError):
    """Raised when an explicit flush cannot persist pending answers."""
    pass


@dataclass
class NavigationResult:
    """Outcome of a navigation request."""
    success: bool
    errors: Dict[str, str] = field(default_factory=dict)
    missing_sections: List[MissingSection] = field(default_factory=list)
    phase_completed: bool = False


class WizardSession:
    """
    One user's pass through the filing wizard.

    The session owns the WizardState and the active person's FormData; the
    FilingStore owns filings and records. Blocking store calls run in a
    worker thread so the event loop stays free for the autosave timer.
    """

    def __init__(
        self,
        store: FilingStore,
        filing_id: str,
        schema_loader: Optional[TaxSchemaLoader] = None,
        settings: Optional[WizardSettings] = None,
    ):
        """
        Initialize WizardSession.

        Args:
            store: Persistence backend for filings
            filing_id: Filing this session edits
            schema_loader: Schema store; defaults to the global loader
            settings: Wizard settings; defaults to environment settings
        """
        self.settings = settings or get_settings()
        self.store = store
        self.filing_id = filing_id
        self.schema_loader = schema_loader or get_schema_loader()

        self.state: WizardState = INITIAL_STATE
        self.filing: Optional[Filing] = None
        self.schema: Optional[TaxFilingSchema] = None
        self.form_data: Dict[str, Any] = {}
        self.errors: Dict[str, str] = {}

        self.pricing_config = PricingConfig(
            base_fee=self.settings.legacy_base_fee,
            spouse_fee=self.settings.legacy_spouse_fee,
            dependent_fee=self.settings.legacy_dependent_fee,
            currency=self.settings.default_currency,
            tax_rate=self.settings.default_tax_rate,
        )

        # record id -> changed fields awaiting autosave
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._autosave_task: Optional[asyncio.Task] = None
        self._save_lock = asyncio.Lock()
        self._in_flight: Set[str] = set()
        self._marked_in_progress = False
        # records whose phase was completed in this session
        self._completed_record_ids: Set[str] = set()
        self._events = WizardEventLogger(filing_id)

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def phase(self) -> WizardPhase:
        return self.state.phase

    @property
    def current_role(self) -> FilingRole:
        """Role whose questions are shown; business filings use the primary set."""
        if self.state.filing_type != FilingType.INDIVIDUAL:
            return FilingRole.PRIMARY
        return self.state.role

    @property
    def sections(self) -> List[Section]:
        if self.schema is None or not self.state.is_active:
            return []
        return get_sections_for_role(self.schema, self.current_role, self.form_data)

    @property
    def current_section(self) -> Optional[Section]:
        sections = self.sections
        index = self.state.current_section_index
        return sections[index] if 0 <= index < len(sections) else None

    @property
    def has_pending_changes(self) -> bool:
        return any(self._pending.values())

    def dispatch(self, action: FilingAction) -> WizardState:
        """Apply a reducer action and log any phase change."""
        previous = self.state
        self.state = filing_reducer(previous, action)
        self._events.log_transition(
            type(action).__name__, previous.phase.value, self.state.phase.value
        )
        return self.state

    async def _call_store(self, func: Callable[..., T], *args) -> T:
        return await asyncio.to_thread(func, *args)

    async def refresh(self) -> Filing:
        """Reload the filing from the store."""
        self.filing = await self._call_store(self.store.get_filing, self.filing_id)
        return self.filing

    def _load_person_data(self) -> None:
        """Load the active person's saved answers into the session."""
        record_id = self.state.current_personal_filing_id
        record = self.filing.find_record(record_id) if (self.filing and record_id) else None
        self.form_data = dict(record.form_data) if record else {}
        self.errors = {}
        personal_filing_id_var.set(record_id)

    def _require_active(self) -> None:
        if not self.state.is_active or not self.state.current_personal_filing_id:
            raise WizardSessionError(
                f"No active person to edit in phase {self.state.phase.value}"
            )

    # =========================================================================
    # START / RESUME
    # =========================================================================

    async def start(self) -> WizardState:
        """
        Load the filing and its schema and decide where the wizard starts.

        Order of precedence: a reopened (amended) filing restarts at its first
        section; saved progress is restored for DRAFT / IN_PROGRESS filings;
        otherwise corporate, trust and individual filings start fresh.

        Raises:
            SchemaConfigurationError: If no schema exists for the filing type
            WizardSessionError: If a business filing has no entity record
        """
        filing_id_var.set(self.filing_id)
        self.dispatch(SetLoading(True))
        try:
            filing = await self.refresh()
            self.schema = self.schema_loader.get_schema(filing.year, filing.type)
            await self._resolve_start(filing)
        finally:
            self.dispatch(SetLoading(False))

        self.dispatch(SetDependentCount(len(filing.dependents)))

        self._load_person_data()
        self._clamp_section_index()
        self._apply_auto_skips()
        logger.info(
            f"Wizard session started for filing {filing.id} in {self.state.phase.value}"
        )
        return self.state

    async def _resolve_start(self, filing: Filing) -> None:
        is_reopened = bool(filing.reference_number) and filing.status == FilingStatus.IN_PROGRESS
        if is_reopened:
            logger.info(f"Filing {filing.id} was reopened; starting at the first section")
            child_id, phase = await self._first_active_record(filing)
            self.dispatch(RestoreProgress(
                filing_id=filing.id,
                phase=phase,
                section_index=0,
                personal_filing_id=child_id,
                dependent_index=0,
                filing_type=filing.type,
            ))
            return

        progress = filing.wizard_progress
        if (
            progress is not None
            and filing.status in RESUMABLE_STATUSES
            and filing.find_record(progress.last_personal_filing_id) is not None
        ):
            logger.info(f"Restoring saved progress for filing {filing.id}: {progress.to_payload()}")
            self.dispatch(RestoreProgress(
                filing_id=filing.id,
                phase=progress.last_phase,
                section_index=progress.last_section_index,
                personal_filing_id=progress.last_personal_filing_id,
                dependent_index=progress.last_dependent_index,
                filing_type=filing.type,
            ))
            return

        child_id, _ = await self._first_active_record(filing)
        if filing.type == FilingType.CORPORATE:
            self.dispatch(InitCorporateFiling(filing.id, child_id))
        elif filing.type == FilingType.TRUST:
            self.dispatch(InitTrustFiling(filing.id, child_id))
        else:
            self.dispatch(InitFiling(filing.id, child_id))

    async def _first_active_record(self, filing: Filing):
        """Record id and phase the wizard starts with for this filing type."""
        if filing.is_business:
            if filing.entity_filing is None:
                raise WizardSessionError(
                    f"{filing.type.value} filing {filing.id} has no entity record"
                )
            phase = (
                WizardPhase.CORPORATE_ACTIVE
                if filing.type == FilingType.CORPORATE
                else WizardPhase.TRUST_ACTIVE
            )
            return filing.entity_filing.id, phase

        primary = filing.primary
        if primary is None:
            primary = await self.create_primary_filing()
            if primary is None:
                raise WizardSessionError(f"Primary filer for {filing.id} is already being created")
        return primary.id, WizardPhase.PRIMARY_ACTIVE

    def _clamp_section_index(self) -> None:
        sections = self.sections
        if sections and self.state.current_section_index >= len(sections):
            self.dispatch(GoToSection(len(sections) - 1))

    # =========================================================================
    # ANSWERS AND AUTOSAVE
    # =========================================================================

    def set_field(self, name: str, value: Any) -> List[str]:
        """
        Record an answer for the active person.

        Answers hidden by the change are erased immediately, cascading through
        answers whose own visibility depended on an erased one. The change set
        is queued for debounced autosave.

        Returns:
            Names of the answers that were erased
        """
        self._require_active()

        old_value = self.form_data.get(name)
        self.form_data[name] = value
        changes: Dict[str, Any] = {name: value}
        cleared: List[str] = []

        queue = [(name, old_value, value)]
        while queue:
            changed, before, after = queue.pop(0)
            hidden = get_fields_to_clear_for_conditional(
                self.schema, changed, before, after, self.current_role, self.form_data
            )
            for hidden_name in hidden:
                if hidden_name not in self.form_data or hidden_name in cleared:
                    continue
                hidden_value = self.form_data.pop(hidden_name)
                changes[hidden_name] = None
                cleared.append(hidden_name)
                queue.append((hidden_name, hidden_value, None))

        self._clear_errors_for([name] + cleared)
        self._events.log_fields_cleared(name, cleared)
        self._queue_save(changes)
        return cleared

    def _clear_errors_for(self, names: List[str]) -> None:
        if not self.errors or self.schema is None:
            return
        by_name = self.schema.questions_by_name()
        for name in names:
            question = by_name.get(name)
            if question is not None:
                self.errors.pop(question.id, None)

    def _queue_save(self, changes: Dict[str, Any]) -> None:
        record_id = self.state.current_personal_filing_id
        self._pending.setdefault(record_id, {}).update(changes)

        if self._autosave_task is not None and not self._autosave_task.done():
            self._autosave_task.cancel()
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: changes wait for an explicit flush()
            self._autosave_task = None
            return
        self._autosave_task = asyncio.create_task(self._debounced_save())

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self.settings.autosave_debounce_seconds)
        try:
            await asyncio.shield(self._write_pending())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._events.log_error("Autosave failed; changes kept for the next save", error=str(e))
            self.dispatch(SetError(f"Autosave failed: {e}"))

    async def _write_pending(self) -> None:
        """Write every pending change set, one store call per record."""
        async with self._save_lock:
            if not self.has_pending_changes:
                return
            pending, self._pending = self._pending, {}
            self.dispatch(SetSyncing(True))
            try:
                while pending:
                    record_id, changes = next(iter(pending.items()))
                    start = time.time()
                    await self._call_store(self.store.save_form_data, record_id, changes)
                    pending.pop(record_id)
                    self._events.log_autosave(
                        record_id, len(changes), int((time.time() - start) * 1000)
                    )
            except Exception:
                # Newer edits win over the ones that failed to save
                for record_id, changes in pending.items():
                    self._pending[record_id] = {**changes, **self._pending.get(record_id, {})}
                raise
            finally:
                self.dispatch(SetSyncing(False))

    async def flush(self) -> None:
        """
        Save pending answers now instead of waiting for the debounce.

        Raises:
            AutosaveError: If the store rejects the write; answers stay pending
        """
        task = self._autosave_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._autosave_task = None

        try:
            await self._write_pending()
        except Exception as e:
            self._events.log_error("Failed to save answers", error=str(e))
            self.dispatch(SetError(f"Failed to save: {e}"))
            raise AutosaveError(str(e)) from e

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    async def next_section(self) -> NavigationResult:
        """
        Validate the current section and move forward.

        On the last section every section of the person is validated and, if
        all pass, the phase is completed. Failing fields are kept in
        ``self.errors``; when another section fails the wizard jumps there.

        Raises:
            AutosaveError: If answers cannot be saved; the wizard does not move
        """
        self._require_active()
        sections = self.sections
        index = self.state.current_section_index
        section = sections[index] if index < len(sections) else None
        is_last = index >= len(sections) - 1

        result = validate_section(section, self.form_data, self.schema.questions)
        if not result.is_valid:
            self.errors = result.errors
            self._events.log_validation_failed(section.id, len(result.errors))
            return NavigationResult(success=False, errors=result.errors)

        if is_last:
            full = validate_all_sections_for_role(self.schema, self.current_role, self.form_data)
            if not full.is_valid:
                first = full.missing_sections[0]
                target = next(
                    (i for i, s in enumerate(sections) if s.id == first.section_id), None
                )
                if target is not None and target != index:
                    self.dispatch(GoToSection(target))
                self.errors = full.errors
                self._events.log_validation_failed(first.section_id, full.total_missing_fields)
                return NavigationResult(
                    success=False,
                    errors=full.errors,
                    missing_sections=full.missing_sections,
                )

        self.errors = {}
        await self.flush()
        await self._mark_in_progress()

        if is_last:
            self._completed_record_ids.add(self.state.current_personal_filing_id)
            self.dispatch(CompletePhase())
            await self.refresh()
            self._apply_auto_skips()
            return NavigationResult(success=True, phase_completed=True)

        self.dispatch(NextSection(
            total_sections=len(sections),
            completed_step=section.id if section else None,
        ))
        await self._save_progress()
        return NavigationResult(success=True)

    async def previous_section(self) -> WizardState:
        self._require_active()
        await self.flush()
        self.dispatch(PrevSection())
        await self._save_progress()
        return self.state

    async def go_to_section(self, index: int) -> WizardState:
        """Jump to a section of the active person (clamped to the section list)."""
        self._require_active()
        await self.flush()
        last = max(len(self.sections) - 1, 0)
        self.dispatch(GoToSection(min(max(index, 0), last)))
        await self._save_progress()
        return self.state

    async def _mark_in_progress(self) -> None:
        if self._marked_in_progress:
            return
        try:
            await self._call_store(self.store.mark_in_progress, self.filing_id)
            self._marked_in_progress = True
        except Exception as e:
            logger.warning(f"Could not mark filing {self.filing_id} in progress: {e}")

    async def _save_progress(self) -> bool:
        """Persist resumable progress; IDLE and REVIEW are never saved."""
        progress = self.state.to_progress()
        if progress is None:
            return False
        try:
            await self._call_store(self.store.save_wizard_progress, self.filing_id, progress)
            return True
        except Exception as e:
            self._events.log_error("Failed to save wizard progress", error=str(e))
            return False

    # =========================================================================
    # CHECKPOINTS
    # =========================================================================

    def _primary_answers(self) -> Dict[str, Any]:
        """Primary filer's answers, including unsaved ones when they are active."""
        primary = self.filing.primary if self.filing else None
        answers = dict(primary.form_data) if primary else {}
        if primary is not None and self.state.current_personal_filing_id == primary.id:
            answers.update(self.form_data)
        return answers

    def should_skip_spouse(self) -> bool:
        """Skip the spouse checkpoint once marital status rules out a spouse."""
        status = self._primary_answers().get(MARITAL_STATUS_FIELD)
        return status is not None and status not in SPOUSE_ELIGIBLE_STATUSES

    def dependants_list(self) -> List[Dict[str, Any]]:
        entries = self._primary_answers().get(DEPENDANTS_LIST_FIELD) or []
        return [e for e in entries if isinstance(e, dict)]

    def earning_dependants(self) -> List[Dict[str, Any]]:
        """Dependants who earn income and therefore get their own return."""
        return [d for d in self.dependants_list() if d.get("earnsIncome") == "YES"]

    def should_skip_dependents(self) -> bool:
        return not self.dependants_list()

    def _apply_auto_skips(self) -> None:
        if self.state.phase == WizardPhase.SPOUSE_CHECKPOINT and self.should_skip_spouse():
            self.dispatch(SkipSpouse())
        if self.state.phase == WizardPhase.DEPENDENT_CHECKPOINT and self.should_skip_dependents():
            self.dispatch(SkipDependents())

    async def skip_spouse(self) -> WizardState:
        await self.flush()
        self.dispatch(SkipSpouse())
        self._apply_auto_skips()
        return self.state

    async def skip_dependents(self) -> WizardState:
        await self.flush()
        self.dispatch(SkipDependents())
        return self.state

    async def go_to_review(self) -> WizardState:
        await self.flush()
        self.dispatch(GoToReview())
        return self.state

    def go_to_dependent_checkpoint(self) -> WizardState:
        """Return from REVIEW to add another dependent."""
        return self.dispatch(GoToDependentCheckpoint())

    # =========================================================================
    # PEOPLE
    # =========================================================================

    async def _guarded(self, key: str, operation: Callable[[], Awaitable[T]]) -> Optional[T]:
        """Run ``operation`` unless the same mutating operation is already running."""
        if key in self._in_flight:
            logger.warning(f"Ignoring duplicate {key} request for filing {self.filing_id}")
            return None
        self._in_flight.add(key)
        try:
            return await operation()
        finally:
            self._in_flight.discard(key)

    async def create_primary_filing(self) -> Optional[PersonalFiling]:
        """Create the primary filer record; returns None if a creation is in flight."""
        async def create() -> PersonalFiling:
            filing = await self.refresh()
            if filing.primary is not None:
                return filing.primary
            record = await self._call_store(
                self.store.add_personal_filing, self.filing_id, FilingRole.PRIMARY
            )
            await self.refresh()
            return record

        return await self._guarded("create_primary", create)

    async def add_spouse(self) -> Optional[PersonalFiling]:
        """
        Create (or reuse) the spouse record and start the spouse phase.

        Returns None when another add_spouse call is still running.
        """
        async def create() -> PersonalFiling:
            await self.flush()
            self.dispatch(SetLoading(True))
            try:
                filing = await self.refresh()
                spouse = filing.spouse
                if spouse is None:
                    spouse = await self._call_store(
                        self.store.add_personal_filing, self.filing_id, FilingRole.SPOUSE
                    )
                    await self.refresh()
            except Exception as e:
                self.dispatch(SetError(str(e)))
                raise
            finally:
                self.dispatch(SetLoading(False))

            self.dispatch(StartSpouse(spouse.id))
            self._load_person_data()
            await self._save_progress()
            return spouse

        return await self._guarded("add_spouse", create)

    async def add_dependent(self) -> Optional[PersonalFiling]:
        """Create a dependent record without entering it; None if one is in flight."""
        async def create() -> PersonalFiling:
            self.dispatch(SetLoading(True))
            try:
                record = await self._call_store(
                    self.store.add_personal_filing, self.filing_id, FilingRole.DEPENDENT
                )
                await self.refresh()
            except Exception as e:
                self.dispatch(SetError(str(e)))
                raise
            finally:
                self.dispatch(SetLoading(False))
            self.dispatch(AddDependent())
            return record

        return await self._guarded("add_dependent", create)

    async def add_earning_dependents(self) -> List[PersonalFiling]:
        """
        Make sure every income-earning dependant listed by the primary filer
        has a record, then continue with the next incomplete one.

        Records that already exist are reused, so calling this again from the
        dependent checkpoint never duplicates dependents.

        Returns:
            The records created by this call
        """
        await self.flush()
        filing = await self.refresh()
        missing = len(self.earning_dependants()) - len(filing.dependents)

        created: List[PersonalFiling] = []
        for _ in range(missing):
            record = await self.add_dependent()
            if record is not None:
                created.append(record)

        await self.continue_dependents()
        return created

    def next_incomplete_dependent(self) -> Optional[PersonalFiling]:
        """
        First dependent record that still needs answers.

        A record is done once it was completed in this session, is marked
        complete, or holds answers. Saved progress pointing into a dependent
        marks that dependent as unfinished.
        """
        if self.filing is None:
            return None
        progress = self.filing.wizard_progress
        for record in self.filing.dependents:
            if record.id in self._completed_record_ids:
                continue
            if (
                progress is not None
                and progress.last_phase == WizardPhase.DEPENDENT_ACTIVE
                and progress.last_personal_filing_id == record.id
            ):
                return record
            if not record.is_complete and not record.form_data:
                return record
        return None

    async def continue_dependents(self) -> WizardState:
        """Enter the next incomplete dependent, or go to review when none is left."""
        await self.flush()
        await self.refresh()
        record = self.next_incomplete_dependent()
        if record is not None:
            return await self.start_dependent(record.id)
        self.dispatch(SkipDependents())
        return self.state

    async def start_dependent(self, record_id: str, index: Optional[int] = None) -> WizardState:
        """Enter the dependent phase for an existing dependent record."""
        await self.flush()
        filing = await self.refresh()
        dependents = filing.dependents
        position = next((i for i, d in enumerate(dependents) if d.id == record_id), None)
        if position is None:
            raise WizardSessionError(f"Dependent record not found: {record_id}")

        self.dispatch(StartDependent(record_id, position if index is None else index))
        self._load_person_data()
        await self._save_progress()
        return self.state

    async def edit_person(self, record_id: str, section_index: int = 0) -> WizardState:
        """Jump from review back into one person's sections."""
        await self.flush()
        filing = await self.refresh()
        record = filing.find_record(record_id)
        if record is None:
            raise WizardSessionError(f"Filing record not found: {record_id}")

        if filing.type == FilingType.CORPORATE:
            self.dispatch(InitCorporateFiling(filing.id, record_id))
        elif filing.type == FilingType.TRUST:
            self.dispatch(InitTrustFiling(filing.id, record_id))
        elif record.type == FilingRole.PRIMARY:
            self.dispatch(InitFiling(filing.id, record_id))
        elif record.type == FilingRole.SPOUSE:
            self.dispatch(StartSpouse(record_id))
        else:
            position = next(i for i, d in enumerate(filing.dependents) if d.id == record_id)
            self.dispatch(StartDependent(record_id, position))

        self._load_person_data()
        last = max(len(self.sections) - 1, 0)
        self.dispatch(GoToSection(min(max(section_index, 0), last)))
        return self.state

    # =========================================================================
    # EXIT, PRICING, SUBMISSION
    # =========================================================================

    async def save_and_exit(self) -> bool:
        """Flush answers and save progress; returns False if anything failed."""
        try:
            await self.flush()
        except AutosaveError:
            return False
        if self.state.to_progress() is None:
            return True
        return await self._save_progress()

    async def quote(self) -> PricingBreakdown:
        """Price the filing as currently saved."""
        await self.flush()
        filing = await self.refresh()
        return calculate_from_schema(filing, self.schema, self.pricing_config)

    @log_performance("wizard_submit")
    async def submit(self) -> Optional[Filing]:
        """
        Submit the filing for review at the quoted price and end the session.

        Returns None when a submission is already running.

        Raises:
            WizardSessionError: If the wizard is not in REVIEW
            AutosaveError: If pending answers cannot be saved first
        """
        if self.state.phase != WizardPhase.REVIEW:
            raise WizardSessionError(
                f"Submission is only allowed from REVIEW, not {self.state.phase.value}"
            )

        async def submit_filing() -> Filing:
            breakdown = await self.quote()
            filing = await self._call_store(
                self.store.submit_for_review, self.filing_id, breakdown.total
            )
            self.filing = filing
            self._events.log_submission(
                filing.reference_number, breakdown.total, breakdown.currency
            )
            self.reset()
            return filing

        return await self._guarded("submit", submit_filing)

    def reset(self) -> WizardState:
        """Abandon the wizard state; pending answers are dropped."""
        if self._autosave_task is not None and not self._autosave_task.done():
            self._autosave_task.cancel()
        self._autosave_task = None
        self._pending = {}
        self.form_data = {}
        self.errors = {}
        self._marked_in_progress = False
        self._completed_record_ids = set()
        return self.dispatch(Reset())

    async def close(self) -> None:
        """Flush pending answers and stop the autosave timer."""
        await self.flush()
