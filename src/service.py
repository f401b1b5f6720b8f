"""
service.py

Service layer for the Renovation Subsidy Project Management System.

Responsibilities
----------------
Everything in this module is synchronous and free of I/O.  Callers load a
Project aggregate, hand it to a service, and persist the Project that comes
back.  Input aggregates are never mutated: every transform works on a deep
copy, so a failed validation leaves the caller's object exactly as it was.

Contents
--------
- Collation / search helpers   – greek_sort_key, normalize_for_search
- Metrics engine               – compute_metrics
- Financial rollup             – profitability, intervention_financials, project_financials
- Stage state machine          – transition_stage, apply_stage_action, stage_lanes
- Invariant guards             – require_* functions raising ValidationError
- Lookup helpers               – find_* functions raising NotFoundError
- AuditService                 – prepends audit entries
- ProjectService               – create / update / activate
- InterventionService          – add (catalog or custom) / update / costs / delete
- SubInterventionService       – add / update / delete / move
- StageService                 – add / update / delete / move / status / files / notifications

Design notes
------------
- Each mutating method receives a MutationContext carrying the acting user,
  the current time and an id factory, and prepends exactly one AuditEntry.
- Business rule violations raise ValidationError (see errors.py); unknown
  ids raise NotFoundError; illegal stage moves raise InvalidTransitionError.
- No logging happens here; that belongs to the application layer.
"""

from __future__ import annotations

import copy
import math
import re
import unicodedata
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from errors import (
    InvalidTransitionError,
    NotFoundError,
    NotFoundKind,
    ValidationError,
    ValidationKind,
)
from model import (
    CUSTOM_INTERVENTION_CODE,
    Actor,
    Attachment,
    AuditEntry,
    FinancialSummary,
    Intervention,
    MasterIntervention,
    MoveDirection,
    Profitability,
    Project,
    ProjectStatus,
    Stage,
    StageAction,
    StageStatus,
    SubIntervention,
)


MIN_TITLE_LENGTH = 3
MIN_INTERVENTION_QUANTITY = 0.1

DEFAULT_STAGE_TITLES = (
    "Υποβολή Αίτησης",
    "Τεχνική Μελέτη",
    "Εγκατάσταση",
    "Ολοκλήρωση & Πληρωμή",
)
DEFAULT_STAGE_OFFSETS_DAYS = (10, 20, 35, 45)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _clone(project: Project) -> Project:
    return copy.deepcopy(project)


def _num(value) -> float:
    """Coerce a possibly missing or malformed numeric field to a finite float."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _aware(value) -> Optional[datetime]:
    """Return an aware UTC datetime, or None for anything unusable."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _contact_ref(value: Optional[str]) -> Optional[str]:
    """Form selects post the literal 'none' for an empty choice."""
    if value is None:
        return None
    value = value.strip()
    if not value or value == "none":
        return None
    return value


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


# ---------------------------------------------------------------------------
# Collation and search
# ---------------------------------------------------------------------------

def _text(value) -> str:
    """Non-string values are treated as absent."""
    return value if isinstance(value, str) else ""


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", _text(text))
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def greek_sort_key(text: str) -> Tuple[str, str]:
    """
    Collation key for human titles written in Greek.

    Primary ordering ignores accents, case and final sigma; the raw text
    breaks ties so the key is total and sorting stays deterministic.
    """
    text = _text(text)
    return strip_accents(text).casefold(), text


_GREEKLISH_DIGRAPHS = (
    ("th", "θ"),
    ("ch", "χ"),
    ("kh", "χ"),
    ("ps", "ψ"),
    ("ks", "ξ"),
    ("ph", "φ"),
)

_GREEKLISH_LETTERS = {
    "a": "α", "v": "β", "g": "γ", "d": "δ", "e": "ε", "z": "ζ", "h": "η",
    "i": "ι", "k": "κ", "l": "λ", "m": "μ", "n": "ν", "x": "ξ", "o": "ο",
    "p": "π", "r": "ρ", "s": "σ", "t": "τ", "y": "υ", "u": "υ", "f": "φ",
    "w": "ω",
}


def normalize_for_search(text: str) -> str:
    """
    Fold Greek, Greeklish and accented input onto one comparable form:
    lower case, Latin transliterated to Greek, no diacritics, no final sigma.
    """
    text = _text(text)
    if not text:
        return ""
    result = text.lower()
    for digraph, letter in _GREEKLISH_DIGRAPHS:
        result = result.replace(digraph, letter)
    result = "".join(_GREEKLISH_LETTERS.get(ch, ch) for ch in result)
    return strip_accents(result).lower().replace("ς", "σ")


# ---------------------------------------------------------------------------
# Display codes
# ---------------------------------------------------------------------------

_ROMAN_NUMERAL = re.compile(r"\((I|II|III|IV|V|VI|VII|VIII|IX|X)\)")


def roman_suffix(expense_category: Optional[str]) -> str:
    """'Κουφώματα (II)' -> ' (II)'; no numeral -> ''."""
    match = _ROMAN_NUMERAL.search(_text(expense_category))
    return f" ({match.group(1)})" if match else ""


def format_display_code(subcategory_code: Optional[str], expense_category: Optional[str]) -> str:
    return f"{_text(subcategory_code)}{roman_suffix(expense_category)}"


# ---------------------------------------------------------------------------
# Metrics engine
# ---------------------------------------------------------------------------

def _coerce_status(value) -> Optional[ProjectStatus]:
    try:
        return ProjectStatus(value)
    except ValueError:
        return None


def _stage_is_overdue(stage: Stage, now: datetime) -> bool:
    if stage.status in (StageStatus.COMPLETED, StageStatus.FAILED):
        return False
    deadline = _aware(stage.deadline)
    return deadline is not None and deadline < now


def intervention_total_cost(intervention: Intervention) -> float:
    """
    Σ sub-intervention cost once any sub-intervention exists; until then the
    cost seeded from the catalog caps stands.
    """
    if intervention.sub_interventions:
        return sum(_num(sub.cost) for sub in intervention.sub_interventions)
    return _num(intervention.total_cost)


def compute_metrics(
    project: Project,
    *,
    time_sensitive: bool = False,
    now: Optional[datetime] = None,
    name_key: Callable[[str], object] = greek_sort_key,
) -> Project:
    """
    Return a copy of `project` with every derived field recomputed.

    With `time_sensitive=False` (server mode) no stage is ever overdue, so
    the result depends on stored data only.  With `time_sensitive=True`
    (display mode) open stages whose deadline is before `now` count as
    alerts and turn an active project Delayed.

    Pure and idempotent for a fixed `now`; malformed optional fields are
    treated as absent and the function does not raise.
    """
    result = _clone(project)
    result.interventions = [i for i in (result.interventions or []) if i is not None]
    stored_status = _coerce_status(result.status)
    now = _aware(now)
    count_overdue = (
        time_sensitive
        and now is not None
        and stored_status is not ProjectStatus.QUOTATION
    )

    total_stages = 0
    completed_stages = 0
    overdue_stages = 0
    for intervention in result.interventions:
        intervention.stages = [s for s in (intervention.stages or []) if s is not None]
        intervention.sub_interventions = [
            s for s in (intervention.sub_interventions or []) if s is not None
        ]
        total_stages += len(intervention.stages)
        for stage in intervention.stages:
            if stage.status == StageStatus.COMPLETED:
                completed_stages += 1
            elif count_overdue and _stage_is_overdue(stage, now):
                overdue_stages += 1

    progress = (
        _round_half_up(completed_stages / total_stages * 100) if total_stages else 0
    )

    if total_stages > 0 and progress == 100:
        status = ProjectStatus.COMPLETED
    elif not result.interventions and stored_status is not None:
        # nothing to derive from
        status = stored_status
    elif stored_status in (ProjectStatus.QUOTATION, ProjectStatus.COMPLETED):
        status = stored_status
    elif overdue_stages > 0:
        status = ProjectStatus.DELAYED
    else:
        status = ProjectStatus.ON_TRACK

    result.interventions = sorted(
        result.interventions, key=lambda i: name_key(i.display_name)
    )

    budget = 0.0
    for intervention in result.interventions:
        intervention.total_cost = intervention_total_cost(intervention)
        budget += intervention.total_cost
        for sub in intervention.sub_interventions:
            sub.display_code = format_display_code(
                sub.subcategory_code,
                _text(sub.expense_category) or intervention.expense_category,
            )

    result.budget = budget
    result.progress = progress
    result.status = status
    result.alerts = overdue_stages
    return result


# ---------------------------------------------------------------------------
# Financial rollup
# ---------------------------------------------------------------------------

def _margin(program_budget: float, profit: float) -> float:
    return profit / program_budget * 100 if program_budget > 0 else 0.0


def profitability(sub: SubIntervention) -> Profitability:
    internal_cost = _num(sub.cost_of_materials) + _num(sub.cost_of_labor)
    program_cost = _num(sub.cost)
    profit = program_cost - internal_cost
    return Profitability(
        internal_cost=internal_cost,
        profit=profit,
        margin=_margin(program_cost, profit),
    )


def format_margin(margin: float) -> Optional[float]:
    """Margins are only shown when finite and non-zero."""
    if margin is None or not math.isfinite(margin) or margin == 0:
        return None
    return round(margin, 2)


def intervention_financials(intervention: Intervention) -> FinancialSummary:
    if intervention.sub_interventions:
        program_budget = 0.0
        internal_cost = 0.0
        for sub in intervention.sub_interventions:
            program_budget += _num(sub.cost)
            internal_cost += profitability(sub).internal_cost
    else:
        program_budget = _num(intervention.total_cost)
        internal_cost = _num(intervention.cost_of_materials) + _num(intervention.cost_of_labor)
    profit = program_budget - internal_cost
    return FinancialSummary(
        program_budget=program_budget,
        internal_cost=internal_cost,
        profit=profit,
        margin=_margin(program_budget, profit),
    )


def project_financials(project: Project) -> FinancialSummary:
    program_budget = 0.0
    internal_cost = 0.0
    for intervention in project.interventions or []:
        summary = intervention_financials(intervention)
        program_budget += summary.program_budget
        internal_cost += summary.internal_cost
    profit = program_budget - internal_cost
    return FinancialSummary(
        program_budget=program_budget,
        internal_cost=internal_cost,
        profit=profit,
        margin=_margin(program_budget, profit),
    )


def classify_profitability(summary: FinancialSummary) -> str:
    if summary.profit > 0:
        return "profitable"
    if summary.profit < 0:
        return "lossmaking"
    return "breakeven"


# ---------------------------------------------------------------------------
# Stage state machine
# ---------------------------------------------------------------------------

STAGE_TRANSITIONS: Dict[StageStatus, frozenset] = {
    StageStatus.PENDING: frozenset({StageStatus.IN_PROGRESS}),
    StageStatus.IN_PROGRESS: frozenset({StageStatus.COMPLETED, StageStatus.FAILED}),
    StageStatus.COMPLETED: frozenset({StageStatus.IN_PROGRESS}),
    StageStatus.FAILED: frozenset({StageStatus.IN_PROGRESS}),
}

# action -> (target status, statuses it may be applied from)
STAGE_ACTIONS: Dict[StageAction, Tuple[StageStatus, frozenset]] = {
    StageAction.ACTIVATE: (StageStatus.IN_PROGRESS, frozenset({StageStatus.PENDING})),
    StageAction.COMPLETE: (StageStatus.COMPLETED, frozenset({StageStatus.IN_PROGRESS})),
    StageAction.FAIL: (StageStatus.FAILED, frozenset({StageStatus.IN_PROGRESS})),
    StageAction.RESTART: (
        StageStatus.IN_PROGRESS,
        frozenset({StageStatus.COMPLETED, StageStatus.FAILED}),
    ),
}


def can_transition(current: StageStatus, requested: StageStatus) -> bool:
    return requested in STAGE_TRANSITIONS.get(current, frozenset())


def transition_stage(stage: Stage, new_status: StageStatus, now: datetime) -> Stage:
    """The only writer of Stage.status.  Returns a new Stage."""
    if not can_transition(stage.status, new_status):
        raise InvalidTransitionError(_status_value(stage.status), _status_value(new_status))
    return replace(stage, status=StageStatus(new_status), last_updated=now)


def apply_stage_action(stage: Stage, action: StageAction, now: datetime) -> Stage:
    target, sources = STAGE_ACTIONS[StageAction(action)]
    if stage.status not in sources:
        raise InvalidTransitionError(_status_value(stage.status), target.value)
    return transition_stage(stage, target, now)


def _status_value(status) -> str:
    return status.value if isinstance(status, StageStatus) else str(status)


def stage_lanes(stages: Iterable[Stage]) -> Dict[StageStatus, List[Stage]]:
    """Group stages into the four status lanes, keeping sequence order."""
    lanes: Dict[StageStatus, List[Stage]] = {status: [] for status in StageStatus}
    for stage in stages:
        lanes[StageStatus(stage.status)].append(stage)
    return lanes


def _neighbour_index(
    items: Sequence,
    from_index: int,
    direction: MoveDirection,
    same_lane: Optional[Callable[[object], bool]] = None,
) -> Optional[int]:
    step = -1 if MoveDirection(direction) is MoveDirection.UP else 1
    index = from_index + step
    while 0 <= index < len(items):
        if same_lane is None or same_lane(items[index]):
            return index
        index += step
    return None


# ---------------------------------------------------------------------------
# Invariant guards
# ---------------------------------------------------------------------------

def require_min_length(value: Optional[str], field: str, minimum: int = MIN_TITLE_LENGTH) -> str:
    text = (value or "").strip()
    if len(text) < minimum:
        raise ValidationError(
            ValidationKind.TITLE_TOO_SHORT,
            f"{field} must be at least {minimum} characters long.",
            field=field,
        )
    return text


def require_non_negative(value: Optional[float], field: str) -> None:
    if value is not None and value < 0:
        raise ValidationError(
            ValidationKind.NON_POSITIVE_VALUE,
            f"{field} must not be negative.",
            field=field,
        )


def require_positive(value: Optional[float], field: str) -> None:
    if value is None or value <= 0:
        raise ValidationError(
            ValidationKind.NON_POSITIVE_VALUE,
            f"{field} must be greater than zero.",
            field=field,
        )


def require_min_quantity(value: Optional[float], field: str = "quantity") -> None:
    if value is None or value < MIN_INTERVENTION_QUANTITY:
        raise ValidationError(
            ValidationKind.NON_POSITIVE_VALUE,
            f"{field} must be at least {MIN_INTERVENTION_QUANTITY}.",
            field=field,
        )


def require_stage_deadline_within_project(project: Project, deadline: datetime) -> None:
    """A stage deadline may equal, but never exceed, the project deadline."""
    project_deadline = _aware(project.deadline)
    deadline = _aware(deadline)
    if project_deadline is None or deadline is None:
        return
    if deadline > project_deadline:
        raise ValidationError(
            ValidationKind.DEADLINE_OUT_OF_RANGE,
            "Stage deadline cannot be after the project deadline "
            f"({project_deadline.date().isoformat()}).",
            field="deadline",
        )


def require_intervention_editable(intervention: Intervention) -> None:
    if any(s.status == StageStatus.COMPLETED for s in intervention.stages):
        raise ValidationError(
            ValidationKind.LOCKED_FOR_EDIT,
            f"Intervention '{intervention.display_name}' has completed stages "
            "and can no longer be changed.",
            field="master_id",
        )


def require_intervention_deletable(intervention: Intervention) -> None:
    require_intervention_editable(intervention)
    if not all(s.status == StageStatus.PENDING for s in intervention.stages):
        raise ValidationError(
            ValidationKind.LOCKED_FOR_EDIT,
            f"Intervention '{intervention.display_name}' has stages in progress "
            "or finished and cannot be deleted.",
            field="master_id",
        )


def require_stage_editable(stage: Stage) -> None:
    if stage.status == StageStatus.COMPLETED:
        raise ValidationError(
            ValidationKind.LOCKED_FOR_EDIT,
            f"Stage '{stage.title}' is completed and can no longer be changed.",
            field="stage_id",
        )


def require_unique_master_id(project: Project, master_id: str) -> None:
    if any(i.master_id == master_id for i in project.interventions):
        raise ValidationError(
            ValidationKind.DUPLICATE_KEY,
            f"Intervention '{master_id}' already exists in this project.",
            field="master_id",
        )


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------

def find_intervention(project: Project, master_id: str) -> Intervention:
    for intervention in project.interventions:
        if intervention.master_id == master_id:
            return intervention
    raise NotFoundError(NotFoundKind.INTERVENTION, master_id)


def find_stage(project: Project, stage_id: str) -> Tuple[Intervention, Stage]:
    for intervention in project.interventions:
        for stage in intervention.stages:
            if stage.id == stage_id:
                return intervention, stage
    raise NotFoundError(NotFoundKind.STAGE, stage_id)


def find_sub_intervention(intervention: Intervention, sub_id: str) -> SubIntervention:
    for sub in intervention.sub_interventions:
        if sub.id == sub_id:
            return sub
    raise NotFoundError(NotFoundKind.SUB_INTERVENTION, sub_id)


def _index_of(items: Sequence, predicate: Callable[[object], bool]) -> int:
    for index, item in enumerate(items):
        if predicate(item):
            return index
    return -1


def _replace_stage(intervention: Intervention, updated: Stage) -> None:
    index = _index_of(intervention.stages, lambda s: s.id == updated.id)
    intervention.stages[index] = updated


def _recompute_budget(project: Project) -> None:
    project.budget = sum(_num(i.total_cost) for i in project.interventions)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StageContext:
    project_id: str
    project_title: str
    intervention_master_id: str
    stage_id: str
    stage_title: str


def find_stage_context(projects: Iterable[Project], query: str) -> Optional[StageContext]:
    """
    Resolve free text to a stage.  A project title match yields the
    project's first stage, an intervention category match that
    intervention's first stage, and a stage title match the stage itself.
    """
    needle = normalize_for_search(query).strip()
    if not needle:
        return None

    def ctx(project: Project, intervention: Intervention, stage: Stage) -> StageContext:
        return StageContext(
            project_id=project.id,
            project_title=project.title,
            intervention_master_id=intervention.master_id,
            stage_id=stage.id,
            stage_title=stage.title,
        )

    for project in projects:
        if needle in normalize_for_search(project.title):
            if project.interventions and project.interventions[0].stages:
                first = project.interventions[0]
                return ctx(project, first, first.stages[0])
        for intervention in project.interventions:
            if needle in normalize_for_search(intervention.intervention_category):
                if intervention.stages:
                    return ctx(project, intervention, intervention.stages[0])
            for stage in intervention.stages:
                if needle in normalize_for_search(stage.title):
                    return ctx(project, intervention, stage)
    return None


# ---------------------------------------------------------------------------
# Mutation context and audit trail
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MutationContext:
    """Who is changing the aggregate, when, and where new ids come from."""
    actor: Actor
    now: datetime
    new_id: Callable[[str], str]


class AuditAction:
    """Human labels recorded on audit entries."""
    CREATE_PROJECT = "Δημιουργία Προσφοράς"
    UPDATE_PROJECT = "Επεξεργασία Έργου"
    ACTIVATE_PROJECT = "Ενεργοποίηση Έργου"
    ADD_INTERVENTION = "Προσθήκη Παρέμβασης"
    UPDATE_INTERVENTION = "Επεξεργασία Παρέμβασης"
    UPDATE_INTERVENTION_COSTS = "Ενημέρωση Κόστους Παρέμβασης"
    DELETE_INTERVENTION = "Διαγραφή Παρέμβασης"
    ADD_SUB_INTERVENTION = "Προσθήκη Υπο-Παρέμβασης"
    UPDATE_SUB_INTERVENTION = "Επεξεργασία Υπο-Παρέμβασης"
    DELETE_SUB_INTERVENTION = "Διαγραφή Υπο-Παρέμβασης"
    MOVE_SUB_INTERVENTION = "Αλλαγή Σειράς Υπο-Παρέμβασης"
    ADD_STAGE = "Προσθήκη Σταδίου"
    UPDATE_STAGE = "Επεξεργασία Σταδίου"
    DELETE_STAGE = "Διαγραφή Σταδίου"
    MOVE_STAGE = "Αλλαγή Σειράς Σταδίου"
    UPDATE_STAGE_STATUS = "Ενημέρωση Κατάστασης Σταδίου"
    ADD_FILE = "Προσθήκη Αρχείου"
    SEND_EMAIL = "Αποστολή Email"


class AuditService:
    """Builds audit entries and keeps the log newest-first."""

    def record(self, project: Project, action: str, details: str, ctx: MutationContext) -> AuditEntry:
        entry = AuditEntry(
            id=ctx.new_id("log"),
            user=copy.deepcopy(ctx.actor),
            action=action,
            timestamp=ctx.now,
            details=details,
        )
        project.audit_log.insert(0, entry)
        return entry

    def entries(self, project: Project, limit: Optional[int] = None) -> List[AuditEntry]:
        log = list(project.audit_log)
        return log if limit is None else log[:limit]


_audit = AuditService()


# ---------------------------------------------------------------------------
# ProjectService
# ---------------------------------------------------------------------------

class ProjectService:
    """Project creation, metadata edits and activation."""

    def create_project(
        self,
        title: str,
        owner_contact_id: str,
        ctx: MutationContext,
        application_number: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> Project:
        """Create and return a new Project in Quotation status (unsaved)."""
        title = require_min_length(title, "title")
        project = Project(
            id=ctx.new_id("project"),
            title=title,
            owner_contact_id=owner_contact_id,
            application_number=_blank_to_none(application_number),
            deadline=_aware(deadline),
            status=ProjectStatus.QUOTATION,
            created_at=ctx.now,
        )
        _audit.record(
            project,
            AuditAction.CREATE_PROJECT,
            f'Το έργο "{title}" δημιουργήθηκε σε φάση προσφοράς.',
            ctx,
        )
        return project

    def update_project(
        self,
        project: Project,
        ctx: MutationContext,
        title: Optional[str] = None,
        application_number: Optional[str] = None,
        owner_contact_id: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> Project:
        """
        Apply field-level updates.  A new project deadline must still cover
        every existing stage deadline.
        """
        project = _clone(project)
        if title is not None:
            project.title = require_min_length(title, "title")
        if application_number is not None:
            project.application_number = _blank_to_none(application_number)
        if owner_contact_id is not None:
            project.owner_contact_id = owner_contact_id
        if deadline is not None:
            project.deadline = _aware(deadline)
            for intervention in project.interventions:
                for stage in intervention.stages:
                    if stage.deadline is not None:
                        require_stage_deadline_within_project(project, stage.deadline)
        _audit.record(
            project,
            AuditAction.UPDATE_PROJECT,
            f'Ενημερώθηκαν τα στοιχεία του έργου "{project.title}".',
            ctx,
        )
        return project

    def activate(self, project: Project, ctx: MutationContext) -> Project:
        """Quotation → On Track.  One-way."""
        if project.status != ProjectStatus.QUOTATION:
            raise InvalidTransitionError(
                ProjectStatus(project.status).value,
                ProjectStatus.ON_TRACK.value,
                subject="project",
            )
        project = _clone(project)
        project.status = ProjectStatus.ON_TRACK
        _audit.record(
            project,
            AuditAction.ACTIVATE_PROJECT,
            'Η κατάσταση του έργου άλλαξε από "Προσφορά" σε "Εντός Χρονοδιαγράμματος".',
            ctx,
        )
        return project


# ---------------------------------------------------------------------------
# InterventionService
# ---------------------------------------------------------------------------

def seeded_total_cost(quantity: float, max_unit_price: float, max_amount: float) -> float:
    """quantity × unit price cap, limited by the amount cap (0 means uncapped)."""
    amount = _num(quantity) * _num(max_unit_price)
    cap = _num(max_amount)
    return min(amount, cap) if cap > 0 else amount


class InterventionService:
    """Adds, edits and removes interventions on a project."""

    def add_from_catalog(
        self,
        project: Project,
        entry: MasterIntervention,
        quantity: float,
        ctx: MutationContext,
        selected_energy_spec: Optional[str] = None,
        selected_system_class: Optional[str] = None,
        stage_offsets_days: Optional[Sequence[int]] = DEFAULT_STAGE_OFFSETS_DAYS,
    ) -> Project:
        """
        Add a catalog intervention.  Total cost is seeded from the catalog
        caps; when `stage_offsets_days` is given the default execution stages
        are created with deadlines that many days from now, never later than
        the project deadline.
        """
        require_unique_master_id(project, entry.id)
        require_min_quantity(quantity)
        require_positive(entry.max_unit_price, "max_unit_price")
        require_non_negative(entry.max_amount, "max_amount")

        project = _clone(project)
        intervention = Intervention(
            master_id=entry.id,
            code=entry.code,
            expense_category=entry.expense_category,
            intervention_category=entry.intervention_category,
            intervention_subcategory=entry.intervention_subcategory,
            quantity=quantity,
            unit=entry.unit,
            max_unit_price=entry.max_unit_price,
            max_amount=entry.max_amount,
            info=entry.info,
            energy_specs_options=entry.energy_specs_options,
            selected_energy_spec=_blank_to_none(selected_energy_spec),
            selected_system_class=_blank_to_none(selected_system_class),
            total_cost=seeded_total_cost(quantity, entry.max_unit_price, entry.max_amount),
            stages=self._default_stages(project, stage_offsets_days or (), ctx),
        )
        project.interventions.append(intervention)
        _recompute_budget(project)
        _audit.record(
            project,
            AuditAction.ADD_INTERVENTION,
            f'Προστέθηκε: "{intervention.intervention_category}".',
            ctx,
        )
        return project

    def add_custom(self, project: Project, name: str, ctx: MutationContext) -> Project:
        """Add a free-form intervention that is not in the catalog."""
        name = require_min_length(name, "name")
        slug = re.sub(r"\s+", "-", name.lower())
        master_id = f"{slug}-{ctx.new_id('custom')[-5:]}"
        require_unique_master_id(project, master_id)

        project = _clone(project)
        project.interventions.append(
            Intervention(
                master_id=master_id,
                code=CUSTOM_INTERVENTION_CODE,
                expense_category=name,
                intervention_category=name,
                intervention_subcategory=name,
                quantity=0.0,
                total_cost=0.0,
            )
        )
        _recompute_budget(project)
        _audit.record(
            project,
            AuditAction.ADD_INTERVENTION,
            f'Προστέθηκε η παρέμβαση: "{name}".',
            ctx,
        )
        return project

    def update(
        self,
        project: Project,
        master_id: str,
        quantity: float,
        ctx: MutationContext,
        selected_energy_spec: Optional[str] = None,
        selected_system_class: Optional[str] = None,
        subcategory: Optional[str] = None,
        catalog_entry: Optional[MasterIntervention] = None,
    ) -> Project:
        """
        Change quantity / selections (and optionally the display name).
        Omitted selections keep their value; a blank string clears one.
        Catalog caps are refreshed from `catalog_entry` when supplied.
        """
        project = _clone(project)
        intervention = find_intervention(project, master_id)
        require_intervention_editable(intervention)
        require_min_quantity(quantity)

        intervention.quantity = quantity
        if selected_energy_spec is not None:
            intervention.selected_energy_spec = _blank_to_none(selected_energy_spec)
        if selected_system_class is not None:
            intervention.selected_system_class = _blank_to_none(selected_system_class)
        if subcategory is not None:
            subcategory = require_min_length(subcategory, "subcategory")
            intervention.intervention_subcategory = subcategory
            if intervention.is_custom:
                intervention.intervention_category = subcategory
                intervention.expense_category = subcategory
        if catalog_entry is not None:
            intervention.max_unit_price = catalog_entry.max_unit_price
            intervention.max_amount = catalog_entry.max_amount

        if intervention.sub_interventions:
            intervention.total_cost = intervention_total_cost(intervention)
        elif not intervention.is_custom:
            intervention.total_cost = seeded_total_cost(
                quantity, intervention.max_unit_price, intervention.max_amount
            )
        _recompute_budget(project)
        _audit.record(
            project,
            AuditAction.UPDATE_INTERVENTION,
            f'Ενημερώθηκε: "{intervention.intervention_category}". Νέα ποσότητα: {quantity}.',
            ctx,
        )
        return project

    def update_costs(
        self,
        project: Project,
        master_id: str,
        ctx: MutationContext,
        cost_of_materials: Optional[float] = None,
        cost_of_labor: Optional[float] = None,
    ) -> Project:
        """Record the manual quotation costs used while no sub-interventions exist."""
        require_non_negative(cost_of_materials, "cost_of_materials")
        require_non_negative(cost_of_labor, "cost_of_labor")
        project = _clone(project)
        intervention = find_intervention(project, master_id)
        if cost_of_materials is not None:
            intervention.cost_of_materials = cost_of_materials
        if cost_of_labor is not None:
            intervention.cost_of_labor = cost_of_labor
        _audit.record(
            project,
            AuditAction.UPDATE_INTERVENTION_COSTS,
            f'Ενημερώθηκε το κόστος της παρέμβασης "{intervention.intervention_category}".',
            ctx,
        )
        return project

    def delete(self, project: Project, master_id: str, ctx: MutationContext) -> Project:
        project = _clone(project)
        intervention = find_intervention(project, master_id)
        require_intervention_deletable(intervention)
        project.interventions.remove(intervention)
        _recompute_budget(project)
        _audit.record(
            project,
            AuditAction.DELETE_INTERVENTION,
            f'Διαγράφηκε: "{intervention.intervention_category}".',
            ctx,
        )
        return project

    def _default_stages(
        self, project: Project, offsets: Sequence[int], ctx: MutationContext
    ) -> List[Stage]:
        project_deadline = _aware(project.deadline)
        stages = []
        for title, offset in zip(DEFAULT_STAGE_TITLES, offsets):
            deadline = ctx.now + timedelta(days=offset)
            if project_deadline is not None and deadline > project_deadline:
                deadline = project_deadline
            stages.append(
                Stage(
                    id=ctx.new_id("stage"),
                    title=title,
                    status=StageStatus.PENDING,
                    deadline=deadline,
                    last_updated=ctx.now,
                )
            )
        return stages


# ---------------------------------------------------------------------------
# SubInterventionService
# ---------------------------------------------------------------------------

@dataclass
class SubInterventionFields:
    """The editable fields of a sub-intervention, as entered by a user."""
    subcategory_code: str
    description: str
    cost: float
    expense_category: Optional[str] = None
    quantity: Optional[float] = None
    quantity_unit: Optional[str] = None
    cost_of_materials: Optional[float] = None
    cost_of_labor: Optional[float] = None
    unit_cost: Optional[float] = None
    implemented_quantity: Optional[float] = None
    selected_energy_spec: Optional[str] = None


def _validate_sub_fields(fields: SubInterventionFields) -> None:
    require_min_length(fields.subcategory_code, "subcategory_code", minimum=1)
    require_min_length(fields.description, "description")
    require_positive(fields.cost, "cost")
    require_non_negative(fields.quantity, "quantity")
    require_non_negative(fields.cost_of_materials, "cost_of_materials")
    require_non_negative(fields.cost_of_labor, "cost_of_labor")
    require_non_negative(fields.unit_cost, "unit_cost")
    require_non_negative(fields.implemented_quantity, "implemented_quantity")


def _apply_sub_fields(sub: SubIntervention, fields: SubInterventionFields) -> None:
    sub.subcategory_code = fields.subcategory_code.strip()
    sub.description = fields.description.strip()
    sub.cost = fields.cost
    sub.expense_category = _blank_to_none(fields.expense_category)
    sub.quantity = fields.quantity
    sub.quantity_unit = _blank_to_none(fields.quantity_unit)
    sub.cost_of_materials = fields.cost_of_materials or 0.0
    sub.cost_of_labor = fields.cost_of_labor or 0.0
    sub.unit_cost = fields.unit_cost or 0.0
    sub.implemented_quantity = fields.implemented_quantity or 0.0
    sub.selected_energy_spec = _blank_to_none(fields.selected_energy_spec)


class SubInterventionService:
    """
    Line items of an intervention.  Each change recomputes the owning
    intervention's total cost; the project budget follows on the next
    metrics pass.
    """

    def add(
        self,
        project: Project,
        master_id: str,
        fields: SubInterventionFields,
        ctx: MutationContext,
    ) -> Project:
        _validate_sub_fields(fields)
        project = _clone(project)
        intervention = find_intervention(project, master_id)
        sub = SubIntervention(id=ctx.new_id("sub"))
        _apply_sub_fields(sub, fields)
        intervention.sub_interventions.append(sub)
        intervention.total_cost = intervention_total_cost(intervention)
        _audit.record(
            project,
            AuditAction.ADD_SUB_INTERVENTION,
            f'Προστέθηκε η υπο-παρέμβαση "{sub.description}" στην παρέμβαση '
            f'"{intervention.intervention_category}".',
            ctx,
        )
        return project

    def update(
        self,
        project: Project,
        master_id: str,
        sub_id: str,
        fields: SubInterventionFields,
        ctx: MutationContext,
    ) -> Project:
        _validate_sub_fields(fields)
        project = _clone(project)
        intervention = find_intervention(project, master_id)
        sub = find_sub_intervention(intervention, sub_id)
        _apply_sub_fields(sub, fields)
        intervention.total_cost = intervention_total_cost(intervention)
        _audit.record(
            project,
            AuditAction.UPDATE_SUB_INTERVENTION,
            f'Επεξεργάστηκε η υπο-παρέμβαση "{sub.description}" στην παρέμβαση '
            f'"{intervention.intervention_category}".',
            ctx,
        )
        return project

    def delete(
        self, project: Project, master_id: str, sub_id: str, ctx: MutationContext
    ) -> Project:
        project = _clone(project)
        intervention = find_intervention(project, master_id)
        sub = find_sub_intervention(intervention, sub_id)
        intervention.sub_interventions.remove(sub)
        intervention.total_cost = intervention_total_cost(intervention)
        _audit.record(
            project,
            AuditAction.DELETE_SUB_INTERVENTION,
            f'Διαγράφηκε η υπο-παρέμβαση "{sub.description}" από την παρέμβαση '
            f'"{intervention.intervention_category}".',
            ctx,
        )
        return project

    def move(
        self,
        project: Project,
        master_id: str,
        sub_id: str,
        direction: MoveDirection,
        ctx: MutationContext,
    ) -> Tuple[Project, bool]:
        """
        Swap with the physically adjacent line item.  Returns the (possibly
        unchanged) project and whether anything moved.
        """
        intervention = find_intervention(project, master_id)
        find_sub_intervention(intervention, sub_id)
        subs = intervention.sub_interventions
        from_index = _index_of(subs, lambda s: s.id == sub_id)
        to_index = _neighbour_index(subs, from_index, direction)
        if to_index is None:
            return project, False

        project = _clone(project)
        subs = find_intervention(project, master_id).sub_interventions
        subs[from_index], subs[to_index] = subs[to_index], subs[from_index]
        _audit.record(
            project,
            AuditAction.MOVE_SUB_INTERVENTION,
            f'Άλλαξε η σειρά της υπο-παρέμβασης "{subs[to_index].description}".',
            ctx,
        )
        return project, True


# ---------------------------------------------------------------------------
# StageService
# ---------------------------------------------------------------------------

class StageService:
    """Stage CRUD, ordering, status changes and attachments."""

    def add(
        self,
        project: Project,
        master_id: str,
        title: str,
        deadline: datetime,
        ctx: MutationContext,
        notes: Optional[str] = None,
        assignee_contact_id: Optional[str] = None,
        supervisor_contact_id: Optional[str] = None,
    ) -> Project:
        title = require_min_length(title, "title")
        require_stage_deadline_within_project(project, deadline)
        project = _clone(project)
        intervention = find_intervention(project, master_id)
        stage = Stage(
            id=ctx.new_id("stage"),
            title=title,
            status=StageStatus.PENDING,
            deadline=_aware(deadline),
            last_updated=ctx.now,
            notes=_blank_to_none(notes),
            assignee_contact_id=_contact_ref(assignee_contact_id),
            supervisor_contact_id=_contact_ref(supervisor_contact_id),
        )
        intervention.stages.append(stage)
        _audit.record(
            project,
            AuditAction.ADD_STAGE,
            f'Προστέθηκε το στάδιο "{title}" στην παρέμβαση '
            f'"{intervention.intervention_category}".',
            ctx,
        )
        return project

    def update(
        self,
        project: Project,
        stage_id: str,
        title: str,
        deadline: datetime,
        ctx: MutationContext,
        notes: Optional[str] = None,
        assignee_contact_id: Optional[str] = None,
        supervisor_contact_id: Optional[str] = None,
    ) -> Project:
        project = _clone(project)
        intervention, stage = find_stage(project, stage_id)
        require_stage_editable(stage)
        title = require_min_length(title, "title")
        require_stage_deadline_within_project(project, deadline)

        stage.title = title
        stage.deadline = _aware(deadline)
        stage.notes = _blank_to_none(notes)
        stage.assignee_contact_id = _contact_ref(assignee_contact_id)
        stage.supervisor_contact_id = _contact_ref(supervisor_contact_id)
        stage.last_updated = ctx.now
        _audit.record(
            project,
            AuditAction.UPDATE_STAGE,
            f'Επεξεργάστηκε το στάδιο "{title}" στην παρέμβαση '
            f'"{intervention.intervention_category}".',
            ctx,
        )
        return project

    def delete(self, project: Project, stage_id: str, ctx: MutationContext) -> Project:
        project = _clone(project)
        intervention, stage = find_stage(project, stage_id)
        require_stage_editable(stage)
        intervention.stages.remove(stage)
        _audit.record(
            project,
            AuditAction.DELETE_STAGE,
            f'Διαγράφηκε το στάδιο "{stage.title}" από την παρέμβαση '
            f'"{intervention.intervention_category}".',
            ctx,
        )
        return project

    def move(
        self,
        project: Project,
        master_id: str,
        stage_id: str,
        direction: MoveDirection,
        ctx: MutationContext,
    ) -> Tuple[Project, bool]:
        """
        Swap with the nearest stage of the same status in `direction`,
        skipping stages in other lanes.  No such neighbour is a no-op.
        """
        intervention = find_intervention(project, master_id)
        stages = intervention.stages
        from_index = _index_of(stages, lambda s: s.id == stage_id)
        if from_index == -1:
            raise NotFoundError(NotFoundKind.STAGE, stage_id)
        lane = stages[from_index].status
        to_index = _neighbour_index(
            stages, from_index, direction, same_lane=lambda s: s.status == lane
        )
        if to_index is None:
            return project, False

        project = _clone(project)
        stages = find_intervention(project, master_id).stages
        stages[from_index], stages[to_index] = stages[to_index], stages[from_index]
        _audit.record(
            project,
            AuditAction.MOVE_STAGE,
            f'Άλλαξε η σειρά του σταδίου "{stages[to_index].title}".',
            ctx,
        )
        return project, True

    def change_status(
        self,
        project: Project,
        stage_id: str,
        action: StageAction,
        ctx: MutationContext,
    ) -> Project:
        project = _clone(project)
        intervention, stage = find_stage(project, stage_id)
        updated = apply_stage_action(stage, action, ctx.now)
        _replace_stage(intervention, updated)
        _audit.record(
            project,
            AuditAction.UPDATE_STAGE_STATUS,
            f'Η κατάσταση του σταδίου "{updated.title}" στην παρέμβαση '
            f'"{intervention.intervention_category}" άλλαξε σε "{updated.status.value}".',
            ctx,
        )
        return project

    def add_file(
        self, project: Project, stage_id: str, name: str, url: str, ctx: MutationContext
    ) -> Project:
        name = require_min_length(name, "name", minimum=1)
        project = _clone(project)
        _, stage = find_stage(project, stage_id)
        stage.files.append(
            Attachment(id=ctx.new_id("file"), name=name, url=url, uploaded_at=ctx.now)
        )
        stage.last_updated = ctx.now
        _audit.record(
            project,
            AuditAction.ADD_FILE,
            f'Το αρχείο "{name}" προστέθηκε στο στάδιο "{stage.title}".',
            ctx,
        )
        return project

    def log_notification(
        self, project: Project, stage_id: str, recipient_name: str, ctx: MutationContext
    ) -> Project:
        """Record that the stage assignee was notified; the stage itself is untouched."""
        project = _clone(project)
        intervention, stage = find_stage(project, stage_id)
        _audit.record(
            project,
            AuditAction.SEND_EMAIL,
            f'Εστάλη ειδοποίηση στον/στην {recipient_name} για το στάδιο "{stage.title}" '
            f'της παρέμβασης "{intervention.intervention_category}".',
            ctx,
        )
        return project
