"""
application.py

Application layer for the Renovation Subsidy Project Management System.

Overview
--------
The application layer sits between the presentation layer (API) and the
service layer.  It is responsible for:

  1. Defining clean input/output DTOs (dataclasses) that carry only the data
     the presentation layer needs; no raw domain objects are leaked upward.
  2. Declaring abstract collaborator interfaces (project repository, catalog,
     contact directory, clock, id generator) so the application layer stays
     persistence-agnostic (implementations live in infrastructure.py).
  3. Declaring the async UnitOfWork that bundles those collaborators.
  4. Implementing Use Case handlers, one class per user-facing operation.

Every mutation follows the same shape: load the Project aggregate once,
apply a pure service transform, run a server-mode metrics pass, and save
the whole aggregate once, conditional on the version that was loaded.  A
version conflict re-runs the whole read-modify-write (see _run_mutation).

Structure
---------
DTOs
    ProjectDTO, InterventionDTO, SubInterventionDTO, StageDTO, AttachmentDTO
    AuditEntryDTO, FinancialSummaryDTO, ProjectFinancialsDTO
    StageLanesDTO, MoveResultDTO, StageContextDTO
    CatalogEntryDTO, ContactDTO

Collaborator interfaces
    AbstractProjectRepository
    AbstractCatalog
    AbstractContactDirectory
    Clock
    IdGenerator

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Projects ---
    CreateProjectUseCase, UpdateProjectUseCase, ActivateProjectUseCase,
    DeleteProjectUseCase, GetProjectUseCase, ListProjectsUseCase,
    GetProjectFinancialsUseCase, GetAuditLogUseCase, SearchStagesUseCase

    --- Interventions ---
    AddInterventionUseCase, AddCustomInterventionUseCase,
    UpdateInterventionUseCase, UpdateInterventionCostsUseCase,
    DeleteInterventionUseCase

    --- Sub-interventions ---
    AddSubInterventionUseCase, UpdateSubInterventionUseCase,
    DeleteSubInterventionUseCase, MoveSubInterventionUseCase

    --- Stages ---
    AddStageUseCase, UpdateStageUseCase, DeleteStageUseCase,
    MoveStageUseCase, ChangeStageStatusUseCase, GetStageLanesUseCase,
    AttachFileUseCase, NotifyStageAssigneeUseCase

    --- Reference data ---
    ListCatalogUseCase, ListContactsUseCase

Design notes
------------
- Use cases receive commands and return DTOs only.
- Each use case accepts a UnitOfWork as its sole dependency.
- All timestamps flowing out are ISO-8601 strings (UTC).
- Errors bubble up as the typed exceptions of errors.py.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from config import get_settings
from errors import ConcurrencyError, EngineError, NotFoundError, NotFoundKind
from logger import get_logger
from model import (
    Actor,
    Attachment,
    AuditEntry,
    Contact,
    FinancialSummary,
    Intervention,
    MasterIntervention,
    MoveDirection,
    Project,
    Stage,
    StageAction,
    SubIntervention,
)
from service import (
    AuditService,
    InterventionService,
    MutationContext,
    ProjectService,
    StageContext,
    StageService,
    SubInterventionFields,
    SubInterventionService,
    classify_profitability,
    compute_metrics,
    find_intervention,
    find_stage,
    find_stage_context,
    format_margin,
    greek_sort_key,
    intervention_financials,
    profitability,
    project_financials,
    stage_lanes,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _money(value: Optional[float]) -> float:
    return round(value or 0.0, 2)


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

@dataclass
class ActorDTO:
    id: str
    name: str
    email: str
    role: str


@dataclass
class AttachmentDTO:
    id: str
    name: str
    url: str
    uploaded_at: Optional[str]


@dataclass
class StageDTO:
    id: str
    title: str
    status: str
    deadline: Optional[str]
    last_updated: Optional[str]
    notes: Optional[str]
    assignee_contact_id: Optional[str]
    supervisor_contact_id: Optional[str]
    files: List[AttachmentDTO]


@dataclass
class SubInterventionDTO:
    id: str
    subcategory_code: str
    display_code: Optional[str]
    description: str
    cost: float
    expense_category: Optional[str]
    quantity: Optional[float]
    quantity_unit: Optional[str]
    cost_of_materials: float
    cost_of_labor: float
    unit_cost: float
    implemented_quantity: float
    selected_energy_spec: Optional[str]
    internal_cost: float
    profit: float
    margin: Optional[float]


@dataclass
class InterventionDTO:
    master_id: str
    code: str
    display_name: str
    expense_category: str
    intervention_category: str
    intervention_subcategory: Optional[str]
    is_custom: bool
    quantity: float
    unit: Optional[str]
    max_unit_price: float
    max_amount: float
    info: Optional[str]
    energy_specs_options: Optional[str]
    selected_energy_spec: Optional[str]
    selected_system_class: Optional[str]
    cost_of_materials: Optional[float]
    cost_of_labor: Optional[float]
    total_cost: float
    sub_interventions: List[SubInterventionDTO]
    stages: List[StageDTO]


@dataclass
class AuditEntryDTO:
    id: str
    user: ActorDTO
    action: str
    timestamp: Optional[str]
    details: str


@dataclass
class ProjectDTO:
    id: str
    title: str
    owner_contact_id: str
    application_number: Optional[str]
    deadline: Optional[str]
    status: str
    budget: float
    progress: int
    alerts: int
    version: int
    created_at: Optional[str]
    interventions: List[InterventionDTO]
    audit_log: List[AuditEntryDTO]


@dataclass
class FinancialSummaryDTO:
    program_budget: float
    internal_cost: float
    profit: float
    margin: Optional[float]
    classification: str


@dataclass
class InterventionFinancialsDTO:
    master_id: str
    display_name: str
    summary: FinancialSummaryDTO


@dataclass
class ProjectFinancialsDTO:
    project_id: str
    summary: FinancialSummaryDTO
    interventions: List[InterventionFinancialsDTO]


@dataclass
class StageLanesDTO:
    project_id: str
    master_id: str
    lanes: Dict[str, List[StageDTO]]


@dataclass
class MoveResultDTO:
    moved: bool
    project: ProjectDTO


@dataclass
class StageContextDTO:
    project_id: str
    project_title: str
    intervention_master_id: str
    stage_id: str
    stage_title: str


@dataclass
class CatalogEntryDTO:
    id: str
    code: str
    expense_category: str
    intervention_category: str
    intervention_subcategory: Optional[str]
    unit: str
    max_unit_price: float
    max_amount: float
    info: Optional[str]
    energy_specs_options: Optional[str]


@dataclass
class ContactDTO:
    id: str
    full_name: str
    email: Optional[str]
    role: str
    company: Optional[str]


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def actor(a: Actor) -> ActorDTO:
        return ActorDTO(id=a.id, name=a.name, email=a.email, role=getattr(a.role, "value", a.role))

    @staticmethod
    def attachment(f: Attachment) -> AttachmentDTO:
        return AttachmentDTO(id=f.id, name=f.name, url=f.url, uploaded_at=_fmt(f.uploaded_at))

    @staticmethod
    def stage(s: Stage) -> StageDTO:
        return StageDTO(
            id=s.id,
            title=s.title,
            status=getattr(s.status, "value", s.status),
            deadline=_fmt(s.deadline),
            last_updated=_fmt(s.last_updated),
            notes=s.notes,
            assignee_contact_id=s.assignee_contact_id,
            supervisor_contact_id=s.supervisor_contact_id,
            files=[_Assembler.attachment(f) for f in s.files],
        )

    @staticmethod
    def sub_intervention(s: SubIntervention) -> SubInterventionDTO:
        p = profitability(s)
        return SubInterventionDTO(
            id=s.id,
            subcategory_code=s.subcategory_code,
            display_code=s.display_code,
            description=s.description,
            cost=_money(s.cost),
            expense_category=s.expense_category,
            quantity=s.quantity,
            quantity_unit=s.quantity_unit,
            cost_of_materials=_money(s.cost_of_materials),
            cost_of_labor=_money(s.cost_of_labor),
            unit_cost=_money(s.unit_cost),
            implemented_quantity=s.implemented_quantity or 0.0,
            selected_energy_spec=s.selected_energy_spec,
            internal_cost=_money(p.internal_cost),
            profit=_money(p.profit),
            margin=format_margin(p.margin),
        )

    @staticmethod
    def intervention(i: Intervention) -> InterventionDTO:
        return InterventionDTO(
            master_id=i.master_id,
            code=i.code,
            display_name=i.display_name,
            expense_category=i.expense_category,
            intervention_category=i.intervention_category,
            intervention_subcategory=i.intervention_subcategory,
            is_custom=i.is_custom,
            quantity=i.quantity,
            unit=i.unit,
            max_unit_price=i.max_unit_price,
            max_amount=i.max_amount,
            info=i.info,
            energy_specs_options=i.energy_specs_options,
            selected_energy_spec=i.selected_energy_spec,
            selected_system_class=i.selected_system_class,
            cost_of_materials=i.cost_of_materials,
            cost_of_labor=i.cost_of_labor,
            total_cost=_money(i.total_cost),
            sub_interventions=[_Assembler.sub_intervention(s) for s in i.sub_interventions],
            stages=[_Assembler.stage(s) for s in i.stages],
        )

    @staticmethod
    def audit_entry(e: AuditEntry) -> AuditEntryDTO:
        return AuditEntryDTO(
            id=e.id,
            user=_Assembler.actor(e.user),
            action=e.action,
            timestamp=_fmt(e.timestamp),
            details=e.details,
        )

    @staticmethod
    def project(p: Project) -> ProjectDTO:
        return ProjectDTO(
            id=p.id,
            title=p.title,
            owner_contact_id=p.owner_contact_id,
            application_number=p.application_number,
            deadline=_fmt(p.deadline),
            status=getattr(p.status, "value", p.status),
            budget=_money(p.budget),
            progress=p.progress,
            alerts=p.alerts,
            version=p.version,
            created_at=_fmt(p.created_at),
            interventions=[_Assembler.intervention(i) for i in p.interventions],
            audit_log=[_Assembler.audit_entry(e) for e in p.audit_log],
        )

    @staticmethod
    def financial_summary(s: FinancialSummary) -> FinancialSummaryDTO:
        return FinancialSummaryDTO(
            program_budget=_money(s.program_budget),
            internal_cost=_money(s.internal_cost),
            profit=_money(s.profit),
            margin=format_margin(s.margin),
            classification=classify_profitability(s),
        )

    @staticmethod
    def stage_context(c: StageContext) -> StageContextDTO:
        return StageContextDTO(
            project_id=c.project_id,
            project_title=c.project_title,
            intervention_master_id=c.intervention_master_id,
            stage_id=c.stage_id,
            stage_title=c.stage_title,
        )

    @staticmethod
    def catalog_entry(m: MasterIntervention) -> CatalogEntryDTO:
        return CatalogEntryDTO(
            id=m.id,
            code=m.code,
            expense_category=m.expense_category,
            intervention_category=m.intervention_category,
            intervention_subcategory=m.intervention_subcategory,
            unit=m.unit,
            max_unit_price=m.max_unit_price,
            max_amount=m.max_amount,
            info=m.info,
            energy_specs_options=m.energy_specs_options,
        )

    @staticmethod
    def contact(c: Contact) -> ContactDTO:
        return ContactDTO(
            id=c.id,
            full_name=c.full_name,
            email=c.email,
            role=c.role,
            company=c.company,
        )


# ===========================================================================
# COLLABORATOR INTERFACES
# ===========================================================================

class AbstractProjectRepository(abc.ABC):
    """
    Whole-aggregate storage.  `save` is conditional: it succeeds only when
    the stored version still equals `expected_version`, and returns the new
    version; otherwise it raises ConcurrencyError without writing.
    """

    @abc.abstractmethod
    async def get(self, project_id: str) -> Optional[Project]: ...
    @abc.abstractmethod
    async def list_all(self) -> List[Project]: ...
    @abc.abstractmethod
    async def add(self, project: Project) -> int: ...
    @abc.abstractmethod
    async def save(self, project: Project, expected_version: int) -> int: ...
    @abc.abstractmethod
    async def delete(self, project_id: str) -> None: ...


class AbstractCatalog(abc.ABC):
    @abc.abstractmethod
    async def get(self, entry_id: str) -> Optional[MasterIntervention]: ...
    @abc.abstractmethod
    async def list_all(self) -> List[MasterIntervention]: ...


class AbstractContactDirectory(abc.ABC):
    @abc.abstractmethod
    async def get(self, contact_id: str) -> Optional[Contact]: ...
    @abc.abstractmethod
    async def list_all(self) -> List[Contact]: ...


class Clock(abc.ABC):
    @abc.abstractmethod
    def now(self) -> datetime: ...


class IdGenerator(abc.ABC):
    @abc.abstractmethod
    def new_id(self, prefix: str) -> str: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Bundles the collaborators of one use case under a single boundary.
    Use as an async context manager:

        async with uow:
            project = await uow.projects.get(project_id)
            ...
            await uow.projects.save(project, expected_version)
            await uow.commit()
    """
    projects: AbstractProjectRepository
    catalog: AbstractCatalog
    contacts: AbstractContactDirectory
    clock: Clock
    ids: IdGenerator

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            await self.rollback()
        else:
            await self.commit()

    @abc.abstractmethod
    async def commit(self) -> None: ...

    @abc.abstractmethod
    async def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_project_svc = ProjectService()
_intervention_svc = InterventionService()
_sub_svc = SubInterventionService()
_stage_svc = StageService()
_audit_svc = AuditService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

# A mutation receives the loaded project and returns the new aggregate,
# or None when the request turned out to be a no-op.
Mutation = Callable[[Project, MutationContext], Awaitable[Optional[Project]]]


async def _get_project_or_raise(uow: AbstractUnitOfWork, project_id: str) -> Project:
    project = await uow.projects.get(project_id)
    if project is None:
        raise NotFoundError(NotFoundKind.PROJECT, project_id)
    return project


async def _get_contact_or_raise(uow: AbstractUnitOfWork, contact_id: Optional[str]) -> Contact:
    contact = await uow.contacts.get(contact_id) if contact_id else None
    if contact is None:
        raise NotFoundError(NotFoundKind.CONTACT, contact_id or "unassigned")
    return contact


async def _run_mutation(
    uow: AbstractUnitOfWork,
    project_id: str,
    actor: Actor,
    operation: str,
    mutate: Mutation,
) -> Tuple[Project, bool]:
    """
    Load → mutate → metrics → conditional save, retried on version conflict.

    Returns the resulting project and whether anything was written.
    """
    retries = max(0, get_settings().MAX_CONFLICT_RETRIES)
    attempt = 0
    while True:
        try:
            async with uow:
                loaded = await _get_project_or_raise(uow, project_id)
                ctx = MutationContext(actor=actor, now=uow.clock.now(), new_id=uow.ids.new_id)
                updated = await mutate(loaded, ctx)
                if updated is None:
                    logger.debug("%s on project %s was a no-op", operation, project_id)
                    return loaded, False
                updated = compute_metrics(updated)
                updated.version = await uow.projects.save(updated, expected_version=loaded.version)
                await uow.commit()
        except ConcurrencyError as exc:
            attempt += 1
            if attempt > retries:
                logger.warning(
                    "%s on project %s gave up after %d attempts: %s",
                    operation, project_id, attempt, exc.message,
                )
                raise
            logger.info(
                "Version conflict during %s on project %s, retrying (%d/%d)",
                operation, project_id, attempt, retries,
            )
            continue
        except EngineError as exc:
            logger.info("%s on project %s rejected: [%s] %s", operation, project_id, exc.code, exc.message)
            raise
        logger.info(
            "%s applied to project %s by %s (version %d)",
            operation, project_id, actor.id or actor.name, updated.version,
        )
        return updated, True


def _stage_offsets(seed_default_stages: Optional[bool]) -> Optional[List[int]]:
    settings = get_settings()
    seed = settings.SEED_DEFAULT_STAGES if seed_default_stages is None else seed_default_stages
    return list(settings.DEFAULT_STAGE_OFFSETS_DAYS) if seed else None


# ===========================================================================
# USE CASES — PROJECTS
# ===========================================================================

@dataclass
class CreateProjectCommand:
    title: str
    owner_contact_id: str
    actor: Actor
    application_number: Optional[str] = None
    deadline: Optional[datetime] = None


class CreateProjectUseCase:
    """Create a new project in Quotation status for an existing owner contact."""

    async def execute(self, cmd: CreateProjectCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async with uow:
            await _get_contact_or_raise(uow, cmd.owner_contact_id)
            ctx = MutationContext(actor=cmd.actor, now=uow.clock.now(), new_id=uow.ids.new_id)
            project = _project_svc.create_project(
                title=cmd.title,
                owner_contact_id=cmd.owner_contact_id,
                ctx=ctx,
                application_number=cmd.application_number,
                deadline=cmd.deadline,
            )
            project = compute_metrics(project)
            project.version = await uow.projects.add(project)
            await uow.commit()
        logger.info("Project %s created by %s", project.id, cmd.actor.id or cmd.actor.name)
        return _Assembler.project(project)


@dataclass
class UpdateProjectCommand:
    project_id: str
    actor: Actor
    title: Optional[str] = None
    application_number: Optional[str] = None
    owner_contact_id: Optional[str] = None
    deadline: Optional[datetime] = None


class UpdateProjectUseCase:
    async def execute(self, cmd: UpdateProjectCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            if cmd.owner_contact_id is not None:
                await _get_contact_or_raise(uow, cmd.owner_contact_id)
            return _project_svc.update_project(
                project,
                ctx,
                title=cmd.title,
                application_number=cmd.application_number,
                owner_contact_id=cmd.owner_contact_id,
                deadline=cmd.deadline,
            )

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "update project", mutate)
        return _Assembler.project(project)


@dataclass
class ActivateProjectCommand:
    project_id: str
    actor: Actor


class ActivateProjectUseCase:
    """Quotation → On Track.  Rejected for any other status."""

    async def execute(self, cmd: ActivateProjectCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _project_svc.activate(project, ctx)

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "activate project", mutate)
        return _Assembler.project(project)


@dataclass
class DeleteProjectCommand:
    project_id: str
    actor: Actor


class DeleteProjectUseCase:
    async def execute(self, cmd: DeleteProjectCommand, uow: AbstractUnitOfWork) -> None:
        async with uow:
            await _get_project_or_raise(uow, cmd.project_id)
            await uow.projects.delete(cmd.project_id)
            await uow.commit()
        logger.info("Project %s deleted by %s", cmd.project_id, cmd.actor.id or cmd.actor.name)


class GetProjectUseCase:
    """
    Read one project.  With `time_sensitive=True` the metrics are
    recomputed against the clock (overdue alerts, Delayed status); the
    result is for display only and is never written back.
    """

    async def execute(
        self, project_id: str, uow: AbstractUnitOfWork, time_sensitive: bool = False
    ) -> ProjectDTO:
        async with uow:
            project = await _get_project_or_raise(uow, project_id)
            if time_sensitive:
                project = compute_metrics(project, time_sensitive=True, now=uow.clock.now())
            return _Assembler.project(project)


class ListProjectsUseCase:
    async def execute(self, uow: AbstractUnitOfWork, time_sensitive: bool = False) -> List[ProjectDTO]:
        async with uow:
            projects = await uow.projects.list_all()
            now = uow.clock.now()
            if time_sensitive:
                projects = [compute_metrics(p, time_sensitive=True, now=now) for p in projects]
            projects.sort(key=lambda p: greek_sort_key(p.title))
            return [_Assembler.project(p) for p in projects]


class GetProjectFinancialsUseCase:
    async def execute(self, project_id: str, uow: AbstractUnitOfWork) -> ProjectFinancialsDTO:
        async with uow:
            project = await _get_project_or_raise(uow, project_id)
            return ProjectFinancialsDTO(
                project_id=project.id,
                summary=_Assembler.financial_summary(project_financials(project)),
                interventions=[
                    InterventionFinancialsDTO(
                        master_id=i.master_id,
                        display_name=i.display_name,
                        summary=_Assembler.financial_summary(intervention_financials(i)),
                    )
                    for i in project.interventions
                ],
            )


class GetAuditLogUseCase:
    """Newest-first audit entries of a project."""

    async def execute(
        self, project_id: str, uow: AbstractUnitOfWork, limit: Optional[int] = None
    ) -> List[AuditEntryDTO]:
        async with uow:
            project = await _get_project_or_raise(uow, project_id)
            return [_Assembler.audit_entry(e) for e in _audit_svc.entries(project, limit)]


class SearchStagesUseCase:
    """Resolve a free-text (Greek or Greeklish) query to the first matching stage."""

    async def execute(self, query: str, uow: AbstractUnitOfWork) -> Optional[StageContextDTO]:
        async with uow:
            projects = await uow.projects.list_all()
            projects.sort(key=lambda p: greek_sort_key(p.title))
            context = find_stage_context(projects, query)
            return _Assembler.stage_context(context) if context else None


# ===========================================================================
# USE CASES — INTERVENTIONS
# ===========================================================================

@dataclass
class AddInterventionCommand:
    project_id: str
    catalog_entry_id: str
    quantity: float
    actor: Actor
    selected_energy_spec: Optional[str] = None
    selected_system_class: Optional[str] = None
    seed_default_stages: Optional[bool] = None


class AddInterventionUseCase:
    """
    Add a catalog intervention.  Its cost is seeded from the catalog caps
    and, unless disabled, the default execution stages are created.
    """

    async def execute(self, cmd: AddInterventionCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            entry = await uow.catalog.get(cmd.catalog_entry_id)
            if entry is None:
                raise NotFoundError(NotFoundKind.CATALOG_ENTRY, cmd.catalog_entry_id)
            return _intervention_svc.add_from_catalog(
                project,
                entry,
                cmd.quantity,
                ctx,
                selected_energy_spec=cmd.selected_energy_spec,
                selected_system_class=cmd.selected_system_class,
                stage_offsets_days=_stage_offsets(cmd.seed_default_stages),
            )

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "add intervention", mutate)
        return _Assembler.project(project)


@dataclass
class AddCustomInterventionCommand:
    project_id: str
    name: str
    actor: Actor


class AddCustomInterventionUseCase:
    async def execute(self, cmd: AddCustomInterventionCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _intervention_svc.add_custom(project, cmd.name, ctx)

        project, _ = await _run_mutation(
            uow, cmd.project_id, cmd.actor, "add custom intervention", mutate
        )
        return _Assembler.project(project)


@dataclass
class UpdateInterventionCommand:
    project_id: str
    master_id: str
    quantity: float
    actor: Actor
    selected_energy_spec: Optional[str] = None
    selected_system_class: Optional[str] = None
    subcategory: Optional[str] = None


class UpdateInterventionUseCase:
    """Rejected once any stage of the intervention is completed."""

    async def execute(self, cmd: UpdateInterventionCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            intervention = find_intervention(project, cmd.master_id)
            entry = None if intervention.is_custom else await uow.catalog.get(cmd.master_id)
            return _intervention_svc.update(
                project,
                cmd.master_id,
                cmd.quantity,
                ctx,
                selected_energy_spec=cmd.selected_energy_spec,
                selected_system_class=cmd.selected_system_class,
                subcategory=cmd.subcategory,
                catalog_entry=entry,
            )

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "update intervention", mutate)
        return _Assembler.project(project)


@dataclass
class UpdateInterventionCostsCommand:
    project_id: str
    master_id: str
    actor: Actor
    cost_of_materials: Optional[float] = None
    cost_of_labor: Optional[float] = None


class UpdateInterventionCostsUseCase:
    async def execute(self, cmd: UpdateInterventionCostsCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _intervention_svc.update_costs(
                project,
                cmd.master_id,
                ctx,
                cost_of_materials=cmd.cost_of_materials,
                cost_of_labor=cmd.cost_of_labor,
            )

        project, _ = await _run_mutation(
            uow, cmd.project_id, cmd.actor, "update intervention costs", mutate
        )
        return _Assembler.project(project)


@dataclass
class DeleteInterventionCommand:
    project_id: str
    master_id: str
    actor: Actor


class DeleteInterventionUseCase:
    """Allowed only while every stage of the intervention is still pending."""

    async def execute(self, cmd: DeleteInterventionCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _intervention_svc.delete(project, cmd.master_id, ctx)

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "delete intervention", mutate)
        return _Assembler.project(project)


# ===========================================================================
# USE CASES — SUB-INTERVENTIONS
# ===========================================================================

@dataclass
class SubInterventionCommandFields:
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

    def to_fields(self) -> SubInterventionFields:
        return SubInterventionFields(
            subcategory_code=self.subcategory_code,
            description=self.description,
            cost=self.cost,
            expense_category=self.expense_category,
            quantity=self.quantity,
            quantity_unit=self.quantity_unit,
            cost_of_materials=self.cost_of_materials,
            cost_of_labor=self.cost_of_labor,
            unit_cost=self.unit_cost,
            implemented_quantity=self.implemented_quantity,
            selected_energy_spec=self.selected_energy_spec,
        )


@dataclass
class AddSubInterventionCommand:
    project_id: str
    master_id: str
    fields: SubInterventionCommandFields
    actor: Actor


class AddSubInterventionUseCase:
    async def execute(self, cmd: AddSubInterventionCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _sub_svc.add(project, cmd.master_id, cmd.fields.to_fields(), ctx)

        project, _ = await _run_mutation(
            uow, cmd.project_id, cmd.actor, "add sub-intervention", mutate
        )
        return _Assembler.project(project)


@dataclass
class UpdateSubInterventionCommand:
    project_id: str
    master_id: str
    sub_intervention_id: str
    fields: SubInterventionCommandFields
    actor: Actor


class UpdateSubInterventionUseCase:
    async def execute(self, cmd: UpdateSubInterventionCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _sub_svc.update(
                project, cmd.master_id, cmd.sub_intervention_id, cmd.fields.to_fields(), ctx
            )

        project, _ = await _run_mutation(
            uow, cmd.project_id, cmd.actor, "update sub-intervention", mutate
        )
        return _Assembler.project(project)


@dataclass
class DeleteSubInterventionCommand:
    project_id: str
    master_id: str
    sub_intervention_id: str
    actor: Actor


class DeleteSubInterventionUseCase:
    async def execute(self, cmd: DeleteSubInterventionCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _sub_svc.delete(project, cmd.master_id, cmd.sub_intervention_id, ctx)

        project, _ = await _run_mutation(
            uow, cmd.project_id, cmd.actor, "delete sub-intervention", mutate
        )
        return _Assembler.project(project)


@dataclass
class MoveSubInterventionCommand:
    project_id: str
    master_id: str
    sub_intervention_id: str
    direction: MoveDirection
    actor: Actor


class MoveSubInterventionUseCase:
    """Swap with the adjacent line item; moving past either end is a no-op."""

    async def execute(self, cmd: MoveSubInterventionCommand, uow: AbstractUnitOfWork) -> MoveResultDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Optional[Project]:
            moved_project, moved = _sub_svc.move(
                project, cmd.master_id, cmd.sub_intervention_id, cmd.direction, ctx
            )
            return moved_project if moved else None

        project, moved = await _run_mutation(
            uow, cmd.project_id, cmd.actor, "move sub-intervention", mutate
        )
        return MoveResultDTO(moved=moved, project=_Assembler.project(project))


# ===========================================================================
# USE CASES — STAGES
# ===========================================================================

@dataclass
class AddStageCommand:
    project_id: str
    master_id: str
    title: str
    deadline: datetime
    actor: Actor
    notes: Optional[str] = None
    assignee_contact_id: Optional[str] = None
    supervisor_contact_id: Optional[str] = None


class AddStageUseCase:
    async def execute(self, cmd: AddStageCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _stage_svc.add(
                project,
                cmd.master_id,
                cmd.title,
                cmd.deadline,
                ctx,
                notes=cmd.notes,
                assignee_contact_id=cmd.assignee_contact_id,
                supervisor_contact_id=cmd.supervisor_contact_id,
            )

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "add stage", mutate)
        return _Assembler.project(project)


@dataclass
class UpdateStageCommand:
    project_id: str
    stage_id: str
    title: str
    deadline: datetime
    actor: Actor
    notes: Optional[str] = None
    assignee_contact_id: Optional[str] = None
    supervisor_contact_id: Optional[str] = None


class UpdateStageUseCase:
    """Completed stages are read-only."""

    async def execute(self, cmd: UpdateStageCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _stage_svc.update(
                project,
                cmd.stage_id,
                cmd.title,
                cmd.deadline,
                ctx,
                notes=cmd.notes,
                assignee_contact_id=cmd.assignee_contact_id,
                supervisor_contact_id=cmd.supervisor_contact_id,
            )

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "update stage", mutate)
        return _Assembler.project(project)


@dataclass
class DeleteStageCommand:
    project_id: str
    stage_id: str
    actor: Actor


class DeleteStageUseCase:
    async def execute(self, cmd: DeleteStageCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _stage_svc.delete(project, cmd.stage_id, ctx)

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "delete stage", mutate)
        return _Assembler.project(project)


@dataclass
class MoveStageCommand:
    project_id: str
    master_id: str
    stage_id: str
    direction: MoveDirection
    actor: Actor


class MoveStageUseCase:
    """
    Reorder within a status lane.  When no same-status neighbour exists in
    the requested direction nothing is written and `moved` is False.
    """

    async def execute(self, cmd: MoveStageCommand, uow: AbstractUnitOfWork) -> MoveResultDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Optional[Project]:
            moved_project, moved = _stage_svc.move(
                project, cmd.master_id, cmd.stage_id, cmd.direction, ctx
            )
            return moved_project if moved else None

        project, moved = await _run_mutation(uow, cmd.project_id, cmd.actor, "move stage", mutate)
        return MoveResultDTO(moved=moved, project=_Assembler.project(project))


@dataclass
class ChangeStageStatusCommand:
    project_id: str
    stage_id: str
    action: StageAction
    actor: Actor


class ChangeStageStatusUseCase:
    async def execute(self, cmd: ChangeStageStatusCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _stage_svc.change_status(project, cmd.stage_id, cmd.action, ctx)

        project, _ = await _run_mutation(
            uow, cmd.project_id, cmd.actor, f"{StageAction(cmd.action).value} stage", mutate
        )
        return _Assembler.project(project)


class GetStageLanesUseCase:
    """Stages of one intervention grouped by status, in sequence order."""

    async def execute(self, project_id: str, master_id: str, uow: AbstractUnitOfWork) -> StageLanesDTO:
        async with uow:
            project = await _get_project_or_raise(uow, project_id)
            intervention = find_intervention(project, master_id)
            lanes = stage_lanes(intervention.stages)
            return StageLanesDTO(
                project_id=project.id,
                master_id=master_id,
                lanes={
                    status.value: [_Assembler.stage(s) for s in stages]
                    for status, stages in lanes.items()
                },
            )


@dataclass
class AttachFileCommand:
    project_id: str
    stage_id: str
    name: str
    url: str
    actor: Actor


class AttachFileUseCase:
    async def execute(self, cmd: AttachFileCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            return _stage_svc.add_file(project, cmd.stage_id, cmd.name, cmd.url, ctx)

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "attach file", mutate)
        return _Assembler.project(project)


@dataclass
class NotifyStageAssigneeCommand:
    project_id: str
    stage_id: str
    actor: Actor


class NotifyStageAssigneeUseCase:
    """
    Record that the stage's assignee was notified.  The assignee is
    resolved through the contact directory; an unassigned stage or an
    unknown contact is a NotFoundError.
    """

    async def execute(self, cmd: NotifyStageAssigneeCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        async def mutate(project: Project, ctx: MutationContext) -> Project:
            _, stage = find_stage(project, cmd.stage_id)
            contact = await _get_contact_or_raise(uow, stage.assignee_contact_id)
            return _stage_svc.log_notification(project, cmd.stage_id, contact.full_name, ctx)

        project, _ = await _run_mutation(uow, cmd.project_id, cmd.actor, "notify assignee", mutate)
        return _Assembler.project(project)


# ===========================================================================
# USE CASES — REFERENCE DATA
# ===========================================================================

class ListCatalogUseCase:
    async def execute(self, uow: AbstractUnitOfWork) -> List[CatalogEntryDTO]:
        async with uow:
            entries = await uow.catalog.list_all()
            entries.sort(key=lambda m: (m.code, greek_sort_key(m.intervention_category)))
            return [_Assembler.catalog_entry(m) for m in entries]


class ListContactsUseCase:
    async def execute(self, uow: AbstractUnitOfWork) -> List[ContactDTO]:
        async with uow:
            contacts = await uow.contacts.list_all()
            contacts.sort(key=lambda c: greek_sort_key(c.full_name))
            return [_Assembler.contact(c) for c in contacts]
