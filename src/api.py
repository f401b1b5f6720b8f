"""
api.py

REST API layer for the Renovation Subsidy Project Management System.

Framework : FastAPI
Actor     : Every mutating request is attributed to an Actor resolved from
            the X-Actor-Id / X-Actor-Name / X-Actor-Email / X-Actor-Role
            headers by the get_actor dependency.  Requests without them are
            attributed to the system actor.  Authentication itself is out of
            scope and expected in front of this service.

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /projects                                   — project CRUD, activation
  │   ├── /{project_id}/financials                — profit / margin rollup
  │   ├── /{project_id}/audit                     — audit log (newest first)
  │   ├── /{project_id}/interventions             — interventions
  │   │   └── /{master_id}/sub-interventions      — priced line items
  │   │   └── /{master_id}/stages                 — add / reorder / lanes
  │   └── /{project_id}/stages/{stage_id}         — stage edits, status, files
  ├── /catalog                                    — subsidy catalog
  ├── /contacts                                   — contact directory
  └── /search                                     — Greek / Greeklish stage lookup

Error handling
--------------
  ValidationError        → 422  (body carries kind + field)
  NotFoundError          → 404
  InvalidTransitionError → 409
  ConcurrencyError       → 409
  StorageError           → 503
  ValueError             → 422

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>", "code": "<CODE>", ... }

Running
-------
  uvicorn api:app --reload
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Path, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi_mcp import FastApiMCP
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from config import get_settings
from errors import (
    ConcurrencyError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from infrastructure import InMemoryUnitOfWork
from logger import get_logger
from application import (
    AbstractUnitOfWork,
    # Use-case commands
    ActivateProjectCommand,
    AddCustomInterventionCommand,
    AddInterventionCommand,
    AddStageCommand,
    AddSubInterventionCommand,
    AttachFileCommand,
    ChangeStageStatusCommand,
    CreateProjectCommand,
    DeleteInterventionCommand,
    DeleteProjectCommand,
    DeleteStageCommand,
    DeleteSubInterventionCommand,
    MoveStageCommand,
    MoveSubInterventionCommand,
    NotifyStageAssigneeCommand,
    SubInterventionCommandFields,
    UpdateInterventionCommand,
    UpdateInterventionCostsCommand,
    UpdateProjectCommand,
    UpdateStageCommand,
    UpdateSubInterventionCommand,
    # Use-case classes
    ActivateProjectUseCase,
    AddCustomInterventionUseCase,
    AddInterventionUseCase,
    AddStageUseCase,
    AddSubInterventionUseCase,
    AttachFileUseCase,
    ChangeStageStatusUseCase,
    CreateProjectUseCase,
    DeleteInterventionUseCase,
    DeleteProjectUseCase,
    DeleteStageUseCase,
    DeleteSubInterventionUseCase,
    GetAuditLogUseCase,
    GetProjectFinancialsUseCase,
    GetProjectUseCase,
    GetStageLanesUseCase,
    ListCatalogUseCase,
    ListContactsUseCase,
    ListProjectsUseCase,
    MoveStageUseCase,
    MoveSubInterventionUseCase,
    NotifyStageAssigneeUseCase,
    SearchStagesUseCase,
    UpdateInterventionCostsUseCase,
    UpdateInterventionUseCase,
    UpdateProjectUseCase,
    UpdateStageUseCase,
    UpdateSubInterventionUseCase,
)
from model import Actor, MoveDirection, StageAction, UserRole

logger = get_logger(__name__)
settings = get_settings()

# Attributed to requests that carry no actor headers
SYSTEM_ACTOR = Actor(id="system", name="System", email="system@renovation.internal", role=UserRole.ADMIN)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title=f"{settings.APP_NAME} — Renovation Subsidy Project API",
    version=settings.APP_VERSION,
    description=(
        "REST API for renovation subsidy projects: quotations, interventions "
        "from the subsidy catalog, priced sub-interventions, execution stages, "
        "progress and profitability metrics, and a per-project audit log."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

def _error(status_code: int, exc, **extra) -> JSONResponse:
    content = {"detail": exc.message, "code": exc.code}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    return _error(422, exc, kind=exc.kind, field=exc.field)


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return _error(404, exc, kind=exc.kind)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request, exc: InvalidTransitionError):
    return _error(
        409, exc, subject=exc.subject, current=exc.current, requested=exc.requested
    )


@app.exception_handler(ConcurrencyError)
async def concurrency_handler(request, exc: ConcurrencyError):
    return _error(409, exc)


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc: StorageError):
    logger.error("Storage failure on %s: %s", request.url.path, exc.message)
    return _error(503, exc)


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    """Returns the in-memory Unit of Work (no database required)."""
    return InMemoryUnitOfWork()


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_email: Optional[str] = Header(default=None),
    x_actor_role: Optional[UserRole] = Header(default=None),
) -> Actor:
    if not x_actor_id and not x_actor_name:
        return dataclasses.replace(SYSTEM_ACTOR)
    return Actor(
        id=x_actor_id or "",
        name=x_actor_name or x_actor_id or "",
        email=x_actor_email or "",
        role=x_actor_role or UserRole.ADMIN,
    )


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

# ---------------------------------------------------------------------------
# Project schemas
# ---------------------------------------------------------------------------

class CreateProjectRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    owner_contact_id: str = Field(..., min_length=1)
    application_number: Optional[str] = Field(default=None, max_length=100)
    deadline: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return v.strip()


class UpdateProjectRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    application_number: Optional[str] = Field(default=None, max_length=100)
    owner_contact_id: Optional[str] = Field(default=None, min_length=1)
    deadline: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Intervention schemas
# ---------------------------------------------------------------------------

class AddInterventionRequest(BaseModel):
    catalog_entry_id: str = Field(..., min_length=1)
    quantity: float = Field(..., description="At least 0.1 units of the catalog unit.")
    selected_energy_spec: Optional[str] = None
    selected_system_class: Optional[str] = None
    seed_default_stages: Optional[bool] = Field(
        default=None,
        description="Create the default execution stages. Defaults to the server setting.",
    )


class AddCustomInterventionRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class UpdateInterventionRequest(BaseModel):
    quantity: float
    selected_energy_spec: Optional[str] = None
    selected_system_class: Optional[str] = None
    subcategory: Optional[str] = Field(default=None, max_length=200)


class UpdateInterventionCostsRequest(BaseModel):
    cost_of_materials: Optional[float] = None
    cost_of_labor: Optional[float] = None


# ---------------------------------------------------------------------------
# Sub-intervention schemas
# ---------------------------------------------------------------------------

class SubInterventionRequest(BaseModel):
    subcategory_code: str
    description: str
    cost: float = Field(..., description="Programme-approved price, VAT exclusive.")
    expense_category: Optional[str] = None
    quantity: Optional[float] = None
    quantity_unit: Optional[str] = None
    cost_of_materials: Optional[float] = None
    cost_of_labor: Optional[float] = None
    unit_cost: Optional[float] = None
    implemented_quantity: Optional[float] = None
    selected_energy_spec: Optional[str] = None

    def to_command_fields(self) -> SubInterventionCommandFields:
        return SubInterventionCommandFields(**self.model_dump())


class MoveRequest(BaseModel):
    direction: MoveDirection


# ---------------------------------------------------------------------------
# Stage schemas
# ---------------------------------------------------------------------------

class StageRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    deadline: datetime
    notes: Optional[str] = None
    assignee_contact_id: Optional[str] = None
    supervisor_contact_id: Optional[str] = None


class ChangeStageStatusRequest(BaseModel):
    action: StageAction


class AttachFileRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)

    @field_validator("url")
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL.")
        return v


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a new project quotation",
)
async def create_project(
    body: CreateProjectRequest,
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateProjectCommand(
        title=body.title,
        owner_contact_id=body.owner_contact_id,
        actor=actor,
        application_number=body.application_number,
        deadline=body.deadline,
    )
    result = await CreateProjectUseCase().execute(cmd, uow)
    return _ok(result)


@project_router.get("", summary="List all projects")
async def list_projects(
    time_sensitive: bool = Query(False, description="Recompute overdue alerts against the clock."),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = await ListProjectsUseCase().execute(uow, time_sensitive=time_sensitive)
    return _ok(result)


@project_router.get("/{project_id}", summary="Get a project by ID")
async def get_project(
    project_id: str = Path(...),
    time_sensitive: bool = Query(False, description="Recompute overdue alerts against the clock."),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = await GetProjectUseCase().execute(project_id, uow, time_sensitive=time_sensitive)
    return _ok(result)


@project_router.patch("/{project_id}", summary="Update project metadata")
async def update_project(
    body: UpdateProjectRequest,
    project_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateProjectCommand(
        project_id=project_id,
        actor=actor,
        title=body.title,
        application_number=body.application_number,
        owner_contact_id=body.owner_contact_id,
        deadline=body.deadline,
    )
    result = await UpdateProjectUseCase().execute(cmd, uow)
    return _ok(result)


@project_router.delete("/{project_id}", summary="Delete a project")
async def delete_project(
    project_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    await DeleteProjectUseCase().execute(DeleteProjectCommand(project_id=project_id, actor=actor), uow)
    return _ok({"id": project_id, "deleted": True})


@project_router.post(
    "/{project_id}/activate",
    summary="Turn an accepted quotation into an active project",
)
async def activate_project(
    project_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ActivateProjectCommand(project_id=project_id, actor=actor)
    result = await ActivateProjectUseCase().execute(cmd, uow)
    return _ok(result)


@project_router.get("/{project_id}/financials", summary="Programme budget vs. internal cost")
async def get_project_financials(
    project_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = await GetProjectFinancialsUseCase().execute(project_id, uow)
    return _ok(result)


@project_router.get("/{project_id}/audit", summary="Audit log, newest first")
async def get_audit_log(
    project_id: str = Path(...),
    limit: Optional[int] = Query(None, ge=1),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = await GetAuditLogUseCase().execute(project_id, uow, limit=limit)
    return _ok(result)


# ---------------------------------------------------------------------------
# Interventions
# ---------------------------------------------------------------------------

intervention_router = APIRouter(
    prefix="/projects/{project_id}/interventions", tags=["Interventions"]
)


@intervention_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Add an intervention from the subsidy catalog",
)
async def add_intervention(
    body: AddInterventionRequest,
    project_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddInterventionCommand(
        project_id=project_id,
        catalog_entry_id=body.catalog_entry_id,
        quantity=body.quantity,
        actor=actor,
        selected_energy_spec=body.selected_energy_spec,
        selected_system_class=body.selected_system_class,
        seed_default_stages=body.seed_default_stages,
    )
    result = await AddInterventionUseCase().execute(cmd, uow)
    return _ok(result)


@intervention_router.post(
    "/custom",
    status_code=status.HTTP_201_CREATED,
    summary="Add a free-form intervention outside the catalog",
)
async def add_custom_intervention(
    body: AddCustomInterventionRequest,
    project_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddCustomInterventionCommand(project_id=project_id, name=body.name, actor=actor)
    result = await AddCustomInterventionUseCase().execute(cmd, uow)
    return _ok(result)


@intervention_router.patch("/{master_id}", summary="Update quantity, selections or name")
async def update_intervention(
    body: UpdateInterventionRequest,
    project_id: str = Path(...),
    master_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateInterventionCommand(
        project_id=project_id,
        master_id=master_id,
        quantity=body.quantity,
        actor=actor,
        selected_energy_spec=body.selected_energy_spec,
        selected_system_class=body.selected_system_class,
        subcategory=body.subcategory,
    )
    result = await UpdateInterventionUseCase().execute(cmd, uow)
    return _ok(result)


@intervention_router.put("/{master_id}/costs", summary="Record manual materials / labour cost")
async def update_intervention_costs(
    body: UpdateInterventionCostsRequest,
    project_id: str = Path(...),
    master_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateInterventionCostsCommand(
        project_id=project_id,
        master_id=master_id,
        actor=actor,
        cost_of_materials=body.cost_of_materials,
        cost_of_labor=body.cost_of_labor,
    )
    result = await UpdateInterventionCostsUseCase().execute(cmd, uow)
    return _ok(result)


@intervention_router.delete("/{master_id}", summary="Delete an intervention")
async def delete_intervention(
    project_id: str = Path(...),
    master_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = DeleteInterventionCommand(project_id=project_id, master_id=master_id, actor=actor)
    result = await DeleteInterventionUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Sub-interventions
# ---------------------------------------------------------------------------

sub_intervention_router = APIRouter(
    prefix="/projects/{project_id}/interventions/{master_id}/sub-interventions",
    tags=["Sub-interventions"],
)


@sub_intervention_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Add a priced line item",
)
async def add_sub_intervention(
    body: SubInterventionRequest,
    project_id: str = Path(...),
    master_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddSubInterventionCommand(
        project_id=project_id,
        master_id=master_id,
        fields=body.to_command_fields(),
        actor=actor,
    )
    result = await AddSubInterventionUseCase().execute(cmd, uow)
    return _ok(result)


@sub_intervention_router.patch("/{sub_id}", summary="Edit a line item")
async def update_sub_intervention(
    body: SubInterventionRequest,
    project_id: str = Path(...),
    master_id: str = Path(...),
    sub_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateSubInterventionCommand(
        project_id=project_id,
        master_id=master_id,
        sub_intervention_id=sub_id,
        fields=body.to_command_fields(),
        actor=actor,
    )
    result = await UpdateSubInterventionUseCase().execute(cmd, uow)
    return _ok(result)


@sub_intervention_router.delete("/{sub_id}", summary="Delete a line item")
async def delete_sub_intervention(
    project_id: str = Path(...),
    master_id: str = Path(...),
    sub_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = DeleteSubInterventionCommand(
        project_id=project_id, master_id=master_id, sub_intervention_id=sub_id, actor=actor
    )
    result = await DeleteSubInterventionUseCase().execute(cmd, uow)
    return _ok(result)


@sub_intervention_router.post("/{sub_id}/move", summary="Move a line item up or down")
async def move_sub_intervention(
    body: MoveRequest,
    project_id: str = Path(...),
    master_id: str = Path(...),
    sub_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = MoveSubInterventionCommand(
        project_id=project_id,
        master_id=master_id,
        sub_intervention_id=sub_id,
        direction=body.direction,
        actor=actor,
    )
    result = await MoveSubInterventionUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

intervention_stage_router = APIRouter(
    prefix="/projects/{project_id}/interventions/{master_id}/stages",
    tags=["Stages"],
)


@intervention_stage_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Add a stage to an intervention",
)
async def add_stage(
    body: StageRequest,
    project_id: str = Path(...),
    master_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddStageCommand(
        project_id=project_id,
        master_id=master_id,
        title=body.title,
        deadline=body.deadline,
        actor=actor,
        notes=body.notes,
        assignee_contact_id=body.assignee_contact_id,
        supervisor_contact_id=body.supervisor_contact_id,
    )
    result = await AddStageUseCase().execute(cmd, uow)
    return _ok(result)


@intervention_stage_router.get("/lanes", summary="Stages grouped by status")
async def get_stage_lanes(
    project_id: str = Path(...),
    master_id: str = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = await GetStageLanesUseCase().execute(project_id, master_id, uow)
    return _ok(result)


@intervention_stage_router.post(
    "/{stage_id}/move",
    summary="Move a stage within its status lane",
)
async def move_stage(
    body: MoveRequest,
    project_id: str = Path(...),
    master_id: str = Path(...),
    stage_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = MoveStageCommand(
        project_id=project_id,
        master_id=master_id,
        stage_id=stage_id,
        direction=body.direction,
        actor=actor,
    )
    result = await MoveStageUseCase().execute(cmd, uow)
    return _ok(result)


stage_router = APIRouter(prefix="/projects/{project_id}/stages", tags=["Stages"])


@stage_router.patch("/{stage_id}", summary="Edit a stage (not once completed)")
async def update_stage(
    body: StageRequest,
    project_id: str = Path(...),
    stage_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateStageCommand(
        project_id=project_id,
        stage_id=stage_id,
        title=body.title,
        deadline=body.deadline,
        actor=actor,
        notes=body.notes,
        assignee_contact_id=body.assignee_contact_id,
        supervisor_contact_id=body.supervisor_contact_id,
    )
    result = await UpdateStageUseCase().execute(cmd, uow)
    return _ok(result)


@stage_router.delete("/{stage_id}", summary="Delete a stage (not once completed)")
async def delete_stage(
    project_id: str = Path(...),
    stage_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = DeleteStageCommand(project_id=project_id, stage_id=stage_id, actor=actor)
    result = await DeleteStageUseCase().execute(cmd, uow)
    return _ok(result)


@stage_router.post("/{stage_id}/status", summary="Activate, complete, fail or restart a stage")
async def change_stage_status(
    body: ChangeStageStatusRequest,
    project_id: str = Path(...),
    stage_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeStageStatusCommand(
        project_id=project_id, stage_id=stage_id, action=body.action, actor=actor
    )
    result = await ChangeStageStatusUseCase().execute(cmd, uow)
    return _ok(result)


@stage_router.post(
    "/{stage_id}/files",
    status_code=status.HTTP_201_CREATED,
    summary="Attach an uploaded file to a stage",
)
async def attach_file(
    body: AttachFileRequest,
    project_id: str = Path(...),
    stage_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AttachFileCommand(
        project_id=project_id, stage_id=stage_id, name=body.name, url=body.url, actor=actor
    )
    result = await AttachFileUseCase().execute(cmd, uow)
    return _ok(result)


@stage_router.post("/{stage_id}/notify", summary="Log a notification to the stage assignee")
async def notify_stage_assignee(
    project_id: str = Path(...),
    stage_id: str = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = NotifyStageAssigneeCommand(project_id=project_id, stage_id=stage_id, actor=actor)
    result = await NotifyStageAssigneeUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Reference data & search
# ---------------------------------------------------------------------------

reference_router = APIRouter(tags=["Reference Data"])


@reference_router.get("/catalog", summary="List the subsidy intervention catalog")
async def list_catalog(uow: AbstractUnitOfWork = Depends(get_uow)):
    result = await ListCatalogUseCase().execute(uow)
    return _ok(result)


@reference_router.get("/contacts", summary="List contacts")
async def list_contacts(uow: AbstractUnitOfWork = Depends(get_uow)):
    result = await ListContactsUseCase().execute(uow)
    return _ok(result)


@reference_router.get("/search", tags=["Search"], summary="Find a stage by free text")
async def search_stages(
    q: str = Query(..., min_length=1, description="Greek or Greeklish text."),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = await SearchStagesUseCase().execute(q, uow)
    return _ok(result)


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(project_router)
api_v1.include_router(intervention_router)
api_v1.include_router(sub_intervention_router)
api_v1.include_router(intervention_stage_router)
api_v1.include_router(stage_router)
api_v1.include_router(reference_router)

app.include_router(api_v1)

# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok", "version": settings.APP_VERSION}


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Projects",
        "description": (
            "Renovation subsidy projects.  A project starts as a quotation and "
            "becomes active through explicit activation.  Budget, progress and "
            "status are derived from its interventions and stages."
        ),
    },
    {
        "name": "Interventions",
        "description": (
            "Subsidised renovation measures, added from the catalog (cost seeded "
            "from the programme caps) or free-form.  Locked once any of their "
            "stages is completed."
        ),
    },
    {
        "name": "Sub-interventions",
        "description": (
            "Priced line items of an intervention.  Their programme cost sums to "
            "the intervention total; materials and labour give the internal cost."
        ),
    },
    {
        "name": "Stages",
        "description": (
            "Execution milestones.  Status moves pending → in progress → "
            "completed / failed, and back to in progress on restart.  Deadlines "
            "never exceed the project deadline."
        ),
    },
    {
        "name": "Reference Data",
        "description": "Subsidy catalog and contact directory.",
    },
    {
        "name": "Search",
        "description": "Accent- and Greeklish-insensitive lookup of stages.",
    },
]

app.openapi_tags = tags_metadata
