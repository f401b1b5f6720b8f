"""
Use cases over the in-memory unit of work: load once, save once, versioned.
"""
from datetime import timedelta

import pytest

from application import (
    ActivateProjectCommand,
    ActivateProjectUseCase,
    AddInterventionCommand,
    AddInterventionUseCase,
    AddStageCommand,
    AddStageUseCase,
    AddSubInterventionCommand,
    AddSubInterventionUseCase,
    AttachFileCommand,
    AttachFileUseCase,
    ChangeStageStatusCommand,
    ChangeStageStatusUseCase,
    CreateProjectCommand,
    CreateProjectUseCase,
    DeleteProjectCommand,
    DeleteProjectUseCase,
    GetAuditLogUseCase,
    GetProjectFinancialsUseCase,
    GetProjectUseCase,
    GetStageLanesUseCase,
    ListProjectsUseCase,
    MoveStageCommand,
    MoveStageUseCase,
    NotifyStageAssigneeCommand,
    NotifyStageAssigneeUseCase,
    SearchStagesUseCase,
    SubInterventionCommandFields,
    UpdateInterventionCommand,
    UpdateInterventionUseCase,
)
from config import get_settings
from errors import ConcurrencyError, InvalidTransitionError, NotFoundError, ValidationError
from infrastructure import InMemoryProjectRepository
from model import MoveDirection, StageAction
from service import AuditAction

from factories import days

WINDOWS = "catalog-windows"


async def _create(uow, actor, title="Ανακαίνιση Κατοικίας Α", deadline=None):
    cmd = CreateProjectCommand(
        title=title,
        owner_contact_id="contact-4",
        actor=actor,
        application_number="ΑΙΤ-2024-001",
        deadline=deadline or days(60),
    )
    return await CreateProjectUseCase().execute(cmd, uow)


async def _add_windows(uow, actor, project_id, quantity=10.0, seed=True):
    cmd = AddInterventionCommand(
        project_id=project_id,
        catalog_entry_id=WINDOWS,
        quantity=quantity,
        actor=actor,
        seed_default_stages=seed,
    )
    return await AddInterventionUseCase().execute(cmd, uow)


async def _add_stage(uow, actor, project_id, title, deadline, assignee=None):
    cmd = AddStageCommand(
        project_id=project_id,
        master_id=WINDOWS,
        title=title,
        deadline=deadline,
        actor=actor,
        assignee_contact_id=assignee,
    )
    return await AddStageUseCase().execute(cmd, uow)


async def _status(uow, actor, project_id, stage_id, action):
    cmd = ChangeStageStatusCommand(project_id=project_id, stage_id=stage_id, action=action, actor=actor)
    return await ChangeStageStatusUseCase().execute(cmd, uow)


# ===================== PROJECTS =====================


async def test_create_project(uow, actor):
    dto = await _create(uow, actor)
    assert dto.status == "Quotation"
    assert dto.version == 1
    assert dto.budget == 0
    assert [e.action for e in dto.audit_log] == [AuditAction.CREATE_PROJECT]
    assert dto.audit_log[0].user.id == actor.id

    fetched = await GetProjectUseCase().execute(dto.id, uow)
    assert fetched == dto


async def test_create_project_requires_known_owner(uow, actor):
    cmd = CreateProjectCommand(title="Ανακαίνιση", owner_contact_id="nobody", actor=actor)
    with pytest.raises(NotFoundError) as exc_info:
        await CreateProjectUseCase().execute(cmd, uow)
    assert exc_info.value.kind == "contact"


async def test_unknown_project_is_not_found(uow):
    with pytest.raises(NotFoundError) as exc_info:
        await GetProjectUseCase().execute("missing", uow)
    assert exc_info.value.kind == "project"


async def test_delete_project(uow, actor):
    dto = await _create(uow, actor)
    await DeleteProjectUseCase().execute(DeleteProjectCommand(project_id=dto.id, actor=actor), uow)
    with pytest.raises(NotFoundError):
        await GetProjectUseCase().execute(dto.id, uow)


async def test_deleted_projects_release_their_locks(uow, db, actor):
    ids = [(await _create(uow, actor, title=f"Έργο {n}")).id for n in range(3)]
    for project_id in ids:
        await DeleteProjectUseCase().execute(DeleteProjectCommand(project_id=project_id, actor=actor), uow)
    assert not set(ids) & set(db._locks)


async def test_activating_an_active_project_names_the_project(uow, actor):
    project = await _create(uow, actor)
    cmd = ActivateProjectCommand(project_id=project.id, actor=actor)
    await ActivateProjectUseCase().execute(cmd, uow)
    with pytest.raises(InvalidTransitionError) as exc_info:
        await ActivateProjectUseCase().execute(cmd, uow)
    assert exc_info.value.subject == "project"
    assert exc_info.value.message == "Cannot move a project from 'On Track' to 'On Track'."


async def test_list_projects_in_greek_order(uow, actor):
    await _create(uow, actor, title="Ψηφιακή Αναβάθμιση")
    await _create(uow, actor, title="Άνοιγμα Κουζίνας")
    await _create(uow, actor, title="αποθήκη")
    titles = [p.title for p in await ListProjectsUseCase().execute(uow)]
    assert titles == ["Άνοιγμα Κουζίνας", "αποθήκη", "Ψηφιακή Αναβάθμιση"]


# ===================== INTERVENTIONS =====================


async def test_add_catalog_intervention(uow, actor):
    project = await _create(uow, actor, deadline=days(30))
    dto = await _add_windows(uow, actor, project.id)
    assert dto.version == 2
    assert dto.budget == pytest.approx(2700.0)
    added = dto.interventions[0]
    assert added.master_id == WINDOWS
    assert len(added.stages) == 4
    assert added.stages[-1].deadline == days(30).isoformat()
    assert dto.audit_log[0].action == AuditAction.ADD_INTERVENTION
    assert len(dto.audit_log) == 2


async def test_unknown_catalog_entry_leaves_project_untouched(uow, actor):
    project = await _create(uow, actor)
    cmd = AddInterventionCommand(project_id=project.id, catalog_entry_id="nope", quantity=1, actor=actor)
    with pytest.raises(NotFoundError) as exc_info:
        await AddInterventionUseCase().execute(cmd, uow)
    assert exc_info.value.kind == "catalog-entry"
    assert (await GetProjectUseCase().execute(project.id, uow)).version == 1


async def test_budget_follows_sub_interventions(uow, actor):
    project = await _create(uow, actor)
    await _add_windows(uow, actor, project.id, seed=False)
    for cost in (120.0, 80.0):
        cmd = AddSubInterventionCommand(
            project_id=project.id,
            master_id=WINDOWS,
            fields=SubInterventionCommandFields(
                subcategory_code="1.A",
                description="Κούφωμα αλουμινίου",
                cost=cost,
                cost_of_materials=cost / 4,
                cost_of_labor=cost / 4,
            ),
            actor=actor,
        )
        dto = await AddSubInterventionUseCase().execute(cmd, uow)

    assert dto.budget == pytest.approx(200.0)
    subs = dto.interventions[0].sub_interventions
    assert [s.display_code for s in subs] == ["1.A (I)", "1.A (I)"]
    assert subs[0].margin == pytest.approx(50.0)

    financials = await GetProjectFinancialsUseCase().execute(project.id, uow)
    assert financials.summary.program_budget == pytest.approx(200.0)
    assert financials.summary.internal_cost == pytest.approx(100.0)
    assert financials.summary.margin == pytest.approx(50.0)
    assert financials.summary.classification == "profitable"


async def test_intervention_locked_after_stage_completion(uow, actor):
    project = await _create(uow, actor)
    dto = await _add_windows(uow, actor, project.id)
    stage_id = dto.interventions[0].stages[0].id
    await _status(uow, actor, project.id, stage_id, StageAction.ACTIVATE)
    dto = await _status(uow, actor, project.id, stage_id, StageAction.COMPLETE)

    cmd = UpdateInterventionCommand(project_id=project.id, master_id=WINDOWS, quantity=12, actor=actor)
    with pytest.raises(ValidationError) as exc_info:
        await UpdateInterventionUseCase().execute(cmd, uow)
    assert exc_info.value.kind == "locked-for-edit"
    assert (await GetProjectUseCase().execute(project.id, uow)).version == dto.version


async def test_update_intervention_keeps_selections_it_was_not_given(uow, actor):
    project = await _create(uow, actor)
    cmd = AddInterventionCommand(
        project_id=project.id,
        catalog_entry_id=WINDOWS,
        quantity=10.0,
        actor=actor,
        selected_energy_spec="U < 2.0",
        selected_system_class="A+",
    )
    await AddInterventionUseCase().execute(cmd, uow)

    update = UpdateInterventionCommand(project_id=project.id, master_id=WINDOWS, quantity=12, actor=actor)
    dto = await UpdateInterventionUseCase().execute(update, uow)
    assert dto.interventions[0].quantity == 12
    assert dto.interventions[0].selected_energy_spec == "U < 2.0"
    assert dto.interventions[0].selected_system_class == "A+"


# ===================== STAGES =====================


async def test_project_lifecycle_to_completion(uow, actor):
    project = await _create(uow, actor)
    await _add_windows(uow, actor, project.id, seed=False)
    await _add_stage(uow, actor, project.id, "Αποξήλωση", days(5))
    dto = await _add_stage(uow, actor, project.id, "Τοποθέτηση", days(10))
    dto = await ActivateProjectUseCase().execute(
        ActivateProjectCommand(project_id=project.id, actor=actor), uow
    )
    assert dto.status == "On Track"

    stage_ids = [s.id for s in dto.interventions[0].stages]
    for stage_id in stage_ids:
        await _status(uow, actor, project.id, stage_id, StageAction.ACTIVATE)
    dto = await _status(uow, actor, project.id, stage_ids[0], StageAction.COMPLETE)
    assert dto.progress == 50
    dto = await _status(uow, actor, project.id, stage_ids[1], StageAction.COMPLETE)
    assert dto.progress == 100
    assert dto.status == "Completed"


async def test_invalid_stage_transition_is_rejected(uow, actor):
    project = await _create(uow, actor)
    dto = await _add_windows(uow, actor, project.id)
    stage_id = dto.interventions[0].stages[0].id
    with pytest.raises(InvalidTransitionError):
        await _status(uow, actor, project.id, stage_id, StageAction.COMPLETE)


async def test_stage_deadline_bound_is_enforced(uow, actor):
    project = await _create(uow, actor, deadline=days(30))
    await _add_windows(uow, actor, project.id, seed=False)
    dto = await _add_stage(uow, actor, project.id, "Παράδοση", days(30))
    with pytest.raises(ValidationError) as exc_info:
        await _add_stage(uow, actor, project.id, "Εκπρόθεσμο", days(30) + timedelta(seconds=1))
    assert exc_info.value.kind == "deadline-out-of-range"
    assert (await GetProjectUseCase().execute(project.id, uow)).version == dto.version


async def test_move_stage_no_op_writes_nothing(uow, actor):
    project = await _create(uow, actor)
    dto = await _add_windows(uow, actor, project.id)
    first = dto.interventions[0].stages[0].id
    cmd = MoveStageCommand(
        project_id=project.id, master_id=WINDOWS, stage_id=first, direction=MoveDirection.UP, actor=actor
    )
    result = await MoveStageUseCase().execute(cmd, uow)
    assert result.moved is False
    assert result.project.version == dto.version
    assert len(result.project.audit_log) == len(dto.audit_log)


async def test_move_stage(uow, actor):
    project = await _create(uow, actor)
    dto = await _add_windows(uow, actor, project.id)
    ids = [s.id for s in dto.interventions[0].stages]
    cmd = MoveStageCommand(
        project_id=project.id, master_id=WINDOWS, stage_id=ids[0], direction=MoveDirection.DOWN, actor=actor
    )
    result = await MoveStageUseCase().execute(cmd, uow)
    assert result.moved is True
    assert result.project.version == dto.version + 1
    assert [s.id for s in result.project.interventions[0].stages] == [ids[1], ids[0], ids[2], ids[3]]
    assert result.project.audit_log[0].action == AuditAction.MOVE_STAGE


async def test_stage_lanes(uow, actor):
    project = await _create(uow, actor)
    dto = await _add_windows(uow, actor, project.id)
    stage_id = dto.interventions[0].stages[1].id
    await _status(uow, actor, project.id, stage_id, StageAction.ACTIVATE)
    lanes = await GetStageLanesUseCase().execute(project.id, WINDOWS, uow)
    assert [s.id for s in lanes.lanes["in progress"]] == [stage_id]
    assert len(lanes.lanes["pending"]) == 3
    assert lanes.lanes["completed"] == []


async def test_notify_assignee_resolves_contact(uow, actor):
    project = await _create(uow, actor)
    await _add_windows(uow, actor, project.id, seed=False)
    dto = await _add_stage(uow, actor, project.id, "Τοποθέτηση", days(10), assignee="contact-1")
    stage_id = dto.interventions[0].stages[0].id

    cmd = NotifyStageAssigneeCommand(project_id=project.id, stage_id=stage_id, actor=actor)
    dto = await NotifyStageAssigneeUseCase().execute(cmd, uow)
    assert dto.audit_log[0].action == AuditAction.SEND_EMAIL
    assert "Γιώργος Τεχνικός" in dto.audit_log[0].details


async def test_notify_unassigned_stage_fails(uow, actor):
    project = await _create(uow, actor)
    dto = await _add_windows(uow, actor, project.id)
    cmd = NotifyStageAssigneeCommand(
        project_id=project.id, stage_id=dto.interventions[0].stages[0].id, actor=actor
    )
    with pytest.raises(NotFoundError) as exc_info:
        await NotifyStageAssigneeUseCase().execute(cmd, uow)
    assert exc_info.value.kind == "contact"


async def test_attach_file(uow, actor):
    project = await _create(uow, actor)
    dto = await _add_windows(uow, actor, project.id)
    stage_id = dto.interventions[0].stages[0].id
    cmd = AttachFileCommand(
        project_id=project.id, stage_id=stage_id, name="άδεια.pdf", url="https://files.example.com/a.pdf", actor=actor
    )
    dto = await AttachFileUseCase().execute(cmd, uow)
    assert dto.interventions[0].stages[0].files[0].name == "άδεια.pdf"


# ===================== READS =====================


async def test_time_sensitive_read_flags_overdue_stages(uow, actor, clock):
    project = await _create(uow, actor)
    await _add_windows(uow, actor, project.id, seed=False)
    dto = await _add_stage(uow, actor, project.id, "Αποξήλωση", days(5))
    await ActivateProjectUseCase().execute(ActivateProjectCommand(project_id=project.id, actor=actor), uow)
    await _status(uow, actor, project.id, dto.interventions[0].stages[0].id, StageAction.ACTIVATE)

    clock.advance(days=6)
    display = await GetProjectUseCase().execute(project.id, uow, time_sensitive=True)
    assert display.status == "Delayed"
    assert display.alerts == 1

    stored = await GetProjectUseCase().execute(project.id, uow)
    assert stored.status == "On Track"
    assert stored.alerts == 0


async def test_audit_log_is_newest_first(uow, actor):
    project = await _create(uow, actor)
    await _add_windows(uow, actor, project.id, seed=False)
    await ActivateProjectUseCase().execute(ActivateProjectCommand(project_id=project.id, actor=actor), uow)
    entries = await GetAuditLogUseCase().execute(project.id, uow)
    assert [e.action for e in entries] == [
        AuditAction.ACTIVATE_PROJECT,
        AuditAction.ADD_INTERVENTION,
        AuditAction.CREATE_PROJECT,
    ]
    assert len(await GetAuditLogUseCase().execute(project.id, uow, limit=1)) == 1


async def test_search_accepts_greeklish(uow, actor):
    project = await _create(uow, actor)
    await _add_windows(uow, actor, project.id, seed=False)
    await _add_stage(uow, actor, project.id, "Αντλία θερμότητας", days(5))
    found = await SearchStagesUseCase().execute("antlia", uow)
    assert found is not None
    assert found.project_id == project.id
    assert found.stage_title == "Αντλία θερμότητας"
    assert await SearchStagesUseCase().execute("xyzxyz", uow) is None


# ===================== CONCURRENCY =====================


async def test_stale_save_is_rejected(uow, actor):
    project = await _create(uow, actor)
    first = await uow.projects.get(project.id)
    second = await uow.projects.get(project.id)

    first.title = "Πρώτη αλλαγή"
    assert await uow.projects.save(first, expected_version=1) == 2

    second.title = "Δεύτερη αλλαγή"
    with pytest.raises(ConcurrencyError) as exc_info:
        await uow.projects.save(second, expected_version=1)
    assert exc_info.value.actual_version == 2
    assert (await uow.projects.get(project.id)).title == "Πρώτη αλλαγή"


class _RacingRepository(InMemoryProjectRepository):
    """Lets another writer land between our load and our save."""

    def __init__(self, db, races: int):
        super().__init__(db)
        self.races = races
        self.saves = 0

    async def save(self, project, expected_version):
        self.saves += 1
        if self.races:
            self.races -= 1
            competitor = await self.get(project.id)
            competitor.application_number = f"ΑΙΤ-{self.saves}"
            await super().save(competitor, expected_version)
        return await super().save(project, expected_version)


async def test_conflict_is_retried_without_losing_the_other_write(uow, db, actor):
    project = await _create(uow, actor)
    uow.projects = _RacingRepository(db, races=1)

    dto = await _add_windows(uow, actor, project.id)
    assert uow.projects.saves == 2
    assert dto.version == 3
    assert dto.application_number == "ΑΙΤ-1"
    assert dto.interventions[0].master_id == WINDOWS


async def test_conflict_retries_are_bounded(uow, db, actor):
    project = await _create(uow, actor)
    retries = get_settings().MAX_CONFLICT_RETRIES
    uow.projects = _RacingRepository(db, races=retries + 1)

    with pytest.raises(ConcurrencyError):
        await _add_windows(uow, actor, project.id)
    assert uow.projects.saves == retries + 1
    assert (await uow.projects.get(project.id)).interventions == []
