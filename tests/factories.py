"""
Builders for Project aggregates used across the test suite.
"""
import itertools
from datetime import datetime, timedelta, timezone

from model import (
    Actor,
    Intervention,
    Project,
    ProjectStatus,
    Stage,
    StageStatus,
    SubIntervention,
    UserRole,
)
from service import MutationContext

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
ACTOR = Actor(id="user-1", name="Alice", email="alice@example.com", role=UserRole.ADMIN)


def days(n: float) -> datetime:
    return NOW + timedelta(days=n)


class SequentialIds:
    """Deterministic id generator: stage-1, stage-2, log-3 ..."""

    def __init__(self):
        self._counter = itertools.count(1)

    def new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._counter)}"


def make_ctx(now: datetime = NOW, actor: Actor = ACTOR) -> MutationContext:
    return MutationContext(actor=actor, now=now, new_id=SequentialIds().new_id)


def make_stage(
    stage_id: str,
    status: StageStatus = StageStatus.PENDING,
    deadline: datetime = None,
    title: str = None,
) -> Stage:
    return Stage(
        id=stage_id,
        title=title or f"Στάδιο {stage_id}",
        status=status,
        deadline=deadline if deadline is not None else days(10),
        last_updated=NOW,
    )


def make_sub(sub_id: str, cost: float, materials: float = 0.0, labor: float = 0.0,
             code: str = "1.A", expense_category: str = None) -> SubIntervention:
    return SubIntervention(
        id=sub_id,
        subcategory_code=code,
        description=f"Εργασία {sub_id}",
        cost=cost,
        expense_category=expense_category,
        cost_of_materials=materials,
        cost_of_labor=labor,
    )


def make_intervention(
    master_id: str = "int-1",
    name: str = "Αντλία Θερμότητας",
    stages=(),
    subs=(),
    total_cost: float = 0.0,
    expense_category: str = "Συστήματα Θέρμανσης-Ψύξης",
    code: str = "3.A1",
) -> Intervention:
    return Intervention(
        master_id=master_id,
        code=code,
        expense_category=expense_category,
        intervention_category=name,
        intervention_subcategory=name,
        quantity=1.0,
        max_unit_price=800.0,
        max_amount=6400.0,
        total_cost=total_cost,
        stages=list(stages),
        sub_interventions=list(subs),
    )


def make_project(
    interventions=(),
    status: ProjectStatus = ProjectStatus.ON_TRACK,
    deadline: datetime = None,
    project_id: str = "project-1",
    title: str = "Ανακαίνιση Κατοικίας Α",
) -> Project:
    return Project(
        id=project_id,
        title=title,
        owner_contact_id="contact-4",
        deadline=deadline if deadline is not None else days(60),
        status=status,
        interventions=list(interventions),
        created_at=NOW,
    )
