"""
Metrics engine: progress, status, alerts, budget, ordering and display codes.
"""
import copy

import pytest

from model import ProjectStatus, StageStatus
from service import compute_metrics, format_display_code, greek_sort_key, roman_suffix

from factories import NOW, days, make_intervention, make_project, make_stage, make_sub


# ===================== EMPTY / STICKY =====================


def test_empty_project_has_zeroed_metrics():
    project = compute_metrics(make_project(status=ProjectStatus.QUOTATION))
    assert project.budget == 0
    assert project.progress == 0
    assert project.alerts == 0
    assert project.status == ProjectStatus.QUOTATION


def test_quotation_without_stages_stays_quotation():
    project = make_project([make_intervention(stages=[])], status=ProjectStatus.QUOTATION)
    result = compute_metrics(project, time_sensitive=True, now=NOW)
    assert result.status == ProjectStatus.QUOTATION
    assert result.progress == 0


def test_quotation_never_counts_overdue_stages():
    stages = [make_stage("s1", StageStatus.IN_PROGRESS, deadline=days(-5))]
    project = make_project([make_intervention(stages=stages)], status=ProjectStatus.QUOTATION)
    result = compute_metrics(project, time_sensitive=True, now=NOW)
    assert result.alerts == 0
    assert result.status == ProjectStatus.QUOTATION


def test_completed_status_is_sticky_after_restart():
    stages = [
        make_stage("s1", StageStatus.COMPLETED),
        make_stage("s2", StageStatus.IN_PROGRESS, deadline=days(-1)),
    ]
    project = make_project([make_intervention(stages=stages)], status=ProjectStatus.COMPLETED)
    result = compute_metrics(project, time_sensitive=True, now=NOW)
    assert result.status == ProjectStatus.COMPLETED
    assert result.progress == 50


@pytest.mark.parametrize("stored", [ProjectStatus.DELAYED, ProjectStatus.ON_TRACK])
@pytest.mark.parametrize("time_sensitive", [False, True])
def test_project_without_interventions_keeps_its_status(stored, time_sensitive):
    project = make_project([], status=stored)
    result = compute_metrics(project, time_sensitive=time_sensitive, now=NOW)
    assert result.status == stored
    assert result.progress == 0
    assert result.alerts == 0


# ===================== COMPLETION / PROGRESS =====================


def test_all_stages_completed_forces_completed():
    stages = [make_stage(f"s{i}", StageStatus.COMPLETED) for i in range(4)]
    project = make_project([make_intervention(stages=stages)], status=ProjectStatus.DELAYED)
    result = compute_metrics(project)
    assert result.progress == 100
    assert result.status == ProjectStatus.COMPLETED


def test_full_completion_overrides_quotation():
    stages = [make_stage("s1", StageStatus.COMPLETED)]
    project = make_project([make_intervention(stages=stages)], status=ProjectStatus.QUOTATION)
    assert compute_metrics(project).status == ProjectStatus.COMPLETED


@pytest.mark.parametrize(
    "completed,total,expected",
    [(0, 3, 0), (1, 3, 33), (2, 3, 67), (1, 8, 13), (3, 8, 38), (1, 2, 50)],
)
def test_progress_rounds_half_up(completed, total, expected):
    stages = [
        make_stage(f"s{i}", StageStatus.COMPLETED if i < completed else StageStatus.PENDING)
        for i in range(total)
    ]
    result = compute_metrics(make_project([make_intervention(stages=stages)]))
    assert result.progress == expected


def test_progress_counts_stages_across_interventions():
    first = make_intervention("a", "Αερισμός", stages=[make_stage("s1", StageStatus.COMPLETED)])
    second = make_intervention("b", "Κουφώματα", stages=[
        make_stage("s2", StageStatus.PENDING),
        make_stage("s3", StageStatus.FAILED),
        make_stage("s4", StageStatus.COMPLETED),
    ])
    assert compute_metrics(make_project([first, second])).progress == 50


# ===================== OVERDUE =====================


def test_overdue_stage_delays_active_project_in_display_mode():
    stages = [
        make_stage("s1", StageStatus.IN_PROGRESS, deadline=days(-1)),
        make_stage("s2", StageStatus.PENDING, deadline=days(5)),
    ]
    project = make_project([make_intervention(stages=stages)])
    result = compute_metrics(project, time_sensitive=True, now=NOW)
    assert result.alerts == 1
    assert result.status == ProjectStatus.DELAYED


def test_server_mode_ignores_the_clock():
    stages = [make_stage("s1", StageStatus.IN_PROGRESS, deadline=days(-1))]
    project = make_project([make_intervention(stages=stages)], status=ProjectStatus.DELAYED)
    result = compute_metrics(project)
    assert result.alerts == 0
    assert result.status == ProjectStatus.ON_TRACK


def test_completed_and_failed_stages_are_never_overdue():
    stages = [
        make_stage("s1", StageStatus.COMPLETED, deadline=days(-10)),
        make_stage("s2", StageStatus.FAILED, deadline=days(-10)),
        make_stage("s3", StageStatus.PENDING, deadline=days(10)),
    ]
    result = compute_metrics(
        make_project([make_intervention(stages=stages)]), time_sensitive=True, now=NOW
    )
    assert result.alerts == 0
    assert result.status == ProjectStatus.ON_TRACK


def test_deadline_equal_to_now_is_not_overdue():
    stages = [make_stage("s1", StageStatus.PENDING, deadline=NOW)]
    result = compute_metrics(
        make_project([make_intervention(stages=stages)]), time_sensitive=True, now=NOW
    )
    assert result.alerts == 0


# ===================== BUDGET =====================


def test_budget_rolls_up_sub_intervention_costs():
    intervention = make_intervention(subs=[make_sub("x", 120.50), make_sub("y", 79.50)], total_cost=9999)
    result = compute_metrics(make_project([intervention]))
    assert result.interventions[0].total_cost == pytest.approx(200.00)
    assert result.budget == pytest.approx(200.00)


def test_seeded_total_cost_stands_until_sub_interventions_exist():
    priced = make_intervention("a", "Αερισμός", subs=[make_sub("x", 100.0)])
    seeded = make_intervention("b", "Κουφώματα", total_cost=2700.0)
    result = compute_metrics(make_project([priced, seeded]))
    assert result.budget == pytest.approx(2800.0)


# ===================== ORDERING / DISPLAY CODES =====================


def test_interventions_sorted_with_greek_collation():
    names = ["Ψύξη", "Άνοιγμα", "αερισμός"]
    project = make_project([make_intervention(f"m{i}", n) for i, n in enumerate(names)])
    result = compute_metrics(project)
    assert [i.display_name for i in result.interventions] == ["αερισμός", "Άνοιγμα", "Ψύξη"]


def test_greek_sort_key_ignores_accents_case_and_final_sigma():
    assert greek_sort_key("Θερμομόνωσης")[0] == greek_sort_key("ΘΕΡΜΟΜΟΝΩΣΗΣ")[0]


def test_custom_collation_can_be_injected():
    project = make_project([make_intervention("a", "b"), make_intervention("b", "a")])
    result = compute_metrics(project, name_key=lambda name: [-ord(c) for c in name])
    assert [i.display_name for i in result.interventions] == ["b", "a"]


def test_display_code_carries_roman_numeral_of_expense_category():
    intervention = make_intervention(
        expense_category="Κουφώματα (II)",
        subs=[make_sub("x", 10.0, code="1.A"), make_sub("y", 10.0, code="2.B", expense_category="Θερμομόνωση")],
    )
    result = compute_metrics(make_project([intervention]))
    codes = [s.display_code for s in result.interventions[0].sub_interventions]
    assert codes == ["1.A (II)", "2.B"]


@pytest.mark.parametrize(
    "category,suffix",
    [("Κουφώματα (I)", " (I)"), ("Κουφώματα (IX)", " (IX)"), ("Κουφώματα", ""), (None, ""), ("(XI)", "")],
)
def test_roman_suffix(category, suffix):
    assert roman_suffix(category) == suffix
    assert format_display_code("1.A", category) == f"1.A{suffix}"


# ===================== PURITY =====================


def test_compute_metrics_is_idempotent():
    stages = [
        make_stage("s1", StageStatus.IN_PROGRESS, deadline=days(-1)),
        make_stage("s2", StageStatus.COMPLETED),
    ]
    project = make_project([
        make_intervention("b", "Κουφώματα", stages=stages, subs=[make_sub("x", 50.0)]),
        make_intervention("a", "Αερισμός"),
    ])
    once = compute_metrics(project, time_sensitive=True, now=NOW)
    twice = compute_metrics(once, time_sensitive=True, now=NOW)
    assert once == twice


def test_compute_metrics_does_not_mutate_its_input():
    project = make_project([
        make_intervention("b", "Κουφώματα", subs=[make_sub("x", 50.0)]),
        make_intervention("a", "Αερισμός"),
    ])
    before = copy.deepcopy(project)
    compute_metrics(project, time_sensitive=True, now=NOW)
    assert project == before


def test_malformed_fields_are_treated_as_absent():
    intervention = make_intervention(
        stages=[None, make_stage("s1", StageStatus.COMPLETED, deadline=None)],
        subs=[make_sub("x", "not a number"), None, make_sub("y", float("nan")), make_sub("z", 40)],
    )
    intervention.stages[1].deadline = "garbage"
    project = make_project([intervention, None], status="Unknown")
    result = compute_metrics(project, time_sensitive=True, now=NOW)
    assert result.budget == pytest.approx(40.0)
    assert result.progress == 100
    assert result.status == ProjectStatus.COMPLETED


def test_non_string_categories_are_treated_as_absent():
    broken = make_intervention(
        "broken",
        expense_category="Κουφώματα (III)",
        subs=[make_sub("x", 10.0, code="1.A", expense_category=5)],
    )
    broken.intervention_subcategory = 7
    named = make_intervention("named", "Αερισμός")
    result = compute_metrics(make_project([named, broken]), time_sensitive=True, now=NOW)
    by_id = {i.master_id: i for i in result.interventions}
    assert by_id["broken"].display_name == by_id["broken"].intervention_category
    assert by_id["broken"].sub_interventions[0].display_code == "1.A (III)"
    assert result.budget == pytest.approx(10.0 + named.total_cost)
