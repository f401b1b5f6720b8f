"""
Free-text stage lookup: Greek, Greeklish and accent-insensitive matching.
"""
import pytest

from service import find_stage_context, normalize_for_search, strip_accents

from factories import make_intervention, make_project, make_stage


@pytest.mark.parametrize(
    "text,folded",
    [
        ("Αντλία", "αντλια"),
        ("ΘΕΡΜΟΜΟΝΩΣΗΣ", "θερμομονωσησ"),
        ("antlia", "αντλια"),
        ("thermo", "θερμο"),
        ("psyx", "ψυξ"),
        ("", ""),
        (None, ""),
        (5, ""),
    ],
)
def test_normalize_for_search(text, folded):
    assert normalize_for_search(text) == folded


def test_strip_accents_keeps_base_letters():
    assert strip_accents("Κουφώματα ΰ ΐ") == "Κουφωματα υ ι"


def _projects():
    heat_pump = make_intervention(
        "heat-pump",
        "Αντλία Θερμότητας",
        stages=[make_stage("s1", title="Παραγγελία υλικών"), make_stage("s2", title="Εγκατάσταση μονάδας")],
    )
    windows = make_intervention(
        "windows",
        "Κουφώματα",
        stages=[make_stage("s3", title="Αποξήλωση παλαιών")],
    )
    return [
        make_project([heat_pump], project_id="p1", title="Οικία Παπαδόπουλου"),
        make_project([windows], project_id="p2", title="Διαμέρισμα Γεωργίου"),
    ]


def test_project_title_match_yields_first_stage():
    found = find_stage_context(_projects(), "papadop")
    assert (found.project_id, found.stage_id) == ("p1", "s1")


def test_intervention_match_yields_its_first_stage():
    found = find_stage_context(_projects(), "κουφ")
    assert (found.project_id, found.intervention_master_id, found.stage_id) == ("p2", "windows", "s3")


def test_stage_title_match():
    found = find_stage_context(_projects(), "egkat")
    assert found.stage_id == "s2"
    assert found.stage_title == "Εγκατάσταση μονάδας"


def test_project_without_stages_is_skipped():
    projects = [make_project([make_intervention(stages=[])], title="Αντλία")] + _projects()
    found = find_stage_context(projects, "antlia")
    assert found.project_id == "p1"
    assert found.stage_id == "s1"


@pytest.mark.parametrize("query", ["", "   ", "zzzz"])
def test_no_match(query):
    assert find_stage_context(_projects(), query) is None
