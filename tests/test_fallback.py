import pytest

from study_guide.evaluation.validators import validate_step_b, validate_synthesis
from study_guide.models.fallback import (
    FALLBACK_PLAN_WARNING,
    build_fallback_plan,
    build_fallback_step_b,
    outline_from_step_b,
)
from study_guide.models.schemas import StepAOutput

from conftest import EXAM_ATOMS, chunk_payload, derived_payload


@pytest.fixture
def step_a():
    return StepAOutput.model_validate(
        {**derived_payload(), "lecture_title": "Lecture", "slides": chunk_payload(1, 3)["slides"]}
    )


def _assert_passes(step_a, step_b, selected=None):
    assert validate_synthesis(step_b) == []
    assert validate_step_b(step_a, step_b, selected) == []


def test_fallback_passes_both_validators(step_a):
    step_b = build_fallback_step_b(step_a)

    _assert_passes(step_a, step_b)
    assert step_b.high_yield_summary == EXAM_ATOMS
    assert step_b.glossary[0].term == "CX"
    assert step_b.compare_differential[0].topic == "condition 1 vs condition 2"


def test_fallback_from_empty_step_a():
    step_a = StepAOutput()
    _assert_passes(step_a, build_fallback_step_b(step_a))


def test_fallback_honours_selected_atoms(step_a):
    selected = ["zeta eta theta"]
    step_b = build_fallback_step_b(step_a, selected)

    assert step_b.high_yield_summary[0] == "zeta eta theta"
    _assert_passes(step_a, step_b, selected)


def test_overflow_atoms_land_in_glossary():
    atoms = [f"alpha{i} beta{i}" for i in range(30)]
    step_a = StepAOutput(exam_atoms=atoms)

    step_b = build_fallback_step_b(step_a)

    assert any(g.term.startswith("Exam atom") for g in step_b.glossary)
    _assert_passes(step_a, step_b)


def test_fallback_is_deterministic(step_a):
    assert build_fallback_step_b(step_a) == build_fallback_step_b(step_a)


def test_fallback_plan(step_a):
    plan = build_fallback_plan(step_a)

    assert plan.selected_exam_atoms == EXAM_ATOMS
    assert plan.compare_topics == ["condition 1 vs condition 2"]
    assert plan.section_counts.compare_topics == 2
    assert plan.warnings == [FALLBACK_PLAN_WARNING]
    assert [m.section for m in plan.atom_to_section_map[:3]] == [
        "high_yield_summary", "one_page_last_minute_review", "rapid_approach_table",
    ]


def test_outline_layout(step_a):
    outline = outline_from_step_b(build_fallback_step_b(step_a))
    lines = outline.splitlines()

    assert lines[0] == "HIGH_YIELD_SUMMARY"
    assert "RAPID_APPROACH_TABLE" in lines
    assert "COMPARE_DIFFERENTIAL" in lines
    assert "GLOSSARY" in lines
    assert "QUANT_CUTOFFS" not in lines
