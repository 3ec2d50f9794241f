import pytest

from study_guide.evaluation.validators import (
    atom_covered,
    failures_to_dicts,
    truncate_words,
    validate_step_b,
    validate_synthesis,
    word_count,
)
from study_guide.models.schemas import StepAOutput, StepBOutput

from conftest import chunk_payload, derived_payload, step_b_payload


@pytest.fixture
def step_a():
    return StepAOutput.model_validate(
        {**derived_payload(), "lecture_title": "Lecture", "slides": chunk_payload(1, 3)["slides"]}
    )


def _codes(failures):
    return {f.code for f in failures}


def test_reference_document_passes(step_a):
    step_b = StepBOutput.model_validate(step_b_payload())
    assert validate_step_b(step_a, step_b) == []
    assert validate_synthesis(step_b) == []


def test_too_few_bullets(step_a):
    payload = step_b_payload()
    payload["high_yield_summary"] = payload["high_yield_summary"][:5]
    failures = validate_step_b(step_a, StepBOutput.model_validate(payload))

    assert ("TOO_FEW_BULLETS", "high_yield_summary") in {(f.code, f.path) for f in failures}


def test_long_bullet_is_flagged_with_path(step_a):
    payload = step_b_payload()
    payload["one_page_last_minute_review"][0] = " ".join(f"w{i}" for i in range(20))
    failures = validate_step_b(step_a, StepBOutput.model_validate(payload))

    assert [(f.code, f.path) for f in failures] == [("BULLET_TOO_LONG", "one_page_last_minute_review[0]")]


def test_duplicate_bullets(step_a):
    payload = step_b_payload()
    payload["one_page_last_minute_review"][1] = payload["one_page_last_minute_review"][0].upper()
    assert "REDUNDANT_BULLETS" in _codes(validate_step_b(step_a, StepBOutput.model_validate(payload)))


def test_repeated_trigrams(step_a):
    payload = step_b_payload()
    payload["pitfalls"] = [f"shared trigram phrase {w}" for w in ("one", "two", "three", "four")]
    assert _codes(validate_step_b(step_a, StepBOutput.model_validate(payload))) == {"HIGH_NGRAM_OVERLAP"}


def test_selected_atoms_drive_coverage(step_a):
    step_b = StepBOutput.model_validate(step_b_payload())
    failures = validate_step_b(step_a, step_b, ["unrelated topic words here"])
    assert _codes(failures) == {"LOW_COVERAGE"}


def test_incomplete_rapid_row(step_a):
    payload = step_b_payload()
    payload["rapid_approach_table"][3]["confirm"] = "  "
    failures = validate_step_b(step_a, StepBOutput.model_validate(payload))
    assert [(f.code, f.path) for f in failures] == [("TABLE_ROW_INVALID", "rapid_approach_table[3]")]


def test_glue_must_be_grounded_in_step_a(step_a):
    payload = step_b_payload()
    payload["supplemental_glue"] = ["completely novel claim about xylophones", "CX relevant reminder"]
    failures = validate_step_b(step_a, StepBOutput.model_validate(payload))

    assert [(f.code, f.path) for f in failures] == [("GLUE_RULE_VIOLATION", "supplemental_glue[0]")]


def test_synthesis_missing_sections():
    failures = validate_synthesis(StepBOutput())
    assert [f.code for f in failures] == ["SYNTHESIS_MISSING"] * 3


def test_synthesis_mostly_empty():
    payload = step_b_payload()
    payload["high_yield_summary"] = [""] * 8 + ["first point", "second point"]
    failures = validate_synthesis(StepBOutput.model_validate(payload))

    assert {(f.code, f.path) for f in failures} == {
        ("SYNTHESIS_EMPTY", "high_yield_summary"),
        ("SYNTHESIS_TOO_FEW", "high_yield_summary"),
    }


def test_word_helpers():
    assert word_count("a-b c") == 3
    assert truncate_words("one two-three four", 3) == "one two-three"
    assert atom_covered("hb", {"hb"}) is True
    assert atom_covered("low hb", {"hb"}) is False
    assert atom_covered("the", set()) is None


def test_failures_serialize():
    failures = validate_synthesis(StepBOutput())
    assert failures_to_dicts(failures)[0] == {
        "code": "SYNTHESIS_MISSING",
        "message": "High-yield summary is missing.",
        "path": "high_yield_summary",
    }
