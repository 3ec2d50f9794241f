import pytest

from study_guide.evaluation.coverage import STATUS_FAILED, STATUS_OK, CoverageReport, RangeStatus
from study_guide.models.schemas import StepAOutput, StepBOutput, StepCOutput
from study_guide.visualization.study_guide_html import (
    build_highlight_lexicon,
    content_hash,
    render_study_guide_html,
)

from conftest import chunk_payload, derived_payload, review_payload, step_b_payload


@pytest.fixture
def step_a():
    return StepAOutput.model_validate(
        {**derived_payload(), "lecture_title": "Lecture", "slides": chunk_payload(1, 3)["slides"]}
    )


@pytest.fixture
def step_b():
    return StepBOutput.model_validate(step_b_payload())


@pytest.fixture
def step_c():
    return StepCOutput.model_validate(review_payload())


def _render(step_a, step_b, step_c, **kwargs):
    return render_study_guide_html("Cardio", "2024-01-01T00:00:00Z", step_a, step_b, step_c, **kwargs)


def test_document_has_every_section(step_a, step_b, step_c):
    doc = _render(step_a, step_b, step_c)

    for anchor in (
        "output-identity",
        "document-map",
        "highlight-legend",
        "high-yield-summary",
        "rapid-approach-summary",
        "one-page-last-minute-review",
        "slide-by-slide-appendix",
        "source-note-quality-assurance",
    ):
        assert f'<section id="{anchor}"' in doc
    assert 'id="coverage-qa"' not in doc
    assert "<title>Cardio Study Guide</title>" in doc
    assert "Timestamp (UTC): 2024-01-01T00:00:00Z" in doc
    assert "Coverage confidence: High" in doc


def test_partial_coverage_is_listed(step_a, step_b, step_c):
    coverage = CoverageReport(1, 18, [
        RangeStatus(1, 15, STATUS_OK),
        RangeStatus(16, 18, STATUS_FAILED, error_kind="TRUNCATED"),
    ])
    doc = _render(step_a, step_b, step_c, coverage=coverage)

    assert '<section id="coverage-qa" class="section-card warning">' in doc
    assert "<li>Slide 16–18: JSON appears truncated.</li>" in doc
    assert "Coverage: 15/18 slides" in doc
    assert '<a href="#coverage-qa">' in doc


def test_complete_coverage_has_no_qa_section(step_a, step_b, step_c):
    coverage = CoverageReport(1, 3, [RangeStatus(1, 3, STATUS_OK)])
    doc = _render(step_a, step_b, step_c, coverage=coverage)

    assert 'id="coverage-qa"' not in doc
    assert "Coverage: 3/3 slides" in doc


def test_content_is_escaped(step_a, step_b, step_c):
    step_b.high_yield_summary[0] = "<script>alert(1)</script> & more"
    doc = _render(step_a, step_b, step_c)

    assert "<script>" not in doc
    assert "&lt;script&gt;alert(1)&lt;/script&gt; &amp; more" in doc


def test_canonical_mode_omits_raw_slide_text(step_a, step_b, step_c):
    sources = {"1": "RAW BODY OF SLIDE ONE"}

    maximal = _render(step_a, step_b, step_c, source_text_by_slide=sources, mode="maximal")
    canonical = _render(step_a, step_b, step_c, source_text_by_slide=sources, mode="canonical")

    assert "RAW BODY OF SLIDE ONE" in maximal
    assert "RAW BODY OF SLIDE ONE" not in canonical
    assert 'class="slide-raw"' not in canonical
    assert "Canonical Build" in canonical


def test_tagged_facts_are_highlighted(step_a, step_b, step_c):
    doc = _render(step_a, step_b, step_c)
    assert '<span class="hl disease">Finding 2 indicates condition 2</span>' in doc


def test_lexicon_prefers_longest_phrase(step_a):
    lexicon = build_highlight_lexicon(step_a)
    lengths = [len(e.normalized) for e in lexicon]
    assert lengths == sorted(lengths, reverse=True)


def test_warnings_rendered(step_a, step_b, step_c):
    doc = _render(step_a, step_b, step_c, warnings=["Step C review unavailable; default review used."])
    assert "Pipeline Warnings" in doc
    assert "<li>Step C review unavailable; default review used.</li>" in doc


def test_content_hash_is_stable(step_a, step_b):
    assert content_hash(step_a, step_b) == content_hash(step_a, step_b)
    assert len(content_hash(step_a, step_b)) == 16
