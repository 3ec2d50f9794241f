from study_guide.models.schemas import StepAOutput
from study_guide.utils.signals import (
    build_glossary,
    extract_sections,
    global_entities,
    keyword_coverage_pct,
    top_keywords_per_section,
)

from conftest import chunk_payload, derived_payload


def _step_a():
    return StepAOutput.model_validate(
        {**derived_payload(), "lecture_title": "Lecture", "slides": chunk_payload(1, 3)["slides"]}
    )


def test_sections_pair_headings_and_facts():
    sections = extract_sections(_step_a().slides)
    assert sections[0] == ("Topic 1", "Finding 1 indicates condition 1")


def test_top_keywords():
    sections = [("Anemia", "iron deficiency anemia ferritin"), ("Sepsis", "lactate sepsis shock")]
    keywords = top_keywords_per_section(sections, k=2)

    assert len(keywords) == 2
    assert "anemia" in keywords[0]
    assert "sepsis" in keywords[1]


def test_keyword_coverage():
    sections = [("Anemia", "iron deficiency anemia ferritin"), ("Sepsis", "lactate sepsis shock")]
    assert keyword_coverage_pct(sections, "Anemia with low ferritin") == 50.0
    assert keyword_coverage_pct(sections, "anemia and sepsis") == 100.0


def test_stopword_only_sections_score_zero():
    assert top_keywords_per_section([("the", "and of")]) == [[]]
    assert keyword_coverage_pct([("the", "and of")], "anything") == 0.0
    assert top_keywords_per_section([]) == []


def test_glossary_terms():
    assert build_glossary([("Cardiac Output", "ECG shows ST elevation")]) == ["cardiac", "ecg", "output"]


def test_global_entities():
    entities = global_entities(_step_a())

    assert entities["diseases"][:2] == ["condition 1", "condition 2"]
    assert "Finding 1 indicates condition 1" in entities["diseases"]
    assert entities["treatments"] == ["drug one"]
    assert entities["abbreviations"] == ["CX"]
    assert "topic" in entities["glossary_terms"]
