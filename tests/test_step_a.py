from study_guide.models import step_a as step_a_module
from study_guide.models.schemas import StepAChunkOutput, StepADerived, StepAExtract, StepAOutput
from study_guide.models.step_a import (
    DERIVE_FALLBACK_WARNING,
    assess_step_a_quality,
    derive_step_a,
    merge_extract_and_derived,
    merge_step_a_chunks,
)
from study_guide.utils.slides import parse_slides

from conftest import EXAM_ATOMS, chunk_payload, lecture_text


def _chunk(start, end):
    return StepAChunkOutput.model_validate(chunk_payload(start, end))


def test_merge_orders_by_chunk_start():
    merged, warnings = merge_step_a_chunks([_chunk(7, 12), _chunk(1, 6)], "Cardio")

    assert [s.n for s in merged.slides] == list(range(1, 13))
    assert merged.lecture_title == "Cardio"
    assert warnings == []


def test_merge_drops_duplicates_first_seen_wins():
    first = _chunk(1, 4)
    second = StepAChunkOutput.model_validate(chunk_payload(4, 6))
    second.slides[0].sections[0].heading = "Later copy"

    merged, warnings = merge_step_a_chunks([second, first])

    assert [s.n for s in merged.slides] == [1, 2, 3, 4, 5, 6]
    assert merged.slides[3].sections[0].heading == "Topic 4"
    assert warnings == ["Duplicate slide 4 dropped during Step A merge."]


def test_merge_never_grows_slide_count():
    outputs = [_chunk(1, 3), _chunk(2, 4), _chunk(3, 5)]
    merged, _ = merge_step_a_chunks(outputs)
    assert len(merged.slides) == 5


def test_derive_uses_model_and_caches(ctx, fake_llm, store):
    extract, _ = merge_step_a_chunks([_chunk(1, 3)], "Lecture")

    derived = derive_step_a(ctx, extract, "prefix")
    assert derived.exam_atoms == EXAM_ATOMS
    assert len(fake_llm.stage_calls("derive")) == 1
    assert fake_llm.stage_calls("derive")[0]["user"].startswith("STEP_A1_JSON:")

    again = derive_step_a(ctx, extract, "prefix")
    assert again == derived
    assert len(fake_llm.stage_calls("derive")) == 1
    assert any(k.startswith("prefix/derived_") for k in store.objects)


def test_derive_closes_truncated_output(ctx, fake_llm):
    fake_llm.handlers["derive"] = lambda user, strict: '{"exam_atoms": ["a one", "b two"], "raw_facts": ["x"'
    extract, _ = merge_step_a_chunks([_chunk(1, 2)])

    derived = derive_step_a(ctx, extract, "prefix")
    assert derived.exam_atoms == ["a one", "b two"]
    assert derived.raw_facts == ["x"]


def test_derive_failure_falls_back_to_empty(ctx, fake_llm, store):
    fake_llm.handlers["derive"] = lambda user, strict: "I cannot do that."
    extract, _ = merge_step_a_chunks([_chunk(1, 2)])

    derived = derive_step_a(ctx, extract, "prefix")

    assert derived.exam_atoms == []
    assert derived.buckets.dx == []
    assert len(fake_llm.stage_calls("derive")) == 2
    assert DERIVE_FALLBACK_WARNING in ctx.warnings
    assert not any("derived_" in k for k in store.objects)


def test_merge_extract_and_derived():
    extract = StepAExtract(lecture_title="T", slides=_chunk(1, 2).slides)
    derived = StepADerived.model_validate({"exam_atoms": ["atom"], "buckets": {"dx": ["d"]}})

    step_a = merge_extract_and_derived(extract, derived)
    assert step_a.lecture_title == "T"
    assert len(step_a.slides) == 2
    assert step_a.exam_atoms == ["atom"]
    assert step_a.buckets.dx == ["d"]


def test_quality_flags_missing_atoms_and_thin_extraction():
    slides = parse_slides("Slide 1 (p.1):\n" + ("dense text " * 400))
    extract = StepAExtract(lecture_title="T", slides=_chunk(1, 1).slides)
    step_a = merge_extract_and_derived(extract, StepADerived())

    ok, warnings = assess_step_a_quality(step_a, slides)

    assert not ok
    assert "Step A produced no exam atoms." in warnings
    assert any(w.startswith("Step A looks undersized") for w in warnings)


def test_quality_ok_for_reasonable_extraction():
    slides = parse_slides(lecture_text(3))
    extract, _ = merge_step_a_chunks([_chunk(1, 3)])
    step_a = merge_extract_and_derived(extract, StepADerived(exam_atoms=["x y z"]))

    assert assess_step_a_quality(step_a, slides) == (True, [])


def test_derive_prompt_change_invalidates_cache(ctx, fake_llm, store, monkeypatch):
    extract, _ = merge_step_a_chunks([_chunk(1, 3)], "Lecture")
    derive_step_a(ctx, extract, "prefix")

    monkeypatch.setattr(step_a_module, "DERIVE_PROMPT", step_a_module.DERIVE_PROMPT + "\nNEW RULE")
    derive_step_a(ctx, extract, "prefix")

    assert len(fake_llm.stage_calls("derive")) == 2
    assert len([k for k in store.objects if k.startswith("prefix/derived_")]) == 2


def test_quality_flags_empty_extraction_without_source_slides():
    ok, warnings = assess_step_a_quality(StepAOutput(), [])

    assert not ok
    assert warnings == ["Step A extracted no slides."]
