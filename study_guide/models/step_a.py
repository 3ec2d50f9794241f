from typing import List, Tuple
import hashlib
import json
import logging

from study_guide.models.context import RunContext
from study_guide.models.prompts import DERIVE_PROMPT
from study_guide.models.schemas import (
    SlideExtract,
    StepAChunkOutput,
    StepADerived,
    StepAExtract,
    StepAOutput,
    dump,
    validate_model,
)
from study_guide.utils.io import get_json, put_json
from study_guide.utils.slides import Slide

logger = logging.getLogger(__name__)

DERIVE = "derive"
DERIVE_FALLBACK_WARNING = "Step A derivation failed; exam atoms and buckets are empty."
DERIVE_SKIPPED_WARNING = "Time budget exhausted before Step A derivation; exam atoms and buckets are empty."

# Roughly one fact per this many characters of slide text
CHARS_PER_FACT = 400


# Ordered merge of chunk outputs; first copy of a slide number wins
def merge_step_a_chunks(outputs: List[StepAChunkOutput], lecture_title: str = "") -> Tuple[StepAExtract, List[str]]:

    warnings: List[str] = []
    ordered = sorted(
        outputs,
        key=lambda o: (o.chunk.start_slide if o.chunk else (o.slides[0].n if o.slides else 0)),
    )

    seen = set()
    slides: List[SlideExtract] = []
    for output in ordered:
        for slide in output.slides:
            if slide.n in seen:
                warnings.append(f"Duplicate slide {slide.n} dropped during Step A merge.")
                continue
            seen.add(slide.n)
            slides.append(slide)

    title = lecture_title or next((o.lecture_title for o in ordered if o.lecture_title), "")

    return StepAExtract(lecture_title=title, slides=slides), warnings


def _extract_digest(extract: StepAExtract) -> str:
    payload = json.dumps(dump(extract), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def _derive_prompt_digest() -> str:
    return hashlib.sha256(DERIVE_PROMPT.encode("utf-8")).hexdigest()[:12]


# Keyed on both the derive prompt and the merged extraction
def derived_cache_key(prefix: str, extract: StepAExtract) -> str:
    return f"{prefix}/derived_{_derive_prompt_digest()}_{_extract_digest(extract)}.json"


# Cross-cutting structures from the merged extraction, with cache + fallback
def derive_step_a(ctx: RunContext, extract: StepAExtract, cache_prefix: str) -> StepADerived:

    key = derived_cache_key(cache_prefix, extract)
    cached = get_json(ctx.store, key)
    if cached is not None:
        model, violations = validate_model(StepADerived, cached)
        if model is not None:
            logger.info("[%s] Derived Step A structures served from cache", ctx.request_id)
            return model
        logger.info("[%s] Ignoring invalid derived cache: %s", ctx.request_id, violations[:3])

    if ctx.budget_exhausted():
        ctx.warn(DERIVE_SKIPPED_WARNING)
        return StepADerived()

    user_prompt = "STEP_A1_JSON:\n" + json.dumps(dump(extract), ensure_ascii=False)
    outcome, _ = ctx.invoke_json_with_retry(
        DERIVE,
        "derive",
        DERIVE_PROMPT,
        user_prompt,
        validate=lambda data: validate_model(StepADerived, data),
        close_truncated=True,
    )

    if not outcome.ok:
        ctx.warn(DERIVE_FALLBACK_WARNING)
        return StepADerived()

    # Repaired output is provisional and never cached
    if not outcome.repaired:
        put_json(ctx.store, key, dump(outcome.value))
    return outcome.value


def merge_extract_and_derived(extract: StepAExtract, derived: StepADerived) -> StepAOutput:
    return StepAOutput(
        lecture_title=extract.lecture_title,
        slides=extract.slides,
        **derived.model_dump(),
    )


def count_facts(step_a: StepAOutput) -> int:
    return sum(len(sec.facts) for slide in step_a.slides for sec in slide.sections)


# Flag an extraction that is thin relative to its source text
def assess_step_a_quality(step_a: StepAOutput, slides: List[Slide]) -> Tuple[bool, List[str]]:

    warnings: List[str] = []
    text_slides = [s for s in slides if not s.is_empty]
    source_chars = sum(len(s.body_text) for s in text_slides)

    if not step_a.slides:
        if text_slides:
            warnings.append("Step A extracted no slides from a lecture with text.")
        else:
            warnings.append("Step A extracted no slides.")

    facts = count_facts(step_a)
    expected = source_chars // CHARS_PER_FACT
    if expected and facts < expected // 2:
        warnings.append(f"Step A looks undersized: {facts} facts for {source_chars} characters of slide text.")

    if step_a.slides and not step_a.exam_atoms:
        warnings.append("Step A produced no exam atoms.")

    return not warnings, warnings
