from typing import Any, Dict
import json
import logging

from study_guide.evaluation.coverage import CoverageReport
from study_guide.evaluation.validators import collect_step_b_strings
from study_guide.models.context import RunContext
from study_guide.models.prompts import REVIEW_PROMPT
from study_guide.models.schemas import StepAOutput, StepBOutput, StepCChecks, StepCOutput, dump, validate_model
from study_guide.utils.signals import extract_sections, global_entities, keyword_coverage_pct

logger = logging.getLogger(__name__)

REVIEW_FALLBACK_WARNING = "Step C review unavailable; default review used."
MAX_HEADINGS = 60


def checks_input(step_a: StepAOutput, step_b: StepBOutput) -> StepCChecks:
    return StepCChecks(
        has_high_yield_summary=bool(step_b.high_yield_summary),
        has_rapid_approach_table=bool(step_b.rapid_approach_table),
        has_one_page_review=bool(step_b.one_page_last_minute_review),
        slide_count_stepA=len(step_a.slides),
        slide_count_rendered=len(step_a.slides),
    )


# Compact statistics instead of full documents, to bound prompt size
def build_step_c_summary(step_a: StepAOutput, step_b: StepBOutput, coverage: CoverageReport) -> Dict[str, Any]:

    headings = []
    for slide in step_a.slides:
        for sec in slide.sections:
            if sec.heading.strip() and sec.heading != "General":
                headings.append(f"{slide.n}: {sec.heading}")

    sections = extract_sections(step_a.slides)
    step_b_text = "\n".join(collect_step_b_strings(step_b))

    return {
        "lecture_title": step_a.lecture_title,
        "slide_count": len(step_a.slides),
        "headings": headings[:MAX_HEADINGS],
        "global_entities": global_entities(step_a),
        "counts": {
            "facts": sum(len(sec.facts) for s in step_a.slides for sec in s.sections),
            "tables": sum(len(s.tables) for s in step_a.slides),
            "exam_atoms": len(step_a.exam_atoms),
            "high_yield_summary": len(step_b.high_yield_summary),
            "rapid_approach_table": len(step_b.rapid_approach_table),
            "one_page_last_minute_review": len(step_b.one_page_last_minute_review),
            "compare_topics": len(step_b.compare_differential),
        },
        "keyword_coverage_pct": keyword_coverage_pct(sections, step_b_text),
        "missing_ranges": coverage.missing_lines(),
        "checks_input": dump(checks_input(step_a, step_b)),
    }


def default_review(step_a: StepAOutput, step_b: StepBOutput) -> StepCOutput:
    return StepCOutput(coverage_confidence="Med", checks=checks_input(step_a, step_b))


# One review call; any failure yields the default record
def review_study_guide(
    ctx: RunContext,
    step_a: StepAOutput,
    step_b: StepBOutput,
    coverage: CoverageReport,
) -> StepCOutput:

    if ctx.budget_exhausted():
        ctx.warn(REVIEW_FALLBACK_WARNING)
        return default_review(step_a, step_b)

    summary = build_step_c_summary(step_a, step_b, coverage)
    outcome, _ = ctx.invoke_json_with_retry(
        "review",
        "review",
        REVIEW_PROMPT,
        "SUMMARY_JSON:\n" + json.dumps(summary, ensure_ascii=False),
        validate=lambda data: validate_model(StepCOutput, data),
        close_truncated=True,
    )

    if not outcome.ok:
        logger.info("[%s] Step C failed: %s", ctx.request_id, outcome.detail)
        ctx.warn(REVIEW_FALLBACK_WARNING)
        return default_review(step_a, step_b)

    # Checks always mirror the computed input
    review = outcome.value
    review.checks = checks_input(step_a, step_b)
    return review
