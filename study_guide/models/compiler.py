from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import json
import logging

from study_guide.evaluation.validators import ValidationFailure, failures_to_dicts, validate_step_b
from study_guide.models.context import RunContext
from study_guide.models.fallback import (
    FALLBACK_PLAN_WARNING,
    build_fallback_plan,
    build_fallback_step_b,
    outline_from_step_b,
)
from study_guide.models.prompts import OUTLINE_PROMPT, PACK_PROMPT, PLAN_PROMPT, REWRITE_PROMPT
from study_guide.models.schemas import StepAOutput, StepBOutput, StepBPlan, dump, validate_model

logger = logging.getLogger(__name__)

FALLBACK_DOCUMENT_WARNING = "Step B synthesis used the deterministic fallback document."
FALLBACK_OUTLINE_WARNING = "Step B outline built from the fallback document."
BUDGET_WARNING = "Time budget exhausted during Step B; remaining calls skipped."

# Inclusive bounds the plan's section counts are clamped into
PLAN_COUNT_BOUNDS = {
    "high_yield_summary": (8, 12),
    "one_page_last_minute_review": (12, 18),
    "rapid_approach_table_rows": (10, 18),
    "compare_topics": (2, 4),
    "compare_rows_per_topic": (4, 7),
}

MAX_SELECTED_ATOMS = 18


@dataclass
class CompileResult:
    step_b: StepBOutput
    plan: StepBPlan
    outline: str
    used_fallback: bool = False
    failures: List[ValidationFailure] = field(default_factory=list)
    rewrites: int = 0


def _json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False)


def _validate_step_b(data: Any):
    return validate_model(StepBOutput, data)


# Title, atoms, discriminators and buckets only
def slim_step_a(step_a: StepAOutput) -> Dict[str, Any]:
    return {
        "lecture_title": step_a.lecture_title,
        "exam_atoms": list(step_a.exam_atoms),
        "discriminators": [dump(d) for d in step_a.discriminators],
        "buckets": dump(step_a.buckets),
    }


def clamp_plan(plan: StepBPlan, step_a: StepAOutput) -> StepBPlan:
    counts = plan.section_counts
    for name, (low, high) in PLAN_COUNT_BOUNDS.items():
        setattr(counts, name, min(high, max(low, getattr(counts, name))))

    if not plan.selected_exam_atoms:
        plan.selected_exam_atoms = list(step_a.exam_atoms)
    plan.selected_exam_atoms = [a for a in plan.selected_exam_atoms if a.strip()][:MAX_SELECTED_ATOMS]
    return plan


# Sub-call 1: content allocation plan, deterministic on failure
def plan_step_b(ctx: RunContext, step_a: StepAOutput) -> StepBPlan:

    if ctx.budget_exhausted():
        ctx.warn(BUDGET_WARNING)
        ctx.warn(FALLBACK_PLAN_WARNING)
        return build_fallback_plan(step_a)

    outcome, _ = ctx.invoke_json_with_retry(
        "plan",
        "plan",
        PLAN_PROMPT,
        "STEP_A_PLAN_JSON:\n" + _json(slim_step_a(step_a)),
        validate=lambda data: validate_model(StepBPlan, data),
    )
    if not outcome.ok:
        ctx.warn(FALLBACK_PLAN_WARNING)
        return build_fallback_plan(step_a)

    return clamp_plan(outcome.value, step_a)


# Sub-call 2: plain-text outline
def outline_step_b(ctx: RunContext, step_a: StepAOutput, plan: StepBPlan) -> str:

    outline = ""
    if ctx.budget_exhausted():
        ctx.warn(BUDGET_WARNING)
    else:
        user_prompt = (
            "STEP_B_PLAN_JSON:\n" + _json(dump(plan))
            + "\n\nSTEP_A_JSON:\n" + _json(slim_step_a(step_a))
        )
        outline = ctx.invoke_text("outline", "outline", OUTLINE_PROMPT, user_prompt)

    if not outline:
        ctx.warn(FALLBACK_OUTLINE_WARNING)
        outline = outline_from_step_b(build_fallback_step_b(step_a, plan.selected_exam_atoms))
    return outline


# Sub-call 3: structured document from Step A + outline; no retry
def pack_step_b(ctx: RunContext, step_a: StepAOutput, outline: str) -> Optional[StepBOutput]:

    if ctx.budget_exhausted():
        ctx.warn(BUDGET_WARNING)
        return None

    user_prompt = (
        "STEP_A_JSON:\n" + _json(dump(step_a))
        + "\n\nSTEP_B1_OUTLINE:\n" + outline
    )
    outcome = ctx.invoke_json("pack", "pack", PACK_PROMPT, user_prompt, validate=_validate_step_b)
    if not outcome.ok:
        logger.warning("[%s] Step B pack failed: %s (%s)", ctx.request_id, outcome.kind.value, outcome.detail)
        return None
    return outcome.value


# Sub-call 4: one targeted rewrite against the validator's failure list
def rewrite_step_b(
    ctx: RunContext,
    step_a: StepAOutput,
    draft: StepBOutput,
    failures: List[ValidationFailure],
) -> Optional[StepBOutput]:

    if ctx.budget_exhausted():
        ctx.warn(BUDGET_WARNING)
        return None

    user_prompt = (
        "STEP_A_JSON:\n" + _json(dump(step_a))
        + "\n\nSTEP_B_DRAFT_JSON:\n" + _json(dump(draft))
        + "\n\nSTEP_B_FAILURES_JSON:\n" + _json(failures_to_dicts(failures))
    )
    outcome = ctx.invoke_json("rewrite", "rewrite", REWRITE_PROMPT, user_prompt, validate=_validate_step_b)
    return outcome.value if outcome.ok else None


def _fallback(ctx: RunContext, step_a: StepAOutput, plan: StepBPlan, outline: str,
              failures: List[ValidationFailure], rewrites: int) -> CompileResult:
    ctx.warn(FALLBACK_DOCUMENT_WARNING)
    return CompileResult(
        step_b=build_fallback_step_b(step_a, plan.selected_exam_atoms),
        plan=plan,
        outline=outline,
        used_fallback=True,
        failures=failures,
        rewrites=rewrites,
    )


# Plan → outline → pack → validate → rewrite → fallback
def compile_step_b(ctx: RunContext, step_a: StepAOutput) -> CompileResult:

    plan = plan_step_b(ctx, step_a)
    outline = outline_step_b(ctx, step_a, plan)

    packed = pack_step_b(ctx, step_a, outline)
    if packed is None:
        return _fallback(ctx, step_a, plan, outline, [], 0)

    failures = validate_step_b(step_a, packed, plan.selected_exam_atoms)
    if not failures:
        return CompileResult(step_b=packed, plan=plan, outline=outline)

    logger.info("[%s] Step B validation failed (%s); rewriting",
                ctx.request_id, ", ".join(sorted({f.code for f in failures})))
    ctx.diagnostics.event("pack", "validation failed", failures=failures_to_dicts(failures))

    rewritten = rewrite_step_b(ctx, step_a, packed, failures)
    if rewritten is None:
        return _fallback(ctx, step_a, plan, outline, failures, 1)

    remaining = validate_step_b(step_a, rewritten, plan.selected_exam_atoms)
    if remaining:
        ctx.diagnostics.event("rewrite", "validation failed", failures=failures_to_dicts(remaining))
        return _fallback(ctx, step_a, plan, outline, remaining, 1)

    return CompileResult(step_b=rewritten, plan=plan, outline=outline, rewrites=1)
