from dataclasses import dataclass, field
from typing import List, Optional
import json
import logging

from study_guide.evaluation.validators import (
    ValidationFailure,
    failures_to_dicts,
    validate_step_b,
    validate_synthesis,
)
from study_guide.models.context import RunContext
from study_guide.models.fallback import build_fallback_step_b
from study_guide.models.prompts import DRAFT_PROMPT, SYNTHESIS_REWRITE_PROMPT
from study_guide.models.schemas import StepAOutput, StepBOutput, StepBPlan, dump, validate_model

logger = logging.getLogger(__name__)

RUNG_PASS = "pass"
RUNG_REWRITE = "rewrite"
RUNG_REDRAFT = "redraft"
RUNG_FALLBACK = "fallback"

GATE_FALLBACK_WARNING = "Synthesis minimums not met; deterministic fallback document used."


@dataclass
class GateResult:
    step_b: StepBOutput
    rung: str
    failures: List[ValidationFailure] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return self.rung == RUNG_FALLBACK


def _all_failures(step_a: StepAOutput, plan: StepBPlan, step_b: StepBOutput) -> List[ValidationFailure]:
    return validate_synthesis(step_b) + validate_step_b(step_a, step_b, plan.selected_exam_atoms)


def _call(ctx: RunContext, stage: str, label: str, system_prompt: str, user_prompt: str) -> Optional[StepBOutput]:
    if ctx.budget_exhausted():
        logger.warning("[%s] Time budget exhausted; skipping gate %s", ctx.request_id, label)
        return None
    outcome = ctx.invoke_json(stage, label, system_prompt, user_prompt,
                              validate=lambda data: validate_model(StepBOutput, data))
    return outcome.value if outcome.ok else None


# validate → rewrite → strict redraft → fallback; each rung must pass both validators
def enforce_synthesis_minimums(
    ctx: RunContext,
    step_a: StepAOutput,
    plan: StepBPlan,
    step_b: StepBOutput,
) -> GateResult:

    failures = validate_synthesis(step_b)
    if not failures:
        return GateResult(step_b=step_b, rung=RUNG_PASS)

    logger.info("[%s] Synthesis minimums failed: %s", ctx.request_id,
                ", ".join(sorted({f.code for f in failures})))
    ctx.diagnostics.event("gate", "minimums failed", failures=failures_to_dicts(failures))

    step_a_json = json.dumps(dump(step_a), ensure_ascii=False)

    # Rung 1: rewrite the draft with the failures attached
    rewrite_prompt = (
        "STEP_A_JSON:\n" + step_a_json
        + "\n\nSTEP_B_DRAFT_JSON:\n" + json.dumps(dump(step_b), ensure_ascii=False)
        + "\n\nSTEP_B_FAILURES_JSON:\n" + json.dumps(failures_to_dicts(failures), ensure_ascii=False)
    )
    candidate = _call(ctx, "rewrite", "gate:rewrite", SYNTHESIS_REWRITE_PROMPT, rewrite_prompt)
    if candidate is not None:
        remaining = _all_failures(step_a, plan, candidate)
        if not remaining:
            return GateResult(step_b=candidate, rung=RUNG_REWRITE, failures=failures)
        failures = remaining

    # Rung 2: fresh draft with explicit minimums
    draft_prompt = (
        "STEP_A_JSON:\n" + step_a_json
        + "\n\nSTEP_B_PLAN_JSON:\n" + json.dumps(dump(plan), ensure_ascii=False)
    )
    candidate = _call(ctx, "pack", "gate:redraft", DRAFT_PROMPT, draft_prompt)
    if candidate is not None:
        remaining = _all_failures(step_a, plan, candidate)
        if not remaining:
            return GateResult(step_b=candidate, rung=RUNG_REDRAFT, failures=failures)
        failures = remaining

    # Rung 3: unconditional
    ctx.warn(GATE_FALLBACK_WARNING)
    return GateResult(
        step_b=build_fallback_step_b(step_a, plan.selected_exam_atoms),
        rung=RUNG_FALLBACK,
        failures=failures,
    )
