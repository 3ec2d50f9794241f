from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple
import logging
import threading
import time

from study_guide.config import PipelineConfig
from study_guide.evaluation.diagnostics import DiagnosticsRecorder, StageAttempt
from study_guide.models.llm_client import LLMCallError, LLMFn, check_model
from study_guide.models.prompts import strict
from study_guide.utils.io import ObjectStore
from study_guide.utils.json_repair import FailureKind, ParseOutcome, parse_json_response

logger = logging.getLogger(__name__)


# Per-run state passed through every stage
@dataclass
class RunContext:
    config: PipelineConfig
    llm: LLMFn
    store: ObjectStore
    request_id: str
    clock: Callable[[], float] = time.monotonic
    diagnostics: Optional[DiagnosticsRecorder] = None
    warnings: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.diagnostics is None:
            self.diagnostics = DiagnosticsRecorder(self.request_id)
        self.started_at = self.clock()
        self._lock = threading.Lock()

    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def budget_exhausted(self) -> bool:
        budget = self.config.time_budget_s
        return budget is not None and self.elapsed() >= budget

    def warn(self, message: str) -> None:
        logger.warning("[%s] %s", self.request_id, message)
        with self._lock:
            if message not in self.warnings:
                self.warnings.append(message)

    def _call(self, stage: str, system_prompt: str, user_prompt: str, json_mode: bool) -> Tuple[str, str, List[str]]:
        cfg = self.config.llm_config(stage)
        check_model(cfg.model)
        try:
            return self.llm(system_prompt, user_prompt, cfg, json_mode) or "", cfg.model, []
        except LLMCallError as err:
            logger.warning("[%s] %s call failed: %s", self.request_id, stage, err)
            return "", cfg.model, [str(err)]

    # One JSON-producing call, parsed and recorded
    def invoke_json(
        self,
        stage: str,
        label: str,
        system_prompt: str,
        user_prompt: str,
        validate: Optional[Callable[[Any], Tuple[Any, List[str]]]] = None,
        close_truncated: bool = False,
    ) -> ParseOutcome:

        t0 = time.perf_counter()
        raw, model, errors = self._call(stage, system_prompt, user_prompt, True)
        outcome = parse_json_response(raw, validate=validate, close_truncated=close_truncated)
        if errors and not outcome.ok:
            outcome.kind = FailureKind.EXTRACT
            outcome.detail = errors[0]

        if outcome.ok and outcome.repaired:
            logger.info("[%s] %s output repaired (%s); treating as provisional",
                        self.request_id, label, ", ".join(outcome.repair_steps))

        self.diagnostics.record(StageAttempt(
            stage=stage,
            label=label,
            model=model,
            input_chars=len(system_prompt) + len(user_prompt),
            output_chars=len(raw),
            outcome="ok" if outcome.ok else outcome.kind.value,
            repaired=outcome.repaired,
            failures=outcome.violations or ([outcome.detail] if outcome.detail else []),
            duration_s=round(time.perf_counter() - t0, 3),
        ))
        return outcome

    # Standard call, then exactly one strict retry on any failure
    def invoke_json_with_retry(
        self,
        stage: str,
        label: str,
        system_prompt: str,
        user_prompt: str,
        validate: Optional[Callable[[Any], Tuple[Any, List[str]]]] = None,
        close_truncated: bool = False,
    ) -> Tuple[ParseOutcome, int]:

        outcome = self.invoke_json(stage, label, system_prompt, user_prompt, validate, close_truncated)
        if outcome.ok:
            return outcome, 0

        logger.info("[%s] %s failed (%s: %s); retrying with strict prompt",
                    self.request_id, label, outcome.kind.value, outcome.detail)
        retry = self.invoke_json(stage, f"{label}:strict", strict(system_prompt), user_prompt,
                                 validate, close_truncated)
        return retry, 1

    # Plain-text call (outline); empty string on failure
    def invoke_text(self, stage: str, label: str, system_prompt: str, user_prompt: str) -> str:
        t0 = time.perf_counter()
        raw, model, errors = self._call(stage, system_prompt, user_prompt, False)
        text = raw.strip()
        self.diagnostics.record(StageAttempt(
            stage=stage,
            label=label,
            model=model,
            input_chars=len(system_prompt) + len(user_prompt),
            output_chars=len(raw),
            outcome="ok" if text else FailureKind.EXTRACT.value,
            failures=errors,
            duration_s=round(time.perf_counter() - t0, 3),
        ))
        return text
