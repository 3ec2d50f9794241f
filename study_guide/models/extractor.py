from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging
import threading

from study_guide.evaluation.coverage import STATUS_UNPROCESSED, CoverageReport, RangeStatus
from study_guide.evaluation.manifest import ENTRY_FAILED, ENTRY_OK, ENTRY_PARTIAL, ChunkManifest, ManifestEntry
from study_guide.models.context import RunContext
from study_guide.models.prompts import EXTRACT_PROMPT, EXTRACT_USER_TEMPLATE
from study_guide.models.schemas import ChunkRange, StepAChunkOutput, dump, validate_model
from study_guide.utils.chunking import Chunk, split_chunk
from study_guide.utils.io import get_json, put_json
from study_guide.utils.json_repair import ParseOutcome

logger = logging.getLogger(__name__)

EXTRACT = "extract"
MARK_PARTIAL = "mark_partial"


@dataclass
class ExtractionResult:
    outputs: List[StepAChunkOutput]
    coverage: CoverageReport
    stats: Dict[str, int] = field(default_factory=dict)


# Schema check for one chunk, plus the "text in, nothing out" rule
def chunk_validator(chunk: Chunk):

    def _validate(data: Any) -> Tuple[Optional[StepAChunkOutput], List[str]]:
        model, violations = validate_model(StepAChunkOutput, data)
        if model is None:
            return None, violations

        in_range = [s for s in model.slides if chunk.start_slide <= s.n <= chunk.end_slide]
        if chunk.has_text and not in_range:
            return None, [f"slides: no slides extracted for {chunk.start_slide}-{chunk.end_slide}"]

        dropped = len(model.slides) - len(in_range)
        if dropped:
            logger.info("Dropped %d slides outside %s from chunk output", dropped, chunk.key)

        model.slides = in_range
        model.chunk = ChunkRange(start_slide=chunk.start_slide, end_slide=chunk.end_slide)
        return model, []

    return _validate


# Per-chunk state machine: cache → call → strict retry → split or fail
class ChunkExtractor:

    def __init__(self, ctx: RunContext, manifest: ChunkManifest, lecture_title: str):
        self.ctx = ctx
        self.manifest = manifest
        self.lecture_title = lecture_title
        self.stats = {"chunks_total": 0, "cache_hits": 0, "splits": 0, "failed": 0, "unprocessed": 0}
        self._lock = threading.Lock()

    def _bump(self, name: str) -> None:
        with self._lock:
            self.stats[name] += 1

    # Cached outputs for a range, from one entry or a gapless run of children
    def cached(self, start: int, end: int) -> Optional[List[StepAChunkOutput]]:
        chain = self.manifest.ok_chain(start, end)
        if not chain:
            return None

        outputs = []
        for entry in chain:
            data = get_json(self.ctx.store, entry.stored_key) if entry.stored_key else None
            if data is None:
                logger.info("[%s] Cached payload for %d-%d is missing", self.ctx.request_id, entry.start, entry.end)
                return None
            model, violations = validate_model(StepAChunkOutput, data)
            if model is None:
                logger.info("[%s] Cached payload for %d-%d is invalid: %s",
                            self.ctx.request_id, entry.start, entry.end, violations[:3])
                return None
            outputs.append(model)
        return outputs

    def _attempt(self, chunk: Chunk) -> Tuple[ParseOutcome, int]:

        # Nothing to extract from slides without text
        if not chunk.has_text:
            empty = StepAChunkOutput(
                lecture_title=self.lecture_title,
                chunk=ChunkRange(start_slide=chunk.start_slide, end_slide=chunk.end_slide),
                slides=[],
            )
            return ParseOutcome(ok=True, value=empty), 0

        user_prompt = EXTRACT_USER_TEMPLATE.substitute(
            title=self.lecture_title,
            start=chunk.start_slide,
            end=chunk.end_slide,
            chunk_text=chunk.text,
        )
        return self.ctx.invoke_json_with_retry(
            EXTRACT,
            f"chunk {chunk.key}",
            EXTRACT_PROMPT,
            user_prompt,
            validate=chunk_validator(chunk),
        )

    def _commit(self, chunk: Chunk, output: StepAChunkOutput, retries: int) -> StepAChunkOutput:
        if not output.lecture_title:
            output.lecture_title = self.lecture_title

        key = self.manifest.payload_key(chunk.start_slide, chunk.end_slide)
        put_json(self.ctx.store, key, dump(output))
        self.manifest.record(ManifestEntry(
            start=chunk.start_slide,
            end=chunk.end_slide,
            status=ENTRY_OK,
            stored_key=key,
            retries=retries,
        ))
        return output

    # Explicit work stack; children are pushed left-last so they run in order
    def _process(self, chunk: Chunk) -> List[StepAChunkOutput]:

        outputs: List[StepAChunkOutput] = []
        stack: List[Tuple[str, Chunk, int, Optional[ParseOutcome]]] = [(EXTRACT, chunk, 0, None)]

        while stack:
            action, current, depth, failure = stack.pop()

            # Runs after both children, so their entries land first
            if action == MARK_PARTIAL:
                self.manifest.record(ManifestEntry(
                    start=current.start_slide,
                    end=current.end_slide,
                    status=ENTRY_PARTIAL,
                    retries=1,
                    error_kind=failure.kind.value,
                    error_detail=failure.detail,
                ))
                continue

            if depth > 0:
                hit = self.cached(current.start_slide, current.end_slide)
                if hit is not None:
                    self._bump("cache_hits")
                    outputs.extend(hit)
                    continue

            outcome, retries = self._attempt(current)
            if outcome.ok:
                outputs.append(self._commit(current, outcome.value, retries))
                continue

            if current.end_slide > current.start_slide and depth < self.ctx.config.max_split_depth:
                logger.info("[%s] Splitting chunk %s at depth %d after %s",
                            self.ctx.request_id, current.key, depth, outcome.kind.value)
                self._bump("splits")
                left, right = split_chunk(current)
                stack.append((MARK_PARTIAL, current, depth, outcome))
                stack.append((EXTRACT, right, depth + 1, None))
                stack.append((EXTRACT, left, depth + 1, None))
                continue

            logger.warning("[%s] Chunk %s failed terminally: %s (%s)",
                           self.ctx.request_id, current.key, outcome.kind.value, outcome.detail)
            self._bump("failed")
            self.manifest.record(ManifestEntry(
                start=current.start_slide,
                end=current.end_slide,
                status=ENTRY_FAILED,
                retries=retries,
                error_kind=outcome.kind.value,
                error_detail=outcome.detail,
            ))

        return outputs

    # One top-level chunk; None when skipped for the time budget
    def _run_top(self, chunk: Chunk) -> Optional[List[StepAChunkOutput]]:

        hit = self.cached(chunk.start_slide, chunk.end_slide)
        if hit is not None:
            self._bump("cache_hits")
            return hit

        if self.ctx.budget_exhausted():
            self._bump("unprocessed")
            logger.warning("[%s] Time budget exhausted; chunk %s left unprocessed",
                           self.ctx.request_id, chunk.key)
            return None

        return self._process(chunk)

    def run(self, chunks: List[Chunk]) -> ExtractionResult:

        self.stats["chunks_total"] = len(chunks)
        workers = max(1, self.ctx.config.max_workers)

        if workers > 1 and len(chunks) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(self._run_top, chunks))
        else:
            results = [self._run_top(c) for c in chunks]

        outputs: List[StepAChunkOutput] = []
        ranges: List[RangeStatus] = []
        for chunk, result in zip(chunks, results):
            if result is None:
                ranges.append(RangeStatus(chunk.start_slide, chunk.end_slide, STATUS_UNPROCESSED))
                continue
            outputs.extend(result)
            ranges.extend(self.manifest.resolve(chunk.start_slide, chunk.end_slide))

        coverage = CoverageReport(
            first_slide=chunks[0].start_slide if chunks else 1,
            last_slide=chunks[-1].end_slide if chunks else 0,
            ranges=ranges,
        )

        stats = dict(self.stats)
        stats["llm_calls"] = self.ctx.diagnostics.count(EXTRACT)
        logger.info("[%s] Step A extraction: %d/%d slides, stats=%s",
                    self.ctx.request_id, coverage.processed, coverage.total, stats)
        return ExtractionResult(outputs=outputs, coverage=coverage, stats=stats)
