from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import logging
import re
import time
import uuid

from study_guide.config import MODES, PipelineConfig
from study_guide.evaluation.manifest import ChunkManifest
from study_guide.models.compiler import compile_step_b
from study_guide.models.context import RunContext
from study_guide.models.extractor import ChunkExtractor
from study_guide.models.gate import enforce_synthesis_minimums
from study_guide.models.llm_client import LLMFn, call_llm
from study_guide.models.prompts import prompt_version
from study_guide.models.reviewer import review_study_guide
from study_guide.models.step_a import (
    assess_step_a_quality,
    derive_step_a,
    merge_extract_and_derived,
    merge_step_a_chunks,
)
from study_guide.utils.chunking import build_chunks
from study_guide.utils.io import LocalObjectStore, ObjectStore
from study_guide.utils.slides import parse_slides, slides_text_by_number
from study_guide.visualization.study_guide_html import render_study_guide_html

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    document_bytes: bytes
    stored_key: str
    partial: bool
    coverage: Dict[str, int]
    warnings: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    request_id: str = ""
    diagnostics_key: Optional[str] = None


# Whitespace runs → "-", drop anything outside [A-Za-z0-9._-]
def slugify(value: str) -> str:
    slug = re.sub(r"\s+", "-", (value or "").strip())
    slug = re.sub(r"[^A-Za-z0-9._-]", "", slug)
    return slug or "lecture"


def doc_key_for(doc_id: str, lecture_title: str) -> str:
    return slugify(doc_id) if (doc_id or "").strip() else slugify(lecture_title)


# Published location follows the lecture title; doc_id only keys the Step A cache
def study_guide_stored_key(lecture_title: str) -> str:
    slug = slugify(lecture_title)
    return f"machine/study-guides/{slug}/Study_Guide_{slug}.html"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# Full study-guide generation for one document
def generate(
    normalized_text: str,
    lecture_title: str,
    doc_id: str,
    mode: str = "maximal",
    config: Optional[PipelineConfig] = None,
    llm: LLMFn = call_llm,
    store: Optional[ObjectStore] = None,
    clock: Optional[Callable[[], float]] = None,
    request_id: Optional[str] = None,
    build_utc: Optional[str] = None,
) -> GenerationResult:

    # Configuration errors surface before any LLM call
    config = (config or PipelineConfig()).validate()
    if mode not in MODES:
        raise ValueError(f"Unknown mode '{mode}'; expected one of {', '.join(MODES)}")

    slides = parse_slides(normalized_text)
    if not slides:
        raise ValueError("Input contains no slides")

    store = store if store is not None else LocalObjectStore(config.store_root)
    ctx = RunContext(
        config=config,
        llm=llm,
        store=store,
        request_id=request_id or uuid.uuid4().hex[:12],
        clock=clock or time.monotonic,
    )

    doc_key = doc_key_for(doc_id, lecture_title)
    logger.info("[%s] Generating %s study guide for %s (%d slides)",
                ctx.request_id, mode, doc_key, len(slides))

    # Step A: chunked extraction, merge, derive
    manifest = ChunkManifest.load(store, doc_key, mode, prompt_version(config.pipeline_version))
    chunks = build_chunks(
        slides,
        max_slides=config.max_slides_per_chunk,
        max_chars=config.max_chars_per_chunk,
        adaptive_token_limit=config.adaptive_token_limit,
    )
    extraction = ChunkExtractor(ctx, manifest, lecture_title).run(chunks)
    coverage = extraction.coverage

    extract, merge_warnings = merge_step_a_chunks(extraction.outputs, lecture_title)
    for w in merge_warnings:
        ctx.warn(w)

    derived = derive_step_a(ctx, extract, manifest.prefix)
    step_a = merge_extract_and_derived(extract, derived)

    _, quality_warnings = assess_step_a_quality(step_a, slides)
    for w in quality_warnings:
        ctx.warn(w)

    # Step B: compile, then the minimum gate
    compiled = compile_step_b(ctx, step_a)
    gate = enforce_synthesis_minimums(ctx, step_a, compiled.plan, compiled.step_b)

    # Step C
    step_c = review_study_guide(ctx, step_a, gate.step_b, coverage)

    if coverage.partial:
        ctx.warn(f"Coverage incomplete: {coverage.processed}/{coverage.total} slides processed.")
        for line in coverage.missing_lines():
            ctx.warn(line)

    document = render_study_guide_html(
        lecture_title=lecture_title,
        build_utc=build_utc or utc_timestamp(),
        step_a=step_a,
        step_b=gate.step_b,
        step_c=step_c,
        coverage=coverage,
        source_text_by_slide=slides_text_by_number(slides),
        mode=mode,
        warnings=ctx.warnings,
    )
    document_bytes = document.encode("utf-8")

    # A failed write here is fatal
    stored_key = study_guide_stored_key(lecture_title)
    store.put(stored_key, document_bytes)

    stats = dict(extraction.stats)
    stats.update({
        "slides": len(slides),
        "llm_calls_total": len(ctx.diagnostics.attempts),
        "step_b_fallback": compiled.used_fallback,
        "step_b_rewrites": compiled.rewrites,
        "gate_rung": gate.rung,
        "elapsed_s": round(ctx.elapsed(), 3),
    })
    ctx.diagnostics.event("pipeline", "completed", stored_key=stored_key,
                          coverage=coverage.to_dict(), stats=stats)
    diagnostics_key = ctx.diagnostics.save(store)

    logger.info("[%s] Stored %s (%d/%d slides, partial=%s)", ctx.request_id, stored_key,
                coverage.processed, coverage.total, coverage.partial)

    return GenerationResult(
        document_bytes=document_bytes,
        stored_key=stored_key,
        partial=coverage.partial,
        coverage={"processed": coverage.processed, "total": coverage.total},
        warnings=list(ctx.warnings),
        stats=stats,
        request_id=ctx.request_id,
        diagnostics_key=diagnostics_key,
    )
