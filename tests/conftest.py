"""Test configuration: import path, scripted LLM, in-memory store, clock."""
import json
import re
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from study_guide.config import PipelineConfig  # noqa: E402
from study_guide.models import prompts  # noqa: E402
from study_guide.models.context import RunContext  # noqa: E402
from study_guide.utils.io import MemoryObjectStore  # noqa: E402


WORDS = [
    "alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel",
    "india", "juliet", "kilo", "lima", "mike", "november", "oscar", "papa",
    "quebec", "romeo", "sierra", "tango", "uniform", "victor", "whiskey", "xray",
]

EXAM_ATOMS = [f"hy{w} marker confirms hy{w} lesion" for w in WORDS[:10]]

RANGE_RE = re.compile(r"SLIDE_RANGE: (\d+)-(\d+)")

# System prompt → stage name
STAGE_PROMPTS = [
    ("extract", prompts.EXTRACT_PROMPT),
    ("derive", prompts.DERIVE_PROMPT),
    ("plan", prompts.PLAN_PROMPT),
    ("outline", prompts.OUTLINE_PROMPT),
    ("pack", prompts.PACK_PROMPT),
    ("rewrite", prompts.REWRITE_PROMPT),
    ("gate_rewrite", prompts.SYNTHESIS_REWRITE_PROMPT),
    ("redraft", prompts.DRAFT_PROMPT),
    ("review", prompts.REVIEW_PROMPT),
]


def lecture_text(n_slides: int) -> str:
    blocks = []
    for i in range(1, n_slides + 1):
        blocks.append(f"Slide {i} (p.{i}):\nTopic {i} overview\nFinding {i} indicates condition {i}")
    return "\n\n".join(blocks)


def chunk_payload(start: int, end: int, title: str = "Lecture") -> dict:
    return {
        "lecture_title": title,
        "chunk": {"start_slide": start, "end_slide": end},
        "slides": [
            {
                "n": n,
                "page": n,
                "sections": [{
                    "heading": f"Topic {n}",
                    "facts": [{"text": f"Finding {n} indicates condition {n}", "tags": ["disease"], "numbers": []}],
                }],
                "tables": [],
            }
            for n in range(start, end + 1)
        ],
    }


def derived_payload() -> dict:
    return {
        "raw_facts": ["Finding 1 indicates condition 1"],
        "buckets": {"dx": ["condition 1", "condition 2"], "treatment": ["drug one"]},
        "discriminators": [{"topic": "condition 1 vs condition 2", "signals": ["finding 1"], "pitfalls": []}],
        "exam_atoms": list(EXAM_ATOMS),
        "abbrev_map": {"CX": "condition x"},
        "source_spans": [],
    }


def plan_payload() -> dict:
    return {
        "selected_exam_atoms": list(EXAM_ATOMS),
        "section_counts": {
            "high_yield_summary": 10,
            "one_page_last_minute_review": 12,
            "rapid_approach_table_rows": 10,
            "compare_topics": 2,
            "compare_rows_per_topic": 4,
        },
        "compare_topics": ["condition 1 vs condition 2"],
        "atom_to_section_map": [{"atom": a, "section": "high_yield_summary"} for a in EXAM_ATOMS],
        "warnings": [],
    }


# A document that passes both validators against EXAM_ATOMS
def step_b_payload() -> dict:
    return {
        "high_yield_summary": list(EXAM_ATOMS),
        "rapid_approach_table": [
            {"clue": f"cl{w} clue", "think_of": f"th{w}", "why": f"wy{w} reason", "confirm": f"cf{w} test"}
            for w in WORDS[:10]
        ],
        "one_page_last_minute_review": [f"rv{w} review point" for w in WORDS[:12]],
        "compare_differential": [
            {
                "topic": f"tp{w} versus tq{w}",
                "rows": [
                    {"dx1": f"da{w}{r}", "dx2": f"db{w}{r}", "how_to_tell": f"ht{w}{r} separates them"}
                    for r in range(4)
                ],
            }
            for w in WORDS[:2]
        ],
        "quant_cutoffs": [],
        "pitfalls": [],
        "glossary": [],
        "supplemental_glue": [],
    }


def review_payload() -> dict:
    return {
        "coverage_confidence": "High",
        "unparsed_items": [],
        "omissions": [{"slide": 3, "note": "Table on slide 3 only partly covered"}],
        "conflicts": [],
        "checks": {
            "has_high_yield_summary": False,
            "has_rapid_approach_table": False,
            "has_one_page_review": False,
            "slide_count_stepA": 999,
            "slide_count_rendered": 999,
        },
    }


def stage_of(system_prompt: str) -> str:
    for name, prompt in STAGE_PROMPTS:
        if system_prompt.startswith(prompt):
            return name
    raise AssertionError(f"Unknown system prompt: {system_prompt[:60]!r}")


class FakeLLM:
    """Scripted stand-in for call_llm.

    Each stage has a default handler returning valid output. Tests override
    a stage with `handlers[stage] = fn(user_prompt, strict) -> str`.
    """

    def __init__(self, clock=None, seconds_per_call: float = 0.0):
        self.calls = []
        self.clock = clock
        self.seconds_per_call = seconds_per_call
        self.handlers = {
            "extract": self.default_extract,
            "derive": lambda user, strict: json.dumps(derived_payload()),
            "plan": lambda user, strict: json.dumps(plan_payload()),
            "outline": lambda user, strict: "HIGH_YIELD_SUMMARY\n- outline item",
            "pack": lambda user, strict: json.dumps(step_b_payload()),
            "rewrite": lambda user, strict: json.dumps(step_b_payload()),
            "gate_rewrite": lambda user, strict: json.dumps(step_b_payload()),
            "redraft": lambda user, strict: json.dumps(step_b_payload()),
            "review": lambda user, strict: json.dumps(review_payload()),
        }

    @staticmethod
    def default_extract(user_prompt: str, strict: bool) -> str:
        start, end = slide_range(user_prompt)
        return json.dumps(chunk_payload(start, end))

    def __call__(self, system_prompt, user_prompt, cfg, json_mode):
        stage = stage_of(system_prompt)
        strict = prompts.STRICT_JSON_SUFFIX.strip() in system_prompt
        self.calls.append({"stage": stage, "strict": strict, "user": user_prompt, "model": cfg.model})
        if self.clock is not None:
            self.clock.advance(self.seconds_per_call)
        return self.handlers[stage](user_prompt, strict)

    def stage_calls(self, stage: str):
        return [c for c in self.calls if c["stage"] == stage]

    def extract_ranges(self):
        return [slide_range(c["user"]) for c in self.stage_calls("extract")]


def slide_range(user_prompt: str):
    match = RANGE_RE.search(user_prompt)
    assert match, "extraction prompt carries a slide range"
    return int(match.group(1)), int(match.group(2))


class FakeClock:

    def __init__(self, start: float = 1000.0):
        self.now = start

    def advance(self, seconds: float):
        self.now += seconds

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def store():
    return MemoryObjectStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_llm(clock):
    return FakeLLM(clock=clock)


@pytest.fixture
def config():
    return PipelineConfig(time_budget_s=None)


@pytest.fixture
def ctx(config, fake_llm, store, clock):
    return RunContext(config=config, llm=fake_llm, store=store, request_id="test-run", clock=clock)
