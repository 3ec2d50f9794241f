from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from study_guide.evaluation.validators import (
    LIMITS,
    atom_covered,
    collect_step_b_strings,
    coverage_atoms,
    coverage_tokens,
    normalize_text,
    token_set,
    trigrams,
    truncate_words,
)
from study_guide.models.schemas import (
    PLAN_SECTIONS,
    AtomAssignment,
    CompareRow,
    CompareTopic,
    GlossaryItem,
    QuantCutoff,
    RapidRow,
    SectionCounts,
    StepAOutput,
    StepBOutput,
    StepBPlan,
)

FALLBACK_PLAN_WARNING = "Plan built deterministically from Step A exam atoms."

HIGH_YIELD_COUNT = 10
ONE_PAGE_COUNT = 14
RAPID_ROWS = 10
COMPARE_TOPICS = 2
COMPARE_ROWS = 4


# Tracks every accepted string so the document never repeats a bullet
# or pushes a trigram over the redundancy limit
class _TextPool:

    def __init__(self):
        self.seen: Set[str] = set()
        self.trigram_counts: Dict[str, int] = {}
        self.counter = 0

    def _check(self, values: Sequence[str], seen: Set[str], counts: Dict[str, int]) -> bool:
        limit = LIMITS["redundancy"]["trigram_repeat_limit"]
        for value in values:
            norm = normalize_text(value)
            if not norm or norm in seen:
                return False
            seen.add(norm)
            for tri in trigrams(norm):
                counts[tri] = counts.get(tri, 0) + 1
                if counts[tri] > limit:
                    return False
        return True

    # Accept a group of strings atomically; None if any would break the rules
    def accept_all(self, items: Sequence[Tuple[str, Optional[int]]]) -> Optional[List[str]]:
        values = []
        for text, max_words in items:
            value = " ".join((text or "").split())
            if max_words is not None:
                value = truncate_words(value, max_words)
            values.append(value)

        seen = set(self.seen)
        counts = dict(self.trigram_counts)
        if not self._check(values, seen, counts):
            return None

        self.seen = seen
        self.trigram_counts = counts
        return values

    def accept(self, text: str, max_words: Optional[int] = None) -> Optional[str]:
        accepted = self.accept_all([(text, max_words)])
        return accepted[0] if accepted else None

    def placeholder(self, label: str) -> str:
        while True:
            self.counter += 1
            value = self.accept(f"{label} {self.counter} pending")
            if value:
                return value

    def take(self, candidates: Iterable[str], max_words: int, label: str) -> str:
        for c in candidates:
            value = self.accept(c, max_words)
            if value:
                return value
        return self.placeholder(label)


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        key = normalize_text(item)
        if key and key not in seen:
            seen.add(key)
            out.append(item.strip())
    return out


def _slide_facts(step_a: StepAOutput) -> List[str]:
    out = []
    for slide in step_a.slides:
        for section in slide.sections:
            out.extend(f.text for f in section.facts)
    return out


def _fill(pool: _TextPool, source: Deque[str], count: int, max_words: int, label: str) -> List[str]:
    items: List[str] = []
    while source and len(items) < count:
        value = pool.accept(source.popleft(), max_words)
        if value:
            items.append(value)
    while len(items) < count:
        items.append(pool.placeholder(label))
    return items


def _rapid_rows(pool: _TextPool, step_a: StepAOutput) -> List[RapidRow]:
    lim = LIMITS["rapid_approach_table"]
    rows: List[RapidRow] = []

    for slide in step_a.slides:
        if len(rows) >= RAPID_ROWS:
            break
        facts = [f.text for s in slide.sections for f in s.facts]
        if not facts:
            continue
        headings = [s.heading for s in slide.sections if s.heading.strip()]
        rows.append(RapidRow(
            clue=pool.take(facts[:1], lim["clue_max_words"], "Clue"),
            think_of=pool.take(headings[:1], lim["think_of_max_words"], "Topic"),
            why=pool.take(facts[1:2], lim["why_max_words"], "Reason"),
            confirm=pool.take([f"Slide {slide.n} p {slide.page}"], lim["confirm_max_words"], "Check"),
        ))

    while len(rows) < RAPID_ROWS:
        rows.append(RapidRow(
            clue=pool.placeholder("Clue"),
            think_of=pool.placeholder("Topic"),
            why=pool.placeholder("Reason"),
            confirm=pool.placeholder("Check"),
        ))
    return rows


def _compare(pool: _TextPool, step_a: StepAOutput) -> List[CompareTopic]:
    how_max = LIMITS["compare_differential"]["how_to_tell_max_words"]
    sources = [(d.topic, list(d.signals)) for d in step_a.discriminators if d.topic.strip()]
    if not sources:
        dx = _unique(step_a.buckets.dx)
        sources = [(f"{dx[i]} vs {dx[i + 1]}", []) for i in range(0, len(dx) - 1, 2)]

    topics: List[CompareTopic] = []
    for t_idx in range(COMPARE_TOPICS):
        label, signals = sources[t_idx] if t_idx < len(sources) else ("", [])
        left, _, right = label.partition(" vs ")
        rows = []
        for r_idx in range(COMPARE_ROWS):
            rows.append(CompareRow(
                dx1=pool.take([f"{left.strip()} {r_idx + 1}"] if left.strip() else [], 12, "Entity"),
                dx2=pool.take([f"{right.strip()} {r_idx + 1}"] if right.strip() else [], 12, "Alternative"),
                how_to_tell=pool.take(signals[r_idx:r_idx + 1], how_max, "Separator"),
            ))
        topics.append(CompareTopic(topic=pool.take([label], 16, "Differential"), rows=rows))
    return topics


def _quant(pool: _TextPool, step_a: StepAOutput, limit: int = 8) -> List[QuantCutoff]:
    out: List[QuantCutoff] = []
    for slide in step_a.slides:
        for section in slide.sections:
            for fact in section.facts:
                for num in fact.numbers:
                    if len(out) >= limit:
                        return out
                    value = f"{num.value} {num.unit}".strip()
                    row = pool.accept_all([(fact.text, 12), (value, 6), (f"Slide {slide.n} cutoff", 6)])
                    if row:
                        out.append(QuantCutoff(item=row[0], value=row[1], note=row[2]))
    return out


def _pitfalls(pool: _TextPool, step_a: StepAOutput, limit: int = 6) -> List[str]:
    out = []
    for d in step_a.discriminators:
        for p in d.pitfalls:
            if len(out) >= limit:
                return out
            value = pool.accept(p, 18)
            if value:
                out.append(value)
    return out


def _glossary(pool: _TextPool, step_a: StepAOutput, limit: int = 10) -> List[GlossaryItem]:
    out = []
    for abbr, expansion in step_a.abbrev_map.items():
        if len(out) >= limit:
            break
        row = pool.accept_all([(abbr, 8), (expansion, 16)])
        if row:
            out.append(GlossaryItem(term=row[0], definition=row[1]))
    return out


# Add glossary rows carrying any atom tokens the document still lacks
def _cover_atoms(pool: _TextPool, step_b: StepBOutput, atoms: List[str]) -> None:
    tokens = token_set(collect_step_b_strings(step_b))
    for idx, atom in enumerate(atoms, 1):
        if atom_covered(atom, tokens) is not False:
            continue
        missing = []
        for t in coverage_tokens(atom):
            if t not in tokens and t not in missing:
                missing.append(t)
        row = pool.accept_all([(f"Exam atom {idx}", None), (" ".join(missing), None)])
        if row:
            step_b.glossary.append(GlossaryItem(term=row[0], definition=row[1]))
            tokens.update(missing)


# Deterministic minimal document that satisfies both validators
def build_fallback_step_b(step_a: StepAOutput, selected_exam_atoms: Optional[List[str]] = None) -> StepBOutput:

    pool = _TextPool()
    atoms = _unique(coverage_atoms(step_a, selected_exam_atoms) + list(step_a.exam_atoms))
    source = deque(_unique(atoms + list(step_a.raw_facts) + _slide_facts(step_a)))

    high_yield = _fill(pool, source, HIGH_YIELD_COUNT, LIMITS["high_yield_summary"]["max_words"], "Summary")
    one_page = _fill(pool, source, ONE_PAGE_COUNT, LIMITS["one_page_last_minute_review"]["max_words"], "Review")

    step_b = StepBOutput(
        high_yield_summary=high_yield,
        rapid_approach_table=_rapid_rows(pool, step_a),
        one_page_last_minute_review=one_page,
        compare_differential=_compare(pool, step_a),
        quant_cutoffs=_quant(pool, step_a),
        pitfalls=_pitfalls(pool, step_a),
        glossary=_glossary(pool, step_a),
        supplemental_glue=[],
    )
    _cover_atoms(pool, step_b, atoms)
    return step_b


def build_fallback_plan(step_a: StepAOutput) -> StepBPlan:

    atoms = _unique(step_a.exam_atoms or step_a.raw_facts)[:18]
    topics = _unique(d.topic for d in step_a.discriminators)[:4] or _unique(step_a.buckets.dx)[:4]
    sections = PLAN_SECTIONS[:3]

    return StepBPlan(
        selected_exam_atoms=atoms,
        section_counts=SectionCounts(compare_topics=min(4, max(2, len(topics)))),
        compare_topics=topics,
        atom_to_section_map=[
            AtomAssignment(atom=a, section=sections[i % len(sections)]) for i, a in enumerate(atoms)
        ],
        warnings=[FALLBACK_PLAN_WARNING],
    )


# Plain-text outline in the same layout the outline prompt asks for
def outline_from_step_b(step_b: StepBOutput) -> str:
    lines = ["HIGH_YIELD_SUMMARY"]
    lines += [f"- {item}" for item in step_b.high_yield_summary]
    lines.append("RAPID_APPROACH_TABLE")
    lines += [f"- {r.clue} | {r.think_of} | {r.why} | {r.confirm}" for r in step_b.rapid_approach_table]
    lines.append("ONE_PAGE_LAST_MINUTE_REVIEW")
    lines += [f"- {item}" for item in step_b.one_page_last_minute_review]
    lines.append("COMPARE_DIFFERENTIAL")
    for topic in step_b.compare_differential:
        lines.append(f"- {topic.topic}")
        lines += [f"  - {r.dx1} | {r.dx2} | {r.how_to_tell}" for r in topic.rows]
    if step_b.quant_cutoffs:
        lines.append("QUANT_CUTOFFS")
        lines += [f"- {q.item} - {q.value} - {q.note}" for q in step_b.quant_cutoffs]
    if step_b.pitfalls:
        lines.append("PITFALLS")
        lines += [f"- {p}" for p in step_b.pitfalls]
    if step_b.glossary:
        lines.append("GLOSSARY")
        lines += [f"- {g.term} - {g.definition}" for g in step_b.glossary]
    return "\n".join(lines)
