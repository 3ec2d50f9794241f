from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Set
import re

from study_guide.models.schemas import StepAOutput, StepBOutput


@dataclass(frozen=True)
class ValidationFailure:
    code: str
    message: str
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


LIMITS = {
    "high_yield_summary": {"min": 8, "max": 12, "max_words": 16},
    "one_page_last_minute_review": {"min": 12, "max": 18, "max_words": 14},
    "rapid_approach_table": {
        "min_rows": 10,
        "max_rows": 18,
        "clue_max_words": 10,
        "think_of_max_words": 6,
        "why_max_words": 14,
        "confirm_max_words": 10,
    },
    "compare_differential": {
        "min_topics": 2,
        "max_topics": 4,
        "min_rows": 4,
        "max_rows": 7,
        "how_to_tell_max_words": 18,
    },
    "supplemental_glue": {"max_items": 10, "max_words": 14},
    "coverage": {"min_ratio": 0.7, "atom_token_overlap": 0.6},
    "redundancy": {"trigram_repeat_limit": 3},
}

SYNTHESIS_MINIMUMS = {
    "high_yield_summary": 8,
    "rapid_approach_table": 10,
    "one_page_last_minute_review": 12,
}

SYNTHESIS_NONEMPTY_RATIO = 0.7

STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in",
    "is", "it", "of", "on", "or", "the", "to", "with", "without",
}

WORD_RE = re.compile(r"[a-z0-9]+", re.IGNORECASE)


# Text helpers shared with the fallback builder

def word_count(text: str) -> int:
    return len(WORD_RE.findall(text or ""))


# Keep whole whitespace-separated words while the regex word count fits
def truncate_words(text: str, max_words: int) -> str:
    kept = []
    count = 0
    for piece in (text or "").split():
        n = word_count(piece)
        if count + n > max_words:
            break
        kept.append(piece)
        count += n
    return " ".join(kept)


def normalize_text(text: str) -> str:
    value = re.sub(r"[^a-z0-9\s]+", " ", (text or "").lower())
    return re.sub(r"\s+", " ", value).strip()


def coverage_tokens(text: str) -> List[str]:
    normalized = normalize_text(text)
    if not normalized:
        return []
    return [t for t in normalized.split(" ") if len(t) >= 2 and t not in STOPWORDS]


def trigrams(text: str) -> List[str]:
    tokens = [t for t in normalize_text(text).split(" ") if t]
    out = []
    for i in range(len(tokens) - 2):
        t1, t2, t3 = tokens[i:i + 3]
        if t1 in STOPWORDS and t2 in STOPWORDS and t3 in STOPWORDS:
            continue
        out.append(f"{t1} {t2} {t3}")
    return out


def collect_step_b_strings(step_b: StepBOutput) -> List[str]:
    strings: List[str] = []
    strings.extend(step_b.high_yield_summary)
    strings.extend(step_b.one_page_last_minute_review)
    strings.extend(step_b.pitfalls)
    strings.extend(step_b.supplemental_glue)
    for row in step_b.rapid_approach_table:
        strings.extend([row.clue, row.think_of, row.why, row.confirm])
    for topic in step_b.compare_differential:
        strings.append(topic.topic)
        for row in topic.rows:
            strings.extend([row.dx1, row.dx2, row.how_to_tell])
    for item in step_b.quant_cutoffs:
        strings.extend([item.item, item.value, item.note])
    for item in step_b.glossary:
        strings.extend([item.term, item.definition])
    return [s for s in strings if s and s.strip()]


def collect_step_a_strings(step_a: StepAOutput) -> List[str]:
    strings: List[str] = []
    strings.extend(step_a.raw_facts)
    strings.extend(step_a.exam_atoms)
    for items in step_a.buckets.model_dump().values():
        strings.extend(items)
    for d in step_a.discriminators:
        strings.append(d.topic)
        strings.extend(d.signals)
        strings.extend(d.pitfalls)
    for abbr, expansion in step_a.abbrev_map.items():
        strings.extend([abbr, expansion])
    for slide in step_a.slides:
        for section in slide.sections:
            strings.extend(f.text for f in section.facts)
        for table in slide.tables:
            strings.append(table.caption)
            strings.extend(table.headers)
            for row in table.rows:
                strings.extend(row)
    return [s for s in strings if s and s.strip()]


def token_set(strings: Iterable[str]) -> Set[str]:
    tokens: Set[str] = set()
    for value in strings:
        tokens.update(coverage_tokens(value))
    return tokens


# Whether the tokens of one atom are present in a token set
def atom_covered(atom: str, tokens: Set[str]) -> Optional[bool]:
    atom_tokens = coverage_tokens(atom)
    if not atom_tokens:
        return None
    matched = sum(1 for t in atom_tokens if t in tokens)
    ratio = matched / len(atom_tokens)
    if len(atom_tokens) <= 2:
        return ratio == 1
    return ratio >= LIMITS["coverage"]["atom_token_overlap"]


def includes_abbrev(text: str, abbrev_map: Dict[str, str]) -> bool:
    normalized = normalize_text(text)
    if not normalized:
        return False
    for abbr, expansion in abbrev_map.items():
        a = normalize_text(abbr)
        e = normalize_text(expansion)
        if (a and a in normalized) or (e and e in normalized):
            return True
    return False


def coverage_atoms(step_a: StepAOutput, selected_exam_atoms: Optional[List[str]] = None) -> List[str]:
    return list(selected_exam_atoms or []) or list(step_a.exam_atoms)


# Structural, redundancy and coverage rules for a packed document
def validate_step_b(
    step_a: StepAOutput,
    step_b: StepBOutput,
    selected_exam_atoms: Optional[List[str]] = None,
) -> List[ValidationFailure]:

    failures: List[ValidationFailure] = []

    def add(code: str, message: str, path: Optional[str] = None):
        failures.append(ValidationFailure(code=code, message=message, path=path))

    def check_list(items: List[str], key: str, label: str):
        lim = LIMITS[key]
        if len(items) < lim["min"]:
            add("TOO_FEW_BULLETS", f"{label} has too few bullets.", key)
        if len(items) > lim["max"]:
            add("TOO_MANY_BULLETS", f"{label} has too many bullets.", key)
        for idx, item in enumerate(items):
            if word_count(item) > lim["max_words"]:
                add("BULLET_TOO_LONG", f"{label} bullet exceeds word limit.", f"{key}[{idx}]")

    check_list(step_b.high_yield_summary, "high_yield_summary", "High-yield summary")
    check_list(step_b.one_page_last_minute_review, "one_page_last_minute_review", "One-page review")

    # Rapid-approach table
    rapid = step_b.rapid_approach_table
    lim = LIMITS["rapid_approach_table"]
    if len(rapid) < lim["min_rows"]:
        add("TOO_FEW_BULLETS", "Rapid-approach table has too few rows.", "rapid_approach_table")
    if len(rapid) > lim["max_rows"]:
        add("TOO_MANY_BULLETS", "Rapid-approach table has too many rows.", "rapid_approach_table")
    for idx, row in enumerate(rapid):
        fields = {
            "clue": row.clue.strip(),
            "think_of": row.think_of.strip(),
            "why": row.why.strip(),
            "confirm": row.confirm.strip(),
        }
        if not all(fields.values()):
            add("TABLE_ROW_INVALID", "Rapid-approach row missing required fields.", f"rapid_approach_table[{idx}]")
            continue
        for name, value in fields.items():
            if word_count(value) > lim[f"{name}_max_words"]:
                add("BULLET_TOO_LONG", f"Rapid-approach {name} exceeds word limit.",
                    f"rapid_approach_table[{idx}].{name}")

    # Compare differential
    compare = step_b.compare_differential
    lim = LIMITS["compare_differential"]
    if len(compare) < lim["min_topics"]:
        add("TOO_FEW_BULLETS", "Compare differential has too few topics.", "compare_differential")
    if len(compare) > lim["max_topics"]:
        add("TOO_MANY_BULLETS", "Compare differential has too many topics.", "compare_differential")
    for t_idx, topic in enumerate(compare):
        if not topic.topic.strip():
            add("TABLE_ROW_INVALID", "Compare differential topic is empty.", f"compare_differential[{t_idx}].topic")
        if len(topic.rows) < lim["min_rows"]:
            add("TOO_FEW_BULLETS", "Compare differential topic has too few rows.", f"compare_differential[{t_idx}].rows")
        if len(topic.rows) > lim["max_rows"]:
            add("TOO_MANY_BULLETS", "Compare differential topic has too many rows.", f"compare_differential[{t_idx}].rows")
        for r_idx, row in enumerate(topic.rows):
            path = f"compare_differential[{t_idx}].rows[{r_idx}]"
            if not (row.dx1.strip() and row.dx2.strip() and row.how_to_tell.strip()):
                add("TABLE_ROW_INVALID", "Compare differential row missing required fields.", path)
                continue
            if word_count(row.how_to_tell) > lim["how_to_tell_max_words"]:
                add("BULLET_TOO_LONG", "Compare differential how_to_tell exceeds word limit.", f"{path}.how_to_tell")

    # Supplemental glue
    glue = step_b.supplemental_glue
    lim = LIMITS["supplemental_glue"]
    if len(glue) > lim["max_items"]:
        add("TOO_MANY_BULLETS", "Supplemental glue has too many items.", "supplemental_glue")
    for idx, item in enumerate(glue):
        if word_count(item) > lim["max_words"]:
            add("BULLET_TOO_LONG", "Supplemental glue exceeds word limit.", f"supplemental_glue[{idx}]")

    # Redundancy across every string in the document
    normalized = [normalize_text(s) for s in collect_step_b_strings(step_b)]
    normalized = [s for s in normalized if s]
    if len(set(normalized)) != len(normalized):
        add("REDUNDANT_BULLETS", "Duplicate bullets detected across Step B output.")

    counts: Dict[str, int] = {}
    for value in normalized:
        for tri in trigrams(value):
            counts[tri] = counts.get(tri, 0) + 1
    if any(c > LIMITS["redundancy"]["trigram_repeat_limit"] for c in counts.values()):
        add("HIGH_NGRAM_OVERLAP", "Repeated trigrams detected across Step B output.")

    # Exam atom coverage
    b_tokens = token_set(collect_step_b_strings(step_b))
    covered = 0
    total = 0
    for atom in coverage_atoms(step_a, selected_exam_atoms):
        result = atom_covered(atom, b_tokens)
        if result is None:
            continue
        total += 1
        if result:
            covered += 1
    if total:
        ratio = covered / total
        if ratio < LIMITS["coverage"]["min_ratio"]:
            add("LOW_COVERAGE", f"Exam atom coverage {round(ratio * 100)}% is below target.", "coverage")

    # Glue must be supported by Step A
    if glue:
        a_tokens = token_set(collect_step_a_strings(step_a))
        for idx, item in enumerate(glue):
            if not item.strip():
                continue
            tokens = coverage_tokens(item)
            overlap = (sum(1 for t in tokens if t in a_tokens) / len(tokens)) if tokens else 0.0
            if not includes_abbrev(item, step_a.abbrev_map) and overlap < LIMITS["coverage"]["atom_token_overlap"]:
                add("GLUE_RULE_VIOLATION", "Supplemental glue contains content not supported by Step A.",
                    f"supplemental_glue[{idx}]")

    return failures


def _non_empty(items: Iterable[str]) -> int:
    return sum(1 for i in items if (i or "").strip())


# Absolute minimum counts, independent of structure
def validate_synthesis(step_b: StepBOutput) -> List[ValidationFailure]:

    failures: List[ValidationFailure] = []

    def add(code: str, message: str, path: str):
        failures.append(ValidationFailure(code=code, message=message, path=path))

    present = step_b.model_fields_set

    sections = [
        ("high_yield_summary", "High-yield summary", step_b.high_yield_summary),
        ("one_page_last_minute_review", "One-page review", step_b.one_page_last_minute_review),
    ]
    for key, label, items in sections:
        minimum = SYNTHESIS_MINIMUMS[key]
        if key not in present:
            add("SYNTHESIS_MISSING", f"{label} is missing.", key)
        elif len(items) < minimum:
            add("SYNTHESIS_TOO_FEW", f"{label} below minimum count.", key)
        filled = _non_empty(items)
        if items and filled / len(items) < SYNTHESIS_NONEMPTY_RATIO:
            add("SYNTHESIS_EMPTY", f"{label} has mostly empty items.", key)
        if filled and filled < minimum:
            add("SYNTHESIS_TOO_FEW", f"{label} has too few non-empty items.", key)

    rapid = step_b.rapid_approach_table
    minimum = SYNTHESIS_MINIMUMS["rapid_approach_table"]
    if "rapid_approach_table" not in present:
        add("SYNTHESIS_MISSING", "Rapid-approach table is missing.", "rapid_approach_table")
    elif len(rapid) < minimum:
        add("SYNTHESIS_TOO_FEW", "Rapid-approach table below minimum rows.", "rapid_approach_table")
    complete = sum(
        1 for r in rapid
        if r.clue.strip() and r.think_of.strip() and r.why.strip() and r.confirm.strip()
    )
    if rapid and complete / len(rapid) < SYNTHESIS_NONEMPTY_RATIO:
        add("SYNTHESIS_EMPTY", "Rapid-approach table has mostly empty rows.", "rapid_approach_table")
    if complete and complete < minimum:
        add("SYNTHESIS_TOO_FEW", "Rapid-approach table has too few complete rows.", "rapid_approach_table")

    return failures


def failures_to_dicts(failures: List[ValidationFailure]) -> List[Dict[str, Optional[str]]]:
    return [f.to_dict() for f in failures]
