from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import hashlib
import html
import json
import re

from study_guide.evaluation.coverage import CoverageReport
from study_guide.models.schemas import StepAOutput, StepBOutput, StepCOutput, dump
from study_guide.utils.slides import NO_TEXT


HIGHLIGHT_LEGEND = [
    ("Disease", "disease"),
    ("Symptom", "symptom"),
    ("Histology", "histology"),
    ("Treatment", "treatment"),
    ("Diagnostic", "diagnostic"),
    ("Gene", "gene"),
    ("Enzyme", "enzyme"),
    ("Buzz", "buzz"),
    ("Cutoff", "cutoff"),
    ("Mechanism", "mechanism"),
]

TAG_TO_HIGHLIGHT = {
    "treatment": "treatment",
    "symptom": "symptom",
    "clinical": "symptom",
    "diagnostic": "diagnostic",
    "lab": "diagnostic",
    "labs": "diagnostic",
    "imaging": "diagnostic",
    "mechanism": "mechanism",
    "cutoff": "cutoff",
    "gene": "gene",
    "enzyme": "enzyme",
    "buzz": "buzz",
    "disease": "disease",
    "histology": "histology",
}

BUCKET_TO_HIGHLIGHT = {
    "dx": "disease",
    "pathophys": "mechanism",
    "clinical": "symptom",
    "labs": "diagnostic",
    "imaging": "diagnostic",
    "treatment": "treatment",
    "complications": "disease",
    "risk_factors": "disease",
    "epidemiology": "disease",
    "red_flags": "symptom",
    "buzzwords": "buzz",
}

CSS = """:root { --bg-app: #F0F3F2; --bg-surface: #F7F8F6; --bg-surface-alt: #F2F4F2; --text-primary: #1F2A2E; --text-secondary: #5E6B70; --border-subtle: #E2E6E4; }
body { margin: 0; font-family: Arial, sans-serif; line-height: 1.5; background: var(--bg-app); color: var(--text-primary); }
.sticky-header { position: sticky; top: 0; z-index: 5; background: var(--bg-surface-alt); padding: 8px; font-size: 1.2em; font-weight: bold; text-align: center; border-bottom: 1px solid var(--border-subtle); }
nav.toc { position: fixed; top: 0; left: 0; width: 220px; height: 100%; overflow: auto; background: var(--bg-surface-alt); border-right: 1px solid var(--border-subtle); padding: 6px; }
nav.toc a { text-decoration: none; display: block; margin: 4px 0; font-size: 0.9em; }
main.content { margin-left: 230px; padding: 16px 20px 32px; }
section { margin-bottom: 28px; }
.section-card { background: var(--bg-surface); border: 1px solid var(--border-subtle); border-radius: 10px; padding: 14px; }
.muted { color: var(--text-secondary); }
.warning { border-left: 4px solid #dc3545; }
table { border-collapse: collapse; width: 100%; }
th, td { border: 1px solid var(--border-subtle); padding: 4px 6px; text-align: left; vertical-align: top; }
.slide-block { border-top: 1px solid var(--border-subtle); padding-top: 12px; margin-top: 12px; }
.slide-raw { white-space: pre-wrap; background: var(--bg-surface-alt); padding: 10px; border-radius: 6px; font-size: 0.95em; }
.tag-pill { display: inline-block; padding: 2px 6px; margin-right: 4px; border-radius: 999px; background: #eef2ff; font-size: 0.75em; font-weight: 600; }
.pill { display: inline-block; padding: 2px 8px; margin: 2px; border-radius: 999px; font-size: 0.85em; }
.hl { border-radius: 3px; padding: 0 2px; }
.disease { background: #fde2e1; } .symptom { background: #fff1cc; } .histology { background: #efe3fb; }
.treatment { background: #dcf5e3; } .diagnostic { background: #dbeefe; } .gene { background: #e6e9ff; }
.enzyme { background: #ffe6f4; } .buzz { background: #fbe9d7; } .cutoff { background: #e2f6f6; } .mechanism { background: #ececec; }"""


@dataclass(frozen=True)
class LexiconEntry:
    phrase: str
    normalized: str
    class_name: str


def _esc(value) -> str:
    return html.escape(str(value or ""), quote=True)


def normalize_for_match(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", (value or "").lower()).strip()


def _include_phrase(value: str) -> bool:
    trimmed = (value or "").strip()
    return len(trimmed) >= 3 and not trimmed.isdigit()


def highlight_class_from_tags(tags: Optional[Sequence[str]]) -> Optional[str]:
    for tag in tags or []:
        name = TAG_TO_HIGHLIGHT.get(normalize_for_match(tag))
        if name:
            return name
    return None


# Phrases from buckets and tagged facts; longest match first
def build_highlight_lexicon(step_a: StepAOutput) -> List[LexiconEntry]:

    entries: List[LexiconEntry] = []
    seen = set()

    def add(phrase: str, class_name: str):
        if not _include_phrase(phrase):
            return
        normalized = normalize_for_match(phrase)
        if not normalized or (class_name, normalized) in seen:
            return
        seen.add((class_name, normalized))
        entries.append(LexiconEntry(phrase, normalized, class_name))

    for bucket, items in step_a.buckets.model_dump().items():
        class_name = BUCKET_TO_HIGHLIGHT.get(bucket)
        if class_name:
            for item in items:
                add(item, class_name)

    for slide in step_a.slides:
        for section in slide.sections:
            for fact in section.facts:
                class_name = highlight_class_from_tags(fact.tags)
                if class_name:
                    add(fact.text, class_name)

    entries.sort(key=lambda e: len(e.normalized), reverse=True)
    return entries


def apply_highlights(text: str, lexicon: List[LexiconEntry], tags: Optional[Sequence[str]] = None) -> str:
    class_name = highlight_class_from_tags(tags)
    if class_name is None:
        normalized = normalize_for_match(text)
        if normalized:
            for entry in lexicon:
                if entry.normalized in normalized:
                    class_name = entry.class_name
                    break
    if class_name is None:
        return _esc(text)
    return f'<span class="hl {class_name}">{_esc(text)}</span>'


def _render_list(items: List[str], empty_label: str, render=_esc) -> List[str]:
    if not items:
        return [f'  <p class="muted">{_esc(empty_label)}</p>'] if empty_label else []
    return ["  <ul>"] + [f"    <li>{render(item)}</li>" for item in items] + ["  </ul>"]


def _render_table(headers: List[str], rows: List[List[str]], table_class: str = "", render=_esc) -> List[str]:
    lines = [f'  <table class="{table_class}">' if table_class else "  <table>"]
    if headers:
        lines.append("    <thead><tr>" + "".join(f"<th>{_esc(h)}</th>" for h in headers) + "</tr></thead>")
    lines.append("    <tbody>")
    for row in rows:
        lines.append("      <tr>" + "".join(f"<td>{render(cell)}</td>" for cell in row) + "</tr>")
    lines.append("    </tbody>")
    lines.append("  </table>")
    return lines


def _render_review_items(title: str, items, empty_label: str) -> List[str]:
    lines = [f"  <h2>{_esc(title)}</h2>"]
    if not items:
        lines.append(f'  <p class="muted">{_esc(empty_label)}</p>')
        return lines
    lines.append("  <ul>")
    lines += [f"    <li>Slide {item.slide}: {_esc(item.note)}</li>" for item in items]
    lines.append("  </ul>")
    return lines


def content_hash(step_a: StepAOutput, step_b: StepBOutput) -> str:
    payload = json.dumps({"a": dump(step_a), "b": dump(step_b)}, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


# Full HTML document from Step A/B/C plus coverage; pure string builder
def render_study_guide_html(
    lecture_title: str,
    build_utc: str,
    step_a: StepAOutput,
    step_b: StepBOutput,
    step_c: StepCOutput,
    coverage: Optional[CoverageReport] = None,
    source_text_by_slide: Optional[Dict[str, str]] = None,
    mode: str = "maximal",
    warnings: Optional[List[str]] = None,
) -> str:

    title = lecture_title or step_a.lecture_title or "Lecture"
    sources = source_text_by_slide or {}
    lexicon = build_highlight_lexicon(step_a)
    hl = lambda text: apply_highlights(text, lexicon)
    show_coverage = coverage is not None and coverage.partial

    out: List[str] = []
    push = out.append

    push("<!doctype html>")
    push('<html lang="en">')
    push("<head>")
    push('<meta charset="utf-8" />')
    push('<meta name="viewport" content="width=device-width, initial-scale=1" />')
    push(f"<title>{_esc(title)} Study Guide</title>")
    push(f"<style>\n{CSS}\n</style>")
    push("</head>")
    push("<body>")
    push(f'<header class="sticky-header">Study Guide - {"Maximal" if mode == "maximal" else "Canonical"} Build</header>')

    toc = [
        ("output-identity", "Output Identity"),
        ("document-map", "Document Map"),
        ("highlight-legend", "Highlight Legend"),
        ("high-yield-summary", "High-Yield Summary"),
        ("rapid-approach-summary", "Rapid-Approach Summary (Global)"),
        ("one-page-last-minute-review", "One-Page Last-Minute Review"),
        ("slide-by-slide-appendix", "Slide-by-Slide Appendix"),
        ("source-note-quality-assurance", "Source Note &amp; Quality Assurance"),
    ]
    if show_coverage:
        toc.append(("coverage-qa", "Coverage &amp; Missing Slides"))
    push('<nav class="toc">')
    for anchor, label in toc:
        push(f'  <a href="#{anchor}">{label}</a>')
    push("</nav>")
    push('<main class="content">')

    # Identity
    push('<section id="output-identity" class="section-card">')
    push("  <h1>Output Identity</h1>")
    push(f"  <p>Lecture title: {_esc(title)}</p>")
    push(f"  <p>Timestamp (UTC): {_esc(build_utc)}</p>")
    push(f"  <p>Mode: {_esc(mode)}</p>")
    push(f"  <p>Slide count: {len(step_a.slides)}</p>")
    if coverage is not None:
        push(f"  <p>Coverage: {coverage.processed}/{coverage.total} slides</p>")
    push(f"  <p>Content hash: {content_hash(step_a, step_b)}</p>")
    push("</section>")

    # Map
    push('<section id="document-map" class="section-card">')
    push("  <h1>Document Map</h1>")
    push("  <h2>Slide Outline</h2>")
    outline = []
    for slide in step_a.slides:
        heading = slide.sections[0].heading if slide.sections else ""
        outline.append(f"Slide {slide.n} (p.{slide.page})" + (f" - {heading}" if heading else ""))
    out.extend(_render_list(outline, "No slides parsed."))
    push("</section>")

    push('<section id="highlight-legend" class="section-card">')
    push("  <h1>Highlight Legend</h1>")
    push('  <div class="legend">')
    for label, class_name in HIGHLIGHT_LEGEND:
        push(f'    <span class="pill {class_name}">{label}</span>')
    push("  </div>")
    push("</section>")

    # Synthesis
    push('<section id="high-yield-summary" class="section-card">')
    push("  <h1>High-Yield Summary</h1>")
    out.extend(_render_list(step_b.high_yield_summary, "No high-yield summary items.", hl))

    if step_b.supplemental_glue:
        push("  <h2>Supplemental Glue</h2>")
        out.extend(_render_list(step_b.supplemental_glue, "", hl))

    if step_b.compare_differential:
        push("  <h2>Compare Differential</h2>")
        for topic in step_b.compare_differential:
            push(f"  <h3>{_esc(topic.topic or 'Differential')}</h3>")
            rows = [[r.dx1, r.dx2, r.how_to_tell] for r in topic.rows]
            out.extend(_render_table(["Dx 1", "Dx 2", "How to Tell"], rows, "compare", hl))

    if step_b.quant_cutoffs:
        push("  <h2>Quant &amp; Cutoffs</h2>")
        rows = [[q.item, q.value, q.note] for q in step_b.quant_cutoffs]
        out.extend(_render_table(["Item", "Value", "Note"], rows, "cutoff", hl))

    if step_b.pitfalls:
        push("  <h2>Pitfalls</h2>")
        out.extend(_render_list(step_b.pitfalls, "", hl))

    if step_b.glossary:
        push("  <h2>Glossary</h2>")
        push("  <ul>")
        for item in step_b.glossary:
            push(f"    <li><strong>{hl(item.term)}</strong>: {hl(item.definition)}</li>")
        push("  </ul>")
    push("</section>")

    push('<section id="rapid-approach-summary" class="section-card">')
    push("  <h1>Rapid-Approach Summary (Global)</h1>")
    if step_b.rapid_approach_table:
        rows = [[r.clue, r.think_of, r.why, r.confirm] for r in step_b.rapid_approach_table]
        out.extend(_render_table(["Clue", "Think Of", "Why", "Confirm"], rows, "tri", hl))
    else:
        push('  <p class="muted">No rapid-approach table rows.</p>')
    push("</section>")

    push('<section id="one-page-last-minute-review" class="section-card">')
    push("  <h1>One-Page Last-Minute Review</h1>")
    out.extend(_render_list(step_b.one_page_last_minute_review, "No review items.", hl))
    push("</section>")

    # Appendix; canonical builds omit raw slide text
    push('<section id="slide-by-slide-appendix" class="section-card">')
    push("  <h1>Slide-by-Slide Appendix</h1>")
    if not step_a.slides:
        push('  <p class="muted">No slide details available.</p>')
    for slide in step_a.slides:
        push(f'  <div class="slide-block" id="slide-{slide.n}">')
        push(f"    <h2>Slide {slide.n} - (p.{slide.page})</h2>")
        if mode == "maximal":
            raw = sources.get(str(slide.n)) or NO_TEXT
            push(f'    <div class="slide-raw">{_esc(raw)}</div>')

        for section in slide.sections:
            push(f"    <h3>{_esc(section.heading or 'Section')}</h3>")
            if not section.facts:
                push('    <p class="muted">No facts parsed.</p>')
                continue
            push("    <ul>")
            for fact in section.facts:
                pills = "".join(f'<span class="tag-pill">{_esc(t)}</span>' for t in fact.tags)
                numbers = ", ".join(
                    f"{n.value} {n.unit}".strip() for n in fact.numbers if f"{n.value} {n.unit}".strip()
                )
                suffix = f' <span class="muted">({_esc(numbers)})</span>' if numbers else ""
                push(f"      <li>{pills}{apply_highlights(fact.text, lexicon, fact.tags)}{suffix}</li>")
            push("    </ul>")

        if slide.tables:
            push("    <h3>Tables</h3>")
            for table in slide.tables:
                if table.caption:
                    push(f'    <p class="muted">{_esc(table.caption)}</p>')
                out.extend(_render_table(table.headers, table.rows))
        push("  </div>")
    push("</section>")

    # Step C
    push('<section id="source-note-quality-assurance" class="section-card">')
    push("  <h1>Source Note &amp; Quality Assurance</h1>")
    push(f"  <p>Coverage confidence: {_esc(step_c.coverage_confidence)}</p>")
    push("  <h2>Checks</h2>")
    checks = step_c.checks
    rows = [
        ["has_high_yield_summary", str(checks.has_high_yield_summary).lower()],
        ["has_rapid_approach_table", str(checks.has_rapid_approach_table).lower()],
        ["has_one_page_review", str(checks.has_one_page_review).lower()],
        ["slide_count_stepA", str(checks.slide_count_stepA)],
        ["slide_count_rendered", str(checks.slide_count_rendered)],
    ]
    out.extend(_render_table(["Check", "Value"], rows))
    out.extend(_render_review_items("Unparsed Items", step_c.unparsed_items, "No unparsed items."))
    out.extend(_render_review_items("Omissions", step_c.omissions, "No omissions flagged."))
    out.extend(_render_review_items("Conflicts", step_c.conflicts, "No conflicts flagged."))
    if warnings:
        push("  <h2>Pipeline Warnings</h2>")
        out.extend(_render_list(list(warnings), ""))
    push("</section>")

    # Missing ranges are listed, never hidden
    if show_coverage:
        push('<section id="coverage-qa" class="section-card warning">')
        push("  <h1>Coverage &amp; Missing Slides</h1>")
        push(f"  <p>Processed {coverage.processed} of {coverage.total} slides. "
             "The slide ranges below are not represented in this guide.</p>")
        out.extend(_render_list(coverage.missing_lines(), ""))
        push("</section>")

    push("</main>")
    push("</body>")
    push("</html>")
    return "\n".join(out)
