from string import Template
import hashlib


#prompts
EXTRACT_PROMPT = """You are a medical study-guide extraction engine.
Output MUST be a single JSON object. No markdown. No explanation. No trailing commas. No extra keys.
Do not wrap in backticks. End immediately after the final }. Do not repeat closing braces.

Produce JSON with this schema:
{
  "lecture_title": "string",
  "chunk": { "start_slide": 1, "end_slide": 6 },
  "slides": [
    {
      "n": 1,
      "page": 1,
      "sections": [
        {
          "heading": "string",
          "facts": [
            {
              "text": "string",
              "tags": ["disease", "diagnostic"],
              "numbers": [{"value": "string", "unit": "string"}]
            }
          ]
        }
      ],
      "tables": [
        { "caption": "string", "headers": ["string"], "rows": [["string"]] }
      ]
    }
  ]
}

Rules:
- Be exhaustive: capture every slide fact without summarizing.
- Output one entry in "slides" for every slide in the requested range, in order.
- Do not invent facts. Use ONLY the slide text provided.
- Use "General" as the section heading if none is clear.
- tags: each value must be one of ["disease","symptom","histology","diagnostic","treatment","gene","enzyme","buzz","cutoff","lab"].
- numbers may be [] when a fact has no numeric values.
- Max 10 sections per slide. Max 36 facts per slide.
- tables only if clearly present; otherwise [].
- Do NOT copy raw slide text into the output.
- Never output "not stated", "n/a" or similar. If absent, omit.
- Rewrite fragments as complete atomic statements that include their subject.
- No paragraphs. No semicolons.
"""

EXTRACT_USER_TEMPLATE = Template("""LECTURE_TITLE:
${title}

SLIDE_RANGE: ${start}-${end}
You are processing slides ${start}-${end}. Set chunk.start_slide and chunk.end_slide to these values.

CHUNK_TEXT:
${chunk_text}
""")

DERIVE_PROMPT = """You are a medical study-guide derivation engine.
Input is Step A1 JSON only. Output MUST be a single JSON object. No markdown. No explanation.
No trailing commas. No extra keys. Do not wrap in backticks.

Produce JSON with this schema:
{
  "raw_facts": ["string"],
  "buckets": {
    "dx": ["string"], "pathophys": ["string"], "clinical": ["string"], "labs": ["string"],
    "imaging": ["string"], "treatment": ["string"], "complications": ["string"],
    "risk_factors": ["string"], "epidemiology": ["string"], "red_flags": ["string"],
    "buzzwords": ["string"]
  },
  "discriminators": [{ "topic": "string", "signals": ["string"], "pitfalls": ["string"] }],
  "exam_atoms": ["string"],
  "abbrev_map": { "string": "string" },
  "source_spans": [{ "text": "string", "slides": [1], "pages": [1] }]
}

Rules:
- Use only facts present in the Step A1 JSON. Do not invent facts.
- raw_facts: short, de-duplicated atomic facts from slides and tables.
- buckets: short items, no sentences; empty arrays when nothing fits.
- discriminators: phrased like "X vs Y: key separator is Z", single-claim.
- exam_atoms: 12-40 short atomic statements, each <= 16 words, single-claim.
- abbrev_map: only abbreviations explicitly defined in the lecture.
- source_spans: slide/page references when known, otherwise [].
- No paragraphs. No semicolons.
"""

PLAN_PROMPT = """You are a medical study-guide planner.
Return ONLY a single JSON object. No markdown. No commentary. No trailing commas.
Use ONLY the provided Step A plan JSON to design the study-guide structure and counts.
Keep counts within these limits:
- high_yield_summary: 8-12
- one_page_last_minute_review: 12-18
- rapid_approach_table_rows: 10-18
- compare_topics: 2-4
- compare_rows_per_topic: 4-7

Output schema:
{
  "selected_exam_atoms": ["string"],
  "section_counts": {
    "high_yield_summary": 10,
    "one_page_last_minute_review": 16,
    "rapid_approach_table_rows": 14,
    "compare_topics": 3,
    "compare_rows_per_topic": 5
  },
  "compare_topics": ["string"],
  "atom_to_section_map": [{"atom": "string", "section": "high_yield_summary"}],
  "warnings": ["string"]
}

Rules:
- selected_exam_atoms: 12-18 high-yield atoms from Step A (exam_atoms preferred).
- compare_topics: prefer discriminator topics; fall back to dx bucket items.
- atom_to_section_map: each selected atom once; section is one of
  high_yield_summary, one_page_last_minute_review, rapid_approach_table, compare_differential.
- warnings: [] if none; short strings for sparsity or weak coverage.
"""

OUTLINE_PROMPT = """You are a medical study-guide outline engine.
Output a plain-text outline only (no JSON, no markdown fences).
Use the plan to draft a section-by-section outline. Keep wording exam-forward.
Use these exact section headers:
HIGH_YIELD_SUMMARY
RAPID_APPROACH_TABLE
ONE_PAGE_LAST_MINUTE_REVIEW
COMPARE_DIFFERENTIAL
QUANT_CUTOFFS (optional)
PITFALLS (optional)
GLOSSARY (optional)
SUPPLEMENTAL_GLUE (optional)

Formatting rules:
- Use bullets with "-" for items.
- For table rows, use "Clue | Think of | Why | Confirm".
- For compare differential rows, use "Dx1 | Dx2 | How to tell".
"""

STEP_B_SCHEMA = """{
  "high_yield_summary": ["string"],
  "rapid_approach_table": [{"clue": "string", "think_of": "string", "why": "string", "confirm": "string"}],
  "one_page_last_minute_review": ["string"],
  "compare_differential": [{"topic": "string", "rows": [{"dx1": "string", "dx2": "string", "how_to_tell": "string"}]}],
  "quant_cutoffs": [{"item": "string", "value": "string", "note": "string"}],
  "pitfalls": ["string"],
  "glossary": [{"term": "string", "definition": "string"}],
  "supplemental_glue": ["string"]
}"""

STEP_B_CONSTRAINTS = """Constraints:
- high_yield_summary: 8-12 bullets, each <= 16 words.
- one_page_last_minute_review: 12-18 bullets, each <= 14 words.
- rapid_approach_table: 10-18 rows; clue <= 10 words; think_of <= 6 words; why <= 14 words; confirm <= 10 words.
- compare_differential: 2-4 topics; each topic has 4-7 rows; how_to_tell <= 18 words.
- supplemental_glue: max 10 items, each <= 14 words, only to bridge Step A concepts.
- quant_cutoffs, pitfalls, glossary: include only if supported; otherwise [].
- Never repeat a bullet; avoid repeating the same three-word phrase more than 3 times.
"""

PACK_PROMPT = """You are a medical study-guide synthesis engine.
Return ONLY a single JSON object. No markdown. No commentary. No trailing commas.
Use ONLY Step A facts. Follow the outline to structure the output.
Keep items concise, exam-forward, and within word limits.
Schema:
""" + STEP_B_SCHEMA + "\n" + STEP_B_CONSTRAINTS

REWRITE_PROMPT = """You are a medical study-guide rewrite engine.
Fix the draft to satisfy all validation failures. Return ONLY a single JSON object.
Rules:
- Use ONLY Step A facts.
- Preserve good content; fix counts, empty fields, duplicates, coverage and word limits.
- Resolve each failure in STEP_B_FAILURES_JSON explicitly.
- No extra keys or commentary.
Schema:
""" + STEP_B_SCHEMA + "\n" + STEP_B_CONSTRAINTS

SYNTHESIS_REWRITE_PROMPT = """You are a medical study-guide rewrite engine.
Repair the draft to meet synthesis minimums. Return ONLY a single JSON object.
Rules:
- Use ONLY Step A facts.
- Keep wording concise and exam-forward.
- Ensure required arrays meet minimum counts and no item is empty.
- No extra keys or commentary.
Schema:
""" + STEP_B_SCHEMA + "\n" + STEP_B_CONSTRAINTS

DRAFT_PROMPT = """You are a medical study-guide authoring engine.
Return ONLY a single JSON object. No markdown. No commentary. No trailing commas.
Use ONLY Step A facts and the plan. Write a fresh draft that meets the minimum counts.
Schema:
""" + STEP_B_SCHEMA + """
Minimums (hard requirements, count them before answering):
- high_yield_summary >= 8 non-empty bullets (<= 16 words each)
- rapid_approach_table >= 10 complete rows (clue, think_of, why, confirm all non-empty)
- one_page_last_minute_review >= 12 non-empty bullets (<= 14 words each)
""" + STEP_B_CONSTRAINTS

REVIEW_PROMPT = """You are a medical study-guide QA and coverage checker.
Return ONLY a single JSON object. No markdown. No commentary.
All strings must use JSON double quotes. Keep each note <= 160 characters.
If you cannot fit everything, prioritize omissions and unparsed_items.

Use the summary input to identify gaps and conflicts. The summary includes slide_count,
headings, global_entities, counts, and checks_input.

Produce JSON with this schema:
{
  "coverage_confidence": "Low" | "Med" | "High",
  "unparsed_items": [{"slide": 1, "note": "string"}],
  "omissions": [{"slide": 1, "note": "string"}],
  "conflicts": [{"slide": 1, "note": "string"}],
  "checks": {
    "has_high_yield_summary": true,
    "has_rapid_approach_table": true,
    "has_one_page_review": true,
    "slide_count_stepA": 0,
    "slide_count_rendered": 0
  }
}

Rules:
- Do not invent facts outside the summary input.
- If an item is not tied to a slide, use slide: 0.
- Set checks.* values to match checks_input exactly.
"""

# Appended to the system prompt on the single strict retry
STRICT_JSON_SUFFIX = """
STRICT MODE: the previous answer could not be used.
- Return ONLY one complete JSON object and nothing else: no commentary, no code fences.
- Start with '{' and stop immediately after the final '}'.
- Keep strings short so the object is complete before the output limit.
"""


def strict(prompt: str) -> str:
    return prompt.rstrip() + "\n" + STRICT_JSON_SUFFIX


# Hash of the extraction prompt + pipeline version; keys the chunk cache
def prompt_version(pipeline_version: str) -> str:
    digest = hashlib.sha256()
    digest.update(EXTRACT_PROMPT.encode("utf-8"))
    digest.update(EXTRACT_USER_TEMPLATE.template.encode("utf-8"))
    digest.update(pipeline_version.encode("utf-8"))
    return digest.hexdigest()[:16]
