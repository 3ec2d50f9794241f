from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator, model_validator


ALLOWED_TAGS = (
    "disease", "symptom", "histology", "diagnostic", "treatment",
    "gene", "enzyme", "buzz", "cutoff", "lab",
)

BUCKET_NAMES = (
    "dx", "pathophys", "clinical", "labs", "imaging", "treatment",
    "complications", "risk_factors", "epidemiology", "red_flags", "buzzwords",
)

MAX_SECTIONS_PER_SLIDE = 10
MAX_FACTS_PER_SLIDE = 36


def _as_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


Text = Annotated[str, BeforeValidator(_as_text)]


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore")


# Step A chunk extraction

class NumberValue(_Model):
    value: Text = ""
    unit: Text = ""


class Fact(_Model):
    text: Text
    tags: List[Text] = Field(default_factory=list)
    numbers: List[NumberValue] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _known_tags(cls, tags: List[str]) -> List[str]:
        return [t.strip().lower() for t in tags if t.strip().lower() in ALLOWED_TAGS]


class Section(_Model):
    heading: Text = "General"
    facts: List[Fact] = Field(default_factory=list)


class SlideTable(_Model):
    caption: Text = ""
    headers: List[Text] = Field(default_factory=list)
    rows: List[List[Text]] = Field(default_factory=list)


class SlideExtract(_Model):
    n: int
    page: int = 0
    sections: List[Section] = Field(default_factory=list)
    tables: List[SlideTable] = Field(default_factory=list)

    @model_validator(mode="after")
    def _fill_page(self) -> "SlideExtract":
        if not self.page:
            self.page = self.n
        return self

    # Trim to the per-slide section and fact ceilings
    @field_validator("sections")
    @classmethod
    def _section_limit(cls, sections: List[Section]) -> List[Section]:
        kept = []
        budget = MAX_FACTS_PER_SLIDE
        for section in sections[:MAX_SECTIONS_PER_SLIDE]:
            facts = section.facts[:budget]
            budget -= len(facts)
            kept.append(Section(heading=section.heading, facts=facts))
        return kept


class ChunkRange(_Model):
    start_slide: int
    end_slide: int


class StepAChunkOutput(_Model):
    lecture_title: Text = ""
    chunk: Optional[ChunkRange] = None
    slides: List[SlideExtract]


class StepAExtract(_Model):
    lecture_title: Text = ""
    slides: List[SlideExtract] = Field(default_factory=list)


# Step A derived structures

class Buckets(_Model):
    dx: List[Text] = Field(default_factory=list)
    pathophys: List[Text] = Field(default_factory=list)
    clinical: List[Text] = Field(default_factory=list)
    labs: List[Text] = Field(default_factory=list)
    imaging: List[Text] = Field(default_factory=list)
    treatment: List[Text] = Field(default_factory=list)
    complications: List[Text] = Field(default_factory=list)
    risk_factors: List[Text] = Field(default_factory=list)
    epidemiology: List[Text] = Field(default_factory=list)
    red_flags: List[Text] = Field(default_factory=list)
    buzzwords: List[Text] = Field(default_factory=list)


class Discriminator(_Model):
    topic: Text = ""
    signals: List[Text] = Field(default_factory=list)
    pitfalls: List[Text] = Field(default_factory=list)


class SourceSpan(_Model):
    text: Text = ""
    slides: List[int] = Field(default_factory=list)
    pages: List[int] = Field(default_factory=list)


class StepADerived(_Model):
    raw_facts: List[Text] = Field(default_factory=list)
    buckets: Buckets = Field(default_factory=Buckets)
    discriminators: List[Discriminator] = Field(default_factory=list)
    exam_atoms: List[Text] = Field(default_factory=list)
    abbrev_map: Dict[str, Text] = Field(default_factory=dict)
    source_spans: List[SourceSpan] = Field(default_factory=list)


class StepAOutput(StepADerived):
    lecture_title: Text = ""
    slides: List[SlideExtract] = Field(default_factory=list)


# Step B synthesis

class RapidRow(_Model):
    clue: Text = ""
    think_of: Text = ""
    why: Text = ""
    confirm: Text = ""


class CompareRow(_Model):
    dx1: Text = ""
    dx2: Text = ""
    how_to_tell: Text = ""


class CompareTopic(_Model):
    topic: Text = ""
    rows: List[CompareRow] = Field(default_factory=list)


class QuantCutoff(_Model):
    item: Text = ""
    value: Text = ""
    note: Text = ""


class GlossaryItem(_Model):
    term: Text = ""
    definition: Text = ""


class StepBOutput(_Model):
    high_yield_summary: List[Text] = Field(default_factory=list)
    rapid_approach_table: List[RapidRow] = Field(default_factory=list)
    one_page_last_minute_review: List[Text] = Field(default_factory=list)
    compare_differential: List[CompareTopic] = Field(default_factory=list)
    quant_cutoffs: List[QuantCutoff] = Field(default_factory=list)
    pitfalls: List[Text] = Field(default_factory=list)
    glossary: List[GlossaryItem] = Field(default_factory=list)
    supplemental_glue: List[Text] = Field(default_factory=list)


PLAN_SECTIONS = (
    "high_yield_summary",
    "one_page_last_minute_review",
    "rapid_approach_table",
    "compare_differential",
)


class SectionCounts(_Model):
    high_yield_summary: int = 10
    one_page_last_minute_review: int = 15
    rapid_approach_table_rows: int = 12
    compare_topics: int = 2
    compare_rows_per_topic: int = 5


class AtomAssignment(_Model):
    atom: Text = ""
    section: Text = "high_yield_summary"


class StepBPlan(_Model):
    selected_exam_atoms: List[Text] = Field(default_factory=list)
    section_counts: SectionCounts = Field(default_factory=SectionCounts)
    compare_topics: List[Text] = Field(default_factory=list)
    atom_to_section_map: List[AtomAssignment] = Field(default_factory=list)
    warnings: List[Text] = Field(default_factory=list)


# Step C review

def _confidence(value: Any) -> Any:
    if isinstance(value, str):
        key = value.strip().lower()
        if key in ("low",):
            return "Low"
        if key in ("med", "medium", "moderate"):
            return "Med"
        if key in ("high",):
            return "High"
    return value


class ReviewItem(_Model):
    slide: int = 0
    note: Text = ""

    @field_validator("note")
    @classmethod
    def _short_note(cls, note: str) -> str:
        return note.strip()[:160]


class StepCChecks(_Model):
    has_high_yield_summary: bool = False
    has_rapid_approach_table: bool = False
    has_one_page_review: bool = False
    slide_count_stepA: int = 0
    slide_count_rendered: int = 0


class StepCOutput(_Model):
    coverage_confidence: Annotated[Literal["Low", "Med", "High"], BeforeValidator(_confidence)] = "Med"
    unparsed_items: List[ReviewItem] = Field(default_factory=list)
    omissions: List[ReviewItem] = Field(default_factory=list)
    conflicts: List[ReviewItem] = Field(default_factory=list)
    checks: StepCChecks = Field(default_factory=StepCChecks)


M = TypeVar("M", bound=BaseModel)


# Validate a parsed dict, returning field-level violations
def validate_model(model_cls: Type[M], data: Any) -> Tuple[Optional[M], List[str]]:
    try:
        return model_cls.model_validate(data), []
    except ValidationError as err:
        violations = []
        for e in err.errors():
            loc = ".".join(str(p) for p in e.get("loc", ())) or "<root>"
            violations.append(f"{loc}: {e.get('msg', 'invalid')}")
        return None, violations


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")
