from dataclasses import dataclass
from typing import Dict, List, Optional
import re


NO_TEXT = "[NO TEXT]"

SLIDE_HEADER_RE = re.compile(r"^\s*Slide\s+(\d+)\s*\(p\.\s*([^)]*)\)\s*:\s*(.*)$", re.IGNORECASE)
PAGE_MARKER_RE = re.compile(r"^\s*-{2,}\s*Page\s+(\d+)\s*-{2,}\s*$", re.IGNORECASE)

REFUSAL_PATTERNS = [
    re.compile(r"^\s*i\s*(?:am|'m)\s+sorry\b.*$", re.IGNORECASE),
    re.compile(r"^\s*i\s+can(?:not|'t)\s+(?:help|assist|comply)\b.*$", re.IGNORECASE),
    re.compile(r"^\s*as an ai(?: language model)?\b.*$", re.IGNORECASE),
]


@dataclass(frozen=True)
class Slide:
    number: int
    page_label: str
    body_text: str

    @property
    def is_empty(self) -> bool:
        return not self.body_text.strip() or self.body_text.strip() == NO_TEXT

    # Normalized block as sent to the model
    def to_block(self) -> str:
        body = self.body_text.strip() or NO_TEXT
        return f"Slide {self.number} (p.{self.page_label}):\n{body}"


# Clean model/PDF text: apostrophes, line endings, refusal lines, blank runs
def sanitize_slide_text(text: str) -> str:
    if not text:
        return ""

    value = text.replace("\r\n", "\n").replace("\r", "\n")
    value = value.replace("’", "'").replace("‘", "'").replace("`", "'")

    kept = []
    for line in value.split("\n"):
        if any(p.match(line) for p in REFUSAL_PATTERNS):
            continue
        kept.append(line.rstrip())

    value = "\n".join(kept)
    value = re.sub(r"\n{3,}", "\n\n", value)
    return value.strip()


# Convert "--- Page N ---" extracted text into normalized slide text
def format_machine_txt(extracted_text: str, page_count: Optional[int] = None) -> str:

    pages: Dict[int, List[str]] = {}
    current: Optional[int] = None

    for line in (extracted_text or "").replace("\r\n", "\n").split("\n"):
        marker = PAGE_MARKER_RE.match(line)
        if marker:
            current = int(marker.group(1))
            pages.setdefault(current, [])
            continue
        if current is None:
            continue
        stripped = line.strip()
        if stripped:
            pages[current].append(stripped)

    # Text without any page markers is a single page
    if not pages and (extracted_text or "").strip():
        pages[1] = [l.strip() for l in extracted_text.split("\n") if l.strip()]

    last = max(pages) if pages else 0
    if page_count is not None:
        last = max(last, page_count)

    blocks = []
    for n in range(1, last + 1):
        lines = pages.get(n) or []
        if lines:
            blocks.append(f"Slide {n} (p.{n}):\n" + "\n".join(lines))
        else:
            blocks.append(f"Slide {n} (p.{n}): {NO_TEXT}")

    return "\n\n".join(blocks)


# Parse normalized "Slide N (p.M):" text into ordered slides
def parse_slides(normalized_text: str) -> List[Slide]:

    text = (normalized_text or "").replace("\r\n", "\n")
    if not text.strip():
        return []

    if not any(SLIDE_HEADER_RE.match(l) for l in text.split("\n")):
        if any(PAGE_MARKER_RE.match(l) for l in text.split("\n")):
            text = format_machine_txt(text)
        else:
            return [Slide(number=1, page_label="1", body_text=sanitize_slide_text(text) or NO_TEXT)]

    found: Dict[int, Slide] = {}
    number, page, body = None, "", []

    def _flush():
        if number is None or number in found:
            return
        content = sanitize_slide_text("\n".join(body))
        found[number] = Slide(number=number, page_label=page or str(number), body_text=content or NO_TEXT)

    for line in text.split("\n"):
        header = SLIDE_HEADER_RE.match(line)
        if header:
            _flush()
            number = int(header.group(1))
            page = header.group(2).strip()
            body = [header.group(3)] if header.group(3).strip() else []
            continue
        if number is not None:
            body.append(line)
    _flush()

    if not found:
        return []

    # Fill numbering gaps so every chunk range is contiguous
    slides = []
    for n in range(min(found), max(found) + 1):
        slides.append(found.get(n) or Slide(number=n, page_label=str(n), body_text=NO_TEXT))
    return slides


def slides_text_by_number(slides: List[Slide]) -> Dict[str, str]:
    return {str(s.number): ("" if s.is_empty else s.body_text) for s in slides}
