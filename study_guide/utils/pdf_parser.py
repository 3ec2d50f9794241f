import fitz  # PyMuPDF
from collections import Counter
from typing import List, Tuple
import os

from study_guide.utils.slides import format_machine_txt, sanitize_slide_text

# A line on at least this share of pages is a header/footer
REPEATED_LINE_RATIO = 0.6


# clean lines by stripping whitespace and removing empties
def _clean_lines(lines: List[str]) -> List[str]:

    cleaned = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        cleaned.append(line)
    return cleaned


# Raw page text, one entry per page
def extract_pages_from_pdf(pdf_path: str) -> List[str]:

    if not os.path.exists(pdf_path):
        raise FileNotFoundError(f"PDF not found: {pdf_path}")

    pages = []
    with fitz.open(pdf_path) as doc:
        for page in doc:
            pages.append(page.get_text("text"))
    return pages


# Drop repeated header/footer lines and bare page numbers
def normalize_pages(pages: List[str]) -> List[List[str]]:

    cleaned = [_clean_lines(sanitize_slide_text(p).split("\n")) for p in pages]

    repeated = set()
    if len(cleaned) >= 3:
        counts = Counter(line for lines in cleaned for line in set(lines))
        threshold = REPEATED_LINE_RATIO * len(cleaned)
        repeated = {line for line, n in counts.items() if n >= threshold}

    out = []
    for lines in cleaned:
        out.append([l for l in lines if l not in repeated and not l.isdigit()])
    return out


# PDF → normalized "Slide N (p.N):" text
def pdf_to_normalized_text(pdf_path: str) -> Tuple[str, str]:

    pages = normalize_pages(extract_pages_from_pdf(pdf_path))

    marked = []
    for idx, lines in enumerate(pages, 1):
        marked.append(f"--- Page {idx} ---")
        marked.extend(lines)

    lecture_title = os.path.splitext(os.path.basename(pdf_path))[0]
    return format_machine_txt("\n".join(marked), page_count=len(pages)), lecture_title
