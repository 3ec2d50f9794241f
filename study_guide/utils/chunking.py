from dataclasses import dataclass
from typing import List, Optional, Tuple

from study_guide.utils.slides import Slide


@dataclass(frozen=True)
class Chunk:
    start_slide: int
    end_slide: int
    text: str
    slides: Tuple[Slide, ...]

    @property
    def key(self) -> str:
        return f"{self.start_slide}-{self.end_slide}"

    @property
    def slide_count(self) -> int:
        return self.end_slide - self.start_slide + 1

    @property
    def has_text(self) -> bool:
        return any(not s.is_empty for s in self.slides)


# Estimate tokens and chunk slides accordingly
def estimate_tokens(text: str) -> int:
    return max(1, int(len(text) / 4))


def make_chunk(slides: List[Slide]) -> Chunk:
    text = "\n\n".join(s.to_block() for s in slides)
    return Chunk(
        start_slide=slides[0].number,
        end_slide=slides[-1].number,
        text=text,
        slides=tuple(slides),
    )


# Greedy chunking by slide count and character ceiling
def chunk_slides(slides: List[Slide], max_slides: int, max_chars: int) -> List[Chunk]:

    max_slides = max(1, int(max_slides))
    chunks: List[Chunk] = []
    current: List[Slide] = []
    cur_chars = 0

    for s in slides:
        size = len(s.to_block()) + 2

        # Start a new chunk if adding this slide would exceed either limit
        if current and (len(current) >= max_slides or cur_chars + size > max_chars):
            chunks.append(make_chunk(current))
            current, cur_chars = [], 0

        current.append(s)
        cur_chars += size

    if current:
        chunks.append(make_chunk(current))

    return chunks


# Two-pass adaptive chunking: redo once with half the slide limit if too dense
def build_chunks(
    slides: List[Slide],
    max_slides: int = 6,
    max_chars: int = 12000,
    adaptive_token_limit: Optional[int] = None,
) -> List[Chunk]:

    chunks = chunk_slides(slides, max_slides, max_chars)
    if adaptive_token_limit is None:
        return chunks

    if any(estimate_tokens(c.text) > adaptive_token_limit for c in chunks):
        chunks = chunk_slides(slides, max(1, max_slides // 2), max_chars)

    return chunks


# Midpoint of an inclusive slide range; left child ends here
def split_point(start: int, end: int) -> int:
    if end <= start:
        raise ValueError(f"Cannot split single-slide range {start}-{end}")
    return start + (end - start) // 2


def split_range(start: int, end: int) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    mid = split_point(start, end)
    return (start, mid), (mid + 1, end)


# Split a chunk into two children covering its range exactly
def split_chunk(chunk: Chunk) -> Tuple[Chunk, Chunk]:

    (ls, le), (rs, re_) = split_range(chunk.start_slide, chunk.end_slide)
    left = [s for s in chunk.slides if ls <= s.number <= le]
    right = [s for s in chunk.slides if rs <= s.number <= re_]

    return _child(left, ls, le), _child(right, rs, re_)


def _child(slides: List[Slide], start: int, end: int) -> Chunk:
    if slides:
        chunk = make_chunk(slides)
        return Chunk(start_slide=start, end_slide=end, text=chunk.text, slides=chunk.slides)
    return Chunk(start_slide=start, end_slide=end, text="", slides=())
