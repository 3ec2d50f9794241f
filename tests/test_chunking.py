import pytest

from study_guide.utils.chunking import build_chunks, chunk_slides, split_chunk, split_range
from study_guide.utils.slides import Slide, parse_slides

from conftest import lecture_text


def _slides(n, body="text"):
    return [Slide(number=i, page_label=str(i), body_text=body) for i in range(1, n + 1)]


def test_forty_slides_make_seven_chunks():
    chunks = build_chunks(parse_slides(lecture_text(40)), max_slides=6, max_chars=12000)

    assert len(chunks) == 7
    assert [(c.start_slide, c.end_slide) for c in chunks][:2] == [(1, 6), (7, 12)]
    assert chunks[-1].end_slide == 40


def test_chunks_partition_slides_without_gaps():
    chunks = chunk_slides(_slides(23), max_slides=5, max_chars=10000)

    covered = [n for c in chunks for n in range(c.start_slide, c.end_slide + 1)]
    assert covered == list(range(1, 24))


def test_char_ceiling_starts_new_chunk():
    slides = _slides(4, body="x" * 100)
    chunks = chunk_slides(slides, max_slides=10, max_chars=250)

    assert [c.slide_count for c in chunks] == [2, 2]


def test_adaptive_pass_halves_slide_limit():
    slides = _slides(8, body="y" * 2000)
    chunks = build_chunks(slides, max_slides=4, max_chars=100000, adaptive_token_limit=1500)

    assert [c.slide_count for c in chunks] == [2, 2, 2, 2]


def test_adaptive_pass_runs_at_most_twice():
    slides = _slides(4, body="z" * 20000)
    chunks = build_chunks(slides, max_slides=4, max_chars=100000, adaptive_token_limit=10)

    # Still too dense after halving, but no third pass
    assert [c.slide_count for c in chunks] == [2, 2]


@pytest.mark.parametrize("start,end", [(1, 2), (13, 18), (5, 9), (1, 40)])
def test_split_covers_parent_exactly(start, end):
    (ls, le), (rs, re_) = split_range(start, end)

    assert ls == start and re_ == end
    assert rs == le + 1
    assert ls <= le < rs <= re_


def test_split_single_slide_is_rejected():
    with pytest.raises(ValueError):
        split_range(7, 7)


def test_split_chunk_keeps_slides_with_their_half():
    chunks = build_chunks(parse_slides(lecture_text(18)), max_slides=6, max_chars=12000)
    left, right = split_chunk(chunks[2])

    assert (left.start_slide, left.end_slide) == (13, 15)
    assert (right.start_slide, right.end_slide) == (16, 18)
    assert [s.number for s in right.slides] == [16, 17, 18]
    assert "Slide 16 (p.16):" in right.text
    assert "Slide 15" not in right.text
