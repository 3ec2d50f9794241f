from study_guide.utils.slides import (
    NO_TEXT,
    format_machine_txt,
    parse_slides,
    sanitize_slide_text,
    slides_text_by_number,
)


def test_parse_slides_reads_headers_and_bodies():
    text = "Slide 1 (p.1):\nIntro line\n\nSlide 2 (p.2): [NO TEXT]\n\nSlide 3 (p.3):\nThird"
    slides = parse_slides(text)

    assert [s.number for s in slides] == [1, 2, 3]
    assert slides[0].body_text == "Intro line"
    assert slides[1].is_empty
    assert slides[2].to_block() == "Slide 3 (p.3):\nThird"


def test_parse_slides_fills_numbering_gaps():
    slides = parse_slides("Slide 1 (p.1):\nA\n\nSlide 4 (p.4):\nD")

    assert [s.number for s in slides] == [1, 2, 3, 4]
    assert slides[1].body_text == NO_TEXT
    assert slides[2].is_empty


def test_parse_slides_first_duplicate_wins():
    slides = parse_slides("Slide 1 (p.1):\nfirst\n\nSlide 1 (p.1):\nsecond")
    assert len(slides) == 1
    assert slides[0].body_text == "first"


def test_parse_slides_unmarked_text_is_one_slide():
    slides = parse_slides("just some notes\nwith two lines")
    assert len(slides) == 1
    assert slides[0].number == 1


def test_parse_slides_empty_input():
    assert parse_slides("   \n") == []


def test_format_machine_txt_orders_pages_and_fills_missing():
    raw = "--- Page 2 ---\n  second page  \n--- Page 1 ---\nfirst page\n"
    out = format_machine_txt(raw, page_count=3)

    assert out == (
        "Slide 1 (p.1):\nfirst page\n\n"
        "Slide 2 (p.2):\nsecond page\n\n"
        f"Slide 3 (p.3): {NO_TEXT}"
    )


def test_page_markers_are_converted_when_parsing():
    slides = parse_slides("--- Page 1 ---\nHello\n--- Page 2 ---\nWorld")
    assert [s.body_text for s in slides] == ["Hello", "World"]


def test_sanitize_drops_refusals_and_normalizes_quotes():
    text = "It’s a finding\r\nI'm sorry, I can't help with that.\n\n\n\nNext line"
    assert sanitize_slide_text(text) == "It's a finding\n\nNext line"


def test_slides_text_by_number_blanks_empty_slides():
    slides = parse_slides("Slide 1 (p.1):\nA\n\nSlide 2 (p.2): [NO TEXT]")
    assert slides_text_by_number(slides) == {"1": "A", "2": ""}
