from novel2site.structure import (
    Block,
    HeadingKind,
    SectionKind,
    appendix_id,
    classify_heading,
    extract_blocks,
    partition_blocks,
)


def _h(tag, text, html=None):
    return Block(tag=tag, html=html if html is not None else text, text=text)


def _p(text):
    return Block(tag="p", html=text, text=text)


def test_chapter_and_appendix_scenario():
    blocks = [
        _h("h2", "Chapter Three"),
        _p("first"),
        _p("second"),
        _h("h2", "Appendix A: Characters"),
        _p("roster"),
    ]
    structure = partition_blocks(blocks, "Saga")

    assert [c.id for c in structure.chapters] == ["chapter-three"]
    assert [a.id for a in structure.appendices] == ["appendix-a-characters"]
    assert [b.text for b in structure.chapters[0].blocks] == ["first", "second"]
    assert [b.text for b in structure.appendices[0].blocks] == ["roster"]
    assert structure.front_matter.blocks == []
    assert structure.chapters[0].title == "Chapter Three"


def test_every_non_heading_block_lands_in_exactly_one_section():
    blocks = [
        _p("dedication"),
        _h("h1", "Book One: Ash"),
        _p("epigraph"),
        _h("h2", "Chapter 1"),
        _p("a"),
        _h("h3", "Scene break"),
        _p("b"),
        _h("h1", "Book Two"),
        _h("h2", "Chapter 2"),
        _p("c"),
        _h("h2", "Persons of Interest"),
        _p("d"),
    ]
    structure = partition_blocks(blocks)
    assigned = [b for section in structure.sections() for b in section.blocks]
    headings = [s.heading for s in structure.sections() if s.heading is not None]
    book_headings = 2

    assert len(assigned) + len(headings) + book_headings == len(blocks)
    assert len({id(b) for b in assigned}) == len(assigned)
    assert [b.text for b in structure.front_matter.blocks] == ["dedication", "epigraph"]
    assert [b.text for b in structure.chapters[0].blocks] == ["a", "Scene break", "b"]


def test_books_group_chapters_and_default_book_is_synthesised():
    blocks = [
        _h("h2", "Chapter One"),
        _p("x"),
        _h("h1", "Book Two"),
        _h("h2", "Chapter Two"),
    ]
    structure = partition_blocks(blocks)

    assert [b.id for b in structure.books] == ["book-one", "book-two"]
    assert structure.books[0].synthetic
    assert structure.books[0].title == "Book One"
    assert [c.book_id for c in structure.chapters] == ["book-one", "book-two"]


def test_numbered_chapter_headings_and_reference_id():
    match = classify_heading(_h("h2", "12. The Gate [4F]", html="12. The Gate [4F]"))
    assert match.kind is HeadingKind.CHAPTER
    assert match.token == "12"
    assert match.reference_id == "4"

    assert classify_heading(_h("h1", "7")).token == "7"
    assert classify_heading(_h("h2", "Chapter Twenty-One")).token == "twenty-one"
    assert classify_heading(_h("h2", "1984 was a year")) is None
    assert classify_heading(_h("h3", "Chapter Three")) is None
    assert classify_heading(_h("h2", "Book Three")) is None


def test_appendix_takes_precedence_and_ids():
    assert classify_heading(_h("h2", "Chapter 9 Appendix")).kind is HeadingKind.APPENDIX
    assert appendix_id("Appendix") == "appendix"
    assert appendix_id("Charts, Maps & Tables") == "appendix-charts-maps-tables"
    assert appendix_id("One Pagers") == "appendix-one-pagers"


def test_duplicate_ids_get_suffixes():
    blocks = [_h("h2", "Chapter One"), _h("h2", "Chapter One"), _h("h2", "Chapter One")]
    structure = partition_blocks(blocks)
    assert [c.id for c in structure.chapters] == ["chapter-one", "chapter-one-2", "chapter-one-3"]


def test_block_after_appendix_phrase_returns_to_latest_appendix():
    blocks = [
        _h("h2", "Appendix: Glossary"),
        _p("term"),
        _h("h2", "Chapter Four"),
        _p("story"),
        _p("See the appendix"),
        _p("more glossary"),
        _p("story again"),
    ]
    structure = partition_blocks(blocks)
    assert [b.text for b in structure.appendices[0].blocks] == ["term", "more glossary"]
    assert [b.text for b in structure.chapters[0].blocks] == ["story", "See the appendix", "story again"]


def test_no_headings_produces_full_document_section():
    structure = partition_blocks([_p("one"), _h("h2", "Prologue"), _p("two")], "Tale")

    assert structure.document is not None
    assert structure.document.id == "full-document"
    assert structure.document.kind is SectionKind.DOCUMENT
    assert [b.text for b in structure.document.blocks] == ["one", "Prologue", "two"]
    assert structure.front_matter.blocks == []


def test_partition_is_deterministic():
    blocks = [_h("h2", "Chapter One"), _p("a"), _h("h2", "Appendix B")]
    first = partition_blocks(blocks)
    second = partition_blocks(blocks)
    assert [s.id for s in first.sections()] == [s.id for s in second.sections()]


def test_extract_blocks_keeps_inline_markup_and_order():
    html = "<h1>Book One</h1><p>Hi <em>there</em>  friend</p><div><p>nested</p></div><ol><li>skip</li></ol>"
    blocks = extract_blocks(html)
    assert [(b.tag, b.text) for b in blocks] == [("h1", "Book One"), ("p", "Hi there friend"), ("p", "nested")]
    assert blocks[1].html == "Hi <em>there</em>  friend"


def test_passing_mention_of_appendix_moves_only_the_following_block():
    blocks = [
        _h("h2", "Appendix A: Maps"),
        _h("h2", "Chapter Five"),
        _p("see the appendix"),
        _p("next para"),
        _p("after that"),
    ]
    structure = partition_blocks(blocks)

    assert [b.text for b in structure.chapters[0].blocks] == ["see the appendix", "after that"]
    assert [b.text for b in structure.appendices[0].blocks] == ["next para"]


def test_appendix_mention_without_any_appendix_stays_in_chapter():
    structure = partition_blocks([_h("h2", "Chapter Five"), _p("see the appendix"), _p("next para")])
    assert [b.text for b in structure.chapters[0].blocks] == ["see the appendix", "next para"]
