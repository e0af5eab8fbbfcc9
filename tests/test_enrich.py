from bs4 import BeautifulSoup

import novel2site.enrich as enrich
import novel2site.markers as markers
from novel2site.enrich import EnrichmentContext, EnrichmentOptions, enrich_block, enrich_sections
from novel2site.markers import ReferenceReport
from novel2site.structure import Block, Section, SectionKind


def _ctx(footnotes=None, assets=None, sizes=None, report=None, **options):
    return EnrichmentContext(
        footnotes=footnotes or {},
        assets=assets or {},
        image_sizes=sizes or {},
        options=EnrichmentOptions(**options),
        report=report if report is not None else ReferenceReport(),
    )


def _enrich(html, **kwargs):
    return enrich_block(Block("p", html, ""), _ctx(**kwargs)).html


def _silence_warnings(monkeypatch):
    calls = []
    monkeypatch.setattr(markers.LOG, "warning", lambda *args: calls.append(args))
    return calls


def test_resolved_marker_becomes_annotation_span():
    out = _enrich("Hello [3F] world", footnotes={"3": "greeting in conlang"})
    soup = BeautifulSoup(out, "html.parser")
    span = soup.find("span", class_="conlang")

    assert span.get_text() == "3F"
    assert span["data-tr"] == "greeting in conlang"
    assert span["class"] == ["conlang"]
    assert out.startswith("Hello <span")
    assert out.endswith("</span> world")


def test_unresolved_marker_becomes_missing_span(monkeypatch):
    warnings = _silence_warnings(monkeypatch)
    out = _enrich("[9F]")
    span = BeautifulSoup(out, "html.parser").find("span")

    assert span["class"] == ["conlang", "missing"]
    assert span["data-tr"] == "translation missing for 9"
    assert span.get_text() == "9F"
    assert len(warnings) == 1


def test_annotation_payload_is_escaped():
    out = _enrich("x 3F", footnotes={"3": 'Tom & "Jerry" <b>'})
    assert "&amp;" in out
    assert "<b>" not in out
    span = BeautifulSoup(out, "html.parser").find("span")
    assert span["data-tr"] == 'Tom & "Jerry" <b>'


def test_every_occurrence_of_a_numeral_gets_the_same_payload():
    out = _enrich("a [2F] b 2F c <em>[2]</em>", footnotes={"2": "river"})
    spans = BeautifulSoup(out, "html.parser").find_all("span", class_="conlang")
    assert len(spans) == 3
    assert {span["data-tr"] for span in spans} == {"river"}


def test_enrichment_does_not_re_enter_generated_spans():
    ctx = _ctx(footnotes={"3": "see 4F"}, tag_ui_text=True)
    once = enrich_block(Block("p", "word [3F]", ""), ctx)
    twice = enrich_block(once, ctx)
    assert twice.html == once.html
    assert once.html.count("<span") == 1


def test_asset_token_and_img_rewritten_through_asset_map():
    out = _enrich(
        'Map: rId7 <img src="rId8" alt="the coast"/>',
        assets={"rId7": "img-1.png", "rId8": "img-2.jpeg"},
        sizes={"rId7": (640, 480)},
        image_base="../images",
    )
    imgs = BeautifulSoup(out, "html.parser").find_all("img")

    assert [img["src"] for img in imgs] == ["../images/img-1.png", "../images/img-2.jpeg"]
    assert imgs[0]["class"] == ["novel-image"]
    assert imgs[0]["alt"] == "Novel illustration"
    assert imgs[0]["data-original-id"] == "rId7"
    assert (imgs[0]["width"], imgs[0]["height"]) == ("640", "480")
    assert imgs[1]["alt"] == "the coast"


def test_unmapped_and_external_images():
    out = _enrich('<img src="rId3"/> and <img src="https://example.org/a.png"/>')
    soup = BeautifulSoup(out, "html.parser")
    assert [img["src"] for img in soup.find_all("img")] == ["https://example.org/a.png"]
    assert "rId3" in soup.get_text()


def test_title_and_alt_attributes_use_plain_text_form(monkeypatch):
    _silence_warnings(monkeypatch)
    out = _enrich('<abbr title="The [5F] gate">gate</abbr>', footnotes={"5": "north"})
    assert BeautifulSoup(out, "html.parser").find("abbr")["title"] == "The 5F (north) gate"


def test_skip_references_leaves_markers_alone():
    out = _enrich("Hello [3F] rId1", footnotes={"3": "x"}, assets={"rId1": "img-1.png"}, skip_references=True)
    assert "[3F]" in out
    assert "conlang" not in out
    assert 'src="images/img-1.png"' in out


def test_ui_text_tagging_skips_markers():
    out = _enrich("Press [Open Door] then [4F]", footnotes={"4": "door"}, tag_ui_text=True)
    soup = BeautifulSoup(out, "html.parser")
    assert soup.find("span", class_="ui").get_text() == "[Open Door]"
    assert soup.find("span", class_="conlang")["data-tr"] == "door"

    plain = _enrich("Press [Open Door]")
    assert "ui" not in plain


def test_failing_section_is_isolated(monkeypatch):
    errors = []
    monkeypatch.setattr(enrich.LOG, "error", lambda *args: errors.append(args))
    good = Section(SectionKind.CHAPTER, "chapter-one", "One", blocks=[Block("p", "a [1F]", "a")])
    bad = Section(SectionKind.CHAPTER, "chapter-two", "Two", blocks=[Block("p", "b [1F]", "b")])
    real = enrich.enrich_section

    def flaky(section, ctx):
        if section.id == "chapter-two":
            raise ValueError("boom")
        return real(section, ctx)

    monkeypatch.setattr(enrich, "enrich_section", flaky)
    report = ReferenceReport()
    out = enrich_sections(
        [bad, good],
        footnotes={"1": "sun"},
        assets={},
        options=EnrichmentOptions(),
        report=report,
    )

    assert out[0] is bad
    assert "conlang" in out[1].blocks[0].html
    assert report.failed_sections == ["chapter-two"]
    assert len(errors) == 1


def test_image_base_follows_section_and_checkpoint_runs_per_section():
    stages = []
    sections = [
        Section(SectionKind.FRONT_MATTER, "front-matter", "T", blocks=[Block("p", "rId1", "rId1")]),
        Section(SectionKind.CHAPTER, "chapter-one", "One", blocks=[Block("p", "rId1", "rId1")]),
    ]
    out = enrich_sections(
        sections,
        footnotes={},
        assets={"rId1": "img-1.png"},
        options=EnrichmentOptions(),
        image_base_for=lambda s: "images" if s.kind is SectionKind.FRONT_MATTER else "../images",
        checkpoint=stages.append,
    )
    assert 'src="images/img-1.png"' in out[0].blocks[0].html
    assert 'src="../images/img-1.png"' in out[1].blocks[0].html
    assert stages == ["enrich:front-matter", "enrich:chapter-one"]
