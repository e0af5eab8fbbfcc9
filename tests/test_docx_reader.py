import zipfile
from pathlib import Path

import pytest

from novel2site import docx_reader

ENDNOTES_XML = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<w:endnotes xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">
  <w:endnote w:type="separator" w:id="-1"><w:p><w:r><w:separator/></w:r></w:p></w:endnote>
  <w:endnote w:id="1"><w:p><w:r><w:t>a northern word</w:t></w:r></w:p></w:endnote>
</w:endnotes>
"""


def _save(document, tmp_path: Path) -> Path:
    path = tmp_path / "novel.docx"
    document.save(str(path))
    return path


def _replace_part(docx_path: Path, part_name: str, payload: str) -> None:
    with zipfile.ZipFile(docx_path) as src:
        entries = [(info, src.read(info.filename)) for info in src.infolist()]
    with zipfile.ZipFile(docx_path, "w", zipfile.ZIP_DEFLATED) as dst:
        for info, data in entries:
            if info.filename != part_name:
                dst.writestr(info, data)
        dst.writestr(part_name, payload)


def test_headings_paragraphs_and_inline_formatting(tmp_path):
    from docx import Document

    document = Document()
    document.core_properties.title = "Saga"
    document.add_heading("Book One", level=1)
    document.add_heading("Chapter One", level=2)
    document.add_heading("A scene", level=3)
    paragraph = document.add_paragraph("Plain ")
    paragraph.add_run("bold").bold = True
    paragraph.add_run(" & ")
    paragraph.add_run("slanted").italic = True
    document.add_paragraph("   ")

    decoded = docx_reader.decode_docx(_save(document, tmp_path))

    assert decoded.title == "Saga"
    assert decoded.block_count == 4
    assert decoded.html.splitlines() == [
        "<h1>Book One</h1>",
        "<h2>Chapter One</h2>",
        "<h3>A scene</h3>",
        "<p>Plain <strong>bold</strong> &amp; <em>slanted</em></p>",
    ]


def test_tables_become_one_paragraph_per_row(tmp_path):
    from docx import Document

    document = Document()
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Name"
    table.cell(0, 1).text = "Meaning"
    table.cell(1, 0).text = "Ash"
    table.cell(1, 1).text = "grey"

    decoded = docx_reader.decode_docx(_save(document, tmp_path))
    assert "<p>Name | Meaning</p>" in decoded.html
    assert "<p>Ash | grey</p>" in decoded.html


def test_endnote_reference_and_definition_share_numbering(tmp_path):
    from docx import Document
    from docx.oxml import OxmlElement
    from docx.oxml.ns import qn

    document = Document()
    paragraph = document.add_paragraph("Word")
    ref = OxmlElement("w:endnoteReference")
    ref.set(qn("w:id"), "1")
    paragraph.add_run()._r.append(ref)
    path = _save(document, tmp_path)
    _replace_part(path, "word/endnotes.xml", ENDNOTES_XML)

    decoded = docx_reader.decode_docx(path)

    assert '<p>Word<sup><a href="#endnote-1">1</a></sup></p>' in decoded.html
    assert '<ol class="endnotes" id="endnotes"><li id="endnote-1"><p>a northern word</p></li></ol>' in decoded.html
    assert decoded.note_count == 1


def test_malformed_note_part_raises(tmp_path):
    from docx import Document

    document = Document()
    document.add_paragraph("text")
    path = _save(document, tmp_path)
    _replace_part(path, "word/footnotes.xml", "<w:footnotes><oops")

    with pytest.raises(RuntimeError, match="footnotes.xml"):
        docx_reader.decode_docx(path)

    plain = docx_reader.decode_docx_plain(path)
    assert plain.html == "<p>text</p>"


def test_unreadable_file_raises(tmp_path):
    path = tmp_path / "bad.docx"
    path.write_bytes(b"nope")
    with pytest.raises(RuntimeError, match="Unable to open DOCX"):
        docx_reader.decode_docx(path)
    assert docx_reader.read_assets(path) == []


def test_images_are_extracted_in_relationship_order(tmp_path):
    from docx import Document
    from PIL import Image

    first = tmp_path / "a.png"
    second = tmp_path / "b.png"
    Image.new("RGB", (30, 20)).save(first)
    Image.new("RGB", (10, 40)).save(second)

    document = Document()
    document.add_picture(str(first))
    document.add_picture(str(second))
    path = _save(document, tmp_path)

    assets = docx_reader.read_assets(path)
    decoded = docx_reader.decode_docx(path)

    assert [asset.filename for asset in assets] == ["img-1.png", "img-2.png"]
    assert [asset.size for asset in assets] == [(30, 20), (10, 40)]
    for asset in assets:
        assert f'src="{asset.rel_id}"' in decoded.html
