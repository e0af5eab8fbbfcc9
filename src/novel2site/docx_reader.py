"""DOCX decoding into the flat h1/h2/h3/p block stream, plus image extraction."""

from __future__ import annotations

import html
import io
import logging
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from docx import Document
from docx.oxml.ns import qn
from docx.text.paragraph import Paragraph
from docx.text.run import Run
from lxml import etree

LOG = logging.getLogger("novel2site")

TAG_RE = re.compile(r"<[^>]+>")
HEADING_STYLE_RE = re.compile(r"^Heading\s+(\d+)$", re.IGNORECASE)
NOTE_PARTS = (("footnote", "word/footnotes.xml"), ("endnote", "word/endnotes.xml"))
SEPARATOR_NOTE_TYPES = {"separator", "continuationSeparator", "continuationNotice"}
DRAWINGML_BLIP = "{http://schemas.openxmlformats.org/drawingml/2006/main}blip"
VML_IMAGEDATA = "{urn:schemas-microsoft-com:vml}imagedata"
VML_TITLE = "{urn:schemas-microsoft-com:office:office}title"
DEFAULT_IMAGE_EXT = ".png"


@dataclass(frozen=True)
class DecodedDocument:
    html: str
    title: Optional[str]
    block_count: int
    note_count: int = 0


@dataclass(frozen=True)
class Asset:
    rel_id: str
    filename: str
    payload: bytes
    size: Optional[Tuple[int, int]] = None


class _NoteNumbering:
    """Display numbers for footnotes and endnotes in order of first reference.

    Footnotes and endnotes share one sequence so a numeral identifies exactly
    one note.
    """

    def __init__(self) -> None:
        self._numbers: Dict[Tuple[str, str], str] = {}

    def assign(self, kind: str, note_id: str) -> str:
        key = (kind, note_id)
        if key not in self._numbers:
            self._numbers[key] = str(len(self._numbers) + 1)
        return self._numbers[key]

    def lookup(self, kind: str, note_id: str) -> Optional[str]:
        return self._numbers.get((kind, note_id))


def _block_tag(paragraph: Paragraph) -> str:
    style = paragraph.style.name if paragraph.style is not None else ""
    if style == "Title":
        return "h1"
    match = HEADING_STYLE_RE.match(style or "")
    if not match:
        return "p"
    level = int(match.group(1))
    if level <= 1:
        return "h1"
    if level == 2:
        return "h2"
    return "h3"


def _format_text(text: str, run: Run) -> str:
    if not text:
        return ""
    out = html.escape(text, quote=False).replace("\n", "<br/>")
    if run.font.superscript:
        out = f"<sup>{out}</sup>"
    elif run.font.subscript:
        out = f"<sub>{out}</sub>"
    if run.italic:
        out = f"<em>{out}</em>"
    if run.bold:
        out = f"<strong>{out}</strong>"
    return out


def _image_markup(rel_id: str, alt: str) -> str:
    return f'<img src="{html.escape(rel_id)}" alt="{html.escape(alt)}"/>'


def _drawing_images(element) -> List[Tuple[str, str]]:
    images: List[Tuple[str, str]] = []
    seen = set()
    descr = ""
    for doc_pr in element.iter(qn("wp:docPr")):
        descr = doc_pr.get("descr") or doc_pr.get("title") or ""
        break
    for blip in element.iter(DRAWINGML_BLIP):
        rel_id = blip.get(qn("r:embed"))
        if rel_id and rel_id not in seen:
            seen.add(rel_id)
            images.append((rel_id, descr))
    for imagedata in element.iter(VML_IMAGEDATA):
        rel_id = imagedata.get(qn("r:id"))
        if rel_id and rel_id not in seen:
            seen.add(rel_id)
            images.append((rel_id, imagedata.get(VML_TITLE) or ""))
    return images


def _note_reference(kind: str, element, numbering: _NoteNumbering) -> str:
    number = numbering.assign(kind, element.get(qn("w:id")) or "")
    return f'<sup><a href="#{kind}-{number}">{number}</a></sup>'


def _run_markup(run: Run, numbering: _NoteNumbering) -> Tuple[str, bool]:
    parts: List[str] = []
    pending: List[str] = []
    has_media = False

    def flush() -> None:
        if pending:
            parts.append(_format_text("".join(pending), run))
            pending.clear()

    for child in run._r.iterchildren():
        tag = child.tag
        if tag == qn("w:t"):
            pending.append(child.text or "")
        elif tag == qn("w:tab"):
            pending.append("\t")
        elif tag in (qn("w:br"), qn("w:cr")):
            pending.append("\n")
        elif tag == qn("w:footnoteReference"):
            flush()
            parts.append(_note_reference("footnote", child, numbering))
        elif tag == qn("w:endnoteReference"):
            flush()
            parts.append(_note_reference("endnote", child, numbering))
        elif tag in (qn("w:drawing"), qn("w:pict")):
            flush()
            for rel_id, alt in _drawing_images(child):
                parts.append(_image_markup(rel_id, alt))
                has_media = True
    flush()
    return "".join(parts), has_media


def _paragraph_markup(paragraph: Paragraph, numbering: _NoteNumbering) -> Optional[str]:
    pieces: List[str] = []
    has_media = False
    for r in paragraph._p.iter(qn("w:r")):
        markup, media = _run_markup(Run(r, paragraph), numbering)
        pieces.append(markup)
        has_media = has_media or media
    inner = "".join(pieces).strip()
    if not has_media and not TAG_RE.sub("", inner).strip():
        return None
    tag = _block_tag(paragraph)
    return f"<{tag}>{inner}</{tag}>"


def _table_markup(table) -> List[str]:
    rows: List[str] = []
    for row in table.rows:
        cells = []
        seen = set()
        for cell in row.cells:
            if id(cell._tc) in seen:
                continue
            seen.add(id(cell._tc))
            cells.append(" ".join(cell.text.split()))
        text = " | ".join(cells).strip(" |")
        if text:
            rows.append(f"<p>{html.escape(text, quote=False)}</p>")
    return rows


def _iter_body_blocks(document) -> List[Tuple[str, object]]:
    paragraphs = {p._element: p for p in document.paragraphs}
    tables = {t._element: t for t in document.tables}
    elements: List[Tuple[str, object]] = []
    for child in document.element.body.iterchildren():
        if child.tag == qn("w:p") and child in paragraphs:
            elements.append(("paragraph", paragraphs[child]))
        elif child.tag == qn("w:tbl") and child in tables:
            elements.append(("table", tables[child]))
    return elements


def _note_text(note) -> str:
    paragraphs = []
    for p in note.iter(qn("w:p")):
        text = "".join(t.text or "" for t in p.iter(qn("w:t")))
        if text.strip():
            paragraphs.append(text.strip())
    return " ".join(paragraphs)


def _read_note_parts(docx_path: Path) -> Dict[str, Dict[str, str]]:
    notes: Dict[str, Dict[str, str]] = {}
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    with zipfile.ZipFile(docx_path) as archive:
        names = set(archive.namelist())
        for kind, part_name in NOTE_PARTS:
            if part_name not in names:
                continue
            try:
                root = etree.fromstring(archive.read(part_name), parser)
            except etree.XMLSyntaxError as exc:
                raise RuntimeError(f"Malformed {part_name}: {exc}") from exc
            entries: Dict[str, str] = {}
            for note in root.iter(qn(f"w:{kind}")):
                if note.get(qn("w:type")) in SEPARATOR_NOTE_TYPES:
                    continue
                text = _note_text(note)
                if text:
                    entries[note.get(qn("w:id")) or ""] = text
            notes[kind] = entries
            LOG.debug("Read %d %s(s) from %s", len(entries), kind, part_name)
    return notes


def _notes_markup(notes: Dict[str, Dict[str, str]], numbering: _NoteNumbering) -> Tuple[str, int]:
    chunks: List[str] = []
    count = 0
    for kind, _ in NOTE_PARTS:
        entries = notes.get(kind) or {}
        if not entries:
            continue
        items = []
        for note_id, text in entries.items():
            number = numbering.lookup(kind, note_id)
            if number is None:
                LOG.debug("Unreferenced %s %s", kind, note_id)
                number = numbering.assign(kind, note_id)
            items.append(f'<li id="{kind}-{number}"><p>{html.escape(text, quote=False)}</p></li>')
            count += 1
        chunks.append(f'<ol class="{kind}s" id="{kind}s">' + "".join(items) + "</ol>")
    return "".join(chunks), count


def decode_docx(docx_path: Path) -> DecodedDocument:
    """Decode a DOCX file into block markup followed by note containers."""
    try:
        document = Document(str(docx_path))
    except Exception as exc:
        raise RuntimeError(f"Unable to open DOCX {docx_path}: {exc}") from exc

    numbering = _NoteNumbering()
    blocks: List[str] = []
    try:
        for kind, obj in _iter_body_blocks(document):
            if kind == "paragraph":
                markup = _paragraph_markup(obj, numbering)
                if markup:
                    blocks.append(markup)
            else:
                blocks.extend(_table_markup(obj))
    except Exception as exc:
        raise RuntimeError(f"Unable to decode document body of {docx_path}: {exc}") from exc

    notes_html, note_count = _notes_markup(_read_note_parts(docx_path), numbering)
    title = (document.core_properties.title or "").strip() or None
    LOG.info("Decoded %d block(s) and %d note(s) from %s", len(blocks), note_count, docx_path)
    return DecodedDocument(
        html="\n".join(blocks) + notes_html,
        title=title,
        block_count=len(blocks),
        note_count=note_count,
    )


def decode_docx_plain(docx_path: Path) -> DecodedDocument:
    """Paragraph text only, used when the full decoder fails."""
    try:
        document = Document(str(docx_path))
    except Exception as exc:
        raise RuntimeError(f"Unable to open DOCX {docx_path}: {exc}") from exc
    blocks = [f"<p>{html.escape(p.text.strip(), quote=False)}</p>" for p in document.paragraphs if p.text.strip()]
    title = (document.core_properties.title or "").strip() or None
    return DecodedDocument(html="\n".join(blocks), title=title, block_count=len(blocks))


def _probe_size(payload: bytes) -> Optional[Tuple[int, int]]:
    from PIL import Image

    try:
        with Image.open(io.BytesIO(payload)) as img:
            return img.size
    except Exception as exc:
        LOG.debug("Unable to read image size: %s", exc)
        return None


def _rel_sort_key(rel_id: str) -> Tuple[int, str]:
    digits = re.sub(r"\D", "", rel_id)
    return (int(digits) if digits else 0, rel_id)


def read_assets(docx_path: Path) -> List[Asset]:
    """Embedded images of the main document part, ordered by relationship id.

    Failures are logged and yield an empty or partial list.
    """
    try:
        document = Document(str(docx_path))
        rels = sorted(document.part.rels.items(), key=lambda item: _rel_sort_key(item[0]))
    except Exception as exc:
        LOG.warning("Unable to read images from %s: %s", docx_path, exc)
        return []

    assets: List[Asset] = []
    for rel_id, rel in rels:
        if "image" not in rel.reltype or rel.is_external:
            continue
        try:
            part = rel.target_part
            ext = Path(str(part.partname)).suffix.lower() or DEFAULT_IMAGE_EXT
            payload = part.blob
        except Exception as exc:
            LOG.warning("Skipping image %s: %s", rel_id, exc)
            continue
        filename = f"img-{len(assets) + 1}{ext}"
        assets.append(Asset(rel_id=rel_id, filename=filename, payload=payload, size=_probe_size(payload)))
        LOG.debug("Image %s -> %s (%d bytes)", rel_id, filename, len(payload))
    LOG.info("Found %d embedded image(s)", len(assets))
    return assets
