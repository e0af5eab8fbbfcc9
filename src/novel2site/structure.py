"""Partition a flat block stream into front matter, books, chapters and appendices."""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from bs4 import BeautifulSoup

from .markers import strip_markers

LOG = logging.getLogger("novel2site")

BLOCK_TAGS = ("h1", "h2", "h3", "p")
CANDIDATE_TAGS = {"h1", "h2"}
DEFAULT_TITLE = "Novel"
DEFAULT_BOOK_TITLE = "Book One"
FRONT_MATTER_ID = "front-matter"
DOCUMENT_ID = "full-document"
DOCUMENT_TITLE = "Full Document"

APPENDIX_RE = re.compile(
    r"appendix|appendices|one pagers|persons of interest|character roster|reference charts|charts, maps",
    re.IGNORECASE,
)
CHAPTER_RE = re.compile(r"\bchapter\s+([a-z0-9]+(?:-[a-z0-9]+)?)", re.IGNORECASE)
NUMBERED_CHAPTER_RE = re.compile(r"^(\d+)\s*(?:[:.)–—-]|$)")
BOOK_RE = re.compile(r"\bbook\s+([a-z0-9]+(?:-[a-z0-9]+)?)", re.IGNORECASE)
REFERENCE_ID_RE = re.compile(r"\[(\d+)F?\]")
WHITESPACE_RE = re.compile(r"\s+")


class SectionKind(Enum):
    FRONT_MATTER = "front-matter"
    CHAPTER = "chapter"
    APPENDIX = "appendix"
    DOCUMENT = "document"


class HeadingKind(Enum):
    BOOK = "book"
    CHAPTER = "chapter"
    APPENDIX = "appendix"


class PartitionState(Enum):
    FRONT_MATTER = "front-matter"
    IN_CHAPTER = "chapter"
    IN_APPENDIX = "appendix"


@dataclass(frozen=True)
class Block:
    tag: str
    html: str
    text: str


@dataclass(frozen=True)
class HeadingMatch:
    kind: HeadingKind
    token: str
    reference_id: Optional[str] = None


@dataclass
class Section:
    kind: SectionKind
    id: str
    title: str
    blocks: List[Block] = field(default_factory=list)
    heading: Optional[Block] = None
    number: Optional[str] = None
    reference_id: Optional[str] = None
    book_id: Optional[str] = None


@dataclass
class Book:
    id: str
    title: str
    chapters: List[Section] = field(default_factory=list)
    synthetic: bool = False


@dataclass
class DocumentStructure:
    title: str
    front_matter: Section
    books: List[Book]
    chapters: List[Section]
    appendices: List[Section]
    document: Optional[Section] = None

    def sections(self) -> List[Section]:
        """All content sections in reading order."""
        ordered = [self.front_matter]
        ordered.extend(self.chapters)
        ordered.extend(self.appendices)
        if self.document is not None:
            ordered.append(self.document)
        return ordered


def slugify_heading(text: str) -> str:
    slug = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[\s,]+", "-", slug.lower())
    slug = re.sub(r"[^\w-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug


def appendix_id(text: str) -> str:
    slug = slugify_heading(text)
    if slug == "appendix":
        slug = ""
    elif slug.startswith("appendix-"):
        slug = slug[len("appendix-") :]
    return f"appendix-{slug}" if slug else "appendix"


def _plain_text(element) -> str:
    return WHITESPACE_RE.sub(" ", element.get_text()).strip()


def extract_blocks(html: str) -> List[Block]:
    """Top-level h1/h2/h3/p elements in document order."""
    soup = BeautifulSoup(html, "html.parser")
    blocks: List[Block] = []
    for element in soup.find_all(BLOCK_TAGS):
        if element.find_parent(BLOCK_TAGS) is not None:
            continue
        blocks.append(Block(tag=element.name, html=element.decode_contents(), text=_plain_text(element)))
    return blocks


def classify_heading(block: Block) -> Optional[HeadingMatch]:
    """First matching rule wins: appendix, chapter, book."""
    if block.tag not in CANDIDATE_TAGS:
        return None
    text = block.text
    if APPENDIX_RE.search(text):
        return HeadingMatch(HeadingKind.APPENDIX, appendix_id(text))

    match = CHAPTER_RE.search(text) or NUMBERED_CHAPTER_RE.match(text)
    if match:
        reference = REFERENCE_ID_RE.search(block.html)
        return HeadingMatch(
            HeadingKind.CHAPTER,
            match.group(1).lower(),
            reference_id=reference.group(1) if reference else None,
        )

    if block.tag == "h1":
        match = BOOK_RE.search(text)
        if match:
            return HeadingMatch(HeadingKind.BOOK, match.group(1).lower())
    return None


def _unique_id(base: str, used: Set[str]) -> str:
    candidate = base
    suffix = 2
    while candidate in used:
        candidate = f"{base}-{suffix}"
        suffix += 1
    used.add(candidate)
    return candidate


class _StructureBuilder:
    def __init__(self, title: str) -> None:
        self.title = title
        self.state = PartitionState.FRONT_MATTER
        self.front_matter = Section(SectionKind.FRONT_MATTER, FRONT_MATTER_ID, title)
        self.books: List[Book] = []
        self.chapters: List[Section] = []
        self.appendices: List[Section] = []
        self.current_book: Optional[Book] = None
        self.structural_headings = 0
        self._used_ids: Dict[str, Set[str]] = {kind.value: set() for kind in HeadingKind}

    def consume(self, block: Block, previous: Optional[Block]) -> None:
        match = classify_heading(block)
        if match is None:
            self._content_target(previous).blocks.append(block)
            return
        self.structural_headings += 1
        if match.kind is HeadingKind.APPENDIX:
            self._open_appendix(block, match)
        elif match.kind is HeadingKind.CHAPTER:
            self._open_chapter(block, match)
        else:
            self._open_book(block, match)

    def _content_target(self, previous: Optional[Block]) -> Section:
        """Section that receives a non-heading block.

        Inside a chapter, once any appendix exists, a block that follows a
        block whose text matches an appendix phrase goes to the latest
        appendix. This holds even when the chapter text only mentions an
        appendix in passing; the mentioning block itself stays in the chapter.
        """
        if self.state is PartitionState.FRONT_MATTER:
            return self.front_matter
        if self.state is PartitionState.IN_APPENDIX:
            return self.appendices[-1]
        if self.appendices and previous is not None and APPENDIX_RE.search(previous.text):
            return self.appendices[-1]
        return self.chapters[-1]

    def _title(self, block: Block) -> str:
        return strip_markers(block.text) or block.text

    def _open_appendix(self, block: Block, match: HeadingMatch) -> None:
        section_id = _unique_id(match.token, self._used_ids[HeadingKind.APPENDIX.value])
        section = Section(SectionKind.APPENDIX, section_id, self._title(block), heading=block)
        self.appendices.append(section)
        self.state = PartitionState.IN_APPENDIX
        LOG.debug("Opened appendix %s: %s", section.id, section.title)

    def _open_chapter(self, block: Block, match: HeadingMatch) -> None:
        if self.current_book is None:
            self._open_default_book()
        book = self.current_book
        section_id = _unique_id(f"chapter-{match.token}", self._used_ids[HeadingKind.CHAPTER.value])
        section = Section(
            SectionKind.CHAPTER,
            section_id,
            self._title(block),
            heading=block,
            number=match.token,
            reference_id=match.reference_id,
            book_id=book.id,
        )
        self.chapters.append(section)
        book.chapters.append(section)
        self.state = PartitionState.IN_CHAPTER
        LOG.debug("Opened chapter %s in %s: %s", section.id, book.id, section.title)

    def _open_book(self, block: Block, match: HeadingMatch) -> None:
        book_id = _unique_id(f"book-{match.token}", self._used_ids[HeadingKind.BOOK.value])
        self.current_book = Book(book_id, self._title(block))
        self.books.append(self.current_book)
        LOG.debug("Opened book %s: %s", book_id, self.current_book.title)

    def _open_default_book(self) -> None:
        book_id = _unique_id("book-one", self._used_ids[HeadingKind.BOOK.value])
        self.current_book = Book(book_id, DEFAULT_BOOK_TITLE, synthetic=True)
        self.books.append(self.current_book)

    def finish(self) -> DocumentStructure:
        structure = DocumentStructure(
            title=self.title,
            front_matter=self.front_matter,
            books=self.books,
            chapters=self.chapters,
            appendices=self.appendices,
        )
        if self.structural_headings == 0:
            structure.document = Section(
                SectionKind.DOCUMENT,
                DOCUMENT_ID,
                DOCUMENT_TITLE,
                blocks=list(self.front_matter.blocks),
            )
            structure.front_matter = Section(SectionKind.FRONT_MATTER, FRONT_MATTER_ID, self.title)
            LOG.info("No chapter, appendix or book headings found; using a single section")
        return structure


def partition_blocks(blocks: Sequence[Block], title: str = DEFAULT_TITLE) -> DocumentStructure:
    """Single linear pass assigning every block to exactly one section.

    Structural headings open sections and are kept as the section heading;
    every other block goes to the currently open section, or to the front
    matter until the first chapter or appendix.
    """
    builder = _StructureBuilder(title)
    previous: Optional[Block] = None
    for block in blocks:
        builder.consume(block, previous)
        previous = block
    structure = builder.finish()
    LOG.info(
        "Structure: %d front matter block(s), %d book(s), %d chapter(s), %d appendix section(s)",
        len(structure.front_matter.blocks),
        len(structure.books),
        len(structure.chapters),
        len(structure.appendices),
    )
    return structure
