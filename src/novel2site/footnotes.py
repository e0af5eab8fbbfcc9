"""Markup normalization and footnote discovery."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag

from .markers import canonical_numeral, collapse_duplicate_markers, marker_token

LOG = logging.getLogger("novel2site")

DEFINITION_BLOCK_TAGS = {"p", "li", "div"}
CONTAINER_TAGS = {"div", "section", "aside", "ol", "ul"}
LIST_TAGS = {"ol", "ul"}
TEXT_BREAK_TAGS = {"p", "div", "li", "br"}

# ol/ul/section/aside only need to mention footnotes; a div must look like a
# whole footnote area, since single definitions are often divs too.
CONTAINER_HINT_RE = re.compile(r"footnote|endnote", re.IGNORECASE)
DIV_CONTAINER_HINT_RE = re.compile(
    r"(?:foot|end)notes|(?:foot|end)note[-_]?(?:section|list|container|area)",
    re.IGNORECASE,
)
DEFINITION_ID_RE = re.compile(r"^(?:footnote-|endnote-|sdfootnote|_ftn|fn)", re.IGNORECASE)
DEFINITION_CLASS_RE = re.compile(r"footnote", re.IGNORECASE)
REFERENCE_CLASS_RE = re.compile(r"footnote-ref|noteref", re.IGNORECASE)
BACKREF_HREF_RE = re.compile(r"ref|back|return", re.IGNORECASE)
BACKREF_TEXTS = {"↑", "^", "↩", "↩︎", "back"}

DIGITS_RE = re.compile(r"\d+")
ID_NUMERAL_RE = re.compile(r"(\d+)")
LEADING_NUMERAL_RE = re.compile(r"^(\d+)[\s.):]")
LOOSE_NUMERAL_RE = re.compile(r"\[(\d+)\]|^(\d+)$")
TRAILING_PUNCT_RE = re.compile(r"^[\s.:)\]]+")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class FootnoteResolution:
    html: str
    footnotes: Dict[str, str]
    removed_blocks: int


def _is_text(node) -> bool:
    # Comments, CDATA, script and style bodies are NavigableString subclasses.
    return type(node) is NavigableString


def _preview(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _trailing_text(element: Tag) -> str:
    parts = []
    for sibling in element.next_siblings:
        if isinstance(sibling, Tag):
            parts.append(sibling.get_text())
        elif _is_text(sibling):
            parts.append(str(sibling))
    return "".join(parts)


def is_leading_superscript(element: Tag) -> bool:
    """True when a sup/sub opens its block and is followed by text.

    That shape (``<p><sup>3</sup> meaning</p>``) is a footnote definition,
    not an in-text reference.
    """
    parent = element.parent
    if parent is None or parent.name not in DEFINITION_BLOCK_TAGS:
        return False
    for sibling in element.previous_siblings:
        if _is_text(sibling) and not sibling.strip():
            continue
        return False
    return bool(_trailing_text(element).strip())


# ---------------------------------------------------------------- normalizer


def _reference_numeral(anchor: Tag) -> Optional[str]:
    label = anchor.get_text(strip=True).strip("[]()")
    if DIGITS_RE.fullmatch(label):
        return canonical_numeral(label)
    target = (anchor.get("href") or "").lstrip("#")
    digits = DIGITS_RE.findall(target)
    if digits:
        return canonical_numeral(digits[-1])
    return None


def _rewrite_reference_elements(soup: BeautifulSoup) -> int:
    rewritten = 0

    for anchor in soup.select('sup > a[href^="#"]'):
        sup = anchor.parent
        if sup is None or sup.decomposed:
            continue
        numeral = _reference_numeral(anchor)
        if numeral is None:
            continue
        sup.replace_with(NavigableString(marker_token(numeral)))
        rewritten += 1

    for anchor in soup.select('a[href^="#"]'):
        if anchor.decomposed or not REFERENCE_CLASS_RE.search(" ".join(anchor.get("class") or [])):
            continue
        numeral = _reference_numeral(anchor)
        if numeral is None:
            continue
        anchor.replace_with(NavigableString(marker_token(numeral)))
        rewritten += 1

    for element in soup.find_all(["span", "sup"]):
        if element.decomposed:
            continue
        text = element.get_text(strip=True).strip("[]()")
        if not DIGITS_RE.fullmatch(text):
            continue
        if element.name == "span" and not REFERENCE_CLASS_RE.search(" ".join(element.get("class") or [])):
            continue
        if element.name == "sup" and is_leading_superscript(element):
            continue
        element.replace_with(NavigableString(marker_token(text)))
        rewritten += 1

    return rewritten


def _collapse_duplicates(soup: BeautifulSoup) -> int:
    collapsed = 0
    for node in list(soup.find_all(string=True)):
        if not _is_text(node):
            continue
        original = str(node)
        cleaned = collapse_duplicate_markers(original)
        if cleaned != original:
            node.replace_with(NavigableString(cleaned))
            collapsed += 1
    return collapsed


def normalize_markup(html: str) -> str:
    """Rewrite every reference form to the single ``[nF]`` token.

    Running it on its own output returns the input unchanged.
    """
    soup = BeautifulSoup(html, "html.parser")
    rewritten = _rewrite_reference_elements(soup)
    collapsed = _collapse_duplicates(soup)
    LOG.debug("Normalized %d reference element(s), collapsed %d duplicate marker run(s)", rewritten, collapsed)
    return str(soup)


# ---------------------------------------------------------------- resolver


def _is_back_reference(anchor: Tag) -> bool:
    href = anchor.get("href") or ""
    if not href.startswith("#"):
        return False
    return bool(BACKREF_HREF_RE.search(href)) or anchor.get_text(strip=True) in BACKREF_TEXTS


def _raw_text(element: Tag) -> str:
    return WHITESPACE_RE.sub(" ", element.get_text()).strip()


def _strip_numeral_prefix(text: str, numeral: str) -> str:
    """Drop a leading ``[n]``, ``(n)``, ``n.`` or ``n)`` that repeats ``numeral``."""
    digits = re.escape(numeral)
    prefix = re.compile(rf"^(?:[\[(]0*{digits}[\])]|0*{digits}(?=[\s.):]|$))[\s.):]*")
    return prefix.sub("", text, count=1).strip()


def _annotation_text(element: Tag, numeral: str) -> str:
    parts = []
    for node in element.descendants:
        if isinstance(node, Tag):
            if node.name in TEXT_BREAK_TAGS:
                parts.append(" ")
            continue
        if not _is_text(node):
            continue
        anchor = node.find_parent("a")
        if anchor is not None and _is_back_reference(anchor):
            continue
        parts.append(str(node))
    text = WHITESPACE_RE.sub(" ", "".join(parts)).strip()
    return _strip_numeral_prefix(text, numeral)


def _definition_numeral(element: Tag) -> Optional[str]:
    element_id = element.get("id") or ""
    match = ID_NUMERAL_RE.search(element_id)
    if match:
        return canonical_numeral(match.group(1))
    text = _raw_text(element)
    match = LEADING_NUMERAL_RE.match(text)
    if match:
        return canonical_numeral(match.group(1))
    match = LOOSE_NUMERAL_RE.search(text)
    if match:
        return canonical_numeral(match.group(1) or match.group(2))
    return None


def _definition_from_element(element: Tag) -> Optional[Tuple[str, str]]:
    numeral = _definition_numeral(element)
    if numeral is None:
        return None
    text = _annotation_text(element, numeral)
    if not text:
        return None
    return numeral, text


def _record(footnotes: Dict[str, str], numeral: str, text: str, source: str) -> bool:
    existing = footnotes.get(numeral)
    if existing is not None:
        if existing != text:
            LOG.debug("Footnote %s already resolved; discarding %s text: %s", numeral, source, _preview(text))
        return False
    footnotes[numeral] = text
    LOG.debug("Found footnote %s (%s): %s", numeral, source, _preview(text))
    return True


def _is_footnote_container(tag: Tag) -> bool:
    if tag.name not in CONTAINER_TAGS:
        return False
    hints = [tag.get("id") or ""] + list(tag.get("class") or [])
    pattern = DIV_CONTAINER_HINT_RE if tag.name == "div" else CONTAINER_HINT_RE
    return any(pattern.search(hint) for hint in hints)


def _container_entries(container: Tag) -> Iterator[Tag]:
    for child in container.find_all(True, recursive=False):
        if child.name in LIST_TAGS:
            yield from child.find_all("li", recursive=False)
        else:
            yield child


def _scan_footnote_containers(soup: BeautifulSoup, footnotes: Dict[str, str]) -> int:
    containers = [
        tag
        for tag in soup.find_all(_is_footnote_container)
        if not any(_is_footnote_container(parent) for parent in tag.parents if isinstance(parent, Tag))
    ]
    for container in containers:
        found = 0
        for entry in _container_entries(container):
            definition = _definition_from_element(entry)
            if definition is None:
                continue
            if _record(footnotes, definition[0], definition[1], "container"):
                found += 1
        LOG.debug(
            "Removing footnote container <%s id=%r> with %d new definition(s)",
            container.name,
            container.get("id"),
            found,
        )
        container.decompose()
    return len(containers)


def _is_definition_element(tag: Tag) -> bool:
    element_id = tag.get("id") or ""
    if element_id and "ref" not in element_id.lower() and DEFINITION_ID_RE.match(element_id):
        return True
    classes = " ".join(tag.get("class") or [])
    if classes and DEFINITION_CLASS_RE.search(classes) and not REFERENCE_CLASS_RE.search(classes):
        return True
    return tag.name in {"div", "p", "span"} and "footnote" in element_id.lower() and "ref" not in element_id.lower()


def _scan_definition_elements(soup: BeautifulSoup, footnotes: Dict[str, str]) -> int:
    removed = 0
    for element in soup.find_all(_is_definition_element):
        if element.decomposed:
            continue
        definition = _definition_from_element(element)
        if definition is None:
            continue
        _record(footnotes, definition[0], definition[1], "element")
        element.decompose()
        removed += 1
    return removed


def _scan_leading_superscripts(soup: BeautifulSoup, footnotes: Dict[str, str]) -> int:
    removed = 0
    for mark in soup.find_all(["sup", "sub"]):
        if mark.decomposed:
            continue
        label = mark.get_text(strip=True)
        if not DIGITS_RE.fullmatch(label) or not is_leading_superscript(mark):
            continue
        text = WHITESPACE_RE.sub(" ", _trailing_text(mark))
        text = TRAILING_PUNCT_RE.sub("", text).strip()
        if not text:
            continue
        _record(footnotes, canonical_numeral(label), text, "superscript")
        mark.parent.decompose()
        removed += 1
    return removed


def resolve_footnotes(html: str) -> FootnoteResolution:
    """Build ``{numeral: annotation}`` and strip definitions from the flow.

    Passes run in a fixed order (footnote containers, footnote-like
    elements, leading superscripts) and only the first definition found for
    a numeral is kept.
    """
    soup = BeautifulSoup(html, "html.parser")
    footnotes: Dict[str, str] = {}
    removed = _scan_footnote_containers(soup, footnotes)
    removed += _scan_definition_elements(soup, footnotes)
    removed += _scan_leading_superscripts(soup, footnotes)
    LOG.info("Resolved %d footnote(s); removed %d definition block(s)", len(footnotes), removed)
    return FootnoteResolution(html=str(soup), footnotes=footnotes, removed_blocks=removed)


def iter_definitions(footnotes: Dict[str, str]) -> Iterable[Tuple[str, str]]:
    return sorted(footnotes.items(), key=lambda item: int(item[0]))
