"""Per-section enrichment: reference tooltips, embedded images and UI text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag

from .markers import (
    ReferenceReport,
    TokenKind,
    has_special_tokens,
    is_marker_text,
    marker_label,
    substitute_plain_text,
    tokenize,
)
from .structure import Block, Section

LOG = logging.getLogger("novel2site")

ANNOTATION_CLASS = "conlang"
MISSING_CLASS = "missing"
UI_CLASS = "ui"
IMAGE_CLASS = "novel-image"
IMAGE_ALT = "Novel illustration"
GENERATED_CLASSES = [ANNOTATION_CLASS, UI_CLASS]
SUBSTITUTED_ATTRIBUTES = ("title", "alt")

ASSET_ID_RE = re.compile(r"^rId\d+$")
UI_TEXT_RE = re.compile(r"\[([^\[\]]+)\]")


@dataclass(frozen=True)
class EnrichmentOptions:
    skip_references: bool = False
    tag_ui_text: bool = False
    image_base: str = "images"


@dataclass(frozen=True)
class EnrichmentContext:
    footnotes: Mapping[str, str]
    assets: Mapping[str, str]
    image_sizes: Mapping[str, Tuple[int, int]]
    options: EnrichmentOptions
    report: ReferenceReport


def _is_text(node) -> bool:
    return type(node) is NavigableString


def _inside_generated(node) -> bool:
    return node.find_parent("span", class_=GENERATED_CLASSES) is not None


def _text_nodes(soup: BeautifulSoup) -> List[NavigableString]:
    return [node for node in soup.find_all(string=True) if _is_text(node) and not _inside_generated(node)]


def _image_tag(soup: BeautifulSoup, asset_id: str, ctx: EnrichmentContext, alt: str = "") -> Tag:
    attrs = {
        "src": f"{ctx.options.image_base}/{ctx.assets[asset_id]}",
        "class": IMAGE_CLASS,
        "alt": alt or IMAGE_ALT,
        "data-original-id": asset_id,
        "loading": "lazy",
    }
    size = ctx.image_sizes.get(asset_id)
    if size:
        attrs["width"] = str(size[0])
        attrs["height"] = str(size[1])
    return soup.new_tag("img", attrs=attrs)


def _annotation_tag(soup: BeautifulSoup, numeral: str, ctx: EnrichmentContext) -> Tag:
    annotation, resolved = ctx.report.lookup(numeral, ctx.footnotes)
    css = ANNOTATION_CLASS if resolved else f"{ANNOTATION_CLASS} {MISSING_CLASS}"
    span = soup.new_tag("span", attrs={"class": css, "data-tr": annotation})
    span.string = marker_label(numeral)
    return span


def _rewrite_asset_images(soup: BeautifulSoup, ctx: EnrichmentContext) -> None:
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if not ASSET_ID_RE.match(src):
            continue
        if src in ctx.assets:
            img.replace_with(_image_tag(soup, src, ctx, alt=img.get("alt") or ""))
        else:
            LOG.debug("No extracted asset for %s; leaving it as text", src)
            img.replace_with(NavigableString(src))


def _substitute_tokens(soup: BeautifulSoup, ctx: EnrichmentContext) -> None:
    for node in _text_nodes(soup):
        tokens = tokenize(str(node))
        if not has_special_tokens(tokens):
            continue
        replacement = []
        changed = False
        for token in tokens:
            if token.kind is TokenKind.REFERENCE and not ctx.options.skip_references:
                replacement.append(_annotation_tag(soup, token.value, ctx))
                changed = True
            elif token.kind is TokenKind.ASSET and token.value in ctx.assets:
                replacement.append(_image_tag(soup, token.value, ctx))
                changed = True
            else:
                replacement.append(NavigableString(token.raw))
        if changed:
            node.replace_with(*replacement)


def _substitute_attributes(soup: BeautifulSoup, ctx: EnrichmentContext) -> None:
    for tag in soup.find_all(True):
        for attr in SUBSTITUTED_ATTRIBUTES:
            value = tag.get(attr)
            if not isinstance(value, str) or not value:
                continue
            updated = substitute_plain_text(value, ctx.footnotes, ctx.report)
            if updated != value:
                tag[attr] = updated


def _tag_ui_text(soup: BeautifulSoup) -> int:
    tagged = 0
    for node in _text_nodes(soup):
        text = str(node)
        parts = []
        pos = 0
        for match in UI_TEXT_RE.finditer(text):
            if is_marker_text(match.group(1)):
                continue
            if match.start() > pos:
                parts.append(NavigableString(text[pos : match.start()]))
            span = soup.new_tag("span", attrs={"class": UI_CLASS})
            span.string = match.group(0)
            parts.append(span)
            pos = match.end()
        if not parts:
            continue
        if pos < len(text):
            parts.append(NavigableString(text[pos:]))
        node.replace_with(*parts)
        tagged += len([part for part in parts if isinstance(part, Tag)])
    return tagged


def _enrich_markup(html: str, ctx: EnrichmentContext) -> str:
    soup = BeautifulSoup(html, "html.parser")
    _rewrite_asset_images(soup, ctx)
    _substitute_tokens(soup, ctx)
    if not ctx.options.skip_references:
        _substitute_attributes(soup, ctx)
    if ctx.options.tag_ui_text:
        _tag_ui_text(soup)
    return str(soup)


def enrich_block(block: Block, ctx: EnrichmentContext) -> Block:
    return replace(block, html=_enrich_markup(block.html, ctx))


def enrich_section(section: Section, ctx: EnrichmentContext) -> Section:
    """Return a copy of ``section`` with its heading and blocks enriched."""
    heading = enrich_block(section.heading, ctx) if section.heading is not None else None
    blocks = [enrich_block(block, ctx) for block in section.blocks]
    return replace(section, heading=heading, blocks=blocks)


def enrich_sections(
    sections: Sequence[Section],
    *,
    footnotes: Mapping[str, str],
    assets: Mapping[str, str],
    options: EnrichmentOptions,
    report: Optional[ReferenceReport] = None,
    image_sizes: Optional[Mapping[str, Tuple[int, int]]] = None,
    image_base_for: Optional[Callable[[Section], str]] = None,
    checkpoint: Optional[Callable[[str], None]] = None,
) -> List[Section]:
    """Enrich every section, isolating failures to the section that raised.

    A section that fails is logged and returned unchanged. ``checkpoint`` is
    called before each section and may raise to abort the whole run.
    """
    report = report if report is not None else ReferenceReport()
    sizes: Dict[str, Tuple[int, int]] = dict(image_sizes or {})
    enriched: List[Section] = []
    total = len(sections)
    for index, section in enumerate(sections, start=1):
        if checkpoint is not None:
            checkpoint(f"enrich:{section.id}")
        section_options = options
        if image_base_for is not None:
            section_options = replace(options, image_base=image_base_for(section))
        ctx = EnrichmentContext(
            footnotes=footnotes,
            assets=assets,
            image_sizes=sizes,
            options=section_options,
            report=report,
        )
        try:
            enriched.append(enrich_section(section, ctx))
            LOG.info("Enriched [%d/%d] %s", index, total, section.id)
        except Exception as exc:
            LOG.error("Enrichment failed for section %s: %s", section.id, exc)
            LOG.debug("Enrichment failure details for %s", section.id, exc_info=exc)
            report.failed_sections.append(section.id)
            enriched.append(section)
    return enriched
