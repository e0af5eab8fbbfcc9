"""Core pipeline for novel2site."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from . import render
from .docx_reader import Asset, decode_docx, decode_docx_plain, read_assets
from .enrich import EnrichmentOptions, enrich_sections
from .footnotes import iter_definitions, normalize_markup, resolve_footnotes
from .markers import ReferenceReport
from .structure import DocumentStructure, Section, SectionKind, extract_blocks, partition_blocks
from .version import __version__

LOG = logging.getLogger("novel2site")

DEFAULT_TITLE = "Novel"
DEFAULT_PROCESSING_TIMEOUT = 30.0
MANIFEST_NAME = "site.json"
IMAGES_DIRNAME = "images"
DEBUG_DIRNAME = "debug"

CONFIG_FILE_KEYS = {
    "title": (str, type(None)),
    "skip_sections": (list,),
    "skip_reference_processing": (bool,),
    "tag_ui_text": (bool,),
    "processing_timeout": (int, float),
    "minimal_fallback": (bool,),
}


@dataclass
class ConversionConfig:
    title: Optional[str] = None
    skip_sections: List[str] = field(default_factory=list)
    skip_reference_processing: bool = False
    tag_ui_text: bool = False
    processing_timeout: float = DEFAULT_PROCESSING_TIMEOUT
    minimal_fallback: bool = False
    verbose: bool = False
    debug: bool = False


class ConversionError(RuntimeError):
    """A pipeline stage failed; ``stage`` names it."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage


class ConversionTimeoutError(ConversionError):
    pass


class Deadline:
    """Wall-clock budget checked between stages and sections. Zero disables it."""

    def __init__(self, budget: float) -> None:
        self.budget = float(budget or 0)
        self.started = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def check(self, stage: str) -> None:
        if self.budget <= 0:
            return
        elapsed = self.elapsed()
        if elapsed > self.budget:
            raise ConversionTimeoutError(
                stage,
                f"Processing timeout of {self.budget:g}s exceeded during {stage} ({elapsed:.1f}s elapsed)",
            )


@dataclass
class SiteModel:
    title: str
    structure: DocumentStructure
    sections: List[Section]
    footnotes: Dict[str, str]
    assets: Dict[str, str]
    unresolved: Dict[str, int] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    failed_sections: List[str] = field(default_factory=list)


@dataclass
class ConversionResult:
    out_dir: Path
    pages: List[str]
    model: Optional[SiteModel] = None
    degraded: bool = False
    degraded_reason: Optional[str] = None


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_novel2site_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_novel2site_logger(level)


def default_config_values() -> Dict[str, Any]:
    defaults = ConversionConfig()
    return {key: getattr(defaults, key) for key in CONFIG_FILE_KEYS}


def _write_config_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(default_config_values(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def load_config_file(path: Path) -> Dict[str, Any]:
    try:
        data_raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Unable to read config file {path}: {exc}") from exc
    if not isinstance(data_raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    values: Dict[str, Any] = {}
    for key, value in data_raw.items():
        expected = CONFIG_FILE_KEYS.get(key)
        if expected is None:
            raise ValueError(f"Config file {path} has unknown key: {key}")
        if not isinstance(value, expected) or (bool not in expected and isinstance(value, bool)):
            raise ValueError(f"Config file {path} has invalid value for {key}: {value!r}")
        if key == "skip_sections" and not all(isinstance(item, str) for item in value):
            raise ValueError(f"Config file {path} key skip_sections must be a list of strings")
        if key == "processing_timeout" and value <= 0:
            raise ValueError(f"Config file {path} key processing_timeout must be > 0")
        values[key] = value
    return values


def build_config(file_values: Optional[Mapping[str, Any]] = None, **overrides: Any) -> ConversionConfig:
    """Config file values first, then every override that is not None."""
    known = {f.name for f in fields(ConversionConfig)}
    merged: Dict[str, Any] = {}
    for source in (file_values or {}, overrides):
        for key, value in source.items():
            if key not in known:
                raise ValueError(f"Unknown configuration key: {key}")
            if value is not None:
                merged[key] = value
    if "skip_sections" in merged:
        merged["skip_sections"] = list(merged["skip_sections"])
    if "processing_timeout" in merged:
        merged["processing_timeout"] = float(merged["processing_timeout"])
    return ConversionConfig(**merged)


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def _write_json(path: Path, payload: Any) -> None:
    safe_write_text(path, json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def processing_prepare_output_dirs(out_dir: Path, debug_enabled: bool) -> Tuple[Path, Optional[Path]]:
    images_dir = out_dir / IMAGES_DIRNAME
    debug_dir = out_dir / DEBUG_DIRNAME if debug_enabled else None
    images_dir.mkdir(parents=True, exist_ok=True)
    if debug_dir is not None:
        debug_dir.mkdir(parents=True, exist_ok=True)
    return images_dir, debug_dir


def write_assets(assets: Sequence[Asset], images_dir: Path) -> Dict[str, str]:
    """Write image payloads and return ``{rel_id: filename}`` for those written."""
    asset_map: Dict[str, str] = {}
    for asset in assets:
        target = images_dir / asset.filename
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(asset.payload)
        except OSError as exc:
            LOG.warning("Unable to write image %s (%s): %s", asset.filename, asset.rel_id, exc)
            continue
        asset_map[asset.rel_id] = asset.filename
    LOG.info("Wrote %d image(s) to %s", len(asset_map), images_dir)
    return asset_map


def select_sections(structure: DocumentStructure, skip_ids: Sequence[str]) -> Tuple[List[Section], List[str]]:
    """Reading-order sections to render and the section ids left out.

    A book id skips every chapter of that book.
    """
    requested = [item.strip() for item in skip_ids if item and item.strip()]
    if not requested:
        return structure.sections(), []

    skip = set()
    books = {book.id: book for book in structure.books}
    section_ids = {section.id for section in structure.chapters + structure.appendices}
    for item in requested:
        if item in section_ids:
            skip.add(item)
        elif item in books:
            skip.update(chapter.id for chapter in books[item].chapters)
        elif item == structure.front_matter.id:
            LOG.warning("The front matter page cannot be skipped")
        else:
            LOG.warning("Unknown section in skip list: %s", item)

    selected: List[Section] = []
    skipped: List[str] = []
    for section in structure.sections():
        if section.id in skip and section.kind in (SectionKind.CHAPTER, SectionKind.APPENDIX):
            skipped.append(section.id)
            LOG.info("Skipping %s", section.id)
        else:
            selected.append(section)
    return selected, skipped


def _run_stage(stage: str, func, *args):
    try:
        return func(*args)
    except ConversionError:
        raise
    except Exception as exc:
        raise ConversionError(stage, f"{stage} failed: {exc}") from exc


def build_site_model(
    html: str,
    *,
    title: str,
    assets: Mapping[str, str],
    config: ConversionConfig,
    image_sizes: Optional[Mapping[str, Tuple[int, int]]] = None,
    deadline: Optional[Deadline] = None,
) -> SiteModel:
    """Run normalization, footnote resolution, partitioning and enrichment."""
    deadline = deadline if deadline is not None else Deadline(config.processing_timeout)

    normalized = _run_stage("normalize", normalize_markup, html)
    deadline.check("normalize")

    resolution = _run_stage("footnotes", resolve_footnotes, normalized)
    deadline.check("footnotes")

    blocks = _run_stage("partition", extract_blocks, resolution.html)
    structure = _run_stage("partition", partition_blocks, blocks, title)
    deadline.check("partition")

    selected, skipped = select_sections(structure, config.skip_sections)
    report = ReferenceReport()
    sections = enrich_sections(
        selected,
        footnotes=resolution.footnotes,
        assets=assets,
        options=EnrichmentOptions(
            skip_references=config.skip_reference_processing,
            tag_ui_text=config.tag_ui_text,
        ),
        report=report,
        image_sizes=image_sizes,
        image_base_for=render.asset_base,
        checkpoint=deadline.check,
    )
    deadline.check("enrich")

    if report.unresolved:
        LOG.warning("%d reference numeral(s) without a translation", len(report.unresolved))
    return SiteModel(
        title=title,
        structure=structure,
        sections=sections,
        footnotes=dict(resolution.footnotes),
        assets=dict(assets),
        unresolved=dict(report.unresolved),
        skipped=skipped,
        failed_sections=list(report.failed_sections),
    )


def _section_entry(section: Section) -> Dict[str, Any]:
    return {
        "id": section.id,
        "kind": section.kind.value,
        "title": section.title,
        "path": render.section_path(section),
        "book": section.book_id,
        "number": section.number,
        "reference_id": section.reference_id,
        "blocks": len(section.blocks),
    }


def build_manifest(
    *,
    title: str,
    pages: Sequence[str],
    model: Optional[SiteModel] = None,
    degraded: bool = False,
    degraded_reason: Optional[str] = None,
) -> Dict[str, Any]:
    manifest: Dict[str, Any] = {
        "generator": f"novel2site {__version__}",
        "title": title,
        "pages": list(pages),
        "degraded": degraded,
    }
    if degraded_reason:
        manifest["degraded_reason"] = degraded_reason
    if model is None:
        return manifest
    manifest["books"] = [
        {"id": book.id, "title": book.title, "synthetic": book.synthetic, "chapters": [ch.id for ch in book.chapters]}
        for book in model.structure.books
    ]
    manifest["sections"] = [_section_entry(section) for section in model.sections]
    manifest["skipped"] = list(model.skipped)
    manifest["unresolved"] = dict(sorted(model.unresolved.items(), key=lambda item: int(item[0])))
    manifest["failed_sections"] = list(model.failed_sections)
    manifest["footnotes"] = len(model.footnotes)
    manifest["images"] = dict(model.assets)
    return manifest


def _write_debug_artifacts(debug_dir: Path, model: SiteModel) -> None:
    _write_json(debug_dir / "footnotes.json", dict(iter_definitions(model.footnotes)))
    structure = model.structure
    _write_json(
        debug_dir / "structure.json",
        {
            "title": structure.title,
            "front_matter": _section_entry(structure.front_matter),
            "books": [book.id for book in structure.books],
            "chapters": [_section_entry(section) for section in structure.chapters],
            "appendices": [_section_entry(section) for section in structure.appendices],
            "document": _section_entry(structure.document) if structure.document is not None else None,
        },
    )
    LOG.debug("Debug artifacts written to %s", debug_dir)


def _write_site(out_dir: Path, files: Mapping[str, str]) -> List[str]:
    pages = []
    for rel_path, content in files.items():
        safe_write_text(out_dir / rel_path, content)
        if rel_path.endswith(".html"):
            pages.append(rel_path)
    LOG.info("Wrote %d page(s) to %s", len(pages), out_dir)
    return pages


def run_fallback_pipeline(*, docx_path: Path, out_dir: Path, config: ConversionConfig, reason: str) -> ConversionResult:
    """Plain paragraphs on a single page, used when full decoding fails."""
    try:
        decoded = decode_docx_plain(docx_path)
    except RuntimeError as exc:
        raise ConversionError("fallback", f"Minimal processing failed: {exc}") from exc

    title = config.title or decoded.title or DEFAULT_TITLE
    pages = _write_site(out_dir, render.render_fallback_page(title, decoded.html))
    _write_json(
        out_dir / MANIFEST_NAME,
        build_manifest(title=title, pages=pages, degraded=True, degraded_reason=reason),
    )
    LOG.warning("Site generated in degraded mode with %d paragraph(s)", decoded.block_count)
    return ConversionResult(out_dir=out_dir, pages=pages, degraded=True, degraded_reason=reason)


def run_conversion_pipeline(*, docx_path: Path, out_dir: Path, config: ConversionConfig) -> ConversionResult:
    _configure_novel2site_logger(_resolve_log_level(config.verbose, config.debug))
    deadline = Deadline(config.processing_timeout)

    if not out_dir.exists():
        out_dir.mkdir(parents=True, exist_ok=False)
    images_dir, debug_dir = processing_prepare_output_dirs(out_dir, bool(config.debug))

    try:
        decoded = decode_docx(docx_path)
    except RuntimeError as exc:
        if not config.minimal_fallback:
            raise ConversionError("decode", str(exc)) from exc
        LOG.warning("Full conversion failed (%s); retrying with minimal processing", exc)
        return run_fallback_pipeline(docx_path=docx_path, out_dir=out_dir, config=config, reason=str(exc))
    deadline.check("decode")

    assets = read_assets(docx_path)
    asset_map = write_assets(assets, images_dir)
    image_sizes = {asset.rel_id: asset.size for asset in assets if asset.size and asset.rel_id in asset_map}
    deadline.check("assets")

    title = config.title or decoded.title or DEFAULT_TITLE
    model = build_site_model(
        decoded.html,
        title=title,
        assets=asset_map,
        config=config,
        image_sizes=image_sizes,
        deadline=deadline,
    )

    files = render.render_site(model.title, model.sections, model.structure.books)
    deadline.check("render")
    pages = _write_site(out_dir, files)
    _write_json(out_dir / MANIFEST_NAME, build_manifest(title=model.title, pages=pages, model=model))
    if debug_dir is not None:
        _write_debug_artifacts(debug_dir, model)
    return ConversionResult(out_dir=out_dir, pages=pages, model=model)
