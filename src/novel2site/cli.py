"""Command-line interface for novel2site."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .version import __version__

EXIT_UNKNOWN_ARGS = 2
EXIT_INVALID_ARGS = 6
EXIT_OUTPUT_DIR = 7
EXIT_CONVERSION = 8
EXIT_FALLBACK = 9
EXIT_TIMEOUT = 10
EXIT_DEGRADED = 11


def _get_usage() -> str:
    return (
        f"novel2site {__version__}\n"
        "Usage:\n"
        "  novel2site [--help] [--version|--ver]\n"
        "  novel2site --write-config PATH\n"
        "  novel2site --input DOCX --to-dir TO_DIR [options]\n\n"
        "Options:\n"
        "  --title TITLE                Site title (default: document title or 'Novel')\n"
        "  --skip-section ID            Leave a chapter, appendix or book out (repeatable)\n"
        "  --skip-references            Leave reference markers as plain text\n"
        "  --tag-ui-text                Style [bracketed text] as UI elements\n"
        "  --timeout SECONDS            Processing time budget (default: 30)\n"
        "  --minimal-fallback           Emit a single plain page when decoding fails\n"
        "  --config PATH                Read options from a JSON config file\n"
        "  --write-config PATH          Write the default config JSON and exit\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs + extra artifacts"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--input", help="DOCX manuscript to convert")
    parser.add_argument("--to-dir", help="Output directory")
    parser.add_argument("--title", default=None, help="Site title")
    parser.add_argument(
        "--skip-section",
        action="append",
        default=None,
        help="Chapter, appendix or book id to leave out of the generated site (repeatable)",
    )
    parser.add_argument(
        "--skip-references",
        action="store_true",
        default=None,
        help="Disable reference marker substitution",
    )
    parser.add_argument(
        "--tag-ui-text",
        action="store_true",
        default=None,
        help="Wrap [bracketed text] that is not a reference marker in a UI span",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Processing timeout in seconds")
    parser.add_argument(
        "--minimal-fallback",
        action="store_true",
        default=None,
        help="Fall back to a single plain-paragraph page when the document cannot be decoded",
    )
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--write-config", help="Write the default config JSON to the given path and exit")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs + extra artifacts")
    return parser


def _validate_numeric_args(args: argparse.Namespace) -> str | None:
    if args.timeout is not None and args.timeout <= 0:
        return "Invalid value for --timeout: must be > 0"
    return None


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    try:
        args, unknown = parser.parse_known_args(argv)
    except SystemExit:
        print(_get_usage())
        return EXIT_INVALID_ARGS
    if unknown:
        print(_get_usage())
        return EXIT_UNKNOWN_ARGS

    numeric_error = _validate_numeric_args(args)
    if numeric_error:
        print(numeric_error, file=sys.stderr)
        return EXIT_INVALID_ARGS

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    if args.write_config:
        try:
            from novel2site import core
        except Exception as exc:
            print(f"Unable to import novel2site core: {exc}", file=sys.stderr)
            return EXIT_INVALID_ARGS
        core.setup_logging(args.verbose, args.debug)
        target = Path(args.write_config).expanduser().resolve()
        try:
            core._write_config_file(target)
        except Exception as exc:
            print(f"Unable to write config file {target}: {exc}", file=sys.stderr)
            return EXIT_INVALID_ARGS
        if args.verbose:
            print(f"Default config written to {target}")
        return 0

    if not args.input or not args.to_dir:
        print(_get_usage())
        print("Options --input and --to-dir are required unless --write-config or --version/--ver is used", file=sys.stderr)
        return EXIT_INVALID_ARGS

    docx_path = Path(args.input).expanduser().resolve()
    to_dir = Path(args.to_dir).expanduser().resolve()

    if not docx_path.exists() or not docx_path.is_file():
        print(f"Input file not found: {docx_path}", file=sys.stderr)
        return EXIT_INVALID_ARGS
    if docx_path.suffix.lower() != ".docx":
        print(f"Input file is not a .docx document: {docx_path}", file=sys.stderr)
        return EXIT_INVALID_ARGS

    if to_dir.exists():
        if not to_dir.is_dir():
            print(f"Output path is not a directory: {to_dir}", file=sys.stderr)
            return EXIT_OUTPUT_DIR
        if any(to_dir.iterdir()):
            print(f"Output directory must be empty: {to_dir}", file=sys.stderr)
            return EXIT_OUTPUT_DIR

    try:
        from novel2site import core
    except Exception as exc:
        print(f"Unable to import novel2site core: {exc}", file=sys.stderr)
        return EXIT_INVALID_ARGS

    core.setup_logging(args.verbose, args.debug)

    file_values = {}
    if args.config:
        config_path = Path(args.config).expanduser().resolve()
        if not config_path.exists() or not config_path.is_file():
            print(f"Config file not found: {config_path}", file=sys.stderr)
            return EXIT_INVALID_ARGS
        try:
            file_values = core.load_config_file(config_path)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return EXIT_INVALID_ARGS

    config = core.build_config(
        file_values,
        title=args.title,
        skip_sections=args.skip_section,
        skip_reference_processing=args.skip_references,
        tag_ui_text=args.tag_ui_text,
        processing_timeout=args.timeout,
        minimal_fallback=args.minimal_fallback,
        verbose=bool(args.verbose),
        debug=bool(args.debug),
    )

    try:
        result = core.run_conversion_pipeline(docx_path=docx_path, out_dir=to_dir, config=config)
    except core.ConversionTimeoutError as exc:
        print(f"Conversion timed out: {exc}", file=sys.stderr)
        return EXIT_TIMEOUT
    except core.ConversionError as exc:
        print(f"Conversion failed ({exc.stage}): {exc}", file=sys.stderr)
        return EXIT_FALLBACK if exc.stage == "fallback" else EXIT_CONVERSION
    except OSError as exc:
        print(f"Unable to write output to {to_dir}: {exc}", file=sys.stderr)
        return EXIT_OUTPUT_DIR

    if result.degraded:
        print(f"Site generated in degraded mode: {result.degraded_reason}", file=sys.stderr)
        return EXIT_DEGRADED
    if args.verbose:
        print(f"Site written to {to_dir} ({len(result.pages)} page(s))")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
