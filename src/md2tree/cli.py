"""Command-line interface for md2tree."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

from .version import __version__


def _get_usage() -> str:
    return (
        f"md2tree {__version__}\n"
        "Usage:\n"
        "  md2tree [--help] [--version|--ver]\n"
        "  md2tree --markdown FILE [options]\n"
        "  md2tree --html FILE [options]\n"
        "  md2tree --toc FILE --root-dir DIR [options]\n"
        "  md2tree --page FILE --root-dir DIR [--toc FILE] [options]\n\n"
        "Options:\n"
        "  --output PATH                Write the JSON result to PATH instead of stdout\n"
        "  --options PATH               JSON file with parse options\n"
        "  --heading-anchors            Insert anchor links into headings\n"
        "  --no-heading-ids             Keep existing heading ids instead of generating them\n"
        "  --heading-id-prefix PREFIX   Prefix for generated heading ids\n"
        "  --trailing-slash             Append a trailing slash to page URLs\n"
        "  --use-cache                  Cache markdown parse results on disk\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--markdown", help="Markdown file (or extension-less page id) to parse")
    parser.add_argument("--html", help="HTML fragment file to parse")
    parser.add_argument("--toc", help="Table of contents markdown file")
    parser.add_argument("--page", help="Markdown page to compute navigation for")
    parser.add_argument("--root-dir", help="Root directory of the markdown pages")
    parser.add_argument("--output", help="Output JSON file")
    parser.add_argument("--options", help="Path to a JSON file with parse options")
    parser.add_argument("--heading-anchors", action="store_true", help="Insert anchor links into headings")
    parser.add_argument("--no-heading-ids", action="store_true", help="Do not generate heading ids")
    parser.add_argument("--heading-id-prefix", default=None, help="Prefix for generated heading ids")
    parser.add_argument("--trailing-slash", action="store_true", help="Append a trailing slash to page URLs")
    parser.add_argument("--use-cache", action="store_true", help="Cache markdown parse results on disk")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def _validate_modes(args: argparse.Namespace) -> str | None:
    modes = [name for name in ("markdown", "html", "page") if getattr(args, name)]
    if len(modes) > 1:
        return "Options " + ", ".join(f"--{name}" for name in modes) + " are mutually exclusive"
    if not modes and not args.toc:
        return "One of --markdown, --html, --toc or --page is required"
    if (args.page or (args.toc and not modes)) and not args.root_dir:
        return "Option --root-dir is required with --toc and --page"
    if args.toc and modes and modes[0] != "page":
        return f"Option --toc cannot be combined with --{modes[0]}"
    return None


def _build_options(args: argparse.Namespace, base: Dict[str, Any]):
    from md2tree import core

    options = dict(base)
    if args.heading_anchors:
        options["heading_anchors"] = True
    if args.no_heading_ids:
        options["heading_ids"] = False
    if args.heading_id_prefix is not None:
        options["heading_id_prefix"] = args.heading_id_prefix
    if args.use_cache:
        options["use_cache"] = True
    return core.ParseMarkdownOptions(**options)


def _run(args: argparse.Namespace, opts) -> Dict[str, Any]:
    from md2tree import core, toc

    if args.markdown:
        return core.parse_markdown(args.markdown, opts).to_dict()

    if args.html:
        html_opts = core.ParseHtmlOptions(
            heading_ids=opts.heading_ids,
            heading_id_prefix=opts.heading_id_prefix,
            heading_anchors=opts.heading_anchors,
            heading_anchor_class_name=opts.heading_anchor_class_name,
            heading_anchor_min_level=opts.heading_anchor_min_level,
            paragraph_intro_class_name=opts.paragraph_intro_class_name,
        )
        return core.parse_html(Path(args.html).expanduser(), html_opts).to_dict()

    root_dir = str(Path(args.root_dir).expanduser().resolve())
    table_of_contents = None
    if args.toc:
        toc_path = Path(args.toc).expanduser().resolve()
        table_of_contents = toc.parse_table_of_contents(toc_path, Path(root_dir), args.trailing_slash)
        if not args.page:
            return table_of_contents.to_dict()

    page_path = str(Path(args.page).expanduser().resolve())
    nav = toc.get_page_navigation(root_dir, page_path, table_of_contents, args.trailing_slash)
    return nav.to_dict()


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    mode_error = _validate_modes(args)
    if mode_error:
        print(_get_usage())
        print(mode_error, file=sys.stderr)
        return 6

    for flag, value in (("--html", args.html), ("--toc", args.toc)):
        if value and not Path(value).expanduser().is_file():
            print(f"File not found for {flag}: {value}", file=sys.stderr)
            return 6
    if args.root_dir and not Path(args.root_dir).expanduser().is_dir():
        print(f"Root directory not found: {args.root_dir}", file=sys.stderr)
        return 6

    try:
        from md2tree import core
    except Exception as exc:
        print(f"Unable to import md2tree core: {exc}", file=sys.stderr)
        return 6

    core.setup_logging(args.verbose, args.debug)

    base_options: Dict[str, Any] = {}
    if args.options:
        options_path = Path(args.options).expanduser().resolve()
        if not options_path.exists() or not options_path.is_file():
            print(f"Options file not found: {options_path}", file=sys.stderr)
            return 6
        try:
            base_options = core.load_options_file(options_path)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 6

    opts = _build_options(args, base_options)

    try:
        payload = _run(args, opts)
    except (ValueError, RuntimeError, OSError) as exc:
        print(f"Parse failed: {exc}", file=sys.stderr)
        return 8

    text = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
    if not args.output:
        print(text)
        return 0

    output_path = Path(args.output).expanduser().resolve()
    if output_path.exists() and output_path.is_dir():
        print(f"Output path is a directory: {output_path}", file=sys.stderr)
        return 7
    try:
        core.safe_write_text(output_path, text + "\n")
    except OSError as exc:
        print(f"Unable to write output {output_path}: {exc}", file=sys.stderr)
        return 7
    if args.verbose:
        print(f"Result written to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
