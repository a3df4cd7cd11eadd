"""CLI entry point for latex-images.

Render LaTeX markup inside HTML files to images, and back.

Usage::

    latex-images render page.html
    latex-images render *.html -o output/ --store output/images
    latex-images revert page.html
    latex-images show-config
    latex-images init-config
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import colorlog

from latex_images import __version__
from latex_images.config import (
    AUTO_CONFIG_FILENAME,
    DEFAULT_CONFIG,
    LatexConfig,
    config_to_dict,
    generate_config_template,
    load_config,
)
from latex_images.document import LatexDocument
from latex_images.store import DirectoryImageStore


_log = logging.getLogger("latex")

_SUMMARY_SEP = "=" * 78
"""Separator line for the summary block."""


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_colorized_logging():
    """Configure colorized logging output."""
    handler = colorlog.StreamHandler()
    handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(name)-9s%(reset)s: "
            "%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)


def _setup_logging(verbose: bool) -> None:
    """Initialize colorized logging and optionally enable debug level."""
    setup_colorized_logging()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser with subcommands."""
    # -- Parent parsers for shared argument groups -----------------------------
    verbose_parent = argparse.ArgumentParser(add_help=False)
    verbose_parent.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    output_parent = argparse.ArgumentParser(add_help=False)
    output_parent.add_argument(
        "-o", "--output-dir",
        type=Path,
        default=None,
        help="Output directory for converted HTML files "
             "(default: rewrite each file in place)",
    )

    config_parent = argparse.ArgumentParser(add_help=False)
    config_parent.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help=f"JSON config file (default: {AUTO_CONFIG_FILENAME} next to "
             "each input file, if present)",
    )

    # -- Main parser -----------------------------------------------------------
    parser = argparse.ArgumentParser(
        prog="latex-images",
        description="Convert LaTeX markup in HTML files to images and back",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Commands:
  render        Render LaTeX markup to embedded images
  revert        Convert embedded images back to LaTeX markup
  show-config   Print the effective configuration as JSON
  init-config   Generate a config template file

Examples:
  %(prog)s render page.html                  Render in place (data URIs)
  %(prog)s render *.html -o out/             Write results to out/
  %(prog)s render page.html --store img/     Store images as files in img/
  %(prog)s revert page.html                  Restore editable LaTeX
  %(prog)s init-config                       Generate {AUTO_CONFIG_FILENAME}

Run '%(prog)s COMMAND --help' for command-specific options.
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # -- render ----------------------------------------------------------------
    p_render = subparsers.add_parser(
        "render",
        parents=[verbose_parent, output_parent, config_parent],
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Render LaTeX markup to embedded images",
        description="Render every LaTeX span in each HTML file through the "
                    "TeX toolchain and replace it with an image fragment. "
                    "Spans that fail to render keep their source and get an "
                    "inline error annotation.",
        epilog="""
Examples:
  %(prog)s page.html                        Render single file in place
  %(prog)s *.html -o out/                   Custom output directory
  %(prog)s page.html --store page.images    Reference image files
  %(prog)s page.html --config my.json       Use custom config
        """,
    )
    p_render.add_argument(
        "files",
        nargs="+",
        type=Path,
        help="HTML file(s) to convert (supports shell globs)",
    )
    p_render.add_argument(
        "--store",
        type=Path,
        default=None,
        metavar="DIR",
        help="Store rendered images in DIR and reference them by relative "
             "path instead of embedding data URIs",
    )

    # -- revert ----------------------------------------------------------------
    p_revert = subparsers.add_parser(
        "revert",
        parents=[verbose_parent, output_parent, config_parent],
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Convert embedded images back to LaTeX markup",
        description="Replace every LaTeX image fragment with the markup it "
                    "was rendered from.",
        epilog="""
Examples:
  %(prog)s page.html                        Revert single file in place
  %(prog)s *.html -o out/                   Custom output directory
        """,
    )
    p_revert.add_argument(
        "files",
        nargs="+",
        type=Path,
        help="HTML file(s) to convert (supports shell globs)",
    )

    # -- show-config -----------------------------------------------------------
    p_show = subparsers.add_parser(
        "show-config",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Print the effective configuration as JSON",
        description="Print the effective configuration as JSON and exit.",
        epilog="""
Examples:
  %(prog)s                                  Show default configuration
  %(prog)s --config my.json                 Show merged configuration
        """,
    )
    p_show.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help="Config file to merge onto the defaults.",
    )

    # -- init-config -----------------------------------------------------------
    p_init = subparsers.add_parser(
        "init-config",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Generate a config template file",
        description="Write the default configuration as JSON and exit.",
        epilog=f"""
Examples:
  %(prog)s                                  Generate {AUTO_CONFIG_FILENAME}
  %(prog)s my.json                          Generate at custom path
        """,
    )
    p_init.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=Path(AUTO_CONFIG_FILENAME),
        help=f"Output path for the template "
             f"(default: {AUTO_CONFIG_FILENAME})",
    )

    return parser


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _resolve_file_paths(raw_paths: list[Path], kind: str) -> list[Path] | None:
    """Resolve and validate a list of file paths.

    Returns resolved paths on success, or ``None`` on first error
    (after logging the error).
    """
    resolved: list[Path] = []
    for p in raw_paths:
        rp = p.resolve()
        if not rp.exists():
            _log.error("%s not found: %s", kind, p)
            return None
        if not rp.is_file():
            _log.error("Not a file: %s", p)
            return None
        resolved.append(rp)
    return resolved


def resolve_output(input_path: Path, output_dir: Path | None) -> Path:
    """Resolve the output path for *input_path*.

    Default: the input file is rewritten in place.
    With *output_dir*: the file keeps its name inside that directory.
    """
    if output_dir is None:
        return input_path
    return output_dir / input_path.name


def _resolve_config(
    input_path: Path,
    explicit_config: Path | None,
    config_cache: dict[Path, LatexConfig],
) -> LatexConfig:
    """Resolve the configuration for a single input file.

    Checks the explicit ``--config`` path first, then auto-discovers
    ``.latex-images.json`` next to the input.  Results are cached by
    resolved path so that files sharing a config don't re-parse it.

    Raises ``ConfigError`` (via :func:`load_config`) for invalid files.
    """
    config_path = explicit_config
    if not config_path:
        auto_path = input_path.parent / AUTO_CONFIG_FILENAME
        if auto_path.is_file():
            config_path = auto_path

    if not config_path:
        return DEFAULT_CONFIG

    resolved = config_path.resolve()
    if resolved not in config_cache:
        config = load_config(resolved)
        config_cache[resolved] = config
        _log.info(
            "Config (%s): %d rule(s), %s output at %d dpi",
            config_path, len(config.rules), config.image_format, config.dpi,
        )
    return config_cache[resolved]


def _make_store(store_dir: Path, output_file: Path) -> DirectoryImageStore:
    """Image store whose references are relative to *output_file*."""
    prefix = Path(os.path.relpath(store_dir, output_file.parent)).as_posix()
    return DirectoryImageStore(store_dir, prefix="" if prefix == "." else prefix)


@dataclass
class _FileResult:
    """Result of processing a single file."""

    path: Path
    status: str  # "converted", "unchanged", "failed"
    error: str | None = None


def _convert_one_file(
    input_path: Path,
    *,
    mode: str,
    output_dir: Path | None,
    explicit_config: Path | None,
    config_cache: dict[Path, LatexConfig],
    store_dir: Path | None = None,
) -> _FileResult:
    """Convert one HTML file in the direction given by *mode*."""
    name = input_path.name
    try:
        config = _resolve_config(input_path, explicit_config, config_cache)
        output_file = resolve_output(input_path, output_dir)
        store = _make_store(store_dir, output_file) if store_dir else None

        _log.info("Converting %s...", name)
        html_text = input_path.read_text(encoding="utf-8")
        document = LatexDocument(config, html_text, store=store)
        if mode == "render":
            new_html = document.convert_latex_to_images()
        else:
            new_html = document.convert_images_to_latex()

        if new_html == html_text and output_file == input_path:
            _log.info("  ⊙ %s (unchanged)", name)
            return _FileResult(input_path, "unchanged")

        output_file.write_text(new_html, encoding="utf-8")
        _log.info("  ✓ %s → %s", name, output_file)
        return _FileResult(input_path, "converted")

    except Exception as e:
        _log.error("  ✗ %s: %s: %s", name, type(e).__name__, e)
        return _FileResult(input_path, "failed", error=str(e))


def _convert_files(args: argparse.Namespace, mode: str) -> int:
    """Shared driver for ``render`` and ``revert``."""
    if args.config and not args.config.is_file():
        print(f"error: Config file not found: {args.config}", file=sys.stderr)
        return 1

    _setup_logging(args.verbose)

    paths = _resolve_file_paths(args.files, "File")
    if paths is None:
        return 1

    output_dir = args.output_dir.resolve() if args.output_dir else None
    store_dir = getattr(args, "store", None)
    store_dir = store_dir.resolve() if store_dir else None

    _log.info("latex-images %s", __version__)
    _log.info("Mode: %s (%d file(s))", mode, len(paths))
    if output_dir:
        _log.info("Output directory: %s", output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
    else:
        _log.info("Output: in place")
    if store_dir:
        _log.info("Image store: %s", store_dir)

    config_cache: dict[Path, LatexConfig] = {}
    results = [
        _convert_one_file(
            path,
            mode=mode,
            output_dir=output_dir,
            explicit_config=args.config,
            config_cache=config_cache,
            store_dir=store_dir,
        )
        for path in paths
    ]

    converted = sum(1 for r in results if r.status == "converted")
    unchanged = sum(1 for r in results if r.status == "unchanged")
    failed = sum(1 for r in results if r.status == "failed")

    _log.info("")
    _log.info(_SUMMARY_SEP)
    _log.info(
        "Results: %d converted, %d unchanged, %d failed",
        converted, unchanged, failed,
    )
    _log.info(_SUMMARY_SEP)
    return 1 if failed else 0


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_init_config(args: argparse.Namespace) -> int:
    """Handle the ``init-config`` command."""
    generate_config_template(args.path)
    print(f"Config template written to {args.path}")
    return 0


def _cmd_show_config(args: argparse.Namespace) -> int:
    """Handle the ``show-config`` command."""
    if args.config:
        if not args.config.is_file():
            print(
                f"error: Config file not found: {args.config}",
                file=sys.stderr,
            )
            return 1
        try:
            config = load_config(args.config)
        except ValueError as e:
            print(f"error: {e}", file=sys.stderr)
            return 1
    else:
        config = DEFAULT_CONFIG
    print(json.dumps(config_to_dict(config), indent=2))
    return 0


def _cmd_render(args: argparse.Namespace) -> int:
    """Handle the ``render`` command."""
    return _convert_files(args, "render")


def _cmd_revert(args: argparse.Namespace) -> int:
    """Handle the ``revert`` command."""
    return _convert_files(args, "revert")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = _build_parser()

    argv = sys.argv[1:] if argv is None else argv

    # Show help if no arguments provided.
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    handlers = {
        "render": _cmd_render,
        "revert": _cmd_revert,
        "show-config": _cmd_show_config,
        "init-config": _cmd_init_config,
    }
    return handlers[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
