"""Command-line entry point for rewriting saved or fetched pages."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Optional, Sequence

import requests

from .config import (
    DEFAULT_CDN_DOMAIN,
    ConfigError,
    OptimizerConfig,
    default_image_sizes,
    load_image_sizes,
)
from .models import MODE_FIT, MODE_NONE, MODE_RESIZE, TransformDirective
from .rewriter import ContentRewriter
from .storage import UploadStorage
from .urls import rewrite_url
from .utils import slugify

logger = logging.getLogger("image_optimizer.cli")

FETCH_TIMEOUT = 15


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("rewrite", *argv)


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--domain",
        default=DEFAULT_CDN_DOMAIN,
        help="Base URL of the image CDN",
    )
    parser.add_argument(
        "--custom-domain",
        default=None,
        help="Custom CDN domain that serves optimized images for this site",
    )
    parser.add_argument(
        "--content-width",
        type=int,
        default=None,
        help="Maximum width of the page's content column in pixels",
    )
    parser.add_argument(
        "--format",
        dest="preferred_format",
        choices=["webp"],
        default=None,
        help="Ask the CDN to convert rasters to this format",
    )
    parser.add_argument(
        "--sizes",
        type=Path,
        default=None,
        help="JSON file mapping registered size names to width/height/crop",
    )
    parser.add_argument(
        "--upload-url",
        default="",
        help="Public base URL of the uploads directory",
    )
    parser.add_argument(
        "--upload-dir",
        type=Path,
        default=None,
        help="Local path of the uploads directory, used to find original files",
    )
    parser.add_argument(
        "--reject-https",
        action="store_true",
        help="Only rewrite images served over plain HTTP",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_rewrite_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "inputs",
        nargs="+",
        help="HTML files or http(s) URLs of rendered pages",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write to this file (one input) or directory (several inputs) instead of STDOUT",
    )
    parser.add_argument(
        "--amp",
        action="store_true",
        help="Pages are AMP documents; do not add marker attributes",
    )
    _add_config_arguments(parser)


def _add_url_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("image_url", help="Source image URL")
    parser.add_argument("--width", type=int, default=None, help="Target width in pixels")
    parser.add_argument("--height", type=int, default=None, help="Target height in pixels")
    parser.add_argument(
        "--mode",
        choices=[MODE_RESIZE, MODE_FIT, MODE_NONE],
        default=MODE_FIT,
        help="Crop to fill (resize) or constrain (fit) when both sides are given",
    )
    parser.add_argument(
        "--scheme",
        choices=["http", "https", "network_path"],
        default=None,
        help="Force the scheme of the generated URL",
    )
    _add_config_arguments(parser)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Rewrite image references in rendered HTML to load through an image CDN.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    rewrite_parser = subparsers.add_parser(
        "rewrite", help="Rewrite the images of saved or fetched HTML pages"
    )
    _add_rewrite_arguments(rewrite_parser)

    url_parser = subparsers.add_parser("url", help="Print the CDN URL for a single image")
    _add_url_arguments(url_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> OptimizerConfig:
    image_sizes = default_image_sizes()
    if args.sizes:
        image_sizes = load_image_sizes(args.sizes)
    config = OptimizerConfig(
        cdn_domain=args.domain,
        custom_domain=args.custom_domain,
        image_sizes=image_sizes,
        content_width=args.content_width,
        preferred_format=args.preferred_format,
        reject_https=args.reject_https,
        amp=getattr(args, "amp", False),
    )
    config.validate()
    return config


def build_storage(args: argparse.Namespace) -> UploadStorage:
    return UploadStorage(base_url=args.upload_url, base_dir=args.upload_dir)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def read_input(source: str, session: requests.Session) -> Optional[str]:
    """Load a page from disk or over HTTP; None when it cannot be read."""
    if _is_remote(source):
        try:
            logger.info("Fetching %s", source)
            resp = session.get(source, timeout=FETCH_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Failed to fetch %s: %s", source, exc)
            return None
        return resp.text
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("Failed to read %s: %s", source, exc)
        return None


def _output_path(args: argparse.Namespace, source: str) -> Optional[Path]:
    if args.output is None:
        return None
    if len(args.inputs) == 1:
        return args.output
    if _is_remote(source):
        name = slugify(source, fallback="page") + ".html"
    else:
        name = Path(source).name
    return args.output / name


def _run_rewrite(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    try:
        config = build_config(args)
    except (ConfigError, OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    rewriter = ContentRewriter(config, build_storage(args))
    session = requests.Session()
    overall_start = time.perf_counter()
    failures = 0

    for source in args.inputs:
        html = read_input(source, session)
        if html is None:
            failures += 1
            continue
        rewritten = rewriter.rewrite_html(html)
        destination = _output_path(args, source)
        if destination is None:
            sys.stdout.write(rewritten)
            continue
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(rewritten, encoding="utf-8")
        logger.info("Saved rewritten HTML to %s", destination)

    sys.stdout.flush()
    total_elapsed = time.perf_counter() - overall_start
    logger.info(
        "Finished in %.2fs (%d/%d succeeded, %d failed)",
        total_elapsed,
        len(args.inputs) - failures,
        len(args.inputs),
        failures,
    )
    return 1 if failures else 0


def _run_url(args: argparse.Namespace) -> int:
    _configure_logging(args.verbose)
    try:
        config = build_config(args)
    except (ConfigError, OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    directive = TransformDirective.from_dimensions(args.width, args.height, args.mode)
    result = rewrite_url(args.image_url, config, directive, scheme=args.scheme)
    if not result.changed:
        logger.info("%s is not eligible for optimization", args.image_url)
    sys.stdout.write(result.url + "\n")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    if args.command == "rewrite":
        code = _run_rewrite(args)
    else:
        code = _run_url(args)
    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    main()
