"""Responsive ``srcset`` rewriting and breakpoint synthesis."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from . import policies
from .config import OptimizerConfig
from .dimensions import (
    constrain_dimensions,
    parse_dimensions_from_filename,
    strip_image_dimensions_maybe,
)
from .models import SourceSetEntry
from .storage import UploadStorage
from .urls import build_url
from .validator import is_eligible

logger = logging.getLogger("image_optimizer")

# A synthesized width this close to an existing one adds nothing.
MIN_BREAKPOINT_GAP = 50


def _rewrite_source(
    source: SourceSetEntry,
    config: OptimizerConfig,
    storage: UploadStorage,
    attachment_url: Optional[str],
) -> SourceSetEntry:
    if not is_eligible(source.url, config):
        return source
    if config.policies.resolve(policies.SKIP_IMAGE, False, src=source.url, tag=None):
        return source

    width, height = parse_dimensions_from_filename(source.url, config.get_extensions())
    url = attachment_url or strip_image_dimensions_maybe(source.url, config, storage)

    args: Dict[str, object] = {}
    if source.descriptor == "w":
        if height and source.value == width:
            args["resize"] = f"{width},{height}"
        else:
            args["w"] = source.value
    return replace(source, url=build_url(url, config, args))


def _crop_base(
    full_width: int,
    full_height: int,
    requested_width: int,
    requested_height: int,
    config: OptimizerConfig,
) -> Tuple[bool, int]:
    """Return ``(soft, base_width)`` for breakpoint synthesis."""
    constrained_width, constrained_height = constrain_dimensions(
        full_width, full_height, requested_width
    )
    if (
        abs(constrained_width - requested_width) <= 1
        and abs(constrained_height - requested_height) <= 1
    ):
        return True, config.get_content_width() or config.soft_crop_base_width
    return False, requested_width


def expand_srcset(
    sources: Mapping[int, SourceSetEntry],
    full_width: Optional[int],
    full_height: Optional[int],
    full_file_url: Optional[str],
    requested_width: Optional[int],
    requested_height: Optional[int],
    config: OptimizerConfig,
    storage: Optional[UploadStorage] = None,
    attachment_url: Optional[str] = None,
) -> Dict[int, SourceSetEntry]:
    """Rewrite a width-keyed ``srcset`` and add larger CDN breakpoints.

    Every existing entry is passed through the CDN independently. New widths
    are multiples of a base width: the content width for soft crops (the
    requested size keeps the original aspect ratio) or the requested width for
    hard crops, where the CDN is asked to zoom the cropped frame instead.
    """
    storage = storage or UploadStorage()
    result: Dict[int, SourceSetEntry] = {
        width: _rewrite_source(source, config, storage, attachment_url)
        for width, source in sources.items()
    }

    multipliers: Optional[Sequence[int]] = config.policies.resolve(
        policies.SRCSET_MULTIPLIERS, config.srcset_multipliers
    )
    if not multipliers:
        return result
    if not (full_width and full_height and full_file_url and requested_width and requested_height):
        return result
    if config.policies.resolve(policies.SKIP_IMAGE, False, src=full_file_url, tag=None):
        return result

    soft, base = _crop_base(full_width, full_height, requested_width, requested_height, config)

    taken: List[int] = list(result)
    synthesized: Dict[int, SourceSetEntry] = {}
    for multiplier in multipliers:
        new_width = base * multiplier
        if new_width > full_width:
            continue
        if any(abs(existing - new_width) < MIN_BREAKPOINT_GAP for existing in taken):
            continue

        if soft:
            args: Dict[str, object] = {"w": new_width}
        else:
            args = {"zoom": multiplier, "resize": f"{requested_width},{requested_height}"}

        synthesized[new_width] = SourceSetEntry(
            url=build_url(full_file_url, config, args),
            value=new_width,
        )
        taken.append(new_width)

    if synthesized:
        logger.debug(
            "Added %d breakpoint(s) for %s (%s crop)",
            len(synthesized),
            full_file_url,
            "soft" if soft else "hard",
        )
    result.update(synthesized)
    return result


def sizes_attribute(
    sizes: str,
    size: Optional[Sequence[int]],
    config: OptimizerConfig,
    in_content: bool = True,
) -> str:
    """Cap the ``sizes`` attribute at the content width for in-content images."""
    if not in_content:
        return sizes
    content_width = config.get_content_width() or config.soft_crop_base_width
    if size and size[0] < content_width:
        return sizes
    return f"(max-width: {content_width}px) 100vw, {content_width}px"
