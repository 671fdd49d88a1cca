"""Work out the intended display size of an image from whatever the markup offers.

Signals are consulted in order, later ones only filling gaps: literal
``width``/``height`` attributes, a ``size-<name>`` class naming a registered
size, the metadata of a local attachment (``wp-image-<id>`` class), and finally
the ``-WIDTHxHEIGHT`` suffix of resized derivative filenames. The result is
then constrained to the configured content width.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern, Tuple

from . import policies
from .config import OptimizerConfig
from .locator import parse_tag_attributes
from .models import MODE_FIT, MODE_RESIZE, Attachment, TransformDirective
from .storage import UploadStorage
from .utils import parse_pixel_value, round_half_up
from .validator import is_eligible

logger = logging.getLogger("image_optimizer")

SIZE_CLASS_PATTERN = re.compile(r"(?:^|\s)size-(\S+)", re.IGNORECASE)
ATTACHMENT_CLASS_PATTERN = re.compile(r"(?:^|\s)wp-image-(\d+)", re.IGNORECASE)


def _extension_group(extensions: Iterable[str]) -> str:
    return "|".join(re.escape(ext) for ext in extensions)


def _dimension_suffix_pattern(extensions: Iterable[str]) -> Pattern[str]:
    return re.compile(rf"(-(\d+)x(\d+))\.(?:{_extension_group(extensions)})$", re.IGNORECASE)


def _custom_crop_pattern(extensions: Iterable[str]) -> Pattern[str]:
    return re.compile(
        rf"-e[a-z0-9]+(-\d+x\d+)?\.(?:{_extension_group(extensions)})$", re.IGNORECASE
    )


@dataclass(frozen=True)
class ResolvedDimensions:
    """Display size for one image plus the source URL to hand to the CDN."""

    src: str
    width: Optional[int]
    height: Optional[int]
    transform: str
    width_orig: Optional[int]
    height_orig: Optional[int]
    transform_orig: str
    fullsize: bool = False

    @property
    def directive(self) -> TransformDirective:
        return TransformDirective.from_dimensions(self.width, self.height, self.transform)


def parse_dimensions_from_filename(
    src: str, extensions: Iterable[str]
) -> Tuple[Optional[int], Optional[int]]:
    """Read ``(width, height)`` from a ``name-WIDTHxHEIGHT.ext`` filename."""
    match = _dimension_suffix_pattern(extensions).search(src)
    if match:
        width, height = int(match.group(2)), int(match.group(3))
        if width and height:
            return width, height
    return None, None


def strip_image_dimensions_maybe(
    src: str, config: OptimizerConfig, storage: UploadStorage
) -> str:
    """Drop the ``-WIDTHxHEIGHT`` suffix when the original file is on disk."""
    match = _dimension_suffix_pattern(config.get_extensions()).search(src)
    if not match:
        return src
    stripped = src[: match.start(1)] + src[match.end(1):]
    if storage.file_exists(stripped):
        return stripped
    logger.debug("Keeping %s: original %s not found in uploads", src, stripped)
    return src


def is_custom_crop(src: str, extensions: Iterable[str]) -> bool:
    """True for filenames produced by the image editor's crop tool."""
    basename = src.rsplit("/", 1)[-1]
    return bool(_custom_crop_pattern(extensions).search(basename))


def constrain_dimensions(
    current_width: int,
    current_height: int,
    max_width: int = 0,
    max_height: int = 0,
) -> Tuple[int, int]:
    """Scale dimensions down proportionally to fit inside a bounding box."""
    if not max_width and not max_height:
        return current_width, current_height

    width_ratio = height_ratio = 1.0
    did_width = did_height = False
    if max_width > 0 and current_width > 0 and current_width > max_width:
        width_ratio = max_width / current_width
        did_width = True
    if max_height > 0 and current_height > 0 and current_height > max_height:
        height_ratio = max_height / current_height
        did_height = True

    smaller_ratio = min(width_ratio, height_ratio)
    larger_ratio = max(width_ratio, height_ratio)
    if (
        round_half_up(current_width * larger_ratio) > max_width
        or round_half_up(current_height * larger_ratio) > max_height
    ):
        ratio = smaller_ratio
    else:
        ratio = larger_ratio

    width = max(1, round_half_up(current_width * ratio))
    height = max(1, round_half_up(current_height * ratio))

    # Rounding can leave a result one pixel shy of the box.
    if did_width and width == max_width - 1:
        width = max_width
    if did_height and height == max_height - 1:
        height = max_height
    return width, height


def resize_dimensions(
    orig_width: int,
    orig_height: int,
    dest_width: int,
    dest_height: int,
    crop: bool = False,
) -> Optional[Tuple[int, int]]:
    """Target size for a derivative, or None when it would not be smaller."""
    if orig_width <= 0 or orig_height <= 0:
        return None
    if dest_width <= 0 and dest_height <= 0:
        return None

    if crop:
        aspect_ratio = orig_width / orig_height
        new_width = min(dest_width, orig_width)
        new_height = min(dest_height, orig_height)
        if not new_width:
            new_width = round_half_up(new_height * aspect_ratio)
        if not new_height:
            new_height = round_half_up(new_width / aspect_ratio)
    else:
        new_width, new_height = constrain_dimensions(
            orig_width, orig_height, dest_width, dest_height
        )

    if new_width >= orig_width and new_height >= orig_height:
        return None
    return new_width, new_height


def _class_match(pattern: Pattern[str], classes: str) -> Optional[str]:
    match = pattern.search(classes)
    return match.group(1) if match else None


def _local_attachment(
    classes: str,
    src: str,
    tag: str,
    config: OptimizerConfig,
    storage: UploadStorage,
) -> Optional[Attachment]:
    attachment_id = _class_match(ATTACHMENT_CLASS_PATTERN, classes)
    if not attachment_id or not storage.is_local(src):
        return None
    if not config.policies.resolve(policies.IMAGE_IS_LOCAL, True, src=src, tag=tag):
        return None
    return storage.get_attachment(int(attachment_id))


def resolve_dimensions(
    tag: str,
    src: str,
    config: OptimizerConfig,
    storage: Optional[UploadStorage] = None,
) -> ResolvedDimensions:
    """Resolve width, height and transform mode for an image tag."""
    storage = storage or UploadStorage()
    image_sizes = config.image_sizes
    extensions = config.get_extensions()
    attributes = parse_tag_attributes(tag)
    classes = attributes.get("class", "")

    # Crop to fill unless a signal says otherwise.
    transform = MODE_RESIZE
    fullsize = False

    # Percentages are never trusted, only pixel values.
    width = parse_pixel_value(attributes.get("width"))
    height = parse_pixel_value(attributes.get("height"))

    size = _class_match(SIZE_CLASS_PATTERN, classes)
    if (
        size
        and width is None
        and height is None
        and size != "full"
        and size in image_sizes
    ):
        registered = image_sizes[size]
        width = registered.width or None
        height = registered.height or None
        transform = MODE_RESIZE if registered.crop else MODE_FIT

    attachment = _local_attachment(classes, src, tag, config, storage)
    if attachment is not None:
        attachment_url, natural_width, natural_height = storage.image_src(attachment, size)
        if is_eligible(attachment_url, config):
            src = attachment_url
            fullsize = True

            # Never ask for more pixels than the attachment has.
            if width is not None and natural_width:
                width = min(width, natural_width)
            if height is not None and natural_height:
                height = min(height, natural_height)

            if width is None and height is None:
                width = natural_width or None
                height = natural_height or None
                transform = MODE_FIT
            elif size in image_sizes:
                transform = MODE_RESIZE if image_sizes[size].crop else MODE_FIT

    if width is None and height is None:
        width, height = parse_dimensions_from_filename(src, extensions)

    width_orig, height_orig, transform_orig = width, height, transform

    content_width = config.get_content_width()
    if width is not None and content_width and width > content_width:
        if height is not None:
            height = round_half_up(content_width * height / width)
        width = content_width

    if width is None and content_width:
        width = content_width
        # Height alone against a forced width would skew the image.
        if height is not None:
            transform = MODE_FIT

    if not fullsize and is_custom_crop(src, extensions):
        fullsize = True

    if not fullsize and storage.is_local(src):
        src = strip_image_dimensions_maybe(src, config, storage)

    return ResolvedDimensions(
        src=src,
        width=width,
        height=height,
        transform=transform,
        width_orig=width_orig,
        height_orig=height_orig,
        transform_orig=transform_orig,
        fullsize=fullsize,
    )
