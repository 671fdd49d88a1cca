"""Rewrite image references in rendered HTML so they load through the CDN."""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlsplit

from . import policies
from .config import OptimizerConfig
from .dimensions import constrain_dimensions, resize_dimensions, resolve_dimensions
from .locator import locate_images
from .models import (
    MODE_FIT,
    MODE_RESIZE,
    Attachment,
    DownsizeResult,
    ImageMatch,
    SourceSetEntry,
)
from .srcset import expand_srcset
from .storage import UploadStorage
from .urls import build_url
from .validator import is_eligible

logger = logging.getLogger("image_optimizer")

TRANSFORM_ARGS = ("resize", "fit", "lb")
DIMENSION_CHECK_ATTRIBUTE = 'data-recalc-dims="1"'

_DIMENSION_ATTRS = re.compile(r"(?<=\s)(width|height)=[\"']?[\d%]+[\"']?\s?", re.IGNORECASE)
_WIDTH_ATTR = re.compile(r"(?<=\s)(width=[\"']?)[\d%]+([\"']?)\s?", re.IGNORECASE)
_HEIGHT_ATTR = re.compile(r"(?<=\s)(height=[\"']?)[\d%]+([\"']?)\s?", re.IGNORECASE)
_TAG_END = re.compile(r"(\s?/)?>(\s*</a>)?$", re.IGNORECASE)

Locator = Callable[[str], List[ImageMatch]]


def _escape_url(url: str) -> str:
    return html_lib.escape(url, quote=True)


def _unescape_url(url: str) -> str:
    """Decode entities in a URL taken verbatim from an HTML attribute."""
    return html_lib.unescape(url)


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


class ContentRewriter:
    """Runs located images through eligibility, sizing and URL building.

    One instance serves one request: the configuration and upload storage it
    holds are treated as read-only for the lifetime of the instance.
    """

    def __init__(
        self,
        config: OptimizerConfig,
        storage: Optional[UploadStorage] = None,
        locator: Locator = locate_images,
    ) -> None:
        self.config = config
        self.storage = storage or UploadStorage()
        self.locator = locator

    # In-content images

    def rewrite_html(self, html: str) -> str:
        """Return ``html`` with every eligible image served by the CDN."""
        if not html:
            return html
        matches = self.locator(html)
        if not matches:
            return html

        pieces: List[str] = []
        cursor = 0
        rewritten = 0
        # Spans are spliced in document order so offsets stay valid.
        for match in matches:
            pieces.append(html[cursor:match.start])
            replacement = self.rewrite_match(match)
            if replacement != match.full_match:
                rewritten += 1
            pieces.append(replacement)
            cursor = match.end
        pieces.append(html[cursor:])

        logger.debug("Rewrote %d of %d image(s)", rewritten, len(matches))
        return "".join(pieces)

    def rewrite_match(self, match: ImageMatch) -> str:
        """Return the replacement markup for a single located image."""
        chain = self.config.policies
        # Hooks see the tag's own src, before any lazy-load swap.
        if chain.resolve(policies.SKIP_IMAGE, False, src=match.literal_src, tag=match.full_match):
            logger.debug("Skipping %s: vetoed by skip_image policy", match.literal_src)
            return match.full_match

        src = _unescape_url(match.src_url)
        if is_eligible(src, self.config):
            return self._rewrite_eligible(match, src)

        # Already optimized image linking to an unoptimized full-size file.
        if (
            match.link_url
            and self._is_cdn_url(src)
            and is_eligible(_unescape_url(match.link_url), self.config)
        ):
            return self._replace_link(match.full_match, match.link_url)
        return match.full_match

    def _is_cdn_url(self, url: str) -> bool:
        try:
            host = urlsplit(url.strip()).hostname
        except ValueError:
            return False
        return self.config.is_service_host(host, url)

    def _replace_link(self, markup: str, link_token: str) -> str:
        """Rewrite the ``href`` whose literal attribute value is ``link_token``."""
        link_url = _unescape_url(link_token)
        optimized = build_url(link_url, self.config)
        if optimized == link_url:
            return markup
        pattern = re.compile(
            r"(href=[\"'])" + re.escape(link_token) + r"([\"'])", re.IGNORECASE
        )
        return pattern.sub(
            lambda found: found.group(1) + _escape_url(optimized) + found.group(2),
            markup,
            count=1,
        )

    def _rewrite_eligible(self, match: ImageMatch, src: str) -> str:
        resolved = resolve_dimensions(match.tag, src, self.config, self.storage)
        args: Any = resolved.directive.to_args()
        details = {
            "tag": match.full_match,
            "src": resolved.src,
            "src_orig": src,
            "width": resolved.width,
            "height": resolved.height,
            "width_orig": resolved.width_orig,
            "height_orig": resolved.height_orig,
            "transform": resolved.transform,
            "transform_orig": resolved.transform_orig,
        }
        args = self.config.policies.resolve(policies.POST_IMAGE_ARGS, args, details=details)

        optimized = build_url(resolved.src, self.config, args)
        if optimized == resolved.src:
            return match.full_match

        new_tag = match.full_match
        if match.link_url and is_eligible(_unescape_url(match.link_url), self.config):
            new_tag = self._replace_link(new_tag, match.link_url)

        new_tag = new_tag.replace(match.src_url, _escape_url(optimized))

        if match.placeholder_url:
            placeholder = _unescape_url(match.placeholder_url)
            if is_eligible(placeholder, self.config):
                optimized_placeholder = build_url(placeholder, self.config)
                if optimized_placeholder != placeholder:
                    new_tag = new_tag.replace(
                        match.placeholder_url, _escape_url(optimized_placeholder)
                    )

        new_tag = self._update_dimension_attributes(new_tag, args)

        # AMP validators reject unknown attributes.
        if not self.config.amp:
            new_tag = _TAG_END.sub(
                lambda found: " "
                + DIMENSION_CHECK_ATTRIBUTE
                + (found.group(1) or "")
                + ">"
                + (found.group(2) or ""),
                new_tag,
                count=1,
            )
        return new_tag

    @staticmethod
    def _update_dimension_attributes(markup: str, args: Any) -> str:
        transform_value = None
        if isinstance(args, Mapping):
            transform_value = next(
                (args[key] for key in TRANSFORM_ARGS if args.get(key)), None
            )
        if transform_value is None:
            # Without a crop or fit the CDN favours height; drop the hints.
            return _DIMENSION_ATTRS.sub("", markup)

        if isinstance(transform_value, (list, tuple)):
            values = list(transform_value)
        else:
            values = str(transform_value).split(",")
        values.extend([None, None])
        width, height = _as_int(values[0]), _as_int(values[1])
        if width is not None:
            markup = _WIDTH_ATTR.sub(
                lambda found: f"{found.group(1)}{width}{found.group(2)} ", markup
            )
        if height is not None:
            markup = _HEIGHT_ATTR.sub(
                lambda found: f"{found.group(1)}{height}{found.group(2)} ", markup
            )
        return markup

    # Other markup sources that share the same primitive

    def rewrite_galleries(self, galleries: Any) -> Any:
        """Rewrite each gallery's HTML independently."""
        if not galleries or not isinstance(galleries, list):
            return galleries
        return [
            self.rewrite_html(gallery) if isinstance(gallery, str) else gallery
            for gallery in galleries
        ]

    def rewrite_text_widget(self, content: str) -> str:
        return self.rewrite_html(content)

    def rewrite_image_widget(self, instance: Mapping[str, Any]) -> Dict[str, Any]:
        """Point an image widget that has no attachment at the CDN."""
        updated = dict(instance)
        url = instance.get("url")
        if instance.get("attachment_id") or not url or not is_eligible(url, self.config):
            return updated
        args = {
            "w": _as_int(instance.get("width")) or None,
            "h": _as_int(instance.get("height")) or None,
        }
        updated["url"] = build_url(url, self.config, args)
        return updated

    def rewrite_open_graph_tags(
        self,
        tags: Mapping[str, Any],
        image_width: Any,
        image_height: Any,
    ) -> Dict[str, Any]:
        """Serve ``og:image`` at twice the declared size for high-DPI previews."""
        updated = dict(tags)
        images = tags.get("og:image")
        width, height = _as_int(image_width), _as_int(image_height)
        if not images or not width or not height:
            return updated
        args = {"fit": f"{2 * width},{2 * height}"}
        if isinstance(images, (list, tuple)):
            updated["og:image"] = [build_url(image, self.config, args) for image in images]
        else:
            updated["og:image"] = build_url(images, self.config, args)
        return updated

    def rewrite_post_thumbnail_url(self, thumbnail_url: str) -> str:
        if self.config.cdn_host and self.config.cdn_host in thumbnail_url.lower():
            return thumbnail_url
        return build_url(thumbnail_url, self.config)

    # Attachments

    def rewrite_srcset(
        self,
        sources: Mapping[int, SourceSetEntry],
        size: Sequence[int],
        attachment: Attachment,
    ) -> Dict[int, SourceSetEntry]:
        """Rewrite an attachment's ``srcset`` and add CDN breakpoints."""
        if not sources:
            return dict(sources)
        full_file_url = self.storage.url_for(attachment.file) if attachment.file else None
        requested_width, requested_height = (list(size) + [None, None])[:2]
        return expand_srcset(
            sources,
            attachment.width,
            attachment.height,
            full_file_url,
            requested_width,
            requested_height,
            self.config,
            self.storage,
            attachment_url=attachment.url,
        )

    def downsize(
        self,
        attachment: Attachment,
        size: Union[str, Sequence[int]],
    ) -> Optional[DownsizeResult]:
        """CDN URL and display size of an attachment at a named or explicit size."""
        if not is_eligible(attachment.url, self.config):
            return None
        if isinstance(size, str):
            return self._downsize_named(attachment, size)
        if isinstance(size, (list, tuple)) and len(size) >= 2:
            return self._downsize_explicit(attachment, size[0], size[1])
        return None

    def _display_limits(self, size: str) -> Tuple[int, int]:
        registered = self.config.image_sizes[size]
        max_width, max_height = registered.width, registered.height
        content_width = self.config.get_content_width()
        if size in ("large", "medium_large") and content_width:
            max_width = min(content_width, max_width) if max_width else content_width
        return max_width, max_height

    def _downsize_named(self, attachment: Attachment, size: str) -> Optional[DownsizeResult]:
        image_sizes = self.config.image_sizes
        if size not in image_sizes:
            return None
        registered = image_sizes[size]
        intermediate = True
        meta: Optional[Tuple[int, int]] = None

        if size == "full":
            meta = (attachment.width, attachment.height)
            intermediate = False
        elif size in attachment.sizes:
            _, width, height = attachment.sizes[size]
            meta = (width, height)
        else:
            # Size registered after upload: no derivative, so compute one.
            meta = (attachment.width, attachment.height)
            resized = resize_dimensions(
                attachment.width,
                attachment.height,
                registered.width,
                registered.height,
                registered.crop,
            )
            if resized:
                meta = resized

        width, height = registered.width, registered.height
        has_size_meta = bool(meta and meta[0] and meta[1])
        if has_size_meta:
            width, height = meta
            if size != "full":
                width, height = constrain_dimensions(width, height, *self._display_limits(size))

        transform = MODE_RESIZE if registered.crop else MODE_FIT
        args: Dict[str, Any] = {}
        if not width or not height:
            if not width and height:
                args["h"] = height
            elif not height and width:
                args["w"] = width
        elif transform == MODE_RESIZE and attachment.width and attachment.height:
            # Derivatives are never upscaled.
            args[transform] = (
                f"{min(attachment.width, width)},{min(attachment.height, height)}"
            )
        else:
            args[transform] = f"{width},{height}"

        return DownsizeResult(
            url=build_url(attachment.url, self.config, args),
            width=width if has_size_meta else None,
            height=height if has_size_meta else None,
            intermediate=intermediate,
        )

    def _downsize_explicit(
        self, attachment: Attachment, width: Any, height: Any
    ) -> Optional[DownsizeResult]:
        width, height = _as_int(width), _as_int(height)
        if not width or not height:
            return None
        has_size_meta = False
        if attachment.width and attachment.height:
            resized = resize_dimensions(attachment.width, attachment.height, width, height)
            width, height = resized or (attachment.width, attachment.height)
            has_size_meta = True
        return DownsizeResult(
            url=build_url(attachment.url, self.config, {MODE_FIT: f"{width},{height}"}),
            width=width if has_size_meta else None,
            height=height if has_size_meta else None,
        )
