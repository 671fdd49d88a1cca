"""Locate image tags, and the links wrapping them, inside HTML fragments.

Scanning is pattern based so that partial or malformed markup still yields
matches; only individual tags are handed to BeautifulSoup for attribute
parsing.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from bs4 import BeautifulSoup

from .models import ImageMatch

IMAGE_PATTERN = re.compile(
    r"(?:<a\s[^>]*?href=[\"'](?P<link_url>[^\s\"']+?)[\"'][^>]*?>\s*)?"
    r"(?P<img_tag><(?:img|amp-img|amp-anim)\b[^>]*?\s+?src=[\"'](?P<img_url>[^\s\"']+?)[\"'].*?>)"
    r"(?:\s*</a>)?",
    re.IGNORECASE | re.DOTALL,
)

# Highest precedence first.
LAZY_SOURCE_ATTRIBUTES = ("data-lazy-src", "data-lazy-original", "data-lazyload")
_LAZY_SOURCE_PATTERNS = [
    re.compile(rf"{attribute}=[\"'](.+?)[\"']", re.IGNORECASE)
    for attribute in LAZY_SOURCE_ATTRIBUTES
]


def find_lazy_source(tag: str) -> Optional[str]:
    """Return the deferred image URL a lazy-loading script would swap in."""
    for pattern in _LAZY_SOURCE_PATTERNS:
        match = pattern.search(tag)
        if match:
            return match.group(1)
    return None


def locate_images(html: str) -> List[ImageMatch]:
    """Return every image reference in document order."""
    matches: List[ImageMatch] = []
    if not html:
        return matches
    for found in IMAGE_PATTERN.finditer(html):
        tag = found.group("img_tag")
        src = found.group("img_url")
        placeholder = None
        lazy_src = find_lazy_source(tag)
        if lazy_src:
            placeholder, src = src, lazy_src
        matches.append(
            ImageMatch(
                full_match=found.group(0),
                tag=tag,
                src_url=src,
                link_url=found.group("link_url"),
                placeholder_url=placeholder,
                start=found.start(),
                end=found.end(),
            )
        )
    return matches


def parse_tag_attributes(tag: str) -> Dict[str, str]:
    """Parse the first element in ``tag`` into a lower-cased attribute map."""
    soup = BeautifulSoup(tag, "html.parser")
    element = soup.find(True)
    if element is None:
        return {}
    attributes: Dict[str, str] = {}
    for name, value in element.attrs.items():
        if isinstance(value, list):
            value = " ".join(value)
        attributes[name.lower()] = value
    return attributes
