"""Eligibility checks for image URLs before they are sent to the CDN."""

from __future__ import annotations

import logging
from typing import Optional, Tuple
from urllib.parse import SplitResult, urlsplit

from . import policies
from .config import OptimizerConfig
from .utils import path_extension

logger = logging.getLogger("image_optimizer")


def _split(url: str) -> Tuple[Optional[SplitResult], Optional[int]]:
    try:
        parts = urlsplit(url.strip())
        return parts, parts.port
    except (ValueError, AttributeError):
        return None, None


def is_banned_domain(url: str) -> bool:
    """Return True when the URL's host is on the built-in denylist."""
    return policies.banned_domains(False, image_url=url) is True


def is_eligible(url: str, config: OptimizerConfig) -> bool:
    """Decide whether an image URL may be rewritten through the CDN."""
    parts, port = _split(url)
    if parts is None:
        return False

    scheme = parts.scheme.lower()
    if scheme not in ("", "http", "https"):
        return False
    plain_http = scheme == "http" and port in (None, 80)
    if not plain_http and config.policies.resolve(policies.REJECT_HTTPS, config.reject_https):
        return False

    host = parts.hostname
    if not host:
        return False
    if config.is_service_host(host, url):
        logger.debug("Skipping %s: already served by the CDN", url)
        return False

    if not parts.path:
        return False
    if path_extension(parts.path).lower() not in config.get_extensions():
        return False

    return bool(
        config.policies.resolve(policies.VALIDATE_IMAGE_URL, True, url=url, parts=parts)
    )
