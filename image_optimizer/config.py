"""Configuration objects and constants for the rewriting engine."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from . import policies
from .models import RegisteredSize
from .policies import PolicyChain

DEFAULT_CDN_DOMAIN = "https://img.poweredcache.net"
DEFAULT_EXTENSIONS = ("gif", "jpg", "jpeg", "png", "webp", "svg", "avif", "bmp")
DEFAULT_SRCSET_MULTIPLIERS = (2, 3)
DEFAULT_SOFT_CROP_BASE_WIDTH = 1000
SUPPORTED_FORMATS = ("webp",)


class ConfigError(ValueError):
    """Raised when the optimizer is configured with unusable values."""


def default_image_sizes() -> Dict[str, RegisteredSize]:
    """Registered sizes matching a stock WordPress install."""
    thumb = RegisteredSize(150, 150, True)
    return {
        "thumb": thumb,
        "thumbnail": thumb,
        "medium": RegisteredSize(300, 300, False),
        "medium_large": RegisteredSize(768, 0, False),
        "large": RegisteredSize(1024, 1024, False),
        "full": RegisteredSize(0, 0, False),
    }


def load_image_sizes(path: Path) -> Dict[str, RegisteredSize]:
    """Read ``name -> {width, height, crop}`` from JSON over the defaults."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ConfigError(f"Image sizes file must contain an object: {path}")
    sizes = default_image_sizes()
    for name, entry in raw.items():
        try:
            sizes[str(name)] = RegisteredSize(
                width=int(entry.get("width") or 0),
                height=int(entry.get("height") or 0),
                crop=bool(entry.get("crop", False)),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid image size {name!r} in {path}: {exc}") from exc
    return sizes


@dataclass(frozen=True)
class OptimizerConfig:
    """Request-scoped settings that control URL rewriting."""

    cdn_domain: str = DEFAULT_CDN_DOMAIN
    custom_domain: Optional[str] = None
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    image_sizes: Mapping[str, RegisteredSize] = field(default_factory=default_image_sizes)
    content_width: Optional[int] = None
    preferred_format: Optional[str] = None
    reject_https: bool = False
    allow_any_extension: bool = False
    add_query_string: bool = False
    amp: bool = False
    enabled: bool = True
    srcset_multipliers: Tuple[int, ...] = DEFAULT_SRCSET_MULTIPLIERS
    soft_crop_base_width: int = DEFAULT_SOFT_CROP_BASE_WIDTH
    policies: PolicyChain = field(default_factory=PolicyChain.with_defaults)

    @property
    def cdn_host(self) -> str:
        return (urlsplit(self.cdn_domain).hostname or "").lower()

    @property
    def service_hosts(self) -> FrozenSet[str]:
        """Hosts whose URLs have already been through the CDN."""
        hosts = {self.cdn_host}
        if self.custom_domain:
            hosts.add((urlsplit(self.custom_domain).hostname or "").lower())
        hosts.discard("")
        return frozenset(hosts)

    def get_extensions(self) -> Tuple[str, ...]:
        extensions = self.policies.resolve(policies.EXTENSIONS, self.extensions)
        return tuple(ext.lower() for ext in extensions)

    def get_content_width(self) -> Optional[int]:
        width = self.policies.resolve(policies.CONTENT_WIDTH, self.content_width)
        try:
            return int(width) if width else None
        except (TypeError, ValueError):
            return None

    def get_domain(self, image_url: str) -> str:
        default = self.custom_domain or self.cdn_domain
        return self.policies.resolve(policies.DOMAIN, default, image_url=image_url)

    def is_service_host(self, host: Optional[str], image_url: str = "") -> bool:
        """True when ``host`` serves transformed images, hook-chosen domains included."""
        if not host:
            return False
        host = host.lower()
        if host in self.service_hosts:
            return True
        return host == (urlsplit(self.get_domain(image_url)).hostname or "").lower()

    def validate(self) -> None:
        """Check for configuration mistakes; call once at startup."""
        if not self.extensions:
            raise ConfigError("At least one image extension must be allowed")
        for label, domain in (("cdn_domain", self.cdn_domain), ("custom_domain", self.custom_domain)):
            if domain is None:
                continue
            parts = urlsplit(domain)
            if parts.scheme not in ("http", "https") or not parts.hostname:
                raise ConfigError(f"{label} must be an absolute http(s) URL: {domain!r}")
        if self.content_width is not None and self.content_width <= 0:
            raise ConfigError("content_width must be a positive integer")
        if self.preferred_format and self.preferred_format not in SUPPORTED_FORMATS:
            raise ConfigError(f"Unsupported preferred format: {self.preferred_format}")
        if any(multiplier <= 0 for multiplier in self.srcset_multipliers):
            raise ConfigError("srcset multipliers must be positive")
        if self.soft_crop_base_width <= 0:
            raise ConfigError("soft_crop_base_width must be positive")
