"""Ordered policy callbacks evaluated at fixed decision points."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

logger = logging.getLogger("image_optimizer")

SKIP_IMAGE = "skip_image"
SKIP_FOR_URL = "skip_for_url"
PRE_IMAGE_URL = "pre_image_url"
PRE_ARGS = "pre_args"
POST_IMAGE_ARGS = "post_image_args"
VALIDATE_IMAGE_URL = "validate_image_url"
EXTENSIONS = "extensions"
CONTENT_WIDTH = "content_width"
DOMAIN = "domain"
ANY_EXTENSION_FOR_DOMAIN = "any_extension_for_domain"
ADD_QUERY_STRING_TO_DOMAIN = "add_query_string_to_domain"
REJECT_HTTPS = "reject_https"
IMAGE_IS_LOCAL = "image_is_local"
SRCSET_MULTIPLIERS = "srcset_multipliers"
PROCESS_BUFFER = "process_buffer"

DECISION_POINTS = (
    SKIP_IMAGE,
    SKIP_FOR_URL,
    PRE_IMAGE_URL,
    PRE_ARGS,
    POST_IMAGE_ARGS,
    VALIDATE_IMAGE_URL,
    EXTENSIONS,
    CONTENT_WIDTH,
    DOMAIN,
    ANY_EXTENSION_FOR_DOMAIN,
    ADD_QUERY_STRING_TO_DOMAIN,
    REJECT_HTTPS,
    IMAGE_IS_LOCAL,
    SRCSET_MULTIPLIERS,
    PROCESS_BUFFER,
)

# Hosts known to refuse hot-linked transformation.
BANNED_HOST_PATTERNS = [
    re.compile(r"^chart\.googleapis\.com$"),
    re.compile(r"^chart\.apis\.google\.com$"),
    re.compile(r"^graph\.facebook\.com$"),
    re.compile(r"\.fbcdn\.net$"),
    re.compile(r"\.paypalobjects\.com$"),
    re.compile(r"\.dropbox\.com$"),
    re.compile(r"\.cdninstagram\.com$"),
    re.compile(r"^(commons|upload)\.wikimedia\.org$"),
    re.compile(r"\.wikipedia\.org$"),
]


class _Continue:
    def __repr__(self) -> str:
        return "CONTINUE"


CONTINUE = _Continue()

Policy = Callable[..., Any]


@dataclass
class _NamedPolicy:
    name: str
    callback: Policy


class PolicyChain:
    """Named callbacks per decision point, evaluated in registration order.

    Each callback receives the current value plus keyword context and returns
    either ``CONTINUE`` or an override. The first override wins and ends the
    chain; when every callback continues, the default value is returned.
    """

    def __init__(self) -> None:
        self._policies: Dict[str, List[_NamedPolicy]] = {}

    @classmethod
    def with_defaults(cls) -> "PolicyChain":
        chain = cls()
        chain.register(SKIP_FOR_URL, "banned_domains", banned_domains)
        return chain

    def register(self, point: str, name: str, callback: Policy) -> None:
        if point not in DECISION_POINTS:
            raise ValueError(f"Unknown decision point: {point}")
        self._policies.setdefault(point, []).append(_NamedPolicy(name, callback))

    def unregister(self, point: str, name: str) -> None:
        self._policies[point] = [
            policy for policy in self._policies.get(point, []) if policy.name != name
        ]

    def names(self, point: str) -> List[str]:
        return [policy.name for policy in self._policies.get(point, [])]

    def resolve(self, point: str, value: Any, **context: Any) -> Any:
        for policy in self._policies.get(point, []):
            result = policy.callback(value, **context)
            if result is not CONTINUE:
                logger.debug("Policy %s overrode %s", policy.name, point)
                return result
        return value


def banned_domains(skip: bool, image_url: str = "", **_: Any) -> Any:
    """Force a skip for hosts on the built-in denylist."""
    host = _host_of(image_url)
    if host is None:
        return CONTINUE
    for pattern in BANNED_HOST_PATTERNS:
        if pattern.search(host):
            return True
    return CONTINUE


def _host_of(url: str) -> Optional[str]:
    try:
        return urlsplit(url.strip()).hostname
    except ValueError:
        return None
