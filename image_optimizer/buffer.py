"""Whole-page transform applied to eligible rendered responses."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from . import policies
from .config import OptimizerConfig
from .rewriter import ContentRewriter
from .storage import UploadStorage

logger = logging.getLogger("image_optimizer")

BYPASS_QUERY_FLAGS = ("noimageoptimizer", "nopoweredcache")


@dataclass(frozen=True)
class ResponseContext:
    """What the surrounding server knows about the response being captured."""

    method: str = "GET"
    query: Mapping[str, str] = field(default_factory=dict)
    is_admin: bool = False
    is_trackback: bool = False
    is_robots: bool = False
    is_preview: bool = False


def is_bypass_request(query: Mapping[str, str]) -> bool:
    """True when the query string asks to skip optimization."""
    return any(query.get(flag) not in (None, "", "0") for flag in BYPASS_QUERY_FLAGS)


class OutputCapture:
    """Feeds a full rendered page body through the content rewriter."""

    def __init__(
        self,
        config: OptimizerConfig,
        storage: Optional[UploadStorage] = None,
        rewriter: Optional[ContentRewriter] = None,
    ) -> None:
        self.config = config
        self.rewriter = rewriter or ContentRewriter(config, storage)

    def should_process(self, context: ResponseContext) -> bool:
        status = (
            self.config.enabled
            and context.method.upper() == "GET"
            and not (
                context.is_admin
                or context.is_trackback
                or context.is_robots
                or context.is_preview
            )
            and not is_bypass_request(context.query)
        )
        return bool(
            self.config.policies.resolve(policies.PROCESS_BUFFER, status, context=context)
        )

    def transform(self, body: str, context: Optional[ResponseContext] = None) -> str:
        """Return the page body, rewritten when the response is eligible."""
        context = context or ResponseContext()
        if not self.should_process(context):
            logger.debug("Leaving %s response untouched", context.method)
            return body
        return self.rewriter.rewrite_html(body)


def dns_prefetch_hints(
    urls: List[str], relation_type: str, config: OptimizerConfig
) -> List[str]:
    """Add the CDN host to the page's ``dns-prefetch`` resource hints."""
    if relation_type == "dns-prefetch" and config.cdn_host:
        return [*urls, f"//{config.cdn_host}"]
    return list(urls)
