"""MCP server exposing image-optimizer rewrite tools."""

from __future__ import annotations

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import DEFAULT_CDN_DOMAIN, OptimizerConfig
from .models import MODE_FIT, TransformDirective
from .rewriter import ContentRewriter
from .urls import rewrite_url

logger = logging.getLogger("image_optimizer.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="image-optimizer")


def _build_config(
    domain: str,
    content_width: Optional[int],
    preferred_format: Optional[str],
    amp: bool = False,
) -> OptimizerConfig:
    config = OptimizerConfig(
        cdn_domain=domain,
        content_width=content_width,
        preferred_format=preferred_format,
        amp=amp,
    )
    config.validate()
    return config


@mcp.tool()
def rewrite_html(
    html: str,
    domain: str = DEFAULT_CDN_DOMAIN,
    content_width: Optional[int] = None,
    preferred_format: Optional[str] = None,
    amp: bool = False,
) -> str:
    """Rewrite the image references in an HTML fragment to load through the CDN."""
    config = _build_config(domain, content_width, preferred_format, amp)
    return ContentRewriter(config).rewrite_html(html)


@mcp.tool()
def optimize_url(
    image_url: str,
    width: Optional[int] = None,
    height: Optional[int] = None,
    mode: str = MODE_FIT,
    domain: str = DEFAULT_CDN_DOMAIN,
    preferred_format: Optional[str] = None,
) -> str:
    """Return the CDN URL for one image, resized to the given dimensions."""
    config = _build_config(domain, None, preferred_format)
    directive = TransformDirective.from_dimensions(width, height, mode)
    return rewrite_url(image_url, config, directive).url


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
