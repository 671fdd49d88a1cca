"""CDN URL construction.

Every function here is fail-open: when a URL cannot be understood the input is
returned unchanged so a bad rewrite never breaks page rendering.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote, unquote, urlsplit

from . import policies
from .config import OptimizerConfig
from .models import TransformDirective, RewriteResult
from .utils import path_extension
from .validator import is_eligible

logger = logging.getLogger("image_optimizer")

SCHEMES = ("http", "https", "network_path")
# Sources rendered server-side cannot be fetched by path alone.
DYNAMIC_EXTENSIONS = ("php", "ashx")
_ABSOLUTE_OR_RELATIVE_SCHEME = re.compile(r"^(https?:)?//", re.IGNORECASE)
_SCHEME_PREFIX = re.compile(r"^([a-z:]+)?//", re.IGNORECASE)

Args = Union[Dict[str, Any], str, None]


def apply_scheme(url: str, scheme: Optional[str] = None) -> str:
    """Force ``http``, ``https`` or a scheme-relative (``network_path``) URL."""
    if scheme not in SCHEMES:
        if _ABSOLUTE_OR_RELATIVE_SCHEME.match(url):
            return url
        scheme = "http"
    prefix = "//" if scheme == "network_path" else f"{scheme}://"
    return _SCHEME_PREFIX.sub(prefix, url, count=1)


def _encode(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        value = ",".join(str(item) for item in value)
    return quote(str(value), safe="")


def add_query_args(url: str, args: Mapping[str, Any]) -> str:
    """Merge ``args`` into the URL's query string.

    Existing pairs keep their position and original encoding; a key that is
    already present gets its value replaced, new keys are appended. ``None``
    values remove the key.
    """
    base, has_fragment, fragment = url.partition("#")
    base, _, query = base.partition("?")
    pairs: List[Tuple[str, str]] = []
    for pair in query.split("&"):
        if pair:
            pairs.append((unquote(pair.split("=", 1)[0]), pair))

    for key, value in args.items():
        key = str(key)
        index = next((i for i, (existing, _) in enumerate(pairs) if existing == key), None)
        if value is None:
            if index is not None:
                del pairs[index]
            continue
        encoded = f"{quote(key, safe='[]')}={_encode(value)}"
        if index is None:
            pairs.append((key, encoded))
        else:
            pairs[index] = (key, encoded)

    result = base
    if pairs:
        result += "?" + "&".join(pair for _, pair in pairs)
    if has_fragment:
        result += "#" + fragment
    return result


def _split_pair(value: Any) -> Tuple[str, str]:
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value]
    else:
        items = [item.strip() for item in str(value).split(",")]
    items.extend(["", ""])
    return items[0], items[1]


def normalize_transform_args(args: Dict[str, Any]) -> Dict[str, Any]:
    """Expand ``resize``/``fit`` ``"W,H"`` shorthands into ``rs``/``w``/``h``."""
    for key, mode in (("resize", "fill"), ("fit", "fit")):
        value = args.pop(key, None)
        if not value:
            continue
        width, height = _split_pair(value)
        args["rs"] = mode
        if width:
            args["w"] = width
        if height:
            args["h"] = height
    return args


def build_url(
    image_url: str,
    config: OptimizerConfig,
    args: Args = None,
    scheme: Optional[str] = None,
) -> str:
    """Convert a source image URL into its CDN equivalent."""
    image_url = (image_url or "").strip()
    if isinstance(args, Mapping):
        args = normalize_transform_args(dict(args))
    elif args is None:
        args = {}

    chain = config.policies
    if chain.resolve(policies.SKIP_FOR_URL, False, image_url=image_url, args=args, scheme=scheme):
        logger.debug("Skipping %s: vetoed by skip_for_url policy", image_url)
        return image_url

    image_url = chain.resolve(policies.PRE_IMAGE_URL, image_url, args=args, scheme=scheme)
    args = chain.resolve(policies.PRE_ARGS, args, image_url=image_url, scheme=scheme)
    if not image_url:
        return image_url

    try:
        parts = urlsplit(image_url)
        host = parts.hostname
    except ValueError:
        return image_url
    if not host or not parts.path:
        return image_url

    if isinstance(args, Mapping):
        args = {key: value for key, value in args.items() if value is not None}

    if config.is_service_host(host, image_url):
        # Already on the CDN: query strings are not proxied, so extend in place.
        hosted = _append_args(image_url, args)
        return apply_scheme(hosted, scheme)

    if not chain.resolve(
        policies.ANY_EXTENSION_FOR_DOMAIN, config.allow_any_extension, host=host
    ):
        extension = path_extension(parts.path).lower()
        if not extension or extension in DYNAMIC_EXTENSIONS:
            logger.debug("Skipping %s: no static image extension", image_url)
            return image_url

    domain = config.get_domain(image_url)
    optimized = domain.rstrip("/") + "/" + host + parts.path

    if parts.query and chain.resolve(
        policies.ADD_QUERY_STRING_TO_DOMAIN, config.add_query_string, host=host
    ):
        optimized += "?q=" + quote(parts.query, safe="")

    optimized = _append_args(optimized, args)

    if parts.scheme.lower() == "https":
        optimized = add_query_args(optimized, {"ssl": 1})

    if config.preferred_format == "webp":
        optimized = add_query_args(optimized, {"format": "webp"})

    return apply_scheme(optimized, scheme)


def _append_args(url: str, args: Args) -> str:
    if not args:
        return url
    if isinstance(args, Mapping):
        return add_query_args(url, args)
    # Raw query strings are passed through for requests a mapping can't express.
    separator = "&" if "?" in url else "?"
    return url + separator + str(args).lstrip("?&")


def rewrite_url(
    source_url: str,
    config: OptimizerConfig,
    directive: Optional[TransformDirective] = None,
    extra_args: Optional[Mapping[str, Any]] = None,
    scheme: Optional[str] = None,
) -> RewriteResult:
    """Validate a source URL, then build its CDN URL from a transform directive."""
    directive = directive or TransformDirective()
    if not is_eligible(source_url, config):
        return RewriteResult(original_url=source_url, url=source_url, directive=directive)
    args: Dict[str, Any] = directive.to_args()
    if extra_args:
        args.update(extra_args)
    url = build_url(source_url, config, args, scheme)
    return RewriteResult(original_url=source_url, url=url, directive=directive)
