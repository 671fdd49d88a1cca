"""Data models used throughout the rewriting pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

MODE_RESIZE = "resize"
MODE_FIT = "fit"
MODE_NONE = "none"


@dataclass(frozen=True)
class ImageMatch:
    """One image reference located inside an HTML fragment."""

    full_match: str
    tag: str
    src_url: str
    link_url: Optional[str] = None
    placeholder_url: Optional[str] = None
    start: int = 0
    end: int = 0

    @property
    def literal_src(self) -> str:
        """The value of the tag's own ``src`` attribute."""
        return self.placeholder_url or self.src_url


@dataclass(frozen=True)
class TransformDirective:
    """Resize/fit intent computed for one image before URL construction."""

    width: Optional[int] = None
    height: Optional[int] = None
    mode: str = MODE_NONE
    zoom: Optional[int] = None

    def __post_init__(self) -> None:
        # Zero is never a usable dimension; it collapses to unset.
        if not self.width:
            object.__setattr__(self, "width", None)
        if not self.height:
            object.__setattr__(self, "height", None)
        if self.mode not in (MODE_RESIZE, MODE_FIT, MODE_NONE):
            raise ValueError(f"Unknown transform mode: {self.mode}")

    @classmethod
    def from_dimensions(
        cls,
        width: Optional[int],
        height: Optional[int],
        mode: str,
    ) -> "TransformDirective":
        """Build a directive; ``mode`` only sticks when both sides are known."""
        if width and height:
            return cls(width=width, height=height, mode=mode)
        return cls(width=width, height=height, mode=MODE_NONE)

    def to_args(self) -> Dict[str, object]:
        """Translate the directive into CDN query arguments."""
        args: Dict[str, object] = {}
        if self.zoom:
            args["zoom"] = self.zoom
        if self.mode != MODE_NONE and self.width and self.height:
            args[self.mode] = f"{self.width},{self.height}"
            return args
        if self.width:
            args["w"] = self.width
        if self.height:
            args["h"] = self.height
        return args


@dataclass(frozen=True)
class RegisteredSize:
    """A named size definition supplied by the surrounding system."""

    width: int = 0
    height: int = 0
    crop: bool = False


@dataclass(frozen=True)
class RewriteResult:
    """Outcome of rewriting a single image URL."""

    original_url: str
    url: str
    directive: TransformDirective = field(default_factory=TransformDirective)

    @property
    def changed(self) -> bool:
        return self.url != self.original_url


@dataclass(frozen=True)
class SourceSetEntry:
    """One responsive variant inside a ``srcset``."""

    url: str
    value: int
    descriptor: str = "w"


@dataclass(frozen=True)
class Attachment:
    """Metadata for an image previously uploaded to the local site."""

    id: int
    url: str
    width: int
    height: int
    file: str = ""
    sizes: Mapping[str, Tuple[str, int, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class DownsizeResult:
    """CDN URL and display dimensions for an attachment at a given size."""

    url: str
    width: Optional[int]
    height: Optional[int]
    intermediate: bool = True
