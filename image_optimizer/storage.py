"""Lookups against the local upload directory and attachment metadata."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .models import Attachment

logger = logging.getLogger("image_optimizer")


@dataclass(frozen=True)
class UploadStorage:
    """Maps public upload URLs onto files and known attachments."""

    base_url: str = ""
    base_dir: Optional[Path] = None
    attachments: Mapping[int, Attachment] = field(default_factory=dict)

    def is_local(self, url: str) -> bool:
        return bool(self.base_url) and url.startswith(self.base_url)

    def url_for(self, relative_path: str) -> str:
        return self.base_url.rstrip("/") + "/" + relative_path.lstrip("/")

    def file_exists(self, url: str) -> bool:
        """Check whether the file behind an upload URL is present on disk."""
        if self.base_dir is None or not self.is_local(url):
            return False
        relative = url[len(self.base_url):].split("?", 1)[0].lstrip("/")
        candidate = Path(self.base_dir) / relative
        try:
            return candidate.is_file()
        except OSError as exc:
            logger.debug("Could not stat %s: %s", candidate, exc)
            return False

    def get_attachment(self, attachment_id: int) -> Optional[Attachment]:
        return self.attachments.get(attachment_id)

    def image_src(
        self,
        attachment: Attachment,
        size: Optional[str] = None,
    ) -> Tuple[str, int, int]:
        """URL and dimensions of an attachment at a named size (default full)."""
        if size and size != "full" and size in attachment.sizes:
            relative, width, height = attachment.sizes[size]
            return self.url_for(relative), width, height
        return attachment.url, attachment.width, attachment.height
