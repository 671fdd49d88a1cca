"""Shared fixtures for the image optimizer tests."""

from pathlib import Path
from typing import Dict

import pytest
from bs4 import BeautifulSoup

from image_optimizer.config import OptimizerConfig
from image_optimizer.rewriter import ContentRewriter
from image_optimizer.storage import UploadStorage

UPLOAD_URL = "https://example.com/wp-content/uploads"
CDN = "https://img.poweredcache.net"


def first_image_attrs(html: str) -> Dict[str, str]:
    """Attributes of the first image-like element, entity-decoded."""
    soup = BeautifulSoup(html, "html.parser")
    element = soup.find(["img", "amp-img", "amp-anim"])
    assert element is not None, html
    return {
        name: " ".join(value) if isinstance(value, list) else value
        for name, value in element.attrs.items()
    }


@pytest.fixture
def config():
    return OptimizerConfig()


@pytest.fixture
def upload_dir(tmp_path) -> Path:
    month = tmp_path / "uploads" / "2024" / "01"
    month.mkdir(parents=True)
    (month / "photo.jpg").write_bytes(b"\xff\xd8\xff")
    return tmp_path / "uploads"


@pytest.fixture
def storage(upload_dir):
    return UploadStorage(base_url=UPLOAD_URL, base_dir=upload_dir)


@pytest.fixture
def rewriter(config, storage):
    return ContentRewriter(config, storage)
