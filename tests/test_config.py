"""Tests for configuration loading and validation."""

import json

import pytest

from image_optimizer import policies
from image_optimizer.config import ConfigError, OptimizerConfig, load_image_sizes
from image_optimizer.models import RegisteredSize


def test_defaults_are_valid(config):
    config.validate()
    assert config.cdn_host == "img.poweredcache.net"
    assert config.service_hosts == frozenset({"img.poweredcache.net"})


@pytest.mark.parametrize(
    "kwargs",
    [
        {"extensions": ()},
        {"cdn_domain": "img.poweredcache.net"},
        {"custom_domain": "ftp://media.example.org"},
        {"content_width": 0},
        {"preferred_format": "jxl"},
        {"srcset_multipliers": (2, 0)},
        {"soft_crop_base_width": 0},
    ],
)
def test_invalid_settings_are_reported(kwargs):
    with pytest.raises(ConfigError):
        OptimizerConfig(**kwargs).validate()


def test_content_width_policy_and_garbage_values():
    config = OptimizerConfig(content_width=800)
    assert config.get_content_width() == 800
    config.policies.register(policies.CONTENT_WIDTH, "theme", lambda width: "wide")
    assert config.get_content_width() is None


def test_extensions_are_lowercased():
    assert OptimizerConfig(extensions=("JPG", "Png")).get_extensions() == ("jpg", "png")


def test_load_image_sizes_merges_over_defaults(tmp_path):
    path = tmp_path / "sizes.json"
    path.write_text(
        json.dumps({"hero": {"width": 1600, "height": 600, "crop": True}, "medium": {"width": 400}}),
        encoding="utf-8",
    )
    sizes = load_image_sizes(path)
    assert sizes["hero"] == RegisteredSize(1600, 600, True)
    assert sizes["medium"] == RegisteredSize(400, 0, False)
    assert sizes["thumbnail"] == RegisteredSize(150, 150, True)


@pytest.mark.parametrize("content", ['["not", "an", "object"]', '{"hero": 5}', '{"hero": {"width": "wide"}}'])
def test_load_image_sizes_rejects_bad_files(tmp_path, content):
    path = tmp_path / "sizes.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_image_sizes(path)
