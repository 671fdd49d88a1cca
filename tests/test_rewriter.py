"""Tests for rewriting HTML and attachment metadata through the CDN."""

import pytest

from image_optimizer import policies
from image_optimizer.config import OptimizerConfig
from image_optimizer.models import Attachment
from image_optimizer.policies import CONTINUE
from image_optimizer.rewriter import ContentRewriter

from conftest import CDN, UPLOAD_URL, first_image_attrs


def test_local_derivative_is_served_from_the_original(rewriter):
    html = f'<img src="{UPLOAD_URL}/2024/01/photo-300x200.jpg" width="300" height="200">'
    attrs = first_image_attrs(rewriter.rewrite_html(html))
    assert attrs["src"] == f"{CDN}/example.com/wp-content/uploads/2024/01/photo.jpg?rs=fill&w=300&h=200&ssl=1"
    assert attrs["width"] == "300"
    assert attrs["height"] == "200"
    assert attrs["data-recalc-dims"] == "1"


def test_ampersands_are_escaped_in_markup(rewriter):
    html = '<img src="http://example.com/a.jpg" width="300" height="200">'
    assert "rs=fill&amp;w=300&amp;h=200" in rewriter.rewrite_html(html)


def test_surrounding_markup_is_untouched(rewriter):
    html = '<p>Before</p>\n<img src="http://example.com/a.jpg" width="10" height="10">\n<p>After &amp; more</p>'
    result = rewriter.rewrite_html(html)
    assert result.startswith("<p>Before</p>\n<img ")
    assert result.endswith(">\n<p>After &amp; more</p>")


def test_rewriting_is_idempotent(rewriter):
    html = (
        '<a href="http://example.com/full.jpg"><img src="http://example.com/full-300x200.jpg" width="300" height="200"></a>'
        '<img src="http://example.com/blank.gif" data-lazy-src="http://example.com/real.jpg" width="100" height="50">'
        '<img src="http://example.com/plain.jpg">'
        f'<img src="{UPLOAD_URL}/2024/01/photo-300x200.jpg" width="300" height="200">'
    )
    once = rewriter.rewrite_html(html)
    assert once != html
    assert rewriter.rewrite_html(once) == once


def test_rewriting_is_idempotent_with_a_policy_chosen_domain(storage):
    config = OptimizerConfig()
    config.policies.register(
        policies.DOMAIN, "shard", lambda domain, image_url: "https://i1.example.net"
    )
    rewriter = ContentRewriter(config, storage)
    html = (
        '<a href="http://example.com/big.jpg">'
        '<img src="http://example.com/a.jpg" width="300" height="200"></a>'
    )
    once = rewriter.rewrite_html(html)
    assert first_image_attrs(once)["src"] == "https://i1.example.net/example.com/a.jpg?rs=fill&w=300&h=200"
    assert once.count("data-recalc-dims") == 1
    assert rewriter.rewrite_html(once) == once


def test_entities_in_attribute_urls_are_decoded_before_building():
    rewriter = ContentRewriter(OptimizerConfig(add_query_string=True))
    html = '<img src="http://example.com/a.jpg?v=1&amp;x=2">'
    attrs = first_image_attrs(rewriter.rewrite_html(html))
    assert attrs["src"] == f"{CDN}/example.com/a.jpg?q=v%3D1%26x%3D2"


def test_wrapping_link_is_rewritten(rewriter):
    html = '<a href="http://example.com/full.jpg"><img src="http://example.com/full-300x200.jpg" width="300" height="200"></a>'
    result = rewriter.rewrite_html(html)
    assert f'href="{CDN}/example.com/full.jpg"' in result
    assert first_image_attrs(result)["src"] == f"{CDN}/example.com/full-300x200.jpg?rs=fill&w=300&h=200"
    assert result.endswith(' data-recalc-dims="1"></a>')


def test_link_to_non_image_is_left_alone(rewriter):
    html = '<a href="http://example.com/post/"><img src="http://example.com/a.jpg" width="10" height="10"></a>'
    assert 'href="http://example.com/post/"' in rewriter.rewrite_html(html)


def test_lazy_image_and_placeholder_are_both_rewritten(rewriter):
    html = (
        '<img src="http://example.com/blank.gif" '
        'data-lazy-src="http://example.com/real.jpg" width="100" height="50">'
    )
    attrs = first_image_attrs(rewriter.rewrite_html(html))
    assert attrs["data-lazy-src"] == f"{CDN}/example.com/real.jpg?rs=fill&w=100&h=50"
    assert attrs["src"] == f"{CDN}/example.com/blank.gif"


def test_dimension_attributes_dropped_without_a_transform(rewriter):
    html = '<img src="http://example.com/plain.jpg" width="50%" class="hero">'
    attrs = first_image_attrs(rewriter.rewrite_html(html))
    assert attrs["src"] == f"{CDN}/example.com/plain.jpg"
    assert "width" not in attrs
    assert attrs["class"] == "hero"


def test_dimension_attributes_follow_content_width(storage):
    rewriter = ContentRewriter(OptimizerConfig(content_width=600), storage)
    html = '<img src="http://example.com/wide.jpg" width="1200" height="800" />'
    result = rewriter.rewrite_html(html)
    attrs = first_image_attrs(result)
    assert attrs["src"] == f"{CDN}/example.com/wide.jpg?rs=fill&w=600&h=400"
    assert (attrs["width"], attrs["height"]) == ("600", "400")
    assert result.endswith('data-recalc-dims="1" />')


def test_amp_output_has_no_marker_attribute(storage):
    rewriter = ContentRewriter(OptimizerConfig(amp=True), storage)
    html = '<amp-img src="http://example.com/a.jpg" width="300" height="200" layout="responsive"></amp-img>'
    result = rewriter.rewrite_html(html)
    assert "data-recalc-dims" not in result
    assert first_image_attrs(result)["src"] == f"{CDN}/example.com/a.jpg?rs=fill&w=300&h=200"


@pytest.mark.parametrize(
    "html",
    [
        '<img src="http://example.com/doc.pdf">',
        '<img src="https://chart.googleapis.com/chart.png?cht=p">',
        '<img src="/relative/a.jpg">',
        '<img src="data:image/png;base64,AAAA">',
    ],
)
def test_ineligible_images_are_untouched(rewriter, html):
    assert rewriter.rewrite_html(html) == html


def test_cdn_image_gets_only_its_link_rewritten(rewriter):
    html = f'<a href="http://example.com/big.jpg"><img src="{CDN}/example.com/big.jpg?w=300"></a>'
    result = rewriter.rewrite_html(html)
    assert f'href="{CDN}/example.com/big.jpg"' in result
    assert f'src="{CDN}/example.com/big.jpg?w=300"' in result
    assert "data-recalc-dims" not in result


def test_skip_image_policy(storage):
    config = OptimizerConfig()
    config.policies.register(
        policies.SKIP_IMAGE, "keep-logos", lambda skip, src, tag: True if "logo" in src else CONTINUE
    )
    rewriter = ContentRewriter(config, storage)
    html = '<img src="http://example.com/logo.png"><img src="http://example.com/hero.png">'
    result = rewriter.rewrite_html(html)
    assert '<img src="http://example.com/logo.png">' in result
    assert f"{CDN}/example.com/hero.png" in result


def test_skip_image_policy_sees_the_literal_src_of_lazy_images(storage):
    seen = []

    def keep_placeholders(skip, src, tag):
        seen.append(src)
        return True if src.endswith("blank.gif") else CONTINUE

    config = OptimizerConfig()
    config.policies.register(policies.SKIP_IMAGE, "placeholders", keep_placeholders)
    rewriter = ContentRewriter(config, storage)
    html = '<img src="http://example.com/blank.gif" data-lazy-src="http://example.com/real.jpg">'
    assert rewriter.rewrite_html(html) == html
    assert seen == ["http://example.com/blank.gif"]


def test_post_image_args_policy_sees_resolved_details(storage):
    seen = {}

    def add_quality(args, details):
        seen.update(details)
        return {**args, "quality": 80}

    config = OptimizerConfig()
    config.policies.register(policies.POST_IMAGE_ARGS, "quality", add_quality)
    rewriter = ContentRewriter(config, storage)
    html = '<img src="http://example.com/a.jpg" width="300" height="200">'
    attrs = first_image_attrs(rewriter.rewrite_html(html))
    assert attrs["src"] == f"{CDN}/example.com/a.jpg?quality=80&rs=fill&w=300&h=200"
    assert (seen["width"], seen["height"], seen["transform"]) == (300, 200, "resize")


def test_galleries_are_rewritten_individually(rewriter):
    galleries = ['<img src="http://example.com/a.jpg">', None, "<p>text</p>"]
    result = rewriter.rewrite_galleries(galleries)
    assert f"{CDN}/example.com/a.jpg" in result[0]
    assert result[1:] == [None, "<p>text</p>"]
    assert rewriter.rewrite_galleries("not a list") == "not a list"


def test_text_widget(rewriter):
    assert f"{CDN}/example.com/a.jpg" in rewriter.rewrite_text_widget('<img src="http://example.com/a.jpg">')


def test_image_widget_without_attachment(rewriter):
    instance = {"attachment_id": 0, "url": "http://example.com/w.png", "width": "200", "height": 100}
    updated = rewriter.rewrite_image_widget(instance)
    assert updated["url"] == f"{CDN}/example.com/w.png?w=200&h=100"
    assert instance["url"] == "http://example.com/w.png"


def test_image_widget_with_attachment_is_left_alone(rewriter):
    instance = {"attachment_id": 12, "url": "http://example.com/w.png"}
    assert rewriter.rewrite_image_widget(instance) == instance


def test_open_graph_images_are_doubled(rewriter):
    tags = {"og:title": "Post", "og:image": "http://example.com/og.jpg"}
    updated = rewriter.rewrite_open_graph_tags(tags, 600, 315)
    assert updated["og:image"] == f"{CDN}/example.com/og.jpg?rs=fit&w=1200&h=630"
    assert updated["og:title"] == "Post"

    many = rewriter.rewrite_open_graph_tags({"og:image": ["http://example.com/a.jpg"]}, 10, 10)
    assert many["og:image"] == [f"{CDN}/example.com/a.jpg?rs=fit&w=20&h=20"]


@pytest.mark.parametrize("width, height", [(None, 10), ("", 10), ("wide", 10), (600, 0)])
def test_open_graph_tags_without_usable_size_are_unchanged(rewriter, width, height):
    tags = {"og:image": "http://example.com/og.jpg"}
    assert rewriter.rewrite_open_graph_tags(tags, width, height) == tags


def test_post_thumbnail_url(rewriter):
    assert rewriter.rewrite_post_thumbnail_url("http://example.com/t.jpg") == f"{CDN}/example.com/t.jpg"
    hosted = f"{CDN}/example.com/t.jpg?w=10"
    assert rewriter.rewrite_post_thumbnail_url(hosted) == hosted


@pytest.fixture
def photo():
    return Attachment(
        id=9,
        url=f"{UPLOAD_URL}/2024/01/photo.jpg",
        width=1200,
        height=800,
        file="2024/01/photo.jpg",
        sizes={"medium": ("2024/01/photo-300x200.jpg", 300, 200)},
    )


PHOTO_CDN = f"{CDN}/example.com/wp-content/uploads/2024/01/photo.jpg"


def test_downsize_to_existing_derivative(rewriter, photo):
    result = rewriter.downsize(photo, "medium")
    assert result.url == f"{PHOTO_CDN}?rs=fit&w=300&h=200&ssl=1"
    assert (result.width, result.height, result.intermediate) == (300, 200, True)


def test_downsize_computes_missing_crop(rewriter, photo):
    result = rewriter.downsize(photo, "thumbnail")
    assert result.url == f"{PHOTO_CDN}?rs=fill&w=150&h=150&ssl=1"
    assert (result.width, result.height) == (150, 150)


def test_downsize_full(rewriter, photo):
    result = rewriter.downsize(photo, "full")
    assert result.url == f"{PHOTO_CDN}?rs=fit&w=1200&h=800&ssl=1"
    assert not result.intermediate


@pytest.mark.parametrize("size", ["large", "medium_large"])
def test_downsize_caps_wide_sizes_at_content_width(storage, photo, size):
    rewriter = ContentRewriter(OptimizerConfig(content_width=600), storage)
    result = rewriter.downsize(photo, size)
    assert result.url == f"{PHOTO_CDN}?rs=fit&w=600&h=400&ssl=1"
    assert (result.width, result.height) == (600, 400)


def test_downsize_explicit_pair(rewriter, photo):
    result = rewriter.downsize(photo, (600, 600))
    assert result.url == f"{PHOTO_CDN}?rs=fit&w=600&h=400&ssl=1"
    assert (result.width, result.height) == (600, 400)


def test_downsize_unknown_or_ineligible(rewriter, photo):
    assert rewriter.downsize(photo, "poster") is None
    pdf = Attachment(id=1, url="http://example.com/doc.pdf", width=0, height=0)
    assert rewriter.downsize(pdf, "full") is None
