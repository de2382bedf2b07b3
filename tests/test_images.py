from runner.ingest.article_types import ExtractedDocument
from runner.ingest.images import normalize_images, select_images


def test_tracker_dropped_and_root_relative_resolved():
    raw = ["//cdn.a.com/1x1-pixel.gif", "/img/photo.jpg"]
    assert normalize_images(raw, "https://a.com") == ["https://a.com/img/photo.jpg"]


def test_protocol_relative_uses_base_scheme():
    assert normalize_images(["//cdn.a.com/p.jpg"], "https://a.com") == ["https://cdn.a.com/p.jpg"]


def test_page_relative_resolves_against_page_url():
    out = normalize_images(["images/p.jpg"], "https://a.com", "https://a.com/news/story/")
    assert out == ["https://a.com/news/story/images/p.jpg"]


def test_css_url_unwrapped_and_width_upscaled():
    raw = ["url('https://a.com/p.jpg?w=200&h=100')", "https://a.com/q.jpg?width=1200"]
    assert normalize_images(raw, "https://a.com") == [
        "https://a.com/p.jpg?w=800&h=100",
        "https://a.com/q.jpg?width=1200",
    ]


def test_data_uri_icons_and_theme_svgs_dropped():
    raw = [
        "data:image/png;base64,AAAA",
        "https://a.com/static/facebook.svg",
        "https://a.com/wp-content/themes/news/images/logo.svg",
        "https://a.com/analytics/beacon.png",
        "https://a.com/keep.jpg",
    ]
    assert normalize_images(raw, "https://a.com") == ["https://a.com/keep.jpg"]


def test_dedupe_preserves_first_seen_order():
    raw = ["/b.jpg", "/a.jpg", "https://a.com/b.jpg"]
    assert normalize_images(raw, "https://a.com") == ["https://a.com/b.jpg", "https://a.com/a.jpg"]


def test_select_images_falls_back_to_hero_then_meta():
    doc = ExtractedDocument(
        title="t",
        images=["data:image/gif;base64,R0lGOD"],
        hero_images=[],
        meta_images=["https://cdn.a.com/og.jpg"],
    )
    assert select_images(doc, "https://a.com") == ["https://cdn.a.com/og.jpg"]

    doc.hero_images = ["/hero.jpg"]
    assert select_images(doc, "https://a.com") == ["https://a.com/hero.jpg"]


def test_select_images_can_be_empty():
    assert select_images(ExtractedDocument(title="t"), "https://a.com") == []
