import pytest

from website_mirror.kinds import (
    PriorityTier,
    ResourceKind,
    classify,
    parse_kind_list,
    priority_for,
)


@pytest.mark.parametrize(
    "url,content_type,hint,expected",
    [
        ("https://x.org/a.css", None, None, ResourceKind.CSS),
        ("https://x.org/a.woff2", None, None, ResourceKind.FONT),
        ("https://x.org/doc.pdf", None, ResourceKind.HTML, ResourceKind.PDF),
        ("https://x.org/clip.mp4", None, ResourceKind.HTML, ResourceKind.VIDEO),
        ("https://x.org/api", "text/css; charset=utf-8", None, ResourceKind.CSS),
        ("https://x.org/pic", "image/jpeg", ResourceKind.HTML, ResourceKind.IMAGE),
        ("https://x.org/thing", None, ResourceKind.JAVASCRIPT, ResourceKind.JAVASCRIPT),
        ("https://x.org/thing", None, None, ResourceKind.OTHER),
    ],
)
def test_classify(url, content_type, hint, expected):
    assert classify(url, content_type, hint) == expected


def test_classify_link_that_served_a_download():
    kind = classify(
        "https://x.org/download", "application/zip", ResourceKind.HTML, b"PK\x03\x04"
    )
    assert kind is ResourceKind.OTHER


def test_classify_sniffs_html():
    body = b"  <!DOCTYPE html><html></html>"
    assert classify("https://x.org/page", None, None, body) is ResourceKind.HTML


def test_priorities():
    assert priority_for(ResourceKind.CSS) is PriorityTier.CRITICAL
    assert priority_for(ResourceKind.JAVASCRIPT) is PriorityTier.CRITICAL
    assert priority_for(ResourceKind.HTML) is PriorityTier.HIGH
    assert priority_for(ResourceKind.IMAGE) is PriorityTier.NORMAL


def test_parse_kind_list():
    assert parse_kind_list(["images,css", "js"]) == {
        ResourceKind.IMAGE,
        ResourceKind.CSS,
        ResourceKind.JAVASCRIPT,
    }
    with pytest.raises(ValueError):
        parse_kind_list(["images,bogus"])
