from website_mirror.extract import (
    decode_document,
    encode_document,
    extract,
    extract_css,
    extract_html,
)
from website_mirror.kinds import ResourceKind

PAGE = """<!DOCTYPE html>
<html><head>
<base href="https://example.com/blog/">
<link rel="stylesheet" href="../css/site.css">
<link rel="icon" href="/favicon.ico">
<link rel="alternate" href="/feed.xml">
<style>body { background: url('img/bg.png'); } @import "print.css";</style>
</head>
<body>
<a href="post.html#comments">Comments</a>
<a href="mailto:me@example.com">Mail</a>
<img src="a.png" srcset="a-1x.png 1x, a-2x.png 2x" alt="A">
<div style="background-image: url(&quot;hero.jpg&quot;)"></div>
<script src="/js/app.js"></script>
<a href="/files/report.pdf">Report</a>
<video poster="poster.jpg"><source src="clip.webm"></video>
</body></html>"""


def by_raw(refs):
    return {r.raw: r for r in refs}


def test_html_references_and_kinds():
    refs = by_raw(extract_html(PAGE, "https://example.com/blog/index.html"))

    assert refs["../css/site.css"].kind is ResourceKind.CSS
    assert refs["/favicon.ico"].kind is ResourceKind.IMAGE
    assert refs["img/bg.png"].kind is ResourceKind.IMAGE
    assert refs["print.css"].kind is ResourceKind.CSS
    assert refs["post.html#comments"].kind is ResourceKind.HTML
    assert refs["a.png"].kind is ResourceKind.IMAGE
    assert refs["a-1x.png"].source == "img[srcset]"
    assert refs["a-2x.png"].source == "img[srcset]"
    assert refs["hero.jpg"].kind is ResourceKind.IMAGE
    assert refs["/js/app.js"].kind is ResourceKind.JAVASCRIPT
    assert refs["/files/report.pdf"].kind is ResourceKind.PDF
    assert refs["poster.jpg"].kind is ResourceKind.IMAGE
    assert refs["clip.webm"].kind is ResourceKind.VIDEO

    assert "/feed.xml" not in refs
    assert "mailto:me@example.com" not in refs


def test_spans_point_at_reference_text():
    refs = extract_html(PAGE, "https://example.com/blog/index.html")
    for ref in refs:
        if ref.raw == "hero.jpg":
            assert PAGE[ref.start : ref.end] == "&quot;hero.jpg&quot;"
        else:
            assert PAGE[ref.start : ref.end] == ref.raw
    starts = [r.start for r in refs]
    assert starts == sorted(starts)


def test_base_href_drives_resolution():
    refs = by_raw(extract_html(PAGE, "https://example.com/blog/index.html"))
    assert refs["../css/site.css"].resolve() == "https://example.com/css/site.css"
    assert (
        refs["post.html#comments"].resolve()
        == "https://example.com/blog/post.html#comments"
    )


def test_malformed_markup_still_yields_references():
    doc = '<p><img src="ok.png"></div></span><a href="next.html">next'
    refs = by_raw(extract_html(doc, "https://example.com/"))
    assert set(refs) == {"ok.png", "next.html"}


def test_garbage_markup_does_not_raise():
    doc = '<div><img src="a.png" <p>text</div><a href=\'x.html\''
    assert isinstance(extract_html(doc, "https://example.com/"), list)


CSS = """@import url("base.css");
@import 'theme.css';
.a { background: url(img/a.png) }
.b { background: url("data:image/png;base64,AAA") }
@font-face { src: url(fonts/x.woff2) format("woff2"); }
"""


def test_css_references():
    refs = extract_css(CSS, "https://example.com/css/site.css")
    assert [(r.raw, r.kind) for r in refs] == [
        ("base.css", ResourceKind.CSS),
        ("theme.css", ResourceKind.CSS),
        ("img/a.png", ResourceKind.IMAGE),
        ("fonts/x.woff2", ResourceKind.FONT),
    ]
    assert refs[0].source == "css@import"
    assert refs[2].source == "css[url]"
    assert refs[2].resolve() == "https://example.com/css/img/a.png"
    for ref in refs:
        assert CSS[ref.start : ref.end] == ref.raw


def test_extract_dispatch():
    assert extract("url(a.png)", ResourceKind.CSS, "https://example.com/")
    assert extract("var x = 'a.png';", ResourceKind.JAVASCRIPT, "https://example.com/") == []


def test_decode_honours_declared_charset():
    original = "<p>café</p>".encode("latin-1")
    text, encoding = decode_document(original, "text/html; charset=ISO-8859-1")
    assert "café" in text
    assert encode_document(text, encoding) == original


def test_srcset_urls_may_contain_commas():
    page = (
        '<img srcset="https://cdn.x/w_100,h_100/a.png 1x, '
        'https://cdn.x/w_200,h_200/a.png 2x,b.png,c.png">'
    )
    refs = extract_html(page, "https://example.com/")
    assert [r.raw for r in refs] == [
        "https://cdn.x/w_100,h_100/a.png",
        "https://cdn.x/w_200,h_200/a.png",
        "b.png,c.png",
    ]
    for ref in refs:
        assert page[ref.start : ref.end] == ref.raw
