from website_mirror.extract import extract_css, extract_html
from website_mirror.rewrite import rewrite

BASE = "https://example.com/blog/index.html"
DOC_PATH = "blog/index.html"

DOC = (
    '<a href="about.html#team">Team</a>'
    '<img src="/img/logo.png">'
    '<img src="/a.png?x=1&amp;y=2">'
    '<a href="mailto:x@example.com">Mail</a>'
)

LOCAL = {
    "https://example.com/blog/about.html": "blog/about.html",
    "https://example.com/img/logo.png": "img/logo.webp",
}


def test_materialized_references_become_relative():
    out = rewrite(DOC, extract_html(DOC, BASE), DOC_PATH, LOCAL.get)
    assert 'href="about.html#team"' in out
    assert 'src="../img/logo.webp"' in out
    assert 'href="mailto:x@example.com"' in out


def test_missing_references_become_absolute_and_escaped():
    out = rewrite(DOC, extract_html(DOC, BASE), DOC_PATH, LOCAL.get)
    assert 'src="https://example.com/a.png?x=1&amp;y=2"' in out


def test_rewrite_is_idempotent():
    refs = extract_html(DOC, BASE)
    first = rewrite(DOC, refs, DOC_PATH, LOCAL.get)
    second = rewrite(DOC, refs, DOC_PATH, LOCAL.get)
    assert first == second


def test_later_pass_picks_up_new_downloads():
    refs = extract_html(DOC, BASE)
    early = rewrite(DOC, refs, DOC_PATH, lambda key: None)
    assert 'src="https://example.com/img/logo.png"' in early
    late = rewrite(DOC, refs, DOC_PATH, LOCAL.get)
    assert 'src="../img/logo.webp"' in late


def test_css_rewrite():
    css = ".hero { background: url(../img/bg.png) } @import 'print.css';"
    refs = extract_css(css, "https://example.com/css/site.css")
    lookup = {
        "https://example.com/img/bg.png": "img/bg.webp",
        "https://example.com/css/print.css": "css/print.css",
    }.get
    out = rewrite(css, refs, "css/site.css", lookup)
    assert out == ".hero { background: url(../img/bg.webp) } @import 'print.css';"
