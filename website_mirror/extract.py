import html
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, UnicodeDammit
from bs4.element import Tag

from .errors import InvalidReference
from .kinds import ResourceKind, kind_from_extension
from .urls import can_fetch_url, resolve

log = logging.getLogger(__name__)

# -------------------- Patterns --------------------

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
CSS_IMPORT_STRING_RE = re.compile(r"@import\s+([\"'])([^\"']+)\1", re.IGNORECASE)
CSS_IMPORT_URL_RE = re.compile(r"@import\s+url\(\s*([\"']?)([^)\"']+)\1", re.IGNORECASE)
# URL is a whitespace-free run; a comma ends the candidate only after the URL
SRCSET_CANDIDATE_RE = re.compile(r"\s*([^\s,]\S*?)(?:,+(?=\s|$)|(?=\s|$)([^,]*)(?:,|$))")
TAG_ATTR_RE = re.compile(
    r"""([^\s"'>/=]+)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+)))?"""
)
CHARSET_RE = re.compile(r"charset=([\w.:-]+)", re.IGNORECASE)

LINK_REL_KINDS = {
    "stylesheet": ResourceKind.CSS,
    "icon": ResourceKind.IMAGE,
    "shortcut icon": ResourceKind.IMAGE,
    "apple-touch-icon": ResourceKind.IMAGE,
    "apple-touch-icon-precomposed": ResourceKind.IMAGE,
    "mask-icon": ResourceKind.IMAGE,
    "manifest": ResourceKind.OTHER,
}
PRELOAD_AS_KINDS = {
    "style": ResourceKind.CSS,
    "script": ResourceKind.JAVASCRIPT,
    "image": ResourceKind.IMAGE,
    "font": ResourceKind.FONT,
    "video": ResourceKind.VIDEO,
}

# tag -> [(attribute, kind hint)]
URL_ATTRIBUTES: Dict[str, List[Tuple[str, ResourceKind]]] = {
    "a": [("href", ResourceKind.HTML)],
    "area": [("href", ResourceKind.HTML)],
    "iframe": [("src", ResourceKind.HTML)],
    "img": [("src", ResourceKind.IMAGE)],
    "input": [("src", ResourceKind.IMAGE)],
    "script": [("src", ResourceKind.JAVASCRIPT)],
    "video": [("src", ResourceKind.VIDEO), ("poster", ResourceKind.IMAGE)],
    "audio": [("src", ResourceKind.OTHER)],
    "track": [("src", ResourceKind.OTHER)],
    "embed": [("src", ResourceKind.OTHER)],
    "object": [("data", ResourceKind.OTHER)],
}
SRCSET_TAGS = ("img", "source")


@dataclass(frozen=True)
class DiscoveredReference:
    """A reference found in a document, addressed by its character span.

    ``raw`` is the unresolved reference with HTML entities decoded; ``start``
    and ``end`` delimit the exact text to substitute in the decoded document.
    ``in_attribute`` marks spans that sit inside an HTML attribute value and
    therefore need attribute escaping when rewritten.
    """

    raw: str
    kind: ResourceKind
    source: str
    start: int
    end: int
    base_url: str
    in_attribute: bool = False

    def resolve(self) -> str:
        return resolve(self.base_url, self.raw)


def reference_kind(raw: str, hint: ResourceKind) -> ResourceKind:
    kind = kind_from_extension(raw)
    if kind is None:
        return hint
    # server-side pages (.php, .asp) also serve stylesheets, scripts and images
    if kind is ResourceKind.HTML and hint is not ResourceKind.OTHER:
        return hint
    return kind


# -------------------- Decoding --------------------


def decode_document(
    content: bytes, content_type: Optional[str] = None, is_html: bool = True
) -> Tuple[str, str]:
    known = []
    if content_type:
        m = CHARSET_RE.search(content_type)
        if m:
            known.append(m.group(1).strip("\"'"))
    dammit = UnicodeDammit(content, known_definite_encodings=known, is_html=is_html)
    if dammit.unicode_markup is None:
        return content.decode("utf-8", errors="replace"), "utf-8"
    return dammit.unicode_markup, dammit.original_encoding or "utf-8"


def encode_document(text: str, encoding: str, is_html: bool = True) -> bytes:
    try:
        return text.encode(encoding, "xmlcharrefreplace" if is_html else "replace")
    except LookupError:
        return text.encode("utf-8")


# -------------------- CSS --------------------


def extract_css(
    text: str,
    base_url: str,
    offset: int = 0,
    in_attribute: bool = False,
    source: str = "css",
) -> List[DiscoveredReference]:
    refs: List[DiscoveredReference] = []
    seen_spans = set()

    def add(raw: str, start: int, end: int, is_import: bool, src: str) -> None:
        if (start, end) in seen_spans or not can_fetch_url(raw):
            return
        seen_spans.add((start, end))
        value = (html.unescape(raw) if in_attribute else raw).strip()
        # url(&quot;x&quot;) only shows its quotes after unescaping
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1].strip()
        if not can_fetch_url(value):
            return
        if is_import:
            kind = ResourceKind.CSS
        else:
            kind = reference_kind(value, ResourceKind.IMAGE)
        refs.append(
            DiscoveredReference(
                raw=value,
                kind=kind,
                source=src,
                start=offset + start,
                end=offset + end,
                base_url=base_url,
                in_attribute=in_attribute,
            )
        )

    for regex in (CSS_IMPORT_STRING_RE, CSS_IMPORT_URL_RE):
        for m in regex.finditer(text):
            start, end = _strip_span(text, m.start(2), m.end(2))
            add(text[start:end], start, end, True, source + "@import")
    for m in CSS_URL_RE.finditer(text):
        start, end = _strip_span(text, m.start(2), m.end(2))
        add(text[start:end], start, end, False, source + "[url]")
    refs.sort(key=lambda r: r.start)
    return refs


def _strip_span(text: str, start: int, end: int) -> Tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


# -------------------- HTML --------------------


def _line_offsets(text: str) -> List[int]:
    offsets = [0]
    for m in re.finditer("\n", text):
        offsets.append(m.end())
    return offsets


def _tag_end(text: str, pos: int) -> int:
    quote = None
    i = pos
    n = len(text)
    while i < n:
        c = text[i]
        if quote:
            if c == quote:
                quote = None
        elif c in "\"'":
            quote = c
        elif c == ">":
            return i
        i += 1
    return n


def _attribute_spans(text: str, tag_start: int, name: str) -> Dict[str, Tuple[int, int]]:
    """Value spans of every attribute in the start tag at ``tag_start``."""
    body_start = tag_start + 1 + len(name)
    body_end = _tag_end(text, body_start)
    spans: Dict[str, Tuple[int, int]] = {}
    for m in TAG_ATTR_RE.finditer(text, body_start, body_end):
        attr = m.group(1).lower()
        if attr in spans:
            continue
        for group in (2, 3, 4):
            if m.group(group) is not None:
                spans[attr] = (m.start(group), m.end(group))
                break
    return spans


def _parse(text: str) -> Optional[BeautifulSoup]:
    # html.parser records source positions, which lxml does not
    try:
        return BeautifulSoup(text, "html.parser")
    except Exception as e:
        log.warning("could not parse HTML document: %s", e)
        return None


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag is not None:
        try:
            return resolve(fallback, tag["href"])
        except InvalidReference:
            pass
    return fallback


def _element_kind(tag: Tag, hint: ResourceKind) -> Optional[ResourceKind]:
    if tag.name == "link":
        rels = " ".join(tag.get("rel") or []).lower()
        if "preload" in rels.split() or "modulepreload" in rels.split():
            as_type = (tag.get("as") or "").lower()
            if "modulepreload" in rels.split():
                as_type = as_type or "script"
            return PRELOAD_AS_KINDS.get(as_type)
        if rels in LINK_REL_KINDS:
            return LINK_REL_KINDS[rels]
        for rel in rels.split():
            if rel in LINK_REL_KINDS:
                return LINK_REL_KINDS[rel]
        return None
    if tag.name == "input" and (tag.get("type") or "").lower() != "image":
        return None
    if tag.name == "source":
        parent = tag.parent.name if tag.parent is not None else ""
        if parent == "video":
            return ResourceKind.VIDEO
        if parent == "picture":
            return ResourceKind.IMAGE
        return ResourceKind.OTHER
    return hint


def extract_html(text: str, base_url: str) -> List[DiscoveredReference]:
    soup = _parse(text)
    if soup is None:
        return []
    base = effective_base_url(soup, base_url)
    lines = _line_offsets(text)
    refs: List[DiscoveredReference] = []

    for tag in soup.find_all(True):
        if tag.sourceline is None or tag.sourcepos is None:
            continue
        if tag.sourceline - 1 >= len(lines):
            continue
        pos = lines[tag.sourceline - 1] + tag.sourcepos
        if text[pos : pos + 1 + len(tag.name)].lower() != "<" + tag.name:
            log.warning("skipping <%s> at line %s: markup out of sync", tag.name, tag.sourceline)
            continue
        try:
            refs.extend(_tag_references(text, tag, pos, base))
        except Exception as e:
            log.warning("skipping <%s> at line %s: %s", tag.name, tag.sourceline, e)

    refs.sort(key=lambda r: r.start)
    return refs


def _tag_references(
    text: str, tag: Tag, pos: int, base: str
) -> List[DiscoveredReference]:
    name = tag.name
    spans = _attribute_spans(text, pos, name)
    refs: List[DiscoveredReference] = []

    attrs = list(URL_ATTRIBUTES.get(name, []))
    if name == "link":
        attrs.append(("href", ResourceKind.OTHER))
    if name == "source":
        attrs.append(("src", ResourceKind.OTHER))
    for attr, hint in attrs:
        if attr not in spans:
            continue
        kind = _element_kind(tag, hint)
        if kind is None:
            continue
        start, end = _strip_span(text, *spans[attr])
        raw = html.unescape(text[start:end])
        if not can_fetch_url(raw):
            continue
        refs.append(
            DiscoveredReference(
                raw=raw.strip(),
                kind=reference_kind(raw, kind),
                source=f"{name}[{attr}]",
                start=start,
                end=end,
                base_url=base,
                in_attribute=True,
            )
        )

    if name in SRCSET_TAGS and "srcset" in spans:
        v_start, v_end = spans["srcset"]
        value = text[v_start:v_end]
        for m in SRCSET_CANDIDATE_RE.finditer(value):
            raw = html.unescape(m.group(1))
            if not can_fetch_url(raw):
                continue
            refs.append(
                DiscoveredReference(
                    raw=raw,
                    kind=reference_kind(raw, ResourceKind.IMAGE),
                    source=f"{name}[srcset]",
                    start=v_start + m.start(1),
                    end=v_start + m.end(1),
                    base_url=base,
                    in_attribute=True,
                )
            )

    if "style" in spans:
        s_start, s_end = spans["style"]
        refs.extend(
            extract_css(
                text[s_start:s_end],
                base,
                offset=s_start,
                in_attribute=True,
                source=f"{name}[style]",
            )
        )

    if name == "style":
        body_start = _tag_end(text, pos) + 1
        close = re.compile(r"</style\s*>", re.IGNORECASE).search(text, body_start)
        body_end = close.start() if close else len(text)
        refs.extend(
            extract_css(text[body_start:body_end], base, offset=body_start, source="style")
        )
    return refs


# -------------------- Dispatch --------------------


def extract(text: str, kind: ResourceKind, base_url: str) -> List[DiscoveredReference]:
    if kind is ResourceKind.HTML:
        return extract_html(text, base_url)
    if kind is ResourceKind.CSS:
        return extract_css(text, base_url)
    return []

