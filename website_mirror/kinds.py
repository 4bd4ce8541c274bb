import enum
import os
from typing import Dict, FrozenSet, Iterable, Optional, Set
from urllib.parse import unquote, urlparse


class ResourceKind(enum.Enum):
    HTML = "html"
    CSS = "css"
    JAVASCRIPT = "js"
    IMAGE = "images"
    FONT = "fonts"
    PDF = "pdf"
    VIDEO = "video"
    OTHER = "other"


class PriorityTier(enum.IntEnum):
    CRITICAL = 0
    HIGH = 1
    NORMAL = 2


EXTENSION_KINDS: Dict[str, ResourceKind] = {
    ".html": ResourceKind.HTML,
    ".htm": ResourceKind.HTML,
    ".xhtml": ResourceKind.HTML,
    ".php": ResourceKind.HTML,
    ".asp": ResourceKind.HTML,
    ".aspx": ResourceKind.HTML,
    ".jsp": ResourceKind.HTML,
    ".jspx": ResourceKind.HTML,
    ".cfm": ResourceKind.HTML,
    ".css": ResourceKind.CSS,
    ".js": ResourceKind.JAVASCRIPT,
    ".mjs": ResourceKind.JAVASCRIPT,
    ".png": ResourceKind.IMAGE,
    ".jpg": ResourceKind.IMAGE,
    ".jpeg": ResourceKind.IMAGE,
    ".gif": ResourceKind.IMAGE,
    ".webp": ResourceKind.IMAGE,
    ".svg": ResourceKind.IMAGE,
    ".ico": ResourceKind.IMAGE,
    ".bmp": ResourceKind.IMAGE,
    ".avif": ResourceKind.IMAGE,
    ".tif": ResourceKind.IMAGE,
    ".tiff": ResourceKind.IMAGE,
    ".woff": ResourceKind.FONT,
    ".woff2": ResourceKind.FONT,
    ".ttf": ResourceKind.FONT,
    ".otf": ResourceKind.FONT,
    ".eot": ResourceKind.FONT,
    ".pdf": ResourceKind.PDF,
    ".mp4": ResourceKind.VIDEO,
    ".webm": ResourceKind.VIDEO,
    ".ogv": ResourceKind.VIDEO,
    ".mov": ResourceKind.VIDEO,
    ".m4v": ResourceKind.VIDEO,
    ".mkv": ResourceKind.VIDEO,
    ".avi": ResourceKind.VIDEO,
}

KIND_ALIASES: Dict[str, ResourceKind] = {
    "html": ResourceKind.HTML,
    "htm": ResourceKind.HTML,
    "pages": ResourceKind.HTML,
    "css": ResourceKind.CSS,
    "js": ResourceKind.JAVASCRIPT,
    "javascript": ResourceKind.JAVASCRIPT,
    "image": ResourceKind.IMAGE,
    "images": ResourceKind.IMAGE,
    "img": ResourceKind.IMAGE,
    "font": ResourceKind.FONT,
    "fonts": ResourceKind.FONT,
    "pdf": ResourceKind.PDF,
    "pdfs": ResourceKind.PDF,
    "video": ResourceKind.VIDEO,
    "videos": ResourceKind.VIDEO,
    "other": ResourceKind.OTHER,
}

TRANSCODABLE_EXTS: FrozenSet[str] = frozenset({".jpg", ".jpeg", ".png"})


def priority_for(kind: ResourceKind) -> PriorityTier:
    if kind in (ResourceKind.CSS, ResourceKind.JAVASCRIPT):
        return PriorityTier.CRITICAL
    if kind is ResourceKind.HTML:
        return PriorityTier.HIGH
    return PriorityTier.NORMAL


def url_extension(url: str) -> str:
    path = unquote(urlparse(url).path or "")
    last = path.rsplit("/", 1)[-1]
    return os.path.splitext(last)[1].lower()


def kind_from_extension(url: str) -> Optional[ResourceKind]:
    return EXTENSION_KINDS.get(url_extension(url))


def kind_from_content_type(content_type: Optional[str]) -> Optional[ResourceKind]:
    if not content_type:
        return None
    ct = content_type.split(";")[0].strip().lower()
    if ct in ("text/html", "application/xhtml+xml"):
        return ResourceKind.HTML
    if ct == "text/css":
        return ResourceKind.CSS
    if "javascript" in ct or ct == "text/ecmascript":
        return ResourceKind.JAVASCRIPT
    if ct.startswith("image/"):
        return ResourceKind.IMAGE
    if ct.startswith("font/") or ct in (
        "application/font-woff",
        "application/x-font-woff",
        "application/vnd.ms-fontobject",
        "application/x-font-ttf",
    ):
        return ResourceKind.FONT
    if ct == "application/pdf":
        return ResourceKind.PDF
    if ct.startswith("video/"):
        return ResourceKind.VIDEO
    return None


def sniff_html(content: bytes) -> bool:
    head = content[:512].lstrip().lower()
    return head.startswith(b"<!doctype html") or head.startswith(b"<html")


def classify(
    url: str,
    content_type: Optional[str] = None,
    hint: Optional[ResourceKind] = None,
    content: Optional[bytes] = None,
) -> ResourceKind:
    """Extension first, then Content-Type, then the discovery hint, then sniffing."""
    kind = kind_from_extension(url)
    if kind is not None:
        return kind
    kind = kind_from_content_type(content_type)
    if kind is not None:
        return kind
    if hint is ResourceKind.HTML and content is not None and content_type:
        # a link to /download that served application/zip is not a page
        return ResourceKind.HTML if sniff_html(content) else ResourceKind.OTHER
    if hint is not None and hint is not ResourceKind.OTHER:
        return hint
    if content is not None and sniff_html(content):
        return ResourceKind.HTML
    return hint or ResourceKind.OTHER


def parse_kind_list(names: Iterable[str]) -> Set[ResourceKind]:
    kinds: Set[ResourceKind] = set()
    for raw in names:
        for name in raw.split(","):
            name = name.strip().lower()
            if not name:
                continue
            if name not in KIND_ALIASES:
                raise ValueError(f"unknown resource type: {name}")
            kinds.add(KIND_ALIASES[name])
    return kinds
