import hashlib
import os
import posixpath
import re
from typing import List, Optional
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit

from .errors import InvalidReference
from .kinds import TRANSCODABLE_EXTS, ResourceKind

# -------------------- Constants --------------------

UNFETCHABLE_PREFIXES = (
    "mailto:",
    "tel:",
    "sms:",
    "javascript:",
    "data:",
    "blob:",
    "about:",
)
DEFAULT_PORTS = {"http": 80, "https": 443}
UNSAFE_SEGMENT_CHARS_RE = re.compile(r"[^A-Za-z0-9._~+=,@-]")
MAX_SEGMENT_LEN = 120
EXTERNAL_DIR = "external"

KIND_DEFAULT_EXTS = {
    ResourceKind.CSS: ".css",
    ResourceKind.JAVASCRIPT: ".js",
    ResourceKind.PDF: ".pdf",
}


# -------------------- Resolution --------------------


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if not u or u.startswith("#"):
        return False
    return not u.lower().startswith(UNFETCHABLE_PREFIXES)


def resolve(base_url: str, reference: str) -> str:
    """Resolve ``reference`` against the referring document's own URL.

    Absolute, scheme-relative (``//host/x``), root-relative (``/x``) and
    document-relative (``../x``) references are supported. The fragment is
    kept so anchors can be restored after rewriting.
    """
    ref = (reference or "").strip()
    if not ref:
        raise InvalidReference(reference, "empty reference")
    if ref.startswith("#"):
        raise InvalidReference(reference, "fragment only")
    if ref.lower().startswith(UNFETCHABLE_PREFIXES):
        raise InvalidReference(reference, "unsupported scheme")
    try:
        absolute = urljoin(base_url, ref)
        parts = urlsplit(absolute)
        parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise InvalidReference(reference, str(e)) from e
    if parts.scheme.lower() not in DEFAULT_PORTS:
        raise InvalidReference(reference, f"unsupported scheme {parts.scheme!r}")
    if not parts.hostname:
        raise InvalidReference(reference, "missing host")
    return absolute


def canonicalize(url: str) -> str:
    """Normalize an absolute URL so equivalent spellings compare equal.

    Scheme and host are lowercased, default ports and fragments dropped,
    an empty path becomes ``/`` and a trailing slash on any other path is
    removed.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError as e:
        raise InvalidReference(url, str(e)) from e
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not host:
        raise InvalidReference(url, "missing host")
    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{port}"
    path = parts.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def split_fragment(url: str) -> str:
    return urlsplit(url).fragment


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def same_site(host_a: str, host_b: str) -> bool:
    def bare(h: str) -> str:
        h = (h or "").lower()
        return h[4:] if h.startswith("www.") else h

    return bare(host_a) == bare(host_b)


# -------------------- Local paths --------------------


def short_hash(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:8]


def sanitize_segment(segment: str) -> str:
    clean = UNSAFE_SEGMENT_CHARS_RE.sub("_", segment)
    if clean.startswith("."):
        clean = "_" + clean[1:]
    if clean != segment or len(clean) > MAX_SEGMENT_LEN:
        stem, ext = os.path.splitext(clean)
        if len(ext) > 16:
            stem, ext = clean, ""
        stem = stem[: MAX_SEGMENT_LEN - len(ext) - 9]
        clean = f"{stem}-{short_hash(segment)[:8]}{ext}"
    return clean or "_"


def _path_segments(path: str) -> List[str]:
    segs: List[str] = []
    for raw in unquote(path).split("/"):
        if raw in ("", "."):
            continue
        if raw == "..":
            if segs:
                segs.pop()
            continue
        segs.append(raw)
    return segs


def to_local_path(
    url: str,
    kind: ResourceKind,
    site_host: str,
    convert_to_webp: bool = False,
) -> str:
    """Map an absolute URL to a relative POSIX path inside the mirror.

    Same-site resources keep their path segments (``/css/style.css`` becomes
    ``css/style.css``); resources from any other host are bucketed under
    ``external/<host>/``. HTML always ends in ``.html``. A query string adds a
    short digest to the file stem.
    """
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    directory_like = not parts.path or parts.path.endswith("/")
    segs = _path_segments(parts.path)
    if not segs:
        directory_like = True

    if kind is ResourceKind.HTML:
        if directory_like:
            segs.append("index.html")
        else:
            ext = os.path.splitext(segs[-1])[1].lower()
            if not ext:
                segs.append("index.html")
            elif ext != ".html":
                segs[-1] = segs[-1] + ".html"
    else:
        default_ext = KIND_DEFAULT_EXTS.get(kind, "")
        if directory_like:
            segs.append("index" + (default_ext or ".bin"))
        elif default_ext and not os.path.splitext(segs[-1])[1]:
            segs[-1] = segs[-1] + default_ext

    segs = [sanitize_segment(s) for s in segs]

    if parts.query:
        stem, ext = os.path.splitext(segs[-1])
        segs[-1] = f"{stem}_{short_hash(parts.query)}{ext}"

    if convert_to_webp and kind is ResourceKind.IMAGE:
        stem, ext = os.path.splitext(segs[-1])
        if ext.lower() in TRANSCODABLE_EXTS:
            segs[-1] = stem + ".webp"

    if not same_site(host, site_host):
        bucket = host
        if parts.port is not None and parts.port != DEFAULT_PORTS.get(parts.scheme):
            bucket = f"{host}_{parts.port}"
        segs = [EXTERNAL_DIR, sanitize_segment(bucket)] + segs

    return posixpath.join(*segs)


def relative_reference(from_path: str, to_path: str) -> str:
    """Path that leads from the document at ``from_path`` to ``to_path``.

    Both arguments are mirror-relative POSIX paths; the result accounts for
    the directory depth of both files.
    """
    start = posixpath.dirname(from_path) or "."
    return posixpath.relpath(to_path, start)
