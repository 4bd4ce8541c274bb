import html
import logging
from typing import Callable, Iterable, List, Optional

from .errors import InvalidReference
from .extract import DiscoveredReference
from .urls import canonicalize, relative_reference, split_fragment

log = logging.getLogger(__name__)

Lookup = Callable[[str], Optional[str]]


def replacement_for(
    ref: DiscoveredReference, document_path: str, lookup: Lookup
) -> Optional[str]:
    try:
        absolute = ref.resolve()
        key = canonicalize(absolute)
    except InvalidReference as e:
        log.debug("leaving reference as is: %s", e)
        return None
    target = lookup(key)
    if target is None:
        # not materialized: point at the live resource instead
        return absolute
    rel = relative_reference(document_path, target)
    frag = split_fragment(absolute)
    if frag:
        rel = f"{rel}#{frag}"
    return rel


def rewrite(
    text: str,
    references: Iterable[DiscoveredReference],
    document_path: str,
    lookup: Lookup,
) -> str:
    """Substitute each reference span in ``text``.

    References with a completed cache entry become paths relative to
    ``document_path``; the others become their absolute URL. Always called on
    the original document text, so repeated runs produce the same output.
    """
    out: List[str] = []
    last = len(text)
    for ref in sorted(references, key=lambda r: r.start, reverse=True):
        if ref.end > last:
            continue
        new = replacement_for(ref, document_path, lookup)
        if new is None:
            continue
        if ref.in_attribute:
            new = html.escape(new, quote=True)
        out.append(text[ref.end : last])
        out.append(new)
        last = ref.start
    out.append(text[:last])
    return "".join(reversed(out))
