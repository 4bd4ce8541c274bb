import threading
import time
from collections import Counter
from typing import Dict, List, Tuple, Union

import pytest

from website_mirror.errors import FetchError, HttpStatusError
from website_mirror.fetch import FetchResult
from website_mirror.settings import Settings
from website_mirror.urls import canonicalize

Route = Union[Tuple[str, bytes], Tuple[str, bytes, str], FetchError, List[object]]


class FakeFetcher:
    """Serves canned responses keyed by canonical URL.

    A route is ``(content_type, body)``, ``(content_type, body, final_url)``,
    an exception to raise, or a list of those consumed one per call.
    """

    def __init__(self, routes: Dict[str, Route], delay: float = 0.0):
        self.routes = {canonicalize(k): v for k, v in routes.items()}
        self.delay = delay
        self.calls: Counter = Counter()
        self.active = 0
        self.peak = 0
        self.closed = False
        self._lock = threading.Lock()

    def fetch(self, url: str) -> FetchResult:
        key = canonicalize(url)
        with self._lock:
            self.calls[key] += 1
            self.active += 1
            self.peak = max(self.peak, self.active)
            route = self.routes.get(key)
            if isinstance(route, list):
                route = route.pop(0) if len(route) > 1 else route[0]
        try:
            if self.delay:
                time.sleep(self.delay)
            if route is None:
                raise HttpStatusError(url, 404)
            if isinstance(route, Exception):
                raise route
            content_type, body = route[0], route[1]
            final_url = route[2] if len(route) > 2 else url
            return FetchResult(
                url=url,
                final_url=final_url,
                status=200,
                content_type=content_type,
                content=body,
            )
        finally:
            with self._lock:
                self.active -= 1

    def count(self, url: str) -> int:
        return self.calls[canonicalize(url)]

    def close(self) -> None:
        self.closed = True


def html_page(body: str, head: str = "") -> Tuple[str, bytes]:
    doc = f"<!DOCTYPE html><html><head>{head}</head><body>{body}</body></html>"
    return ("text/html; charset=utf-8", doc.encode("utf-8"))


@pytest.fixture
def make_settings(tmp_path):
    def _make(seed: str = "https://example.com/", **kw) -> Settings:
        kw.setdefault("output_dir", tmp_path / "site")
        kw.setdefault("retry_backoff", 0.0)
        return Settings(seed_url=seed, **kw).validate()

    return _make


def read(root, rel: str) -> str:
    return (root / rel).read_text(encoding="utf-8")
