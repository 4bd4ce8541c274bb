import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional
from urllib import robotparser
from urllib.parse import urlsplit, urlunsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import (
    ContentTooLarge,
    FetchError,
    HttpStatusError,
    RobotsDisallowed,
    Unreachable,
)
from .settings import Settings

log = logging.getLogger(__name__)

DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
ROBOTS_TIMEOUT = 10.0
CHUNK_SIZE = 64 * 1024


@dataclass
class FetchResult:
    url: str
    final_url: str
    status: int
    content_type: Optional[str]
    content: bytes


def build_session(settings: Settings) -> requests.Session:
    s = requests.Session()
    # status retries only; connection errors and timeouts surface to the
    # scheduler, which re-enqueues the task with its attempt counter
    retry = Retry(
        total=None,
        connect=0,
        read=0,
        status=2,
        redirect=None,
        backoff_factor=settings.retry_backoff,
        status_forcelist=[429, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    pool = max(10, settings.max_concurrent)
    adapter = HTTPAdapter(max_retries=retry, pool_connections=pool, pool_maxsize=pool)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(
        {
            "User-Agent": settings.user_agent,
            "Accept": DEFAULT_ACCEPT,
            "Accept-Language": "en-US,en;q=0.7",
        }
    )
    s.verify = True
    return s


class RobotsCache:
    """robots.txt rules fetched once per origin and shared by all workers."""

    def __init__(self, session: requests.Session, user_agent: str):
        self.session = session
        self.user_agent = user_agent
        self._parsers: Dict[str, Optional[robotparser.RobotFileParser]] = {}
        self._lock = threading.Lock()

    def _load(self, origin: str) -> Optional[robotparser.RobotFileParser]:
        robots_url = origin + "/robots.txt"
        try:
            r = self.session.get(robots_url, timeout=ROBOTS_TIMEOUT)
        except requests.RequestException as e:
            log.debug("robots.txt unavailable for %s: %s", origin, e)
            return None
        if r.status_code >= 400 or not r.text:
            return None
        rp = robotparser.RobotFileParser()
        rp.set_url(robots_url)
        rp.parse(r.text.splitlines())
        return rp

    def allowed(self, url: str) -> bool:
        parts = urlsplit(url)
        origin = urlunsplit((parts.scheme, parts.netloc, "", "", ""))
        with self._lock:
            loaded = origin in self._parsers
            rp = self._parsers.get(origin)
        if not loaded:
            # network I/O stays outside the lock; first parser published wins
            rp = self._load(origin)
            with self._lock:
                rp = self._parsers.setdefault(origin, rp)
        if rp is None:
            return True
        return rp.can_fetch(self.user_agent, url)


class Fetcher:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or build_session(settings)
        self.robots = (
            None
            if settings.ignore_robots
            else RobotsCache(self.session, settings.user_agent)
        )

    def fetch(self, url: str) -> FetchResult:
        s = self.settings
        if self.robots is not None and not self.robots.allowed(url):
            raise RobotsDisallowed(url)
        try:
            resp = self.session.get(
                url,
                timeout=s.timeout,
                allow_redirects=s.follow_redirects,
                stream=True,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise Unreachable(url, str(e)) from e
        except requests.RequestException as e:
            raise FetchError(url, str(e)) from e
        try:
            if resp.status_code != 200:
                raise HttpStatusError(url, resp.status_code)
            cl = resp.headers.get("Content-Length")
            if cl and cl.isdigit() and int(cl) > s.max_bytes:
                raise ContentTooLarge(url, f"{cl} bytes")
            chunks = []
            written = 0
            try:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > s.max_bytes:
                        raise ContentTooLarge(url, f"over {s.max_bytes} bytes")
                    chunks.append(chunk)
            except (
                requests.ConnectionError,
                requests.Timeout,
                requests.exceptions.ChunkedEncodingError,
            ) as e:
                raise Unreachable(url, str(e)) from e
            final_url = resp.url or url
            if final_url != url:
                log.debug("redirected %s -> %s", url, final_url)
            return FetchResult(
                url=url,
                final_url=final_url,
                status=resp.status_code,
                content_type=resp.headers.get("Content-Type"),
                content=b"".join(chunks),
            )
        finally:
            resp.close()

    def close(self) -> None:
        self.session.close()
