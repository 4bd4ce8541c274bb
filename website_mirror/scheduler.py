import dataclasses
import enum
import heapq
import itertools
import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .cache import Claim, DownloadCache, EntryState
from .errors import (
    ConfigurationError,
    FetchError,
    InvalidReference,
    RobotsDisallowed,
    WriteFailure,
)
from .extract import DiscoveredReference, decode_document, encode_document, extract
from .fetch import Fetcher, FetchResult
from .kinds import PriorityTier, ResourceKind, classify, priority_for
from .rewrite import rewrite
from .settings import Settings
from .storage import atomic_write_bytes, check_writable, write_manifest
from .transcode import ConversionRecord, convert
from .urls import canonicalize, host_of, same_site, to_local_path

log = logging.getLogger(__name__)

DOCUMENT_KINDS = (ResourceKind.HTML, ResourceKind.CSS)


class TaskState(enum.Enum):
    QUEUED = "queued"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    REWRITING = "rewriting"
    PERSISTED = "persisted"
    SKIPPED = "skipped"
    FAILED = "failed"


# -------------------- Tasks --------------------


@dataclass(frozen=True)
class CrawlTask:
    url: str
    key: str
    depth: int
    priority: PriorityTier
    kind: ResourceKind
    referrer: Optional[str] = None
    attempt: int = 0
    not_before: float = 0.0
    # set on retries: the download claim stays with the task
    claim: Optional[Claim] = field(default=None, compare=False, repr=False)

    def retry(self, claim: Claim, backoff: float) -> "CrawlTask":
        return dataclasses.replace(
            self,
            attempt=self.attempt + 1,
            not_before=time.monotonic() + backoff * (2**self.attempt),
            claim=claim,
        )


class Frontier:
    """Shared priority queue of crawl tasks.

    Tasks pop in ``(priority tier, discovery order)`` order. The frontier
    tracks how many popped tasks are still being worked on so that ``pop``
    can tell an idle moment from the end of the crawl: it returns None once
    the heap is empty and nothing is in flight, or after :meth:`close`.
    """

    def __init__(self):
        self._heap: List[Tuple[int, int, CrawlTask]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._in_flight = 0
        self._closed = False

    def push(self, task: CrawlTask) -> bool:
        with self._cond:
            if self._closed:
                return False
            heapq.heappush(self._heap, (int(task.priority), next(self._seq), task))
            self._cond.notify()
            return True

    def pop(self) -> Optional[CrawlTask]:
        with self._cond:
            while True:
                if self._closed:
                    return None
                if self._heap:
                    _, _, task = heapq.heappop(self._heap)
                    self._in_flight += 1
                    return task
                if self._in_flight == 0:
                    self._closed = True
                    self._cond.notify_all()
                    return None
                self._cond.wait()

    def task_done(self) -> None:
        with self._cond:
            self._in_flight -= 1
            if self._in_flight == 0 and not self._heap:
                self._cond.notify_all()

    def close(self) -> List[CrawlTask]:
        """Stop accepting tasks and return the ones still queued."""
        with self._cond:
            drained = [entry[2] for entry in sorted(self._heap, key=lambda e: e[:2])]
            self._heap.clear()
            self._closed = True
            self._cond.notify_all()
            return drained

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._in_flight

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._heap)


# -------------------- Report --------------------


@dataclass
class CrawlReport:
    fetched: Counter = field(default_factory=Counter)
    skipped: Counter = field(default_factory=Counter)
    failed: Counter = field(default_factory=Counter)
    skip_reasons: Counter = field(default_factory=Counter)
    failures: List[Tuple[str, str]] = field(default_factory=list)
    conversions: List[ConversionRecord] = field(default_factory=list)
    pages: List[str] = field(default_factory=list)
    assets: List[str] = field(default_factory=list)
    cancelled: bool = False
    manifest_path: Optional[Path] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(
        self,
        state: TaskState,
        kind: ResourceKind,
        url: str,
        reason: Optional[str] = None,
    ) -> None:
        with self._lock:
            if state is TaskState.PERSISTED:
                self.fetched[kind.value] += 1
            elif state is TaskState.SKIPPED:
                self.skipped[kind.value] += 1
                self.skip_reasons[reason or "skipped"] += 1
            elif state is TaskState.FAILED:
                self.failed[kind.value] += 1
                self.failures.append((url, reason or "failed"))

    def add_conversion(self, record: ConversionRecord) -> None:
        with self._lock:
            self.conversions.append(record)

    def summary(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            kinds = sorted(set(self.fetched) | set(self.skipped) | set(self.failed))
            return {
                k: {
                    "fetched": self.fetched[k],
                    "skipped": self.skipped[k],
                    "failed": self.failed[k],
                }
                for k in kinds
            }

    @property
    def total_fetched(self) -> int:
        return sum(self.fetched.values())

    @property
    def total_failed(self) -> int:
        return sum(self.failed.values())


@dataclass
class SavedDocument:
    key: str
    local_path: str
    kind: ResourceKind
    text: str
    encoding: str
    references: List[DiscoveredReference]


# -------------------- Scheduler --------------------


class Scheduler:
    """One crawl: frontier, visited set, download cache and worker pool.

    All crawl state lives on the instance, so several crawls can run in one
    process side by side.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: Optional[Fetcher] = None,
        cache: Optional[DownloadCache] = None,
    ):
        self.settings = settings
        self.root = Path(settings.output_dir)
        self.fetcher = fetcher or Fetcher(settings)
        self.cache = cache if cache is not None else DownloadCache(self.root)
        self.frontier = Frontier()
        self.report = CrawlReport()
        self.site_host = host_of(settings.seed_url)
        self.task_states: Dict[str, TaskState] = {}
        self.admitted: List[CrawlTask] = []
        self.peak_fetches = 0
        self._visited: Set[str] = set()
        self._documents: Dict[str, SavedDocument] = {}
        self._lock = threading.Lock()
        self._active_fetches = 0
        self._cancel = threading.Event()
        self._seed_error: Optional[FetchError] = None

    # ---- paths and state ----

    def local_path(
        self, key: str, kind: ResourceKind, convert_to_webp: Optional[bool] = None
    ) -> str:
        if convert_to_webp is None:
            convert_to_webp = self.settings.convert_to_webp
        return to_local_path(key, kind, self.site_host, convert_to_webp)

    def _set_state(self, task: CrawlTask, state: TaskState) -> None:
        with self._lock:
            self.task_states[task.key] = state
        log.debug("%s %s", state.value, task.url)

    def _finish(
        self,
        task: CrawlTask,
        state: TaskState,
        kind: ResourceKind,
        reason: Optional[str] = None,
    ) -> None:
        self._set_state(task, state)
        self.report.record(state, kind, task.url, reason)

    def visited(self, key: str) -> bool:
        with self._lock:
            return key in self._visited

    def _mark_visited(self, key: str) -> bool:
        with self._lock:
            if key in self._visited:
                return False
            self._visited.add(key)
            return True

    # ---- admission ----

    def _enqueue(self, task: CrawlTask) -> bool:
        self.cache.register(task.key, task.kind)
        with self._lock:
            self.admitted.append(task)
            self.task_states[task.key] = TaskState.QUEUED
        if not self.frontier.push(task):
            log.debug("frontier closed, dropping %s", task.url)
            return False
        return True

    def seed(self) -> CrawlTask:
        url = self.settings.seed_url
        key = canonicalize(url)
        kind = classify(url, hint=ResourceKind.HTML)
        task = CrawlTask(
            url=url, key=key, depth=0, priority=priority_for(kind), kind=kind
        )
        self._mark_visited(key)
        self._enqueue(task)
        return task

    def admit(
        self, url: str, kind: ResourceKind, parent: CrawlTask
    ) -> Optional[str]:
        """Run the admission filter; returns the reason for refusing, if any."""
        s = self.settings
        key = canonicalize(url)
        if not s.allows(kind):
            if self._mark_visited(key):
                log.debug("skip %s: %s not selected", url, kind.value)
            return "filtered by resource type"
        if not same_site(host_of(url), self.site_host):
            reason = None
            if kind is ResourceKind.HTML:
                reason = "external page"
            elif not s.download_external:
                reason = "external resource"
            if reason:
                if self._mark_visited(key):
                    log.debug("skip %s: %s", url, reason)
                return reason
        depth = parent.depth + 1
        # left unvisited: a shorter path may still reach it
        if s.max_depth is not None and depth > s.max_depth:
            return "beyond max depth"
        if not self._mark_visited(key):
            return "already seen"
        task = CrawlTask(
            url=url,
            key=key,
            depth=depth,
            priority=priority_for(kind),
            kind=kind,
            referrer=parent.url,
        )
        if not self._enqueue(task):
            return "cancelled"
        return None

    # ---- worker ----

    def _worker(self) -> None:
        while True:
            task = self.frontier.pop()
            if task is None:
                return
            try:
                self.process(task)
            except Exception:  # pylint: disable=broad-except
                log.exception("unexpected error processing %s", task.url)
                self._finish(task, TaskState.FAILED, task.kind, "internal error")
            finally:
                self.frontier.task_done()

    def _resume_candidate(self, task: CrawlTask) -> Optional[str]:
        # documents are always fetched again: their links drive discovery
        if task.kind in DOCUMENT_KINDS:
            return None
        return self.local_path(task.key, task.kind)

    def process(self, task: CrawlTask) -> None:
        claim = task.claim or self.cache.acquire(
            task.key, task.kind, self._resume_candidate(task)
        )
        if not claim.owned:
            if claim.entry.state is EntryState.COMPLETE:
                reason = "already downloaded"
            else:
                reason = "download owned by another task"
            log.debug("skip %s: %s", task.url, reason)
            self._finish(task, TaskState.SKIPPED, task.kind, reason)
            return
        handed_off = False
        try:
            handed_off = self._process_owned(task, claim)
        finally:
            if not handed_off and not claim.entry.finished:
                self.cache.fail(claim, "aborted")

    def _fetch(self, task: CrawlTask) -> FetchResult:
        delay = task.not_before - time.monotonic()
        if delay > 0:
            self._cancel.wait(delay)
        self._set_state(task, TaskState.FETCHING)
        with self._lock:
            self._active_fetches += 1
            self.peak_fetches = max(self.peak_fetches, self._active_fetches)
        try:
            return self.fetcher.fetch(task.url)
        finally:
            with self._lock:
                self._active_fetches -= 1

    def _process_owned(self, task: CrawlTask, claim: Claim) -> bool:
        """Fetch and materialize one owned resource.

        Returns True when the claim was handed to a retry task.
        """
        s = self.settings
        if self._cancel.is_set():
            self.cache.fail(claim, "cancelled")
            self._finish(task, TaskState.SKIPPED, task.kind, "cancelled")
            return False
        try:
            result = self._fetch(task)
        except RobotsDisallowed as e:
            log.info("skip %s: %s", task.url, e.reason)
            self.cache.fail(claim, e.reason)
            self._finish(task, TaskState.SKIPPED, task.kind, e.reason)
            return False
        except FetchError as e:
            if e.retryable and task.attempt < s.max_retries and not self._cancel.is_set():
                retry = task.retry(claim, s.retry_backoff)
                if self.frontier.push(retry):
                    log.info(
                        "retrying %s (%d/%d): %s",
                        task.url,
                        retry.attempt,
                        s.max_retries,
                        e,
                    )
                    return True
            log.warning("failed %s: %s", task.url, e)
            self.cache.fail(claim, e.reason)
            self._finish(task, TaskState.FAILED, task.kind, e.reason)
            if task.depth == 0:
                self._seed_error = e
            return False

        kind = classify(task.url, result.content_type, task.kind, result.content)
        if kind in DOCUMENT_KINDS:
            self._process_document(task, claim, result, kind)
        else:
            self._process_asset(task, claim, result, kind)
        return False

    def _persist(
        self, task: CrawlTask, claim: Claim, kind: ResourceKind, path: str, data: bytes
    ) -> bool:
        try:
            atomic_write_bytes(self.root / path, data)
        except WriteFailure as e:
            log.error("%s", e)
            self.cache.fail(claim, "write failed")
            self._finish(task, TaskState.FAILED, kind, "write failed")
            return False
        self.cache.complete(claim, path)
        self._finish(task, TaskState.PERSISTED, kind)
        log.info("saved %s -> %s", task.url, path)
        return True

    def _register_alias(self, final_url: str, kind: ResourceKind, path: str) -> None:
        """Let a redirect target resolve to the file saved for the request."""
        try:
            final_key = canonicalize(final_url)
        except InvalidReference:
            return
        self._mark_visited(final_key)
        alias = self.cache.acquire(final_key, kind)
        if alias.owned:
            self.cache.complete(alias, path)

    def _skip_filtered(self, task: CrawlTask, claim: Claim, kind: ResourceKind) -> None:
        reason = "filtered by resource type"
        self.cache.fail(claim, reason)
        self._finish(task, TaskState.SKIPPED, kind, reason)

    def _process_asset(
        self, task: CrawlTask, claim: Claim, result: FetchResult, kind: ResourceKind
    ) -> None:
        s = self.settings
        if not s.allows(kind):
            self._skip_filtered(task, claim, kind)
            return
        data = result.content
        path = self.local_path(task.key, kind, convert_to_webp=False)
        webp_path = None
        if kind is ResourceKind.IMAGE and s.convert_to_webp:
            webp_path = self.local_path(task.key, kind, convert_to_webp=True)
        # only paths that can be renamed to .webp are converted
        if webp_path is not None and webp_path != path:
            conv = convert(data, quality=s.webp_quality)
            if conv.converted:
                self.report.add_conversion(
                    ConversionRecord(
                        original_path=path,
                        converted_path=webp_path,
                        output_format=conv.output_format,
                        has_alpha=conv.has_alpha,
                    )
                )
                data, path = conv.data, webp_path
        if self._persist(task, claim, kind, path, data):
            if result.final_url != task.url:
                self._register_alias(result.final_url, kind, path)

    def _process_document(
        self, task: CrawlTask, claim: Claim, result: FetchResult, kind: ResourceKind
    ) -> None:
        is_html = kind is ResourceKind.HTML
        text, encoding = decode_document(result.content, result.content_type, is_html)
        self._set_state(task, TaskState.EXTRACTING)
        refs = extract(text, kind, result.final_url)
        for ref in refs:
            try:
                url = ref.resolve()
            except InvalidReference as e:
                log.debug("ignoring reference in %s: %s", task.url, e)
                continue
            self.admit(url, ref.kind, task)

        if not self.settings.allows(kind):
            # traversed for discovery, never written
            self._skip_filtered(task, claim, kind)
            return

        path = self.local_path(task.key, kind)
        self._set_state(task, TaskState.REWRITING)
        rewritten = rewrite(text, refs, path, self.cache.lookup)
        if not self._persist(
            task, claim, kind, path, encode_document(rewritten, encoding, is_html)
        ):
            return
        with self._lock:
            self._documents[task.key] = SavedDocument(
                key=task.key,
                local_path=path,
                kind=kind,
                text=text,
                encoding=encoding,
                references=refs,
            )
        if result.final_url != task.url:
            self._register_alias(result.final_url, kind, path)

    # ---- lifecycle ----

    def cancel(self) -> None:
        """Stop admitting work; in-flight tasks finish, queued ones are dropped."""
        if self._cancel.is_set():
            return
        self._cancel.set()
        self.report.cancelled = True
        drained = self.frontier.close()
        for task in drained:
            if task.claim is not None and not task.claim.entry.finished:
                self.cache.fail(task.claim, "cancelled")
            self._finish(task, TaskState.SKIPPED, task.kind, "cancelled")
        log.warning("crawl cancelled, %d queued task(s) dropped", len(drained))

    def run(self) -> CrawlReport:
        s = self.settings
        try:
            check_writable(self.root)
        except WriteFailure as e:
            raise ConfigurationError(str(e)) from e

        self.seed()
        log.info(
            "mirroring %s into %s (depth=%s, workers=%d)",
            s.seed_url,
            self.root,
            "unlimited" if s.max_depth is None else s.max_depth,
            s.max_concurrent,
        )
        interrupted = False
        with ThreadPoolExecutor(
            max_workers=s.max_concurrent, thread_name_prefix="mirror"
        ) as pool:
            futures = [pool.submit(self._worker) for _ in range(s.max_concurrent)]
            try:
                _, pending = wait(futures, timeout=s.crawl_timeout)
                if pending:
                    log.warning("crawl timeout of %ss reached", s.crawl_timeout)
                    self.cancel()
                    wait(pending)
            except KeyboardInterrupt:
                interrupted = True
                self.cancel()
                wait(futures)
        self.fetcher.close()
        self.finalize()
        if interrupted:
            raise KeyboardInterrupt
        if self._seed_error is not None:
            raise ConfigurationError(
                f"could not fetch seed URL {s.seed_url}: {self._seed_error}"
            )
        return self.report

    def finalize(self) -> None:
        """Re-render saved documents against the final cache, then write the manifest.

        References still pending during the first pass now point at their
        local file, or at the live URL when they never materialized.
        """
        with self._lock:
            documents = list(self._documents.values())
        for doc in documents:
            rewritten = rewrite(doc.text, doc.references, doc.local_path, self.cache.lookup)
            data = encode_document(rewritten, doc.encoding, doc.kind is ResourceKind.HTML)
            try:
                atomic_write_bytes(self.root / doc.local_path, data)
            except WriteFailure as e:
                log.error("final rewrite of %s failed: %s", doc.local_path, e)

        pages = sorted(d.local_path for d in documents if d.kind is ResourceKind.HTML)
        assets = sorted(
            {
                e.local_path
                for e in self.cache.entries()
                if e.state is EntryState.COMPLETE
                and e.local_path
                and e.local_path not in pages
            }
        )
        self.report.pages = pages
        self.report.assets = assets
        summary = self.report.summary()
        self.report.manifest_path = write_manifest(
            self.root,
            self.settings.seed_url,
            pages=pages,
            assets=assets,
            conversions=[dataclasses.asdict(c) for c in self.report.conversions],
            summary=summary,
        )
        for kind, counts in summary.items():
            log.info(
                "%-6s fetched=%d skipped=%d failed=%d",
                kind,
                counts["fetched"],
                counts["skipped"],
                counts["failed"],
            )
