import enum
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import CacheStateError
from .kinds import ResourceKind

log = logging.getLogger(__name__)


class EntryState(enum.Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = (EntryState.COMPLETE, EntryState.FAILED)


@dataclass
class CacheEntry:
    url: str
    kind: ResourceKind
    state: EntryState = EntryState.PENDING
    local_path: Optional[str] = None
    reason: Optional[str] = None
    history: List[EntryState] = field(default_factory=list)
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    def __post_init__(self) -> None:
        self.history.append(self.state)

    def _move(self, state: EntryState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def wait(self, timeout: Optional[float] = None) -> Optional[str]:
        """Block until the owner publishes a result; returns the path or None."""
        self._done.wait(timeout)
        return self.local_path if self.state is EntryState.COMPLETE else None


@dataclass(frozen=True)
class Claim:
    entry: CacheEntry
    owned: bool

    @property
    def url(self) -> str:
        return self.entry.url


class DownloadCache:
    """Canonical URL -> local path map with an at-most-once download claim.

    ``acquire`` is the single check-and-claim point: one caller owns the
    download for a URL, every other caller gets a handle on the same entry.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = root
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _on_disk(self, candidate: Optional[str]) -> bool:
        if self.root is None or not candidate:
            return False
        p = self.root / candidate
        try:
            return p.is_file() and p.stat().st_size > 0
        except OSError:
            return False

    def register(self, url: str, kind: ResourceKind) -> CacheEntry:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                entry = CacheEntry(url=url, kind=kind)
                self._entries[url] = entry
            return entry

    def acquire(
        self, url: str, kind: ResourceKind, candidate: Optional[str] = None
    ) -> Claim:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                entry = CacheEntry(url=url, kind=kind)
                self._entries[url] = entry
            if entry.state is not EntryState.PENDING:
                return Claim(entry, owned=False)
            if self._on_disk(candidate):
                entry.local_path = candidate
                entry._move(EntryState.COMPLETE)
                entry._done.set()
                log.debug("already on disk: %s -> %s", url, candidate)
                return Claim(entry, owned=False)
            entry._move(EntryState.DOWNLOADING)
            return Claim(entry, owned=True)

    def _finish(self, claim: Claim, state: EntryState) -> CacheEntry:
        if not claim.owned:
            raise CacheStateError(f"claim on {claim.url} is not the owner")
        entry = claim.entry
        if entry.state is not EntryState.DOWNLOADING:
            raise CacheStateError(
                f"{claim.url}: cannot move from {entry.state.value} to {state.value}"
            )
        entry._move(state)
        return entry

    def complete(self, claim: Claim, local_path: str) -> None:
        with self._lock:
            entry = self._finish(claim, EntryState.COMPLETE)
            entry.local_path = local_path
        entry._done.set()

    def fail(self, claim: Claim, reason: str) -> None:
        with self._lock:
            entry = self._finish(claim, EntryState.FAILED)
            entry.reason = reason
        entry._done.set()

    def lookup(self, url: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None or entry.state is not EntryState.COMPLETE:
                return None
            return entry.local_path

    def get(self, url: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(url)

    def entries(self) -> List[CacheEntry]:
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, url: str) -> bool:
        with self._lock:
            return url in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
