from typing import Optional


class MirrorError(Exception):
    """Base class for every error raised by website_mirror."""


class ConfigurationError(MirrorError):
    pass


class InvalidReference(MirrorError, ValueError):
    def __init__(self, reference: str, reason: str):
        super().__init__(f"invalid reference {reference!r}: {reason}")
        self.reference = reference
        self.reason = reason


class FetchError(MirrorError):
    reason = "fetch failed"
    retryable = False

    def __init__(self, url: str, detail: Optional[str] = None):
        super().__init__(f"{self.reason}: {url}" + (f" ({detail})" if detail else ""))
        self.url = url
        self.detail = detail


class RobotsDisallowed(FetchError):
    reason = "disallowed by robots.txt"


class Unreachable(FetchError):
    reason = "unreachable"
    retryable = True


class HttpStatusError(FetchError):
    reason = "http error"

    def __init__(self, url: str, status: int):
        super().__init__(url, f"HTTP {status}")
        self.status = status


class ContentTooLarge(FetchError):
    reason = "content too large"


class ConversionFailure(MirrorError):
    pass


class WriteFailure(MirrorError):
    pass


class CacheStateError(MirrorError, RuntimeError):
    pass
