"""Mirror a website into a local directory for offline browsing."""

from .cache import DownloadCache
from .errors import ConfigurationError, FetchError, MirrorError
from .kinds import ResourceKind
from .scheduler import CrawlReport, Scheduler
from .settings import Settings

__version__ = "1.0.0"

__all__ = [
    "ConfigurationError",
    "CrawlReport",
    "DownloadCache",
    "FetchError",
    "MirrorError",
    "ResourceKind",
    "Scheduler",
    "Settings",
    "mirror",
]


def mirror(settings: Settings) -> CrawlReport:
    """Run one crawl with ``settings`` and return its report."""
    return Scheduler(settings.validate()).run()
