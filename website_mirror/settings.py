from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Union
from urllib.parse import urlsplit

from .errors import ConfigurationError
from .kinds import ResourceKind

DEFAULT_USER_AGENT = "WebsiteMirror/1.0"
MIN_MAX_BYTES = 1024

# -------------------- Settings --------------------


@dataclass
class Settings:
    seed_url: str
    output_dir: Path

    # Crawl
    max_depth: Optional[int] = 3  # None: unlimited
    max_concurrent: int = 10
    ignore_robots: bool = False
    download_external: bool = False
    only_resources: Optional[Set[ResourceKind]] = None
    crawl_timeout: Optional[float] = None

    # HTTP
    user_agent: str = DEFAULT_USER_AGENT
    follow_redirects: bool = True
    timeout: float = 30.0
    max_retries: int = 2
    retry_backoff: float = 0.5
    max_bytes: int = 50_000_000

    # Images
    convert_to_webp: bool = False
    webp_quality: int = 80

    def allows(self, kind: ResourceKind) -> bool:
        return self.only_resources is None or kind in self.only_resources

    def validate(self) -> "Settings":
        parts = urlsplit(self.seed_url or "")
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ConfigurationError(
                f"invalid seed URL {self.seed_url!r}: use http:// or https://"
            )
        if self.max_depth is not None and self.max_depth < 0:
            raise ConfigurationError("max depth must be >= 0")
        if self.max_concurrent < 1:
            raise ConfigurationError("max concurrent must be >= 1")
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be > 0")
        if self.max_retries < 0:
            raise ConfigurationError("max retries must be >= 0")
        if self.max_bytes < MIN_MAX_BYTES:
            raise ConfigurationError(f"max bytes must be >= {MIN_MAX_BYTES}")
        if not 1 <= self.webp_quality <= 100:
            raise ConfigurationError("webp quality must be between 1 and 100")
        if self.only_resources is not None and not self.only_resources:
            raise ConfigurationError("--only-resources needs at least one type")
        self.output_dir = Path(self.output_dir)
        if self.output_dir.exists() and not self.output_dir.is_dir():
            raise ConfigurationError(f"output path is not a directory: {self.output_dir}")
        return self

    def full_mirror(self) -> "Settings":
        self.max_depth = None
        self.max_concurrent = 100
        self.ignore_robots = True
        self.download_external = True
        return self


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if not p.is_file():
        raise ConfigurationError(f"config file not found: {p}")
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            try:
                import tomli as tomllib  # backport
            except ImportError:
                raise ConfigurationError(
                    "TOML config requires Python 3.11+ or 'tomli'"
                ) from None
        with open(p, "rb") as f:
            try:
                return tomllib.load(f) or {}
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(f"invalid TOML in {p}: {e}") from e
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"invalid YAML in {p}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError("Top-level YAML must be a mapping")
            return data
    else:
        raise ConfigurationError("Unsupported config format. Use .toml or .yaml")
