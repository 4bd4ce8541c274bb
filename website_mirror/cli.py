import argparse
import logging
import sys
from typing import Iterable, List, Optional, Union

from .errors import ConfigurationError
from .kinds import parse_kind_list
from .scheduler import CrawlReport, Scheduler
from .settings import DEFAULT_USER_AGENT, Settings, load_config_file

CONFIG_GROUPS = ("general", "crawl", "http", "images")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="website-mirror",
        description="Download a website for offline browsing.",
        add_help=True,
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("url", help="http(s) URL to start from")
    p.add_argument(
        "-o",
        "--output-dir",
        default="./mirrored_site",
        help="output directory (default: ./mirrored_site)",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # crawl
    p.add_argument(
        "-d",
        "--max-depth",
        type=int,
        default=3,
        help=(
            "max link depth; 0 saves only the start page, use --full-mirror for "
            "no limit. Assets of a page at the limit are not downloaded"
        ),
    )
    p.add_argument(
        "-c", "--max-concurrent", type=int, default=10, help="concurrent downloads"
    )
    p.add_argument(
        "-r", "--ignore-robots", action="store_true", help="do not read robots.txt"
    )
    p.add_argument(
        "-e",
        "--download-external",
        action="store_true",
        help="also download resources hosted on other domains",
    )
    p.add_argument(
        "--only-resources",
        type=str,
        default=None,
        help="comma separated types to save: html,css,js,images,fonts,pdf,video,other",
    )
    p.add_argument(
        "--crawl-timeout",
        type=float,
        default=None,
        help="stop the whole crawl after this many seconds",
    )
    p.add_argument(
        "--full-mirror",
        action="store_true",
        help="unlimited depth, 100 workers, ignore robots.txt, external resources",
    )

    # http
    p.add_argument("--user-agent", type=str, default=DEFAULT_USER_AGENT)
    p.add_argument(
        "--timeout", type=float, default=30.0, help="request timeout seconds"
    )
    p.add_argument(
        "--max-retries", type=int, default=2, help="retries after network errors"
    )
    p.add_argument(
        "--max-bytes",
        type=int,
        default=50_000_000,
        help="max bytes per file (at least 1024)",
    )
    p.add_argument(
        "--no-follow-redirects", action="store_true", help="treat redirects as errors"
    )

    # images
    p.add_argument(
        "--convert-to-webp",
        action="store_true",
        help="convert JPEG/PNG images to WebP",
    )
    p.add_argument("--webp-quality", type=int, default=80, help="WebP quality 1-100")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
            for g in CONFIG_GROUPS:
                if isinstance(cfg.get(g), dict):
                    flat.update(cfg[g])
            parser.set_defaults(**{k.replace("-", "_"): v for k, v in flat.items()})
    return parser.parse_args(argv)


def _kind_names(value: Union[None, str, Iterable[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def settings_from_args(args: argparse.Namespace) -> Settings:
    only = None
    names = _kind_names(args.only_resources)
    if names is not None:
        try:
            only = parse_kind_list(names)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    settings = Settings(
        seed_url=args.url,
        output_dir=args.output_dir,
        max_depth=args.max_depth,
        max_concurrent=args.max_concurrent,
        ignore_robots=args.ignore_robots,
        download_external=args.download_external,
        only_resources=only,
        crawl_timeout=args.crawl_timeout,
        user_agent=args.user_agent,
        follow_redirects=not args.no_follow_redirects,
        timeout=args.timeout,
        max_retries=args.max_retries,
        max_bytes=args.max_bytes,
        convert_to_webp=args.convert_to_webp,
        webp_quality=args.webp_quality,
    )
    if args.full_mirror:
        settings.full_mirror()
    return settings.validate()


def print_report(report: CrawlReport, settings: Settings) -> None:
    print("Mirroring complete" if not report.cancelled else "Mirroring stopped early")
    print(f"Pages saved: {len(report.pages)}")
    print(f"Files saved: {report.total_fetched}")
    if report.total_failed:
        print(f"Failed: {report.total_failed}")
    if report.conversions:
        print(f"Converted to WebP: {len(report.conversions)}")
    print(f"Root: {settings.output_dir}")


def main(argv: Optional[List[str]] = None) -> None:
    try:
        args = parse_args(argv)
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(levelname)s: %(message)s",
        )
        settings = settings_from_args(args)
        report = Scheduler(settings).run()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        logging.warning("Interrupted.")
        sys.exit(130)
    print_report(report, settings)


if __name__ == "__main__":
    main()
