import argparse
import logging
import sys
from typing import List, Optional

from .apt_cache_index import AptCacheIndex
from .config import BACKENDS, PipelineConfig, build_config, load_config
from .fetcher import AptGetDownloader, HttpDownloader
from .indexer import IndexFailure
from .logging_utils import configure_logging
from .package_index import PackagesIndex
from .pipeline import format_summary, run_pipeline

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _split_urls(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [u.strip() for u in value.split(',') if u.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="offline-repo-build",
        description="Resolve, download and index the packages for an offline installer repository.",
    )
    parser.add_argument('--config', type=str, help='JSON config file; command-line flags override it.')
    parser.add_argument('--backend', choices=BACKENDS, default=None,
                        help="'packages': Packages lists in --repo-dir + HTTP downloads. "
                             "'apt': host apt-cache / apt-rdepends / apt-get download.")
    parser.add_argument('--repo-dir', type=str, default=None,
                        help='Directory filled by offline-repo-update (packages backend).')
    parser.add_argument('--base-url', type=str, default=None,
                        help='Comma-separated archive base URLs, tried in order for every .deb.')
    parser.add_argument('--packages', nargs='+', default=None,
                        help='Seed packages; their full dependency closure is downloaded.')
    parser.add_argument('--extra', nargs='+', default=None,
                        help='Packages downloaded on their own, without dependencies.')
    parser.add_argument('--task', dest='tasks', action='append', default=None,
                        help='tasksel task whose packages become seeds. Repeatable.')
    parser.add_argument('--cache-dir', type=str, default=None, help='Where .deb files are downloaded.')
    parser.add_argument('--output-dir', type=str, default=None, help='Repository directory to index.')
    parser.add_argument('--workers', type=int, default=None, help='Parallel dependency queries.')
    parser.add_argument('--fetch-workers', type=int, default=None, help='Parallel downloads.')
    parser.add_argument('--timeout', type=float, default=None,
                        help='Seconds each parallel stage may take before stragglers count as failed.')
    parser.add_argument('--log-file', type=str, default=None, help='Also write the log here.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging.')
    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return build_config(
        load_config(args.config),
        {
            "backend": args.backend,
            "repo_dir": args.repo_dir,
            "base_urls": _split_urls(args.base_url),
            "seeds": args.packages,
            "extra": args.extra,
            "tasks": args.tasks,
            "cache_dir": args.cache_dir,
            "output_dir": args.output_dir,
            "workers": args.workers,
            "fetch_workers": args.fetch_workers,
            "timeout": args.timeout,
            "log_file": args.log_file,
        },
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        configure_logging(logging.DEBUG if args.verbose else logging.INFO, config.log_file)

        if config.backend == "packages":
            index = PackagesIndex.load(config.repo_dir)
            downloader = HttpDownloader(index, config.base_urls)
        else:
            index = AptCacheIndex()
            downloader = AptGetDownloader()
    except (RuntimeError, OSError) as e:
        print(f"CRITICAL ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG

    print(f"Seeds: {' '.join(config.seeds)}")
    try:
        result = run_pipeline(config, index, downloader)
    except IndexFailure as e:
        print(f"CRITICAL ERROR while indexing repository: {e}", file=sys.stderr)
        return EXIT_FAILED
    except RuntimeError as e:
        print(f"CRITICAL ERROR: {e}", file=sys.stderr)
        return EXIT_FAILED

    print(format_summary(result))
    if not result.fetched:
        print("No package could be downloaded; the offline repository is useless.", file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
