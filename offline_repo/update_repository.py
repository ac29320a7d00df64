"""
Refresh the Packages lists the 'packages' backend resolves against.

For every suite/component this downloads
    <base-url>/<suite>/<component>/<platform>/Packages.gz   (or .xz on 404)
and stores it decompressed as
    <repo-dir>/<host>-<suite>-<component>-<platform>.txt
"""

import argparse
import gzip
import logging
import lzma
import os
import sys
from typing import List, NamedTuple, Optional
from urllib.parse import urlparse

import requests

from .logging_utils import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class Source(NamedTuple):
    """One archive to mirror lists from: <base_url>/<suite>/<component>/<platform>."""
    base_url: str
    suites: List[str]
    components: List[str]


DEBIAN_SOURCE = Source(
    'http://deb.debian.org/debian/dists',
    ['bookworm', 'bookworm-updates'],
    ['main', 'contrib', 'non-free-firmware'],
)
PROXMOX_SOURCE = Source(
    'http://download.proxmox.com/debian/pve/dists',
    ['bookworm'],
    ['pve-no-subscription'],
)
DEFAULT_SOURCES = [DEBIAN_SOURCE, PROXMOX_SOURCE]


def list_file_name(base_url: str, suite: str, component: str, platform: str) -> str:
    host = urlparse(base_url).netloc.replace('.', '-').replace(':', '-')
    return f"{host}-{suite}-{component}-{platform}.txt"


def _get(session: requests.Session, url: str, timeout: float) -> Optional[bytes]:
    """Body of `url`, or None on 404. Other HTTP/network errors raise."""
    logger.info("Downloading: %s", url)
    response = session.get(url, timeout=timeout)
    if response.status_code == 404:
        return None
    response.raise_for_status()
    return response.content


def download_packages_list(
    session: requests.Session,
    url: str,
    output_path: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> bool:
    """
    Fetch one compressed Packages file and write it decompressed to output_path.

    Returns False if neither the .gz nor the .xz variant exists.
    Raises RuntimeError on any other download or decompression failure.
    """
    try:
        body = _get(session, url, timeout)
        if body is None and url.endswith('.gz'):
            url = url[:-3] + '.xz'
            logger.info("Trying alternative format: %s", url)
            body = _get(session, url, timeout)
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Failed to download {url}: {e}")

    if body is None:
        logger.warning("Not found (404): %s. Skipping.", url)
        return False

    try:
        if url.endswith('.xz'):
            text = lzma.decompress(body)
        else:
            text = gzip.decompress(body)
    except (OSError, lzma.LZMAError, EOFError) as e:
        raise RuntimeError(f"Failed to extract {url}: {e}")

    with open(output_path, 'wb') as f:
        f.write(text)
    logger.info("Extracted and saved to: %s", output_path)
    return True


def update_repository(
    repo_dir: str,
    base_url: str,
    suites: List[str],
    components: List[str],
    platform: str,
    session: Optional[requests.Session] = None,
) -> List[str]:
    """Returns the list files written. A failing suite/component is logged and skipped."""
    os.makedirs(repo_dir, exist_ok=True)
    session = session or requests.Session()

    written = []
    for suite in suites:
        for component in components:
            url = f"{base_url.rstrip('/')}/{suite}/{component}/{platform}/Packages.gz"
            output_path = os.path.join(repo_dir, list_file_name(base_url, suite, component, platform))
            try:
                if download_packages_list(session, url, output_path):
                    written.append(output_path)
            except RuntimeError as e:
                logger.error("Error processing %s/%s: %s", suite, component, e)
    return written


def update_sources(
    repo_dir: str,
    sources: List[Source],
    platform: str,
    session: Optional[requests.Session] = None,
) -> List[str]:
    session = session or requests.Session()
    written = []
    for source in sources:
        written.extend(update_repository(
            repo_dir, source.base_url, source.suites, source.components, platform, session=session,
        ))
    return written


def sources_from_args(args: argparse.Namespace) -> List[Source]:
    """No archive options given: Debian plus Proxmox. Otherwise one archive, Debian defaults filling the gaps."""
    if args.base_url is None and args.suites is None and args.components is None:
        return list(DEFAULT_SOURCES)
    return [Source(
        args.base_url or DEBIAN_SOURCE.base_url,
        args.suites or DEBIAN_SOURCE.suites,
        args.components or DEBIAN_SOURCE.components,
    )]


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="offline-repo-update",
        description="Download and prepare Debian package lists for the dependency resolver.\n"
                    "Without --base-url/--suites/--components both the Debian archive\n"
                    "(bookworm, bookworm-updates) and the Proxmox archive\n"
                    "(bookworm pve-no-subscription) are fetched.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument('--base-url', type=str, default=None,
                        help='The base URL of the distribution archive, up to and including /dists.')
    parser.add_argument('--suites', nargs='+', default=None,
                        help='Suites to fetch (e.g. bookworm bookworm-updates).')
    parser.add_argument('--components', nargs='+', default=None,
                        help='Repository components (e.g. main contrib).')
    parser.add_argument('--platform', type=str, default='binary-amd64',
                        help='The target architecture platform.')
    parser.add_argument('--repo-dir', type=str, default='./repository',
                        help='Where the decompressed lists are stored.')
    args = parser.parse_args(argv)

    configure_logging()
    written = update_sources(args.repo_dir, sources_from_args(args), args.platform)
    print(f"\nRepository update finished: {len(written)} list(s) in {args.repo_dir}.")
    return 0 if written else 1


if __name__ == "__main__":
    sys.exit(main())
