"""
Best-effort batch download of resolved packages into one directory.

Each package gets exactly one attempt. A failure is logged, recorded as
Failed(reason) and the batch carries on; the caller decides afterwards
whether the mirror is complete enough.

The destination directory must not be shared by two concurrent fetch_all()
runs. Inside one run every package writes its own file, so workers never
touch the same path.
"""

import glob
import logging
import os
import shutil
from typing import Dict, Iterable, List, NamedTuple, Optional, Protocol, Sequence, Union

import requests

from .command import run_cmd
from .package_index import PackagesIndex
from .pool import fan_out

logger = logging.getLogger(__name__)

DEFAULT_FETCH_WORKERS = 4
DEFAULT_HTTP_TIMEOUT = 60.0
CHUNK_SIZE = 1024 * 64


class FetchFailure(RuntimeError):
    pass


class Downloaded(NamedTuple):
    path: str


class Failed(NamedTuple):
    reason: str


FetchOutcome = Union[Downloaded, Failed]


class Downloader(Protocol):
    def download(self, name: str, destination: str) -> str:
        """Place the .deb for `name` in `destination` and return its path.

        Raises FetchFailure if the package could not be downloaded.
        """
        ...


class HttpDownloader:
    """
    Download .deb files straight from the archive using the `Filename:` path
    recorded in the Packages index, e.g.
        pool/main/c/curl/curl_7.88.1-10_amd64.deb

    Base URLs are tried in order; the first one that serves the file wins.
    """

    def __init__(
        self,
        index: PackagesIndex,
        base_urls: Sequence[str],
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        if not base_urls:
            raise RuntimeError("At least one base URL is required to download .deb files.")
        self.index = index
        self.base_urls = list(base_urls)
        self.session = session or requests.Session()
        self.timeout = timeout

    def download(self, name: str, destination: str) -> str:
        try:
            relative_path = self.index.download_path(name)
        except ValueError as e:
            raise FetchFailure(f"Bad index record for {name}: {e}")
        if not relative_path:
            raise FetchFailure(f"{name} is not a concrete package in the index")

        file_name = os.path.basename(relative_path)
        file_path = os.path.join(destination, file_name)
        if os.path.isfile(file_path):
            logger.info("Exists: %s is already downloaded", file_name)
            return file_path

        errors: List[str] = []
        for base in self.base_urls:
            url = f"{base.rstrip('/')}/{relative_path.lstrip('/')}"
            logger.debug("Downloading %s from %s", file_name, url)
            try:
                self._stream_to(url, file_path)
                return file_path
            except requests.exceptions.RequestException as e:
                errors.append(f"{url}: {e}")

        raise FetchFailure(f"{file_name} not found at any base URL:\n" + "\n".join(errors))

    def _stream_to(self, url: str, file_path: str) -> None:
        # RequestException is an OSError; it has to reach the mirror loop as is.
        part_path = file_path + ".part"
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(part_path, 'wb') as outf:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        outf.write(chunk)
            os.replace(part_path, file_path)
        except requests.exceptions.RequestException:
            raise
        except OSError as e:
            raise FetchFailure(f"Could not write {file_path}: {e}")
        finally:
            if os.path.exists(part_path):
                os.remove(part_path)


class AptGetDownloader:
    """`apt-get download <name>` run inside the destination directory."""

    def __init__(self, command_timeout: Optional[float] = DEFAULT_HTTP_TIMEOUT * 5):
        self.command_timeout = command_timeout

    @staticmethod
    def _existing(name: str, destination: str) -> List[str]:
        return sorted(glob.glob(os.path.join(glob.escape(destination), f"{glob.escape(name)}_*.deb")))

    def download(self, name: str, destination: str) -> str:
        existing = self._existing(name, destination)
        if existing:
            logger.info("Exists: %s is already downloaded", os.path.basename(existing[-1]))
            return existing[-1]

        try:
            run_cmd(["apt-get", "download", name], cwd=destination, timeout=self.command_timeout)
        except RuntimeError as e:
            raise FetchFailure(str(e))

        existing = self._existing(name, destination)
        if not existing:
            raise FetchFailure(f"apt-get download {name} succeeded but left no {name}_*.deb behind")
        return existing[-1]


def fetch_all(
    names: Iterable[str],
    destination: str,
    downloader: Downloader,
    *,
    max_workers: int = DEFAULT_FETCH_WORKERS,
    timeout: Optional[float] = None,
) -> Dict[str, FetchOutcome]:
    try:
        os.makedirs(destination, exist_ok=True)
    except OSError as e:
        raise RuntimeError(f"Cannot create download directory {destination}: {e}")

    def _fetch_one(name: str) -> FetchOutcome:
        try:
            path = downloader.download(name, destination)
        except FetchFailure as e:
            logger.warning("Failed to download %s: %s", name, e)
            return Failed(str(e))
        except Exception as e:
            logger.exception("Unexpected error while downloading %s", name)
            return Failed(f"{type(e).__name__}: {e}")
        logger.info("Downloaded %s -> %s", name, os.path.basename(path))
        return Downloaded(path)

    wanted = sorted(set(names))
    outcomes: Dict[str, FetchOutcome] = fan_out(
        _fetch_one, wanted, max_workers=max_workers, timeout=timeout, stage="Download",
    )
    for name in wanted:
        if name not in outcomes:
            outcomes[name] = Failed(f"timed out after {timeout}s")
    return outcomes


def stage_artifacts(cache_dir: str, output_dir: str) -> List[str]:
    """Copy every *.deb from a package cache into the repository directory."""
    if os.path.abspath(cache_dir) == os.path.abspath(output_dir):
        return []

    os.makedirs(output_dir, exist_ok=True)
    copied = []
    for src in sorted(glob.glob(os.path.join(glob.escape(cache_dir), "*.deb"))):
        dst = os.path.join(output_dir, os.path.basename(src))
        shutil.copy2(src, dst)
        copied.append(dst)
    logger.info("Copied %d package(s) from %s to %s", len(copied), cache_dir, output_dir)
    return copied
