import io
import os
import tarfile
import time

import pytest
import requests

from offline_repo.fetcher import FetchFailure
from offline_repo.package_index import PackagesIndex, parse_stanzas, records_from_stanzas


# ── .deb fixtures ────────────────────────────────────────────

def _ar_member(name, data):
    header = (
        name.encode().ljust(16)
        + b"0".ljust(12)
        + b"0".ljust(6)
        + b"0".ljust(6)
        + b"100644".ljust(8)
        + str(len(data)).encode().ljust(10)
        + b"`\n"
    )
    if len(data) % 2:
        data += b"\n"
    return header + data


def _tar_gz(files):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def make_deb(directory, name, version="1.0", arch="amd64", depends=None):
    """Write a minimal but valid .deb to directory and return its path."""
    control = (
        f"Package: {name}\n"
        f"Version: {version}\n"
        f"Architecture: {arch}\n"
        f"Maintainer: Test <test@example.com>\n"
    )
    if depends:
        control += f"Depends: {depends}\n"
    control += f"Description: {name} test package\n"

    body = (
        b"!<arch>\n"
        + _ar_member("debian-binary", b"2.0\n")
        + _ar_member("control.tar.gz", _tar_gz({"./control": control.encode()}))
        + _ar_member("data.tar.gz", _tar_gz({}))
    )
    path = os.path.join(directory, f"{name}_{version}_{arch}.deb")
    with open(path, "wb") as f:
        f.write(body)
    return path


# ── upstream index fixtures ──────────────────────────────────

SAMPLE_PACKAGES = """\
Package: curl
Version: 7.88.1-10
Architecture: amd64
Depends: libcurl4 (= 7.88.1-10), ca-certificates
Filename: pool/main/c/curl/curl_7.88.1-10_amd64.deb
Task: standard

Package: libcurl4
Version: 7.88.1-10
Architecture: amd64
Filename: pool/main/c/curl/libcurl4_7.88.1-10_amd64.deb

Package: ca-certificates
Version: 20230311
Architecture: all
Filename: pool/main/c/ca-certificates/ca-certificates_20230311_all.deb
Task: standard

Package: a
Version: 1.0
Architecture: amd64
Provides: x
Filename: pool/main/a/a/a_1.0_amd64.deb

Package: b
Version: 2.0
Architecture: amd64
Provides: x (= 2.0)
Filename: pool/main/b/b/b_2.0_amd64.deb

Package: mta-user
Version: 1.0
Architecture: amd64
Depends: mail-transport-agent
Filename: pool/main/m/mta-user/mta-user_1.0_amd64.deb

Package: postfix
Version: 3.7.10-0
Architecture: amd64
Provides: mail-transport-agent
Filename: pool/main/p/postfix/postfix_3.7.10-0_amd64.deb
"""


def packages_index(text=SAMPLE_PACKAGES, target_arch="amd64"):
    records = records_from_stanzas(parse_stanzas(text.splitlines()), source_hint="test")
    return PackagesIndex(records, target_arch)


@pytest.fixture
def index():
    return packages_index()


@pytest.fixture(autouse=True)
def no_root_log_handlers(monkeypatch):
    # Handlers installed by an entry point would outlive the capture streams of the test that ran it.
    monkeypatch.setattr("offline_repo.cli.configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr("offline_repo.update_repository.configure_logging", lambda *args, **kwargs: None)


class DelayedIndex:
    """Wraps an index and sleeps before answering listing queries for chosen names."""

    def __init__(self, inner, delays):
        self.inner = inner
        self.delays = delays

    def has_package(self, name):
        return self.inner.has_package(name)

    def reverse_provides(self, name):
        return self.inner.reverse_provides(name)

    def rdepends_listing(self, name):
        time.sleep(self.delays.get(name, 0))
        return self.inner.rdepends_listing(name)

    def task_packages(self, task):
        return self.inner.task_packages(task)


# ── download fakes ───────────────────────────────────────────

class FakeDownloader:
    """Builds a .deb for every name except the ones listed in `failing`."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def download(self, name, destination):
        self.calls.append(name)
        if name in self.failing:
            raise FetchFailure(f"404 Not Found: {name}")
        return make_deb(destination, name)


class FakeResponse:
    def __init__(self, url, status_code=200, content=b""):
        self.url = url
        self.status_code = status_code
        self.content = content

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} for {self.url}", response=self)

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]


class FakeSession:
    """Serves canned bodies by URL; anything else is a 404."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requested = []

    def get(self, url, stream=False, timeout=None):
        self.requested.append(url)
        body = self.routes.get(url)
        if isinstance(body, Exception):
            raise body
        if body is None:
            return FakeResponse(url, status_code=404)
        return FakeResponse(url, content=body)
