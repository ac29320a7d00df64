"""
Write a flat-repository index for a directory of .deb files.

The result is what `dpkg-scanpackages . > Packages && gzip -9c Packages >
Packages.gz` would produce, so the directory works as

    deb [trusted=yes] file:/cdrom/pve ./

for the installer. Entries are sorted by file name and the gzip header
carries no timestamp, so the same .deb files always give byte-identical
Packages and Packages.gz.
"""

import gzip
import hashlib
import logging
import os
import tarfile
from typing import List, NamedTuple, Tuple

from debian.arfile import ArError
from debian.deb822 import Deb822
from debian.debfile import DebError, DebFile

logger = logging.getLogger(__name__)

PACKAGES_FILE = "Packages"
PACKAGES_GZ_FILE = "Packages.gz"


class IndexFailure(RuntimeError):
    pass


class PackageEntry(NamedTuple):
    filename: str
    package: str
    version: str
    architecture: str


class RepositoryIndex(NamedTuple):
    directory: str
    entries: Tuple[PackageEntry, ...]
    packages_path: str
    compressed_path: str
    skipped: Tuple[str, ...] = ()


def _file_digests(path: str) -> Tuple[int, str, str, str]:
    md5, sha1, sha256 = hashlib.md5(), hashlib.sha1(), hashlib.sha256()
    size = 0
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b''):
            size += len(chunk)
            md5.update(chunk)
            sha1.update(chunk)
            sha256.update(chunk)
    return size, md5.hexdigest(), sha1.hexdigest(), sha256.hexdigest()


def scan_package(path: str) -> Deb822:
    """Control stanza of one .deb plus the fields apt needs to fetch it from this directory."""
    deb = DebFile(path)
    try:
        control = deb.debcontrol()
    finally:
        deb.close()

    stanza = Deb822()
    for key in control:
        stanza[key] = control[key]

    size, md5sum, sha1, sha256 = _file_digests(path)
    stanza["Filename"] = f"./{os.path.basename(path)}"
    stanza["Size"] = str(size)
    stanza["MD5sum"] = md5sum
    stanza["SHA1"] = sha1
    stanza["SHA256"] = sha256
    return stanza


def build_index(directory: str) -> RepositoryIndex:
    """
    Regenerate Packages and Packages.gz from every *.deb in `directory`.

    Must only run once all downloads into `directory` are finished.
    Unreadable .deb files are left out with a warning. Failing to write the
    index files raises IndexFailure.
    """
    if not os.path.isdir(directory):
        raise IndexFailure(f"Repository directory {directory} does not exist")

    deb_files = sorted(f for f in os.listdir(directory) if f.endswith('.deb'))

    stanzas: List[Deb822] = []
    entries: List[PackageEntry] = []
    skipped: List[str] = []
    for file_name in deb_files:
        path = os.path.join(directory, file_name)
        try:
            stanza = scan_package(path)
        except (ArError, DebError, tarfile.TarError, OSError, EOFError) as e:
            logger.warning("Skipping unreadable package %s: %s", file_name, e)
            skipped.append(file_name)
            continue
        stanzas.append(stanza)
        entries.append(PackageEntry(
            filename=file_name,
            package=stanza.get("Package", ""),
            version=stanza.get("Version", ""),
            architecture=stanza.get("Architecture", ""),
        ))

    text = "\n".join(stanza.dump() for stanza in stanzas)
    packages_path = os.path.join(directory, PACKAGES_FILE)
    compressed_path = os.path.join(directory, PACKAGES_GZ_FILE)
    try:
        with open(packages_path, 'w', encoding='utf-8') as f:
            f.write(text)
        with open(compressed_path, 'wb') as raw:
            with gzip.GzipFile(filename='', mode='wb', fileobj=raw, compresslevel=9, mtime=0) as gz:
                gz.write(text.encode('utf-8'))
    except OSError as e:
        raise IndexFailure(f"Could not write repository index in {directory}: {e}")

    logger.info("Indexed %d package(s) in %s", len(entries), directory)
    return RepositoryIndex(
        directory=directory,
        entries=tuple(entries),
        packages_path=packages_path,
        compressed_path=compressed_path,
        skipped=tuple(skipped),
    )
