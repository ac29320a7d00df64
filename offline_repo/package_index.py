"""
Structured upstream index built from Debian `Packages` files.

`update_repository.py` stores one decompressed Packages file per
host/suite/component/arch under ./repository, named:
    {host}-{suite}-{component}-binary-{arch}.txt

This module loads those files and answers the queries the pipeline needs:
 - is a name a concrete package?
 - which concrete packages provide a (virtual) name?
 - what is the transitive Depends/Pre-Depends closure of a name?
 - which packages belong to a tasksel task?
 - where does the .deb for a package live in the archive?

The closure query answers in the same text format `apt-rdepends` prints,
so the collector parses a single listing format regardless of which
backend produced it.
"""

import logging
import os
import re
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from debian.debian_support import Version

logger = logging.getLogger(__name__)


PACKAGE_NAME_RE = re.compile(r'^[a-z0-9][a-z0-9+.-]*$')


##############################################################################
# Data structures
##############################################################################

class PackageRecord:
    """
    Represents ONE binary package entry from a Packages index stanza.

    Depends/Pre-Depends are kept raw and parsed on demand by the closure walk.
    """
    __slots__ = (
        "name", "version", "arch", "filename",
        "depends_raw", "pre_depends_raw",
        "provides_map", "tasks", "source_hint",
    )

    def __init__(
        self,
        name: str,
        version: str,
        arch: str,
        filename: str,
        depends_raw: str = "",
        pre_depends_raw: str = "",
        provides_map: Optional[Dict[str, Optional[str]]] = None,
        tasks: Optional[List[str]] = None,
        source_hint: str = "",
    ):
        self.name = name
        self.version = version
        self.arch = arch
        self.filename = filename
        self.depends_raw = depends_raw or ""
        self.pre_depends_raw = pre_depends_raw or ""
        self.provides_map = provides_map or {}
        self.tasks = tasks or []
        self.source_hint = source_hint or ""

    def __repr__(self) -> str:
        return f"PackageRecord({self.name!r}, {self.version!r}, {self.arch!r})"


class DepAtom:
    """
    A single alternative inside a dependency group, e.g.
        "perl:any (>= 5.36) [arm64]"
    parses to name='perl', arch_qual='any', op='>=', ver='5.36', arch_list=['arm64'].
    """
    __slots__ = ("name", "arch_qual", "op", "ver", "arch_list")

    def __init__(self, name: str,
                 arch_qual: Optional[str] = None,
                 op: Optional[str] = None,
                 ver: Optional[str] = None,
                 arch_list: Optional[List[str]] = None):
        self.name = name
        self.arch_qual = arch_qual
        self.op = op
        self.ver = ver
        self.arch_list = arch_list or []

    def describe(self) -> str:
        desc = self.name
        if self.op and self.ver:
            desc += f" ({self.op} {self.ver})"
        return desc

    def applies_to(self, target_arch: str) -> bool:
        """'[arch1 arch2]' restricts the atom to those arches; '[!arch]' excludes one."""
        if not self.arch_list:
            return True
        negated = [a[1:] for a in self.arch_list if a.startswith('!')]
        if negated:
            return target_arch not in negated
        return target_arch in self.arch_list


##############################################################################
# Parsing Packages files
##############################################################################

def parse_stanzas(lines: Iterable[str], source: str = "<memory>") -> List[Dict[str, str]]:
    """
    Split RFC822-style Packages content into a list of {field: value} dicts.

    Stanzas are separated by blank lines; continuation lines start with a
    space or tab and are appended to the previous field.
    """
    stanzas: List[Dict[str, str]] = []
    current: Dict[str, str] = {}
    last_key: Optional[str] = None

    for raw_line in lines:
        line = raw_line.rstrip('\n')
        if not line.strip():
            if current:
                stanzas.append(current)
                current = {}
                last_key = None
            continue

        if line[0] in (' ', '\t'):
            if last_key is None:
                raise RuntimeError(
                    f"Invalid Packages file format: got continuation line "
                    f"but we don't have an active stanza in {source!r}: {line!r}"
                )
            current[last_key] += "\n" + line.strip()
            continue

        if ':' not in line:
            raise RuntimeError(
                f"Invalid Packages file format in {source!r}: "
                f"line without colon: {line!r}"
            )
        key, val = line.split(':', 1)
        last_key = key.strip()
        current[last_key] = val.strip()

    if current:
        stanzas.append(current)
    return stanzas


def parse_provides_field(provides_val: str) -> Dict[str, Optional[str]]:
    """
    "foo (= 1.2), bar, baz:any" -> {"foo": "1.2", "bar": None, "baz": None}

    Tokens that don't look like 'name' or 'name (= version)' are dropped with
    a warning instead of failing the whole index.
    """
    result: Dict[str, Optional[str]] = {}
    if not provides_val:
        return result

    for token in (p.strip() for p in provides_val.split(',')):
        if not token:
            continue
        m = re.match(r'^([a-z0-9][a-z0-9+.-]*)(?::[a-z0-9-]+)?(?:\s*\(=\s*([^)]+)\))?$', token)
        if not m:
            logger.warning("Ignoring unexpected Provides token %r", token)
            continue
        result[m.group(1)] = m.group(2).strip() if m.group(2) else None
    return result


def parse_dep_atom(atom_raw: str) -> Optional[DepAtom]:
    """
    Parse "<name>[:<archqual>] [(<op> <ver>)] [[<archlist>]]".

    Returns None (after logging) for atoms we can't make sense of; a single
    odd atom must not stop the rest of the closure from being collected.
    """
    work = atom_raw.strip()

    arch_list: List[str] = []
    m_archlist = re.search(r'\[([^\]]+)\]', work)
    if m_archlist:
        arch_list = m_archlist.group(1).split()
        work = work[:m_archlist.start()] + work[m_archlist.end():]

    # Build profiles like <!nocheck> never matter for runtime dependencies.
    work = re.sub(r'<[^>]*>', '', work)

    op = ver = None
    m_ver = re.search(r'\(\s*(>=|<=|=|>>|<<)\s*([^)]+)\)', work)
    if m_ver:
        op, ver = m_ver.group(1), m_ver.group(2).strip()
        work = work[:m_ver.start()] + work[m_ver.end():]

    work = work.strip()
    base_name, _sep, arch_qual = work.partition(':')
    base_name = base_name.strip()

    if not PACKAGE_NAME_RE.match(base_name):
        logger.warning("Skipping unparseable dependency atom %r", atom_raw)
        return None

    return DepAtom(
        name=base_name,
        arch_qual=arch_qual.strip() or None,
        op=op,
        ver=ver,
        arch_list=arch_list,
    )


def parse_dep_field(dep_field_val: str) -> List[List[DepAtom]]:
    """
    "a | b, c (>= 1)" -> [[DepAtom(a), DepAtom(b)], [DepAtom(c)]]

    Commas are logical AND, pipes separate alternatives in order of preference.
    """
    results: List[List[DepAtom]] = []
    if not dep_field_val:
        return results

    for comma_grp in dep_field_val.split(','):
        alts = [parse_dep_atom(alt) for alt in comma_grp.split('|') if alt.strip()]
        alts = [a for a in alts if a is not None]
        if alts:
            results.append(alts)
    return results


def extract_target_arch_from_repo_filename(filename: str) -> str:
    """
    Files are named {host}-{suite}-{component}-binary-{arch}.txt. The host may
    contain '-' itself, so match the '-binary-<arch>' tail instead of splitting.
    """
    base = os.path.basename(filename)
    stem = base[:-4] if base.endswith('.txt') else base
    m = re.search(r'(?:^|-)binary-([a-z0-9][a-z0-9+.-]*)$', stem)
    if not m:
        raise RuntimeError(
            f"Cannot parse target arch from repository file name {filename!r}: "
            f"expected the pattern '*-binary-<arch>.txt'."
        )
    return m.group(1)


def records_from_stanzas(stanzas: Iterable[Dict[str, str]], source_hint: str = "") -> List[PackageRecord]:
    records: List[PackageRecord] = []
    for stanza in stanzas:
        name = stanza.get("Package")
        version = stanza.get("Version")
        arch = stanza.get("Architecture")
        filename = stanza.get("Filename")

        if not (name and version and arch and filename):
            raise RuntimeError(
                f"Malformed stanza (source {source_hint or 'unknown'}): "
                f"missing one of required fields Package/Version/Architecture/Filename. "
                f"Stanza keys: {list(stanza.keys())}"
            )

        tasks = [t.strip() for t in stanza.get("Task", "").split(',') if t.strip()]
        records.append(PackageRecord(
            name=name,
            version=version,
            arch=arch,
            filename=filename,
            depends_raw=stanza.get("Depends", ""),
            pre_depends_raw=stanza.get("Pre-Depends", ""),
            provides_map=parse_provides_field(stanza.get("Provides", "")),
            tasks=tasks,
            source_hint=source_hint,
        ))
    return records


##############################################################################
# The index
##############################################################################

class PackagesIndex:
    """
    Read-only lookup tables over a set of PackageRecords for ONE target arch.

    Only records whose Architecture is the target arch or "all" take part in
    lookups. Once constructed nothing mutates the tables, so every query is
    safe to call from several worker threads at once.
    """

    def __init__(self, records: Iterable[PackageRecord], target_arch: str):
        self.target_arch = target_arch
        self.pkgs_by_name: Dict[str, List[PackageRecord]] = {}
        self.provides_index: Dict[str, List[PackageRecord]] = {}

        allowed = {target_arch, "all"}
        for record in records:
            if record.arch not in allowed:
                continue
            self.pkgs_by_name.setdefault(record.name, []).append(record)
            for virt_name in record.provides_map:
                self.provides_index.setdefault(virt_name, []).append(record)

    @classmethod
    def load(cls, repo_dir: str) -> "PackagesIndex":
        """
        Read ALL repo_dir/*.txt files. Every file must be for the same target
        arch; mixing arches in one offline repository is never what we want.
        """
        if not os.path.isdir(repo_dir):
            raise RuntimeError(
                f"Repository directory '{repo_dir}' not found.\n"
                f"Run 'offline-repo-update' to download package lists first."
            )

        text_files = sorted(
            os.path.join(repo_dir, f) for f in os.listdir(repo_dir) if f.endswith('.txt')
        )
        if not text_files:
            raise RuntimeError(
                f"No .txt repository files found in {repo_dir!r}. "
                f"Did offline-repo-update run correctly?"
            )

        detected_arches: Set[str] = set()
        records: List[PackageRecord] = []
        for txt_path in text_files:
            detected_arches.add(extract_target_arch_from_repo_filename(txt_path))
            source_hint = os.path.basename(txt_path)[:-4]
            try:
                with open(txt_path, 'r', encoding='utf-8', errors='replace') as f:
                    stanzas = parse_stanzas(f, source=txt_path)
            except OSError as e:
                raise RuntimeError(f"Error reading repository file {txt_path}: {e}")
            records.extend(records_from_stanzas(stanzas, source_hint=source_hint))

        if len(detected_arches) != 1:
            raise RuntimeError(
                f"Inconsistent target architectures detected across {repo_dir}/*.txt: "
                f"{sorted(detected_arches)!r}. Regenerate the repository directory "
                f"for exactly one arch."
            )

        target_arch = detected_arches.pop()
        index = cls(records, target_arch)
        logger.info(
            "Loaded %d package records for '%s' from %d repository file(s)",
            len(records), target_arch, len(text_files),
        )
        return index

    # -- queries -------------------------------------------------------------

    def best_record(self, name: str) -> Optional[PackageRecord]:
        """Newest record by Debian version ordering; ties broken by source for stable output."""
        candidates = self.pkgs_by_name.get(name)
        if not candidates:
            return None
        return max(candidates, key=lambda pkg: (Version(pkg.version), pkg.source_hint))

    def has_package(self, name: str) -> bool:
        return name in self.pkgs_by_name

    def reverse_provides(self, name: str) -> List[str]:
        return sorted({record.name for record in self.provides_index.get(name, [])})

    def task_packages(self, task: str) -> List[str]:
        members = set()
        for name, records in self.pkgs_by_name.items():
            if any(task in record.tasks for record in records):
                members.add(name)
        return sorted(members)

    def download_path(self, name: str) -> Optional[str]:
        record = self.best_record(name)
        return record.filename if record else None

    def _pick_alternative(self, group: List[DepAtom]) -> Optional[DepAtom]:
        applicable = [atom for atom in group if atom.applies_to(self.target_arch)]
        for atom in applicable:
            if atom.name in self.pkgs_by_name or atom.name in self.provides_index:
                return atom
        return applicable[0] if applicable else None

    def rdepends_listing(self, name: str) -> str:
        """
        Transitive Pre-Depends/Depends closure of `name`, printed the way
        apt-rdepends prints it:

            curl
              Depends: libcurl4 (= 7.88.1-10)
            libcurl4
              Depends: libc6 (>= 2.34)
            libc6

        Virtual names are listed but not expanded; the resolver maps them to
        providers afterwards. Only the first alternative of an 'a | b' group
        that the index knows about is followed.
        """
        if name not in self.pkgs_by_name and name not in self.provides_index:
            raise LookupError(f"Unknown package {name!r} for arch {self.target_arch}")

        lines: List[str] = []
        seen: Set[str] = set()
        queue = deque([name])

        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            lines.append(current)

            record = self.best_record(current)
            if record is None:
                continue

            for kind, raw in (("PreDepends", record.pre_depends_raw), ("Depends", record.depends_raw)):
                for group in parse_dep_field(raw):
                    atom = self._pick_alternative(group)
                    if atom is None:
                        continue
                    lines.append(f"  {kind}: {atom.describe()}")
                    if atom.name not in seen:
                        queue.append(atom.name)

        return "\n".join(lines) + "\n"
