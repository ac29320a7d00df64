"""
Upstream index backed by the host's own APT metadata cache.

This is the backend to use on a machine whose sources.list already points at
the archives we want to mirror (after `apt-get update`). Every query shells
out to a host tool:

    apt-cache show <name>         -> is it a concrete package?
    apt-cache showpkg <name>      -> "Reverse Provides:" block
    apt-rdepends <name>           -> transitive dependency listing
    tasksel --task-packages <t>   -> members of a tasksel task

Nothing here writes anywhere, so the queries may run from several worker
threads at once.
"""

import logging
from typing import List, Optional

from .command import run_cmd

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 300.0


def show_declares_package(show_output: str, name: str) -> bool:
    """True if `apt-cache show` printed a real 'Package: <name>' stanza."""
    return any(line.strip() == f"Package: {name}" for line in show_output.splitlines())


def parse_reverse_provides(showpkg_output: str) -> List[str]:
    """
    Pull provider names out of `apt-cache showpkg` output:

        Reverse Provides:
        perl-base 5.36.0-7 (= )
        perl 5.36.0-7

    The block runs until the first blank line; the first column is the
    provider's package name.
    """
    providers = set()
    in_block = False
    for line in showpkg_output.splitlines():
        if line.startswith("Reverse Provides:"):
            in_block = True
            continue
        if not in_block:
            continue
        if not line.strip():
            break
        providers.add(line.split()[0])
    return sorted(providers)


class AptCacheIndex:

    def __init__(self, command_timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT):
        self.command_timeout = command_timeout

    def has_package(self, name: str) -> bool:
        r = run_cmd(["apt-cache", "show", name], check=False, timeout=self.command_timeout)
        return r.returncode == 0 and show_declares_package(r.stdout, name)

    def reverse_provides(self, name: str) -> List[str]:
        r = run_cmd(["apt-cache", "showpkg", name], check=False, timeout=self.command_timeout)
        if r.returncode != 0:
            return []
        return parse_reverse_provides(r.stdout)

    def rdepends_listing(self, name: str) -> str:
        r = run_cmd(["apt-rdepends", name], check=False, timeout=self.command_timeout)
        if r.returncode != 0 or not r.stdout.strip():
            raise LookupError(
                f"apt-rdepends could not list {name!r}: {r.stderr.strip() or 'no output'}"
            )
        return r.stdout

    def task_packages(self, task: str) -> List[str]:
        r = run_cmd(["tasksel", "--task-packages", task], timeout=self.command_timeout)
        return sorted({line.strip() for line in r.stdout.splitlines() if line.strip()})
