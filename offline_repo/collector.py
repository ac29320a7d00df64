import logging
import re
from typing import List, NamedTuple, Tuple

from .resolver import UpstreamIndex

logger = logging.getLogger(__name__)

# Lines apt-rdepends prints that are not package names: progress chatter and
# relationship kinds we never mirror.
IGNORED_LINE_RE = re.compile(
    r'^(Reading|Building|Build-Depends|Suggests|Recommends|Conflicts|Breaks|PreDepends'
    r'|Enhances|Replaces|Provides)'
)


class DependencyRecord(NamedTuple):
    """Everything `seed` mandatorily depends on, transitively, in listing order."""
    seed: str
    names: Tuple[str, ...]


def parse_rdepends_listing(listing: str) -> List[str]:
    """
    Keep only the top-level package lines of an apt-rdepends listing.

        curl                              <- kept
          Depends: libcurl4 (= 7.88)      <- indented relationship line, dropped
        libcurl4                          <- kept
        Reading package lists... Done     <- chatter, dropped

    Order of first appearance is preserved; duplicates are dropped.
    """
    names: List[str] = []
    seen = set()
    for line in listing.splitlines():
        if not line.strip() or line[0] in (' ', '\t'):
            continue
        if IGNORED_LINE_RE.match(line):
            continue
        name = line.strip()
        if name not in seen:
            seen.add(name)
            names.append(name)
    return names


def collect_closure(index: UpstreamIndex, seed: str) -> DependencyRecord:
    """Never raises for per-seed problems: an unknown seed or a failing tool
    gives an empty record and a warning, so sibling collections carry on."""
    try:
        listing = index.rdepends_listing(seed)
    except (LookupError, RuntimeError, ValueError) as e:
        logger.warning("Could not collect dependencies for %s: %s", seed, e)
        return DependencyRecord(seed=seed, names=())

    names = tuple(parse_rdepends_listing(listing))
    logger.info("Collected %d names for %s", len(names), seed)
    return DependencyRecord(seed=seed, names=names)
