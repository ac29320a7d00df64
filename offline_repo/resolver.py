import logging
from typing import List, Protocol, Set

logger = logging.getLogger(__name__)


class UpstreamIndex(Protocol):
    """Read-only queries against upstream package metadata.

    Implemented by PackagesIndex (parsed Packages files) and AptCacheIndex
    (host apt-cache / apt-rdepends / tasksel).
    """

    def has_package(self, name: str) -> bool: ...

    def reverse_provides(self, name: str) -> List[str]: ...

    def rdepends_listing(self, name: str) -> str: ...

    def task_packages(self, task: str) -> List[str]: ...


def resolve(index: UpstreamIndex, name: str) -> Set[str]:
    """
    Map a possibly-virtual package name to the concrete name(s) to download.

     - concrete name           -> {name}
     - virtual with providers  -> {every provider}
     - nothing known           -> {name}, logged; the fetch for it will most
                                  likely fail and be recorded there.

    Never returns an empty set. An index query that blows up (missing host
    tool, timeout) is treated like "nothing known".
    """
    try:
        if index.has_package(name):
            return {name}
        providers = set(index.reverse_provides(name))
    except RuntimeError as e:
        logger.warning("Could not query index for %s (%s); keeping name as-is", name, e)
        return {name}

    if providers:
        logger.debug("Virtual package %s provided by %s", name, ", ".join(sorted(providers)))
        return providers

    logger.warning("No provider found for %s; keeping name as-is", name)
    return {name}
