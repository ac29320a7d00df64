import logging
from typing import Iterable, Optional, Sequence, Set

from .collector import DependencyRecord, collect_closure
from .pool import DEFAULT_WORKERS, fan_out
from .resolver import UpstreamIndex, resolve

logger = logging.getLogger(__name__)


def merge_closures(seeds: Iterable[str], records: Iterable[DependencyRecord]) -> Set[str]:
    merged = set(seeds)
    for record in records:
        merged.update(record.names)
    return merged


def aggregate(
    index: UpstreamIndex,
    seeds: Sequence[str],
    extra: Sequence[str] = (),
    *,
    max_workers: int = DEFAULT_WORKERS,
    timeout: Optional[float] = None,
) -> Set[str]:
    """
    Full closure of `seeds`, normalized to concrete package names.

    1. collect_closure() for every seed in parallel, barrier join.
    2. union of all records + the seeds + `extra` (names wanted on their own,
       without their dependencies).
    3. resolve() every member in parallel, union the results.
    """
    records = fan_out(
        lambda seed: collect_closure(index, seed),
        seeds,
        max_workers=max_workers,
        timeout=timeout,
        stage="Dependency collection",
    )
    merged = merge_closures(list(seeds) + list(extra), records.values())
    logger.info("Merged %d names from %d seed(s)", len(merged), len(seeds))

    resolved_by_name = fan_out(
        lambda name: resolve(index, name),
        sorted(merged),
        max_workers=max_workers,
        timeout=timeout,
        stage="Virtual package resolution",
    )

    resolved: Set[str] = set()
    for name in merged:
        # A name whose resolution timed out is passed through unchanged.
        resolved |= resolved_by_name.get(name, {name})
    logger.info("Resolved %d concrete package(s)", len(resolved))
    return resolved
