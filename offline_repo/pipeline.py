import logging
from typing import Dict, FrozenSet, List, NamedTuple, Tuple

from .aggregator import aggregate
from .config import PipelineConfig
from .fetcher import Downloaded, Downloader, Failed, FetchOutcome, fetch_all, stage_artifacts
from .indexer import IndexFailure, RepositoryIndex, build_index
from .resolver import UpstreamIndex

logger = logging.getLogger(__name__)


class PipelineResult(NamedTuple):
    requested: Tuple[str, ...]
    resolved: FrozenSet[str]
    outcomes: Dict[str, FetchOutcome]
    repository: RepositoryIndex

    @property
    def fetched(self) -> List[str]:
        return sorted(n for n, o in self.outcomes.items() if isinstance(o, Downloaded))

    @property
    def failed(self) -> List[str]:
        return sorted(n for n, o in self.outcomes.items() if isinstance(o, Failed))


def expand_tasks(index: UpstreamIndex, tasks: List[str]) -> List[str]:
    members: List[str] = []
    for task in tasks:
        try:
            task_members = index.task_packages(task)
        except RuntimeError as e:
            logger.warning("Could not list packages of task %s: %s", task, e)
            continue
        logger.info("Task %s has %d package(s)", task, len(task_members))
        members.extend(task_members)
    return members


def run_pipeline(config: PipelineConfig, index: UpstreamIndex, downloader: Downloader) -> PipelineResult:
    """
    seeds -> collect (parallel) -> merge -> resolve -> fetch -> index.

    Every stage waits for the previous one to finish completely; in particular
    the index is only built once all downloads are done. Only IndexFailure
    (and config/setup errors) propagate out of here.
    """
    seeds = list(dict.fromkeys(list(config.seeds) + expand_tasks(index, config.tasks)))
    requested = tuple(sorted(set(seeds) | set(config.extra)))

    resolved = aggregate(
        index,
        seeds,
        config.extra,
        max_workers=config.workers,
        timeout=config.timeout,
    )

    outcomes = fetch_all(
        resolved,
        config.cache_dir,
        downloader,
        max_workers=config.fetch_workers,
        timeout=config.timeout,
    )

    try:
        stage_artifacts(config.cache_dir, config.output_dir)
    except OSError as e:
        raise IndexFailure(f"Could not copy packages into {config.output_dir}: {e}")
    repository = build_index(config.output_dir)

    return PipelineResult(
        requested=requested,
        resolved=frozenset(resolved),
        outcomes=outcomes,
        repository=repository,
    )


def format_summary(result: PipelineResult) -> str:
    lines = [
        "=== Offline repository summary ===",
        f"Requested: {len(result.requested)}",
        f"Resolved:  {len(result.resolved)}",
        f"Fetched:   {len(result.fetched)}",
        f"Failed:    {len(result.failed)}",
        f"Indexed:   {len(result.repository.entries)} in {result.repository.directory}",
    ]
    if result.failed:
        lines.append("Failed packages: " + " ".join(result.failed))
    return "\n".join(lines)
