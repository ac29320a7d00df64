import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WORKERS = 8


def fan_out(
    func: Callable[[str], T],
    items: Iterable[str],
    *,
    max_workers: int = DEFAULT_WORKERS,
    timeout: Optional[float] = None,
    stage: str = "task",
) -> Dict[str, T]:
    """Run func(item) for every item on a thread pool and wait for all of them.

    Results are returned keyed by item, so the merge that follows never
    depends on completion order. Items still running when `timeout` expires
    are left out of the result and logged; their threads are abandoned and
    run until func returns, so func must carry its own per-call timeout.
    """
    unique = list(dict.fromkeys(items))
    results: Dict[str, T] = {}
    if not unique:
        return results

    executor = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(unique))))
    try:
        futures = {executor.submit(func, item): item for item in unique}
        done, pending = wait(futures, timeout=timeout)
        for fut in done:
            results[futures[fut]] = fut.result()
        for fut in pending:
            logger.warning("%s for %s did not finish within %ss; skipping it", stage, futures[fut], timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    return results
