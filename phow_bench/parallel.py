"""
Thread-pool helpers for embarrassingly parallel work.

Two shapes are supported:
- parallel_map: one independent result per item, returned in input order
- parallel_reduce: items are split into contiguous partitions, each worker
  builds a partial result on its own, and partials are folded into the shared
  accumulator under a single short-held lock
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, TypeVar

from tqdm import tqdm

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')
A = TypeVar('A')


def resolve_workers(num_workers: Optional[int]) -> int:
    """None or <= 0 means one worker per available core."""
    if num_workers is None or num_workers <= 0:
        return max(1, os.cpu_count() or 1)
    return int(num_workers)


def partition(items: Sequence[T], num_parts: int) -> List[Sequence[T]]:
    """
    Split items into at most num_parts contiguous, non-empty slices.

    Sizes differ by at most one; the earlier slices get the extra item.
    """
    n = len(items)
    num_parts = max(1, min(int(num_parts), n))
    if n == 0:
        return []

    base, extra = divmod(n, num_parts)
    parts = []
    start = 0
    for i in range(num_parts):
        size = base + (1 if i < extra else 0)
        parts.append(items[start:start + size])
        start += size
    return parts


def parallel_map(
    func: Callable[[T], R],
    items: Sequence[T],
    num_workers: Optional[int] = 1,
    desc: Optional[str] = None
) -> List[R]:
    """
    Apply func to every item, preserving input order in the result.

    The first exception raised by any call propagates to the caller.
    """
    workers = resolve_workers(num_workers)
    show_progress = desc is not None

    if workers <= 1 or len(items) <= 1:
        iterator = tqdm(items, desc=desc) if show_progress else items
        return [func(item) for item in iterator]

    results: List[Optional[R]] = [None] * len(items)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_index = {executor.submit(func, item): i for i, item in enumerate(items)}
        progress = tqdm(total=len(items), desc=desc) if show_progress else None
        try:
            for future in as_completed(future_to_index):
                results[future_to_index[future]] = future.result()
                if progress is not None:
                    progress.update(1)
        finally:
            if progress is not None:
                progress.close()
    return results


def parallel_reduce(
    items: Sequence[T],
    map_partition: Callable[[Sequence[T]], A],
    combine: Callable[[A, A], A],
    initial: A,
    num_workers: Optional[int] = 1
) -> A:
    """
    Partition items, compute a partial result per partition, and fold the
    partials into initial.

    combine must be associative and commutative: partials arrive in
    completion order, not partition order.

    Args:
        items: Work items
        map_partition: Builds a partial result from one contiguous slice
        combine: Merges a partial into the accumulator and returns the accumulator
        initial: Starting accumulator
        num_workers: Thread count (None or <= 0 uses every core)

    Returns:
        The accumulator after every partial has been combined
    """
    workers = resolve_workers(num_workers)
    parts = partition(items, workers)
    if not parts:
        return initial

    if len(parts) == 1:
        return combine(initial, map_partition(parts[0]))

    lock = threading.Lock()
    state = {'acc': initial}

    def run(part: Sequence[T]) -> None:
        partial = map_partition(part)
        with lock:
            state['acc'] = combine(state['acc'], partial)

    with ThreadPoolExecutor(max_workers=len(parts)) as executor:
        futures = [executor.submit(run, part) for part in parts]
        for future in as_completed(futures):
            future.result()

    logger.debug(f"Reduced {len(items)} items over {len(parts)} partitions")
    return state['acc']
