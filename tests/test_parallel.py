"""Tests for the thread-pool helpers."""

import threading
import time

import pytest

from phow_bench.parallel import parallel_map, parallel_reduce, partition, resolve_workers


class TestPartition:

    def test_contiguous_and_balanced(self):
        parts = partition(list(range(10)), 3)
        assert parts == [[0, 1, 2, 3], [4, 5, 6], [7, 8, 9]]

    def test_more_parts_than_items(self):
        assert partition([1, 2], 5) == [[1], [2]]

    def test_empty(self):
        assert partition([], 4) == []

    def test_resolve_workers(self):
        assert resolve_workers(3) == 3
        assert resolve_workers(None) >= 1
        assert resolve_workers(0) >= 1


class TestParallelMap:

    def test_preserves_order(self):
        def slow_square(x):
            time.sleep(0.001 * (10 - x))
            return x * x

        assert parallel_map(slow_square, list(range(10)), num_workers=4) == [x * x for x in range(10)]

    def test_exception_propagates(self):
        def fail_on_three(x):
            if x == 3:
                raise RuntimeError("boom")
            return x

        with pytest.raises(RuntimeError, match="boom"):
            parallel_map(fail_on_three, list(range(6)), num_workers=3)

    def test_uses_several_threads(self):
        seen = set()
        lock = threading.Lock()

        def record(x):
            time.sleep(0.01)
            with lock:
                seen.add(threading.get_ident())
            return x

        parallel_map(record, list(range(8)), num_workers=4)
        assert len(seen) > 1


class TestParallelReduce:

    @pytest.mark.parametrize('workers', [1, 2, 4, 16])
    def test_sum_is_independent_of_worker_count(self, workers):
        items = list(range(101))
        total = parallel_reduce(items, sum, lambda acc, part: acc + part, 0, num_workers=workers)
        assert total == sum(items)

    def test_every_item_is_seen_once(self):
        items = list(range(50))
        seen = parallel_reduce(
            items,
            lambda part: list(part),
            lambda acc, part: acc + part,
            [],
            num_workers=4
        )
        assert sorted(seen) == items

    def test_empty_input_returns_initial(self):
        assert parallel_reduce([], sum, lambda a, b: a + b, 42, num_workers=4) == 42
