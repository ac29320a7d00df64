import threading

from offline_repo.aggregator import aggregate, merge_closures
from offline_repo.collector import DependencyRecord
from offline_repo.pool import fan_out

from conftest import DelayedIndex, packages_index

DIAMOND = """\
Package: top1
Version: 1
Architecture: amd64
Depends: shared, only1
Filename: top1.deb

Package: top2
Version: 1
Architecture: amd64
Depends: shared, virt
Filename: top2.deb

Package: shared
Version: 1
Architecture: amd64
Filename: shared.deb

Package: only1
Version: 1
Architecture: amd64
Filename: only1.deb

Package: provider
Version: 1
Architecture: amd64
Provides: virt
Filename: provider.deb
"""


def test_curl_scenario(index):
    assert aggregate(index, ["curl"]) == {"curl", "libcurl4", "ca-certificates"}


def test_purely_virtual_seed_resolves_to_providers(index):
    assert aggregate(index, ["x"]) == {"a", "b"}


def test_virtual_and_provider_seeds_collapse(index):
    assert aggregate(index, ["mail-transport-agent", "postfix"]) == {"postfix"}


def test_virtual_dependency_is_replaced_by_provider(index):
    assert aggregate(index, ["mta-user"]) == {"mta-user", "postfix"}


def test_idempotent(index):
    assert aggregate(index, ["curl", "x"]) == aggregate(index, ["curl", "x"])


def test_independent_of_completion_order():
    inner = packages_index(DIAMOND)
    fast_first = DelayedIndex(inner, {"top1": 0.0, "top2": 0.2})
    slow_first = DelayedIndex(inner, {"top1": 0.2, "top2": 0.0})

    expected = {"top1", "top2", "shared", "only1", "provider"}
    assert aggregate(fast_first, ["top1", "top2"]) == expected
    assert aggregate(slow_first, ["top1", "top2"]) == expected


def test_unknown_seed_does_not_abort_siblings(index):
    assert aggregate(index, ["curl", "ghost"]) == {"curl", "libcurl4", "ca-certificates", "ghost"}


def test_extra_names_are_not_expanded(index):
    # mta-user would pull in postfix if it were collected.
    assert aggregate(index, ["curl"], ["mta-user"]) == {"curl", "libcurl4", "ca-certificates", "mta-user"}


def test_timed_out_collection_counts_as_empty(index):
    slow = DelayedIndex(index, {"curl": 1.0})
    assert aggregate(slow, ["curl", "x"], timeout=0.3) == {"curl", "a", "b"}


def test_merge_closures_includes_seeds():
    records = [DependencyRecord("s1", ("s1", "d1")), DependencyRecord("s2", ("d1", "d2"))]
    assert merge_closures(["s1", "s2", "s3"], records) == {"s1", "s2", "s3", "d1", "d2"}


def test_fan_out_runs_concurrently():
    barrier = threading.Barrier(3, timeout=5)

    def work(item):
        barrier.wait()
        return item.upper()

    assert fan_out(work, ["a", "b", "c"], max_workers=3) == {"a": "A", "b": "B", "c": "C"}


def test_fan_out_empty():
    assert fan_out(str.upper, []) == {}
