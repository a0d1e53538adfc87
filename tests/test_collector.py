import random
from collections import Counter

import pytest

from cpusampler.collector import (
    Bucket,
    Collector,
    Entry,
    HashCounter,
    TempFileArray,
)


def _totals(entries):
    totals = Counter()
    for entry in entries:
        totals[entry.item] += entry.count
    return totals


def test_stack_hash_counter():
    counter = HashCounter()
    counter.add(0, 1)
    counter.add(1, 1)
    counter.add(1, 1)

    seen = {}
    for entry in counter:
        assert entry.item in (0, 1)
        seen[entry.item] = entry.count
    assert seen == {0: 1, 1: 2}


def test_evict():
    counter = HashCounter()
    real_map = Counter()

    for item in range((1 << 10) * 4):
        for _ in range(item % 4):
            evicted = counter.add(item, 1)
            if evicted is not None:
                real_map[evicted.item] += evicted.count

    for entry in counter:
        real_map[entry.item] += entry.count

    for item in range((1 << 10) * 4):
        assert real_map.get(item, 0) == item % 4


def test_collector():
    with Collector() as collector:
        for item in range((1 << 12) * 4):
            for _ in range(item % 4):
                collector.add(item, 1)

        real_map = _totals(collector)

    for item in range((1 << 12) * 4):
        assert real_map.get(item, 0) == item % 4


def test_write_random_values_to_collector():
    rng = random.Random(7)
    values = [rng.getrandbits(64) for _ in range(1000)]
    with Collector() as collector:
        for value in values:
            collector.add(value, 1)
        totals = _totals(collector)
    assert totals == Counter(values)
    assert sum(totals.values()) == len(values)


def test_write_random_values_to_hash_counter():
    rng = random.Random(11)
    values = [rng.getrandbits(64) for _ in range(1000)]
    counter = HashCounter()
    evicted = Counter()
    for value in values:
        entry = counter.add(value, 1)
        if entry is not None:
            evicted[entry.item] += entry.count
    assert _totals(counter) + evicted == Counter(values)


def test_bucket_evicts_least_counted_entry():
    bucket = Bucket(4)
    assert bucket.add("a", 3) is None
    assert bucket.add("b", 1) is None
    assert bucket.add("c", 2) is None
    assert bucket.add("d", 5) is None
    assert len(bucket) == 4

    evicted = bucket.add("e", 4)
    assert evicted == Entry("b", 1)
    assert {entry.item: entry.count for entry in bucket} == {"a": 3, "c": 2, "d": 5, "e": 4}


def test_bucket_ties_evict_first_minimum():
    bucket = Bucket(2)
    bucket.add("x", 1)
    bucket.add("y", 1)
    assert bucket.add("z", 9) == Entry("x", 1)


def test_bucket_accumulates_existing_key():
    bucket = Bucket(2)
    bucket.add("k", 2)
    assert bucket.add("k", 5) is None
    assert list(bucket) == [Entry("k", 7)]


def test_bucket_rejects_zero_capacity():
    with pytest.raises(ValueError):
        Bucket(0)


def test_temp_file_array_returns_buffer_then_spilled():
    with TempFileArray(buffer_length=3) as array:
        for value in range(10):
            array.push(value)
        items = list(array)
    assert sorted(items) == list(range(10))
    assert items[0] == 9
    assert items[1:] == list(range(9))


def test_temp_file_array_can_be_iterated_twice_and_extended():
    with TempFileArray(buffer_length=2) as array:
        for value in range(5):
            array.push(value)
        first = sorted(array)
        array.push(5)
        second = sorted(array)
    assert first == list(range(5))
    assert second == list(range(6))


def test_collector_keeps_evicted_entries_on_disk():
    with Collector(buckets=1, buffer_length=2) as collector:
        expected = Counter()
        for item in range(20):
            count = item % 3 + 1
            collector.add(item, count)
            expected[item] += count
        collector.add(19, 4)
        expected[19] += 4
        assert _totals(collector) == expected


def test_closed_collector_cannot_be_iterated():
    collector = Collector()
    collector.add("frame", 1)
    assert _totals(collector) == Counter({"frame": 1})
    collector.close()
    with pytest.raises(ValueError):
        list(collector)