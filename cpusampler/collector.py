"""Bounded counting of samples with overflow spilled to a temporary file."""

from __future__ import annotations

import io
import itertools
import os
import pickle
import tempfile
from dataclasses import dataclass
from typing import Any, Generic, Hashable, Iterator, TypeVar

BUCKETS = 1 << 12
BUCKETS_ASSOCIATIVITY = 4
BUFFER_LENGTH = 1 << 12

T = TypeVar("T", bound=Hashable)


@dataclass
class Entry(Generic[T]):
    """A key together with how many times it was counted."""

    item: T
    count: int = 0


class Bucket(Generic[T]):
    """A small set-associative slot holding at most ``capacity`` entries."""

    def __init__(self, capacity: int = BUCKETS_ASSOCIATIVITY) -> None:
        if capacity < 1:
            raise ValueError("bucket capacity must be at least 1")
        self._capacity = capacity
        self._entries: list[Entry[T]] = []

    def add(self, key: T, count: int) -> Entry[T] | None:
        """Count ``key``; return the entry evicted to make room, if any."""
        for entry in self._entries:
            if entry.item == key:
                entry.count += count
                return None

        if len(self._entries) < self._capacity:
            self._entries.append(Entry(key, count))
            return None

        victim, _ = min(enumerate(self._entries), key=lambda pair: pair[1].count)
        evicted = self._entries[victim]
        self._entries[victim] = Entry(key, count)
        return evicted

    def __iter__(self) -> Iterator[Entry[T]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class HashCounter(Generic[T]):
    """A fixed-size hash table of buckets that evicts the least counted key."""

    def __init__(
        self,
        buckets: int = BUCKETS,
        associativity: int = BUCKETS_ASSOCIATIVITY,
    ) -> None:
        if buckets < 1:
            raise ValueError("a hash counter needs at least one bucket")
        self._buckets: list[Bucket[T]] = [Bucket(associativity) for _ in range(buckets)]

    def add(self, key: T, count: int) -> Entry[T] | None:
        """Count ``key``; return the entry evicted from its bucket, if any."""
        bucket = self._buckets[hash(key) % len(self._buckets)]
        return bucket.add(key, count)

    def __iter__(self) -> Iterator[Entry[T]]:
        return itertools.chain.from_iterable(self._buckets)


class TempFileArray:
    """An append-only sequence buffered in memory and flushed to a temporary file."""

    def __init__(self, buffer_length: int = BUFFER_LENGTH) -> None:
        if buffer_length < 1:
            raise ValueError("buffer length must be at least 1")
        self._buffer_length = buffer_length
        self._buffer: list[Any] = []
        self._file = tempfile.TemporaryFile()

    def _flush_buffer(self) -> None:
        self._file.write(pickle.dumps(self._buffer, protocol=pickle.HIGHEST_PROTOCOL))
        self._buffer = []

    def push(self, entry: Any) -> None:
        """Append ``entry``, writing the buffer out first if it is full."""
        if len(self._buffer) >= self._buffer_length:
            self._flush_buffer()
        self._buffer.append(entry)

    def __iter__(self) -> Iterator[Any]:
        self._file.seek(0)
        data = self._file.read()
        self._file.seek(0, os.SEEK_END)
        return itertools.chain(list(self._buffer), _load_batches(data))

    def close(self) -> None:
        """Release the temporary file."""
        self._file.close()

    def __enter__(self) -> TempFileArray:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _load_batches(data: bytes) -> Iterator[Any]:
    stream = io.BytesIO(data)
    while stream.tell() < len(data):
        yield from pickle.load(stream)


class Collector(Generic[T]):
    """Counts keys in a hash counter and keeps everything it evicts."""

    def __init__(
        self,
        buckets: int = BUCKETS,
        buffer_length: int = BUFFER_LENGTH,
    ) -> None:
        self._map: HashCounter[T] = HashCounter(buckets)
        self._temp_array = TempFileArray(buffer_length)

    def add(self, key: T, count: int) -> None:
        """Count ``key``; entries evicted from the table are kept on disk."""
        evicted = self._map.add(key, count)
        if evicted is not None:
            self._temp_array.push(evicted)

    def __iter__(self) -> Iterator[Entry[T]]:
        """Yield every entry; one key may appear more than once."""
        return itertools.chain(iter(self._map), iter(self._temp_array))

    def close(self) -> None:
        """Release the spill file."""
        self._temp_array.close()

    def __enter__(self) -> Collector[T]:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()