from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, NamedTuple, Sequence, Tuple

import numpy as np

TWO_HOURS = 2 * 60 * 60
ONE_DAY = 24 * 60 * 60
MINUTE = 60
FIVE_MINUTES = 5 * 60
ONE_HOUR = 60 * 60
LOGGER = logging.getLogger("forecast_cache.weather_cache")


class FetchError(RuntimeError):
    """Base class for forecast fetch failures."""


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float


class Sample(NamedTuple):
    timestamp: int
    value: float


Series = Tuple[Sample, ...]
FetchFn = Callable[[Coordinate], Sequence[Tuple[int, float]]]


def as_series(samples: Iterable[Tuple[int, float]]) -> Series:
    """Coerce fetched (timestamp, value) pairs into a Series, rejecting malformed ones."""
    try:
        return tuple(Sample(int(timestamp), float(value)) for timestamp, value in samples)
    except (TypeError, ValueError) as exc:
        raise FetchError(f"Malformed forecast series: {exc}") from exc


def step_for_range(requested_range: int) -> int:
    # minute below 2 hours, 5 minutes below a day, hourly otherwise
    if requested_range < TWO_HOURS:
        return MINUTE
    if requested_range < ONE_DAY:
        return FIVE_MINUTES
    return ONE_HOUR


class TimeSeriesInterpolator:
    """Nearest-neighbour resampling of a sparse forecast series."""

    def __init__(self, series: Iterable[Tuple[int, float]]) -> None:
        lookup: Dict[int, float] = {}
        for timestamp, value in series:
            lookup[int(timestamp)] = float(value)
        ordered = sorted(lookup)
        self._times = np.array(ordered, dtype=np.int64)
        self._values = np.array([lookup[ts] for ts in ordered], dtype=np.float64)

    def __len__(self) -> int:
        return int(self._times.size)

    @staticmethod
    def instants(start: int, end: int) -> np.ndarray:
        start, end = int(start), int(end)
        if end <= start:
            return np.empty(0, dtype=np.int64)
        return np.arange(start, end, step_for_range(end - start), dtype=np.int64)

    def resample(self, start: int, end: int, pad_missing: bool = False) -> List[float | None]:
        """Estimate the series at every step of ``[start, end)``.

        Each instant takes the value of the closest stored sample, ties going to
        the later one. Instants after the last stored timestamp have no value and
        are dropped, or emitted as ``None`` when ``pad_missing`` is set.
        """
        instants = self.instants(start, end)
        if instants.size == 0:
            return []
        if self._times.size == 0:
            return [None] * int(instants.size) if pad_missing else []

        low_idx = np.searchsorted(self._times, instants, side="left")
        resolved = low_idx < self._times.size
        safe_low = np.where(resolved, low_idx, self._times.size - 1)
        prev_idx = np.maximum(safe_low - 1, 0)
        low_dist = self._times[safe_low] - instants
        prev_dist = instants - self._times[prev_idx]
        use_prev = (safe_low > 0) & (prev_dist < low_dist)
        chosen = self._values[np.where(use_prev, prev_idx, safe_low)]

        if pad_missing:
            return [float(v) if ok else None for v, ok in zip(chosen.tolist(), resolved.tolist())]
        return [float(v) for v in chosen[resolved].tolist()]


class LfuCache:
    """Coordinate-keyed forecast cache with LFU eviction.

    Three indexes are kept in step: access count per coordinate, stored series
    per coordinate, and per-count buckets ordered oldest first. Ties at the
    lowest count are evicted in arrival order. Not safe for concurrent use;
    callers sharing an instance must serialise access.
    """

    def __init__(self, capacity: int, fetch: FetchFn) -> None:
        if int(capacity) < 0:
            raise ValueError(f"Cache capacity must be non-negative, got {capacity}")
        self._capacity = int(capacity)
        self._fetch = fetch
        self._frequency: Dict[Coordinate, int] = {}
        self._data: Dict[Coordinate, Series] = {}
        self._buckets: Dict[int, OrderedDict[Coordinate, None]] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, coordinate: object) -> bool:
        return coordinate in self._data

    def frequency(self, coordinate: Coordinate) -> int | None:
        return self._frequency.get(coordinate)

    def stats(self) -> Dict[str, int]:
        return {
            "capacity": self._capacity,
            "size": len(self._data),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }

    def query(
        self,
        coordinate: Coordinate,
        start: int,
        end: int,
        pad_missing: bool = False,
    ) -> List[float | None]:
        series = self._get(coordinate)
        return TimeSeriesInterpolator(series).resample(start, end, pad_missing=pad_missing)

    def clear(self) -> None:
        self._frequency.clear()
        self._data.clear()
        self._buckets.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        LOGGER.debug("Cleared forecast cache")

    def _get(self, coordinate: Coordinate) -> Series:
        series = self._data.get(coordinate)
        if series is not None:
            self._hits += 1
            self._promote(coordinate)
            return series

        # fetch before touching any index so a failure leaves the cache as it was
        series = as_series(self._fetch(coordinate))
        self._misses += 1
        if self._capacity == 0:
            LOGGER.debug("Cache disabled, not retaining coordinate=%s", coordinate)
            return series
        if len(self._data) >= self._capacity:
            self._evict()
        self._insert(coordinate, series)
        return series

    def _insert(self, coordinate: Coordinate, series: Series) -> None:
        self._data[coordinate] = series
        self._frequency[coordinate] = 1
        self._bucket_add(1, coordinate)
        LOGGER.debug("Cached coordinate=%s samples=%d size=%d", coordinate, len(series), len(self._data))

    def _promote(self, coordinate: Coordinate) -> None:
        count = self._frequency[coordinate]
        self._bucket_remove(count, coordinate)
        self._frequency[coordinate] = count + 1
        self._bucket_add(count + 1, coordinate)

    def _evict(self) -> None:
        if not self._buckets:
            return
        lowest = min(self._buckets)
        coordinate = next(iter(self._buckets[lowest]))
        self._bucket_remove(lowest, coordinate)
        del self._frequency[coordinate]
        del self._data[coordinate]
        self._evictions += 1
        LOGGER.debug("Evicted coordinate=%s frequency=%d", coordinate, lowest)

    def _bucket_add(self, count: int, coordinate: Coordinate) -> None:
        bucket = self._buckets.get(count)
        if bucket is None:
            bucket = OrderedDict()
            self._buckets[count] = bucket
        bucket[coordinate] = None

    def _bucket_remove(self, count: int, coordinate: Coordinate) -> None:
        bucket = self._buckets[count]
        del bucket[coordinate]
        if not bucket:
            del self._buckets[count]


class NonCachingClient:
    """Baseline that fetches on every query and keeps no state."""

    def __init__(self, fetch: FetchFn) -> None:
        self._fetch = fetch

    def query(
        self,
        coordinate: Coordinate,
        start: int,
        end: int,
        pad_missing: bool = False,
    ) -> List[float | None]:
        series = as_series(self._fetch(coordinate))
        return TimeSeriesInterpolator(series).resample(start, end, pad_missing=pad_missing)
