#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import re
import time

from forecast_client import CITIES, OpenWeatherClient
from weather_cache import FetchError, LfuCache, NonCachingClient

_DURATION_UNITS = {
    "s": 1,
    "sec": 1,
    "secs": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minutes": 60,
    "h": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
}
_DURATION_PART = re.compile(r"(\d+)\s*([a-z]+)")


def parse_duration(value: str) -> int:
    text = value.strip().lower()
    parts = _DURATION_PART.findall(text)
    if not parts or _DURATION_PART.sub("", text).strip():
        raise argparse.ArgumentTypeError(f"Invalid duration: {value}")
    total = 0
    for amount, unit in parts:
        if unit not in _DURATION_UNITS:
            raise argparse.ArgumentTypeError(f"Unknown duration unit '{unit}' in {value}")
        total += int(amount) * _DURATION_UNITS[unit]
    return total


def _timed_queries(target, coordinate, start: int, end: int, repeat: int) -> float:
    began = time.perf_counter()
    for _ in range(repeat):
        target.query(coordinate, start, end)
    return time.perf_counter() - began


def main() -> None:
    parser = argparse.ArgumentParser(description="Forecasted temperature for a city")
    parser.add_argument("city", choices=sorted(CITIES))
    parser.add_argument("-d", "--duration", type=parse_duration, required=True, help="e.g. 90m, 3h, 2days")
    parser.add_argument("--start", type=int, default=None, help="epoch seconds, defaults to the current hour")
    parser.add_argument("--benchmark", type=int, default=0, metavar="N", help="time N cached vs uncached queries")
    args = parser.parse_args()

    coordinate = CITIES[args.city]
    start = args.start if args.start is not None else int(time.time()) // 3600 * 3600
    end = start + args.duration
    client = OpenWeatherClient()
    cache = LfuCache(capacity=int(os.getenv("FORECAST_CACHE_CAPACITY", "10")), fetch=client.fetch_forecast)

    try:
        values = cache.query(coordinate, start, end)
    except FetchError as exc:
        parser.exit(1, f"Forecast fetch failed for {args.city}: {exc}\n")

    print("Forecasted temperature is below:")
    for value in values:
        print(f"{value:.2f}")

    if args.benchmark > 0:
        try:
            uncached = _timed_queries(NonCachingClient(client.fetch_forecast), coordinate, start, end, args.benchmark)
        except FetchError as exc:
            parser.exit(1, f"Forecast fetch failed for {args.city}: {exc}\n")
        cached = _timed_queries(cache, coordinate, start, end, args.benchmark)
        print(f"Non-cache client: {args.benchmark} queries in {uncached * 1e6:.0f} microseconds")
        print(f"Cache client: {args.benchmark} queries in {cached * 1e6:.0f} microseconds")
        if cached > 0:
            print(f"Cache performs roughly {uncached / cached:.1f} times faster than the non-cache client")


if __name__ == "__main__":
    main()
