from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List

from fastapi import FastAPI, HTTPException, Query

from forecast_client import CITIES, OpenWeatherClient
from weather_cache import Coordinate, FetchError, LfuCache, TimeSeriesInterpolator, step_for_range

FORECAST_CACHE_CAPACITY = int(os.getenv("FORECAST_CACHE_CAPACITY", "10"))


def _configure_logging(name: str = "forecast_cache") -> logging.Logger:
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    # no file output unless FORECAST_LOG_FILE is set
    log_file = os.getenv("FORECAST_LOG_FILE", "").strip()
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=5_000_000, backupCount=3))

    formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        logger.addHandler(handler)
    logger.propagate = False
    logger.info("Logger configured level=%s file=%s", logging.getLevelName(level), log_file or "disabled")
    return logger


LOGGER = _configure_logging()


app = FastAPI(title="Forecast Cache")

client = OpenWeatherClient()
cache = LfuCache(capacity=FORECAST_CACHE_CAPACITY, fetch=client.fetch_forecast)
# LfuCache is single-threaded; sync endpoints run in a worker pool.
_CACHE_GUARD = threading.Lock()


def _valid_times_utc(start: int, end: int) -> List[str]:
    return [
        datetime.fromtimestamp(int(ts), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        for ts in TimeSeriesInterpolator.instants(start, end).tolist()
    ]


@app.on_event("startup")
def _startup() -> None:
    LOGGER.info("App startup cache_capacity=%d", cache.capacity)


@app.get("/api/cities")
def cities() -> Dict[str, object]:
    return {
        "cities": [
            {"city_id": city_id, "lat": coord.lat, "lon": coord.lon}
            for city_id, coord in sorted(CITIES.items())
        ]
    }


@app.get("/api/temperature")
def temperature(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    start: int = Query(...),
    end: int = Query(...),
) -> Dict[str, object]:
    coordinate = Coordinate(lat=float(lat), lon=float(lon))
    try:
        with _CACHE_GUARD:
            cache_hit = coordinate in cache
            values = cache.query(coordinate, start, end, pad_missing=True)
            frequency = cache.frequency(coordinate)
    except FetchError as exc:
        LOGGER.warning("Forecast fetch failed lat=%s lon=%s: %s", lat, lon, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    LOGGER.debug("Temperature served lat=%s lon=%s points=%d cache_hit=%s", lat, lon, len(values), cache_hit)
    return {
        "lat": lat,
        "lon": lon,
        "start": start,
        "end": end,
        "step_seconds": step_for_range(end - start) if end > start else None,
        "valid_times_utc": _valid_times_utc(start, end),
        "values": values,
        "diagnostics": {
            "cache_hit": cache_hit,
            "frequency": frequency,
            "missing_count": sum(1 for v in values if v is None),
        },
    }


@app.get("/api/cache/stats")
def cache_stats() -> Dict[str, int]:
    with _CACHE_GUARD:
        return cache.stats()


@app.post("/api/cache/clear")
def cache_clear() -> Dict[str, bool]:
    with _CACHE_GUARD:
        cache.clear()
    LOGGER.info("Forecast cache cleared")
    return {"ok": True}


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
