from __future__ import annotations

import logging
import os
import time
from typing import Dict, List

import requests

from weather_cache import Coordinate, FetchError, Sample

OPENWEATHER_BASE_URL = os.getenv("OPENWEATHER_BASE_URL", "http://api.openweathermap.org/data/2.5/forecast")
OPENWEATHER_API_KEY = os.getenv("OPENWEATHER_API_KEY", "").strip()
FORECAST_FETCH_TIMEOUT_SECONDS = float(os.getenv("FORECAST_FETCH_TIMEOUT_SECONDS", "12"))
FORECAST_FETCH_RETRIES = int(os.getenv("FORECAST_FETCH_RETRIES", "3"))
FORECAST_FETCH_BASE_BACKOFF_SECONDS = float(os.getenv("FORECAST_FETCH_BASE_BACKOFF_SECONDS", "0.4"))
LOGGER = logging.getLogger("forecast_cache.forecast_client")

CITIES = {
    "seattle": Coordinate(lat=47.36, lon=-122.19),
    "vancouver": Coordinate(lat=45.62, lon=-122.67),
}


class ForecastRequestError(FetchError):
    """Raised when the forecast endpoint cannot be reached or rejects the request."""


class ForecastDecodeError(FetchError):
    """Raised when a forecast payload cannot be decoded."""


class OpenWeatherClient:
    """Fetches the 5 day / 3 hour OpenWeatherMap forecast for a coordinate."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        retries: int | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url or OPENWEATHER_BASE_URL
        self._api_key = OPENWEATHER_API_KEY if api_key is None else api_key
        self._timeout = FORECAST_FETCH_TIMEOUT_SECONDS if timeout is None else float(timeout)
        self._retries = max(1, FORECAST_FETCH_RETRIES if retries is None else int(retries))
        self._session = session or requests.Session()

    def fetch_forecast(self, coordinate: Coordinate) -> List[Sample]:
        payload = self._get_payload(coordinate)
        samples = self._decode_samples(payload)
        LOGGER.debug("Fetched forecast coordinate=%s samples=%d", coordinate, len(samples))
        return samples

    def _request_params(self, coordinate: Coordinate) -> Dict[str, object]:
        params: Dict[str, object] = {"lat": coordinate.lat, "lon": coordinate.lon}
        if self._api_key:
            params["appid"] = self._api_key
        return params

    def _get_payload(self, coordinate: Coordinate) -> Dict[str, object]:
        params = self._request_params(coordinate)
        last_exc: Exception | None = None
        for attempt in range(1, self._retries + 1):
            try:
                response = self._session.get(self._base_url, params=params, timeout=self._timeout)
                response.raise_for_status()
            except requests.RequestException as exc:
                last_exc = exc
                LOGGER.warning(
                    "Forecast fetch attempt %d/%d failed coordinate=%s: %s",
                    attempt,
                    self._retries,
                    coordinate,
                    exc,
                )
                if attempt >= self._retries:
                    break
                time.sleep(FORECAST_FETCH_BASE_BACKOFF_SECONDS * (2 ** (attempt - 1)))
                continue

            try:
                payload = response.json()
            except ValueError as exc:
                raise ForecastDecodeError(f"Forecast response for {coordinate} is not valid JSON: {exc}") from exc
            if not isinstance(payload, dict):
                raise ForecastDecodeError(f"Forecast response for {coordinate} is not a JSON object")
            # the API reports its own status code as a string
            cod = str(payload.get("cod", "200"))
            if cod != "200":
                raise ForecastRequestError(
                    f"Forecast API returned cod={cod} for {coordinate}: {payload.get('message', '')}"
                )
            return payload

        raise ForecastRequestError(
            f"Forecast fetch failed for {coordinate} after {self._retries} attempts: {last_exc}"
        ) from last_exc

    @staticmethod
    def _decode_samples(payload: Dict[str, object]) -> List[Sample]:
        entries = payload.get("list")
        if not isinstance(entries, list):
            raise ForecastDecodeError("Forecast payload has no 'list' array")
        samples: List[Sample] = []
        for index, entry in enumerate(entries):
            try:
                samples.append(Sample(timestamp=int(entry["dt"]), value=float(entry["main"]["temp"])))
            except (KeyError, TypeError, ValueError) as exc:
                raise ForecastDecodeError(f"Malformed forecast entry at index {index}: {exc}") from exc
        return samples
