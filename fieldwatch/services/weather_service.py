"""OpenWeatherMap lookups with a per-instance TTL cache."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from fieldwatch.config import Settings, get_settings
from fieldwatch.errors import InvalidInputError, UpstreamUnavailable
from fieldwatch.schemas.weather import CurrentWeather, DailyForecast, WeatherForecast
from fieldwatch.services.ttl_cache import TTLCache

logger = structlog.get_logger(__name__)


def _validate_coordinates(lat: float, lon: float) -> None:
	if not -90.0 <= lat <= 90.0:
		raise InvalidInputError(f"latitude out of range: {lat}")
	if not -180.0 <= lon <= 180.0:
		raise InvalidInputError(f"longitude out of range: {lon}")


def _timestamp(raw: Any) -> datetime | None:
	if raw is None:
		return None
	return datetime.fromtimestamp(int(raw), tz=UTC)


def parse_current(lat: float, lon: float, payload: dict[str, Any]) -> CurrentWeather:
	main = payload.get("main") or {}
	wind = payload.get("wind") or {}
	weather = (payload.get("weather") or [{}])[0]
	return CurrentWeather(
		lat=lat,
		lon=lon,
		temperature=round(float(main["temp"])),
		feels_like=round(float(main.get("feels_like", main["temp"]))),
		humidity=float(main.get("humidity", 0.0)),
		pressure=float(main.get("pressure", 0.0)),
		# m/s to km/h
		wind_speed_kmh=round(float(wind.get("speed", 0.0)) * 3.6),
		wind_direction=wind.get("deg"),
		cloudiness=(payload.get("clouds") or {}).get("all"),
		description=weather.get("description", ""),
		icon=weather.get("icon"),
		visibility=payload.get("visibility"),
		sunrise=_timestamp((payload.get("sys") or {}).get("sunrise")),
		sunset=_timestamp((payload.get("sys") or {}).get("sunset")),
		observed_at=_timestamp(payload.get("dt")) or datetime.now(UTC),
	)


def parse_forecast(lat: float, lon: float, payload: dict[str, Any]) -> WeatherForecast:
	"""Fold 3-hourly forecast entries into one summary per calendar day (UTC)."""
	by_day: dict[Any, list[dict[str, Any]]] = defaultdict(list)
	for entry in payload.get("list") or []:
		by_day[datetime.fromtimestamp(int(entry["dt"]), tz=UTC).date()].append(entry)

	days: list[DailyForecast] = []
	for day in sorted(by_day):
		entries = by_day[day]
		temps = [float(entry["main"]["temp"]) for entry in entries]
		humidities = [float(entry["main"].get("humidity", 0.0)) for entry in entries]
		rain = sum(float((entry.get("rain") or {}).get("3h", 0.0)) for entry in entries)
		middle = entries[len(entries) // 2]
		days.append(
			DailyForecast(
				date=day,
				temp_min=round(min(temps)),
				temp_max=round(max(temps)),
				humidity_mean=round(sum(humidities) / len(humidities)),
				precipitation_total=round(rain, 1),
				description=((middle.get("weather") or [{}])[0]).get("description", ""),
			)
		)
	return WeatherForecast(lat=lat, lon=lon, days=days)


class WeatherService:
	def __init__(
		self,
		settings: Settings | None = None,
		*,
		cache: TTLCache[str, Any] | None = None,
		client: httpx.AsyncClient | None = None,
	):
		self.settings = settings or get_settings()
		self.cache: TTLCache[str, Any] = cache or TTLCache(self.settings.weather_cache_ttl_seconds)
		self.client = client

	async def current(self, lat: float, lon: float) -> CurrentWeather:
		_validate_coordinates(lat, lon)
		key = f"current:{lat:.4f}:{lon:.4f}"
		cached = self.cache.get(key)
		if cached is not None:
			return cached
		payload = await self._fetch("weather", lat, lon)
		try:
			result = parse_current(lat, lon, payload)
		except (KeyError, TypeError, ValueError) as exc:
			raise UpstreamUnavailable(f"malformed weather payload: {exc}") from exc
		self.cache.set(key, result)
		return result

	async def forecast(self, lat: float, lon: float) -> WeatherForecast:
		_validate_coordinates(lat, lon)
		key = f"forecast:{lat:.4f}:{lon:.4f}"
		cached = self.cache.get(key)
		if cached is not None:
			return cached
		payload = await self._fetch("forecast", lat, lon)
		try:
			result = parse_forecast(lat, lon, payload)
		except (KeyError, TypeError, ValueError) as exc:
			raise UpstreamUnavailable(f"malformed weather payload: {exc}") from exc
		self.cache.set(key, result)
		return result

	async def _fetch(self, resource: str, lat: float, lon: float) -> dict[str, Any]:
		if not self.settings.weather_api_key:
			raise UpstreamUnavailable("weather provider is not configured")
		url = f"{self.settings.weather_base_url.rstrip('/')}/{resource}"
		params = {"lat": lat, "lon": lon, "appid": self.settings.weather_api_key, "units": "metric"}
		try:
			if self.client is not None:
				response = await self.client.get(url, params=params, timeout=self.settings.weather_timeout_seconds)
			else:
				async with httpx.AsyncClient(timeout=self.settings.weather_timeout_seconds) as client:
					response = await client.get(url, params=params)
			response.raise_for_status()
			payload = response.json()
		except (httpx.HTTPError, ValueError) as exc:
			logger.error("weather_fetch_failed", resource=resource, lat=lat, lon=lon, error=str(exc))
			raise UpstreamUnavailable(f"weather provider error: {exc}") from exc
		if not isinstance(payload, dict):
			raise UpstreamUnavailable("weather provider returned an unexpected payload")
		return payload
