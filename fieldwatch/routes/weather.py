"""Cached weather lookup routes."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from fieldwatch.routes.deps import get_runtime, map_error
from fieldwatch.schemas.weather import CurrentWeather, WeatherForecast

router = APIRouter(prefix="/weather", tags=["weather"])


@router.get("/current", response_model=CurrentWeather)
async def current_weather(
	request: Request,
	lat: float = Query(ge=-90, le=90),
	lon: float = Query(ge=-180, le=180),
) -> CurrentWeather:
	try:
		return await get_runtime(request).weather_service().current(lat, lon)
	except Exception as exc:
		raise map_error(exc) from exc


@router.get("/forecast", response_model=WeatherForecast)
async def weather_forecast(
	request: Request,
	lat: float = Query(ge=-90, le=90),
	lon: float = Query(ge=-180, le=180),
) -> WeatherForecast:
	try:
		return await get_runtime(request).weather_service().forecast(lat, lon)
	except Exception as exc:
		raise map_error(exc) from exc
