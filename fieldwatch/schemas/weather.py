"""Pydantic schemas for weather lookups."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class CurrentWeather(BaseModel):
	lat: float
	lon: float
	temperature: float
	feels_like: float
	humidity: float
	pressure: float
	wind_speed_kmh: float
	wind_direction: float | None = None
	cloudiness: float | None = None
	description: str = ""
	icon: str | None = None
	visibility: float | None = None
	sunrise: datetime | None = None
	sunset: datetime | None = None
	observed_at: datetime


class DailyForecast(BaseModel):
	date: date
	temp_min: float
	temp_max: float
	humidity_mean: float
	precipitation_total: float
	description: str = ""


class WeatherForecast(BaseModel):
	lat: float
	lon: float
	days: list[DailyForecast] = Field(default_factory=list)
