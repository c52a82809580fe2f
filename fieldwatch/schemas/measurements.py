"""Pydantic schemas for measurement statistics, aggregation and sensor status."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from fieldwatch.models.enums import SensorStatusEnum, SensorTypeEnum


class AggregatePeriod(StrEnum):
	hour = "hour"
	day = "day"


class SensorTypeStats(BaseModel):
	sensor_type: SensorTypeEnum
	count: int
	mean: float
	min: float
	max: float


class MeasurementStats(BaseModel):
	"""Counts over the last 30 days; per-type value summaries over the last 24 hours."""

	total_30d: int = 0
	last_24h: int = 0
	last_7d: int = 0
	reporting_sensors: int = 0
	by_type_24h: list[SensorTypeStats] = Field(default_factory=list)


class AggregateBucket(BaseModel):
	bucket: datetime
	sensor_type: SensorTypeEnum
	mean: float
	min: float
	max: float
	count: int


class AggregateResponse(BaseModel):
	period: AggregatePeriod
	start: datetime
	end: datetime
	items: list[AggregateBucket] = Field(default_factory=list)


class SensorStatusRead(BaseModel):
	sensor_id: uuid.UUID
	sensor_type: SensorTypeEnum
	status: SensorStatusEnum
	online: bool
	last_value: float | None = None
	last_measured_at: datetime | None = None
	station_name: str
	parcel_id: uuid.UUID
