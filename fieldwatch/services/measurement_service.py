"""Read-side measurement views: dashboard statistics, time buckets and sensor status."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from fieldwatch.config import Settings, get_settings
from fieldwatch.errors import InvalidInputError, NotFoundError
from fieldwatch.models.enums import SensorTypeEnum
from fieldwatch.repository import Repository
from fieldwatch.schemas.measurements import (
	AggregateBucket,
	AggregatePeriod,
	AggregateResponse,
	MeasurementStats,
	SensorStatusRead,
	SensorTypeStats,
)

DEFAULT_AGGREGATE_WINDOW = timedelta(days=7)


class MeasurementService:
	def __init__(
		self,
		repository: Repository,
		*,
		settings: Settings | None = None,
		clock: Callable[[], datetime] | None = None,
	):
		self.repository = repository
		self.settings = settings or get_settings()
		self.clock = clock or (lambda: datetime.now(UTC))

	async def stats(self) -> MeasurementStats:
		raw = await self.repository.measurement_stats(self.clock())
		return MeasurementStats(
			total_30d=raw["total_30d"],
			last_24h=raw["last_24h"],
			last_7d=raw["last_7d"],
			reporting_sensors=raw["reporting_sensors"],
			by_type_24h=[SensorTypeStats(**row) for row in raw["by_type_24h"]],
		)

	async def aggregated(
		self,
		period: AggregatePeriod = AggregatePeriod.day,
		start: datetime | None = None,
		end: datetime | None = None,
		*,
		parcel_id: uuid.UUID | None = None,
		sensor_id: uuid.UUID | None = None,
		sensor_type: SensorTypeEnum | None = None,
	) -> AggregateResponse:
		"""Hourly or daily mean/min/max per sensor type, newest bucket first.

		The window defaults to the seven days before ``end`` (itself defaulting
		to now).
		"""
		end = end or self.clock()
		start = start or end - DEFAULT_AGGREGATE_WINDOW
		if start > end:
			raise InvalidInputError("start must not be after end")
		rows = await self.repository.aggregate_measurements(
			period.value,
			start,
			end,
			parcel_id=parcel_id,
			sensor_id=sensor_id,
			sensor_type=sensor_type,
		)
		return AggregateResponse(
			period=period,
			start=start,
			end=end,
			items=[AggregateBucket(**row) for row in rows],
		)

	async def sensor_status(self, sensor_id: uuid.UUID) -> SensorStatusRead:
		sensor = await self.repository.get_sensor_context(sensor_id)
		if sensor is None:
			raise NotFoundError(f"Sensor {sensor_id} not found")
		latest = await self.repository.latest_measurement(sensor_id)
		# Same cutoff as the offline sweep: a sensor is online exactly when it is not stale.
		cutoff = self.clock() - timedelta(minutes=self.settings.offline_timeout_minutes)
		return SensorStatusRead(
			sensor_id=sensor.sensor_id,
			sensor_type=sensor.sensor_type,
			status=sensor.status,
			online=latest is not None and latest.measured_at >= cutoff,
			last_value=latest.value if latest is not None else None,
			last_measured_at=latest.measured_at if latest is not None else None,
			station_name=sensor.station_name,
			parcel_id=sensor.parcel_id,
		)
