"""Periodic sweeps: offline sensor detection and upward-trend analysis."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from fieldwatch.config import Settings, get_settings
from fieldwatch.models.alerts import Alert
from fieldwatch.repository import Repository, SensorContext
from fieldwatch.services.alert_service import AlertService
from fieldwatch.services.thresholds import ThresholdEvaluator
from fieldwatch.services.trends import TrendFinding, is_upward_trend, window_stats

logger = structlog.get_logger(__name__)


class SweepService:
	"""Runs one pass of a sweep over the sensors of the record store.

	Each sensor is handled and committed on its own, so a failure or a stop
	request leaves earlier sensors' alerts in place.
	"""

	def __init__(
		self,
		repository: Repository,
		alert_service: AlertService,
		*,
		evaluator: ThresholdEvaluator | None = None,
		settings: Settings | None = None,
		clock: Callable[[], datetime] | None = None,
	):
		self.repository = repository
		self.alert_service = alert_service
		self.evaluator = evaluator or ThresholdEvaluator()
		self.settings = settings or get_settings()
		self.clock = clock or (lambda: datetime.now(UTC))

	async def sweep_offline(
		self,
		now: datetime | None = None,
		stop_event: asyncio.Event | None = None,
	) -> list[Alert]:
		now = now or self.clock()
		cutoff = now - timedelta(minutes=self.settings.offline_timeout_minutes)
		sensors = await self.repository.list_stale_sensors(cutoff)
		created: list[Alert] = []
		failed = 0
		for sensor in sensors:
			if stop_event is not None and stop_event.is_set():
				logger.info("offline_sweep_stopped", processed=len(created) + failed)
				break
			try:
				alert = await self.alert_service.raise_offline(sensor, now)
				await self.alert_service.commit()
			except Exception as exc:
				failed += 1
				logger.error("offline_sweep_sensor_failed", sensor_id=str(sensor.sensor_id), error=str(exc))
				await self.alert_service.rollback()
				continue
			if alert is not None:
				created.append(alert)

		logger.info(
			"offline_sweep_complete",
			stale_sensors=len(sensors),
			alerts_created=len(created),
			failed=failed,
		)
		return created

	async def analyze_trend(
		self,
		sensor: SensorContext,
		now: datetime | None = None,
		window: timedelta | None = None,
	) -> list[TrendFinding]:
		"""Compare the latest reading in the trailing window with the window mean.

		Only sensors with a monitored profile can trend; the upper warning bound
		is the reference.
		"""
		profile = self.evaluator.profile_for(sensor)
		if profile is None:
			return []
		now = now or self.clock()
		window = window or timedelta(hours=self.settings.trend_window_hours)
		window_start = now - window
		rows = await self.repository.measurements_since(sensor.sensor_id, window_start)
		rows = [row for row in rows if row.measured_at <= now]
		rows.sort(key=lambda row: row.measured_at)
		stats = window_stats([row.value for row in rows])
		if stats is None:
			return []
		if not is_upward_trend(
			stats,
			profile.max,
			deviation_ratio=self.settings.trend_deviation_ratio,
			proximity_ratio=self.settings.trend_proximity_ratio,
		):
			return []
		return [
			TrendFinding(
				sensor_id=sensor.sensor_id,
				latest=stats.latest,
				mean=stats.mean,
				stdev=stats.stdev,
				deviation=stats.deviation,
				upper_bound=profile.max,
				sample_count=stats.sample_count,
				window_start=window_start,
				window_end=now,
			)
		]

	async def sweep_trends(
		self,
		now: datetime | None = None,
		stop_event: asyncio.Event | None = None,
	) -> list[Alert]:
		now = now or self.clock()
		sensors = await self.repository.list_active_sensors(list(self.evaluator.profiles))
		created: list[Alert] = []
		findings = 0
		failed = 0
		for sensor in sensors:
			if stop_event is not None and stop_event.is_set():
				logger.info("trend_sweep_stopped")
				break
			sensor_alerts: list[Alert] = []
			try:
				for finding in await self.analyze_trend(sensor, now):
					findings += 1
					alert = await self.alert_service.raise_trend(sensor, finding)
					if alert is not None:
						sensor_alerts.append(alert)
				await self.alert_service.commit()
			except Exception as exc:
				failed += 1
				logger.error("trend_sweep_sensor_failed", sensor_id=str(sensor.sensor_id), error=str(exc))
				await self.alert_service.rollback()
				continue
			created.extend(sensor_alerts)

		logger.info(
			"trend_sweep_complete",
			sensors=len(sensors),
			findings=findings,
			alerts_created=len(created),
			failed=failed,
		)
		return created
