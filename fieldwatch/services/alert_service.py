"""Alert creation with deduplication, plus acknowledge/resolve/read lifecycle."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from fieldwatch.config import Settings, get_settings
from fieldwatch.errors import NotFoundError
from fieldwatch.models.alerts import Alert
from fieldwatch.models.enums import (
	AlertCategoryEnum,
	AlertSeverityEnum,
	AlertSourceEnum,
	AlertStatusEnum,
	SensorTypeEnum,
)
from fieldwatch.repository import Repository, SensorContext
from fieldwatch.schemas.alerts import AlertStats, ManualAlertIn
from fieldwatch.schemas.notifications import ChannelResult
from fieldwatch.services.events import EventPublisher
from fieldwatch.services.locks import KeyedLock
from fieldwatch.services.notification_service import NotificationDispatcher
from fieldwatch.services.thresholds import Verdict
from fieldwatch.services.trends import TrendFinding

logger = structlog.get_logger(__name__)

SENSOR_LABELS: dict[SensorTypeEnum, tuple[str, str]] = {
	SensorTypeEnum.soil_moisture: ("Soil moisture", "%"),
	SensorTypeEnum.air_temperature: ("Air temperature", "°C"),
	SensorTypeEnum.air_humidity: ("Air humidity", "%"),
	SensorTypeEnum.light: ("Light", " lux"),
	SensorTypeEnum.rainfall: ("Rainfall", " mm"),
	SensorTypeEnum.soil_ph: ("Soil pH", ""),
	SensorTypeEnum.water_level: ("Water level", " cm"),
}


def _label(sensor_type: SensorTypeEnum) -> tuple[str, str]:
	return SENSOR_LABELS.get(sensor_type, (sensor_type.value.replace("_", " ").capitalize(), ""))


def threshold_title(sensor_type: SensorTypeEnum, severity: AlertSeverityEnum) -> str:
	label, _unit = _label(sensor_type)
	if severity == AlertSeverityEnum.critical:
		return f"Critical value: {label}"
	return f"Warning: {label}"


def threshold_message(
	sensor_type: SensorTypeEnum,
	value: float,
	severity: AlertSeverityEnum,
	station_name: str,
) -> str:
	label, unit = _label(sensor_type)
	reading = f"{value:g}{unit}"
	if severity == AlertSeverityEnum.critical:
		return (
			f"{label} reached a critical level ({reading}) on station {station_name}. "
			"Immediate action required."
		)
	return f"{label} is outside normal limits ({reading}) on station {station_name}. Monitoring recommended."


@dataclass(frozen=True, slots=True)
class SuppressionKey:
	sensor_id: uuid.UUID
	category: AlertCategoryEnum
	severity: AlertSeverityEnum | None = None

	@property
	def token(self) -> str:
		parts = [str(self.sensor_id), self.category.value]
		if self.severity is not None:
			parts.append(self.severity.value)
		return ":".join(parts)


class AlertService:
	def __init__(
		self,
		repository: Repository,
		*,
		dispatcher: NotificationDispatcher | None = None,
		publisher: EventPublisher | None = None,
		locks: KeyedLock | None = None,
		settings: Settings | None = None,
		clock: Callable[[], datetime] | None = None,
	):
		self.repository = repository
		self.dispatcher = dispatcher
		self.publisher = publisher or EventPublisher()
		self.locks = locks if locks is not None else KeyedLock()
		self.settings = settings or get_settings()
		self.clock = clock or (lambda: datetime.now(UTC))
		# Alerts created in the current transaction, announced once it commits.
		self.pending: list[Alert] = []

	# ── Automatic alerts ────────────────────────────────────────────────

	async def raise_if_needed(self, sensor: SensorContext, verdict: Verdict, value: float) -> Alert | None:
		"""Create a threshold alert for a breaching reading unless one is already open.

		Returns ``None`` for a normal reading and for a suppressed one.
		"""
		if not verdict.breached or verdict.severity is None:
			return None
		now = self.clock()
		alert = Alert(
			user_id=sensor.owner_id,
			parcel_id=sensor.parcel_id,
			sensor_id=sensor.sensor_id,
			category=AlertCategoryEnum.sensor_threshold,
			severity=verdict.severity,
			status=AlertStatusEnum.new,
			source=AlertSourceEnum.automatic,
			title=threshold_title(sensor.sensor_type, verdict.severity),
			message=threshold_message(sensor.sensor_type, value, verdict.severity, sensor.station_name),
			created_at=now,
			updated_at=now,
		)
		key = SuppressionKey(sensor.sensor_id, AlertCategoryEnum.sensor_threshold, verdict.severity)
		return await self._create_unless_open(key, timedelta(minutes=self.settings.threshold_suppression_minutes), alert)

	async def raise_offline(self, sensor: SensorContext, now: datetime | None = None) -> Alert | None:
		now = now or self.clock()
		label, _unit = _label(sensor.sensor_type)
		if sensor.last_measurement_at is None:
			last_seen = "It has never reported."
		else:
			last_seen = f"Last reading at {sensor.last_measurement_at.isoformat(timespec='minutes')}."
		alert = Alert(
			user_id=sensor.owner_id,
			parcel_id=sensor.parcel_id,
			sensor_id=sensor.sensor_id,
			category=AlertCategoryEnum.sensor_offline,
			severity=AlertSeverityEnum.warning,
			status=AlertStatusEnum.new,
			source=AlertSourceEnum.automatic,
			title=f"Sensor offline: {label}",
			message=(
				f"{label} sensor on station {sensor.station_name} has not reported for more than "
				f"{self.settings.offline_timeout_minutes} minutes. {last_seen}"
			),
			created_at=now,
			updated_at=now,
		)
		key = SuppressionKey(sensor.sensor_id, AlertCategoryEnum.sensor_offline)
		return await self._create_unless_open(key, timedelta(minutes=self.settings.offline_suppression_minutes), alert)

	async def raise_trend(self, sensor: SensorContext, finding: TrendFinding) -> Alert | None:
		now = self.clock()
		label, unit = _label(sensor.sensor_type)
		alert = Alert(
			user_id=sensor.owner_id,
			parcel_id=sensor.parcel_id,
			sensor_id=sensor.sensor_id,
			category=AlertCategoryEnum.trend,
			severity=AlertSeverityEnum.warning,
			status=AlertStatusEnum.new,
			source=AlertSourceEnum.automatic,
			title=f"Rising trend: {label}",
			message=(
				f"{label} on station {sensor.station_name} is trending up: {finding.latest:g}{unit} "
				f"against a recent average of {finding.mean:.1f}{unit} "
				f"(+{finding.deviation * 100:.0f}%), close to the {finding.upper_bound:g}{unit} limit."
			),
			created_at=now,
			updated_at=now,
		)
		key = SuppressionKey(sensor.sensor_id, AlertCategoryEnum.trend)
		return await self._create_unless_open(key, timedelta(minutes=self.settings.trend_suppression_minutes), alert)

	# ── Manual and test alerts ──────────────────────────────────────────

	async def raise_alert(self, payload: ManualAlertIn) -> list[Alert]:
		"""Create one alert per recipient without suppression.

		Recipients are the explicit list when given, else the owner of the
		parcel (taken from the sensor when only a sensor is named), else the
		acting user.
		"""
		parcel_id = payload.parcel_id
		if payload.sensor_id is not None:
			sensor = await self.repository.get_sensor_context(payload.sensor_id)
			if sensor is None:
				raise NotFoundError(f"Sensor {payload.sensor_id} not found")
			parcel_id = parcel_id or sensor.parcel_id

		if payload.recipients:
			recipients = list(dict.fromkeys(payload.recipients))
		elif parcel_id is not None:
			owner_id = await self.repository.get_parcel_owner(parcel_id)
			if owner_id is None:
				raise NotFoundError(f"Parcel {parcel_id} not found")
			recipients = [owner_id]
		else:
			recipients = [payload.actor_id]

		now = self.clock()
		source = AlertSourceEnum.test if payload.category == AlertCategoryEnum.test else AlertSourceEnum.manual
		created: list[Alert] = []
		async with self.repository.savepoint():
			for user_id in recipients:
				alert = Alert(
					user_id=user_id,
					parcel_id=parcel_id,
					sensor_id=payload.sensor_id,
					category=payload.category,
					severity=payload.severity,
					status=AlertStatusEnum.new,
					source=source,
					title=payload.title,
					message=payload.message,
					created_at=now,
					updated_at=now,
				)
				created.append(await self.repository.insert_alert(alert))

		logger.info(
			"manual_alert_created",
			actor_id=str(payload.actor_id),
			recipients=len(created),
			severity=payload.severity.value,
		)
		self.pending.extend(created)
		return created

	async def send_test_alert(
		self,
		user_id: uuid.UUID,
		severity: AlertSeverityEnum = AlertSeverityEnum.info,
	) -> tuple[Alert, dict[str, ChannelResult]]:
		recipient = await self.repository.get_recipient(user_id)
		if recipient is None:
			raise NotFoundError(f"User {user_id} not found")
		now = self.clock()
		alert = Alert(
			user_id=user_id,
			category=AlertCategoryEnum.test,
			severity=severity,
			status=AlertStatusEnum.new,
			source=AlertSourceEnum.test,
			title="Test alert",
			message="This is a test notification from FieldWatch. Your alert channels are working.",
			created_at=now,
			updated_at=now,
		)
		async with self.repository.savepoint():
			alert = await self.repository.insert_alert(alert)
		self.pending.append(alert)
		# Committed here so the delivery results can be returned to the caller.
		deliveries = await self.commit()
		return alert, deliveries.get(alert.id, {})

	# ── Lifecycle ───────────────────────────────────────────────────────

	async def get_alert(self, alert_id: uuid.UUID) -> Alert:
		alert = await self.repository.get_alert(alert_id)
		if alert is None:
			raise NotFoundError(f"Alert {alert_id} not found")
		return alert

	async def acknowledge(self, alert_id: uuid.UUID, actor: uuid.UUID) -> Alert:
		alert = await self.get_alert(alert_id)
		if alert.status != AlertStatusEnum.new:
			return alert
		alert.status = AlertStatusEnum.acknowledged
		alert.acknowledged_at = self.clock()
		alert.acknowledged_by = actor
		await self.repository.save_alert(alert)
		logger.info("alert_acknowledged", alert_id=str(alert.id), actor_id=str(actor))
		return alert

	async def resolve(self, alert_id: uuid.UUID, actor: uuid.UUID, notes: str | None = None) -> Alert:
		"""Move an alert to its terminal state; resolving twice keeps the first resolution."""
		alert = await self.get_alert(alert_id)
		if alert.status == AlertStatusEnum.resolved:
			return alert
		alert.status = AlertStatusEnum.resolved
		alert.resolved_at = self.clock()
		alert.resolved_by = actor
		alert.resolution_notes = notes
		await self.repository.save_alert(alert)
		logger.info("alert_resolved", alert_id=str(alert.id), actor_id=str(actor))
		return alert

	async def mark_read(self, alert_id: uuid.UUID) -> Alert:
		alert = await self.get_alert(alert_id)
		if alert.read_at is None:
			alert.read_at = self.clock()
			await self.repository.save_alert(alert)
		return alert

	async def mark_all_read(self, user_id: uuid.UUID) -> int:
		updated = await self.repository.mark_all_read(user_id, self.clock())
		logger.info("alerts_marked_read", user_id=str(user_id), updated_count=updated)
		return updated

	async def stats(self, user_id: uuid.UUID | None = None) -> AlertStats:
		return AlertStats(**await self.repository.alert_stats(user_id, self.clock()))

	# ── Unit of work ────────────────────────────────────────────────────

	async def commit(self) -> dict[uuid.UUID, dict[str, ChannelResult]]:
		"""Commit the transaction, then notify and publish the alerts it created.

		Channels are never called while the transaction (and its key locks)
		is still open.  Returns the per-alert delivery results.
		"""
		await self.repository.commit()
		created, self.pending = self.pending, []
		deliveries: dict[uuid.UUID, dict[str, ChannelResult]] = {}
		for alert in created:
			deliveries[alert.id] = await self._announce(alert)
		return deliveries

	async def rollback(self) -> None:
		"""Roll back; alerts created in the discarded transaction are never announced."""
		dropped, self.pending = len(self.pending), []
		await self.repository.rollback()
		if dropped:
			logger.warning("pending_alerts_discarded", count=dropped)

	# ── Internals ───────────────────────────────────────────────────────

	async def _create_unless_open(self, key: SuppressionKey, window: timedelta, alert: Alert) -> Alert | None:
		since = alert.created_at - window
		# The advisory lock lives until commit and is re-entrant for this
		# transaction, so it is always taken before the in-process lock.
		await self.repository.acquire_key(key.token)
		async with self.locks.hold(key.token):
			async with self.repository.savepoint():
				existing = await self.repository.find_open_alert(key.sensor_id, key.category, key.severity, since)
				if existing is not None:
					logger.debug(
						"alert_suppressed",
						sensor_id=str(key.sensor_id),
						category=key.category.value,
						severity=alert.severity.value,
						open_alert_id=str(existing.id),
					)
					return None
				created = await self.repository.insert_alert(alert)

		logger.info(
			"alert_created",
			alert_id=str(created.id),
			sensor_id=str(key.sensor_id),
			category=created.category.value,
			severity=created.severity.value,
			user_id=str(created.user_id),
		)
		self.pending.append(created)
		return created

	async def _announce(self, alert: Alert) -> dict[str, ChannelResult]:
		deliveries: dict[str, ChannelResult] = {}
		if self.dispatcher is not None:
			try:
				deliveries = await self.dispatcher.dispatch(alert)
			except Exception as exc:
				logger.error("alert_dispatch_failed", alert_id=str(alert.id), error=str(exc))
		await self.publisher.alert_created(alert)
		return deliveries
