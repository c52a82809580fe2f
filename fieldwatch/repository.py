"""SQLAlchemy-backed record store used by every service.

Services never build queries themselves; they talk to ``Repository`` (or a
fake with the same methods in tests).  Lookups that cross the ownership chain
return plain ``SensorContext`` / ``Recipient`` values rather than ORM rows.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, literal_column, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fieldwatch.errors import InvalidInputError, StorageFailure
from fieldwatch.models.alerts import Alert
from fieldwatch.models.enums import (
	AlertCategoryEnum,
	AlertSeverityEnum,
	AlertStatusEnum,
	SensorStatusEnum,
	SensorTypeEnum,
)
from fieldwatch.models.sensors import Measurement
from fieldwatch.models.topology import Parcel, Sensor, Station, User
from fieldwatch.schemas.notifications import NotificationPreference

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class SensorContext:
	"""A sensor resolved through its station and parcel to the owning user."""

	sensor_id: uuid.UUID
	sensor_type: SensorTypeEnum
	status: SensorStatusEnum
	threshold_override: dict[str, Any] | None
	last_measurement_at: datetime | None
	station_id: uuid.UUID
	station_name: str
	parcel_id: uuid.UUID
	parcel_name: str
	owner_id: uuid.UUID


@dataclass(slots=True)
class Recipient:
	user_id: uuid.UUID
	full_name: str
	email: str | None
	phone: str | None
	preferences: NotificationPreference


class Repository:
	def __init__(self, db: AsyncSession):
		self.db = db

	# ── Transactions ────────────────────────────────────────────────────

	def savepoint(self) -> Any:
		return self.db.begin_nested()

	async def commit(self) -> None:
		try:
			await self.db.commit()
		except SQLAlchemyError as exc:
			logger.error("commit_failed", error=str(exc))
			raise StorageFailure("could not commit the transaction") from exc

	async def rollback(self) -> None:
		await self.db.rollback()

	async def acquire_key(self, key: str) -> None:
		"""Take a transaction-scoped advisory lock on ``key`` (PostgreSQL only).

		The lock is released at commit/rollback, so a concurrent writer on
		another connection cannot pass its suppression check until the alert
		created under this lock is visible.  Taking it again in the same
		transaction returns at once.
		"""
		if self.db.get_bind().dialect.name != "postgresql":
			return
		try:
			await self.db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
		except SQLAlchemyError as exc:
			raise StorageFailure(f"could not lock alert key {key}") from exc

	# ── Sensors ─────────────────────────────────────────────────────────

	async def get_sensor_context(self, sensor_id: uuid.UUID) -> SensorContext | None:
		rows = await self.db.execute(self._sensor_context_query().where(Sensor.id == sensor_id))
		row = rows.one_or_none()
		return self._to_context(row) if row is not None else None

	async def get_sensor_contexts(self, sensor_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, SensorContext]:
		if not sensor_ids:
			return {}
		rows = await self.db.execute(self._sensor_context_query().where(Sensor.id.in_(set(sensor_ids))))
		contexts = [self._to_context(row) for row in rows.all()]
		return {context.sensor_id: context for context in contexts}

	async def list_stale_sensors(self, cutoff: datetime) -> list[SensorContext]:
		stmt = (
			self._sensor_context_query()
			.where(
				Sensor.status == SensorStatusEnum.active,
				or_(Sensor.last_measurement_at.is_(None), Sensor.last_measurement_at < cutoff),
			)
			.order_by(Sensor.id)
		)
		rows = await self.db.execute(stmt)
		return [self._to_context(row) for row in rows.all()]

	async def list_active_sensors(self, sensor_types: Sequence[SensorTypeEnum] | None = None) -> list[SensorContext]:
		stmt = self._sensor_context_query().where(Sensor.status == SensorStatusEnum.active)
		if sensor_types is not None:
			stmt = stmt.where(Sensor.sensor_type.in_(list(sensor_types)))
		rows = await self.db.execute(stmt.order_by(Sensor.id))
		return [self._to_context(row) for row in rows.all()]

	async def touch_sensor(self, sensor_id: uuid.UUID, measured_at: datetime) -> None:
		"""Advance ``last_measurement_at``; an older reading never moves it back."""
		stmt = (
			update(Sensor)
			.where(
				Sensor.id == sensor_id,
				or_(Sensor.last_measurement_at.is_(None), Sensor.last_measurement_at < measured_at),
			)
			.values(last_measurement_at=measured_at)
		)
		try:
			await self.db.execute(stmt)
		except SQLAlchemyError as exc:
			logger.error("sensor_touch_failed", sensor_id=str(sensor_id), error=str(exc))
			raise StorageFailure(f"could not update sensor {sensor_id}") from exc

	# ── Measurements ────────────────────────────────────────────────────

	async def add_measurements(self, rows: Sequence[Measurement]) -> None:
		"""Insert all rows in one flush: they land together or not at all."""
		try:
			async with self.db.begin_nested():
				self.db.add_all(list(rows))
				await self.db.flush()
		except SQLAlchemyError as exc:
			logger.error("measurement_insert_failed", count=len(rows), error=str(exc))
			raise StorageFailure(f"could not store {len(rows)} measurement(s)") from exc

	async def measurements_since(self, sensor_id: uuid.UUID, since: datetime) -> list[Measurement]:
		stmt = (
			select(Measurement)
			.where(Measurement.sensor_id == sensor_id, Measurement.measured_at >= since)
			.order_by(Measurement.measured_at.asc())
		)
		rows = await self.db.execute(stmt)
		return list(rows.scalars().all())

	async def latest_measurement(self, sensor_id: uuid.UUID) -> Measurement | None:
		stmt = (
			select(Measurement)
			.where(Measurement.sensor_id == sensor_id)
			.order_by(Measurement.measured_at.desc(), Measurement.id.desc())
			.limit(1)
		)
		rows = await self.db.execute(stmt)
		return rows.scalar_one_or_none()

	async def measurement_stats(self, now: datetime) -> dict[str, Any]:
		totals_stmt = select(
			func.count(Measurement.id),
			func.count(Measurement.id).filter(Measurement.measured_at > now - timedelta(hours=24)),
			func.count(Measurement.id).filter(Measurement.measured_at > now - timedelta(days=7)),
			func.count(func.distinct(Measurement.sensor_id)),
		).where(Measurement.measured_at > now - timedelta(days=30))
		totals = (await self.db.execute(totals_stmt)).one()

		by_type_stmt = (
			select(
				Sensor.sensor_type,
				func.count(Measurement.id),
				func.avg(Measurement.value),
				func.min(Measurement.value),
				func.max(Measurement.value),
			)
			.join(Sensor, Measurement.sensor_id == Sensor.id)
			.where(Measurement.measured_at > now - timedelta(hours=24))
			.group_by(Sensor.sensor_type)
			.order_by(Sensor.sensor_type)
		)
		by_type = [
			{"sensor_type": sensor_type, "count": count, "mean": float(mean), "min": low, "max": high}
			for sensor_type, count, mean, low, high in (await self.db.execute(by_type_stmt)).all()
		]
		return {
			"total_30d": totals[0],
			"last_24h": totals[1],
			"last_7d": totals[2],
			"reporting_sensors": totals[3],
			"by_type_24h": by_type,
		}

	async def aggregate_measurements(
		self,
		period: str,
		start: datetime,
		end: datetime,
		*,
		parcel_id: uuid.UUID | None = None,
		sensor_id: uuid.UUID | None = None,
		sensor_type: SensorTypeEnum | None = None,
	) -> list[dict[str, Any]]:
		if period not in ("hour", "day"):
			raise InvalidInputError(f"unsupported aggregation period {period!r}")
		# Inlined rather than bound: SELECT and GROUP BY must render the same expression.
		bucket = func.date_trunc(literal_column(f"'{period}'"), Measurement.measured_at).label("bucket")
		stmt = (
			select(
				bucket,
				Sensor.sensor_type,
				func.avg(Measurement.value),
				func.min(Measurement.value),
				func.max(Measurement.value),
				func.count(Measurement.id),
			)
			.join(Sensor, Measurement.sensor_id == Sensor.id)
			.join(Station, Sensor.station_id == Station.id)
			.where(Measurement.measured_at >= start, Measurement.measured_at <= end)
		)
		if parcel_id is not None:
			stmt = stmt.where(Station.parcel_id == parcel_id)
		if sensor_id is not None:
			stmt = stmt.where(Sensor.id == sensor_id)
		if sensor_type is not None:
			stmt = stmt.where(Sensor.sensor_type == sensor_type)
		stmt = stmt.group_by(bucket, Sensor.sensor_type).order_by(bucket.desc(), Sensor.sensor_type)
		rows = await self.db.execute(stmt)
		return [
			{"bucket": at, "sensor_type": kind, "mean": float(mean), "min": low, "max": high, "count": count}
			for at, kind, mean, low, high, count in rows.all()
		]

	# ── Alerts ──────────────────────────────────────────────────────────

	async def find_open_alert(
		self,
		sensor_id: uuid.UUID,
		category: AlertCategoryEnum,
		severity: AlertSeverityEnum | None,
		since: datetime,
	) -> Alert | None:
		stmt = select(Alert).where(
			Alert.sensor_id == sensor_id,
			Alert.category == category,
			Alert.status != AlertStatusEnum.resolved,
			Alert.created_at > since,
		)
		if severity is not None:
			stmt = stmt.where(Alert.severity == severity)
		rows = await self.db.execute(stmt.order_by(Alert.created_at.desc()).limit(1))
		return rows.scalar_one_or_none()

	async def insert_alert(self, alert: Alert) -> Alert:
		try:
			self.db.add(alert)
			await self.db.flush()
			await self.db.refresh(alert)
		except SQLAlchemyError as exc:
			raise StorageFailure(f"could not store alert: {exc}") from exc
		return alert

	async def get_alert(self, alert_id: uuid.UUID) -> Alert | None:
		row = await self.db.execute(select(Alert).where(Alert.id == alert_id))
		return row.scalar_one_or_none()

	async def save_alert(self, alert: Alert) -> Alert:
		await self.db.flush()
		return alert

	async def mark_all_read(self, user_id: uuid.UUID, now: datetime) -> int:
		stmt = (
			update(Alert)
			.where(Alert.user_id == user_id, Alert.read_at.is_(None))
			.values(read_at=now)
			.returning(Alert.id)
		)
		rows = await self.db.execute(stmt)
		return len(rows.all())

	async def alert_stats(self, user_id: uuid.UUID | None, now: datetime) -> dict[str, Any]:
		scope = [Alert.user_id == user_id] if user_id is not None else []

		totals_stmt = select(
			func.count(Alert.id),
			func.count(Alert.id).filter(Alert.read_at.is_(None)),
			func.count(Alert.id).filter(Alert.status == AlertStatusEnum.new),
			func.count(Alert.id).filter(Alert.status == AlertStatusEnum.acknowledged),
			func.count(Alert.id).filter(Alert.status == AlertStatusEnum.resolved),
			func.count(Alert.id).filter(Alert.severity == AlertSeverityEnum.critical),
			func.count(Alert.id).filter(Alert.severity == AlertSeverityEnum.warning),
			func.count(Alert.id).filter(Alert.severity == AlertSeverityEnum.info),
			func.count(Alert.id).filter(Alert.created_at > now - timedelta(hours=24)),
		).where(*scope)
		totals = (await self.db.execute(totals_stmt)).one()

		category_stmt = (
			select(Alert.category, func.count(Alert.id))
			.where(*scope, Alert.created_at > now - timedelta(days=7))
			.group_by(Alert.category)
		)
		by_category = {category.value: count for category, count in (await self.db.execute(category_stmt)).all()}

		return {
			"total": totals[0],
			"unread": totals[1],
			"new": totals[2],
			"acknowledged": totals[3],
			"resolved": totals[4],
			"critical": totals[5],
			"warning": totals[6],
			"info": totals[7],
			"last_24h": totals[8],
			"by_category_7d": by_category,
		}

	# ── Recipients ──────────────────────────────────────────────────────

	async def get_recipient(self, user_id: uuid.UUID) -> Recipient | None:
		row = await self.db.execute(select(User).where(User.id == user_id))
		user = row.scalar_one_or_none()
		if user is None:
			return None
		return Recipient(
			user_id=user.id,
			full_name=user.full_name,
			email=user.email,
			phone=user.phone,
			preferences=NotificationPreference.model_validate(user.notification_preferences or {}),
		)

	async def get_parcel_owner(self, parcel_id: uuid.UUID) -> uuid.UUID | None:
		row = await self.db.execute(select(Parcel.owner_id).where(Parcel.id == parcel_id))
		return row.scalar_one_or_none()

	# ── Helpers ─────────────────────────────────────────────────────────

	@staticmethod
	def _sensor_context_query() -> Any:
		return (
			select(Sensor, Station.name, Parcel.id, Parcel.name, Parcel.owner_id)
			.join(Station, Sensor.station_id == Station.id)
			.join(Parcel, Station.parcel_id == Parcel.id)
		)

	@staticmethod
	def _to_context(row: Any) -> SensorContext:
		sensor, station_name, parcel_id, parcel_name, owner_id = row
		return SensorContext(
			sensor_id=sensor.id,
			sensor_type=sensor.sensor_type,
			status=sensor.status,
			threshold_override=sensor.threshold_override,
			last_measurement_at=sensor.last_measurement_at,
			station_id=sensor.station_id,
			station_name=station_name,
			parcel_id=parcel_id,
			parcel_name=parcel_name,
			owner_id=owner_id,
		)
