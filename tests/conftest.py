"""Shared pytest fixtures: in-memory record store, fake Redis, fake notifiers, async test client."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from fieldwatch.config import Settings
from fieldwatch.database import get_db
from fieldwatch.errors import ChannelDeliveryFailed, StorageFailure
from fieldwatch.main import app
from fieldwatch.models.alerts import Alert
from fieldwatch.models.enums import (
	AlertCategoryEnum,
	AlertSeverityEnum,
	AlertStatusEnum,
	ChannelEnum,
	SensorStatusEnum,
	SensorTypeEnum,
)
from fieldwatch.models.sensors import Measurement
from fieldwatch.repository import Recipient, SensorContext
from fieldwatch.schemas.notifications import NotificationPreference
from fieldwatch.services.alert_service import AlertService
from fieldwatch.services.events import EventPublisher
from fieldwatch.services.ingest_service import IngestService
from fieldwatch.services.locks import KeyedLock
from fieldwatch.services.notification_service import NotificationDispatcher
from fieldwatch.services.runtime import Runtime
from fieldwatch.services.sweep_service import SweepService


class FakeAsyncSession:
	def __init__(self) -> None:
		self.commit = AsyncMock()
		self.rollback = AsyncMock()
		self.close = AsyncMock()
		self.execute = AsyncMock()


class FakePubSub:
	def __init__(self, payloads: list[dict[str, Any]]) -> None:
		self.payloads = payloads
		self.index = 0
		self.subscribed_channel: str | None = None
		self.unsubscribed_channel: str | None = None
		self.closed = False

	async def subscribe(self, _channel: str) -> None:
		self.subscribed_channel = _channel

	async def get_message(self, ignore_subscribe_messages: bool, timeout: float) -> dict[str, Any] | None:
		if self.index >= len(self.payloads):
			return None
		message = self.payloads[self.index]
		self.index += 1
		return message

	async def unsubscribe(self, _channel: str) -> None:
		self.unsubscribed_channel = _channel

	async def close(self) -> None:
		self.closed = True


class FakeRedis:
	def __init__(self, payloads: list[dict[str, Any]] | None = None) -> None:
		self.payloads = payloads or []
		self.publish = AsyncMock()
		self.ping = AsyncMock(return_value=True)
		self.last_pubsub: FakePubSub | None = None

	def pubsub(self) -> FakePubSub:
		self.last_pubsub = FakePubSub(self.payloads)
		return self.last_pubsub

	def published_channels(self) -> list[str]:
		return [call.args[0] for call in self.publish.await_args_list]


class FakeClock:
	def __init__(self, start: datetime) -> None:
		self.current = start

	def __call__(self) -> datetime:
		return self.current

	def advance(self, **delta: float) -> datetime:
		self.current = self.current + timedelta(**delta)
		return self.current


class RecordingNotifier:
	"""Notifier double: records deliveries, optionally failing some channels."""

	def __init__(self, failing: Sequence[ChannelEnum] = ()) -> None:
		self.failing = set(failing)
		self.sent: list[tuple[ChannelEnum, uuid.UUID, uuid.UUID]] = []

	async def send(self, channel: ChannelEnum, recipient: Recipient, alert: Alert) -> None:
		await asyncio.sleep(0)
		if channel in self.failing:
			raise ChannelDeliveryFailed(f"{channel.value} gateway down")
		self.sent.append((channel, recipient.user_id, alert.id))

	def channels(self) -> list[ChannelEnum]:
		return [channel for channel, _user_id, _alert_id in self.sent]


class InMemoryRepository:
	"""Dict-backed stand-in for ``Repository``.

	Lookups and inserts yield to the event loop so concurrent callers really
	interleave between the suppression check and the insert.
	"""

	def __init__(self) -> None:
		self.recipients: dict[uuid.UUID, Recipient] = {}
		self.parcels: dict[uuid.UUID, uuid.UUID] = {}
		self.sensors: dict[uuid.UUID, SensorContext] = {}
		self.measurements: list[Measurement] = []
		self.alerts: dict[uuid.UUID, Alert] = {}
		self.commits = 0
		self.rollbacks = 0
		self.acquired_keys: list[str] = []
		self.fail_measurement_insert = False
		self.fail_alert_insert = False
		self._next_measurement_id = 1

	# ── Seeding ─────────────────────────────────────────────────────────

	def add_user(
		self,
		*,
		full_name: str = "Awa Kone",
		email: str | None = "awa@example.com",
		phone: str | None = "+2250700000000",
		preferences: dict[str, bool] | None = None,
	) -> Recipient:
		recipient = Recipient(
			user_id=uuid.uuid4(),
			full_name=full_name,
			email=email,
			phone=phone,
			preferences=NotificationPreference.model_validate(preferences or {}),
		)
		self.recipients[recipient.user_id] = recipient
		return recipient

	def add_sensor(
		self,
		sensor_type: SensorTypeEnum,
		*,
		owner_id: uuid.UUID,
		parcel_id: uuid.UUID | None = None,
		threshold_override: dict[str, Any] | None = None,
		last_measurement_at: datetime | None = None,
		status: SensorStatusEnum = SensorStatusEnum.active,
		station_name: str = "North field",
	) -> SensorContext:
		parcel_id = parcel_id or uuid.uuid4()
		self.parcels[parcel_id] = owner_id
		context = SensorContext(
			sensor_id=uuid.uuid4(),
			sensor_type=sensor_type,
			status=status,
			threshold_override=threshold_override,
			last_measurement_at=last_measurement_at,
			station_id=uuid.uuid4(),
			station_name=station_name,
			parcel_id=parcel_id,
			parcel_name="Parcel A",
			owner_id=owner_id,
		)
		self.sensors[context.sensor_id] = context
		return context

	def add_measurement(self, sensor_id: uuid.UUID, value: float, measured_at: datetime) -> Measurement:
		row = Measurement(sensor_id=sensor_id, value=value, unit=None, measured_at=measured_at)
		row.id = self._next_measurement_id
		self._next_measurement_id += 1
		self.measurements.append(row)
		return row

	def alerts_for(self, sensor_id: uuid.UUID, category: AlertCategoryEnum | None = None) -> list[Alert]:
		return [
			alert
			for alert in self.alerts.values()
			if alert.sensor_id == sensor_id and (category is None or alert.category == category)
		]

	# ── Transactions ────────────────────────────────────────────────────

	@asynccontextmanager
	async def savepoint(self) -> AsyncIterator[None]:
		yield

	async def commit(self) -> None:
		self.commits += 1

	async def rollback(self) -> None:
		self.rollbacks += 1

	async def acquire_key(self, key: str) -> None:
		self.acquired_keys.append(key)
		await asyncio.sleep(0)

	# ── Sensors ─────────────────────────────────────────────────────────

	async def get_sensor_context(self, sensor_id: uuid.UUID) -> SensorContext | None:
		return self.sensors.get(sensor_id)

	async def get_sensor_contexts(self, sensor_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, SensorContext]:
		return {sensor_id: self.sensors[sensor_id] for sensor_id in set(sensor_ids) if sensor_id in self.sensors}

	async def list_stale_sensors(self, cutoff: datetime) -> list[SensorContext]:
		return [
			sensor
			for sensor in self.sensors.values()
			if sensor.status == SensorStatusEnum.active
			and (sensor.last_measurement_at is None or sensor.last_measurement_at < cutoff)
		]

	async def list_active_sensors(self, sensor_types: Sequence[SensorTypeEnum] | None = None) -> list[SensorContext]:
		return [
			sensor
			for sensor in self.sensors.values()
			if sensor.status == SensorStatusEnum.active and (sensor_types is None or sensor.sensor_type in sensor_types)
		]

	async def touch_sensor(self, sensor_id: uuid.UUID, measured_at: datetime) -> None:
		sensor = self.sensors[sensor_id]
		if sensor.last_measurement_at is None or sensor.last_measurement_at < measured_at:
			sensor.last_measurement_at = measured_at

	# ── Measurements ────────────────────────────────────────────────────

	async def add_measurements(self, rows: Sequence[Measurement]) -> None:
		if self.fail_measurement_insert:
			raise StorageFailure(f"could not store {len(rows)} measurement(s)")
		for row in rows:
			row.id = self._next_measurement_id
			self._next_measurement_id += 1
			self.measurements.append(row)

	async def measurements_since(self, sensor_id: uuid.UUID, since: datetime) -> list[Measurement]:
		rows = [row for row in self.measurements if row.sensor_id == sensor_id and row.measured_at >= since]
		return sorted(rows, key=lambda row: row.measured_at)

	async def latest_measurement(self, sensor_id: uuid.UUID) -> Measurement | None:
		rows = [row for row in self.measurements if row.sensor_id == sensor_id]
		if not rows:
			return None
		return max(rows, key=lambda row: (row.measured_at, row.id))

	async def measurement_stats(self, now: datetime) -> dict[str, Any]:
		recent = [row for row in self.measurements if row.measured_at > now - timedelta(days=30)]
		by_type: dict[SensorTypeEnum, list[float]] = {}
		for row in recent:
			if row.measured_at > now - timedelta(hours=24):
				by_type.setdefault(self.sensors[row.sensor_id].sensor_type, []).append(row.value)
		return {
			"total_30d": len(recent),
			"last_24h": sum(1 for row in recent if row.measured_at > now - timedelta(hours=24)),
			"last_7d": sum(1 for row in recent if row.measured_at > now - timedelta(days=7)),
			"reporting_sensors": len({row.sensor_id for row in recent}),
			"by_type_24h": [
				{"sensor_type": kind, "count": len(values), "mean": sum(values) / len(values), "min": min(values), "max": max(values)}
				for kind, values in sorted(by_type.items())
			],
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
		buckets: dict[tuple[datetime, SensorTypeEnum], list[float]] = {}
		for row in self.measurements:
			sensor = self.sensors[row.sensor_id]
			if not start <= row.measured_at <= end:
				continue
			if parcel_id is not None and sensor.parcel_id != parcel_id:
				continue
			if sensor_id is not None and sensor.sensor_id != sensor_id:
				continue
			if sensor_type is not None and sensor.sensor_type != sensor_type:
				continue
			at = row.measured_at.replace(minute=0, second=0, microsecond=0)
			if period == "day":
				at = at.replace(hour=0)
			buckets.setdefault((at, sensor.sensor_type), []).append(row.value)
		ordered = sorted(buckets.items(), key=lambda item: (-item[0][0].timestamp(), item[0][1]))
		return [
			{"bucket": at, "sensor_type": kind, "mean": sum(values) / len(values), "min": min(values), "max": max(values), "count": len(values)}
			for (at, kind), values in ordered
		]

	# ── Alerts ──────────────────────────────────────────────────────────

	async def find_open_alert(
		self,
		sensor_id: uuid.UUID,
		category: AlertCategoryEnum,
		severity: AlertSeverityEnum | None,
		since: datetime,
	) -> Alert | None:
		await asyncio.sleep(0)
		for alert in self.alerts.values():
			if (
				alert.sensor_id == sensor_id
				and alert.category == category
				and (severity is None or alert.severity == severity)
				and alert.status != AlertStatusEnum.resolved
				and alert.created_at > since
			):
				return alert
		return None

	async def insert_alert(self, alert: Alert) -> Alert:
		await asyncio.sleep(0)
		if self.fail_alert_insert:
			raise StorageFailure("could not store alert")
		if alert.id is None:
			alert.id = uuid.uuid4()
		self.alerts[alert.id] = alert
		return alert

	async def get_alert(self, alert_id: uuid.UUID) -> Alert | None:
		return self.alerts.get(alert_id)

	async def save_alert(self, alert: Alert) -> Alert:
		self.alerts[alert.id] = alert
		return alert

	async def mark_all_read(self, user_id: uuid.UUID, now: datetime) -> int:
		updated = 0
		for alert in self.alerts.values():
			if alert.user_id == user_id and alert.read_at is None:
				alert.read_at = now
				updated += 1
		return updated

	async def alert_stats(self, user_id: uuid.UUID | None, now: datetime) -> dict[str, Any]:
		scoped = [alert for alert in self.alerts.values() if user_id is None or alert.user_id == user_id]
		by_category: dict[str, int] = {}
		for alert in scoped:
			if alert.created_at > now - timedelta(days=7):
				by_category[alert.category.value] = by_category.get(alert.category.value, 0) + 1
		return {
			"total": len(scoped),
			"unread": sum(1 for alert in scoped if alert.read_at is None),
			"new": sum(1 for alert in scoped if alert.status == AlertStatusEnum.new),
			"acknowledged": sum(1 for alert in scoped if alert.status == AlertStatusEnum.acknowledged),
			"resolved": sum(1 for alert in scoped if alert.status == AlertStatusEnum.resolved),
			"critical": sum(1 for alert in scoped if alert.severity == AlertSeverityEnum.critical),
			"warning": sum(1 for alert in scoped if alert.severity == AlertSeverityEnum.warning),
			"info": sum(1 for alert in scoped if alert.severity == AlertSeverityEnum.info),
			"last_24h": sum(1 for alert in scoped if alert.created_at > now - timedelta(hours=24)),
			"by_category_7d": by_category,
		}

	# ── Recipients ──────────────────────────────────────────────────────

	async def get_recipient(self, user_id: uuid.UUID) -> Recipient | None:
		return self.recipients.get(user_id)

	async def get_parcel_owner(self, parcel_id: uuid.UUID) -> uuid.UUID | None:
		return self.parcels.get(parcel_id)


class TransactionKeyLocks:
	"""Advisory key locks shared between sessions; a session keeps its keys until it commits."""

	def __init__(self) -> None:
		self.owners: dict[str, object] = {}
		self.released = asyncio.Condition()

	async def acquire(self, key: str, session: object) -> None:
		async with self.released:
			await self.released.wait_for(lambda: self.owners.get(key, session) is session)
			self.owners[key] = session

	async def release_all(self, session: object) -> None:
		async with self.released:
			for key in [key for key, owner in self.owners.items() if owner is session]:
				del self.owners[key]
			self.released.notify_all()


class SessionRepository:
	"""One database session's view of a shared ``InMemoryRepository``."""

	def __init__(self, store: InMemoryRepository, key_locks: TransactionKeyLocks) -> None:
		self.store = store
		self.key_locks = key_locks

	def __getattr__(self, name: str) -> Any:
		return getattr(self.store, name)

	async def acquire_key(self, key: str) -> None:
		self.store.acquired_keys.append(key)
		await self.key_locks.acquire(key, self)

	async def commit(self) -> None:
		await self.store.commit()
		await self.key_locks.release_all(self)

	async def rollback(self) -> None:
		await self.store.rollback()
		await self.key_locks.release_all(self)


@pytest.fixture
def settings() -> Settings:
	return Settings(_env_file=None)


@pytest.fixture
def clock() -> FakeClock:
	return FakeClock(datetime(2026, 5, 4, 8, 0, tzinfo=UTC))


@pytest.fixture
def repo() -> InMemoryRepository:
	return InMemoryRepository()


@pytest.fixture
def fake_redis() -> FakeRedis:
	"""Reusable fake Redis client with async publish and pubsub behavior."""
	return FakeRedis()


@pytest.fixture
def notifier() -> RecordingNotifier:
	return RecordingNotifier()


@pytest.fixture
def owner(repo: InMemoryRepository) -> Recipient:
	return repo.add_user()


@pytest.fixture
def soil_sensor(repo: InMemoryRepository, owner: Recipient) -> SensorContext:
	return repo.add_sensor(SensorTypeEnum.soil_moisture, owner_id=owner.user_id)


@pytest.fixture
def alert_service(
	repo: InMemoryRepository,
	notifier: RecordingNotifier,
	fake_redis: FakeRedis,
	settings: Settings,
	clock: FakeClock,
) -> AlertService:
	return AlertService(
		repo,  # type: ignore[arg-type]
		dispatcher=NotificationDispatcher(repo, {channel: notifier for channel in ChannelEnum}),
		publisher=EventPublisher(fake_redis),  # type: ignore[arg-type]
		locks=KeyedLock(),
		settings=settings,
		clock=clock,
	)


@pytest.fixture
def ingest_service(
	repo: InMemoryRepository,
	alert_service: AlertService,
	fake_redis: FakeRedis,
	clock: FakeClock,
) -> IngestService:
	return IngestService(repo, alert_service, publisher=EventPublisher(fake_redis), clock=clock)  # type: ignore[arg-type]


@pytest.fixture
def sweep_service(
	repo: InMemoryRepository,
	alert_service: AlertService,
	settings: Settings,
	clock: FakeClock,
) -> SweepService:
	return SweepService(repo, alert_service, settings=settings, clock=clock)  # type: ignore[arg-type]


@pytest.fixture
def runtime(
	repo: InMemoryRepository,
	notifier: RecordingNotifier,
	fake_redis: FakeRedis,
	settings: Settings,
) -> Runtime:
	return Runtime(
		settings=settings,
		redis_client=fake_redis,  # type: ignore[arg-type]
		notifiers={channel: notifier for channel in ChannelEnum},
		repository_factory=lambda _db: repo,  # type: ignore[arg-type,return-value]
	)


@pytest.fixture
async def client(runtime: Runtime) -> AsyncGenerator[AsyncClient, None]:
	"""HTTPX async client with lifespan disabled, DB mocked and the in-memory store wired in."""
	fake_session = FakeAsyncSession()

	async def override_get_db() -> AsyncGenerator[Any, None]:
		yield fake_session

	app.dependency_overrides[get_db] = override_get_db
	app.state.runtime = runtime
	original_lifespan = app.router.lifespan_context

	@asynccontextmanager
	async def noop_lifespan(_: Any) -> AsyncGenerator[None, None]:
		yield

	app.router.lifespan_context = noop_lifespan

	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://test") as test_client:
		yield test_client

	app.router.lifespan_context = original_lifespan
	app.dependency_overrides.clear()
	del app.state.runtime
