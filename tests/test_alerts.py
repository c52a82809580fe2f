from __future__ import annotations

import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest

from fieldwatch.config import Settings
from fieldwatch.errors import NotFoundError, StorageFailure
from fieldwatch.models.enums import (
	AlertCategoryEnum,
	AlertSeverityEnum,
	AlertSourceEnum,
	AlertStatusEnum,
	ChannelEnum,
	SensorTypeEnum,
)
from fieldwatch.repository import Recipient, SensorContext
from fieldwatch.schemas.alerts import ManualAlertIn
from fieldwatch.schemas.ingest import BatchResult, IngestReceipt
from fieldwatch.services.alert_service import AlertService, SuppressionKey, threshold_message, threshold_title
from fieldwatch.services.ingest_service import IngestService
from fieldwatch.services.locks import KeyedLock
from fieldwatch.services.notification_service import NotificationDispatcher
from fieldwatch.services.runtime import Runtime
from fieldwatch.services.thresholds import NORMAL, Verdict, Zone

from conftest import (
	FakeClock,
	FakeRedis,
	InMemoryRepository,
	RecordingNotifier,
	SessionRepository,
	TransactionKeyLocks,
)

CRITICAL = Verdict(zone=Zone.critical, severity=AlertSeverityEnum.critical)
WARNING = Verdict(zone=Zone.warning, severity=AlertSeverityEnum.warning)


@pytest.mark.asyncio
async def test_normal_verdict_creates_nothing(alert_service: AlertService, soil_sensor: SensorContext) -> None:
	assert await alert_service.raise_if_needed(soil_sensor, NORMAL, 50.0) is None


@pytest.mark.asyncio
async def test_breach_creates_templated_alert(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	repo: InMemoryRepository,
) -> None:
	alert = await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)

	assert alert is not None
	assert alert.user_id == soil_sensor.owner_id
	assert alert.parcel_id == soil_sensor.parcel_id
	assert alert.category == AlertCategoryEnum.sensor_threshold
	assert alert.status == AlertStatusEnum.new
	assert alert.source == AlertSourceEnum.automatic
	assert alert.title == "Critical value: Soil moisture"
	assert "8%" in alert.message and "North field" in alert.message
	assert list(repo.alerts) == [alert.id]


def test_titles_reflect_severity_tier() -> None:
	assert threshold_title(SensorTypeEnum.soil_ph, AlertSeverityEnum.warning) == "Warning: Soil pH"
	assert threshold_title(SensorTypeEnum.soil_ph, AlertSeverityEnum.critical) == "Critical value: Soil pH"
	assert "Monitoring recommended" in threshold_message(SensorTypeEnum.soil_ph, 8.0, AlertSeverityEnum.warning, "S1")
	assert "Immediate action required" in threshold_message(SensorTypeEnum.soil_ph, 9.0, AlertSeverityEnum.critical, "S1")


@pytest.mark.asyncio
async def test_second_breach_within_window_is_suppressed(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	clock: FakeClock,
) -> None:
	first = await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)
	clock.advance(minutes=30)
	second = await alert_service.raise_if_needed(soil_sensor, CRITICAL, 9.0)
	clock.advance(minutes=31)
	third = await alert_service.raise_if_needed(soil_sensor, CRITICAL, 7.0)

	assert first is not None
	assert second is None
	assert third is not None and third.id != first.id


@pytest.mark.asyncio
async def test_suppression_is_per_severity(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	repo: InMemoryRepository,
) -> None:
	await alert_service.raise_if_needed(soil_sensor, WARNING, 15.0)
	await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)
	await alert_service.raise_if_needed(soil_sensor, WARNING, 16.0)

	severities = sorted(alert.severity.value for alert in repo.alerts_for(soil_sensor.sensor_id))
	assert severities == ["critical", "warning"]


@pytest.mark.asyncio
async def test_resolved_alert_does_not_suppress(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	owner: Recipient,
) -> None:
	first = await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)
	assert first is not None
	await alert_service.resolve(first.id, owner.user_id, "irrigated")

	second = await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.5)
	assert second is not None


@pytest.mark.asyncio
async def test_concurrent_breaches_create_one_alert(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	repo: InMemoryRepository,
) -> None:
	results = await asyncio.gather(
		*(alert_service.raise_if_needed(soil_sensor, CRITICAL, 5.0 + i * 0.1) for i in range(20))
	)

	created = [alert for alert in results if alert is not None]
	assert len(created) == 1
	assert len(repo.alerts_for(soil_sensor.sensor_id)) == 1
	assert len(alert_service.locks) == 0
	assert set(repo.acquired_keys) == {SuppressionKey(soil_sensor.sensor_id, AlertCategoryEnum.sensor_threshold, AlertSeverityEnum.critical).token}


@pytest.mark.asyncio
async def test_alert_survives_failing_dispatcher(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	repo: InMemoryRepository,
) -> None:
	alert_service.dispatcher.dispatch = AsyncMock(side_effect=RuntimeError("directory offline"))  # type: ignore[union-attr]

	alert = await alert_service.raise_if_needed(soil_sensor, WARNING, 85.0)
	deliveries = await alert_service.commit()

	assert alert is not None
	assert alert.id in repo.alerts
	assert deliveries == {alert.id: {}}


@pytest.mark.asyncio
async def test_alert_survives_every_channel_failing(
	repo: InMemoryRepository,
	soil_sensor: SensorContext,
	settings: Settings,
	clock: FakeClock,
) -> None:
	failing = RecordingNotifier(failing=list(ChannelEnum))
	service = AlertService(
		repo,  # type: ignore[arg-type]
		dispatcher=NotificationDispatcher(repo, {channel: failing for channel in ChannelEnum}),
		settings=settings,
		clock=clock,
	)

	alert = await service.raise_if_needed(soil_sensor, CRITICAL, 99.0)
	deliveries = await service.commit()

	assert alert is not None
	assert failing.sent == []
	assert not any(result.succeeded for result in deliveries[alert.id].values())


@pytest.mark.asyncio
async def test_storage_failure_propagates(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	repo: InMemoryRepository,
) -> None:
	repo.fail_alert_insert = True
	with pytest.raises(StorageFailure):
		await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)


@pytest.mark.asyncio
async def test_created_alert_is_published_and_dispatched(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	fake_redis: FakeRedis,
	notifier: RecordingNotifier,
) -> None:
	alert = await alert_service.raise_if_needed(soil_sensor, WARNING, 85.0)
	assert alert is not None
	assert notifier.sent == []
	assert fake_redis.published_channels() == []

	deliveries = await alert_service.commit()

	assert list(deliveries) == [alert.id]
	assert fake_redis.published_channels() == [
		f"user:{soil_sensor.owner_id}:alerts",
		f"parcel:{soil_sensor.parcel_id}:live",
	]
	assert set(notifier.channels()) == set(ChannelEnum)
	assert alert_service.pending == []


@pytest.mark.asyncio
async def test_rolled_back_alert_is_never_announced(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	repo: InMemoryRepository,
	fake_redis: FakeRedis,
	notifier: RecordingNotifier,
) -> None:
	await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)
	await alert_service.rollback()

	assert await alert_service.commit() == {}
	assert repo.rollbacks == 1
	assert notifier.sent == []
	assert fake_redis.published_channels() == []


@pytest.mark.asyncio
async def test_failed_commit_sends_nothing(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	repo: InMemoryRepository,
	notifier: RecordingNotifier,
) -> None:
	repo.commit = AsyncMock(side_effect=StorageFailure("could not commit the transaction"))  # type: ignore[method-assign]
	await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)

	with pytest.raises(StorageFailure):
		await alert_service.commit()

	assert notifier.sent == []


def test_services_share_the_process_lock(
	runtime: Runtime,
	repo: InMemoryRepository,
	settings: Settings,
) -> None:
	assert runtime.alert_service(None).locks is runtime.locks
	assert runtime.ingest_service(None).alert_service.locks is runtime.locks

	shared = KeyedLock()
	assert AlertService(repo, locks=shared, settings=settings).locks is shared  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_concurrent_breaches_through_two_services_create_one_alert(
	repo: InMemoryRepository,
	soil_sensor: SensorContext,
	settings: Settings,
	clock: FakeClock,
) -> None:
	shared = KeyedLock()
	services = [
		AlertService(repo, locks=shared, settings=settings, clock=clock)  # type: ignore[arg-type]
		for _ in range(2)
	]

	results = await asyncio.gather(
		*(services[i % 2].raise_if_needed(soil_sensor, CRITICAL, 5.0 + i * 0.1) for i in range(10))
	)

	assert len([alert for alert in results if alert is not None]) == 1
	assert len(repo.alerts_for(soil_sensor.sensor_id)) == 1


@pytest.mark.asyncio
async def test_batch_and_single_ingest_on_one_key_do_not_block_each_other(
	repo: InMemoryRepository,
	soil_sensor: SensorContext,
	settings: Settings,
	clock: FakeClock,
	notifier: RecordingNotifier,
) -> None:
	key_locks = TransactionKeyLocks()
	shared = KeyedLock()

	def open_session() -> tuple[IngestService, AlertService]:
		session = SessionRepository(repo, key_locks)
		alerts = AlertService(
			session,  # type: ignore[arg-type]
			dispatcher=NotificationDispatcher(session, {channel: notifier for channel in ChannelEnum}),  # type: ignore[arg-type]
			locks=shared,
			settings=settings,
			clock=clock,
		)
		return IngestService(session, alerts, clock=clock), alerts  # type: ignore[arg-type]

	batch_ingest, batch_alerts = open_session()
	single_ingest, single_alerts = open_session()

	async def run_batch() -> BatchResult:
		result = await batch_ingest.ingest_batch(
			[
				{"sensor_id": str(soil_sensor.sensor_id), "value": 8.0},
				{"sensor_id": str(soil_sensor.sensor_id), "value": 8.5},
			]
		)
		await batch_alerts.commit()
		return result

	async def run_single() -> IngestReceipt:
		receipt = await single_ingest.ingest(soil_sensor.sensor_id, 9.0)
		await single_alerts.commit()
		return receipt

	batch, single = await asyncio.wait_for(asyncio.gather(run_batch(), run_single()), timeout=2)

	assert batch.inserted_count == 2
	assert len(batch.alert_ids) + (single.alert_id is not None) == 1
	assert len(repo.alerts_for(soil_sensor.sensor_id)) == 1
	assert key_locks.owners == {}
	assert len(shared) == 0
	# Notified once, after the creating transaction committed.
	assert {alert_id for _channel, _user_id, alert_id in notifier.sent} == {
		alert.id for alert in repo.alerts_for(soil_sensor.sensor_id)
	}


@pytest.mark.asyncio
async def test_acknowledge_then_resolve(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	owner: Recipient,
	clock: FakeClock,
) -> None:
	alert = await alert_service.raise_if_needed(soil_sensor, WARNING, 85.0)
	assert alert is not None

	acked = await alert_service.acknowledge(alert.id, owner.user_id)
	assert acked.status == AlertStatusEnum.acknowledged
	assert acked.acknowledged_by == owner.user_id
	acked_at = acked.acknowledged_at

	clock.advance(minutes=5)
	again = await alert_service.acknowledge(alert.id, uuid.uuid4())
	assert again.acknowledged_at == acked_at
	assert again.acknowledged_by == owner.user_id

	resolved = await alert_service.resolve(alert.id, owner.user_id, "valve fixed")
	assert resolved.status == AlertStatusEnum.resolved
	assert resolved.resolution_notes == "valve fixed"


@pytest.mark.asyncio
async def test_resolve_is_idempotent(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	owner: Recipient,
	clock: FakeClock,
) -> None:
	alert = await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)
	assert alert is not None

	first = await alert_service.resolve(alert.id, owner.user_id, "first")
	resolved_at = first.resolved_at
	clock.advance(hours=1)
	second = await alert_service.resolve(alert.id, uuid.uuid4(), "second")

	assert second.status == AlertStatusEnum.resolved
	assert second.resolved_at == resolved_at
	assert second.resolved_by == owner.user_id
	assert second.resolution_notes == "first"

	after_ack = await alert_service.acknowledge(alert.id, owner.user_id)
	assert after_ack.status == AlertStatusEnum.resolved


@pytest.mark.asyncio
async def test_new_alert_can_be_resolved_directly(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	owner: Recipient,
) -> None:
	alert = await alert_service.raise_if_needed(soil_sensor, WARNING, 18.0)
	assert alert is not None
	resolved = await alert_service.resolve(alert.id, owner.user_id)
	assert resolved.status == AlertStatusEnum.resolved
	assert resolved.acknowledged_at is None


@pytest.mark.asyncio
async def test_lifecycle_on_missing_alert_raises(alert_service: AlertService) -> None:
	with pytest.raises(NotFoundError):
		await alert_service.acknowledge(uuid.uuid4(), uuid.uuid4())
	with pytest.raises(NotFoundError):
		await alert_service.resolve(uuid.uuid4(), uuid.uuid4())
	with pytest.raises(NotFoundError):
		await alert_service.mark_read(uuid.uuid4())


@pytest.mark.asyncio
async def test_manual_alert_to_explicit_recipients(alert_service: AlertService, repo: InMemoryRepository) -> None:
	actor = repo.add_user(full_name="Agronomist")
	first, second = repo.add_user(), repo.add_user()

	alerts = await alert_service.raise_alert(
		ManualAlertIn(
			actor_id=actor.user_id,
			title="Locust swarm nearby",
			message="Swarm reported 10 km east.",
			severity=AlertSeverityEnum.critical,
			recipients=[first.user_id, second.user_id, first.user_id],
		)
	)

	assert [alert.user_id for alert in alerts] == [first.user_id, second.user_id]
	assert all(alert.source == AlertSourceEnum.manual for alert in alerts)


@pytest.mark.asyncio
async def test_manual_alert_defaults_to_parcel_owner_then_actor(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	owner: Recipient,
	repo: InMemoryRepository,
) -> None:
	actor = repo.add_user(full_name="Extension officer")

	by_parcel = await alert_service.raise_alert(
		ManualAlertIn(actor_id=actor.user_id, title="Visit", message="Field visit tomorrow", parcel_id=soil_sensor.parcel_id)
	)
	by_sensor = await alert_service.raise_alert(
		ManualAlertIn(actor_id=actor.user_id, title="Check", message="Check the probe", sensor_id=soil_sensor.sensor_id)
	)
	to_self = await alert_service.raise_alert(ManualAlertIn(actor_id=actor.user_id, title="Note", message="Reminder"))

	assert [alert.user_id for alert in by_parcel] == [owner.user_id]
	assert by_sensor[0].user_id == owner.user_id
	assert by_sensor[0].parcel_id == soil_sensor.parcel_id
	assert [alert.user_id for alert in to_self] == [actor.user_id]


@pytest.mark.asyncio
async def test_manual_alert_is_never_suppressed(alert_service: AlertService, owner: Recipient) -> None:
	payload = ManualAlertIn(actor_id=owner.user_id, title="Same", message="Same")
	first = await alert_service.raise_alert(payload)
	second = await alert_service.raise_alert(payload)
	assert first[0].id != second[0].id


@pytest.mark.asyncio
async def test_manual_alert_unknown_parcel(alert_service: AlertService, owner: Recipient) -> None:
	with pytest.raises(NotFoundError):
		await alert_service.raise_alert(
			ManualAlertIn(actor_id=owner.user_id, title="x", message="y", parcel_id=uuid.uuid4())
		)


@pytest.mark.asyncio
async def test_send_test_alert_reports_deliveries(
	alert_service: AlertService,
	owner: Recipient,
	notifier: RecordingNotifier,
) -> None:
	alert, deliveries = await alert_service.send_test_alert(owner.user_id)

	assert alert.category == AlertCategoryEnum.test
	assert alert.source == AlertSourceEnum.test
	assert alert.severity == AlertSeverityEnum.info
	assert all(result.succeeded for result in deliveries.values())
	assert len(notifier.sent) == 4

	with pytest.raises(NotFoundError):
		await alert_service.send_test_alert(uuid.uuid4())


@pytest.mark.asyncio
async def test_read_tracking_and_stats(
	alert_service: AlertService,
	soil_sensor: SensorContext,
	owner: Recipient,
) -> None:
	critical = await alert_service.raise_if_needed(soil_sensor, CRITICAL, 8.0)
	warning = await alert_service.raise_if_needed(soil_sensor, WARNING, 85.0)
	assert critical is not None and warning is not None
	await alert_service.acknowledge(warning.id, owner.user_id)

	read = await alert_service.mark_read(critical.id)
	assert read.read_at is not None

	stats = await alert_service.stats(owner.user_id)
	assert stats.total == 2
	assert stats.unread == 1
	assert stats.new == 1 and stats.acknowledged == 1
	assert stats.critical == 1 and stats.warning == 1
	assert stats.by_category_7d == {"sensor_threshold": 2}

	assert await alert_service.mark_all_read(owner.user_id) == 1
	assert (await alert_service.stats(owner.user_id)).unread == 0
