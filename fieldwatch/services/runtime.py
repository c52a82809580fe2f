"""Process-wide collaborators and the per-session service builders."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fieldwatch.config import Settings
from fieldwatch.models.enums import ChannelEnum
from fieldwatch.repository import Repository
from fieldwatch.services.alert_service import AlertService
from fieldwatch.services.disease_service import DiagnosisService, DiseaseClassifier, NullClassifier
from fieldwatch.services.events import EventPublisher
from fieldwatch.services.ingest_service import IngestService
from fieldwatch.services.measurement_service import MeasurementService
from fieldwatch.services.locks import KeyedLock
from fieldwatch.services.notification_service import NotificationDispatcher, Notifier, build_notifiers
from fieldwatch.services.scheduler import SweepJob, SweepScheduler
from fieldwatch.services.sweep_service import SweepService
from fieldwatch.services.thresholds import ThresholdEvaluator, build_profiles
from fieldwatch.services.weather_service import WeatherService


@dataclass
class Runtime:
	"""State shared by every request and sweep of one process.

	The keyed lock in particular must be a single instance per process for
	alert suppression to hold across concurrent requests.
	"""

	settings: Settings
	redis_client: Redis | None = None
	locks: KeyedLock = field(default_factory=KeyedLock)
	notifiers: dict[ChannelEnum, Notifier] = field(default_factory=dict)
	evaluator: ThresholdEvaluator = field(default_factory=ThresholdEvaluator)
	classifier: DiseaseClassifier = field(default_factory=NullClassifier)
	weather: WeatherService | None = None
	repository_factory: Callable[[Any], Repository] = Repository

	@classmethod
	def from_settings(cls, settings: Settings, redis_client: Redis | None = None) -> Runtime:
		return cls(
			settings=settings,
			redis_client=redis_client,
			notifiers=build_notifiers(settings.notifier_webhook_url, settings.notifier_timeout_seconds),
			evaluator=ThresholdEvaluator(build_profiles(settings.threshold_defaults)),
			weather=WeatherService(settings),
		)

	@property
	def publisher(self) -> EventPublisher:
		return EventPublisher(self.redis_client)

	def alert_service(self, db: AsyncSession | None) -> AlertService:
		repository = self.repository_factory(db)
		return AlertService(
			repository,
			dispatcher=NotificationDispatcher(repository, self.notifiers),
			publisher=self.publisher,
			locks=self.locks,
			settings=self.settings,
		)

	def ingest_service(self, db: AsyncSession | None) -> IngestService:
		alert_service = self.alert_service(db)
		return IngestService(
			alert_service.repository,
			alert_service,
			publisher=self.publisher,
			evaluator=self.evaluator,
		)

	def measurement_service(self, db: AsyncSession | None) -> MeasurementService:
		return MeasurementService(self.repository_factory(db), settings=self.settings)

	def sweep_service(self, db: AsyncSession | None) -> SweepService:
		alert_service = self.alert_service(db)
		return SweepService(
			alert_service.repository,
			alert_service,
			evaluator=self.evaluator,
			settings=self.settings,
		)

	def diagnosis_service(self, db: AsyncSession | None) -> DiagnosisService:
		return DiagnosisService(self.classifier, self.alert_service(db), self.settings)

	def weather_service(self) -> WeatherService:
		if self.weather is None:
			self.weather = WeatherService(self.settings)
		return self.weather

	def scheduler(self, session_factory: async_sessionmaker[AsyncSession]) -> SweepScheduler:
		async def run_offline(stop_event: asyncio.Event) -> None:
			async with session_factory() as session:
				await self.sweep_service(session).sweep_offline(stop_event=stop_event)

		async def run_trends(stop_event: asyncio.Event) -> None:
			async with session_factory() as session:
				await self.sweep_service(session).sweep_trends(stop_event=stop_event)

		return SweepScheduler(
			[
				SweepJob("offline", self.settings.offline_sweep_interval_seconds, run_offline),
				SweepJob("trends", self.settings.trend_sweep_interval_seconds, run_trends),
			]
		)
