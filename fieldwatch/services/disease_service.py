"""Crop disease diagnosis on top of a pluggable image classifier."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from fieldwatch.config import Settings, get_settings
from fieldwatch.errors import InvalidInputError
from fieldwatch.models.alerts import Alert
from fieldwatch.models.enums import AlertCategoryEnum, AlertSeverityEnum
from fieldwatch.schemas.alerts import ManualAlertIn
from fieldwatch.services.alert_service import AlertService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DiseasePrediction:
	disease: str | None
	confidence: float
	alternatives: tuple[tuple[str, float], ...] = ()


class DiseaseClassifier(Protocol):
	async def classify(self, image: bytes) -> DiseasePrediction:
		...


class NullClassifier:
	"""Stands in when no model is deployed: never reports a disease."""

	async def classify(self, image: bytes) -> DiseasePrediction:
		return DiseasePrediction(disease=None, confidence=0.0)


@dataclass(slots=True)
class Diagnosis:
	prediction: DiseasePrediction
	alerts: list[Alert] = field(default_factory=list)

	@property
	def alert_ids(self) -> list[uuid.UUID]:
		return [alert.id for alert in self.alerts]


class DiagnosisService:
	def __init__(
		self,
		classifier: DiseaseClassifier,
		alert_service: AlertService,
		settings: Settings | None = None,
	):
		self.classifier = classifier
		self.alert_service = alert_service
		self.settings = settings or get_settings()

	async def diagnose(
		self,
		image: bytes,
		*,
		user_id: uuid.UUID,
		parcel_id: uuid.UUID | None = None,
	) -> Diagnosis:
		"""Classify ``image`` and alert the parcel owner (or the submitter) on a confident hit."""
		if not image:
			raise InvalidInputError("image is empty")
		prediction = await self.classifier.classify(image)
		logger.info(
			"disease_classified",
			user_id=str(user_id),
			disease=prediction.disease,
			confidence=round(prediction.confidence, 3),
		)
		diagnosis = Diagnosis(prediction=prediction)
		if prediction.disease is None or prediction.confidence < self.settings.disease_alert_min_confidence:
			return diagnosis

		diagnosis.alerts = await self.alert_service.raise_alert(
			ManualAlertIn(
				actor_id=user_id,
				category=AlertCategoryEnum.manual,
				severity=AlertSeverityEnum.warning,
				title=f"Disease detected: {prediction.disease}",
				message=(
					f"{prediction.disease} was identified on a submitted crop image "
					f"with {prediction.confidence:.0%} confidence. Inspect the affected plants."
				),
				parcel_id=parcel_id,
			)
		)
		return diagnosis
