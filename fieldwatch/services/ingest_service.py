"""Measurement ingestion: validation, storage, threshold evaluation and live events."""

from __future__ import annotations

import math
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from fieldwatch.errors import InvalidInputError, NotFoundError
from fieldwatch.models.alerts import Alert
from fieldwatch.models.sensors import Measurement
from fieldwatch.repository import Repository, SensorContext
from fieldwatch.schemas.ingest import (
	BatchError,
	BatchResult,
	IngestReceipt,
	IngestWarning,
	MeasurementIn,
)
from fieldwatch.services.alert_service import AlertService
from fieldwatch.services.events import EventPublisher
from fieldwatch.services.thresholds import NORMAL, ThresholdEvaluator, Verdict

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
	if value.tzinfo is None:
		return value.replace(tzinfo=UTC)
	return value


def _require_finite(value: Any) -> float:
	if isinstance(value, bool):
		raise InvalidInputError("value must be a number")
	try:
		number = float(value)
	except (TypeError, ValueError) as exc:
		raise InvalidInputError(f"value must be a number, got {value!r}") from exc
	if not math.isfinite(number):
		raise InvalidInputError(f"value must be finite, got {value!r}")
	return number


def _raw_sensor_id(item: Any) -> str | None:
	if isinstance(item, MeasurementIn):
		raw = item.sensor_id
	elif isinstance(item, Mapping):
		raw = item.get("sensor_id")
	else:
		return None
	return str(raw) if raw is not None else None


class IngestService:
	def __init__(
		self,
		repository: Repository,
		alert_service: AlertService,
		*,
		publisher: EventPublisher | None = None,
		evaluator: ThresholdEvaluator | None = None,
		clock: Callable[[], datetime] | None = None,
	):
		self.repository = repository
		self.alert_service = alert_service
		self.publisher = publisher or EventPublisher()
		self.evaluator = evaluator or ThresholdEvaluator()
		self.clock = clock or (lambda: datetime.now(UTC))

	async def ingest(
		self,
		sensor_id: uuid.UUID,
		value: float,
		unit: str | None = None,
		measured_at: datetime | None = None,
	) -> IngestReceipt:
		"""Store one reading and evaluate it.

		Raises ``NotFoundError`` for an unknown sensor and ``InvalidInputError``
		for a non-finite value.  Once the reading is stored, problems while
		raising an alert only show up as receipt warnings.
		"""
		number = _require_finite(value)
		sensor = await self.repository.get_sensor_context(sensor_id)
		if sensor is None:
			raise NotFoundError(f"Sensor {sensor_id} not found")

		row = Measurement(
			sensor_id=sensor.sensor_id,
			value=number,
			unit=unit,
			measured_at=_as_utc(measured_at) if measured_at is not None else self.clock(),
		)
		await self.repository.add_measurements([row])
		await self.repository.touch_sensor(sensor.sensor_id, row.measured_at)

		warnings: list[str] = []
		verdict, alert = await self._evaluate(sensor, row, warnings)
		await self.publisher.measurement_created(sensor.parcel_id, row)

		logger.info(
			"measurement_ingested",
			sensor_id=str(sensor.sensor_id),
			measurement_id=row.id,
			zone=verdict.zone.value,
			alert_id=str(alert.id) if alert else None,
		)
		return IngestReceipt(
			measurement_id=row.id,
			sensor_id=sensor.sensor_id,
			measured_at=row.measured_at,
			zone=verdict.zone.value,
			alert_id=alert.id if alert else None,
			warnings=warnings,
		)

	async def ingest_batch(self, items: Sequence[Any]) -> BatchResult:
		"""Store every valid item in one atomic insert; invalid items become per-item errors."""
		result = BatchResult()
		parsed: list[tuple[int, MeasurementIn]] = []
		for index, item in enumerate(items):
			try:
				parsed.append((index, self._parse_item(item)))
			except InvalidInputError as exc:
				result.errors.append(
					BatchError(index=index, sensor_id=_raw_sensor_id(item), reason=exc.reason, detail=exc.detail)
				)

		contexts = await self.repository.get_sensor_contexts([item.sensor_id for _, item in parsed])
		accepted: list[tuple[int, SensorContext, Measurement]] = []
		for index, item in parsed:
			sensor = contexts.get(item.sensor_id)
			if sensor is None:
				missing = NotFoundError(f"Sensor {item.sensor_id} not found")
				result.errors.append(
					BatchError(index=index, sensor_id=str(item.sensor_id), reason=missing.reason, detail=missing.detail)
				)
				continue
			row = Measurement(
				sensor_id=sensor.sensor_id,
				value=item.value,
				unit=item.unit,
				measured_at=_as_utc(item.measured_at) if item.measured_at is not None else self.clock(),
			)
			accepted.append((index, sensor, row))

		if accepted:
			await self.repository.add_measurements([row for _, _, row in accepted])
			latest: dict[uuid.UUID, datetime] = {}
			for _, sensor, row in accepted:
				current = latest.get(sensor.sensor_id)
				if current is None or row.measured_at > current:
					latest[sensor.sensor_id] = row.measured_at
			for sensor_id, measured_at in latest.items():
				await self.repository.touch_sensor(sensor_id, measured_at)

		for index, sensor, row in accepted:
			messages: list[str] = []
			_verdict, alert = await self._evaluate(sensor, row, messages)
			if alert is not None:
				result.alert_ids.append(alert.id)
			result.warnings.extend(IngestWarning(index=index, message=message) for message in messages)
			await self.publisher.measurement_created(sensor.parcel_id, row)

		result.inserted_count = len(accepted)
		result.errors.sort(key=lambda error: error.index)
		logger.info(
			"measurement_batch_ingested",
			submitted=len(items),
			inserted_count=result.inserted_count,
			failed_count=len(result.errors),
			alerts=len(result.alert_ids),
		)
		return result

	async def latest(self, sensor_id: uuid.UUID) -> Measurement:
		row = await self.repository.latest_measurement(sensor_id)
		if row is None:
			raise NotFoundError(f"No measurement for sensor {sensor_id}")
		return row

	@staticmethod
	def _parse_item(item: Any) -> MeasurementIn:
		if isinstance(item, MeasurementIn):
			parsed = item
		elif not isinstance(item, Mapping):
			raise InvalidInputError(f"item must be an object, got {type(item).__name__}")
		else:
			try:
				parsed = MeasurementIn.model_validate(dict(item))
			except ValidationError as exc:
				problems = "; ".join(
					f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
				)
				raise InvalidInputError(problems) from exc
		_require_finite(parsed.value)
		return parsed

	async def _evaluate(
		self,
		sensor: SensorContext,
		row: Measurement,
		warnings: list[str],
	) -> tuple[Verdict, Alert | None]:
		verdict = NORMAL
		try:
			verdict = self.evaluator.evaluate(sensor, row.value)
			alert = await self.alert_service.raise_if_needed(sensor, verdict, row.value)
		except Exception as exc:
			logger.error(
				"alert_evaluation_failed",
				sensor_id=str(sensor.sensor_id),
				measurement_id=row.id,
				error=str(exc),
			)
			warnings.append(f"alert evaluation failed: {exc}")
			return verdict, None
		return verdict, alert
