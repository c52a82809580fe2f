"""Fire-and-forget pub/sub events for live dashboards."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from redis.asyncio import Redis

from fieldwatch.models.alerts import Alert
from fieldwatch.models.sensors import Measurement

logger = structlog.get_logger(__name__)


def parcel_channel(parcel_id: uuid.UUID) -> str:
	return f"parcel:{parcel_id}:live"


def user_alert_channel(user_id: uuid.UUID) -> str:
	return f"user:{user_id}:alerts"


class EventPublisher:
	"""Publishes JSON envelopes on Redis; without Redis every publish is a no-op.

	Delivery is best effort: publish errors are logged and swallowed.
	"""

	def __init__(self, redis_client: Redis | None = None):
		self.redis_client = redis_client

	async def publish(self, channel: str, payload: dict[str, Any]) -> None:
		if self.redis_client is None:
			return
		try:
			await self.redis_client.publish(channel, json.dumps(payload, default=str))
		except Exception as exc:
			logger.warning("event_publish_failed", channel=channel, error=str(exc))

	async def measurement_created(self, parcel_id: uuid.UUID, measurement: Measurement) -> None:
		await self.publish(
			parcel_channel(parcel_id),
			{
				"event_type": "measurement",
				"parcel_id": str(parcel_id),
				"sensor_id": str(measurement.sensor_id),
				"record_id": measurement.id,
				"value": measurement.value,
				"unit": measurement.unit,
				"measured_at": measurement.measured_at.isoformat(),
				"published_at": datetime.now(UTC).isoformat(),
			},
		)

	async def alert_created(self, alert: Alert) -> None:
		payload = {
			"event_type": "alert",
			"alert_id": str(alert.id),
			"user_id": str(alert.user_id),
			"parcel_id": str(alert.parcel_id) if alert.parcel_id else None,
			"sensor_id": str(alert.sensor_id) if alert.sensor_id else None,
			"category": alert.category.value,
			"severity": alert.severity.value,
			"title": alert.title,
			"message": alert.message,
			"published_at": datetime.now(UTC).isoformat(),
		}
		await self.publish(user_alert_channel(alert.user_id), payload)
		if alert.parcel_id is not None:
			await self.publish(parcel_channel(alert.parcel_id), payload)
