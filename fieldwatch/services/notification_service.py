"""Multi-channel alert fan-out.

The dispatcher decides *whether* and *to whom* each channel is used; the
actual transport sits behind the ``Notifier`` protocol.  Every channel is
attempted independently and at most once: a failing channel is logged and
reported in the result map, never raised.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping
from typing import Protocol

import httpx
import structlog

from fieldwatch.errors import ChannelDeliveryFailed
from fieldwatch.models.alerts import Alert
from fieldwatch.models.enums import AlertSeverityEnum, ChannelEnum
from fieldwatch.repository import Recipient
from fieldwatch.schemas.notifications import ChannelResult, NotificationPreference

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
	"""Delivers one alert over one channel; raises on failure."""

	async def send(self, channel: ChannelEnum, recipient: Recipient, alert: Alert) -> None:
		...


class RecipientDirectory(Protocol):
	async def get_recipient(self, user_id: uuid.UUID) -> Recipient | None:
		...


def select_channels(severity: AlertSeverityEnum, preferences: NotificationPreference) -> list[ChannelEnum]:
	"""Channels to attempt: preference flags, plus SMS whenever the alert is critical."""
	selected: list[ChannelEnum] = []
	for channel in ChannelEnum:
		if channel == ChannelEnum.sms and severity == AlertSeverityEnum.critical:
			selected.append(channel)
		elif preferences.allows(channel):
			selected.append(channel)
	return selected


def _missing_address(channel: ChannelEnum, recipient: Recipient) -> str | None:
	if channel == ChannelEnum.email and not recipient.email:
		return "recipient has no email address"
	if channel in (ChannelEnum.sms, ChannelEnum.whatsapp) and not recipient.phone:
		return "recipient has no phone number"
	return None


def render_text(alert: Alert) -> str:
	return f"FieldWatch - {alert.title}\n\n{alert.message}"


class LogNotifier:
	"""Writes deliveries to the structured log; used when no gateway is configured."""

	async def send(self, channel: ChannelEnum, recipient: Recipient, alert: Alert) -> None:
		logger.info(
			"notification_logged",
			channel=channel.value,
			user_id=str(recipient.user_id),
			alert_id=str(alert.id),
			severity=alert.severity.value,
			title=alert.title,
		)


class WebhookNotifier:
	"""Hands deliveries to an external messaging gateway over HTTP."""

	def __init__(
		self,
		url: str,
		*,
		timeout_seconds: float = 10.0,
		client: httpx.AsyncClient | None = None,
	):
		self.url = url
		self.timeout_seconds = timeout_seconds
		self.client = client

	async def send(self, channel: ChannelEnum, recipient: Recipient, alert: Alert) -> None:
		body = {
			"channel": channel.value,
			"recipient": {
				"user_id": str(recipient.user_id),
				"name": recipient.full_name,
				"email": recipient.email,
				"phone": recipient.phone,
			},
			"alert": {
				"id": str(alert.id),
				"severity": alert.severity.value,
				"category": alert.category.value,
				"title": alert.title,
				"message": alert.message,
			},
			"text": render_text(alert),
		}
		try:
			if self.client is not None:
				response = await self.client.post(self.url, json=body, timeout=self.timeout_seconds)
			else:
				async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
					response = await client.post(self.url, json=body)
			response.raise_for_status()
		except httpx.HTTPError as exc:
			raise ChannelDeliveryFailed(f"{channel.value} gateway error: {exc}") from exc


class NotificationDispatcher:
	def __init__(self, directory: RecipientDirectory, notifiers: Mapping[ChannelEnum, Notifier]):
		self.directory = directory
		self.notifiers = dict(notifiers)

	async def dispatch(self, alert: Alert) -> dict[str, ChannelResult]:
		recipient = await self.directory.get_recipient(alert.user_id)
		if recipient is None:
			logger.warning("notification_recipient_missing", user_id=str(alert.user_id), alert_id=str(alert.id))
			return {}

		results: dict[str, ChannelResult] = {channel.value: ChannelResult() for channel in ChannelEnum}
		attempts: list[tuple[ChannelEnum, Notifier]] = []
		for channel in select_channels(alert.severity, recipient.preferences):
			missing = _missing_address(channel, recipient)
			notifier = self.notifiers.get(channel)
			if missing is not None:
				results[channel.value].error = missing
			elif notifier is None:
				results[channel.value].error = "no notifier configured"
			else:
				attempts.append((channel, notifier))

		outcomes = await asyncio.gather(
			*(notifier.send(channel, recipient, alert) for channel, notifier in attempts),
			return_exceptions=True,
		)
		for (channel, _notifier), outcome in zip(attempts, outcomes):
			result = results[channel.value]
			result.attempted = True
			if isinstance(outcome, BaseException):
				result.error = str(outcome) or type(outcome).__name__
				logger.warning(
					"channel_dispatch_failed",
					channel=channel.value,
					alert_id=str(alert.id),
					user_id=str(recipient.user_id),
					error=result.error,
				)
			else:
				result.succeeded = True

		logger.info(
			"alert_dispatch_complete",
			alert_id=str(alert.id),
			user_id=str(recipient.user_id),
			delivered=[name for name, result in results.items() if result.succeeded],
			failed=[name for name, result in results.items() if result.attempted and not result.succeeded],
		)
		return results


def build_notifiers(webhook_url: str = "", timeout_seconds: float = 10.0) -> dict[ChannelEnum, Notifier]:
	notifier: Notifier
	if webhook_url:
		notifier = WebhookNotifier(webhook_url, timeout_seconds=timeout_seconds)
	else:
		notifier = LogNotifier()
	return {channel: notifier for channel in ChannelEnum}
