"""Pydantic schemas for notification preferences and dispatch outcomes."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from fieldwatch.models.enums import ChannelEnum


class NotificationPreference(BaseModel):
	"""Per-user channel switches; anything unset counts as enabled."""

	model_config = ConfigDict(extra="ignore")

	email: bool = True
	sms: bool = True
	whatsapp: bool = True
	push: bool = True

	def allows(self, channel: ChannelEnum) -> bool:
		return bool(getattr(self, channel.value))


class ChannelResult(BaseModel):
	attempted: bool = False
	succeeded: bool = False
	error: str | None = None
