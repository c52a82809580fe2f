"""Pydantic schemas for alert endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from fieldwatch.models.enums import (
	AlertCategoryEnum,
	AlertSeverityEnum,
	AlertSourceEnum,
	AlertStatusEnum,
)
from fieldwatch.schemas.notifications import ChannelResult


class AlertRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: uuid.UUID
	user_id: uuid.UUID
	parcel_id: uuid.UUID | None = None
	sensor_id: uuid.UUID | None = None
	category: AlertCategoryEnum
	severity: AlertSeverityEnum
	status: AlertStatusEnum
	source: AlertSourceEnum
	title: str
	message: str
	created_at: datetime
	acknowledged_at: datetime | None = None
	acknowledged_by: uuid.UUID | None = None
	resolved_at: datetime | None = None
	resolved_by: uuid.UUID | None = None
	resolution_notes: str | None = None
	read_at: datetime | None = None


class ManualAlertIn(BaseModel):
	actor_id: uuid.UUID
	category: AlertCategoryEnum = AlertCategoryEnum.manual
	severity: AlertSeverityEnum = AlertSeverityEnum.info
	title: str = Field(min_length=1, max_length=255)
	message: str = Field(min_length=1)
	parcel_id: uuid.UUID | None = None
	sensor_id: uuid.UUID | None = None
	recipients: list[uuid.UUID] | None = None


class AlertTestIn(BaseModel):
	user_id: uuid.UUID
	severity: AlertSeverityEnum = AlertSeverityEnum.info


class AcknowledgeIn(BaseModel):
	actor_id: uuid.UUID


class ResolveIn(BaseModel):
	actor_id: uuid.UUID
	notes: str | None = Field(default=None, max_length=4000)


class MarkAllReadIn(BaseModel):
	user_id: uuid.UUID


class MarkAllReadResponse(BaseModel):
	user_id: uuid.UUID
	updated_count: int


class AlertListResponse(BaseModel):
	items: list[AlertRead]


class AlertStats(BaseModel):
	total: int = 0
	unread: int = 0
	new: int = 0
	acknowledged: int = 0
	resolved: int = 0
	critical: int = 0
	warning: int = 0
	info: int = 0
	last_24h: int = 0
	by_category_7d: dict[str, int] = Field(default_factory=dict)


class AlertTestResponse(BaseModel):
	alert: AlertRead
	deliveries: dict[str, ChannelResult] = Field(default_factory=dict)
