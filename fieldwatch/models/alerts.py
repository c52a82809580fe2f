"""Alert ORM model: one row per raised alert, never physically deleted here."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from fieldwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from fieldwatch.models.enums import (
	AlertCategoryEnum,
	AlertSeverityEnum,
	AlertSourceEnum,
	AlertStatusEnum,
)


class Alert(Base, UUIDPrimaryKeyMixin, TimestampMixin):
	"""Tracks the lifecycle of an alert delivered to one recipient.

	The suppression lookup filters on (sensor_id, category, severity, status,
	created_at), which the composite index covers.
	"""

	__tablename__ = "alerts"
	__table_args__ = (
		Index(
			"ix_alerts_suppression",
			"sensor_id",
			"category",
			"severity",
			"status",
			"created_at",
		),
		Index("ix_alerts_user_status", "user_id", "status"),
	)

	user_id: Mapped[uuid.UUID] = mapped_column(
		UUID(as_uuid=True),
		ForeignKey("users.id", ondelete="CASCADE"),
		nullable=False,
	)
	parcel_id: Mapped[uuid.UUID | None] = mapped_column(
		UUID(as_uuid=True),
		ForeignKey("parcels.id", ondelete="SET NULL"),
		nullable=True,
	)
	sensor_id: Mapped[uuid.UUID | None] = mapped_column(
		UUID(as_uuid=True),
		ForeignKey("sensors.id", ondelete="SET NULL"),
		nullable=True,
	)
	category: Mapped[AlertCategoryEnum] = mapped_column(
		Enum(AlertCategoryEnum, name="alert_category", create_constraint=False, native_enum=True),
		nullable=False,
	)
	severity: Mapped[AlertSeverityEnum] = mapped_column(
		Enum(AlertSeverityEnum, name="alert_severity", create_constraint=False, native_enum=True),
		nullable=False,
	)
	status: Mapped[AlertStatusEnum] = mapped_column(
		Enum(AlertStatusEnum, name="alert_status", create_constraint=False, native_enum=True),
		nullable=False,
		default=AlertStatusEnum.new,
		server_default=AlertStatusEnum.new.value,
	)
	source: Mapped[AlertSourceEnum] = mapped_column(
		Enum(AlertSourceEnum, name="alert_source", create_constraint=False, native_enum=True),
		nullable=False,
		default=AlertSourceEnum.automatic,
		server_default=AlertSourceEnum.automatic.value,
	)
	title: Mapped[str] = mapped_column(String(255), nullable=False)
	message: Mapped[str] = mapped_column(Text, nullable=False)
	acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
	acknowledged_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
	resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
	resolved_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
	resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
	read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

	def __repr__(self) -> str:
		return f"<Alert id={self.id} category={self.category} severity={self.severity} status={self.status}>"
