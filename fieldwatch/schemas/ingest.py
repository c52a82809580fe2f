"""Pydantic schemas for measurement ingestion payloads."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MeasurementIn(BaseModel):
	sensor_id: uuid.UUID
	value: float
	unit: str | None = Field(default=None, max_length=32)
	measured_at: datetime | None = None


class IngestWarning(BaseModel):
	index: int
	message: str


class IngestReceipt(BaseModel):
	measurement_id: int
	sensor_id: uuid.UUID
	measured_at: datetime
	zone: str
	alert_id: uuid.UUID | None = None
	warnings: list[str] = Field(default_factory=list)


class BatchIngestRequest(BaseModel):
	# Items stay untyped here so one malformed entry is reported per item
	# instead of rejecting the whole request.
	items: list[Any] = Field(min_length=1, max_length=5000)


class BatchError(BaseModel):
	index: int
	sensor_id: str | None = None
	reason: str
	detail: str


class BatchResult(BaseModel):
	inserted_count: int = 0
	errors: list[BatchError] = Field(default_factory=list)
	alert_ids: list[uuid.UUID] = Field(default_factory=list)
	warnings: list[IngestWarning] = Field(default_factory=list)


class MeasurementRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	sensor_id: uuid.UUID
	value: float
	unit: str | None = None
	measured_at: datetime
	ingested_at: datetime | None = None
