"""Pydantic schemas for disease diagnosis results."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, Field


class DiseaseCandidate(BaseModel):
	disease: str
	confidence: float


class DiagnosisResponse(BaseModel):
	disease: str | None = None
	confidence: float = 0.0
	alternatives: list[DiseaseCandidate] = Field(default_factory=list)
	alert_ids: list[uuid.UUID] = Field(default_factory=list)
