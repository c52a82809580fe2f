"""Pydantic schemas for on-demand sweep runs."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class SweepResponse(BaseModel):
	sweep: str
	ran_at: datetime
	alerts_created: int = 0
	alert_ids: list[uuid.UUID] = Field(default_factory=list)
