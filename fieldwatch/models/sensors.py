"""Time-series measurement ORM model.

Uses a BIGSERIAL primary key (via ``TimeSeriesMixin``) rather than a UUID.
The composite index on (sensor_id, measured_at) serves both the trailing
window scans of the trend sweep and the latest-reading lookup.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from fieldwatch.models.base import Base, TimeSeriesMixin


class Measurement(Base, TimeSeriesMixin):
    """Immutable sensor reading."""

    __tablename__ = "measurements"
    __table_args__ = (
        Index("ix_measurements_sensor_measured_at", "sensor_id", "measured_at"),
    )

    sensor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("sensors.id", ondelete="CASCADE"),
        nullable=False,
    )
    value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    measured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Measurement id={self.id} sensor={self.sensor_id} "
            f"value={self.value} at={self.measured_at}>"
        )
