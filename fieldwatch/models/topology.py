"""User, Parcel, Station, Sensor ORM models: the sensor ownership chain.

Users and parcels are maintained by external collaborators; this service
only reads them to resolve alert recipients and notification preferences.
A sensor belongs to a station, which belongs to a parcel owned by a user.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from fieldwatch.models.enums import SensorStatusEnum, SensorTypeEnum

# ═══════════════════════════════════════════════════════════════════════════
# User (recipient profile)
# ═══════════════════════════════════════════════════════════════════════════


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Alert recipient.

    ``notification_preferences`` (JSONB) holds ``{email, sms, whatsapp,
    push}`` booleans.  NULL means every channel is enabled.
    """

    __tablename__ = "users"

    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    notification_preferences: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"


# ═══════════════════════════════════════════════════════════════════════════
# Parcel
# ═══════════════════════════════════════════════════════════════════════════


class Parcel(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A cultivated plot owned by one user."""

    __tablename__ = "parcels"
    __table_args__ = (Index("ix_parcels_owner_id", "owner_id"),)

    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # ── Relationships ────────────────────────────────────────────────────
    stations: Mapped[list[Station]] = relationship(
        back_populates="parcel",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Parcel id={self.id} name={self.name!r}>"


# ═══════════════════════════════════════════════════════════════════════════
# Station
# ═══════════════════════════════════════════════════════════════════════════


class Station(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A field station grouping the sensors installed on a parcel."""

    __tablename__ = "stations"
    __table_args__ = (Index("ix_stations_parcel_id", "parcel_id"),)

    parcel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("parcels.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # ── Relationships ────────────────────────────────────────────────────
    parcel: Mapped[Parcel] = relationship(back_populates="stations")
    sensors: Mapped[list[Sensor]] = relationship(
        back_populates="station",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Station id={self.id} name={self.name!r}>"


# ═══════════════════════════════════════════════════════════════════════════
# Sensor
# ═══════════════════════════════════════════════════════════════════════════


class Sensor(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A single physical measurement source of one fixed type.

    ``threshold_override`` (JSONB) holds any subset of ``min``, ``max``,
    ``critical_min``, ``critical_max``; present fields win over the type
    default individually.  ``last_measurement_at`` only ever moves forward.
    """

    __tablename__ = "sensors"
    __table_args__ = (
        Index("ix_sensors_station_id", "station_id"),
        Index("ix_sensors_status_last_measurement", "status", "last_measurement_at"),
    )

    station_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("stations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sensor_type: Mapped[SensorTypeEnum] = mapped_column(
        Enum(
            SensorTypeEnum,
            name="sensor_type",
            create_constraint=False,
            native_enum=True,
        ),
        nullable=False,
    )
    status: Mapped[SensorStatusEnum] = mapped_column(
        Enum(
            SensorStatusEnum,
            name="sensor_status",
            create_constraint=False,
            native_enum=True,
        ),
        nullable=False,
        default=SensorStatusEnum.active,
        server_default=SensorStatusEnum.active.value,
    )
    threshold_override: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True
    )
    last_measurement_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Relationships ────────────────────────────────────────────────────
    station: Mapped[Station] = relationship(back_populates="sensors")

    def __repr__(self) -> str:
        return (
            f"<Sensor id={self.id} type={self.sensor_type} "
            f"status={self.status}>"
        )
