"""initial_schema

Revision ID: 3f1c9a7e2b64
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the 6 FieldWatch tables, 6 PostgreSQL enum types, and the indexes
used by suppression lookups, offline sweeps and latest-reading queries.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f1c9a7e2b64"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# ── Enum type names (PostgreSQL CREATE TYPE) ────────────────────────────────
ENUM_SENSOR_TYPE = postgresql.ENUM(
    "soil_moisture",
    "air_temperature",
    "air_humidity",
    "light",
    "rainfall",
    "soil_ph",
    "water_level",
    name="sensor_type",
    create_type=False,
)
ENUM_SENSOR_STATUS = postgresql.ENUM(
    "active", "inactive", "maintenance", name="sensor_status", create_type=False
)
ENUM_ALERT_CATEGORY = postgresql.ENUM(
    "sensor_threshold",
    "sensor_offline",
    "trend",
    "manual",
    "test",
    name="alert_category",
    create_type=False,
)
ENUM_ALERT_SEVERITY = postgresql.ENUM(
    "info", "warning", "critical", name="alert_severity", create_type=False
)
ENUM_ALERT_STATUS = postgresql.ENUM(
    "new", "acknowledged", "resolved", name="alert_status", create_type=False
)
ENUM_ALERT_SOURCE = postgresql.ENUM(
    "automatic", "manual", "test", name="alert_source", create_type=False
)

ALL_ENUMS = (
    ENUM_SENSOR_TYPE,
    ENUM_SENSOR_STATUS,
    ENUM_ALERT_CATEGORY,
    ENUM_ALERT_SEVERITY,
    ENUM_ALERT_STATUS,
    ENUM_ALERT_SOURCE,
)


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("uuid_generate_v4()"),
        nullable=False,
    )


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. Create enum types ────────────────────────────────────────────
    for enum_type in ALL_ENUMS:
        enum_type.create(op.get_bind(), checkfirst=True)

    # ── 2. Ownership chain ──────────────────────────────────────────────

    # users
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("notification_preferences", postgresql.JSONB(), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    # parcels
    op.create_table(
        "parcels",
        _uuid_pk(),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_parcels_owner_id", "parcels", ["owner_id"])

    # stations
    op.create_table(
        "stations",
        _uuid_pk(),
        sa.Column("parcel_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["parcel_id"], ["parcels.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stations_parcel_id", "stations", ["parcel_id"])

    # sensors
    op.create_table(
        "sensors",
        _uuid_pk(),
        sa.Column("station_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sensor_type", ENUM_SENSOR_TYPE, nullable=False),
        sa.Column(
            "status",
            ENUM_SENSOR_STATUS,
            server_default=sa.text("'active'"),
            nullable=False,
        ),
        sa.Column("threshold_override", postgresql.JSONB(), nullable=True),
        sa.Column("last_measurement_at", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["station_id"], ["stations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sensors_station_id", "sensors", ["station_id"])
    op.create_index(
        "ix_sensors_status_last_measurement",
        "sensors",
        ["status", "last_measurement_at"],
    )

    # ── 3. Time-series ──────────────────────────────────────────────────

    # measurements
    op.create_table(
        "measurements",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("sensor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(32), nullable=True),
        sa.Column("measured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "ingested_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["sensor_id"], ["sensors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_measurements_sensor_measured_at",
        "measurements",
        ["sensor_id", "measured_at"],
    )

    # ── 4. Alerts ───────────────────────────────────────────────────────

    op.create_table(
        "alerts",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("parcel_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("sensor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("category", ENUM_ALERT_CATEGORY, nullable=False),
        sa.Column("severity", ENUM_ALERT_SEVERITY, nullable=False),
        sa.Column(
            "status",
            ENUM_ALERT_STATUS,
            server_default=sa.text("'new'"),
            nullable=False,
        ),
        sa.Column(
            "source",
            ENUM_ALERT_SOURCE,
            server_default=sa.text("'automatic'"),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parcel_id"], ["parcels.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["sensor_id"], ["sensors.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_alerts_suppression",
        "alerts",
        ["sensor_id", "category", "severity", "status", "created_at"],
    )
    op.create_index("ix_alerts_user_status", "alerts", ["user_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_alerts_user_status", table_name="alerts")
    op.drop_index("ix_alerts_suppression", table_name="alerts")
    op.drop_table("alerts")

    op.drop_index("ix_measurements_sensor_measured_at", table_name="measurements")
    op.drop_table("measurements")

    op.drop_index("ix_sensors_status_last_measurement", table_name="sensors")
    op.drop_index("ix_sensors_station_id", table_name="sensors")
    op.drop_table("sensors")

    op.drop_index("ix_stations_parcel_id", table_name="stations")
    op.drop_table("stations")

    op.drop_index("ix_parcels_owner_id", table_name="parcels")
    op.drop_table("parcels")

    op.drop_table("users")

    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(op.get_bind(), checkfirst=True)
