"""PostgreSQL-backed enum types for all ORM models.

Each StrEnum maps 1:1 to a PostgreSQL CREATE TYPE ... AS ENUM.
"""

from enum import StrEnum

# ── Sensor enums ────────────────────────────────────────────────────────────


class SensorTypeEnum(StrEnum):
    """Physical quantity measured by a sensor."""

    soil_moisture = "soil_moisture"
    air_temperature = "air_temperature"
    air_humidity = "air_humidity"
    light = "light"
    rainfall = "rainfall"
    soil_ph = "soil_ph"
    water_level = "water_level"


class SensorStatusEnum(StrEnum):
    """Operational status, managed outside the ingestion path."""

    active = "active"
    inactive = "inactive"
    maintenance = "maintenance"


# ── Alert enums ─────────────────────────────────────────────────────────────


class AlertCategoryEnum(StrEnum):
    """What produced the alert."""

    sensor_threshold = "sensor_threshold"
    sensor_offline = "sensor_offline"
    trend = "trend"
    manual = "manual"
    test = "test"


class AlertSeverityEnum(StrEnum):
    info = "info"
    warning = "warning"
    critical = "critical"


class AlertStatusEnum(StrEnum):
    """Alert lifecycle: new -> acknowledged -> resolved (terminal).

    ``acknowledged`` is optional; new -> resolved is a valid transition.
    """

    new = "new"
    acknowledged = "acknowledged"
    resolved = "resolved"


class AlertSourceEnum(StrEnum):
    automatic = "automatic"
    manual = "manual"
    test = "test"


# ── Notification enums ──────────────────────────────────────────────────────


class ChannelEnum(StrEnum):
    """Notification transports, in dispatch order."""

    email = "email"
    sms = "sms"
    whatsapp = "whatsapp"
    push = "push"
