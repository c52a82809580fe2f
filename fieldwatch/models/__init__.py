"""ORM model registry: importing this module registers every table on Base.metadata.

Alembic ``env.py`` imports ``Base`` from here (not from ``base.py``) so that
autogenerate sees all tables.  Application code can also do::

    from fieldwatch.models import Sensor, Measurement, Alert, ...
"""

# ── Alerts ──────────────────────────────────────────────────────────────────
from fieldwatch.models.alerts import Alert

# ── Base & Mixins ───────────────────────────────────────────────────────────
from fieldwatch.models.base import (
    Base,
    TimeSeriesMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)

# ── Enums ───────────────────────────────────────────────────────────────────
from fieldwatch.models.enums import (
    AlertCategoryEnum,
    AlertSeverityEnum,
    AlertSourceEnum,
    AlertStatusEnum,
    ChannelEnum,
    SensorStatusEnum,
    SensorTypeEnum,
)

# ── Time-series ─────────────────────────────────────────────────────────────
from fieldwatch.models.sensors import Measurement

# ── Ownership chain ─────────────────────────────────────────────────────────
from fieldwatch.models.topology import Parcel, Sensor, Station, User

__all__ = [
    # Alerts
    "Alert",
    "AlertCategoryEnum",
    "AlertSeverityEnum",
    "AlertSourceEnum",
    "AlertStatusEnum",
    # Base & mixins
    "Base",
    "ChannelEnum",
    # Time-series
    "Measurement",
    # Ownership chain
    "Parcel",
    "Sensor",
    "SensorStatusEnum",
    "SensorTypeEnum",
    "Station",
    "TimeSeriesMixin",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "User",
]
