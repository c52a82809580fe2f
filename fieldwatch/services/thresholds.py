"""Four-zone threshold classification.

Everything here is pure: no I/O, no clock, no logging.  A reading is
classified against the effective profile of its sensor, which is the sensor's
own override merged field by field over the default profile of its type.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

from fieldwatch.models.enums import AlertSeverityEnum, SensorTypeEnum


class Zone(StrEnum):
	normal = "normal"
	warning = "warning"
	critical = "critical"


@dataclass(frozen=True, slots=True)
class ThresholdProfile:
	"""Boundary set, expected ordered as critical_min < min < max < critical_max."""

	min: float
	max: float
	critical_min: float
	critical_max: float


class ThresholdOverride(BaseModel):
	"""Partial profile stored as JSON on a sensor; unset fields fall back to the type default."""

	model_config = ConfigDict(extra="ignore")

	min: float | None = None
	max: float | None = None
	critical_min: float | None = None
	critical_max: float | None = None

	def apply(self, profile: ThresholdProfile) -> ThresholdProfile:
		return replace(profile, **self.model_dump(exclude_none=True))


@dataclass(frozen=True, slots=True)
class Verdict:
	zone: Zone
	severity: AlertSeverityEnum | None = None

	@property
	def breached(self) -> bool:
		return self.zone != Zone.normal


NORMAL = Verdict(zone=Zone.normal)

DEFAULT_PROFILES: dict[SensorTypeEnum, ThresholdProfile] = {
	SensorTypeEnum.soil_moisture: ThresholdProfile(min=20.0, max=80.0, critical_min=10.0, critical_max=95.0),
	SensorTypeEnum.air_temperature: ThresholdProfile(min=15.0, max=40.0, critical_min=10.0, critical_max=45.0),
	SensorTypeEnum.air_humidity: ThresholdProfile(min=30.0, max=80.0, critical_min=20.0, critical_max=90.0),
	SensorTypeEnum.soil_ph: ThresholdProfile(min=5.5, max=7.5, critical_min=4.5, critical_max=8.5),
}


class MonitoredSensor(Protocol):
	sensor_type: SensorTypeEnum
	threshold_override: Mapping[str, Any] | None


def parse_override(raw: Mapping[str, Any] | ThresholdOverride | None) -> ThresholdOverride | None:
	if raw is None or isinstance(raw, ThresholdOverride):
		return raw
	return ThresholdOverride.model_validate(dict(raw))


def build_profiles(
	configured: Mapping[str, Mapping[str, float]] | None = None,
) -> dict[SensorTypeEnum, ThresholdProfile]:
	"""Merge configured per-type partial profiles over ``DEFAULT_PROFILES``.

	A type without a built-in default must be configured with all four fields.
	"""
	profiles = dict(DEFAULT_PROFILES)
	for type_token, fields in (configured or {}).items():
		sensor_type = SensorTypeEnum(type_token)
		base = profiles.get(sensor_type)
		if base is None:
			profiles[sensor_type] = ThresholdProfile(**fields)
			continue
		profiles[sensor_type] = ThresholdOverride.model_validate(dict(fields)).apply(base)
	return profiles


def effective_profile(
	sensor_type: SensorTypeEnum,
	override: Mapping[str, Any] | ThresholdOverride | None = None,
	defaults: Mapping[SensorTypeEnum, ThresholdProfile] = DEFAULT_PROFILES,
) -> ThresholdProfile | None:
	base = defaults.get(sensor_type)
	if base is None:
		return None
	parsed = parse_override(override)
	return parsed.apply(base) if parsed is not None else base


def classify(profile: ThresholdProfile, value: float) -> Verdict:
	if value <= profile.critical_min or value >= profile.critical_max:
		return Verdict(zone=Zone.critical, severity=AlertSeverityEnum.critical)
	if value <= profile.min or value >= profile.max:
		return Verdict(zone=Zone.warning, severity=AlertSeverityEnum.warning)
	return NORMAL


def evaluate(
	sensor_type: SensorTypeEnum,
	value: float,
	override: Mapping[str, Any] | ThresholdOverride | None = None,
	defaults: Mapping[SensorTypeEnum, ThresholdProfile] = DEFAULT_PROFILES,
) -> Verdict:
	"""Classify ``value``; types without a profile are unmonitored and always normal."""
	profile = effective_profile(sensor_type, override, defaults)
	if profile is None:
		return NORMAL
	return classify(profile, value)


class ThresholdEvaluator:
	def __init__(self, profiles: Mapping[SensorTypeEnum, ThresholdProfile] | None = None):
		self.profiles = dict(profiles) if profiles is not None else dict(DEFAULT_PROFILES)

	def profile_for(self, sensor: MonitoredSensor) -> ThresholdProfile | None:
		return effective_profile(sensor.sensor_type, sensor.threshold_override, self.profiles)

	def evaluate(self, sensor: MonitoredSensor, value: float) -> Verdict:
		return evaluate(sensor.sensor_type, value, sensor.threshold_override, self.profiles)
