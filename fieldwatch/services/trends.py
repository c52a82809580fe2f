"""Upward-trend detection over a trailing window of readings."""

from __future__ import annotations

import statistics
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class TrendFinding:
	sensor_id: uuid.UUID
	latest: float
	mean: float
	stdev: float
	deviation: float
	upper_bound: float
	sample_count: int
	window_start: datetime
	window_end: datetime


@dataclass(frozen=True, slots=True)
class TrendStats:
	latest: float
	mean: float
	stdev: float
	deviation: float
	sample_count: int


def window_stats(values: Sequence[float]) -> TrendStats | None:
	"""Summary of ``values`` in time order; the last entry is the latest reading."""
	if not values:
		return None
	mean = statistics.fmean(values)
	stdev = statistics.stdev(values) if len(values) > 1 else 0.0
	latest = values[-1]
	deviation = (latest - mean) / mean if mean != 0 else 0.0
	return TrendStats(latest=latest, mean=mean, stdev=stdev, deviation=deviation, sample_count=len(values))


def is_upward_trend(
	stats: TrendStats,
	upper_bound: float,
	*,
	deviation_ratio: float = 0.2,
	proximity_ratio: float = 0.9,
) -> bool:
	"""True when the latest reading jumped above the mean and sits just under ``upper_bound``.

	A reading at or above the bound is a threshold breach, not a trend.
	"""
	if stats.mean == 0:
		return False
	if stats.deviation <= deviation_ratio:
		return False
	return proximity_ratio * upper_bound <= stats.latest < upper_bound
