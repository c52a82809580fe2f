"""Small in-memory cache with per-entry expiry and an injectable clock."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
	"""Entries expire ``ttl_seconds`` after they were stored.

	When ``max_entries`` is reached the oldest entry is evicted first.
	"""

	def __init__(
		self,
		ttl_seconds: float,
		*,
		max_entries: int = 1024,
		clock: Callable[[], float] = time.monotonic,
	):
		if ttl_seconds <= 0:
			raise ValueError("ttl_seconds must be positive")
		self.ttl_seconds = ttl_seconds
		self.max_entries = max_entries
		self.clock = clock
		self._entries: OrderedDict[K, tuple[float, V]] = OrderedDict()

	def get(self, key: K) -> V | None:
		entry = self._entries.get(key)
		if entry is None:
			return None
		expires_at, value = entry
		if self.clock() >= expires_at:
			del self._entries[key]
			return None
		return value

	def set(self, key: K, value: V) -> None:
		self._entries.pop(key, None)
		self._entries[key] = (self.clock() + self.ttl_seconds, value)
		while len(self._entries) > self.max_entries:
			self._entries.popitem(last=False)

	def purge_expired(self) -> int:
		now = self.clock()
		expired = [key for key, (expires_at, _value) in self._entries.items() if now >= expires_at]
		for key in expired:
			del self._entries[key]
		return len(expired)

	def clear(self) -> None:
		self._entries.clear()

	def __contains__(self, key: object) -> bool:
		return self.get(key) is not None  # type: ignore[arg-type]

	def __len__(self) -> int:
		return len(self._entries)
