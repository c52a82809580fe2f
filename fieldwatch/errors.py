"""Domain error taxonomy.

Routes map these onto HTTP statuses; batch ingestion turns ``NotFoundError``
and ``InvalidInputError`` into per-item entries using ``reason``.
"""

from __future__ import annotations


class FieldwatchError(Exception):
	reason = "Error"

	def __init__(self, detail: str) -> None:
		super().__init__(detail)
		self.detail = detail


class NotFoundError(FieldwatchError, LookupError):
	reason = "NotFound"


class InvalidInputError(FieldwatchError, ValueError):
	reason = "InvalidInput"


class ChannelDeliveryFailed(FieldwatchError):
	"""Raised by a notifier when one channel cannot deliver; never escapes the dispatcher."""

	reason = "ChannelDeliveryFailed"


class StorageFailure(FieldwatchError):
	"""A write failed at the storage layer; fatal for the write in progress."""

	reason = "StorageFailure"


class UpstreamUnavailable(FieldwatchError):
	"""An external data provider could not be reached or answered with an error."""

	reason = "UpstreamUnavailable"
