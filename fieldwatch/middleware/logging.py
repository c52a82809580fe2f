"""structlog setup and the per-request access log.

Every log line written while a request is handled carries its request id,
method and path, including lines from services and the notifier fan-out.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from fieldwatch.config import LogFormat, Settings, get_settings

REQUEST_ID_HEADER = "x-request-id"

# Readiness probes hit these every few seconds; they are logged at debug.
QUIET_PATHS = frozenset({"/health", "/health/ready"})

_configured = False


def _add_service(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
	event_dict.setdefault("service", "fieldwatch")
	return event_dict


def configure_structured_logging(settings: Settings | None = None, *, force: bool = False) -> None:
	"""Configure stdlib logging and structlog; later calls are no-ops unless ``force``."""
	global _configured
	if _configured and not force:
		return

	settings = settings or get_settings()
	log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

	processors: list[Any] = [
		structlog.contextvars.merge_contextvars,
		structlog.processors.add_log_level,
		structlog.processors.TimeStamper(fmt="iso", utc=True),
		_add_service,
	]
	if settings.log_format == LogFormat.json:
		processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
		logging.basicConfig(level=log_level, format="%(message)s", force=force)
	else:
		processors.append(structlog.dev.ConsoleRenderer())
		logging.basicConfig(level=log_level, force=force)

	structlog.configure(
		processors=processors,
		wrapper_class=structlog.make_filtering_bound_logger(log_level),
		logger_factory=structlog.PrintLoggerFactory(),
		cache_logger_on_first_use=not force,
	)
	_configured = True


class RequestLoggingMiddleware(BaseHTTPMiddleware):
	"""Binds request context for the duration of a request and echoes the request id."""

	async def dispatch(self, request: Request, call_next):  # type: ignore[override]
		request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
		request.state.request_id = request_id
		path = request.url.path

		structlog.contextvars.clear_contextvars()
		structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=path)
		logger = structlog.get_logger("fieldwatch.access")
		start = time.perf_counter()

		try:
			response = await call_next(request)
		except Exception as exc:
			logger.exception(
				"http_request_failed",
				duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
				error=str(exc),
			)
			raise
		finally:
			elapsed_ms = round((time.perf_counter() - start) * 1000.0, 2)

		response.headers[REQUEST_ID_HEADER] = request_id
		if response.status_code >= 500:
			logger.warning("http_request", status_code=response.status_code, duration_ms=elapsed_ms)
		elif path in QUIET_PATHS:
			logger.debug("http_request", status_code=response.status_code, duration_ms=elapsed_ms)
		else:
			logger.info("http_request", status_code=response.status_code, duration_ms=elapsed_ms)
		return response
