"""Shared route helpers: runtime lookup and domain error mapping."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from fieldwatch.config import get_settings
from fieldwatch.errors import StorageFailure, UpstreamUnavailable
from fieldwatch.services.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
	runtime = getattr(request.app.state, "runtime", None)
	if runtime is None:
		runtime = Runtime.from_settings(get_settings(), getattr(request.app.state, "redis", None))
		request.app.state.runtime = runtime
	return runtime


def map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, HTTPException):
		return exc
	if isinstance(exc, LookupError):
		return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
	if isinstance(exc, ValueError):
		return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
	if isinstance(exc, StorageFailure):
		return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
	if isinstance(exc, UpstreamUnavailable):
		return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
	return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error")
