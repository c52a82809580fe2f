"""Alert lifecycle routes."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fieldwatch.database import get_db
from fieldwatch.routes.deps import get_runtime, map_error
from fieldwatch.schemas.alerts import (
	AcknowledgeIn,
	AlertListResponse,
	AlertRead,
	AlertStats,
	AlertTestIn,
	AlertTestResponse,
	ManualAlertIn,
	MarkAllReadIn,
	MarkAllReadResponse,
	ResolveIn,
)

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.post("", response_model=AlertListResponse, status_code=status.HTTP_201_CREATED)
async def create_alert(
	payload: ManualAlertIn,
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> AlertListResponse:
	service = get_runtime(request).alert_service(db)
	try:
		alerts = await service.raise_alert(payload)
		await service.commit()
	except Exception as exc:
		raise map_error(exc) from exc
	return AlertListResponse(items=[AlertRead.model_validate(alert) for alert in alerts])


@router.post("/test", response_model=AlertTestResponse, status_code=status.HTTP_201_CREATED)
async def send_test_alert(
	payload: AlertTestIn,
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> AlertTestResponse:
	service = get_runtime(request).alert_service(db)
	try:
		alert, deliveries = await service.send_test_alert(payload.user_id, payload.severity)
	except Exception as exc:
		raise map_error(exc) from exc
	return AlertTestResponse(alert=AlertRead.model_validate(alert), deliveries=deliveries)


@router.get("/stats", response_model=AlertStats)
async def alert_stats(
	request: Request,
	user_id: uuid.UUID | None = Query(default=None),
	db: AsyncSession = Depends(get_db),
) -> AlertStats:
	service = get_runtime(request).alert_service(db)
	try:
		return await service.stats(user_id)
	except Exception as exc:
		raise map_error(exc) from exc


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
	payload: MarkAllReadIn,
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> MarkAllReadResponse:
	service = get_runtime(request).alert_service(db)
	try:
		updated = await service.mark_all_read(payload.user_id)
	except Exception as exc:
		raise map_error(exc) from exc
	return MarkAllReadResponse(user_id=payload.user_id, updated_count=updated)


@router.get("/{alert_id}", response_model=AlertRead)
async def get_alert(alert_id: uuid.UUID, request: Request, db: AsyncSession = Depends(get_db)) -> AlertRead:
	service = get_runtime(request).alert_service(db)
	try:
		return AlertRead.model_validate(await service.get_alert(alert_id))
	except Exception as exc:
		raise map_error(exc) from exc


@router.post("/{alert_id}/acknowledge", response_model=AlertRead)
async def acknowledge_alert(
	alert_id: uuid.UUID,
	payload: AcknowledgeIn,
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> AlertRead:
	service = get_runtime(request).alert_service(db)
	try:
		return AlertRead.model_validate(await service.acknowledge(alert_id, payload.actor_id))
	except Exception as exc:
		raise map_error(exc) from exc


@router.post("/{alert_id}/resolve", response_model=AlertRead)
async def resolve_alert(
	alert_id: uuid.UUID,
	payload: ResolveIn,
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> AlertRead:
	service = get_runtime(request).alert_service(db)
	try:
		return AlertRead.model_validate(await service.resolve(alert_id, payload.actor_id, payload.notes))
	except Exception as exc:
		raise map_error(exc) from exc


@router.post("/{alert_id}/read", response_model=AlertRead)
async def mark_alert_read(alert_id: uuid.UUID, request: Request, db: AsyncSession = Depends(get_db)) -> AlertRead:
	service = get_runtime(request).alert_service(db)
	try:
		return AlertRead.model_validate(await service.mark_read(alert_id))
	except Exception as exc:
		raise map_error(exc) from exc
