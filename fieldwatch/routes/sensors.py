"""Sensor status route for dashboards."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fieldwatch.database import get_db
from fieldwatch.routes.deps import get_runtime, map_error
from fieldwatch.schemas.measurements import SensorStatusRead

router = APIRouter(prefix="/sensors", tags=["sensors"])


@router.get("/{sensor_id}/status", response_model=SensorStatusRead)
async def sensor_status(sensor_id: uuid.UUID, request: Request, db: AsyncSession = Depends(get_db)) -> SensorStatusRead:
	service = get_runtime(request).measurement_service(db)
	try:
		return await service.sensor_status(sensor_id)
	except Exception as exc:
		raise map_error(exc) from exc
