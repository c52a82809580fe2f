"""Measurement ingestion and read-side statistics routes."""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fieldwatch.database import get_db
from fieldwatch.models.enums import SensorTypeEnum
from fieldwatch.routes.deps import get_runtime, map_error
from fieldwatch.schemas.ingest import (
	BatchIngestRequest,
	BatchResult,
	IngestReceipt,
	MeasurementIn,
	MeasurementRead,
)
from fieldwatch.schemas.measurements import AggregatePeriod, AggregateResponse, MeasurementStats

router = APIRouter(prefix="/measurements", tags=["measurements"])


@router.post("", response_model=IngestReceipt, status_code=status.HTTP_201_CREATED)
async def ingest_measurement(
	payload: MeasurementIn,
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> IngestReceipt:
	service = get_runtime(request).ingest_service(db)
	try:
		receipt = await service.ingest(payload.sensor_id, payload.value, payload.unit, payload.measured_at)
		await service.alert_service.commit()
	except Exception as exc:
		raise map_error(exc) from exc
	return receipt


@router.post("/batch", response_model=BatchResult)
async def ingest_batch(
	payload: BatchIngestRequest,
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> BatchResult:
	service = get_runtime(request).ingest_service(db)
	try:
		result = await service.ingest_batch(payload.items)
		await service.alert_service.commit()
	except Exception as exc:
		raise map_error(exc) from exc
	return result


@router.get("/stats", response_model=MeasurementStats)
async def measurement_stats(request: Request, db: AsyncSession = Depends(get_db)) -> MeasurementStats:
	service = get_runtime(request).measurement_service(db)
	try:
		return await service.stats()
	except Exception as exc:
		raise map_error(exc) from exc


@router.get("/aggregated", response_model=AggregateResponse)
async def aggregated_measurements(
	request: Request,
	period: AggregatePeriod = Query(default=AggregatePeriod.day),
	start: datetime | None = Query(default=None),
	end: datetime | None = Query(default=None),
	parcel_id: uuid.UUID | None = Query(default=None),
	sensor_id: uuid.UUID | None = Query(default=None),
	sensor_type: SensorTypeEnum | None = Query(default=None),
	db: AsyncSession = Depends(get_db),
) -> AggregateResponse:
	service = get_runtime(request).measurement_service(db)
	try:
		return await service.aggregated(
			period,
			start,
			end,
			parcel_id=parcel_id,
			sensor_id=sensor_id,
			sensor_type=sensor_type,
		)
	except Exception as exc:
		raise map_error(exc) from exc


@router.get("/latest/{sensor_id}", response_model=MeasurementRead)
async def latest_measurement(
	sensor_id: uuid.UUID,
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> MeasurementRead:
	service = get_runtime(request).ingest_service(db)
	try:
		row = await service.latest(sensor_id)
	except Exception as exc:
		raise map_error(exc) from exc
	return MeasurementRead.model_validate(row)
