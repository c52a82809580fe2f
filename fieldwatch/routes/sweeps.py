"""On-demand sweep routes; the scheduler runs the same sweeps on a timer."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fieldwatch.database import get_db
from fieldwatch.routes.deps import get_runtime, map_error
from fieldwatch.schemas.sweeps import SweepResponse

router = APIRouter(prefix="/sweeps", tags=["sweeps"])


@router.post("/offline", response_model=SweepResponse)
async def run_offline_sweep(request: Request, db: AsyncSession = Depends(get_db)) -> SweepResponse:
	service = get_runtime(request).sweep_service(db)
	now = datetime.now(UTC)
	try:
		alerts = await service.sweep_offline(now)
	except Exception as exc:
		raise map_error(exc) from exc
	return SweepResponse(sweep="offline", ran_at=now, alerts_created=len(alerts), alert_ids=[a.id for a in alerts])


@router.post("/trends", response_model=SweepResponse)
async def run_trend_sweep(request: Request, db: AsyncSession = Depends(get_db)) -> SweepResponse:
	service = get_runtime(request).sweep_service(db)
	now = datetime.now(UTC)
	try:
		alerts = await service.sweep_trends(now)
	except Exception as exc:
		raise map_error(exc) from exc
	return SweepResponse(sweep="trends", ran_at=now, alerts_created=len(alerts), alert_ids=[a.id for a in alerts])
