"""Crop disease diagnosis route; the image is sent as the raw request body."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fieldwatch.database import get_db
from fieldwatch.routes.deps import get_runtime, map_error
from fieldwatch.schemas.diagnoses import DiagnosisResponse, DiseaseCandidate

router = APIRouter(prefix="/diagnoses", tags=["diagnoses"])


@router.post("", response_model=DiagnosisResponse)
async def diagnose_image(
	request: Request,
	user_id: uuid.UUID = Query(),
	parcel_id: uuid.UUID | None = Query(default=None),
	db: AsyncSession = Depends(get_db),
) -> DiagnosisResponse:
	service = get_runtime(request).diagnosis_service(db)
	image = await request.body()
	try:
		diagnosis = await service.diagnose(image, user_id=user_id, parcel_id=parcel_id)
		await service.alert_service.commit()
	except Exception as exc:
		raise map_error(exc) from exc
	prediction = diagnosis.prediction
	return DiagnosisResponse(
		disease=prediction.disease,
		confidence=prediction.confidence,
		alternatives=[DiseaseCandidate(disease=name, confidence=score) for name, score in prediction.alternatives],
		alert_ids=diagnosis.alert_ids,
	)
