"""Vision compliance endpoints - analyze photos and walkthrough videos, score results."""

from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.dependencies import get_db
from app.core.image_processing import MediaDecodeError, decode_base64_media
from app.schemas.analysis import (
    AnalyzeImageRequest,
    HealthResponse,
    ScoreRequest,
    SweepStepInfo,
    ZoneInfo,
    ZonesResponse,
)
from app.services.ai.common.errors import InvalidRequest
from app.services.ai.common.providers import ProviderRegistry, build_registry
from app.services.ai.vision import service
from app.services.ai.vision.contracts import AnalysisEnvelope, AnalysisRequest, ChecklistSpec
from app.services.ai.vision.zones import (
    INSPECTION_ZONES,
    SWEEP_SEQUENCE,
    ComplianceScore,
    assignment_for,
    score,
)

router = APIRouter()

_SPECS_ADAPTER = TypeAdapter(list[ChecklistSpec])


def _ensure_vision_ai_enabled() -> None:
    settings = get_settings()
    if not settings.enable_vision_ai:
        raise HTTPException(404, "Not found")


def get_registry() -> ProviderRegistry:
    return build_registry(get_settings())


@router.post(
    "/analyze",
    response_model=AnalysisEnvelope,
    summary="Judge an inspection photo against checklist specs",
)
async def analyze_image(
    body: AnalyzeImageRequest,
    db: Optional[Session] = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
):
    _ensure_vision_ai_enabled()

    try:
        content, mime_type = decode_base64_media(body.image)
        request = AnalysisRequest.create(
            media=content,
            mime_type=mime_type or "image/jpeg",
            specs=body.specs,
            language=body.language,
            mode=body.mode,
            zone_context=body.zone_context,
        )
        envelope = await service.analyze(request, registry=registry, db=db)
    except (MediaDecodeError, InvalidRequest) as exc:
        raise HTTPException(400, str(exc)) from exc

    if db is not None:
        db.commit()
    return envelope


def _parse_float_list(raw: str) -> list[float]:
    if not raw or not raw.strip():
        return []
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        values = raw.split(",")
    if not isinstance(values, list):
        raise HTTPException(422, "frameTimestamps must be a list of seconds")
    try:
        return [float(v) for v in values]
    except (TypeError, ValueError) as exc:
        raise HTTPException(422, "frameTimestamps must be a list of seconds") from exc


@router.post(
    "/analyze/video",
    response_model=AnalysisEnvelope,
    summary="Judge a walkthrough video against checklist specs",
)
async def analyze_video(
    video: UploadFile = File(...),
    specs: str = Form(...),
    language: str = Form("en"),
    frame_timestamps: str = Form("", alias="frameTimestamps"),
    db: Optional[Session] = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
):
    _ensure_vision_ai_enabled()

    try:
        spec_list = _SPECS_ADAPTER.validate_json(specs)
    except ValidationError as exc:
        raise HTTPException(422, f"Invalid specs: {exc.error_count()} error(s)") from exc

    settings = get_settings()
    content = await video.read(settings.ai_max_video_bytes + 1)

    try:
        envelope = await service.analyze_video(
            content,
            spec_list,
            mime_type=video.content_type or "video/webm",
            language=language,
            frame_timestamps=_parse_float_list(frame_timestamps),
            registry=registry,
            db=db,
        )
    except InvalidRequest as exc:
        raise HTTPException(400, str(exc)) from exc

    if db is not None:
        db.commit()
    return envelope


@router.post(
    "/analyze/score",
    response_model=ComplianceScore,
    summary="Aggregate analysis results into zone and overall scores",
)
def score_results(body: ScoreRequest):
    _ensure_vision_ai_enabled()
    return score(body.results, assignment_for(body.specs))


@router.get("/zones", response_model=ZonesResponse)
def list_zones():
    _ensure_vision_ai_enabled()
    return ZonesResponse(
        zones=[
            ZoneInfo(
                id=zone.id,
                name=zone.name,
                name_ar=zone.name_ar,
                order=zone.order,
                guidance=zone.guidance,
                guidance_ar=zone.guidance_ar,
                keywords=list(zone.keywords),
            )
            for zone in INSPECTION_ZONES
        ],
        sweep_sequence=[
            SweepStepInfo(
                direction=step.direction.value,
                target=step.target,
                label=step.label,
                label_ar=step.label_ar,
            )
            for step in SWEEP_SEQUENCE
        ],
    )


@router.get("/health", response_model=HealthResponse)
def vision_health(registry: ProviderRegistry = Depends(get_registry)):
    settings = get_settings()
    return HealthResponse(vision_enabled=settings.enable_vision_ai, providers=registry.names)
