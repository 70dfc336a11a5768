"""HTTP schemas for the vision analysis endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.services.ai.vision.contracts import (
    AnalysisMode,
    AnalysisResult,
    ChecklistSpec,
    ZoneContext,
)


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeImageRequest(_ApiModel):
    image: str = Field(..., min_length=1, description="Base64 image or data URL")
    specs: list[ChecklistSpec] = Field(..., min_length=1)
    language: str = "en"
    mode: AnalysisMode = AnalysisMode.MULTI_SPEC
    zone_context: Optional[ZoneContext] = None


class ScoreRequest(_ApiModel):
    specs: list[ChecklistSpec] = Field(default_factory=list)
    results: list[AnalysisResult] = Field(default_factory=list)


class ZoneInfo(_ApiModel):
    id: str
    name: str
    name_ar: str
    order: int
    guidance: str
    guidance_ar: str
    keywords: list[str]


class SweepStepInfo(_ApiModel):
    direction: str
    target: str
    label: str
    label_ar: str


class ZonesResponse(_ApiModel):
    zones: list[ZoneInfo]
    sweep_sequence: list[SweepStepInfo]


class HealthResponse(_ApiModel):
    status: str = "ok"
    vision_enabled: bool
    providers: list[str] = Field(default_factory=list)
