"""Vision scope contracts - checklist specs, analysis requests and results."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..common.errors import InvalidRequest


class Verdict(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    UNCERTAIN = "UNCERTAIN"


class Severity(str, Enum):
    OK = "OK"
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    CRITICAL = "CRITICAL"


class ImageQuality(str, Enum):
    CLEAR = "clear"
    SLIGHTLY_BLURRY = "slightly_blurry"
    VERY_BLURRY = "very_blurry"
    TOO_DARK = "too_dark"
    TOO_BRIGHT = "too_bright"
    OBSTRUCTED = "obstructed"


class AnalysisMode(str, Enum):
    SINGLE_SPEC = "single-spec"
    MULTI_SPEC = "multi-spec"
    AUTO_SCAN = "auto-scan"
    VIDEO = "video"
    DOCUMENT = "document"


class SweepDirection(str, Enum):
    UP = "UP"
    FORWARD = "FORWARD"
    DOWN = "DOWN"
    AROUND = "AROUND"
    DETAIL = "DETAIL"


VALID_LANGUAGES = frozenset({"en", "ar"})


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ChecklistSpec(_CamelModel):
    """A regulatory checklist requirement, owned by the checklist catalog."""

    id: str = ""
    code: str = Field(..., min_length=1)
    requirement: str = Field(..., min_length=1)
    requirement_ar: str | None = None
    category: str | None = None


class ZoneContext(_CamelModel):
    current_zone: str | None = None
    sweep_direction: SweepDirection | None = None


class AnalysisRequest(_CamelModel):
    """One media payload to be judged against one or more specs."""

    media: bytes
    mime_type: str = "image/jpeg"
    specs: list[ChecklistSpec] = Field(..., min_length=1)
    language: str = "en"
    mode: AnalysisMode = AnalysisMode.MULTI_SPEC
    zone_context: ZoneContext | None = None
    frame_timestamps: list[float] = []

    @field_validator("media")
    @classmethod
    def media_not_empty(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("media payload is empty")
        return v

    @field_validator("language")
    @classmethod
    def language_known(cls, v: str) -> str:
        lang = (v or "en").lower().strip()
        if lang not in VALID_LANGUAGES:
            msg = f"Unknown language {v!r}; valid: {sorted(VALID_LANGUAGES)}"
            raise ValueError(msg)
        return lang

    @classmethod
    def create(cls, **data: Any) -> AnalysisRequest:
        """Validate *data*, raising ``InvalidRequest`` instead of ``ValidationError``."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidRequest(str(exc)) from exc

    @property
    def spec_codes(self) -> list[str]:
        return [s.code for s in self.specs]


class AnalysisResult(_CamelModel):
    """A normalized verdict for one spec.  Confidence is on the 0-100 scale."""

    spec_code: str
    spec_id: str | None = None
    result: Verdict
    confidence: int = Field(..., ge=0, le=100)
    severity: Severity = Severity.OK
    finding: str = ""
    finding_ar: str = ""
    instances_visible: int | None = Field(default=None, ge=0)
    recommendation: str | None = None
    recommendation_ar: str | None = None
    image_quality: ImageQuality = ImageQuality.CLEAR
    evidence_valid: bool = True
    evidence_timestamp: float | None = None


class Anomaly(_CamelModel):
    type: str = "damage"
    severity: Severity = Severity.MINOR
    location: str = ""
    location_ar: str = ""
    description: str = ""
    description_ar: str = ""


class ScanExtras(_CamelModel):
    """Auto-scan context the model reports alongside spec verdicts."""

    image_description: str = ""
    image_description_ar: str = ""
    guidance: str = ""
    guidance_ar: str = ""
    next_sweep_direction: SweepDirection | None = None
    anomalies: list[Anomaly] = []


class DocumentDetails(_CamelModel):
    """What the model read off a license, permit or certificate.

    ``is_expired`` is recomputed from ``expiry_date`` when that parses as an
    ISO date; the model's own flag is only kept otherwise.
    """

    document_type: str = "unknown"
    document_type_ar: str = "غير معروف"
    extracted_text: str = ""
    issuing_authority: str | None = None
    license_number: str | None = None
    business_name: str | None = None
    issue_date: str | None = None
    expiry_date: str | None = None
    is_expired: bool | None = None
    has_stamp: bool | None = None
    has_signature: bool | None = None
    other_fields: dict[str, str] = {}
    image_quality: ImageQuality = ImageQuality.CLEAR
    evidence_valid: bool = True


class VideoSummary(_CamelModel):
    total_specs: int
    matched: int
    passed: int
    failed: int
    unmatched_specs: list[str] = []


class AnalysisEnvelope(_CamelModel):
    """What the analysis boundary always returns, even on failure."""

    results: list[AnalysisResult] = []
    mode: AnalysisMode = AnalysisMode.MULTI_SPEC
    provider: str | None = None
    model: str | None = None
    used_fallback: bool = False
    degraded: bool = False
    error_code: str | None = None
    reasoning: str | None = None
    reasoning_ar: str | None = None
    latency_ms: float = 0.0
    scan: ScanExtras | None = None
    summary: VideoSummary | None = None
    document: DocumentDetails | None = None
