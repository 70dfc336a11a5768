"""Vision compliance analysis - the boundary between callers and AI providers.

Flow: prepare media -> build prompt -> fallback chain -> normalize -> envelope.

Only structurally invalid requests raise (``InvalidRequest``).  Every
provider, network or parse failure is converted into a degraded
``AnalysisEnvelope`` with a bilingual explanation, so callers always get a
well-formed result set back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import asdict
from datetime import date

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.image_processing import MediaDecodeError, normalize_video_mime, prepare_image

from ..common.audit import log_ai_run
from ..common.errors import (
    AnalysisError,
    ConfigurationMissing,
    InvalidRequest,
    MalformedResponse,
    ProviderError,
    ProviderErrorKind,
)
from ..common.fallback import analyze_with_fallback
from ..common.providers import ProviderRegistry, build_registry
from ..common.providers.base import ProviderResult
from .contracts import (
    AnalysisEnvelope,
    AnalysisMode,
    AnalysisRequest,
    AnalysisResult,
    ChecklistSpec,
    ImageQuality,
    Severity,
    Verdict,
    VideoSummary,
)
from .normalizer import extract_document_details, extract_scan_extras, normalize
from .prompts import build_prompt

logger = logging.getLogger(__name__)

FAILURE_MESSAGES: dict[str, tuple[str, str]] = {
    "configuration_missing": (
        "AI analysis is not configured. Contact your administrator.",
        "تحليل الذكاء الاصطناعي غير مهيأ. تواصل مع المسؤول.",
    ),
    "rate_limited": (
        "The AI service is busy. Please try again in a minute.",
        "خدمة الذكاء الاصطناعي مشغولة. حاول مرة أخرى بعد دقيقة.",
    ),
    "timeout": (
        "Analysis took too long. Try again with a clearer image.",
        "استغرق التحليل وقتًا طويلاً. حاول مرة أخرى بصورة أوضح.",
    ),
    "provider_auth": (
        "The AI provider rejected the configured credentials.",
        "رفض مزود الذكاء الاصطناعي بيانات الاعتماد المكوّنة.",
    ),
    "provider_error": (
        "Analysis failed. Please try again.",
        "فشل التحليل. حاول مرة أخرى.",
    ),
    "parse_error": (
        "The AI response could not be read. Please try again.",
        "تعذرت قراءة رد الذكاء الاصطناعي. حاول مرة أخرى.",
    ),
}


def failure_code(exc: AnalysisError) -> str:
    """Map a pipeline error onto the envelope ``error_code`` vocabulary."""
    if isinstance(exc, ProviderError):
        if exc.kind == ProviderErrorKind.RATE_LIMITED:
            return "rate_limited"
        if exc.is_timeout:
            return "timeout"
        if exc.kind == ProviderErrorKind.AUTH_MISSING:
            return "provider_auth"
        return "provider_error"
    if isinstance(exc, ConfigurationMissing):
        return "configuration_missing"
    if isinstance(exc, MalformedResponse):
        return "parse_error"
    return "provider_error"


def _degraded_results(request: AnalysisRequest, reasoning: str, reasoning_ar: str) -> list[AnalysisResult]:
    if request.mode != AnalysisMode.SINGLE_SPEC:
        return []
    spec = request.specs[0]
    return [
        AnalysisResult(
            spec_code=spec.code,
            spec_id=spec.id or None,
            result=Verdict.UNCERTAIN,
            confidence=0,
            severity=Severity.OK,
            finding=reasoning,
            finding_ar=reasoning_ar,
            image_quality=ImageQuality.CLEAR,
            evidence_valid=False,
        )
    ]


def _video_summary(specs: Sequence[ChecklistSpec], results: Sequence[AnalysisResult]) -> VideoSummary:
    matched = {r.spec_code for r in results}
    return VideoSummary(
        total_specs=len(specs),
        matched=len(results),
        passed=sum(1 for r in results if r.result == Verdict.PASS),
        failed=sum(1 for r in results if r.result == Verdict.FAIL),
        unmatched_specs=[s.code for s in specs if s.code not in matched],
    )


def _run_meta(request: AnalysisRequest, attempts: Sequence) -> dict:
    return {
        "spec_codes": request.spec_codes,
        "used_fallback": len(attempts) > 1,
        "attempts": [asdict(a) for a in attempts],
    }


def _prepare_media(request: AnalysisRequest) -> tuple[bytes, str, float]:
    """Return ``(media, mime_type, timeout_seconds)`` for the request's mode.

    The declared mime type must agree with the mode: video mode takes
    ``video/*`` (or an untyped ``application/octet-stream`` upload), every
    other mode takes still images.
    """
    settings = get_settings()
    declared = (request.mime_type or "").split(";", 1)[0].strip().lower()
    if request.mode == AnalysisMode.VIDEO:
        if not (declared.startswith("video/") or declared == "application/octet-stream"):
            raise InvalidRequest(f"Video analysis needs video media, got {declared or 'no type'}")
        if len(request.media) > settings.ai_max_video_bytes:
            raise InvalidRequest(
                f"Video is {len(request.media)} bytes; the limit is {settings.ai_max_video_bytes} bytes"
            )
        return request.media, normalize_video_mime(request.mime_type), settings.ai_video_timeout_seconds

    if declared.startswith("video/"):
        raise InvalidRequest(f"{request.mode.value} analysis needs an image, got {declared}")
    try:
        prepared = prepare_image(request.media, settings.ai_image_max_dimension)
    except MediaDecodeError as exc:
        raise InvalidRequest(str(exc)) from exc
    return prepared.content, prepared.mime_type, settings.ai_image_timeout_seconds


async def analyze(
    request: AnalysisRequest,
    *,
    registry: ProviderRegistry | None = None,
    db: Session | None = None,
    actor_id: str | None = None,
    today: date | None = None,
) -> AnalysisEnvelope:
    """Judge the request's media against its specs.

    Raises ``InvalidRequest`` before any provider call when the media cannot
    be used.  Never raises for provider, timeout or parse failures.
    """
    settings = get_settings()
    if registry is None:
        registry = build_registry(settings)

    media, mime_type, timeout_seconds = _prepare_media(request)
    eligible = registry.for_media(mime_type)

    prompt = build_prompt(
        request.specs,
        request.language,
        request.mode,
        zone_context=request.zone_context,
        frame_timestamps=request.frame_timestamps,
        today=today,
    )

    t0 = time.monotonic()
    provider_result: ProviderResult | None = None
    attempts: list = []
    try:
        outcome = await analyze_with_fallback(
            eligible,
            media,
            mime_type,
            prompt,
            timeout_seconds=timeout_seconds,
            max_attempts=settings.ai_max_provider_attempts,
        )
        provider_result = outcome.result
        attempts = outcome.attempts
        results = normalize(provider_result.raw_text, request.specs)
    except AnalysisError as exc:
        if isinstance(exc, ProviderError):
            attempts = exc.attempts
        code = failure_code(exc)
        reasoning, reasoning_ar = FAILURE_MESSAGES[code]
        if isinstance(exc, MalformedResponse):
            logger.warning("Vision %s: unparsable model output: %.300s", request.mode.value, exc.raw_text)
        else:
            logger.warning("Vision %s degraded (%s): %s", request.mode.value, code, exc, exc_info=True)

        envelope = AnalysisEnvelope(
            results=_degraded_results(request, reasoning, reasoning_ar),
            mode=request.mode,
            provider=provider_result.provider if provider_result else None,
            model=provider_result.model if provider_result else None,
            used_fallback=len(attempts) > 1,
            degraded=True,
            error_code=code,
            reasoning=reasoning,
            reasoning_ar=reasoning_ar,
            latency_ms=round((time.monotonic() - t0) * 1000, 2),
        )
        log_ai_run(
            db,
            scope=request.mode.value,
            prompt_text=prompt,
            provider_result=provider_result,
            parsed_output=None,
            error_code=code,
            actor_id=actor_id,
            extra_meta=_run_meta(request, attempts),
        )
        return envelope

    envelope = AnalysisEnvelope(
        results=results,
        mode=request.mode,
        provider=provider_result.provider,
        model=provider_result.model,
        used_fallback=len(attempts) > 1,
        latency_ms=round((time.monotonic() - t0) * 1000, 2),
        scan=extract_scan_extras(provider_result.raw_text) if request.mode == AnalysisMode.AUTO_SCAN else None,
        summary=_video_summary(request.specs, results) if request.mode == AnalysisMode.VIDEO else None,
        document=(
            extract_document_details(provider_result.raw_text, today)
            if request.mode == AnalysisMode.DOCUMENT
            else None
        ),
    )
    logger.info(
        "Vision %s: %d/%d specs reported by %s/%s",
        request.mode.value,
        len(results),
        len(request.specs),
        provider_result.provider,
        provider_result.model,
    )

    log_ai_run(
        db,
        scope=request.mode.value,
        prompt_text=prompt,
        provider_result=provider_result,
        parsed_output={"results": [r.model_dump(mode="json", by_alias=True) for r in results]},
        actor_id=actor_id,
        extra_meta=_run_meta(request, attempts),
    )
    return envelope


async def analyze_video(
    video: bytes,
    specs: Sequence[ChecklistSpec],
    *,
    mime_type: str = "video/webm",
    language: str = "en",
    frame_timestamps: Sequence[float] = (),
    registry: ProviderRegistry | None = None,
    db: Session | None = None,
    actor_id: str | None = None,
) -> AnalysisEnvelope:
    """Convenience wrapper for walkthrough videos."""
    request = AnalysisRequest.create(
        media=video,
        mime_type=mime_type,
        specs=list(specs),
        language=language,
        mode=AnalysisMode.VIDEO,
        frame_timestamps=list(frame_timestamps),
    )
    return await analyze(request, registry=registry, db=db, actor_id=actor_id)
