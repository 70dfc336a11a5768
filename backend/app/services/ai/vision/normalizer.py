"""Turn free-form model output into validated ``AnalysisResult`` objects.

Policy:
- Fences are stripped before parsing; unparsable output raises ``MalformedResponse``.
- Unknown spec codes are dropped (hallucination guard).
- Items with ``found == false`` or confidence below ``MIN_CONFIDENCE`` are dropped.
- Optional fields fall back to "pass with caveats" defaults.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import date
from typing import Any

from pydantic import ValidationError

from ..common.errors import MalformedResponse
from ..common.json_tools import extract_json
from .contracts import (
    AnalysisResult,
    Anomaly,
    ChecklistSpec,
    DocumentDetails,
    ImageQuality,
    ScanExtras,
    Severity,
    SweepDirection,
    Verdict,
)

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 50

_VERDICT_ALIASES = {
    "PASS": Verdict.PASS,
    "PASSED": Verdict.PASS,
    "COMPLIANT": Verdict.PASS,
    "FAIL": Verdict.FAIL,
    "FAILED": Verdict.FAIL,
    "NON_COMPLIANT": Verdict.FAIL,
    "NEEDS_REVIEW": Verdict.NEEDS_REVIEW,
    "NEEDS REVIEW": Verdict.NEEDS_REVIEW,
    "REVIEW": Verdict.NEEDS_REVIEW,
    "UNCERTAIN": Verdict.UNCERTAIN,
}

_SEVERITIES = {s.value: s for s in Severity}
_QUALITIES = {q.value: q for q in ImageQuality}


def _parse_payload(raw_text: str) -> Any:
    parsed = extract_json(raw_text)
    if parsed is None:
        raise MalformedResponse("Model output is not valid JSON", raw_text=raw_text[:500])
    return parsed


def _result_items(parsed: Any, raw_text: str) -> list[Any]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        items = parsed.get("results", parsed.get("specResults"))
        if items is None:
            raise MalformedResponse("Model output has no results array", raw_text=raw_text[:500])
        if not isinstance(items, list):
            raise MalformedResponse("Model output results is not an array", raw_text=raw_text[:500])
        return items
    raise MalformedResponse("Model output is not a JSON object", raw_text=raw_text[:500])


def coerce_confidence(value: Any) -> int | None:
    """Map a model-reported confidence onto the canonical 0-100 scale.

    Floats within [0, 1] are read as fractions (some prompts and models use
    0.0-1.0); integers and larger floats are already percentages.  Returns
    ``None`` when the value is not numeric or not finite (``NaN``, ``Infinity``).
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip().rstrip("%")
        try:
            value = float(text) if "." in text else int(text)
        except ValueError:
            return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if 0.0 <= value <= 1.0:
            value = value * 100
    elif not isinstance(value, int):
        return None
    return int(round(max(0.0, min(100.0, float(value)))))


def _coerce_verdict(value: Any) -> Verdict:
    key = str(value or "").strip().upper().replace("-", "_")
    verdict = _VERDICT_ALIASES.get(key) or _VERDICT_ALIASES.get(key.replace("_", " "))
    if verdict is None:
        logger.info("Unknown verdict %r from model - treating as NEEDS_REVIEW", value)
        return Verdict.NEEDS_REVIEW
    return verdict


def _coerce_severity(value: Any) -> Severity:
    return _SEVERITIES.get(str(value or "").strip().upper(), Severity.OK)


def _coerce_quality(value: Any) -> ImageQuality:
    return _QUALITIES.get(str(value or "").strip().lower(), ImageQuality.CLEAR)


def _coerce_instances(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(value)
    except (TypeError, ValueError):
        return None
    return count if count >= 0 else None


def _coerce_timestamp(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    return ts if ts >= 0 else None


def _coerce_bool(value: Any) -> bool | None:
    """``True``/``False`` for JSON booleans and their string spellings, else ``None``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "yes"):
            return True
        if text in ("false", "no"):
            return False
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize(raw_text: str, specs: Sequence[ChecklistSpec]) -> list[AnalysisResult]:
    """Parse *raw_text* and keep only confident, evidenced results for *specs*.

    Raises ``MalformedResponse`` when the text cannot be parsed or has no
    results array.  Individual malformed items are skipped, not fatal.
    """
    parsed = _parse_payload(raw_text)
    items = _result_items(parsed, raw_text)

    by_code = {s.code: s for s in specs}
    by_id = {s.id: s for s in specs if s.id}
    seen: set[str] = set()
    results: list[AnalysisResult] = []

    for item in items:
        if not isinstance(item, dict):
            continue

        spec = by_code.get(_text(item.get("specCode")).strip())
        if spec is None:
            spec = by_id.get(_text(item.get("specId")).strip())
        if spec is None:
            logger.info("Dropping result for unknown spec %r", item.get("specCode"))
            continue
        if spec.code in seen:
            continue

        if _coerce_bool(item.get("found")) is False:
            continue
        confidence = coerce_confidence(item.get("confidence"))
        if confidence is None or confidence < MIN_CONFIDENCE:
            continue

        evidence_valid = _coerce_bool(item.get("evidenceValid"))
        try:
            result = AnalysisResult(
                spec_code=spec.code,
                spec_id=spec.id or None,
                result=_coerce_verdict(item.get("result", item.get("status"))),
                confidence=confidence,
                severity=_coerce_severity(item.get("severity")),
                finding=_text(item.get("finding") or item.get("reasoning")),
                finding_ar=_text(item.get("findingAr") or item.get("reasoningAr")),
                instances_visible=_coerce_instances(item.get("instancesVisible", item.get("totalInstances"))),
                recommendation=_optional_text(item.get("recommendation")),
                recommendation_ar=_optional_text(item.get("recommendationAr")),
                image_quality=_coerce_quality(item.get("imageQuality")),
                evidence_valid=True if evidence_valid is None else evidence_valid,
                evidence_timestamp=_coerce_timestamp(item.get("evidenceTimestamp")),
            )
        except ValidationError:
            logger.warning("Skipping invalid result item for %s", spec.code, exc_info=True)
            continue

        seen.add(spec.code)
        results.append(result)

    return results


def extract_scan_extras(raw_text: str) -> ScanExtras:
    """Pull the auto-scan context (description, guidance, anomalies) from *raw_text*.

    Tolerant: missing or malformed keys yield empty defaults.
    """
    parsed = extract_json(raw_text)
    if not isinstance(parsed, dict):
        return ScanExtras()

    anomalies: list[Anomaly] = []
    for raw in parsed.get("anomalies") or []:
        if not isinstance(raw, dict):
            continue
        anomalies.append(
            Anomaly(
                type=_text(raw.get("type")) or "damage",
                severity=_SEVERITIES.get(str(raw.get("severity") or "").upper(), Severity.MINOR),
                location=_text(raw.get("location")),
                location_ar=_text(raw.get("locationAr")),
                description=_text(raw.get("description")),
                description_ar=_text(raw.get("descriptionAr")),
            )
        )

    direction = str(parsed.get("nextSweepDirection") or "").upper()
    return ScanExtras(
        image_description=_text(parsed.get("imageDescription")),
        image_description_ar=_text(parsed.get("imageDescriptionAr")),
        guidance=_text(parsed.get("guidance")),
        guidance_ar=_text(parsed.get("guidanceAr")),
        next_sweep_direction=SweepDirection(direction) if direction in SweepDirection.__members__ else None,
        anomalies=anomalies,
    )


def _parse_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def extract_document_details(raw_text: str, today: date | None = None) -> DocumentDetails:
    """Pull document metadata (type, authority, dates, stamp) from *raw_text*.

    Tolerant like ``extract_scan_extras``.  Expiry is judged against *today*
    (server date by default) whenever the model gives a readable expiry date.
    """
    parsed = extract_json(raw_text)
    if not isinstance(parsed, dict):
        return DocumentDetails(evidence_valid=False)

    details = parsed.get("details")
    if not isinstance(details, dict):
        details = {}

    expiry_date = _optional_text(details.get("expiryDate"))
    expiry = _parse_iso_date(expiry_date)
    if expiry is not None:
        is_expired = expiry < (today or date.today())
    else:
        is_expired = _coerce_bool(details.get("isExpired"))

    other = details.get("otherFields")
    other_fields = {str(k): _text(v) for k, v in other.items()} if isinstance(other, dict) else {}

    evidence_valid = _coerce_bool(parsed.get("evidenceValid"))
    return DocumentDetails(
        document_type=_optional_text(parsed.get("documentType")) or "unknown",
        document_type_ar=_optional_text(parsed.get("documentTypeAr")) or "غير معروف",
        extracted_text=_text(parsed.get("extractedText")),
        issuing_authority=_optional_text(details.get("issuingAuthority")),
        license_number=_optional_text(details.get("licenseNumber")),
        business_name=_optional_text(details.get("businessName")),
        issue_date=_optional_text(details.get("issueDate")),
        expiry_date=expiry_date,
        is_expired=is_expired,
        has_stamp=_coerce_bool(details.get("hasStamp")),
        has_signature=_coerce_bool(details.get("hasSignature")),
        other_fields=other_fields,
        image_quality=_coerce_quality(parsed.get("imageQuality")),
        evidence_valid=True if evidence_valid is None else evidence_valid,
    )
