"""Prompt construction for the vision compliance scopes.

Every prompt asks for strict JSON with a top-level ``results`` array and
confidence on the 0-100 scale, whatever the provider.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from .contracts import AnalysisMode, ChecklistSpec, ZoneContext

COLD_STORAGE_MAX_C = 5
FROZEN_MAX_C = -18
HOT_HOLDING_MIN_C = 63

_LANGUAGE_INSTRUCTIONS = {
    "en": "IMPORTANT: Write every English field in English. findingAr and recommendationAr must be Arabic.",
    "ar": (
        "IMPORTANT: Write every narrative field in Arabic only, including finding and recommendation. "
        "findingAr and recommendationAr must also be Arabic."
    ),
}

_VIDEO_EXTRA = ',\n      "evidenceTimestamp": 23.5'

_SEVERITY_BLOCK = """SEVERITY LEVELS:
- CRITICAL: Immediate safety/health risk
- MAJOR: Significant non-compliance
- MINOR: Small issues
- OK: Fully compliant"""

_RESULT_ITEM_SCHEMA = """{
      "specCode": "%(code)s",
      "found": true,
      "result": "PASS" | "FAIL" | "NEEDS_REVIEW",
      "confidence": 0 to 100,
      "severity": "OK" | "MINOR" | "MAJOR" | "CRITICAL",
      "finding": "Exactly what you see",
      "findingAr": "Arabic translation of finding",
      "instancesVisible": 1,
      "recommendation": "What to fix if FAIL, null if PASS",
      "recommendationAr": "Arabic recommendation",
      "imageQuality": "clear" | "slightly_blurry" | "very_blurry" | "too_dark" | "too_bright" | "obstructed",
      "evidenceValid": true%(extra)s
    }"""


def _standards_block(today: date) -> str:
    return (
        f"DATE CHECK: Today is {today.isoformat()}. Treat any visible expiry date before today as expired.\n\n"
        "TEMPERATURE STANDARDS:\n"
        f"- Cold storage: below {COLD_STORAGE_MAX_C}C\n"
        f"- Frozen: below {FROZEN_MAX_C}C\n"
        f"- Hot holding: above {HOT_HOLDING_MIN_C}C"
    )


def _specs_list(specs: Sequence[ChecklistSpec]) -> str:
    return "\n".join(f"{s.code}: {s.requirement}" for s in specs)


def _result_schema(code: str, *, extra: str = "") -> str:
    item = _RESULT_ITEM_SCHEMA % {"code": code, "extra": extra}
    return '{\n  "results": [\n    ' + item + "\n  ]\n}"


def _single_spec_prompt(spec: ChecklistSpec, today: date) -> str:
    schema = _result_schema(spec.code)
    return f"""You are SAQR, a regulatory inspector. Analyze this image for ONE specific spec.

SPEC: [{spec.code}] {spec.requirement}

Be STRICT, this is regulatory compliance.

RULES:
- Describe exactly what you see that relates to this spec, not what you assume
- Count instances if several are visible (e.g. 3 windows, 2 fire extinguishers)
- Rate image quality honestly
- If the image does not show the spec subject clearly, set found to false

{_SEVERITY_BLOCK}

{_standards_block(today)}

Return JSON only, no markdown, no backticks, no explanation:
{schema}

found: true only if you can see the subject clearly.
evidenceValid: true only if this would hold up as regulatory evidence.
confidence: how CLEAR the evidence is, 0 to 100."""


def _multi_spec_prompt(specs: Sequence[ChecklistSpec], today: date) -> str:
    schema = _result_schema("FL-05")
    return f"""You are SAQR, an expert regulatory inspector. Analyze this image for compliance with the following specifications.

SPECS TO CHECK:
{_specs_list(specs)}

ANALYSIS RULES:

1. MULTI-INSTANCE:
   - Count ALL instances visible
   - A spec PASSES only if ALL visible instances comply
   - Example: 3/4 fire extinguishers valid = FAIL

2. {_SEVERITY_BLOCK}

3. EVIDENCE QUALITY:
   - imageQuality: clear, slightly_blurry, very_blurry, too_dark, too_bright, obstructed
   - found: true only if the subject is CLEARLY visible
   - evidenceValid: true only if good enough for regulatory evidence

{_standards_block(today)}

Return JSON only, no markdown, no backticks:
{schema}

Only include specs where you have CLEAR evidence in the image. Use the exact spec codes listed above."""


def _auto_scan_prompt(
    specs: Sequence[ChecklistSpec],
    today: date,
    zone_context: ZoneContext | None,
) -> str:
    context_lines: list[str] = []
    if zone_context and zone_context.current_zone:
        context_lines.append(f"CURRENT ZONE: {zone_context.current_zone}")
    if zone_context and zone_context.sweep_direction:
        context_lines.append(f"SWEEP DIRECTION: Inspector is looking {zone_context.sweep_direction.value}")
    context = "\n".join(context_lines) if context_lines else "CURRENT ZONE: not specified"
    item_schema = _RESULT_ITEM_SCHEMA % {"code": "FL-XX", "extra": ""}

    return f"""You are SAQR, a regulatory inspector in continuous scan mode. The inspector is sweeping the camera
through the facility, so each frame may show only part of a room.

{context}

STEP 1 - IMAGE QUALITY: brightness, sharpness, distance, obstruction.

STEP 2 - DESCRIBE: which surfaces (floor, wall, ceiling, window, door, equipment, signage) and objects are visible.

STEP 3 - TEXT: read licenses, permits, thermometers, labels and expiry dates.

STEP 4 - ANOMALIES: cracks, water stains, peeling paint, broken tiles, rust, mold, pest evidence,
blocked exits, exposed wiring, unsanitary conditions.

STEP 5 - CHECK AGAINST SPECS:
{_specs_list(specs)}

MULTI-INSTANCE: a spec PASSES only if ALL visible instances comply (3/4 windows screened = FAIL).

{_SEVERITY_BLOCK}

{_standards_block(today)}

Return JSON only, no markdown, no backticks:
{{
  "imageDescription": "what the camera is pointing at",
  "imageDescriptionAr": "Arabic translation",
  "anomalies": [
    {{
      "type": "water_damage" | "crack" | "mold" | "pest_evidence" | "rust" | "damage" | "dirty" | "blocked_exit" | "electrical_hazard",
      "severity": "CRITICAL" | "MAJOR" | "MINOR",
      "location": "ceiling near ventilation duct",
      "locationAr": "Arabic location",
      "description": "Brown water stain about 30cm wide",
      "descriptionAr": "Arabic description"
    }}
  ],
  "results": [
    {item_schema}
  ],
  "guidance": "Move camera left to see remaining windows",
  "guidanceAr": "Arabic guidance",
  "nextSweepDirection": "UP" | "FORWARD" | "DOWN" | "AROUND" | "DETAIL" | null
}}

Only include specs in results where the frame gives you evidence. Always report anomalies, even when no spec matches."""


def _video_prompt(
    specs: Sequence[ChecklistSpec],
    today: date,
    frame_timestamps: Sequence[float],
) -> str:
    frames = ""
    if frame_timestamps:
        joined = ", ".join(f"{t:g}s" for t in frame_timestamps)
        frames = f"\nKEY FRAMES marked by the inspector at: {joined}\n"
    schema = _result_schema("FL-XX", extra=_VIDEO_EXTRA)

    return f"""You are SAQR, a regulatory inspector reviewing a VIDEO WALKTHROUGH of a facility.
{frames}
SPECS TO CHECK:
{_specs_list(specs)}

Watch the whole video. For each spec find the BEST moment that shows evidence, decide PASS or FAIL,
and record the time of that moment in seconds as evidenceTimestamp.

- Only report specs where you have CLEAR visual evidence
- Items that must be present (fire extinguishers, exit signs) are FAIL if never visible
- Read licenses, permits and temperature displays

{_SEVERITY_BLOCK}

{_standards_block(today)}

Return JSON only, no markdown, no backticks:
{schema}"""


def _document_prompt(specs: Sequence[ChecklistSpec], today: date) -> str:
    item_schema = _RESULT_ITEM_SCHEMA % {"code": "LIC-01", "extra": ""}

    return f"""You are SAQR, a document verification inspector. The image shows a license, permit,
certificate or log. Read it thoroughly, in English, Arabic or both.

SPECS TO VERIFY:
{_specs_list(specs)}

EXTRACTION RULES:
1. Read ALL text, numbers, dates, stamps and signatures
2. Extract document type, issuing authority, license or permit number, issue date and expiry date
3. Check whether the document is still valid as of today ({today.isoformat()})
4. Check for official stamps, signatures or QR codes, and whether it is an original or a copy
5. Read any temperatures, schedules or date ranges it records

MATCHING RULES:
- A spec PASSES if the document provides valid evidence for it
- Expired document = FAIL with severity CRITICAL
- Missing required stamp or signature = FAIL with severity MAJOR
- Present but partially illegible = NEEDS_REVIEW

{_SEVERITY_BLOCK}

{_standards_block(today)}

Return JSON only, no markdown, no backticks. Dates as YYYY-MM-DD:
{{
  "documentType": "Business License" | "Health Certificate" | "Training Record" | "Pest Control Contract" | "Fire Safety Certificate" | "Municipality Permit" | "Temperature Log" | "Other",
  "documentTypeAr": "Arabic document type",
  "extractedText": "full text in the original language",
  "details": {{
    "issuingAuthority": "Ministry of Health" | null,
    "licenseNumber": "BH-12345" | null,
    "issueDate": "2024-01-15" | null,
    "expiryDate": "2025-01-15" | null,
    "isExpired": false,
    "hasStamp": true,
    "hasSignature": true,
    "businessName": "ABC Restaurant" | null,
    "otherFields": {{"field": "value"}}
  }},
  "results": [
    {item_schema}
  ],
  "imageQuality": "clear" | "slightly_blurry" | "very_blurry" | "too_dark",
  "evidenceValid": true
}}

Only include specs that are RELEVANT to this document type. If critical text is unreadable set evidenceValid to false."""


def build_prompt(
    specs: Sequence[ChecklistSpec],
    language: str = "en",
    mode: AnalysisMode | str = AnalysisMode.MULTI_SPEC,
    *,
    zone_context: ZoneContext | None = None,
    frame_timestamps: Sequence[float] = (),
    today: date | None = None,
) -> str:
    """Build the provider-agnostic prompt for *specs*.

    Deterministic for fixed inputs; ``today`` is the only clock input and
    defaults to the server date.
    """
    if not specs:
        raise ValueError("at least one spec is required")
    mode = AnalysisMode(mode)
    today = today or date.today()

    if mode == AnalysisMode.SINGLE_SPEC:
        body = _single_spec_prompt(specs[0], today)
    elif mode == AnalysisMode.AUTO_SCAN:
        body = _auto_scan_prompt(specs, today, zone_context)
    elif mode == AnalysisMode.DOCUMENT:
        body = _document_prompt(specs, today)
    elif mode == AnalysisMode.VIDEO:
        body = _video_prompt(specs, today, frame_timestamps)
    else:
        body = _multi_spec_prompt(specs, today)

    instruction = _LANGUAGE_INSTRUCTIONS.get(language, _LANGUAGE_INSTRUCTIONS["en"])
    return f"{instruction}\n\n{body}"
