"""AI audit - writes one ``audit_logs`` entry per analysis run."""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.audit import AuditLog

from .providers.base import ProviderResult

logger = logging.getLogger(__name__)

# Mode-dependent audit actions. Falls back to "AI_VISION_RUN" for unknown modes.
SCOPE_ACTIONS: dict[str, str] = {
    "single-spec": "AI_VISION_SPEC_ANALYZED",
    "multi-spec": "AI_VISION_MULTI_SPEC_ANALYZED",
    "auto-scan": "AI_VISION_AUTO_SCAN",
    "video": "AI_VISION_VIDEO_ANALYZED",
    "document": "AI_VISION_DOCUMENT_ANALYZED",
}


def log_ai_run(
    db: Session | None,
    *,
    scope: str,
    prompt_text: str,
    provider_result: ProviderResult | None,
    parsed_output: dict[str, Any] | None,
    error_code: str | None = None,
    actor_id: str | None = None,
    extra_meta: dict[str, Any] | None = None,
) -> None:
    """Add an audit entry for one analysis run to *db* (no commit).

    * ``scope`` - the analysis mode, e.g. ``"single-spec"`` or ``"video"``.
    * Prompt and response are stored as SHA-256 hashes; raw text is only
      kept when ``AI_DEBUG_STORE_RAW=true``.
    * ``provider_result`` is ``None`` when no provider answered.
    """
    if db is None:
        return

    settings = get_settings()

    metadata: dict[str, Any] = {
        "scope": scope,
        "prompt_hash": hashlib.sha256(prompt_text.encode()).hexdigest(),
    }
    if provider_result is not None:
        metadata.update(
            {
                "provider": provider_result.provider,
                "model": provider_result.model,
                "tier": provider_result.tier,
                "prompt_tokens": provider_result.prompt_tokens,
                "completion_tokens": provider_result.completion_tokens,
                "latency_ms": provider_result.latency_ms,
                "response_hash": hashlib.sha256(provider_result.raw_text.encode()).hexdigest(),
            }
        )

    if settings.ai_debug_store_raw:
        metadata["prompt_raw"] = prompt_text
        if provider_result is not None:
            metadata["response_raw"] = provider_result.raw_text

    if extra_meta:
        metadata.update(extra_meta)

    db.add(
        AuditLog(
            entity_type="ai",
            entity_id=str(uuid.uuid4()),
            action=SCOPE_ACTIONS.get(scope, "AI_VISION_RUN"),
            new_value=parsed_output,
            actor_type="SYSTEM",
            actor_id=actor_id,
            error_code=error_code,
            audit_meta=metadata,
        )
    )
