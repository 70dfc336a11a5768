"""Capability interface shared by all vision providers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from ..errors import ProviderError, ProviderErrorKind

logger = logging.getLogger(__name__)

TIER_ACCURACY = "accuracy"
TIER_COST = "cost"


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    tier: str = TIER_ACCURACY
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


@runtime_checkable
class VisionProvider(Protocol):
    """Contract that every vision provider satisfies.

    Implementations are plain classes; they are selected by configuration
    through ``ProviderRegistry`` rather than by subclassing.
    """

    name: str
    supports_video: bool

    async def analyze(
        self,
        media: bytes,
        mime_type: str,
        prompt: str,
        *,
        timeout_seconds: float = 30.0,
    ) -> ProviderResult:
        """Send *prompt* with the inline *media* and return the raw model text."""
        ...


def raise_for_provider_status(resp: httpx.Response, provider: str) -> None:
    """Translate an HTTP error status into a ``ProviderError``."""
    if resp.status_code < 400:
        return
    status = resp.status_code
    if status == 429:
        kind = ProviderErrorKind.RATE_LIMITED
    elif status in (401, 403):
        kind = ProviderErrorKind.AUTH_MISSING
    elif status in (408, 504):
        raise ProviderError(
            ProviderErrorKind.TRANSPORT,
            f"{provider} gateway timeout (HTTP {status})",
            provider=provider,
            reason="timeout",
            status_code=status,
        )
    else:
        kind = ProviderErrorKind.UNEXPECTED
    raise ProviderError(
        kind,
        f"{provider} returned HTTP {status}: {resp.text[:200]}",
        provider=provider,
        reason=str(status),
        status_code=status,
    )


def transport_error(exc: httpx.HTTPError, provider: str) -> ProviderError:
    """Wrap an ``httpx`` transport failure."""
    reason = "timeout" if isinstance(exc, httpx.TimeoutException) else "network"
    return ProviderError(
        ProviderErrorKind.TRANSPORT,
        f"{provider} {reason}: {exc!r}",
        provider=provider,
        reason=reason,
    )


def unexpected_body(provider: str, detail: str) -> ProviderError:
    return ProviderError(
        ProviderErrorKind.UNEXPECTED,
        f"{provider} returned an unexpected body: {detail}",
        provider=provider,
        reason="body",
    )


async def run_tiers(
    provider: str,
    models: tuple[str, str],
    call: Callable[[str, str], Awaitable[ProviderResult]],
) -> ProviderResult:
    """Call the accuracy-tier model, retrying once on the cost tier when rate limited.

    *call* receives ``(model, tier)``.  A rate limit on the cost tier (or when
    no cost model is configured) is surfaced to the caller unchanged.
    """
    accuracy_model, cost_model = models
    try:
        return await call(accuracy_model, TIER_ACCURACY)
    except ProviderError as exc:
        if exc.kind != ProviderErrorKind.RATE_LIMITED or not cost_model or cost_model == accuracy_model:
            raise
        logger.info(
            "%s %s quota exceeded, falling back to %s",
            provider,
            accuracy_model,
            cost_model,
        )
    return await call(cost_model, TIER_COST)
