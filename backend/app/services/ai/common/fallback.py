"""Fallback orchestration - primary provider first, secondary only on quota exhaustion."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from .errors import ConfigurationMissing, ProviderError, ProviderErrorKind
from .providers import ProviderRegistry
from .providers.base import ProviderResult

logger = logging.getLogger(__name__)


class FallbackState(str, Enum):
    IDLE = "IDLE"
    CALLING_PRIMARY = "CALLING_PRIMARY"
    CALLING_SECONDARY = "CALLING_SECONDARY"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class AttemptRecord:
    provider: str
    tier: str
    outcome: str
    latency_ms: float


@dataclass
class FallbackOutcome:
    """Successful chain result plus the per-attempt trail."""

    result: ProviderResult
    state: FallbackState
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return len(self.attempts) > 1


def _log_attempt(record: AttemptRecord) -> None:
    logger.info(
        "AI attempt provider=%s tier=%s outcome=%s latency_ms=%.1f",
        record.provider,
        record.tier,
        record.outcome,
        record.latency_ms,
        extra={
            "provider": record.provider,
            "tier": record.tier,
            "outcome": record.outcome,
            "latency_ms": record.latency_ms,
        },
    )


def _failed(exc: ProviderError, attempts: list[AttemptRecord]) -> ProviderError:
    exc.state = FallbackState.FAILED
    exc.attempts = list(attempts)
    return exc


async def analyze_with_fallback(
    registry: ProviderRegistry,
    media: bytes,
    mime_type: str,
    prompt: str,
    *,
    timeout_seconds: float,
    max_attempts: int = 2,
) -> FallbackOutcome:
    """Run *prompt* against the registry's providers in priority order.

    * Empty registry -> ``ConfigurationMissing`` without any network call.
    * Only ``RATE_LIMITED`` moves on to the next provider; every other
      ``ProviderError`` is terminal and re-raised as is.
    * ``timeout_seconds`` is a single deadline for the whole chain.  Each
      attempt gets what is left of it, so a slow primary shrinks the
      secondary's budget.
    * Any ``ProviderError`` leaving the chain carries ``state=FAILED`` and
      the attempt trail.
    """
    if not registry:
        raise ConfigurationMissing("No AI provider is configured")

    deadline = time.monotonic() + timeout_seconds
    attempts: list[AttemptRecord] = []
    last_error: ProviderError | None = None
    state = FallbackState.IDLE

    for index, provider in enumerate(registry.providers[: max(1, max_attempts)]):
        state = FallbackState.CALLING_PRIMARY if index == 0 else FallbackState.CALLING_SECONDARY
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise _failed(
                ProviderError(
                    ProviderErrorKind.TRANSPORT,
                    f"Analysis deadline exhausted before calling {provider.name}",
                    provider=provider.name,
                    reason="timeout",
                ),
                attempts,
            )

        t0 = time.monotonic()
        try:
            result = await asyncio.wait_for(
                provider.analyze(media, mime_type, prompt, timeout_seconds=remaining),
                timeout=remaining,
            )
        except asyncio.TimeoutError as exc:
            record = AttemptRecord(provider.name, "-", "timeout", round((time.monotonic() - t0) * 1000, 2))
            attempts.append(record)
            _log_attempt(record)
            raise _failed(
                ProviderError(
                    ProviderErrorKind.TRANSPORT,
                    f"{provider.name} exceeded the {timeout_seconds:.0f}s analysis deadline",
                    provider=provider.name,
                    reason="timeout",
                ),
                attempts,
            ) from exc
        except ProviderError as exc:
            record = AttemptRecord(
                provider.name,
                "-",
                exc.kind.value.lower(),
                round((time.monotonic() - t0) * 1000, 2),
            )
            attempts.append(record)
            _log_attempt(record)
            if exc.kind != ProviderErrorKind.RATE_LIMITED:
                logger.warning("Fallback chain failed in state %s", state.value)
                raise _failed(exc, attempts)
            last_error = exc
            continue

        record = AttemptRecord(provider.name, result.tier, "success", result.latency_ms)
        attempts.append(record)
        _log_attempt(record)
        return FallbackOutcome(result=result, state=FallbackState.SUCCESS, attempts=attempts)

    logger.warning("All providers rate limited (last state %s)", state.value)
    raise _failed(
        ProviderError(
            ProviderErrorKind.RATE_LIMITED,
            "All configured AI providers are rate limited",
            provider=last_error.provider if last_error else "",
            reason="exhausted",
        ),
        attempts,
    )
