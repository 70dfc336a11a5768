"""Mock provider - deterministic responses for tests and local development."""

from __future__ import annotations

import asyncio
import time

from ..errors import ProviderError
from .base import ProviderResult

DEFAULT_MOCK_RESPONSE = '{"results": []}'


class MockProvider:
    name = "mock"
    supports_video = True

    def __init__(
        self,
        raw_text: str = DEFAULT_MOCK_RESPONSE,
        *,
        name: str = "mock",
        error: ProviderError | None = None,
        delay_seconds: float = 0.0,
        supports_video: bool = True,
    ) -> None:
        self.name = name
        self.supports_video = supports_video
        self._raw_text = raw_text
        self._error = error
        self._delay_seconds = delay_seconds
        self.calls: list[dict] = []

    async def analyze(
        self,
        media: bytes,
        mime_type: str,
        prompt: str,
        *,
        timeout_seconds: float = 30.0,
    ) -> ProviderResult:
        t0 = time.monotonic()
        self.calls.append({"media": media, "mime_type": mime_type, "prompt": prompt})
        if self._delay_seconds:
            await asyncio.sleep(self._delay_seconds)
        if self._error is not None:
            raise self._error
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=self._raw_text,
            model="mock-vision-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(self._raw_text.split()),
            latency_ms=round(elapsed, 2),
        )
