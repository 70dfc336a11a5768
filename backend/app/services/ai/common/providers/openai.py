"""OpenAI provider (chat completions with an image data URL)."""

from __future__ import annotations

import base64
import logging
import time

import httpx

from .base import (
    ProviderResult,
    raise_for_provider_status,
    run_tiers,
    transport_error,
    unexpected_body,
)

logger = logging.getLogger(__name__)


class OpenAIProvider:
    name = "openai"
    supports_video = False

    def __init__(
        self,
        api_key: str,
        *,
        models: tuple[str, str] = ("gpt-4o", "gpt-4o-mini"),
        temperature: float = 0.2,
        max_tokens: int = 3000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._models = models
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._transport = transport

    async def analyze(
        self,
        media: bytes,
        mime_type: str,
        prompt: str,
        *,
        timeout_seconds: float = 30.0,
    ) -> ProviderResult:
        data_url = f"data:{mime_type};base64,{base64.b64encode(media).decode('ascii')}"
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
                ],
            }
        ]

        async def _call(model: str, tier: str) -> ProviderResult:
            t0 = time.monotonic()
            try:
                async with httpx.AsyncClient(timeout=timeout_seconds, transport=self._transport) as client:
                    resp = await client.post(
                        "https://api.openai.com/v1/chat/completions",
                        headers={
                            "Authorization": f"Bearer {self._api_key}",
                            "Content-Type": "application/json",
                        },
                        json={
                            "model": model,
                            "max_tokens": self._max_tokens,
                            "temperature": self._temperature,
                            "messages": messages,
                        },
                    )
            except httpx.HTTPError as exc:
                raise transport_error(exc, self.name) from exc
            raise_for_provider_status(resp, self.name)

            try:
                data = resp.json()
                text = data["choices"][0]["message"]["content"]
            except (ValueError, KeyError, IndexError, TypeError) as exc:
                raise unexpected_body(self.name, repr(exc)) from exc
            if not text:
                raise unexpected_body(self.name, "empty message content")

            elapsed = (time.monotonic() - t0) * 1000
            usage = data.get("usage", {})
            return ProviderResult(
                raw_text=text,
                model=model,
                provider=self.name,
                tier=tier,
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                latency_ms=round(elapsed, 2),
            )

        return await run_tiers(self.name, self._models, _call)
