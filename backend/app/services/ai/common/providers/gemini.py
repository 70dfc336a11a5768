"""Google Gemini provider (REST ``generateContent``)."""

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

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class GeminiProvider:
    name = "gemini"
    supports_video = True

    def __init__(
        self,
        api_key: str,
        *,
        models: tuple[str, str] = ("gemini-2.5-pro", "gemini-2.0-flash"),
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
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": prompt},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(media).decode("ascii"),
                            }
                        },
                    ],
                }
            ],
            "generationConfig": {
                "temperature": self._temperature,
                "maxOutputTokens": self._max_tokens,
                "responseMimeType": "application/json",
            },
        }

        async def _call(model: str, tier: str) -> ProviderResult:
            t0 = time.monotonic()
            try:
                async with httpx.AsyncClient(timeout=timeout_seconds, transport=self._transport) as client:
                    resp = await client.post(
                        GEMINI_API_URL.format(model=model),
                        headers={
                            "x-goog-api-key": self._api_key,
                            "Content-Type": "application/json",
                        },
                        json=payload,
                    )
            except httpx.HTTPError as exc:
                raise transport_error(exc, self.name) from exc
            raise_for_provider_status(resp, self.name)

            try:
                data = resp.json()
                parts = data["candidates"][0]["content"]["parts"]
                text = "".join(part.get("text", "") for part in parts)
            except (ValueError, KeyError, IndexError, TypeError) as exc:
                raise unexpected_body(self.name, repr(exc)) from exc

            elapsed = (time.monotonic() - t0) * 1000
            usage = data.get("usageMetadata", {})
            return ProviderResult(
                raw_text=text,
                model=model,
                provider=self.name,
                tier=tier,
                prompt_tokens=usage.get("promptTokenCount", 0),
                completion_tokens=usage.get("candidatesTokenCount", 0),
                latency_ms=round(elapsed, 2),
            )

        return await run_tiers(self.name, self._models, _call)
