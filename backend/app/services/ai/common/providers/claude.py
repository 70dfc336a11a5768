"""Anthropic / Claude provider."""

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


class ClaudeProvider:
    name = "claude"
    supports_video = False

    def __init__(
        self,
        api_key: str,
        *,
        models: tuple[str, str] = ("claude-sonnet-4-20250514", "claude-3-5-haiku-20241022"),
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
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": mime_type,
                    "data": base64.b64encode(media).decode("ascii"),
                },
            },
            {"type": "text", "text": prompt},
        ]

        async def _call(model: str, tier: str) -> ProviderResult:
            t0 = time.monotonic()
            try:
                async with httpx.AsyncClient(timeout=timeout_seconds, transport=self._transport) as client:
                    resp = await client.post(
                        "https://api.anthropic.com/v1/messages",
                        headers={
                            "x-api-key": self._api_key,
                            "anthropic-version": "2023-06-01",
                            "content-type": "application/json",
                        },
                        json={
                            "model": model,
                            "max_tokens": self._max_tokens,
                            "temperature": self._temperature,
                            "messages": [{"role": "user", "content": content}],
                        },
                    )
            except httpx.HTTPError as exc:
                raise transport_error(exc, self.name) from exc
            raise_for_provider_status(resp, self.name)

            try:
                data = resp.json()
                text = "".join(block["text"] for block in data["content"] if block.get("type") == "text")
            except (ValueError, KeyError, TypeError) as exc:
                raise unexpected_body(self.name, repr(exc)) from exc
            if not text:
                raise unexpected_body(self.name, "no text block in response")

            elapsed = (time.monotonic() - t0) * 1000
            usage = data.get("usage", {})
            return ProviderResult(
                raw_text=text,
                model=model,
                provider=self.name,
                tier=tier,
                prompt_tokens=usage.get("input_tokens", 0),
                completion_tokens=usage.get("output_tokens", 0),
                latency_ms=round(elapsed, 2),
            )

        return await run_tiers(self.name, self._models, _call)
