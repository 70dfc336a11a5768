import io
import json

import httpx
import pytest
from PIL import Image

from app.core.config import get_settings


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Some tests mutate env vars and clear the settings cache. Ensure we don't leak
    # a cached Settings instance (e.g. with a different provider order) across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _spec(code: str, requirement: str, spec_id: str = "", **extra):
    from app.services.ai.vision.contracts import ChecklistSpec

    return ChecklistSpec(id=spec_id or f"id-{code}", code=code, requirement=requirement, **extra)


def _jpeg_bytes(width: int = 64, height: int = 48, color=(200, 30, 30), mode: str = "RGB", fmt: str = "JPEG") -> bytes:
    """Small in-memory image for media preparation tests."""
    img = Image.new(mode, (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def _results_json(*items: dict) -> str:
    return json.dumps({"results": list(items)})


def _json_transport(status_code: int, body, calls: list | None = None) -> httpx.MockTransport:
    """MockTransport returning *body* as JSON; records requests into *calls*."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=body)

    return httpx.MockTransport(handler)
