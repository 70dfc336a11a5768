"""Settings parsing and provider registry construction."""

import os
import unittest
from unittest.mock import patch

from app.core.config import Settings
from app.services.ai.common.providers import MockProvider, ProviderRegistry, build_registry
from app.services.ai.common.providers.claude import ClaudeProvider
from app.services.ai.common.providers.gemini import GeminiProvider
from app.services.ai.common.providers.openai import OpenAIProvider

_NO_KEYS = {
    "GEMINI_API_KEY": "",
    "GOOGLE_API_KEY": "",
    "OPENAI_API_KEY": "",
    "ANTHROPIC_API_KEY": "",
}


class SettingsTests(unittest.TestCase):
    @patch.dict(os.environ, {"AI_PROVIDER_ORDER": "OpenAI, gemini,openai,unknown"}, clear=False)
    def test_provider_order_normalised(self):
        self.assertEqual(Settings().ai_provider_order, ["openai", "gemini"])

    @patch.dict(os.environ, {"AI_PROVIDER_ORDER": '["claude", "gemini"]'}, clear=False)
    def test_provider_order_accepts_json_list(self):
        self.assertEqual(Settings().ai_provider_order, ["claude", "gemini"])

    @patch.dict(os.environ, {"GOOGLE_API_KEY": "g-key", "GEMINI_API_KEY": ""}, clear=False)
    def test_google_api_key_alias(self):
        os.environ.pop("GEMINI_API_KEY")
        self.assertEqual(Settings().provider_api_key("gemini"), "g-key")

    def test_provider_models_pairs(self):
        s = Settings()
        self.assertEqual(s.provider_models("openai"), (s.ai_openai_model, s.ai_openai_fallback_model))
        self.assertEqual(s.provider_models("mock"), ("", ""))

    @patch.dict(os.environ, {"CORS_ALLOW_ORIGINS": '["https://a.example", "https://b.example"]'}, clear=False)
    def test_cors_origins_from_env(self):
        self.assertEqual(Settings().cors_allow_origins, ["https://a.example", "https://b.example"])

    def test_timeouts_default(self):
        s = Settings()
        self.assertEqual(s.ai_image_timeout_seconds, 30.0)
        self.assertEqual(s.ai_video_timeout_seconds, 120.0)
        self.assertEqual(s.ai_max_provider_attempts, 2)


class BuildRegistryTests(unittest.TestCase):
    @patch.dict(os.environ, {**_NO_KEYS, "AI_PROVIDER_ORDER": "gemini,openai,claude"}, clear=False)
    def test_no_credentials_gives_empty_registry(self):
        registry = build_registry(Settings())
        self.assertFalse(registry)
        self.assertEqual(len(registry), 0)

    @patch.dict(
        os.environ,
        {
            **_NO_KEYS,
            "GEMINI_API_KEY": "g",
            "ANTHROPIC_API_KEY": "a",
            "AI_PROVIDER_ORDER": "claude,gemini,openai",
            "AI_ALLOWED_PROVIDERS": "gemini,openai,claude",
        },
        clear=False,
    )
    def test_order_follows_configuration_and_skips_missing_keys(self):
        registry = build_registry(Settings())
        self.assertEqual(registry.names, ["claude", "gemini"])
        self.assertIsInstance(registry.providers[0], ClaudeProvider)
        self.assertIsInstance(registry.providers[1], GeminiProvider)

    @patch.dict(
        os.environ,
        {
            **_NO_KEYS,
            "GEMINI_API_KEY": "g",
            "OPENAI_API_KEY": "o",
            "AI_PROVIDER_ORDER": "gemini,openai",
            "AI_ALLOWED_PROVIDERS": "openai",
        },
        clear=False,
    )
    def test_allowlist_filters(self):
        registry = build_registry(Settings())
        self.assertEqual(registry.names, ["openai"])
        self.assertIsInstance(registry.providers[0], OpenAIProvider)

    @patch.dict(
        os.environ,
        {**_NO_KEYS, "AI_PROVIDER_ORDER": "mock", "AI_ALLOWED_PROVIDERS": "mock"},
        clear=False,
    )
    def test_mock_only_when_explicitly_configured(self):
        registry = build_registry(Settings())
        self.assertEqual(registry.names, ["mock"])
        self.assertIsInstance(registry.providers[0], MockProvider)

    @patch.dict(
        os.environ,
        {**_NO_KEYS, "AI_PROVIDER_ORDER": "mock", "AI_ALLOWED_PROVIDERS": "gemini"},
        clear=False,
    )
    def test_mock_respects_allowlist(self):
        self.assertFalse(build_registry(Settings()))


class RegistryMediaTests(unittest.TestCase):
    def test_video_keeps_only_video_capable(self):
        registry = ProviderRegistry(
            (
                MockProvider(name="still", supports_video=False),
                MockProvider(name="motion", supports_video=True),
            )
        )
        self.assertEqual(registry.for_media("video/webm").names, ["motion"])
        self.assertEqual(registry.for_media("image/jpeg").names, ["still", "motion"])
