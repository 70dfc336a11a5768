from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_PROVIDERS = ("gemini", "openai", "claude", "mock")


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except json.JSONDecodeError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    database_url: str = ""

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False
    security_headers_enabled: bool = True

    enable_vision_ai: bool = Field(
        default=True,
        validation_alias=AliasChoices("ENABLE_VISION_AI"),
    )

    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    ai_provider_order_raw: str = Field(
        default="gemini,openai,claude",
        validation_alias=AliasChoices("AI_PROVIDER_ORDER"),
    )
    ai_allowed_providers_raw: str = Field(
        default="gemini,openai,claude",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )

    # Accuracy tier first, cost tier on quota exhaustion.
    ai_gemini_model: str = "gemini-2.5-pro"
    ai_gemini_fallback_model: str = "gemini-2.0-flash"
    ai_openai_model: str = "gpt-4o"
    ai_openai_fallback_model: str = "gpt-4o-mini"
    ai_claude_model: str = "claude-sonnet-4-20250514"
    ai_claude_fallback_model: str = "claude-3-5-haiku-20241022"

    ai_temperature: float = 0.2
    ai_max_tokens: int = 3000
    ai_image_timeout_seconds: float = 30.0
    ai_video_timeout_seconds: float = 120.0
    ai_max_provider_attempts: int = 2
    ai_image_max_dimension: int = 1600
    ai_max_video_bytes: int = 50 * 1024 * 1024
    ai_debug_store_raw: bool = False

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: ["GET", "POST", "OPTIONS"])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def ai_provider_order(self) -> list[str]:
        """Configured provider priority, lower-cased, unknown names dropped."""
        names = [name.lower() for name in _parse_list_value(self.ai_provider_order_raw)]
        ordered: list[str] = []
        for name in names:
            if name in KNOWN_PROVIDERS and name not in ordered:
                ordered.append(name)
        return ordered

    @property
    def ai_allowed_providers(self) -> list[str]:
        return [name.lower() for name in _parse_list_value(self.ai_allowed_providers_raw)]

    def provider_api_key(self, name: str) -> str:
        return {
            "gemini": self.gemini_api_key,
            "openai": self.openai_api_key,
            "claude": self.anthropic_api_key,
        }.get(name, "")

    def provider_models(self, name: str) -> tuple[str, str]:
        """Return ``(accuracy_model, cost_model)`` for *name*."""
        return {
            "gemini": (self.ai_gemini_model, self.ai_gemini_fallback_model),
            "openai": (self.ai_openai_model, self.ai_openai_fallback_model),
            "claude": (self.ai_claude_model, self.ai_claude_fallback_model),
        }.get(name, ("", ""))


@lru_cache

def get_settings() -> Settings:
    return Settings()
