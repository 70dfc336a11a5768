"""Error taxonomy for the vision analysis pipeline."""

from __future__ import annotations

from enum import Enum


class ProviderErrorKind(str, Enum):
    AUTH_MISSING = "AUTH_MISSING"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSPORT = "TRANSPORT"
    UNEXPECTED = "UNEXPECTED"


class AnalysisError(Exception):
    """Base class for every failure raised inside the analysis pipeline."""

    code = "analysis_error"


class InvalidRequest(AnalysisError):
    """The request is structurally invalid (no media, no specs, ...)."""

    code = "invalid_request"


class ConfigurationMissing(AnalysisError):
    """No provider has credentials configured."""

    code = "configuration_missing"


class MalformedResponse(AnalysisError):
    """Model output could not be parsed into the result schema."""

    code = "parse_error"

    def __init__(self, message: str, *, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class ProviderError(AnalysisError):
    """A provider call failed.

    ``reason`` refines ``TRANSPORT`` errors (``timeout`` or ``network``) and
    carries the HTTP status for the others when one is known.  When the error
    ends a fallback chain, ``state`` is ``"FAILED"`` and ``attempts`` holds
    the chain's attempt records.
    """

    code = "provider_error"

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        *,
        provider: str = "",
        reason: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        self.state: str | None = None
        self.attempts: list = []

    @property
    def is_timeout(self) -> bool:
        return self.kind == ProviderErrorKind.TRANSPORT and self.reason == "timeout"

    @property
    def used_fallback(self) -> bool:
        return len(self.attempts) > 1

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind.value}, provider={self.provider!r}, reason={self.reason!r})"
