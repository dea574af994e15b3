"""Package specific exception hierarchy."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ValidationError


class GatewayError(Exception):
    """Base exception for session_gateway package."""


class InvalidRequestError(GatewayError):
    """Raised when a canonical request payload is malformed."""


class MissingCredentialError(GatewayError):
    """Raised when an auth handle carries no usable secret."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider}: missing session credential")
        self.provider = provider


class ProviderError(GatewayError):
    """Represents provider-specific HTTP or API errors."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        suffix = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider}: {message}{suffix}")
        self.provider = provider
        self.message = message
        self.status_code = status_code


class UpstreamError(ProviderError):
    """Non-2xx response from the upstream provider."""

    def __init__(self, provider: str, status_code: int, message: str) -> None:
        super().__init__(provider, message, status_code=status_code)


class TransportError(ProviderError):
    """Network failure while talking to the provider, before or during a stream."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(provider, message)


class _ErrorBody(BaseModel):
    # Upstreams disagree on where the message lives; every field is optional.
    error: Any = None
    message: Any = None
    detail: Any = None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def extract_error_message(body: bytes | str) -> str:
    """Pull a readable message out of an upstream error body.

    Tries ``error.message``, ``message`` and ``detail`` in that order; falls
    back to the raw body text when none is present or the body is not a JSON
    object.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        parsed = _ErrorBody.model_validate_json(text)
    except ValidationError:
        return text

    if isinstance(parsed.error, dict):
        message = _as_text(parsed.error.get("message"))
        if message:
            return message
    for value in (parsed.message, parsed.detail):
        message = _as_text(value)
        if message:
            return message
    return text


def upstream_error_from_body(
    provider: str, status_code: int, body: bytes | str, reason: str = ""
) -> UpstreamError:
    """Build an :class:`UpstreamError` from a non-2xx response body."""
    message = extract_error_message(body) or reason or f"HTTP {status_code}"
    return UpstreamError(provider, status_code, message)
