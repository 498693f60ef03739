"""Shared request types, error taxonomy and the provider protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence


@dataclass
class ModelInfo:
    """Basic metadata describing an available model."""

    name: str
    size: int = 0


@dataclass(frozen=True)
class GenerationOptions:
    """Backend-agnostic sampling parameters for a single generation call."""

    temperature: float = 0.1
    max_tokens: int = 500
    stop: Sequence[str] = ()
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    repeat_penalty: Optional[float] = None


@dataclass(frozen=True)
class GenerationRequest:
    system_prompt: str
    user_prompt: str
    options: GenerationOptions = field(default_factory=GenerationOptions)

    def to_messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]


class ProviderError(RuntimeError):
    """Base exception raised for provider errors."""


class ProviderUnavailableError(ProviderError):
    """Raised when credentials are missing or the backend cannot be brought up."""

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint


class ProviderConnectionError(ProviderError):
    """Raised when the backend cannot be reached or the request times out."""


class ProviderResponseError(ProviderError):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmptyResponseError(ProviderError):
    """Raised when a successful response carries no usable text."""


class ModelNotFoundError(ProviderError):
    """Raised when the requested model is unavailable."""


class CommandProvider(Protocol):
    """Protocol describing the operations the orchestrator expects."""

    name: str
    model: str
    requires_credentials: bool

    def is_available(self) -> bool:
        ...

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        ...

    def list_models(self) -> List[ModelInfo]:
        ...

    def setup_hint(self) -> str:
        ...


def response_text(payload: Any) -> str:
    """Return ``payload`` as stripped text, treating ``None`` as empty."""

    if payload is None:
        return ""
    return str(payload).strip()
