"""Provider for Anthropic's Messages API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from .config import ProviderConfig
from .llm import (
    EmptyResponseError,
    GenerationOptions,
    GenerationRequest,
    ModelInfo,
    ProviderConnectionError,
    ProviderResponseError,
    ProviderUnavailableError,
    response_text,
)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MODEL = "claude-3-5-haiku-20241022"


class ClaudeProvider:
    requires_credentials = True

    def __init__(
        self,
        name: str,
        config: ProviderConfig,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.name = name
        self.config = config
        self.model = config.model or DEFAULT_MODEL
        self.options = GenerationOptions(
            temperature=config.temperature,
            max_tokens=config.max_tokens or 500,
        )
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return (self.config.base_url or DEFAULT_BASE_URL).rstrip("/")

    def is_available(self) -> bool:
        return self.config.has_credentials()

    def setup_hint(self) -> str:
        lines = [f"cmdstack config set {self.name}.api_key <your-key>"]
        if self.config.api_key_env:
            lines.append(f"export {self.config.api_key_env}=<your-key>")
        return "\n".join(lines)

    def _headers(self) -> Dict[str, str]:
        if not self.config.has_credentials():
            raise ProviderUnavailableError(
                f"No API key configured for provider '{self.name}'.", hint=self.setup_hint()
            )
        return {
            "x-api-key": str(self.config.api_key),
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def list_models(self) -> List[ModelInfo]:
        return [ModelInfo(name=self.model)] if self.model else []

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        request = GenerationRequest(system_prompt, user_prompt, self.options)
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.options.max_tokens,
            "temperature": self.options.temperature,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.user_prompt}],
        }

        url = f"{self.base_url}/v1/messages"
        try:
            response = self._session.post(
                url, headers=self._headers(), json=payload, timeout=self.config.timeout
            )
        except requests.RequestException as exc:
            raise ProviderConnectionError(f"Unable to reach Anthropic at {self.base_url}") from exc

        if response.status_code != 200:
            raise ProviderResponseError(
                f"Anthropic responded with status {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderResponseError("Anthropic returned invalid JSON.") from exc

        blocks = data.get("content") or []
        text = "".join(
            str(block.get("text", ""))
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        content = response_text(text)
        if not content:
            raise EmptyResponseError("Anthropic returned an empty response.")
        return content
