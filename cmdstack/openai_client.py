"""Provider for OpenAI-compatible Chat Completions endpoints.

Serves OpenAI itself as well as DeepSeek, Grok and any other service speaking
the same protocol; they differ only in ``base_url``, model and key.
"""

from __future__ import annotations

from typing import Any, List, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, OpenAIError

from .config import ProviderConfig
from .llm import (
    EmptyResponseError,
    GenerationOptions,
    GenerationRequest,
    ModelInfo,
    ProviderConnectionError,
    ProviderError,
    ProviderResponseError,
    ProviderUnavailableError,
    response_text,
)


DEFAULT_MODEL = "gpt-4o-mini"


class OpenAICompatibleProvider:
    requires_credentials = True

    def __init__(self, name: str, config: ProviderConfig, *, client: Optional[Any] = None) -> None:
        self.name = name
        self.config = config
        self.model = config.model or DEFAULT_MODEL
        self.options = GenerationOptions(
            temperature=config.temperature,
            max_tokens=config.max_tokens or 500,
        )
        self._client = client

    def is_available(self) -> bool:
        return self.config.has_credentials()

    def setup_hint(self) -> str:
        lines = [f"cmdstack config set {self.name}.api_key <your-key>"]
        if self.config.api_key_env:
            lines.append(f"export {self.config.api_key_env}=<your-key>")
        return "\n".join(lines)

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.config.has_credentials():
                raise ProviderUnavailableError(
                    f"No API key configured for provider '{self.name}'.", hint=self.setup_hint()
                )
            client_kwargs = {
                "api_key": self.config.api_key,
                "max_retries": 0,
                "timeout": self.config.timeout,
            }
            if self.config.base_url:
                client_kwargs["base_url"] = self.config.base_url
            self._client = OpenAI(**client_kwargs)
        return self._client

    def list_models(self) -> List[ModelInfo]:
        try:
            response = self.client.models.list()
        except (APIConnectionError, APITimeoutError) as exc:
            raise ProviderConnectionError(f"Unable to reach {self.name}: {exc}") from exc
        except APIStatusError as exc:
            raise ProviderResponseError(
                f"{self.name} responded with status {exc.status_code}",
                status_code=exc.status_code,
                body=str(exc.body or ""),
            ) from exc
        except OpenAIError as exc:
            raise ProviderError(f"Failed to list {self.name} models: {exc}") from exc

        data = getattr(response, "data", [])
        return [ModelInfo(name=item.id) for item in data if getattr(item, "id", None)]

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        request = GenerationRequest(system_prompt, user_prompt, self.options)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=request.to_messages(),
                temperature=self.options.temperature,
                max_tokens=self.options.max_tokens,
            )
        except (APIConnectionError, APITimeoutError) as exc:
            raise ProviderConnectionError(f"Unable to reach {self.name}: {exc}") from exc
        except APIStatusError as exc:
            raise ProviderResponseError(
                f"{self.name} responded with status {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                body=str(exc.body or ""),
            ) from exc
        except OpenAIError as exc:
            raise ProviderError(f"{self.name} chat completion failed: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise EmptyResponseError(f"{self.name} returned no choices.")
        content = response_text(getattr(choices[0].message, "content", None))
        if not content:
            raise EmptyResponseError(f"{self.name} returned an empty response.")
        return content
