"""Provider backed by a local Ollama server."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import requests

from .config import ProviderConfig
from .extraction import clean_local_response
from .llm import (
    EmptyResponseError,
    GenerationOptions,
    GenerationRequest,
    ModelInfo,
    ModelNotFoundError,
    ProviderConnectionError,
    ProviderResponseError,
    ProviderUnavailableError,
    response_text,
)
from .logging import get_logger
from .runtime import (
    DEFAULT_BASE_URL,
    ProgressCallback,
    RuntimeManager,
    RuntimeManagerError,
    select_model_by_ram,
    total_memory,
)

LOGGER = get_logger(__name__)

# Small models tend to keep talking after the command.
LOCAL_STOP_SEQUENCES = ("\n\n", "Explanation:", "Note:")


class LocalProvider:
    name = "local"
    requires_credentials = False

    def __init__(
        self,
        config: ProviderConfig,
        runtime: RuntimeManager,
        *,
        session: Optional[requests.Session] = None,
        progress: Optional[ProgressCallback] = None,
        on_model_selected: Optional[Callable[[str], None]] = None,
        memory_probe: Optional[Callable[[], int]] = None,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.progress = progress
        self._session = session or requests.Session()

        model = (config.model or "").strip()
        if not model:
            model = select_model_by_ram((memory_probe or total_memory)())
            LOGGER.info("Selected local model %s based on available memory", model)
            if on_model_selected is not None:
                on_model_selected(model)
        self.model = model

        self.options = GenerationOptions(
            temperature=config.temperature,
            max_tokens=config.max_tokens or 100,
            stop=LOCAL_STOP_SEQUENCES,
            top_p=0.7,
            top_k=20,
            repeat_penalty=1.2,
        )

    @property
    def base_url(self) -> str:
        return (self.config.base_url or DEFAULT_BASE_URL).rstrip("/")

    def is_available(self) -> bool:
        return self.runtime.is_server_ready()

    def setup_hint(self) -> str:
        return "Install Ollama from https://ollama.com/download, or start it with 'ollama serve'."

    # ------------------------------------------------------------------
    # Runtime preparation
    # ------------------------------------------------------------------
    def ensure_running(self) -> None:
        if self.runtime.is_server_ready():
            return
        try:
            self.runtime.ensure_installed(self.progress)
            self.runtime.start_server()
        except RuntimeManagerError as exc:
            raise ProviderUnavailableError(
                f"Local runtime is not available: {exc}", hint=self.setup_hint()
            ) from exc

    def ensure_model(self) -> str:
        self.model = self.runtime.ensure_model(self.model, self.progress)
        return self.model

    def list_models(self) -> List[ModelInfo]:
        return self.runtime.list_models()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    def _options_payload(self) -> Dict[str, Any]:
        options = self.options
        payload: Dict[str, Any] = {
            "temperature": options.temperature,
            "num_predict": options.max_tokens,
            "stop": list(options.stop),
        }
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.top_k is not None:
            payload["top_k"] = options.top_k
        if options.repeat_penalty is not None:
            payload["repeat_penalty"] = options.repeat_penalty
        return payload

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        self.ensure_running()
        self.ensure_model()

        request = GenerationRequest(system_prompt, user_prompt, self.options)
        url = f"{self.base_url}/api/chat"
        payload = {
            "model": self.model,
            "messages": request.to_messages(),
            "stream": False,
            "options": self._options_payload(),
        }

        try:
            response = self._session.post(url, json=payload, timeout=self.config.timeout)
        except requests.RequestException as exc:
            raise ProviderConnectionError("Failed to connect to Ollama while calling /api/chat.") from exc

        if response.status_code == 404:
            raise ModelNotFoundError(f"Model '{self.model}' is not available on Ollama.")
        if response.status_code != 200:
            raise ProviderResponseError(
                f"Ollama responded with status {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderResponseError("Ollama returned invalid JSON for /api/chat.") from exc

        content = response_text((data.get("message") or {}).get("content"))
        cleaned = clean_local_response(content) if content else ""
        if not cleaned:
            raise EmptyResponseError("Ollama returned an empty response.")
        return cleaned
