"""Resolve configured provider names to provider instances."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .claude import ClaudeProvider
from .config import AppConfig, ConfigError, ProviderConfig
from .llm import CommandProvider
from .logging import get_logger
from .ollama import LocalProvider
from .openai_client import OpenAICompatibleProvider
from .runtime import ProgressCallback, RuntimeManager

LOGGER = get_logger(__name__)


class ProviderKind(str, Enum):
    LOCAL = "local"
    OPENAI_COMPAT = "openai_compat"
    CLAUDE = "claude"

    @classmethod
    def parse(cls, value: str) -> "ProviderKind":
        try:
            return cls((value or "").strip().lower())
        except ValueError as exc:
            supported = ", ".join(kind.value for kind in cls)
            raise ConfigError(f"Unknown provider kind '{value}'. Supported: {supported}.") from exc


@dataclass(frozen=True)
class ProviderStatus:
    name: str
    kind: str
    model: str
    configured: bool
    active: bool


def _persist_model(config: AppConfig) -> Callable[[str], None]:
    def _save(model: str) -> None:
        try:
            config.persist_value("local.model", model)
        except (OSError, ConfigError) as exc:
            LOGGER.warning("Could not save selected model %s: %s", model, exc)

    return _save


def _create_local(
    name: str,
    settings: ProviderConfig,
    config: AppConfig,
    progress: Optional[ProgressCallback],
    runtime: Optional[RuntimeManager],
) -> CommandProvider:
    runtime = runtime or RuntimeManager(
        config.paths,
        base_url=settings.base_url,
        request_timeout=settings.timeout,
    )
    on_selected = _persist_model(config) if name == "local" else None
    provider = LocalProvider(settings, runtime, progress=progress, on_model_selected=on_selected)
    provider.name = name
    return provider


_FACTORIES: Dict[ProviderKind, Callable[..., CommandProvider]] = {
    ProviderKind.LOCAL: _create_local,
    ProviderKind.OPENAI_COMPAT: lambda name, settings, *_: OpenAICompatibleProvider(name, settings),
    ProviderKind.CLAUDE: lambda name, settings, *_: ClaudeProvider(name, settings),
}


def create_provider(
    config: AppConfig,
    name: Optional[str] = None,
    *,
    progress: Optional[ProgressCallback] = None,
    runtime: Optional[RuntimeManager] = None,
) -> CommandProvider:
    """Instantiate the provider registered under ``name`` (or the configured default).

    Raises :class:`ConfigError` for unknown names or kinds. Construction never
    performs network I/O; a provider missing credentials is still returned and
    reports itself through ``is_available``.
    """

    resolved, settings = config.provider_config(name)
    kind = ProviderKind.parse(settings.kind)
    LOGGER.debug("Creating provider %s (%s)", resolved, kind.value)
    return _FACTORIES[kind](resolved, settings, config, progress, runtime)


def list_providers(config: AppConfig) -> List[ProviderStatus]:
    statuses = []
    for name, settings in sorted(config.providers.items()):
        configured = settings.kind == ProviderKind.LOCAL.value or settings.has_credentials()
        statuses.append(
            ProviderStatus(
                name=name,
                kind=settings.kind,
                model=settings.model or "(auto)",
                configured=configured,
                active=name == config.provider,
            )
        )
    return statuses
