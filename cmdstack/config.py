"""Configuration models and helpers for cmdstack."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union, get_args, get_origin, get_type_hints

from dotenv import load_dotenv
import yaml

from .logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_HOME = Path.home() / ".cmdstack"

PROVIDER_KINDS = ("local", "openai_compat", "claude")

_DOTENV_LOADED = False


class ConfigError(ValueError):
    """Raised for unknown keys, unknown providers or values that do not parse."""


def _load_dotenv_once() -> None:
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return

    env_file = os.getenv("ENV_FILE", ".env")
    env_path = Path(env_file).expanduser()
    if env_path.exists():
        load_dotenv(env_path, override=False)
    _DOTENV_LOADED = True


def _env(key: str) -> Optional[str]:
    value = os.getenv(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _update_dataclass(instance: Any, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        if hasattr(instance, key):
            setattr(instance, key, value)


def _normalise_host(host: str) -> str:
    if "://" not in host:
        host = f"http://{host}"
    return host.rstrip("/")


def _coerce(value: Any, annotation: Any) -> Any:
    """Convert a CLI string into the type declared on a config dataclass."""

    if not isinstance(value, str):
        return value

    origin = get_origin(annotation)
    if origin is Union:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if value.strip().lower() in {"", "none", "null"}:
            return None
        return _coerce(value, args[0])
    if origin in (list, List):
        return [item.strip() for item in value.split(",") if item.strip()]
    if annotation is bool:
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ConfigError(f"Expected a boolean, got '{value}'.")
    if annotation in (int, float):
        try:
            return annotation(value)
        except ValueError as exc:
            raise ConfigError(f"Expected {annotation.__name__}, got '{value}'.") from exc
    return value


@dataclass
class ProviderConfig:
    """Settings for a single backend."""

    kind: str = "openai_compat"
    model: str = ""
    base_url: str = ""
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    temperature: float = 0.1
    max_tokens: Optional[int] = None
    timeout: float = 120.0

    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


def default_providers() -> Dict[str, ProviderConfig]:
    return {
        # An empty local model means "pick one from the machine's RAM".
        "local": ProviderConfig(kind="local", base_url="http://127.0.0.1:11434", temperature=0.0),
        "openai": ProviderConfig(
            kind="openai_compat",
            model="gpt-4o-mini",
            api_key_env="OPENAI_API_KEY",
        ),
        "claude": ProviderConfig(
            kind="claude",
            model="claude-3-5-haiku-20241022",
            base_url="https://api.anthropic.com",
            api_key_env="ANTHROPIC_API_KEY",
        ),
        "deepseek": ProviderConfig(
            kind="openai_compat",
            model="deepseek-chat",
            base_url="https://api.deepseek.com/v1",
            api_key_env="DEEPSEEK_API_KEY",
        ),
        "grok": ProviderConfig(
            kind="openai_compat",
            model="grok-2-latest",
            base_url="https://api.x.ai/v1",
            api_key_env="GROK_API_KEY",
        ),
    }


@dataclass
class SafetyConfig:
    """Block list and confirmation behaviour for generated commands."""

    require_confirm_dangerous: bool = True
    blocked_commands: List[str] = field(
        default_factory=lambda: [
            "rm -rf /*",
            ":(){ :|:& };:",
            "dd if=/dev/zero of=/dev/sda",
            "mkfs.ext4 /dev/sda",
            "> /dev/sda",
        ]
    )


@dataclass
class UIConfig:
    color: bool = True
    verbose: bool = False


@dataclass
class RetryConfig:
    """Backoff settings for provider calls. ``max_retries: 0`` disables retries."""

    max_retries: int = 0
    base_delay: float = 0.5
    max_delay: float = 8.0


@dataclass
class PromptConfig:
    """Optional override for the system prompt template.

    The template may reference ``{context}``; when unset the built-in template
    from :mod:`cmdstack.prompt` is used.
    """

    system_prompt: Optional[str] = None


@dataclass
class PathConfig:
    """Filesystem layout under the cmdstack home directory."""

    home_dir: Path = field(default_factory=lambda: DEFAULT_HOME)

    @property
    def config_file(self) -> Path:
        return self.home_dir / "config.yaml"

    @property
    def bin_dir(self) -> Path:
        return self.home_dir / "bin"

    @property
    def runtime_dir(self) -> Path:
        return self.home_dir / "ollama"

    @property
    def models_dir(self) -> Path:
        return self.runtime_dir / "models"

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        if "home_dir" in overrides:
            self.home_dir = Path(overrides["home_dir"]).expanduser().resolve()


_SECTIONS = ("safety", "ui", "retry", "prompts")


@dataclass
class AppConfig:
    """Aggregate configuration passed explicitly to the registry and orchestrator."""

    provider: str = "local"
    providers: Dict[str, ProviderConfig] = field(default_factory=default_providers)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    prompts: PromptConfig = field(default_factory=PromptConfig)
    paths: PathConfig = field(default_factory=PathConfig)
    config_path: Optional[Path] = field(default=None, repr=False)
    # Providers whose api_key came from the environment; never written back to disk.
    env_keys: Set[str] = field(default_factory=set, repr=False)

    @classmethod
    def load(cls, *, config_path: Optional[Path] = None) -> "AppConfig":
        """Create an :class:`AppConfig` from YAML and environment overrides."""

        _load_dotenv_once()
        instance = cls.load_file(config_path)
        instance.apply_environment()
        return instance

    @classmethod
    def load_file(cls, config_path: Optional[Path] = None, *, strict: bool = False) -> "AppConfig":
        """Read only the YAML file, without environment overrides.

        With ``strict`` an unreadable or malformed file raises
        :class:`ConfigError` instead of falling back to defaults.
        """

        instance = cls()

        home = _env("CMDSTACK_HOME")
        if home:
            instance.paths.apply_overrides({"home_dir": home})

        file_path = config_path or _env("CMDSTACK_CONFIG_FILE") or instance.paths.config_file
        file_path = Path(file_path).expanduser()
        instance.config_path = file_path
        if file_path.exists():
            try:
                with file_path.open("r", encoding="utf-8") as handle:
                    payload = yaml.safe_load(handle) or {}
                if not isinstance(payload, dict):
                    raise ConfigError("top-level YAML value must be a mapping")
                instance.apply_mapping(payload)
            except (OSError, yaml.YAMLError, ConfigError, TypeError, AttributeError) as exc:
                if strict:
                    raise ConfigError(f"Invalid config file {file_path}: {exc}") from exc
                LOGGER.error("Ignoring invalid config file %s: %s", file_path, exc)
        return instance

    # ------------------------------------------------------------------
    # Override helpers
    # ------------------------------------------------------------------
    def apply_mapping(self, payload: Dict[str, Any]) -> None:
        if not payload:
            return

        if "provider" in payload and payload["provider"]:
            self.provider = str(payload["provider"]).lower()
        if "paths" in payload:
            self.paths.apply_overrides(payload["paths"] or {})

        sections = dict(payload.get("providers") or {})
        # Older files keep provider sections at the top level.
        for name in list(self.providers):
            if isinstance(payload.get(name), dict):
                sections.setdefault(name, payload[name])
        for name, values in sections.items():
            values = values or {}
            if name in self.providers:
                _update_dataclass(self.providers[name], values)
            else:
                known = {f.name for f in fields(ProviderConfig)}
                self.providers[name] = ProviderConfig(
                    **{key: value for key, value in values.items() if key in known}
                )

        for section in _SECTIONS:
            if section in payload:
                _update_dataclass(getattr(self, section), payload[section] or {})

    def apply_environment(self) -> None:
        provider = _env("CMDSTACK_PROVIDER")
        if provider:
            self.provider = provider.lower()

        ollama_host = _env("OLLAMA_HOST")
        if ollama_host and "local" in self.providers:
            self.providers["local"].base_url = _normalise_host(ollama_host)

        openai_base = _env("OPENAI_BASE_URL")
        if openai_base and "openai" in self.providers:
            self.providers["openai"].base_url = openai_base

        # Keys from the environment only fill in what the file left empty.
        for name, settings in self.providers.items():
            if settings.api_key_env and not settings.has_credentials():
                key = _env(settings.api_key_env)
                if key:
                    settings.api_key = key
                    self.env_keys.add(name)

    # ------------------------------------------------------------------
    # Provider lookup
    # ------------------------------------------------------------------
    def provider_config(self, name: Optional[str] = None) -> Tuple[str, ProviderConfig]:
        resolved = (name or self.provider or "local").lower()
        settings = self.providers.get(resolved)
        if settings is None:
            available = ", ".join(sorted(self.providers)) or "<none>"
            raise ConfigError(
                f"Provider '{resolved}' is not configured. Known providers: {available}."
            )
        return resolved, settings

    # ------------------------------------------------------------------
    # Dotted key access used by ``cmdstack config get/set``
    # ------------------------------------------------------------------
    def _resolve_key(self, key: str, *, create: bool = False) -> Tuple[Any, str]:
        parts = key.strip().lower().split(".")
        if parts == ["provider"]:
            return self, "provider"
        if len(parts) != 2:
            raise ConfigError(f"Unknown key: {key}")
        section, attribute = parts
        if section in _SECTIONS:
            target = getattr(self, section)
        elif section in self.providers:
            target = self.providers[section]
        elif create and attribute in {f.name for f in fields(ProviderConfig)}:
            target = self.providers.setdefault(section, ProviderConfig())
        else:
            raise ConfigError(f"Unknown key: {key}")
        if attribute not in {f.name for f in fields(target)}:
            raise ConfigError(f"Unknown key: {key}")
        return target, attribute

    def get_value(self, key: str) -> Any:
        target, attribute = self._resolve_key(key)
        return getattr(target, attribute)

    def set_value(self, key: str, value: Any) -> Any:
        target, attribute = self._resolve_key(key, create=True)
        hints = get_type_hints(type(target))
        coerced = _coerce(value, hints.get(attribute, str))
        if attribute == "provider" and target is self:
            coerced = str(coerced).lower()
        if attribute == "kind" and coerced not in PROVIDER_KINDS:
            raise ConfigError(
                f"Unknown provider kind '{coerced}'. Supported: {', '.join(PROVIDER_KINDS)}."
            )
        if attribute == "temperature" and not 0.0 <= float(coerced) <= 2.0:
            raise ConfigError("temperature must be between 0.0 and 2.0")
        if attribute == "api_key" and isinstance(target, ProviderConfig):
            self.env_keys.difference_update(
                name for name, settings in self.providers.items() if settings is target
            )
        setattr(target, attribute, coerced)
        return coerced

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _provider_mapping(self, name: str) -> Dict[str, Any]:
        values = asdict(self.providers[name])
        if name in self.env_keys:
            values["api_key"] = None
        return values

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "providers": {name: self._provider_mapping(name) for name in self.providers},
            "safety": asdict(self.safety),
            "ui": asdict(self.ui),
            "retry": asdict(self.retry),
            "prompts": asdict(self.prompts),
        }

    def save(self, path: Optional[Path] = None) -> Path:
        target = Path(path or self.config_path or self.paths.config_file)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(self.to_mapping(), handle, sort_keys=False)
        self.config_path = target
        return target

    def persist_value(self, key: str, value: Any) -> Path:
        """Set ``key`` in memory and in the file on disk.

        Only ``key`` changes on disk. Environment and command-line overrides
        held by this instance are not written.
        """

        coerced = self.set_value(key, value)
        stored = AppConfig.load_file(self.config_path, strict=True)
        stored.set_value(key, coerced)
        return stored.save()
