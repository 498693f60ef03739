"""High-level public API for turning natural-language requests into shell commands."""

__version__ = "0.1.0"

from .config import (
    AppConfig,
    ConfigError,
    PathConfig,
    PromptConfig,
    ProviderConfig,
    RetryConfig,
    SafetyConfig,
    UIConfig,
)
from .context import SystemContext, gather_context
from .extraction import ExtractedCommand, clean_local_response, extract_command
from .llm import (
    CommandProvider,
    EmptyResponseError,
    GenerationOptions,
    GenerationRequest,
    ModelInfo,
    ModelNotFoundError,
    ProviderConnectionError,
    ProviderError,
    ProviderResponseError,
    ProviderUnavailableError,
)
from .claude import ClaudeProvider
from .ollama import LocalProvider
from .openai_client import OpenAICompatibleProvider
from .orchestrator import OutcomeKind, QueryOrchestrator, QueryOutcome
from .registry import ProviderKind, ProviderStatus, create_provider, list_providers
from .retry import RetryPolicy, generate_with_retry
from .runner import CommandResult, CommandRunner
from .runtime import (
    ModelPullError,
    RuntimeInstallError,
    RuntimeManager,
    RuntimeManagerError,
    RuntimeStartError,
    RuntimeState,
    select_model_by_ram,
)
from .safety import RiskAssessment, RiskClassifier, RiskLevel, assess_risk

__all__ = [
    "__version__",
    "AppConfig",
    "ConfigError",
    "PathConfig",
    "PromptConfig",
    "ProviderConfig",
    "RetryConfig",
    "SafetyConfig",
    "UIConfig",
    "SystemContext",
    "gather_context",
    "ExtractedCommand",
    "clean_local_response",
    "extract_command",
    "CommandProvider",
    "EmptyResponseError",
    "GenerationOptions",
    "GenerationRequest",
    "ModelInfo",
    "ModelNotFoundError",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderResponseError",
    "ProviderUnavailableError",
    "ClaudeProvider",
    "LocalProvider",
    "OpenAICompatibleProvider",
    "OutcomeKind",
    "QueryOrchestrator",
    "QueryOutcome",
    "ProviderKind",
    "ProviderStatus",
    "create_provider",
    "list_providers",
    "RetryPolicy",
    "generate_with_retry",
    "CommandResult",
    "CommandRunner",
    "ModelPullError",
    "RuntimeInstallError",
    "RuntimeManager",
    "RuntimeManagerError",
    "RuntimeStartError",
    "RuntimeState",
    "select_model_by_ram",
    "RiskAssessment",
    "RiskClassifier",
    "RiskLevel",
    "assess_risk",
]
