"""End-to-end handling of one natural-language request."""

from __future__ import annotations

import shutil
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import AppConfig, ConfigError
from .console import StatusProgress
from .context import SystemContext, gather_context
from .extraction import ExtractedCommand
from .llm import CommandProvider, EmptyResponseError, ProviderError, ProviderUnavailableError
from .logging import get_logger
from .prompt import build_system_prompt, build_user_prompt
from .registry import create_provider
from .retry import RetryPolicy, generate_with_retry
from .runner import get_first_tool, is_tool_available
from .safety import RiskAssessment, RiskClassifier, RiskLevel

LOGGER = get_logger(__name__)

CRITICAL_WARNING = "DANGER: This command is destructive!"
DANGEROUS_WARNING = "WARNING: Review before running"


class OutcomeKind(str, Enum):
    COMMAND = "command"
    DECLINED = "declined"
    CLARIFICATION = "clarification"
    UNCLEAR = "unclear"
    EMPTY = "empty"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


@dataclass
class QueryOutcome:
    """What the caller should show, and whether the command may run."""

    kind: OutcomeKind
    message: Optional[str] = None
    command: Optional[str] = None
    assessment: Optional[RiskAssessment] = None
    provider_name: Optional[str] = None
    hint: Optional[str] = None
    advisory: Optional[str] = None
    warning: Optional[str] = None
    should_run: bool = False
    needs_confirmation: bool = False
    elapsed: float = 0.0

    @property
    def risk(self) -> Optional[RiskLevel]:
        return self.assessment.level if self.assessment else None

    @property
    def is_error(self) -> bool:
        return self.kind in (
            OutcomeKind.UNAVAILABLE,
            OutcomeKind.ERROR,
            OutcomeKind.EMPTY,
            OutcomeKind.UNCLEAR,
        )


ProviderFactory = Callable[..., CommandProvider]


class QueryOrchestrator:
    """Resolve a provider, generate, normalise, classify and decide.

    The orchestrator never spawns the generated command itself; it returns a
    :class:`QueryOutcome` and leaves execution to the caller.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        status: Optional[StatusProgress] = None,
        provider_factory: ProviderFactory = create_provider,
        context_factory: Callable[[], SystemContext] = gather_context,
        which: Callable[[str], Optional[str]] = shutil.which,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.status = status or StatusProgress()
        self.classifier = RiskClassifier(config.safety.blocked_commands)
        self.retry_policy = RetryPolicy.from_config(config.retry)
        self._provider_factory = provider_factory
        self._context_factory = context_factory
        self._which = which
        self._sleep = sleep

    def resolve_provider(self, provider_name: Optional[str] = None) -> CommandProvider:
        return self._provider_factory(self.config, provider_name, progress=self.status)

    def run(self, query: str, provider_name: Optional[str] = None, execute: bool = False) -> QueryOutcome:
        started = time.monotonic()
        outcome = self._run(query, provider_name, execute)
        outcome.elapsed = time.monotonic() - started
        return outcome

    def _run(self, query: str, provider_name: Optional[str], execute: bool) -> QueryOutcome:
        try:
            provider = self.resolve_provider(provider_name)
        except ConfigError as exc:
            return QueryOutcome(OutcomeKind.ERROR, message=str(exc))

        if provider.requires_credentials and not provider.is_available():
            return QueryOutcome(
                OutcomeKind.UNAVAILABLE,
                message=f"Provider '{provider.name}' is not configured.",
                provider_name=provider.name,
                hint=provider.setup_hint(),
            )

        system_prompt = build_system_prompt(self._context_factory(), self.config.prompts)
        user_prompt = build_user_prompt(query)

        try:
            with self.status.activate("Thinking..."):
                raw = generate_with_retry(
                    provider, system_prompt, user_prompt, self.retry_policy, sleep=self._sleep
                )
        except EmptyResponseError as exc:
            LOGGER.debug("Empty response from %s: %s", provider.name, exc)
            return QueryOutcome(
                OutcomeKind.EMPTY,
                message="Could not generate a command",
                provider_name=provider.name,
            )
        except ProviderUnavailableError as exc:
            return QueryOutcome(
                OutcomeKind.UNAVAILABLE,
                message=str(exc),
                provider_name=provider.name,
                hint=exc.hint or provider.setup_hint(),
            )
        except ProviderError as exc:
            return QueryOutcome(OutcomeKind.ERROR, message=str(exc), provider_name=provider.name)

        LOGGER.debug("Raw response from %s: %r", provider.name, raw)
        extracted = ExtractedCommand.from_response(raw)
        if extracted.declined:
            return QueryOutcome(OutcomeKind.DECLINED, message=extracted.message, provider_name=provider.name)
        if extracted.needs_clarification:
            return QueryOutcome(
                OutcomeKind.CLARIFICATION, message=extracted.message, provider_name=provider.name
            )

        command = extracted.command.strip()
        if not command:
            return QueryOutcome(
                OutcomeKind.UNCLEAR,
                message="Could not understand the request. Please be more specific.",
                provider_name=provider.name,
            )

        return self.decide(command, provider.name, execute)

    def decide(self, command: str, provider_name: Optional[str] = None, execute: bool = False) -> QueryOutcome:
        """Classify ``command`` and decide whether it may run."""

        assessment = self.classifier.assess(command)
        outcome = QueryOutcome(
            OutcomeKind.COMMAND,
            command=command,
            assessment=assessment,
            provider_name=provider_name,
        )

        tool = get_first_tool(command)
        if not is_tool_available(tool, self._which):
            outcome.advisory = f"'{tool}' is not installed"

        if assessment.level == RiskLevel.CRITICAL:
            outcome.warning = CRITICAL_WARNING
            outcome.should_run = False
            return outcome

        if assessment.level == RiskLevel.DANGEROUS:
            outcome.warning = DANGEROUS_WARNING
            outcome.needs_confirmation = execute and self.config.safety.require_confirm_dangerous

        outcome.should_run = execute
        return outcome
