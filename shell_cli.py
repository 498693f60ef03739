"""Command-line entry point: describe a task, get a shell command."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from cmdstack import __version__
from cmdstack.config import AppConfig, ConfigError
from cmdstack.console import StatusProgress, console, err_console
from cmdstack.llm import ProviderError
from cmdstack.logging import configure_logging, get_logger
from cmdstack.orchestrator import OutcomeKind, QueryOrchestrator, QueryOutcome
from cmdstack.registry import create_provider, list_providers
from cmdstack.runner import CommandRunner
from cmdstack.safety import RiskClassifier, RiskLevel

LOGGER = get_logger(__name__)

_RISK_STYLES = {
    RiskLevel.SAFE: "risk.safe",
    RiskLevel.MODERATE: "risk.moderate",
    RiskLevel.DANGEROUS: "risk.dangerous",
    RiskLevel.CRITICAL: "risk.critical",
}


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config-file",
        type=Path,
        help="Path to the YAML config file (default: ~/.cmdstack/config.yaml).",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        help="Path to a .env file with API keys such as OPENAI_API_KEY (default: .env).",
    )
    parser.add_argument("--log-level", help="Python logging level (default: WARNING, INFO with -v).")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cmdstack",
        description="Turn a natural-language request into a shell command.",
        epilog="Other commands: 'cmdstack config show|get|set|path|init', 'cmdstack providers'.",
    )
    parser.add_argument("query", nargs="*", help="What you want to do, in plain words.")
    parser.add_argument("-p", "--provider", help="Provider to use for this request (e.g. local, openai, claude).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show risk details and timing.")
    parser.add_argument(
        "-x",
        "--exec",
        dest="execute",
        action="store_true",
        help="Run the generated command after showing it.",
    )
    parser.add_argument(
        "--list-models",
        action="store_true",
        help="List models available to the selected provider and exit.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    _add_common_arguments(parser)
    return parser.parse_args(argv)


def parse_config_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cmdstack config", description="Inspect or edit the configuration.")
    _add_common_arguments(parser)
    actions = parser.add_subparsers(dest="action", required=True)
    actions.add_parser("show", help="Print every setting.")
    getter = actions.add_parser("get", help="Print one setting.")
    getter.add_argument("key", help="Dotted key, e.g. local.model or safety.require_confirm_dangerous.")
    setter = actions.add_parser("set", help="Change one setting and save the file.")
    setter.add_argument("key")
    setter.add_argument("value")
    actions.add_parser("path", help="Print the config file location.")
    init = actions.add_parser("init", help="Write a config file with the default settings.")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file.")
    return parser.parse_args(argv)


def parse_providers_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cmdstack providers", description="List configured providers.")
    _add_common_arguments(parser)
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> AppConfig:
    configure_logging(args.log_level or ("INFO" if getattr(args, "verbose", False) else "WARNING"))
    if args.env_file:
        os.environ["ENV_FILE"] = str(args.env_file)
    return AppConfig.load(config_path=args.config_file)


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> None:
    if args.provider:
        config.provider = args.provider.lower()
    if args.verbose:
        config.ui.verbose = True
    if not config.ui.color:
        console.no_color = True
        err_console.no_color = True


# ----------------------------------------------------------------------
# Query mode
# ----------------------------------------------------------------------
def list_models(config: AppConfig) -> int:
    try:
        provider = create_provider(config, progress=StatusProgress())
        with err_console.status("[info]Fetching models...[/info]"):
            models = provider.list_models()
    except (ConfigError, ProviderError) as exc:
        LOGGER.error("Failed to query models: %s", exc)
        return 1

    if not models:
        err_console.print(
            Panel(
                f"No models are currently available for the {provider.name} provider.",
                title="Models Unavailable",
                style="warning",
            )
        )
        return 0

    table = Table(title=f"{provider.name.title()} Models", box=None, highlight=True)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Name", style="magenta")
    table.add_column("Size", justify="right")
    for idx, model in enumerate(models, start=1):
        size = f"{model.size / 1024 ** 3:.1f} GB" if model.size else ""
        marker = " (active)" if model.name == provider.model else ""
        table.add_row(str(idx), f"{model.name}{marker}", size)
    console.print(table)
    return 0


def render_outcome(outcome: QueryOutcome, *, verbose: bool = False) -> None:
    if outcome.kind in (OutcomeKind.ERROR, OutcomeKind.UNAVAILABLE, OutcomeKind.EMPTY):
        body = escape(outcome.message or "Unknown error")
        if outcome.hint:
            body += "\n\n[info]To set it up:[/info]\n" + escape(outcome.hint)
        title = "Provider Unavailable" if outcome.kind == OutcomeKind.UNAVAILABLE else "Error"
        err_console.print(Panel(body, title=title, style="error"))
        return

    if outcome.kind != OutcomeKind.COMMAND:
        err_console.print(f"[warning]{escape(outcome.message or '')}[/warning]")
        return

    style = _RISK_STYLES.get(outcome.risk, "info")
    if outcome.warning:
        err_console.print(f"[{style}]{escape(outcome.warning)}[/{style}]")
    console.print(outcome.command, style="command", markup=False, highlight=False)
    if outcome.advisory:
        err_console.print(f"[warning]{escape(outcome.advisory)}[/warning]")
    if verbose and outcome.assessment is not None:
        assessment = outcome.assessment
        err_console.print(
            f"[{style}]risk: {assessment.level.label} ({escape(assessment.level.description)})[/{style}]"
        )
        if assessment.rule:
            err_console.print(f"[info]matched:[/info] {escape(assessment.rule)}")
        err_console.print(f"[info]{outcome.provider_name} in {outcome.elapsed:.2f}s[/info]")


def execute_command(outcome: QueryOutcome, classifier: RiskClassifier) -> int:
    if outcome.needs_confirmation and not Confirm.ask(
        "[warning]Run this command?[/warning]", console=err_console, default=False
    ):
        err_console.print("[info]Cancelled.[/info]")
        return 0

    result = CommandRunner(classifier).run(outcome.command or "")
    if result.error:
        err_console.print(f"[error]{escape(result.error)}[/error]")
        return 1
    return 0 if result.ok else 1


def run_query(config: AppConfig, args: argparse.Namespace) -> int:
    query = " ".join(args.query).strip()
    if not query:
        err_console.print("[error]Describe what you want to do, e.g. cmdstack list large files[/error]")
        return 1

    orchestrator = QueryOrchestrator(config)
    outcome = orchestrator.run(query, execute=args.execute)
    render_outcome(outcome, verbose=config.ui.verbose)

    if outcome.is_error:
        return 1
    if outcome.should_run:
        return execute_command(outcome, orchestrator.classifier)
    return 0


# ----------------------------------------------------------------------
# config / providers subcommands
# ----------------------------------------------------------------------
def _mask(key: str, value: Any) -> Any:
    if key.endswith(".api_key") and value:
        text = str(value)
        return "****" + text[-4:] if len(text) > 8 else "****"
    return value


def _flatten(config: AppConfig) -> Iterator[Tuple[str, Any]]:
    mapping: Dict[str, Any] = config.to_mapping()
    yield "provider", mapping.pop("provider")
    for name, settings in mapping.pop("providers").items():
        for key, value in settings.items():
            yield f"{name}.{key}", value
    for section, values in mapping.items():
        for key, value in values.items():
            yield f"{section}.{key}", value


def config_main(argv: Sequence[str]) -> int:
    args = parse_config_args(argv)
    config = load_config(args)

    if args.action == "path":
        console.print(str(config.config_path), markup=False, highlight=False)
        return 0

    if args.action == "init":
        target = Path(config.config_path or config.paths.config_file)
        if target.exists() and not args.force:
            err_console.print(f"[warning]{escape(str(target))} already exists (use --force to overwrite).[/warning]")
            return 1
        fresh = AppConfig()
        fresh.config_path = target
        fresh.save()
        err_console.print(f"[success]Wrote default configuration to {escape(str(target))}[/success]")
        return 0

    if args.action == "show":
        table = Table(title="Configuration", box=None, highlight=True)
        table.add_column("Key", style="cyan", no_wrap=True)
        table.add_column("Value", overflow="fold")
        for key, value in _flatten(config):
            table.add_row(key, escape(repr(_mask(key, value))))
        console.print(table)
        err_console.print(f"[info]File: {escape(str(config.config_path))}[/info]")
        return 0

    try:
        if args.action == "get":
            value = config.get_value(args.key)
            console.print(str(_mask(args.key, value)), markup=False, highlight=False)
            return 0

        path = config.persist_value(args.key, args.value)
        value = config.get_value(args.key)
    except ConfigError as exc:
        err_console.print(f"[error]{escape(str(exc))}[/error]")
        return 1
    except OSError as exc:
        err_console.print(f"[error]Failed to save configuration: {escape(str(exc))}[/error]")
        return 1

    err_console.print(
        f"[success]Set {escape(args.key)} = {escape(repr(_mask(args.key, value)))}[/success] in {escape(str(path))}"
    )
    return 0


def providers_main(argv: Sequence[str]) -> int:
    args = parse_providers_args(argv)
    config = load_config(args)

    table = Table(title="Providers", box=None, highlight=True)
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Model", style="magenta")
    table.add_column("Status")
    for status in list_providers(config):
        label = "[success]ready[/success]" if status.configured else "[warning]needs API key[/warning]"
        name = f"{status.name} *" if status.active else status.name
        table.add_row(name, status.kind, escape(status.model), label)
    console.print(table)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] == "config":
        return config_main(argv[1:])
    if argv and argv[0] == "providers":
        return providers_main(argv[1:])

    args = parse_args(argv)
    config = load_config(args)
    apply_overrides(config, args)

    if args.list_models:
        return list_models(config)

    try:
        return run_query(config, args)
    except KeyboardInterrupt:
        err_console.print("[warning]Interrupted.[/warning]")
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
