"""Executing generated commands in the user's shell."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .logging import get_logger
from .safety import RiskClassifier

LOGGER = get_logger(__name__)

_WRAPPERS = ("sudo", "env", "nohup", "time")
_WRAPPER_STOPS = ("|", ">", ">>", "<", "&&", "||")

SHELL_BUILTINS = frozenset(
    {
        "echo", "cd", "pwd", "export", "source", "alias", "exit", "return",
        "set", "unset", "read", "eval", "exec", "trap", "wait", "kill",
        "test", "[", "[[", "if", "for", "while", "case", "function", "time",
    }
)


def shell_invocation(
    system: Optional[str] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> Tuple[str, str]:
    """Return ``(shell, flag)`` used to run a command string."""

    system = (system or platform.system()).lower()
    if system == "windows":
        if which("pwsh"):
            return "pwsh", "-Command"
        return "cmd", "/C"

    shell = os.environ.get("SHELL", "").strip()
    if shell:
        return shell, "-c"
    for candidate in ("zsh", "bash", "sh"):
        path = which(candidate)
        if path:
            return path, "-c"
    return "sh", "-c"


def get_first_tool(command: str) -> str:
    """Name of the program a command line invokes, skipping wrappers like ``sudo``."""

    command = command.strip()
    if command.startswith(("(", "$")):
        return ""
    parts = command.split()
    if not parts:
        return ""
    first = parts[0]
    if first in _WRAPPERS and len(parts) > 1:
        following = parts[1]
        if following in _WRAPPER_STOPS or following.startswith("-"):
            return first
        return get_first_tool(" ".join(parts[1:]))
    return first


def is_tool_available(tool: str, which: Callable[[str], Optional[str]] = shutil.which) -> bool:
    if not tool or tool in SHELL_BUILTINS:
        return True
    return which(tool) is not None


@dataclass
class CommandResult:
    command: str
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None


class CommandRunner:
    """Run command strings through the user's shell, refusing blocked ones."""

    def __init__(
        self,
        classifier: Optional[RiskClassifier] = None,
        *,
        shell: Optional[Tuple[str, str]] = None,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.classifier = classifier or RiskClassifier()
        self.shell, self.shell_flag = shell or shell_invocation()
        self._run = run

    def run(self, command: str, *, capture: bool = False) -> CommandResult:
        """Run ``command``; inherit the terminal unless ``capture`` is set."""

        if self.classifier.is_blocked(command):
            return CommandResult(command, exit_code=1, error="command is blocked by safety settings")

        LOGGER.debug("Running %s %s %r", self.shell, self.shell_flag, command)
        try:
            completed = self._run(
                [self.shell, self.shell_flag, command],
                cwd=os.getcwd(),
                capture_output=capture,
                text=True,
                check=False,
            )
        except OSError as exc:
            return CommandResult(command, exit_code=1, error=str(exc))

        return CommandResult(
            command,
            exit_code=completed.returncode,
            stdout=(completed.stdout or "") if capture else "",
            stderr=(completed.stderr or "") if capture else "",
        )

    def dry_run(self, command: str) -> str:
        try:
            working_dir = os.getcwd()
        except OSError:
            working_dir = "unknown"
        return "\n".join(
            [
                f"Shell: {self.shell}",
                f"Command: {self.shell} {self.shell_flag} '{command}'",
                f"Working directory: {working_dir}",
                f"Risk level: {self.classifier.assess_risk(command).label}",
            ]
        )
