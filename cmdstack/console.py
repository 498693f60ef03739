"""Rich console utilities shared by the command-line entry point."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from rich.console import Console
from rich.status import Status
from rich.theme import Theme

_THEME = Theme(
    {
        "info": "cyan",
        "warning": "bold yellow",
        "error": "bold red",
        "success": "green",
        "command": "bold",
        "risk.safe": "green",
        "risk.moderate": "cyan",
        "risk.dangerous": "yellow",
        "risk.critical": "bold red",
    }
)

# Generated commands go to stdout so shell integrations can capture them;
# everything else (spinner, warnings, logs) goes to stderr.
console = Console(theme=_THEME, soft_wrap=True)
err_console = Console(theme=_THEME, stderr=True)


class StatusProgress:
    """Progress callback that renders onto the active status spinner.

    Long operations (runtime download, model pull) report ``(status, percent)``
    pairs. While a spinner is active the text is swapped in place; otherwise a
    line is printed whenever the status string changes.
    """

    def __init__(self, target: Optional[Console] = None) -> None:
        self.console = target or err_console
        self._status: Optional[Status] = None
        self._last: Optional[str] = None

    def __call__(self, status: str, percent: Optional[float] = None) -> None:
        text = status if percent is None else f"{status} {percent:.0f}%"
        if self._status is not None:
            self._status.update(f"[info]{text}[/info]")
            return
        if status != self._last:
            self.console.print(f"[info]{text}[/info]")
            self._last = status

    @contextmanager
    def activate(self, message: str) -> Iterator[Status]:
        with self.console.status(f"[info]{message}[/info]") as status:
            self._status = status
            try:
                yield status
            finally:
                self._status = None


__all__ = ["console", "err_console", "StatusProgress"]
