"""Simple logging helpers."""

from __future__ import annotations

import logging
from typing import Optional

from rich.logging import RichHandler

from .console import err_console


def configure_logging(level: str = "WARNING") -> None:
    """Configure a Rich-powered logging formatter writing to stderr."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, rich_tracebacks=False, markup=False, show_path=False)],
        force=True,
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or "cmdstack")
