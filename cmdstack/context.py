"""Snapshot of the machine the generated command will run on."""

from __future__ import annotations

import os
import platform
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Tuple

TOOLS_TO_CHECK: Tuple[str, ...] = (
    # Version control
    "git", "gh", "svn",
    # Containers
    "docker", "docker-compose", "podman", "kubectl", "helm", "k9s", "minikube",
    # Package managers
    "npm", "yarn", "pnpm", "bun", "pip", "pip3", "pipenv", "poetry",
    "go", "cargo", "brew", "apt", "dnf", "pacman",
    # Languages
    "python", "python3", "node", "deno", "ruby", "php", "java",
    # Build tools
    "make", "cmake", "mvn", "gradle",
    # Cloud
    "terraform", "ansible", "aws", "gcloud", "az", "flyctl", "vercel",
    # Databases
    "psql", "mysql", "mongo", "redis-cli", "sqlite3",
    # Networking
    "curl", "wget", "ssh", "scp", "rsync", "nc", "lsof",
    # Text and search
    "jq", "yq", "fzf", "rg", "fd", "awk", "sed", "grep",
    # Compression
    "tar", "zip", "unzip", "gzip",
    # System
    "htop", "top", "ps", "df", "du", "free",
    # Media
    "ffmpeg", "convert",
)

_OS_HINTS = {
    "darwin": "macOS: use BSD-style flags (e.g., ls -G for colors)",
    "linux": "Linux: use GNU-style flags (e.g., ls --color for colors)",
    "windows": "Windows: prefer PowerShell cmdlets when appropriate",
}


@dataclass(frozen=True)
class SystemContext:
    os_name: str
    arch: str
    shell: str
    working_dir: str
    available_tools: Tuple[str, ...] = ()

    @property
    def os_hint(self) -> str:
        return _OS_HINTS.get(self.os_name, "")


def detect_shell(os_name: Optional[str] = None, which: Callable[[str], Optional[str]] = shutil.which) -> str:
    os_name = os_name or platform.system().lower()
    if os_name == "windows":
        return "powershell" if which("pwsh") else "cmd"
    shell = os.environ.get("SHELL", "").strip()
    if shell:
        return Path(shell).name
    return "sh"


def detect_tools(
    candidates: Iterable[str] = TOOLS_TO_CHECK,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> Tuple[str, ...]:
    return tuple(tool for tool in candidates if which(tool))


def _working_dir() -> str:
    try:
        return os.getcwd()
    except OSError:
        return "unknown"


def gather_context(which: Callable[[str], Optional[str]] = shutil.which) -> SystemContext:
    os_name = platform.system().lower()
    return SystemContext(
        os_name=os_name,
        arch=platform.machine().lower(),
        shell=detect_shell(os_name, which),
        working_dir=_working_dir(),
        available_tools=detect_tools(which=which),
    )
