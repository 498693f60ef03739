"""Pattern-based risk classification for generated shell commands.

This is heuristic matching, not shell parsing: quoted, escaped or otherwise
obfuscated commands can be misclassified. The tables lean towards
over-flagging, and anything unrecognised is treated as state-changing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple


class RiskLevel(IntEnum):
    SAFE = 0
    MODERATE = 1
    DANGEROUS = 2
    CRITICAL = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    def __str__(self) -> str:
        return self.label


_DESCRIPTIONS = {
    RiskLevel.SAFE: "Read-only command, safe to execute",
    RiskLevel.MODERATE: "May modify files or state",
    RiskLevel.DANGEROUS: "Could cause data loss or system changes",
    RiskLevel.CRITICAL: "Extremely dangerous, could destroy data or the system",
}

# Targets that make a recursive delete destroy the filesystem or home directory.
_ROOT_TARGET = r"(?:/\*?|~/?\*?|\$HOME/?\*?|\*|\.\./?)(?=\s|;|&|\||$)"
_RECURSIVE_FLAG = r"(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)"

CRITICAL_PATTERNS: Sequence[str] = (
    rf"\brm\s+{_RECURSIVE_FLAG}(?:\s+--?[\w-]+)*\s+{_ROOT_TARGET}",
    r"\bdd\s+if=",
    r"\bmkfs(?:\.\w+)?\b",
    r"\bfdisk\b",
    r"\bparted\b",
    r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;",
    r">\s*/dev/(?:[shv]d[a-z]|nvme\d|disk\d)",
    r"\bchmod\s+(?:-R\s+)?777\s+/(?=\s|$)",
    r"\bchown\s+-R\b.*\s/(?=\s|$)",
    r"\b(?:curl|wget)\b.*\|\s*(?:sudo\s+)?(?:ba|z)?sh\b",
    r"\|\s*(?:ba)?sh\s*$",
)

DANGEROUS_PATTERNS: Sequence[str] = (
    r"^rm\s",
    r"^rmdir\b",
    r"^git\s+(?:reset|rebase|push|clean)\b",
    r"--force\b",
    r"--hard\b",
    r"\s-rf(?:\s|$)",
    r"^docker\s+(?:rm|rmi|prune|system\s+prune)\b",
    r"^kubectl\s+delete\b",
    r"^chmod\b",
    r"^chown\b",
    r"^sudo\b",
    r"^su(?:\s|$)",
    r"^kill",
    r"^pkill\b",
    r"^killall\b",
    r">\s*[^|]",
    r">>",
)

MODERATE_PATTERNS: Sequence[str] = (
    r"^git\s+(?:add|commit|stash|checkout|switch|merge|pull|init|clone)\b",
    r"^docker\s+(?:build|run|exec|start|stop|pull|compose)\b",
    r"^kubectl\s+(?:apply|create|edit|scale|rollout)\b",
    r"^npm\s+(?:install|i|update|uninstall|ci)\b",
    r"^yarn\s+(?:add|install|remove|upgrade)\b",
    r"^pip3?\s+(?:install|uninstall)\b",
    r"^go\s+(?:build|install|get|mod)\b",
    r"^cargo\s+(?:build|install|add|remove)\b",
    r"^(?:apt|apt-get|dnf|yum|pacman|brew)\s",
    r"^mkdir\b",
    r"^touch\b",
    r"^cp\s",
    r"^mv\s",
    r"^ln\s",
)

SAFE_COMMANDS: Sequence[str] = (
    "ls", "ll", "la", "dir",
    "pwd", "cd",
    "cat", "less", "more", "head", "tail",
    "grep", "rg", "ag", "ack",
    "find", "fd", "locate",
    "echo", "printf",
    "date", "cal",
    "whoami", "id", "who", "w",
    "uname", "hostname",
    "env", "printenv",
    "which", "whereis", "type",
    "man", "help", "info",
    "wc", "sort", "uniq", "cut", "tr",
    "diff", "cmp",
    "file", "stat",
    "df", "du",
    "free", "top", "htop", "ps", "pgrep",
    "uptime", "lscpu", "lsmem",
    "ping", "host", "dig", "nslookup",
    "curl", "wget", "http",
    "git status", "git log", "git diff", "git branch", "git remote", "git show",
    "docker ps", "docker images", "docker logs", "docker inspect",
    "kubectl get", "kubectl describe", "kubectl logs",
    "npm list", "npm ls", "npm outdated", "npm view",
    "pip list", "pip show", "pip3 list", "pip3 show",
    "go list", "go version", "go env",
    "cargo --version", "rustc --version",
    "node --version", "python --version", "python3 --version",
)

BLOCKED = "blocked"
PATTERN = "pattern"
SAFE_LIST = "safe_list"
DEFAULT = "default"


@dataclass(frozen=True)
class RiskAssessment:
    """Verdict for one command string, with the rule that produced it."""

    command: str
    level: RiskLevel
    provenance: str
    rule: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.provenance == BLOCKED


def _compile(patterns: Iterable[str]) -> List[Tuple[str, Pattern[str]]]:
    return [(pattern, re.compile(pattern)) for pattern in patterns]


_CRITICAL = _compile(CRITICAL_PATTERNS)
_DANGEROUS = _compile(DANGEROUS_PATTERNS)
_MODERATE = _compile(MODERATE_PATTERNS)


class RiskClassifier:
    """Classify commands against the block list and the pattern tables.

    Checks run most severe first and stop at the first hit. The classifier
    holds no mutable state, so results depend only on the command string and
    the block list it was built with.
    """

    def __init__(self, blocked_commands: Sequence[str] = ()) -> None:
        self.blocked_commands = tuple(entry for entry in blocked_commands if entry)

    def assess(self, command: str) -> RiskAssessment:
        for entry in self.blocked_commands:
            if entry in command:
                return RiskAssessment(command, RiskLevel.CRITICAL, BLOCKED, entry)

        for level, table in (
            (RiskLevel.CRITICAL, _CRITICAL),
            (RiskLevel.DANGEROUS, _DANGEROUS),
            (RiskLevel.MODERATE, _MODERATE),
        ):
            for source, pattern in table:
                if pattern.search(command):
                    return RiskAssessment(command, level, PATTERN, source)

        for safe in SAFE_COMMANDS:
            if command == safe or command.startswith(safe + " "):
                return RiskAssessment(command, RiskLevel.SAFE, SAFE_LIST, safe)

        return RiskAssessment(command, RiskLevel.MODERATE, DEFAULT)

    def assess_risk(self, command: str) -> RiskLevel:
        return self.assess(command).level

    def is_blocked(self, command: str) -> bool:
        return any(entry in command for entry in self.blocked_commands)


def assess_risk(command: str, blocked_commands: Sequence[str] = ()) -> RiskLevel:
    return RiskClassifier(blocked_commands).assess_risk(command)
