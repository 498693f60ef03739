"""Turn free-form model output into a single command line."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

# (label, case_insensitive)
_LEADING_LABELS: Sequence[Tuple[str, bool]] = (
    ("Command:", True),
    ("CMD:", True),
    ("$ ", False),
    ("> ", False),
)

_CODE_FENCE = re.compile(r"```(?:bash|sh|shell|zsh|cmd|powershell)?[ \t]*\n([\s\S]*?)\n[ \t]*```")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_PROMPT_MARKERS = ("$", ">", "#")

_EXPLANATORY_OPENERS = ("I ", "The ", "This ", "To ", "You ", "Here ")
_MAX_COMMAND_LENGTH = 500

KNOWN_COMMANDS = frozenset(
    {
        "ls", "cd", "pwd", "cat", "echo", "grep", "find", "mkdir", "rm", "cp", "mv",
        "git", "docker", "kubectl", "npm", "yarn", "pip", "go", "cargo", "make",
        "curl", "wget", "ssh", "scp", "tar", "zip", "unzip", "chmod", "chown",
        "ps", "kill", "top", "df", "du", "head", "tail", "sort", "uniq", "wc",
        "awk", "sed", "cut", "tr", "diff", "touch", "ln", "file", "which",
        "python", "python3", "node", "ruby", "perl", "java", "javac",
        "brew", "apt", "apt-get", "yum", "dnf", "pacman",
        "sudo", "su", "env", "export", "source", "alias",
    }
)

_LOCAL_PREFIXES = ("$ ", "> ", "Command: ", "command: ", "Output: ")

_DECLINE_PREFIX = "Declined"
_CLARIFY_PREFIX = "Please specify:"


def _strip_labels(text: str) -> str:
    for label, case_insensitive in _LEADING_LABELS:
        if case_insensitive:
            matches = text[: len(label)].lower() == label.lower()
        else:
            matches = text.startswith(label)
        if matches:
            text = text[len(label):].strip()
    return text


def looks_like_command(line: str) -> bool:
    """Heuristic used when a line carries no structural marker."""

    if not line or len(line) > _MAX_COMMAND_LENGTH:
        return False
    if line.startswith(_EXPLANATORY_OPENERS):
        return False
    name = line.split(" ", 1)[0]
    return name in KNOWN_COMMANDS and (line == name or line.startswith(name + " "))


def extract_command(response: str) -> str:
    """Isolate one command line from ``response``.

    Structural signals (code fences, backticks, prompt markers) are tried
    before the command-likelihood heuristic; when nothing matches, the trimmed
    response is returned unchanged.
    """

    text = _strip_labels(response.strip())

    fenced = _CODE_FENCE.search(text)
    if fenced:
        return fenced.group(1).strip()

    inline = _INLINE_CODE.search(text)
    if inline:
        return inline.group(1).strip()

    lines = text.split("\n")
    for line in lines:
        line = line.strip()
        if line and line.startswith(_PROMPT_MARKERS):
            return line[1:].strip()

    first = lines[0].strip() if lines else ""
    if looks_like_command(first):
        return first

    return text


def _is_commentary(line: str) -> bool:
    if line.startswith(("#", "//", "Note:", "This ", "The ")):
        return True
    return line.startswith("'") and "not installed" in line


def clean_local_response(response: str) -> str:
    """Cleaning pass for small local models, applied before :func:`extract_command`."""

    response = response.strip()

    if "```" in response:
        inside = []
        in_block = False
        for line in response.split("\n"):
            if line.strip().startswith("```"):
                in_block = not in_block
                continue
            if in_block:
                inside.append(line)
        if inside:
            response = "\n".join(inside)

    for prefix in _LOCAL_PREFIXES:
        if response.startswith(prefix):
            response = response[len(prefix):]

    for line in response.split("\n"):
        line = line.strip()
        if not line or _is_commentary(line):
            continue
        return line

    return response.strip()


def _unwrap_echo(command: str) -> str:
    match = re.match(r"""^echo\s+(["'])(.*)\1\s*$""", command)
    if match:
        return match.group(2)
    return command


@dataclass(frozen=True)
class ExtractedCommand:
    """Extraction result plus the sentinel shapes the prompt asks models to use."""

    command: str
    raw: str
    declined: bool = False
    needs_clarification: bool = False
    message: Optional[str] = None

    @property
    def is_informational(self) -> bool:
        return self.declined or self.needs_clarification

    @classmethod
    def from_response(cls, raw: str) -> "ExtractedCommand":
        command = extract_command(raw)
        text = _unwrap_echo(command)
        if text.startswith(_DECLINE_PREFIX):
            return cls(command=command, raw=raw, declined=True, message=text)
        if text.startswith(_CLARIFY_PREFIX):
            return cls(command=command, raw=raw, needs_clarification=True, message=text)
        return cls(command=command, raw=raw)
