"""Prompt templates for command generation."""

from __future__ import annotations

from typing import Optional

from .config import PromptConfig
from .context import SystemContext

SYSTEM_PROMPT = """Convert the request to a shell command. Output ONLY the command.

{context}

EXAMPLES:
"list files" -> ls -la
"disk usage" -> du -sh *
"run ollama" -> ollama serve
"start docker" -> docker start
"find py files" -> find . -name "*.py"
"remove txt files" -> rm *.txt
"git status" -> git status
"ping google" -> ping -c 4 google.com

If the request is too vague to answer, output: echo "Please specify: <what is missing>"

DECLINE ONLY these exact patterns (output: echo "Declined"):
- rm -rf / or rm -rf /*
- dd if=/dev/zero of=/dev
- :(){ :|:& };:

Command:"""

CONTEXT_TEMPLATE = """SYSTEM INFO:
- OS: {os_name}
- Architecture: {arch}
- Shell: {shell}
- Current directory: {working_dir}
- Available tools: {tools}"""


def build_context_block(context: SystemContext) -> str:
    block = CONTEXT_TEMPLATE.format(
        os_name=context.os_name,
        arch=context.arch,
        shell=context.shell,
        working_dir=context.working_dir,
        tools=", ".join(context.available_tools) or "none detected",
    )
    if context.os_hint:
        block += f"\n- Hint: {context.os_hint}"
    return block


def build_system_prompt(context: SystemContext, prompts: Optional[PromptConfig] = None) -> str:
    template = SYSTEM_PROMPT
    if prompts is not None and prompts.system_prompt:
        template = prompts.system_prompt
    # Plain substitution: user templates may contain literal braces (JSON examples).
    return template.replace("{context}", build_context_block(context))


def build_user_prompt(request: str) -> str:
    return request.strip()
