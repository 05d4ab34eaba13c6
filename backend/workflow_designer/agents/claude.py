"""Claude CLI agent integration.

Runs the Claude CLI as a one-shot subprocess per agent invocation and
returns its text output. Failures (missing binary, non-zero exit, timeout)
raise ``ExternalCallError`` so the engine fails the calling node.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from .. import settings
from ..config import CLAUDE_CLI_PATH, CLAUDE_SKIP_PERMISSIONS, CLAUDE_WORKDIR
from ..engine.context import ConversationMessage
from ..engine.errors import ExternalCallError
from .base import AgentResponse

logger = logging.getLogger(__name__)


def clean_env() -> Dict[str, str]:
    """Inherit env but remove CLAUDECODE to avoid nested session detection."""
    return {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}


def build_cli_args(
    prompt: str,
    *,
    claude_bin: str = "",
    model: str = "",
    allowed_tools: Optional[List[str]] = None,
) -> List[str]:
    """Build CLI argument list with common flags."""
    bin_path = claude_bin or CLAUDE_CLI_PATH
    args = [bin_path, "-p", prompt, "--output-format", "text"]
    if CLAUDE_SKIP_PERMISSIONS:
        args.append("--dangerously-skip-permissions")
    if model:
        args.extend(["--model", model])
    if allowed_tools:
        args.extend(["--allowedTools"] + allowed_tools)
    return args


def build_prompt(
    instructions: str,
    conversation: List[ConversationMessage],
    tool_config: Dict[str, Any],
) -> str:
    """Flatten instructions and conversation history into a single prompt."""
    parts = []
    if instructions:
        parts.append(instructions.strip())
    handoffs = tool_config.get("handoffs") or []
    if handoffs:
        parts.append("You may hand off to: " + ", ".join(str(h) for h in handoffs))
    if conversation:
        transcript = "\n".join(
            f"{m.name or m.role}: {m.content}" for m in conversation
        )
        parts.append(f"Conversation so far:\n{transcript}")
    return "\n\n".join(parts)


class ClaudeCliAgentInvoker:
    """AgentInvoker backed by the Claude CLI."""

    def __init__(
        self,
        claude_bin: str = "",
        cwd: str = CLAUDE_WORKDIR,
        timeout: float = settings.AGENT_TIMEOUT,
    ):
        self.claude_bin = claude_bin or CLAUDE_CLI_PATH
        self.cwd = cwd
        self.timeout = timeout

    async def invoke(
        self,
        instructions: str,
        conversation: List[ConversationMessage],
        tool_config: Dict[str, Any],
    ) -> AgentResponse:
        prompt = build_prompt(instructions, conversation, tool_config)
        model_config = tool_config.get("modelConfig") or {}
        tools = [t for t in tool_config.get("tools") or [] if isinstance(t, str)]
        cmd = build_cli_args(
            prompt,
            claude_bin=self.claude_bin,
            model=model_config.get("model") or "",
            allowed_tools=tools or None,
        )
        timeout = float(tool_config.get("timeout") or self.timeout)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=clean_env(),
            )
        except FileNotFoundError as e:
            raise ExternalCallError(
                f"Claude CLI not found at '{self.claude_bin}'. Set CLAUDE_CLI_PATH env var."
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ExternalCallError(f"Claude CLI timed out after {timeout}s") from e

        if proc.returncode != 0:
            err_msg = stderr.decode("utf-8", errors="replace").rstrip()
            raise ExternalCallError(
                f"Claude CLI exited with code {proc.returncode}: {err_msg}"
            )

        text = stdout.decode("utf-8", errors="replace").rstrip()
        logger.info(
            f"Claude CLI agent '{tool_config.get('name', '')}' replied with {len(text)} chars"
        )
        return AgentResponse(text=text, metadata={"model": model_config.get("model")})
