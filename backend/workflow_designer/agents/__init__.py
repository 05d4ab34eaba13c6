"""External collaborators: agent invocation, tools, human input, sub-workflow lookup."""

from .base import (
    AgentInvoker,
    AgentResponse,
    HumanInputProvider,
    InMemoryWorkflowResolver,
    StaticHumanInput,
    ToolInvoker,
    WorkflowResolver,
)
from .claude import ClaudeCliAgentInvoker
from .tools import HttpToolInvoker

__all__ = [
    "AgentInvoker",
    "AgentResponse",
    "HumanInputProvider",
    "InMemoryWorkflowResolver",
    "StaticHumanInput",
    "ToolInvoker",
    "WorkflowResolver",
    "ClaudeCliAgentInvoker",
    "HttpToolInvoker",
]
