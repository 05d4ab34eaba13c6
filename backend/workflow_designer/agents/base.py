"""External collaborator interfaces consumed by the execution engine.

The engine never talks to model providers, tool servers or users directly.
It calls these narrow async interfaces; any implementation that matches the
Protocol can be handed to ``WorkflowEngine``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Protocol

from ..engine.models import DeclarativeWorkflowDefinition, ExecutorType

if TYPE_CHECKING:
    from ..engine.context import ConversationMessage


@dataclass
class AgentResponse:
    """Reply of one agent invocation."""

    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class AgentInvoker(Protocol):
    """Agent invocation service.

    Implementations own timeouts and must raise on failure; the engine maps
    any exception to ``ExternalCallError`` and fails the node.
    """

    async def invoke(
        self,
        instructions: str,
        conversation: List["ConversationMessage"],
        tool_config: Dict[str, Any],
    ) -> AgentResponse:
        ...


class ToolInvoker(Protocol):
    """Tool execution service for FunctionExecutor / McpTool / OpenApiTool / ..."""

    async def invoke_tool(
        self,
        tool_type: ExecutorType,
        tool_name: str,
        arguments: Dict[str, Any],
        config: Dict[str, Any],
    ) -> Any:
        ...


class HumanInputProvider(Protocol):
    """Asks the user a question or for approval of a function call."""

    async def ask(self, prompt: str, *, executor_id: str, timeout: Optional[float] = None) -> str:
        ...

    async def approve(
        self, function_name: str, arguments: Dict[str, Any], *, executor_id: str,
    ) -> bool:
        ...


class WorkflowResolver(Protocol):
    """Looks up workflow definitions referenced by SubWorkflow executors."""

    async def get_definition(self, workflow_id: str) -> Optional[DeclarativeWorkflowDefinition]:
        ...


class StaticHumanInput:
    """Canned answers for non-interactive runs and tests.

    Answers are looked up by executor id first, then by rendered prompt,
    then fall back to ``default_answer``.
    """

    def __init__(
        self,
        answers: Optional[Mapping[str, str]] = None,
        default_answer: Optional[str] = None,
        approvals: Optional[Mapping[str, bool]] = None,
        approve_by_default: bool = False,
    ):
        self.answers = dict(answers or {})
        self.default_answer = default_answer
        self.approvals = dict(approvals or {})
        self.approve_by_default = approve_by_default
        self.asked: List[str] = []

    async def ask(self, prompt: str, *, executor_id: str, timeout: Optional[float] = None) -> str:
        self.asked.append(prompt)
        if executor_id in self.answers:
            return self.answers[executor_id]
        if prompt in self.answers:
            return self.answers[prompt]
        if self.default_answer is not None:
            return self.default_answer
        raise LookupError(f"No answer configured for question '{executor_id}'")

    async def approve(
        self, function_name: str, arguments: Dict[str, Any], *, executor_id: str,
    ) -> bool:
        if executor_id in self.approvals:
            return self.approvals[executor_id]
        return self.approvals.get(function_name, self.approve_by_default)


class InMemoryWorkflowResolver:
    """Resolves SubWorkflow references from a dict of definitions."""

    def __init__(self, definitions: Optional[Mapping[str, DeclarativeWorkflowDefinition]] = None):
        self._definitions: Dict[str, DeclarativeWorkflowDefinition] = dict(definitions or {})

    def add(self, definition: DeclarativeWorkflowDefinition) -> None:
        self._definitions[definition.id] = definition

    async def get_definition(self, workflow_id: str) -> Optional[DeclarativeWorkflowDefinition]:
        return self._definitions.get(workflow_id)
