"""Per-run state shared by the engine and the executor implementations."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .events import EventSink
from .models import (
    DeclarativeWorkflowDefinition,
    ExecutionEvent,
    ExecutionEventType,
    ExecutionStatus,
    ExecutorDefinition,
)
from .safe_eval import render_template, resolve_value, safe_eval
from .variables import VariableStore

if TYPE_CHECKING:
    from .executor import WorkflowEngine
    from .graph_builder import ExecutorGraph

DEFAULT_CONVERSATION_ID = "default"


@dataclass
class ConversationMessage:
    role: str
    content: str
    name: Optional[str] = None
    executor_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "name": self.name,
            "executorId": self.executor_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class LoopFrame:
    """Progress of one active Foreach loop."""

    foreach_id: str
    items: List[Any]
    index: int = 0
    broken: bool = False

    @property
    def exhausted(self) -> bool:
        return self.broken or self.index >= len(self.items)


@dataclass
class Activation:
    """A pending dispatch of one executor within the active set."""

    executor_id: str
    loop_stack: Tuple[LoopFrame, ...] = ()
    source_id: Optional[str] = None
    inputs: Optional[Dict[str, Any]] = None


@dataclass
class NodeOutcome:
    """What an executor produced and where traversal goes next.

    Attributes:
        output: Node output (None means "nothing produced")
        targets: Explicit next executor ids overriding the edge group;
            None routes through the node's edge group
        data: Extra fields merged into the NodeCompleted event payload
        end_workflow: Complete the whole run immediately
        loop_stack: Replacement loop stack for the successors
    """

    output: Any = None
    targets: Optional[List[str]] = None
    data: Dict[str, Any] = field(default_factory=dict)
    end_workflow: bool = False
    loop_stack: Optional[Tuple[LoopFrame, ...]] = None


class RunState:
    """Mutable state of one execution, owned by exactly one run."""

    def __init__(
        self,
        engine: "WorkflowEngine",
        definition: DeclarativeWorkflowDefinition,
        graph: "ExecutorGraph",
        variables: VariableStore,
        sink: EventSink,
        conversation: Optional[List[ConversationMessage]] = None,
        depth: int = 0,
    ):
        self.engine = engine
        self.definition = definition
        self.graph = graph
        self.variables = variables
        self.sink = sink
        self.depth = depth
        self.conversations: Dict[str, List[ConversationMessage]] = {
            DEFAULT_CONVERSATION_ID: conversation if conversation is not None else []
        }
        self.active_conversation_id = DEFAULT_CONVERSATION_ID
        self.node_outputs: Dict[str, Any] = {}
        self.barrier_arrivals: Dict[str, Dict[str, Any]] = {}
        self.cancel_event = asyncio.Event()

    def new_conversation(self) -> str:
        conversation_id = str(uuid.uuid4())
        self.conversations[conversation_id] = []
        return conversation_id

    def conversation(self, conversation_id: Optional[str] = None) -> List[ConversationMessage]:
        key = conversation_id or self.active_conversation_id
        if key not in self.conversations:
            raise KeyError(f"Unknown conversation: '{key}'")
        return self.conversations[key]


class NodeContext:
    """View of the run handed to one executor dispatch."""

    def __init__(self, run: RunState, executor: ExecutorDefinition, activation: Activation):
        self.run = run
        self.executor = executor
        self.activation = activation

    @property
    def engine(self) -> "WorkflowEngine":
        return self.run.engine

    @property
    def variables(self) -> VariableStore:
        return self.run.variables

    @property
    def loop_stack(self) -> Tuple[LoopFrame, ...]:
        return self.activation.loop_stack

    @property
    def current_loop(self) -> Optional[LoopFrame]:
        return self.activation.loop_stack[-1] if self.activation.loop_stack else None

    @property
    def inputs(self) -> Dict[str, Any]:
        return self.activation.inputs or {}

    def eval_context(self, **extra: Any) -> Dict[str, Any]:
        context = self.variables.as_context()
        context.update(extra)
        return context

    def evaluate(self, expression: str, **extra: Any) -> Any:
        return safe_eval(expression, self.eval_context(**extra))

    def render(self, template: str, **extra: Any) -> str:
        return render_template(template, self.eval_context(**extra))

    def resolve(self, value: Any, **extra: Any) -> Any:
        return resolve_value(value, self.eval_context(**extra))

    def append_message(
        self,
        role: str,
        content: str,
        name: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> ConversationMessage:
        message = ConversationMessage(
            role=role, content=content, name=name, executor_id=self.executor.id,
        )
        self.run.conversation(conversation_id).append(message)
        return message

    async def emit(
        self,
        event_type: ExecutionEventType,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.run.sink.emit(ExecutionEvent(
            type=event_type,
            status=ExecutionStatus.RUNNING,
            node_id=self.executor.id,
            node_name=self.executor.name,
            message=message,
            data=data,
        ))
