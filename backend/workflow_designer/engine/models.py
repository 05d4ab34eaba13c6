"""Declarative Workflow Data Model

Dataclasses describing a declarative workflow (executors, edge groups,
variables) and the records produced by executing one (events, steps,
results).

Python attributes are snake_case. The wire format used by the designer UI,
the HTTP API and SSE is camelCase, produced by ``to_dict`` and consumed by
``from_dict``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .. import settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def parse_max_iterations(value: Any) -> int:
    """Default when absent; explicit values, even invalid ones, are kept for validation."""
    if value is None or value == "":
        return settings.DEFAULT_MAX_ITERATIONS
    return int(value)


# ─── Enums ───────────────────────────────────────────────────────────


class ExecutorType(str, Enum):
    """Closed set of executor behaviors."""

    # Agents
    CHAT_AGENT = "ChatAgent"
    FUNCTION_AGENT = "FunctionAgent"
    TOOL_AGENT = "ToolAgent"
    AZURE_AGENT = "AzureAgent"
    INVOKE_AZURE_AGENT = "InvokeAzureAgent"
    MAGENTIC_ORCHESTRATOR = "MagenticOrchestrator"

    # Control flow
    CONDITION = "Condition"
    CONDITION_GROUP = "ConditionGroup"
    FOREACH = "Foreach"
    GOTO = "Goto"
    GOTO_ACTION = "GotoAction"
    BREAK_LOOP = "BreakLoop"
    CONTINUE_LOOP = "ContinueLoop"
    END_WORKFLOW = "EndWorkflow"
    END_CONVERSATION = "EndConversation"

    # State management
    SET_VARIABLE = "SetVariable"
    SET_TEXT_VARIABLE = "SetTextVariable"
    SET_MULTIPLE_VARIABLES = "SetMultipleVariables"
    PARSE_VALUE = "ParseValue"
    EDIT_TABLE = "EditTable"
    RESET_VARIABLE = "ResetVariable"
    CLEAR_ALL_VARIABLES = "ClearAllVariables"

    # Messages
    SEND_ACTIVITY = "SendActivity"
    ADD_CONVERSATION_MESSAGE = "AddConversationMessage"
    RETRIEVE_CONVERSATION_MESSAGES = "RetrieveConversationMessages"

    # Conversation lifecycle
    CREATE_CONVERSATION = "CreateConversation"
    DELETE_CONVERSATION = "DeleteConversation"
    COPY_CONVERSATION_MESSAGES = "CopyConversationMessages"

    # Human input
    QUESTION = "Question"
    FUNCTION_APPROVAL = "FunctionApproval"

    # Tools
    FUNCTION_EXECUTOR = "FunctionExecutor"
    MCP_TOOL = "McpTool"
    OPENAPI_TOOL = "OpenApiTool"
    CODE_INTERPRETER = "CodeInterpreter"
    FILE_SEARCH = "FileSearch"
    WEB_SEARCH = "WebSearch"

    # Composition
    SUB_WORKFLOW = "SubWorkflow"
    PARALLEL_EXECUTION = "ParallelExecution"
    FAN_OUT = "FanOut"
    FAN_IN = "FanIn"


class EdgeGroupType(str, Enum):
    SINGLE = "Single"
    FAN_OUT = "FanOut"
    FAN_IN = "FanIn"
    SWITCH_CASE = "SwitchCase"


class VariableScope(str, Enum):
    WORKFLOW = "Workflow"
    CONVERSATION = "Conversation"
    GLOBAL = "Global"


class ExecutionStatus(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class ExecutionEventType(str, Enum):
    WORKFLOW_STARTED = "WorkflowStarted"
    WORKFLOW_COMPLETED = "WorkflowCompleted"
    WORKFLOW_FAILED = "WorkflowFailed"
    NODE_STARTED = "NodeStarted"
    NODE_COMPLETED = "NodeCompleted"
    NODE_FAILED = "NodeFailed"
    LOG_MESSAGE = "LogMessage"
    PROGRESS_UPDATE = "ProgressUpdate"


TERMINAL_EVENT_TYPES = frozenset({
    ExecutionEventType.WORKFLOW_COMPLETED,
    ExecutionEventType.WORKFLOW_FAILED,
})

AGENT_EXECUTOR_TYPES = frozenset({
    ExecutorType.CHAT_AGENT,
    ExecutorType.FUNCTION_AGENT,
    ExecutorType.TOOL_AGENT,
    ExecutorType.AZURE_AGENT,
    ExecutorType.INVOKE_AZURE_AGENT,
    ExecutorType.MAGENTIC_ORCHESTRATOR,
})

TOOL_EXECUTOR_TYPES = frozenset({
    ExecutorType.FUNCTION_EXECUTOR,
    ExecutorType.MCP_TOOL,
    ExecutorType.OPENAPI_TOOL,
    ExecutorType.CODE_INTERPRETER,
    ExecutorType.FILE_SEARCH,
    ExecutorType.WEB_SEARCH,
})


# ─── Definition ──────────────────────────────────────────────────────


@dataclass
class Position:
    """Canvas coordinates. Visual only, ignored by the engine."""

    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Position":
        data = data or {}
        return cls(x=float(data.get("x", 0.0)), y=float(data.get("y", 0.0)))


@dataclass
class ExecutorDefinition:
    """A single node in the workflow graph.

    Attributes:
        id: Unique executor identifier within the workflow
        type: Executor behavior
        name: Display name
        description: Optional description
        position: Canvas position (visual only)
        config: Raw per-type configuration; parsed into a typed config
            by the executor class when the graph is built
    """

    id: str
    type: ExecutorType
    name: str = ""
    description: str = ""
    position: Position = field(default_factory=Position)
    config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            raise ValueError("executor id cannot be empty")
        if not isinstance(self.type, ExecutorType):
            self.type = _parse_executor_type(self.type, self.id)
        if not self.name:
            self.name = self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "description": self.description,
            "position": self.position.to_dict(),
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutorDefinition":
        return cls(
            id=data.get("id", ""),
            type=data.get("type", ""),
            name=data.get("name") or "",
            description=data.get("description") or "",
            position=Position.from_dict(data.get("position")),
            config=dict(data.get("config") or {}),
        )


def _parse_executor_type(value: Any, executor_id: str) -> ExecutorType:
    try:
        return ExecutorType(value)
    except ValueError:
        raise ValueError(
            f"executor '{executor_id}' has unknown type '{value}'"
        ) from None


@dataclass
class EdgeDefinition:
    """One outgoing edge inside an edge group."""

    id: str
    target_executor_id: str
    condition: Optional[str] = None
    label: Optional[str] = None

    def __post_init__(self):
        if not self.target_executor_id:
            raise ValueError(f"edge '{self.id}': target executor cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "targetExecutorId": self.target_executor_id,
            "condition": self.condition,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EdgeDefinition":
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            target_executor_id=data.get("targetExecutorId", ""),
            condition=data.get("condition") or None,
            label=data.get("label") or None,
        )


@dataclass
class EdgeGroupDefinition:
    """Outgoing routing rule set for one source executor."""

    id: str
    type: EdgeGroupType
    source_executor_id: str
    edges: List[EdgeDefinition] = field(default_factory=list)

    def __post_init__(self):
        if not isinstance(self.type, EdgeGroupType):
            try:
                self.type = EdgeGroupType(self.type)
            except ValueError:
                raise ValueError(
                    f"edge group '{self.id}' has unknown type '{self.type}'"
                ) from None
        if not self.source_executor_id:
            raise ValueError(f"edge group '{self.id}': source executor cannot be empty")

    @property
    def target_ids(self) -> List[str]:
        return [edge.target_executor_id for edge in self.edges]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "sourceExecutorId": self.source_executor_id,
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EdgeGroupDefinition":
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            type=data.get("type") or EdgeGroupType.SINGLE,
            source_executor_id=data.get("sourceExecutorId", ""),
            edges=[EdgeDefinition.from_dict(e) for e in data.get("edges") or []],
        )


@dataclass
class VariableDefinition:
    """A declared variable with a default value and a scope."""

    name: str
    type: str = "string"
    scope: VariableScope = VariableScope.WORKFLOW
    default_value: Any = None
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("variable name cannot be empty")
        if not isinstance(self.scope, VariableScope):
            try:
                self.scope = VariableScope(self.scope)
            except ValueError:
                raise ValueError(
                    f"variable '{self.name}' has unknown scope '{self.scope}'"
                ) from None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "scope": self.scope.value,
            "defaultValue": self.default_value,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariableDefinition":
        return cls(
            name=data.get("name", ""),
            type=data.get("type") or "string",
            scope=data.get("scope") or VariableScope.WORKFLOW,
            default_value=data.get("defaultValue"),
            description=data.get("description") or "",
        )


@dataclass
class DeclarativeWorkflowDefinition:
    """Aggregate root of a declarative workflow.

    Structural invariants (start executor exists, edge targets exist, every
    executor is reachable) are checked by graph validation, not here, so
    that all violations can be reported together.
    """

    name: str
    executors: List[ExecutorDefinition] = field(default_factory=list)
    edge_groups: List[EdgeGroupDefinition] = field(default_factory=list)
    variables: List[VariableDefinition] = field(default_factory=list)
    start_executor_id: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    description: str = ""
    version: str = "1.0.0"
    max_iterations: int = settings.DEFAULT_MAX_ITERATIONS
    output_executor_id: Optional[str] = None
    input_spec: Dict[str, Any] = field(default_factory=dict)
    output_spec: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not self.name:
            raise ValueError("workflow name cannot be empty")

    def get_executor(self, executor_id: str) -> Optional[ExecutorDefinition]:
        for executor in self.executors:
            if executor.id == executor_id:
                return executor
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "startExecutorId": self.start_executor_id,
            "maxIterations": self.max_iterations,
            "outputExecutorId": self.output_executor_id,
            "executors": [e.to_dict() for e in self.executors],
            "edgeGroups": [g.to_dict() for g in self.edge_groups],
            "variables": [v.to_dict() for v in self.variables],
            "inputSpec": self.input_spec,
            "outputSpec": self.output_spec,
            "metadata": self.metadata,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeclarativeWorkflowDefinition":
        """Parse the camelCase wire format.

        Raises:
            ValueError: On missing names, unknown executor/edge/scope types
        """
        if not isinstance(data, dict):
            raise ValueError("workflow definition must be an object")
        kwargs: Dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        if data.get("createdAt"):
            kwargs["created_at"] = _parse_dt(data["createdAt"])
        if data.get("updatedAt"):
            kwargs["updated_at"] = _parse_dt(data["updatedAt"])
        return cls(
            name=data.get("name") or "",
            description=data.get("description") or "",
            version=data.get("version") or "1.0.0",
            start_executor_id=data.get("startExecutorId") or "",
            max_iterations=parse_max_iterations(data.get("maxIterations")),
            output_executor_id=data.get("outputExecutorId") or None,
            executors=[ExecutorDefinition.from_dict(e) for e in data.get("executors") or []],
            edge_groups=[EdgeGroupDefinition.from_dict(g) for g in data.get("edgeGroups") or []],
            variables=[VariableDefinition.from_dict(v) for v in data.get("variables") or []],
            input_spec=dict(data.get("inputSpec") or {}),
            output_spec=dict(data.get("outputSpec") or {}),
            metadata=dict(data.get("metadata") or {}),
            **kwargs,
        )


# ─── Execution records ───────────────────────────────────────────────


@dataclass
class ExecutionEvent:
    """One lifecycle event of a run.

    ``timestamp`` and ``sequence`` are assigned by the EventSink when the
    event is emitted.
    """

    type: ExecutionEventType
    status: ExecutionStatus
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "nodeId": self.node_id,
            "nodeName": self.node_name,
            "status": self.status.value,
            "message": self.message,
            "data": self.data,
            "timestamp": _iso(self.timestamp),
            "sequence": self.sequence,
        }


@dataclass
class DeclarativeExecutionStep:
    """Record of one node dispatch."""

    executor_id: str
    executor_name: str
    executor_type: ExecutorType
    status: ExecutionStatus = ExecutionStatus.RUNNING
    output: Any = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executorId": self.executor_id,
            "executorName": self.executor_name,
            "executorType": self.executor_type.value,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }


@dataclass
class DeclarativeExecutionResult:
    """Terminal aggregate of one run."""

    workflow_id: str
    workflow_name: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ExecutionStatus = ExecutionStatus.PENDING
    output: Any = None
    steps: List[DeclarativeExecutionStep] = field(default_factory=list)
    executed_nodes: List[str] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    iterations: int = 0
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "workflowId": self.workflow_id,
            "workflowName": self.workflow_name,
            "status": self.status.value,
            "output": self.output,
            "steps": [step.to_dict() for step in self.steps],
            "executedNodes": list(self.executed_nodes),
            "variables": self.variables,
            "iterations": self.iterations,
            "errorMessage": self.error_message,
            "errorType": self.error_type,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "durationMs": self.duration_ms,
        }
