"""Workflow Engine: data model, graph validation, expression evaluation and execution."""

from .errors import (
    EvaluationError,
    ExecutionStalledError,
    ExternalCallError,
    GraphValidationError,
    IterationLimitExceeded,
    LoopControlError,
    ReadOnlyVariableError,
    SubWorkflowError,
    UnroutedBranchError,
    VariableNotFoundError,
    WorkflowCancelledError,
    WorkflowError,
)
from .events import EventSink, format_sse
from .executor import ExecutionRun, WorkflowEngine
from .graph_builder import (
    ExecutorGraph,
    LoopInfo,
    ValidationIssue,
    ValidationResult,
    build_graph,
    detect_loops,
    validate_workflow,
)
from .models import (
    DeclarativeExecutionResult,
    DeclarativeExecutionStep,
    DeclarativeWorkflowDefinition,
    EdgeDefinition,
    EdgeGroupDefinition,
    EdgeGroupType,
    ExecutionEvent,
    ExecutionEventType,
    ExecutionStatus,
    ExecutorDefinition,
    ExecutorType,
    Position,
    VariableDefinition,
    VariableScope,
)
from .safe_eval import render_template, resolve_value, safe_eval, validate_expression
from .variables import VariableStore

__all__ = [
    "EvaluationError",
    "ExecutionStalledError",
    "ExternalCallError",
    "GraphValidationError",
    "IterationLimitExceeded",
    "LoopControlError",
    "ReadOnlyVariableError",
    "SubWorkflowError",
    "UnroutedBranchError",
    "VariableNotFoundError",
    "WorkflowCancelledError",
    "WorkflowError",
    "EventSink",
    "format_sse",
    "ExecutionRun",
    "WorkflowEngine",
    "ExecutorGraph",
    "LoopInfo",
    "ValidationIssue",
    "ValidationResult",
    "build_graph",
    "detect_loops",
    "validate_workflow",
    "DeclarativeExecutionResult",
    "DeclarativeExecutionStep",
    "DeclarativeWorkflowDefinition",
    "EdgeDefinition",
    "EdgeGroupDefinition",
    "EdgeGroupType",
    "ExecutionEvent",
    "ExecutionEventType",
    "ExecutionStatus",
    "ExecutorDefinition",
    "ExecutorType",
    "Position",
    "VariableDefinition",
    "VariableScope",
    "render_template",
    "resolve_value",
    "safe_eval",
    "validate_expression",
    "VariableStore",
]
