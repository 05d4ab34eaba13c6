"""Exception taxonomy for declarative workflow execution.

Node-scoped errors are recovered by the engine into NodeFailed events.
Run-scoped errors end the execution with WorkflowFailed. GraphValidationError
is raised synchronously before an execution starts and never reaches the
event stream.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .graph_builder import ValidationIssue


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""

    error_type = "WorkflowError"


# ─── Build time ──────────────────────────────────────────────────────


class GraphValidationError(WorkflowError):
    """Structural defects in a definition, enumerated in one pass."""

    error_type = "GraphValidationError"

    def __init__(self, issues: List["ValidationIssue"]):
        self.issues = issues
        summary = "; ".join(issue.message for issue in issues)
        super().__init__(
            f"Workflow definition has {len(issues)} validation error(s): {summary}"
        )


# ─── Node scoped ─────────────────────────────────────────────────────


class EvaluationError(WorkflowError):
    """Bad expression or template at runtime."""

    error_type = "EvaluationError"

    def __init__(self, message: str, expression: Optional[str] = None):
        self.expression = expression
        super().__init__(message)


class UnroutedBranchError(WorkflowError):
    """No conditional edge matched and no default is declared."""

    error_type = "UnroutedBranchError"

    def __init__(self, executor_id: str):
        self.executor_id = executor_id
        super().__init__(
            f"No matching branch for executor '{executor_id}' and no default route"
        )


class ExternalCallError(WorkflowError):
    """Agent, tool or human-input collaborator failure (including timeouts)."""

    error_type = "ExternalCallError"


class SubWorkflowError(WorkflowError):
    """A nested workflow did not complete."""

    error_type = "SubWorkflowError"


class LoopControlError(WorkflowError):
    """BreakLoop / ContinueLoop used outside of a Foreach body."""

    error_type = "LoopControlError"


class VariableNotFoundError(WorkflowError, KeyError):
    """Variable is not declared and was never set."""

    error_type = "VariableNotFoundError"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown variable: '{name}'")

    def __str__(self) -> str:
        return self.args[0]


class ReadOnlyVariableError(WorkflowError):
    """Attempted write to a Global-scope variable."""

    error_type = "ReadOnlyVariableError"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Variable '{name}' is global and read-only")


# ─── Run scoped ──────────────────────────────────────────────────────


class IterationLimitExceeded(WorkflowError):
    """Traversal budget (maxIterations) exhausted."""

    error_type = "IterationLimitExceeded"

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(f"Workflow exceeded max iterations ({max_iterations})")


class ExecutionStalledError(WorkflowError):
    """A FanIn barrier is still waiting but nothing else can run."""

    error_type = "ExecutionStalledError"

    def __init__(self, executor_id: str, missing: List[str]):
        self.executor_id = executor_id
        self.missing = missing
        super().__init__(
            f"FanIn '{executor_id}' never received input from: {', '.join(missing)}"
        )


class WorkflowCancelledError(WorkflowError):
    """Caller-initiated stop."""

    error_type = "Cancelled"

    def __init__(self, message: str = "Workflow execution was cancelled"):
        super().__init__(message)
