"""Executor Graph Construction and Validation

This module turns a DeclarativeWorkflowDefinition into an ExecutorGraph,
the id-keyed arena the engine traverses.

Key Components:
- ValidationIssue / ValidationResult: Structured validation findings
- validate_workflow: Report every error and warning without raising
- build_graph: Validate, then build the ExecutorGraph (raises on errors)
- detect_loops: DFS cycle detection used for the uncontrolled-loop warning

Design Principles:
- Validation before execution: every defect is reported in one pass
- Executors are referenced by id; edges are never object pointers
- Config-level jumps (Goto, branch targets, loop bodies) count as edges
  for reachability and loop analysis
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from ..nodes.registry import BaseExecutor, create_executor
from .errors import GraphValidationError
from .models import (
    DeclarativeWorkflowDefinition,
    EdgeGroupDefinition,
    EdgeGroupType,
    ExecutorDefinition,
    ExecutorType,
)
from .safe_eval import validate_expression

logger = logging.getLogger(__name__)

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

# Edge conditions matched literally against a boolean node output
BOOLEAN_CONDITIONS = {"true": True, "false": False}

# Executors that decide their own successors at runtime
_BRANCHING_TYPES = {
    ExecutorType.CONDITION,
    ExecutorType.CONDITION_GROUP,
    ExecutorType.FOREACH,
}


class ValidationIssue:
    """One validation finding.

    Attributes:
        code: Machine-readable issue code (e.g. UNKNOWN_EDGE_TARGET)
        message: Human-readable description
        severity: "error" or "warning"
        executor_ids: Executors the issue is about
        context: Additional structured detail
    """

    def __init__(
        self,
        code: str,
        message: str,
        severity: str,
        executor_ids: List[str],
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.severity = severity
        self.executor_ids = executor_ids
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "executorIds": self.executor_ids,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"<ValidationIssue {self.severity} {self.code}: {self.message}>"


class ValidationResult:
    """Workflow validation result.

    Attributes:
        valid: True when there are no error-severity issues
        errors: Error-severity issues
        warnings: Warning-severity issues
    """

    def __init__(self, errors: List[ValidationIssue], warnings: List[ValidationIssue]):
        self.errors = errors
        self.warnings = warnings

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def issues(self) -> List[ValidationIssue]:
        return self.errors + self.warnings

    def codes(self) -> List[str]:
        return [issue.code for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class ExecutorGraph:
    """Validated, id-keyed view of a workflow definition."""

    def __init__(self, workflow: DeclarativeWorkflowDefinition, executors: Dict[str, BaseExecutor]):
        self.workflow = workflow
        self.start_id = workflow.start_executor_id
        self._executors = executors
        self._definitions = {e.id: e for e in workflow.executors}
        self._groups: Dict[str, EdgeGroupDefinition] = {
            g.source_executor_id: g for g in workflow.edge_groups
        }
        self._predecessors: Dict[str, List[str]] = _edge_predecessors(workflow.edge_groups)
        self._barrier_sources: Dict[str, List[str]] = _compute_barriers(
            workflow, executors, self._predecessors
        )

    def __contains__(self, executor_id: str) -> bool:
        return executor_id in self._executors

    def __len__(self) -> int:
        return len(self._executors)

    @property
    def executor_ids(self) -> List[str]:
        return list(self._executors)

    def node(self, executor_id: str) -> BaseExecutor:
        """Executor instance for ``executor_id``.

        Raises:
            KeyError: If the id is not part of the graph
        """
        return self._executors[executor_id]

    def definition(self, executor_id: str) -> ExecutorDefinition:
        return self._definitions[executor_id]

    def edge_group(self, source_id: str) -> Optional[EdgeGroupDefinition]:
        return self._groups.get(source_id)

    def is_barrier(self, executor_id: str) -> bool:
        return executor_id in self._barrier_sources

    def barrier_sources(self, executor_id: str) -> List[str]:
        """Sources a barrier waits for, in declaration order."""
        return list(self._barrier_sources.get(executor_id, []))

    def predecessors(self, executor_id: str) -> List[str]:
        """Executors whose edge group targets ``executor_id``."""
        return list(self._predecessors.get(executor_id, []))


def _edge_predecessors(groups: List[EdgeGroupDefinition]) -> Dict[str, List[str]]:
    predecessors: Dict[str, List[str]] = defaultdict(list)
    for group in groups:
        for target in group.target_ids:
            if group.source_executor_id not in predecessors[target]:
                predecessors[target].append(group.source_executor_id)
    return dict(predecessors)


def _compute_barriers(
    workflow: DeclarativeWorkflowDefinition,
    executors: Dict[str, BaseExecutor],
    predecessors: Dict[str, List[str]],
) -> Dict[str, List[str]]:
    """Map every barrier executor to the sources it waits for.

    A FanIn executor waits for its configured ``sources`` or else all of
    its predecessors. Any other target of a FanIn edge group waits for the
    sources of every FanIn group pointing at it.
    """
    barriers: Dict[str, List[str]] = {}
    for executor_id, executor in executors.items():
        if executor.executor_type == ExecutorType.FAN_IN:
            configured = executor.options or []
            barriers[executor_id] = list(configured) or list(predecessors.get(executor_id, []))

    for group in workflow.edge_groups:
        if group.type != EdgeGroupType.FAN_IN:
            continue
        for target in group.target_ids:
            if target in executors and executors[target].executor_type == ExecutorType.FAN_IN:
                continue
            sources = barriers.setdefault(target, [])
            if group.source_executor_id not in sources:
                sources.append(group.source_executor_id)
    return barriers


# ─── Validation ──────────────────────────────────────────────────────


def validate_workflow(workflow: DeclarativeWorkflowDefinition) -> ValidationResult:
    """Validate a workflow definition.

    This function performs comprehensive validation including:
    - Start executor, id uniqueness and edge references
    - Per-executor typed config (required fields, expressions, templates)
    - Config-level targets (Goto, branch targets, loop bodies, FanIn sources)
    - Reachability from the start executor
    - Loops without a conditional exit (warning)

    Args:
        workflow: Workflow definition to validate

    Returns:
        ValidationResult containing all errors and warnings
    """
    result, _ = _analyze(workflow)
    return result


def build_graph(workflow: DeclarativeWorkflowDefinition) -> ExecutorGraph:
    """Validate ``workflow`` and build its ExecutorGraph.

    Raises:
        GraphValidationError: Listing every error-severity issue
    """
    result, executors = _analyze(workflow)
    if not result.valid:
        raise GraphValidationError(result.errors)
    for warning in result.warnings:
        logger.warning(f"Workflow '{workflow.name}': {warning.message}")
    return ExecutorGraph(workflow, executors)


def _analyze(workflow: DeclarativeWorkflowDefinition) -> Tuple[ValidationResult, Dict[str, BaseExecutor]]:
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    def error(code: str, message: str, executor_ids: List[str], **context: Any) -> None:
        errors.append(ValidationIssue(code, message, SEVERITY_ERROR, executor_ids, context))

    def warning(code: str, message: str, executor_ids: List[str], **context: Any) -> None:
        warnings.append(ValidationIssue(code, message, SEVERITY_WARNING, executor_ids, context))

    # 1. Traversal budget
    if workflow.max_iterations < 1:
        error(
            "INVALID_MAX_ITERATIONS",
            f"maxIterations must be at least 1, got {workflow.max_iterations}",
            [],
            max_iterations=workflow.max_iterations,
        )

    # 2. Executor ids and typed configs
    executors: Dict[str, BaseExecutor] = {}
    valid_configs: Set[str] = set()
    for definition in workflow.executors:
        if definition.id in executors:
            error(
                "DUPLICATE_EXECUTOR_ID",
                f"Executor id '{definition.id}' is used more than once",
                [definition.id],
            )
            continue
        try:
            executor = create_executor(definition)
        except ValueError as e:
            error("INVALID_EXECUTOR_CONFIG", str(e), [definition.id], executor_type=str(definition.type))
            continue
        executors[definition.id] = executor

        config_errors = executor.validate_config()
        if config_errors:
            error(
                "INVALID_EXECUTOR_CONFIG",
                f"Executor '{definition.id}' ({definition.type.value}) has an invalid config",
                [definition.id],
                executor_type=definition.type.value,
                validation_errors=config_errors,
            )
        else:
            valid_configs.add(definition.id)

    # 3. Start executor
    start_id = workflow.start_executor_id
    if not start_id or start_id not in executors:
        error(
            "MISSING_START_EXECUTOR",
            f"Start executor '{start_id}' does not exist" if start_id else "No start executor set",
            [start_id] if start_id else [],
        )
        start_id = None

    # 4. Edge groups
    seen_sources: Set[str] = set()
    for group in workflow.edge_groups:
        source = group.source_executor_id
        if source in seen_sources:
            error(
                "DUPLICATE_EDGE_GROUP",
                f"Executor '{source}' has more than one edge group",
                [source],
                edge_group_id=group.id,
            )
        seen_sources.add(source)
        if source not in executors:
            error(
                "UNKNOWN_SOURCE_EXECUTOR",
                f"Edge group '{group.id}' starts at unknown executor '{source}'",
                [source],
                edge_group_id=group.id,
            )

        for edge in group.edges:
            if edge.target_executor_id not in executors:
                error(
                    "UNKNOWN_EDGE_TARGET",
                    f"Edge '{edge.id}' targets unknown executor '{edge.target_executor_id}'",
                    [source, edge.target_executor_id],
                    edge_id=edge.id,
                )
            if edge.condition and edge.condition.strip().lower() not in BOOLEAN_CONDITIONS:
                for err in validate_expression(edge.condition):
                    error(
                        "INVALID_CONDITION",
                        f"Edge '{edge.id}' has an invalid condition: {err}",
                        [source, edge.target_executor_id],
                        edge_id=edge.id,
                        condition=edge.condition,
                    )

        if group.type == EdgeGroupType.SINGLE and len(group.edges) > 1:
            warning(
                "SINGLE_GROUP_MULTIPLE_EDGES",
                f"Single edge group of '{source}' has {len(group.edges)} edges; only the first is followed",
                [source],
                edge_group_id=group.id,
            )
        if group.type == EdgeGroupType.SWITCH_CASE and all(e.condition for e in group.edges):
            warning(
                "SWITCH_WITHOUT_DEFAULT",
                f"SwitchCase group of '{source}' has no default edge; an unmatched value fails the node",
                [source],
                edge_group_id=group.id,
            )

    # 5. Config-level targets
    config_targets: Dict[str, List[str]] = {}
    for executor_id in valid_configs:
        executor = executors[executor_id]
        referenced = executor.config_targets()
        if executor.executor_type == ExecutorType.FAN_IN:
            referenced = referenced + list(executor.options)
        known = []
        for target in referenced:
            if target in executors:
                known.append(target)
            else:
                error(
                    "UNKNOWN_CONFIG_TARGET",
                    f"Executor '{executor_id}' references unknown executor '{target}'",
                    [executor_id],
                    target=target,
                )
        if executor.executor_type != ExecutorType.FAN_IN:
            config_targets[executor_id] = known

    # 6. Start executor must not wait on a barrier
    if start_id:
        start_type = executors[start_id].executor_type
        fan_in_target = any(
            g.type == EdgeGroupType.FAN_IN and start_id in g.target_ids for g in workflow.edge_groups
        )
        if start_type == ExecutorType.FAN_IN or fan_in_target:
            error(
                "INVALID_START_EXECUTOR",
                f"Start executor '{start_id}' is a FanIn barrier and could never fire",
                [start_id],
            )

    # 7. Reachability
    adjacency = _adjacency(workflow, executors, config_targets)
    if start_id:
        reachable = _reachable(start_id, adjacency)
        for executor_id in executors:
            if executor_id not in reachable:
                error(
                    "UNREACHABLE_EXECUTOR",
                    f"Executor '{executor_id}' is not reachable from '{start_id}'",
                    [executor_id],
                )

    # 8. Loops without a conditional exit
    for loop in detect_loops(workflow, executors, adjacency):
        if not loop.has_condition_exit:
            cycle_str = " → ".join(loop.cycle_path)
            warning(
                "UNCONTROLLED_LOOP",
                f"Loop {cycle_str} has no conditional exit and will stop at "
                f"maxIterations ({workflow.max_iterations})",
                loop.cycle_path[:-1],
                cycle_path=loop.cycle_path,
            )

    return ValidationResult(errors, warnings), executors


def _adjacency(
    workflow: DeclarativeWorkflowDefinition,
    executors: Dict[str, BaseExecutor],
    config_targets: Dict[str, List[str]],
) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for group in workflow.edge_groups:
        for target in group.target_ids:
            if target in executors and target not in adjacency[group.source_executor_id]:
                adjacency[group.source_executor_id].append(target)
    for source, targets in config_targets.items():
        for target in targets:
            if target not in adjacency[source]:
                adjacency[source].append(target)
    return adjacency


def _reachable(start_id: str, adjacency: Dict[str, List[str]]) -> Set[str]:
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        current = queue.popleft()
        for neighbor in adjacency.get(current, []):
            if neighbor not in seen:
                seen.add(neighbor)
                queue.append(neighbor)
    return seen


# ─── Loop detection ──────────────────────────────────────────────────


@dataclass
class LoopInfo:
    """Information about a detected loop in the workflow.

    Attributes:
        cycle_path: List of executor IDs forming the loop (last == first)
        has_condition_exit: Whether a branching executor can leave the loop
        condition_node_id: ID of the executor controlling the exit (if any)
    """

    cycle_path: List[str]
    has_condition_exit: bool = False
    condition_node_id: Optional[str] = None
    exits: List[str] = field(default_factory=list)


def _is_branching(executor_id: str, workflow: DeclarativeWorkflowDefinition,
                  executors: Dict[str, BaseExecutor]) -> bool:
    executor = executors.get(executor_id)
    if executor is not None and executor.executor_type in _BRANCHING_TYPES:
        return True
    group = next((g for g in workflow.edge_groups if g.source_executor_id == executor_id), None)
    return group is not None and any(e.condition for e in group.edges)


def detect_loops(
    workflow: DeclarativeWorkflowDefinition,
    executors: Dict[str, BaseExecutor],
    adjacency: Dict[str, List[str]],
) -> List[LoopInfo]:
    """Detect loops using DFS over edges and config targets.

    A loop is controlled when it contains a Foreach, or a branching
    executor (Condition, ConditionGroup, conditional edges) with a
    successor outside the loop.
    """
    loops: List[LoopInfo] = []
    visited: Set[str] = set()
    path: List[str] = []
    path_set: Set[str] = set()
    found_cycles: Set[tuple] = set()

    def classify(cycle_path: List[str]) -> LoopInfo:
        members = set(cycle_path[:-1])
        for executor_id in cycle_path[:-1]:
            executor = executors.get(executor_id)
            if executor is not None and executor.executor_type == ExecutorType.FOREACH:
                return LoopInfo(cycle_path, True, executor_id)
            if not _is_branching(executor_id, workflow, executors):
                continue
            exits = [n for n in adjacency.get(executor_id, []) if n not in members]
            if exits:
                return LoopInfo(cycle_path, True, executor_id, exits)
        return LoopInfo(cycle_path)

    def dfs(node: str) -> None:
        if node in path_set:
            cycle_path = path[path.index(node):] + [node]
            cycle_nodes = tuple(sorted(cycle_path[:-1]))
            if cycle_nodes not in found_cycles:
                found_cycles.add(cycle_nodes)
                loops.append(classify(cycle_path))
            return
        if node in visited:
            return

        visited.add(node)
        path.append(node)
        path_set.add(node)
        for neighbor in adjacency.get(node, []):
            dfs(neighbor)
        path.pop()
        path_set.remove(node)

    for executor_id in executors:
        if executor_id not in visited:
            dfs(executor_id)

    return loops
