"""State Management Executors

Executors that mutate the run's Variable Store directly. They are
deterministic and never call external collaborators.

Values in configs follow one convention:
- ``"=expr"`` is an expression, e.g. ``"=count + 1"``
- other strings are templates, e.g. ``"Hello {{ name }}"``
- non-strings (numbers, lists, objects) are literals
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..engine.context import NodeContext, NodeOutcome
from ..engine.errors import EvaluationError
from ..engine.models import ExecutorType, VariableScope
from .registry import CATEGORY_STATE, BaseExecutor, register_executor_type

logger = logging.getLogger(__name__)


def _value_checks(value: Any) -> Tuple[List[str], List[str]]:
    """Split a config value into (expressions, templates) for validation."""
    if not isinstance(value, str):
        return [], []
    if value.strip().startswith("="):
        return [value], []
    return [], [value]


def _require_name(config: Dict[str, Any], key: str = "variableName") -> str:
    name = config.get(key)
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return name.strip()


@dataclass
class Assignment:
    variable_name: str
    value: Any


@register_executor_type(
    ExecutorType.SET_VARIABLE,
    display_name="Set Variable",
    description="Assigns a value (literal, =expression or template) to a variable",
    category=CATEGORY_STATE,
    config_schema={
        "properties": {
            "variableName": {"type": "string"},
            "value": {"description": "Literal, =expression or {{ template }}"},
        },
        "required": ["variableName"],
    },
    output_schema={"description": "The assigned value"},
    icon="variable",
    color="#4CAF50",
)
class SetVariableExecutor(BaseExecutor):

    def parse_config(self) -> Assignment:
        return Assignment(_require_name(self.config), self.config.get("value"))

    def expressions(self) -> List[str]:
        return _value_checks(self.options.value)[0]

    def templates(self) -> List[str]:
        return _value_checks(self.options.value)[1]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        value = ctx.resolve(self.options.value)
        ctx.variables.set(self.options.variable_name, value)
        logger.info(f"SetVariable '{self.node_id}': {self.options.variable_name} = {value!r}")
        return NodeOutcome(output=value, data={"variable": self.options.variable_name})


@register_executor_type(
    ExecutorType.SET_TEXT_VARIABLE,
    display_name="Set Text Variable",
    description="Renders a text template into a variable",
    category=CATEGORY_STATE,
    config_schema={
        "properties": {
            "variableName": {"type": "string"},
            "text": {"type": "string"},
        },
        "required": ["variableName"],
    },
    output_schema={"type": "string"},
    icon="type",
    color="#4CAF50",
)
class SetTextVariableExecutor(BaseExecutor):

    def parse_config(self) -> Assignment:
        return Assignment(_require_name(self.config), str(self.config.get("text") or ""))

    def templates(self) -> List[str]:
        return [self.options.value]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        text = ctx.render(self.options.value)
        ctx.variables.set(self.options.variable_name, text)
        return NodeOutcome(output=text, data={"variable": self.options.variable_name})


@register_executor_type(
    ExecutorType.SET_MULTIPLE_VARIABLES,
    display_name="Set Multiple Variables",
    description="Applies several assignments in order",
    category=CATEGORY_STATE,
    config_schema={
        "properties": {
            "assignments": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"variableName": {"type": "string"}, "value": {}},
                    "required": ["variableName"],
                },
            },
        },
        "required": ["assignments"],
    },
    output_schema={"type": "object", "description": "Assigned name → value"},
    icon="variable",
    color="#4CAF50",
)
class SetMultipleVariablesExecutor(BaseExecutor):

    def parse_config(self) -> List[Assignment]:
        raw = self.config.get("assignments")
        if not isinstance(raw, list):
            raise ValueError("assignments must be a list")
        assignments = []
        for i, item in enumerate(raw):
            if not isinstance(item, dict):
                raise ValueError(f"assignments[{i}] must be an object")
            assignments.append(Assignment(_require_name(item), item.get("value")))
        return assignments

    def expressions(self) -> List[str]:
        return [e for a in self.options for e in _value_checks(a.value)[0]]

    def templates(self) -> List[str]:
        return [t for a in self.options for t in _value_checks(a.value)[1]]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        assigned: Dict[str, Any] = {}
        # Later assignments see earlier ones
        for assignment in self.options:
            value = ctx.resolve(assignment.value)
            ctx.variables.set(assignment.variable_name, value)
            assigned[assignment.variable_name] = value
        return NodeOutcome(output=assigned)


# ─── ParseValue ──────────────────────────────────────────────────────

VALUE_TYPES = ("string", "number", "integer", "boolean", "json", "list")


@dataclass
class ParseValueConfig:
    variable_name: str
    value: Any
    value_type: str = "string"


def _parse_typed(raw: Any, value_type: str) -> Any:
    if value_type == "string":
        return "" if raw is None else (raw if isinstance(raw, str) else json.dumps(raw))
    if value_type == "number":
        return float(raw)
    if value_type == "integer":
        return int(float(raw)) if isinstance(raw, str) else int(raw)
    if value_type == "boolean":
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in ("true", "yes", "1"):
                return True
            if lowered in ("false", "no", "0", ""):
                return False
            raise ValueError(f"cannot parse '{raw}' as boolean")
        return bool(raw)
    parsed = json.loads(raw) if isinstance(raw, str) else raw
    if value_type == "list" and not isinstance(parsed, list):
        raise ValueError(f"expected a list, got {type(parsed).__name__}")
    return parsed


@register_executor_type(
    ExecutorType.PARSE_VALUE,
    display_name="Parse Value",
    description="Converts a value to a target type and stores it",
    category=CATEGORY_STATE,
    config_schema={
        "properties": {
            "variableName": {"type": "string"},
            "value": {},
            "valueType": {"type": "string", "enum": list(VALUE_TYPES)},
        },
        "required": ["variableName", "value"],
    },
    icon="code",
    color="#4CAF50",
)
class ParseValueExecutor(BaseExecutor):

    def parse_config(self) -> ParseValueConfig:
        value_type = self.config.get("valueType") or "string"
        if value_type not in VALUE_TYPES:
            raise ValueError(f"valueType must be one of {', '.join(VALUE_TYPES)}")
        return ParseValueConfig(_require_name(self.config), self.config.get("value"), value_type)

    def expressions(self) -> List[str]:
        return _value_checks(self.options.value)[0]

    def templates(self) -> List[str]:
        return _value_checks(self.options.value)[1]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: ParseValueConfig = self.options
        raw = ctx.resolve(opts.value)
        try:
            parsed = _parse_typed(raw, opts.value_type)
        except (ValueError, TypeError) as e:
            raise EvaluationError(
                f"Cannot parse value for '{opts.variable_name}' as {opts.value_type}: {e}"
            ) from e
        ctx.variables.set(opts.variable_name, parsed)
        return NodeOutcome(output=parsed, data={"variable": opts.variable_name})


# ─── EditTable ───────────────────────────────────────────────────────

TABLE_OPERATIONS = ("add", "insert", "remove", "update", "clear")


@dataclass
class EditTableConfig:
    variable_name: str
    operation: str
    value: Any = None
    index: Any = None


@register_executor_type(
    ExecutorType.EDIT_TABLE,
    display_name="Edit Table",
    description="Adds, inserts, removes or updates rows of a list variable",
    category=CATEGORY_STATE,
    config_schema={
        "properties": {
            "variableName": {"type": "string"},
            "operation": {"type": "string", "enum": list(TABLE_OPERATIONS)},
            "value": {},
            "index": {"description": "Row index (integer or =expression)"},
        },
        "required": ["variableName", "operation"],
    },
    output_schema={"type": "array"},
    icon="table",
    color="#4CAF50",
)
class EditTableExecutor(BaseExecutor):

    def parse_config(self) -> EditTableConfig:
        operation = str(self.config.get("operation") or "").lower()
        if operation not in TABLE_OPERATIONS:
            raise ValueError(f"operation must be one of {', '.join(TABLE_OPERATIONS)}")
        if operation in ("insert", "update") and self.config.get("index") is None:
            raise ValueError(f"operation '{operation}' requires index")
        return EditTableConfig(
            variable_name=_require_name(self.config),
            operation=operation,
            value=self.config.get("value"),
            index=self.config.get("index"),
        )

    def expressions(self) -> List[str]:
        return _value_checks(self.options.value)[0] + _value_checks(self.options.index)[0]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: EditTableConfig = self.options
        current = ctx.variables.get(opts.variable_name) if ctx.variables.has(opts.variable_name) else None
        if current is None:
            current = []
        if not isinstance(current, list):
            raise EvaluationError(f"Variable '{opts.variable_name}' is not a list")
        table = list(current)
        value = ctx.resolve(opts.value)
        index: Optional[int] = None

        try:
            if opts.index is not None:
                index = int(ctx.resolve(opts.index))
            if opts.operation == "add":
                table.append(value)
            elif opts.operation == "insert":
                table.insert(index, value)
            elif opts.operation == "update":
                table[index] = value
            elif opts.operation == "remove":
                if index is not None:
                    table.pop(index)
                else:
                    table.remove(value)
            else:
                table = []
        except (IndexError, TypeError, ValueError) as e:
            raise EvaluationError(
                f"EditTable {opts.operation} on '{opts.variable_name}' failed: {e}"
            ) from e

        ctx.variables.set(opts.variable_name, table)
        return NodeOutcome(output=table, data={"operation": opts.operation, "rows": len(table)})


# ─── Reset / Clear ───────────────────────────────────────────────────


@register_executor_type(
    ExecutorType.RESET_VARIABLE,
    display_name="Reset Variable",
    description="Restores a variable to its declared default",
    category=CATEGORY_STATE,
    config_schema={
        "properties": {"variableName": {"type": "string"}},
        "required": ["variableName"],
    },
    icon="rotate-ccw",
    color="#4CAF50",
)
class ResetVariableExecutor(BaseExecutor):

    def parse_config(self) -> str:
        return _require_name(self.config)

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        ctx.variables.reset(self.options)
        return NodeOutcome(data={"variable": self.options})


@register_executor_type(
    ExecutorType.CLEAR_ALL_VARIABLES,
    display_name="Clear All Variables",
    description="Resets every variable of a scope to its default",
    category=CATEGORY_STATE,
    config_schema={
        "properties": {
            "scope": {"type": "string", "enum": ["Workflow", "Conversation"], "default": "Workflow"},
        },
    },
    icon="trash",
    color="#4CAF50",
)
class ClearAllVariablesExecutor(BaseExecutor):

    def parse_config(self) -> VariableScope:
        scope = VariableScope(self.config.get("scope") or VariableScope.WORKFLOW.value)
        if scope == VariableScope.GLOBAL:
            raise ValueError("global variables are read-only")
        return scope

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        ctx.variables.clear(self.options)
        return NodeOutcome(data={"scope": self.options.value})
