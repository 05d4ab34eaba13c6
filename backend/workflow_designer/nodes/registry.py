"""Executor Type Registry for Declarative Workflows

This module provides a decorator-based registration system mapping each
ExecutorType to its implementation class and designer metadata.

Key Components:
- ExecutorTypeDefinition: Metadata for an executor type (UI + config schema)
- BaseExecutor: Abstract base class every executor kind derives from
- register_executor_type: Decorator for registering executor kinds
- create_executor: Factory building an executor from its definition

Each executor class parses its raw ``config`` mapping into a typed config
object (``parse_config``) when the graph is built, so malformed configs are
reported before any execution starts.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Type, TypeVar

from ..engine.models import ExecutorDefinition, ExecutorType
from ..engine.safe_eval import validate_expression, validate_template

if TYPE_CHECKING:
    from ..engine.context import NodeContext, NodeOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseExecutor")

CATEGORY_AGENTS = "agents"
CATEGORY_CONTROL_FLOW = "controlFlow"
CATEGORY_STATE = "stateManagement"
CATEGORY_MESSAGES = "messages"
CATEGORY_CONVERSATION = "conversation"
CATEGORY_HUMAN_INPUT = "humanInput"
CATEGORY_TOOLS = "tools"
CATEGORY_WORKFLOW = "workflow"

CATEGORIES = [
    CATEGORY_AGENTS,
    CATEGORY_CONTROL_FLOW,
    CATEGORY_STATE,
    CATEGORY_MESSAGES,
    CATEGORY_CONVERSATION,
    CATEGORY_HUMAN_INPUT,
    CATEGORY_TOOLS,
    CATEGORY_WORKFLOW,
]

# Accepted by every executor kind: route here instead of failing the run
ON_ERROR_TARGET_SCHEMA = {
    "type": "string",
    "description": "Executor to jump to when this executor fails",
}


@dataclass
class ExecutorTypeDefinition:
    """Metadata definition for an executor type.

    Attributes:
        executor_type: The ExecutorType this definition describes
        display_name: Human-readable name for UI display
        description: Brief description of executor functionality
        category: Category for grouping in the designer palette
        config_schema: JSON schema for the executor's config
        output_schema: JSON schema describing the executor's output
        icon: Optional icon identifier for UI rendering
        color: Optional color code for UI theming
    """

    executor_type: ExecutorType
    display_name: str
    description: str
    category: str
    config_schema: Dict[str, Any]
    output_schema: Dict[str, Any]
    icon: Optional[str] = None
    color: Optional[str] = None

    def __post_init__(self):
        if not self.display_name:
            raise ValueError("display_name cannot be empty")
        if self.category not in CATEGORIES:
            raise ValueError(f"unknown category: {self.category}")
        if not isinstance(self.config_schema, dict):
            raise ValueError("config_schema must be a dictionary")
        if not isinstance(self.output_schema, dict):
            raise ValueError("output_schema must be a dictionary")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.executor_type.value,
            "displayName": self.display_name,
            "description": self.description,
            "category": self.category,
            "configSchema": self.config_schema,
            "outputSchema": self.output_schema,
            "icon": self.icon,
            "color": self.color,
        }


class BaseExecutor(ABC):
    """Abstract base class providing common executor functionality.

    Subclasses implement ``parse_config`` (raw mapping → typed config) and
    ``execute``. ``validate_config`` runs at graph-build time.
    """

    def __init__(self, definition: ExecutorDefinition):
        self.definition = definition
        self.node_id = definition.id
        self.executor_type = definition.type
        self.name = definition.name
        self.config = definition.config
        self.on_error_target: Optional[str] = definition.config.get("onErrorTarget") or None
        self._options: Any = None

    @property
    def options(self) -> Any:
        """Typed config, parsed on first access."""
        if self._options is None:
            self._options = self.parse_config()
        return self._options

    def parse_config(self) -> Any:
        """Convert the raw config mapping into a typed config object.

        Raises:
            ValueError: If the config is malformed
        """
        return None

    def expressions(self) -> List[str]:
        """Expressions evaluated by this executor, checked at build time."""
        return []

    def templates(self) -> List[str]:
        """Templates rendered by this executor, checked at build time."""
        return []

    def config_targets(self) -> List[str]:
        """Executor ids referenced by config (jumps, branches, loop bodies)."""
        return [self.on_error_target] if self.on_error_target else []

    def validate_config(self) -> List[Dict[str, str]]:
        """Validate config against the registered schema and typed parser.

        Returns:
            List of ``{field, error}`` dicts. Empty if validation passes.
        """
        errors: List[Dict[str, str]] = []

        definition = EXECUTOR_REGISTRY.get(self.executor_type)
        if not definition:
            errors.append({
                "field": "type",
                "error": f"Unknown executor type: {self.executor_type}",
            })
            return errors

        for field_name in definition.config_schema.get("required", []):
            value = self.config.get(field_name)
            if value is None or value == "" or value == []:
                errors.append({
                    "field": field_name,
                    "error": f"Required field '{field_name}' is missing",
                })
        if errors:
            return errors

        try:
            self._options = self.parse_config()
        except (ValueError, TypeError) as e:
            errors.append({"field": "config", "error": str(e)})
            return errors

        for expression in self.expressions():
            for err in validate_expression(expression):
                errors.append({"field": "expression", "error": f"'{expression}': {err}"})
        for template in self.templates():
            for err in validate_template(template):
                errors.append({"field": "template", "error": err})

        return errors

    @abstractmethod
    async def execute(self, ctx: "NodeContext") -> "NodeOutcome":
        """Run the executor's effect and decide routing."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.node_id!r}>"


# Global registry for executor types
EXECUTOR_REGISTRY: Dict[ExecutorType, ExecutorTypeDefinition] = {}
EXECUTOR_CLASSES: Dict[ExecutorType, Type[BaseExecutor]] = {}


def register_executor_type(
    executor_types: ExecutorType | List[ExecutorType],
    display_name: str,
    description: str,
    category: str,
    config_schema: Dict[str, Any],
    output_schema: Optional[Dict[str, Any]] = None,
    icon: Optional[str] = None,
    color: Optional[str] = None,
) -> Callable[[Type[T]], Type[T]]:
    """Decorator to register one class for one or more executor types.

    Example:
        @register_executor_type(
            ExecutorType.SET_VARIABLE,
            display_name="Set Variable",
            description="Assigns a value to a variable",
            category=CATEGORY_STATE,
            config_schema={"type": "object", "required": ["variableName"]},
        )
        class SetVariableExecutor(BaseExecutor):
            async def execute(self, ctx):
                ...
    """
    if isinstance(executor_types, ExecutorType):
        executor_types = [executor_types]

    def decorator(cls: Type[T]) -> Type[T]:
        schema = dict(config_schema)
        schema.setdefault("type", "object")
        properties = dict(schema.get("properties", {}))
        properties.setdefault("onErrorTarget", ON_ERROR_TARGET_SCHEMA)
        schema["properties"] = properties

        for executor_type in executor_types:
            name = display_name if len(executor_types) == 1 else _humanize(executor_type)
            EXECUTOR_REGISTRY[executor_type] = ExecutorTypeDefinition(
                executor_type=executor_type,
                display_name=name,
                description=description,
                category=category,
                config_schema=schema,
                output_schema=output_schema or {},
                icon=icon,
                color=color,
            )
            EXECUTOR_CLASSES[executor_type] = cls
            logger.debug(f"Registered executor type: {executor_type.value} ({cls.__name__})")

        return cls

    return decorator


def _humanize(executor_type: ExecutorType) -> str:
    value = executor_type.value
    words = []
    current = ""
    for char in value:
        if char.isupper() and current and not current[-1].isupper():
            words.append(current)
            current = char
        else:
            current += char
    words.append(current)
    return " ".join(words)


def create_executor(definition: ExecutorDefinition) -> BaseExecutor:
    """Factory function to create an executor instance.

    Raises:
        ValueError: If the executor type is not registered
    """
    cls = EXECUTOR_CLASSES.get(definition.type)
    if cls is None:
        available = [t.value for t in EXECUTOR_CLASSES]
        raise ValueError(
            f"Unknown executor type: {definition.type}. Available types: {available}"
        )
    return cls(definition)


def get_executor_type_definition(executor_type: ExecutorType | str) -> Optional[ExecutorTypeDefinition]:
    try:
        return EXECUTOR_REGISTRY.get(ExecutorType(executor_type))
    except ValueError:
        return None


def list_executor_types() -> List[ExecutorTypeDefinition]:
    return list(EXECUTOR_REGISTRY.values())


def list_executor_types_by_category(category: str) -> List[ExecutorTypeDefinition]:
    return [
        definition
        for definition in EXECUTOR_REGISTRY.values()
        if definition.category == category
    ]


def is_executor_type_registered(executor_type: ExecutorType | str) -> bool:
    try:
        return ExecutorType(executor_type) in EXECUTOR_REGISTRY
    except ValueError:
        return False
