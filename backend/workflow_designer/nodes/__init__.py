"""Executor kinds for declarative workflows.

Importing this package registers every ExecutorType with the registry.
"""

from . import agents, composition, control, human, messages, state, tools  # noqa: F401
from .registry import (
    EXECUTOR_CLASSES,
    EXECUTOR_REGISTRY,
    BaseExecutor,
    ExecutorTypeDefinition,
    create_executor,
    get_executor_type_definition,
    is_executor_type_registered,
    list_executor_types,
    list_executor_types_by_category,
    register_executor_type,
)

__all__ = [
    "EXECUTOR_CLASSES",
    "EXECUTOR_REGISTRY",
    "BaseExecutor",
    "ExecutorTypeDefinition",
    "create_executor",
    "get_executor_type_definition",
    "is_executor_type_registered",
    "list_executor_types",
    "list_executor_types_by_category",
    "register_executor_type",
]
