"""Scoped variable store for a single workflow execution.

Lookup order is Workflow (declared + runtime keys), then Conversation
(caller-owned, shared across turns), then Global (process-wide, read-only).
A store belongs to exactly one run.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

from .errors import ReadOnlyVariableError, VariableNotFoundError
from .models import VariableDefinition, VariableScope

logger = logging.getLogger(__name__)


class VariableStore:
    """Current values of declared variables plus runtime-introduced keys."""

    def __init__(
        self,
        definitions: Iterable[VariableDefinition] = (),
        inputs: Optional[Mapping[str, Any]] = None,
        conversation: Optional[MutableMapping[str, Any]] = None,
        global_variables: Optional[Mapping[str, Any]] = None,
    ):
        self._definitions: Dict[str, VariableDefinition] = {}
        self._workflow: Dict[str, Any] = {}
        self._runtime: Dict[str, Any] = {}
        # Owned by the caller: mutations persist into the next turn
        self._conversation = conversation if conversation is not None else {}
        self._global = global_variables if global_variables is not None else {}

        for definition in definitions:
            self._definitions[definition.name] = definition
            if definition.scope == VariableScope.WORKFLOW:
                self._workflow[definition.name] = copy.deepcopy(definition.default_value)
            elif definition.scope == VariableScope.CONVERSATION:
                self._conversation.setdefault(
                    definition.name, copy.deepcopy(definition.default_value)
                )

        for name, value in (inputs or {}).items():
            definition = self._definitions.get(name)
            if definition and definition.scope == VariableScope.GLOBAL:
                logger.warning(f"Ignoring input for global variable '{name}'")
                continue
            self.set(name, value)

    def _scope_of(self, name: str) -> VariableScope:
        definition = self._definitions.get(name)
        return definition.scope if definition else VariableScope.WORKFLOW

    def has(self, name: str) -> bool:
        try:
            self.get(name)
        except VariableNotFoundError:
            return False
        return True

    def get(self, name: str) -> Any:
        """Return the current value of ``name``.

        Raises:
            VariableNotFoundError: If no scope knows the name
        """
        if name in self._workflow:
            return self._workflow[name]
        if name in self._runtime:
            return self._runtime[name]
        if name in self._conversation:
            return self._conversation[name]
        if name in self._global:
            return self._global[name]
        definition = self._definitions.get(name)
        if definition and definition.scope == VariableScope.GLOBAL:
            return definition.default_value
        raise VariableNotFoundError(name)

    def set(self, name: str, value: Any) -> None:
        if not name:
            raise ValueError("variable name cannot be empty")
        scope = self._scope_of(name)
        if scope == VariableScope.GLOBAL:
            raise ReadOnlyVariableError(name)
        if scope == VariableScope.CONVERSATION:
            self._conversation[name] = value
        elif name in self._definitions:
            self._workflow[name] = value
        else:
            self._runtime[name] = value

    def reset(self, name: str) -> None:
        """Restore the declared default, or drop a runtime key."""
        definition = self._definitions.get(name)
        if definition is None:
            if self._runtime.pop(name, _MISSING) is _MISSING:
                raise VariableNotFoundError(name)
            return
        if definition.scope == VariableScope.GLOBAL:
            raise ReadOnlyVariableError(name)
        default = copy.deepcopy(definition.default_value)
        if definition.scope == VariableScope.CONVERSATION:
            self._conversation[name] = default
        else:
            self._workflow[name] = default

    def clear(self, scope: VariableScope = VariableScope.WORKFLOW) -> None:
        """Reset every variable of ``scope`` to its default."""
        if scope == VariableScope.GLOBAL:
            raise ReadOnlyVariableError("*")
        for definition in self._definitions.values():
            if definition.scope == scope:
                self.reset(definition.name)
        if scope == VariableScope.WORKFLOW:
            self._runtime.clear()

    def snapshot(self) -> Dict[str, Any]:
        """Ordered copy of workflow, runtime and declared conversation values."""
        result: Dict[str, Any] = {}
        result.update(self._workflow)
        result.update(self._runtime)
        for name, definition in self._definitions.items():
            if definition.scope == VariableScope.CONVERSATION:
                result[name] = self._conversation.get(name)
        return copy.deepcopy(result)

    def as_context(self) -> Dict[str, Any]:
        """Flat name → value mapping for expression evaluation."""
        context: Dict[str, Any] = {}
        for definition in self._definitions.values():
            if definition.scope == VariableScope.GLOBAL:
                context[definition.name] = definition.default_value
        context.update(self._global)
        context.update(self._conversation)
        context.update(self._runtime)
        context.update(self._workflow)
        return context


_MISSING = object()
