"""Unit tests for the scoped VariableStore."""

import pytest

from workflow_designer.engine import (
    ReadOnlyVariableError,
    VariableDefinition,
    VariableNotFoundError,
    VariableScope,
    VariableStore,
)


@pytest.fixture
def definitions():
    return [
        VariableDefinition(name="count", type="number", default_value=0),
        VariableDefinition(name="items", type="array", default_value=[]),
        VariableDefinition(name="topic", scope=VariableScope.CONVERSATION, default_value="general"),
        VariableDefinition(name="region", scope=VariableScope.GLOBAL, default_value="eu"),
    ]


class TestVariableStore:

    def test_defaults_and_inputs(self, definitions):
        store = VariableStore(definitions, {"count": 3, "userInput": "hi"})
        assert store.get("count") == 3
        assert store.get("items") == []
        assert store.get("userInput") == "hi"
        assert store.get("region") == "eu"

    def test_defaults_are_copied(self, definitions):
        store = VariableStore(definitions)
        store.get("items").append(1)
        assert definitions[1].default_value == []

    def test_unknown_variable(self, definitions):
        store = VariableStore(definitions)
        with pytest.raises(VariableNotFoundError):
            store.get("ghost")
        assert not store.has("ghost")

    def test_global_is_read_only(self, definitions):
        store = VariableStore(definitions)
        with pytest.raises(ReadOnlyVariableError):
            store.set("region", "us")

    def test_global_input_is_ignored(self, definitions):
        store = VariableStore(definitions, {"region": "us"})
        assert store.get("region") == "eu"

    def test_global_values_override_default(self, definitions):
        store = VariableStore(definitions, global_variables={"region": "apac"})
        assert store.get("region") == "apac"

    def test_conversation_scope_writes_through(self, definitions):
        conversation = {}
        store = VariableStore(definitions, conversation=conversation)
        assert conversation == {"topic": "general"}
        store.set("topic", "billing")
        assert conversation["topic"] == "billing"

    def test_existing_conversation_value_kept(self, definitions):
        store = VariableStore(definitions, conversation={"topic": "returns"})
        assert store.get("topic") == "returns"

    def test_reset_and_clear(self, definitions):
        store = VariableStore(definitions)
        store.set("count", 9)
        store.set("scratch", 1)
        store.reset("count")
        assert store.get("count") == 0

        store.set("count", 4)
        store.clear()
        assert store.get("count") == 0
        assert not store.has("scratch")

    def test_reset_unknown(self, definitions):
        with pytest.raises(VariableNotFoundError):
            VariableStore(definitions).reset("ghost")

    def test_snapshot_excludes_globals(self, definitions):
        store = VariableStore(definitions, {"extra": True})
        snapshot = store.snapshot()
        assert snapshot == {"count": 0, "items": [], "extra": True, "topic": "general"}

    def test_context_precedence(self, definitions):
        store = VariableStore(definitions, global_variables={"count": 100})
        assert store.as_context()["count"] == 0
