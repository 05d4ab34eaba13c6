"""Unit tests for the Executor Type Registry

Tests cover:
- Every ExecutorType has a registered implementation
- Designer metadata and categories
- Executor instance creation
- Configuration validation
"""

import pytest

from workflow_designer.engine import ExecutorDefinition, ExecutorType
from workflow_designer.nodes import (
    EXECUTOR_CLASSES,
    EXECUTOR_REGISTRY,
    BaseExecutor,
    ExecutorTypeDefinition,
    create_executor,
    get_executor_type_definition,
    is_executor_type_registered,
    list_executor_types,
    list_executor_types_by_category,
)
from workflow_designer.nodes.registry import CATEGORIES
from workflow_designer.nodes.control import ConditionExecutor, GotoExecutor
from workflow_designer.nodes.state import SetVariableExecutor


def _make(executor_type, **config):
    return create_executor(ExecutorDefinition(id="node", type=executor_type, config=config))


class TestExecutorTypeDefinition:
    """Test ExecutorTypeDefinition dataclass validation."""

    def test_to_dict_uses_camel_case(self):
        definition = get_executor_type_definition(ExecutorType.SET_VARIABLE)

        data = definition.to_dict()
        assert data["type"] == "SetVariable"
        assert data["displayName"] == "Set Variable"
        assert data["category"] == "stateManagement"
        assert "variableName" in data["configSchema"]["properties"]

    def test_empty_display_name(self):
        with pytest.raises(ValueError, match="display_name cannot be empty"):
            ExecutorTypeDefinition(
                executor_type=ExecutorType.GOTO,
                display_name="",
                description="",
                category="controlFlow",
                config_schema={},
                output_schema={},
            )

    def test_unknown_category(self):
        with pytest.raises(ValueError, match="unknown category"):
            ExecutorTypeDefinition(
                executor_type=ExecutorType.GOTO,
                display_name="Goto",
                description="",
                category="misc",
                config_schema={},
                output_schema={},
            )

    def test_schema_must_be_dict(self):
        with pytest.raises(ValueError, match="config_schema"):
            ExecutorTypeDefinition(
                executor_type=ExecutorType.GOTO,
                display_name="Goto",
                description="",
                category="controlFlow",
                config_schema=[],
                output_schema={},
            )


class TestRegistryQueries:
    """Registry lookups used by the designer endpoints."""

    def test_every_executor_type_registered(self):
        missing = [t.value for t in ExecutorType if t not in EXECUTOR_CLASSES]
        assert missing == []
        assert len(list_executor_types()) == len(ExecutorType)

    def test_every_category_is_populated(self):
        for category in CATEGORIES:
            assert list_executor_types_by_category(category), category

    def test_category_membership(self):
        control = {d.executor_type for d in list_executor_types_by_category("controlFlow")}
        assert ExecutorType.FOREACH in control
        assert ExecutorType.SET_VARIABLE not in control

    def test_lookup_by_string(self):
        assert get_executor_type_definition("Foreach").executor_type == ExecutorType.FOREACH
        assert get_executor_type_definition("Teleport") is None

    def test_is_registered(self):
        assert is_executor_type_registered("SetVariable")
        assert is_executor_type_registered(ExecutorType.MCP_TOOL)
        assert not is_executor_type_registered("Teleport")

    def test_shared_class_gets_per_type_names(self):
        assert EXECUTOR_REGISTRY[ExecutorType.OPENAPI_TOOL].display_name == "Open Api Tool"
        assert EXECUTOR_REGISTRY[ExecutorType.CHAT_AGENT].display_name == "Chat Agent"
        assert EXECUTOR_CLASSES[ExecutorType.GOTO] is EXECUTOR_CLASSES[ExecutorType.GOTO_ACTION]

    def test_on_error_target_in_every_schema(self):
        for definition in list_executor_types():
            assert "onErrorTarget" in definition.config_schema["properties"]


class TestCreateExecutor:

    def test_create_returns_registered_class(self):
        executor = _make(ExecutorType.SET_VARIABLE, variableName="x", value=1)

        assert isinstance(executor, SetVariableExecutor)
        assert isinstance(executor, BaseExecutor)
        assert executor.node_id == "node"
        assert executor.name == "node"
        assert executor.options.variable_name == "x"

    def test_goto_action_uses_goto_class(self):
        executor = _make(ExecutorType.GOTO_ACTION, targetExecutorId="end")

        assert isinstance(executor, GotoExecutor)
        assert executor.config_targets() == ["end"]

    def test_on_error_target_is_a_config_target(self):
        executor = _make(ExecutorType.GOTO, targetExecutorId="end", onErrorTarget="recover")

        assert executor.on_error_target == "recover"
        assert executor.config_targets() == ["recover", "end"]

    def test_repr(self):
        executor = _make(ExecutorType.CONDITION, expression="x > 1")

        assert isinstance(executor, ConditionExecutor)
        assert repr(executor) == "<ConditionExecutor id='node'>"


class TestValidateConfig:

    def test_valid_config(self):
        assert _make(ExecutorType.SET_VARIABLE, variableName="x", value="=y + 1").validate_config() == []

    def test_missing_required_fields(self):
        errors = _make(ExecutorType.EDIT_TABLE).validate_config()

        assert [e["field"] for e in errors] == ["variableName", "operation"]

    def test_typed_parse_failure(self):
        errors = _make(ExecutorType.PARSE_VALUE, variableName="x", value="1", valueType="date").validate_config()

        assert errors[0]["field"] == "config"
        assert "valueType" in errors[0]["error"]

    def test_edit_table_index_required(self):
        errors = _make(ExecutorType.EDIT_TABLE, variableName="rows", operation="insert").validate_config()

        assert "requires index" in errors[0]["error"]

    def test_bad_expression(self):
        errors = _make(ExecutorType.CONDITION, expression="__import__('os')").validate_config()

        assert errors[0]["field"] == "expression"

    def test_bad_template(self):
        errors = _make(ExecutorType.SET_TEXT_VARIABLE, variableName="t", text="{{ 1 + }}").validate_config()

        assert errors[0]["field"] == "template"

    def test_openapi_tool_requires_url(self):
        errors = _make(ExecutorType.OPENAPI_TOOL, toolName="getItem").validate_config()

        assert "requires url" in errors[0]["error"]

    def test_clear_global_scope_rejected(self):
        errors = _make(ExecutorType.CLEAR_ALL_VARIABLES, scope="Global").validate_config()

        assert "read-only" in errors[0]["error"]

    def test_agent_mappings_need_source_and_target(self):
        errors = _make(ExecutorType.CHAT_AGENT, inputMappings=[{"source": "x"}]).validate_config()

        assert "inputMappings[0]" in errors[0]["error"]
