"""Executor behavior tests, one small workflow per executor kind.

Tests cover:
- State management (SetVariable family, ParseValue, EditTable, reset / clear)
- Messages and conversation lifecycle
- Human input through StaticHumanInput
- Tool executors through HttpToolInvoker (functions, OpenAPI, MCP)
"""

import json

import httpx
import pytest

from workflow_designer.agents import HttpToolInvoker, StaticHumanInput
from workflow_designer.engine import (
    DeclarativeWorkflowDefinition,
    ExecutionEventType,
    ExecutionStatus,
    ExecutorType,
    GraphValidationError,
    WorkflowEngine,
)


def _chain(build, *executors, variables=None, **extra):
    """Linear workflow running ``executors`` in order."""
    groups = [
        build.edges(a["id"], b["id"]) for a, b in zip(executors, executors[1:])
    ]
    return DeclarativeWorkflowDefinition.from_dict(
        build.workflow(list(executors), groups, variables=variables, **extra)
    )


def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _mcp_server(on_call, calls):
    """MockTransport handler speaking the MCP handshake; ``on_call`` answers tools/call."""

    def handler(request):
        body = json.loads(request.content)
        calls.append((body["method"], request.headers.get("mcp-session-id")))
        if body["method"] == "initialize":
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "result": {"protocolVersion": "2025-06-18"}},
                headers={"Mcp-Session-Id": "sess-1"},
            )
        if body["method"] == "notifications/initialized":
            assert "id" not in body
            return httpx.Response(202)
        assert request.headers["mcp-protocol-version"] == "2025-06-18"
        return httpx.Response(200, json=on_call(body))

    return handler


# ─── State management ────────────────────────────────────────────────


class TestStateExecutors:

    @pytest.mark.asyncio
    async def test_set_multiple_sees_earlier_assignments(self, build):
        definition = _chain(build, build.executor(
            "set", "SetMultipleVariables",
            assignments=[
                {"variableName": "a", "value": 1},
                {"variableName": "b", "value": "=a + 1"},
            ],
        ))
        result = await WorkflowEngine().run(definition)

        assert result.variables["a"] == 1
        assert result.variables["b"] == 2
        assert result.output == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_set_text_variable_renders(self, build):
        definition = _chain(
            build,
            build.executor("greet", "SetTextVariable", variableName="greeting", text="Hi {{ name }}"),
            variables=[{"name": "name", "type": "string", "defaultValue": "Ada"}],
        )
        result = await WorkflowEngine().run(definition)

        assert result.variables["greeting"] == "Hi Ada"

    @pytest.mark.asyncio
    async def test_parse_value_types(self, build):
        definition = _chain(
            build,
            build.executor("json", "ParseValue", variableName="payload", value='{"a": 1}', valueType="json"),
            build.executor("bool", "ParseValue", variableName="flag", value="yes", valueType="boolean"),
            build.executor("int", "ParseValue", variableName="count", value="3.0", valueType="integer"),
        )
        result = await WorkflowEngine().run(definition)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.variables["payload"] == {"a": 1}
        assert result.variables["flag"] is True
        assert result.variables["count"] == 3

    @pytest.mark.asyncio
    async def test_parse_value_failure(self, build):
        definition = _chain(
            build,
            build.executor("parse", "ParseValue", variableName="n", value="many", valueType="number"),
        )
        result = await WorkflowEngine().run(definition)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_type == "EvaluationError"

    @pytest.mark.asyncio
    async def test_edit_table_operations(self, build):
        definition = _chain(
            build,
            build.executor("init", "SetVariable", variableName="rows", value=[1, 2]),
            build.executor("add", "EditTable", variableName="rows", operation="add", value=3),
            build.executor("insert", "EditTable", variableName="rows", operation="insert", index=0, value=0),
            build.executor("update", "EditTable", variableName="rows", operation="update", index="=1", value=10),
            build.executor("remove", "EditTable", variableName="rows", operation="remove", value=2),
        )
        result = await WorkflowEngine().run(definition)

        assert result.variables["rows"] == [0, 10, 3]

    @pytest.mark.asyncio
    async def test_edit_table_out_of_range(self, build):
        definition = _chain(
            build,
            build.executor("update", "EditTable", variableName="rows", operation="update", index=5, value=1),
            variables=[{"name": "rows", "type": "array", "defaultValue": []}],
        )
        result = await WorkflowEngine().run(definition)

        assert result.status == ExecutionStatus.FAILED
        assert "update" in result.error_message

    @pytest.mark.asyncio
    async def test_edit_table_non_integer_index(self, build):
        definition = _chain(
            build,
            build.executor("update", "EditTable", variableName="rows", operation="update", index="abc", value=1),
            variables=[{"name": "rows", "type": "array", "defaultValue": [0]}],
        )
        result = await WorkflowEngine().run(definition)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_type == "EvaluationError"
        assert "invalid literal" in result.error_message

    @pytest.mark.asyncio
    async def test_reset_and_clear(self, build):
        definition = _chain(
            build,
            build.executor("bump", "SetVariable", variableName="count", value=5),
            build.executor("scratch", "SetVariable", variableName="tmp", value="x"),
            build.executor("reset", "ResetVariable", variableName="count"),
            build.executor("bump2", "SetVariable", variableName="count", value=9),
            build.executor("clear", "ClearAllVariables"),
            variables=[{"name": "count", "type": "number", "defaultValue": 0}],
        )
        result = await WorkflowEngine().run(definition)

        assert result.variables == {"count": 0}

    @pytest.mark.asyncio
    async def test_global_variable_is_read_only(self, build):
        definition = _chain(
            build,
            build.executor("set", "SetVariable", variableName="region", value="us"),
            variables=[{"name": "region", "scope": "Global", "defaultValue": "eu"}],
        )
        result = await WorkflowEngine().run(definition)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_type == "ReadOnlyVariableError"


# ─── Messages and conversations ──────────────────────────────────────


class TestMessageExecutors:

    @pytest.mark.asyncio
    async def test_send_activity(self, build):
        definition = _chain(
            build,
            build.executor("say", "SendActivity", message="Order {{ orderId }} shipped"),
            variables=[{"name": "orderId", "defaultValue": "A-1"}],
        )
        conversation = []
        execution = WorkflowEngine().execute(definition, conversation=conversation)
        events = [event async for event in execution]
        result = await execution.result()

        assert result.output == "Order A-1 shipped"
        assert [(m.role, m.content) for m in conversation] == [("assistant", "Order A-1 shipped")]
        log = next(e for e in events if e.type == ExecutionEventType.LOG_MESSAGE)
        assert log.data["activity"] == "Order A-1 shipped"

    @pytest.mark.asyncio
    async def test_add_and_retrieve_messages(self, build):
        definition = _chain(
            build,
            build.executor("first", "AddConversationMessage", message="one", role="user"),
            build.executor("second", "AddConversationMessage", message="two", role="system"),
            build.executor("read", "RetrieveConversationMessages", count=1, resultVariable="latest"),
        )
        result = await WorkflowEngine().run(definition)

        latest = result.variables["latest"]
        assert len(latest) == 1
        assert latest[0]["role"] == "system"
        assert latest[0]["content"] == "two"
        assert latest[0]["executorId"] == "second"

    @pytest.mark.asyncio
    async def test_conversation_lifecycle(self, build):
        definition = _chain(
            build,
            build.executor("create", "CreateConversation", resultVariable="side"),
            build.executor("note", "AddConversationMessage", message="side note", conversationId="=side"),
            build.executor(
                "copy", "CopyConversationMessages",
                sourceConversationId="=side", targetConversationId="default",
            ),
            build.executor("delete", "DeleteConversation", conversationId="=side"),
        )
        conversation = []
        result = await WorkflowEngine().run(definition, conversation=conversation)

        assert result.status == ExecutionStatus.COMPLETED
        assert [m.content for m in conversation] == ["side note"]
        assert result.variables["side"] == result.output

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, build):
        definition = _chain(
            build,
            build.executor("note", "AddConversationMessage", message="hi", conversationId="nope"),
        )
        result = await WorkflowEngine().run(definition)

        assert result.status == ExecutionStatus.FAILED
        assert "Unknown conversation" in result.error_message

    @pytest.mark.asyncio
    async def test_default_conversation_cannot_be_deleted(self, build):
        definition = _chain(
            build,
            build.executor("delete", "DeleteConversation", conversationId="default"),
        )
        result = await WorkflowEngine().run(definition)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_type == "EvaluationError"


# ─── Human input ─────────────────────────────────────────────────────


class TestHumanInputExecutors:

    @pytest.fixture
    def question(self, build):
        return _chain(
            build,
            build.executor(
                "ask", "Question",
                prompt="How old are you, {{ name }}?",
                resultVariable="age",
                validationExpression="int(value) >= 18",
            ),
            variables=[{"name": "name", "defaultValue": "Ada"}],
        )

    @pytest.mark.asyncio
    async def test_answer_is_stored(self, question):
        human = StaticHumanInput(answers={"ask": "36"})
        conversation = []
        result = await WorkflowEngine(human_input=human).run(question, conversation=conversation)

        assert result.variables["age"] == "36"
        assert human.asked == ["How old are you, Ada?"]
        assert [m.role for m in conversation] == ["assistant", "user"]

    @pytest.mark.asyncio
    async def test_answer_failing_validation(self, question):
        human = StaticHumanInput(answers={"ask": "12"})
        result = await WorkflowEngine(human_input=human).run(question)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_type == "EvaluationError"

    @pytest.mark.asyncio
    async def test_missing_answer(self, question):
        result = await WorkflowEngine(human_input=StaticHumanInput()).run(question)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_type == "ExternalCallError"

    @pytest.mark.asyncio
    async def test_default_without_provider(self, build):
        definition = _chain(
            build,
            build.executor("ask", "Question", prompt="Continue?", defaultValue="yes"),
        )
        result = await WorkflowEngine().run(definition)

        assert result.variables["user_response"] == "yes"

    @pytest.mark.asyncio
    async def test_no_provider_no_default(self, build):
        definition = _chain(build, build.executor("ask", "Question", prompt="Continue?"))
        result = await WorkflowEngine().run(definition)

        assert result.error_type == "ExternalCallError"

    @pytest.mark.asyncio
    async def test_function_approval(self, build):
        definition = _chain(
            build,
            build.executor(
                "approve", "FunctionApproval",
                functionName="delete_user", arguments={"userId": "=uid"},
            ),
            variables=[{"name": "uid", "defaultValue": 7}],
        )
        human = StaticHumanInput(approvals={"delete_user": True})
        result = await WorkflowEngine(human_input=human).run(definition)

        assert result.variables["approved"] is True

    @pytest.mark.asyncio
    async def test_auto_approve_without_provider(self, build):
        definition = _chain(
            build,
            build.executor("approve", "FunctionApproval", functionName="send", autoApprove=True),
        )
        result = await WorkflowEngine().run(definition)

        assert result.output is True


# ─── Tools ───────────────────────────────────────────────────────────


class TestToolExecutors:

    @pytest.mark.asyncio
    async def test_registered_function(self, build):
        definition = _chain(
            build,
            build.executor(
                "add", "FunctionExecutor",
                functionName="add", arguments={"a": "=x", "b": 2}, resultVariable="sum",
            ),
            variables=[{"name": "x", "type": "number", "defaultValue": 3}],
        )
        tools = HttpToolInvoker(functions={"add": lambda a, b: a + b})
        result = await WorkflowEngine(tool_invoker=tools).run(definition)

        assert result.variables["sum"] == 5

    @pytest.mark.asyncio
    async def test_async_function(self, build):
        async def shout(text):
            return text.upper()

        definition = _chain(
            build,
            build.executor("shout", "FunctionExecutor", toolName="shout", arguments={"text": "hey"}),
        )
        tools = HttpToolInvoker()
        tools.register_function("shout", shout)
        result = await WorkflowEngine(tool_invoker=tools).run(definition)

        assert result.output == "HEY"

    @pytest.mark.asyncio
    async def test_unregistered_function(self, build):
        definition = _chain(build, build.executor("call", "FunctionExecutor", toolName="missing"))
        result = await WorkflowEngine(tool_invoker=HttpToolInvoker()).run(definition)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_type == "ExternalCallError"

    @pytest.mark.asyncio
    async def test_no_tool_invoker(self, build):
        definition = _chain(build, build.executor("call", "FunctionExecutor", toolName="x"))
        result = await WorkflowEngine().run(definition)

        assert result.error_type == "ExternalCallError"

    @pytest.mark.asyncio
    async def test_openapi_get(self, build):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": 7, "name": "Widget"})

        definition = _chain(
            build,
            build.executor(
                "fetch", "OpenApiTool",
                toolName="getItem", url="https://api.test/items/{{ itemId }}",
                arguments={"verbose": "yes"}, resultVariable="item",
            ),
            variables=[{"name": "itemId", "type": "number", "defaultValue": 7}],
        )
        tools = HttpToolInvoker(client=_mock_client(handler))
        result = await WorkflowEngine(tool_invoker=tools).run(definition)

        assert result.variables["item"] == {"id": 7, "name": "Widget"}
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/items/7"
        assert seen[0].url.params["verbose"] == "yes"

    @pytest.mark.asyncio
    async def test_openapi_post_sends_json(self, build):
        def handler(request):
            return httpx.Response(201, json={"received": json.loads(request.content)})

        definition = _chain(
            build,
            build.executor(
                "create", "OpenApiTool",
                url="https://api.test/items", method="post", arguments={"qty": "=2 * 3"},
            ),
        )
        tools = HttpToolInvoker(client=_mock_client(handler))
        result = await WorkflowEngine(tool_invoker=tools).run(definition)

        assert result.output == {"received": {"qty": 6}}

    @pytest.mark.asyncio
    async def test_openapi_http_error(self, build):
        definition = _chain(
            build,
            build.executor("fetch", "OpenApiTool", url="https://api.test/broken"),
        )
        tools = HttpToolInvoker(client=_mock_client(lambda request: httpx.Response(500)))
        result = await WorkflowEngine(tool_invoker=tools).run(definition)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_type == "ExternalCallError"

    @pytest.mark.asyncio
    async def test_mcp_tool_call(self, build):
        calls = []

        def on_call(body):
            return {"jsonrpc": "2.0", "id": body["id"], "result": {"echo": body["params"]}}

        definition = _chain(
            build,
            build.executor(
                "mcp", "McpTool",
                toolName="search", serverUrl="https://mcp.test/rpc", arguments={"q": "cats"},
            ),
            build.executor(
                "again", "McpTool",
                toolName="search", serverUrl="https://mcp.test/rpc", arguments={"q": "dogs"},
            ),
        )
        tools = HttpToolInvoker(client=_mock_client(_mcp_server(on_call, calls)))
        result = await WorkflowEngine(tool_invoker=tools).run(definition)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.output == {"echo": {"name": "search", "arguments": {"q": "dogs"}}}
        # One handshake, then every call carries the session
        assert calls == [
            ("initialize", None),
            ("notifications/initialized", "sess-1"),
            ("tools/call", "sess-1"),
            ("tools/call", "sess-1"),
        ]

    @pytest.mark.asyncio
    async def test_mcp_error_response(self, build):
        def on_call(body):
            return {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601}}

        definition = _chain(
            build,
            build.executor("mcp", "McpTool", toolName="nope", serverUrl="https://mcp.test/rpc"),
        )
        tools = HttpToolInvoker(client=_mock_client(_mcp_server(on_call, [])))
        result = await WorkflowEngine(tool_invoker=tools).run(definition)

        assert result.error_type == "ExternalCallError"
        assert "returned error" in result.error_message

    @pytest.mark.asyncio
    async def test_hosted_tool_needs_handler(self, build):
        definition = _chain(
            build,
            build.executor("search", "WebSearch", query="weather in {{ city }}"),
            variables=[{"name": "city", "defaultValue": "Oslo"}],
        )
        result = await WorkflowEngine(tool_invoker=HttpToolInvoker()).run(definition)
        assert result.error_type == "ExternalCallError"

        tools = HttpToolInvoker()
        tools.register_handler(
            ExecutorType.WEB_SEARCH, lambda name, arguments, config: [config["query"]],
        )
        result = await WorkflowEngine(tool_invoker=tools).run(definition)
        assert result.output == ["weather in Oslo"]

    @pytest.mark.asyncio
    async def test_mcp_tool_without_server_fails_validation(self, build):
        definition = _chain(build, build.executor("mcp", "McpTool", toolName="x"))

        with pytest.raises(GraphValidationError):
            await WorkflowEngine().run(definition)
