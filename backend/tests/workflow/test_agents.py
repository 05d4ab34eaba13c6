"""Unit tests for the external collaborator implementations."""

import json

import httpx
import pytest

from workflow_designer.agents import (
    ClaudeCliAgentInvoker,
    InMemoryWorkflowResolver,
    StaticHumanInput,
)
from workflow_designer.agents.claude import build_cli_args, build_prompt, clean_env
from workflow_designer.agents.mcp import McpClient, parse_sse_message
from workflow_designer.engine import DeclarativeWorkflowDefinition, ExternalCallError
from workflow_designer.engine.context import ConversationMessage


class TestBuildCliArgs:

    def test_basic_args(self):
        args = build_cli_args("hello", claude_bin="/usr/bin/claude")

        assert args[:5] == ["/usr/bin/claude", "-p", "hello", "--output-format", "text"]

    def test_model_and_tools(self):
        args = build_cli_args("hi", claude_bin="claude", model="sonnet", allowed_tools=["Read", "Grep"])

        assert args[args.index("--model") + 1] == "sonnet"
        assert args[-3:] == ["--allowedTools", "Read", "Grep"]

    def test_clean_env_drops_nested_session_marker(self, monkeypatch):
        monkeypatch.setenv("CLAUDECODE", "1")
        assert "CLAUDECODE" not in clean_env()


class TestBuildPrompt:

    def test_instructions_and_transcript(self):
        conversation = [
            ConversationMessage(role="user", content="Hi"),
            ConversationMessage(role="assistant", content="Hello", name="greeter"),
        ]
        prompt = build_prompt("Be brief.", conversation, {"handoffs": ["billing"]})

        assert prompt.split("\n\n") == [
            "Be brief.",
            "You may hand off to: billing",
            "Conversation so far:\nuser: Hi\ngreeter: Hello",
        ]

    def test_empty(self):
        assert build_prompt("", [], {}) == ""


class TestClaudeCliAgentInvoker:

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        invoker = ClaudeCliAgentInvoker(claude_bin=str(tmp_path / "no-such-claude"), cwd=str(tmp_path))

        with pytest.raises(ExternalCallError, match="not found"):
            await invoker.invoke("", [ConversationMessage(role="user", content="hi")], {})


class TestStaticHumanInput:

    @pytest.mark.asyncio
    async def test_answer_lookup_order(self):
        human = StaticHumanInput(answers={"q1": "by id", "Name?": "by prompt"}, default_answer="fallback")

        assert await human.ask("Name?", executor_id="q1") == "by id"
        assert await human.ask("Name?", executor_id="q2") == "by prompt"
        assert await human.ask("Other?", executor_id="q3") == "fallback"
        assert human.asked == ["Name?", "Name?", "Other?"]

    @pytest.mark.asyncio
    async def test_no_answer(self):
        with pytest.raises(LookupError):
            await StaticHumanInput().ask("?", executor_id="q")

    @pytest.mark.asyncio
    async def test_approvals(self):
        human = StaticHumanInput(approvals={"gate": False, "send": True}, approve_by_default=True)

        assert await human.approve("send", {}, executor_id="gate") is False
        assert await human.approve("send", {}, executor_id="other") is True
        assert await human.approve("delete", {}, executor_id="other") is True


class TestInMemoryWorkflowResolver:

    @pytest.mark.asyncio
    async def test_add_and_lookup(self):
        resolver = InMemoryWorkflowResolver()
        definition = DeclarativeWorkflowDefinition(name="Child", id="child")
        resolver.add(definition)

        assert await resolver.get_definition("child") is definition
        assert await resolver.get_definition("missing") is None


class TestMcpClient:
    """Session handshake, SSE responses and session expiry."""

    ENDPOINT = "https://mcp.test/rpc"

    def _client(self, handler):
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return McpClient(lambda: http)

    @staticmethod
    def _initialize(body, session_id):
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "result": {"protocolVersion": "2025-06-18"}},
            headers={"Mcp-Session-Id": session_id},
        )

    @pytest.mark.asyncio
    async def test_sse_response(self):
        def handler(request):
            body = json.loads(request.content)
            if body["method"] == "initialize":
                return self._initialize(body, "s1")
            if body["method"] == "notifications/initialized":
                return httpx.Response(202)
            stream = (
                'data: {"jsonrpc": "2.0", "method": "notifications/progress"}\n\n'
                f'id: 7\ndata: {{"jsonrpc": "2.0", "id": {body["id"]}, "result": {{"ok": true}}}}\n\n'
            )
            return httpx.Response(200, text=stream, headers={"Content-Type": "text/event-stream"})

        client = self._client(handler)
        assert await client.call_tool(self.ENDPOINT, "ping", {}) == {"ok": True}
        assert client.sessions[self.ENDPOINT].session_id == "s1"

    @pytest.mark.asyncio
    async def test_expired_session_reinitializes(self):
        sessions = iter(["old", "new"])
        calls = []

        def handler(request):
            body = json.loads(request.content)
            session_id = request.headers.get("mcp-session-id")
            calls.append((body["method"], session_id))
            if body["method"] == "initialize":
                return self._initialize(body, next(sessions))
            if body["method"] == "notifications/initialized":
                return httpx.Response(202)
            if session_id == "old":
                return httpx.Response(404)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "done"})

        client = self._client(handler)
        assert await client.call_tool(self.ENDPOINT, "ping", {}) == "done"
        assert [c for c in calls if c[0] == "tools/call"] == [("tools/call", "old"), ("tools/call", "new")]
        assert client.sessions[self.ENDPOINT].session_id == "new"

    @pytest.mark.asyncio
    async def test_initialize_failure(self):
        client = self._client(lambda request: httpx.Response(500))

        with pytest.raises(ExternalCallError, match="initialize failed"):
            await client.call_tool(self.ENDPOINT, "ping", {})
        assert client.sessions == {}

    def test_sse_without_response(self):
        with pytest.raises(ExternalCallError, match="without a JSON-RPC response"):
            parse_sse_message(': keepalive\n\ndata: {"jsonrpc": "2.0", "method": "notifications/log"}\n\n')
