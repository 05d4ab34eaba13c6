"""MCP client over streamable HTTP, used by McpTool executors.

One session per server endpoint:

1. ``initialize`` (the server may answer with an ``Mcp-Session-Id`` header)
2. ``notifications/initialized``
3. ``tools/call`` requests carrying the session and protocol headers

Responses are either plain JSON or an SSE stream whose first JSON-RPC
response is the answer. A 404 means the server dropped the session; it is
re-initialized once before the call fails.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from .. import settings
from ..engine.errors import ExternalCallError

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
PROTOCOL_HEADER = "MCP-Protocol-Version"
CLIENT_INFO = {"name": "workflow-designer", "version": "1.0.0"}


@dataclass
class McpSession:
    endpoint: str
    protocol_version: str
    session_id: Optional[str] = None
    server_capabilities: Dict[str, Any] = field(default_factory=dict)


def build_request(request_id: int, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_notification(method: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method}


def parse_sse_message(text: str) -> Dict[str, Any]:
    """First JSON-RPC response (``result`` or ``error``) in an SSE body.

    Server notifications sent ahead of the response are logged and skipped.

    Raises:
        ExternalCallError: The stream holds no JSON-RPC response
    """
    data_lines: List[str] = []
    for line in text.splitlines() + [""]:
        if line:
            if line.startswith("data:"):
                data_lines.append(line[5:].strip())
            continue
        if not data_lines:
            continue
        try:
            message = json.loads("\n".join(data_lines))
        except json.JSONDecodeError:
            logger.warning("Skipping non-JSON SSE data from MCP server")
            message = {}
        data_lines = []
        if "result" in message or "error" in message:
            return message
        if "method" in message:
            logger.info(f"MCP server notification: {message['method']}")
    raise ExternalCallError("MCP SSE stream ended without a JSON-RPC response")


class McpClient:
    """Session-aware MCP client sharing the caller's httpx.AsyncClient."""

    def __init__(
        self,
        client_factory: Callable[[], httpx.AsyncClient],
        protocol_version: str = settings.MCP_PROTOCOL_VERSION,
    ):
        self._client_factory = client_factory
        self.protocol_version = protocol_version
        self.sessions: Dict[str, McpSession] = {}
        self._init_locks: Dict[str, asyncio.Lock] = {}
        self._ids = itertools.count(1)

    def _headers(self, session: Optional[McpSession] = None) -> Dict[str, str]:
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }
        if session is not None:
            headers[PROTOCOL_HEADER] = session.protocol_version
            if session.session_id:
                headers[SESSION_HEADER] = session.session_id
        return headers

    async def _post(
        self, endpoint: str, message: Dict[str, Any], session: Optional[McpSession] = None,
    ) -> httpx.Response:
        try:
            return await self._client_factory().post(endpoint, json=message, headers=self._headers(session))
        except httpx.HTTPError as e:
            raise ExternalCallError(f"MCP request to {endpoint} failed: {e}") from e

    @staticmethod
    def _read(response: httpx.Response) -> Dict[str, Any]:
        if "text/event-stream" in response.headers.get("content-type", ""):
            return parse_sse_message(response.text)
        try:
            return response.json()
        except ValueError as e:
            raise ExternalCallError(f"MCP server sent invalid JSON: {e}") from e

    async def initialize(self, endpoint: str) -> McpSession:
        request = build_request(next(self._ids), "initialize", {
            "protocolVersion": self.protocol_version,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        })
        response = await self._post(endpoint, request)
        if response.status_code != 200:
            raise ExternalCallError(f"MCP initialize failed with status {response.status_code}")
        message = self._read(response)
        if message.get("error"):
            raise ExternalCallError(f"MCP initialize error: {message['error']}")

        result = message.get("result") or {}
        session = McpSession(
            endpoint=endpoint,
            protocol_version=result.get("protocolVersion") or self.protocol_version,
            session_id=response.headers.get(SESSION_HEADER),
            server_capabilities=result.get("capabilities") or {},
        )
        notified = await self._post(endpoint, build_notification("notifications/initialized"), session)
        if notified.status_code != 202:
            logger.warning(f"MCP initialized notification returned {notified.status_code}")

        self.sessions[endpoint] = session
        logger.info(f"MCP session initialized for {endpoint} (session={session.session_id})")
        return session

    async def get_or_initialize(self, endpoint: str) -> McpSession:
        session = self.sessions.get(endpoint)
        if session is not None:
            return session
        lock = self._init_locks.setdefault(endpoint, asyncio.Lock())
        async with lock:
            if endpoint in self.sessions:
                return self.sessions[endpoint]
            return await self.initialize(endpoint)

    async def _send_call(self, endpoint: str, name: str, arguments: Dict[str, Any]) -> httpx.Response:
        session = await self.get_or_initialize(endpoint)
        request = build_request(next(self._ids), "tools/call", {"name": name, "arguments": arguments})
        return await self._post(endpoint, request, session)

    async def call_tool(self, endpoint: str, name: str, arguments: Dict[str, Any]) -> Any:
        """Run ``tools/call`` and return its ``result``.

        Raises:
            ExternalCallError: Transport failure, HTTP error status or a JSON-RPC error
        """
        response = await self._send_call(endpoint, name, arguments)
        if response.status_code == 404:
            logger.warning(f"MCP session expired for {endpoint}, re-initializing")
            self.sessions.pop(endpoint, None)
            response = await self._send_call(endpoint, name, arguments)
        if response.status_code >= 400:
            raise ExternalCallError(f"MCP tool '{name}' call failed with status {response.status_code}")
        message = self._read(response)
        if message.get("error"):
            raise ExternalCallError(f"MCP tool '{name}' returned error: {message['error']}")
        return message.get("result")
