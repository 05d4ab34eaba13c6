"""Tool invocation for tool-execution executors.

``HttpToolInvoker`` handles:
- OpenApiTool: plain HTTP request to ``url`` with ``method``
- McpTool: ``tools/call`` through an MCP session on ``serverUrl`` (see mcp.py)
- FunctionExecutor: Python callables registered by name

Other tool kinds (CodeInterpreter, FileSearch, WebSearch) need a hosted
service and raise ``ExternalCallError`` unless a handler is registered.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from .. import settings
from ..engine.errors import ExternalCallError
from ..engine.models import ExecutorType
from .mcp import McpClient

logger = logging.getLogger(__name__)

ToolFunction = Callable[..., Union[Any, Awaitable[Any]]]


class HttpToolInvoker:
    """ToolInvoker using a shared httpx.AsyncClient."""

    def __init__(
        self,
        functions: Optional[Dict[str, ToolFunction]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._functions: Dict[str, ToolFunction] = dict(functions or {})
        self._handlers: Dict[ExecutorType, ToolFunction] = {}
        self._client = client
        self._mcp = McpClient(self._get_client)

    def register_function(self, name: str, func: ToolFunction) -> None:
        self._functions[name] = func

    def register_handler(self, tool_type: ExecutorType, handler: ToolFunction) -> None:
        """Handle a hosted tool kind with ``handler(tool_name, arguments, config)``."""
        self._handlers[tool_type] = handler

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.TOOL_HTTP_TIMEOUT,
                limits=httpx.Limits(
                    max_connections=settings.TOOL_HTTP_MAX_CONNECTIONS,
                    max_keepalive_connections=settings.TOOL_HTTP_MAX_KEEPALIVE,
                ),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def invoke_tool(
        self,
        tool_type: ExecutorType,
        tool_name: str,
        arguments: Dict[str, Any],
        config: Dict[str, Any],
    ) -> Any:
        if tool_type in self._handlers:
            return await _maybe_await(self._handlers[tool_type](tool_name, arguments, config))
        if tool_type == ExecutorType.FUNCTION_EXECUTOR:
            return await self._call_function(tool_name, arguments)
        if tool_type == ExecutorType.OPENAPI_TOOL:
            return await self._call_http(tool_name, arguments, config)
        if tool_type == ExecutorType.MCP_TOOL:
            return await self._call_mcp(tool_name, arguments, config)
        raise ExternalCallError(f"No handler registered for tool type {tool_type.value}")

    async def _call_function(self, name: str, arguments: Dict[str, Any]) -> Any:
        func = self._functions.get(name)
        if func is None:
            raise ExternalCallError(f"Function '{name}' is not registered")
        return await _maybe_await(func(**arguments))

    async def _call_http(self, name: str, arguments: Dict[str, Any], config: Dict[str, Any]) -> Any:
        url = config.get("url")
        if not url:
            raise ExternalCallError(f"OpenAPI tool '{name}' has no url")
        method = str(config.get("method") or "GET").upper()
        headers = config.get("headers") or {}
        client = self._get_client()
        try:
            if method == "GET":
                response = await client.request(method, url, params=arguments, headers=headers)
            else:
                response = await client.request(method, url, json=arguments, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalCallError(f"OpenAPI tool '{name}' request failed: {e}") from e
        logger.info(f"OpenAPI tool '{name}': {method} {url} → {response.status_code}")
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _call_mcp(self, name: str, arguments: Dict[str, Any], config: Dict[str, Any]) -> Any:
        server_url = config.get("serverUrl")
        if not server_url:
            raise ExternalCallError(f"MCP tool '{name}' has no serverUrl")
        return await self._mcp.call_tool(server_url, name, arguments)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
