"""Tool-execution executors (FunctionExecutor, McpTool, OpenApiTool, CodeInterpreter, FileSearch, WebSearch)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..engine.context import NodeContext, NodeOutcome
from ..engine.errors import ExternalCallError, WorkflowError
from ..engine.models import TOOL_EXECUTOR_TYPES, ExecutorType
from .registry import CATEGORY_TOOLS, BaseExecutor, register_executor_type

logger = logging.getLogger(__name__)

# Keys whose values are rendered before being handed to the tool invoker
_TEMPLATED_KEYS = ("url", "serverUrl", "query", "code")


@dataclass
class ToolConfig:
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    result_variable: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)


def _default_tool_name(executor_type: ExecutorType, config: Dict[str, Any]) -> str:
    for key in ("toolName", "functionName", "operationId"):
        if config.get(key):
            return str(config[key])
    return executor_type.value


@register_executor_type(
    sorted(TOOL_EXECUTOR_TYPES, key=lambda t: t.value),
    display_name="Tool",
    description="Invokes a tool with templated arguments",
    category=CATEGORY_TOOLS,
    config_schema={
        "properties": {
            "toolName": {"type": "string"},
            "arguments": {"type": "object", "description": "name → value (template or =expression)"},
            "resultVariable": {"type": "string"},
            "serverUrl": {"type": "string", "description": "McpTool server endpoint"},
            "url": {"type": "string", "description": "OpenApiTool endpoint"},
            "method": {"type": "string", "default": "GET"},
            "operationId": {"type": "string"},
            "code": {"type": "string", "description": "CodeInterpreter source"},
            "query": {"type": "string", "description": "FileSearch / WebSearch query"},
        },
    },
    output_schema={"description": "Tool result"},
    icon="wrench",
    color="#607D8B",
)
class ToolExecutor(BaseExecutor):

    def parse_config(self) -> ToolConfig:
        arguments = self.config.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ValueError("arguments must be an object")
        if self.executor_type == ExecutorType.OPENAPI_TOOL and not self.config.get("url"):
            raise ValueError("OpenApiTool requires url")
        if self.executor_type == ExecutorType.MCP_TOOL and not self.config.get("serverUrl"):
            raise ValueError("McpTool requires serverUrl")
        reserved = {"toolName", "arguments", "resultVariable", "onErrorTarget"}
        return ToolConfig(
            tool_name=_default_tool_name(self.executor_type, self.config),
            arguments=dict(arguments),
            result_variable=self.config.get("resultVariable") or None,
            settings={k: v for k, v in self.config.items() if k not in reserved},
        )

    def templates(self) -> List[str]:
        values = list(self.options.arguments.values()) + [
            self.options.settings.get(k) for k in _TEMPLATED_KEYS
        ]
        return [v for v in values if isinstance(v, str) and not v.strip().startswith("=")]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: ToolConfig = self.options
        invoker = ctx.engine.tool_invoker
        if invoker is None:
            raise ExternalCallError("No tool invoker configured")

        arguments = {name: ctx.resolve(value) for name, value in opts.arguments.items()}
        tool_settings = dict(opts.settings)
        for key in _TEMPLATED_KEYS:
            if isinstance(tool_settings.get(key), str):
                tool_settings[key] = ctx.render(tool_settings[key])

        logger.info(f"Tool '{self.node_id}' ({self.executor_type.value}) calling {opts.tool_name}")
        try:
            result = await invoker.invoke_tool(self.executor_type, opts.tool_name, arguments, tool_settings)
        except WorkflowError:
            raise
        except Exception as e:
            raise ExternalCallError(f"Tool '{opts.tool_name}' failed: {e}") from e

        if opts.result_variable:
            ctx.variables.set(opts.result_variable, result)
        return NodeOutcome(output=result, data={"tool": opts.tool_name})
