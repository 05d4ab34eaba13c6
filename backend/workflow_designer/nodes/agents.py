"""Agent Executors

Executors that call the external agent-invocation collaborator:
ChatAgent, FunctionAgent, ToolAgent, AzureAgent, InvokeAzureAgent and
MagenticOrchestrator share one implementation; the executor type and the
kind-specific keys travel to the collaborator in ``tool_config``.

Flow per dispatch:
1. Apply inputMappings (expression → variable)
2. Render instructionsTemplate against the variables
3. Append the prompt (or the caller's userInput) to the conversation
4. Invoke the agent; append the reply to the conversation
5. Store the reply in resultVariable and apply outputMappings
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..engine.context import NodeContext, NodeOutcome
from ..engine.errors import ExternalCallError, WorkflowError
from ..engine.models import AGENT_EXECUTOR_TYPES
from .registry import CATEGORY_AGENTS, BaseExecutor, register_executor_type

logger = logging.getLogger(__name__)

USER_INPUT_VARIABLE = "userInput"


@dataclass
class FieldMapping:
    source: str
    target: str


@dataclass
class ModelConfig:
    provider: str = "openai"
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
        }


@dataclass
class AgentConfig:
    name: str
    instructions_template: str = ""
    prompt: Optional[str] = None
    model_config: ModelConfig = field(default_factory=ModelConfig)
    tools: List[Any] = field(default_factory=list)
    handoffs: List[str] = field(default_factory=list)
    input_mappings: List[FieldMapping] = field(default_factory=list)
    output_mappings: List[FieldMapping] = field(default_factory=list)
    result_variable: Optional[str] = None
    conversation_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


# Kind-specific keys forwarded verbatim to the collaborator
_PASSTHROUGH_KEYS = (
    "agentDefinitionId",
    "agentName",
    "connectionName",
    "participants",
    "maxRounds",
    "enableStreaming",
    "reflectOnToolUse",
    "timeout",
)


def _parse_mappings(raw: Any, key: str) -> List[FieldMapping]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"{key} must be a list")
    mappings = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get("source") or not item.get("target"):
            raise ValueError(f"{key}[{i}] needs source and target")
        mappings.append(FieldMapping(str(item["source"]), str(item["target"])))
    return mappings


@register_executor_type(
    sorted(AGENT_EXECUTOR_TYPES, key=lambda t: t.value),
    display_name="Agent",
    description="Invokes an LLM agent with rendered instructions and the conversation",
    category=CATEGORY_AGENTS,
    config_schema={
        "properties": {
            "name": {"type": "string"},
            "instructionsTemplate": {"type": "string", "description": "Supports {{ variable }}"},
            "prompt": {"type": "string", "description": "User message template"},
            "modelConfig": {
                "type": "object",
                "properties": {
                    "provider": {"type": "string"},
                    "model": {"type": "string", "default": "gpt-4o"},
                    "temperature": {"type": "number", "default": 0.7},
                    "maxTokens": {"type": "integer"},
                },
            },
            "tools": {"type": "array"},
            "handoffs": {"type": "array", "items": {"type": "string"}},
            "inputMappings": {"type": "array"},
            "outputMappings": {"type": "array"},
            "resultVariable": {"type": "string"},
            "agentDefinitionId": {"type": "string"},
            "agentName": {"type": "string"},
            "connectionName": {"type": "string"},
            "participants": {"type": "array", "items": {"type": "string"}},
        },
    },
    output_schema={"type": "string", "description": "Agent reply text"},
    icon="bot",
    color="#2196F3",
)
class AgentExecutor(BaseExecutor):

    def parse_config(self) -> AgentConfig:
        model = self.config.get("modelConfig") or {}
        if not isinstance(model, dict):
            raise ValueError("modelConfig must be an object")
        max_tokens = model.get("maxTokens")
        return AgentConfig(
            name=self.config.get("name") or self.name,
            instructions_template=self.config.get("instructionsTemplate")
            or self.config.get("instructions") or "",
            prompt=self.config.get("prompt") or None,
            model_config=ModelConfig(
                provider=model.get("provider") or "openai",
                model=model.get("model") or "gpt-4o",
                temperature=float(model.get("temperature", 0.7)),
                max_tokens=int(max_tokens) if max_tokens is not None else None,
            ),
            tools=list(self.config.get("tools") or []),
            handoffs=[str(h) for h in self.config.get("handoffs") or []],
            input_mappings=_parse_mappings(self.config.get("inputMappings"), "inputMappings"),
            output_mappings=_parse_mappings(self.config.get("outputMappings"), "outputMappings"),
            result_variable=self.config.get("resultVariable") or None,
            conversation_id=self.config.get("conversationId") or None,
            extra={k: self.config[k] for k in _PASSTHROUGH_KEYS if k in self.config},
        )

    def templates(self) -> List[str]:
        templates = [self.options.instructions_template]
        if self.options.prompt:
            templates.append(self.options.prompt)
        return templates

    def expressions(self) -> List[str]:
        return [m.source for m in self.options.input_mappings + self.options.output_mappings]

    def tool_config(self) -> Dict[str, Any]:
        opts: AgentConfig = self.options
        return {
            "agentType": self.executor_type.value,
            "name": opts.name,
            "modelConfig": opts.model_config.to_dict(),
            "tools": opts.tools,
            "handoffs": opts.handoffs,
            **opts.extra,
        }

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: AgentConfig = self.options
        invoker = ctx.engine.agent_invoker
        if invoker is None:
            raise ExternalCallError("No agent invoker configured")

        for mapping in opts.input_mappings:
            ctx.variables.set(mapping.target, ctx.evaluate(mapping.source))

        instructions = ctx.render(opts.instructions_template)
        conversation_id = ctx.resolve(opts.conversation_id) if opts.conversation_id else None
        conversation = ctx.run.conversation(conversation_id)

        if opts.prompt:
            ctx.append_message("user", ctx.render(opts.prompt), conversation_id=conversation_id)
        elif ctx.variables.has(USER_INPUT_VARIABLE) and not any(m.role == "user" for m in conversation):
            user_input = ctx.variables.get(USER_INPUT_VARIABLE)
            if user_input:
                ctx.append_message("user", str(user_input), conversation_id=conversation_id)

        logger.info(
            f"Agent '{self.node_id}' ({self.executor_type.value}) invoking "
            f"with {len(conversation)} message(s)"
        )
        try:
            response = await invoker.invoke(instructions, list(conversation), self.tool_config())
        except WorkflowError:
            raise
        except Exception as e:
            raise ExternalCallError(f"Agent '{opts.name}' failed: {e}") from e

        text = response.text if response is not None else ""
        ctx.append_message("assistant", text, name=opts.name, conversation_id=conversation_id)

        if opts.result_variable:
            ctx.variables.set(opts.result_variable, text)
        for mapping in opts.output_mappings:
            ctx.variables.set(mapping.target, ctx.evaluate(mapping.source, result=text))

        return NodeOutcome(
            output=text,
            data={"agent": opts.name, "metadata": getattr(response, "metadata", {}) or {}},
        )
