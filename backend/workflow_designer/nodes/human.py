"""Human-input executors: Question and FunctionApproval."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..engine.context import NodeContext, NodeOutcome
from ..engine.errors import EvaluationError, ExternalCallError, WorkflowError
from ..engine.models import ExecutorType
from .registry import CATEGORY_HUMAN_INPUT, BaseExecutor, register_executor_type

logger = logging.getLogger(__name__)


@dataclass
class QuestionConfig:
    prompt: str
    result_variable: str = "user_response"
    validation_expression: Optional[str] = None
    default_value: Optional[str] = None
    timeout: Optional[float] = None


@register_executor_type(
    ExecutorType.QUESTION,
    display_name="Question",
    description="Asks the user a question and stores the answer",
    category=CATEGORY_HUMAN_INPUT,
    config_schema={
        "properties": {
            "prompt": {"type": "string"},
            "resultVariable": {"type": "string", "default": "user_response"},
            "validationExpression": {
                "type": "string",
                "description": "Condition on `value`, e.g. len(value) > 0",
            },
            "defaultValue": {"type": "string"},
            "timeout": {"type": "number", "description": "Seconds to wait for an answer"},
        },
        "required": ["prompt"],
    },
    output_schema={"type": "string"},
    icon="help-circle",
    color="#795548",
)
class QuestionExecutor(BaseExecutor):

    def parse_config(self) -> QuestionConfig:
        timeout = self.config.get("timeout")
        return QuestionConfig(
            prompt=str(self.config["prompt"]),
            result_variable=self.config.get("resultVariable") or "user_response",
            validation_expression=self.config.get("validationExpression") or None,
            default_value=self.config.get("defaultValue"),
            timeout=float(timeout) if timeout is not None else None,
        )

    def templates(self) -> List[str]:
        return [self.options.prompt]

    def expressions(self) -> List[str]:
        return [self.options.validation_expression] if self.options.validation_expression else []

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: QuestionConfig = self.options
        prompt = ctx.render(opts.prompt)
        provider = ctx.engine.human_input

        if provider is not None:
            try:
                answer = await provider.ask(prompt, executor_id=self.node_id, timeout=opts.timeout)
            except WorkflowError:
                raise
            except Exception as e:
                raise ExternalCallError(f"Question '{self.node_id}' got no answer: {e}") from e
        elif opts.default_value is not None:
            answer = opts.default_value
        else:
            raise ExternalCallError(
                f"Question '{self.node_id}' needs an answer but no human input provider is configured"
            )

        if opts.validation_expression and not ctx.evaluate(opts.validation_expression, value=answer):
            raise EvaluationError(
                f"Answer to '{self.node_id}' failed validation: {opts.validation_expression}",
                opts.validation_expression,
            )

        ctx.append_message("assistant", prompt, name=self.name)
        ctx.append_message("user", str(answer))
        ctx.variables.set(opts.result_variable, answer)
        return NodeOutcome(output=answer, data={"prompt": prompt})


@dataclass
class ApprovalConfig:
    function_name: str
    arguments: Dict[str, Any]
    result_variable: str = "approved"
    auto_approve: bool = False


@register_executor_type(
    ExecutorType.FUNCTION_APPROVAL,
    display_name="Function Approval",
    description="Asks the user to approve a function call",
    category=CATEGORY_HUMAN_INPUT,
    config_schema={
        "properties": {
            "functionName": {"type": "string"},
            "arguments": {"type": "object"},
            "resultVariable": {"type": "string", "default": "approved"},
            "autoApprove": {"type": "boolean", "default": False},
        },
        "required": ["functionName"],
    },
    output_schema={"type": "boolean"},
    icon="check-circle",
    color="#795548",
)
class FunctionApprovalExecutor(BaseExecutor):

    def parse_config(self) -> ApprovalConfig:
        arguments = self.config.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ValueError("arguments must be an object")
        return ApprovalConfig(
            function_name=str(self.config["functionName"]),
            arguments=arguments,
            result_variable=self.config.get("resultVariable") or "approved",
            auto_approve=bool(self.config.get("autoApprove", False)),
        )

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: ApprovalConfig = self.options
        arguments = {k: ctx.resolve(v) for k, v in opts.arguments.items()}
        provider = ctx.engine.human_input
        if provider is None:
            approved = opts.auto_approve
        else:
            try:
                approved = bool(await provider.approve(
                    opts.function_name, arguments, executor_id=self.node_id,
                ))
            except WorkflowError:
                raise
            except Exception as e:
                raise ExternalCallError(f"Approval for '{opts.function_name}' failed: {e}") from e

        logger.info(f"FunctionApproval '{self.node_id}': {opts.function_name} approved={approved}")
        ctx.variables.set(opts.result_variable, approved)
        return NodeOutcome(output=approved, data={"function": opts.function_name})
