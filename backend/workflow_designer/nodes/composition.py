"""Composition executors: SubWorkflow, ParallelExecution, FanOut and FanIn.

FanOut / ParallelExecution activate several successors in the same
superstep; the engine runs them concurrently. FanIn is a barrier: the
engine holds arrivals until every expected source has arrived, then
dispatches the FanIn executor once with the collected outputs as inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .. import settings
from ..engine.context import NodeContext, NodeOutcome
from ..engine.errors import ExternalCallError, GraphValidationError, SubWorkflowError
from ..engine.models import ExecutionEventType, ExecutionStatus, ExecutorType
from .registry import CATEGORY_WORKFLOW, BaseExecutor, register_executor_type

logger = logging.getLogger(__name__)


@dataclass
class SubWorkflowConfig:
    workflow_id: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    result_variable: Optional[str] = None
    share_conversation: bool = False


@register_executor_type(
    ExecutorType.SUB_WORKFLOW,
    display_name="Sub Workflow",
    description="Runs another declarative workflow and returns its output",
    category=CATEGORY_WORKFLOW,
    config_schema={
        "properties": {
            "workflowId": {"type": "string"},
            "inputs": {"type": "object", "description": "Child input name → value"},
            "resultVariable": {"type": "string"},
            "shareConversation": {"type": "boolean", "default": False},
        },
        "required": ["workflowId"],
    },
    output_schema={"description": "Output of the child workflow"},
    icon="layers",
    color="#009688",
)
class SubWorkflowExecutor(BaseExecutor):

    def parse_config(self) -> SubWorkflowConfig:
        inputs = self.config.get("inputs") or {}
        if not isinstance(inputs, dict):
            raise ValueError("inputs must be an object")
        return SubWorkflowConfig(
            workflow_id=str(self.config["workflowId"]),
            inputs=dict(inputs),
            result_variable=self.config.get("resultVariable") or None,
            share_conversation=bool(self.config.get("shareConversation", False)),
        )

    def templates(self) -> List[str]:
        return [
            v for v in self.options.inputs.values()
            if isinstance(v, str) and not v.strip().startswith("=")
        ]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: SubWorkflowConfig = self.options
        if ctx.run.depth >= settings.MAX_SUBWORKFLOW_DEPTH:
            raise SubWorkflowError(
                f"Sub-workflow nesting exceeds {settings.MAX_SUBWORKFLOW_DEPTH} levels"
            )
        resolver = ctx.engine.workflow_resolver
        if resolver is None:
            raise ExternalCallError("No workflow resolver configured for SubWorkflow")

        definition = await resolver.get_definition(opts.workflow_id)
        if definition is None:
            raise SubWorkflowError(f"Sub-workflow '{opts.workflow_id}' not found")

        inputs = {name: ctx.resolve(value) for name, value in opts.inputs.items()}
        conversation = ctx.run.conversation() if opts.share_conversation else None
        try:
            result = await ctx.engine.run(
                definition, inputs, conversation=conversation, depth=ctx.run.depth + 1,
            )
        except GraphValidationError as e:
            raise SubWorkflowError(f"Sub-workflow '{definition.name}' is invalid: {e}") from e

        await ctx.emit(
            ExecutionEventType.LOG_MESSAGE,
            message=f"Sub-workflow '{definition.name}' finished: {result.status.value}",
            data={"subRunId": result.run_id, "subWorkflowId": definition.id},
        )
        if result.status != ExecutionStatus.COMPLETED:
            raise SubWorkflowError(
                f"Sub-workflow '{definition.name}' {result.status.value.lower()}: "
                f"{result.error_message}"
            )

        if opts.result_variable:
            ctx.variables.set(opts.result_variable, result.output)
        return NodeOutcome(output=result.output, data={"subRunId": result.run_id})


@register_executor_type(
    ExecutorType.PARALLEL_EXECUTION,
    display_name="Parallel Execution",
    description="Runs several executors concurrently",
    category=CATEGORY_WORKFLOW,
    config_schema={
        "properties": {"targets": {"type": "array", "items": {"type": "string"}}},
    },
    icon="git-fork",
    color="#009688",
)
class ParallelExecutionExecutor(BaseExecutor):

    def parse_config(self) -> List[str]:
        targets = self.config.get("targets") or []
        if not isinstance(targets, list):
            raise ValueError("targets must be a list")
        return [str(t) for t in targets]

    def config_targets(self) -> List[str]:
        return super().config_targets() + list(self.options)

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        if self.options:
            return NodeOutcome(targets=list(self.options), data={"branches": len(self.options)})
        return NodeOutcome()


@register_executor_type(
    ExecutorType.FAN_OUT,
    display_name="Fan Out",
    description="Activates every outgoing edge concurrently",
    category=CATEGORY_WORKFLOW,
    config_schema={"properties": {}},
    icon="share-2",
    color="#009688",
)
class FanOutExecutor(BaseExecutor):

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        group = ctx.run.graph.edge_group(self.node_id)
        targets = group.target_ids if group else []
        return NodeOutcome(targets=targets, data={"branches": len(targets)})


@register_executor_type(
    ExecutorType.FAN_IN,
    display_name="Fan In",
    description="Waits for all incoming branches, then continues once",
    category=CATEGORY_WORKFLOW,
    config_schema={
        "properties": {
            "sources": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Executors to wait for (default: all predecessors)",
            },
        },
    },
    output_schema={"type": "object", "description": "source id → latest output"},
    icon="merge",
    color="#009688",
)
class FanInExecutor(BaseExecutor):

    def parse_config(self) -> List[str]:
        sources = self.config.get("sources") or []
        if not isinstance(sources, list):
            raise ValueError("sources must be a list")
        return [str(s) for s in sources]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        return NodeOutcome(output=dict(ctx.inputs), data={"sources": list(ctx.inputs)})
