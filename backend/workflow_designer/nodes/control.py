"""Control-flow executors: branching, loops, jumps and termination.

These executors never call external collaborators. They decide routing by
returning explicit ``targets`` on the NodeOutcome, or leave routing to the
node's edge group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..engine.context import LoopFrame, NodeContext, NodeOutcome
from ..engine.errors import EvaluationError, LoopControlError, UnroutedBranchError
from ..engine.models import ExecutionEventType, ExecutorType
from .registry import CATEGORY_CONTROL_FLOW, BaseExecutor, register_executor_type

logger = logging.getLogger(__name__)


# ─── Condition ───────────────────────────────────────────────────────


@dataclass
class ConditionConfig:
    expression: str
    true_branch_target: Optional[str] = None
    false_branch_target: Optional[str] = None


@register_executor_type(
    ExecutorType.CONDITION,
    display_name="Condition",
    description="Evaluates a boolean expression and branches on the result",
    category=CATEGORY_CONTROL_FLOW,
    config_schema={
        "properties": {
            "expression": {"type": "string", "description": "Boolean expression, e.g. x > 0"},
            "trueBranchTarget": {"type": "string"},
            "falseBranchTarget": {"type": "string"},
        },
        "required": ["expression"],
    },
    output_schema={"type": "boolean"},
    icon="git-branch",
    color="#FF9800",
)
class ConditionExecutor(BaseExecutor):
    """Evaluates ``expression``. Explicit branch targets win over edges.

    Without branch targets the edge group routes; edge conditions ``true`` /
    ``false`` match the boolean result.
    """

    def parse_config(self) -> ConditionConfig:
        return ConditionConfig(
            expression=str(self.config["expression"]),
            true_branch_target=self.config.get("trueBranchTarget") or None,
            false_branch_target=self.config.get("falseBranchTarget") or None,
        )

    def expressions(self) -> List[str]:
        return [self.options.expression]

    def config_targets(self) -> List[str]:
        targets = super().config_targets()
        for target in (self.options.true_branch_target, self.options.false_branch_target):
            if target:
                targets.append(target)
        return targets

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: ConditionConfig = self.options
        result = bool(ctx.evaluate(opts.expression))
        logger.info(f"Condition '{self.node_id}': {opts.expression} → {result}")

        target = opts.true_branch_target if result else opts.false_branch_target
        if target:
            return NodeOutcome(output=result, targets=[target], data={"branch": target})
        if (opts.true_branch_target or opts.false_branch_target) and \
                ctx.run.graph.edge_group(self.node_id) is None:
            raise UnroutedBranchError(self.node_id)
        return NodeOutcome(output=result)


# ─── ConditionGroup ──────────────────────────────────────────────────


@dataclass
class ConditionItem:
    expression: str
    target_executor_id: str


@dataclass
class ConditionGroupConfig:
    conditions: List[ConditionItem] = field(default_factory=list)
    default_target: Optional[str] = None


@register_executor_type(
    ExecutorType.CONDITION_GROUP,
    display_name="Condition Group",
    description="Evaluates conditions in order and jumps to the first match",
    category=CATEGORY_CONTROL_FLOW,
    config_schema={
        "properties": {
            "conditions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "expression": {"type": "string"},
                        "targetExecutorId": {"type": "string"},
                    },
                    "required": ["expression", "targetExecutorId"],
                },
            },
            "defaultTarget": {"type": "string"},
        },
        "required": ["conditions"],
    },
    output_schema={"type": ["integer", "null"], "description": "Index of the matched condition"},
    icon="list-tree",
    color="#FF9800",
)
class ConditionGroupExecutor(BaseExecutor):

    def parse_config(self) -> ConditionGroupConfig:
        raw = self.config.get("conditions") or []
        if not isinstance(raw, list):
            raise ValueError("conditions must be a list")
        items = []
        for i, item in enumerate(raw):
            if not isinstance(item, dict) or not item.get("expression") or not item.get("targetExecutorId"):
                raise ValueError(f"conditions[{i}] needs expression and targetExecutorId")
            items.append(ConditionItem(str(item["expression"]), str(item["targetExecutorId"])))
        return ConditionGroupConfig(
            conditions=items,
            default_target=self.config.get("defaultTarget") or None,
        )

    def expressions(self) -> List[str]:
        return [c.expression for c in self.options.conditions]

    def config_targets(self) -> List[str]:
        targets = super().config_targets()
        targets.extend(c.target_executor_id for c in self.options.conditions)
        if self.options.default_target:
            targets.append(self.options.default_target)
        return targets

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: ConditionGroupConfig = self.options
        for index, condition in enumerate(opts.conditions):
            if ctx.evaluate(condition.expression):
                return NodeOutcome(
                    output=index,
                    targets=[condition.target_executor_id],
                    data={"matched": condition.expression},
                )
        if opts.default_target:
            return NodeOutcome(output=None, targets=[opts.default_target], data={"matched": None})
        if ctx.run.graph.edge_group(self.node_id) is None:
            raise UnroutedBranchError(self.node_id)
        return NodeOutcome(output=None)


# ─── Foreach ─────────────────────────────────────────────────────────


@dataclass
class ForeachConfig:
    items_expression: str
    item_variable_name: str = "item"
    index_variable_name: str = "index"
    body_start_executor_id: Optional[str] = None


def _as_items(value: Any, expression: str) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, dict):
        return [{"key": k, "value": v} for k, v in value.items()]
    raise EvaluationError(
        f"Foreach items '{expression}' must evaluate to a list, got {type(value).__name__}",
        expression,
    )


@register_executor_type(
    ExecutorType.FOREACH,
    display_name="For Each",
    description="Runs the loop body once per item of a collection",
    category=CATEGORY_CONTROL_FLOW,
    config_schema={
        "properties": {
            "itemsExpression": {"type": "string", "description": "Expression producing a list"},
            "itemVariableName": {"type": "string", "default": "item"},
            "indexVariableName": {"type": "string", "default": "index"},
            "bodyStartExecutorId": {"type": "string"},
        },
        "required": ["itemsExpression"],
    },
    output_schema={"type": "null"},
    icon="repeat",
    color="#9C27B0",
)
class ForeachExecutor(BaseExecutor):
    """Iterates by re-entering the loop body for each item.

    The body starts at ``bodyStartExecutorId`` (then the whole edge group is
    the loop exit) or at the first edge of the group (then the remaining
    edges are the exit). Every return to this executor advances the loop.
    """

    def parse_config(self) -> ForeachConfig:
        return ForeachConfig(
            items_expression=str(self.config["itemsExpression"]),
            item_variable_name=self.config.get("itemVariableName") or "item",
            index_variable_name=self.config.get("indexVariableName") or "index",
            body_start_executor_id=self.config.get("bodyStartExecutorId") or None,
        )

    def expressions(self) -> List[str]:
        return [self.options.items_expression]

    def config_targets(self) -> List[str]:
        targets = super().config_targets()
        if self.options.body_start_executor_id:
            targets.append(self.options.body_start_executor_id)
        return targets

    def _body_and_exit(self, ctx: NodeContext):
        group = ctx.run.graph.edge_group(self.node_id)
        edge_targets = group.target_ids if group else []
        if self.options.body_start_executor_id:
            return self.options.body_start_executor_id, None
        if not edge_targets:
            raise LoopControlError(f"Foreach '{self.node_id}' has no loop body")
        return edge_targets[0], edge_targets[1:]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        opts: ForeachConfig = self.options
        body, exit_targets = self._body_and_exit(ctx)

        frame = ctx.current_loop
        if frame is not None and frame.foreach_id == self.node_id:
            # Returning from the body
            frame.index += 1
            stack = ctx.loop_stack
        else:
            items = _as_items(ctx.evaluate(opts.items_expression), opts.items_expression)
            frame = LoopFrame(foreach_id=self.node_id, items=items)
            stack = ctx.loop_stack + (frame,)
            logger.info(f"Foreach '{self.node_id}': {len(items)} item(s)")

        if frame.exhausted:
            iterations = min(frame.index, len(frame.items))
            return NodeOutcome(
                output=None,
                targets=exit_targets,
                loop_stack=stack[:-1],
                data={"iterations": iterations, "broken": frame.broken, "loopCompleted": True},
            )

        item = frame.items[frame.index]
        ctx.variables.set(opts.item_variable_name, item)
        ctx.variables.set(opts.index_variable_name, frame.index)
        await ctx.emit(
            ExecutionEventType.PROGRESS_UPDATE,
            message=f"Iteration {frame.index + 1}/{len(frame.items)}",
            data={"index": frame.index, "total": len(frame.items)},
        )
        return NodeOutcome(
            output=None,
            targets=[body],
            loop_stack=stack,
            data={"index": frame.index, "total": len(frame.items)},
        )


# ─── Loop control ────────────────────────────────────────────────────


def _innermost_loop(ctx: NodeContext, kind: str) -> LoopFrame:
    frame = ctx.current_loop
    if frame is None:
        raise LoopControlError(f"{kind} '{ctx.executor.id}' executed outside of a Foreach loop")
    return frame


@register_executor_type(
    ExecutorType.BREAK_LOOP,
    display_name="Break Loop",
    description="Exits the innermost Foreach loop",
    category=CATEGORY_CONTROL_FLOW,
    config_schema={"properties": {}},
    icon="log-out",
    color="#9C27B0",
)
class BreakLoopExecutor(BaseExecutor):

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        frame = _innermost_loop(ctx, "BreakLoop")
        frame.broken = True
        return NodeOutcome(targets=[frame.foreach_id])


@register_executor_type(
    ExecutorType.CONTINUE_LOOP,
    display_name="Continue Loop",
    description="Skips to the next item of the innermost Foreach loop",
    category=CATEGORY_CONTROL_FLOW,
    config_schema={"properties": {}},
    icon="skip-forward",
    color="#9C27B0",
)
class ContinueLoopExecutor(BaseExecutor):

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        frame = _innermost_loop(ctx, "ContinueLoop")
        return NodeOutcome(targets=[frame.foreach_id])


# ─── Goto ────────────────────────────────────────────────────────────


@register_executor_type(
    [ExecutorType.GOTO, ExecutorType.GOTO_ACTION],
    display_name="Goto",
    description="Jumps to another executor, bypassing edges",
    category=CATEGORY_CONTROL_FLOW,
    config_schema={
        "properties": {"targetExecutorId": {"type": "string"}},
        "required": ["targetExecutorId"],
    },
    icon="corner-down-right",
    color="#FF9800",
)
class GotoExecutor(BaseExecutor):

    def parse_config(self) -> str:
        return str(self.config["targetExecutorId"])

    def config_targets(self) -> List[str]:
        return super().config_targets() + [self.options]

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        return NodeOutcome(targets=[self.options], data={"target": self.options})


# ─── End ─────────────────────────────────────────────────────────────


@register_executor_type(
    [ExecutorType.END_WORKFLOW, ExecutorType.END_CONVERSATION],
    display_name="End",
    description="Completes the workflow immediately, discarding other active branches",
    category=CATEGORY_CONTROL_FLOW,
    config_schema={
        "properties": {
            "output": {"description": "Optional output value, expression (=...) or template"},
        },
    },
    icon="square",
    color="#F44336",
)
class EndWorkflowExecutor(BaseExecutor):

    def templates(self) -> List[str]:
        output = self.config.get("output")
        if isinstance(output, str) and not output.strip().startswith("="):
            return [output]
        return []

    def expressions(self) -> List[str]:
        output = self.config.get("output")
        if isinstance(output, str) and output.strip().startswith("="):
            return [output]
        return []

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        output = self.config.get("output")
        if output is not None:
            output = ctx.resolve(output)
        return NodeOutcome(output=output, end_workflow=True)
