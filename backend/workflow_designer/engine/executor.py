"""Declarative Workflow Execution Engine

Runs a validated ExecutorGraph as a sequence of supersteps:

1. The active set starts with the start executor
2. Every activation of the active set is dispatched concurrently
3. Outcomes are applied in activation order: routing produces the next
   active set, FanIn barriers absorb arrivals until complete
4. The run ends when the active set is empty, EndWorkflow runs, a node
   fails (fail-fast), maxIterations is hit or the caller cancels

Events flow to the caller through an EventSink; ``ExecutionRun`` is the
caller-side handle (async iterable of events + final result).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

from .. import settings
from ..logging_config import get_engine_logger
from ..nodes.registry import BaseExecutor
from .context import Activation, ConversationMessage, NodeContext, NodeOutcome, RunState
from .errors import (
    ExecutionStalledError,
    IterationLimitExceeded,
    UnroutedBranchError,
    WorkflowCancelledError,
    WorkflowError,
)
from .events import EventSink
from .graph_builder import BOOLEAN_CONDITIONS, build_graph
from .models import (
    DeclarativeExecutionResult,
    DeclarativeExecutionStep,
    DeclarativeWorkflowDefinition,
    EdgeDefinition,
    EdgeGroupType,
    ExecutionEvent,
    ExecutionEventType,
    ExecutionStatus,
)
from .safe_eval import is_truthy_condition
from .variables import VariableStore

logger = logging.getLogger(__name__)

# Variable set before routing to a node's onErrorTarget
LAST_ERROR_VARIABLE = "lastError"


@dataclass
class _Dispatched:
    """Result of one executor dispatch inside a superstep."""

    activation: Activation
    executor: BaseExecutor
    outcome: Optional[NodeOutcome] = None
    next_activations: List[Activation] = field(default_factory=list)
    error: Optional[BaseException] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_type(error: BaseException) -> str:
    return getattr(error, "error_type", type(error).__name__)


def _as_messages(conversation: Optional[Iterable[Any]]) -> Optional[List[ConversationMessage]]:
    """Convert entries to ConversationMessage; a caller list is updated in place."""
    if conversation is None:
        return None
    messages = []
    for item in conversation:
        if isinstance(item, ConversationMessage):
            messages.append(item)
        elif isinstance(item, Mapping):
            messages.append(ConversationMessage(
                role=str(item.get("role") or "user"),
                content=str(item.get("content") or ""),
                name=item.get("name"),
            ))
        else:
            raise ValueError(f"conversation entries must be messages or mappings, got {type(item).__name__}")
    if isinstance(conversation, list):
        conversation[:] = messages
        return conversation
    return messages


class ExecutionRun:
    """Caller-side handle of one execution.

    Iterate it (once) to receive ExecutionEvents as they happen, or await
    ``result()`` to run to completion. The run starts on first use.
    """

    def __init__(self, engine: "WorkflowEngine", state: RunState, result: DeclarativeExecutionResult):
        self._engine = engine
        self._state = state
        self._result = result
        self._task: Optional[asyncio.Task] = None
        self._iterator = None
        self._iterated = False
        self._closed = False
        self.events: List[ExecutionEvent] = []

    @property
    def run_id(self) -> str:
        return self._result.run_id

    @property
    def definition(self) -> DeclarativeWorkflowDefinition:
        return self._state.definition

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def _ensure_started(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._engine._drive(self._state, self._result))

    def __aiter__(self) -> "ExecutionRun":
        if self._iterated:
            raise RuntimeError("ExecutionRun events can only be consumed once")
        self._iterated = True
        self._ensure_started()
        self._iterator = self._state.sink.__aiter__()
        return self

    async def __anext__(self) -> ExecutionEvent:
        if self._closed:
            raise StopAsyncIteration
        event = await self._iterator.__anext__()
        self.events.append(event)
        return event

    async def aclose(self) -> None:
        """Stop consuming: drop buffered events and cancel the run cooperatively."""
        if self._closed:
            return
        self._closed = True
        self._state.sink.detach()
        self.cancel()

    def cancel(self) -> None:
        """Request cancellation; honoured at the next superstep boundary."""
        self._state.cancel_event.set()

    async def result(self) -> DeclarativeExecutionResult:
        if not self._iterated:
            async for _ in self:
                pass
        elif not self._closed:
            # Iteration stopped early; keep draining so the producer never blocks
            while True:
                try:
                    await self.__anext__()
                except StopAsyncIteration:
                    break
        self._ensure_started()
        return await self._task


class WorkflowEngine:
    """Executes declarative workflow definitions.

    Collaborators are optional; an executor that needs a missing one fails
    with ExternalCallError.
    """

    def __init__(
        self,
        agent_invoker=None,
        tool_invoker=None,
        human_input=None,
        workflow_resolver=None,
        global_variables: Optional[Mapping[str, Any]] = None,
        event_queue_size: int = settings.EVENT_QUEUE_MAXSIZE,
    ):
        self.agent_invoker = agent_invoker
        self.tool_invoker = tool_invoker
        self.human_input = human_input
        self.workflow_resolver = workflow_resolver
        self.global_variables = dict(global_variables or {})
        self.event_queue_size = event_queue_size
        self._log = get_engine_logger()

    # ─── Public API ──────────────────────────────────────────────────

    def execute(
        self,
        definition: DeclarativeWorkflowDefinition,
        inputs: Optional[Mapping[str, Any]] = None,
        *,
        conversation_variables: Optional[MutableMapping[str, Any]] = None,
        conversation: Optional[Iterable[Any]] = None,
        run_id: Optional[str] = None,
        depth: int = 0,
    ) -> ExecutionRun:
        """Validate ``definition`` and prepare a run.

        Raises:
            GraphValidationError: Before any event is produced
        """
        graph = build_graph(definition)
        variables = VariableStore(
            definition.variables,
            inputs,
            conversation=conversation_variables,
            global_variables=self.global_variables,
        )
        sink = EventSink(maxsize=self.event_queue_size)
        state = RunState(
            self, definition, graph, variables, sink,
            conversation=_as_messages(conversation), depth=depth,
        )
        result = DeclarativeExecutionResult(
            workflow_id=definition.id,
            workflow_name=definition.name,
            run_id=run_id or str(uuid.uuid4()),
        )
        return ExecutionRun(self, state, result)

    async def run(
        self,
        definition: DeclarativeWorkflowDefinition,
        inputs: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> DeclarativeExecutionResult:
        """Run to completion and return the result (events are buffered)."""
        return await self.execute(definition, inputs, **kwargs).result()

    def run_sync(
        self,
        definition: DeclarativeWorkflowDefinition,
        inputs: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> DeclarativeExecutionResult:
        return asyncio.run(self.run(definition, inputs, **kwargs))

    # ─── Run lifecycle ───────────────────────────────────────────────

    async def _emit(
        self,
        run: RunState,
        event_type: ExecutionEventType,
        status: ExecutionStatus,
        node_id: Optional[str] = None,
        node_name: Optional[str] = None,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        await run.sink.emit(ExecutionEvent(
            type=event_type,
            status=status,
            node_id=node_id,
            node_name=node_name,
            message=message,
            data=data,
        ))

    async def _drive(self, run: RunState, result: DeclarativeExecutionResult) -> DeclarativeExecutionResult:
        """Own the run from WorkflowStarted to the terminal event."""
        definition = run.definition
        result.status = ExecutionStatus.RUNNING
        result.started_at = _utcnow()
        self._log.info(f"[{result.run_id}] Workflow '{definition.name}' started")
        try:
            await self._emit(
                run, ExecutionEventType.WORKFLOW_STARTED, ExecutionStatus.RUNNING,
                message=f"Workflow '{definition.name}' started",
                data={"runId": result.run_id, "workflowId": definition.id},
            )
            try:
                await self._traverse(run, result)
                result.status = ExecutionStatus.COMPLETED
            except WorkflowCancelledError as e:
                result.status = ExecutionStatus.CANCELLED
                result.error_message = str(e)
                result.error_type = e.error_type
            except WorkflowError as e:
                result.status = ExecutionStatus.FAILED
                result.error_message = str(e)
                result.error_type = e.error_type
            except Exception as e:
                logger.exception(f"[{result.run_id}] Unexpected engine error")
                result.status = ExecutionStatus.FAILED
                result.error_message = str(e) or type(e).__name__
                result.error_type = type(e).__name__

            result.completed_at = _utcnow()
            result.variables = run.variables.snapshot()

            if result.status == ExecutionStatus.COMPLETED:
                self._log.info(
                    f"[{result.run_id}] Workflow '{definition.name}' completed "
                    f"in {result.iterations} superstep(s), {result.duration_ms}ms"
                )
                await self._emit(
                    run, ExecutionEventType.WORKFLOW_COMPLETED, ExecutionStatus.COMPLETED,
                    message=f"Workflow '{definition.name}' completed",
                    data={"output": result.output, "durationMs": result.duration_ms},
                )
            else:
                self._log.error(
                    f"[{result.run_id}] Workflow '{definition.name}' "
                    f"{result.status.value.lower()}: {result.error_message}"
                )
                await self._emit(
                    run, ExecutionEventType.WORKFLOW_FAILED, result.status,
                    message=result.error_message,
                    data={"errorType": result.error_type, "durationMs": result.duration_ms},
                )
        finally:
            await run.sink.close()
        return result

    async def _traverse(self, run: RunState, result: DeclarativeExecutionResult) -> None:
        graph = run.graph
        max_iterations = run.definition.max_iterations
        active: List[Activation] = [Activation(graph.start_id)]
        iteration = 0

        while active:
            if run.cancel_event.is_set():
                raise WorkflowCancelledError()
            if iteration >= max_iterations:
                raise IterationLimitExceeded(max_iterations)
            iteration += 1
            result.iterations = iteration

            steps = []
            for activation in active:
                executor = graph.node(activation.executor_id)
                step = DeclarativeExecutionStep(
                    executor_id=executor.node_id,
                    executor_name=executor.name,
                    executor_type=executor.executor_type,
                )
                steps.append(step)
                result.steps.append(step)
                result.executed_nodes.append(executor.node_id)

            dispatched = await asyncio.gather(
                *(self._dispatch(run, activation, step) for activation, step in zip(active, steps))
            )

            next_active: List[Activation] = []
            failure: Optional[BaseException] = None
            for item in dispatched:
                if item.error is not None:
                    target = item.executor.on_error_target
                    if target:
                        run.variables.set(LAST_ERROR_VARIABLE, {
                            "executorId": item.executor.node_id,
                            "message": str(item.error),
                            "errorType": _error_type(item.error),
                        })
                        next_active.append(Activation(
                            target, item.activation.loop_stack, source_id=item.executor.node_id,
                        ))
                    elif failure is None:
                        failure = item.error
                    continue

                self._record_output(run, result, item)
                if item.outcome.end_workflow:
                    if failure is not None:
                        raise failure
                    if item.outcome.output is not None:
                        result.output = item.outcome.output
                    return
                for activation in item.next_activations:
                    await self._arrive(run, item, activation, next_active)

            if failure is not None:
                raise failure
            active = next_active

        for barrier_id, arrivals in run.barrier_arrivals.items():
            if arrivals:
                missing = [s for s in graph.barrier_sources(barrier_id) if s not in arrivals]
                raise ExecutionStalledError(barrier_id, missing)

    # ─── Superstep pieces ────────────────────────────────────────────

    async def _dispatch(self, run: RunState, activation: Activation, step: DeclarativeExecutionStep) -> _Dispatched:
        executor = run.graph.node(activation.executor_id)
        definition = run.graph.definition(activation.executor_id)
        item = _Dispatched(activation=activation, executor=executor)

        await self._emit(
            run, ExecutionEventType.NODE_STARTED, ExecutionStatus.RUNNING,
            node_id=executor.node_id, node_name=executor.name,
            data={"executorType": executor.executor_type.value},
        )
        ctx = NodeContext(run, definition, activation)
        try:
            outcome = await executor.execute(ctx)
            if outcome is None:
                outcome = NodeOutcome()
            item.outcome = outcome
            if not outcome.end_workflow:
                item.next_activations = self._route(run, executor, activation, outcome)
        except WorkflowError as e:
            item.error = e
        except Exception as e:
            logger.exception(f"Executor '{executor.node_id}' raised an unexpected error")
            item.error = e

        step.completed_at = _utcnow()
        if item.error is not None:
            step.status = ExecutionStatus.FAILED
            step.error = str(item.error)
            logger.error(f"Executor '{executor.node_id}' failed: {item.error}")
            await self._emit(
                run, ExecutionEventType.NODE_FAILED, ExecutionStatus.FAILED,
                node_id=executor.node_id, node_name=executor.name,
                message=str(item.error),
                data={"errorType": _error_type(item.error)},
            )
        else:
            step.status = ExecutionStatus.COMPLETED
            step.output = item.outcome.output
            logger.info(f"Executor '{executor.node_id}' ({executor.executor_type.value}) completed")
            await self._emit(
                run, ExecutionEventType.NODE_COMPLETED, ExecutionStatus.COMPLETED,
                node_id=executor.node_id, node_name=executor.name,
                data={"output": item.outcome.output, **item.outcome.data},
            )
        return item

    def _route(
        self,
        run: RunState,
        executor: BaseExecutor,
        activation: Activation,
        outcome: NodeOutcome,
    ) -> List[Activation]:
        """Next activations for a completed executor.

        Raises:
            UnroutedBranchError: SwitchCase group with no matching edge
            EvaluationError: An edge condition failed to evaluate
        """
        stack = outcome.loop_stack if outcome.loop_stack is not None else activation.loop_stack
        if outcome.targets is not None:
            target_ids = list(outcome.targets)
        else:
            target_ids = self._route_edges(run, executor, outcome.output)

        if not target_ids and stack:
            # Path ends inside a loop body: hand control back to the loop head
            return [Activation(stack[-1].foreach_id, stack, source_id=executor.node_id)]
        return [Activation(t, stack, source_id=executor.node_id) for t in target_ids]

    def _route_edges(self, run: RunState, executor: BaseExecutor, output: Any) -> List[str]:
        group = run.graph.edge_group(executor.node_id)
        if group is None or not group.edges:
            return []
        if group.type == EdgeGroupType.FAN_IN:
            return group.target_ids

        context = run.variables.as_context()
        context["result"] = output

        def holds(edge: EdgeDefinition) -> bool:
            if not edge.condition:
                return True
            literal = edge.condition.strip().lower()
            if literal in BOOLEAN_CONDITIONS:
                return bool(output) == BOOLEAN_CONDITIONS[literal]
            return is_truthy_condition(edge.condition, context)

        if group.type == EdgeGroupType.SINGLE:
            first = group.edges[0]
            return [first.target_executor_id] if holds(first) else []
        if group.type == EdgeGroupType.FAN_OUT:
            return [e.target_executor_id for e in group.edges if holds(e)]

        # SwitchCase: first matching condition, then the first unconditional edge
        for edge in group.edges:
            if edge.condition and holds(edge):
                return [edge.target_executor_id]
        for edge in group.edges:
            if not edge.condition:
                return [edge.target_executor_id]
        raise UnroutedBranchError(executor.node_id)

    def _record_output(self, run: RunState, result: DeclarativeExecutionResult, item: _Dispatched) -> None:
        executor_id = item.executor.node_id
        output = item.outcome.output
        run.node_outputs[executor_id] = output
        output_executor_id = run.definition.output_executor_id
        if output_executor_id:
            if executor_id == output_executor_id:
                result.output = output
        elif output is not None:
            result.output = output

    async def _arrive(
        self,
        run: RunState,
        item: _Dispatched,
        activation: Activation,
        next_active: List[Activation],
    ) -> None:
        """Add ``activation`` to the next active set, or hold it at a barrier."""
        graph = run.graph
        target_id = activation.executor_id
        source_id = item.executor.node_id
        expected = graph.barrier_sources(target_id)
        if not graph.is_barrier(target_id) or source_id not in expected:
            next_active.append(activation)
            return

        arrivals = run.barrier_arrivals.setdefault(target_id, {})
        arrivals[source_id] = item.outcome.output
        missing = [s for s in expected if s not in arrivals]
        if missing:
            target = graph.node(target_id)
            await self._emit(
                run, ExecutionEventType.LOG_MESSAGE, ExecutionStatus.RUNNING,
                node_id=target_id, node_name=target.name,
                message=f"Waiting for {', '.join(missing)}",
                data={"arrived": list(arrivals), "missing": missing},
            )
            return

        inputs = {s: arrivals[s] for s in expected}
        del run.barrier_arrivals[target_id]
        next_active.append(Activation(
            target_id, activation.loop_stack, source_id=source_id, inputs=inputs,
        ))
