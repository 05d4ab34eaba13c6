"""Command-line runner for declarative workflows.

Usage:
    python -m workflow_designer run flow.yaml --param topic=rust --input "hello"
    python -m workflow_designer run flow.yaml --workflow-dir flows/
    python -m workflow_designer serve --port 8000

``run`` prints one JSON line per execution event, then the result JSON.
Exit code: 0 completed, 1 failed or cancelled, 2 invalid definition.
SubWorkflow executors resolve ``workflowId`` against the definitions found
in ``--workflow-dir``; without it they fail with ExternalCallError.

``serve`` starts the designer API (app.main:app) under uvicorn.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .agents import ClaudeCliAgentInvoker, HttpToolInvoker, InMemoryWorkflowResolver
from .config import API_HOST, API_PORT
from .engine import DeclarativeWorkflowDefinition, GraphValidationError, WorkflowEngine
from .engine.events import event_to_json
from .engine.models import DeclarativeExecutionResult
from .yaml_conversion import YamlConversionError, definition_from_yaml

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_INVALID = 2

WORKFLOW_SUFFIXES = (".yaml", ".yml", ".json")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="workflow_designer", description="Run declarative workflows",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute a workflow file (YAML or JSON)")
    run.add_argument("file", help="Workflow definition file")
    run.add_argument(
        "--param", action="append", default=[], metavar="KEY=VALUE",
        help="Input parameter; VALUE is parsed as JSON when possible (repeatable)",
    )
    run.add_argument("--input", default=None, help="User input exposed as the userInput variable")
    run.add_argument(
        "--max-iterations", type=int, default=None,
        help="Override the definition's maxIterations",
    )
    run.add_argument(
        "--workflow-dir", default=None, metavar="DIR",
        help="Directory of workflow files (YAML or JSON) that SubWorkflow executors resolve by id",
    )

    serve = sub.add_parser("serve", help="Start the designer HTTP API")
    serve.add_argument("--host", default=API_HOST)
    serve.add_argument("--port", type=int, default=API_PORT)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    return parser.parse_args(argv)


def parse_params(pairs: List[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"--param expects KEY=VALUE, got '{pair}'")
        try:
            params[key] = json.loads(raw)
        except json.JSONDecodeError:
            params[key] = raw
    return params


def load_workflow_dir(directory: str) -> InMemoryWorkflowResolver:
    """Resolver over every workflow file in ``directory``, keyed by definition id.

    Raises:
        OSError: The directory cannot be read
        YamlConversionError: A file is not a valid definition
    """
    resolver = InMemoryWorkflowResolver()
    for path in sorted(Path(directory).iterdir()):
        if not path.is_file() or path.suffix.lower() not in WORKFLOW_SUFFIXES:
            continue
        try:
            resolver.add(definition_from_yaml(path.read_text(encoding="utf-8")))
        except YamlConversionError as e:
            raise YamlConversionError(f"{path.name}: {e}") from e
    return resolver


async def run_workflow(
    definition: DeclarativeWorkflowDefinition,
    inputs: Dict[str, Any],
    workflow_resolver: Optional[InMemoryWorkflowResolver] = None,
) -> DeclarativeExecutionResult:
    tools = HttpToolInvoker()
    engine = WorkflowEngine(
        agent_invoker=ClaudeCliAgentInvoker(),
        tool_invoker=tools,
        workflow_resolver=workflow_resolver,
    )
    try:
        execution = engine.execute(definition, inputs)
        async for event in execution:
            print(event_to_json(event), flush=True)
        return await execution.result()
    finally:
        await tools.aclose()


def serve(host: str, port: int, reload: bool = False) -> None:
    import uvicorn

    uvicorn.run("app.main:app", host=host, port=port, reload=reload)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.command == "serve":
        serve(args.host, args.port, reload=args.reload)
        return EXIT_COMPLETED

    try:
        definition = definition_from_yaml(Path(args.file).read_text(encoding="utf-8"))
        inputs = parse_params(args.param)
        resolver = load_workflow_dir(args.workflow_dir) if args.workflow_dir else None
    except (OSError, YamlConversionError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID
    if args.input is not None:
        inputs["userInput"] = args.input
    if args.max_iterations is not None:
        definition.max_iterations = args.max_iterations

    try:
        result = asyncio.run(run_workflow(definition, inputs, resolver))
    except GraphValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        for issue in e.issues:
            print(f"  [{issue.code}] {issue.message}", file=sys.stderr)
        return EXIT_INVALID

    print(json.dumps(result.to_dict(), ensure_ascii=False, default=str))
    return EXIT_COMPLETED if result.succeeded else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
