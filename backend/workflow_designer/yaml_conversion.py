"""YAML import/export for declarative workflow definitions.

Three layouts are accepted on import:

- the workflow layout written by ``definition_to_yaml`` (``kind: Workflow``
  with top-level ``executors`` and ``edges``)
- the camelCase JSON layout of ``DeclarativeWorkflowDefinition.to_dict``
- a linear ``trigger.actions`` list, chained with Single edges in order

Export always writes the workflow layout. Designer positions are kept
under ``metadata.layout`` so a round trip preserves them.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

import yaml

from .engine.models import (
    DeclarativeWorkflowDefinition,
    EdgeDefinition,
    EdgeGroupDefinition,
    EdgeGroupType,
    ExecutorDefinition,
    Position,
    VariableDefinition,
    parse_max_iterations,
)

logger = logging.getLogger(__name__)

WORKFLOW_KIND = "Workflow"

# Vertical spacing of auto-laid-out executors
_LAYOUT_STEP_Y = 150.0
_LAYOUT_X = 250.0


class YamlConversionError(ValueError):
    """YAML text could not be turned into a workflow definition."""


# ─── Export ──────────────────────────────────────────────────────────


def _edge_group_to_yaml(group: EdgeGroupDefinition) -> Dict[str, Any]:
    targets = []
    for edge in group.edges:
        target: Dict[str, Any] = {"target": edge.target_executor_id}
        if edge.condition:
            target["condition"] = edge.condition
        if edge.label:
            target["label"] = edge.label
        targets.append(target)
    return {"source": group.source_executor_id, "type": group.type.value, "targets": targets}


def definition_to_dict(definition: DeclarativeWorkflowDefinition) -> Dict[str, Any]:
    """Workflow-layout mapping ready for ``yaml.safe_dump``."""
    metadata = dict(definition.metadata)
    metadata["layout"] = {e.id: e.position.to_dict() for e in definition.executors}

    document: Dict[str, Any] = {
        "kind": WORKFLOW_KIND,
        "id": definition.id,
        "name": definition.name,
        "description": definition.description,
        "version": definition.version,
        "startExecutor": definition.start_executor_id,
        "maxIterations": definition.max_iterations,
    }
    if definition.output_executor_id:
        document["outputExecutor"] = definition.output_executor_id
    if definition.variables:
        document["variables"] = [
            {
                "name": v.name,
                "type": v.type,
                "scope": v.scope.value,
                "default": v.default_value,
                **({"description": v.description} if v.description else {}),
            }
            for v in definition.variables
        ]
    document["executors"] = [
        {
            "id": e.id,
            "type": e.type.value,
            "name": e.name,
            **({"description": e.description} if e.description else {}),
            "config": dict(e.config),
        }
        for e in definition.executors
    ]
    document["edges"] = [_edge_group_to_yaml(g) for g in definition.edge_groups]
    if definition.input_spec:
        document["inputSpec"] = definition.input_spec
    if definition.output_spec:
        document["outputSpec"] = definition.output_spec
    document["metadata"] = metadata
    return document


def definition_to_yaml(definition: DeclarativeWorkflowDefinition) -> str:
    return yaml.safe_dump(
        definition_to_dict(definition),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def preview_yaml(definition: DeclarativeWorkflowDefinition) -> str:
    """YAML shown in the designer's live preview panel."""
    return definition_to_yaml(definition)


# ─── Import ──────────────────────────────────────────────────────────


def definition_from_yaml(text: str) -> DeclarativeWorkflowDefinition:
    """Parse YAML (or JSON, which is valid YAML) into a definition.

    Raises:
        YamlConversionError: Invalid YAML, non-mapping root, no executors,
            unknown executor/edge/scope types
    """
    if not text or not text.strip():
        raise YamlConversionError("YAML document is empty")
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise YamlConversionError(f"Invalid YAML: {e}") from e
    if not isinstance(document, dict):
        raise YamlConversionError("YAML root must be a mapping")
    return definition_from_dict(document)


def definition_from_dict(document: Dict[str, Any]) -> DeclarativeWorkflowDefinition:
    try:
        if "edgeGroups" in document or "startExecutorId" in document:
            definition = DeclarativeWorkflowDefinition.from_dict(document)
        elif "executors" in document:
            definition = _from_workflow_layout(document)
        elif isinstance(document.get("trigger"), dict) or "actions" in document:
            definition = _from_actions(document)
        else:
            raise YamlConversionError("Workflow YAML has no executors")
    except YamlConversionError:
        raise
    except (ValueError, TypeError, KeyError) as e:
        raise YamlConversionError(str(e)) from e

    if not definition.executors:
        raise YamlConversionError("Workflow YAML has no executors")
    return definition


def _from_workflow_layout(document: Dict[str, Any]) -> DeclarativeWorkflowDefinition:
    metadata = dict(document.get("metadata") or {})
    layout = metadata.get("layout") or {}

    raw_executors = document.get("executors") or []
    if not isinstance(raw_executors, list):
        raise YamlConversionError("executors must be a list")
    executors = []
    for index, raw in enumerate(raw_executors):
        if not isinstance(raw, dict) or not raw.get("id") or not raw.get("type"):
            raise YamlConversionError(f"executors[{index}] needs id and type")
        position = layout.get(raw["id"]) or {"x": _LAYOUT_X, "y": index * _LAYOUT_STEP_Y}
        executors.append(ExecutorDefinition.from_dict({
            "id": raw["id"],
            "type": raw["type"],
            "name": raw.get("name"),
            "description": raw.get("description"),
            "config": raw.get("config") or {},
            "position": position,
        }))

    edge_groups = []
    for index, raw in enumerate(document.get("edges") or []):
        if not isinstance(raw, dict) or not raw.get("source"):
            raise YamlConversionError(f"edges[{index}] needs a source")
        edges = []
        for target in raw.get("targets") or []:
            if isinstance(target, str):
                target = {"target": target}
            edges.append(EdgeDefinition(
                id=str(uuid.uuid4()),
                target_executor_id=str(target.get("target") or ""),
                condition=target.get("condition") or None,
                label=target.get("label") or None,
            ))
        edge_groups.append(EdgeGroupDefinition(
            id=raw.get("id") or str(uuid.uuid4()),
            type=raw.get("type") or EdgeGroupType.SINGLE,
            source_executor_id=str(raw["source"]),
            edges=edges,
        ))

    variables = [
        VariableDefinition(
            name=str(raw.get("name") or ""),
            type=raw.get("type") or "string",
            scope=raw.get("scope") or "Workflow",
            default_value=raw.get("default", raw.get("defaultValue")),
            description=raw.get("description") or "",
        )
        for raw in document.get("variables") or []
    ]

    metadata.pop("layout", None)
    start = document.get("startExecutor") or (executors[0].id if executors else "")
    kwargs: Dict[str, Any] = {}
    if document.get("id"):
        kwargs["id"] = str(document["id"])
    return DeclarativeWorkflowDefinition(
        name=document.get("name") or "Imported workflow",
        description=document.get("description") or "",
        version=str(document.get("version") or "1.0.0"),
        start_executor_id=start,
        max_iterations=parse_max_iterations(document.get("maxIterations")),
        output_executor_id=document.get("outputExecutor") or None,
        executors=executors,
        edge_groups=edge_groups,
        variables=variables,
        input_spec=dict(document.get("inputSpec") or {}),
        output_spec=dict(document.get("outputSpec") or {}),
        metadata=metadata,
        **kwargs,
    )


def _from_actions(document: Dict[str, Any]) -> DeclarativeWorkflowDefinition:
    trigger = document.get("trigger") or {}
    actions = trigger.get("actions") if trigger else document.get("actions")
    if not isinstance(actions, list):
        raise YamlConversionError("actions must be a list")

    executors: List[ExecutorDefinition] = []
    edge_groups: List[EdgeGroupDefinition] = []
    previous: Optional[str] = None
    for index, action in enumerate(actions):
        if not isinstance(action, dict) or not action.get("kind"):
            raise YamlConversionError(f"actions[{index}] needs a kind")
        executor_id = str(action.get("id") or f"action_{index + 1}")
        config = {k: v for k, v in action.items() if k not in ("kind", "id", "displayName")}
        executors.append(ExecutorDefinition(
            id=executor_id,
            type=action["kind"],
            name=action.get("displayName") or executor_id,
            position=Position(x=_LAYOUT_X, y=index * _LAYOUT_STEP_Y),
            config=config,
        ))
        if previous is not None:
            edge_groups.append(EdgeGroupDefinition(
                id=str(uuid.uuid4()),
                type=EdgeGroupType.SINGLE,
                source_executor_id=previous,
                edges=[EdgeDefinition(id=str(uuid.uuid4()), target_executor_id=executor_id)],
            ))
        previous = executor_id

    logger.info(f"Imported linear workflow with {len(executors)} action(s)")
    return DeclarativeWorkflowDefinition(
        name=str(trigger.get("id") or document.get("name") or "Imported workflow"),
        description=document.get("description") or "",
        start_executor_id=executors[0].id if executors else "",
        executors=executors,
        edge_groups=edge_groups,
    )
