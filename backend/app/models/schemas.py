"""Pydantic schemas for the declarative workflow API.

Workflow definitions themselves travel as camelCase JSON and are parsed by
``DeclarativeWorkflowDefinition.from_dict``; these models cover the request
and response envelopes around them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serialises with camelCase aliases, accepts either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PagedWorkflowsResponse(CamelModel):
    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int


class ValidationResponse(CamelModel):
    is_valid: bool
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)


class YamlRequest(BaseModel):
    """YAML text posted by the designer."""
    yaml: str = Field(..., min_length=1)


class YamlResponse(BaseModel):
    yaml: str


class ExecuteRequest(CamelModel):
    """Body of POST /{id}/execute and /{id}/execute-stream."""
    input: Optional[str] = Field(None, description="Alias of userInput")
    user_input: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)

    def to_inputs(self) -> Dict[str, Any]:
        inputs = dict(self.parameters)
        text = self.user_input if self.user_input is not None else self.input
        if text is not None:
            inputs["userInput"] = text
        return inputs


class ExecutionLogResponse(CamelModel):
    id: str
    workflow_id: str
    status: str
    input_parameters: Optional[Dict[str, Any]] = None
    output: Optional[Any] = None
    steps: Optional[List[Dict[str, Any]]] = None
    variables: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    started_at: str
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = None
