"""Workflow runtime settings: tunable parameters for declarative execution.

All values read from environment variables with sensible defaults.
Import from here instead of hardcoding.

Infrastructure config (API host, CLI path, CORS) stays in
workflow_designer/config.py.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Execution Engine
# =====================================================================

# Traversal budget used when a definition does not declare maxIterations
DEFAULT_MAX_ITERATIONS = _int("DEFAULT_MAX_ITERATIONS", 100)

# Bounded event queue between engine (producer) and caller (consumer).
# A full queue blocks the engine until the consumer catches up.
EVENT_QUEUE_MAXSIZE = _int("EVENT_QUEUE_MAXSIZE", 256)

# Nested SubWorkflow executions allowed before failing the node
MAX_SUBWORKFLOW_DEPTH = _int("MAX_SUBWORKFLOW_DEPTH", 5)


# =====================================================================
# Expression Evaluator
# =====================================================================

# Maximum expression length to prevent abuse
MAX_EXPRESSION_LENGTH = _int("MAX_EXPRESSION_LENGTH", 500)


# =====================================================================
# External Collaborators (agents, tools)
# =====================================================================

# Per-call timeout for agent invocations (seconds)
AGENT_TIMEOUT = _float("AGENT_TIMEOUT", 300.0)

# HTTP tool calls (OpenAPI / MCP)
TOOL_HTTP_TIMEOUT = _float("TOOL_HTTP_TIMEOUT", 30.0)
TOOL_HTTP_MAX_CONNECTIONS = _int("TOOL_HTTP_MAX_CONNECTIONS", 10)
TOOL_HTTP_MAX_KEEPALIVE = _int("TOOL_HTTP_MAX_KEEPALIVE", 5)

# Protocol version offered in the MCP initialize request
MCP_PROTOCOL_VERSION = _str("MCP_PROTOCOL_VERSION", "2025-06-18")


# =====================================================================
# SSE Streaming
# =====================================================================

# Seconds between keepalive comments on an idle execute-stream connection
SSE_KEEPALIVE_INTERVAL = _float("SSE_KEEPALIVE_INTERVAL", 15.0)

# Default conversation role for AddConversationMessage
DEFAULT_MESSAGE_ROLE = _str("DEFAULT_MESSAGE_ROLE", "user")
