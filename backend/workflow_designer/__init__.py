"""Declarative workflow designer package.

Subpackages:
- engine: Data model, graph validation, expression evaluation, execution
- nodes: Executor type registry and implementations per executor kind
- agents: External collaborators (Claude CLI agents, HTTP tools, human input)

Modules:
- yaml_conversion: YAML import/export of workflow definitions
"""
