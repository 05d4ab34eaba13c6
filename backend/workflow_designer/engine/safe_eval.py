"""Safe Expression Evaluator and Template Renderer

Uses Python's ast module to parse and evaluate expressions in a restricted
sandbox. Only allows safe operations: comparisons, boolean logic, literals,
arithmetic, dict-like field access and a short list of pure helper
functions. No imports, lambdas, attribute calls or arbitrary code.

Supported expressions:
- Comparisons: x > 10, status == "success", count != 0, "a" in tags
- Boolean logic: x > 0 and y < 100, not is_error
- Literals: "string", 42, 3.14, true, false, null
- Field access: order["total"], result.status (dict dot access)
- Arithmetic: x + 1, total / count, index % 2
- Helpers: len(items), upper(name), max(a, b)

A leading ``=`` (as written by the designer for formula values) is ignored.

Templates embed expressions as ``{{ expr }}`` inside plain text:
    "Hello {{ user.name }}, you have {{ len(items) }} items"
"""

from __future__ import annotations

import ast
import json
import logging
import operator
import re
from typing import Any, Callable, Dict, List

from .. import settings
from .errors import EvaluationError

logger = logging.getLogger(__name__)

MAX_EXPRESSION_LENGTH = settings.MAX_EXPRESSION_LENGTH

_TEMPLATE_PATTERN = re.compile(r"\{\{\s*(.+?)\s*\}\}", re.DOTALL)

_SAFE_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_SAFE_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_SAFE_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_SAFE_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
    "strip": lambda s: str(s).strip(),
}

_NAME_ALIASES = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "none": None,
    "None": None,
    "null": None,
}


def _normalize(expression: str) -> str:
    expression = expression.strip()
    if expression.startswith("="):
        expression = expression[1:].strip()
    return expression


def safe_eval(expression: str, context: Dict[str, Any]) -> Any:
    """Safely evaluate an expression against a context dictionary.

    Args:
        expression: The expression string to evaluate
        context: Dictionary of variable names to values (never mutated)

    Returns:
        The result of evaluating the expression

    Raises:
        EvaluationError: If expression is invalid, references an unknown
            variable or fails while evaluating
    """
    if not expression or not expression.strip():
        raise EvaluationError("Expression cannot be empty", expression)

    expression = _normalize(expression)

    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise EvaluationError(
            f"Expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})",
            expression,
        )

    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise EvaluationError(f"Invalid expression syntax: {e.msg}", expression) from e

    try:
        return _eval_node(tree.body, context, expression)
    except EvaluationError:
        raise
    except Exception as e:
        raise EvaluationError(f"Evaluation error in '{expression}': {e}", expression) from e


def _eval_node(node: ast.AST, context: Dict[str, Any], source: str) -> Any:
    """Recursively evaluate an AST node."""

    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        name = node.id
        if name in context:
            return context[name]
        if name in _NAME_ALIASES:
            return _NAME_ALIASES[name]
        raise EvaluationError(f"Unknown variable: '{name}'", source)

    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, context, source)
        for op, comparator in zip(node.ops, node.comparators):
            op_func = _SAFE_COMPARE_OPS.get(type(op))
            if op_func is None:
                raise EvaluationError(f"Unsupported comparison: {type(op).__name__}", source)
            right = _eval_node(comparator, context, source)
            if not op_func(left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            return all(_eval_node(v, context, source) for v in node.values)
        if isinstance(node.op, ast.Or):
            return any(_eval_node(v, context, source) for v in node.values)
        raise EvaluationError(f"Unsupported boolean op: {type(node.op).__name__}", source)

    if isinstance(node, ast.UnaryOp):
        op_func = _SAFE_UNARY_OPS.get(type(node.op))
        if op_func is None:
            raise EvaluationError(f"Unsupported unary op: {type(node.op).__name__}", source)
        return op_func(_eval_node(node.operand, context, source))

    if isinstance(node, ast.BinOp):
        op_func = _SAFE_BIN_OPS.get(type(node.op))
        if op_func is None:
            raise EvaluationError(f"Unsupported binary op: {type(node.op).__name__}", source)
        left = _eval_node(node.left, context, source)
        right = _eval_node(node.right, context, source)
        return op_func(left, right)

    # Subscript access: data["key"], items[0]
    if isinstance(node, ast.Subscript):
        value = _eval_node(node.value, context, source)
        key = _eval_node(node.slice, context, source)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError) as e:
            raise EvaluationError(f"Subscript access failed: {e}", source) from e

    # Attribute access: result.status (only on dicts)
    if isinstance(node, ast.Attribute):
        value = _eval_node(node.value, context, source)
        if isinstance(value, dict):
            if node.attr in value:
                return value[node.attr]
            raise EvaluationError(f"Key '{node.attr}' not found in dict", source)
        raise EvaluationError("Attribute access only supported on dict-like objects", source)

    if isinstance(node, ast.Call):
        func = _resolve_function(node, source)
        if node.keywords:
            raise EvaluationError("Keyword arguments are not allowed", source)
        args = [_eval_node(arg, context, source) for arg in node.args]
        return func(*args)

    if isinstance(node, ast.List):
        return [_eval_node(elt, context, source) for elt in node.elts]

    if isinstance(node, ast.Tuple):
        return tuple(_eval_node(elt, context, source) for elt in node.elts)

    if isinstance(node, ast.Dict):
        return {
            _eval_node(k, context, source): _eval_node(v, context, source)
            for k, v in zip(node.keys, node.values)
        }

    if isinstance(node, ast.IfExp):
        if _eval_node(node.test, context, source):
            return _eval_node(node.body, context, source)
        return _eval_node(node.orelse, context, source)

    raise EvaluationError(f"Unsupported expression type: {type(node).__name__}", source)


def _resolve_function(node: ast.Call, source: str) -> Callable[..., Any]:
    if isinstance(node.func, ast.Name) and node.func.id in _SAFE_FUNCTIONS:
        return _SAFE_FUNCTIONS[node.func.id]
    name = node.func.id if isinstance(node.func, ast.Name) else type(node.func).__name__
    raise EvaluationError(f"Function '{name}' is not allowed", source)


def validate_expression(expression: str) -> List[str]:
    """Validate an expression without evaluating it.

    Args:
        expression: The expression string to validate

    Returns:
        List of validation error strings. Empty if valid.
    """
    errors = []

    if not expression or not expression.strip():
        errors.append("Expression cannot be empty")
        return errors

    expression = _normalize(expression)

    if len(expression) > MAX_EXPRESSION_LENGTH:
        errors.append(
            f"Expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})"
        )
        return errors

    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        errors.append(f"Invalid syntax: {e.msg}")
        return errors

    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            if not (isinstance(node.func, ast.Name) and node.func.id in _SAFE_FUNCTIONS):
                errors.append("Only built-in helper functions may be called")
        elif isinstance(node, ast.Lambda):
            errors.append("Lambda expressions are not allowed")
        elif isinstance(node, ast.ListComp | ast.SetComp | ast.DictComp | ast.GeneratorExp):
            errors.append("Comprehensions are not allowed")
        elif isinstance(node, ast.Await):
            errors.append("Await expressions are not allowed")
        elif isinstance(node, ast.Starred):
            errors.append("Star expressions are not allowed")
        elif isinstance(node, ast.NamedExpr):
            errors.append("Assignment expressions are not allowed")

    return errors


def validate_template(template: str) -> List[str]:
    """Validate every ``{{ expr }}`` placeholder in a template."""
    errors = []
    for match in _TEMPLATE_PATTERN.finditer(template or ""):
        for err in validate_expression(match.group(1)):
            errors.append(f"{{{{ {match.group(1)} }}}}: {err}")
    return errors


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def render_template(template: str, context: Dict[str, Any]) -> str:
    """Substitute every ``{{ expr }}`` placeholder with its value.

    Raises:
        EvaluationError: If any placeholder fails to evaluate
    """
    if not template or "{{" not in template:
        return template or ""
    return _TEMPLATE_PATTERN.sub(
        lambda match: _to_text(safe_eval(match.group(1), context)), template
    )


def resolve_value(value: Any, context: Dict[str, Any]) -> Any:
    """Resolve a config value that may be a formula, a template or a literal.

    - ``"=expr"`` evaluates the expression and keeps its type
    - ``"{{ expr }}"`` (a lone placeholder) also keeps the evaluated type
    - other strings are rendered as templates
    - non-strings are returned unchanged
    """
    if not isinstance(value, str):
        return value
    stripped = value.strip()
    if stripped.startswith("="):
        return safe_eval(stripped, context)
    match = _TEMPLATE_PATTERN.fullmatch(stripped)
    if match:
        return safe_eval(match.group(1), context)
    return render_template(value, context)


def is_truthy_condition(expression: str, context: Dict[str, Any]) -> bool:
    """Evaluate a condition and coerce the result to bool."""
    return bool(safe_eval(expression, context))
