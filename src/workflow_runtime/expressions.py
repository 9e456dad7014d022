"""
Safe Expression Evaluator - Edge conditions and ``{{ }}`` config templates.

Expressions are parsed with ``ast`` and evaluated by a whitelist visitor;
nothing is handed to ``eval``. The grammar is Python's expression syntax
plus a few conveniences authors coming from JavaScript expect:

    true / false / null        literals
    a && b, a || b, !a         boolean operators
    nodes.fetch.output.status  dotted access into dicts
    items[0], data["key"]      subscripts
    succeeded('fetch')         helpers over node outcomes

Templates render against the run's variable context. A string that is
exactly one template (``"{{ input.count }}"``) renders to the raw value;
templates embedded in text render to strings.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Optional, Protocol


logger = logging.getLogger(__name__)

# Parsed trees are read-only and shared by every evaluator
PARSE_CACHE_SIZE = 1024


class ExpressionError(ValueError):
    """An expression cannot be parsed or evaluated."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Expression '{expression}' failed: {reason}")


SAFE_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Not: operator.not_,
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

SAFE_FUNCTIONS: Dict[str, Callable[..., Any]] = {
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
}

LITERALS = {"true": True, "false": False, "null": None, "True": True, "False": False, "None": None}

_TEMPLATE_RE = re.compile(r"\{\{\s*(.+?)\s*\}\}")
_FULL_TEMPLATE_RE = re.compile(r"^\s*\{\{\s*(.+?)\s*\}\}\s*$", re.DOTALL)

# JS-style operators outside string literals.
_JS_TOKENS_RE = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')|(&&|\|\||!(?!=)|===|!==)""")
_JS_REPLACEMENTS = {"&&": " and ", "||": " or ", "!": " not ", "===": "==", "!==": "!="}


def _normalize(expression: str) -> str:
    def replace(match: "re.Match[str]") -> str:
        if match.group(1):
            return match.group(1)
        return _JS_REPLACEMENTS[match.group(2)]

    return _JS_TOKENS_RE.sub(replace, expression).strip()


class _Missing:
    """Marker for a reference that does not resolve."""

    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


class SafeEvaluator(ast.NodeVisitor):
    """
    AST-based evaluator restricted to:
    - Arithmetic, comparison and boolean operators
    - Whitelisted functions and helpers
    - Names, attributes and subscripts resolved against ``variables``
    """

    def __init__(self, variables: Mapping[str, Any], functions: Optional[Mapping[str, Callable[..., Any]]] = None):
        self.variables = variables
        self.functions = {**SAFE_FUNCTIONS, **(functions or {})}

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.variables:
            return self.variables[node.id]
        if node.id in LITERALS:
            return LITERALS[node.id]
        if node.id in self.functions:
            return self.functions[node.id]
        raise ValueError(f"Undefined variable: {node.id}")

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise ValueError(f"Attribute not allowed: {node.attr}")
        value = self.visit(node.value)
        if isinstance(value, Mapping):
            if node.attr not in value:
                raise ValueError(f"Key not found: {node.attr}")
            return value[node.attr]
        raise ValueError(f"Cannot read '{node.attr}' of {type(value).__name__}")

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        key = self.visit(node.slice)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Cannot index with {key!r}: {e}") from e

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(element) for element in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(element) for element in node.elts)

    def visit_Dict(self, node: ast.Dict) -> Any:
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values)}

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op_type = type(node.op)
        if op_type not in SAFE_OPERATORS:
            raise ValueError(f"Operator not allowed: {op_type.__name__}")
        return SAFE_OPERATORS[op_type](self.visit(node.left), self.visit(node.right))

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op_type = type(node.op)
        if op_type not in SAFE_OPERATORS:
            raise ValueError(f"Operator not allowed: {op_type.__name__}")
        return SAFE_OPERATORS[op_type](self.visit(node.operand))

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            op_type = type(op)
            if op_type not in SAFE_OPERATORS:
                raise ValueError(f"Operator not allowed: {op_type.__name__}")
            right = self.visit(comparator)
            if not SAFE_OPERATORS[op_type](left, right):
                return False
            left = right
        return True

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        # Short-circuit like Python.
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Call(self, node: ast.Call) -> Any:
        func = self.visit(node.func)
        if not any(func is allowed for allowed in self.functions.values()):
            raise ValueError(f"Function not allowed: {getattr(node.func, 'id', 'unknown')}")
        args = [self.visit(arg) for arg in node.args]
        kwargs = {kw.arg: self.visit(kw.value) for kw in node.keywords}
        return func(*args, **kwargs)

    def generic_visit(self, node: ast.AST) -> Any:
        raise ValueError(f"AST node type not allowed: {type(node).__name__}")


class TemplateEvaluator(Protocol):
    """What the engine and validator need from an expression evaluator."""

    def render(self, value: Any, variables: Mapping[str, Any]) -> Any:
        ...

    def evaluate_condition(
        self,
        condition: str,
        variables: Mapping[str, Any],
        functions: Optional[Mapping[str, Callable[..., Any]]] = None,
    ) -> bool:
        ...

    def check_syntax(self, expression: str) -> Optional[str]:
        ...


@lru_cache(maxsize=PARSE_CACHE_SIZE)
def parse_expression(expression: str) -> ast.Expression:
    """
    Parse an expression once per distinct source string (shared, bounded cache).

    Raises:
        ExpressionError: On syntax errors
    """
    try:
        return ast.parse(_normalize(expression), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(expression, f"invalid syntax ({e.msg})") from e


class ExpressionEvaluator:
    """
    Evaluates edge conditions and renders templated node config.

    ``functions`` adds helpers (e.g. ``succeeded``) on top of the safe set.
    With ``strict=False`` an unresolved template renders as None (whole
    value) or an empty string (embedded); with ``strict=True`` it raises.
    """

    def __init__(self, strict: bool = False, functions: Optional[Mapping[str, Callable[..., Any]]] = None):
        self.strict = strict
        self.functions = dict(functions or {})

    def parse(self, expression: str) -> ast.Expression:
        return parse_expression(expression)

    def check_syntax(self, expression: str) -> Optional[str]:
        """Error text if ``expression`` does not parse, else None."""
        try:
            self.parse(expression)
        except ExpressionError as e:
            return e.reason
        return None

    def evaluate(
        self,
        expression: str,
        variables: Mapping[str, Any],
        functions: Optional[Mapping[str, Callable[..., Any]]] = None,
    ) -> Any:
        """
        Raises:
            ExpressionError: On syntax errors, disallowed constructs or
                unresolved references
        """
        tree = self.parse(expression)
        evaluator = SafeEvaluator(variables, {**self.functions, **(functions or {})})
        try:
            return evaluator.visit(tree)
        except ExpressionError:
            raise
        except (ValueError, TypeError, ZeroDivisionError) as e:
            raise ExpressionError(expression, str(e)) from e

    def evaluate_condition(
        self,
        condition: str,
        variables: Mapping[str, Any],
        functions: Optional[Mapping[str, Callable[..., Any]]] = None,
    ) -> bool:
        """Evaluate a condition to a bool."""
        return bool(self.evaluate(condition, variables, functions))

    def render(self, value: Any, variables: Mapping[str, Any]) -> Any:
        """Render templates recursively through dicts, lists and strings."""
        if isinstance(value, str):
            return self._render_string(value, variables)
        if isinstance(value, dict):
            return {k: self.render(v, variables) for k, v in value.items()}
        if isinstance(value, list):
            return [self.render(v, variables) for v in value]
        return value

    def _render_string(self, text: str, variables: Mapping[str, Any]) -> Any:
        if "{{" not in text:
            return text

        full = _FULL_TEMPLATE_RE.match(text)
        if full and "{{" not in full.group(1):
            value = self._resolve(full.group(1), variables)
            return None if value is MISSING else value

        def substitute(match: "re.Match[str]") -> str:
            value = self._resolve(match.group(1), variables)
            if value is MISSING or value is None:
                return ""
            if isinstance(value, bool):
                return "true" if value else "false"
            return str(value)

        return _TEMPLATE_RE.sub(substitute, text)

    def _resolve(self, expression: str, variables: Mapping[str, Any]) -> Any:
        try:
            return self.evaluate(expression, variables)
        except ExpressionError as e:
            if self.strict:
                raise
            logger.debug(f"Template left unresolved: {e}")
            return MISSING


def evaluate_condition(condition: str, variables: Mapping[str, Any]) -> bool:
    """
    Safely evaluate a boolean condition string.

    Examples:
        >>> evaluate_condition("count > 5 && ok", {"count": 10, "ok": True})
        True
    """
    return ExpressionEvaluator(strict=True).evaluate_condition(condition, variables)


__all__ = [
    "TemplateEvaluator",
    "ExpressionEvaluator",
    "ExpressionError",
    "SafeEvaluator",
    "evaluate_condition",
    "parse_expression",
]
