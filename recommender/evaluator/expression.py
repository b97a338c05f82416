"""
Sandboxed arithmetic expressions.

Authored math strings are parsed with ``ast`` in eval mode and walked by a
small interpreter that only understands numbers, names bound in an explicit
environment, arithmetic operators and an allow-list of math functions.
Nothing is ever handed to ``eval``/``exec``.

Pipeline for one expression:
    raw text -> substitute_names() -> sanitize() -> evaluate_expression()
"""

from __future__ import annotations

import ast
import math
import operator
import re
from collections.abc import Callable, Mapping

MAX_EXPRESSION_LENGTH = 500
MAX_EXPONENT = 1000.0

ALLOWED_FUNCTIONS: dict[str, Callable[..., float]] = {
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "atan2": math.atan2,
    "sinh": math.sinh,
    "cosh": math.cosh,
    "tanh": math.tanh,
    "sqrt": math.sqrt,
    "cbrt": math.cbrt,
    "exp": math.exp,
    "ln": math.log,
    "log": math.log,
    "log10": math.log10,
    "log2": math.log2,
    "abs": abs,
    "floor": math.floor,
    "ceil": math.ceil,
    "round": lambda x, n=0: round(x, int(n)),
    "min": min,
    "max": max,
    "pow": math.pow,
    "hypot": math.hypot,
    "deg": math.degrees,
    "rad": math.radians,
}

CONSTANTS: dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
}

_BINARY_OPERATORS: dict[type[ast.operator], Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS: dict[type[ast.unaryop], Callable[[float], float]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

# Ordered: multi-character LaTeX commands before the single-character rules
_SANITIZE_RULES: list[tuple[str, str]] = [
    (r"\\times", "*"),
    (r"\\cdot", "*"),
    (r"\\div", "/"),
    (r"\\pi", "pi"),
    (r"\\left", ""),
    (r"\\right", ""),
    ("×", "*"),
    ("·", "*"),
    ("÷", "/"),
    (r"\^", "**"),
    (r"\{", "("),
    (r"\}", ")"),
    (r"\\(?=[A-Za-z])", ""),
]

_NAME_BOUNDARY_BEFORE = r"(?<![A-Za-z0-9_])"
_NAME_BOUNDARY_AFTER = r"(?![A-Za-z0-9_])"


class ExpressionError(ValueError):
    """An expression is malformed or cannot be evaluated."""


def sanitize(text: str) -> str:
    """Normalize authored math notation into the restricted grammar."""
    result = text.strip()
    for pattern, replacement in _SANITIZE_RULES:
        result = re.sub(pattern, replacement, result)
    return result


def substitute_names(text: str, tokens: Mapping[str, str]) -> str:
    """
    Replace authored names with safe identifier tokens in a single pass.

    Longer names win over their prefixes ("V_{in}" before "V"), and a name
    only matches where it is not glued to other identifier characters.
    """
    if not tokens:
        return text
    names = sorted(tokens, key=len, reverse=True)
    pattern = re.compile(
        "|".join(
            f"{_NAME_BOUNDARY_BEFORE}{re.escape(name)}{_NAME_BOUNDARY_AFTER}"
            if name[-1].isalnum() or name[-1] == "_"
            else f"{_NAME_BOUNDARY_BEFORE}{re.escape(name)}"
            for name in names
        )
    )
    return pattern.sub(lambda match: tokens[match.group(0)], text)


def parse_expression(text: str) -> ast.Expression:
    """Parse a sanitized expression, rejecting anything outside the grammar."""
    if not text:
        raise ExpressionError("Empty expression")
    if len(text) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError(f"Expression longer than {MAX_EXPRESSION_LENGTH} characters")
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid syntax: {e.msg}") from e
    return tree


class _Interpreter:
    """Walks a parsed expression against a fixed environment."""

    def __init__(self, env: Mapping[str, float], display_names: Mapping[str, str]):
        self.env = env
        self.display_names = display_names

    def run(self, node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return self.run(node.body)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise ExpressionError(f"Unsupported literal {node.value!r}")
            return float(node.value)

        if isinstance(node, ast.Name):
            if node.id in self.env:
                return float(self.env[node.id])
            if node.id in CONSTANTS:
                return CONSTANTS[node.id]
            name = self.display_names.get(node.id, node.id)
            raise ExpressionError(f"Undefined identifier '{name}'")

        if isinstance(node, ast.UnaryOp):
            op = _UNARY_OPERATORS.get(type(node.op))
            if op is None:
                raise ExpressionError(f"Unsupported operator {type(node.op).__name__}")
            return op(self.run(node.operand))

        if isinstance(node, ast.BinOp):
            op = _BINARY_OPERATORS.get(type(node.op))
            if op is None:
                raise ExpressionError(f"Unsupported operator {type(node.op).__name__}")
            left = self.run(node.left)
            right = self.run(node.right)
            if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
                raise ExpressionError(f"Exponent {right} is out of range")
            return self._real(op(left, right))

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in ALLOWED_FUNCTIONS:
                label = node.func.id if isinstance(node.func, ast.Name) else "expression"
                raise ExpressionError(f"Function '{label}' is not allowed")
            if node.keywords:
                raise ExpressionError("Keyword arguments are not allowed")
            args = [self.run(arg) for arg in node.args]
            try:
                value = ALLOWED_FUNCTIONS[node.func.id](*args)
            except TypeError as e:
                raise ExpressionError(f"Bad arguments to {node.func.id}(): {e}") from e
            return self._real(value)

        raise ExpressionError(f"Unsupported syntax: {type(node).__name__}")

    @staticmethod
    def _real(value: float | complex) -> float:
        # float() of an oversized int raises OverflowError
        if isinstance(value, complex):
            raise ExpressionError("Math domain error: complex result")
        return float(value)


def evaluate_expression(
    text: str,
    env: Mapping[str, float],
    display_names: Mapping[str, str] | None = None,
) -> float:
    """
    Evaluate a sanitized, substituted expression.

    Args:
        text: Expression in the restricted grammar
        env: Token -> value bindings
        display_names: Token -> authored name, for error messages

    Returns:
        Finite float result

    Raises:
        ExpressionError: On syntax errors, unknown names/functions,
            division by zero or math domain errors
    """
    tree = parse_expression(text)
    try:
        result = _Interpreter(env, display_names or {}).run(tree)
        if not math.isfinite(result):
            raise ExpressionError("Math domain error: result is not finite")
    except ZeroDivisionError as e:
        raise ExpressionError("Division by zero") from e
    except OverflowError as e:
        raise ExpressionError("Numeric overflow") from e
    except ValueError as e:
        if isinstance(e, ExpressionError):
            raise
        raise ExpressionError(f"Math domain error: {e}") from e
    return result
