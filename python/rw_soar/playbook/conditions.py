"""Restricted boolean expressions for step and trigger conditions.

Supported grammar::

    expression := or
    or         := and ("||" and)*
    and        := unary ("&&" unary)*
    unary      := "!" unary | comparison
    comparison := operand (("==" | "!=" | "===" | "!==" | "<" | "<=" | ">" | ">=") operand)?
    operand    := NUMBER | STRING | "true" | "false" | "null" | PATH | "(" expression ")"

Paths are dotted lookups into the evaluation context (``alert.severity``).
A bare operand is tested for truthiness. Nothing is ever passed to ``eval``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Union

import structlog

from rw_soar.errors import ConditionEvaluationError
from rw_soar.playbook.templating import lookup_path

logger = structlog.get_logger()

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!()])
    |(?P<name>[A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z0-9_\-]+)*)
    """,
    re.VERBOSE,
)

_ESCAPE_PATTERN = re.compile(r"\\(.)")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}

COMPARISON_OPERATORS = frozenset({"==", "!=", "===", "!==", "<", "<=", ">", ">="})
KEYWORDS = {"true": True, "false": False, "null": None}
MAX_NESTING = 64


@dataclass(frozen=True)
class _Token:
    kind: str
    value: Any
    position: int


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class PathRef:
    path: str


@dataclass(frozen=True)
class Not:
    operand: Node


@dataclass(frozen=True)
class BoolOp:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Compare:
    op: str
    left: Node
    right: Node


Node = Union[Literal, PathRef, Not, BoolOp, Compare]


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    length = len(expression)

    while pos < length:
        if expression[pos].isspace():
            pos += 1
            continue

        match = _TOKEN_PATTERN.match(expression, pos)
        if match is None:
            raise ConditionEvaluationError(
                expression, f"unexpected character {expression[pos]!r} at {pos}"
            )

        kind = match.lastgroup or ""
        text = match.group(kind)
        if kind == "number":
            value: Any = float(text) if any(c in text for c in ".eE") else int(text)
        elif kind == "string":
            value = _ESCAPE_PATTERN.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), text[1:-1])
        elif kind == "name" and text in KEYWORDS:
            kind = "keyword"
            value = KEYWORDS[text]
        else:
            value = text

        tokens.append(_Token(kind, value, pos))
        pos = match.end()

    return tokens


class _Parser:
    """Recursive descent parser over the token list."""

    def __init__(self, expression: str, tokens: list[_Token]):
        self._expression = expression
        self._tokens = tokens
        self._index = 0
        self._depth = 0

    def parse(self) -> Node:
        if not self._tokens:
            raise ConditionEvaluationError(self._expression, "empty expression")
        node = self._parse_or()
        if self._index < len(self._tokens):
            token = self._tokens[self._index]
            raise ConditionEvaluationError(
                self._expression, f"unexpected {token.value!r} at {token.position}"
            )
        return node

    def _peek_op(self) -> str | None:
        if self._index < len(self._tokens) and self._tokens[self._index].kind == "op":
            return self._tokens[self._index].value
        return None

    def _next(self) -> _Token:
        if self._index >= len(self._tokens):
            raise ConditionEvaluationError(self._expression, "unexpected end of expression")
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _parse_or(self) -> Node:
        node = self._parse_and()
        while self._peek_op() == "||":
            self._index += 1
            node = BoolOp("||", node, self._parse_and())
        return node

    def _parse_and(self) -> Node:
        node = self._parse_unary()
        while self._peek_op() == "&&":
            self._index += 1
            node = BoolOp("&&", node, self._parse_unary())
        return node

    def _descend(self) -> None:
        self._depth += 1
        if self._depth > MAX_NESTING:
            raise ConditionEvaluationError(
                self._expression, f"nesting deeper than {MAX_NESTING} levels"
            )

    def _parse_unary(self) -> Node:
        if self._peek_op() == "!":
            self._index += 1
            self._descend()
            node = Not(self._parse_unary())
            self._depth -= 1
            return node
        return self._parse_comparison()

    def _parse_comparison(self) -> Node:
        left = self._parse_operand()
        op = self._peek_op()
        if op in COMPARISON_OPERATORS:
            self._index += 1
            right = self._parse_operand()
            if self._peek_op() in COMPARISON_OPERATORS:
                raise ConditionEvaluationError(
                    self._expression, "chained comparisons are not supported"
                )
            return Compare(op, left, right)
        return left

    def _parse_operand(self) -> Node:
        token = self._next()
        if token.kind in ("number", "string", "keyword"):
            return Literal(token.value)
        if token.kind == "name":
            return PathRef(token.value)
        if token.kind == "op" and token.value == "(":
            self._descend()
            node = self._parse_or()
            self._depth -= 1
            closing = self._next()
            if closing.kind != "op" or closing.value != ")":
                raise ConditionEvaluationError(
                    self._expression, f"expected ')' at {closing.position}"
                )
            return node
        raise ConditionEvaluationError(
            self._expression, f"unexpected {token.value!r} at {token.position}"
        )


@lru_cache(maxsize=512)
def parse_condition(expression: str) -> Node:
    """Parse an expression into a syntax tree.

    Raises:
        ConditionEvaluationError: If the expression is malformed
    """
    try:
        return _Parser(expression, _tokenize(expression)).parse()
    except RecursionError as e:
        raise ConditionEvaluationError(expression, "expression too deeply nested") from e


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> Any:
    """Coerce numeric strings for loose equality."""
    if isinstance(value, str):
        try:
            return float(value) if any(c in value for c in ".eE") else int(value)
        except ValueError:
            return value
    return value


def _strict_equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return bool(left == right)


def _loose_equals(left: Any, right: Any) -> bool:
    if _is_number(left) and isinstance(right, str):
        right = _as_number(right)
    elif _is_number(right) and isinstance(left, str):
        left = _as_number(left)
    return _strict_equals(left, right)


class ConditionEvaluator:
    """Evaluates step ``if`` and trigger conditions against context data.

    Any parse or evaluation error yields ``False``: an ambiguous condition
    must never cause an action to run.

    Example:
        evaluator = ConditionEvaluator()
        evaluator.evaluate('severity === "critical" && score > 80', context)
    """

    def __init__(self) -> None:
        self._logger = logger.bind(component="condition_evaluator")

    def parse(self, expression: str) -> Node:
        """Parse an expression, raising ConditionEvaluationError if malformed."""
        if not isinstance(expression, str):
            raise ConditionEvaluationError(repr(expression), "expression must be a string")
        return parse_condition(expression)

    def evaluate(self, expression: str, context: Mapping[str, Any]) -> bool:
        """Evaluate an expression to a boolean, failing safe to False."""
        try:
            return self.evaluate_strict(expression, context)
        except ConditionEvaluationError as e:
            self._logger.warning(
                "condition_evaluation_failed",
                expression=expression,
                error=e.message,
            )
            return False

    def evaluate_strict(self, expression: str, context: Mapping[str, Any]) -> bool:
        """Evaluate an expression, raising ConditionEvaluationError on failure."""
        try:
            node = self.parse(expression)
            return bool(self._eval(node, context, expression))
        except ConditionEvaluationError:
            raise
        except (TypeError, ValueError, RecursionError) as e:
            raise ConditionEvaluationError(expression, str(e)) from e

    def _eval(self, node: Node, context: Mapping[str, Any], expression: str) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, PathRef):
            return lookup_path(context, node.path)
        if isinstance(node, Not):
            return not self._eval(node.operand, context, expression)
        if isinstance(node, BoolOp):
            left = bool(self._eval(node.left, context, expression))
            if node.op == "&&":
                return left and bool(self._eval(node.right, context, expression))
            return left or bool(self._eval(node.right, context, expression))
        if isinstance(node, Compare):
            left = self._eval(node.left, context, expression)
            right = self._eval(node.right, context, expression)
            return self._compare(node.op, left, right, expression)
        raise ConditionEvaluationError(expression, f"unsupported node {node!r}")

    def _compare(self, op: str, left: Any, right: Any, expression: str) -> bool:
        if op == "===":
            return _strict_equals(left, right)
        if op == "!==":
            return not _strict_equals(left, right)
        if op == "==":
            return _loose_equals(left, right)
        if op == "!=":
            return not _loose_equals(left, right)

        if not (
            (_is_number(left) and _is_number(right))
            or (isinstance(left, str) and isinstance(right, str))
        ):
            raise ConditionEvaluationError(
                expression,
                f"cannot order {type(left).__name__} and {type(right).__name__}",
            )
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right
