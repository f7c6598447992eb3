"""Restricted arithmetic expressions and the aggregate formula grammar.

Report formulas are user-authored text, so nothing here ever reaches
``eval``. Arithmetic is parsed once into a small AST (numbers, names,
unary and binary ``+ - * /``) and evaluated against numeric bindings.
Aggregate formulas (``SUM``, ``AVG(revenue)``, ``MAX(compare.cost)``) are
a separate, regex-recognised grammar used by formula rows.
"""

from __future__ import annotations

import enum
import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MAX_NESTING_DEPTH = 64


class ExpressionSyntaxError(ValueError):
    """Raised when expression text is not valid arithmetic."""

    def __init__(self, message: str, *, expression: str, position: int | None = None) -> None:
        super().__init__(message)
        self.expression = expression
        self.position = position


# ---------- AST ----------
@dataclass(frozen=True, slots=True)
class Number:
    value: float


@dataclass(frozen=True, slots=True)
class Name:
    identifier: str


@dataclass(frozen=True, slots=True)
class UnaryOp:
    operator: str
    operand: Node


@dataclass(frozen=True, slots=True)
class BinaryOp:
    operator: str
    left: Node
    right: Node


Node = Number | Name | UnaryOp | BinaryOp


# ---------- Tokenizer ----------
@dataclass(frozen=True, slots=True)
class _Token:
    kind: str
    text: str
    position: int


_TOKEN_PATTERN = re.compile(
    r"(?P<number>\d+(?:\.\d*)?|\.\d+)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<operator>[-+*/])"
    r"|(?P<lparen>\()"
    r"|(?P<rparen>\))"
)


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    length = len(expression)
    while position < length:
        char = expression[position]
        if char.isspace():
            position += 1
            continue
        match = _TOKEN_PATTERN.match(expression, position)
        if match is None:
            raise ExpressionSyntaxError(
                f"Unexpected character {char!r} at position {position}.",
                expression=expression,
                position=position,
            )
        kind = match.lastgroup or ""
        tokens.append(_Token(kind=kind, text=match.group(), position=position))
        position = match.end()
    tokens.append(_Token(kind="end", text="", position=length))
    return tokens


# ---------- Parser ----------
class _Parser:
    """Recursive descent over the token list.

    expression := term (('+' | '-') term)*
    term       := factor (('*' | '/') factor)*
    factor     := ('+' | '-') factor | NUMBER | NAME | '(' expression ')'
    """

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.tokens = _tokenize(expression)
        self.pos = 0
        self.depth = 0

    def _current(self) -> _Token:
        return self.tokens[self.pos]

    def _advance(self) -> _Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _error(self, message: str, token: _Token) -> ExpressionSyntaxError:
        return ExpressionSyntaxError(message, expression=self.expression, position=token.position)

    def parse(self) -> Node:
        if self._current().kind == "end":
            raise self._error("Expression is empty.", self._current())
        node = self._expression()
        trailing = self._current()
        if trailing.kind != "end":
            raise self._error(f"Unexpected {trailing.text!r} at position {trailing.position}.", trailing)
        return node

    def _expression(self) -> Node:
        node = self._term()
        while self._current().kind == "operator" and self._current().text in "+-":
            operator = self._advance().text
            node = BinaryOp(operator, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._factor()
        while self._current().kind == "operator" and self._current().text in "*/":
            operator = self._advance().text
            node = BinaryOp(operator, node, self._factor())
        return node

    def _factor(self) -> Node:
        token = self._current()
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise self._error("Expression is nested too deeply.", token)
        try:
            if token.kind == "operator" and token.text in "+-":
                self._advance()
                return UnaryOp(token.text, self._factor())

            if token.kind == "number":
                self._advance()
                return Number(float(token.text))

            if token.kind == "name":
                self._advance()
                if self._current().kind == "lparen":
                    raise self._error(f"Function calls are not allowed ({token.text}).", token)
                return Name(token.text)

            if token.kind == "lparen":
                self._advance()
                node = self._expression()
                closing = self._current()
                if closing.kind != "rparen":
                    raise self._error(f"Expected ')' at position {closing.position}.", closing)
                self._advance()
                return node

            if token.kind == "end":
                raise self._error("Unexpected end of expression.", token)
            raise self._error(f"Unexpected {token.text!r} at position {token.position}.", token)
        finally:
            self.depth -= 1


def parse_expression(expression: str) -> Node:
    """Parse arithmetic text into an AST or raise ExpressionSyntaxError."""

    if not isinstance(expression, str):
        raise ExpressionSyntaxError("Expression must be a string.", expression=str(expression))
    return _Parser(expression).parse()


def referenced_names(node: Node) -> set[str]:
    """Identifiers an expression reads."""

    names: set[str] = set()
    pending: list[Node] = [node]
    while pending:
        current = pending.pop()
        if isinstance(current, Name):
            names.add(current.identifier)
        elif isinstance(current, UnaryOp):
            pending.append(current.operand)
        elif isinstance(current, BinaryOp):
            pending.append(current.left)
            pending.append(current.right)
    return names


# ---------- Evaluation ----------
def _apply(operator: str, left: float | None, right: float | None) -> float | None:
    if left is None or right is None:
        return None
    if operator == "+":
        return left + right
    if operator == "-":
        return left - right
    if operator == "*":
        return left * right
    if right == 0:
        return None
    return left / right


def _evaluate_node(root: Node, bindings: Mapping[str, float]) -> float | None:
    # Post-order walk with an explicit stack; long operator chains build
    # left-deep trees far deeper than the interpreter's recursion limit.
    values: list[float | None] = []
    pending: list[tuple[Node, bool]] = [(root, False)]
    while pending:
        node, operands_ready = pending.pop()

        if isinstance(node, Number):
            values.append(node.value)
        elif isinstance(node, Name):
            value = bindings.get(node.identifier)
            values.append(None if value is None or isinstance(value, bool) else float(value))
        elif not operands_ready:
            pending.append((node, True))
            if isinstance(node, BinaryOp):
                pending.append((node.right, False))
                pending.append((node.left, False))
            else:
                pending.append((node.operand, False))
        elif isinstance(node, UnaryOp):
            operand = values.pop()
            values.append(None if operand is None else (-operand if node.operator == "-" else operand))
        else:
            right = values.pop()
            left = values.pop()
            values.append(_apply(node.operator, left, right))
    return values[0]


def evaluate(node: Node, bindings: Mapping[str, float]) -> float | None:
    """Evaluate a parsed expression.

    Missing bindings, division by zero and non-finite results give None.
    Results are rounded to 6 decimal places so ratios stay readable.
    """

    try:
        result = _evaluate_node(node, bindings)
    except (OverflowError, TypeError, ValueError):
        return None
    if result is None or not math.isfinite(result):
        return None
    return round(result, 6)


class ExpressionCache:
    """Parse-once cache for one report execution, keyed by expression text."""

    def __init__(self, warnings: list[str] | None = None) -> None:
        self.warnings = warnings if warnings is not None else []
        self._compiled: dict[str, Node | None] = {}

    def compile(self, expression: str) -> Node | None:
        if expression in self._compiled:
            return self._compiled[expression]
        try:
            node: Node | None = parse_expression(expression)
        except ExpressionSyntaxError as exc:
            node = None
            self.warnings.append(f'Expression "{expression}" could not be parsed: {exc}')
        self._compiled[expression] = node
        return node

    def evaluate(self, expression: str, bindings: Mapping[str, float]) -> float | None:
        node = self.compile(expression)
        if node is None:
            return None
        return evaluate(node, bindings)


# ---------- Aggregates ----------
class AggregateFunction(str, enum.Enum):
    SUM = "SUM"
    AVG = "AVG"
    COUNT = "COUNT"
    MIN = "MIN"
    MAX = "MAX"

    @classmethod
    def _missing_(cls, value: object) -> AggregateFunction | None:
        if not isinstance(value, str):
            return None
        normalized = value.strip().upper()
        if normalized == "AVERAGE":
            return cls.AVG
        return cls.__members__.get(normalized)


class AggregateContext(str, enum.Enum):
    CURRENT = "current"
    COMPARE = "compare"


@dataclass(frozen=True, slots=True)
class AggregateCall:
    fn: AggregateFunction
    column: str
    context: AggregateContext


@dataclass(frozen=True, slots=True)
class SimpleAggregateCall:
    fn: AggregateFunction
    column: str


_DUAL_CONTEXT_AGGREGATE = re.compile(
    r"^\s*([A-Za-z]+)\s*\(\s*(current|compare)\s*\.\s*([A-Za-z0-9_]+)\s*\)\s*$",
    re.IGNORECASE,
)
_SIMPLE_AGGREGATE = re.compile(r"^\s*([A-Za-z]+)\s*\(\s*([A-Za-z0-9_]+)\s*\)\s*$")


def _aggregate_function(name: str) -> AggregateFunction | None:
    try:
        return AggregateFunction(name)
    except ValueError:
        return None


def parse_aggregate_expression(expression: str) -> AggregateCall | None:
    """Recognise ``FN(current.column)`` / ``FN(compare.column)``."""

    match = _DUAL_CONTEXT_AGGREGATE.match(expression or "")
    if match is None:
        return None
    fn = _aggregate_function(match.group(1))
    if fn is None:
        return None
    return AggregateCall(fn=fn, column=match.group(3), context=AggregateContext(match.group(2).lower()))


def parse_simple_aggregate_expression(expression: str) -> SimpleAggregateCall | None:
    """Recognise ``FN(column)``, which always reads the current period."""

    match = _SIMPLE_AGGREGATE.match(expression or "")
    if match is None:
        return None
    fn = _aggregate_function(match.group(1))
    if fn is None:
        return None
    return SimpleAggregateCall(fn=fn, column=match.group(2))


def parse_bare_aggregate(expression: str) -> AggregateFunction | None:
    """Recognise a bare function name such as ``SUM`` or ``average``."""

    text = (expression or "").strip()
    if not text.isalpha():
        return None
    return _aggregate_function(text)


def round_half_up(value: float, places: int = 2) -> float | None:
    if not math.isfinite(value):
        return None
    try:
        quantum = Decimal(1).scaleb(-places)
        return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None


def compute_aggregate(fn: AggregateFunction | str, values: list[float]) -> float | int | None:
    """Aggregate already-numeric values.

    SUM and COUNT of nothing are 0; AVG, MIN and MAX of nothing are None.
    """

    function = _aggregate_function(fn) if isinstance(fn, str) else fn
    if function is None:
        return None
    if function is AggregateFunction.COUNT:
        return len(values)
    if function is AggregateFunction.SUM:
        return round_half_up(math.fsum(values)) if values else 0
    if not values:
        return None
    if function is AggregateFunction.AVG:
        return round_half_up(math.fsum(values) / len(values))
    if function is AggregateFunction.MIN:
        return min(values)
    return max(values)


# ---------- Numeric coercion ----------
_NUMERIC_NOISE = re.compile(r"[$£€¥,\s]")
_NUMERIC_TEXT = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")


def parse_numeric_value(value: object) -> float | None:
    """Coerce a cell to a float, or None when it is not a number.

    Strings may carry currency symbols, thousands separators, a trailing
    ``%`` or accounting-style parentheses for negatives: ``($1,234.50)``.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (OverflowError, ValueError):
            return None
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    negative = len(text) >= 2 and text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    text = _NUMERIC_NOISE.sub("", text)
    if text.endswith("%"):
        text = text[:-1]
    if not _NUMERIC_TEXT.match(text):
        return None

    number = float(text)
    if not math.isfinite(number):
        return None
    return -number if negative else number


def extract_column_values(rows: Iterable[Mapping[str, object]], column_key: str) -> list[float]:
    """Numeric values of ``column_key`` across rows, skipping anything non-numeric."""

    values: list[float] = []
    for row in rows:
        number = parse_numeric_value(row.get(column_key))
        if number is not None:
            values.append(number)
    return values
