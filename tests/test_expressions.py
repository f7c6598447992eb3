from __future__ import annotations

import pytest

from bizdash.services.expressions import (
    AggregateContext,
    AggregateFunction,
    ExpressionCache,
    ExpressionSyntaxError,
    compute_aggregate,
    evaluate,
    extract_column_values,
    parse_aggregate_expression,
    parse_bare_aggregate,
    parse_expression,
    parse_numeric_value,
    parse_simple_aggregate_expression,
    referenced_names,
    round_half_up,
)


def _eval(text: str, **bindings: float) -> float | None:
    return evaluate(parse_expression(text), bindings)


def test_margin_formula_over_row() -> None:
    assert _eval("(revenue - cost) / revenue", revenue=200, cost=150) == 0.25


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1 + 2 * 3", 7.0),
        ("(1 + 2) * 3", 9.0),
        ("10 - 4 - 3", 3.0),
        ("24 / 4 / 2", 3.0),
        ("-a + +b", 1.0),
        ("--a", 2.0),
        ("a * .5", 1.0),
        ("2 / 3", 0.666667),
    ],
)
def test_arithmetic_precedence_and_rounding(text: str, expected: float) -> None:
    assert _eval(text, a=2, b=3) == expected


def test_missing_operand_and_division_by_zero_are_none() -> None:
    assert _eval("revenue / cost", revenue=10) is None
    assert _eval("revenue / cost", revenue=10, cost=0) is None
    assert _eval("revenue / (cost - cost)", revenue=10, cost=4) is None


def test_bool_bindings_are_not_numbers() -> None:
    assert evaluate(parse_expression("flag + 1"), {"flag": True}) is None


def test_overflow_is_none() -> None:
    assert _eval("big * big", big=1e200) is None


@pytest.mark.parametrize(
    "text",
    ["", "   ", "1 +", "(a + b", "a + b)", "a b", "sum(a)", "a.b", "__import__('os')", "a ** 2", "a % 2", "1e5"],
)
def test_malformed_expressions_raise(text: str) -> None:
    with pytest.raises(ExpressionSyntaxError):
        parse_expression(text)


def test_deep_nesting_is_rejected() -> None:
    with pytest.raises(ExpressionSyntaxError, match="nested too deeply"):
        parse_expression("(" * 100 + "1" + ")" * 100)


def test_syntax_error_is_value_error_with_position() -> None:
    with pytest.raises(ValueError) as excinfo:
        parse_expression("a + $")

    assert isinstance(excinfo.value, ExpressionSyntaxError)
    assert excinfo.value.position == 4


def test_referenced_names() -> None:
    assert referenced_names(parse_expression("(revenue - cost) / revenue + 1")) == {"revenue", "cost"}


def test_long_operator_chains_evaluate_without_recursion() -> None:
    sum_chain = "+".join(["a"] * 3000)
    product_chain = "*".join(["a"] * 3000) + " - " + "-".join(["b"] * 3000)

    assert evaluate(parse_expression(sum_chain), {"a": 1.0}) == 3000.0
    assert ExpressionCache().evaluate(sum_chain, {"a": 1.0}) == 3000.0
    assert ExpressionCache().evaluate(sum_chain, {}) is None
    assert _eval(product_chain, a=1, b=0) == 1.0
    assert referenced_names(parse_expression(product_chain)) == {"a", "b"}


def test_expression_cache_parses_once_and_warns_once() -> None:
    warnings: list[str] = []
    cache = ExpressionCache(warnings)

    assert cache.evaluate("a + b", {"a": 1, "b": 2}) == 3.0
    assert cache.compile("a + b") is cache.compile("a + b")
    assert cache.evaluate("a +", {"a": 1}) is None
    assert cache.evaluate("a +", {"a": 5}) is None
    assert len(warnings) == 1
    assert '"a +"' in warnings[0]


def test_dual_context_aggregate_grammar() -> None:
    call = parse_aggregate_expression("sum( compare.Revenue )")

    assert call is not None
    assert call.fn is AggregateFunction.SUM
    assert call.context is AggregateContext.COMPARE
    assert call.column == "Revenue"
    assert parse_aggregate_expression("AVERAGE(current.cost)").fn is AggregateFunction.AVG
    assert parse_aggregate_expression("MEDIAN(current.cost)") is None
    assert parse_aggregate_expression("SUM(previous.cost)") is None


def test_simple_and_bare_aggregate_grammar() -> None:
    simple = parse_simple_aggregate_expression("max(Units_Sold)")

    assert simple is not None
    assert simple.fn is AggregateFunction.MAX
    assert simple.column == "Units_Sold"
    assert parse_simple_aggregate_expression("SUM(current.x)") is None
    assert parse_bare_aggregate(" average ") is AggregateFunction.AVG
    assert parse_bare_aggregate("count") is AggregateFunction.COUNT
    assert parse_bare_aggregate("TOTAL") is None
    assert parse_bare_aggregate("SUM(x)") is None


def test_compute_aggregate_empty_inputs() -> None:
    assert compute_aggregate("SUM", []) == 0
    assert compute_aggregate("COUNT", []) == 0
    assert compute_aggregate("AVG", []) is None
    assert compute_aggregate("MIN", []) is None
    assert compute_aggregate("MAX", []) is None


def test_compute_aggregate_values() -> None:
    values = [10.25, 20.0, 5.5]

    assert compute_aggregate(AggregateFunction.SUM, values) == 35.75
    assert compute_aggregate("avg", [1.0, 2.0, 2.0]) == 1.67
    assert compute_aggregate("COUNT", values) == 3
    assert compute_aggregate("MIN", values) == 5.5
    assert compute_aggregate("MAX", values) == 20.0
    assert compute_aggregate("MEDIAN", values) is None


def test_round_half_up() -> None:
    assert round_half_up(2.675) == 2.68
    assert round_half_up(-0.125) == -0.13
    assert round_half_up(float("inf")) is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (42, 42.0),
        (3.5, 3.5),
        ("1,234.50", 1234.5),
        ("$1,234", 1234.0),
        ("£ 99", 99.0),
        ("€12.5", 12.5),
        ("(1,234.00)", -1234.0),
        ("($50)", -50.0),
        ("12.5%", 12.5),
        ("-7", -7.0),
        (" 8 ", 8.0),
    ],
)
def test_parse_numeric_value_accepts(value: object, expected: float) -> None:
    assert parse_numeric_value(value) == expected


@pytest.mark.parametrize(
    "value",
    [None, True, False, "", "abc", "12abc", "nan", "inf", "1_000", "()", float("nan"), float("inf"), [1], {"a": 1}],
)
def test_parse_numeric_value_rejects(value: object) -> None:
    assert parse_numeric_value(value) is None


def test_extract_column_values_skips_non_numeric() -> None:
    rows = [{"amount": "10"}, {"amount": None}, {"amount": "n/a"}, {"other": 3}, {"amount": 2.5}]

    assert extract_column_values(rows, "amount") == [10.0, 2.5]
