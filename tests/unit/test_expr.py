"""
Unit tests for the function-node expression language.

Tests expr/evaluator.py:
- Parsing and caching, with `^` as power
- Evaluation over variables and built-in functions
- Error codes E5001-E5005
"""

import ast

import pytest

from tasktree.errors import ExpressionError
from tasktree.expr import compile_expression, evaluate


# =============================================================================
# Parsing
# =============================================================================


class TestCompile:
    """Tests for compile_expression."""

    def test_caret_is_power(self) -> None:
        """x ^ 2 parses as a power, not XOR."""
        expr = compile_expression("x ^ 2")
        assert isinstance(expr, ast.BinOp)
        assert isinstance(expr.op, ast.Pow)

    def test_caret_in_string_untouched(self) -> None:
        assert evaluate("'a^b'", {}) == "a^b"

    def test_compile_is_cached(self) -> None:
        """The same source returns the same parsed tree."""
        assert compile_expression("x * 2") is compile_expression("x * 2")

    @pytest.mark.parametrize("source", ["1 +", "(x", "x y", "", "   ", "3 $ 4", "x = 1"])
    def test_syntax_errors(self, source: str) -> None:
        """Malformed expressions raise E5001."""
        with pytest.raises(ExpressionError) as exc_info:
            compile_expression(source)
        assert exc_info.value.code == "E5001"


# =============================================================================
# Evaluation
# =============================================================================


class TestEvaluate:
    """Tests for expression evaluation."""

    @pytest.mark.parametrize("source,expected", [
        ("x ^ 2 + offset", 10),
        ("-2 ^ 2", -4),
        ("2 ^ 3 ^ 2", 512),
        ("(1 + 2) * 3", 9),
        ("7 % 4", 3),
        ("1 / 4", 0.25),
        ("x > 1 and offset == 1", True),
        ("x < 1 or offset == 1", True),
        ("not (x == 3)", False),
        ("not false", True),
        ("'big' if x > 2 else 'small'", "big"),
        ("'ab' + 'cd'", "abcd"),
        ("'a' < 'b'", True),
    ])
    def test_values(self, source: str, expected) -> None:
        assert evaluate(source, {"x": 3, "offset": 1}) == expected

    def test_functions(self) -> None:
        """Built-in numeric functions."""
        assert evaluate("abs(-3)", {}) == 3
        assert evaluate("max(1, 5, 2)", {}) == 5
        assert evaluate("floor(2.7)", {}) == 2
        assert evaluate("sqrt(16)", {}) == 4.0

    def test_short_circuit(self) -> None:
        """The right side of 'and' is skipped when the left is false."""
        assert evaluate("false and missing", {}) is False

    def test_undefined_variable(self) -> None:
        """Unknown names raise E5002."""
        with pytest.raises(ExpressionError) as exc_info:
            evaluate("y + 1", {"x": 1})
        assert exc_info.value.code == "E5002"
        assert "known: x" in exc_info.value.message

    @pytest.mark.parametrize("source", ["1 + 'a'", "-'a'", "abs('a')", "abs(1, 2)"])
    def test_type_mismatch(self, source: str) -> None:
        """Operators and functions applied to the wrong values raise E5003."""
        with pytest.raises(ExpressionError) as exc_info:
            evaluate(source, {})
        assert exc_info.value.code == "E5003"

    @pytest.mark.parametrize("source", ["str(x)[5]", "{}['a']", "[1, 2][x]"])
    def test_failed_lookup(self, source: str) -> None:
        """Out-of-range indexes and missing keys raise E5003."""
        with pytest.raises(ExpressionError) as exc_info:
            evaluate(source, {"x": 3})
        assert exc_info.value.code == "E5003"

    @pytest.mark.parametrize("source", ["1 / 0", "5 % 0", "(-8) ^ 0.5", "sqrt(-1)"])
    def test_arithmetic_errors(self, source: str) -> None:
        """Division by zero and domain errors raise E5004."""
        with pytest.raises(ExpressionError) as exc_info:
            evaluate(source, {})
        assert exc_info.value.code == "E5004"

    def test_unknown_function(self) -> None:
        """Calls to unknown functions raise E5005."""
        with pytest.raises(ExpressionError) as exc_info:
            evaluate("nope(1)", {})
        assert exc_info.value.code == "E5005"

    def test_blocked_attribute_access(self) -> None:
        """Dunder access is refused by the evaluator."""
        with pytest.raises(ExpressionError) as exc_info:
            evaluate("x.__class__", {"x": 1})
        assert exc_info.value.code == "E5001"

    def test_evaluate_parsed_tree(self) -> None:
        """evaluate() accepts an already parsed expression."""
        expr = compile_expression("tic * tic")
        assert [evaluate(expr, {"tic": t}) for t in range(4)] == [0, 1, 4, 9]
