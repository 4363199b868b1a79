"""Expression evaluation for function nodes using simpleeval.

Expressions use Python syntax over named variables, with `^` accepted as
the power operator:

    evaluate("x ^ 2 + offset", {"x": 3, "offset": 1})  # 10

Parsed expressions are cached by source text; evaluation depends only on
the parsed expression and the variables passed in.

Error codes:
- E5001: Syntax error or unsupported construct
- E5002: Undefined variable
- E5003: Type mismatch or failed index, key or attribute lookup
- E5004: Division by zero, math domain error or overflow
- E5005: Unknown function
"""

from __future__ import annotations

import ast
import io
import logging
import math
import tokenize
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Union

from simpleeval import (
    DEFAULT_OPERATORS,
    EvalWithCompoundTypes,
    FeatureNotAvailable,
    FunctionNotDefined,
    InvalidExpression,
    NameNotDefined,
    NumberTooHigh,
    safe_power,
)

from ..errors import ExpressionError

logger = logging.getLogger(__name__)


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    # Type conversions
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    # Math functions
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    "sqrt": math.sqrt,
    "exp": math.exp,
    "log": math.log,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
}

CONSTANTS: Dict[str, Any] = {
    "true": True,
    "false": False,
    "True": True,
    "False": False,
    "pi": math.pi,
}


def _power(left: Any, right: Any) -> Any:
    result = safe_power(left, right)
    if isinstance(result, complex):
        raise ValueError(f"{left} ^ {right} has no real result")
    return result


OPERATORS = {**DEFAULT_OPERATORS, ast.Pow: _power}


def _python_source(source: str) -> str:
    """Rewrite `^` to `**` outside string literals."""
    tokens = []
    for token in tokenize.generate_tokens(io.StringIO(source).readline):
        if token.type == tokenize.OP and token.string == "^":
            token = token._replace(string="**")
        tokens.append(token)
    return tokenize.untokenize(tokens)


@lru_cache(maxsize=512)
def compile_expression(source: str) -> ast.expr:
    """Parse and cache an expression.

    Raises:
        ExpressionError: On syntax errors (E5001).
    """
    if not isinstance(source, str) or not source.strip():
        raise ExpressionError("Expression cannot be empty", code="E5001")
    try:
        return ast.parse(_python_source(source.strip()), mode="eval").body
    except (SyntaxError, tokenize.TokenError) as e:
        raise ExpressionError(f"Invalid expression syntax in {source!r}: {e}", code="E5001") from None


def evaluate(source: Union[str, ast.expr], variables: Mapping[str, Any]) -> Any:
    """Evaluate an expression (source text or parsed tree) over variables.

    Raises:
        ExpressionError: On syntax errors, undefined names, type mismatches
            or arithmetic failures.
    """
    parsed = compile_expression(source) if isinstance(source, str) else source
    text = source if isinstance(source, str) else ast.unparse(parsed)

    evaluator = EvalWithCompoundTypes(
        operators=OPERATORS,
        functions=FUNCTIONS,
        names={**CONSTANTS, **variables},
    )
    try:
        return evaluator.eval(text, previously_parsed=parsed)

    except NameNotDefined as e:
        known = ", ".join(sorted(variables)) or "none"
        raise ExpressionError(f"Undefined variable in {text!r}: {e} (known: {known})", code="E5002") from None

    except FunctionNotDefined as e:
        raise ExpressionError(f"Unknown function in {text!r}: {e}", code="E5005") from None

    except NumberTooHigh as e:
        raise ExpressionError(f"Numeric overflow in {text!r}: {e}", code="E5004") from None

    except FeatureNotAvailable as e:
        logger.warning(f"Blocked unsafe feature in expression: {e}")
        raise ExpressionError(f"Feature not available in {text!r}: {e}", code="E5001") from None

    except InvalidExpression as e:
        raise ExpressionError(f"Invalid expression {text!r}: {e}", code="E5001") from None

    except (IndexError, KeyError, AttributeError) as e:
        raise ExpressionError(f"Lookup error in {text!r}: {type(e).__name__}: {e}", code="E5003") from None

    except TypeError as e:
        raise ExpressionError(f"Type error in {text!r}: {e}", code="E5003") from None

    except (ZeroDivisionError, ValueError, OverflowError) as e:
        raise ExpressionError(f"Arithmetic error in {text!r}: {e}", code="E5004") from None

    except Exception as e:
        logger.warning(f"Unexpected error evaluating expression {text!r}: {e}")
        raise ExpressionError(f"Evaluation error in {text!r}: {type(e).__name__}: {e}", code="E5003") from e


__all__ = [
    "CONSTANTS",
    "FUNCTIONS",
    "compile_expression",
    "evaluate",
]
