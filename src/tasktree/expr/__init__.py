"""
Expression language for function nodes.

Python-syntax formulas over named variables, evaluated with simpleeval:

    evaluate("x ^ 2 + offset", {"x": 3, "offset": 1})  # 10
"""

from .evaluator import CONSTANTS, FUNCTIONS, compile_expression, evaluate

__all__ = [
    "CONSTANTS",
    "FUNCTIONS",
    "compile_expression",
    "evaluate",
]
