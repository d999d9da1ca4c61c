"""Built-in demo tools."""

import math
from datetime import datetime

from agentrun.tools.base import Tool
from agentrun.tools.registry import ToolRegistry, build_schema

_OPERATIONS = {
    "add": lambda a, b: a + b,
    "+": lambda a, b: a + b,
    "subtract": lambda a, b: a - b,
    "-": lambda a, b: a - b,
    "multiply": lambda a, b: a * b,
    "*": lambda a, b: a * b,
    "divide": lambda a, b: a / b,
    "/": lambda a, b: a / b,
    "power": lambda a, b: math.pow(a, b),
    "^": lambda a, b: math.pow(a, b),
    "mod": lambda a, b: math.fmod(a, b),
    "%": lambda a, b: math.fmod(a, b),
}


def calculator(operation: str, a: float, b: float) -> dict:
    """Perform basic arithmetic.

    Args:
        operation: One of add, subtract, multiply, divide, power, mod (or + - * / ^ %)
        a: First operand
        b: Second operand

    Returns:
        ``{"result": value}``
    """
    op = operation.strip().lower()
    fn = _OPERATIONS.get(op)
    if fn is None:
        raise ValueError(f"unknown operation: {operation}")
    if op in ("divide", "/", "mod", "%") and b == 0:
        raise ValueError("division by zero")

    result = fn(float(a), float(b))
    if not math.isfinite(result):
        raise ValueError("result is not a finite number")
    if result.is_integer():
        return {"result": int(result)}
    return {"result": result}


def get_current_time() -> str:
    """Get the current local date and time."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S (local time)")


CALCULATOR_TOOL = Tool(
    schema=build_schema(calculator, "Perform arithmetic on two numbers"),
    fn=calculator,
)
CALCULATOR_TOOL.schema.parameters[0].enum = ["add", "subtract", "multiply", "divide", "power", "mod"]

CURRENT_TIME_TOOL = Tool(
    schema=build_schema(get_current_time, "Get the current date and time"),
    fn=get_current_time,
)


def builtin_registry() -> ToolRegistry:
    """A fresh registry holding the built-in tools."""
    return ToolRegistry([CALCULATOR_TOOL, CURRENT_TIME_TOOL])
