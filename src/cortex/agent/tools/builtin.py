"""
Built-in utility tools: current time, calculator and weather.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from datetime import datetime
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import Field

from .base import BaseTool, NoParams, ToolParams

logger = logging.getLogger(__name__)

WEEKDAYS = ("星期一", "星期二", "星期三", "星期四", "星期五", "星期六", "星期日")


def format_chinese_datetime(moment: datetime) -> str:
    """Format as e.g. '2026/02/12 星期四 14:09:57'."""
    return f"{moment:%Y/%m/%d} {WEEKDAYS[moment.weekday()]} {moment:%H:%M:%S}"


def format_chinese_date(moment: datetime) -> str:
    """Format as e.g. '2026年2月12日星期四'."""
    return f"{moment.year}年{moment.month}月{moment.day}日{WEEKDAYS[moment.weekday()]}"


# ============================================
# get_current_time
# ============================================


class CurrentTimeTool(BaseTool):
    """Report the current date and time in the configured timezone."""

    name = "get_current_time"
    description = "获取当前的日期和时间。当用户询问现在几点、今天是几号、今天星期几等时间相关问题时使用。"
    params_model = NoParams
    timeout_seconds = 5.0

    def __init__(self, timezone: str = "Asia/Shanghai", clock: Optional[Callable[[], datetime]] = None):
        self.tz = ZoneInfo(timezone)
        self._clock = clock

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock().astimezone(self.tz)
        return datetime.now(self.tz)

    async def execute(self, params: NoParams) -> str:
        return format_chinese_datetime(self.now())


# ============================================
# calculator
# ============================================

_EXPRESSION_FILTER = re.compile(r"[^0-9+\-*/().%\s]")

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.FloorDiv: operator.floordiv,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

MAX_EXPONENT = 100


def _evaluate(node: ast.AST) -> Union[int, float]:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ValueError("exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"unsupported expression node: {type(node).__name__}")


def _format_number(value: Union[int, float]) -> str:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    if isinstance(value, float):
        return repr(round(value, 12))
    return str(value)


def calculate(expression: str) -> str:
    """Evaluate an arithmetic expression safely.

    Only digits, + - * / % ( ) . and whitespace survive sanitizing; the
    rest is evaluated by walking the parsed AST, never with eval().
    """
    sanitized = _EXPRESSION_FILTER.sub("", expression).strip()
    if not sanitized:
        return "无效的数学表达式"

    try:
        tree = ast.parse(sanitized, mode="eval")
        result = _evaluate(tree)
    except (SyntaxError, ValueError, TypeError, ArithmeticError) as e:
        logger.debug(f"Calculator failed for {expression!r}: {e}")
        return f'计算出错: 无法计算 "{expression}"'

    return f"{expression} = {_format_number(result)}"


class CalculatorParams(ToolParams):
    expression: str = Field(
        description="要计算的数学表达式，例如 '127 * 389' 或 '(100 + 50) * 0.8'"
    )


class CalculatorTool(BaseTool):
    """Arithmetic the model should not do in its head."""

    name = "calculator"
    description = "数学计算器。当用户需要进行数学计算时使用，比如加减乘除、百分比等。传入数学表达式，返回计算结果。"
    params_model = CalculatorParams
    timeout_seconds = 5.0

    async def execute(self, params: CalculatorParams) -> str:
        return calculate(params.expression)


# ============================================
# get_weather
# ============================================

MOCK_WEATHER = {
    "北京": "晴，气温 -2°C ~ 8°C，北风3级，空气质量良",
    "上海": "多云，气温 5°C ~ 12°C，东南风2级，空气质量优",
    "广州": "阴，气温 15°C ~ 22°C，微风，空气质量优",
    "深圳": "多云转晴，气温 16°C ~ 24°C，东风2级，空气质量优",
    "杭州": "小雨，气温 4°C ~ 10°C，北风2级，空气质量良",
    "成都": "阴，气温 6°C ~ 13°C，微风，空气质量轻度污染",
}


class WeatherParams(ToolParams):
    city: str = Field(description="要查询天气的城市名，例如 '北京'、'上海'")


class WeatherTool(BaseTool):
    """Mock weather lookup for a fixed set of cities."""

    name = "get_weather"
    description = "查询指定城市的天气情况。当用户询问某个城市的天气时使用。"
    params_model = WeatherParams
    timeout_seconds = 5.0

    async def execute(self, params: WeatherParams) -> str:
        city = params.city.strip()
        weather = MOCK_WEATHER.get(city)
        if weather:
            return weather
        return f"抱歉，暂未收录「{city}」的天气数据。目前支持的城市：{'、'.join(MOCK_WEATHER)}"
