"""Locale-tolerant parsing of monetary cell values."""

from __future__ import annotations

import math
import re
from typing import Any

CURRENCY_PREFIX_RE = re.compile(r"^(?:R\$|\$)\s?")
NUMERIC_PREFIX_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def _leading_float(text: str) -> float:
    match = NUMERIC_PREFIX_RE.match(text.strip())
    if not match:
        return 0.0
    number = float(match.group(0))
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def parse_money(raw: Any) -> float:
    """
    Convert a raw cell into a float amount without ever raising.

    Handles both decimal-comma (1.234,56) and decimal-point (1,234.56)
    layouts. Anything that cannot be read as a number becomes 0.
    """
    if isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and (math.isnan(raw) or math.isinf(raw)):
            return 0.0
        return float(raw)
    if raw is None:
        return 0.0

    text = str(raw).strip()
    if not text:
        return 0.0
    text = CURRENCY_PREFIX_RE.sub("", text)

    last_comma = text.rfind(",")
    last_dot = text.rfind(".")

    if last_comma == -1 and last_dot == -1:
        return _leading_float(text)

    if last_comma == -1 and text.count(".") > 1:
        return _leading_float(text.replace(".", ""))
    if last_dot == -1 and text.count(",") > 1:
        return _leading_float(text.replace(",", ""))

    if last_comma > last_dot:
        text = text.replace(".", "").replace(",", ".")
    else:
        text = text.replace(",", "")
    return _leading_float(text)


def round_currency(value: float, precision: int = 2) -> float:
    return round(value, precision)
