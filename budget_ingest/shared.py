from __future__ import annotations

import math
import unicodedata
from datetime import date, datetime, time
from typing import Any


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def cell_text(value: Any) -> str:
    """Render a cell the way it reads on screen, trimmed."""
    if is_blank(value):
        return ""
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).replace("\x00", "").strip()


def fold(text: str) -> str:
    """Uppercase, trim and strip accents so 'Código' and 'CODIGO' compare equal."""
    decomposed = unicodedata.normalize("NFKD", text.strip().upper())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def folded_cell(value: Any) -> str:
    return fold(cell_text(value))


def contains_any(text: str, needles) -> bool:
    return any(needle in text for needle in needles)


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return not (math.isnan(value) or math.isinf(value))
    return isinstance(value, int)


def cell_at(row: list, index: int | None) -> Any:
    if index is None or index < 0 or index >= len(row):
        return None
    return row[index]
