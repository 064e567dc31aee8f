"""Row extraction for budget sheets and transaction (cost report) sheets."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any

from budget_ingest.config import IngestConfig
from budget_ingest.loader import Sheet
from budget_ingest.models import RawLine, TransactionItem
from budget_ingest.money import parse_money
from budget_ingest.schema import HeaderMatch
from budget_ingest.shared import cell_at, cell_text, contains_any, fold, is_number

DEFAULT_DESCRIPTION = "Unnamed item"
DEFAULT_TRANSACTION_DESCRIPTION = "No description"
EXCEL_EPOCH = date(1899, 12, 30)
SLASH_DATE_RE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{2,4})")
ISO_DATE_RE = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})")
NUMERIC_TEXT_RE = re.compile(r"^\s*(?:R\$|\$)?\s?[+-]?\d[\d.,]*\s*$")


def is_summary_sheet(name: str, config: IngestConfig) -> bool:
    return contains_any(fold(name), config.summary_sheet_keywords)


def is_construction_cost(description: str, config: IngestConfig) -> bool:
    return not contains_any(fold(description), config.non_construction_keywords)


def _text(row: list[Any], column: int | None, default: str = "") -> str:
    if column is None:
        return default
    return cell_text(cell_at(row, column))


def _money(row: list[Any], column: int | None) -> float:
    return parse_money(cell_at(row, column))


def _cell_number(value: Any) -> float | None:
    if is_number(value):
        return float(value)
    if isinstance(value, str) and NUMERIC_TEXT_RE.match(value):
        return parse_money(value)
    return None


def _largest_number(row: list[Any], floor: float, skip: set[int | None]) -> float:
    # Text exports keep every cell as a string, so numeric text counts too.
    numbers = []
    for index, value in enumerate(row):
        if index in skip:
            continue
        number = _cell_number(value)
        if number is not None and number > floor:
            numbers.append(number)
    return max(numbers) if numbers else 0.0


def extract_lines(sheet: Sheet, match: HeaderMatch, config: IngestConfig) -> list[RawLine]:
    """
    Turn the rows below a detected header into RawLines.

    Rows without a code are dropped unless the sheet is a summary sheet, in
    which case they get a synthetic ``SUM-<row>`` code. The line total comes
    from the total column, then unit price times quantity, then the largest
    numeric cell above the noise threshold.
    """
    summary = is_summary_sheet(sheet.name, config)
    noise_threshold = config.thresholds.noise_threshold
    code_col = match.column("code")
    desc_col = match.column("description")
    unit_col = match.column("unit")
    qty_col = match.column("quantity")
    unit_price_col = match.column("unit_price")
    total_col = match.column("total")

    lines: list[RawLine] = []
    for index in range(match.header_row_index + 1, len(sheet.rows)):
        row = sheet.rows[index]
        if not row:
            continue

        code = _text(row, code_col)
        if not code:
            if not summary:
                continue
            code = f"SUM-{index}"
        if contains_any(fold(code), config.skip_code_keywords):
            continue

        description = _text(row, desc_col, DEFAULT_DESCRIPTION)
        unit = _text(row, unit_col)

        quantity = 1.0
        if qty_col is not None:
            parsed_qty = _money(row, qty_col)
            if parsed_qty > 0:
                quantity = parsed_qty

        total = _money(row, total_col) if total_col is not None else 0.0
        if total == 0 and unit_price_col is not None:
            total = _money(row, unit_price_col) * quantity
        if total == 0:
            total = _largest_number(row, noise_threshold, {code_col, desc_col})

        if total <= 0 and len(description) <= 2:
            continue

        lines.append(
            RawLine(
                code=code,
                description=description,
                unit=unit,
                quantity=quantity,
                unit_price=total / quantity if total > 0 else 0.0,
                total=total,
                origin_sheet=sheet.name,
                is_construction_cost=is_construction_cost(description, config),
                source_row=index,
            )
        )
    return lines


def parse_transaction_date(raw: Any) -> str | None:
    """Read an Excel serial, a date object, ``dd/mm/yyyy`` or ISO text into ``YYYY-MM-DD``."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    if is_number(raw):
        if raw <= 0:
            return None
        try:
            return (EXCEL_EPOCH + timedelta(days=round(raw))).isoformat()
        except OverflowError:
            return None

    text = str(raw)
    match = SLASH_DATE_RE.match(text)
    if match:
        day, month, year = match.groups()
        if len(year) == 2:
            year = f"20{year}"
        try:
            return date(int(year), int(month), int(day)).isoformat()
        except ValueError:
            return None
    match = ISO_DATE_RE.match(text)
    if match:
        try:
            return date(*(int(part) for part in match.groups())).isoformat()
        except ValueError:
            return None
    return None


def is_indirect_tag(tag: str, config: IngestConfig) -> bool:
    if not tag:
        return False
    return tag in config.indirect_tags_exact or contains_any(tag, config.indirect_tags_contains)


def _classification_tag(row: list[Any], match: HeaderMatch, config: IngestConfig) -> str:
    tag_col = match.column("tag_exact")
    if tag_col is None:
        tag_col = match.column("tag_loose")
    if tag_col is not None:
        return fold(_text(row, tag_col))

    fallback = _text(row, config.thresholds.tag_fallback_column)
    if fallback and len(fallback) < config.thresholds.tag_fallback_max_length:
        return fold(fallback)
    return ""


def extract_transactions(sheet: Sheet, match: HeaderMatch, config: IngestConfig) -> list[TransactionItem]:
    value_col = match.column("value")
    desc_col = match.column("description")
    code_col = match.column("budget_code")

    items: list[TransactionItem] = []
    for index in range(match.header_row_index + 1, len(sheet.rows)):
        row = sheet.rows[index]
        if not row:
            continue
        value = _money(row, value_col)
        if value == 0:
            continue

        tag = _classification_tag(row, match, config)
        budget_code = _text(row, code_col) or None
        items.append(
            TransactionItem(
                id=f"TX-{sheet.name}-{index}",
                service_description=_text(row, desc_col, DEFAULT_TRANSACTION_DESCRIPTION),
                accumulated_value=value,
                budget_group_code=budget_code,
                date=parse_transaction_date(cell_at(row, match.column("date"))),
                is_indirect_cost=is_indirect_tag(tag, config),
                classification_tag=tag,
                document_number=_text(row, match.column("document_number")),
                group_name=_text(row, match.column("group_name")),
                origin_sheet=sheet.name,
            )
        )
    return items
