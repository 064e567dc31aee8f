"""Write a budget tree to a styled .xlsx that the budget profile can read back."""

from __future__ import annotations

from pathlib import Path

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from budget_ingest.models import GROUP, BudgetNode
from budget_ingest.tree import iter_nodes

SHEET_TITLE = "Structure"
# TOTAL VALUE must stay last: on re-import the last total-like header wins.
EXPORT_HEADERS = ["CODE", "DESCRIPTION", "TYPE", "LEVEL", "COST CENTER", "INITIAL BUDGET", "TOTAL VALUE"]
HEADER_COLOR = "1F4E78"
GROUP_FILL = PatternFill("solid", fgColor="DDEBF7")
CURRENCY_FORMAT = "#,##0.00"


def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _style_sheet(ws, col_widths: list[int], header_color: str):
    """Apply bold header, color, frozen row, and column widths."""
    fill = _header_fill(header_color)
    font = _header_font()
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(str(v)) + 2)) for v in rows[0]]
    for row in rows[1:]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def tree_rows(roots: list[BudgetNode]) -> list[list]:
    return [
        [
            node.code,
            node.description,
            node.type,
            node.level,
            node.cost_center or "",
            node.budget_initial,
            node.total_value,
        ]
        for node in iter_nodes(roots)
    ]


def export_tree_xlsx(roots: list[BudgetNode], path: str | Path) -> Path:
    """Flatten the tree parents-first into one sheet and save it. Returns the written path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = tree_rows(roots)

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    ws.append(EXPORT_HEADERS)
    for node, row in zip(iter_nodes(roots), rows):
        ws.append(row)
        if node.type == GROUP:
            for cell in ws[ws.max_row]:
                cell.fill = GROUP_FILL
                cell.font = Font(bold=True)
    for column in (6, 7):
        for (cell,) in ws.iter_rows(min_row=2, min_col=column, max_col=column):
            cell.number_format = CURRENCY_FORMAT

    _style_sheet(ws, _infer_col_widths([EXPORT_HEADERS] + rows), HEADER_COLOR)
    wb.save(path)
    return path
