"""
Ground-truth detection and ratio correction of extracted budget lines.

Summary sheets usually state the project's grand total somewhere near a fixed
cell. When the sum of the extracted payable lines disagrees with that figure
by more than the tolerance, every line is scaled by the same ratio so the
budget adds up to the stated total while keeping its proportions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from budget_ingest.config import IngestConfig
from budget_ingest.extract import is_summary_sheet
from budget_ingest.hierarchy import payable_total
from budget_ingest.loader import Sheet, Workbook
from budget_ingest.models import MACRO_STAGE, ClassifiedLine, RawLine
from budget_ingest.money import parse_money, round_currency
from budget_ingest.shared import contains_any, fold, folded_cell

logger = logging.getLogger(__name__)

STRATEGY_PROBE = "coordinate_probe"
STRATEGY_MAX_SCAN = "max_scan"
STRATEGY_SEMANTIC = "semantic_row"

GLOBAL_CODE = "GLOBAL"
GLOBAL_DESCRIPTION = "Global viability cost"


@dataclass(frozen=True)
class GroundTruth:
    value: float
    sheet: str
    strategy: str
    row: int
    column: int

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "sheet": self.sheet,
            "strategy": self.strategy,
            "row": self.row,
            "column": self.column,
        }


@dataclass
class ReconciliationResult:
    lines: list[ClassifiedLine]
    before: float
    after: float
    ratio: float | None = None
    applied: bool = False
    injected_global: bool = False
    ground_truth: GroundTruth | None = None
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "before": self.before,
            "after": self.after,
            "ratio": self.ratio,
            "applied": self.applied,
            "injected_global": self.injected_global,
            "ground_truth": self.ground_truth.to_dict() if self.ground_truth else None,
            "notes": list(self.notes),
        }


def probe_cells(
    sheet: Sheet,
    rows,
    cols,
    floor: float,
    strategy: str = STRATEGY_PROBE,
) -> list[GroundTruth]:
    found = []
    for row in rows:
        for col in cols:
            value = parse_money(sheet.cell(row, col))
            if value > floor:
                found.append(GroundTruth(value=value, sheet=sheet.name, strategy=strategy, row=row, column=col))
    return found


def _scan_max(sheet: Sheet, floor: float) -> list[GroundTruth]:
    best: GroundTruth | None = None
    for r, row in enumerate(sheet.rows):
        for c, cell in enumerate(row):
            value = parse_money(cell)
            if value > floor and (best is None or value > best.value):
                best = GroundTruth(value=value, sheet=sheet.name, strategy=STRATEGY_MAX_SCAN, row=r, column=c)
    return [best] if best else []


def _scan_semantic_rows(sheet: Sheet, floor: float, config: IngestConfig) -> list[GroundTruth]:
    found = []
    for r, row in enumerate(sheet.rows):
        if not row:
            continue
        row_text = " ".join(folded_cell(cell) for cell in row)
        if not contains_any(row_text, config.total_row_keywords):
            continue
        if not contains_any(row_text, config.total_row_reinforcers):
            continue
        for c, cell in enumerate(row):
            value = parse_money(cell)
            if value > floor:
                found.append(GroundTruth(value=value, sheet=sheet.name, strategy=STRATEGY_SEMANTIC, row=r, column=c))
    return found


def find_ground_truth(workbook: Workbook, config: IngestConfig) -> GroundTruth | None:
    """Largest believable grand total on any summary-like sheet, or None."""
    thresholds = config.thresholds
    floor = thresholds.ground_truth_floor
    candidates: list[GroundTruth] = []

    for sheet in workbook.sheets:
        if not contains_any(fold(sheet.name), config.ground_truth_sheet_keywords):
            continue
        if sheet.row_count < thresholds.ground_truth_min_rows:
            continue
        candidates.extend(probe_cells(sheet, thresholds.probe_rows, thresholds.probe_cols, floor))
        candidates.extend(_scan_max(sheet, floor))
        candidates.extend(_scan_semantic_rows(sheet, floor, config))

    if not candidates:
        return None
    best = max(candidates, key=lambda candidate: candidate.value)
    logger.info(
        "Ground truth %.2f from sheet '%s' (%s, row %d, column %d)",
        best.value,
        best.sheet,
        best.strategy,
        best.row,
        best.column,
    )
    return best


def correction_ratio(target: float, current: float, config: IngestConfig) -> float | None:
    """Ratio to apply, or None when the totals already agree within tolerance."""
    if target <= config.thresholds.ground_truth_floor or current <= 0:
        return None
    ratio = target / current
    if abs(1 - ratio) <= config.thresholds.divergence_tolerance:
        return None
    return ratio


def select_sources(lines: list[RawLine], config: IngestConfig) -> tuple[list[RawLine], str | None]:
    """
    Pick between summary-sheet lines and detailed lines.

    Summary lines alone are used when only they reach the ground-truth floor;
    detailed lines alone are used when they reach it. Otherwise both stay.
    """
    if not config.thresholds.prefer_detailed_sources:
        return lines, None
    floor = config.thresholds.ground_truth_floor
    summary = [line for line in lines if is_summary_sheet(line.origin_sheet, config)]
    detailed = [line for line in lines if not is_summary_sheet(line.origin_sheet, config)]
    if not summary or not detailed:
        return lines, None
    summary_sum = sum(line.total for line in summary)
    detailed_sum = sum(line.total for line in detailed)
    logger.debug("Source totals: summary=%.2f detailed=%.2f", summary_sum, detailed_sum)
    if summary_sum > floor and detailed_sum < floor:
        return summary, f"Used summary-sheet lines only ({len(summary)} lines)."
    if detailed_sum > floor:
        return detailed, f"Dropped {len(summary)} summary-sheet line(s) in favour of detailed lines."
    return lines, None


def _global_line(ground_truth: GroundTruth) -> ClassifiedLine:
    return ClassifiedLine(
        code=GLOBAL_CODE,
        description=GLOBAL_DESCRIPTION,
        unit="vb",
        quantity=1.0,
        unit_price=ground_truth.value,
        total=ground_truth.value,
        origin_sheet=ground_truth.sheet,
        is_construction_cost=True,
        is_group=False,
        item_type=MACRO_STAGE,
    )


def reconcile_lines(
    lines: list[ClassifiedLine],
    ground_truth: GroundTruth | None,
    config: IngestConfig,
) -> ReconciliationResult:
    precision = config.thresholds.currency_precision
    before = payable_total(lines)
    result = ReconciliationResult(
        lines=list(lines),
        before=round_currency(before, precision),
        after=round_currency(before, precision),
        ground_truth=ground_truth,
    )
    if ground_truth is None or ground_truth.value <= config.thresholds.ground_truth_floor:
        return result

    if before == 0:
        result.lines.append(_global_line(ground_truth))
        result.injected_global = True
        result.after = round_currency(ground_truth.value, precision)
        result.notes.append("No payable lines found; injected a GLOBAL line carrying the ground-truth total.")
        logger.info("No payable lines; injected GLOBAL line of %.2f", ground_truth.value)
        return result

    ratio = correction_ratio(ground_truth.value, before, config)
    result.ratio = round(ground_truth.value / before, 6)
    if ratio is None:
        return result

    result.lines = [
        replace(line, total=line.total * ratio, unit_price=line.unit_price * ratio) for line in lines
    ]
    result.applied = True
    result.after = round_currency(payable_total(result.lines), precision)
    logger.info(
        "Ratio correction %.4f applied: %.2f -> %.2f (target %.2f)",
        ratio,
        before,
        result.after,
        ground_truth.value,
    )
    return result
