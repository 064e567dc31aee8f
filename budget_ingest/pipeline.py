"""
End-to-end ingestion of one document.

Budget workbooks go through header sniffing and extraction per sheet, then a
whole-document pass for hierarchy, ground-truth reconciliation and tree
building. Cost-report workbooks go through extraction, snapshot
deduplication, realized-total correction and optional budget linking.

Both entry points never raise for a bad document: the failure is logged and
returned on the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from budget_ingest.config import IngestConfig, SheetProfile, load_config
from budget_ingest.dedupe import (
    RescaleResult,
    deduplicate_transactions,
    find_realized_total,
    link_transactions,
    rescale_transactions,
)
from budget_ingest.extract import extract_lines, extract_transactions
from budget_ingest.hierarchy import classify_lines
from budget_ingest.loader import Sheet, Workbook, load_workbook
from budget_ingest.models import BudgetNode, ClassifiedLine, RawLine, SheetReport, TransactionItem
from budget_ingest.reconcile import ReconciliationResult, find_ground_truth, reconcile_lines, select_sources
from budget_ingest.schema import HeaderMatch, sniff_header
from budget_ingest.tree import build_tree, lines_to_nodes, tree_total

logger = logging.getLogger(__name__)

STATUS_PARSED = "parsed"
STATUS_SKIPPED = "skipped"
EMPTY_BUDGET_WARNING = "No budget lines could be extracted from a non-empty document."
EMPTY_TRANSACTIONS_WARNING = "No transactions could be extracted from a non-empty document."


@dataclass
class BudgetResult:
    roots: list[BudgetNode] = field(default_factory=list)
    lines: list[ClassifiedLine] = field(default_factory=list)
    sheets: list[SheetReport] = field(default_factory=list)
    reconciliation: ReconciliationResult | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    source: str | None = None
    cost_center: str | None = None

    @property
    def total(self) -> float:
        return tree_total(self.roots)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TransactionResult:
    items: list[TransactionItem] = field(default_factory=list)
    sheets: list[SheetReport] = field(default_factory=list)
    raw_count: int = 0
    rescale: RescaleResult | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    source: str | None = None

    @property
    def total(self) -> float:
        return round(sum(item.accumulated_value for item in self.items), 2)

    @property
    def ok(self) -> bool:
        return self.error is None


def _as_workbook(source: str | Path | Workbook) -> Workbook:
    if isinstance(source, Workbook):
        return source
    return load_workbook(source)


def _source_label(source: str | Path | Workbook) -> str | None:
    if isinstance(source, Workbook):
        return source.source
    return str(source)


def _sniff_sheet(sheet: Sheet, profile: SheetProfile) -> tuple[HeaderMatch | None, SheetReport]:
    if sheet.row_count < profile.min_rows:
        report = SheetReport(name=sheet.name, status=STATUS_SKIPPED, reason=f"fewer than {profile.min_rows} rows")
        logger.debug("Sheet '%s' skipped: %s", sheet.name, report.reason)
        return None, report
    match = sniff_header(sheet.rows, profile)
    if match is None:
        report = SheetReport(name=sheet.name, status=STATUS_SKIPPED, reason="header not found")
        logger.warning("Sheet '%s': no %s header in the first %d rows", sheet.name, profile.name, profile.header_scan_rows)
        return None, report
    logger.info("Sheet '%s': %s header at row %d", sheet.name, profile.name, match.header_row_index)
    return match, SheetReport(
        name=sheet.name,
        status=STATUS_PARSED,
        header_row=match.header_row_index,
        roles=dict(match.role_to_column),
    )


def ingest_budget(
    source: str | Path | Workbook,
    config: IngestConfig | None = None,
    cost_center: str | None = None,
) -> BudgetResult:
    config = config or load_config()
    result = BudgetResult(source=_source_label(source), cost_center=cost_center)
    try:
        workbook = _as_workbook(source)
        raw_lines: list[RawLine] = []
        for sheet in workbook.sheets:
            match, report = _sniff_sheet(sheet, config.budget_profile)
            if match is not None:
                sheet_lines = extract_lines(sheet, match, config)
                report.extracted = len(sheet_lines)
                raw_lines.extend(sheet_lines)
            result.sheets.append(report)

        selected, note = select_sources(raw_lines, config)
        if note:
            result.warnings.append(note)
        classified = classify_lines(selected, config)
        ground_truth = find_ground_truth(workbook, config)
        reconciliation = reconcile_lines(classified, ground_truth, config)
        result.reconciliation = reconciliation
        result.lines = reconciliation.lines

        nodes, node_warnings = lines_to_nodes(reconciliation.lines, cost_center)
        result.warnings.extend(node_warnings)
        result.roots = build_tree(nodes, config.thresholds.currency_precision)

        if not result.roots and not workbook.is_empty:
            result.warnings.append(EMPTY_BUDGET_WARNING)
        logger.info(
            "Budget ingested: %d line(s), %d root(s), total %.2f",
            len(result.lines),
            len(result.roots),
            result.total,
        )
    except Exception as exc:
        logger.exception("Budget ingestion failed for %s", result.source)
        return BudgetResult(
            source=result.source,
            cost_center=cost_center,
            sheets=result.sheets,
            error=str(exc),
            warnings=[f"Budget ingestion failed: {exc}"],
        )
    return result


def ingest_transactions(
    source: str | Path | Workbook,
    config: IngestConfig | None = None,
    budget: list[BudgetNode] | None = None,
) -> TransactionResult:
    config = config or load_config()
    result = TransactionResult(source=_source_label(source))
    try:
        workbook = _as_workbook(source)
        raw_items: list[TransactionItem] = []
        for sheet in workbook.sheets:
            match, report = _sniff_sheet(sheet, config.transaction_profile)
            if match is not None:
                sheet_items = extract_transactions(sheet, match, config)
                report.extracted = len(sheet_items)
                raw_items.extend(sheet_items)
            result.sheets.append(report)

        result.raw_count = len(raw_items)
        unique = deduplicate_transactions(raw_items)
        rescale = rescale_transactions(unique, find_realized_total(workbook, config), config)
        result.rescale = rescale
        items = rescale.items
        if budget is not None:
            items = link_transactions(items, budget)
        result.items = items

        if not result.items and not workbook.is_empty:
            result.warnings.append(EMPTY_TRANSACTIONS_WARNING)
        logger.info(
            "Transactions ingested: %d row(s) -> %d item(s), total %.2f",
            result.raw_count,
            len(result.items),
            result.total,
        )
    except Exception as exc:
        logger.exception("Transaction ingestion failed for %s", result.source)
        return TransactionResult(
            source=result.source,
            sheets=result.sheets,
            error=str(exc),
            warnings=[f"Transaction ingestion failed: {exc}"],
        )
    return result
