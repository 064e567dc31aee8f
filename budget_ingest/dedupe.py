"""Snapshot deduplication, realized-cost correction and budget linking for transactions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from budget_ingest.config import IngestConfig
from budget_ingest.loader import Workbook
from budget_ingest.models import BudgetNode, TransactionItem
from budget_ingest.reconcile import GroundTruth, correction_ratio, probe_cells
from budget_ingest.shared import contains_any, fold
from budget_ingest.tree import iter_nodes

logger = logging.getLogger(__name__)

STRATEGY_REALIZED_PROBE = "realized_probe"


@dataclass
class RescaleResult:
    items: list[TransactionItem]
    before: float
    after: float
    ratio: float | None = None
    applied: bool = False

    def to_dict(self) -> dict:
        return {"before": self.before, "after": self.after, "ratio": self.ratio, "applied": self.applied}


def deduplicate_transactions(items: list[TransactionItem]) -> list[TransactionItem]:
    """
    Collapse repeated monthly snapshots of the same line.

    Items sharing a logical key keep the one with the highest accumulated
    value; on ties the first one seen stays. Items without a budget code are
    never merged. Non-positive survivors are dropped.
    """
    unique: dict[str, TransactionItem] = {}
    for item in items:
        key = item.logical_key
        existing = unique.get(key)
        if existing is None or item.accumulated_value > existing.accumulated_value:
            unique[key] = item
    kept = [item for item in unique.values() if item.accumulated_value > 0]
    if len(kept) != len(items):
        logger.info("Deduplicated %d transaction rows into %d", len(items), len(kept))
    return kept


def find_realized_total(workbook: Workbook, config: IngestConfig) -> GroundTruth | None:
    thresholds = config.thresholds
    candidates: list[GroundTruth] = []
    for sheet in workbook.sheets:
        if not contains_any(fold(sheet.name), config.realized_sheet_keywords):
            continue
        candidates.extend(
            probe_cells(
                sheet,
                thresholds.realized_probe_rows,
                thresholds.realized_probe_cols,
                thresholds.ground_truth_floor,
                strategy=STRATEGY_REALIZED_PROBE,
            )
        )
    if not candidates:
        return None
    best = max(candidates, key=lambda candidate: candidate.value)
    logger.info("Realized total %.2f from sheet '%s' row %d column %d", best.value, best.sheet, best.row, best.column)
    return best


def rescale_transactions(
    items: list[TransactionItem],
    ground_truth: GroundTruth | None,
    config: IngestConfig,
) -> RescaleResult:
    precision = config.thresholds.currency_precision
    before = sum(item.accumulated_value for item in items)
    result = RescaleResult(items=list(items), before=round(before, precision), after=round(before, precision))
    if ground_truth is None:
        return result
    ratio = correction_ratio(ground_truth.value, before, config)
    if ratio is None:
        return result
    result.items = [replace(item, accumulated_value=item.accumulated_value * ratio) for item in items]
    result.ratio = round(ratio, 6)
    result.applied = True
    result.after = round(sum(item.accumulated_value for item in result.items), precision)
    logger.info("Transaction ratio correction %.4f: %.2f -> %.2f", ratio, before, result.after)
    return result


def _index_budget(budget) -> dict[str, str]:
    index: dict[str, str] = {}
    for node in iter_nodes(budget):
        index.setdefault(node.code, node.id)
        index.setdefault(node.code.strip(), node.id)
    return index


def link_transactions(items: list[TransactionItem], budget: list[BudgetNode]) -> list[TransactionItem]:
    """Attach ``original_budget_id`` where an item's budget code matches a node code, exactly or trimmed."""
    index = _index_budget(budget)
    linked: list[TransactionItem] = []
    matched = 0
    for item in items:
        code = item.budget_group_code
        node_id = None
        if code:
            node_id = index.get(code) or index.get(code.strip())
        if node_id:
            matched += 1
        linked.append(replace(item, original_budget_id=node_id))
    logger.info("Linked %d of %d transactions to budget codes", matched, len(items))
    return linked
