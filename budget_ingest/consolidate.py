"""Merge several cost-center trees into one consolidated tree keyed by code."""

from __future__ import annotations

import logging

from budget_ingest.models import CONSOLIDATED_COST_CENTER, BudgetNode
from budget_ingest.money import round_currency
from budget_ingest.tree import build_tree, iter_nodes

logger = logging.getLogger(__name__)


def consolidated_id(code: str) -> str:
    return f"consolidated-{code}"


def consolidate_trees(trees: list[list[BudgetNode]], precision: int = 2) -> list[BudgetNode]:
    """
    Sum every partition tree code by code.

    Descriptions and types come from the first tree that carries a code.
    Leaf values add up; group values are recomputed from the merged leaves.
    Input trees are not modified.
    """
    merged: dict[str, BudgetNode] = {}
    for roots in trees:
        for node in iter_nodes(roots):
            existing = merged.get(node.code)
            if existing is None:
                merged[node.code] = BudgetNode(
                    id=consolidated_id(node.code),
                    code=node.code,
                    description=node.description,
                    level=node.level,
                    type=node.type,
                    item_type=node.item_type,
                    resource_kind=node.resource_kind,
                    unit=node.unit,
                    quantity=node.quantity,
                    unit_price=node.unit_price,
                    total_value=round_currency(node.total_value, precision),
                    budget_initial=round_currency(node.budget_initial, precision),
                    budget_current=round_currency(node.budget_current, precision),
                    cost_center=CONSOLIDATED_COST_CENTER,
                )
                continue
            existing.total_value = round_currency(existing.total_value + node.total_value, precision)
            existing.budget_initial = round_currency(existing.budget_initial + node.budget_initial, precision)
            existing.budget_current = round_currency(existing.budget_current + node.budget_current, precision)

    logger.info("Consolidated %d tree(s) into %d code(s)", len(trees), len(merged))
    return build_tree(list(merged.values()), precision)
