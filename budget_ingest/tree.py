"""
Budget tree construction, recompute and edit operations.

Nodes are linked through the dot-delimited code: ``01.02.03`` hangs under
``01.02``. Every node with children carries the rounded sum of its children in
``total_value``, ``budget_initial`` and ``budget_current``; every edit helper in
this module restores that property before returning.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator

from budget_ingest.codes import code_level, code_sort_key, parent_code, resource_kind_for
from budget_ingest.models import GROUP, ITEM, RESOURCE_KINDS, SERVICE, BudgetNode, ClassifiedLine
from budget_ingest.money import round_currency

logger = logging.getLogger(__name__)

RESOURCE_DESCRIPTIONS = {"MT": "MATERIAL", "ST": "THIRD-PARTY SERVICES", "EQ": "EQUIPMENT"}


class TreeIntegrityError(ValueError):
    pass


def node_id_for(code: str, cost_center: str | None = None) -> str:
    return f"{cost_center or 'node'}:{code}"


def lines_to_nodes(
    lines: list[ClassifiedLine],
    cost_center: str | None = None,
) -> tuple[list[BudgetNode], list[str]]:
    """
    Convert classified lines into detached nodes.

    Lines absorbed by a payable group are left out so the group keeps its own
    value. Repeated codes keep the first occurrence.
    """
    nodes: list[BudgetNode] = []
    warnings: list[str] = []
    seen: set[str] = set()
    absorbed = 0
    for line in lines:
        if line.absorbed_by is not None:
            absorbed += 1
            continue
        if line.code in seen:
            warnings.append(f"Duplicate code '{line.code}' from sheet '{line.origin_sheet}' ignored.")
            logger.warning("Duplicate budget code %s ignored (sheet %s)", line.code, line.origin_sheet)
            continue
        seen.add(line.code)
        value = round_currency(line.total)
        nodes.append(
            BudgetNode(
                id=node_id_for(line.code, cost_center),
                code=line.code,
                description=line.description,
                level=code_level(line.code),
                type=GROUP if line.is_group else ITEM,
                item_type=line.item_type,
                resource_kind=None if line.is_group else resource_kind_for(line.code),
                unit=line.unit,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_value=value,
                budget_initial=value,
                budget_current=value,
                cost_center=cost_center,
            )
        )
    if absorbed:
        warnings.append(f"{absorbed} line(s) folded into payable group lines.")
    return nodes, warnings


def sort_siblings(nodes: list[BudgetNode]) -> None:
    pending = [nodes]
    while pending:
        siblings = pending.pop()
        siblings.sort(key=lambda node: code_sort_key(node.code))
        pending.extend(node.children for node in siblings if node.children)


def recompute_totals(roots: list[BudgetNode], precision: int = 2) -> float:
    """Recompute every group total bottom-up and return the grand total."""
    visited: set[int] = set()
    # (node, children_done): a node is summed only after all of its children.
    stack = [(root, False) for root in reversed(roots)]
    while stack:
        node, children_done = stack.pop()
        if children_done:
            total = round_currency(sum(child.total_value for child in node.children), precision)
            node.total_value = total
            node.budget_initial = total
            node.budget_current = total
            node.type = GROUP
            node.resource_kind = None
            continue
        if id(node) in visited:
            raise TreeIntegrityError(f"Node '{node.code}' reached twice; tree has a cycle or shared child.")
        visited.add(id(node))
        if node.children:
            stack.append((node, True))
            stack.extend((child, False) for child in reversed(node.children))

    return round_currency(sum(root.total_value for root in roots), precision)


def build_tree(nodes: list[BudgetNode], precision: int = 2) -> list[BudgetNode]:
    """
    Link detached nodes into a forest by code and recompute group totals.

    A node whose parent code is missing becomes a root. Input nodes must have
    unique codes; existing children lists are replaced.
    """
    by_code: dict[str, BudgetNode] = {}
    for node in nodes:
        if node.code in by_code:
            raise TreeIntegrityError(f"Duplicate code '{node.code}' in tree input.")
        node.children = []
        by_code[node.code] = node

    roots: list[BudgetNode] = []
    for node in nodes:
        node.level = code_level(node.code)
        parent = by_code.get(parent_code(node.code) or "")
        if parent is None:
            node.parent_id = None
            roots.append(node)
            continue
        parent.children.append(node)
        parent.type = GROUP
        node.parent_id = parent.id

    sort_siblings(roots)
    recompute_totals(roots, precision)
    return roots


def iter_nodes(roots: list[BudgetNode]) -> Iterator[BudgetNode]:
    """Depth-first, parents before children, siblings in stored order."""
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def flatten(roots: list[BudgetNode]) -> list[BudgetNode]:
    return list(iter_nodes(roots))


def find_node(roots: list[BudgetNode], node_id: str) -> BudgetNode | None:
    for node in iter_nodes(roots):
        if node.id == node_id:
            return node
    return None


def tree_total(roots: list[BudgetNode]) -> float:
    return round_currency(sum(root.total_value for root in roots))


def tree_to_records(roots: list[BudgetNode], partition_id: str | None = None) -> list[dict[str, Any]]:
    records = []
    for node in iter_nodes(roots):
        records.append(
            {
                "id": node.id,
                "partition_id": partition_id,
                "code": node.code,
                "description": node.description,
                "level": node.level,
                "type": node.type,
                "item_type": node.item_type,
                "resource_kind": node.resource_kind,
                "parent_id": node.parent_id,
                "total_value": node.total_value,
                "budget_initial": node.budget_initial,
                "budget_current": node.budget_current,
                "cost_center": node.cost_center,
            }
        )
    return records


def _node_from_record(record: dict[str, Any]) -> BudgetNode:
    total = float(record.get("total_value") or 0.0)
    return BudgetNode(
        id=str(record["id"]),
        code=str(record.get("code") or ""),
        description=str(record.get("description") or ""),
        level=int(record.get("level") or 0),
        type=record.get("type") or ITEM,
        item_type=record.get("item_type") or SERVICE,
        resource_kind=record.get("resource_kind"),
        total_value=total,
        budget_initial=float(record.get("budget_initial", total) or 0.0),
        budget_current=float(record.get("budget_current", total) or 0.0),
        cost_center=record.get("cost_center"),
        parent_id=record.get("parent_id"),
    )


def tree_from_records(records: list[dict[str, Any]], precision: int = 2) -> list[BudgetNode]:
    """
    Rebuild a forest from flat records linked by ``parent_id``.

    Records whose parent is unknown become roots. Raises TreeIntegrityError on
    duplicate ids or when parent links form a cycle.
    """
    by_id: dict[str, BudgetNode] = {}
    order: list[BudgetNode] = []
    for record in records:
        if "id" not in record:
            raise TreeIntegrityError("Record without 'id'.")
        node = _node_from_record(record)
        if node.id in by_id:
            raise TreeIntegrityError(f"Duplicate record id '{node.id}'.")
        by_id[node.id] = node
        order.append(node)

    roots: list[BudgetNode] = []
    for node in order:
        parent = by_id.get(node.parent_id) if node.parent_id else None
        if parent is None:
            node.parent_id = None
            roots.append(node)
        else:
            parent.children.append(node)

    reachable = sum(1 for _ in iter_nodes(roots))
    if reachable != len(order):
        raise TreeIntegrityError(
            f"{len(order) - reachable} record(s) unreachable from any root; parent links form a cycle."
        )
    sort_siblings(roots)
    recompute_totals(roots, precision)
    return roots


def delete_node(roots: list[BudgetNode], node_id: str) -> bool:
    """Remove a node and its subtree. Returns False when the id is unknown."""
    for index, root in enumerate(roots):
        if root.id == node_id:
            del roots[index]
            recompute_totals(roots)
            return True
    for node in iter_nodes(roots):
        for index, child in enumerate(node.children):
            if child.id == node_id:
                del node.children[index]
                if not node.children:
                    node.type = ITEM
                recompute_totals(roots)
                return True
    return False


def _require_node(roots: list[BudgetNode], node_id: str) -> BudgetNode:
    node = find_node(roots, node_id)
    if node is None:
        raise KeyError(f"Unknown node id: {node_id}")
    return node


def set_leaf_value(roots: list[BudgetNode], node_id: str, value: float) -> float:
    """Set a leaf's budget value and return the new grand total."""
    node = _require_node(roots, node_id)
    if node.children:
        raise ValueError(f"Node '{node.code}' is a group; its value is the sum of its children.")
    value = round_currency(value)
    node.total_value = value
    node.budget_initial = value
    node.budget_current = value
    return recompute_totals(roots)


def next_child_code(node: BudgetNode) -> str:
    if not node.children:
        return f"{node.code}.01"
    parts = node.children[-1].code.split(".")
    if parts[-1].isdigit():
        parts[-1] = str(int(parts[-1]) + 1).zfill(2)
        return ".".join(parts)
    return f"{node.code}.{len(node.children) + 1:02d}"


def add_child(
    roots: list[BudgetNode],
    parent_id: str,
    description: str,
    value: float = 0.0,
    code: str | None = None,
) -> BudgetNode:
    parent = _require_node(roots, parent_id)
    code = code or next_child_code(parent)
    if any(child.code == code for child in parent.children):
        raise TreeIntegrityError(f"Code '{code}' already exists under '{parent.code}'.")
    value = round_currency(value)
    child = BudgetNode(
        id=node_id_for(code, parent.cost_center),
        code=code,
        description=description,
        level=parent.level + 1,
        type=ITEM,
        item_type=SERVICE,
        resource_kind=resource_kind_for(code),
        total_value=value,
        budget_initial=value,
        budget_current=value,
        cost_center=parent.cost_center,
        parent_id=parent.id,
    )
    parent.children.append(child)
    sort_siblings(parent.children)
    recompute_totals(roots)
    return child


def add_resource_children(
    roots: list[BudgetNode],
    node_id: str,
    split: dict[str, float] | None = None,
) -> list[BudgetNode]:
    """
    Give a leaf the standard MT/ST/EQ composition.

    ``split`` maps resource kinds to fractions of the leaf's current value and
    must add up to 1. Without it the whole value goes to MT. Rounding leftovers
    land on MT so the leaf total is unchanged.
    """
    node = _require_node(roots, node_id)
    if node.children:
        raise ValueError(f"Node '{node.code}' already has children.")
    split = split or {"MT": 1.0}
    unknown = set(split) - set(RESOURCE_KINDS)
    if unknown:
        raise ValueError(f"Unknown resource kinds: {', '.join(sorted(unknown))}")
    if abs(sum(split.values()) - 1.0) > 1e-9:
        raise ValueError("Resource split fractions must add up to 1.")

    values = {kind: round_currency(node.total_value * split.get(kind, 0.0)) for kind in RESOURCE_KINDS}
    values["MT"] = round_currency(values["MT"] + node.total_value - sum(values.values()))

    for kind in RESOURCE_KINDS:
        code = f"{node.code}.{kind}"
        node.children.append(
            BudgetNode(
                id=node_id_for(code, node.cost_center),
                code=code,
                description=RESOURCE_DESCRIPTIONS[kind],
                level=node.level + 1,
                type=ITEM,
                item_type=SERVICE,
                resource_kind=kind,
                total_value=values[kind],
                budget_initial=values[kind],
                budget_current=values[kind],
                cost_center=node.cost_center,
                parent_id=node.id,
            )
        )
    recompute_totals(roots)
    return node.children


def remove_resource_children(roots: list[BudgetNode], node_id: str) -> float:
    """Drop a node's resource composition, zeroing it the way a fresh leaf starts."""
    node = _require_node(roots, node_id)
    node.children = []
    node.type = ITEM
    node.total_value = 0.0
    node.budget_initial = 0.0
    node.budget_current = 0.0
    return recompute_totals(roots)
